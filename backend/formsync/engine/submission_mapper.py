"""Submission Mapper - Validate an answer set and map it onto Airtable fields"""
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .condition_evaluator import ConditionEvaluator
from ..domain.models import Question
from ..domain.enums import AnswerType, TEXT_ANSWER_TYPES
from ..domain.errors import ValidationError
from ..utils.logger import get_logger

logger = get_logger(__name__)


def _is_missing(answer: Any) -> bool:
    return answer is None or answer == ""


class SubmissionMapper:
    """
    Turn submitted answers into Airtable record fields

    Visibility is decided in declared question order, so a later question's
    rule sees only answers to earlier visible questions.
    """

    def __init__(self, evaluator: Optional[ConditionEvaluator] = None):
        self.evaluator = evaluator or ConditionEvaluator()

    def map_answers(
        self,
        questions: Sequence[Question],
        answers: Mapping[str, Any]
    ) -> Dict[str, Any]:
        """
        Validate answers and build the Airtable field map

        Args:
            questions: Form questions in declared order
            answers: Question key -> submitted answer

        Returns:
            External field name -> coerced value

        Raises:
            ValidationError: Required visible answer missing or answer
                does not fit the question type
        """
        visible_keys = self.check_required(questions, answers)

        fields: Dict[str, Any] = {}
        for question in questions:
            answer = answers.get(question.question_key)
            if answer is None:
                continue

            value = self.coerce_answer(question, answer)
            if question.question_key in visible_keys:
                fields[question.external_field_name] = value

        return fields

    def check_required(
        self,
        questions: Sequence[Question],
        answers: Mapping[str, Any]
    ) -> List[str]:
        """
        Walk questions in order and enforce required visible answers

        Returns:
            Keys of questions that were visible
        """
        answers_so_far: Dict[str, Any] = {}
        visible_keys: List[str] = []

        for question in questions:
            if not self.evaluator.evaluate(question.conditional_rules, answers_so_far):
                continue

            visible_keys.append(question.question_key)
            answer = answers.get(question.question_key)

            if question.required and _is_missing(answer):
                raise ValidationError(
                    f"Required field missing: {question.label}",
                    details={"field": question.question_key}
                )

            if question.question_key in answers:
                answers_so_far[question.question_key] = answer

        return visible_keys

    def coerce_answer(self, question: Question, answer: Any) -> Any:
        """Validate one answer against its declared type and coerce it"""
        if question.type in TEXT_ANSWER_TYPES:
            return str(answer)

        if question.type == AnswerType.SINGLE_SELECT.value:
            if answer not in question.options:
                raise ValidationError(
                    f"Invalid option for {question.label}",
                    details={"field": question.question_key, "value": answer}
                )
            return answer

        if question.type == AnswerType.MULTIPLE_SELECTS.value:
            if not isinstance(answer, list):
                raise ValidationError(
                    f"{question.label} must be an array",
                    details={"field": question.question_key}
                )
            invalid = [option for option in answer if option not in question.options]
            if invalid:
                raise ValidationError(
                    f"Invalid options for {question.label}: {', '.join(map(str, invalid))}",
                    details={"field": question.question_key, "invalid": invalid}
                )
            return list(answer)

        if question.type == AnswerType.MULTIPLE_ATTACHMENTS.value:
            return self._coerce_attachments(question, answer)

        # Other Airtable types are typecast by Airtable itself
        return answer

    def _coerce_attachments(self, question: Question, answer: Any) -> List[Dict[str, Any]]:
        if not isinstance(answer, list):
            raise ValidationError(
                f"{question.label} must be an array of attachments",
                details={"field": question.question_key}
            )

        attachments = []
        for item in answer:
            if not isinstance(item, dict) or not item.get("url"):
                raise ValidationError(
                    f"Each attachment for {question.label} needs a url",
                    details={"field": question.question_key}
                )
            attachment = {"url": item["url"]}
            if item.get("filename"):
                attachment["filename"] = item["filename"]
            attachments.append(attachment)
        return attachments

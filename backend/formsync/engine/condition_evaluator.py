"""Condition Evaluator - Safe evaluation of question visibility rules"""
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ..domain.models import Condition, ConditionalRule, Question, RuleValidationResult, RuleViolation
from ..domain.enums import ConditionLogic, ConditionOperator
from ..utils.logger import get_logger

logger = get_logger(__name__)

KNOWN_OPERATORS = frozenset(op.value for op in ConditionOperator)
KNOWN_LOGIC = frozenset(logic.value for logic in ConditionLogic)


def _is_missing(answer: Any) -> bool:
    return answer is None or answer == ""


def _is_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _strict_equals(left: Any, right: Any) -> bool:
    """Equality without cross-type coercion (1 != True, "1" != 1)"""
    if _is_number(left) and _is_number(right):
        return left == right
    if type(left) is not type(right):
        return False
    return left == right


def _as_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class ConditionEvaluator:
    """
    Decide whether a question is visible given the answers collected so far

    Pure rule engine - no storage, no network, never raises on bad rule data.
    """

    def evaluate(
        self,
        rule: Optional[ConditionalRule],
        answers_so_far: Mapping[str, Any]
    ) -> bool:
        """
        Evaluate a conditional rule

        Args:
            rule: Rule attached to a question (None means always visible)
            answers_so_far: Question key -> answer

        Returns:
            True if the question is visible
        """
        if rule is None or not rule.conditions:
            return True

        results = [self._evaluate_single(condition, answers_so_far) for condition in rule.conditions]

        if rule.logic == ConditionLogic.AND.value:
            return all(results)
        if rule.logic == ConditionLogic.OR.value:
            return any(results)

        # Authoring-time validation rejects this; stored data may still carry it
        logger.warning(f"Unknown condition logic {rule.logic!r}, treating question as visible")
        return True

    def _evaluate_single(self, condition: Condition, answers_so_far: Mapping[str, Any]) -> bool:
        """Evaluate a single condition"""
        answer = answers_so_far.get(condition.question_key)
        operator = condition.operator

        if operator not in KNOWN_OPERATORS:
            logger.warning(
                f"Unknown condition operator {operator!r} on question {condition.question_key!r}"
            )
            return False

        if _is_missing(answer):
            return operator == ConditionOperator.NOT_EQUALS.value

        if operator == ConditionOperator.EQUALS.value:
            return self._equals(answer, condition.value)

        if operator == ConditionOperator.NOT_EQUALS.value:
            return not self._equals(answer, condition.value)

        return self._contains(answer, condition.value)

    def _equals(self, answer: Any, value: Any) -> bool:
        if _is_sequence(answer):
            return any(_strict_equals(item, value) for item in answer)
        return _strict_equals(answer, value)

    def _contains(self, answer: Any, value: Any) -> bool:
        needle = _as_text(value).lower()
        if isinstance(answer, str):
            return needle in answer.lower()
        if _is_sequence(answer):
            return any(needle in _as_text(item).lower() for item in answer)
        return False

    def get_visible_keys(
        self,
        questions: Sequence[Question],
        answers_so_far: Mapping[str, Any]
    ) -> List[str]:
        """Keys of visible questions, in declared order"""
        return [
            question.question_key
            for question in questions
            if self.evaluate(question.conditional_rules, answers_so_far)
        ]

    def validate(self, questions: Sequence[Question]) -> RuleValidationResult:
        """
        Authoring-time check of every question's rule

        Reports every violation: unknown target question, self reference,
        unknown operator, unknown logic.
        """
        errors: List[RuleViolation] = []
        keys = {question.question_key for question in questions}

        for index, question in enumerate(questions):
            rule = question.conditional_rules
            if rule is None:
                continue

            for cond_index, condition in enumerate(rule.conditions):
                if condition.question_key not in keys:
                    errors.append(RuleViolation(
                        question_index=index,
                        question_key=question.question_key,
                        condition_index=cond_index,
                        message=f'Referenced question "{condition.question_key}" does not exist'
                    ))

                if condition.question_key == question.question_key:
                    errors.append(RuleViolation(
                        question_index=index,
                        question_key=question.question_key,
                        condition_index=cond_index,
                        message="Question cannot have conditional rule referencing itself"
                    ))

                if condition.operator not in KNOWN_OPERATORS:
                    errors.append(RuleViolation(
                        question_index=index,
                        question_key=question.question_key,
                        condition_index=cond_index,
                        message=f'Invalid operator "{condition.operator}"'
                    ))

            if rule.logic not in KNOWN_LOGIC:
                errors.append(RuleViolation(
                    question_index=index,
                    question_key=question.question_key,
                    message=f'Invalid logic operator "{rule.logic}"'
                ))

        return RuleValidationResult(ok=not errors, errors=errors)

    def find_dependency_issues(self, questions: Sequence[Question]) -> List[RuleViolation]:
        """
        Stricter check: references to later questions and dependency cycles

        Self references and unknown keys are left to validate().
        """
        issues: List[RuleViolation] = []
        position = {question.question_key: index for index, question in enumerate(questions)}
        graph: Dict[str, List[str]] = {}

        for index, question in enumerate(questions):
            targets: List[str] = []
            rule = question.conditional_rules
            for cond_index, condition in enumerate(rule.conditions if rule else []):
                target = condition.question_key
                if target not in position or target == question.question_key:
                    continue
                targets.append(target)
                if position[target] > index:
                    issues.append(RuleViolation(
                        question_index=index,
                        question_key=question.question_key,
                        condition_index=cond_index,
                        message=f'Referenced question "{target}" comes later in the form'
                    ))
            graph[question.question_key] = targets

        for key in self._keys_on_cycles(graph):
            issues.append(RuleViolation(
                question_index=position[key],
                question_key=key,
                message="Question is part of a conditional dependency cycle"
            ))

        return issues

    def _keys_on_cycles(self, graph: Dict[str, List[str]]) -> List[str]:
        """Keys that can reach themselves through their dependencies"""
        on_cycle: List[str] = []
        for start in graph:
            stack = list(graph[start])
            seen = set()
            while stack:
                key = stack.pop()
                if key == start:
                    on_cycle.append(start)
                    break
                if key in seen:
                    continue
                seen.add(key)
                stack.extend(graph.get(key, []))
        return on_cycle

"""Form Service - Form definitions with authoring-time validation"""
from typing import Any, Dict, List, Optional, Sequence

from .credential_service import CredentialService, get_credential_service
from .subscription_service import SubscriptionService, get_subscription_service
from ..config.settings import settings
from ..domain.models import FormDefinition, Question
from ..domain.enums import AUTHORABLE_ANSWER_TYPES, AnswerType
from ..domain.errors import (
    DomainError, DuplicateQuestionKeyError, FormNotFoundError, PermissionDeniedError,
    RuleValidationError, ValidationError
)
from ..engine.condition_evaluator import ConditionEvaluator
from ..repositories.form_repo import FormRepository
from ..repositories.submission_repo import SubmissionRepository
from ..utils.idgen import generate_form_id
from ..utils.logger import get_logger
from ..utils.time import utc_now

logger = get_logger(__name__)

SELECT_TYPES = frozenset({AnswerType.SINGLE_SELECT.value, AnswerType.MULTIPLE_SELECTS.value})
UPDATABLE_FIELDS = frozenset({"title", "description", "questions", "is_active", "base_name", "table_name"})
# May be set to None to clear them
CLEARABLE_FIELDS = frozenset({"description", "base_name", "table_name"})


class FormService:
    """Service for form definition operations"""

    def __init__(
        self,
        repo: Optional[FormRepository] = None,
        submission_repo: Optional[SubmissionRepository] = None,
        subscriptions: Optional[SubscriptionService] = None,
        credentials: Optional[CredentialService] = None,
        evaluator: Optional[ConditionEvaluator] = None
    ):
        self.repo = repo or FormRepository()
        self.submission_repo = submission_repo or SubmissionRepository()
        self.credentials = credentials or get_credential_service()
        self.subscriptions = subscriptions or get_subscription_service()
        self.evaluator = evaluator or ConditionEvaluator()

    # =========================================================================
    # Validation
    # =========================================================================

    def validate_questions(self, questions: Sequence[Question]) -> None:
        """
        Check a question list before it is stored

        Raises:
            DuplicateQuestionKeyError: Two questions share a key
            ValidationError: Unsupported type or select without options
            RuleValidationError: Conditional rules are invalid
        """
        seen = set()
        for question in questions:
            if question.question_key in seen:
                raise DuplicateQuestionKeyError(
                    f"Duplicate question key: {question.question_key}",
                    details={"question_key": question.question_key}
                )
            seen.add(question.question_key)

            if question.type not in AUTHORABLE_ANSWER_TYPES:
                raise ValidationError(
                    f"Unsupported question type: {question.type}",
                    details={"question_key": question.question_key, "type": question.type}
                )

            if question.type in SELECT_TYPES and not question.options:
                logger.warning(
                    f"Select question {question.question_key} has no options, every answer will be rejected"
                )

        result = self.evaluator.validate(questions)
        if not result.ok:
            raise RuleValidationError(
                "Invalid conditional logic",
                details={"errors": [error.model_dump() for error in result.errors]}
            )

        if settings.strict_rule_dependencies:
            issues = self.evaluator.find_dependency_issues(questions)
            if issues:
                raise RuleValidationError(
                    "Invalid conditional dependencies",
                    details={"errors": [issue.model_dump() for issue in issues]}
                )

    # =========================================================================
    # CRUD
    # =========================================================================

    def create_form(
        self,
        owner_id: str,
        title: str,
        base_id: str,
        table_id: str,
        questions: List[Question],
        description: Optional[str] = None,
        base_name: Optional[str] = None,
        table_name: Optional[str] = None
    ) -> FormDefinition:
        """Create a form for an owner"""
        if not questions:
            raise ValidationError("At least one question is required")
        self.validate_questions(questions)

        now = utc_now()
        form = FormDefinition(
            form_id=generate_form_id(),
            owner_id=owner_id,
            title=title,
            description=description,
            base_id=base_id,
            table_id=table_id,
            base_name=base_name,
            table_name=table_name,
            questions=questions,
            created_at=now,
            updated_at=now
        )
        return self.repo.create_form(form)

    def list_forms(self, owner_id: str, is_active: Optional[bool] = None) -> List[FormDefinition]:
        """Forms owned by an account"""
        return self.repo.list_forms_for_owner(owner_id, is_active)

    def get_form(self, form_id: str, owner_id: Optional[str] = None) -> FormDefinition:
        """
        Get a form

        With owner_id the caller must own the form; without it the form is
        being read for filling and only needs to exist.
        """
        form = self.repo.get_form_or_raise(form_id)
        if owner_id is not None:
            self._check_owner(form, owner_id)
        return form

    def get_active_form(self, form_id: str) -> FormDefinition:
        """Get a form that is accepting submissions"""
        form = self.repo.get_form(form_id)
        if form is None or not form.is_active:
            raise FormNotFoundError("Form not found or inactive", details={"form_id": form_id})
        return form

    def update_form(self, form_id: str, owner_id: str, updates: Dict[str, Any]) -> FormDefinition:
        """
        Update title, description, questions, table labels or active flag

        Only keys present in updates change; None clears description and the
        base/table labels and is ignored for the other fields.
        """
        form = self.get_form(form_id, owner_id)

        updates = {
            key: value for key, value in updates.items()
            if key in UPDATABLE_FIELDS and (value is not None or key in CLEARABLE_FIELDS)
        }
        if "questions" in updates:
            questions = [
                q if isinstance(q, Question) else Question.model_validate(q)
                for q in updates["questions"]
            ]
            if not questions:
                raise ValidationError("At least one question is required")
            self.validate_questions(questions)
            updates["questions"] = [q.model_dump() for q in questions]

        if not updates:
            return form

        updated = self.repo.update_form(form_id, updates)
        logger.info(f"Updated form {form_id}", extra={"form_id": form_id, "action": "update"})
        return updated

    async def delete_form(self, form_id: str, owner_id: str) -> None:
        """
        Delete a form with its submissions and subscriptions

        Airtable webhooks are removed best effort; an owner that needs to
        reauthorize does not block the deletion.
        """
        form = self.get_form(form_id, owner_id)

        credential = None
        try:
            credential = await self.credentials.get_valid_credential(form.owner_id)
        except DomainError as e:
            logger.warning(
                f"Deleting form {form_id} without removing Airtable webhooks: {e.message}",
                extra={"form_id": form_id, "error_code": e.error_code}
            )

        await self.subscriptions.retire_all_for_form(form, credential)
        self.submission_repo.delete_for_form(form_id)
        self.repo.delete_form(form_id)

    def _check_owner(self, form: FormDefinition, owner_id: str) -> None:
        if form.owner_id != owner_id:
            raise PermissionDeniedError(
                "Not authorized to access this form",
                details={"form_id": form.form_id}
            )

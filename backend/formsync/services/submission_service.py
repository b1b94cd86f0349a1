"""Submission Service - Accept answer sets and mirror them as Airtable records"""
from typing import Any, Dict, List, Mapping, Optional

from .airtable_client import AirtableClient
from .credential_service import CredentialService, get_credential_service
from ..domain.models import FormDefinition, SubmissionMetadata, SubmissionRecord
from ..domain.errors import PermissionDeniedError
from ..engine.submission_mapper import SubmissionMapper
from ..repositories.form_repo import FormRepository
from ..repositories.submission_repo import SubmissionRepository
from ..utils.idgen import generate_response_id
from ..utils.logger import get_logger
from ..utils.time import utc_now

logger = get_logger(__name__)


class SubmissionService:
    """Service for submissions"""

    def __init__(
        self,
        repo: Optional[SubmissionRepository] = None,
        form_repo: Optional[FormRepository] = None,
        credentials: Optional[CredentialService] = None,
        client: Optional[AirtableClient] = None,
        mapper: Optional[SubmissionMapper] = None
    ):
        self.repo = repo or SubmissionRepository()
        self.form_repo = form_repo or FormRepository()
        self.credentials = credentials or get_credential_service()
        self.client = client or self.credentials.client
        self.mapper = mapper or SubmissionMapper()

    async def submit(
        self,
        form: FormDefinition,
        answers: Mapping[str, Any],
        metadata: Optional[SubmissionMetadata] = None
    ) -> SubmissionRecord:
        """
        Validate answers, create the Airtable record and store the submission

        Raises:
            ValidationError: Answers do not satisfy the form
            AuthExpiredError: Owner has to reauthorize
            ExternalServiceError: Airtable rejected the record
        """
        fields = self.mapper.map_answers(form.questions, answers)

        credential = await self.credentials.get_valid_credential(form.owner_id)
        external = await self.client.create_record(
            credential.access_token, form.base_id, form.table_id, fields
        )

        now = utc_now()
        record = SubmissionRecord(
            response_id=generate_response_id(),
            form_id=form.form_id,
            external_record_id=external.id,
            answers=dict(answers),
            metadata=metadata or SubmissionMetadata(),
            last_synced_at=now,
            created_at=now
        )
        self.repo.create_submission(record)
        self.form_repo.record_submission(form.form_id, now)

        logger.info(
            f"Accepted submission {record.response_id} for form {form.form_id}",
            extra={"response_id": record.response_id, "form_id": form.form_id, "record_id": external.id}
        )
        return record

    def list_for_form(self, form: FormDefinition, include_deleted: bool = False) -> List[SubmissionRecord]:
        """Submissions of a form"""
        return self.repo.list_for_form(form.form_id, include_deleted)

    def get_submission(self, response_id: str, owner_id: str) -> Dict[str, Any]:
        """A submission together with its form, readable by the form owner only"""
        record = self.repo.get_submission_or_raise(response_id)
        form = self.form_repo.get_form_or_raise(record.form_id)
        if form.owner_id != owner_id:
            raise PermissionDeniedError(
                "Not authorized to view this response",
                details={"response_id": response_id}
            )
        return {"response": record, "form": form}

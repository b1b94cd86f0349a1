"""Submission Repository - Data access for submission records"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from pymongo.collection import Collection
from pymongo import DESCENDING

from .mongo_client import get_collection
from ..domain.models import SubmissionRecord
from ..domain.errors import SubmissionNotFoundError
from ..utils.logger import get_logger

logger = get_logger(__name__)


class SubmissionRepository:
    """Repository for submission records (join key: Airtable record ID)"""

    def __init__(self, collection: Optional[Collection] = None):
        self._submissions: Collection = collection if collection is not None else get_collection("submissions")

    def create_submission(self, record: SubmissionRecord) -> SubmissionRecord:
        """Create submission record"""
        doc = record.model_dump()
        doc["_id"] = record.response_id

        self._submissions.insert_one(doc)
        logger.info(
            f"Created submission: {record.response_id}",
            extra={
                "response_id": record.response_id,
                "form_id": record.form_id,
                "record_id": record.external_record_id
            }
        )
        return record

    def get_submission(self, response_id: str) -> Optional[SubmissionRecord]:
        """Get submission by response ID"""
        doc = self._submissions.find_one({"response_id": response_id})
        if doc:
            doc.pop("_id", None)
            return SubmissionRecord.model_validate(doc)
        return None

    def get_submission_or_raise(self, response_id: str) -> SubmissionRecord:
        """Get submission or raise error"""
        record = self.get_submission(response_id)
        if not record:
            raise SubmissionNotFoundError(f"Response {response_id} not found")
        return record

    def find_by_external_record(self, external_record_id: str, form_id: str) -> Optional[SubmissionRecord]:
        """Find the submission mirrored as an Airtable record of a form"""
        doc = self._submissions.find_one({"external_record_id": external_record_id, "form_id": form_id})
        if doc:
            doc.pop("_id", None)
            return SubmissionRecord.model_validate(doc)
        return None

    def list_for_form(self, form_id: str, include_deleted: bool = False) -> List[SubmissionRecord]:
        """List a form's submissions, newest first"""
        query: Dict[str, Any] = {"form_id": form_id}
        if not include_deleted:
            query["deleted_externally"] = False

        cursor = self._submissions.find(query).sort("created_at", DESCENDING)

        records = []
        for doc in cursor:
            doc.pop("_id", None)
            records.append(SubmissionRecord.model_validate(doc))
        return records

    def mark_synced(self, response_id: str, synced_at: datetime) -> None:
        """Stamp freshness after an inbound change"""
        self._submissions.update_one(
            {"response_id": response_id},
            {"$set": {"last_synced_at": synced_at}}
        )

    def mark_deleted_externally(self, response_id: str, synced_at: datetime) -> None:
        """Soft delete after the Airtable record was destroyed"""
        self._submissions.update_one(
            {"response_id": response_id},
            {"$set": {"deleted_externally": True, "last_synced_at": synced_at}}
        )

    def delete_for_form(self, form_id: str) -> int:
        """Delete every submission of a form"""
        result = self._submissions.delete_many({"form_id": form_id})
        if result.deleted_count:
            logger.info(f"Deleted {result.deleted_count} submissions", extra={"form_id": form_id})
        return result.deleted_count

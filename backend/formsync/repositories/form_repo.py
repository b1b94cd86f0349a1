"""Form Repository - Data access for form definitions"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from pymongo.collection import Collection
from pymongo import DESCENDING, ReturnDocument

from .mongo_client import get_collection
from ..domain.models import FormDefinition
from ..domain.errors import FormNotFoundError
from ..utils.logger import get_logger
from ..utils.time import utc_now

logger = get_logger(__name__)


class FormRepository:
    """Repository for form definition operations"""

    def __init__(self, collection: Optional[Collection] = None):
        self._forms: Collection = collection if collection is not None else get_collection("forms")

    def create_form(self, form: FormDefinition) -> FormDefinition:
        """Create form"""
        doc = form.model_dump()
        doc["_id"] = form.form_id

        self._forms.insert_one(doc)
        logger.info(
            f"Created form: {form.form_id}",
            extra={"form_id": form.form_id, "account_id": form.owner_id}
        )
        return form

    def get_form(self, form_id: str) -> Optional[FormDefinition]:
        """Get form by ID"""
        doc = self._forms.find_one({"form_id": form_id})
        if doc:
            doc.pop("_id", None)
            return FormDefinition.model_validate(doc)
        return None

    def get_form_or_raise(self, form_id: str) -> FormDefinition:
        """Get form by ID or raise error"""
        form = self.get_form(form_id)
        if not form:
            raise FormNotFoundError(f"Form {form_id} not found")
        return form

    def list_forms_for_owner(self, owner_id: str, is_active: Optional[bool] = None) -> List[FormDefinition]:
        """List an owner's forms, newest first"""
        query: Dict[str, Any] = {"owner_id": owner_id}
        if is_active is not None:
            query["is_active"] = is_active

        cursor = self._forms.find(query).sort("created_at", DESCENDING)

        forms = []
        for doc in cursor:
            doc.pop("_id", None)
            forms.append(FormDefinition.model_validate(doc))
        return forms

    def update_form(self, form_id: str, updates: Dict[str, Any]) -> FormDefinition:
        """Update form fields"""
        updates = {**updates, "updated_at": utc_now()}
        result = self._forms.find_one_and_update(
            {"form_id": form_id},
            {"$set": updates},
            return_document=ReturnDocument.AFTER
        )

        if result is None:
            raise FormNotFoundError(f"Form {form_id} not found")

        result.pop("_id", None)
        return FormDefinition.model_validate(result)

    def record_submission(self, form_id: str, submitted_at: datetime) -> None:
        """Bump submission statistics"""
        self._forms.update_one(
            {"form_id": form_id},
            {
                "$inc": {"submission_count": 1},
                "$set": {"last_submission_at": submitted_at}
            }
        )

    def delete_form(self, form_id: str) -> bool:
        """Delete form"""
        result = self._forms.delete_one({"form_id": form_id})
        if result.deleted_count > 0:
            logger.info(f"Deleted form: {form_id}", extra={"form_id": form_id})
            return True
        return False

"""Subscription Repository - Data access for Airtable webhook subscriptions"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from pymongo.collection import Collection
from pymongo import ASCENDING, ReturnDocument

from .mongo_client import get_collection
from ..domain.models import Subscription
from ..domain.errors import SubscriptionNotFoundError
from ..utils.logger import get_logger

logger = get_logger(__name__)


class SubscriptionRepository:
    """Repository for subscription operations"""

    def __init__(self, collection: Optional[Collection] = None):
        self._subscriptions: Collection = collection if collection is not None else get_collection("subscriptions")

    def create_subscription(self, subscription: Subscription) -> Subscription:
        """Create subscription"""
        doc = subscription.model_dump()
        doc["_id"] = subscription.external_id

        self._subscriptions.insert_one(doc)
        logger.info(
            f"Created subscription: {subscription.external_id}",
            extra={"subscription_id": subscription.external_id, "form_id": subscription.form_id}
        )
        return subscription

    def get_subscription(self, external_id: str) -> Optional[Subscription]:
        """Get subscription by Airtable webhook ID"""
        doc = self._subscriptions.find_one({"external_id": external_id})
        if doc:
            doc.pop("_id", None)
            return Subscription.model_validate(doc)
        return None

    def get_subscription_or_raise(self, external_id: str) -> Subscription:
        """Get subscription or raise error"""
        subscription = self.get_subscription(external_id)
        if not subscription:
            raise SubscriptionNotFoundError(f"Subscription {external_id} not found")
        return subscription

    def find_active_for_form(self, form_id: str) -> Optional[Subscription]:
        """Active subscription of a form, if any"""
        doc = self._subscriptions.find_one({"form_id": form_id, "active": True})
        if doc:
            doc.pop("_id", None)
            return Subscription.model_validate(doc)
        return None

    def list_for_form(self, form_id: str) -> List[Subscription]:
        """All subscriptions of a form, active or retired"""
        cursor = self._subscriptions.find({"form_id": form_id}).sort("created_at", ASCENDING)

        subscriptions = []
        for doc in cursor:
            doc.pop("_id", None)
            subscriptions.append(Subscription.model_validate(doc))
        return subscriptions

    def find_due_for_renewal(self, pinged_before: datetime) -> List[Subscription]:
        """Every active subscription whose last ping is older than the cutoff, oldest first"""
        cursor = self._subscriptions.find({
            "active": True,
            "last_ping_at": {"$lt": pinged_before}
        }).sort("last_ping_at", ASCENDING)

        subscriptions = []
        for doc in cursor:
            doc.pop("_id", None)
            subscriptions.append(Subscription.model_validate(doc))
        return subscriptions

    def update_subscription(self, external_id: str, updates: Dict[str, Any]) -> Subscription:
        """Apply one set of field updates in a single write"""
        result = self._subscriptions.find_one_and_update(
            {"external_id": external_id},
            {"$set": updates},
            return_document=ReturnDocument.AFTER
        )

        if result is None:
            raise SubscriptionNotFoundError(f"Subscription {external_id} not found")

        result.pop("_id", None)
        return Subscription.model_validate(result)

    def delete_for_form(self, form_id: str) -> int:
        """Delete every subscription of a form"""
        result = self._subscriptions.delete_many({"form_id": form_id})
        return result.deleted_count

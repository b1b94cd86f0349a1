"""Notification Processor - Apply Airtable change notifications to local submissions"""
import asyncio
import base64
import hashlib
import hmac
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

from ..config.settings import settings
from ..domain.models import NotificationOutcome, NotificationPayload, Subscription, TableChanges
from ..repositories.subscription_repo import SubscriptionRepository
from ..repositories.submission_repo import SubmissionRepository
from ..utils.logger import get_logger
from ..utils.time import utc_now

logger = get_logger(__name__)

SIGNATURE_PREFIX = "hmac-sha256="


def compute_signature(mac_secret: str, raw_body: bytes) -> str:
    """Expected X-Airtable-Content-MAC value for a body"""
    digest = hmac.new(base64.b64decode(mac_secret), raw_body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


class _LockEntry:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


class NotificationProcessor:
    """
    Validate a notification against its subscription and apply it

    Notifications for one subscription are applied one at a time; different
    subscriptions proceed concurrently. Replaying a notification is harmless.
    """

    def __init__(
        self,
        subscription_repo: Optional[SubscriptionRepository] = None,
        submission_repo: Optional[SubmissionRepository] = None
    ):
        self.subscription_repo = subscription_repo or SubscriptionRepository()
        self.submission_repo = submission_repo or SubmissionRepository()
        self._locks: Dict[str, _LockEntry] = {}

    @asynccontextmanager
    async def _serialized(self, subscription_id: str) -> AsyncIterator[None]:
        """Hold the subscription's lock; the entry is dropped once nobody holds or waits on it"""
        entry = self._locks.get(subscription_id)
        if entry is None:
            entry = self._locks[subscription_id] = _LockEntry()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[subscription_id]

    async def process(
        self,
        payload: NotificationPayload,
        raw_body: Optional[bytes] = None,
        signature: Optional[str] = None
    ) -> NotificationOutcome:
        """
        Apply one notification

        Never raises for unknown subscriptions or bad signatures; the outcome
        says why a notification was discarded.
        """
        subscription_id = payload.subscription_external_id
        subscription = self.subscription_repo.get_subscription(subscription_id)
        if subscription is None:
            logger.warning(
                f"Notification for unknown subscription {subscription_id}, discarding",
                extra={"subscription_id": subscription_id}
            )
            return NotificationOutcome(subscription_external_id=subscription_id, reason="unknown_subscription")

        async with self._serialized(subscription_id):
            if not self._signature_ok(subscription, raw_body, signature):
                logger.warning(
                    f"Notification signature rejected for subscription {subscription_id}",
                    extra={"subscription_id": subscription_id, "status": "rejected"}
                )
                return NotificationOutcome(subscription_external_id=subscription_id, reason="invalid_signature")

            updates = {"last_notification_at": payload.timestamp}
            if payload.cursor is not None:
                updates["cursor"] = payload.cursor
            self.subscription_repo.update_subscription(subscription_id, updates)

            outcome = NotificationOutcome(subscription_external_id=subscription_id, accepted=True)
            changes = payload.changed_tables_by_id.get(subscription.table_id)
            if changes is not None:
                self._apply_changes(subscription, changes, outcome)

            logger.info(
                f"Processed notification for subscription {subscription_id}: "
                f"{outcome.updated} updated, {outcome.deleted} deleted, {outcome.failed} failed",
                extra={"subscription_id": subscription_id, "form_id": subscription.form_id}
            )
            return outcome

    def _signature_ok(
        self,
        subscription: Subscription,
        raw_body: Optional[bytes],
        signature: Optional[str]
    ) -> bool:
        if not signature:
            return not settings.require_webhook_signature
        if not subscription.mac_secret or raw_body is None:
            return not settings.require_webhook_signature
        expected = compute_signature(subscription.mac_secret, raw_body)
        return hmac.compare_digest(expected, signature)

    def _apply_changes(
        self,
        subscription: Subscription,
        changes: TableChanges,
        outcome: NotificationOutcome
    ) -> None:
        form_id = subscription.form_id

        for record_id, change in changes.changed_records_by_id.items():
            if not change.is_materialized:
                continue
            try:
                record = self.submission_repo.find_by_external_record(record_id, form_id)
                if record is None:
                    continue
                self.submission_repo.mark_synced(record.response_id, utc_now())
                outcome.updated += 1
            except Exception as e:
                outcome.failed += 1
                logger.error(
                    f"Failed to sync record {record_id}: {e}",
                    extra={"record_id": record_id, "form_id": form_id}
                )

        for record_id in changes.destroyed_record_ids:
            try:
                record = self.submission_repo.find_by_external_record(record_id, form_id)
                if record is None:
                    continue
                self.submission_repo.mark_deleted_externally(record.response_id, utc_now())
                outcome.deleted += 1
            except Exception as e:
                outcome.failed += 1
                logger.error(
                    f"Failed to mark record {record_id} deleted: {e}",
                    extra={"record_id": record_id, "form_id": form_id}
                )

        if changes.created_records_by_id:
            outcome.created_observed = len(changes.created_records_by_id)
            logger.info(
                f"{outcome.created_observed} records created in Airtable",
                extra={"form_id": form_id, "subscription_id": subscription.external_id}
            )


# Global notification processor instance
_notification_processor: Optional[NotificationProcessor] = None


def get_notification_processor() -> NotificationProcessor:
    """Get global notification processor"""
    global _notification_processor
    if _notification_processor is None:
        _notification_processor = NotificationProcessor()
    return _notification_processor

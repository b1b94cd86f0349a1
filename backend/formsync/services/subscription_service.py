"""Subscription Service - Lifecycle of Airtable change-notification webhooks

Registering -> Active -> (Renewing <-> Active) -> Retired

Registering and Renewing are in-flight phases tracked by the service; only
Active and Retired are stored.
"""
import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from .airtable_client import AirtableClient
from .credential_service import CredentialService, get_credential_service
from ..config.settings import settings
from ..domain.models import Credential, FormDefinition, Subscription, SubscriptionError, SweepResult
from ..domain.enums import SubscriptionState
from ..domain.errors import AuthExpiredError, ConflictError, DomainError, NotFoundError
from ..repositories.subscription_repo import SubscriptionRepository
from ..repositories.form_repo import FormRepository
from ..utils.logger import get_logger
from ..utils.time import utc_now, days_ago

logger = get_logger(__name__)

MAX_SWEEP_CONCURRENCY = 4


def table_filter(table_id: str) -> Dict[str, Any]:
    """Webhook specification limited to record changes in one table"""
    return {
        "options": {
            "filters": {
                "dataTypes": ["tableData"],
                "recordChangeScope": table_id
            }
        }
    }


class SubscriptionService:
    """Register, renew and retire webhook subscriptions"""

    def __init__(
        self,
        repo: Optional[SubscriptionRepository] = None,
        form_repo: Optional[FormRepository] = None,
        credentials: Optional[CredentialService] = None,
        client: Optional[AirtableClient] = None
    ):
        self.repo = repo or SubscriptionRepository()
        self.form_repo = form_repo or FormRepository()
        self.credentials = credentials or get_credential_service()
        self.client = client or self.credentials.client
        self._registering: Set[str] = set()
        self._renewing: Set[str] = set()

    def state_of(self, subscription: Subscription) -> SubscriptionState:
        """Lifecycle state, including a renewal in flight"""
        if subscription.active and subscription.external_id in self._renewing:
            return SubscriptionState.RENEWING
        return subscription.state

    def is_registering(self, form_id: str) -> bool:
        return form_id in self._registering

    # =========================================================================
    # Registration
    # =========================================================================

    async def register(self, form: FormDefinition, credential: Credential) -> Subscription:
        """
        Subscribe to changes of the form's table

        An already active subscription for the form is returned unchanged.

        Raises:
            ConflictError: Another registration for the form is in flight
        """
        existing = self.repo.find_active_for_form(form.form_id)
        if existing:
            logger.info(
                f"Subscription already registered for form {form.form_id}",
                extra={"form_id": form.form_id, "subscription_id": existing.external_id}
            )
            return existing

        if form.form_id in self._registering:
            raise ConflictError(
                "Webhook registration already in progress for this form",
                details={"form_id": form.form_id}
            )

        notification_url = settings.webhook_notification_url
        self._registering.add(form.form_id)
        try:
            grant = await self.client.create_subscription(
                credential.access_token,
                form.base_id,
                notification_url,
                table_filter(form.table_id)
            )
        finally:
            self._registering.discard(form.form_id)

        now = utc_now()
        subscription = Subscription(
            external_id=grant.id,
            form_id=form.form_id,
            base_id=form.base_id,
            table_id=form.table_id,
            notification_url=notification_url,
            mac_secret=grant.mac_secret,
            cursor=1,
            active=True,
            last_ping_at=now,
            expires_at=grant.expiration_time,
            created_at=now
        )
        return self.repo.create_subscription(subscription)

    def get_active_for_form(self, form_id: str) -> Optional[Subscription]:
        """Active subscription of a form, if any"""
        return self.repo.find_active_for_form(form_id)

    def list_for_form(self, form_id: str) -> List[Subscription]:
        """All subscriptions of a form"""
        return self.repo.list_for_form(form_id)

    def get(self, external_id: str) -> Subscription:
        """Get subscription by Airtable webhook ID"""
        return self.repo.get_subscription_or_raise(external_id)

    # =========================================================================
    # Renewal
    # =========================================================================

    async def renew(self, subscription: Subscription, credential: Credential) -> Subscription:
        """
        Extend a subscription's lifetime

        Success resets the error counter. Failure (timeout included) bumps it
        and retires the subscription once it reaches the limit. Either outcome
        is persisted in one write.
        """
        self._renewing.add(subscription.external_id)
        try:
            expires_at = await asyncio.wait_for(
                self.client.renew_subscription(
                    credential.access_token, subscription.base_id, subscription.external_id
                ),
                timeout=settings.http_timeout_seconds
            )
        except asyncio.TimeoutError:
            return self._record_failure(subscription, "Renewal timed out")
        except DomainError as e:
            return self._record_failure(subscription, e.message)
        finally:
            self._renewing.discard(subscription.external_id)

        return self._record_success(subscription, expires_at)

    def _record_success(self, subscription: Subscription, expires_at: Optional[datetime]) -> Subscription:
        updates: Dict[str, Any] = {"last_ping_at": utc_now(), "error_count": 0}
        if expires_at:
            updates["expires_at"] = expires_at

        renewed = self.repo.update_subscription(subscription.external_id, updates)
        logger.info(
            f"Renewed subscription {subscription.external_id}",
            extra={
                "subscription_id": subscription.external_id,
                "form_id": subscription.form_id,
                "action": "renew",
                "status": "ok"
            }
        )
        return renewed

    def _record_failure(self, subscription: Subscription, message: str) -> Subscription:
        now = utc_now()
        error_count = subscription.error_count + 1
        updates: Dict[str, Any] = {
            "error_count": error_count,
            "last_error": SubscriptionError(message=message, timestamp=now).model_dump(),
        }
        retire = error_count >= settings.subscription_max_errors
        if retire:
            updates["active"] = False

        failed = self.repo.update_subscription(subscription.external_id, updates)
        logger.error(
            f"Failed to renew subscription {subscription.external_id}: {message}",
            extra={
                "subscription_id": subscription.external_id,
                "form_id": subscription.form_id,
                "action": "renew",
                "status": "failed",
                "error_count": error_count
            }
        )
        if retire:
            logger.warning(
                f"Retired subscription {subscription.external_id} after {error_count} failures",
                extra={"subscription_id": subscription.external_id, "action": "retire"}
            )
        return failed

    async def scheduled_sweep(
        self,
        now: Optional[datetime] = None,
        stop_event: Optional[asyncio.Event] = None
    ) -> SweepResult:
        """
        Renew every active subscription not pinged within the threshold

        Items are isolated from each other; the sweep itself never raises.
        Setting stop_event halts the sweep before the next subscription.
        """
        cutoff = days_ago(settings.subscription_renewal_threshold_days, now)
        due = self.repo.find_due_for_renewal(cutoff)
        result = SweepResult(selected=len(due))
        logger.info(f"Renewal sweep selected {len(due)} subscriptions", extra={"action": "sweep"})

        queue: "asyncio.Queue[Subscription]" = asyncio.Queue()
        for subscription in due:
            queue.put_nowait(subscription)

        async def worker() -> None:
            while not queue.empty():
                if stop_event is not None and stop_event.is_set():
                    result.cancelled = True
                    return
                subscription = queue.get_nowait()
                await self._sweep_one(subscription, result)

        workers = max(1, min(settings.sweep_concurrency, MAX_SWEEP_CONCURRENCY))
        await asyncio.gather(*(worker() for _ in range(workers)))

        logger.info(
            f"Renewal sweep finished: {result.renewed} renewed, {result.failed} failed, "
            f"{result.retired} retired, {result.skipped} skipped",
            extra={"action": "sweep", "status": "cancelled" if result.cancelled else "ok"}
        )
        return result

    async def _sweep_one(self, subscription: Subscription, result: SweepResult) -> None:
        subscription_id = subscription.external_id
        try:
            form = self.form_repo.get_form(subscription.form_id)
            if form is None:
                logger.warning(
                    f"Form not found for subscription {subscription_id}",
                    extra={"subscription_id": subscription_id, "form_id": subscription.form_id}
                )
                result.skipped += 1
                return

            try:
                credential = await self.credentials.get_valid_credential(form.owner_id)
            except AuthExpiredError as e:
                renewed = self._record_failure(subscription, e.message)
            except NotFoundError:
                logger.warning(
                    f"Owner credential not found for subscription {subscription_id}",
                    extra={"subscription_id": subscription_id, "account_id": form.owner_id}
                )
                result.skipped += 1
                return
            else:
                renewed = await self.renew(subscription, credential)
        except Exception as e:
            logger.exception(
                f"Unexpected error renewing subscription {subscription_id}: {e}",
                extra={"subscription_id": subscription_id}
            )
            result.failed += 1
            return

        if renewed.error_count == 0:
            result.renewed += 1
        else:
            result.failed += 1
            if not renewed.active:
                result.retired += 1

    # =========================================================================
    # Retirement
    # =========================================================================

    async def unregister(self, subscription: Subscription, credential: Optional[Credential]) -> Subscription:
        """
        Delete the webhook in Airtable (best effort) and retire it locally
        """
        if credential is not None:
            try:
                await self.client.delete_subscription(
                    credential.access_token, subscription.base_id, subscription.external_id
                )
            except DomainError as e:
                logger.warning(
                    f"Could not delete subscription {subscription.external_id} in Airtable: {e.message}",
                    extra={"subscription_id": subscription.external_id, "error_code": e.error_code}
                )

        retired = self.repo.update_subscription(subscription.external_id, {"active": False})
        logger.info(
            f"Unregistered subscription {subscription.external_id}",
            extra={"subscription_id": subscription.external_id, "form_id": subscription.form_id, "action": "retire"}
        )
        return retired

    async def retire_all_for_form(self, form: FormDefinition, credential: Optional[Credential]) -> int:
        """Unregister active subscriptions of a form and drop their documents"""
        for subscription in self.repo.list_for_form(form.form_id):
            if subscription.active:
                await self.unregister(subscription, credential)
        return self.repo.delete_for_form(form.form_id)


# Global subscription service instance
_subscription_service: Optional[SubscriptionService] = None


def get_subscription_service() -> SubscriptionService:
    """Get global subscription service, shared by routes and the scheduler"""
    global _subscription_service
    if _subscription_service is None:
        _subscription_service = SubscriptionService()
    return _subscription_service

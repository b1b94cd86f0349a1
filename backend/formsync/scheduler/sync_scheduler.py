"""Sync Scheduler - Daily renewal sweep of Airtable webhook subscriptions

Airtable expires webhooks after 7 days without a refresh; the sweep renews
every active subscription not pinged for 6 days.
"""
import asyncio
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from ..config.settings import settings
from ..domain.models import SweepResult
from ..services.subscription_service import SubscriptionService, get_subscription_service
from ..utils.logger import get_logger, set_correlation_id
from ..utils.idgen import generate_correlation_id

logger = get_logger(__name__)


class SyncScheduler:
    """
    APScheduler wrapper running the renewal sweep

    At most one sweep runs at a time; an overlapping trigger is skipped.
    stop() asks a running sweep to halt before its next subscription.
    """

    def __init__(self, subscriptions: Optional[SubscriptionService] = None):
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._subscriptions = subscriptions
        self._is_running = False
        self._sweep_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()

    @property
    def subscriptions(self) -> SubscriptionService:
        if self._subscriptions is None:
            self._subscriptions = get_subscription_service()
        return self._subscriptions

    def start(self) -> None:
        """Start the scheduler"""
        if self._is_running:
            logger.warning("Scheduler already running")
            return

        self._stop_event.clear()
        self.scheduler = AsyncIOScheduler(timezone="UTC")

        self.scheduler.add_job(
            self.run_sweep,
            trigger=CronTrigger(hour=settings.sweep_hour, minute=0, timezone="UTC"),
            id="renew_subscriptions",
            name="Renew webhook subscriptions",
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )

        self.scheduler.start()
        self._is_running = True
        logger.info(
            f"Scheduler started, renewal sweep daily at {settings.sweep_hour:02d}:00 UTC",
            extra={"action": "schedule"}
        )

    def stop(self) -> None:
        """Stop the scheduler and cancel a running sweep between items"""
        self._stop_event.set()
        if self.scheduler:
            self.scheduler.shutdown(wait=False)
            self._is_running = False
            logger.info("Scheduler stopped")

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running"""
        return self._is_running

    async def run_sweep(self) -> Optional[SweepResult]:
        """
        Run one renewal sweep

        Returns:
            Sweep summary, or None if another sweep was still running
        """
        if self._sweep_lock.locked():
            logger.warning("Renewal sweep still running, skipping this run", extra={"action": "sweep"})
            return None

        async with self._sweep_lock:
            set_correlation_id(generate_correlation_id())
            try:
                return await self.subscriptions.scheduled_sweep(stop_event=self._stop_event)
            except Exception as e:
                logger.exception(f"Error in renewal sweep job: {e}", extra={"action": "sweep"})
                return None


# Global scheduler instance
_scheduler: Optional[SyncScheduler] = None


def get_scheduler() -> SyncScheduler:
    """Get or create scheduler instance"""
    global _scheduler
    if _scheduler is None:
        _scheduler = SyncScheduler()
    return _scheduler


def start_scheduler() -> None:
    """Start the global scheduler"""
    scheduler = get_scheduler()
    scheduler.start()


def stop_scheduler() -> None:
    """Stop the global scheduler"""
    global _scheduler
    if _scheduler:
        _scheduler.stop()
        _scheduler = None

"""Cron-driven reconciliation scheduler.

Runs one reconciliation per cron tick over the previous full day. Each
run executes in its own asyncio task, so cron runs and manual runs may
overlap. The schedule can be replaced while the scheduler is running.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Set, Tuple

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .cron import build_cron_trigger
from .gateway import BillingGatewayBase
from .models import ReconciliationSettings, ReportRecord
from .notifier import ReconciliationNotifier
from .service import ReconciliationService
from .settings import SettingsManager

logger = logging.getLogger(__name__)

JOB_ID = "billing_reconciliation"


def previous_day_window(now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Return [yesterday 00:00, today 00:00) relative to ``now`` (UTC)."""
    now = now or datetime.utcnow()
    end = datetime(now.year, now.month, now.day)
    return end - timedelta(hours=24), end


class ReconciliationScheduler:
    """Billing reconciliation scheduler.

    State machine: stopped -> started -> stopped. ``update_schedule`` is
    allowed in either state; when started, the installed trigger is
    replaced in place.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: SettingsManager,
        gateway: Optional[BillingGatewayBase] = None,
        notifier: Optional[ReconciliationNotifier] = None,
        timezone: str = "UTC",
    ):
        """Initialize scheduler.

        Args:
            session_factory: Factory for per-run database sessions
            settings: Shared settings manager
            gateway: Billing gateway passed to every run
            notifier: Notification sink passed to every run
            timezone: Timezone the cron expression is evaluated in
        """
        self.session_factory = session_factory
        self.settings = settings
        self.gateway = gateway
        self.notifier = notifier
        self.timezone = timezone

        self.scheduler: Optional[AsyncIOScheduler] = None
        self._job = None
        self._in_flight: Set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        return self._job is not None

    async def start(self) -> None:
        """Install the recurring trigger from the current schedule.

        Raises:
            InvalidScheduleError: If the configured schedule is invalid.
        """
        if self._job is not None:
            logger.warning("Reconciliation scheduler already started")
            return

        schedule = self.settings.snapshot().schedule
        trigger = build_cron_trigger(schedule, self.timezone)

        if self.scheduler is None:
            self.scheduler = AsyncIOScheduler(
                timezone=self.timezone,
                event_loop=asyncio.get_running_loop(),
            )

        self._job = self.scheduler.add_job(
            self._tick,
            trigger=trigger,
            id=JOB_ID,
            replace_existing=True,
            coalesce=True,
        )
        if not self.scheduler.running:
            self.scheduler.start()
        logger.info(f"Reconciliation scheduler started with schedule {schedule!r}")

    def stop(self) -> None:
        """Remove the trigger. In-flight runs are not cancelled."""
        if self._job is not None:
            self.scheduler.remove_job(JOB_ID)
            self._job = None
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info(f"Reconciliation scheduler stopped ({len(self._in_flight)} runs in flight)")

    async def _tick(self) -> None:
        settings = self.settings.snapshot()
        if not settings.enabled:
            logger.info("Reconciliation disabled - skipping scheduled run")
            return
        start, end = previous_day_window()
        self._track(self._run_scheduled(start, end))

    def _track(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    async def _run_scheduled(self, start: datetime, end: datetime) -> None:
        try:
            await self.run_reconciliation(start, end)
        except Exception as e:
            logger.error(f"Scheduled reconciliation for {start} - {end} failed: {e}")

    async def run_reconciliation(self, start: datetime, end: datetime) -> ReportRecord:
        """Run one reconciliation in a fresh session with current settings."""
        async with self.session_factory() as session:
            service = ReconciliationService(
                session,
                gateway=self.gateway,
                settings=self.settings.snapshot(),
                notifier=self.notifier,
            )
            return await service.run_reconciliation(start, end)

    async def run_manual(self, start: datetime, end: datetime) -> ReportRecord:
        """Run a reconciliation now over caller-supplied bounds.

        The run continues even if the caller is cancelled.

        Raises:
            ReportCreationError: If the report could not be created.
        """
        logger.info(f"Manual reconciliation requested for {start} - {end}")
        task = self._track(self.run_reconciliation(start, end))
        return await asyncio.shield(task)

    async def update_schedule(self, expression: str) -> None:
        """Persist a new schedule and replace the installed trigger.

        Raises:
            InvalidScheduleError: If the expression is invalid; nothing changes.
            StoreError: If persisting fails; the trigger is unchanged.
        """
        await self.update_settings({"schedule": expression})
        logger.info(f"Reconciliation schedule updated to {expression!r}")

    async def update_settings(self, changes: Dict[str, Any]) -> ReconciliationSettings:
        """Apply a settings change, replacing the trigger if the schedule changed.

        The whole change is validated and persisted before the trigger is
        replaced; a rejected change leaves settings and trigger as they were.

        Args:
            changes: Partial settings values.

        Returns:
            The updated settings.

        Raises:
            ValueError: If any value is invalid, including the schedule.
            StoreError: If persisting fails.
        """
        async with self.settings.lock:
            trigger = None
            if "schedule" in changes:
                trigger = build_cron_trigger(changes["schedule"], self.timezone)
            updated = await self.settings.apply_locked(changes)
            if trigger is not None and self._job is not None:
                self._job = self.scheduler.reschedule_job(JOB_ID, trigger=trigger)
        return updated

    def next_run_time(self) -> Optional[datetime]:
        """Return the next fire time, or None if no trigger is installed."""
        if self._job is None:
            return None
        job = self.scheduler.get_job(JOB_ID)
        if job is None:
            return None
        return getattr(job, "next_run_time", None)

    async def wait_for_in_flight(self, timeout: float) -> bool:
        """Wait up to ``timeout`` seconds for in-flight runs.

        Returns:
            True if every run finished in time.
        """
        if not self._in_flight:
            return True
        _, pending = await asyncio.wait(set(self._in_flight), timeout=timeout)
        if pending:
            logger.warning(f"{len(pending)} reconciliation runs still in flight after {timeout}s")
            return False
        return True

"""Background expiration checks.

Runs the expiration reconciliation followed by notification generation on
an hourly schedule, every morning, and once shortly after startup. A
process-local guard makes sure two runs never overlap: a trigger that fires
while a run is in progress is skipped, not queued.
"""

import logging
from datetime import date, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .config import settings
from .database.crud import get_system_actor
from .database.engine import AsyncSessionLocal
from .ledger.notifications import generate_notifications
from .ledger.reconciliation import process_expired_batches
from .ledger.schemas import ReconciliationResult
from .utils import local_now

logger = logging.getLogger(__name__)


class RunGuard:
    """Single-slot, non-blocking guard for a recurring job.

    Every trigger runs on the one event loop, and the check-and-set in
    :meth:`try_acquire` has no await in between, so a plain flag is enough.
    """

    def __init__(self) -> None:
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def try_acquire(self) -> bool:
        if self._running:
            return False
        self._running = True
        return True

    def release(self) -> None:
        self._running = False


expiration_guard = RunGuard()


async def run_expiration_check(
    session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
    today: Optional[date] = None,
    guard: Optional[RunGuard] = None,
) -> Optional[ReconciliationResult]:
    """Reconcile expired batches, then refresh notifications.

    Returns the reconciliation counts, or None when the run was skipped
    because another one was in progress or when it failed.
    """
    guard = guard or expiration_guard
    if not guard.try_acquire():
        logger.warning("Expiration check already running, skipping this trigger")
        return None

    try:
        logger.info("Running scheduled expiration check")
        async with session_factory() as session:
            actor = await get_system_actor(session)
            result = await process_expired_batches(session, actor.id, today=today)

        async with session_factory() as session:
            created = await generate_notifications(session, today=today)

        logger.info(
            f"Expiration check finished: {result.processed_batches} batch(es) expired, "
            f"{len(created)} notification(s) created"
        )
        return result
    except Exception:
        logger.exception("Scheduled expiration check failed")
        return None
    finally:
        guard.release()


class ExpirationScheduler:
    """Owns the APScheduler instance that drives :func:`run_expiration_check`."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
        tz_name: Optional[str] = None,
    ) -> None:
        self.session_factory = session_factory
        self.timezone = ZoneInfo(tz_name or settings.timezone)
        self.scheduler = AsyncIOScheduler(timezone=self.timezone)

    async def _run(self) -> None:
        await run_expiration_check(self.session_factory)

    def configure(self) -> None:
        """Register the hourly, daily and startup jobs without starting."""
        job_defaults = {"max_instances": 1, "coalesce": True, "replace_existing": True}

        self.scheduler.add_job(
            self._run,
            CronTrigger.from_crontab(settings.expiration_hourly_cron, timezone=self.timezone),
            id="expiration_hourly",
            name="Hourly expiration check",
            **job_defaults,
        )
        self.scheduler.add_job(
            self._run,
            CronTrigger.from_crontab(settings.expiration_daily_cron, timezone=self.timezone),
            id="expiration_daily",
            name="Daily expiration check",
            **job_defaults,
        )
        self.scheduler.add_job(
            self._run,
            DateTrigger(
                run_date=local_now(self.timezone.key) + timedelta(seconds=settings.startup_check_delay_seconds),
                timezone=self.timezone,
            ),
            id="expiration_startup",
            name="Startup expiration check",
            **job_defaults,
        )

    def start(self) -> None:
        self.configure()
        self.scheduler.start()
        logger.info(
            f"Expiration scheduler started (hourly '{settings.expiration_hourly_cron}', "
            f"daily '{settings.expiration_daily_cron}', startup in {settings.startup_check_delay_seconds}s)"
        )

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Expiration scheduler stopped")

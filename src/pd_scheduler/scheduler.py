"""In-process distribution scheduler (APScheduler, asyncio flavour).

One interval job calls the run orchestrator with caller label "scheduler".
``max_instances=1`` stops this process from stacking runs when one overruns
the interval; other processes and manual triggers may still overlap, which
the engine tolerates.
"""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config.settings import settings
from src.pd_common.database import async_session_factory
from src.pd_common.errors import DistributionScanError
from src.pd_distribution.application.service import DistributionRunService

logger = logging.getLogger(__name__)

JOB_ID = "profit_distribution_run"
SCHEDULER_CALLER = "scheduler"

_scheduler: AsyncIOScheduler | None = None


async def run_distribution_job(service: DistributionRunService | None = None) -> None:
    service = service or DistributionRunService()
    async with async_session_factory() as session:
        try:
            result = await service.run(session, SCHEDULER_CALLER)
        except DistributionScanError as exc:
            # already logged with traceback by the service; next tick retries
            logger.error("Scheduled distribution run aborted: %s", exc.message)
            return
    logger.info("Scheduled distribution run: %s", result.message)


def start_scheduler(interval_minutes: int | None = None) -> AsyncIOScheduler:
    """Start (once) the background scheduler on the running event loop."""
    global _scheduler
    if _scheduler is not None and _scheduler.running:
        return _scheduler

    minutes = interval_minutes or settings.SCHEDULER_INTERVAL_MINUTES
    scheduler = AsyncIOScheduler(timezone="UTC")
    scheduler.add_job(
        run_distribution_job,
        trigger=IntervalTrigger(minutes=minutes),
        id=JOB_ID,
        name="Catch-up profit distribution",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    _scheduler = scheduler
    logger.info("Distribution scheduler started (every %d min)", minutes)
    return scheduler


def shutdown_scheduler() -> None:
    global _scheduler
    if _scheduler is None:
        return
    if _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info("Distribution scheduler stopped")
    _scheduler = None

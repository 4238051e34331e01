"""APScheduler job definitions."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from catalog_pipeline.config import settings
from catalog_pipeline.worker.bus import EventBus
from catalog_pipeline.worker.events import (
    EMBEDDINGS_REQUESTED,
    NORMALIZE_REQUESTED,
    PDF_PARSE_REQUESTED,
    scope_event,
)

logger = logging.getLogger(__name__)

BACKLOG_EVENTS = (PDF_PARSE_REQUESTED, NORMALIZE_REQUESTED, EMBEDDINGS_REQUESTED)


async def sweep_backlogs(bus: EventBus) -> None:
    """Emit an unscoped event for every backlog component."""
    for name in BACKLOG_EVENTS:
        await bus.send(scope_event(name))
    logger.info(f"Backlog sweep queued: {', '.join(BACKLOG_EVENTS)}")


def setup_scheduler(bus: EventBus) -> AsyncIOScheduler:
    """
    Setup and configure APScheduler.

    Scheduling overview:
    - Backlog sweep runs every settings.backlog_sweep_interval_minutes when
      settings.backlog_sweep_enabled is set, re-triggering PDF enrichment,
      normalization and embeddings across all scopes

    Returns:
        Configured scheduler instance
    """
    scheduler = AsyncIOScheduler()
    interval = max(1, int(settings.backlog_sweep_interval_minutes))

    if settings.backlog_sweep_enabled:
        scheduler.add_job(
            sweep_backlogs,
            IntervalTrigger(minutes=interval),
            args=[bus],
            id="backlog_sweep",
            name="Re-trigger backlog batches",
            max_instances=1,  # Prevent overlapping runs
            coalesce=True,
            misfire_grace_time=600,
            replace_existing=True,
        )

    logger.info(f"Scheduler configured with {len(scheduler.get_jobs())} jobs")
    return scheduler

"""Shared background scheduler for liveness heartbeats.

Every streaming session arms one interval job on this scheduler (see
`services.stream_decoder.liveness`). Jobs are removed as soon as the session
reaches a terminal state, so an idle process carries no jobs.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import (  # type: ignore[import-untyped]
    AsyncIOScheduler,
)


logger = logging.getLogger(__name__)

scheduler: AsyncIOScheduler | None = None


def setup_scheduler() -> AsyncIOScheduler:
    """Create the process-wide scheduler (idempotent)."""
    global scheduler
    if scheduler is None:
        # Stacked ticks for one session would advance it more than one stage
        scheduler = AsyncIOScheduler(
            timezone="UTC",
            job_defaults={"coalesce": True, "max_instances": 1},
        )
        logger.info("Liveness scheduler configured")
    return scheduler


def get_scheduler() -> AsyncIOScheduler:
    """Return the shared scheduler, creating it on first use."""
    return scheduler or setup_scheduler()


@asynccontextmanager
async def scheduler_lifespan() -> AsyncGenerator[AsyncIOScheduler, None]:
    """Context manager for scheduler lifecycle.

    Usage:
        async with scheduler_lifespan() as sched:
            client = OllamaStreamClient(scheduler=sched)
            ...
    """
    global scheduler
    sched = get_scheduler()
    if not sched.running:
        sched.start()
        logger.info("Liveness scheduler started")
    try:
        yield sched
    finally:
        if sched.running:
            sched.shutdown(wait=False)
            logger.info("Liveness scheduler shut down")
        # The scheduler binds to the running loop on start; the next lifespan
        # needs a fresh one.
        scheduler = None

"""Centxo — Scheduler Jobs.

APScheduler interval job that drops expired entries from the in-memory
cache store. Redis expires keys itself, so the sweep is a no-op there.
"""

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from centxo.cache.store import get_cache_store
from centxo.config import settings
from centxo.core.logging import get_logger

logger = get_logger("scheduler")

scheduler = AsyncIOScheduler()


async def cache_sweep_job():
    """Remove expired cache entries."""
    removed = await get_cache_store().sweep()
    if removed:
        logger.info(f"Cache sweep removed {removed} expired entries")


def start_scheduler():
    """Configure and start the scheduler."""
    if not settings.scheduler_enabled:
        logger.info("Scheduler disabled via config")
        return

    scheduler.add_job(
        cache_sweep_job,
        "interval",
        minutes=settings.cache_sweep_minutes,
        id="cache_sweep",
        replace_existing=True,
        misfire_grace_time=60,
    )
    scheduler.start()
    logger.info(f"Scheduler started. Cache sweep every {settings.cache_sweep_minutes} min")


def stop_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")

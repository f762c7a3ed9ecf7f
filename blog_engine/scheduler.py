"""Scheduler: periodic housekeeping using APScheduler."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

if TYPE_CHECKING:
    from blog_engine.config import EngineConfig
    from blog_engine.pipeline.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "rate_limit_sweep"


def sweep_rate_limits(rate_limiter: RateLimiter) -> None:
    """Drop expired rate-limit windows so the map stays bounded."""
    try:
        removed = rate_limiter.sweep(time.monotonic())
    except Exception as e:
        logger.error(f"Rate limit sweep failed: {e}", exc_info=True)
        return
    if removed:
        logger.info(f"Rate limit sweep removed {removed} record(s), {len(rate_limiter)} active")


def setup_scheduler(config: EngineConfig, rate_limiter: RateLimiter) -> AsyncIOScheduler:
    """Build and configure the scheduler from the engine config."""
    scheduler = AsyncIOScheduler()

    interval = config.rate_limit.sweep_interval_seconds
    scheduler.add_job(
        sweep_rate_limits,
        trigger=IntervalTrigger(seconds=interval),
        args=[rate_limiter],
        id=SWEEP_JOB_ID,
        replace_existing=True,
    )
    logger.info(f"Scheduled rate limit sweep every {interval}s")

    return scheduler

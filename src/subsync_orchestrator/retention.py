from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .config import RetentionConfig
from .models import RetentionResult
from .state.database import RunDatabase

logger = logging.getLogger(__name__)


def run_retention_sweep(
    db: RunDatabase, retention: RetentionConfig, *, now: Optional[int] = None,
) -> RetentionResult:
    """Trim logs of older runs, delete very old runs, and reclaim space.

    Logs are trimmed first so runs that are about to be kept get smaller even
    when nothing is old enough to delete.
    """
    result = RetentionResult()
    result.trimmed = db.trim_old_logs(
        retention.trim_logs_days, retention.max_log_size_bytes, now=now,
    )
    if result.trimmed:
        logger.info("Trimmed logs for %d runs", result.trimmed)

    result.deleted = db.delete_old_runs(retention.keep_runs_days, now=now)
    if result.deleted:
        logger.info("Deleted %d old runs", result.deleted)
        db.vacuum()
        result.vacuumed = True
        logger.info("Database vacuumed")

    result.stats = db.get_database_stats()
    logger.info("Database size: %.2f MB", result.stats.size_bytes / 1024 / 1024)
    return result


async def retention_loop(
    db: RunDatabase,
    retention: RetentionConfig,
    *,
    initial_delay_s: float = 5.0,
) -> None:
    """Sweep shortly after startup, then every ``cleanup_interval_hours``.

    Runs until cancelled. A failing sweep is logged and retried next interval.
    """
    delay = initial_delay_s
    interval_s = retention.cleanup_interval_hours * 3600
    while True:
        await asyncio.sleep(delay)
        delay = interval_s
        logger.info("Running database cleanup...")
        try:
            run_retention_sweep(db, retention)
        except Exception:
            logger.exception("Database cleanup failed")

"""
Long-running mode.

One store, engine and coordinator live for the whole process. Runs start on a
cron schedule and a retention sweep runs shortly after startup and then every
``CLEANUP_INTERVAL_HOURS``.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Mapping, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from .config import CRON_DISABLED, Settings
from .coordinator import ProcessingCoordinator
from .discovery import find_matching_video, find_subtitle_files
from .engines import SyncEngine
from .exceptions import PreflightError, RunInProgressError, SubsyncError
from .preflight.checks import run_preflight
from .processing import Matcher, ProcessingEngine, Scanner
from .retention import retention_loop
from .state.store import StateStore
from .utils.logger import configure_file_logging

logger = logging.getLogger(__name__)

SCHEDULED_RUN_JOB_ID = "scheduled-run"


async def scheduled_run(coordinator: ProcessingCoordinator, schedule: str) -> None:
    logger.info("Starting scheduled run (%s)", schedule)
    try:
        await coordinator.start_run()
    except RunInProgressError:
        logger.warning("Scheduled run skipped: another run is already in progress")
    except SubsyncError as exc:
        logger.error("Scheduled run failed: %s", exc)


def build_scheduler(
    coordinator: ProcessingCoordinator,
    schedule: str,
    *,
    event_loop: Optional[asyncio.AbstractEventLoop] = None,
) -> Optional[AsyncIOScheduler]:
    """Return a scheduler that starts a run on every *schedule* tick.

    Returns ``None`` when *schedule* is ``"disabled"``. The scheduler is not
    started.
    """
    if schedule == CRON_DISABLED:
        logger.info("Automatic scheduling disabled")
        return None

    scheduler = AsyncIOScheduler(event_loop=event_loop)
    scheduler.add_job(
        scheduled_run,
        CronTrigger.from_crontab(schedule),
        args=[coordinator, schedule],
        id=SCHEDULED_RUN_JOB_ID,
        max_instances=1,
        coalesce=True,
    )
    logger.info("Scheduled runs: %s", schedule)
    return scheduler


async def serve(
    cfg: Settings,
    *,
    engines: Optional[Mapping[str, SyncEngine]] = None,
    scanner: Scanner = find_subtitle_files,
    matcher: Matcher = find_matching_video,
    skip_preflight: bool = False,
    stop_event: Optional[asyncio.Event] = None,
    cleanup_delay_s: float = 5.0,
) -> None:
    """Serve scheduled runs and periodic cleanup until *stop_event* is set.

    Cancelling the awaiting task also shuts down. On the way out an active
    run is stopped and recorded as cancelled before the store is closed.
    """
    if cfg.LOG_DIR:
        configure_file_logging(Path(cfg.LOG_DIR))

    if not skip_preflight:
        pf = run_preflight(cfg)
        if not pf.ok:
            raise PreflightError(pf.results)

    Path(cfg.DB_PATH).parent.mkdir(parents=True, exist_ok=True)
    store = StateStore(cfg.DB_PATH, skip_threshold=cfg.FAILURE_SKIP_THRESHOLD)
    try:
        engine = ProcessingEngine(cfg, engines=engines, scanner=scanner, matcher=matcher)
        coordinator = ProcessingCoordinator(engine, store, matcher=matcher)
        stop_event = stop_event or asyncio.Event()

        scheduler = build_scheduler(
            coordinator, cfg.CRON_SCHEDULE, event_loop=asyncio.get_running_loop(),
        )
        cleanup = asyncio.create_task(
            retention_loop(store.db, cfg.retention_config(), initial_delay_s=cleanup_delay_s),
            name="subsync-cleanup",
        )
        logger.info("Serving (database %s)", cfg.DB_PATH)
        try:
            if scheduler is not None:
                scheduler.start()
            await stop_event.wait()
        finally:
            logger.info("Shutting down...")
            if scheduler is not None and scheduler.running:
                scheduler.shutdown(wait=False)
            cleanup.cancel()
            await asyncio.gather(cleanup, return_exceptions=True)
            if coordinator.is_running():
                coordinator.stop_run()
                await coordinator.wait_until_idle()
    finally:
        store.close()

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Mapping, Optional

from .config import ScanConfig, Settings
from .coordinator import ProcessingCoordinator
from .discovery import find_matching_video, find_subtitle_files
from .engines import SyncEngine
from .exceptions import PreflightError, SubsyncError
from .models import RunResult
from .preflight.checks import run_preflight
from .processing import Matcher, ProcessingEngine, Scanner
from .state.store import StateStore
from .utils.logger import configure_file_logging

logger = logging.getLogger(__name__)


async def run_once(
    cfg: Settings,
    scan_config: Optional[ScanConfig] = None,
    *,
    engines: Optional[Mapping[str, SyncEngine]] = None,
    scanner: Scanner = find_subtitle_files,
    matcher: Matcher = find_matching_video,
    skip_preflight: bool = False,
) -> RunResult:
    """Scan once, process every file, and return the finished run's counters.

    Raises :class:`PreflightError` if strict preflight checks fail. If the
    awaiting task is cancelled (Ctrl+C), the run is stopped and recorded as
    cancelled before the cancellation propagates.
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

        try:
            run_id = await coordinator.start_run(scan_config)
            await coordinator.wait_until_idle()
        except asyncio.CancelledError:
            if coordinator.is_running():
                logger.warning(
                    "Interrupted; stopping run %s", coordinator.current_run_id or "(scanning)",
                )
                # Queued if the scan has not reported its files yet
                coordinator.stop_run()
                await coordinator.wait_until_idle()
            raise

        run = store.get_run(run_id)
        if run is None:
            raise SubsyncError(f"Run {run_id} disappeared before it could be reported")
        logger.info(
            "Run %s %s", run_id, run.status.value,
            extra={"RUN_ID": run_id, "TOTAL_FILES": run.total_files},
        )
        return RunResult(
            run_id=run.id,
            status=run.status,
            total_files=run.total_files,
            completed=run.completed,
            skipped=run.skipped,
            failed=run.failed,
            completed_engines=run.completed_engines,
            total_engines=run.total_engines,
        )
    finally:
        store.close()

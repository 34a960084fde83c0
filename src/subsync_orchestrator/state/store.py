"""
Run/file state store.

Wraps :class:`RunDatabase` with the run lifecycle (one "current" run at a
time), engine failure tracking, and synchronous change notifications for
external listeners:

- ``run:started`` / ``run:completed`` / ``run:cancelled`` / ``run:updated`` -> ``(run)``
- ``run:log`` -> ``(run_id, line)``
- ``file:updated`` -> ``(file, run)``
- ``file:cleared`` -> ``(file)``

Listeners run before the mutating call returns, so state read right after an
awaited call is never stale.
"""
from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import Callable, Optional, Sequence

from ..events import EventEmitter, Listener
from ..models import (
    EngineResult,
    FailureStats,
    FileResult,
    FileStatus,
    Run,
    RunStatus,
    TERMINAL_FILE_STATUSES,
)
from .database import RunDatabase, now_ms
from .failure_tracker import DEFAULT_SKIP_THRESHOLD, FailureTracker

logger = logging.getLogger(__name__)

RUN_COUNTERS = ("completed", "skipped", "failed")


class StateStore:
    def __init__(
        self,
        db_path: str | Path,
        *,
        skip_threshold: int = DEFAULT_SKIP_THRESHOLD,
    ) -> None:
        self.db = RunDatabase(db_path)
        self.failures = FailureTracker(self.db, threshold=skip_threshold)
        self.events = EventEmitter()
        self._current_run_id: Optional[str] = None
        self._recover_incomplete_runs()

    def on(self, event: str, callback: Listener) -> Callable[[], None]:
        return self.events.on(event, callback)

    def off(self, event: str, callback: Listener) -> None:
        self.events.off(event, callback)

    def _recover_incomplete_runs(self) -> None:
        """Cancel runs a previous process left in ``running``.

        The real stop time is unknown, so ``end_time`` is set to ``start_time``.
        """
        for run in self.db.get_runs_by_status(RunStatus.RUNNING):
            logger.warning("Found incomplete run from previous session: %s", run.id)
            self.db.update_run(run.id, status=RunStatus.CANCELLED, end_time=run.start_time)
            logger.info("Marked run %s as cancelled", run.id)

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def start_run(self, total_files: int, enabled_engines: Sequence[str]) -> str:
        run_id = str(uuid.uuid4())
        self.db.create_run(
            run_id, total_files, total_engines=total_files * len(enabled_engines),
        )
        self._current_run_id = run_id
        run = self._require_run(run_id)
        logger.info(
            "Run %s started: %d files x %d engines", run_id, total_files, len(enabled_engines),
        )
        self.events.emit("run:started", run)
        return run_id

    def complete_run(self, run_id: str) -> Run:
        return self._finish_run(run_id, RunStatus.COMPLETED, "run:completed")

    def cancel_run(self, run_id: str) -> Run:
        return self._finish_run(run_id, RunStatus.CANCELLED, "run:cancelled")

    def _finish_run(self, run_id: str, status: RunStatus, event: str) -> Run:
        self.db.update_run(run_id, status=status, end_time=now_ms())
        if self._current_run_id == run_id:
            self._current_run_id = None
        run = self._require_run(run_id)
        self.events.emit(event, run)
        return run

    def increment_run_counter(self, run_id: str, counter: str) -> None:
        if counter not in RUN_COUNTERS:
            raise ValueError(f"counter must be one of {RUN_COUNTERS}, got {counter!r}")
        self.db.increment_run_counter(run_id, counter)
        self._emit_run_update(run_id)

    def increment_completed_engines(self, run_id: str) -> None:
        self.db.increment_run_counter(run_id, "completed_engines")
        self._emit_run_update(run_id)

    def append_log(self, run_id: str, line: str) -> None:
        self.db.append_run_log(run_id, line + "\n")
        self.events.emit("run:log", run_id, line)

    def _emit_run_update(self, run_id: str) -> None:
        run = self.db.get_run(run_id)
        if run is not None:
            self.events.emit("run:updated", run)

    def _require_run(self, run_id: str) -> Run:
        run = self.db.get_run(run_id)
        if run is None:
            raise KeyError(f"Run not found: {run_id}")
        return run

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def add_file(self, run_id: str, file_path: str, video_path: Optional[str]) -> None:
        self.db.create_file_result(run_id, file_path, video_path)
        self._emit_file_update(run_id, file_path)

    def update_file_status(
        self,
        run_id: str,
        file_path: str,
        status: FileStatus,
        current_engine: Optional[str] = None,
    ) -> None:
        self.db.update_file_result(
            run_id, file_path, status=status, current_engine=current_engine,
        )
        self._emit_file_update(run_id, file_path)

    def update_file_engine(
        self, run_id: str, file_path: str, engine: str, result: EngineResult
    ) -> None:
        """Merge one engine's result into the file's engine map."""
        if self.db.merge_engine_result(run_id, file_path, engine, result):
            self._emit_file_update(run_id, file_path)
        else:
            logger.debug("No file result for %s in run %s; engine result dropped", file_path, run_id)

    def _emit_file_update(self, run_id: str, file_path: str) -> None:
        file = self.db.get_file_result(run_id, file_path)
        if file is not None:
            self.events.emit("file:updated", file, self.db.get_run(run_id))

    def clear_completed_files(self) -> int:
        """Tell listeners to drop finished files of the current run from view."""
        if self._current_run_id is None:
            return 0
        cleared = 0
        for file in self.db.get_file_results(self._current_run_id):
            if file.status in TERMINAL_FILE_STATUSES:
                self.events.emit("file:cleared", file)
                cleared += 1
        return cleared

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def current_run_id(self) -> Optional[str]:
        return self._current_run_id

    def get_current_run(self) -> Optional[Run]:
        return self.db.get_run(self._current_run_id) if self._current_run_id else None

    def get_run(self, run_id: str) -> Optional[Run]:
        return self.db.get_run(run_id)

    def get_run_history(self, limit: int = 50) -> list[Run]:
        return self.db.get_run_history(limit)

    def get_file_results(self, run_id: str) -> list[FileResult]:
        return self.db.get_file_results(run_id)

    # ------------------------------------------------------------------
    # Engine failure tracking
    # ------------------------------------------------------------------

    def record_engine_failure(self, file_path: str, engine: str) -> None:
        self.failures.record_failure(file_path, engine)

    def record_engine_success(self, file_path: str, engine: str) -> None:
        self.failures.record_success(file_path, engine)

    def reset_skip_status(self, file_path: str, engine: Optional[str] = None) -> int:
        return self.failures.reset_skip(file_path, engine)

    def get_skipped_engines(self, file_path: str) -> list[str]:
        return self.failures.list_skipped(file_path)

    def get_failure_stats(self) -> FailureStats:
        return self.db.get_failure_stats()

    def close(self) -> None:
        self.db.close()

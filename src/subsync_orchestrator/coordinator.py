"""
Processing coordinator.

Owns the "one active run" invariant and mirrors every processing-engine
lifecycle event into the state store. All state here is touched only from the
event loop thread, and no check is separated from its mutation by an
``await``, so the in-flight task reference acts as the run lock.
"""
from __future__ import annotations

import asyncio
import logging
import os
from typing import Optional

from .config import ScanConfig
from .discovery import find_matching_video
from .exceptions import (
    NoActiveRunError,
    RunInProgressError,
    RunNotStartedError,
    RunStoppedDuringInitError,
)
from .models import EngineResult, FileStatus, RunStatus
from .processing import Matcher, ProcessingEngine
from .state.store import StateStore

logger = logging.getLogger(__name__)


class ProcessingCoordinator:
    def __init__(
        self,
        engine: ProcessingEngine,
        store: StateStore,
        *,
        matcher: Matcher = find_matching_video,
    ) -> None:
        self.engine = engine
        self.store = store
        self._matcher = matcher
        self.enabled_engines: list[str] = list(engine.enabled_engines)

        self._processing_task: Optional[asyncio.Task] = None
        self._current_run_id: Optional[str] = None
        self._stop_requested = False

        self.engine.failure_tracker = store.failures
        self._wire_engine_events()

    def _wire_engine_events(self) -> None:
        on = self.engine.on
        on("log", self._on_log)
        on("run:files_found", self._on_files_found)
        on("file:started", self._on_file_started)
        on("file:engine_started", self._on_engine_started)
        on("file:engine_completed", self._on_engine_completed)
        on("file:completed", self._on_file_completed)
        on("file:skipped", self._on_file_skipped)
        on("file:no_video", self._on_file_failed)
        on("file:failed", self._on_file_failed)

    # ------------------------------------------------------------------
    # Engine event -> store mirroring
    # ------------------------------------------------------------------

    def _on_log(self, line: str) -> None:
        if self._current_run_id:
            self.store.append_log(self._current_run_id, line)

    def _on_files_found(self, files: list[str]) -> None:
        run_id = self.store.start_run(len(files), self.enabled_engines)
        self._current_run_id = run_id
        for path in files:
            self.store.add_file(run_id, path, self._matcher(path))
        if self._stop_requested:
            logger.info("Stop was requested during scan. Cancelling run: %s", run_id)
            self.engine.stop_all_processing(files)
            self.store.cancel_run(run_id)

    def _on_file_started(self, srt_path: str, video_path: Optional[str] = None) -> None:
        if self._current_run_id:
            self.store.update_file_status(self._current_run_id, srt_path, FileStatus.PROCESSING)

    def _on_engine_started(self, srt_path: str, engine: str) -> None:
        if self._current_run_id:
            self.store.update_file_status(
                self._current_run_id, srt_path, FileStatus.PROCESSING, current_engine=engine,
            )

    def _on_engine_completed(self, srt_path: str, engine: str, result: EngineResult) -> None:
        if self._current_run_id:
            self.store.update_file_engine(self._current_run_id, srt_path, engine, result)
            self.store.increment_completed_engines(self._current_run_id)
        # Skipped results never ran the engine, so they say nothing about it
        if result.skipped:
            return
        if result.success:
            self.store.record_engine_success(srt_path, engine)
        else:
            self.store.record_engine_failure(srt_path, engine)

    def _on_file_completed(self, srt_path: str) -> None:
        self._finish_file(srt_path, FileStatus.COMPLETED, "completed")

    def _on_file_skipped(self, srt_path: str, reason: str = "") -> None:
        self._finish_file(srt_path, FileStatus.SKIPPED, "skipped")

    def _on_file_failed(self, srt_path: str) -> None:
        self._finish_file(srt_path, FileStatus.ERROR, "failed")

    def _finish_file(self, srt_path: str, status: FileStatus, counter: str) -> None:
        if self._current_run_id:
            self.store.update_file_status(self._current_run_id, srt_path, status)
            self.store.increment_run_counter(self._current_run_id, counter)

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    async def start_run(self, scan_config: Optional[ScanConfig] = None) -> str:
        """Start a run in the background and return its id once it exists.

        Resolves as soon as the store announces ``run:started``; if processing
        ends first without a run, its error (or :class:`RunNotStartedError`)
        is raised instead.
        """
        if self._processing_task is not None:
            logger.warning("Cannot start run: another run is already in progress")
            raise RunInProgressError()

        logger.info("Starting new processing run...")
        self.engine.reset()
        self._current_run_id = None
        self._stop_requested = False

        run_started, detach = self.store.events.wait_for("run:started")
        task = asyncio.create_task(self.engine.process_run(scan_config), name="subsync-run")
        self._processing_task = task
        task.add_done_callback(self._on_run_settled)

        try:
            await asyncio.wait({run_started, task}, return_when=asyncio.FIRST_COMPLETED)
            if run_started.done() and not run_started.cancelled():
                run_id: str = run_started.result().id
            else:
                task.result()
                raise RunNotStartedError()

            if self._stop_requested:
                raise RunStoppedDuringInitError()

            logger.info("Run created with ID: %s", run_id)
            return run_id
        finally:
            detach()

    def _on_run_settled(self, task: asyncio.Task) -> None:
        try:
            status = RunStatus.COMPLETED
            if task.cancelled():
                status = RunStatus.CANCELLED
            elif task.exception() is not None:
                logger.error("Run processing failed", exc_info=task.exception())

            run = self.store.get_current_run()
            if run is not None:
                logger.info(
                    "Run finished - Total: %d, Completed: %d, Skipped: %d, Failed: %d",
                    run.total_files, run.completed, run.skipped, run.failed,
                )
                if status is RunStatus.CANCELLED:
                    self.store.cancel_run(run.id)
                else:
                    self.store.complete_run(run.id)
        except Exception:
            logger.exception("Failed to finalize run")
        finally:
            self._processing_task = None
            self._current_run_id = None

    def stop_run(self) -> None:
        """Cancel every file of the active run and mark it cancelled.

        During the scan phase there is no run yet; the stop is queued and
        applied as soon as the scan reports its files.
        """
        logger.info("Stop run requested")
        run = self.store.get_current_run()
        if run is None:
            if self.is_running():
                logger.info("No run active yet (still scanning). Queuing stop...")
                self._stop_requested = True
                return
            raise NoActiveRunError()

        paths = [f.file_path for f in self.store.get_file_results(run.id)]
        self.engine.stop_all_processing(paths)
        self.store.cancel_run(run.id)

    def skip_file(self, srt_path: str) -> None:
        logger.info("Skip requested for: %s", os.path.basename(srt_path))
        self.engine.skip_file(srt_path)

    def is_running(self) -> bool:
        return self._processing_task is not None

    @property
    def current_run_id(self) -> Optional[str]:
        return self._current_run_id

    async def wait_until_idle(self) -> None:
        """Wait for the background run, if any, to settle."""
        task = self._processing_task
        if task is not None:
            await asyncio.wait({task})
            # Let the settle callback run
            await asyncio.sleep(0)

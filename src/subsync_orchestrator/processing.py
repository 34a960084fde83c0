"""
Processing engine: one run's scan and per-file engine fan-out.

Lifecycle events (emitted synchronously, keyword payloads):

- ``run:files_found`` (files)
- ``file:started`` (srt_path, video_path)
- ``file:engine_started`` (srt_path, engine)
- ``file:engine_completed`` (srt_path, engine, result)
- ``file:completed`` / ``file:no_video`` / ``file:failed`` (srt_path)
- ``file:skipped`` (srt_path, reason) with reason ``cancelled`` or ``all_engines_skipped``
- ``file:skip_requested`` (srt_path)
- ``log`` (line)
"""
from __future__ import annotations

import asyncio
import logging
import os
import time
from collections import deque
from datetime import datetime, timezone
from typing import Callable, Iterable, Mapping, Optional

from .config import ScanConfig, Settings
from .discovery import find_matching_video, find_subtitle_files
from .engines import SyncEngine, load_engines
from .events import EventEmitter, Listener
from .exceptions import ConfigError
from .models import EngineResult
from .state.failure_tracker import FailureTracker

logger = logging.getLogger(__name__)

Scanner = Callable[[ScanConfig], list[str]]
Matcher = Callable[[str], Optional[str]]


def _batches(items: list[str], size: int) -> list[list[str]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class ProcessingEngine:
    def __init__(
        self,
        cfg: Optional[Settings] = None,
        *,
        engines: Optional[Mapping[str, SyncEngine]] = None,
        scanner: Scanner = find_subtitle_files,
        matcher: Matcher = find_matching_video,
    ) -> None:
        self.cfg = cfg or Settings()
        self.enabled_engines: list[str] = list(self.cfg.INCLUDE_ENGINES)
        self.max_concurrent: int = self.cfg.MAX_CONCURRENT_SYNC_TASKS
        self.engine_timeout: float = self.cfg.SYNC_ENGINE_TIMEOUT_S
        self._engines = dict(engines) if engines is not None else load_engines(self.enabled_engines)
        missing = [name for name in self.enabled_engines if name not in self._engines]
        if missing:
            raise ConfigError(f"No adapter for enabled engine(s): {missing}")
        self._scanner = scanner
        self._matcher = matcher

        self.events = EventEmitter()
        # Set by the coordinator; consulted before every engine invocation
        self.failure_tracker: Optional[FailureTracker] = None

        self._cancelled: set[str] = set()
        self._known_files: list[str] = []
        self._log_buffer: deque[str] = deque(maxlen=self.cfg.LOG_BUFFER_SIZE)

    def on(self, event: str, callback: Listener) -> Callable[[], None]:
        return self.events.on(event, callback)

    # ------------------------------------------------------------------
    # Log ring buffer
    # ------------------------------------------------------------------

    def log(self, message: str) -> None:
        line = f"[{datetime.now(timezone.utc).isoformat()}] {message}"
        logger.info(message)
        self._log_buffer.append(line)
        self.events.emit("log", line=line)

    def get_logs(self) -> list[str]:
        return list(self._log_buffer)

    def clear_logs(self) -> None:
        self._log_buffer.clear()

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def process_run(self, scan_config: Optional[ScanConfig] = None) -> None:
        """Scan, announce the file list, then process files batch by batch.

        Each batch holds up to ``max_concurrent`` files that run in parallel;
        the next batch starts only after every file of the current one settled.
        """
        scan_config = scan_config or self.cfg.scan_config()
        self.log("Scanning for subtitle files...")
        self.log(f"Scan paths: {scan_config.include_paths}")

        files = await asyncio.to_thread(self._scanner, scan_config)
        self._known_files = list(files)
        self.log(f"Found {len(files)} subtitle files")
        self.events.emit("run:files_found", files=list(files))

        self.log(f"Processing with concurrency: {self.max_concurrent}")
        self.log(f"Enabled engines: {', '.join(self.enabled_engines)}")

        batches = _batches(list(files), self.max_concurrent)
        for number, batch in enumerate(batches, start=1):
            self.log(f"Processing batch {number}/{len(batches)} ({len(batch)} files)")
            outcomes = await asyncio.gather(
                *(self._process_file(path) for path in batch), return_exceptions=True,
            )
            errors = [o for o in outcomes if isinstance(o, BaseException)]
            if errors:
                raise errors[0]

        self.log("All files processed")

    async def _process_file(self, srt_path: str) -> None:
        name = os.path.basename(srt_path)
        self.log(f"Processing: {name}")

        if self.is_cancelled(srt_path):
            self._emit_cancelled(srt_path, name)
            return

        video_path = self._matcher(srt_path)
        self.events.emit("file:started", srt_path=srt_path, video_path=video_path)

        if not video_path:
            self.log(f"No matching video found for: {name}")
            self.events.emit("file:no_video", srt_path=srt_path)
            return

        self.log(f"Found video: {os.path.basename(video_path)}")

        any_succeeded = False
        all_skipped = True
        for engine in self.enabled_engines:
            if self.is_cancelled(srt_path):
                self._emit_cancelled(srt_path, name)
                return

            if self.failure_tracker is not None and self.failure_tracker.should_skip(srt_path, engine):
                self.log(f"Skipping {engine} (repeated consecutive failures): {name}")
                self.events.emit(
                    "file:engine_completed",
                    srt_path=srt_path, engine=engine, result=EngineResult.repeated_failure_skip(),
                )
                continue

            self.log(f"Starting {engine} for: {name}")
            self.events.emit("file:engine_started", srt_path=srt_path, engine=engine)

            started = time.monotonic()
            try:
                result = await self._engines[engine](srt_path, video_path, self.engine_timeout)
            except Exception as exc:
                all_skipped = False
                duration = _elapsed_ms(started)
                self.log(f"{engine} failed ({duration / 1000:.1f}s): {name}")
                self.log(f"  Error: {exc}")
                self.events.emit(
                    "file:engine_completed",
                    srt_path=srt_path,
                    engine=engine,
                    result=EngineResult(success=False, message=str(exc), duration=duration),
                )
                continue

            result.duration = _elapsed_ms(started)

            if result.skipped:
                self.log(f"{engine} skipped (already processed): {name}")
                self.events.emit(
                    "file:engine_completed", srt_path=srt_path, engine=engine, result=result,
                )
                continue

            all_skipped = False
            mark = "OK" if result.success else "FAILED"
            self.log(f"{engine} {mark} ({result.duration / 1000:.1f}s): {name}")
            if not result.success:
                self.log(f"  Error: {result.message}")
                if result.stderr:
                    self.log(f"  Stderr: {result.stderr[:500]}")
            else:
                any_succeeded = True

            self.events.emit(
                "file:engine_completed", srt_path=srt_path, engine=engine, result=result,
            )

        if any_succeeded:
            self.log(f"Completed successfully for: {name}")
            self.events.emit("file:completed", srt_path=srt_path)
        elif all_skipped:
            self.log(f"All engines skipped for: {name}")
            self.events.emit("file:skipped", srt_path=srt_path, reason="all_engines_skipped")
        else:
            self.log(f"All engines failed for: {name}")
            self.events.emit("file:failed", srt_path=srt_path)

    def _emit_cancelled(self, srt_path: str, name: str) -> None:
        self.log(f"Skipped (cancelled): {name}")
        self.events.emit("file:skipped", srt_path=srt_path, reason="cancelled")

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def skip_file(self, srt_path: str) -> None:
        """Cancel one file. Takes effect at its next engine boundary."""
        self._cancelled.add(srt_path)
        self.events.emit("file:skip_requested", srt_path=srt_path)

    def stop_all_processing(self, file_paths: Optional[Iterable[str]] = None) -> None:
        """Cancel the given paths, or every file of the current scan."""
        self.log("Stop requested - cancelling all remaining files")
        self._cancelled.update(self._known_files if file_paths is None else file_paths)

    def is_cancelled(self, srt_path: str) -> bool:
        return srt_path in self._cancelled

    def reset(self) -> None:
        self._cancelled.clear()
        self._known_files = []
        self.clear_logs()

"""Shared fakes for the orchestrator tests."""
from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Callable, Optional

import pytest

from subsync_orchestrator.config import ScanConfig, Settings
from subsync_orchestrator.models import EngineResult
from subsync_orchestrator.state.store import StateStore


class FakeEngine:
    """In-memory engine: succeeds or fails per call, optionally blocking on a gate."""

    def __init__(
        self,
        name: str,
        *,
        succeed: bool | Callable[[str], bool] = True,
        gate: Optional[asyncio.Event] = None,
        raises: Optional[Exception] = None,
        skipped: bool = False,
    ) -> None:
        self.name = name
        self._succeed = succeed
        self._gate = gate
        self._raises = raises
        self._skipped = skipped
        self.calls: list[tuple[str, str]] = []
        self.active = 0
        self.max_active = 0

    async def __call__(self, srt_path: str, video_path: str, timeout: float) -> EngineResult:
        self.calls.append((srt_path, video_path))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self._gate is not None:
                await self._gate.wait()
            else:
                await asyncio.sleep(0)
        finally:
            self.active -= 1
        if self._raises is not None:
            raise self._raises
        if self._skipped:
            return EngineResult(success=True, message="already processed", skipped=True)
        ok = self._succeed(srt_path) if callable(self._succeed) else self._succeed
        if ok:
            return EngineResult(success=True, message=f"{self.name} ok")
        return EngineResult(success=False, message=f"{self.name} failed", stderr="boom")


def static_scanner(files: list[str]) -> Callable[[ScanConfig], list[str]]:
    def _scan(config: ScanConfig) -> list[str]:
        return list(files)
    return _scan


def matcher_without(*unmatched: str) -> Callable[[str], Optional[str]]:
    """Matcher mapping ``x.srt`` to ``x.mkv`` except for *unmatched* paths."""
    def _match(srt_path: str) -> Optional[str]:
        if srt_path in unmatched:
            return None
        return srt_path[: -len(".srt")] + ".mkv"
    return _match


@pytest.fixture
def make_settings(tmp_path: Path) -> Callable[..., Settings]:
    def _make(**overrides) -> Settings:
        values = {
            "SCAN_PATHS": [str(tmp_path / "media")],
            "INCLUDE_ENGINES": ["ffsubsync", "alass"],
            "DB_PATH": str(tmp_path / "data" / "state.db"),
        }
        values.update(overrides)
        return Settings(**values)
    return _make


@pytest.fixture
def store(tmp_path: Path):
    s = StateStore(tmp_path / "state.db")
    yield s
    s.close()

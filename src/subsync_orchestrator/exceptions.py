from __future__ import annotations


class SubsyncError(Exception):
    """Base exception for subsync-orchestrator."""


class ConfigError(SubsyncError):
    """Invalid or inconsistent configuration."""


class PreflightError(SubsyncError):
    """Preflight checks failed."""

    def __init__(self, results: list[dict]) -> None:
        self.results = results
        failed = [r for r in results if not r.get("OK")]
        names = ", ".join(r.get("NAME", "?") for r in failed) or "unknown"
        super().__init__(f"Preflight failed: {names}")


class ScanError(SubsyncError):
    """The directory scan could not produce a file list."""


class CoordinationError(SubsyncError):
    """A start/stop request violated the single-active-run invariant."""


class RunInProgressError(CoordinationError):
    def __init__(self, message: str = "A run is already in progress") -> None:
        super().__init__(message)


class NoActiveRunError(CoordinationError):
    def __init__(self, message: str = "No run is currently in progress") -> None:
        super().__init__(message)


class RunStoppedDuringInitError(CoordinationError):
    def __init__(self, message: str = "Run was stopped during initialization") -> None:
        super().__init__(message)


class RunNotStartedError(CoordinationError):
    def __init__(self, message: str = "Process completed without starting a run") -> None:
        super().__init__(message)

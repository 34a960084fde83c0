from __future__ import annotations

from .config import Settings, ScanConfig, RetentionConfig, load_settings
from .coordinator import ProcessingCoordinator
from .processing import ProcessingEngine
from .run import run_once
from .preflight.checks import run_preflight
from .retention import run_retention_sweep, retention_loop
from .server import serve
from .exceptions import (
    SubsyncError, ConfigError, PreflightError, ScanError, CoordinationError,
    RunInProgressError, NoActiveRunError, RunStoppedDuringInitError, RunNotStartedError,
)
from .models import EngineResult, FileResult, Run, RunResult, PreflightResult
from .state.store import StateStore

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "run_once",
    "run_preflight",
    "run_retention_sweep",
    "retention_loop",
    "serve",
    "Settings",
    "ScanConfig",
    "RetentionConfig",
    "load_settings",
    "ProcessingCoordinator",
    "ProcessingEngine",
    "StateStore",
    "EngineResult",
    "FileResult",
    "Run",
    "RunResult",
    "PreflightResult",
    "SubsyncError",
    "ConfigError",
    "PreflightError",
    "ScanError",
    "CoordinationError",
    "RunInProgressError",
    "NoActiveRunError",
    "RunStoppedDuringInitError",
    "RunNotStartedError",
]

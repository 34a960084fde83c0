from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class FileStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    ERROR = "error"


TERMINAL_FILE_STATUSES = frozenset({FileStatus.COMPLETED, FileStatus.SKIPPED, FileStatus.ERROR})

SKIPPED_REPEATED_FAILURES = "skipped: repeated failures"


@dataclass
class EngineResult:
    """Outcome of one engine invocation against one subtitle file.

    ``duration`` is in milliseconds. ``skipped`` marks results that did not
    actually run the engine (failure-tracker skip or output already present).
    """

    success: bool
    message: str
    duration: int = 0
    stdout: Optional[str] = None
    stderr: Optional[str] = None
    skipped: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "duration": self.duration,
            "message": self.message,
        }
        if self.stdout is not None:
            data["stdout"] = self.stdout
        if self.stderr is not None:
            data["stderr"] = self.stderr
        if self.skipped:
            data["skipped"] = True
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EngineResult":
        return cls(
            success=bool(data.get("success", False)),
            message=str(data.get("message", "")),
            duration=int(data.get("duration", 0)),
            stdout=data.get("stdout"),
            stderr=data.get("stderr"),
            skipped=bool(data.get("skipped", False)),
        )

    @classmethod
    def repeated_failure_skip(cls) -> "EngineResult":
        return cls(success=False, message=SKIPPED_REPEATED_FAILURES, duration=0, skipped=True)


@dataclass
class Run:
    """One pass over the configured scan paths. Times are epoch milliseconds."""

    id: str
    start_time: int
    total_files: int
    status: RunStatus = RunStatus.RUNNING
    end_time: Optional[int] = None
    completed: int = 0
    skipped: int = 0
    failed: int = 0
    total_engines: int = 0
    completed_engines: int = 0
    logs: str = ""

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class FileResult:
    run_id: str
    file_path: str
    video_path: Optional[str]
    status: FileStatus
    created_at: int
    updated_at: int
    current_engine: Optional[str] = None
    engines: dict[str, EngineResult] = field(default_factory=dict)
    id: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "run_id": self.run_id,
            "file_path": self.file_path,
            "video_path": self.video_path,
            "status": self.status.value,
            "current_engine": self.current_engine,
            "engines": {name: r.to_dict() for name, r in self.engines.items()},
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class EngineFailureTracking:
    """Consecutive-failure record for one (file, engine) pair, independent of runs."""

    file_path: str
    engine: str
    consecutive_failures: int = 0
    last_failure_time: Optional[int] = None
    last_success_time: Optional[int] = None
    is_skipped: bool = False
    created_at: int = 0
    updated_at: int = 0


@dataclass
class FailureStats:
    total_skipped: int = 0
    skipped_by_engine: dict[str, int] = field(default_factory=dict)


@dataclass
class DatabaseStats:
    page_count: int
    page_size: int

    @property
    def size_bytes(self) -> int:
        return self.page_count * self.page_size


@dataclass
class RetentionResult:
    trimmed: int = 0
    deleted: int = 0
    vacuumed: bool = False
    stats: Optional[DatabaseStats] = None


@dataclass
class RunResult:
    """Outcome of a ``run_once()`` invocation."""

    run_id: str
    status: RunStatus
    total_files: int = 0
    completed: int = 0
    skipped: int = 0
    failed: int = 0
    completed_engines: int = 0
    total_engines: int = 0


@dataclass
class PreflightResult:
    """Outcome of ``run_preflight()``."""

    ok: bool
    results: list[dict] = field(default_factory=list)
    report_path: Path | None = None

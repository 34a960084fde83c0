from __future__ import annotations
import json
import logging
from dataclasses import dataclass, field
from apscheduler.triggers.cron import CronTrigger
from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict
import yaml  # type: ignore[import-untyped]
from pathlib import Path
from typing import Annotated, Any, Optional

logger = logging.getLogger(__name__)

# Engines with a known adapter under subsync_orchestrator.engines
KNOWN_ENGINES: tuple[str, ...] = ("ffsubsync", "autosubsync", "alass")

DEFAULT_SCAN_PATH = "/scan_dir"

# CRON_SCHEDULE value that turns off scheduled runs in `serve`
CRON_DISABLED = "disabled"


@dataclass
class ScanConfig:
    """Include/exclude directory lists handed to the scanner."""

    include_paths: list[str] = field(default_factory=lambda: [DEFAULT_SCAN_PATH])
    exclude_paths: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class RetentionConfig:
    keep_runs_days: int = 30
    trim_logs_days: int = 7
    max_log_size_bytes: int = 10_000
    cleanup_interval_hours: float = 24.0


def validate_path(path: str) -> bool:
    """Scan paths must be absolute and free of parent references."""
    return path.startswith("/") and ".." not in path


def _split_csv(v: Any) -> Any:
    # Env vars arrive as "a,b,c" or a JSON list
    if isinstance(v, str):
        if v.lstrip().startswith("["):
            return json.loads(v)
        return [part.strip() for part in v.split(",") if part.strip()]
    return v


class Settings(BaseSettings):
    model_config = SettingsConfigDict(extra="ignore")

    # Scanning
    SCAN_PATHS: Annotated[list[str], NoDecode] = [DEFAULT_SCAN_PATH]
    EXCLUDE_PATHS: Annotated[list[str], NoDecode] = []

    # Engines
    INCLUDE_ENGINES: Annotated[list[str], NoDecode] = list(KNOWN_ENGINES)
    MAX_CONCURRENT_SYNC_TASKS: int = 1
    SYNC_ENGINE_TIMEOUT_S: float = 1800.0
    FAILURE_SKIP_THRESHOLD: int = 3

    # In-memory log ring buffer
    LOG_BUFFER_SIZE: int = 1000

    # Storage
    DB_PATH: str = "/app/data/subsync-orchestrator.db"
    LOG_DIR: Optional[str] = None

    # Retention
    KEEP_RUNS_DAYS: int = 30
    TRIM_LOGS_DAYS: int = 7
    MAX_LOG_SIZE_BYTES: int = 10_000
    CLEANUP_INTERVAL_HOURS: float = 24.0

    # Scheduled runs (`serve`): five-field crontab, or "disabled"
    CRON_SCHEDULE: str = "0 0 * * *"

    @field_validator("SCAN_PATHS", "EXCLUDE_PATHS", "INCLUDE_ENGINES", mode="before")
    @classmethod
    def _parse_csv_lists(cls, v: Any) -> Any:
        return _split_csv(v)

    @field_validator("INCLUDE_ENGINES")
    @classmethod
    def _validate_engines(cls, v: list[str]) -> list[str]:
        unknown = [name for name in v if name not in KNOWN_ENGINES]
        if unknown:
            raise ValueError(
                f"INCLUDE_ENGINES has unknown engine(s) {unknown!r}; "
                f"expected a subset of {list(KNOWN_ENGINES)!r}"
            )
        return v

    @field_validator("MAX_CONCURRENT_SYNC_TASKS", "LOG_BUFFER_SIZE", "FAILURE_SKIP_THRESHOLD")
    @classmethod
    def _validate_positive_int(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"must be >= 1, got {v}")
        return v

    @field_validator("SYNC_ENGINE_TIMEOUT_S", "CLEANUP_INTERVAL_HOURS")
    @classmethod
    def _validate_positive_float(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"must be > 0, got {v}")
        return v

    @field_validator("CRON_SCHEDULE")
    @classmethod
    def _validate_cron(cls, v: str) -> str:
        v = v.strip()
        if v.lower() == CRON_DISABLED:
            return CRON_DISABLED
        try:
            CronTrigger.from_crontab(v)
        except ValueError as exc:
            raise ValueError(f"CRON_SCHEDULE is not a crontab expression: {v!r} ({exc})") from exc
        return v

    def scan_config(self) -> ScanConfig:
        """Build a :class:`ScanConfig`, dropping invalid paths with a warning."""
        include = [p for p in self.SCAN_PATHS if _keep_path(p, "include")]
        exclude = [p for p in self.EXCLUDE_PATHS if _keep_path(p, "exclude")]
        if not include:
            logger.warning("No valid scan paths provided, defaulting to %s", DEFAULT_SCAN_PATH)
            include = [DEFAULT_SCAN_PATH]
        logger.debug("Scan configuration: include=%s exclude=%s", include, exclude)
        return ScanConfig(include_paths=include, exclude_paths=exclude)

    def retention_config(self) -> RetentionConfig:
        return RetentionConfig(
            keep_runs_days=self.KEEP_RUNS_DAYS,
            trim_logs_days=self.TRIM_LOGS_DAYS,
            max_log_size_bytes=self.MAX_LOG_SIZE_BYTES,
            cleanup_interval_hours=self.CLEANUP_INTERVAL_HOURS,
        )


def _keep_path(path: str, kind: str) -> bool:
    if validate_path(path):
        return True
    logger.warning("Invalid %s path: %s", kind, path)
    return False


def load_settings(config_path: str | Path | None) -> Settings:
    if config_path is None:
        return Settings()
    p = Path(config_path)
    data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    return Settings(**data)

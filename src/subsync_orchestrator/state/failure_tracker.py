from __future__ import annotations

import logging
from typing import Optional

from ..models import EngineFailureTracking
from .database import RunDatabase, now_ms

logger = logging.getLogger(__name__)

DEFAULT_SKIP_THRESHOLD = 3


class FailureTracker:
    """Per (file, engine) consecutive-failure counter with a latched skip flag.

    Failures count up, any success resets to zero, and ``is_skipped`` is always
    ``consecutive_failures >= threshold``. Records outlive runs.
    """

    def __init__(self, db: RunDatabase, threshold: int = DEFAULT_SKIP_THRESHOLD) -> None:
        self.db = db
        self.threshold = threshold

    def record_failure(self, file_path: str, engine: str) -> EngineFailureTracking:
        ts = now_ms()
        record = self.db.get_failure_tracking(file_path, engine) or EngineFailureTracking(
            file_path=file_path, engine=engine, created_at=ts,
        )
        record.consecutive_failures += 1
        record.is_skipped = record.consecutive_failures >= self.threshold
        record.last_failure_time = ts
        record.updated_at = ts
        self.db.save_failure_tracking(record)
        if record.consecutive_failures == self.threshold:
            logger.warning(
                "%s failed %d times in a row for %s; skipping it until reset",
                engine, record.consecutive_failures, file_path,
            )
        return record

    def record_success(self, file_path: str, engine: str) -> EngineFailureTracking:
        ts = now_ms()
        record = self.db.get_failure_tracking(file_path, engine) or EngineFailureTracking(
            file_path=file_path, engine=engine, created_at=ts,
        )
        record.consecutive_failures = 0
        record.is_skipped = False
        record.last_success_time = ts
        record.updated_at = ts
        self.db.save_failure_tracking(record)
        return record

    def should_skip(self, file_path: str, engine: str) -> bool:
        record = self.db.get_failure_tracking(file_path, engine)
        return record is not None and record.is_skipped

    def reset_skip(self, file_path: str, engine: Optional[str] = None) -> int:
        """Clear the counter for one engine, or every engine tracked for the file."""
        count = self.db.reset_failure_tracking(file_path, engine)
        logger.info(
            "Reset skip status for %s (%s)", file_path, engine or "all engines",
        )
        return count

    def list_skipped(self, file_path: str) -> list[str]:
        return self.db.get_skipped_engines(file_path)

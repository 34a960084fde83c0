"""
SQLite persistence for runs, per-file results and engine failure tracking.

The database trusts its caller as the single writer: there is no locking
beyond SQLite's own, and no business rules live here. Timestamps are epoch
milliseconds.
"""
from __future__ import annotations

import json
import logging
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator, Optional

from ..models import (
    DatabaseStats,
    EngineFailureTracking,
    EngineResult,
    FailureStats,
    FileResult,
    FileStatus,
    Run,
    RunStatus,
)

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000
LOG_TRIM_MARKER = "\n... (log trimmed to save space)"

_RUN_COLUMNS = frozenset({
    "start_time", "end_time", "total_files", "completed", "skipped", "failed",
    "total_engines", "completed_engines", "status", "logs",
})
_RUN_COUNTERS = frozenset({"completed", "skipped", "failed", "completed_engines"})
_FILE_COLUMNS = frozenset({"video_path", "status", "current_engine", "engines"})


def now_ms() -> int:
    return int(time.time() * 1000)


class RunDatabase:
    """Thin data-access layer over one SQLite file."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._init_schema()

    @contextmanager
    def _cursor(self) -> Generator[sqlite3.Cursor, None, None]:
        """Cursor that commits on success and rolls back on error."""
        cursor = self._conn.cursor()
        try:
            yield cursor
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise
        finally:
            cursor.close()

    def _init_schema(self) -> None:
        # auto_vacuum must be set before the first table exists to take effect
        self._conn.execute("PRAGMA auto_vacuum = INCREMENTAL")
        self._conn.execute("PRAGMA cache_size = -1000")
        self._conn.execute("PRAGMA temp_store = MEMORY")
        if self.db_path != ":memory:":
            self._conn.execute("PRAGMA journal_mode = WAL")

        with self._cursor() as cursor:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS runs (
                    id TEXT PRIMARY KEY,
                    start_time INTEGER NOT NULL,
                    end_time INTEGER,
                    total_files INTEGER NOT NULL,
                    completed INTEGER DEFAULT 0,
                    skipped INTEGER DEFAULT 0,
                    failed INTEGER DEFAULT 0,
                    status TEXT NOT NULL
                )
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS file_results (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    run_id TEXT NOT NULL,
                    file_path TEXT NOT NULL,
                    video_path TEXT,
                    status TEXT NOT NULL,
                    current_engine TEXT,
                    engines TEXT DEFAULT '{}',
                    created_at INTEGER NOT NULL,
                    updated_at INTEGER NOT NULL,
                    FOREIGN KEY(run_id) REFERENCES runs(id)
                )
            """)
            cursor.execute(
                "CREATE UNIQUE INDEX IF NOT EXISTS idx_file_results_run_path "
                "ON file_results(run_id, file_path)"
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_file_results_status ON file_results(status)"
            )
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS engine_failure_tracking (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    file_path TEXT NOT NULL,
                    engine TEXT NOT NULL,
                    consecutive_failures INTEGER DEFAULT 0,
                    last_failure_time INTEGER,
                    last_success_time INTEGER,
                    is_skipped INTEGER DEFAULT 0,
                    created_at INTEGER NOT NULL,
                    updated_at INTEGER NOT NULL,
                    UNIQUE(file_path, engine)
                )
            """)
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_failure_tracking_file "
                "ON engine_failure_tracking(file_path)"
            )

            # Columns added after the first schema version
            cursor.execute("PRAGMA table_info(runs)")
            columns = {row["name"] for row in cursor.fetchall()}
            for name, ddl in (
                ("logs", "TEXT DEFAULT ''"),
                ("total_engines", "INTEGER DEFAULT 0"),
                ("completed_engines", "INTEGER DEFAULT 0"),
            ):
                if name not in columns:
                    logger.debug("Migrating runs table: adding column %s", name)
                    cursor.execute(f"ALTER TABLE runs ADD COLUMN {name} {ddl}")

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def create_run(
        self,
        run_id: str,
        total_files: int,
        total_engines: int = 0,
        start_time: Optional[int] = None,
    ) -> None:
        with self._cursor() as cursor:
            cursor.execute("""
                INSERT INTO runs (id, start_time, total_files, total_engines, status, logs)
                VALUES (?, ?, ?, ?, ?, '')
            """, (
                run_id,
                start_time if start_time is not None else now_ms(),
                total_files,
                total_engines,
                RunStatus.RUNNING.value,
            ))

    def update_run(self, run_id: str, **updates: Any) -> None:
        unknown = set(updates) - _RUN_COLUMNS
        if unknown:
            raise ValueError(f"Unknown run column(s): {sorted(unknown)}")
        if not updates:
            return
        if isinstance(updates.get("status"), RunStatus):
            updates["status"] = updates["status"].value
        assignments = ", ".join(f"{k} = ?" for k in updates)
        with self._cursor() as cursor:
            cursor.execute(
                f"UPDATE runs SET {assignments} WHERE id = ?",
                (*updates.values(), run_id),
            )

    def increment_run_counter(self, run_id: str, counter: str) -> None:
        if counter not in _RUN_COUNTERS:
            raise ValueError(f"Unknown run counter: {counter}")
        with self._cursor() as cursor:
            cursor.execute(
                f"UPDATE runs SET {counter} = {counter} + 1 WHERE id = ?", (run_id,)
            )

    def append_run_log(self, run_id: str, text: str) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                "UPDATE runs SET logs = COALESCE(logs, '') || ? WHERE id = ?",
                (text, run_id),
            )

    def get_run(self, run_id: str) -> Optional[Run]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM runs WHERE id = ?", (run_id,))
            row = cursor.fetchone()
        return _row_to_run(row) if row else None

    def get_runs_by_status(self, status: RunStatus) -> list[Run]:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT * FROM runs WHERE status = ? ORDER BY start_time DESC",
                (status.value,),
            )
            rows = cursor.fetchall()
        return [_row_to_run(r) for r in rows]

    def get_run_history(self, limit: int = 50) -> list[Run]:
        """Most recent runs first."""
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT * FROM runs ORDER BY start_time DESC, rowid DESC LIMIT ?",
                (limit,),
            )
            rows = cursor.fetchall()
        return [_row_to_run(r) for r in rows]

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def delete_old_runs(self, older_than_days: float, now: Optional[int] = None) -> int:
        """Delete finished runs started before the cutoff, with their file results."""
        cutoff = (now if now is not None else now_ms()) - int(older_than_days * DAY_MS)
        with self._cursor() as cursor:
            cursor.execute("""
                DELETE FROM file_results WHERE run_id IN (
                    SELECT id FROM runs WHERE start_time < ? AND status != ?
                )
            """, (cutoff, RunStatus.RUNNING.value))
            cursor.execute(
                "DELETE FROM runs WHERE start_time < ? AND status != ?",
                (cutoff, RunStatus.RUNNING.value),
            )
            return cursor.rowcount

    def trim_old_logs(
        self,
        older_than_days: float,
        max_log_bytes: int = 1000,
        now: Optional[int] = None,
    ) -> int:
        """Cut logs of old runs down to *max_log_bytes* plus a trim marker."""
        cutoff = (now if now is not None else now_ms()) - int(older_than_days * DAY_MS)
        with self._cursor() as cursor:
            cursor.execute("""
                SELECT id, logs FROM runs
                WHERE start_time < ? AND LENGTH(CAST(logs AS BLOB)) > ?
            """, (cutoff, max_log_bytes))
            rows = cursor.fetchall()
            for row in rows:
                head = row["logs"].encode("utf-8")[:max_log_bytes].decode("utf-8", errors="ignore")
                cursor.execute(
                    "UPDATE runs SET logs = ? WHERE id = ?",
                    (head + LOG_TRIM_MARKER, row["id"]),
                )
        return len(rows)

    def vacuum(self) -> None:
        # Each step of the pragma frees pages, so drain it
        self._conn.execute("PRAGMA incremental_vacuum").fetchall()
        self._conn.commit()

    def get_database_stats(self) -> DatabaseStats:
        page_count = self._conn.execute("PRAGMA page_count").fetchone()[0]
        page_size = self._conn.execute("PRAGMA page_size").fetchone()[0]
        return DatabaseStats(page_count=page_count, page_size=page_size)

    # ------------------------------------------------------------------
    # File results
    # ------------------------------------------------------------------

    def create_file_result(self, run_id: str, file_path: str, video_path: Optional[str]) -> None:
        ts = now_ms()
        with self._cursor() as cursor:
            cursor.execute("""
                INSERT INTO file_results
                    (run_id, file_path, video_path, status, engines, created_at, updated_at)
                VALUES (?, ?, ?, ?, '{}', ?, ?)
            """, (run_id, file_path, video_path, FileStatus.PENDING.value, ts, ts))

    def update_file_result(self, run_id: str, file_path: str, **updates: Any) -> None:
        unknown = set(updates) - _FILE_COLUMNS
        if unknown:
            raise ValueError(f"Unknown file_results column(s): {sorted(unknown)}")
        if isinstance(updates.get("status"), FileStatus):
            updates["status"] = updates["status"].value
        updates["updated_at"] = now_ms()
        assignments = ", ".join(f"{k} = ?" for k in updates)
        with self._cursor() as cursor:
            cursor.execute(
                f"UPDATE file_results SET {assignments} WHERE run_id = ? AND file_path = ?",
                (*updates.values(), run_id, file_path),
            )

    def merge_engine_result(
        self, run_id: str, file_path: str, engine: str, result: EngineResult
    ) -> bool:
        """Set ``engines[engine]`` for one file, leaving other engines untouched.

        The file no longer has an engine in flight, so ``current_engine`` is cleared.

        Returns False when the file is not part of the run.
        """
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT engines FROM file_results WHERE run_id = ? AND file_path = ?",
                (run_id, file_path),
            )
            row = cursor.fetchone()
            if row is None:
                return False
            engines = json.loads(row["engines"] or "{}")
            engines[engine] = result.to_dict()
            cursor.execute("""
                UPDATE file_results SET engines = ?, current_engine = NULL, updated_at = ?
                WHERE run_id = ? AND file_path = ?
            """, (json.dumps(engines), now_ms(), run_id, file_path))
        return True

    def get_file_result(self, run_id: str, file_path: str) -> Optional[FileResult]:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT * FROM file_results WHERE run_id = ? AND file_path = ?",
                (run_id, file_path),
            )
            row = cursor.fetchone()
        return _row_to_file(row) if row else None

    def get_file_results(self, run_id: str) -> list[FileResult]:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT * FROM file_results WHERE run_id = ? ORDER BY created_at ASC, id ASC",
                (run_id,),
            )
            rows = cursor.fetchall()
        return [_row_to_file(r) for r in rows]

    # ------------------------------------------------------------------
    # Engine failure tracking
    # ------------------------------------------------------------------

    def get_failure_tracking(self, file_path: str, engine: str) -> Optional[EngineFailureTracking]:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT * FROM engine_failure_tracking WHERE file_path = ? AND engine = ?",
                (file_path, engine),
            )
            row = cursor.fetchone()
        return _row_to_tracking(row) if row else None

    def save_failure_tracking(self, record: EngineFailureTracking) -> None:
        """Insert or replace the record keyed by (file_path, engine)."""
        with self._cursor() as cursor:
            cursor.execute("""
                INSERT INTO engine_failure_tracking
                    (file_path, engine, consecutive_failures, last_failure_time,
                     last_success_time, is_skipped, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(file_path, engine) DO UPDATE SET
                    consecutive_failures = excluded.consecutive_failures,
                    last_failure_time = excluded.last_failure_time,
                    last_success_time = excluded.last_success_time,
                    is_skipped = excluded.is_skipped,
                    updated_at = excluded.updated_at
            """, (
                record.file_path,
                record.engine,
                record.consecutive_failures,
                record.last_failure_time,
                record.last_success_time,
                1 if record.is_skipped else 0,
                record.created_at,
                record.updated_at,
            ))

    def reset_failure_tracking(self, file_path: str, engine: Optional[str] = None) -> int:
        query = """
            UPDATE engine_failure_tracking
            SET consecutive_failures = 0, is_skipped = 0, updated_at = ?
            WHERE file_path = ?
        """
        params: tuple[Any, ...] = (now_ms(), file_path)
        if engine is not None:
            query += " AND engine = ?"
            params += (engine,)
        with self._cursor() as cursor:
            cursor.execute(query, params)
            return cursor.rowcount

    def get_skipped_engines(self, file_path: str) -> list[str]:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT engine FROM engine_failure_tracking "
                "WHERE file_path = ? AND is_skipped = 1 ORDER BY engine",
                (file_path,),
            )
            return [row["engine"] for row in cursor.fetchall()]

    def get_failure_stats(self) -> FailureStats:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT COUNT(DISTINCT file_path) AS count "
                "FROM engine_failure_tracking WHERE is_skipped = 1"
            )
            total = cursor.fetchone()["count"]
            cursor.execute(
                "SELECT engine, COUNT(*) AS count FROM engine_failure_tracking "
                "WHERE is_skipped = 1 GROUP BY engine"
            )
            by_engine = {row["engine"]: row["count"] for row in cursor.fetchall()}
        return FailureStats(total_skipped=total, skipped_by_engine=by_engine)


def _row_to_run(row: sqlite3.Row) -> Run:
    return Run(
        id=row["id"],
        start_time=row["start_time"],
        end_time=row["end_time"],
        total_files=row["total_files"],
        completed=row["completed"] or 0,
        skipped=row["skipped"] or 0,
        failed=row["failed"] or 0,
        total_engines=row["total_engines"] or 0,
        completed_engines=row["completed_engines"] or 0,
        status=RunStatus(row["status"]),
        logs=row["logs"] or "",
    )


def _row_to_file(row: sqlite3.Row) -> FileResult:
    raw = json.loads(row["engines"] or "{}")
    return FileResult(
        id=row["id"],
        run_id=row["run_id"],
        file_path=row["file_path"],
        video_path=row["video_path"],
        status=FileStatus(row["status"]),
        current_engine=row["current_engine"],
        engines={name: EngineResult.from_dict(data) for name, data in raw.items()},
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_tracking(row: sqlite3.Row) -> EngineFailureTracking:
    return EngineFailureTracking(
        file_path=row["file_path"],
        engine=row["engine"],
        consecutive_failures=row["consecutive_failures"] or 0,
        last_failure_time=row["last_failure_time"],
        last_success_time=row["last_success_time"],
        is_skipped=bool(row["is_skipped"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )

"""CLI commands via click's CliRunner against a real temp database."""
from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner

from subsync_orchestrator.cli import main
from subsync_orchestrator.exceptions import PreflightError
from subsync_orchestrator.models import EngineResult, FileStatus, RunResult, RunStatus
from subsync_orchestrator.state.database import RunDatabase
from subsync_orchestrator.state.failure_tracker import FailureTracker


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "data" / "state.db"


@pytest.fixture
def cfg_file(tmp_path, db_path):
    p = tmp_path / "config.yml"
    p.write_text(
        f"DB_PATH: {db_path}\nSCAN_PATHS: [{tmp_path}]\nINCLUDE_ENGINES: [ffsubsync, alass]\n",
        encoding="utf-8",
    )
    return p


@pytest.fixture
def seeded(db_path):
    db = RunDatabase(db_path)
    db.create_run("run-1", 2, total_engines=4, start_time=1_700_000_000_000)
    db.update_run("run-1", status=RunStatus.COMPLETED, end_time=1_700_000_060_000, completed=1, failed=1)
    db.append_run_log("run-1", "[t] Found 2 subtitle files\n")
    db.create_file_result("run-1", "/m/a.srt", "/m/a.mkv")
    db.merge_engine_result("run-1", "/m/a.srt", "alass", EngineResult(True, "synced", duration=1500))
    db.update_file_result("run-1", "/m/a.srt", status=FileStatus.COMPLETED)
    db.create_file_result("run-1", "/m/b.srt", None)
    db.update_file_result("run-1", "/m/b.srt", status=FileStatus.ERROR)
    tracker = FailureTracker(db)
    for _ in range(3):
        tracker.record_failure("/m/b.srt", "ffsubsync")
    db.close()
    return db_path


def _invoke(*args, **kwargs):
    return CliRunner().invoke(main, list(args), catch_exceptions=False, **kwargs)


class TestRunCommand:
    def test_run_prints_summary(self, cfg_file):
        result_obj = RunResult(
            run_id="abc", status=RunStatus.COMPLETED, total_files=3,
            completed=2, skipped=0, failed=1, completed_engines=4, total_engines=6,
        )
        with patch("subsync_orchestrator.run.run_once", new=AsyncMock(return_value=result_obj)) as mock_run:
            result = _invoke("run", "--config", str(cfg_file), "--engine", "alass", "--max-concurrent", "2")
        assert result.exit_code == 0
        assert "Run abc completed." in result.output
        assert "4/6" in result.output
        cfg = mock_run.call_args[0][0]
        assert cfg.INCLUDE_ENGINES == ["alass"]
        assert cfg.MAX_CONCURRENT_SYNC_TASKS == 2

    def test_run_preflight_failure_exits_2(self, cfg_file):
        with patch("subsync_orchestrator.run.run_once", new=AsyncMock(side_effect=PreflightError([]))):
            result = _invoke("run", "--config", str(cfg_file))
        assert result.exit_code == 2

    def test_run_rejects_unknown_engine(self, cfg_file):
        result = CliRunner().invoke(main, ["run", "--config", str(cfg_file), "--engine", "whisper"])
        assert result.exit_code != 0


class TestServeCommand:
    def test_serve_passes_settings(self, cfg_file):
        with patch("subsync_orchestrator.server.serve", new=AsyncMock(return_value=None)) as mock_serve:
            result = _invoke("serve", "--config", str(cfg_file), "--skip-preflight")
        assert result.exit_code == 0
        cfg = mock_serve.call_args[0][0]
        assert cfg.CRON_SCHEDULE == "0 0 * * *"
        assert mock_serve.call_args.kwargs["skip_preflight"] is True
        assert mock_serve.call_args.kwargs["stop_event"] is not None

    def test_serve_preflight_failure_exits_2(self, cfg_file):
        with patch("subsync_orchestrator.server.serve", new=AsyncMock(side_effect=PreflightError([]))):
            result = _invoke("serve", "--config", str(cfg_file))
        assert result.exit_code == 2


class TestQueries:
    def test_history(self, cfg_file, seeded):
        result = _invoke("history", "--config", str(cfg_file), env={"COLUMNS": "200"})
        assert result.exit_code == 0
        assert "run-1" in result.output
        assert "completed" in result.output

    def test_show(self, cfg_file, seeded):
        result = _invoke("show", "--config", str(cfg_file), "run-1")
        assert result.exit_code == 0
        assert "/m/a.srt [completed]" in result.output
        assert "alass: ok (1500 ms) synced" in result.output
        assert "/m/b.srt [error]" in result.output

    def test_show_unknown_run(self, cfg_file, seeded):
        result = CliRunner().invoke(main, ["show", "--config", str(cfg_file), "nope"])
        assert result.exit_code == 1
        assert "Run not found" in result.output

    def test_logs(self, cfg_file, seeded):
        result = _invoke("logs", "--config", str(cfg_file), "run-1")
        assert "[t] Found 2 subtitle files\n" in result.output

    def test_export(self, cfg_file, seeded, tmp_path):
        out = tmp_path / "export" / "run-1.jsonl"
        result = _invoke("export", "--config", str(cfg_file), "run-1", str(out))
        assert "Exported 2 file results" in result.output
        rows = [json.loads(line) for line in out.read_text(encoding="utf-8").splitlines()]
        assert [r["file_path"] for r in rows] == ["/m/a.srt", "/m/b.srt"]
        assert rows[0]["engines"]["alass"]["duration"] == 1500

    def test_missing_database(self, cfg_file):
        result = CliRunner().invoke(main, ["history", "--config", str(cfg_file)])
        assert result.exit_code == 1
        assert "Database not found" in result.output


class TestSkipCommands:
    def test_skip_status_for_path(self, cfg_file, seeded):
        result = _invoke("skip-status", "--config", str(cfg_file), "/m/b.srt")
        assert "/m/b.srt: skipped engines: ffsubsync" in result.output

    def test_skip_status_summary(self, cfg_file, seeded):
        result = _invoke("skip-status", "--config", str(cfg_file))
        assert "Files with skipped engines: 1" in result.output
        assert "ffsubsync: 1" in result.output

    def test_reset_skip(self, cfg_file, seeded):
        result = _invoke("reset-skip", "--config", str(cfg_file), "/m/b.srt", "--engine", "ffsubsync")
        assert "Reset 1 tracking record(s)" in result.output
        db = RunDatabase(seeded)
        try:
            assert db.get_skipped_engines("/m/b.srt") == []
        finally:
            db.close()


class TestMaintenance:
    def test_cleanup(self, cfg_file, seeded):
        result = _invoke("cleanup", "--config", str(cfg_file))
        assert result.exit_code == 0
        assert "Deleted runs: 1" in result.output
        db = RunDatabase(seeded)
        try:
            assert db.get_run("run-1") is None
        finally:
            db.close()

    def test_db_stats(self, cfg_file, seeded):
        result = _invoke("db-stats", "--config", str(cfg_file))
        assert "Pages:" in result.output
        assert "Page size:" in result.output


class TestPreflightCommand:
    def test_preflight_pass(self, cfg_file):
        with patch("subsync_orchestrator.preflight.checks.find_executable", return_value="/bin/x"):
            result = _invoke("preflight", "--config", str(cfg_file))
        assert result.exit_code == 0
        assert "Preflight passed." in result.output

    def test_preflight_fail(self, cfg_file):
        with patch("subsync_orchestrator.preflight.checks.find_executable", return_value=None):
            result = CliRunner().invoke(main, ["preflight", "--config", str(cfg_file)])
        assert result.exit_code == 2

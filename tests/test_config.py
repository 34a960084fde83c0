"""Settings: defaults, env/CSV parsing, validation, scan/retention views."""
from __future__ import annotations

import pytest

from subsync_orchestrator.config import (
    CRON_DISABLED,
    DEFAULT_SCAN_PATH,
    KNOWN_ENGINES,
    Settings,
    load_settings,
    validate_path,
)


class TestDefaults:
    def test_defaults(self):
        cfg = Settings()
        assert cfg.SCAN_PATHS == [DEFAULT_SCAN_PATH]
        assert cfg.INCLUDE_ENGINES == list(KNOWN_ENGINES)
        assert cfg.MAX_CONCURRENT_SYNC_TASKS == 1
        assert cfg.LOG_BUFFER_SIZE == 1000
        assert cfg.FAILURE_SKIP_THRESHOLD == 3
        assert cfg.SYNC_ENGINE_TIMEOUT_S == 1800

    def test_retention_defaults(self):
        r = Settings().retention_config()
        assert (r.keep_runs_days, r.trim_logs_days, r.max_log_size_bytes) == (30, 7, 10_000)
        assert r.cleanup_interval_hours == 24


class TestListParsing:
    def test_csv_string(self):
        cfg = Settings(INCLUDE_ENGINES="ffsubsync, alass")
        assert cfg.INCLUDE_ENGINES == ["ffsubsync", "alass"]

    def test_json_list_string(self):
        cfg = Settings(SCAN_PATHS='["/a", "/b"]')
        assert cfg.SCAN_PATHS == ["/a", "/b"]

    def test_env_var_csv(self, monkeypatch):
        monkeypatch.setenv("SCAN_PATHS", "/movies,/tv")
        monkeypatch.setenv("INCLUDE_ENGINES", "alass")
        cfg = Settings()
        assert cfg.SCAN_PATHS == ["/movies", "/tv"]
        assert cfg.INCLUDE_ENGINES == ["alass"]


class TestValidation:
    def test_rejects_unknown_engine(self):
        with pytest.raises(Exception, match="unknown engine"):
            Settings(INCLUDE_ENGINES=["ffsubsync", "whisper"])

    def test_rejects_zero_concurrency(self):
        with pytest.raises(Exception):
            Settings(MAX_CONCURRENT_SYNC_TASKS=0)

    def test_rejects_non_positive_timeout(self):
        with pytest.raises(Exception):
            Settings(SYNC_ENGINE_TIMEOUT_S=0)

    def test_cron_schedule(self, monkeypatch):
        assert Settings().CRON_SCHEDULE == "0 0 * * *"
        monkeypatch.setenv("CRON_SCHEDULE", "*/15 2-5 * * 1-5")
        assert Settings().CRON_SCHEDULE == "*/15 2-5 * * 1-5"

    def test_cron_disabled_normalized(self):
        assert Settings(CRON_SCHEDULE=" Disabled ").CRON_SCHEDULE == CRON_DISABLED

    @pytest.mark.parametrize("expr", ["every night", "0 0 * *", "61 * * * *"])
    def test_rejects_bad_cron(self, expr):
        with pytest.raises(Exception, match="CRON_SCHEDULE"):
            Settings(CRON_SCHEDULE=expr)

    @pytest.mark.parametrize("path,ok", [
        ("/media/movies", True),
        ("media", False),
        ("/media/../etc", False),
    ])
    def test_validate_path(self, path, ok):
        assert validate_path(path) is ok


class TestScanConfig:
    def test_drops_invalid_paths(self):
        cfg = Settings(SCAN_PATHS=["/movies", "relative", "/a/../b"], EXCLUDE_PATHS=["x", "/movies/extras"])
        scan = cfg.scan_config()
        assert scan.include_paths == ["/movies"]
        assert scan.exclude_paths == ["/movies/extras"]

    def test_falls_back_to_default(self):
        scan = Settings(SCAN_PATHS=["nope"]).scan_config()
        assert scan.include_paths == [DEFAULT_SCAN_PATH]


class TestLoadSettings:
    def test_none_gives_defaults(self):
        assert load_settings(None).INCLUDE_ENGINES == list(KNOWN_ENGINES)

    def test_yaml_file(self, tmp_path):
        p = tmp_path / "config.yaml"
        p.write_text(
            "SCAN_PATHS:\n  - /movies\nINCLUDE_ENGINES: [alass]\nMAX_CONCURRENT_SYNC_TASKS: 4\n",
            encoding="utf-8",
        )
        cfg = load_settings(p)
        assert cfg.SCAN_PATHS == ["/movies"]
        assert cfg.INCLUDE_ENGINES == ["alass"]
        assert cfg.MAX_CONCURRENT_SYNC_TASKS == 4

    def test_empty_yaml(self, tmp_path):
        p = tmp_path / "config.yaml"
        p.write_text("", encoding="utf-8")
        assert load_settings(p).MAX_CONCURRENT_SYNC_TASKS == 1

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional

from ..config import Settings, validate_path
from ..engines import ENGINE_EXECUTABLES
from ..engines.base import find_executable
from ..models import PreflightResult

logger = logging.getLogger(__name__)


def run_preflight(cfg: Settings, output_dir: Optional[Path] = None) -> PreflightResult:
    """Run levelled readiness checks before starting a run.

    LEVEL 0 (config invariants) and LEVEL 2 (at least one engine executable
    available) are strict; other levels only warn. Writes a markdown + JSON
    report under ``reports/`` when *output_dir* is provided.
    """
    results: list[dict] = []

    def record(level: int, name: str, ok: bool, detail: str = "") -> None:
        results.append({"LEVEL": level, "NAME": name, "OK": ok, "DETAIL": detail})

    # LEVEL 0: config invariants
    ok0 = True
    if not cfg.INCLUDE_ENGINES:
        ok0 = False
        record(0, "Enabled engines", False, "INCLUDE_ENGINES is empty; nothing would run.")
    bad_paths = [p for p in cfg.SCAN_PATHS + cfg.EXCLUDE_PATHS if not validate_path(p)]
    if bad_paths:
        # Invalid paths are dropped at scan time, so this only warns
        record(0, "Path syntax", False, f"Ignored (must be absolute, no '..'): {bad_paths}")
    if cfg.TRIM_LOGS_DAYS > cfg.KEEP_RUNS_DAYS:
        record(
            0, "Retention windows", False,
            f"TRIM_LOGS_DAYS ({cfg.TRIM_LOGS_DAYS}) exceeds KEEP_RUNS_DAYS "
            f"({cfg.KEEP_RUNS_DAYS}); logs will be deleted before they are trimmed.",
        )
    record(0, "Config invariants", ok0, "Engines, paths and retention windows checked.")

    # LEVEL 1: scan paths exist
    scan = cfg.scan_config()
    missing = [p for p in scan.include_paths if not Path(p).is_dir()]
    record(
        1, "Scan paths readable", not missing,
        f"Missing: {missing}" if missing else f"{len(scan.include_paths)} path(s) found.",
    )

    # LEVEL 2: engine executables on PATH
    available = []
    for engine in cfg.INCLUDE_ENGINES:
        exe = ENGINE_EXECUTABLES.get(engine, engine)
        found = find_executable(exe)
        record(2, f"Engine {engine}", found is not None, found or f"'{exe}' not found on PATH")
        if found:
            available.append(engine)
    ok2 = bool(available)

    # LEVEL 3: database location writable
    db_dir = Path(cfg.DB_PATH).parent
    check_dir = db_dir if db_dir.exists() else next(
        (p for p in db_dir.parents if p.exists()), Path("/"),
    )
    writable = os.access(check_dir, os.W_OK)
    record(3, "Database directory writable", writable, str(db_dir))

    ok = ok0 and ok2

    # Persist report
    report_path: Path | None = None
    if output_dir:
        reports_dir = output_dir / "reports"
        reports_dir.mkdir(parents=True, exist_ok=True)
        md = ["# Preflight Report", ""]
        for r in results:
            status = "PASS" if r["OK"] else "FAIL"
            md.append(f"- L{r['LEVEL']} [{status}] **{r['NAME']}**: {r['DETAIL']}")
        report_path = reports_dir / "preflight.md"
        report_path.write_text("\n".join(md) + "\n", encoding="utf-8")
        (reports_dir / "preflight.json").write_text(
            json.dumps(results, indent=2), encoding="utf-8"
        )

    if not ok:
        logger.error("Preflight failed. Enable at least one installed engine.")
    else:
        logger.info("Preflight passed (%d/%d engines available).", len(available), len(cfg.INCLUDE_ENGINES))

    return PreflightResult(ok=ok, results=results, report_path=report_path)

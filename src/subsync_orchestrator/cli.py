from __future__ import annotations

import asyncio
import signal
from datetime import datetime
from pathlib import Path
from typing import Optional

import click

from .config import Settings, load_settings
from .exceptions import PreflightError, SubsyncError
from .state.database import RunDatabase
from .utils.logger import setup_cli_logging

_config_option = click.option(
    "--config", "config_path",
    type=click.Path(exists=True, dir_okay=False), default=None,
    help="Path to YAML config file (defaults + environment if omitted).",
)


def _format_ms(value: Optional[int]) -> str:
    if value is None:
        return "-"
    return datetime.fromtimestamp(value / 1000).strftime("%Y-%m-%d %H:%M:%S")


def _open_db(cfg: Settings) -> RunDatabase:
    if not Path(cfg.DB_PATH).exists():
        raise click.ClickException(f"Database not found: {cfg.DB_PATH}")
    return RunDatabase(cfg.DB_PATH)


@click.group()
@click.option("-v", "--verbose", count=True, help="Increase verbosity (repeat for more).")
@click.option("-q", "--quiet", is_flag=True, default=False, help="Suppress all but warnings.")
@click.pass_context
def main(ctx: click.Context, verbose: int, quiet: bool) -> None:
    """subsync-orchestrator CLI"""
    ctx.ensure_object(dict)
    verbosity = -1 if quiet else verbose
    ctx.obj["verbosity"] = verbosity
    setup_cli_logging(verbosity=verbosity)


@main.command()
@_config_option
@click.option("--output-dir", type=click.Path(), default=None, help="Write reports/ under this directory.")
def preflight(config_path: str | None, output_dir: str | None) -> None:
    """Run preflight checks against a config file."""
    cfg = load_settings(config_path)
    from .preflight.checks import run_preflight

    out = Path(output_dir) if output_dir else None
    result = run_preflight(cfg, output_dir=out)
    for r in result.results:
        status = "PASS" if r["OK"] else "FAIL"
        click.echo(f"L{r['LEVEL']} [{status}] {r['NAME']}: {r['DETAIL']}")
    if result.ok:
        click.echo("Preflight passed.")
    else:
        click.echo("Preflight FAILED.", err=True)
        raise SystemExit(2)


@main.command("run")
@_config_option
@click.option(
    "--scan-path", "scan_paths", multiple=True,
    help="Directory to scan (repeatable, overrides SCAN_PATHS).",
)
@click.option(
    "--engine", "engines", multiple=True,
    help="Engine to run (repeatable, overrides INCLUDE_ENGINES).",
)
@click.option("--max-concurrent", type=int, default=None, help="Override MAX_CONCURRENT_SYNC_TASKS.")
@click.option("--skip-preflight", is_flag=True, default=False, help="Do not run preflight checks.")
def run_cmd(
    config_path: str | None,
    scan_paths: tuple[str, ...],
    engines: tuple[str, ...],
    max_concurrent: int | None,
    skip_preflight: bool,
) -> None:
    """Scan once and synchronize every subtitle found."""
    from .run import run_once

    overrides: dict = {}
    if scan_paths:
        overrides["SCAN_PATHS"] = list(scan_paths)
    if engines:
        overrides["INCLUDE_ENGINES"] = list(engines)
    if max_concurrent is not None:
        overrides["MAX_CONCURRENT_SYNC_TASKS"] = max_concurrent
    cfg = load_settings(config_path)
    if overrides:
        try:
            cfg = Settings(**{**cfg.model_dump(), **overrides})
        except ValueError as exc:
            raise click.BadParameter(str(exc))

    try:
        result = asyncio.run(run_once(cfg, skip_preflight=skip_preflight))
    except PreflightError:
        click.echo("Preflight checks FAILED, aborting.", err=True)
        raise SystemExit(2)
    except SubsyncError as exc:
        raise click.ClickException(str(exc))

    click.echo(f"\nRun {result.run_id} {result.status.value}.")
    click.echo(f"  Files:      {result.total_files}")
    click.echo(f"  Completed:  {result.completed}")
    click.echo(f"  Skipped:    {result.skipped}")
    click.echo(f"  Engines:    {result.completed_engines}/{result.total_engines}")
    if result.failed:
        click.echo(f"  Failed:     {result.failed}", err=True)


@main.command("serve")
@_config_option
@click.option("--skip-preflight", is_flag=True, default=False, help="Do not run preflight checks.")
def serve_cmd(config_path: str | None, skip_preflight: bool) -> None:
    """Run on CRON_SCHEDULE and clean up the database periodically until stopped."""
    from .server import serve

    cfg = load_settings(config_path)

    async def _serve() -> None:
        stop = asyncio.Event()
        asyncio.get_running_loop().add_signal_handler(signal.SIGTERM, stop.set)
        await serve(cfg, skip_preflight=skip_preflight, stop_event=stop)

    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        click.echo("Stopped.")
    except PreflightError:
        click.echo("Preflight checks FAILED, aborting.", err=True)
        raise SystemExit(2)
    except SubsyncError as exc:
        raise click.ClickException(str(exc))


@main.command()
@_config_option
@click.option("--limit", type=int, default=50, show_default=True)
def history(config_path: str | None, limit: int) -> None:
    """List recent runs, newest first."""
    from rich.console import Console
    from rich.table import Table

    db = _open_db(load_settings(config_path))
    try:
        runs = db.get_run_history(limit)
    finally:
        db.close()

    table = Table(title="Run history")
    for col in ("Run", "Status", "Started", "Ended", "Files", "Done", "Skipped", "Failed", "Engines"):
        table.add_column(col)
    for r in runs:
        table.add_row(
            r.id, r.status.value, _format_ms(r.start_time), _format_ms(r.end_time),
            str(r.total_files), str(r.completed), str(r.skipped), str(r.failed),
            f"{r.completed_engines}/{r.total_engines}",
        )
    Console().print(table)


@main.command()
@_config_option
@click.argument("run_id")
def show(config_path: str | None, run_id: str) -> None:
    """Show one run and the per-engine result of each file."""
    db = _open_db(load_settings(config_path))
    try:
        run = db.get_run(run_id)
        if run is None:
            raise click.ClickException(f"Run not found: {run_id}")
        files = db.get_file_results(run_id)
    finally:
        db.close()

    click.echo(f"Run {run.id} [{run.status.value}]")
    click.echo(f"  Started: {_format_ms(run.start_time)}  Ended: {_format_ms(run.end_time)}")
    click.echo(
        f"  Files: {run.total_files}  Completed: {run.completed}  "
        f"Skipped: {run.skipped}  Failed: {run.failed}  "
        f"Engines: {run.completed_engines}/{run.total_engines}"
    )
    for f in files:
        click.echo(f"- {f.file_path} [{f.status.value}]")
        for name, result in f.engines.items():
            mark = "ok" if result.success else "FAILED"
            if result.skipped:
                mark = "skipped"
            click.echo(f"    {name}: {mark} ({result.duration} ms) {result.message}")


@main.command()
@_config_option
@click.argument("run_id")
def logs(config_path: str | None, run_id: str) -> None:
    """Print the persisted log of a run."""
    db = _open_db(load_settings(config_path))
    try:
        run = db.get_run(run_id)
    finally:
        db.close()
    if run is None:
        raise click.ClickException(f"Run not found: {run_id}")
    click.echo(run.logs, nl=False)


@main.command()
@_config_option
@click.argument("run_id")
@click.argument("out_path", type=click.Path(dir_okay=False))
def export(config_path: str | None, run_id: str, out_path: str) -> None:
    """Export a run's file results as JSON lines."""
    from .utils.io import export_file_results

    db = _open_db(load_settings(config_path))
    try:
        if db.get_run(run_id) is None:
            raise click.ClickException(f"Run not found: {run_id}")
        files = db.get_file_results(run_id)
    finally:
        db.close()
    count = export_file_results(Path(out_path), files)
    click.echo(f"Exported {count} file results to {out_path}")


@main.command("skip-status")
@_config_option
@click.argument("path", required=False)
def skip_status(config_path: str | None, path: str | None) -> None:
    """Show engines skipped for PATH, or overall skip statistics."""
    db = _open_db(load_settings(config_path))
    try:
        if path:
            skipped = db.get_skipped_engines(path)
            if skipped:
                click.echo(f"{path}: skipped engines: {', '.join(skipped)}")
            else:
                click.echo(f"{path}: no engines skipped")
            return
        stats = db.get_failure_stats()
    finally:
        db.close()

    click.echo(f"Files with skipped engines: {stats.total_skipped}")
    for engine, count in sorted(stats.skipped_by_engine.items()):
        click.echo(f"  {engine}: {count}")


@main.command("reset-skip")
@_config_option
@click.argument("path")
@click.option("--engine", type=str, default=None, help="Reset only this engine.")
def reset_skip(config_path: str | None, path: str, engine: str | None) -> None:
    """Clear failure tracking for PATH so its engines run again."""
    from .state.failure_tracker import FailureTracker

    cfg = load_settings(config_path)
    db = _open_db(cfg)
    try:
        reset = FailureTracker(db, threshold=cfg.FAILURE_SKIP_THRESHOLD).reset_skip(path, engine)
    finally:
        db.close()
    click.echo(f"Reset {reset} tracking record(s) for {path}")


@main.command()
@_config_option
def cleanup(config_path: str | None) -> None:
    """Trim old run logs, delete expired runs and vacuum the database."""
    from .retention import run_retention_sweep

    cfg = load_settings(config_path)
    db = _open_db(cfg)
    try:
        result = run_retention_sweep(db, cfg.retention_config())
    finally:
        db.close()
    click.echo(f"Trimmed logs: {result.trimmed}")
    click.echo(f"Deleted runs: {result.deleted}")
    click.echo(f"Vacuumed:     {'yes' if result.vacuumed else 'no'}")
    if result.stats is not None:
        click.echo(f"Size:         {result.stats.size_bytes / 1024 / 1024:.2f} MB")


@main.command("db-stats")
@_config_option
def db_stats(config_path: str | None) -> None:
    """Print database page statistics."""
    db = _open_db(load_settings(config_path))
    try:
        stats = db.get_database_stats()
    finally:
        db.close()
    click.echo(f"Pages:     {stats.page_count}")
    click.echo(f"Page size: {stats.page_size}")
    click.echo(f"Size:      {stats.size_bytes / 1024 / 1024:.2f} MB")


if __name__ == "__main__":
    main()

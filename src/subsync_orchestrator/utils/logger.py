from __future__ import annotations

import json
import logging
import logging.handlers
import traceback
from datetime import datetime, timezone
from pathlib import Path

LOGGER_NAME = "subsync_orchestrator"
LOG_FILENAME = "subsync-orchestrator.log"

# Attributes every LogRecord carries; anything else came in through ``extra=``
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "asctime", "taskName"}


class JsonLineFormatter(logging.Formatter):
    """One JSON object per line.

    Fields passed with ``extra=`` land under ``"extra"``; a ``RUN_ID`` extra is
    also lifted to the top level so a run's lines can be grepped together.
    """

    def format(self, record: logging.LogRecord) -> str:
        extra = {
            k: v for k, v in vars(record).items()
            if k not in _RECORD_ATTRS and not k.startswith("_")
        }
        obj: dict = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "message": record.getMessage(),
        }
        if "RUN_ID" in extra:
            obj["run_id"] = extra["RUN_ID"]
        obj["extra"] = extra
        if record.exc_info and record.exc_info[0] is not None:
            obj["traceback"] = traceback.format_exception(*record.exc_info)
        return json.dumps(obj, default=str)


def setup_file_handler(
    logger: logging.Logger,
    log_dir: Path,
    *,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
) -> Path:
    """Attach a rotating JSON-lines handler at DEBUG level and return its path.

    Rotates at *max_bytes*. Calling twice with the same directory is a no-op.
    """
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = (log_dir / LOG_FILENAME).resolve()

    for h in logger.handlers:
        if isinstance(h, logging.FileHandler) and h.baseFilename == str(log_path):
            return log_path

    fh = logging.handlers.RotatingFileHandler(
        str(log_path), maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8",
    )
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(JsonLineFormatter())
    logger.addHandler(fh)
    if logger.level == logging.NOTSET or logger.level > logging.DEBUG:
        logger.setLevel(logging.DEBUG)
    return log_path


def configure_file_logging(log_dir: Path) -> Path:
    return setup_file_handler(logging.getLogger(LOGGER_NAME), log_dir)


def setup_cli_logging(*, verbosity: int = 0) -> None:
    """Route ``subsync_orchestrator`` logs to the terminal through rich.

    ``-1`` (quiet) shows warnings only, ``0`` info, ``1`` or more debug.
    Repeated calls only adjust the level.
    """
    from rich.logging import RichHandler

    if verbosity < 0:
        level = logging.WARNING
    elif verbosity == 0:
        level = logging.INFO
    else:
        level = logging.DEBUG

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)

    for h in logger.handlers:
        if isinstance(h, RichHandler):
            h.setLevel(level)
            return

    # Subtitle paths contain brackets, which rich would read as markup
    handler = RichHandler(rich_tracebacks=True, markup=False, show_path=verbosity > 0)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)

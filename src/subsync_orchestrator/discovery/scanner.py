from __future__ import annotations

import logging
import os
from pathlib import Path

from ..config import KNOWN_ENGINES, ScanConfig
from ..exceptions import ScanError

logger = logging.getLogger(__name__)

SUBTITLE_EXTENSION = ".srt"

# Engine output files look like "<name>.<engine>.srt"
ENGINE_OUTPUT_MARKERS: tuple[str, ...] = tuple(f".{name}." for name in KNOWN_ENGINES)


def is_engine_output(filename: str) -> bool:
    return any(marker in filename for marker in ENGINE_OUTPUT_MARKERS)


def _on_walk_error(exc: OSError) -> None:
    logger.warning("Cannot read %s: %s", exc.filename, exc.strerror)


def _is_excluded(directory: str, exclude_paths: list[str]) -> bool:
    return any(
        directory == p.rstrip("/") or directory.startswith(p.rstrip("/") + "/")
        for p in exclude_paths
    )


def find_subtitle_files(config: ScanConfig) -> list[str]:
    """Recursively collect candidate subtitle files under every include path.

    Skips directories under an exclude path and files already produced by an
    engine. Order follows the include list, then a sorted directory walk.
    Raises :class:`ScanError` when an include path cannot be read.
    """
    found: list[str] = []
    seen: set[str] = set()

    for include in config.include_paths:
        if not Path(include).is_dir():
            raise ScanError(f"Scan path is not a readable directory: {include}")

        for dirpath, dirnames, filenames in os.walk(include, onerror=_on_walk_error):
            if _is_excluded(dirpath, config.exclude_paths):
                dirnames[:] = []
                continue
            dirnames.sort()
            for name in sorted(filenames):
                if Path(name).suffix.lower() != SUBTITLE_EXTENSION or is_engine_output(name):
                    continue
                full = os.path.join(dirpath, name)
                if full not in seen and os.path.isfile(full):
                    seen.add(full)
                    found.append(full)

    logger.debug("Scanner found %d subtitle files", len(found))
    return found

from __future__ import annotations
import json
from pathlib import Path
from typing import Iterable, Mapping, Any

from ..models import FileResult


def write_jsonl(
    path: Path, rows: Iterable[Mapping[str, Any]], *, mode: str = "a",
) -> int:
    """Append (or with ``mode="w"`` overwrite) rows as JSON lines. Returns the row count."""
    path.parent.mkdir(parents=True, exist_ok=True)
    count = 0
    with path.open(mode, encoding="utf-8") as f:
        for r in rows:
            f.write(json.dumps(r, ensure_ascii=False) + "\n")
            count += 1
    return count


def export_file_results(path: Path, files: Iterable[FileResult]) -> int:
    """Write one JSON line per file result, replacing *path*."""
    return write_jsonl(path, (f.to_dict() for f in files), mode="w")

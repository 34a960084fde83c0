from __future__ import annotations

from .io import export_file_results, write_jsonl

__all__ = ["export_file_results", "write_jsonl"]

from __future__ import annotations

from .checks import run_preflight

__all__ = ["run_preflight"]

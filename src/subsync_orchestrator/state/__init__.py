from __future__ import annotations

from .database import RunDatabase
from .failure_tracker import FailureTracker
from .store import StateStore

__all__ = ["RunDatabase", "FailureTracker", "StateStore"]

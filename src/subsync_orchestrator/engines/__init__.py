from __future__ import annotations

import importlib

from .base import SubprocessEngine, SyncEngine, output_path_for

# Adapters load on first use so an unused engine costs nothing
_ENGINE_MODULES = {
    "ffsubsync": ".ffsubsync",
    "autosubsync": ".autosubsync",
    "alass": ".alass",
}

# Executable each adapter spawns, for preflight checks
ENGINE_EXECUTABLES = {
    "ffsubsync": "ffsubsync",
    "autosubsync": "autosubsync",
    "alass": "alass-cli",
}

__all__ = [
    "ENGINE_EXECUTABLES",
    "SubprocessEngine",
    "SyncEngine",
    "get_engine",
    "load_engines",
    "output_path_for",
]


def get_engine(name: str) -> SyncEngine:
    module_path = _ENGINE_MODULES.get(name)
    if module_path is None:
        raise KeyError(f"Unknown engine: {name!r}")
    mod = importlib.import_module(module_path, __package__)
    return mod.engine


def load_engines(names: list[str]) -> dict[str, SyncEngine]:
    return {name: get_engine(name) for name in names}

from __future__ import annotations

from .base import SubprocessEngine


class AutosubsyncEngine(SubprocessEngine):
    name = "autosubsync"

    def build_command(self, srt_path: str, video_path: str, output_path: str) -> list[str]:
        return ["autosubsync", video_path, srt_path, output_path]


engine = AutosubsyncEngine()

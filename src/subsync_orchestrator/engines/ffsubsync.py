from __future__ import annotations

from .base import SubprocessEngine


class FfsubsyncEngine(SubprocessEngine):
    name = "ffsubsync"

    def build_command(self, srt_path: str, video_path: str, output_path: str) -> list[str]:
        return ["ffsubsync", video_path, "-i", srt_path, "-o", output_path]


engine = FfsubsyncEngine()

from __future__ import annotations

from .base import SubprocessEngine


class AlassEngine(SubprocessEngine):
    """alass aligns against the video's audio; the CLI binary is ``alass-cli``."""

    name = "alass"

    def build_command(self, srt_path: str, video_path: str, output_path: str) -> list[str]:
        return ["alass-cli", video_path, srt_path, output_path]


engine = AlassEngine()

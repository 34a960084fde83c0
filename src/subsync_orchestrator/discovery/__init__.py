from __future__ import annotations

from .matcher import find_matching_video
from .scanner import find_subtitle_files

__all__ = ["find_matching_video", "find_subtitle_files"]

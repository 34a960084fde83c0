from __future__ import annotations

import os
from typing import Optional

VIDEO_EXTENSIONS: tuple[str, ...] = (".mkv", ".mp4", ".avi", ".mov")


def find_matching_video(srt_path: str) -> Optional[str]:
    """Find the video a subtitle belongs to, or None.

    Tries the subtitle's own base name first, then drops trailing
    dot-separated tags one at a time ("Movie.en.forced" -> "Movie.en" -> "Movie").
    """
    directory = os.path.dirname(srt_path)
    base = os.path.basename(srt_path)
    if base.lower().endswith(".srt"):
        base = base[: -len(".srt")]

    segments = base.split(".")
    while segments:
        candidate_base = ".".join(segments)
        for ext in VIDEO_EXTENSIONS:
            candidate = os.path.join(directory, candidate_base + ext)
            if os.path.exists(candidate):
                return candidate
        if len(segments) == 1:
            break
        segments.pop()
    return None

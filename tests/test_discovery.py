"""Subtitle scanner and video matcher against real temp directories."""
from __future__ import annotations

import pytest

from subsync_orchestrator.config import ScanConfig
from subsync_orchestrator.discovery import find_matching_video, find_subtitle_files
from subsync_orchestrator.discovery.scanner import is_engine_output
from subsync_orchestrator.exceptions import ScanError


def _touch(path):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("", encoding="utf-8")
    return path


class TestScanner:
    def test_finds_srt_recursively(self, tmp_path):
        _touch(tmp_path / "b" / "Show.S01E01.srt")
        _touch(tmp_path / "a" / "Movie.en.srt")
        _touch(tmp_path / "a" / "Movie.mkv")
        _touch(tmp_path / "a" / "notes.txt")

        found = find_subtitle_files(ScanConfig(include_paths=[str(tmp_path)]))
        assert found == [
            str(tmp_path / "a" / "Movie.en.srt"),
            str(tmp_path / "b" / "Show.S01E01.srt"),
        ]

    def test_skips_engine_outputs(self, tmp_path):
        _touch(tmp_path / "Movie.srt")
        for engine in ("ffsubsync", "autosubsync", "alass"):
            _touch(tmp_path / f"Movie.{engine}.srt")
        found = find_subtitle_files(ScanConfig(include_paths=[str(tmp_path)]))
        assert found == [str(tmp_path / "Movie.srt")]

    def test_excluded_directories(self, tmp_path):
        _touch(tmp_path / "keep" / "a.srt")
        _touch(tmp_path / "skip" / "b.srt")
        _touch(tmp_path / "skip" / "deeper" / "c.srt")
        _touch(tmp_path / "skipper" / "d.srt")

        found = find_subtitle_files(ScanConfig(
            include_paths=[str(tmp_path)], exclude_paths=[str(tmp_path / "skip")],
        ))
        assert found == [str(tmp_path / "keep" / "a.srt"), str(tmp_path / "skipper" / "d.srt")]

    def test_overlapping_include_paths_deduplicated(self, tmp_path):
        _touch(tmp_path / "sub" / "a.srt")
        found = find_subtitle_files(ScanConfig(include_paths=[str(tmp_path), str(tmp_path / "sub")]))
        assert found == [str(tmp_path / "sub" / "a.srt")]

    def test_missing_include_path_raises(self, tmp_path):
        with pytest.raises(ScanError):
            find_subtitle_files(ScanConfig(include_paths=[str(tmp_path / "missing")]))

    @pytest.mark.parametrize("name,expected", [
        ("Movie.ffsubsync.srt", True),
        ("Movie.en.alass.srt", True),
        ("Movie.en.srt", False),
        ("alass.srt", False),
    ])
    def test_is_engine_output(self, name, expected):
        assert is_engine_output(name) is expected


class TestMatcher:
    def test_exact_base_name(self, tmp_path):
        video = _touch(tmp_path / "Movie.mp4")
        assert find_matching_video(str(tmp_path / "Movie.srt")) == str(video)

    def test_strips_language_tags(self, tmp_path):
        video = _touch(tmp_path / "Movie.2019.mkv")
        assert find_matching_video(str(tmp_path / "Movie.2019.en.forced.srt")) == str(video)

    def test_prefers_longest_base(self, tmp_path):
        _touch(tmp_path / "Movie.mkv")
        longer = _touch(tmp_path / "Movie.Part2.mkv")
        assert find_matching_video(str(tmp_path / "Movie.Part2.en.srt")) == str(longer)

    def test_extension_order(self, tmp_path):
        mkv = _touch(tmp_path / "Movie.mkv")
        _touch(tmp_path / "Movie.avi")
        assert find_matching_video(str(tmp_path / "Movie.srt")) == str(mkv)

    def test_no_match(self, tmp_path):
        _touch(tmp_path / "Other.mkv")
        assert find_matching_video(str(tmp_path / "Movie.en.srt")) is None

from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest

import viralfit.features.scenes as scenes
from viralfit.errors import DegradedSignalError
from viralfit.models import VideoAsset

SHOWINFO_LINES = [
    "Input #0, mov,mp4,m4a,3gp,3g2,mj2, from 'clip.mp4':",
    "[Parsed_showinfo_1 @ 0x55d5] n:   0 pts:  45056 pts_time:3.52    duration:512",
    "[Parsed_showinfo_1 @ 0x55d5] n:   1 pts:  90112 pts_time:7.04    duration:512",
    "[Parsed_showinfo_1 @ 0x55d5] n:   2 pts:  90112 pts_time:7.04    duration:512",
    "[Parsed_showinfo_1 @ 0x55d5] n:   3 pts: 999999 pts_time:99.0    duration:512",
]


def _fake_stream(lines: list[str], returncode: int = 0):
    async def _stream(
        command: list[str],
        on_line: Callable[[str], None],
        *,
        timeout_seconds: float | None = None,
    ) -> int:
        for line in lines:
            on_line(line)
        return returncode

    return _stream


def test_parse_showinfo_line_extracts_pts_time() -> None:
    assert scenes.parse_showinfo_line(SHOWINFO_LINES[1]) == 3.52
    assert scenes.parse_showinfo_line(SHOWINFO_LINES[0]) is None
    assert scenes.parse_showinfo_line("[Parsed_showinfo_1 @ 0x1] config in time_base: 1/12800") is None


def test_normalize_boundaries_sorts_dedupes_and_clamps() -> None:
    assert scenes.normalize_boundaries([5.0, 1.0004, 1.0, -1.0, 12.0, 10.0], 10.0) == [1.0, 5.0, 10.0]


@pytest.mark.asyncio
async def test_detect_scene_boundaries_collects_cuts(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    asset = VideoAsset(path=tmp_path / "clip.mp4", duration_seconds=30.0)
    monkeypatch.setattr(scenes, "stream_stderr", _fake_stream(SHOWINFO_LINES))

    boundaries = await scenes.detect_scene_boundaries(asset)

    assert boundaries == [3.52, 7.04]


@pytest.mark.asyncio
async def test_detect_scene_boundaries_degrades_on_ffmpeg_error(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    asset = VideoAsset(path=tmp_path / "clip.mp4", duration_seconds=30.0)
    monkeypatch.setattr(scenes, "stream_stderr", _fake_stream(["moov atom not found"], returncode=1))

    with pytest.raises(DegradedSignalError, match="moov atom not found"):
        await scenes.detect_scene_boundaries(asset)


@pytest.mark.asyncio
async def test_detect_scene_boundaries_rejects_out_of_range_threshold(tmp_path: Path) -> None:
    asset = VideoAsset(path=tmp_path / "clip.mp4", duration_seconds=30.0)

    with pytest.raises(ValueError):
        await scenes.detect_scene_boundaries(asset, threshold=1.5)

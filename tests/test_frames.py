from __future__ import annotations

from pathlib import Path

import pytest

import viralfit.ingest.extract_audio as extract_audio_module
import viralfit.ingest.frames as frames
from viralfit.errors import DegradedSignalError, FatalExtractionError
from viralfit.ingest.process import ProcessResult
from viralfit.models import VideoAsset


def _writing_ffmpeg(frame_count: int, returncode: int = 0):
    async def _run(command: list[str], *, timeout_seconds: float | None = None) -> ProcessResult:
        pattern = Path(command[-1])
        for index in range(1, frame_count + 1):
            (pattern.parent / f"frame-{index:05d}.jpg").write_bytes(b"jpg")
        return ProcessResult(returncode, "", "" if returncode == 0 else "boom")

    return _run


@pytest.mark.asyncio
async def test_sample_frames_timestamps_follow_interval(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    asset = VideoAsset(path=tmp_path / "clip.mp4", duration_seconds=7.0)
    monkeypatch.setattr(frames, "run_command", _writing_ffmpeg(4))

    samples = await frames.sample_frames(asset, tmp_path / "frames", interval_seconds=2.0)

    assert [sample.timestamp_seconds for sample in samples] == [0.0, 2.0, 4.0, 6.0]
    assert all(sample.image_path.exists() for sample in samples)


@pytest.mark.asyncio
async def test_sample_frames_drops_frames_past_duration(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    asset = VideoAsset(path=tmp_path / "clip.mp4", duration_seconds=4.0)
    monkeypatch.setattr(frames, "run_command", _writing_ffmpeg(3))

    samples = await frames.sample_frames(asset, tmp_path / "frames", interval_seconds=2.0)

    assert len(samples) == 2
    assert not (tmp_path / "frames" / "frame-00003.jpg").exists()


@pytest.mark.asyncio
async def test_sample_frames_without_output_is_fatal(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    asset = VideoAsset(path=tmp_path / "clip.mp4", duration_seconds=4.0)
    monkeypatch.setattr(frames, "run_command", _writing_ffmpeg(0))

    with pytest.raises(FatalExtractionError, match="no frames"):
        await frames.sample_frames(asset, tmp_path / "frames")


@pytest.mark.asyncio
async def test_sample_frames_ffmpeg_error_is_fatal(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    asset = VideoAsset(path=tmp_path / "clip.mp4", duration_seconds=4.0)
    monkeypatch.setattr(frames, "run_command", _writing_ffmpeg(0, returncode=1))

    with pytest.raises(FatalExtractionError, match="Frame extraction failed"):
        await frames.sample_frames(asset, tmp_path / "frames")


def test_expected_frame_count_rounds_up() -> None:
    assert frames.expected_frame_count(7.0, 2.0) == 4
    assert frames.expected_frame_count(0.5, 2.0) == 1
    assert frames.expected_frame_count(0.0, 2.0) == 0


@pytest.mark.asyncio
async def test_extract_audio_without_audio_stream_degrades(tmp_path: Path) -> None:
    asset = VideoAsset(path=tmp_path / "clip.mp4", duration_seconds=4.0, has_audio=False)

    with pytest.raises(DegradedSignalError, match="No audio stream"):
        await extract_audio_module.extract_audio(asset, tmp_path)


@pytest.mark.asyncio
async def test_extract_audio_failure_degrades(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    asset = VideoAsset(path=tmp_path / "clip.mp4", duration_seconds=4.0)

    async def _failing(command: list[str], *, timeout_seconds: float | None = None) -> ProcessResult:
        return ProcessResult(1, "", "Invalid data found when processing input")

    monkeypatch.setattr(extract_audio_module, "run_command", _failing)

    with pytest.raises(DegradedSignalError, match="Audio extraction failed"):
        await extract_audio_module.extract_audio(asset, tmp_path)

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

from viralfit.errors import FatalExtractionError
from viralfit.ingest.process import describe_failure, run_command
from viralfit.models import VideoAsset

DEFAULT_PROBE_TIMEOUT_SECONDS = 60


async def probe_video(video_path: str | Path, timeout_seconds: float = DEFAULT_PROBE_TIMEOUT_SECONDS) -> VideoAsset:
    """Probe a local video with ffprobe and return its immutable asset handle."""

    source_path = Path(video_path).expanduser().resolve()
    if not source_path.exists():
        raise FatalExtractionError(f"Video file not found: {source_path}")

    payload = await _run_ffprobe(source_path, timeout_seconds)
    return _asset_from_payload(source_path, payload)


async def _run_ffprobe(video_path: Path, timeout_seconds: float) -> dict[str, Any]:
    command = [
        "ffprobe",
        "-v",
        "error",
        "-print_format",
        "json",
        "-show_format",
        "-show_streams",
        str(video_path),
    ]

    try:
        completed = await run_command(command, timeout_seconds=timeout_seconds)
    except RuntimeError as exc:
        raise FatalExtractionError(str(exc)) from exc
    except asyncio.TimeoutError as exc:
        raise FatalExtractionError(f"ffprobe timed out after {timeout_seconds}s on {video_path}") from exc

    if completed.returncode != 0:
        raise FatalExtractionError(
            f"ffprobe failed to read media file: {video_path}. {describe_failure('ffprobe', completed.stderr)}"
        )

    try:
        return json.loads(completed.stdout)
    except json.JSONDecodeError as exc:
        raise FatalExtractionError("ffprobe returned invalid JSON output.") from exc


def _asset_from_payload(video_path: Path, payload: dict[str, Any]) -> VideoAsset:
    streams = payload.get("streams", [])
    format_entry = payload.get("format", {})

    video_streams = [stream for stream in streams if stream.get("codec_type") == "video"]
    if not video_streams:
        raise FatalExtractionError(f"No video stream found in {video_path}")

    duration = _to_float(format_entry.get("duration"))
    if duration is None:
        stream_durations = [_to_float(stream.get("duration")) for stream in streams]
        duration = max((value for value in stream_durations if value is not None), default=None)

    if duration is None or duration <= 0:
        raise FatalExtractionError(f"Could not determine a positive duration for {video_path}")

    primary = video_streams[0]
    return VideoAsset(
        path=video_path,
        duration_seconds=round(duration, 3),
        width=_to_int(primary.get("width")),
        height=_to_int(primary.get("height")),
        has_audio=any(stream.get("codec_type") == "audio" for stream in streams),
        fps=_to_fps(primary.get("avg_frame_rate") or primary.get("r_frame_rate")),
    )


def _to_float(raw_value: Any) -> float | None:
    if raw_value in (None, "N/A", ""):
        return None
    return float(raw_value)


def _to_int(raw_value: Any) -> int | None:
    if raw_value in (None, "N/A", ""):
        return None
    return int(raw_value)


def _to_fps(raw_value: Any) -> float | None:
    if not isinstance(raw_value, str) or not raw_value:
        return None
    numerator, _, denominator = raw_value.partition("/")
    try:
        value = float(numerator) / float(denominator or 1)
    except (ValueError, ZeroDivisionError):
        return None
    return round(value, 3) if value > 0 else None

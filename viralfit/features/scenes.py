from __future__ import annotations

import asyncio
import logging
import re

from viralfit.errors import DegradedSignalError
from viralfit.ingest.process import describe_failure, stream_stderr
from viralfit.models import VideoAsset

logger = logging.getLogger(__name__)

PTS_TIME_PATTERN = re.compile(r"pts_time:\s*([0-9]+(?:\.[0-9]+)?)")


async def detect_scene_boundaries(
    asset: VideoAsset,
    threshold: float = 0.3,
    timeout_seconds: float = 300,
) -> list[float]:
    """Return sorted, deduplicated cut timestamps inside ``[0, duration]``.

    Raises ``DegradedSignalError`` when ffmpeg cannot run; the caller treats the
    video as a single long take.
    """

    if not 0.0 <= threshold <= 1.0:
        raise ValueError("Scene threshold must be in [0, 1].")

    timestamps: list[float] = []
    tail: list[str] = []

    def _on_line(line: str) -> None:
        parsed = parse_showinfo_line(line)
        if parsed is not None:
            timestamps.append(parsed)
        elif line:
            tail.append(line)
            del tail[:-5]

    command = [
        "ffmpeg",
        "-hide_banner",
        "-nostats",
        "-i",
        str(asset.path),
        "-filter:v",
        f"select='gt(scene,{threshold})',showinfo",
        "-an",
        "-f",
        "null",
        "-",
    ]

    try:
        returncode = await stream_stderr(command, _on_line, timeout_seconds=timeout_seconds)
    except RuntimeError as exc:
        raise DegradedSignalError(str(exc)) from exc
    except asyncio.TimeoutError as exc:
        raise DegradedSignalError(f"Scene detection timed out after {timeout_seconds}s") from exc

    if returncode != 0:
        raise DegradedSignalError(f"Scene detection failed. {describe_failure('ffmpeg', chr(10).join(tail))}")

    boundaries = normalize_boundaries(timestamps, asset.duration_seconds)
    logger.info("Scene detection found %s cuts in %s", len(boundaries), asset.path.name)
    return boundaries


def parse_showinfo_line(line: str) -> float | None:
    if "showinfo" not in line:
        return None
    match = PTS_TIME_PATTERN.search(line)
    if not match:
        return None
    return float(match.group(1))


def normalize_boundaries(timestamps: list[float], duration_seconds: float) -> list[float]:
    return sorted({round(value, 3) for value in timestamps if 0.0 <= value <= duration_seconds})

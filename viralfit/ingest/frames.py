from __future__ import annotations

import asyncio
import logging
import math
import re
from pathlib import Path

from viralfit.errors import FatalExtractionError
from viralfit.ingest.process import describe_failure, run_command
from viralfit.models import FrameSample, VideoAsset

logger = logging.getLogger(__name__)

FRAME_NAME_PATTERN = re.compile(r"frame-(\d+)\.jpg$")


async def sample_frames(
    asset: VideoAsset,
    output_dir: Path,
    interval_seconds: float = 2.0,
    jpeg_quality: int = 2,
    timeout_seconds: float = 300,
) -> list[FrameSample]:
    """Extract one still every ``interval_seconds``, oldest first."""

    if interval_seconds <= 0:
        raise ValueError("interval_seconds must be positive.")

    try:
        output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise FatalExtractionError(f"Cannot create frame directory {output_dir}: {exc}") from exc

    command = [
        "ffmpeg",
        "-v",
        "error",
        "-y",
        "-i",
        str(asset.path),
        "-vf",
        f"fps=1/{interval_seconds:g}",
        "-q:v",
        str(jpeg_quality),
        str(output_dir / "frame-%05d.jpg"),
    ]

    try:
        completed = await run_command(command, timeout_seconds=timeout_seconds)
    except RuntimeError as exc:
        raise FatalExtractionError(str(exc)) from exc
    except asyncio.TimeoutError as exc:
        raise FatalExtractionError(f"Frame extraction timed out after {timeout_seconds}s") from exc

    if completed.returncode != 0:
        raise FatalExtractionError(f"Frame extraction failed. {describe_failure('ffmpeg', completed.stderr)}")

    frame_paths = _collect_frame_paths(output_dir)
    if not frame_paths:
        raise FatalExtractionError(f"Frame extraction produced no frames for {asset.path}")

    expected = expected_frame_count(asset.duration_seconds, interval_seconds)
    if len(frame_paths) > expected:
        for extra in frame_paths[expected:]:
            extra.unlink(missing_ok=True)
        frame_paths = frame_paths[:expected]
    elif len(frame_paths) < expected:
        logger.debug("Sampled %s frames, expected %s", len(frame_paths), expected)

    return [
        FrameSample(timestamp_seconds=round(index * interval_seconds, 3), image_path=path)
        for index, path in enumerate(frame_paths)
    ]


def expected_frame_count(duration_seconds: float, interval_seconds: float) -> int:
    if duration_seconds <= 0:
        return 0
    return max(math.ceil(duration_seconds / interval_seconds), 1)


def _collect_frame_paths(output_dir: Path) -> list[Path]:
    numbered: list[tuple[int, Path]] = []
    for path in output_dir.iterdir():
        match = FRAME_NAME_PATTERN.search(path.name)
        if match:
            numbered.append((int(match.group(1)), path))
    numbered.sort()
    return [path for _, path in numbered]

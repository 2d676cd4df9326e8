from __future__ import annotations

import asyncio
from pathlib import Path

from viralfit.errors import DegradedSignalError
from viralfit.ingest.process import describe_failure, run_command
from viralfit.models import VideoAsset


async def extract_audio(
    asset: VideoAsset,
    work_dir: Path,
    target_sample_rate: int = 16000,
    timeout_seconds: float = 300,
) -> Path:
    """Demux the audio track into a mono 16-bit WAV inside the run directory."""

    if not asset.has_audio:
        raise DegradedSignalError(f"No audio stream in {asset.path}")

    output_path = work_dir / "audio.wav"
    output_path.parent.mkdir(parents=True, exist_ok=True)
    command = [
        "ffmpeg",
        "-v",
        "error",
        "-y",
        "-i",
        str(asset.path),
        "-vn",
        "-ac",
        "1",
        "-ar",
        str(target_sample_rate),
        "-c:a",
        "pcm_s16le",
        str(output_path),
    ]

    try:
        completed = await run_command(command, timeout_seconds=timeout_seconds)
    except RuntimeError as exc:
        raise DegradedSignalError(str(exc)) from exc
    except asyncio.TimeoutError as exc:
        raise DegradedSignalError(f"Audio extraction timed out after {timeout_seconds}s") from exc

    if completed.returncode != 0 or not output_path.exists():
        raise DegradedSignalError(f"Audio extraction failed. {describe_failure('ffmpeg', completed.stderr)}")

    return output_path

from __future__ import annotations

import asyncio
import logging
import threading
import wave
from dataclasses import replace
from functools import lru_cache
from pathlib import Path
from typing import Any, Protocol

from viralfit.config import TranscriptionSettings
from viralfit.errors import DegradedSignalError, ExternalServiceError
from viralfit.features.audio_energy import measure_audio_energy
from viralfit.ingest.extract_audio import extract_audio
from viralfit.models import (
    AudioEnergy,
    AudioFeatures,
    AudioTranscript,
    SilenceGap,
    TranscriptSegment,
    TranscriptWord,
    VideoAsset,
)

logger = logging.getLogger(__name__)

FILLER_WORDS = frozenset(
    {"um", "uh", "like", "you know", "sort of", "kind of", "euh", "ben", "genre"}
)
SILENCE_GAP_SECONDS = 1.0
TOKEN_TRIM_CHARS = " \t\n.,!?;:\"'()…-"


class Transcriber(Protocol):
    """Speech-to-text backend returning word- and segment-level timestamps."""

    name: str

    def transcribe(self, audio_path: Path) -> AudioTranscript: ...


class WhisperTranscriber:
    name = "whisper"

    def __init__(
        self,
        model_size: str = "small",
        device: str = "auto",
        compute_type: str = "default",
        language: str | None = None,
    ) -> None:
        self.model_size = model_size
        self.device = device
        self.compute_type = compute_type
        self.language = language

    def transcribe(self, audio_path: Path) -> AudioTranscript:
        model = _load_whisper_model(self.model_size, self.device, self.compute_type)
        segments_iter, info = model.transcribe(
            str(audio_path),
            language=self.language,
            vad_filter=True,
            word_timestamps=True,
        )

        segments: list[TranscriptSegment] = []
        words: list[TranscriptWord] = []
        for segment in segments_iter:
            segments.append(
                TranscriptSegment(
                    start=round(float(segment.start), 3),
                    end=round(float(segment.end), 3),
                    text=segment.text.strip(),
                )
            )
            for word in getattr(segment, "words", None) or []:
                words.append(
                    TranscriptWord(
                        word=word.word.strip(),
                        start=round(float(word.start), 3),
                        end=round(float(word.end), 3),
                    )
                )

        return AudioTranscript(
            text=" ".join(segment.text for segment in segments if segment.text),
            language=str(getattr(info, "language", None) or self.language or ""),
            duration_seconds=float(getattr(info, "duration", 0.0) or 0.0),
            words=tuple(words),
            segments=tuple(segments),
        )


class FixtureTranscriber:
    """Deterministic transcript for offline runs without a speech model."""

    name = "fixture"
    TEXT = "This is a mock transcript for testing purposes. The video contains some speech about viral content."

    def transcribe(self, audio_path: Path) -> AudioTranscript:
        tokens = self.TEXT.split()
        step = 5.0 / len(tokens)
        words = tuple(
            TranscriptWord(word=token, start=round(index * step, 3), end=round((index + 1) * step, 3))
            for index, token in enumerate(tokens)
        )
        return AudioTranscript(
            text=self.TEXT,
            language="en",
            duration_seconds=5.0,
            words=words,
            segments=(TranscriptSegment(start=0.0, end=5.0, text=self.TEXT),),
        )


def build_transcriber(settings: TranscriptionSettings) -> Transcriber:
    if settings.provider == "fixture":
        return FixtureTranscriber()
    return WhisperTranscriber(
        model_size=settings.model_size,
        device=settings.device,
        compute_type=settings.compute_type,
        language=settings.language,
    )


async def extract_audio_features(
    asset: VideoAsset,
    work_dir: Path,
    transcriber: Transcriber,
    *,
    hook_window_seconds: float,
    sample_rate: int = 16000,
    timeout_seconds: float = 300,
) -> AudioFeatures:
    """Demux, transcribe and derive speech statistics; never raises on degraded audio."""

    try:
        audio_path = await extract_audio(
            asset, work_dir, target_sample_rate=sample_rate, timeout_seconds=timeout_seconds
        )
    except (DegradedSignalError, OSError) as exc:
        logger.warning("Audio extraction degraded for %s: %s", asset.path.name, exc)
        return AudioFeatures(transcript=AudioTranscript.empty(error=str(exc)))

    try:
        transcript = await _transcribe(transcriber, audio_path, timeout_seconds)
    except ExternalServiceError as exc:
        logger.warning("Transcription degraded for %s: %s", asset.path.name, exc)
        transcript = AudioTranscript.empty(error=str(exc))

    energy = None
    energy_error = None
    try:
        energy = await asyncio.to_thread(measure_audio_energy, audio_path, hook_window_seconds)
    except (OSError, ValueError, EOFError, wave.Error) as exc:
        logger.warning("Loudness analysis skipped for %s: %s", audio_path.name, exc)
        energy_error = f"Loudness analysis failed: {str(exc) or type(exc).__name__}"

    features = summarize_transcript(transcript, fallback_duration=asset.duration_seconds, energy=energy)
    return replace(features, energy_error=energy_error) if energy_error else features


def summarize_transcript(
    transcript: AudioTranscript,
    *,
    fallback_duration: float,
    energy: AudioEnergy | None = None,
) -> AudioFeatures:
    duration = transcript.duration_seconds if transcript.duration_seconds > 0 else fallback_duration
    return AudioFeatures(
        transcript=transcript,
        words_per_minute=words_per_minute(transcript, duration),
        filler_count=count_fillers(transcript.words),
        silences=tuple(find_silences(transcript.segments)),
        energy=energy,
    )


def words_per_minute(transcript: AudioTranscript, duration_seconds: float) -> int:
    if duration_seconds <= 0:
        return 0
    word_count = len(transcript.words) or len(transcript.text.split())
    return round(word_count / (duration_seconds / 60.0))


def count_fillers(words: tuple[TranscriptWord, ...] | list[TranscriptWord]) -> int:
    """Count single-word fillers plus two-word ones such as "you know"."""

    tokens = [word.word.lower().strip(TOKEN_TRIM_CHARS) for word in words]
    count = sum(1 for token in tokens if token in FILLER_WORDS)
    count += sum(1 for first, second in zip(tokens, tokens[1:]) if f"{first} {second}" in FILLER_WORDS)
    return count


def find_silences(
    segments: tuple[TranscriptSegment, ...] | list[TranscriptSegment],
    min_gap_seconds: float = SILENCE_GAP_SECONDS,
) -> list[SilenceGap]:
    silences: list[SilenceGap] = []
    for current, following in zip(segments, segments[1:]):
        gap = following.start - current.end
        if gap > min_gap_seconds:
            silences.append(
                SilenceGap(start=current.end, end=following.start, duration_seconds=round(gap, 3))
            )
    return silences


async def _transcribe(transcriber: Transcriber, audio_path: Path, timeout_seconds: float) -> AudioTranscript:
    """Run the backend on a daemon thread so a timed-out call cannot hold up loop shutdown."""

    loop = asyncio.get_running_loop()
    future: asyncio.Future[AudioTranscript] = loop.create_future()

    def _deliver(result: AudioTranscript | None, error: Exception | None) -> None:
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(result)  # type: ignore[arg-type]

    def _worker() -> None:
        result: AudioTranscript | None = None
        error: Exception | None = None
        try:
            result = transcriber.transcribe(audio_path)
        except Exception as exc:
            error = exc
        try:
            loop.call_soon_threadsafe(_deliver, result, error)
        except RuntimeError:
            logger.debug("Transcription of %s finished after its event loop closed", audio_path.name)

    threading.Thread(target=_worker, name=f"transcribe-{audio_path.stem}", daemon=True).start()

    try:
        return await asyncio.wait_for(future, timeout=timeout_seconds)
    except asyncio.TimeoutError as exc:
        raise ExternalServiceError(f"Transcription timed out after {timeout_seconds}s") from exc
    except (ImportError, OSError, RuntimeError, ValueError) as exc:
        raise ExternalServiceError(f"Transcription failed: {exc}") from exc


@lru_cache(maxsize=2)
def _load_whisper_model(model_size: str, device: str, compute_type: str) -> Any:
    from faster_whisper import WhisperModel

    logger.info("Loading faster-whisper model %s on %s", model_size, device)
    return WhisperModel(model_size, device=device, compute_type=compute_type)

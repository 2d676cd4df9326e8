from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any


class Emotion(str, Enum):
    NEUTRAL = "neutral"
    HAPPY = "happy"
    SAD = "sad"
    ANGRY = "angry"
    SURPRISED = "surprised"
    FEARFUL = "fearful"


class Platform(str, Enum):
    """Target platforms, declared in tie-break priority order."""

    TIKTOK = "tiktok"
    REELS = "reels"
    SHORTS = "shorts"
    YOUTUBE = "youtube"


class PipelineState(str, Enum):
    INIT = "init"
    SAMPLING = "sampling"
    SCORING = "scoring"
    FUSING = "fusing"
    SUGGESTING = "suggesting"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class VideoAsset:
    """Probed handle to a local video file."""

    path: Path
    duration_seconds: float
    width: int | None = None
    height: int | None = None
    has_audio: bool = True
    fps: float | None = None


@dataclass(frozen=True, slots=True)
class FrameSample:
    timestamp_seconds: float
    image_path: Path


@dataclass(frozen=True, slots=True)
class TranscriptWord:
    word: str
    start: float
    end: float


@dataclass(frozen=True, slots=True)
class TranscriptSegment:
    start: float
    end: float
    text: str


@dataclass(frozen=True, slots=True)
class SilenceGap:
    start: float
    end: float
    duration_seconds: float


@dataclass(frozen=True, slots=True)
class AudioTranscript:
    """Transcription result; an empty text with ``error`` set is a valid degraded state."""

    text: str
    language: str
    duration_seconds: float
    words: tuple[TranscriptWord, ...] = ()
    segments: tuple[TranscriptSegment, ...] = ()
    error: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.text.strip()

    @classmethod
    def empty(cls, error: str | None = None, language: str = "") -> AudioTranscript:
        return cls(text="", language=language, duration_seconds=0.0, error=error)


@dataclass(frozen=True, slots=True)
class AudioEnergy:
    mean_rms: float
    hook_rms: float
    peak_rms: float
    spike_count: int


@dataclass(frozen=True, slots=True)
class AudioFeatures:
    transcript: AudioTranscript
    words_per_minute: int = 0
    filler_count: int = 0
    silences: tuple[SilenceGap, ...] = ()
    energy: AudioEnergy | None = None
    energy_error: str | None = None


@dataclass(frozen=True, slots=True)
class DetectedFace:
    confidence: float
    box: tuple[float, float, float, float]
    landmarks: dict[str, tuple[float, float]] | None = None


@dataclass(frozen=True, slots=True)
class EmotionFrame:
    timestamp_seconds: float
    faces_detected: int
    dominant_emotion: Emotion
    scores: dict[Emotion, float]
    error: str | None = None


@dataclass(frozen=True, slots=True)
class EmotionSummary:
    """Run-level aggregate of per-frame emotions."""

    frames: tuple[EmotionFrame, ...]
    dominant_emotion: Emotion
    distribution: dict[Emotion, int]
    total_faces: int
    frames_analyzed: int
    note: str | None = None

    @property
    def frames_with_faces(self) -> int:
        return sum(1 for frame in self.frames if frame.faces_detected > 0)


@dataclass(frozen=True, slots=True)
class PacingSegment:
    start: float
    end: float
    duration_seconds: float
    tag: str


@dataclass(frozen=True, slots=True)
class PacingAnalysis:
    average_shot_length: float
    cuts_per_minute: float
    base_score: int
    segments: tuple[PacingSegment, ...]
    long_take: bool


@dataclass(frozen=True, slots=True)
class HookScore:
    score: int
    window_seconds: float
    has_speech: bool
    has_face: bool
    has_fast_cuts: bool
    has_hook_keyword: bool
    high_energy_speech: bool
    dead_opening: bool
    matched_keyword: str | None
    suggestion: str

    @property
    def signals(self) -> dict[str, bool]:
        return {
            "speech": self.has_speech,
            "face": self.has_face,
            "cut": self.has_fast_cuts,
            "keyword": self.has_hook_keyword,
            "fast_speech": self.high_energy_speech,
        }


@dataclass(frozen=True, slots=True)
class PacingScore:
    score: int
    feedback: str
    platform: Platform | None
    analysis: PacingAnalysis


@dataclass(frozen=True, slots=True)
class EmotionScore:
    score: int
    dominant_emotion: Emotion
    feedback: str
    note: str | None = None


@dataclass(frozen=True, slots=True)
class StructureSection:
    start: float
    end: float


@dataclass(frozen=True, slots=True)
class StructureScore:
    score: int
    intro: StructureSection
    body: StructureSection
    outro: StructureSection
    has_cta: bool
    matched_cta: str | None
    feedback: str


@dataclass(frozen=True, slots=True)
class ActionSuggestions:
    hook_rewrite: str
    cta_rewrite: str
    title_suggestions: tuple[str, ...]
    editing_tips: tuple[str, ...]
    description: str
    source: str
    note: str | None = None


@dataclass(frozen=True, slots=True)
class Diagnostic:
    stage: str
    message: str


@dataclass(frozen=True, slots=True)
class AnalysisReport:
    """Terminal output of one pipeline run."""

    video_path: str
    duration_seconds: float
    hook: HookScore
    pacing: PacingScore
    emotion: EmotionScore
    structure: StructureScore
    platform_fit: dict[Platform, int]
    best_platform: Platform
    virality_score: int
    transcript: str
    language: str
    audio: AudioFeatures
    emotions: EmotionSummary
    scene_boundaries: tuple[float, ...]
    suggestions: ActionSuggestions
    target_language: str
    diagnostics: tuple[Diagnostic, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Plain JSON-ready view of the report."""

        return _plain(asdict(self))


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, dict):
        return {_plain(key): _plain(item) for key, item in value.items()}
    if isinstance(value, list | tuple):
        return [_plain(item) for item in value]
    return value

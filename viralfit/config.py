from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field

from viralfit.models import Emotion, Platform

DEFAULT_CONFIG_PATH = Path("configs/default.yaml")
ENV_PREFIX = "VIRALFIT_"


class PipelineSettings(BaseModel):
    temp_root: Path | None = None
    target_language: str = "en"
    target_platform: Platform | None = None


class SamplingSettings(BaseModel):
    frame_interval_seconds: float = Field(default=2.0, gt=0)
    jpeg_quality: int = 2
    timeout_seconds: int = 300


class SceneSettings(BaseModel):
    threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    timeout_seconds: int = 300


class TranscriptionSettings(BaseModel):
    provider: Literal["whisper", "fixture"] = "whisper"
    model_size: str = "small"
    device: str = "auto"
    compute_type: str = "default"
    language: str | None = None
    sample_rate: int = 16000
    timeout_seconds: float = 300.0


class VisionSettings(BaseModel):
    enabled: bool = True
    min_detection_confidence: float = 0.5
    max_faces: int = 10
    frame_delay_seconds: float = 0.05
    frame_timeout_seconds: float = 10.0


class PlatformRule(BaseModel):
    """Fit constants for one platform; score thresholds are exclusive, durations inclusive unless flagged."""

    form: Literal["short", "long"]
    base: int
    min_duration_seconds: float | None = None
    min_duration_exclusive: bool = False
    max_duration_seconds: float | None = None
    duration_bonus: int = 0
    pacing_above: float | None = None
    pacing_below: float | None = None
    pacing_bonus: int = 0
    emotion_above: float | None = None
    emotion_bonus: int = 0
    hook_above: float | None = None
    hook_bonus: int = 0
    cta_bonus: int = 0


def _default_platform_rules() -> dict[Platform, PlatformRule]:
    return {
        Platform.TIKTOK: PlatformRule(
            form="short",
            base=60,
            min_duration_seconds=15,
            max_duration_seconds=60,
            duration_bonus=20,
            pacing_above=70,
            pacing_bonus=10,
            emotion_above=70,
            emotion_bonus=10,
            hook_above=80,
            hook_bonus=10,
        ),
        Platform.REELS: PlatformRule(
            form="short",
            base=60,
            max_duration_seconds=90,
            duration_bonus=15,
            pacing_above=70,
            pacing_bonus=10,
            emotion_above=70,
            emotion_bonus=10,
        ),
        Platform.SHORTS: PlatformRule(
            form="short",
            base=60,
            min_duration_seconds=15,
            max_duration_seconds=60,
            duration_bonus=20,
            pacing_above=70,
            pacing_bonus=10,
            emotion_above=70,
            emotion_bonus=10,
        ),
        Platform.YOUTUBE: PlatformRule(
            form="long",
            base=50,
            min_duration_seconds=120,
            min_duration_exclusive=True,
            duration_bonus=30,
            pacing_above=40,
            pacing_below=80,
            pacing_bonus=10,
            cta_bonus=10,
        ),
    }


def _default_emotion_weights() -> dict[Emotion, float]:
    return {
        Emotion.NEUTRAL: 0.5,
        Emotion.HAPPY: 1.2,
        Emotion.SAD: 0.8,
        Emotion.ANGRY: 1.1,
        Emotion.SURPRISED: 1.5,
        Emotion.FEARFUL: 1.1,
    }


class ScoringSettings(BaseModel):
    hook_window_seconds: float = 3.0
    hook_window_ratio: float = 0.1
    fast_speech_wpm: float = 150.0
    emotion_weights: dict[Emotion, float] = Field(default_factory=_default_emotion_weights)
    platforms: dict[Platform, PlatformRule] = Field(default_factory=_default_platform_rules)


class LLMSettings(BaseModel):
    provider: Literal["ollama", "fixture"] = "ollama"
    model: str = "qwen2.5:7b-instruct-q4_K_M"
    endpoint: str = "http://localhost:11434"
    timeout_seconds: int = 45
    max_retries: int = 1


class LoggingSettings(BaseModel):
    level: str = "INFO"


class Settings(BaseModel):
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    sampling: SamplingSettings = Field(default_factory=SamplingSettings)
    scenes: SceneSettings = Field(default_factory=SceneSettings)
    transcription: TranscriptionSettings = Field(default_factory=TranscriptionSettings)
    vision: VisionSettings = Field(default_factory=VisionSettings)
    scoring: ScoringSettings = Field(default_factory=ScoringSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load typed settings from YAML with environment-variable overrides."""

    resolved_path = Path(
        config_path
        or os.getenv(f"{ENV_PREFIX}CONFIG")
        or DEFAULT_CONFIG_PATH
    )
    raw_config = yaml.safe_load(resolved_path.read_text(encoding="utf-8")) or {}
    data = Settings.model_validate(raw_config).model_dump(mode="json")

    for key, raw_value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue

        suffix = key[len(ENV_PREFIX) :]
        if suffix == "CONFIG":
            continue

        path = [part.lower() for part in suffix.split("__")]
        _apply_override(data, path, raw_value)

    return Settings.model_validate(data)


def _apply_override(data: dict[str, Any], path: list[str], raw_value: str) -> None:
    current: Any = data
    for segment in path[:-1]:
        if not isinstance(current, dict) or segment not in current:
            return
        current = current[segment]

    if not isinstance(current, dict):
        return

    final_key = path[-1]
    if final_key not in current:
        return

    current[final_key] = _coerce_value(raw_value, current[final_key])


def _coerce_value(raw_value: str, existing_value: Any) -> Any:
    if isinstance(existing_value, bool):
        return raw_value.lower() in {"1", "true", "yes", "on"}
    if isinstance(existing_value, int) and not isinstance(existing_value, bool):
        return int(raw_value)
    if isinstance(existing_value, float):
        return float(raw_value)
    if isinstance(existing_value, list | dict):
        return json.loads(raw_value)
    return raw_value

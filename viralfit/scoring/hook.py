from __future__ import annotations

from typing import Sequence

from viralfit.models import AudioFeatures, EmotionFrame, HookScore

HOOK_KEYWORDS = (
    "wait",
    "stop",
    "secret",
    "you need",
    "listen",
    "watch this",
    "attention",
    "did you know",
    "tu savais",
    "regarde",
    "attends",
)
HOOK_TEXT_CHARS = 100
BASE_SCORE = 50
SPEECH_BONUS = 10
FACE_BONUS = 10
CUT_BONUS = 10
KEYWORD_BONUS = 15
FAST_SPEECH_BONUS = 5
DEAD_OPENING_PENALTY = 20
STRONG_HOOK_SCORE = 70


def hook_window(duration_seconds: float, max_seconds: float = 3.0, ratio: float = 0.1) -> float:
    """Length of the opening window: ``min(max_seconds, ratio * duration)``."""

    return max(0.0, min(max_seconds, duration_seconds * ratio))


def score_hook(
    *,
    duration_seconds: float,
    audio: AudioFeatures,
    emotion_frames: Sequence[EmotionFrame],
    scene_boundaries: Sequence[float],
    window_max_seconds: float = 3.0,
    window_ratio: float = 0.1,
    fast_speech_wpm: float = 150.0,
) -> HookScore:
    """Score the opening seconds from speech, faces, cuts and hook phrasing."""

    window = hook_window(duration_seconds, window_max_seconds, window_ratio)
    transcript = audio.transcript

    has_speech = any(segment.start < window and segment.text.strip() for segment in transcript.segments)
    has_face = any(frame.timestamp_seconds < window and frame.faces_detected > 0 for frame in emotion_frames)
    has_cut = any(boundary < window for boundary in scene_boundaries)

    opening_text = transcript.text[:HOOK_TEXT_CHARS].lower()
    matched_keyword = next((keyword for keyword in HOOK_KEYWORDS if keyword in opening_text), None)
    high_energy = audio.words_per_minute > fast_speech_wpm
    dead_opening = not (has_speech or has_face or has_cut)

    score = BASE_SCORE
    if has_speech:
        score += SPEECH_BONUS
    if has_face:
        score += FACE_BONUS
    if has_cut:
        score += CUT_BONUS
    if matched_keyword is not None:
        score += KEYWORD_BONUS
    if high_energy:
        score += FAST_SPEECH_BONUS
    if dead_opening:
        score -= DEAD_OPENING_PENALTY

    score = _clamp(score)
    return HookScore(
        score=score,
        window_seconds=round(window, 3),
        has_speech=has_speech,
        has_face=has_face,
        has_fast_cuts=has_cut,
        has_hook_keyword=matched_keyword is not None,
        high_energy_speech=high_energy,
        dead_opening=dead_opening,
        matched_keyword=matched_keyword,
        suggestion=_suggestion(score, dead_opening),
    )


def _suggestion(score: int, dead_opening: bool) -> str:
    if dead_opening:
        return "The opening has no speech, face or cut. Open on a person talking or show the payoff first."
    if score < STRONG_HOOK_SCORE:
        return "Start with a stronger visual or verbal hook. Use 'You won't believe...' or show the result first."
    return "Strong hook detected!"


def _clamp(value: float, minimum: int = 0, maximum: int = 100) -> int:
    return int(max(minimum, min(maximum, round(value))))

from __future__ import annotations

from viralfit.models import Emotion, EmotionScore, EmotionSummary

DEFAULT_EMOTION_WEIGHTS = {
    Emotion.NEUTRAL: 0.5,
    Emotion.HAPPY: 1.2,
    Emotion.SAD: 0.8,
    Emotion.ANGRY: 1.1,
    Emotion.SURPRISED: 1.5,
    Emotion.FEARFUL: 1.1,
}
FACE_PRESENCE_BONUS = 10
NO_DATA_SCORE = 50


def score_emotion(summary: EmotionSummary | None, weights: dict[Emotion, float] | None = None) -> EmotionScore:
    """Weighted share of frame-level dominant emotions, favoring high-arousal affect."""

    if summary is None or not summary.distribution:
        note = "No emotional data detected."
        if summary is not None and summary.note:
            note = f"No emotional data detected (emotion analysis {summary.note})."
        return EmotionScore(
            score=NO_DATA_SCORE,
            dominant_emotion=Emotion.NEUTRAL,
            feedback=note,
            note=note,
        )

    active_weights = {**DEFAULT_EMOTION_WEIGHTS, **(weights or {})}
    total = sum(summary.distribution.values())
    weighted = sum(
        (count / total) * active_weights[emotion] * 100
        for emotion, count in summary.distribution.items()
    )
    if summary.total_faces > 0:
        weighted += FACE_PRESENCE_BONUS

    return EmotionScore(
        score=_clamp(weighted),
        dominant_emotion=summary.dominant_emotion,
        feedback=_feedback(summary.dominant_emotion),
    )


def _feedback(dominant: Emotion) -> str:
    if dominant is Emotion.NEUTRAL:
        return "Content seems emotionally flat. Try to express more energy or emotion."
    if dominant in (Emotion.SURPRISED, Emotion.HAPPY):
        return "Great emotional energy! Positive and high-arousal emotions drive shares."
    return f"Dominant emotion is {dominant.value}. Ensure this matches your intended tone."


def _clamp(value: float, minimum: int = 0, maximum: int = 100) -> int:
    return int(max(minimum, min(maximum, round(value))))

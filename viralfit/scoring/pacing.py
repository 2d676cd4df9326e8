from __future__ import annotations

from typing import Sequence

from viralfit.config import PlatformRule, ScoringSettings
from viralfit.models import PacingAnalysis, PacingScore, PacingSegment, Platform

# (upper bound on average shot length in seconds, base score)
SHOT_LENGTH_BANDS = ((2.0, 90), (4.0, 70), (8.0, 50), (15.0, 30))
SLOWEST_BAND_SCORE = 10

FAST_SHOT_SECONDS = 3.0
SLOW_SHOT_SECONDS = 10.0


def analyze_pacing(scene_boundaries: Sequence[float], duration_seconds: float) -> PacingAnalysis:
    """Split the timeline at each cut and classify the average shot length.

    With no usable cuts the whole duration is one long take.
    """

    if duration_seconds <= 0:
        raise ValueError("duration_seconds must be positive.")

    interior = sorted({value for value in scene_boundaries if 0.0 < value < duration_seconds})
    points = [0.0, *interior, duration_seconds]
    shot_lengths = [end - start for start, end in zip(points, points[1:])]

    average_shot_length = sum(shot_lengths) / len(shot_lengths)
    segments = tuple(
        PacingSegment(
            start=round(start, 3),
            end=round(end, 3),
            duration_seconds=round(end - start, 3),
            tag=shot_tag(end - start),
        )
        for start, end in zip(points, points[1:])
    )

    return PacingAnalysis(
        average_shot_length=round(average_shot_length, 2),
        cuts_per_minute=round(len(interior) / (duration_seconds / 60.0), 2),
        base_score=base_pacing_score(average_shot_length),
        segments=segments,
        long_take=not interior,
    )


def base_pacing_score(average_shot_length: float) -> int:
    for upper_bound, score in SHOT_LENGTH_BANDS:
        if average_shot_length < upper_bound:
            return score
    return SLOWEST_BAND_SCORE


def shot_tag(length_seconds: float) -> str:
    if length_seconds < FAST_SHOT_SECONDS:
        return "fast"
    if length_seconds > SLOW_SHOT_SECONDS:
        return "slow"
    return "medium"


def score_pacing(
    analysis: PacingAnalysis,
    platform: Platform | None = None,
    rules: dict[Platform, PlatformRule] | None = None,
) -> PacingScore:
    """Adjust the base pacing score for the target platform's expectations.

    Short- or long-form expectations come from the platform's configured ``form``.
    """

    score = analysis.base_score
    average = analysis.average_shot_length
    form = platform_form(platform, rules)

    if form == "short":
        if average > 5:
            score -= 20
            feedback = "Pacing is too slow for short-form content. Aim for cuts every 2-3 seconds."
        elif average < 1.5:
            score += 5
            feedback = "Excellent fast pacing, great for retention."
        else:
            feedback = "Good pacing for this platform."
    elif form == "long":
        if average < 2:
            feedback = "Pacing might be too fast for long-form. Ensure viewers can follow."
        elif average > 10:
            score -= 10
            feedback = "Consider adding B-roll or cuts to keep visual interest."
        else:
            feedback = "Comfortable pacing for long-form content."
    elif analysis.long_take:
        feedback = "No cuts detected; the video plays as a single long take."
    elif analysis.base_score >= 70:
        feedback = "Fast cutting keeps the visuals moving."
    else:
        feedback = "Shots run long; tighter cuts usually help retention."

    return PacingScore(score=_clamp(score), feedback=feedback, platform=platform, analysis=analysis)


def platform_form(platform: Platform | None, rules: dict[Platform, PlatformRule] | None = None) -> str | None:
    if platform is None:
        return None
    rule = (rules or ScoringSettings().platforms).get(platform)
    return rule.form if rule is not None else None


def _clamp(value: float, minimum: int = 0, maximum: int = 100) -> int:
    return int(max(minimum, min(maximum, round(value))))

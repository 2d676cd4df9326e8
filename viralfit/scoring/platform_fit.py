from __future__ import annotations

from dataclasses import dataclass

from viralfit.config import PlatformRule, ScoringSettings
from viralfit.models import Platform


@dataclass(slots=True)
class FitInputs:
    """Scores the aggregator fuses; ``has_cta`` comes from the structure scorer."""

    duration_seconds: float
    hook: int
    pacing: int
    emotion: int
    has_cta: bool


def score_platform_fit(
    inputs: FitInputs,
    rules: dict[Platform, PlatformRule] | None = None,
) -> dict[Platform, int]:
    """Deterministic per-platform fit, in platform priority order."""

    active_rules = rules or ScoringSettings().platforms
    return {
        platform: platform_score(inputs, active_rules[platform])
        for platform in Platform
        if platform in active_rules
    }


def platform_score(inputs: FitInputs, rule: PlatformRule) -> int:
    score = rule.base

    if _duration_in_range(inputs.duration_seconds, rule):
        score += rule.duration_bonus
    if _pacing_in_band(inputs.pacing, rule):
        score += rule.pacing_bonus
    if rule.emotion_above is not None and inputs.emotion > rule.emotion_above:
        score += rule.emotion_bonus
    if rule.hook_above is not None and inputs.hook > rule.hook_above:
        score += rule.hook_bonus
    if inputs.has_cta:
        score += rule.cta_bonus

    return max(0, min(100, score))


def best_platform(fit: dict[Platform, int]) -> Platform:
    """Argmax of the fit map; ties go to the earlier platform in priority order."""

    if not fit:
        raise ValueError("Platform fit map is empty.")

    ordered = [platform for platform in Platform if platform in fit]
    return max(ordered, key=lambda platform: (fit[platform], -ordered.index(platform)))


def _duration_in_range(duration_seconds: float, rule: PlatformRule) -> bool:
    if rule.min_duration_seconds is None and rule.max_duration_seconds is None:
        return False
    if rule.min_duration_seconds is not None:
        if duration_seconds < rule.min_duration_seconds:
            return False
        if rule.min_duration_exclusive and duration_seconds == rule.min_duration_seconds:
            return False
    if rule.max_duration_seconds is not None and duration_seconds > rule.max_duration_seconds:
        return False
    return True


def _pacing_in_band(pacing: float, rule: PlatformRule) -> bool:
    if rule.pacing_above is None and rule.pacing_below is None:
        return False
    if rule.pacing_above is not None and pacing <= rule.pacing_above:
        return False
    if rule.pacing_below is not None and pacing >= rule.pacing_below:
        return False
    return True

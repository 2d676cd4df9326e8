from __future__ import annotations

from viralfit.models import AudioTranscript, StructureScore, StructureSection

CTA_KEYWORDS = (
    "subscribe",
    "follow",
    "like",
    "comment",
    "share",
    "link in bio",
    "abonnez",
    "clique",
)
OUTRO_TEXT_CHARS = 500
INTRO_RATIO = 0.15
OUTRO_RATIO = 0.85
BASE_SCORE = 70
CTA_BONUS = 20


def score_structure(duration_seconds: float, transcript: AudioTranscript) -> StructureScore:
    """Split intro/body/outro and look for a call to action in the closing text."""

    intro_end = round(duration_seconds * INTRO_RATIO, 3)
    outro_start = round(duration_seconds * OUTRO_RATIO, 3)

    outro_text = transcript.text[-OUTRO_TEXT_CHARS:].lower()
    matched_cta = next((keyword for keyword in CTA_KEYWORDS if keyword in outro_text), None)
    has_cta = matched_cta is not None

    score = BASE_SCORE + (CTA_BONUS if has_cta else 0)
    return StructureScore(
        score=max(0, min(100, score)),
        intro=StructureSection(start=0.0, end=intro_end),
        body=StructureSection(start=intro_end, end=outro_start),
        outro=StructureSection(start=outro_start, end=round(duration_seconds, 3)),
        has_cta=has_cta,
        matched_cta=matched_cta,
        feedback=(
            "Good structure with a clear Call to Action."
            if has_cta
            else "Missing a clear Call to Action at the end."
        ),
    )

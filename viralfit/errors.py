"""Error taxonomy for the analysis pipeline."""

from __future__ import annotations


class ViralFitError(Exception):
    """Base exception for pipeline errors."""


class FatalExtractionError(ViralFitError):
    """The video cannot be probed or decoded; no report is possible."""


ExtractionError = FatalExtractionError


class DegradedSignalError(ViralFitError):
    """One modality is unavailable; the stage substitutes a documented default."""


class ExternalServiceError(DegradedSignalError):
    """A transcription, vision or generative call failed or timed out."""

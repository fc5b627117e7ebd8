from __future__ import annotations


class SkinCoachError(Exception):
    """Base class for every failure raised by the analysis pipeline."""

    stage = "analysis"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(SkinCoachError):
    """Bad user input (image too large, unsupported format). Never retried."""

    stage = "Image validation"


class ParseError(SkinCoachError):
    """No JSON object could be located in the model output."""

    stage = "Vision analysis"


class SchemaError(SkinCoachError):
    """Model output was JSON but did not match the profile schema."""

    stage = "Vision analysis"


class AnalysisError(SkinCoachError):
    stage = "Vision analysis"


class UpstreamTimeoutError(AnalysisError):
    pass


class RecommendationError(SkinCoachError):
    stage = "Recommendation generation"


class ConfigurationError(SkinCoachError):
    stage = "Vision analysis"


class InvalidTransitionError(SkinCoachError):
    stage = "Consultation update"


def describe_failure(exc: BaseException) -> str:
    if isinstance(exc, SkinCoachError):
        return f"{exc.stage} failed: {exc.message}"
    return f"Unexpected error during analysis: {exc}"

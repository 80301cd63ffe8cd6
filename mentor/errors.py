"""Exception types raised by the analysis pipeline."""
from __future__ import annotations


class MentorError(Exception):
    """Base class for every error the pipeline raises on purpose."""


class ConfigurationError(MentorError):
    """Provider or strategy configuration is unusable. Raised before any network call."""


class InvalidRequestError(MentorError):
    pass


class SearchError(MentorError):
    """The top-level web search failed (transport, auth or payload)."""


class ProviderError(MentorError):
    """The language-model call failed."""


class RuleFileNotFoundError(MentorError):
    pass


class ExtractionError(MentorError):
    """Model output could not be decoded into a Recommendation."""

    def __init__(self, message: str, raw_text: str = ""):
        super().__init__(message)
        self.raw_text = raw_text


class AnalysisExtractionError(ExtractionError):
    """Extraction failure surfaced by the orchestrator for a whole request."""

    def __init__(self, message: str, raw_text: str = "", provider: str = ""):
        super().__init__(message, raw_text)
        self.provider = provider


class AnalysisCancelled(MentorError):
    """Cooperative cancellation was observed. Not a failure."""

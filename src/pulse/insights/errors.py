"""Error taxonomy for the insight gateway.

None of these ever reach a gateway caller: ``InsightGateway`` collapses them
into fallback results.
"""

from __future__ import annotations


class InsightError(Exception):
    """Base class for insight generation failures."""


class MissingCredential(InsightError):
    """No API key configured for the completion upstream."""

    def __init__(self, message: str = "LLM API key is not configured") -> None:
        super().__init__(message)


class UpstreamError(InsightError):
    """The completion call failed in transport or returned a non-success status."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class ContentError(InsightError):
    """The model answered, but the answer is unusable."""


class ContentParseError(ContentError):
    """Model output is not a valid JSON object."""


class ContentEmptyError(ContentError):
    """Model output is valid JSON but carries no usable field."""

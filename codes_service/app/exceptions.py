from __future__ import annotations


class CodesServiceError(Exception):
    """Base exception for all codes-service errors."""


class SourceConfigurationError(CodesServiceError):
    """A source is missing required configuration (e.g. its base URL)."""


class SourceFetchError(CodesServiceError):
    """Network failure, non-2xx response or malformed payload from a source."""


class SourceRateLimitedError(SourceFetchError):
    """The upstream answered 429; no further requests should be made this round."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class AggregationError(CodesServiceError):
    """Unexpected failure while merging source results."""


class ReportWriteError(CodesServiceError):
    """Failure while appending a code report to the report log."""

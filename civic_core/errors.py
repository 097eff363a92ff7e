"""Error taxonomy shared by the upstream client and the district resolver."""

from __future__ import annotations

from typing import Optional


class ApiError(RuntimeError):
    """Base class for failures that cross the integration boundary."""

    def __init__(self, message: str, *, upstream: Optional[str] = None) -> None:
        super().__init__(message)
        self.upstream = upstream


class CircuitOpenError(ApiError):
    """Raised when the upstream's breaker is shielding it and nothing is cached."""


class QuotaExceededError(ApiError):
    """Raised when the metered budget is spent and nothing is cached."""


class UpstreamUnavailableError(ApiError):
    """Raised after retries are exhausted with no cached fallback."""


class UpstreamRejectedError(ApiError):
    """Raised for non-retryable client errors returned by the upstream."""

    def __init__(self, message: str, *, upstream: Optional[str] = None, status_code: Optional[int] = None) -> None:
        super().__init__(message, upstream=upstream)
        self.status_code = status_code


class InvalidPayloadError(ApiError):
    """Raised when an upstream payload is missing fields the caller requires."""


class InvalidInputError(ApiError, ValueError):
    """Raised for malformed ZIP codes or request specs. Never retried."""


class RequestCancelled(ApiError):
    """Raised when the caller abandons a request before it completes."""

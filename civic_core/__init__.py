"""Civic data core: resilient upstream access and ZIP-to-district resolution."""

from .config import CURRENT_CONGRESS, DEFAULT_STATE, build_upstream_config
from .errors import (
    ApiError,
    CircuitOpenError,
    InvalidInputError,
    InvalidPayloadError,
    QuotaExceededError,
    RequestCancelled,
    UpstreamRejectedError,
    UpstreamUnavailableError,
)

__all__ = [
    "CURRENT_CONGRESS",
    "DEFAULT_STATE",
    "build_upstream_config",
    "ApiError",
    "CircuitOpenError",
    "InvalidInputError",
    "InvalidPayloadError",
    "QuotaExceededError",
    "RequestCancelled",
    "UpstreamRejectedError",
    "UpstreamUnavailableError",
]

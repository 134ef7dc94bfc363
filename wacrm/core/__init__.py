"""Core module - configuration, errors, permissions and locale helpers."""

from wacrm.core.config import settings
from wacrm.core.exceptions import (
    AppException,
    AuthenticationFailed,
    ConfigurationError,
    Conflict,
    NotFound,
    PaymentRequired,
    PermissionDenied,
    RateLimitExceeded,
    UpstreamError,
    ValidationFailed,
)

__all__ = [
    "settings",
    "AppException",
    "AuthenticationFailed",
    "ConfigurationError",
    "Conflict",
    "NotFound",
    "PaymentRequired",
    "PermissionDenied",
    "RateLimitExceeded",
    "UpstreamError",
    "ValidationFailed",
]

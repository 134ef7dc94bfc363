"""Custom exceptions for the application."""

from typing import Any


class AppException(Exception):
    """Base exception for application errors."""

    status_code: int = 400

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}


class ValidationFailed(AppException):
    """Raised when a request body fails business validation."""

    status_code = 400

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, code="VALIDATION_ERROR", details=details)


class AuthenticationFailed(AppException):
    """Raised when the bearer token is missing or invalid."""

    status_code = 401

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message, code="UNAUTHORIZED")


class PaymentRequired(AppException):
    """Raised when an upstream provider reports payment required."""

    status_code = 402

    def __init__(self, message: str = "Payment required", details: dict[str, Any] | None = None) -> None:
        super().__init__(message, code="PAYMENT_REQUIRED", details=details)


class InsufficientTokens(AppException):
    """Raised when the AI token balance cannot cover a consumption."""

    status_code = 402

    def __init__(self, balance: int, required: int) -> None:
        super().__init__(
            "insufficient_balance",
            code="INSUFFICIENT_BALANCE",
            details={"balance": balance, "required": required},
        )


class PermissionDenied(AppException):
    """Raised when the caller lacks a permission."""

    status_code = 403

    def __init__(self, message: str, permission: str | None = None) -> None:
        super().__init__(
            message,
            code="PERMISSION_DENIED",
            details={"permission": permission} if permission else {},
        )


class NotFound(AppException):
    """Raised when a record does not exist or is not visible to the caller."""

    status_code = 404

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, code="NOT_FOUND", details=details)


class Conflict(AppException):
    """Raised when a record already exists."""

    status_code = 409

    def __init__(
        self,
        message: str,
        code: str = "CONFLICT",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code=code, details=details)


class RateLimitExceeded(AppException):
    """Raised when an upstream provider rate limits us."""

    status_code = 429

    def __init__(self, message: str = "Rate limit exceeded, please try again later") -> None:
        super().__init__(message, code="RATE_LIMIT_EXCEEDED")


class ConfigurationError(AppException):
    """Raised when there's a configuration problem."""

    status_code = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, code="CONFIGURATION_ERROR", details=details)


class UpstreamError(AppException):
    """Raised when a third-party API returns a non-2xx response."""

    status_code = 502

    def __init__(
        self,
        message: str,
        provider: str,
        upstream_status: int | None = None,
    ) -> None:
        details: dict[str, Any] = {"provider": provider}
        if upstream_status is not None:
            details["upstream_status"] = upstream_status
        super().__init__(message, code="UPSTREAM_ERROR", details=details)


class LLMError(AppException):
    """Raised when LLM provider fails."""

    status_code = 502

    def __init__(self, message: str, provider: str | None = None) -> None:
        super().__init__(
            message,
            code="LLM_ERROR",
            details={"provider": provider} if provider else {},
        )


class ChannelError(AppException):
    """Raised when channel operations fail."""

    status_code = 502

    def __init__(self, message: str, channel: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(
            message,
            code="CHANNEL_ERROR",
            details={"channel": channel, **(details or {})},
        )


def raise_for_upstream_status(status_code: int, message: str, provider: str) -> None:
    """Map a non-2xx upstream status onto the matching application exception."""
    if status_code < 400:
        return
    if status_code == 429:
        raise RateLimitExceeded()
    if status_code == 402:
        raise PaymentRequired(details={"provider": provider})
    raise UpstreamError(message, provider=provider, upstream_status=status_code)

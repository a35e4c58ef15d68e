"""
errors.py — Application error taxonomy.

Business logic raises these; main.py renders them as
{"error": message, "code": CODE, "details"?: ..., **extra}.

`extra` carries the discriminators the frontend branches on
(suggestion, userType, retryable, retryAfter).
No HTTP imports here — status codes are plain ints.
"""
from typing import Any, Optional


class AppError(Exception):
    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        *,
        details: Any = None,
        extra: Optional[dict[str, Any]] = None,
        status_code: Optional[int] = None,
        expose_details: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details
        self.extra = extra or {}
        self.expose_details = expose_details
        if status_code is not None:
            self.status_code = status_code


class ValidationError(AppError):
    status_code = 400
    code = "VALIDATION_ERROR"


class AuthenticationRequired(AppError):
    status_code = 401
    code = "UNAUTHORIZED"


class AuthorizationDenied(AppError):
    status_code = 403
    code = "FORBIDDEN"


class NotFound(AppError):
    status_code = 404
    code = "NOT_FOUND"


class Conflict(AppError):
    """Already-unlocked report (400) or duplicate account (409)."""
    status_code = 409
    code = "CONFLICT"


class PaymentRequired(AppError):
    status_code = 402
    code = "PAYMENT_REQUIRED"


class RateLimited(AppError):
    status_code = 429
    code = "RATE_LIMITED"


class UpstreamProviderError(AppError):
    """Stripe / PayPal / Mistral failure. Logged, never crashes the process."""
    status_code = 500
    code = "UPSTREAM_ERROR"


class PaymentConfigurationError(UpstreamProviderError):
    code = "PAYMENT_CONFIGURATION_ERROR"


class AIServiceTimeout(UpstreamProviderError):
    code = "AI_TIMEOUT"

    def __init__(self, message: str = "AI service timed out", **kwargs: Any) -> None:
        kwargs.setdefault("extra", {"retryable": True})
        super().__init__(message, **kwargs)


class PersistenceError(AppError):
    status_code = 500
    code = "PERSISTENCE_ERROR"

"""Typed failures raised by the identity core and translated at the HTTP boundary."""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Stable machine-readable error categories exposed to API clients."""

    authentication = "authentication_error"
    account_locked = "account_locked"
    email_verification_required = "email_verification_required"
    forbidden = "forbidden"
    payment_required = "payment_required"
    validation = "validation_error"
    conflict = "conflict"
    not_found = "not_found"
    rate_limited = "rate_limited"
    upstream = "upstream_error"
    internal = "internal_error"


STATUS_BY_CATEGORY: dict[ErrorCategory, int] = {
    ErrorCategory.authentication: 401,
    ErrorCategory.account_locked: 423,
    ErrorCategory.email_verification_required: 403,
    ErrorCategory.forbidden: 403,
    ErrorCategory.payment_required: 402,
    ErrorCategory.validation: 400,
    ErrorCategory.conflict: 409,
    ErrorCategory.not_found: 404,
    ErrorCategory.rate_limited: 429,
    ErrorCategory.upstream: 502,
    ErrorCategory.internal: 500,
}


class IdentityError(Exception):
    """Base class for every expected failure of the identity subsystem."""

    category: ErrorCategory = ErrorCategory.internal
    default_message: str = "internal error"

    def __init__(self, message: str | None = None, *, details: dict[str, Any] | None = None) -> None:
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return STATUS_BY_CATEGORY[self.category]


class AuthenticationError(IdentityError):
    category = ErrorCategory.authentication
    default_message = "invalid credentials"


class AccountInactiveError(AuthenticationError):
    default_message = "account is inactive"


class AccountLockedError(IdentityError):
    category = ErrorCategory.account_locked
    default_message = "account is temporarily locked due to failed login attempts"


class EmailVerificationRequiredError(IdentityError):
    category = ErrorCategory.email_verification_required
    default_message = "email verification required before logging in"


class PermissionDeniedError(IdentityError):
    category = ErrorCategory.forbidden
    default_message = "insufficient permissions"


class PaymentRequiredError(IdentityError):
    category = ErrorCategory.payment_required
    default_message = "subscription is not active"


class ValidationError(IdentityError):
    category = ErrorCategory.validation
    default_message = "validation failed"


class PaymentVerificationError(ValidationError):
    default_message = "payment verification failed"


class ConflictError(IdentityError):
    category = ErrorCategory.conflict
    default_message = "resource already exists"


class NotFoundError(IdentityError):
    category = ErrorCategory.not_found
    default_message = "resource not found"


class InvalidTokenError(NotFoundError):
    default_message = "invalid or expired token"


class RateLimitedError(IdentityError):
    category = ErrorCategory.rate_limited
    default_message = "rate limited"


class GatewayError(IdentityError):
    category = ErrorCategory.upstream
    default_message = "payment gateway unavailable"


__all__ = [
    "ErrorCategory",
    "STATUS_BY_CATEGORY",
    "IdentityError",
    "AuthenticationError",
    "AccountInactiveError",
    "AccountLockedError",
    "EmailVerificationRequiredError",
    "PermissionDeniedError",
    "PaymentRequiredError",
    "ValidationError",
    "PaymentVerificationError",
    "ConflictError",
    "NotFoundError",
    "InvalidTokenError",
    "RateLimitedError",
    "GatewayError",
]

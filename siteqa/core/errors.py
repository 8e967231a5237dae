from __future__ import annotations

from typing import Any


class SiteQAError(Exception):
    """Base error for SiteQA."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(SiteQAError):
    """Missing or malformed input."""

    status_code = 400
    code = "VALIDATION_ERROR"


class AuthError(SiteQAError):
    """Missing credentials."""

    status_code = 401
    code = "AUTH_UNAUTHORIZED"


class InvalidTokenError(AuthError):
    """Bearer token could not be verified or has expired."""

    status_code = 403
    code = "AUTH_INVALID_TOKEN"


class AuthorizationError(SiteQAError):
    """Authenticated principal lacks the role or membership required."""

    status_code = 403
    code = "AUTH_FORBIDDEN"


class PaymentRequiredError(AuthorizationError):
    """Paid plan without an active subscription."""

    status_code = 402
    code = "PAYMENT_REQUIRED"


class PlanLimitError(AuthorizationError):
    """Plan usage ceiling reached."""

    code = "PLAN_LIMIT_REACHED"


class NotFoundError(SiteQAError):
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(SiteQAError):
    status_code = 409
    code = "CONFLICT"


class InviteExpiredError(SiteQAError):
    status_code = 410
    code = "INVITE_EXPIRED"


class InviteAlreadyUsedError(ConflictError):
    code = "INVITE_ALREADY_USED"


class UpstreamError(SiteQAError):
    """Object storage, mail or billing provider failure."""

    status_code = 502
    code = "UPSTREAM_ERROR"

# Overview: Typed API failures; every error response is rendered from one of these.

from __future__ import annotations

from typing import Any

from . import messages


class ApiError(Exception):
    """
    Domain failure carrying a stable message key and structured params.

    Services raise subclasses; the error handler registered in create_app()
    turns them into {"error": {"key": ..., "params": {...}}} responses.
    Never put internal identifiers or stack details into params.
    """
    status_code = 500
    default_key = messages.COMMON_INTERNAL_ERROR

    def __init__(self, key: str | None = None, params: dict[str, Any] | None = None):
        self.key = key or self.default_key
        self.params = params or {}
        super().__init__(self.key)

    def to_dict(self) -> dict:
        return {"error": {"key": self.key, "params": self.params}}


class ValidationError(ApiError):
    """400-level input problem."""
    status_code = 400
    default_key = messages.COMMON_VALIDATION_ERROR


class Unauthenticated(ApiError):
    """Absent, invalid or expired credential."""
    status_code = 401
    default_key = messages.AUTH_UNAUTHENTICATED


class Forbidden(ApiError):
    """Authenticated but not allowed (permission, user type, ownership, sandbox)."""
    status_code = 403
    default_key = messages.COMMON_FORBIDDEN


class NotFound(ApiError):
    status_code = 404
    default_key = messages.COMMON_NOT_FOUND


class Conflict(ApiError):
    """409-level business rule conflict (state, uniqueness, already deleted)."""
    status_code = 409
    default_key = messages.COMMON_CONFLICT


class RateLimited(ApiError):
    status_code = 429
    default_key = messages.COMMON_RATE_LIMIT_EXCEEDED


class InternalError(ApiError):
    status_code = 500
    default_key = messages.COMMON_INTERNAL_ERROR


class InvalidTransitionError(Conflict):
    """Raised when an order status change is not in the transition table."""

    def __init__(self, from_status: str, to_status: str, order_id: str | None = None):
        params: dict[str, Any] = {"from": from_status, "to": to_status}
        if order_id is not None:
            params["orderId"] = order_id
        super().__init__(messages.ORDER_INVALID_STATUS_TRANSITION, params)
        self.from_status = from_status
        self.to_status = to_status

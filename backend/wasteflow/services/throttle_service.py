# Overview: Service-layer operations for auth throttling; per-IP attempt windows on the auth endpoints.

"""
Auth Endpoint Throttling Service

WHY: Slow down credential stuffing and token brute force on register, login
and refresh.

- Every attempt is recorded as an AUTH_ATTEMPT security event, keyed by
  client IP (ip_address) and endpoint (resource)
- More than AUTH_RATE_LIMIT_MAX attempts within AUTH_RATE_LIMIT_WINDOW
  are rejected with 429
- Old rows are purged by `flask maintenance cleanup-security-events`
"""

from __future__ import annotations

from flask import current_app

from ..errors import RateLimited
from ..storage import Storage
from . import permission_service
from wasteflow.time_utils import window_start

AUTH_ATTEMPT = "AUTH_ATTEMPT"


def get_recent_attempts(store: Storage, ip_address: str | None, endpoint: str) -> int:
    """Count attempts from ip_address against endpoint within the window."""
    cutoff = window_start(current_app.config["AUTH_RATE_LIMIT_WINDOW"])
    return store.count_security_events(
        AUTH_ATTEMPT,
        since=cutoff,
        ip_address=ip_address,
        resource=endpoint,
    )


def check_and_record(
    store: Storage,
    ip_address: str | None,
    endpoint: str,
    user_agent: str | None = None,
) -> int:
    """
    Reject with RateLimited when the window is already full, otherwise record
    this attempt. Returns the attempt count including this one.
    """
    limit = current_app.config["AUTH_RATE_LIMIT_MAX"]
    attempts = get_recent_attempts(store, ip_address, endpoint)
    if attempts >= limit:
        window = current_app.config["AUTH_RATE_LIMIT_WINDOW"]
        raise RateLimited(params={"retryAfterSeconds": int(window.total_seconds())})

    permission_service.log_security_event(
        store,
        user_id=None,
        event_type=AUTH_ATTEMPT,
        success=True,
        resource=endpoint,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    return attempts + 1

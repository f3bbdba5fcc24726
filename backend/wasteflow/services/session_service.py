# Overview: Service-layer operations for sessions; refresh rotation and revocation.

"""
Device Session Management

One Session row per authenticated device. The row holds only the SHA-256 hash
of the device's current refresh token.

SECURITY FEATURES:
- Refresh tokens are single-use: rotation swaps the stored hash with a
  compare-and-swap, so replaying an old token (or racing a concurrent
  refresh with the same token) fails
- Deleting the row revokes the refresh token even if its signature and
  expiry are still valid
- Every rejection reason is logged at INFO but the client always receives
  the same auth.token_invalid error
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from .. import messages
from ..errors import NotFound, Unauthenticated
from ..models import Session, User
from ..storage import Storage, new_id
from . import token_service
from wasteflow.time_utils import expires_in, is_expired, utcnow

PLATFORMS = ("ios", "android", "web")


@dataclass
class DeviceInfo:
    """Client metadata bound to a session at login/refresh."""
    device_id: str = "unknown"
    platform: str = "web"
    user_agent: str | None = None
    client_id: str | None = None
    client_type: str | None = None

    @classmethod
    def from_request(cls, payload: dict, headers) -> "DeviceInfo":
        platform = payload.get("platform") or headers.get("X-Platform") or "web"
        if platform not in PLATFORMS:
            platform = "web"
        return cls(
            device_id=str(payload.get("deviceId") or headers.get("X-Device-Id") or "unknown")[:128],
            platform=platform,
            user_agent=headers.get("User-Agent"),
            client_id=headers.get("X-Client-Id"),
            client_type=headers.get("X-Client-Type"),
        )


class _Rejected(Exception):
    pass


def start_session(store: Storage, user: User, device: DeviceInfo | None = None) -> dict:
    """Issue a token pair and register its refresh token as a new session."""
    device = device or DeviceInfo()
    tokens = token_service.issue_token_pair(user)
    now = utcnow()
    store.add_session(Session(
        id=new_id(),
        user_id=user.id,
        refresh_token_hash=token_service.hash_token(tokens["refreshToken"]),
        device_id=device.device_id,
        platform=device.platform,
        user_agent=device.user_agent,
        client_id=device.client_id,
        client_type=device.client_type,
        last_seen_at=now,
        created_at=now,
        expires_at=expires_in(current_app.config["REFRESH_TOKEN_TTL"], now),
    ))
    return tokens


def refresh_access_token(store: Storage, refresh_token, device: DeviceInfo | None = None) -> dict:
    """
    Rotate a refresh token into a new token pair.

    Raises Unauthenticated(auth.token_invalid) for every failure mode.
    """
    try:
        return _rotate(store, refresh_token, device)
    except (_Rejected, token_service.TokenError) as exc:
        current_app.logger.info("Refresh token rejected: %s", exc)
        raise Unauthenticated(messages.AUTH_TOKEN_INVALID)


def _rotate(store: Storage, refresh_token, device: DeviceInfo | None) -> dict:
    if not isinstance(refresh_token, str) or not refresh_token:
        raise _Rejected("missing token")

    claims = token_service.verify_token(refresh_token, token_service.REFRESH)

    old_hash = token_service.hash_token(refresh_token)
    session = store.get_session_by_token_hash(old_hash)
    if session is None:
        raise _Rejected("no session for token (revoked or already rotated)")
    if session.user_id != claims["userId"]:
        raise _Rejected("session/user mismatch")

    now = utcnow()
    if is_expired(session.expires_at, now):
        store.delete_session(session.id)
        raise _Rejected("session expired")

    user = store.get_user(session.user_id)
    if user is None:
        raise _Rejected("user missing or deleted")
    if user.status == "blocked":
        raise _Rejected("user blocked")

    tokens = token_service.issue_token_pair(user)
    changes = {
        "refresh_token_hash": token_service.hash_token(tokens["refreshToken"]),
        "last_seen_at": now,
        "expires_at": expires_in(current_app.config["REFRESH_TOKEN_TTL"], now),
    }
    if device is not None:
        changes["platform"] = device.platform
        if device.device_id != "unknown":
            changes["device_id"] = device.device_id
        if device.user_agent:
            changes["user_agent"] = device.user_agent

    if store.rotate_session(session.id, old_hash, changes) is None:
        raise _Rejected("concurrent rotation")
    return tokens


def logout(store: Storage, user: User, refresh_token) -> bool:
    """Delete the session of refresh_token if it belongs to user."""
    if not isinstance(refresh_token, str) or not refresh_token:
        return False
    session = store.get_session_by_token_hash(token_service.hash_token(refresh_token))
    if session is None or session.user_id != user.id:
        return False
    return store.delete_session(session.id)


def revoke_all_sessions(store: Storage, user_id: str) -> int:
    """Delete every session of user_id (logout-all, block, soft delete)."""
    count = store.delete_user_sessions(user_id)
    current_app.logger.info("Revoked %d session(s) for user %s", count, user_id)
    return count


def list_sessions(store: Storage, user: User) -> list[Session]:
    return store.list_sessions(user.id)


def delete_session(store: Storage, user: User, session_id: str) -> None:
    """Delete one of the caller's own sessions; any other id is NotFound."""
    session = store.get_session(session_id)
    if session is None or session.user_id != user.id:
        raise NotFound(messages.SESSION_DEVICE_NOT_FOUND, {"sessionId": session_id})
    store.delete_session(session_id)

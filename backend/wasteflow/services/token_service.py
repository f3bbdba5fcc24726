# Overview: Signed access/refresh tokens (JWT, HS256).

"""
Token Issuance and Verification

SECURITY NOTES:
- Both tokens are HS256 JWTs signed with JWT_SECRET_KEY
- Claims: sub, userId, userType, type (access|refresh), iss, iat, exp, jti
- jti makes every refresh token unique, so its SHA-256 hash can key a session
- verify_token raises TokenError with an internal reason; callers turn any
  TokenError into one generic client-facing error
"""

from __future__ import annotations

import hashlib
import uuid
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app

ALGORITHM = "HS256"
ACCESS = "access"
REFRESH = "refresh"


class TokenError(Exception):
    """Token rejected; the message is for logs only."""


def hash_token(token: str) -> str:
    """
    Hash token for session storage using SHA-256.

    WHY SHA-256 not bcrypt: signed tokens are already high-entropy.
    """
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _encode(user, token_type: str, ttl: timedelta, now: datetime) -> str:
    payload = {
        "sub": user.id,
        "userId": user.id,
        "userType": user.type,
        "type": token_type,
        "iss": current_app.config["JWT_ISSUER"],
        "iat": now,
        "exp": now + ttl,
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(payload, current_app.config["JWT_SECRET_KEY"], algorithm=ALGORITHM)


def issue_token_pair(user) -> dict:
    """Return {accessToken, refreshToken, expiresIn} for user."""
    now = datetime.now(timezone.utc)
    access_ttl = current_app.config["ACCESS_TOKEN_TTL"]
    return {
        "accessToken": _encode(user, ACCESS, access_ttl, now),
        "refreshToken": _encode(user, REFRESH, current_app.config["REFRESH_TOKEN_TTL"], now),
        "expiresIn": int(access_ttl.total_seconds()),
    }


def verify_token(token: str, expected_type: str) -> dict:
    """Decode and validate token; returns its claims."""
    try:
        claims = jwt.decode(
            token,
            current_app.config["JWT_SECRET_KEY"],
            algorithms=[ALGORITHM],
            issuer=current_app.config["JWT_ISSUER"],
            options={"require": ["exp", "iat", "iss", "sub"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise TokenError("expired") from exc
    except jwt.InvalidIssuerError as exc:
        raise TokenError("wrong issuer") from exc
    except jwt.InvalidTokenError as exc:
        raise TokenError(f"invalid: {exc}") from exc

    if claims.get("type") != expected_type:
        raise TokenError(f"wrong type: expected {expected_type}, got {claims.get('type')}")
    if not claims.get("userId"):
        raise TokenError("missing userId")
    return claims

# Overview: Request and permission decorators for API routes.

"""
Route Decorators

Stack them in this order (outermost first):

    @bp.post("/orders/<order_id>/assign")
    @require_auth
    @idempotent
    @require_permissions("orders.assign")
    def assign(order_id): ...

so that the identity is known before the idempotency key is scoped to it,
and a replayed response is served without re-checking permissions that may
have changed since the first request.
"""

from __future__ import annotations

from functools import wraps

from flask import Response, current_app, g, request

from . import messages
from .errors import ApiError, Forbidden, Unauthenticated
from .middleware import SAFE_METHODS, get_request_context
from .responses import error_response
from .services import idempotency_service, permission_service, token_service
from .storage import get_storage


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization") or ""
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def require_auth(f):
    """
    Require a valid access token and load the caller.

    Sets:
    - g.request_context.user / .permissions
    - g.current_user (shortcut)

    SECURITY:
    - 401 for a missing, malformed, expired or wrong-type token
    - 401 for a deleted user (the token outlives the account)
    - 403 auth.user_blocked for a blocked user
    - the user and permissions are reloaded on every request; nothing from
      the token besides the user id is trusted
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if token is None:
            raise Unauthenticated(messages.AUTH_UNAUTHENTICATED)

        try:
            claims = token_service.verify_token(token, token_service.ACCESS)
        except token_service.TokenError as exc:
            current_app.logger.info("Access token rejected: %s", exc)
            raise Unauthenticated(messages.AUTH_TOKEN_INVALID)

        store = get_storage()
        user = store.get_user(claims["userId"])
        if user is None:
            raise Unauthenticated(messages.AUTH_UNAUTHENTICATED)
        if user.status == "blocked":
            raise Forbidden(messages.AUTH_USER_BLOCKED)

        context = get_request_context()
        context.user = user
        context.permissions = permission_service.get_user_permissions(store, user.id)
        g.current_user = user

        return f(*args, **kwargs)

    return decorated_function


def require_permissions(*required: str):
    """Require every listed permission (AND semantics)."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            context = get_request_context()
            if context.user is None:
                raise Unauthenticated(messages.AUTH_UNAUTHENTICATED)

            permission_service.require_permissions(
                get_storage(),
                user_id=context.user.id,
                required=list(required),
                granted=context.permissions,
                resource=request.path,
                ip_address=request.remote_addr,
                user_agent=request.headers.get("User-Agent"),
            )
            return f(*args, **kwargs)

        return decorated_function
    return decorator


def require_user_type(*types: str):
    """Require the caller's type to be one of types."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            context = get_request_context()
            if context.user is None:
                raise Unauthenticated(messages.AUTH_UNAUTHENTICATED)

            permission_service.require_user_type(
                get_storage(),
                context.user,
                list(types),
                resource=request.path,
                ip_address=request.remote_addr,
            )
            return f(*args, **kwargs)

        return decorated_function
    return decorator


def idempotent(f):
    """
    Honour the Idempotency-Key header on mutating requests.

    The first response with status < 500 (errors included) is stored and
    replayed verbatim to retries; see services/idempotency_service.py.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        key = request.headers.get(idempotency_service.HEADER)
        if request.method in SAFE_METHODS or key is None:
            return f(*args, **kwargs)

        context = get_request_context()
        if context.user is None:
            raise Unauthenticated(messages.AUTH_UNAUTHENTICATED)

        store = get_storage()
        endpoint = f"{request.method} {request.path}"
        claim = idempotency_service.begin(store, context.user.id, endpoint, key.strip())

        if claim.replay is not None:
            record = claim.replay
            response = Response(
                record.response_body or "",
                status=record.status_code,
                content_type=record.content_type or "application/json",
            )
            response.headers[idempotency_service.REPLAY_HEADER] = "true"
            return response

        try:
            try:
                rv = f(*args, **kwargs)
            except ApiError as exc:
                rv = error_response(exc)
            response = current_app.make_response(rv)
        except Exception:
            idempotency_service.release(store, claim.record_id)
            raise

        idempotency_service.finish(
            store,
            claim.record_id,
            response.status_code,
            response.get_data(as_text=True),
            response.content_type,
        )
        return response

    return decorated_function

# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/wasteflow/routes/auth.py
"""
Authentication API routes

SECURITY FEATURES:
- Per-IP throttling on register, login and refresh
- Short-lived access tokens, single-use rotating refresh tokens
- One session per device; sessions can be listed and revoked individually
- Every refresh failure looks the same to the client
"""

from flask import Blueprint, request

from .. import messages
from ..decorators import require_auth
from ..middleware import get_request_context
from ..responses import json_body, success
from ..services import auth_service, permission_service, session_service, throttle_service
from ..storage import get_storage

auth_bp = Blueprint("auth", __name__, url_prefix="/api/v1/auth")


def _throttle(endpoint: str) -> None:
    throttle_service.check_and_record(
        get_storage(),
        ip_address=request.remote_addr,
        endpoint=endpoint,
        user_agent=request.headers.get("User-Agent"),
    )


def _me(store, user) -> dict:
    data = user.to_dict()
    data["roles"] = sorted(permission_service.get_user_role_names(store, user.id))
    data["permissions"] = sorted(permission_service.get_user_permissions(store, user.id))
    return data


@auth_bp.post("/register")
def register_route():
    """
    Self-registration for clients and couriers.

    Staff accounts are created via POST /api/v1/users or the CLI.
    """
    _throttle("register")
    store = get_storage()
    data = json_body()

    user = auth_service.register_user(store, data)
    tokens = session_service.start_session(store, user, session_service.DeviceInfo.from_request(data, request.headers))
    return success(
        {"user": user.to_dict(), **tokens},
        key=messages.AUTH_REGISTER_SUCCESS,
        params={"userId": user.id},
        status=201,
    )


@auth_bp.post("/login")
def login_route():
    """
    Authenticate by phone + password and open a device session.

    SECURITY:
    - unknown phone and wrong password are indistinguishable
    - blocked users get 403 only after the password matched
    """
    _throttle("login")
    store = get_storage()
    data = json_body()

    user = auth_service.authenticate(store, data.get("phone"), data.get("password"))
    tokens = session_service.start_session(store, user, session_service.DeviceInfo.from_request(data, request.headers))
    return success({"user": user.to_dict(), **tokens}, key=messages.AUTH_LOGIN_SUCCESS)


@auth_bp.post("/refresh")
def refresh_route():
    _throttle("refresh")
    data = json_body()
    tokens = session_service.refresh_access_token(
        get_storage(),
        data.get("refreshToken"),
        session_service.DeviceInfo.from_request(data, request.headers),
    )
    return success(tokens, key=messages.AUTH_REFRESH_SUCCESS)


@auth_bp.post("/logout")
@require_auth
def logout_route():
    """Revoke the session of the given refresh token (this device only)."""
    data = json_body()
    session_service.logout(get_storage(), get_request_context().user, data.get("refreshToken"))
    return success(key=messages.AUTH_LOGOUT_SUCCESS)


@auth_bp.post("/logout-all")
@require_auth
def logout_all_route():
    user = get_request_context().user
    count = session_service.revoke_all_sessions(get_storage(), user.id)
    return success({"revoked": count}, key=messages.SESSION_ALL_DELETED)


@auth_bp.get("/me")
@require_auth
def me_route():
    return success(_me(get_storage(), get_request_context().user))


@auth_bp.get("/sessions")
@require_auth
def list_sessions_route():
    sessions = session_service.list_sessions(get_storage(), get_request_context().user)
    return success([session.to_dict() for session in sessions])


@auth_bp.delete("/sessions/<session_id>")
@require_auth
def delete_session_route(session_id: str):
    session_service.delete_session(get_storage(), get_request_context().user, session_id)
    return success(key=messages.SESSION_DELETED)

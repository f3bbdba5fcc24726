# Overview: Flask API routes for the customer activity timeline and segmentation flags.

"""
ENDPOINTS:
- POST   /users/<id>/activity           the user, or users.manage
- GET    /users/<id>/activity           the user, or users.read (paginated)
- GET    /users/<id>/activity/summary   count per activity type
- GET    /users/<id>/flags              users.read
- POST   /users/<id>/flags              users.manage, upsert by key
- DELETE /users/<id>/flags/<key>        users.manage
- GET    /flags/<key>/users             users.read, ids of flagged users
"""

from flask import Blueprint, request

from .. import messages
from ..decorators import idempotent, require_auth, require_permissions
from ..middleware import get_request_context
from ..responses import json_body, no_content, paginated, parse_pagination, parse_time_range, success
from ..services import activity_service, flag_service, permission_service
from ..storage import get_storage

engagement_bp = Blueprint("engagement", __name__, url_prefix="/api/v1")


def _require_self_or(permission: str, user_id: str) -> None:
    context = get_request_context()
    permission_service.require_self_or_permission(context.user, context.permissions, user_id, permission)


# =============================================================================
# ACTIVITY
# =============================================================================

@engagement_bp.post("/users/<user_id>/activity")
@require_auth
@idempotent
def record_activity(user_id: str):
    _require_self_or("users.manage", user_id)
    activity = activity_service.record_activity(get_storage(), user_id, json_body())
    return success(activity.to_dict(), key=messages.ACTIVITY_RECORDED, status=201)


@engagement_bp.get("/users/<user_id>/activity")
@require_auth
def list_activity(user_id: str):
    """Query params: eventType, from, to, page, perPage"""
    _require_self_or("users.read", user_id)
    page, per_page = parse_pagination()
    since, until = parse_time_range()
    filters = {"eventType": request.args.get("eventType"), "since": since, "until": until}
    return paginated(activity_service.list_activities(get_storage(), user_id, filters, page, per_page))


@engagement_bp.get("/users/<user_id>/activity/summary")
@require_auth
def activity_summary(user_id: str):
    _require_self_or("users.read", user_id)
    return success(activity_service.activity_summary(get_storage(), user_id))


# =============================================================================
# FLAGS
# =============================================================================

@engagement_bp.get("/users/<user_id>/flags")
@require_auth
@require_permissions("users.read")
def list_flags(user_id: str):
    return success([flag.to_dict() for flag in flag_service.list_flags(get_storage(), user_id)])


@engagement_bp.post("/users/<user_id>/flags")
@require_auth
@idempotent
@require_permissions("users.manage")
def set_flag(user_id: str):
    flag = flag_service.set_flag(get_storage(), get_request_context().user, user_id, json_body())
    return success(flag.to_dict(), key=messages.FLAG_SET, params={"key": flag.key})


@engagement_bp.delete("/users/<user_id>/flags/<key>")
@require_auth
@require_permissions("users.manage")
def delete_flag(user_id: str, key: str):
    flag_service.delete_flag(get_storage(), get_request_context().user, user_id, key)
    return no_content()


@engagement_bp.get("/flags/<key>/users")
@require_auth
@require_permissions("users.read")
def flagged_users(key: str):
    """?value=false lists users carrying the flag switched off."""
    value = (request.args.get("value") or "").strip().lower() != "false"
    return success(flag_service.users_with_flag(get_storage(), key, value))

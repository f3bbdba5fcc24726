# Overview: Flask API routes for user, role and permission administration.

# backend/wasteflow/routes/users.py
"""
Admin routes for user and role management.

Provides endpoints for:
- User management (list, create, update, block/unblock, soft delete)
- Role management (list, create, replace a user's roles)
- Permission catalogue (list)

All mutations are audited by the service layer.
"""

from flask import Blueprint, request

from .. import messages
from ..decorators import idempotent, require_auth, require_permissions
from ..middleware import get_request_context
from ..permissions import get_permissions_by_category
from ..responses import json_body, no_content, paginated, parse_pagination, query_flag, success
from ..services import permission_service, user_service
from ..storage import get_storage

users_bp = Blueprint("users", __name__, url_prefix="/api/v1")


# =============================================================================
# USER MANAGEMENT
# =============================================================================

@users_bp.get("/users")
@require_auth
@require_permissions("users.read")
def list_users():
    """
    Query params:
    - type: client | courier | staff
    - status: active | blocked
    - includeDeleted: bool (default false)
    - page, perPage
    """
    page, per_page = parse_pagination()
    filters = {
        "type": request.args.get("type"),
        "status": request.args.get("status"),
        "includeDeleted": query_flag("includeDeleted"),
    }
    return paginated(user_service.list_users(get_storage(), filters, page, per_page))


@users_bp.post("/users")
@require_auth
@idempotent
@require_permissions("users.manage")
def create_user():
    store = get_storage()
    user = user_service.create_user(store, get_request_context().user, json_body())
    return success(user_service.user_detail(store, user), key=messages.USER_CREATED, status=201)


@users_bp.get("/users/<user_id>")
@require_auth
@require_permissions("users.read")
def get_user(user_id: str):
    store = get_storage()
    user = user_service.get_user_or_404(store, user_id, include_deleted=query_flag("includeDeleted"))
    return success(user_service.user_detail(store, user))


@users_bp.patch("/users/<user_id>")
@require_auth
@idempotent
@require_permissions("users.manage")
def update_user(user_id: str):
    store = get_storage()
    user = user_service.update_user(store, get_request_context().user, user_id, json_body())
    return success(user_service.user_detail(store, user), key=messages.USER_UPDATED)


@users_bp.delete("/users/<user_id>")
@require_auth
@require_permissions("users.manage")
def delete_user(user_id: str):
    user_service.soft_delete_user(get_storage(), get_request_context().user, user_id)
    return no_content()


@users_bp.post("/users/<user_id>/roles")
@require_auth
@idempotent
@require_permissions("users.manage")
def set_user_roles(user_id: str):
    data = json_body()
    roles = user_service.set_roles(get_storage(), get_request_context().user, user_id, data.get("roleIds"))
    return success({"userId": user_id, "roles": roles}, key=messages.USER_ROLES_ASSIGNED)


# =============================================================================
# ROLES & PERMISSIONS
# =============================================================================

@users_bp.get("/roles")
@require_auth
@require_permissions("users.read")
def list_roles():
    return success(permission_service.list_roles(get_storage()))


@users_bp.post("/roles")
@require_auth
@idempotent
@require_permissions("users.manage")
def create_role():
    role = user_service.create_role(get_storage(), get_request_context().user, json_body())
    return success(role, key=messages.ROLE_CREATED, status=201)


@users_bp.get("/permissions")
@require_auth
@require_permissions("users.read")
def list_permissions():
    permissions = permission_service.list_permissions(get_storage())
    category = request.args.get("category")
    if category:
        names = {name for name, _, _ in get_permissions_by_category(category.upper())}
        permissions = [permission for permission in permissions if permission.name in names]
    return success([permission.to_dict() for permission in permissions])

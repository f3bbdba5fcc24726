# Overview: Service-layer operations for user administration; staff accounts, blocking, roles and soft delete.

"""
User Administration

Staff-facing counterpart of auth_service: everything here is performed by a
holder of users.manage (or users.read for reads) and is audited.

SECURITY NOTES:
- Blocking or deleting a user revokes every session immediately; the access
  token dies on the next request because require_auth reloads the user
- password_hash never leaves this layer (User.to_dict omits it)
- role changes take effect on the very next request (no permission cache)
"""

from __future__ import annotations

from .. import messages
from ..errors import Conflict, NotFound, ValidationError
from ..models import User
from ..models.auth import USER_STATUSES, USER_TYPES
from ..storage import DuplicateKeyError, Storage
from ..validation import USER_PATCH_POLICY, validate_payload
from . import audit_service, auth_service, permission_service, session_service

WIRE_NAMES = {"phone": "phone", "email": "email", "status": "status"}


def get_user_or_404(store: Storage, user_id: str, include_deleted: bool = False) -> User:
    user = store.get_user(user_id, include_deleted=include_deleted)
    if user is None:
        raise NotFound(messages.USER_NOT_FOUND, {"userId": user_id})
    return user


def user_detail(store: Storage, user: User) -> dict:
    """User plus role names and, for couriers, the courier profile."""
    data = user.to_dict()
    data["roles"] = sorted(permission_service.get_user_role_names(store, user.id))
    if user.type == "courier":
        profile = store.get_courier_profile(user.id, include_deleted=True)
        data["courierProfile"] = profile.to_dict() if profile is not None else None
    return data


def list_users(store: Storage, filters: dict, page: int, per_page: int):
    user_type = filters.get("type") or None
    status = filters.get("status") or None
    if user_type is not None and user_type not in USER_TYPES:
        raise ValidationError(params={"field": "type", "reason": "choice", "allowed": list(USER_TYPES)})
    if status is not None and status not in USER_STATUSES:
        raise ValidationError(params={"field": "status", "reason": "choice", "allowed": list(USER_STATUSES)})
    return store.list_users(
        user_type=user_type,
        status=status,
        include_deleted=bool(filters.get("includeDeleted")),
        page=page,
        per_page=per_page,
    )


def create_user(store: Storage, actor, payload: dict) -> User:
    """
    Staff-side account creation (any type, including staff).

    Optional roleIds are applied right away and audited with the creation.
    """
    user_type = payload.get("type") or "staff"
    if user_type not in USER_TYPES:
        raise ValidationError(params={"field": "type", "reason": "choice", "allowed": list(USER_TYPES)})

    role_ids = payload.get("roleIds") or []
    if not isinstance(role_ids, list):
        raise ValidationError(params={"field": "roleIds", "reason": "list"})

    user = auth_service.create_user(
        store,
        phone=payload.get("phone"),
        password=payload.get("password"),
        user_type=user_type,
        email=payload.get("email"),
    )
    role_names: list[str] = []
    if role_ids:
        _, role_names = permission_service.set_user_roles(store, user.id, role_ids)

    audit_service.record(
        store,
        actor=actor,
        action="CREATE_USER",
        entity="user",
        entity_id=user.id,
        metadata={"type": user.type, "roles": role_names},
    )
    return user


def update_user(store: Storage, actor, user_id: str, payload: dict) -> User:
    """
    PATCH phone / email / status.

    A status change is audited as BLOCK_USER / UNBLOCK_USER (blocking also
    revokes every session); other field changes as UPDATE_USER with only the
    differing fields. Changing nothing writes nothing.
    """
    user = get_user_or_404(store, user_id)
    patch = validate_payload(model=User, payload=payload, policy=USER_PATCH_POLICY, partial=True)
    if "email" in patch and patch["email"]:
        patch["email"] = patch["email"].lower()
    if "phone" in patch and len(patch["phone"]) < auth_service.MIN_PHONE_LENGTH:
        raise ValidationError(params={"field": "phone", "minLength": auth_service.MIN_PHONE_LENGTH})

    changes = {attr: value for attr, value in patch.items() if getattr(user, attr) != value}
    if not changes:
        return user

    before = {attr: getattr(user, attr) for attr in changes}
    try:
        updated = store.update_user(user_id, changes, expected={"deleted_at": None})
    except DuplicateKeyError:
        field = "email" if "email" in changes and "phone" not in changes else "phone"
        raise Conflict(messages.COMMON_CONFLICT, {"field": field})
    if updated is None:
        raise NotFound(messages.USER_NOT_FOUND, {"userId": user_id})

    status_before = before.pop("status", None)
    new_status = changes.get("status")
    if new_status is not None:
        if new_status == "blocked":
            session_service.revoke_all_sessions(store, user_id)
        audit_service.record(
            store,
            actor=actor,
            action="BLOCK_USER" if new_status == "blocked" else "UNBLOCK_USER",
            entity="user",
            entity_id=user_id,
            changes=audit_service.diff_changes({"status": status_before}, {"status": new_status}),
        )

    if before:
        audit_service.record_update(
            store,
            actor=actor,
            action="UPDATE_USER",
            entity="user",
            entity_id=user_id,
            before={WIRE_NAMES[attr]: value for attr, value in before.items()},
            after={WIRE_NAMES[attr]: changes[attr] for attr in before},
        )
    return updated


def soft_delete_user(store: Storage, actor, user_id: str) -> User:
    """Tombstone a user and revoke all their sessions."""
    user = get_user_or_404(store, user_id, include_deleted=True)
    if user.deleted_at is not None:
        raise Conflict(messages.USER_ALREADY_DELETED, {"userId": user_id})

    deleted = store.soft_delete_user(user_id)
    if deleted is None:
        raise Conflict(messages.USER_ALREADY_DELETED, {"userId": user_id})

    session_service.revoke_all_sessions(store, user_id)
    if deleted.type == "courier":
        store.soft_delete_courier_profile(user_id)

    audit_service.record(
        store,
        actor=actor,
        action="DELETE_USER",
        entity="user",
        entity_id=user_id,
        changes=audit_service.diff_changes({"deletedAt": None}, {"deletedAt": deleted.deleted_at}),
    )
    return deleted


def set_roles(store: Storage, actor, user_id: str, role_ids) -> list[str]:
    """Replace the user's role set; returns the new role names."""
    if not isinstance(role_ids, list) or not all(isinstance(rid, str) for rid in role_ids):
        raise ValidationError(params={"field": "roleIds", "reason": "list"})
    get_user_or_404(store, user_id)

    previous, current = permission_service.set_user_roles(store, user_id, role_ids)
    if previous != current:
        audit_service.record(
            store,
            actor=actor,
            action="ASSIGN_ROLE",
            entity="user",
            entity_id=user_id,
            changes=audit_service.diff_changes({"roles": previous}, {"roles": current}),
        )
    return current


def create_role(store: Storage, actor, payload: dict) -> dict:
    name = payload.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ValidationError(params={"field": "name", "reason": "required"})
    permission_ids = payload.get("permissionIds") or []
    if not isinstance(permission_ids, list):
        raise ValidationError(params={"field": "permissionIds", "reason": "list"})

    role = permission_service.create_role(
        store,
        name.strip(),
        description=payload.get("description"),
        permission_ids=permission_ids,
    )
    detail = permission_service.role_to_dict(store, role)
    audit_service.record(
        store,
        actor=actor,
        action="CREATE_ROLE",
        entity="role",
        entity_id=detail["id"],
        metadata={"name": detail["name"], "permissions": detail["permissions"]},
    )
    return detail

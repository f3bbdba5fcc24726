# Overview: Service-layer operations for permissions; RBAC resolution and security event logging.

"""
Permission Checking and Security Event Logging

WHY: Every mutation is gated by role-based access control, and denials are
kept for security monitoring.

DESIGN PRINCIPLES:
- Fail closed: deny by default, require explicit permission grant
- Flat model: a user's permissions are the union of their roles' permissions,
  no role nesting
- No caching: the set is recomputed on every call so a revoked role stops
  working on the very next request
- Log denials only: granted checks are not logged
"""

from __future__ import annotations

from typing import Iterable

from ..errors import Conflict, Forbidden, NotFound, ValidationError
from .. import messages
from ..models import Permission, Role, SecurityEvent
from ..permissions import DEFAULT_ROLE_PERMISSIONS, PERMISSION_DEFINITIONS, ROLE_DESCRIPTIONS
from ..storage import Storage, new_id
from wasteflow.time_utils import utcnow


def log_security_event(
    store: Storage,
    user_id: str | None,
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> SecurityEvent:
    """
    Append a security event.

    event_type examples:
    - PERMISSION_DENIED
    - USER_TYPE_DENIED
    - AUTH_ATTEMPT
    - SANDBOX_WRITE_BLOCKED
    """
    event = SecurityEvent(
        id=new_id(),
        user_id=user_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow(),
    )
    return store.add_security_event(event)


def get_user_permissions(store: Storage, user_id: str) -> set[str]:
    """Deduplicated union of the permissions of every role assigned to user_id."""
    return store.get_user_permission_names(user_id)


def user_has_permission(store: Storage, user_id: str, permission_name: str) -> bool:
    return permission_name in get_user_permissions(store, user_id)


def check_permissions(granted: Iterable[str], required: Iterable[str]) -> list[str]:
    """Return the required permissions missing from granted (AND semantics)."""
    granted = set(granted)
    return [name for name in required if name not in granted]


def require_permissions(
    store: Storage,
    user_id: str,
    required: list[str],
    granted: set[str] | None = None,
    resource: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> None:
    """
    Raise Forbidden unless user_id holds every permission in required.

    The error names what was required, never what the user holds.
    """
    if granted is None:
        granted = get_user_permissions(store, user_id)
    missing = check_permissions(granted, required)
    if not missing:
        return

    log_security_event(
        store,
        user_id=user_id,
        event_type="PERMISSION_DENIED",
        success=False,
        resource=resource,
        action=",".join(required),
        reason=f"Missing permission: {', '.join(missing)}",
        ip_address=ip_address,
        user_agent=user_agent,
    )
    raise Forbidden(messages.COMMON_PERMISSION_REQUIRED, {"required": list(required)})


def require_self_or_permission(actor, granted: set[str], user_id: str, permission: str) -> None:
    """Per-user resources: the user themself, or a holder of permission."""
    if actor.id == user_id or permission in granted:
        return
    raise Forbidden(messages.COMMON_FORBIDDEN, {"userId": user_id})


def require_user_type(
    store: Storage,
    user,
    required_types: list[str],
    resource: str | None = None,
    ip_address: str | None = None,
) -> None:
    if user.type in required_types:
        return

    log_security_event(
        store,
        user_id=user.id,
        event_type="USER_TYPE_DENIED",
        success=False,
        resource=resource,
        action=",".join(required_types),
        reason=f"User type {user.type} not allowed",
        ip_address=ip_address,
    )
    raise Forbidden(messages.COMMON_USER_TYPE_REQUIRED, {"requiredTypes": list(required_types)})


def get_user_role_names(store: Storage, user_id: str) -> list[str]:
    """Get list of role names for a user."""
    return [role.name for role in store.get_roles(store.list_user_role_ids(user_id))]


# ==================== ROLE MANAGEMENT ====================

def role_to_dict(store: Storage, role: Role) -> dict:
    data = role.to_dict()
    data["permissions"] = [perm.name for perm in store.get_permissions(store.list_role_permission_ids(role.id))]
    return data


def list_roles(store: Storage) -> list[dict]:
    return [role_to_dict(store, role) for role in store.list_roles()]


def list_permissions(store: Storage) -> list[Permission]:
    return store.list_permissions()


def create_role(
    store: Storage,
    name: str,
    description: str | None = None,
    permission_ids: list[str] | None = None,
) -> Role:
    """
    Create a role, optionally granting permissions by id.

    Raises Conflict on a duplicate name and ValidationError on unknown
    permission ids (nothing is created in that case).
    """
    permission_ids = list(dict.fromkeys(permission_ids or []))
    known = {perm.id for perm in store.get_permissions(permission_ids)}
    unknown = [pid for pid in permission_ids if pid not in known]
    if unknown:
        raise ValidationError(messages.PERMISSION_NOT_FOUND, {"permissionIds": unknown})

    if store.get_role_by_name(name):
        raise Conflict(messages.COMMON_CONFLICT, {"field": "name"})

    role = store.add_role(Role(id=new_id(), name=name, description=description, created_at=utcnow()))
    for permission_id in permission_ids:
        store.grant_role_permission(role.id, permission_id)
    return role


def set_user_roles(store: Storage, user_id: str, role_ids: list[str]) -> tuple[list[str], list[str]]:
    """
    Replace the role set of user_id with role_ids.

    Returns (previous role names, new role names). Unknown role ids raise
    ValidationError before anything is changed.
    """
    role_ids = list(dict.fromkeys(role_ids))
    roles = store.get_roles(role_ids)
    found = {role.id for role in roles}
    unknown = [rid for rid in role_ids if rid not in found]
    if unknown:
        raise ValidationError(messages.ROLE_INVALID_ROLE_IDS, {"roleIds": unknown})

    previous_ids = store.list_user_role_ids(user_id)
    previous_names = sorted(role.name for role in store.get_roles(previous_ids))

    for role_id in previous_ids:
        if role_id not in found:
            store.remove_user_role(user_id, role_id)
    for role_id in role_ids:
        if role_id not in previous_ids:
            store.assign_user_role(user_id, role_id)

    return previous_names, sorted(role.name for role in roles)


def assign_role(store: Storage, user_id: str, role_name: str) -> bool:
    """Assign a role by name; returns False when it was already assigned."""
    role = store.get_role_by_name(role_name)
    if not role:
        raise NotFound(messages.ROLE_NOT_FOUND, {"role": role_name})
    return store.assign_user_role(user_id, role.id)


# ==================== SEEDING ====================

def initialize_permissions(store: Storage) -> int:
    """
    Create Permission rows for every entry of PERMISSION_DEFINITIONS.

    Idempotent: Safe to run multiple times.
    """
    created_count = 0
    for name, description, category in PERMISSION_DEFINITIONS:
        permission = Permission(
            id=new_id(),
            name=name,
            description=description,
            category=category,
            created_at=utcnow(),
        )
        if store.add_permission(permission) is not None:
            created_count += 1
    return created_count


def initialize_roles(store: Storage) -> int:
    """Create the default roles that do not exist yet."""
    created_count = 0
    for role_name in DEFAULT_ROLE_PERMISSIONS:
        if store.get_role_by_name(role_name):
            continue
        store.add_role(Role(
            id=new_id(),
            name=role_name,
            description=ROLE_DESCRIPTIONS.get(role_name),
            created_at=utcnow(),
        ))
        created_count += 1
    return created_count


def assign_default_role_permissions(store: Storage) -> int:
    """
    Link default roles to their default permissions.

    Idempotent: existing edges are skipped.
    """
    created_count = 0
    for role_name, permission_names in DEFAULT_ROLE_PERMISSIONS.items():
        role = store.get_role_by_name(role_name)
        if not role:
            continue
        for permission_name in permission_names:
            permission = store.get_permission_by_name(permission_name)
            if not permission:
                continue
            if store.grant_role_permission(role.id, permission.id):
                created_count += 1
    return created_count


def initialize_defaults(store: Storage) -> dict:
    """Seed permissions, roles and role grants. Idempotent."""
    return {
        "permissions": initialize_permissions(store),
        "roles": initialize_roles(store),
        "grants": assign_default_role_permissions(store),
    }


def grant_permission_to_role(store: Storage, role_name: str, permission_name: str) -> bool:
    """Grant a permission to a role."""
    role = store.get_role_by_name(role_name)
    if not role:
        raise ValueError(f"Role '{role_name}' not found")

    permission = store.get_permission_by_name(permission_name)
    if not permission:
        raise ValueError(f"Permission '{permission_name}' not found")

    return store.grant_role_permission(role.id, permission.id)


def revoke_permission_from_role(store: Storage, role_name: str, permission_name: str) -> bool:
    """Revoke a permission from a role."""
    role = store.get_role_by_name(role_name)
    if not role:
        raise ValueError(f"Role '{role_name}' not found")

    permission = store.get_permission_by_name(permission_name)
    if not permission:
        raise ValueError(f"Permission '{permission_name}' not found")

    return store.revoke_role_permission(role.id, permission.id)

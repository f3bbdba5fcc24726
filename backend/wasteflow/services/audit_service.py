# Overview: Service-layer operations for the audit log; accountability for privileged mutations.

"""
Audit Trail

WHY: Every privileged mutation (staff action, role change, order assignment,
cancellation by permission) must be attributable: who, what, before/after.

RULES:
- changes only carries fields whose value actually differs
- update actions with an empty diff write nothing
- entries are written synchronously right after the mutation succeeds
- a failed audit write never undoes the mutation; the full entry is logged
  at ERROR instead so it can be recovered from the logs
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app

from .. import messages
from ..models import AuditLog
from ..storage import Storage, new_id
from . import permission_service
from wasteflow.time_utils import to_utc_z, utcnow

UPDATE_ACTIONS = {
    "UPDATE_USER",
    "UPDATE_ORDER",
    "UPDATE_FINANCE",
    "UPDATE_SUBSCRIPTION",
    "UPDATE_SUBSCRIPTION_PLAN",
    "SET_USER_FLAG",
}


def _plain(value):
    return to_utc_z(value) if isinstance(value, datetime) else value


def diff_changes(before: dict, after: dict) -> dict:
    """
    {field: {"from": old, "to": new}} for every field of after that differs
    from before. Fields missing from before count as None.
    """
    changes = {}
    for field, new_value in after.items():
        old_value = before.get(field)
        if old_value != new_value:
            changes[field] = {"from": _plain(old_value), "to": _plain(new_value)}
    return changes


def actor_role_label(store: Storage, actor) -> str:
    """Comma-joined role names, or the user type for users without roles."""
    names = sorted(permission_service.get_user_role_names(store, actor.id))
    return ",".join(names) if names else actor.type


def record(
    store: Storage,
    *,
    actor,
    action: str,
    entity: str,
    entity_id: str,
    changes: dict | None = None,
    metadata: dict | None = None,
) -> AuditLog | None:
    """
    Append an audit entry for actor.

    Returns the stored entry, or None when skipped (empty update diff) or
    when the write failed.
    """
    changes = changes or {}
    if action in UPDATE_ACTIONS and not changes:
        return None

    entry = AuditLog(
        id=new_id(),
        user_id=actor.id if actor is not None else "system",
        user_role=actor_role_label(store, actor) if actor is not None else "system",
        action=action,
        message_key=messages.AUDIT_MESSAGE_KEYS.get(action, "audit.unknown"),
        entity=entity,
        entity_id=entity_id,
        changes=changes,
        meta=metadata or {},
        created_at=utcnow(),
    )
    try:
        return store.append_audit_log(entry)
    except Exception:
        current_app.logger.exception(
            "Audit write failed: %s",
            {
                "userId": entry.user_id,
                "userRole": entry.user_role,
                "action": entry.action,
                "entity": entry.entity,
                "entityId": entry.entity_id,
                "changes": entry.changes,
                "metadata": entry.meta,
            },
        )
        return None


def record_update(
    store: Storage,
    *,
    actor,
    action: str,
    entity: str,
    entity_id: str,
    before: dict,
    after: dict,
    metadata: dict | None = None,
) -> AuditLog | None:
    """Diff before/after and record only the differing fields."""
    return record(
        store,
        actor=actor,
        action=action,
        entity=entity,
        entity_id=entity_id,
        changes=diff_changes(before, after),
        metadata=metadata,
    )


def list_audit_logs(store: Storage, filters: dict, page: int, per_page: int):
    return store.list_audit_logs(
        user_id=filters.get("userId"),
        entity=filters.get("entity"),
        entity_id=filters.get("entityId"),
        action=filters.get("action"),
        page=page,
        per_page=per_page,
    )

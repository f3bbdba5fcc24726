# Overview: Service-layer operations for user segmentation flags.

"""
User Flags

One flag per (user, key). Setting a flag that exists overwrites its value
and source; the row keeps its id and createdAt. Staff changes are audited.
"""

from __future__ import annotations

from .. import messages
from ..errors import NotFound, ValidationError
from ..models import UserFlag
from ..models.engagement import USER_FLAG_KEYS
from ..storage import Storage, new_id
from ..validation import USER_FLAG_POLICY, validate_payload
from . import audit_service, user_service
from wasteflow.time_utils import utcnow


def _validate_key(key: str) -> str:
    if key not in USER_FLAG_KEYS:
        raise ValidationError(params={"field": "key", "reason": "choice", "allowed": list(USER_FLAG_KEYS)})
    return key


def list_flags(store: Storage, user_id: str) -> list[UserFlag]:
    user_service.get_user_or_404(store, user_id)
    return store.list_user_flags(user_id)


def set_flag(store: Storage, actor, user_id: str, payload: dict) -> UserFlag:
    user_service.get_user_or_404(store, user_id)
    patch = validate_payload(model=UserFlag, payload=payload, policy=USER_FLAG_POLICY, partial=False)
    key = patch["key"]
    value = patch.get("value")
    values = {
        "value": True if value is None else value,
        "source": patch.get("source") or "manual",
    }

    before: dict = {}
    flag = None
    existing = store.get_user_flag(user_id, key)
    if existing is None:
        flag = store.add_user_flag(UserFlag(id=new_id(), user_id=user_id, key=key, created_at=utcnow(), **values))
        if flag is None:
            # Lost the insert race; overwrite the winner
            existing = store.get_user_flag(user_id, key)
    if flag is None:
        if existing is not None:
            before = {"value": existing.value, "source": existing.source}
            flag = store.update_user_flag(existing.id, values)
        if flag is None:
            raise NotFound(messages.FLAG_NOT_FOUND, {"userId": user_id, "key": key})

    audit_service.record(
        store,
        actor=actor,
        action="SET_USER_FLAG",
        entity="user",
        entity_id=user_id,
        changes=audit_service.diff_changes(before, values),
        metadata={"key": key},
    )
    return flag


def delete_flag(store: Storage, actor, user_id: str, key: str) -> None:
    _validate_key(key)
    existing = store.get_user_flag(user_id, key)
    if existing is None or not store.delete_user_flag(user_id, key):
        raise NotFound(messages.FLAG_NOT_FOUND, {"userId": user_id, "key": key})

    audit_service.record(
        store,
        actor=actor,
        action="DELETE_USER_FLAG",
        entity="user",
        entity_id=user_id,
        changes=audit_service.diff_changes({"value": existing.value}, {"value": None}),
        metadata={"key": key},
    )


def users_with_flag(store: Storage, key: str, value: bool = True) -> list[str]:
    return store.list_flagged_user_ids(_validate_key(key), value)

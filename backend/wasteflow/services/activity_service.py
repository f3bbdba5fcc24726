# Overview: Service-layer operations for the customer activity timeline.

from __future__ import annotations

from ..errors import ValidationError
from ..models import UserActivity
from ..models.engagement import USER_ACTIVITY_TYPES
from ..storage import Storage, new_id
from ..validation import ACTIVITY_POLICY, enforce_rules_object, validate_payload
from . import user_service
from wasteflow.time_utils import utcnow


def record_activity(store: Storage, user_id: str, payload: dict) -> UserActivity:
    user_service.get_user_or_404(store, user_id)
    patch = validate_payload(model=UserActivity, payload=payload, policy=ACTIVITY_POLICY, partial=False)
    enforce_rules_object(patch, "meta", "metadata")

    return store.add_user_activity(UserActivity(
        id=new_id(),
        user_id=user_id,
        event_type=patch["event_type"],
        reference_type=patch.get("reference_type"),
        reference_id=patch.get("reference_id"),
        meta=patch.get("meta") or {},
        created_at=utcnow(),
    ))


def list_activities(store: Storage, user_id: str, filters: dict, page: int, per_page: int):
    """
    Newest first.

    filters: eventType, since, until (inclusive bounds on createdAt)
    """
    event_type = filters.get("eventType") or None
    if event_type is not None and event_type not in USER_ACTIVITY_TYPES:
        raise ValidationError(params={"field": "eventType", "reason": "choice", "allowed": list(USER_ACTIVITY_TYPES)})
    return store.list_user_activities(
        user_id,
        event_type=event_type,
        since=filters.get("since"),
        until=filters.get("until"),
        page=page,
        per_page=per_page,
    )


def activity_summary(store: Storage, user_id: str) -> dict[str, int]:
    """Count per activity type; every type is present, zero included."""
    return {event_type: store.count_user_activities(user_id, event_type) for event_type in USER_ACTIVITY_TYPES}

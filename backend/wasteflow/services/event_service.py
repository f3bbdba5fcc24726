# Overview: Product analytics events and their webhook fan-out.

from __future__ import annotations

from flask import current_app

from ..models import ProductEvent
from ..storage import Storage, new_id
from ..validation import PRODUCT_EVENT_POLICY, enforce_rules_object, validate_payload
from . import webhook_service
from wasteflow.time_utils import utcnow


def actor_type_of(actor) -> str:
    return actor.type if actor is not None else "system"


def emit(
    store: Storage,
    event_type: str,
    *,
    actor,
    entity_type: str,
    entity_id: str,
    payload: dict,
) -> ProductEvent | None:
    """
    Record a product event and hand it to webhook subscribers.

    Best effort: a failure here is logged and never reaches the caller, whose
    mutation has already been persisted.
    """
    try:
        event = store.add_product_event(ProductEvent(
            id=new_id(),
            type=event_type,
            actor_type=actor_type_of(actor),
            actor_id=actor.id if actor is not None else None,
            entity_type=entity_type,
            entity_id=entity_id,
            payload=payload,
            created_at=utcnow(),
        ))
        webhook_service.get_dispatcher().dispatch(store, event_type, payload)
        return event
    except Exception:
        current_app.logger.exception("Product event %s for %s %s not emitted", event_type, entity_type, entity_id)
        return None


def list_events(store: Storage, filters: dict, page: int, per_page: int):
    return store.list_product_events(
        event_type=filters.get("type"),
        entity_id=filters.get("entityId"),
        page=page,
        per_page=per_page,
    )


def ingest(store: Storage, actor, payload: dict) -> ProductEvent:
    """
    Record an event reported by a client app.

    The actor is always the caller. Ingested events are stored for analytics
    only and never fan out to webhooks.
    """
    patch = validate_payload(model=ProductEvent, payload=payload, policy=PRODUCT_EVENT_POLICY, partial=False)
    enforce_rules_object(patch, "payload", "payload")
    return store.add_product_event(ProductEvent(
        id=new_id(),
        type=patch["type"],
        actor_type=actor_type_of(actor),
        actor_id=actor.id,
        entity_type=patch.get("entity_type"),
        entity_id=patch.get("entity_id"),
        payload=patch.get("payload") or {},
        created_at=utcnow(),
    ))

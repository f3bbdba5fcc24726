# Overview: Service-layer operations for orders; the order state machine and its side effects.

"""
Order Lifecycle Service

================================================================================
PURPOSE: Move orders through their lifecycle without ever skipping a state
================================================================================

STATE MACHINE:
    created -> assigned -> in_progress -> completed
    created | assigned | in_progress -> cancelled

    created:     placed by a client, no courier yet
    assigned:    a dispatcher picked a courier
    in_progress: the courier accepted and is on the way / collecting
    completed:   TERMINAL, courier stats and finance snapshot written
    cancelled:   TERMINAL

RULES (NON-NEGOTIABLE):
1. Every status write goes through _apply_transition()
2. The write is a compare-and-swap on the current status; losing a race
   surfaces as InvalidTransitionError with the status that won
3. Every successful transition appends exactly one OrderEvent
4. Privileged transitions (staff, or authorized by permission rather than
   ownership) are audited with a before/after diff
5. completed and cancelled are terminal; nothing moves an order out of them

SIDE EFFECTS BY TARGET STATE:
- assigned:  courier_id set in the same write; webhook order.assigned
- completed: completed_at set; courier completed_orders_count + 1;
             default finance snapshot if none exists; webhook order.completed
- cancelled: webhook order.cancelled
"""

from __future__ import annotations

from flask import current_app

from .. import messages
from ..errors import Conflict, Forbidden, InvalidTransitionError, NotFound, ValidationError
from ..models import Order, OrderEvent
from ..models.orders import ORDER_STATUSES
from ..storage import Storage, new_id
from ..validation import (
    ORDER_CREATE_POLICY,
    ORDER_PATCH_POLICY,
    enforce_rules_order,
    validate_payload,
)
from . import audit_service, event_service, finance_service
from wasteflow.time_utils import utcnow

TRANSITIONS: dict[str, frozenset[str]] = {
    "created": frozenset({"assigned", "cancelled"}),
    "assigned": frozenset({"in_progress", "cancelled"}),
    "in_progress": frozenset({"completed", "cancelled"}),
    "completed": frozenset(),
    "cancelled": frozenset(),
}
TERMINAL_STATUSES = frozenset(status for status, targets in TRANSITIONS.items() if not targets)

# Event written by the dedicated endpoint for each target status
EVENT_FOR_STATUS = {
    "assigned": "assigned",
    "in_progress": "started",
    "completed": "completed",
    "cancelled": "cancelled",
}

PRODUCT_EVENT_FOR_STATUS = {
    "assigned": "order.assigned",
    "completed": "order.completed",
    "cancelled": "order.cancelled",
}

# Attribute -> wire name, for audit diffs
WIRE_NAMES = {
    "status": "status",
    "courier_id": "courierId",
    "price": "price",
    "scheduled_at": "scheduledAt",
    "time_window": "timeWindow",
    "completed_at": "completedAt",
    "deleted_at": "deletedAt",
}

# Lost compare-and-swap retries for cancellation (which is legal from several states)
CANCEL_RETRIES = 3


def can_transition(from_status: str, to_status: str) -> bool:
    """
    Check a status change against the transition table.

    Unknown statuses and same-state "transitions" are not allowed.
    """
    return to_status in TRANSITIONS.get(from_status, frozenset())


def validate_transition(from_status: str, to_status: str, order_id: str | None = None) -> None:
    """Raise InvalidTransitionError unless from_status -> to_status is in the table."""
    if not can_transition(from_status, to_status):
        raise InvalidTransitionError(from_status, to_status, order_id)


def get_order_or_404(store: Storage, order_id: str, include_deleted: bool = False) -> Order:
    order = store.get_order(order_id, include_deleted=include_deleted)
    if order is None:
        raise NotFound(messages.ORDER_NOT_FOUND, {"orderId": order_id})
    return order


def _wire(values: dict) -> dict:
    return {WIRE_NAMES.get(attr, attr): value for attr, value in values.items()}


def _is_privileged(actor, via_permission: bool) -> bool:
    return via_permission or actor.type == "staff"


def _append_event(store: Storage, order_id: str, event_type: str, actor_id: str, metadata: dict | None = None):
    return store.append_order_event(OrderEvent(
        id=new_id(),
        order_id=order_id,
        event_type=event_type,
        performed_by=actor_id,
        meta=metadata or {},
        created_at=utcnow(),
    ))


def _validate_courier(store: Storage, courier_id) -> str:
    """The assignment candidate must be an active, undeleted courier."""
    if not isinstance(courier_id, str) or not courier_id:
        raise ValidationError(messages.COMMON_BAD_REQUEST, {"field": "courierId"})
    courier = store.get_user(courier_id)
    if courier is None or courier.type != "courier" or courier.status != "active":
        raise ValidationError(messages.COURIER_NOT_FOUND, {"courierId": courier_id})
    return courier_id


def _on_completed(store: Storage, order: Order) -> None:
    if order.courier_id:
        if store.increment_completed_orders(order.courier_id) is None:
            current_app.logger.warning(
                "Completed order %s has no courier profile for %s", order.id, order.courier_id
            )
    finance_service.ensure_snapshot(store, order.id, order.price)


def _apply_transition(
    store: Storage,
    actor,
    order: Order,
    to_status: str,
    *,
    extra_changes: dict | None = None,
    event_type: str | None = None,
    event_metadata: dict | None = None,
    audit_action: str | None = None,
    audit_metadata: dict | None = None,
    privileged: bool = False,
) -> Order:
    """
    The single place where an order changes status.

    Args:
        order: the order as read by the caller; its status is the expected
            value of the compare-and-swap
        extra_changes: other fields written in the same swap (courier_id,
            PATCH field edits)
        event_type: OrderEvent type; defaults to EVENT_FOR_STATUS[to_status]
        audit_action: written only when privileged is True

    Raises:
        InvalidTransitionError: illegal transition, or lost race
        NotFound: order deleted concurrently
    """
    order_id = order.id
    from_status = order.status
    validate_transition(from_status, to_status, order_id)

    changes = dict(extra_changes or {})
    changes["status"] = to_status
    if to_status == "completed":
        changes["completed_at"] = utcnow()

    # Capture before the write; SQL instances refresh after commit
    before = {attr: getattr(order, attr) for attr in changes}

    updated = store.transition_order(order_id, from_status, changes)
    if updated is None:
        current = store.get_order(order_id)
        if current is None:
            raise NotFound(messages.ORDER_NOT_FOUND, {"orderId": order_id})
        raise InvalidTransitionError(current.status, to_status, order_id)

    _append_event(store, order_id, event_type or EVENT_FOR_STATUS[to_status], actor.id, event_metadata)

    if to_status == "completed":
        _on_completed(store, updated)

    if audit_action and privileged:
        audit_service.record_update(
            store,
            actor=actor,
            action=audit_action,
            entity="order",
            entity_id=order_id,
            before=_wire(before),
            after=_wire(changes),
            metadata=audit_metadata,
        )

    product_event = PRODUCT_EVENT_FOR_STATUS.get(to_status)
    if product_event:
        payload = {"order": updated.to_dict(), "previousStatus": from_status}
        if event_metadata and "reason" in event_metadata:
            payload["reason"] = event_metadata["reason"]
        event_service.emit(
            store, product_event, actor=actor, entity_type="order", entity_id=order_id, payload=payload
        )

    current_app.logger.info("Order %s: %s -> %s by %s", order_id, from_status, to_status, actor.id)
    return updated


# ==================== CREATE ====================

def create_order(store: Storage, actor, payload: dict) -> Order:
    """
    Place a new order for one of the actor's own addresses.

    Status starts at 'created' with no courier; price defaults to
    DEFAULT_ORDER_PRICE.
    """
    patch = validate_payload(model=Order, payload=payload, policy=ORDER_CREATE_POLICY, partial=False)
    enforce_rules_order(patch)

    address = store.get_address(patch["address_id"])
    if address is None:
        raise ValidationError(messages.ADDRESS_NOT_FOUND, {"addressId": patch["address_id"]})
    if address.user_id != actor.id:
        raise Forbidden(messages.ADDRESS_FORBIDDEN, {"addressId": patch["address_id"]})

    price = patch.get("price") or current_app.config["DEFAULT_ORDER_PRICE"]
    order = store.add_order(Order(
        id=new_id(),
        client_id=actor.id,
        courier_id=None,
        address_id=patch["address_id"],
        status="created",
        price=price,
        scheduled_at=patch["scheduled_at"],
        time_window=patch["time_window"],
        created_at=utcnow(),
    ))
    order_id = order.id

    _append_event(store, order_id, "created", actor.id, {"price": price})

    if actor.type == "staff":
        audit_service.record(
            store,
            actor=actor,
            action="CREATE_ORDER",
            entity="order",
            entity_id=order_id,
            metadata={"price": price, "addressId": order.address_id},
        )

    event_service.emit(
        store, "order.created", actor=actor, entity_type="order", entity_id=order_id,
        payload={"order": order.to_dict()},
    )
    return order


# ==================== DEDICATED TRANSITIONS ====================

def assign_courier(store: Storage, actor, order_id: str, courier_id) -> Order:
    """created -> assigned, with courier_id written in the same swap."""
    if not isinstance(courier_id, str) or not courier_id:
        raise ValidationError(messages.COMMON_BAD_REQUEST, {"field": "courierId"})

    order = get_order_or_404(store, order_id)
    if order.courier_id:
        raise Conflict(messages.ORDER_ALREADY_ASSIGNED, {"orderId": order_id})
    _validate_courier(store, courier_id)

    try:
        return _apply_transition(
            store,
            actor,
            order,
            "assigned",
            extra_changes={"courier_id": courier_id},
            event_metadata={"courierId": courier_id},
            audit_action="ASSIGN_COURIER",
            privileged=True,
        )
    except InvalidTransitionError:
        current = store.get_order(order_id)
        if current is not None and current.courier_id:
            raise Conflict(messages.ORDER_ALREADY_ASSIGNED, {"orderId": order_id})
        raise


def accept_order(store: Storage, actor, order_id: str) -> Order:
    """assigned -> in_progress, by the assigned courier only."""
    order = get_order_or_404(store, order_id)
    if order.courier_id != actor.id:
        raise Forbidden(messages.ORDER_NOT_ASSIGNED_TO_YOU, {"orderId": order_id})
    if order.status != "assigned":
        raise Conflict(messages.ORDER_NOT_IN_ASSIGNED_STATUS, {"orderId": order_id, "status": order.status})
    return _apply_transition(store, actor, order, "in_progress")


def complete_order(store: Storage, actor, order_id: str) -> Order:
    """in_progress -> completed, by the assigned courier only."""
    order = get_order_or_404(store, order_id)
    if order.courier_id != actor.id:
        raise Forbidden(messages.ORDER_NOT_ASSIGNED_TO_YOU, {"orderId": order_id})
    if order.status != "in_progress":
        raise Conflict(messages.ORDER_NOT_IN_PROGRESS, {"orderId": order_id, "status": order.status})
    return _apply_transition(store, actor, order, "completed")


def cancel_order(store: Storage, actor, permissions: set[str], order_id: str, reason=None) -> Order:
    """
    Cancel from any non-terminal state.

    Allowed for the owning client or holders of orders.update_status. A lost
    race against another transition is retried, since cancellation is legal
    from every non-terminal state.
    """
    reason = reason if isinstance(reason, str) and reason.strip() else None
    via_permission = "orders.update_status" in permissions

    for _ in range(CANCEL_RETRIES):
        order = get_order_or_404(store, order_id)
        if order.client_id != actor.id and not via_permission:
            raise Forbidden(messages.COMMON_FORBIDDEN, {"orderId": order_id})
        if order.status in TERMINAL_STATUSES:
            raise Conflict(messages.ORDER_CANNOT_CANCEL, {"orderId": order_id, "status": order.status})
        is_owner = order.client_id == actor.id
        try:
            return _apply_transition(
                store,
                actor,
                order,
                "cancelled",
                event_metadata={"reason": reason},
                audit_action="CANCEL_ORDER",
                audit_metadata={"reason": reason},
                privileged=_is_privileged(actor, via_permission and not is_owner),
            )
        except InvalidTransitionError:
            continue

    current = get_order_or_404(store, order_id)
    raise Conflict(messages.ORDER_CANNOT_CANCEL, {"orderId": order_id, "status": current.status})


# ==================== PATCH ====================

def update_order(store: Storage, actor, permissions: set[str], order_id: str, payload: dict) -> Order:
    """
    Generic PATCH: field edits and/or a status change.

    WHO:
    - holders of orders.update_status, the owning client, the assigned courier
    - price edits require orders.update_status
    - target 'assigned' requires orders.assign and courierId in the body

    A status equal to the current one is not a change. A PATCH that changes
    nothing writes nothing (no event, no audit entry).
    """
    order = get_order_or_404(store, order_id)
    has_permission = "orders.update_status" in permissions
    is_owner = order.client_id == actor.id
    is_courier = order.courier_id is not None and order.courier_id == actor.id
    if not (has_permission or is_owner or is_courier):
        raise Forbidden(messages.COMMON_FORBIDDEN, {"orderId": order_id})

    patch = validate_payload(model=Order, payload=payload, policy=ORDER_PATCH_POLICY, partial=True)
    enforce_rules_order(patch)

    if "price" in patch and not has_permission:
        raise Forbidden(messages.COMMON_PERMISSION_REQUIRED, {"required": ["orders.update_status"]})
    if "status" in patch and patch["status"] is None:
        raise ValidationError(params={"field": "status", "reason": "not_null"})

    new_status = patch.pop("status", None)
    courier_id = patch.pop("courier_id", None)
    if courier_id is not None and new_status != "assigned":
        raise ValidationError(params={"field": "courierId", "reason": "assignment_only"})

    field_changes = {attr: value for attr, value in patch.items() if getattr(order, attr) != value}
    privileged = _is_privileged(actor, has_permission)

    if new_status is not None and new_status != order.status:
        validate_transition(order.status, new_status, order_id)
        extra = dict(field_changes)
        if new_status == "assigned":
            if "orders.assign" not in permissions:
                raise Forbidden(messages.COMMON_PERMISSION_REQUIRED, {"required": ["orders.assign"]})
            if order.courier_id:
                raise Conflict(messages.ORDER_ALREADY_ASSIGNED, {"orderId": order_id})
            extra["courier_id"] = _validate_courier(store, courier_id)
        return _apply_transition(
            store,
            actor,
            order,
            new_status,
            extra_changes=extra,
            event_type="status_changed",
            event_metadata={"from": order.status, "to": new_status},
            audit_action="UPDATE_ORDER",
            privileged=privileged,
        )

    if not field_changes:
        return order

    before = {attr: getattr(order, attr) for attr in field_changes}
    updated = store.update_order(order_id, field_changes)
    if updated is None:
        raise NotFound(messages.ORDER_NOT_FOUND, {"orderId": order_id})

    if privileged:
        audit_service.record_update(
            store,
            actor=actor,
            action="UPDATE_ORDER",
            entity="order",
            entity_id=order_id,
            before=_wire(before),
            after=_wire(field_changes),
        )
    return updated


# ==================== DELETE ====================

def soft_delete_order(store: Storage, actor, order_id: str) -> Order:
    order = store.get_order(order_id, include_deleted=True)
    if order is None:
        raise NotFound(messages.ORDER_NOT_FOUND, {"orderId": order_id})
    if order.deleted_at is not None:
        raise Conflict(messages.ORDER_ALREADY_DELETED, {"orderId": order_id})

    deleted = store.soft_delete_order(order_id)
    if deleted is None:
        raise Conflict(messages.ORDER_ALREADY_DELETED, {"orderId": order_id})

    audit_service.record(
        store,
        actor=actor,
        action="DELETE_ORDER",
        entity="order",
        entity_id=order_id,
        changes=audit_service.diff_changes({"deletedAt": None}, {"deletedAt": deleted.deleted_at}),
    )
    return deleted


# ==================== READS ====================

def can_view(actor, permissions: set[str], order: Order) -> bool:
    return (
        "orders.read" in permissions
        or order.client_id == actor.id
        or (order.courier_id is not None and order.courier_id == actor.id)
    )


def get_order_detail(
    store: Storage,
    actor,
    permissions: set[str],
    order_id: str,
    include_deleted: bool = False,
) -> dict:
    """Order + address (even soft-deleted) + event timeline."""
    include_deleted = include_deleted and "orders.read" in permissions
    order = get_order_or_404(store, order_id, include_deleted=include_deleted)
    if not can_view(actor, permissions, order):
        raise Forbidden(messages.COMMON_FORBIDDEN, {"orderId": order_id})

    address = store.get_address(order.address_id, include_deleted=True)
    events = store.list_order_events(order.id)

    detail = order.to_dict()
    detail["address"] = address.to_dict() if address is not None else None
    detail["events"] = [event.to_dict() for event in events]
    return detail


def _validate_status_filter(status) -> str | None:
    if status in (None, ""):
        return None
    if status not in ORDER_STATUSES:
        raise ValidationError(params={"field": "status", "reason": "choice", "allowed": list(ORDER_STATUSES)})
    return status


def list_orders(
    store: Storage,
    actor,
    permissions: set[str],
    *,
    status=None,
    include_deleted: bool = False,
    page: int = 1,
    per_page: int = 20,
):
    """
    Visibility-scoped listing:
    - orders.read: every order (includeDeleted honoured)
    - couriers: orders assigned to them
    - everyone else: their own orders as client
    """
    status = _validate_status_filter(status)
    if "orders.read" in permissions:
        return store.list_orders(status=status, include_deleted=include_deleted, page=page, per_page=per_page)
    if actor.type == "courier":
        return store.list_orders(courier_id=actor.id, status=status, page=page, per_page=per_page)
    return store.list_orders(client_id=actor.id, status=status, page=page, per_page=per_page)


def list_courier_orders(store: Storage, actor, *, status=None, page: int = 1, per_page: int = 20):
    """The courier app's work list: own orders with their addresses embedded."""
    status = _validate_status_filter(status)
    result = store.list_orders(courier_id=actor.id, status=status, page=page, per_page=per_page)
    items = []
    for order in result.items:
        address = store.get_address(order.address_id, include_deleted=True)
        data = order.to_dict()
        data["address"] = address.to_dict() if address is not None else None
        items.append(data)
    return result, items

# Overview: Service-layer operations for order finance snapshots; unit economics per order.

from __future__ import annotations

from flask import current_app

from .. import messages
from ..errors import Conflict, NotFound
from ..models import OrderFinanceSnapshot
from ..storage import Storage, new_id
from ..validation import FINANCE_POLICY, enforce_rules_amounts, validate_payload
from . import audit_service
from wasteflow.time_utils import utcnow

AMOUNT_FIELDS = {
    "client_price": "clientPrice",
    "courier_payout": "courierPayout",
    "bonus_spent": "bonusSpent",
    "platform_fee": "platformFee",
}


def default_amounts(price: int) -> dict:
    """
    Amounts derived from the order price alone.

    courier_payout = round(price * COURIER_PAYOUT_RATE)
    platform_fee   = price - courier_payout
    """
    payout = int(round(price * current_app.config["COURIER_PAYOUT_RATE"]))
    return {
        "client_price": price,
        "courier_payout": payout,
        "bonus_spent": 0,
        "platform_fee": price - payout,
    }


def _build(order_id: str, amounts: dict) -> OrderFinanceSnapshot:
    return OrderFinanceSnapshot(
        id=new_id(),
        order_id=order_id,
        client_price=amounts["client_price"],
        courier_payout=amounts["courier_payout"],
        bonus_spent=amounts["bonus_spent"],
        platform_fee=amounts["platform_fee"],
        margin=amounts["platform_fee"] - amounts["bonus_spent"],
        currency=current_app.config["CURRENCY"],
        created_at=utcnow(),
    )


def ensure_snapshot(store: Storage, order_id: str, price: int) -> OrderFinanceSnapshot | None:
    """Create the default snapshot on completion unless one already exists."""
    return store.add_finance_snapshot(_build(order_id, default_amounts(price)))


def create_snapshot(store: Storage, order_id: str, payload: dict | None) -> OrderFinanceSnapshot:
    """
    Record an explicit snapshot for an order.

    Omitted amounts fall back to the defaults derived from the order price;
    a second snapshot for the same order is a Conflict.
    """
    order = store.get_order(order_id)
    if order is None:
        raise NotFound(messages.ORDER_NOT_FOUND, {"orderId": order_id})

    patch = validate_payload(model=OrderFinanceSnapshot, payload=payload, policy=FINANCE_POLICY, partial=True)
    enforce_rules_amounts(patch, AMOUNT_FIELDS)

    amounts = default_amounts(order.price)
    amounts.update({attr: value for attr, value in patch.items() if value is not None})

    snapshot = store.add_finance_snapshot(_build(order_id, amounts))
    if snapshot is None:
        raise Conflict(messages.ORDER_FINANCE_EXISTS, {"orderId": order_id})
    return snapshot


def get_snapshot(store: Storage, order_id: str) -> OrderFinanceSnapshot:
    snapshot = store.get_finance_snapshot(order_id)
    if snapshot is None:
        raise NotFound(messages.COMMON_NOT_FOUND, {"orderId": order_id})
    return snapshot


def update_snapshot(store: Storage, actor, order_id: str, payload: dict | None) -> OrderFinanceSnapshot:
    """
    Correct the amounts of an existing snapshot.

    margin is recomputed from the resulting platformFee and bonusSpent. An
    update that changes nothing writes nothing.
    """
    snapshot = get_snapshot(store, order_id)
    patch = validate_payload(model=OrderFinanceSnapshot, payload=payload, policy=FINANCE_POLICY, partial=True)
    enforce_rules_amounts(patch, AMOUNT_FIELDS)

    changes = {attr: value for attr, value in patch.items() if getattr(snapshot, attr) != value}
    if not changes:
        return snapshot
    margin = changes.get("platform_fee", snapshot.platform_fee) - changes.get("bonus_spent", snapshot.bonus_spent)
    if margin != snapshot.margin:
        changes["margin"] = margin

    updated = store.update_finance_snapshot(snapshot.id, changes)
    if updated is None:
        raise NotFound(messages.COMMON_NOT_FOUND, {"orderId": order_id})

    wire_names = {**AMOUNT_FIELDS, "margin": "margin"}
    audit_service.record_update(
        store,
        actor=actor,
        action="UPDATE_FINANCE",
        entity="order",
        entity_id=order_id,
        before={wire_names[attr]: getattr(snapshot, attr) for attr in changes},
        after={wire_names[attr]: value for attr, value in changes.items()},
    )
    return updated

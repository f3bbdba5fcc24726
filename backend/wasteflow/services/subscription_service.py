# Overview: Service-layer operations for subscriptions; plans, the subscription state machine and pickup rules.

"""
Subscriptions

STATE MACHINE:
    active <-> paused
    active | paused -> cancelled | expired

    cancelled and expired are TERMINAL.

RULES:
1. Status writes are a compare-and-swap on the current status, exactly like
   orders; losing a race surfaces as a Conflict naming the winning status
2. Entering paused sets paused_at; entering cancelled sets cancelled_at
3. A subscription belongs to the user who created it; holders of
   subscriptions.manage can read and change anyone's
4. Changes made through the permission (not by the owner) are audited
5. New subscriptions need an active plan

PRODUCT EVENTS: subscription.started / paused / resumed / cancelled
"""

from __future__ import annotations

from flask import current_app

from .. import messages
from ..errors import Conflict, NotFound, ValidationError
from ..models import Subscription, SubscriptionPlan, SubscriptionRule
from ..models.engagement import SUBSCRIPTION_STATUSES
from ..storage import Storage, new_id
from ..validation import (
    MAX_AMOUNT,
    SUBSCRIPTION_CREATE_POLICY,
    SUBSCRIPTION_PATCH_POLICY,
    SUBSCRIPTION_PLAN_POLICY,
    SUBSCRIPTION_RULE_POLICY,
    enforce_rules_amounts,
    enforce_rules_days_of_week,
    validate_payload,
)
from . import audit_service, event_service, permission_service
from wasteflow.time_utils import utcnow

MANAGE_PERMISSION = "subscriptions.manage"

TRANSITIONS: dict[str, frozenset[str]] = {
    "active": frozenset({"paused", "cancelled", "expired"}),
    "paused": frozenset({"active", "cancelled", "expired"}),
    "cancelled": frozenset(),
    "expired": frozenset(),
}

PRODUCT_EVENT_FOR_STATUS = {
    "active": "subscription.resumed",
    "paused": "subscription.paused",
    "cancelled": "subscription.cancelled",
}

TIMESTAMP_FOR_STATUS = {
    "paused": "paused_at",
    "cancelled": "cancelled_at",
}

WIRE_NAMES = {
    "status": "status",
    "next_billing_at": "nextBillingAt",
    "paused_at": "pausedAt",
    "cancelled_at": "cancelledAt",
    "name": "name",
    "description_key": "descriptionKey",
    "base_price": "basePrice",
    "currency": "currency",
    "is_active": "isActive",
}


def _wire(values: dict) -> dict:
    return {WIRE_NAMES.get(attr, attr): value for attr, value in values.items()}


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in TRANSITIONS.get(from_status, frozenset())


def _invalid_transition(subscription_id: str, from_status: str, to_status: str) -> Conflict:
    return Conflict(
        messages.SUBSCRIPTION_INVALID_STATUS_TRANSITION,
        {"subscriptionId": subscription_id, "from": from_status, "to": to_status},
    )


# ==================== PLANS ====================

def get_plan_or_404(store: Storage, plan_id: str) -> SubscriptionPlan:
    plan = store.get_subscription_plan(plan_id)
    if plan is None:
        raise NotFound(messages.SUBSCRIPTION_PLAN_NOT_FOUND, {"planId": plan_id})
    return plan


def create_plan(store: Storage, actor, payload: dict) -> SubscriptionPlan:
    patch = validate_payload(model=SubscriptionPlan, payload=payload, policy=SUBSCRIPTION_PLAN_POLICY, partial=False)
    enforce_rules_amounts(patch, {"base_price": "basePrice"}, positive=True)

    plan = store.add_subscription_plan(SubscriptionPlan(
        id=new_id(),
        name=patch["name"],
        description_key=patch["description_key"],
        base_price=patch["base_price"],
        currency=patch.get("currency") or current_app.config["CURRENCY"],
        is_active=patch.get("is_active", True),
        created_at=utcnow(),
    ))
    audit_service.record(
        store,
        actor=actor,
        action="CREATE_SUBSCRIPTION_PLAN",
        entity="subscription_plan",
        entity_id=plan.id,
        changes=audit_service.diff_changes({}, {"name": plan.name, "basePrice": plan.base_price}),
    )
    return plan


def update_plan(store: Storage, actor, plan_id: str, payload: dict) -> SubscriptionPlan:
    plan = get_plan_or_404(store, plan_id)
    patch = validate_payload(model=SubscriptionPlan, payload=payload, policy=SUBSCRIPTION_PLAN_POLICY, partial=True)
    enforce_rules_amounts(patch, {"base_price": "basePrice"}, positive=True)

    changes = {attr: value for attr, value in patch.items() if getattr(plan, attr) != value}
    if not changes:
        return plan

    updated = store.update_subscription_plan(plan_id, changes)
    if updated is None:
        raise NotFound(messages.SUBSCRIPTION_PLAN_NOT_FOUND, {"planId": plan_id})
    audit_service.record_update(
        store,
        actor=actor,
        action="UPDATE_SUBSCRIPTION_PLAN",
        entity="subscription_plan",
        entity_id=plan_id,
        before=_wire({attr: getattr(plan, attr) for attr in changes}),
        after=_wire(changes),
    )
    return updated


# ==================== SUBSCRIPTIONS ====================

def get_subscription_or_404(store: Storage, subscription_id: str) -> Subscription:
    subscription = store.get_subscription(subscription_id)
    if subscription is None:
        raise NotFound(messages.SUBSCRIPTION_NOT_FOUND, {"subscriptionId": subscription_id})
    return subscription


def get_accessible_subscription(store: Storage, actor, permissions: set[str], subscription_id: str) -> Subscription:
    subscription = get_subscription_or_404(store, subscription_id)
    permission_service.require_self_or_permission(actor, permissions, subscription.user_id, MANAGE_PERMISSION)
    return subscription


def create_subscription(store: Storage, actor, payload: dict) -> Subscription:
    """The caller subscribes themself to an active plan."""
    patch = validate_payload(model=Subscription, payload=payload, policy=SUBSCRIPTION_CREATE_POLICY, partial=False)
    plan = get_plan_or_404(store, patch["plan_id"])
    if not plan.is_active:
        raise Conflict(messages.SUBSCRIPTION_PLAN_INACTIVE, {"planId": plan.id})

    now = utcnow()
    subscription = store.add_subscription(Subscription(
        id=new_id(),
        user_id=actor.id,
        plan_id=plan.id,
        status="active",
        started_at=patch.get("started_at") or now,
        next_billing_at=patch.get("next_billing_at"),
        created_at=now,
    ))
    event_service.emit(
        store,
        "subscription.started",
        actor=actor,
        entity_type="subscription",
        entity_id=subscription.id,
        payload={"subscriptionId": subscription.id, "userId": actor.id, "planId": plan.id},
    )
    return subscription


def list_subscriptions(store: Storage, actor, permissions: set[str], filters: dict, page: int, per_page: int):
    """
    Managers see everyone's (optionally one user's via userId); everyone
    else sees their own and userId is ignored.
    """
    status = filters.get("status") or None
    if status is not None and status not in SUBSCRIPTION_STATUSES:
        raise ValidationError(params={"field": "status", "reason": "choice", "allowed": list(SUBSCRIPTION_STATUSES)})
    user_id = actor.id
    if MANAGE_PERMISSION in permissions:
        user_id = filters.get("userId") or None
    return store.list_subscriptions(user_id=user_id, status=status, page=page, per_page=per_page)


def update_subscription(store: Storage, actor, permissions: set[str], subscription_id: str, payload: dict) -> Subscription:
    """
    PATCH: status change and/or nextBillingAt.

    A status equal to the current one is not a change; a PATCH that changes
    nothing writes nothing.
    """
    subscription = get_accessible_subscription(store, actor, permissions, subscription_id)
    patch = validate_payload(model=Subscription, payload=payload, policy=SUBSCRIPTION_PATCH_POLICY, partial=True)
    if "status" in patch and patch["status"] is None:
        raise ValidationError(params={"field": "status", "reason": "not_null"})

    new_status = patch.pop("status", None)
    changes = {attr: value for attr, value in patch.items() if getattr(subscription, attr) != value}
    status_changed = new_status is not None and new_status != subscription.status

    if status_changed:
        if not can_transition(subscription.status, new_status):
            raise _invalid_transition(subscription_id, subscription.status, new_status)
        changes["status"] = new_status
        timestamp_attr = TIMESTAMP_FOR_STATUS.get(new_status)
        if timestamp_attr is not None:
            changes[timestamp_attr] = utcnow()
        updated = store.transition_subscription(subscription_id, subscription.status, changes)
        if updated is None:
            current = get_subscription_or_404(store, subscription_id)
            raise _invalid_transition(subscription_id, current.status, new_status)
    elif changes:
        updated = store.update_subscription(subscription_id, changes)
        if updated is None:
            raise NotFound(messages.SUBSCRIPTION_NOT_FOUND, {"subscriptionId": subscription_id})
    else:
        return subscription

    if subscription.user_id != actor.id:
        audit_service.record_update(
            store,
            actor=actor,
            action="UPDATE_SUBSCRIPTION",
            entity="subscription",
            entity_id=subscription_id,
            before=_wire({attr: getattr(subscription, attr) for attr in changes}),
            after=_wire(changes),
        )

    event_type = PRODUCT_EVENT_FOR_STATUS.get(new_status) if status_changed else None
    if event_type is not None:
        event_service.emit(
            store,
            event_type,
            actor=actor,
            entity_type="subscription",
            entity_id=subscription_id,
            payload={
                "subscriptionId": subscription_id,
                "userId": subscription.user_id,
                "from": subscription.status,
                "to": new_status,
            },
        )
    return updated


# ==================== RULES ====================

def list_rules(store: Storage, actor, permissions: set[str], subscription_id: str) -> list[SubscriptionRule]:
    get_accessible_subscription(store, actor, permissions, subscription_id)
    return store.list_subscription_rules(subscription_id)


def add_rule(store: Storage, actor, permissions: set[str], subscription_id: str, payload: dict) -> SubscriptionRule:
    """Rules can only be added while the subscription is not terminal; 'custom' needs daysOfWeek."""
    subscription = get_accessible_subscription(store, actor, permissions, subscription_id)
    if not TRANSITIONS[subscription.status]:
        raise Conflict(messages.COMMON_CONFLICT, {"subscriptionId": subscription_id, "status": subscription.status})

    patch = validate_payload(model=SubscriptionRule, payload=payload, policy=SUBSCRIPTION_RULE_POLICY, partial=False)
    enforce_rules_days_of_week(patch)
    if patch["type"] == "custom" and not patch.get("days_of_week"):
        raise ValidationError(params={"field": "daysOfWeek", "reason": "required"})
    modifier = patch.get("price_modifier") or 0
    if abs(modifier) > MAX_AMOUNT:
        raise ValidationError(params={"field": "priceModifier", "reason": "max", "max": MAX_AMOUNT})

    return store.add_subscription_rule(SubscriptionRule(
        id=new_id(),
        subscription_id=subscription_id,
        type=patch["type"],
        time_window=patch["time_window"],
        price_modifier=modifier,
        days_of_week=patch.get("days_of_week"),
        created_at=utcnow(),
    ))


def delete_rule(store: Storage, actor, permissions: set[str], rule_id: str) -> None:
    rule = store.get_subscription_rule(rule_id)
    if rule is None:
        raise NotFound(messages.SUBSCRIPTION_RULE_NOT_FOUND, {"ruleId": rule_id})
    get_accessible_subscription(store, actor, permissions, rule.subscription_id)
    if not store.delete_subscription_rule(rule_id):
        raise NotFound(messages.SUBSCRIPTION_RULE_NOT_FOUND, {"ruleId": rule_id})

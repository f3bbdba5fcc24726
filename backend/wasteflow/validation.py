from __future__ import annotations
from datetime import datetime
from wasteflow.time_utils import parse_iso_datetime

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Boolean, DateTime, Float, Integer, String, Text

from .errors import ValidationError
from .models.auth import USER_STATUSES
from .models.engagement import (
    BONUS_REASONS,
    BONUS_TRANSACTION_TYPES,
    SUBSCRIPTION_RULE_TYPES,
    SUBSCRIPTION_STATUSES,
    USER_ACTIVITY_TYPES,
    USER_FLAG_KEYS,
    USER_FLAG_SOURCES,
)
from .models.events import PRODUCT_EVENT_TYPES
from .models.orders import AVAILABILITY_STATUSES, ORDER_STATUSES, VERIFICATION_STATUSES

# Upper bound for prices and money amounts (minor units)
MAX_AMOUNT = 999_999_999


def _invalid(wire_name: str, reason: str, **extra) -> ValidationError:
    return ValidationError(params={"field": wire_name, "reason": reason, **extra})


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - fields: wire name (camelCase JSON key) -> model attribute; anything
      else in the payload is rejected (security boundary)
    - required_on_create: wire names required for POST
    - choices: wire name -> allowed values
    """
    fields: dict[str, str]
    required_on_create: frozenset[str] = frozenset()
    choices: dict[str, tuple] = field(default_factory=dict)


def _columns_by_key(model) -> dict[str, Any]:
    return {prop.key: prop.columns[0] for prop in model.__mapper__.column_attrs}


def _coerce_value(col, wire_name: str, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        # Already an int (but not bool which is a subclass of int)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped or "e" in stripped.lower() or "." in stripped:
                raise _invalid(wire_name, "integer")
            try:
                return int(stripped)
            except ValueError:
                raise _invalid(wire_name, "integer")
        raise _invalid(wire_name, "integer")

    if isinstance(coltype, Float):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
        raise _invalid(wire_name, "number")

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise _invalid(wire_name, "boolean")

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise _invalid(wire_name, "datetime")
            if dt is None:
                raise _invalid(wire_name, "datetime")
            return dt
        raise _invalid(wire_name, "datetime")

    if isinstance(coltype, (String, Text)):
        if isinstance(value, (dict, list, bool)):
            raise _invalid(wire_name, "string")
        return str(value).strip()

    return value


def validate_payload(
    *,
    model,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - the policy allowlist and choices
    - required_on_create (if partial=False)
    Returns a cleaned patch dict keyed by model attribute names.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError(params={"reason": "object"})

    if not partial:
        missing = sorted(name for name in policy.required_on_create if payload.get(name) in (None, ""))
        if missing:
            raise _invalid(missing[0], "required", missing=missing)

    cols = _columns_by_key(model)

    for wire_name in payload:
        if wire_name not in policy.fields:
            raise _invalid(wire_name, "not_allowed")

    patch: dict = {}

    for wire_name, raw in payload.items():
        attr = policy.fields[wire_name]
        col = cols[attr]

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise _invalid(wire_name, "not_null")
            patch[attr] = None
            continue

        val = _coerce_value(col, wire_name, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable and val == "":
            raise _invalid(wire_name, "blank")

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise _invalid(wire_name, "max_length", maxLength=col.type.length)

        allowed = policy.choices.get(wire_name)
        if allowed is not None and val not in allowed:
            raise _invalid(wire_name, "choice", allowed=list(allowed))

        patch[attr] = val

    return patch


# -- policies --

ORDER_CREATE_POLICY = ModelValidationPolicy(
    fields={
        "addressId": "address_id",
        "scheduledAt": "scheduled_at",
        "timeWindow": "time_window",
        "price": "price",
    },
    required_on_create=frozenset({"addressId", "scheduledAt", "timeWindow"}),
)

ORDER_PATCH_POLICY = ModelValidationPolicy(
    fields={
        "status": "status",
        "courierId": "courier_id",
        "scheduledAt": "scheduled_at",
        "timeWindow": "time_window",
        "price": "price",
    },
    choices={"status": ORDER_STATUSES},
)

ADDRESS_POLICY = ModelValidationPolicy(
    fields={
        "city": "city",
        "street": "street",
        "house": "house",
        "apartment": "apartment",
        "floor": "floor",
        "hasElevator": "has_elevator",
        "comment": "comment",
    },
    required_on_create=frozenset({"city", "street", "house"}),
)

USER_PATCH_POLICY = ModelValidationPolicy(
    fields={
        "phone": "phone",
        "email": "email",
        "status": "status",
    },
    choices={"status": USER_STATUSES},
)

COURIER_PROFILE_POLICY = ModelValidationPolicy(
    fields={"availabilityStatus": "availability_status"},
    choices={"availabilityStatus": AVAILABILITY_STATUSES},
)

COURIER_VERIFY_POLICY = ModelValidationPolicy(
    fields={"verificationStatus": "verification_status"},
    required_on_create=frozenset({"verificationStatus"}),
    choices={"verificationStatus": VERIFICATION_STATUSES},
)

FINANCE_POLICY = ModelValidationPolicy(
    fields={
        "clientPrice": "client_price",
        "courierPayout": "courier_payout",
        "bonusSpent": "bonus_spent",
        "platformFee": "platform_fee",
    },
)


ACTIVITY_POLICY = ModelValidationPolicy(
    fields={
        "eventType": "event_type",
        "referenceType": "reference_type",
        "referenceId": "reference_id",
        "metadata": "meta",
    },
    required_on_create=frozenset({"eventType"}),
    choices={"eventType": USER_ACTIVITY_TYPES},
)

USER_FLAG_POLICY = ModelValidationPolicy(
    fields={"key": "key", "value": "value", "source": "source"},
    required_on_create=frozenset({"key"}),
    choices={"key": USER_FLAG_KEYS, "source": USER_FLAG_SOURCES},
)

BONUS_TRANSACTION_POLICY = ModelValidationPolicy(
    fields={
        "userId": "user_id",
        "type": "type",
        "amount": "amount",
        "reason": "reason",
        "referenceType": "reference_type",
        "referenceId": "reference_id",
    },
    required_on_create=frozenset({"userId", "type", "amount", "reason"}),
    choices={"type": BONUS_TRANSACTION_TYPES, "reason": BONUS_REASONS},
)

SUBSCRIPTION_PLAN_POLICY = ModelValidationPolicy(
    fields={
        "name": "name",
        "descriptionKey": "description_key",
        "basePrice": "base_price",
        "currency": "currency",
        "isActive": "is_active",
    },
    required_on_create=frozenset({"name", "descriptionKey", "basePrice"}),
)

SUBSCRIPTION_CREATE_POLICY = ModelValidationPolicy(
    fields={"planId": "plan_id", "startedAt": "started_at", "nextBillingAt": "next_billing_at"},
    required_on_create=frozenset({"planId"}),
)

SUBSCRIPTION_PATCH_POLICY = ModelValidationPolicy(
    fields={"status": "status", "nextBillingAt": "next_billing_at"},
    choices={"status": SUBSCRIPTION_STATUSES},
)

SUBSCRIPTION_RULE_POLICY = ModelValidationPolicy(
    fields={
        "type": "type",
        "timeWindow": "time_window",
        "priceModifier": "price_modifier",
        "daysOfWeek": "days_of_week",
    },
    required_on_create=frozenset({"type", "timeWindow"}),
    choices={"type": SUBSCRIPTION_RULE_TYPES},
)

PRODUCT_EVENT_POLICY = ModelValidationPolicy(
    fields={
        "type": "type",
        "entityType": "entity_type",
        "entityId": "entity_id",
        "payload": "payload",
    },
    required_on_create=frozenset({"type"}),
    choices={"type": PRODUCT_EVENT_TYPES},
)


# -- business rules not captured by column metadata --

def enforce_rules_amounts(patch: dict, fields: dict[str, str], positive: bool = False) -> None:
    """fields maps model attribute -> wire name (for the error params)."""
    for attr, wire_name in fields.items():
        value = patch.get(attr)
        if value is None:
            continue
        if value > MAX_AMOUNT:
            raise _invalid(wire_name, "max", max=MAX_AMOUNT)
        if positive and value <= 0:
            raise _invalid(wire_name, "positive")
        if value < 0:
            raise _invalid(wire_name, "non_negative")


def enforce_rules_order(patch: dict) -> None:
    if "price" in patch:
        if patch["price"] is None:
            raise _invalid("price", "not_null")
        enforce_rules_amounts(patch, {"price": "price"}, positive=True)


def enforce_rules_object(patch: dict, attr: str, wire_name: str) -> None:
    """JSON object columns (metadata, payload) only take objects."""
    value = patch.get(attr)
    if value is not None and not isinstance(value, dict):
        raise _invalid(wire_name, "object")


def enforce_rules_days_of_week(patch: dict) -> None:
    days = patch.get("days_of_week")
    if days is None:
        return
    if not isinstance(days, list):
        raise _invalid("daysOfWeek", "list")
    for day in days:
        if isinstance(day, bool) or not isinstance(day, int) or not 0 <= day <= 6:
            raise _invalid("daysOfWeek", "day_of_week", min=0, max=6)
    patch["days_of_week"] = sorted(set(days))

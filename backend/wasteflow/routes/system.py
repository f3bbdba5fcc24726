# backend/wasteflow/routes/system.py
"""
System health, environment and reference-data endpoints.

None of these require authentication; the meta lists let clients render
statuses without hard-coding them.
"""

import time

from flask import Blueprint, current_app, jsonify

from ..middleware import get_request_context
from ..models.auth import USER_STATUSES, USER_TYPES
from ..models.engagement import (
    BONUS_REASONS,
    BONUS_TRANSACTION_TYPES,
    SUBSCRIPTION_RULE_TYPES,
    SUBSCRIPTION_STATUSES,
    USER_ACTIVITY_TYPES,
    USER_FLAG_KEYS,
)
from ..models.events import PRODUCT_EVENT_TYPES
from ..models.orders import AVAILABILITY_STATUSES, ORDER_EVENT_TYPES, ORDER_STATUSES, VERIFICATION_STATUSES
from ..storage import get_storage
from wasteflow.time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api/v1")


def check_storage_health() -> dict:
    """Round-trip a cheap read against the configured storage backend."""
    start_time = time.time()
    store = get_storage()
    try:
        store.list_roles()
        elapsed_ms = (time.time() - start_time) * 1000
        return {"status": "healthy", "backend": store.name, "latency_ms": round(elapsed_ms, 2)}
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Storage health check failed")
        return {
            "status": "unhealthy",
            "backend": store.name,
            "latency_ms": round(elapsed_ms, 2),
            "error": "Storage error",
        }


@system_bp.get("/health")
def health():
    storage = check_storage_health()
    healthy = storage["status"] == "healthy"
    return jsonify({
        "status": "ok" if healthy else "degraded",
        "timestamp": to_utc_z(utcnow()),
        "checks": {"storage": storage},
    }), 200 if healthy else 503


@system_bp.get("/environment")
def environment():
    context = get_request_context()
    return jsonify({
        "environment": context.environment,
        "isSandbox": context.is_sandbox,
        "language": context.language,
        "requestId": context.request_id,
    })


def _codes(values):
    return jsonify([{"code": code} for code in values])


@system_bp.get("/meta/order-statuses")
def order_statuses():
    return _codes(ORDER_STATUSES)


@system_bp.get("/meta/user-types")
def user_types():
    return _codes(USER_TYPES)


@system_bp.get("/meta/user-statuses")
def user_statuses():
    return _codes(USER_STATUSES)


@system_bp.get("/meta/availability-statuses")
def availability_statuses():
    return _codes(AVAILABILITY_STATUSES)


@system_bp.get("/meta/verification-statuses")
def verification_statuses():
    return _codes(VERIFICATION_STATUSES)


@system_bp.get("/meta/order-event-types")
def order_event_types():
    return _codes(ORDER_EVENT_TYPES)


@system_bp.get("/meta/product-event-types")
def product_event_types():
    return _codes(PRODUCT_EVENT_TYPES)


@system_bp.get("/meta/activity-types")
def activity_types():
    return _codes(USER_ACTIVITY_TYPES)


@system_bp.get("/meta/flag-keys")
def flag_keys():
    return _codes(USER_FLAG_KEYS)


@system_bp.get("/meta/bonus-transaction-types")
def bonus_transaction_types():
    return _codes(BONUS_TRANSACTION_TYPES)


@system_bp.get("/meta/bonus-reasons")
def bonus_reasons():
    return _codes(BONUS_REASONS)


@system_bp.get("/meta/subscription-statuses")
def subscription_statuses():
    return _codes(SUBSCRIPTION_STATUSES)


@system_bp.get("/meta/subscription-rule-types")
def subscription_rule_types():
    return _codes(SUBSCRIPTION_RULE_TYPES)

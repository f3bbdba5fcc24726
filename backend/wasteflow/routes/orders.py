# Overview: Flask API routes for orders; creation, lifecycle transitions and finance snapshots.

# backend/wasteflow/routes/orders.py
"""
Order API routes

Lifecycle rules live in services/order_service.py; these handlers only parse
input, pick the caller from the request context and shape the response.

ENDPOINTS:
- POST   /orders                 clients place an order
- GET    /orders                 visibility-scoped list
- GET    /orders/<id>            order + address + events
- PATCH  /orders/<id>            field edits and/or status change
- DELETE /orders/<id>            soft delete (orders.update_status)
- POST   /orders/<id>/assign     created -> assigned (orders.assign)
- POST   /orders/<id>/cancel     owner or orders.update_status
- GET    /orders/<id>/finance    payments.read
- POST   /orders/<id>/finance    payments.read
- PATCH  /orders/<id>/finance    payments.read, amounts corrected and audited
"""

from flask import Blueprint, request

from .. import messages
from ..decorators import idempotent, require_auth, require_permissions
from ..middleware import get_request_context
from ..responses import json_body, no_content, paginated, parse_pagination, query_flag, success
from ..services import finance_service, order_service
from ..storage import get_storage

orders_bp = Blueprint("orders", __name__, url_prefix="/api/v1/orders")


@orders_bp.post("")
@require_auth
@idempotent
def create_order():
    order = order_service.create_order(get_storage(), get_request_context().user, json_body())
    return success(order.to_dict(), key=messages.ORDER_CREATED, params={"orderId": order.id}, status=201)


@orders_bp.get("")
@require_auth
def list_orders():
    """
    Query params:
    - status: filter by lifecycle status
    - includeDeleted: bool, honoured for orders.read holders only
    - page, perPage (alias limit)
    """
    context = get_request_context()
    page, per_page = parse_pagination()
    result = order_service.list_orders(
        get_storage(),
        context.user,
        context.permissions,
        status=request.args.get("status"),
        include_deleted=query_flag("includeDeleted"),
        page=page,
        per_page=per_page,
    )
    return paginated(result)


@orders_bp.get("/<order_id>")
@require_auth
def get_order(order_id: str):
    context = get_request_context()
    detail = order_service.get_order_detail(
        get_storage(),
        context.user,
        context.permissions,
        order_id,
        include_deleted=query_flag("includeDeleted"),
    )
    return success(detail)


@orders_bp.patch("/<order_id>")
@require_auth
@idempotent
def update_order(order_id: str):
    context = get_request_context()
    order = order_service.update_order(get_storage(), context.user, context.permissions, order_id, json_body())
    return success(order.to_dict(), key=messages.ORDER_UPDATED, params={"orderId": order_id})


@orders_bp.delete("/<order_id>")
@require_auth
@require_permissions("orders.update_status")
def delete_order(order_id: str):
    order_service.soft_delete_order(get_storage(), get_request_context().user, order_id)
    return no_content()


@orders_bp.post("/<order_id>/assign")
@require_auth
@idempotent
@require_permissions("orders.assign")
def assign_order(order_id: str):
    data = json_body()
    order = order_service.assign_courier(get_storage(), get_request_context().user, order_id, data.get("courierId"))
    return success(order.to_dict(), key=messages.ORDER_ASSIGNED, params={"orderId": order_id})


@orders_bp.post("/<order_id>/cancel")
@require_auth
@idempotent
def cancel_order(order_id: str):
    context = get_request_context()
    data = json_body()
    order = order_service.cancel_order(
        get_storage(), context.user, context.permissions, order_id, data.get("reason")
    )
    return success(order.to_dict(), key=messages.ORDER_CANCELLED, params={"orderId": order_id})


# =============================================================================
# FINANCE
# =============================================================================

@orders_bp.get("/<order_id>/finance")
@require_auth
@require_permissions("payments.read")
def get_finance(order_id: str):
    snapshot = finance_service.get_snapshot(get_storage(), order_id)
    return success(snapshot.to_dict())


@orders_bp.post("/<order_id>/finance")
@require_auth
@idempotent
@require_permissions("payments.read")
def create_finance(order_id: str):
    snapshot = finance_service.create_snapshot(get_storage(), order_id, json_body())
    return success(snapshot.to_dict(), status=201)


@orders_bp.patch("/<order_id>/finance")
@require_auth
@idempotent
@require_permissions("payments.read")
def update_finance(order_id: str):
    snapshot = finance_service.update_snapshot(get_storage(), get_request_context().user, order_id, json_body())
    return success(snapshot.to_dict(), key=messages.ORDER_FINANCE_UPDATED, params={"orderId": order_id})

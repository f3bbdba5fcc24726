# Overview: Flask API routes for couriers; the courier app's own endpoints and staff verification.

from flask import Blueprint, request

from .. import messages
from ..decorators import idempotent, require_auth, require_permissions, require_user_type
from ..middleware import get_request_context
from ..responses import json_body, paginated, parse_pagination, success
from ..services import courier_service, order_service
from ..storage import get_storage

courier_bp = Blueprint("courier", __name__, url_prefix="/api/v1")


# =============================================================================
# COURIER APP (user type courier)
# =============================================================================

@courier_bp.get("/courier/profile")
@require_auth
@require_user_type("courier")
def get_profile():
    store = get_storage()
    profile = courier_service.get_profile_or_404(store, get_request_context().user.id)
    return success(courier_service.profile_detail(store, profile))


@courier_bp.patch("/courier/profile")
@require_auth
@idempotent
@require_user_type("courier")
def update_profile():
    store = get_storage()
    profile = courier_service.update_profile(store, get_request_context().user, json_body())
    return success(courier_service.profile_detail(store, profile), key=messages.COURIER_PROFILE_UPDATED)


@courier_bp.get("/courier/orders")
@require_auth
@require_user_type("courier")
def list_own_orders():
    page, per_page = parse_pagination()
    result, items = order_service.list_courier_orders(
        get_storage(),
        get_request_context().user,
        status=request.args.get("status"),
        page=page,
        per_page=per_page,
    )
    return paginated(result, items)


@courier_bp.post("/courier/orders/<order_id>/accept")
@require_auth
@idempotent
@require_user_type("courier")
def accept_order(order_id: str):
    order = order_service.accept_order(get_storage(), get_request_context().user, order_id)
    return success(order.to_dict(), key=messages.ORDER_STARTED, params={"orderId": order_id})


@courier_bp.post("/courier/orders/<order_id>/complete")
@require_auth
@idempotent
@require_user_type("courier")
def complete_order(order_id: str):
    order = order_service.complete_order(get_storage(), get_request_context().user, order_id)
    return success(order.to_dict(), key=messages.ORDER_COMPLETED, params={"orderId": order_id})


# =============================================================================
# STAFF
# =============================================================================

@courier_bp.get("/couriers")
@require_auth
@require_permissions("users.read")
def list_couriers():
    """
    Query params:
    - verificationStatus: pending | verified | rejected
    - availabilityStatus: available | busy | offline
    - page, perPage
    """
    store = get_storage()
    page, per_page = parse_pagination()
    filters = {
        "verificationStatus": request.args.get("verificationStatus"),
        "availabilityStatus": request.args.get("availabilityStatus"),
    }
    result = courier_service.list_couriers(store, filters, page, per_page)
    return paginated(result, [courier_service.profile_detail(store, profile) for profile in result.items])


@courier_bp.patch("/couriers/<courier_id>/verify")
@require_auth
@idempotent
@require_permissions("couriers.verify")
def verify_courier(courier_id: str):
    store = get_storage()
    profile = courier_service.verify_courier(store, get_request_context().user, courier_id, json_body())
    return success(
        courier_service.profile_detail(store, profile),
        key=messages.COURIER_VERIFIED,
        params={"courierId": courier_id},
    )

# Overview: Flask API routes for subscriptions, their pickup rules and subscription plans.

# backend/wasteflow/routes/subscriptions.py
"""
ENDPOINTS:
- GET    /subscriptions                  own, or everyone's with subscriptions.manage
- POST   /subscriptions                  subscribe the caller to an active plan
- GET    /subscriptions/<id>             owner or subscriptions.manage
- PATCH  /subscriptions/<id>             status change and/or nextBillingAt
- GET    /subscriptions/<id>/rules
- POST   /subscriptions/<id>/rules
- DELETE /subscriptions/rules/<ruleId>
- GET    /subscription-plans             public, active plans only
- GET    /subscription-plans/<id>        public
- POST   /subscription-plans             subscriptions.manage
- PATCH  /subscription-plans/<id>        subscriptions.manage
"""

from flask import Blueprint, request

from .. import messages
from ..decorators import idempotent, require_auth, require_permissions
from ..middleware import get_request_context
from ..responses import json_body, no_content, paginated, parse_pagination, success
from ..services import subscription_service
from ..storage import get_storage

subscriptions_bp = Blueprint("subscriptions", __name__, url_prefix="/api/v1")


# =============================================================================
# SUBSCRIPTIONS
# =============================================================================

@subscriptions_bp.get("/subscriptions")
@require_auth
def list_subscriptions():
    """Query params: status, userId (subscriptions.manage only), page, perPage"""
    context = get_request_context()
    page, per_page = parse_pagination()
    filters = {"status": request.args.get("status"), "userId": request.args.get("userId")}
    result = subscription_service.list_subscriptions(
        get_storage(), context.user, context.permissions, filters, page, per_page
    )
    return paginated(result)


@subscriptions_bp.post("/subscriptions")
@require_auth
@idempotent
def create_subscription():
    subscription = subscription_service.create_subscription(get_storage(), get_request_context().user, json_body())
    return success(subscription.to_dict(), key=messages.SUBSCRIPTION_CREATED, status=201)


@subscriptions_bp.get("/subscriptions/<subscription_id>")
@require_auth
def get_subscription(subscription_id: str):
    context = get_request_context()
    subscription = subscription_service.get_accessible_subscription(
        get_storage(), context.user, context.permissions, subscription_id
    )
    return success(subscription.to_dict())


@subscriptions_bp.patch("/subscriptions/<subscription_id>")
@require_auth
@idempotent
def update_subscription(subscription_id: str):
    context = get_request_context()
    subscription = subscription_service.update_subscription(
        get_storage(), context.user, context.permissions, subscription_id, json_body()
    )
    return success(subscription.to_dict(), key=messages.SUBSCRIPTION_UPDATED)


@subscriptions_bp.get("/subscriptions/<subscription_id>/rules")
@require_auth
def list_rules(subscription_id: str):
    context = get_request_context()
    rules = subscription_service.list_rules(get_storage(), context.user, context.permissions, subscription_id)
    return success([rule.to_dict() for rule in rules])


@subscriptions_bp.post("/subscriptions/<subscription_id>/rules")
@require_auth
@idempotent
def add_rule(subscription_id: str):
    context = get_request_context()
    rule = subscription_service.add_rule(
        get_storage(), context.user, context.permissions, subscription_id, json_body()
    )
    return success(rule.to_dict(), key=messages.SUBSCRIPTION_RULE_CREATED, status=201)


@subscriptions_bp.delete("/subscriptions/rules/<rule_id>")
@require_auth
def delete_rule(rule_id: str):
    context = get_request_context()
    subscription_service.delete_rule(get_storage(), context.user, context.permissions, rule_id)
    return no_content()


# =============================================================================
# PLANS
# =============================================================================

@subscriptions_bp.get("/subscription-plans")
def list_plans():
    return success([plan.to_dict() for plan in get_storage().list_subscription_plans(active_only=True)])


@subscriptions_bp.get("/subscription-plans/<plan_id>")
def get_plan(plan_id: str):
    return success(subscription_service.get_plan_or_404(get_storage(), plan_id).to_dict())


@subscriptions_bp.post("/subscription-plans")
@require_auth
@idempotent
@require_permissions("subscriptions.manage")
def create_plan():
    plan = subscription_service.create_plan(get_storage(), get_request_context().user, json_body())
    return success(plan.to_dict(), key=messages.SUBSCRIPTION_PLAN_CREATED, status=201)


@subscriptions_bp.patch("/subscription-plans/<plan_id>")
@require_auth
@idempotent
@require_permissions("subscriptions.manage")
def update_plan(plan_id: str):
    plan = subscription_service.update_plan(get_storage(), get_request_context().user, plan_id, json_body())
    return success(plan.to_dict(), key=messages.SUBSCRIPTION_PLAN_UPDATED)

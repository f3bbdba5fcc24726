# Overview: Flask API routes for bonus accounts and the bonus transaction ledger.

from flask import Blueprint, request

from .. import messages
from ..decorators import idempotent, require_auth, require_permissions
from ..middleware import get_request_context
from ..responses import json_body, paginated, parse_pagination, parse_time_range, success
from ..services import bonus_service, permission_service
from ..storage import get_storage

bonus_bp = Blueprint("bonus", __name__, url_prefix="/api/v1/bonus")


@bonus_bp.get("/accounts/<user_id>")
@require_auth
def get_account(user_id: str):
    context = get_request_context()
    permission_service.require_self_or_permission(context.user, context.permissions, user_id, "payments.read")
    return success(bonus_service.get_account(get_storage(), user_id).to_dict())


@bonus_bp.post("/transactions")
@require_auth
@idempotent
@require_permissions("bonus.manage")
def post_transaction():
    """Body: userId, type, amount, reason, referenceType?, referenceId?"""
    transaction = bonus_service.post_transaction(get_storage(), get_request_context().user, json_body())
    return success(transaction.to_dict(), key=messages.BONUS_TRANSACTION_CREATED, status=201)


@bonus_bp.get("/transactions/<user_id>")
@require_auth
def list_transactions(user_id: str):
    """Query params: type, from, to, page, perPage"""
    context = get_request_context()
    permission_service.require_self_or_permission(context.user, context.permissions, user_id, "payments.read")
    page, per_page = parse_pagination()
    since, until = parse_time_range()
    filters = {"type": request.args.get("type"), "since": since, "until": until}
    return paginated(bonus_service.list_transactions(get_storage(), user_id, filters, page, per_page))

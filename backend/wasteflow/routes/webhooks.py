# Overview: Flask API routes for webhook subscriptions and their delivery history.

from flask import Blueprint, request

from .. import messages
from ..decorators import idempotent, require_auth, require_permissions
from ..middleware import get_request_context
from ..responses import json_body, no_content, paginated, parse_pagination, success
from ..services import webhook_service
from ..storage import get_storage

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/api/v1/webhooks")


@webhooks_bp.get("")
@require_auth
@require_permissions("webhooks.manage")
def list_webhooks():
    webhooks = get_storage().list_webhooks(status=request.args.get("status") or None)
    return success([webhook.to_dict() for webhook in webhooks])


@webhooks_bp.post("")
@require_auth
@idempotent
@require_permissions("webhooks.manage")
def create_webhook():
    """The signing secret is only ever returned here."""
    webhook = webhook_service.create_webhook(get_storage(), get_request_context().user, json_body())
    return success(webhook.to_dict(include_secret=True), key=messages.WEBHOOK_CREATED, status=201)


@webhooks_bp.delete("/<webhook_id>")
@require_auth
@require_permissions("webhooks.manage")
def delete_webhook(webhook_id: str):
    webhook_service.delete_webhook(get_storage(), get_request_context().user, webhook_id)
    return no_content()


@webhooks_bp.get("/<webhook_id>/deliveries")
@require_auth
@require_permissions("webhooks.manage")
def list_deliveries(webhook_id: str):
    store = get_storage()
    webhook_service.get_webhook_or_404(store, webhook_id)
    page, per_page = parse_pagination()
    return paginated(store.list_webhook_deliveries(webhook_id, page=page, per_page=per_page))


@webhooks_bp.post("/<webhook_id>/test")
@require_auth
@require_permissions("webhooks.manage")
def send_test(webhook_id: str):
    delivery = webhook_service.send_test(get_storage(), webhook_id)
    return success(delivery.to_dict(), key=messages.WEBHOOK_TEST_SENT)

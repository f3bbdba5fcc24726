# Overview: Flask API routes for the audit log and the product event stream.

from flask import Blueprint, request

from .. import messages
from ..decorators import idempotent, require_auth, require_permissions
from ..middleware import get_request_context
from ..responses import json_body, paginated, parse_pagination, success
from ..services import audit_service, event_service
from ..storage import get_storage

audit_bp = Blueprint("audit", __name__, url_prefix="/api/v1")


@audit_bp.get("/audit-logs")
@require_auth
@require_permissions("users.manage")
def list_audit_logs():
    """
    Newest first.

    Query params: userId, entity, entityId, action, page, perPage
    """
    page, per_page = parse_pagination()
    filters = {name: request.args.get(name) or None for name in ("userId", "entity", "entityId", "action")}
    return paginated(audit_service.list_audit_logs(get_storage(), filters, page, per_page))


@audit_bp.get("/events")
@require_auth
@require_permissions("reports.read")
def list_events():
    """Query params: type, entityId, page, perPage"""
    page, per_page = parse_pagination()
    filters = {"type": request.args.get("type") or None, "entityId": request.args.get("entityId") or None}
    return paginated(event_service.list_events(get_storage(), filters, page, per_page))


@audit_bp.post("/events")
@require_auth
@idempotent
def ingest_event():
    """Client-reported analytics event; recorded for the caller, no webhook fan-out."""
    event = event_service.ingest(get_storage(), get_request_context().user, json_body())
    return success(event.to_dict(), key=messages.EVENT_RECORDED, status=201)

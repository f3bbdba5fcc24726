# Overview: Flask API routes for client pickup addresses.

from flask import Blueprint, request

from .. import messages
from ..decorators import idempotent, require_auth
from ..middleware import get_request_context
from ..responses import json_body, no_content, paginated, parse_pagination, success
from ..services import address_service
from ..storage import get_storage

addresses_bp = Blueprint("addresses", __name__, url_prefix="/api/v1/addresses")


@addresses_bp.get("")
@require_auth
def list_addresses():
    context = get_request_context()
    page, per_page = parse_pagination()
    result = address_service.list_addresses(
        get_storage(), context.user, context.permissions, {"userId": request.args.get("userId")}, page, per_page
    )
    return paginated(result)


@addresses_bp.post("")
@require_auth
@idempotent
def create_address():
    address = address_service.create_address(get_storage(), get_request_context().user, json_body())
    return success(address.to_dict(), key=messages.ADDRESS_CREATED, status=201)


@addresses_bp.patch("/<address_id>")
@require_auth
@idempotent
def update_address(address_id: str):
    context = get_request_context()
    address = address_service.update_address(
        get_storage(), context.user, context.permissions, address_id, json_body()
    )
    return success(address.to_dict())


@addresses_bp.delete("/<address_id>")
@require_auth
def delete_address(address_id: str):
    context = get_request_context()
    address_service.soft_delete_address(get_storage(), context.user, context.permissions, address_id)
    return no_content()

# Overview: Service-layer operations for client pickup addresses.

from __future__ import annotations

from .. import messages
from ..errors import Conflict, Forbidden, NotFound
from ..models import Address
from ..storage import Storage, new_id
from ..validation import ADDRESS_POLICY, validate_payload
from wasteflow.time_utils import utcnow


def _owned_or_permitted(actor, permissions: set[str], address: Address, permission: str) -> None:
    if address.user_id != actor.id and permission not in permissions:
        raise Forbidden(messages.ADDRESS_FORBIDDEN, {"addressId": address.id})


def get_address_or_404(store: Storage, address_id: str, include_deleted: bool = False) -> Address:
    address = store.get_address(address_id, include_deleted=include_deleted)
    if address is None:
        raise NotFound(messages.ADDRESS_NOT_FOUND, {"addressId": address_id})
    return address


def list_addresses(store: Storage, actor, permissions: set[str], filters: dict, page: int, per_page: int):
    """
    Own addresses; addresses.read holders may pass userId to look at
    someone else's (or omit it to see all).
    """
    if "addresses.read" in permissions:
        return store.list_addresses(user_id=filters.get("userId") or None, page=page, per_page=per_page)
    return store.list_addresses(user_id=actor.id, page=page, per_page=per_page)


def create_address(store: Storage, actor, payload: dict) -> Address:
    patch = validate_payload(model=Address, payload=payload, policy=ADDRESS_POLICY, partial=False)
    return store.add_address(Address(
        id=new_id(),
        user_id=actor.id,
        city=patch["city"],
        street=patch["street"],
        house=patch["house"],
        apartment=patch.get("apartment"),
        floor=patch.get("floor"),
        has_elevator=bool(patch.get("has_elevator", False)),
        comment=patch.get("comment"),
        created_at=utcnow(),
    ))


def update_address(store: Storage, actor, permissions: set[str], address_id: str, payload: dict) -> Address:
    address = get_address_or_404(store, address_id)
    _owned_or_permitted(actor, permissions, address, "addresses.manage")

    patch = validate_payload(model=Address, payload=payload, policy=ADDRESS_POLICY, partial=True)
    changes = {attr: value for attr, value in patch.items() if getattr(address, attr) != value}
    if not changes:
        return address

    updated = store.update_address(address_id, changes)
    if updated is None:
        raise NotFound(messages.ADDRESS_NOT_FOUND, {"addressId": address_id})
    return updated


def soft_delete_address(store: Storage, actor, permissions: set[str], address_id: str) -> Address:
    """Orders keep pointing at the tombstone; it stays readable by id."""
    address = get_address_or_404(store, address_id, include_deleted=True)
    _owned_or_permitted(actor, permissions, address, "addresses.manage")
    if address.deleted_at is not None:
        raise Conflict(messages.ADDRESS_ALREADY_DELETED, {"addressId": address_id})

    deleted = store.soft_delete_address(address_id)
    if deleted is None:
        raise Conflict(messages.ADDRESS_ALREADY_DELETED, {"addressId": address_id})
    return deleted

# Overview: Service-layer operations for courier profiles; availability and verification.

"""
Courier Profiles

One CourierProfile per courier user, created at registration. Couriers
maintain their own availability; verification is a staff decision
(couriers.verify) and is audited.
"""

from __future__ import annotations

from .. import messages
from ..errors import NotFound, ValidationError
from ..models import CourierProfile
from ..models.orders import AVAILABILITY_STATUSES, VERIFICATION_STATUSES
from ..storage import Storage
from ..validation import COURIER_PROFILE_POLICY, COURIER_VERIFY_POLICY, validate_payload
from . import audit_service


def get_profile_or_404(store: Storage, courier_id: str) -> CourierProfile:
    profile = store.get_courier_profile(courier_id)
    if profile is None:
        raise NotFound(messages.COURIER_PROFILE_NOT_FOUND, {"courierId": courier_id})
    return profile


def profile_detail(store: Storage, profile: CourierProfile) -> dict:
    data = profile.to_dict()
    user = store.get_user(profile.courier_id, include_deleted=True)
    data["phone"] = user.phone if user is not None else None
    data["status"] = user.status if user is not None else None
    return data


def update_profile(store: Storage, actor, payload: dict) -> CourierProfile:
    profile = get_profile_or_404(store, actor.id)
    patch = validate_payload(
        model=CourierProfile, payload=payload, policy=COURIER_PROFILE_POLICY, partial=True
    )
    if "availability_status" in patch and patch["availability_status"] is None:
        raise ValidationError(params={"field": "availabilityStatus", "reason": "not_null"})
    changes = {attr: value for attr, value in patch.items() if getattr(profile, attr) != value}
    if not changes:
        return profile

    updated = store.update_courier_profile(actor.id, changes)
    if updated is None:
        raise NotFound(messages.COURIER_PROFILE_NOT_FOUND, {"courierId": actor.id})
    return updated


def list_couriers(store: Storage, filters: dict, page: int, per_page: int):
    verification_status = filters.get("verificationStatus") or None
    availability_status = filters.get("availabilityStatus") or None
    if verification_status is not None and verification_status not in VERIFICATION_STATUSES:
        raise ValidationError(
            messages.COURIER_INVALID_VERIFICATION_STATUS, {"allowed": list(VERIFICATION_STATUSES)}
        )
    if availability_status is not None and availability_status not in AVAILABILITY_STATUSES:
        raise ValidationError(
            params={"field": "availabilityStatus", "reason": "choice", "allowed": list(AVAILABILITY_STATUSES)}
        )
    return store.list_courier_profiles(
        verification_status=verification_status,
        availability_status=availability_status,
        page=page,
        per_page=per_page,
    )


def verify_courier(store: Storage, actor, courier_id: str, payload: dict) -> CourierProfile:
    """Set verificationStatus (pending / verified / rejected); audited as VERIFY_COURIER."""
    profile = get_profile_or_404(store, courier_id)
    if not isinstance(payload, dict) or payload.get("verificationStatus") not in VERIFICATION_STATUSES:
        raise ValidationError(
            messages.COURIER_INVALID_VERIFICATION_STATUS, {"allowed": list(VERIFICATION_STATUSES)}
        )
    patch = validate_payload(
        model=CourierProfile, payload=payload, policy=COURIER_VERIFY_POLICY, partial=False
    )

    previous = profile.verification_status
    new_status = patch["verification_status"]
    updated = store.update_courier_profile(courier_id, {"verification_status": new_status})
    if updated is None:
        raise NotFound(messages.COURIER_PROFILE_NOT_FOUND, {"courierId": courier_id})

    audit_service.record(
        store,
        actor=actor,
        action="VERIFY_COURIER",
        entity="courier",
        entity_id=courier_id,
        changes=audit_service.diff_changes(
            {"verificationStatus": previous}, {"verificationStatus": new_status}
        ),
    )
    return updated

# Overview: Service-layer operations for auth; registration, credentials and account creation.

"""
Authentication Service

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor BCRYPT_ROUNDS, 12 in production)
- Phone is the login key; unknown phones still pay for one bcrypt check so
  response time does not reveal which phones are registered
- Self-registration creates clients and couriers only; staff accounts come
  from users.manage holders or the CLI
- Session tokens managed separately (see session_service.py)
"""

from __future__ import annotations

import bcrypt
from flask import current_app

from .. import messages
from ..errors import Conflict, Forbidden, Unauthenticated, ValidationError
from ..models import CourierProfile, User
from ..storage import DuplicateKeyError, Storage, new_id
from . import audit_service, permission_service
from wasteflow.time_utils import utcnow

MIN_PASSWORD_LENGTH = 6
MIN_PHONE_LENGTH = 10
SELF_REGISTER_TYPES = ("client", "courier")

# Checked when the phone is unknown so both paths cost one bcrypt verify
# at the configured cost factor; one hash per rounds value
_DUMMY_HASHES: dict[int, str] = {}


def get_dummy_hash() -> str:
    rounds = current_app.config["BCRYPT_ROUNDS"]
    dummy = _DUMMY_HASHES.get(rounds)
    if dummy is None:
        dummy = bcrypt.hashpw(b"not-a-real-password", bcrypt.gensalt(rounds=rounds)).decode("utf-8")
        _DUMMY_HASHES[rounds] = dummy
    return dummy


def hash_password(password: str) -> str:
    """Hash password using bcrypt with the configured cost factor."""
    salt = bcrypt.gensalt(rounds=current_app.config["BCRYPT_ROUNDS"])
    hashed = bcrypt.hashpw(password.encode("utf-8"), salt)
    return hashed.decode("utf-8")  # Store as string in database


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    WHY timing-safe: bcrypt.checkpw() compares in constant time.
    """
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed hash in storage
        return False


def validate_credentials(phone, password) -> None:
    if not isinstance(phone, str) or len(phone.strip()) < MIN_PHONE_LENGTH:
        raise ValidationError(params={"field": "phone", "minLength": MIN_PHONE_LENGTH})
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(params={"field": "password", "minLength": MIN_PASSWORD_LENGTH})


def create_user(
    store: Storage,
    *,
    phone: str,
    password: str,
    user_type: str,
    email: str | None = None,
    status: str = "active",
) -> User:
    """
    Create a user with a bcrypt password hash.

    Couriers get their CourierProfile in the same call.

    Raises:
        ValidationError: phone/password too short
        Conflict: phone or email already taken ({field})
    """
    validate_credentials(phone, password)
    phone = phone.strip()
    email = email.strip().lower() if email else None

    if store.get_user_by_phone(phone):
        raise Conflict(messages.COMMON_CONFLICT, {"field": "phone"})
    if email and store.get_user_by_email(email):
        raise Conflict(messages.COMMON_CONFLICT, {"field": "email"})

    now = utcnow()
    try:
        user = store.add_user(User(
            id=new_id(),
            type=user_type,
            status=status,
            phone=phone,
            email=email,
            password_hash=hash_password(password),
            created_at=now,
        ))
    except DuplicateKeyError:
        # Lost a race with a concurrent registration of the same phone/email
        raise Conflict(messages.COMMON_CONFLICT, {"field": "phone"})

    if user_type == "courier":
        store.add_courier_profile(CourierProfile(
            courier_id=user.id,
            availability_status="offline",
            verification_status="pending",
            rating=5.0,
            completed_orders_count=0,
            created_at=now,
        ))

    return user


def register_user(store: Storage, payload: dict) -> User:
    """Self-registration; only client and courier accounts."""
    user_type = payload.get("type") or "client"
    if user_type not in SELF_REGISTER_TYPES:
        raise ValidationError(params={"field": "type", "allowed": list(SELF_REGISTER_TYPES)})

    user = create_user(
        store,
        phone=payload.get("phone"),
        password=payload.get("password"),
        user_type=user_type,
        email=payload.get("email"),
    )
    audit_service.record(
        store,
        actor=user,
        action="CREATE_USER",
        entity="user",
        entity_id=user.id,
        metadata={"self": True, "type": user.type},
    )
    return user


def create_staff_user(
    store: Storage,
    *,
    phone: str,
    password: str,
    email: str | None = None,
    role_name: str | None = None,
) -> User:
    """Create a staff account, optionally with one role (CLI bootstrap)."""
    user = create_user(store, phone=phone, password=password, user_type="staff", email=email)
    if role_name:
        permission_service.assign_role(store, user.id, role_name)
    return user


def authenticate(store: Storage, phone, password) -> User:
    """
    Verify credentials and return the user.

    Raises:
        Unauthenticated: unknown phone, wrong password or soft-deleted user
        Forbidden: blocked user (only after the password matched)
    """
    if not isinstance(phone, str) or not isinstance(password, str) or not phone or not password:
        raise ValidationError(params={"field": "phone" if not phone else "password"})

    user = store.get_user_by_phone(phone.strip())
    if user is None:
        verify_password(password, get_dummy_hash())
        raise Unauthenticated(messages.AUTH_INVALID_CREDENTIALS)

    if not verify_password(password, user.password_hash):
        raise Unauthenticated(messages.AUTH_INVALID_CREDENTIALS)

    if user.deleted_at is not None:
        raise Unauthenticated(messages.AUTH_INVALID_CREDENTIALS)

    if user.status == "blocked":
        raise Forbidden(messages.AUTH_USER_BLOCKED)

    return user

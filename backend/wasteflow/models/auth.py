from __future__ import annotations

from ..extensions import db
from wasteflow.time_utils import to_utc_z

USER_TYPES = ("client", "courier", "staff")
USER_STATUSES = ("active", "blocked")
SESSION_PLATFORMS = ("ios", "android", "web")
CLIENT_TYPES = ("mobile_client", "courier_app", "erp", "partner", "web")


class User(db.Model):
    """
    Accounts for all three actor types.

    Phone is the login key. Users are never hard-deleted: deleted_at marks a
    logical delete and every session of the user is dropped at that moment.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("phone", name="uq_users_phone"),
        db.UniqueConstraint("email", name="uq_users_email"),
        db.Index("ix_users_type_status", "type", "status"),
    )

    id = db.Column(db.String(36), primary_key=True)
    type = db.Column(db.String(16), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default="active")
    phone = db.Column(db.String(32), nullable=False)
    email = db.Column(db.String(255), nullable=True)

    # Bcrypt hashed password
    password_hash = db.Column(db.String(255), nullable=False)

    created_at = db.Column(db.DateTime, nullable=False)
    deleted_at = db.Column(db.DateTime, nullable=True, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "status": self.status,
            "phone": self.phone,
            "email": self.email,
            "createdAt": to_utc_z(self.created_at),
            "deletedAt": to_utc_z(self.deleted_at),
        }


class Role(db.Model):
    """Named permission bundle (admin, dispatcher, ...)."""
    __tablename__ = "roles"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_roles_name"),
    )

    id = db.Column(db.String(36), primary_key=True)
    name = db.Column(db.String(64), nullable=False)
    description = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "createdAt": to_utc_z(self.created_at),
        }


class Permission(db.Model):
    """
    Dotted capability string (orders.assign, users.manage, ...).

    Categories group related permissions for display only; they carry no
    authorization meaning.
    """
    __tablename__ = "permissions"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_permissions_name"),
    )

    id = db.Column(db.String(36), primary_key=True)
    name = db.Column(db.String(64), nullable=False, index=True)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(32), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
        }


class RolePermission(db.Model):
    """Role-Permission association."""
    __tablename__ = "role_permissions"
    __table_args__ = (
        db.UniqueConstraint("role_id", "permission_id", name="uq_role_permissions"),
    )

    id = db.Column(db.String(36), primary_key=True)
    role_id = db.Column(db.String(36), db.ForeignKey("roles.id"), nullable=False, index=True)
    permission_id = db.Column(db.String(36), db.ForeignKey("permissions.id"), nullable=False, index=True)
    granted_at = db.Column(db.DateTime, nullable=False)


class UserRole(db.Model):
    """User-Role association."""
    __tablename__ = "user_roles"
    __table_args__ = (
        db.UniqueConstraint("user_id", "role_id", name="uq_user_roles"),
    )

    id = db.Column(db.String(36), primary_key=True)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)
    role_id = db.Column(db.String(36), db.ForeignKey("roles.id"), nullable=False, index=True)
    assigned_at = db.Column(db.DateTime, nullable=False)


class Session(db.Model):
    """
    One row per authenticated device.

    SECURITY NOTES:
    - Only the SHA-256 hash of the current refresh token is stored
    - Rotation swaps the hash; the previous refresh token stops matching
    - Deleting the row invalidates the refresh token even if its signature
      and expiry are still valid
    """
    __tablename__ = "sessions"
    __table_args__ = (
        db.UniqueConstraint("refresh_token_hash", name="uq_sessions_refresh_token_hash"),
    )

    id = db.Column(db.String(36), primary_key=True)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)
    refresh_token_hash = db.Column(db.String(64), nullable=False)

    device_id = db.Column(db.String(128), nullable=False, default="unknown")
    platform = db.Column(db.String(16), nullable=False, default="web")
    user_agent = db.Column(db.String(512), nullable=True)
    client_id = db.Column(db.String(128), nullable=True)
    client_type = db.Column(db.String(32), nullable=True)

    last_seen_at = db.Column(db.DateTime, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "deviceId": self.device_id,
            "platform": self.platform,
            "clientType": self.client_type,
            "lastSeenAt": to_utc_z(self.last_seen_at),
            "createdAt": to_utc_z(self.created_at),
        }

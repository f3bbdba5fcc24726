from __future__ import annotations

from ..extensions import db
from wasteflow.time_utils import to_utc_z

AUDIT_ACTIONS = (
    "CREATE_USER", "UPDATE_USER", "DELETE_USER", "BLOCK_USER", "UNBLOCK_USER",
    "CREATE_ORDER", "UPDATE_ORDER", "DELETE_ORDER", "ASSIGN_COURIER", "CANCEL_ORDER",
    "CREATE_ROLE", "ASSIGN_ROLE",
    "VERIFY_COURIER",
    "CREATE_WEBHOOK", "DELETE_WEBHOOK",
)


class AuditLog(db.Model):
    """
    Accountability trail for privileged mutations across all entity types.

    changes holds only fields that actually differ: {field: {"from": .., "to": ..}}.

    IMMUTABLE: Never update or delete. Append-only for audit integrity.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_entity", "entity", "entity_id"),
        db.Index("ix_audit_logs_user_created", "user_id", "created_at"),
    )

    id = db.Column(db.String(36), primary_key=True)
    user_id = db.Column(db.String(36), nullable=False)
    user_role = db.Column(db.String(255), nullable=False, default="")
    action = db.Column(db.String(32), nullable=False, index=True)
    message_key = db.Column(db.String(64), nullable=False)
    entity = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.String(36), nullable=False)
    changes = db.Column(db.JSON, nullable=False, default=dict)
    meta = db.Column("metadata", db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime, nullable=False, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "userRole": self.user_role,
            "action": self.action,
            "messageKey": self.message_key,
            "entity": self.entity,
            "entityId": self.entity_id,
            "changes": self.changes or {},
            "metadata": self.meta or {},
            "createdAt": to_utc_z(self.created_at),
        }


class SecurityEvent(db.Model):
    """
    Security event log: permission denials and auth endpoint attempts.

    Auth attempts are counted per client IP and endpoint to rate-limit
    register/login/refresh.

    IMMUTABLE: Never update. Old rows are purged by maintenance commands.
    """
    __tablename__ = "security_events"
    __table_args__ = (
        db.Index("ix_security_events_type_ip", "event_type", "ip_address", "resource"),
    )

    id = db.Column(db.String(36), primary_key=True)
    user_id = db.Column(db.String(36), nullable=True, index=True)
    event_type = db.Column(db.String(64), nullable=False)
    resource = db.Column(db.String(128), nullable=True)
    action = db.Column(db.String(255), nullable=True)
    success = db.Column(db.Boolean, nullable=False)
    reason = db.Column(db.Text, nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)
    occurred_at = db.Column(db.DateTime, nullable=False, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "eventType": self.event_type,
            "resource": self.resource,
            "action": self.action,
            "success": self.success,
            "reason": self.reason,
            "ipAddress": self.ip_address,
            "occurredAt": to_utc_z(self.occurred_at),
        }


class IdempotencyRecord(db.Model):
    """
    Cached first response of a mutating request.

    id is a digest of (user_id, endpoint, client key), so claiming a key is a
    plain primary-key insert. A row with state 'in_flight' marks a request that
    is still executing.
    """
    __tablename__ = "idempotency_records"

    id = db.Column(db.String(64), primary_key=True)
    key = db.Column(db.String(255), nullable=False)
    user_id = db.Column(db.String(36), nullable=False)
    endpoint = db.Column(db.String(255), nullable=False)
    state = db.Column(db.String(16), nullable=False, default="in_flight")
    status_code = db.Column(db.Integer, nullable=True)
    response_body = db.Column(db.Text, nullable=True)
    content_type = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)

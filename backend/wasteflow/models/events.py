from __future__ import annotations

from ..extensions import db
from wasteflow.time_utils import to_utc_z

# Emitted by the server on mutations; these also fan out to webhooks
SERVER_EVENT_TYPES = (
    "order.created", "order.assigned", "order.completed", "order.cancelled",
    "subscription.started", "subscription.paused", "subscription.resumed", "subscription.cancelled",
    "bonus.earned", "bonus.redeemed", "bonus.expired",
)
# Reported by client apps through POST /events; recorded only
CLIENT_EVENT_TYPES = (
    "order.completed.shabbat",
    "courier.batch.completed",
    "user.segment.entered", "user.segment.exited",
    "partner.offer.viewed", "partner.offer.redeemed",
)
PRODUCT_EVENT_TYPES = SERVER_EVENT_TYPES + CLIENT_EVENT_TYPES
EVENT_ACTOR_TYPES = ("client", "courier", "staff", "system")
WEBHOOK_EVENT_TYPES = SERVER_EVENT_TYPES
WEBHOOK_STATUSES = ("active", "disabled")


class ProductEvent(db.Model):
    """
    Product analytics event, separate from AuditLog.

    Every product event is also the trigger for webhook fan-out.
    """
    __tablename__ = "product_events"

    id = db.Column(db.String(36), primary_key=True)
    type = db.Column(db.String(64), nullable=False, index=True)
    actor_type = db.Column(db.String(16), nullable=False)
    actor_id = db.Column(db.String(36), nullable=True)
    entity_type = db.Column(db.String(32), nullable=True)
    entity_id = db.Column(db.String(36), nullable=True, index=True)
    payload = db.Column(db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime, nullable=False, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "actorType": self.actor_type,
            "actorId": self.actor_id,
            "entityType": self.entity_type,
            "entityId": self.entity_id,
            "payload": self.payload or {},
            "createdAt": to_utc_z(self.created_at),
        }


class Webhook(db.Model):
    """
    Outbound subscription of an integration to product events.

    The secret keys the HMAC-SHA256 signature of every delivery body. It is
    returned once, when the webhook is created.
    """
    __tablename__ = "webhooks"

    id = db.Column(db.String(36), primary_key=True)
    url = db.Column(db.Text, nullable=False)
    secret = db.Column(db.String(128), nullable=False)
    events = db.Column(db.JSON, nullable=False, default=list)
    status = db.Column(db.String(16), nullable=False, default="active")
    fail_count = db.Column(db.Integer, nullable=False, default=0)
    created_by = db.Column(db.String(36), nullable=True)
    last_triggered_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False)

    def to_dict(self, include_secret: bool = False) -> dict:
        data = {
            "id": self.id,
            "url": self.url,
            "events": list(self.events or []),
            "status": self.status,
            "failCount": self.fail_count,
            "lastTriggeredAt": to_utc_z(self.last_triggered_at),
            "createdAt": to_utc_z(self.created_at),
        }
        if include_secret:
            data["secret"] = self.secret
        return data


class WebhookDelivery(db.Model):
    """Delivery record; persisted whether or not the subscriber answered."""
    __tablename__ = "webhook_deliveries"

    id = db.Column(db.String(36), primary_key=True)
    webhook_id = db.Column(db.String(36), db.ForeignKey("webhooks.id"), nullable=False, index=True)
    event_type = db.Column(db.String(64), nullable=False)
    payload = db.Column(db.JSON, nullable=False, default=dict)
    status_code = db.Column(db.Integer, nullable=True)
    response = db.Column(db.Text, nullable=True)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    delivered_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "webhookId": self.webhook_id,
            "eventType": self.event_type,
            "payload": self.payload or {},
            "statusCode": self.status_code,
            "response": self.response,
            "attempts": self.attempts,
            "deliveredAt": to_utc_z(self.delivered_at),
            "createdAt": to_utc_z(self.created_at),
        }

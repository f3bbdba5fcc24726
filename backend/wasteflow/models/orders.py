from __future__ import annotations

from ..extensions import db
from wasteflow.time_utils import to_utc_z

ORDER_STATUSES = ("created", "assigned", "in_progress", "completed", "cancelled")
ORDER_EVENT_TYPES = ("created", "assigned", "status_changed", "started", "completed", "cancelled")
AVAILABILITY_STATUSES = ("available", "busy", "offline")
VERIFICATION_STATUSES = ("pending", "verified", "rejected")


class Address(db.Model):
    """
    Pickup address owned by exactly one client.

    Soft-deleted addresses stay readable by id so that order details keep
    rendering them.
    """
    __tablename__ = "addresses"

    id = db.Column(db.String(36), primary_key=True)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)
    city = db.Column(db.String(128), nullable=False)
    street = db.Column(db.String(255), nullable=False)
    house = db.Column(db.String(32), nullable=False)
    apartment = db.Column(db.String(32), nullable=True)
    floor = db.Column(db.Integer, nullable=True)
    has_elevator = db.Column(db.Boolean, nullable=False, default=False)
    comment = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False)
    deleted_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "city": self.city,
            "street": self.street,
            "house": self.house,
            "apartment": self.apartment,
            "floor": self.floor,
            "hasElevator": self.has_elevator,
            "comment": self.comment,
            "createdAt": to_utc_z(self.created_at),
            "deletedAt": to_utc_z(self.deleted_at),
        }


class CourierProfile(db.Model):
    """
    One-to-one with a courier user.

    completed_orders_count only ever grows; it is incremented atomically by
    the storage layer when an order reaches 'completed'.
    """
    __tablename__ = "courier_profiles"

    courier_id = db.Column(db.String(36), db.ForeignKey("users.id"), primary_key=True)
    availability_status = db.Column(db.String(16), nullable=False, default="offline")
    verification_status = db.Column(db.String(16), nullable=False, default="pending")
    rating = db.Column(db.Float, nullable=False, default=5.0)
    completed_orders_count = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, nullable=False)
    deleted_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self) -> dict:
        return {
            "courierId": self.courier_id,
            "availabilityStatus": self.availability_status,
            "verificationStatus": self.verification_status,
            "rating": self.rating,
            "completedOrdersCount": self.completed_orders_count,
            "deletedAt": to_utc_z(self.deleted_at),
        }


class Order(db.Model):
    """
    Central aggregate of the marketplace.

    STATE MACHINE (see services/order_service.py):
        created -> assigned -> in_progress -> completed
        created | assigned | in_progress -> cancelled

    INVARIANTS:
    - client_id never changes after creation
    - courier_id is set once, by assignment, together with status 'assigned'
    - completed and cancelled are terminal
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_client_status", "client_id", "status"),
        db.Index("ix_orders_courier_status", "courier_id", "status"),
    )

    id = db.Column(db.String(36), primary_key=True)
    client_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    courier_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)
    address_id = db.Column(db.String(36), db.ForeignKey("addresses.id"), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="created", index=True)
    price = db.Column(db.Integer, nullable=False)
    scheduled_at = db.Column(db.DateTime, nullable=False)
    time_window = db.Column(db.String(64), nullable=False)

    created_at = db.Column(db.DateTime, nullable=False)
    completed_at = db.Column(db.DateTime, nullable=True)
    deleted_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "clientId": self.client_id,
            "courierId": self.courier_id,
            "addressId": self.address_id,
            "status": self.status,
            "price": self.price,
            "scheduledAt": to_utc_z(self.scheduled_at),
            "timeWindow": self.time_window,
            "createdAt": to_utc_z(self.created_at),
            "completedAt": to_utc_z(self.completed_at),
            "deletedAt": to_utc_z(self.deleted_at),
        }


class OrderEvent(db.Model):
    """
    Per-order timeline visible to the order's participants.

    IMMUTABLE: Never update or delete. Append-only.
    """
    __tablename__ = "order_events"

    id = db.Column(db.String(36), primary_key=True)
    order_id = db.Column(db.String(36), db.ForeignKey("orders.id"), nullable=False, index=True)
    event_type = db.Column(db.String(32), nullable=False)
    performed_by = db.Column(db.String(36), nullable=False)
    meta = db.Column("metadata", db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime, nullable=False, index=True)
    # Tie-breaker for events written within the same clock tick
    sequence = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "orderId": self.order_id,
            "eventType": self.event_type,
            "performedBy": self.performed_by,
            "metadata": self.meta or {},
            "createdAt": to_utc_z(self.created_at),
        }


class OrderFinanceSnapshot(db.Model):
    """Point-in-time unit economics of one order."""
    __tablename__ = "order_finance_snapshots"
    __table_args__ = (
        db.UniqueConstraint("order_id", name="uq_finance_snapshot_order"),
    )

    id = db.Column(db.String(36), primary_key=True)
    order_id = db.Column(db.String(36), db.ForeignKey("orders.id"), nullable=False)
    client_price = db.Column(db.Integer, nullable=False)
    courier_payout = db.Column(db.Integer, nullable=False)
    bonus_spent = db.Column(db.Integer, nullable=False, default=0)
    platform_fee = db.Column(db.Integer, nullable=False, default=0)
    margin = db.Column(db.Integer, nullable=False, default=0)
    currency = db.Column(db.String(8), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "orderId": self.order_id,
            "clientPrice": self.client_price,
            "courierPayout": self.courier_payout,
            "bonusSpent": self.bonus_spent,
            "platformFee": self.platform_fee,
            "margin": self.margin,
            "currency": self.currency,
            "createdAt": to_utc_z(self.created_at),
        }

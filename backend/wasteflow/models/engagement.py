from __future__ import annotations

from ..extensions import db
from wasteflow.time_utils import to_utc_z

USER_ACTIVITY_TYPES = (
    "daily_pickup", "skip_day", "cancellation", "shabbat_call",
    "tip_given", "app_opened", "order_rated", "support_contacted",
    "subscription_changed", "address_added", "referral_sent",
)
USER_FLAG_KEYS = (
    "daily_user", "shabbat_orders", "high_frequency", "no_tips",
    "premium_candidate", "churn_risk", "high_ltv", "price_sensitive",
    "early_adopter", "referrer", "vip",
)
USER_FLAG_SOURCES = ("system", "manual", "ml")
BONUS_TRANSACTION_TYPES = ("earn", "spend", "expire", "adjust")
BONUS_REASONS = (
    "daily_streak", "referral", "partner_service", "order_completion",
    "shabbat_bonus", "loyalty_reward", "manual_adjustment", "expiration",
    "order_payment", "partner_payment", "promo_code",
)
SUBSCRIPTION_STATUSES = ("active", "paused", "cancelled", "expired")
SUBSCRIPTION_RULE_TYPES = ("daily", "weekdays", "weekend", "custom")


class UserActivity(db.Model):
    """Customer timeline entry (behaviour history). Append-only."""
    __tablename__ = "user_activities"
    __table_args__ = (
        db.Index("ix_user_activities_user_created", "user_id", "created_at"),
    )

    id = db.Column(db.String(36), primary_key=True)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    event_type = db.Column(db.String(32), nullable=False)
    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.String(36), nullable=True)
    meta = db.Column("metadata", db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "eventType": self.event_type,
            "referenceType": self.reference_type,
            "referenceId": self.reference_id,
            "metadata": self.meta or {},
            "createdAt": to_utc_z(self.created_at),
        }


class UserFlag(db.Model):
    """
    Segmentation flag on a user.

    At most one row per (user, key); setting a flag again overwrites its
    value and source.
    """
    __tablename__ = "user_flags"
    __table_args__ = (
        db.UniqueConstraint("user_id", "key", name="uq_user_flags_user_key"),
        db.Index("ix_user_flags_key_value", "key", "value"),
    )

    id = db.Column(db.String(36), primary_key=True)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    key = db.Column(db.String(32), nullable=False)
    value = db.Column(db.Boolean, nullable=False, default=True)
    source = db.Column(db.String(16), nullable=False, default="manual")
    created_at = db.Column(db.DateTime, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "key": self.key,
            "value": self.value,
            "source": self.source,
            "createdAt": to_utc_z(self.created_at),
        }


class BonusAccount(db.Model):
    """
    Bonus points balance of one user.

    WHY: the balance is what spend is checked against; the lifetime totals
    survive expirations and adjustments. Created lazily with balance 0.
    balance never goes below zero.
    """
    __tablename__ = "bonus_accounts"

    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), primary_key=True)
    balance = db.Column(db.Integer, nullable=False, default=0)
    lifetime_earned = db.Column(db.Integer, nullable=False, default=0)
    lifetime_spent = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime, nullable=False)

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "balance": self.balance,
            "lifetimeEarned": self.lifetime_earned,
            "lifetimeSpent": self.lifetime_spent,
            "updatedAt": to_utc_z(self.updated_at),
        }


class BonusTransaction(db.Model):
    """
    Append-only ledger of bonus point movements.

    TRANSACTION TYPES:
    - earn: amount > 0 credited
    - spend: amount > 0 debited
    - expire: amount > 0 debited
    - adjust: signed amount, credited as given

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "bonus_transactions"
    __table_args__ = (
        db.Index("ix_bonus_transactions_user_created", "user_id", "created_at"),
    )

    id = db.Column(db.String(36), primary_key=True)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    type = db.Column(db.String(16), nullable=False)
    amount = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(32), nullable=False)
    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.String(36), nullable=True)
    balance_after = db.Column(db.Integer, nullable=False)
    created_by = db.Column(db.String(36), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "type": self.type,
            "amount": self.amount,
            "reason": self.reason,
            "referenceType": self.reference_type,
            "referenceId": self.reference_id,
            "balanceAfter": self.balance_after,
            "createdAt": to_utc_z(self.created_at),
        }


class SubscriptionPlan(db.Model):
    __tablename__ = "subscription_plans"

    id = db.Column(db.String(36), primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    description_key = db.Column(db.String(128), nullable=False)
    base_price = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(8), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "descriptionKey": self.description_key,
            "basePrice": self.base_price,
            "currency": self.currency,
            "isActive": self.is_active,
            "createdAt": to_utc_z(self.created_at),
        }


class Subscription(db.Model):
    """
    Recurring pickup plan of one client.

    STATE MACHINE (see services/subscription_service.py):
        active <-> paused
        active | paused -> cancelled | expired

    cancelled and expired are terminal. paused_at / cancelled_at record the
    most recent entry into that status.
    """
    __tablename__ = "subscriptions"
    __table_args__ = (
        db.Index("ix_subscriptions_user_status", "user_id", "status"),
    )

    id = db.Column(db.String(36), primary_key=True)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    plan_id = db.Column(db.String(36), db.ForeignKey("subscription_plans.id"), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="active")
    started_at = db.Column(db.DateTime, nullable=False)
    paused_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    next_billing_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "planId": self.plan_id,
            "status": self.status,
            "startedAt": to_utc_z(self.started_at),
            "pausedAt": to_utc_z(self.paused_at),
            "cancelledAt": to_utc_z(self.cancelled_at),
            "nextBillingAt": to_utc_z(self.next_billing_at),
            "createdAt": to_utc_z(self.created_at),
        }


class SubscriptionRule(db.Model):
    """When a subscription generates pickups: day pattern, time window and price modifier."""
    __tablename__ = "subscription_rules"

    id = db.Column(db.String(36), primary_key=True)
    subscription_id = db.Column(db.String(36), db.ForeignKey("subscriptions.id"), nullable=False, index=True)
    type = db.Column(db.String(16), nullable=False)
    time_window = db.Column(db.String(64), nullable=False)
    price_modifier = db.Column(db.Integer, nullable=False, default=0)
    # 0 = Sunday .. 6 = Saturday; only meaningful for type 'custom'
    days_of_week = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "subscriptionId": self.subscription_id,
            "type": self.type,
            "timeWindow": self.time_window,
            "priceModifier": self.price_modifier,
            "daysOfWeek": self.days_of_week,
            "createdAt": to_utc_z(self.created_at),
        }

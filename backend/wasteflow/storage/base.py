# Overview: Storage contract shared by every backend.

"""
Repository Abstraction

Every persisted entity is read and written through one Storage object that
the app factory keeps in app.extensions["wasteflow.storage"]. Services
receive it as their first argument.

Backends implement eight primitives; all domain methods below are written
on top of them, so MemoryStorage and SqlStorage behave identically.

RULES:
- Instances returned by reads are snapshots. Never mutate them; write
  through update/CAS methods instead.
- Soft deletes set deleted_at and return the tombstoned row.
- List methods exclude soft-deleted rows unless include_deleted=True.
- Compare-and-swap (expected=...) is the only concurrency guard; a failed
  CAS returns None and the caller decides what that means.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Sequence

from ..models import (
    Address,
    AuditLog,
    BonusAccount,
    BonusTransaction,
    CourierProfile,
    IdempotencyRecord,
    Order,
    OrderEvent,
    OrderFinanceSnapshot,
    Permission,
    ProductEvent,
    Role,
    RolePermission,
    SecurityEvent,
    Session,
    Subscription,
    SubscriptionPlan,
    SubscriptionRule,
    User,
    UserActivity,
    UserFlag,
    UserRole,
    Webhook,
    WebhookDelivery,
)
from wasteflow.time_utils import utcnow

# (attribute, operator, value); operators: eq ne in lt le gt ge is_null
Criterion = tuple[str, str, Any]


class StorageError(Exception):
    """Base class for backend failures surfaced to services."""


class DuplicateKeyError(StorageError):
    """Insert violated a primary key or unique constraint."""


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class Page:
    items: list
    total: int
    page: int
    per_page: int

    @property
    def has_next(self) -> bool:
        return self.page * self.per_page < self.total


def _alive(include_deleted: bool) -> list[Criterion]:
    return [] if include_deleted else [("deleted_at", "is_null", True)]


class Storage:
    """Backend-agnostic repository. Subclasses implement the primitives."""

    name = "abstract"

    # -- primitives --

    def _insert(self, obj):
        """Persist obj; raise DuplicateKeyError on a key collision."""
        raise NotImplementedError

    def _insert_if_absent(self, obj):
        """Persist obj unless a key collides; return the stored row or None."""
        raise NotImplementedError

    def _get(self, model, pk):
        raise NotImplementedError

    def _find(
        self,
        model,
        criteria: Iterable[Criterion] = (),
        order_by: Sequence[str] = (),
        limit: int | None = None,
        offset: int = 0,
    ) -> list:
        """order_by entries are attribute names, '-name' for descending."""
        raise NotImplementedError

    def _count(self, model, criteria: Iterable[Criterion] = ()) -> int:
        raise NotImplementedError

    def _update(self, model, pk, changes: dict, expected: dict | None = None):
        """
        Apply changes to one row.

        If expected is given, the write only happens while every expected
        attribute still holds the given value. Returns the updated row, or
        None when the row is missing or the expectation failed. Raises
        DuplicateKeyError when the changes collide with a unique constraint.
        """
        raise NotImplementedError

    def _increment(self, model, pk, attr: str, amount: int = 1):
        """Atomic attr += amount; returns the updated row or None."""
        raise NotImplementedError

    def _delete(self, model, pk) -> bool:
        raise NotImplementedError

    # -- lifecycle hooks (overridden where the backend needs them) --

    def create_schema(self) -> None:
        pass

    def reset(self) -> None:
        pass

    # -- shared helpers --

    def _page(self, model, criteria, order_by, page: int, per_page: int) -> Page:
        criteria = list(criteria)
        total = self._count(model, criteria)
        items = self._find(
            model,
            criteria,
            order_by=order_by,
            limit=per_page,
            offset=(page - 1) * per_page,
        )
        return Page(items=items, total=total, page=page, per_page=per_page)

    def _first(self, model, criteria, order_by: Sequence[str] = ()):
        rows = self._find(model, criteria, order_by=order_by, limit=1)
        return rows[0] if rows else None

    def _soft_delete(self, model, pk):
        return self._update(model, pk, {"deleted_at": utcnow()}, expected={"deleted_at": None})

    # ==================== USERS ====================

    def add_user(self, user: User) -> User:
        return self._insert(user)

    def get_user(self, user_id: str, include_deleted: bool = False) -> User | None:
        user = self._get(User, user_id)
        if user is None or (user.deleted_at is not None and not include_deleted):
            return None
        return user

    def get_user_by_phone(self, phone: str) -> User | None:
        """Includes soft-deleted users; phone stays reserved after deletion."""
        return self._first(User, [("phone", "eq", phone)])

    def get_user_by_email(self, email: str) -> User | None:
        return self._first(User, [("email", "eq", email)])

    def list_users(
        self,
        *,
        user_type: str | None = None,
        status: str | None = None,
        include_deleted: bool = False,
        page: int = 1,
        per_page: int = 20,
    ) -> Page:
        criteria = _alive(include_deleted)
        if user_type:
            criteria.append(("type", "eq", user_type))
        if status:
            criteria.append(("status", "eq", status))
        return self._page(User, criteria, ["-created_at", "id"], page, per_page)

    def update_user(self, user_id: str, changes: dict, expected: dict | None = None) -> User | None:
        return self._update(User, user_id, changes, expected)

    def soft_delete_user(self, user_id: str) -> User | None:
        return self._soft_delete(User, user_id)

    # ==================== ROLES & PERMISSIONS ====================

    def add_role(self, role: Role) -> Role:
        return self._insert(role)

    def get_role_by_name(self, name: str) -> Role | None:
        return self._first(Role, [("name", "eq", name)])

    def get_roles(self, role_ids: Iterable[str]) -> list[Role]:
        role_ids = list(role_ids)
        if not role_ids:
            return []
        return self._find(Role, [("id", "in", role_ids)], order_by=["name"])

    def list_roles(self) -> list[Role]:
        return self._find(Role, order_by=["name"])

    def add_permission(self, permission: Permission) -> Permission | None:
        """Insert unless a permission with the same name exists."""
        return self._insert_if_absent(permission)

    def get_permission_by_name(self, name: str) -> Permission | None:
        return self._first(Permission, [("name", "eq", name)])

    def get_permissions(self, permission_ids: Iterable[str]) -> list[Permission]:
        permission_ids = list(permission_ids)
        if not permission_ids:
            return []
        return self._find(Permission, [("id", "in", permission_ids)], order_by=["name"])

    def list_permissions(self) -> list[Permission]:
        return self._find(Permission, order_by=["category", "name"])

    def grant_role_permission(self, role_id: str, permission_id: str) -> bool:
        """Returns False when the edge already existed."""
        edge = RolePermission(
            id=new_id(),
            role_id=role_id,
            permission_id=permission_id,
            granted_at=utcnow(),
        )
        return self._insert_if_absent(edge) is not None

    def revoke_role_permission(self, role_id: str, permission_id: str) -> bool:
        edge = self._first(
            RolePermission,
            [("role_id", "eq", role_id), ("permission_id", "eq", permission_id)],
        )
        return edge is not None and self._delete(RolePermission, edge.id)

    def list_role_permission_ids(self, role_id: str) -> list[str]:
        return [edge.permission_id for edge in self._find(RolePermission, [("role_id", "eq", role_id)])]

    def assign_user_role(self, user_id: str, role_id: str) -> bool:
        edge = UserRole(id=new_id(), user_id=user_id, role_id=role_id, assigned_at=utcnow())
        return self._insert_if_absent(edge) is not None

    def remove_user_role(self, user_id: str, role_id: str) -> bool:
        edge = self._first(UserRole, [("user_id", "eq", user_id), ("role_id", "eq", role_id)])
        return edge is not None and self._delete(UserRole, edge.id)

    def list_user_role_ids(self, user_id: str) -> list[str]:
        return [edge.role_id for edge in self._find(UserRole, [("user_id", "eq", user_id)])]

    def get_user_permission_names(self, user_id: str) -> set[str]:
        """Union of the permissions of every role currently assigned to user_id."""
        role_ids = self.list_user_role_ids(user_id)
        if not role_ids:
            return set()
        edges = self._find(RolePermission, [("role_id", "in", role_ids)])
        permission_ids = {edge.permission_id for edge in edges}
        return {perm.name for perm in self.get_permissions(permission_ids)}

    # ==================== SESSIONS ====================

    def add_session(self, session: Session) -> Session:
        return self._insert(session)

    def get_session(self, session_id: str) -> Session | None:
        return self._get(Session, session_id)

    def get_session_by_token_hash(self, token_hash: str) -> Session | None:
        return self._first(Session, [("refresh_token_hash", "eq", token_hash)])

    def list_sessions(self, user_id: str) -> list[Session]:
        return self._find(Session, [("user_id", "eq", user_id)], order_by=["-last_seen_at", "id"])

    def rotate_session(self, session_id: str, old_hash: str, changes: dict) -> Session | None:
        """Swap the stored refresh-token hash only if it still equals old_hash."""
        return self._update(Session, session_id, changes, expected={"refresh_token_hash": old_hash})

    def delete_session(self, session_id: str) -> bool:
        return self._delete(Session, session_id)

    def delete_user_sessions(self, user_id: str) -> int:
        deleted = 0
        for session in self._find(Session, [("user_id", "eq", user_id)]):
            if self._delete(Session, session.id):
                deleted += 1
        return deleted

    # ==================== ADDRESSES ====================

    def add_address(self, address: Address) -> Address:
        return self._insert(address)

    def get_address(self, address_id: str, include_deleted: bool = False) -> Address | None:
        address = self._get(Address, address_id)
        if address is None or (address.deleted_at is not None and not include_deleted):
            return None
        return address

    def list_addresses(
        self,
        user_id: str | None = None,
        include_deleted: bool = False,
        page: int = 1,
        per_page: int = 20,
    ) -> Page:
        criteria = _alive(include_deleted)
        if user_id:
            criteria.append(("user_id", "eq", user_id))
        return self._page(Address, criteria, ["-created_at", "id"], page, per_page)

    def update_address(self, address_id: str, changes: dict) -> Address | None:
        return self._update(Address, address_id, changes, expected={"deleted_at": None})

    def soft_delete_address(self, address_id: str) -> Address | None:
        return self._soft_delete(Address, address_id)

    # ==================== COURIERS ====================

    def add_courier_profile(self, profile: CourierProfile) -> CourierProfile | None:
        return self._insert_if_absent(profile)

    def get_courier_profile(self, courier_id: str, include_deleted: bool = False) -> CourierProfile | None:
        profile = self._get(CourierProfile, courier_id)
        if profile is None or (profile.deleted_at is not None and not include_deleted):
            return None
        return profile

    def list_courier_profiles(
        self,
        *,
        verification_status: str | None = None,
        availability_status: str | None = None,
        include_deleted: bool = False,
        page: int = 1,
        per_page: int = 20,
    ) -> Page:
        criteria = _alive(include_deleted)
        if verification_status:
            criteria.append(("verification_status", "eq", verification_status))
        if availability_status:
            criteria.append(("availability_status", "eq", availability_status))
        return self._page(CourierProfile, criteria, ["-created_at", "courier_id"], page, per_page)

    def update_courier_profile(self, courier_id: str, changes: dict) -> CourierProfile | None:
        return self._update(CourierProfile, courier_id, changes)

    def increment_completed_orders(self, courier_id: str) -> CourierProfile | None:
        return self._increment(CourierProfile, courier_id, "completed_orders_count", 1)

    def soft_delete_courier_profile(self, courier_id: str) -> CourierProfile | None:
        return self._soft_delete(CourierProfile, courier_id)

    # ==================== ORDERS ====================

    def add_order(self, order: Order) -> Order:
        return self._insert(order)

    def get_order(self, order_id: str, include_deleted: bool = False) -> Order | None:
        order = self._get(Order, order_id)
        if order is None or (order.deleted_at is not None and not include_deleted):
            return None
        return order

    def list_orders(
        self,
        *,
        client_id: str | None = None,
        courier_id: str | None = None,
        status: str | None = None,
        include_deleted: bool = False,
        page: int = 1,
        per_page: int = 20,
    ) -> Page:
        criteria = _alive(include_deleted)
        if client_id:
            criteria.append(("client_id", "eq", client_id))
        if courier_id:
            criteria.append(("courier_id", "eq", courier_id))
        if status:
            criteria.append(("status", "eq", status))
        return self._page(Order, criteria, ["-created_at", "id"], page, per_page)

    def transition_order(self, order_id: str, from_status: str, changes: dict) -> Order | None:
        """Status compare-and-swap; None when another writer moved the order first."""
        return self._update(
            Order,
            order_id,
            changes,
            expected={"status": from_status, "deleted_at": None},
        )

    def update_order(self, order_id: str, changes: dict) -> Order | None:
        return self._update(Order, order_id, changes, expected={"deleted_at": None})

    def soft_delete_order(self, order_id: str) -> Order | None:
        return self._soft_delete(Order, order_id)

    def append_order_event(self, event: OrderEvent) -> OrderEvent:
        if not event.sequence:
            event.sequence = self._count(OrderEvent, [("order_id", "eq", event.order_id)]) + 1
        return self._insert(event)

    def list_order_events(self, order_id: str) -> list[OrderEvent]:
        return self._find(OrderEvent, [("order_id", "eq", order_id)], order_by=["created_at", "sequence"])

    def add_finance_snapshot(self, snapshot: OrderFinanceSnapshot) -> OrderFinanceSnapshot | None:
        """None when the order already has a snapshot."""
        return self._insert_if_absent(snapshot)

    def get_finance_snapshot(self, order_id: str) -> OrderFinanceSnapshot | None:
        return self._first(OrderFinanceSnapshot, [("order_id", "eq", order_id)])

    def update_finance_snapshot(self, snapshot_id: str, changes: dict) -> OrderFinanceSnapshot | None:
        return self._update(OrderFinanceSnapshot, snapshot_id, changes)

    # ==================== AUDIT & SECURITY ====================

    def append_audit_log(self, entry: AuditLog) -> AuditLog:
        return self._insert(entry)

    def list_audit_logs(
        self,
        *,
        user_id: str | None = None,
        entity: str | None = None,
        entity_id: str | None = None,
        action: str | None = None,
        page: int = 1,
        per_page: int = 20,
    ) -> Page:
        criteria: list[Criterion] = []
        if user_id:
            criteria.append(("user_id", "eq", user_id))
        if entity:
            criteria.append(("entity", "eq", entity))
        if entity_id:
            criteria.append(("entity_id", "eq", entity_id))
        if action:
            criteria.append(("action", "eq", action))
        return self._page(AuditLog, criteria, ["-created_at", "id"], page, per_page)

    def add_security_event(self, event: SecurityEvent) -> SecurityEvent:
        return self._insert(event)

    def count_security_events(
        self,
        event_type: str,
        *,
        since: datetime,
        ip_address: str | None = None,
        resource: str | None = None,
        user_id: str | None = None,
    ) -> int:
        criteria: list[Criterion] = [("event_type", "eq", event_type), ("occurred_at", "ge", since)]
        if ip_address is not None:
            criteria.append(("ip_address", "eq", ip_address))
        if resource is not None:
            criteria.append(("resource", "eq", resource))
        if user_id is not None:
            criteria.append(("user_id", "eq", user_id))
        return self._count(SecurityEvent, criteria)

    def list_security_events(self, event_type: str | None = None, limit: int = 100) -> list[SecurityEvent]:
        criteria = [("event_type", "eq", event_type)] if event_type else []
        return self._find(SecurityEvent, criteria, order_by=["-occurred_at", "id"], limit=limit)

    def purge_security_events(self, before: datetime) -> int:
        purged = 0
        for event in self._find(SecurityEvent, [("occurred_at", "lt", before)]):
            if self._delete(SecurityEvent, event.id):
                purged += 1
        return purged

    # ==================== IDEMPOTENCY ====================

    def claim_idempotency_key(self, record: IdempotencyRecord) -> IdempotencyRecord | None:
        """Insert the in-flight marker; None when the key is already held."""
        return self._insert_if_absent(record)

    def get_idempotency_record(self, record_id: str) -> IdempotencyRecord | None:
        return self._get(IdempotencyRecord, record_id)

    def complete_idempotency_key(self, record_id: str, changes: dict) -> IdempotencyRecord | None:
        return self._update(IdempotencyRecord, record_id, changes, expected={"state": "in_flight"})

    def release_idempotency_key(self, record_id: str) -> bool:
        return self._delete(IdempotencyRecord, record_id)

    def purge_expired_idempotency(self, now: datetime) -> int:
        purged = 0
        for record in self._find(IdempotencyRecord, [("expires_at", "le", now)]):
            if self._delete(IdempotencyRecord, record.id):
                purged += 1
        return purged

    # ==================== PRODUCT EVENTS & WEBHOOKS ====================

    def add_product_event(self, event: ProductEvent) -> ProductEvent:
        return self._insert(event)

    def list_product_events(
        self,
        *,
        event_type: str | None = None,
        entity_id: str | None = None,
        page: int = 1,
        per_page: int = 20,
    ) -> Page:
        criteria: list[Criterion] = []
        if event_type:
            criteria.append(("type", "eq", event_type))
        if entity_id:
            criteria.append(("entity_id", "eq", entity_id))
        return self._page(ProductEvent, criteria, ["-created_at", "id"], page, per_page)

    def add_webhook(self, webhook: Webhook) -> Webhook:
        return self._insert(webhook)

    def get_webhook(self, webhook_id: str) -> Webhook | None:
        return self._get(Webhook, webhook_id)

    def list_webhooks(self, status: str | None = None) -> list[Webhook]:
        criteria = [("status", "eq", status)] if status else []
        return self._find(Webhook, criteria, order_by=["created_at", "id"])

    def list_subscribed_webhooks(self, event_type: str) -> list[Webhook]:
        return [hook for hook in self.list_webhooks(status="active") if event_type in (hook.events or [])]

    def update_webhook(self, webhook_id: str, changes: dict) -> Webhook | None:
        return self._update(Webhook, webhook_id, changes)

    def increment_webhook_failures(self, webhook_id: str) -> Webhook | None:
        return self._increment(Webhook, webhook_id, "fail_count", 1)

    def delete_webhook(self, webhook_id: str) -> bool:
        for delivery in self._find(WebhookDelivery, [("webhook_id", "eq", webhook_id)]):
            self._delete(WebhookDelivery, delivery.id)
        return self._delete(Webhook, webhook_id)

    def add_webhook_delivery(self, delivery: WebhookDelivery) -> WebhookDelivery:
        return self._insert(delivery)

    def update_webhook_delivery(self, delivery_id: str, changes: dict) -> WebhookDelivery | None:
        return self._update(WebhookDelivery, delivery_id, changes)

    def list_webhook_deliveries(self, webhook_id: str, page: int = 1, per_page: int = 20) -> Page:
        return self._page(
            WebhookDelivery,
            [("webhook_id", "eq", webhook_id)],
            ["-created_at", "id"],
            page,
            per_page,
        )

    # ==================== USER ACTIVITY & FLAGS ====================

    def add_user_activity(self, activity: UserActivity) -> UserActivity:
        return self._insert(activity)

    def list_user_activities(
        self,
        user_id: str,
        *,
        event_type: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        page: int = 1,
        per_page: int = 20,
    ) -> Page:
        criteria: list[Criterion] = [("user_id", "eq", user_id)]
        if event_type:
            criteria.append(("event_type", "eq", event_type))
        if since is not None:
            criteria.append(("created_at", "ge", since))
        if until is not None:
            criteria.append(("created_at", "le", until))
        return self._page(UserActivity, criteria, ["-created_at", "id"], page, per_page)

    def count_user_activities(self, user_id: str, event_type: str) -> int:
        return self._count(UserActivity, [("user_id", "eq", user_id), ("event_type", "eq", event_type)])

    def add_user_flag(self, flag: UserFlag) -> UserFlag | None:
        """None when the user already carries a flag with that key."""
        return self._insert_if_absent(flag)

    def get_user_flag(self, user_id: str, key: str) -> UserFlag | None:
        return self._first(UserFlag, [("user_id", "eq", user_id), ("key", "eq", key)])

    def list_user_flags(self, user_id: str) -> list[UserFlag]:
        return self._find(UserFlag, [("user_id", "eq", user_id)], order_by=["key"])

    def update_user_flag(self, flag_id: str, changes: dict) -> UserFlag | None:
        return self._update(UserFlag, flag_id, changes)

    def delete_user_flag(self, user_id: str, key: str) -> bool:
        flag = self.get_user_flag(user_id, key)
        return flag is not None and self._delete(UserFlag, flag.id)

    def list_flagged_user_ids(self, key: str, value: bool = True) -> list[str]:
        flags = self._find(UserFlag, [("key", "eq", key), ("value", "eq", value)], order_by=["created_at", "id"])
        return [flag.user_id for flag in flags]

    # ==================== BONUS ====================

    def open_bonus_account(self, account: BonusAccount) -> BonusAccount | None:
        """None when the user already has an account."""
        return self._insert_if_absent(account)

    def get_bonus_account(self, user_id: str) -> BonusAccount | None:
        return self._get(BonusAccount, user_id)

    def update_bonus_account(self, user_id: str, changes: dict, expected: dict) -> BonusAccount | None:
        """Balance compare-and-swap; None when the balance moved since it was read."""
        return self._update(BonusAccount, user_id, changes, expected=expected)

    def add_bonus_transaction(self, transaction: BonusTransaction) -> BonusTransaction:
        return self._insert(transaction)

    def list_bonus_transactions(
        self,
        user_id: str,
        *,
        transaction_type: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        page: int = 1,
        per_page: int = 20,
    ) -> Page:
        criteria: list[Criterion] = [("user_id", "eq", user_id)]
        if transaction_type:
            criteria.append(("type", "eq", transaction_type))
        if since is not None:
            criteria.append(("created_at", "ge", since))
        if until is not None:
            criteria.append(("created_at", "le", until))
        return self._page(BonusTransaction, criteria, ["-created_at", "id"], page, per_page)

    # ==================== SUBSCRIPTIONS ====================

    def add_subscription_plan(self, plan: SubscriptionPlan) -> SubscriptionPlan:
        return self._insert(plan)

    def get_subscription_plan(self, plan_id: str) -> SubscriptionPlan | None:
        return self._get(SubscriptionPlan, plan_id)

    def list_subscription_plans(self, active_only: bool = True) -> list[SubscriptionPlan]:
        criteria = [("is_active", "eq", True)] if active_only else []
        return self._find(SubscriptionPlan, criteria, order_by=["base_price", "name"])

    def update_subscription_plan(self, plan_id: str, changes: dict) -> SubscriptionPlan | None:
        return self._update(SubscriptionPlan, plan_id, changes)

    def add_subscription(self, subscription: Subscription) -> Subscription:
        return self._insert(subscription)

    def get_subscription(self, subscription_id: str) -> Subscription | None:
        return self._get(Subscription, subscription_id)

    def list_subscriptions(
        self,
        *,
        user_id: str | None = None,
        status: str | None = None,
        page: int = 1,
        per_page: int = 20,
    ) -> Page:
        criteria: list[Criterion] = []
        if user_id:
            criteria.append(("user_id", "eq", user_id))
        if status:
            criteria.append(("status", "eq", status))
        return self._page(Subscription, criteria, ["-created_at", "id"], page, per_page)

    def transition_subscription(self, subscription_id: str, from_status: str, changes: dict) -> Subscription | None:
        """Status compare-and-swap, as transition_order."""
        return self._update(Subscription, subscription_id, changes, expected={"status": from_status})

    def update_subscription(self, subscription_id: str, changes: dict) -> Subscription | None:
        return self._update(Subscription, subscription_id, changes)

    def add_subscription_rule(self, rule: SubscriptionRule) -> SubscriptionRule:
        return self._insert(rule)

    def get_subscription_rule(self, rule_id: str) -> SubscriptionRule | None:
        return self._get(SubscriptionRule, rule_id)

    def list_subscription_rules(self, subscription_id: str) -> list[SubscriptionRule]:
        return self._find(SubscriptionRule, [("subscription_id", "eq", subscription_id)], order_by=["created_at", "id"])

    def delete_subscription_rule(self, rule_id: str) -> bool:
        return self._delete(SubscriptionRule, rule_id)

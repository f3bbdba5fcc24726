from .auth import User, Role, Permission, RolePermission, UserRole, Session
from .orders import Address, CourierProfile, Order, OrderEvent, OrderFinanceSnapshot
from .security import AuditLog, SecurityEvent, IdempotencyRecord
from .events import ProductEvent, Webhook, WebhookDelivery
from .engagement import (
    BonusAccount, BonusTransaction, Subscription, SubscriptionPlan, SubscriptionRule, UserActivity, UserFlag,
)

__all__ = [
    'User', 'Role', 'Permission', 'RolePermission', 'UserRole', 'Session',
    'Address', 'CourierProfile', 'Order', 'OrderEvent', 'OrderFinanceSnapshot',
    'AuditLog', 'SecurityEvent', 'IdempotencyRecord',
    'ProductEvent', 'Webhook', 'WebhookDelivery',
    'UserActivity', 'UserFlag', 'BonusAccount', 'BonusTransaction',
    'SubscriptionPlan', 'Subscription', 'SubscriptionRule',
]

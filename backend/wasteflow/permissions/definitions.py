# Overview: All permission definitions organized by category.
# Each permission is defined as: (name, description, category)

from .categories import PermissionCategory


# -- ORDERS --

ORDER_PERMISSIONS = [
    ("orders.read", "View all orders regardless of ownership", PermissionCategory.ORDERS),
    ("orders.create", "Create orders on behalf of clients", PermissionCategory.ORDERS),
    ("orders.assign", "Assign couriers to orders", PermissionCategory.ORDERS),
    ("orders.update_status", "Change order status, cancel and delete orders", PermissionCategory.ORDERS),
]


# -- USERS --

USER_PERMISSIONS = [
    ("users.read", "View user accounts", PermissionCategory.USERS),
    ("users.manage", "Create, edit, block and delete users; manage roles; read audit logs", PermissionCategory.USERS),
]


# -- COURIERS --

COURIER_PERMISSIONS = [
    ("couriers.verify", "Verify or reject courier profiles", PermissionCategory.COURIERS),
]


# -- FINANCE --

FINANCE_PERMISSIONS = [
    ("payments.read", "View order finance snapshots", PermissionCategory.FINANCE),
    ("reports.read", "View reports and product events", PermissionCategory.FINANCE),
    ("subscriptions.manage", "Manage subscription plans and every client's subscriptions", PermissionCategory.FINANCE),
    ("bonus.manage", "Post bonus transactions for any user", PermissionCategory.FINANCE),
]


# -- ADDRESSES --

ADDRESS_PERMISSIONS = [
    ("addresses.read", "View any client's addresses", PermissionCategory.ADDRESSES),
    ("addresses.manage", "Edit any client's addresses", PermissionCategory.ADDRESSES),
]


# -- INTEGRATIONS --

INTEGRATION_PERMISSIONS = [
    ("webhooks.manage", "Register webhooks and inspect deliveries", PermissionCategory.INTEGRATIONS),
]


PERMISSION_DEFINITIONS = (
    ORDER_PERMISSIONS
    + USER_PERMISSIONS
    + COURIER_PERMISSIONS
    + FINANCE_PERMISSIONS
    + ADDRESS_PERMISSIONS
    + INTEGRATION_PERMISSIONS
)

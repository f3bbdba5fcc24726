# Overview: Default role -> permission mapping seeded by `flask system init`.

from .definitions import PERMISSION_DEFINITIONS

ROLE_DESCRIPTIONS = {
    "admin": "Full access to every capability",
    "manager": "Operations lead: orders, dispatch and courier verification",
    "accountant": "Finance and reporting",
    "support": "Customer support, read-only",
    "dispatcher": "Assigns couriers and moves orders along",
}

DEFAULT_ROLE_PERMISSIONS = {
    "admin": [perm[0] for perm in PERMISSION_DEFINITIONS],
    "manager": [
        "orders.read",
        "orders.assign",
        "orders.update_status",
        "users.read",
        "couriers.verify",
    ],
    "accountant": [
        "orders.read",
        "payments.read",
        "reports.read",
        "bonus.manage",
        "subscriptions.manage",
    ],
    "support": [
        "orders.read",
        "users.read",
        "addresses.read",
    ],
    "dispatcher": [
        "orders.read",
        "orders.assign",
        "orders.update_status",
    ],
}

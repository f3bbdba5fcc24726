# Overview: Permission catalogue package.
# Re-exports all public APIs.

from .categories import PermissionCategory
from .definitions import (
    PERMISSION_DEFINITIONS,
    ORDER_PERMISSIONS,
    USER_PERMISSIONS,
    COURIER_PERMISSIONS,
    FINANCE_PERMISSIONS,
    ADDRESS_PERMISSIONS,
    INTEGRATION_PERMISSIONS,
)
from .roles import DEFAULT_ROLE_PERMISSIONS, ROLE_DESCRIPTIONS
from .helpers import (
    get_all_permission_names,
    get_permissions_by_category,
    get_permission_definition,
    validate_permission_name,
)

__all__ = [
    "PermissionCategory",
    "PERMISSION_DEFINITIONS",
    "ORDER_PERMISSIONS",
    "USER_PERMISSIONS",
    "COURIER_PERMISSIONS",
    "FINANCE_PERMISSIONS",
    "ADDRESS_PERMISSIONS",
    "INTEGRATION_PERMISSIONS",
    "DEFAULT_ROLE_PERMISSIONS",
    "ROLE_DESCRIPTIONS",
    "get_all_permission_names",
    "get_permissions_by_category",
    "get_permission_definition",
    "validate_permission_name",
]

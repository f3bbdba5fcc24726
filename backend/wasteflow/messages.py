# Overview: Message-key catalogue returned to clients for localization.
# Clients translate keys; the server only negotiates the language header.

# -- COMMON --
COMMON_VALIDATION_ERROR = "common.validation_error"
COMMON_BAD_REQUEST = "common.bad_request"
COMMON_FORBIDDEN = "common.forbidden"
COMMON_NOT_FOUND = "common.not_found"
COMMON_METHOD_NOT_ALLOWED = "common.method_not_allowed"
COMMON_CONFLICT = "common.conflict"
COMMON_RATE_LIMIT_EXCEEDED = "common.rate_limit_exceeded"
COMMON_INTERNAL_ERROR = "common.internal_error"
COMMON_IDEMPOTENCY_IN_PROGRESS = "common.idempotency_in_progress"
COMMON_PERMISSION_REQUIRED = "common.permission_required"
COMMON_USER_TYPE_REQUIRED = "common.user_type_required"

# -- AUTH --
AUTH_UNAUTHENTICATED = "auth.unauthenticated"
AUTH_INVALID_CREDENTIALS = "auth.invalid_credentials"
AUTH_TOKEN_INVALID = "auth.token_invalid"
AUTH_USER_BLOCKED = "auth.user_blocked"
AUTH_REGISTER_SUCCESS = "auth.register_success"
AUTH_LOGIN_SUCCESS = "auth.login_success"
AUTH_REFRESH_SUCCESS = "auth.refresh_success"
AUTH_LOGOUT_SUCCESS = "auth.logout_success"

# -- SESSIONS --
SESSION_DEVICE_NOT_FOUND = "session.device_not_found"
SESSION_DELETED = "session.deleted"
SESSION_ALL_DELETED = "session.all_sessions_deleted"

# -- SANDBOX --
SANDBOX_WRITE_NOT_ALLOWED = "sandbox.write_not_allowed"

# -- USERS / ROLES --
USER_NOT_FOUND = "user.not_found"
USER_CREATED = "user.created"
USER_UPDATED = "user.updated"
USER_ALREADY_DELETED = "user.already_deleted"
USER_ROLES_ASSIGNED = "user.roles_assigned"
ROLE_CREATED = "role.created"
ROLE_INVALID_ROLE_IDS = "role.invalid_role_ids"
ROLE_NOT_FOUND = "role.not_found"
PERMISSION_NOT_FOUND = "permission.not_found"

# -- ADDRESSES --
ADDRESS_NOT_FOUND = "address.not_found"
ADDRESS_FORBIDDEN = "address.forbidden"
ADDRESS_CREATED = "address.created"
ADDRESS_DELETED = "address.deleted"
ADDRESS_ALREADY_DELETED = "address.already_deleted"

# -- ORDERS --
ORDER_NOT_FOUND = "order.not_found"
ORDER_CREATED = "order.created"
ORDER_UPDATED = "order.updated"
ORDER_ASSIGNED = "order.assigned"
ORDER_STARTED = "order.started"
ORDER_COMPLETED = "order.completed"
ORDER_CANCELLED = "order.cancelled"
ORDER_ALREADY_ASSIGNED = "order.already_assigned"
ORDER_ALREADY_DELETED = "order.already_deleted"
ORDER_CANNOT_CANCEL = "order.cannot_cancel"
ORDER_NOT_ASSIGNED_TO_YOU = "order.not_assigned_to_you"
ORDER_NOT_IN_ASSIGNED_STATUS = "order.not_in_assigned_status"
ORDER_NOT_IN_PROGRESS = "order.not_in_progress"
ORDER_INVALID_STATUS_TRANSITION = "order.invalid_status_transition"
ORDER_FINANCE_EXISTS = "order.finance_snapshot_exists"
ORDER_FINANCE_UPDATED = "order.finance_updated"

# -- COURIERS --
COURIER_NOT_FOUND = "courier.not_found"
COURIER_PROFILE_NOT_FOUND = "courier.profile_not_found"
COURIER_PROFILE_UPDATED = "courier.profile_updated"
COURIER_VERIFIED = "courier.verified"
COURIER_INVALID_VERIFICATION_STATUS = "courier.invalid_verification_status"

# -- WEBHOOKS --
WEBHOOK_NOT_FOUND = "webhook.not_found"
WEBHOOK_CREATED = "webhook.created"
WEBHOOK_DELETED = "webhook.deleted"
WEBHOOK_TEST_SENT = "webhook.test_sent"

# -- USER ACTIVITY / FLAGS --
ACTIVITY_RECORDED = "activity.recorded"
FLAG_SET = "flag.set"
FLAG_NOT_FOUND = "flag.not_found"

# -- BONUS --
BONUS_TRANSACTION_CREATED = "bonus.transaction_created"
BONUS_INSUFFICIENT_BALANCE = "bonus.insufficient_balance"

# -- SUBSCRIPTIONS --
SUBSCRIPTION_NOT_FOUND = "subscription.not_found"
SUBSCRIPTION_CREATED = "subscription.created"
SUBSCRIPTION_UPDATED = "subscription.updated"
SUBSCRIPTION_INVALID_STATUS_TRANSITION = "subscription.invalid_status_transition"
SUBSCRIPTION_PLAN_NOT_FOUND = "subscription.plan_not_found"
SUBSCRIPTION_PLAN_INACTIVE = "subscription.plan_inactive"
SUBSCRIPTION_PLAN_CREATED = "subscription.plan_created"
SUBSCRIPTION_PLAN_UPDATED = "subscription.plan_updated"
SUBSCRIPTION_RULE_NOT_FOUND = "subscription.rule_not_found"
SUBSCRIPTION_RULE_CREATED = "subscription.rule_created"

# -- PRODUCT EVENTS --
EVENT_RECORDED = "event.recorded"

# -- AUDIT (stored on each AuditLog row) --
AUDIT_MESSAGE_KEYS = {
    "CREATE_USER": "audit.user_created",
    "UPDATE_USER": "audit.user_updated",
    "DELETE_USER": "audit.user_deleted",
    "BLOCK_USER": "audit.user_blocked",
    "UNBLOCK_USER": "audit.user_unblocked",
    "CREATE_ORDER": "audit.order_created",
    "UPDATE_ORDER": "audit.order_updated",
    "DELETE_ORDER": "audit.order_deleted",
    "ASSIGN_COURIER": "audit.order_assigned",
    "CANCEL_ORDER": "audit.order_cancelled",
    "CREATE_ROLE": "audit.role_created",
    "ASSIGN_ROLE": "audit.user_roles_assigned",
    "VERIFY_COURIER": "audit.courier_verified",
    "CREATE_WEBHOOK": "audit.webhook_created",
    "DELETE_WEBHOOK": "audit.webhook_deleted",
    "UPDATE_FINANCE": "audit.order_finance_updated",
    "SET_USER_FLAG": "audit.user_flag_set",
    "DELETE_USER_FLAG": "audit.user_flag_deleted",
    "CREATE_BONUS_TRANSACTION": "audit.bonus_transaction_created",
    "UPDATE_SUBSCRIPTION": "audit.subscription_updated",
    "CREATE_SUBSCRIPTION_PLAN": "audit.subscription_plan_created",
    "UPDATE_SUBSCRIPTION_PLAN": "audit.subscription_plan_updated",
}

# backend/wasteflow/__init__.py
from flask import Flask
from werkzeug.exceptions import HTTPException

from . import messages, middleware
from .config import Config
from .errors import ApiError
from .extensions import db, migrate
from .responses import error_response
from .storage import EXTENSION_KEY as STORAGE_KEY
from .storage import create_storage

# Flask routing failures rendered in the API error envelope
HTTP_ERROR_KEYS = {
    400: messages.COMMON_BAD_REQUEST,
    404: messages.COMMON_NOT_FOUND,
    405: messages.COMMON_METHOD_NOT_ALLOWED,
}


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ApiError)
    def handle_api_error(exc: ApiError):
        return error_response(exc)

    @app.errorhandler(HTTPException)
    def handle_http_exception(exc: HTTPException):
        key = HTTP_ERROR_KEYS.get(exc.code, messages.COMMON_INTERNAL_ERROR)
        return error_response(_HttpError(key, exc.code))

    @app.errorhandler(Exception)
    def handle_unexpected(exc: Exception):
        app.logger.exception("Unhandled error")
        return error_response(ApiError())


class _HttpError(ApiError):
    def __init__(self, key: str, status_code: int):
        super().__init__(key)
        self.status_code = status_code


def create_app(config_overrides: dict | None = None, storage=None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    store = storage or create_storage(app.config["STORAGE_BACKEND"])
    app.extensions[STORAGE_KEY] = store

    # Nothing persists in memory, so seed RBAC defaults on every start
    if store.name == "memory":
        from .services import permission_service
        permission_service.initialize_defaults(store)

    from .services.webhook_service import EXTENSION_KEY as WEBHOOK_KEY, WebhookDispatcher
    app.extensions[WEBHOOK_KEY] = WebhookDispatcher(app)

    middleware.init_app(app)
    register_error_handlers(app)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.users import users_bp
    from .routes.addresses import addresses_bp
    from .routes.orders import orders_bp
    from .routes.courier import courier_bp
    from .routes.audit import audit_bp
    from .routes.webhooks import webhooks_bp
    from .routes.engagement import engagement_bp
    from .routes.bonus import bonus_bp
    from .routes.subscriptions import subscriptions_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(addresses_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(courier_bp)
    app.register_blueprint(audit_bp)
    app.register_blueprint(webhooks_bp)
    app.register_blueprint(engagement_bp)
    app.register_blueprint(bonus_bp)
    app.register_blueprint(subscriptions_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app

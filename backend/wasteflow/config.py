# backend/wasteflow/config.py
from __future__ import annotations
import os
from datetime import timedelta


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name, default))


def _env_list(name: str, default: str) -> list[str]:
    return [item.strip() for item in os.environ.get(name, default).split(",") if item.strip()]


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/wasteflow.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///wasteflow.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # "sql" (Flask-SQLAlchemy) or "memory" (process-local, tests and demos)
    STORAGE_BACKEND = os.environ.get("STORAGE_BACKEND", "sql")

    # Signed tokens
    JWT_SECRET_KEY = os.environ.get("JWT_SECRET_KEY") or SECRET_KEY
    JWT_ISSUER = os.environ.get("JWT_ISSUER", "waste-collection-api")
    ACCESS_TOKEN_TTL = timedelta(minutes=_env_int("ACCESS_TOKEN_TTL_MINUTES", 15))
    REFRESH_TOKEN_TTL = timedelta(days=_env_int("REFRESH_TOKEN_TTL_DAYS", 7))

    BCRYPT_ROUNDS = _env_int("BCRYPT_ROUNDS", 12)

    IDEMPOTENCY_TTL = timedelta(hours=_env_int("IDEMPOTENCY_TTL_HOURS", 24))
    # Lease on an in-flight marker before the response is stored
    IDEMPOTENCY_IN_FLIGHT_TTL = timedelta(seconds=_env_int("IDEMPOTENCY_IN_FLIGHT_SECONDS", 60))

    # Register / login / refresh: attempts per client IP and endpoint
    AUTH_RATE_LIMIT_MAX = _env_int("AUTH_RATE_LIMIT_MAX", 10)
    AUTH_RATE_LIMIT_WINDOW = timedelta(minutes=_env_int("AUTH_RATE_LIMIT_WINDOW_MINUTES", 15))

    SUPPORTED_LANGUAGES = _env_list("SUPPORTED_LANGUAGES", "he,ru,ar,en")
    DEFAULT_LANGUAGE = os.environ.get("DEFAULT_LANGUAGE", "en")

    # Outbound webhooks
    WEBHOOK_TIMEOUT = float(os.environ.get("WEBHOOK_TIMEOUT", "10"))
    WEBHOOK_MAX_ATTEMPTS = _env_int("WEBHOOK_MAX_ATTEMPTS", 3)
    WEBHOOK_BACKOFF_SECONDS = float(os.environ.get("WEBHOOK_BACKOFF_SECONDS", "1"))
    WEBHOOK_DISPATCH_MODE = os.environ.get("WEBHOOK_DISPATCH_MODE", "background")
    WEBHOOK_MAX_WORKERS = _env_int("WEBHOOK_MAX_WORKERS", 4)

    # Orders and unit economics
    DEFAULT_ORDER_PRICE = _env_int("DEFAULT_ORDER_PRICE", 500)
    COURIER_PAYOUT_RATE = float(os.environ.get("COURIER_PAYOUT_RATE", "0.7"))
    CURRENCY = os.environ.get("CURRENCY", "ILS")

    # Sandbox traffic may only write under these prefixes
    SANDBOX_ALLOWED_WRITE_PREFIXES = (
        "/api/v1/orders",
        "/api/v1/courier/orders",
        "/api/v1/subscriptions",
        "/api/v1/bonus",
        "/api/v1/auth/login",
        "/api/v1/auth/refresh",
        "/api/v1/auth/logout",
        "/api/v1/auth/logout-all",
        "/api/v1/auth/sessions",
        "/api/v1/environment",
        "/api/v1/meta",
        "/api/v1/flags",
        "/api/v1/health",
        "/api/v1/openapi",
    )

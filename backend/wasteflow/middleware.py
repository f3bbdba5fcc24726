# Overview: Per-request hooks; request id, language, environment and the sandbox write guard.

"""
Request Pipeline (before any route decorator runs)

ORDER:
1. request id      X-Request-Id reused when supplied, else a fresh uuid4
2. language        Accept-Language (q-weighted), primary subtag, fallback en
3. environment     X-Environment: sandbox | production (default production)
4. sandbox guard   sandbox writes outside SANDBOX_ALLOWED_WRITE_PREFIXES
                   are rejected with sandbox.write_not_allowed

The outcome lives in g.request_context; require_auth later fills in the
user and the permission set. after_request echoes X-Request-Id,
Content-Language and X-Environment on every response, errors included.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field

from flask import current_app, g, request

from . import messages
from .errors import Forbidden

ENVIRONMENTS = ("production", "sandbox")
SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
MAX_REQUEST_ID_LENGTH = 128


@dataclass
class RequestContext:
    request_id: str
    language: str = "en"
    environment: str = "production"
    user: object = None
    permissions: set[str] = field(default_factory=set)

    @property
    def is_sandbox(self) -> bool:
        return self.environment == "sandbox"


def get_request_context() -> RequestContext:
    return g.request_context


def negotiate_language(header: str | None, supported, default: str) -> str:
    """
    Pick the best supported language from an Accept-Language header.

    "ru-RU,ru;q=0.9,en;q=0.8" -> "ru". Tags are reduced to their primary
    subtag; entries with q=0 or an unparsable q are ignored; ties keep
    header order.
    """
    if not header:
        return default

    candidates = []
    for index, part in enumerate(header.split(",")):
        piece = part.strip()
        if not piece:
            continue
        tag, _, params = piece.partition(";")
        weight = 1.0
        params = params.strip()
        if params.startswith("q="):
            try:
                weight = float(params[2:])
            except ValueError:
                continue
        if weight <= 0:
            continue
        primary = tag.strip().split("-")[0].lower()
        candidates.append((-weight, index, primary))

    for _, _, primary in sorted(candidates):
        if primary in supported:
            return primary
    return default


def is_sandbox_write_allowed(path: str, prefixes) -> bool:
    return any(path == prefix or path.startswith(prefix + "/") for prefix in prefixes)


def init_request_context():
    request_id = (request.headers.get("X-Request-Id") or "").strip()
    if not request_id or len(request_id) > MAX_REQUEST_ID_LENGTH:
        request_id = str(uuid.uuid4())

    language = negotiate_language(
        request.headers.get("Accept-Language"),
        current_app.config["SUPPORTED_LANGUAGES"],
        current_app.config["DEFAULT_LANGUAGE"],
    )

    environment = (request.headers.get("X-Environment") or "production").strip().lower()
    if environment not in ENVIRONMENTS:
        environment = "production"

    g.request_context = RequestContext(request_id=request_id, language=language, environment=environment)


def guard_sandbox_writes():
    context = get_request_context()
    if not context.is_sandbox or request.method in SAFE_METHODS:
        return None
    if is_sandbox_write_allowed(request.path, current_app.config["SANDBOX_ALLOWED_WRITE_PREFIXES"]):
        return None
    current_app.logger.info("Sandbox write blocked: %s %s", request.method, request.path)
    raise Forbidden(messages.SANDBOX_WRITE_NOT_ALLOWED, {"path": request.path})


def echo_context_headers(response):
    context = g.get("request_context")
    if context is not None:
        response.headers["X-Request-Id"] = context.request_id
        response.headers["Content-Language"] = context.language
        response.headers["X-Environment"] = context.environment
    return response


def init_app(app) -> None:
    app.before_request(init_request_context)
    app.before_request(guard_sandbox_writes)
    app.after_request(echo_context_headers)

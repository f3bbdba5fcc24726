# Overview: JSON response envelopes and query-string helpers shared by the routes.

from __future__ import annotations

from flask import jsonify, request

from .errors import ValidationError
from wasteflow.time_utils import parse_iso_datetime

DEFAULT_PER_PAGE = 20
MAX_PER_PAGE = 100


def success(data=None, *, key: str | None = None, params: dict | None = None, status: int = 200):
    """{"status": "success", "message"?: {key, params}, "data"?: ...}"""
    body = {"status": "success"}
    if key is not None:
        body["message"] = {"key": key, "params": params or {}}
    if data is not None:
        body["data"] = data
    return jsonify(body), status


def no_content():
    return "", 204


def paginated(page, items: list | None = None):
    """
    {"data": [...], "meta": {page, perPage, total, hasNext}}

    items defaults to to_dict() of every entity on the page.
    """
    if items is None:
        items = [item.to_dict() for item in page.items]
    return jsonify({
        "data": items,
        "meta": {
            "page": page.page,
            "perPage": page.per_page,
            "total": page.total,
            "hasNext": page.has_next,
        },
    })


def _positive_int(name: str, raw, default: int) -> int:
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValidationError(params={"field": name, "reason": "integer"})
    if value < 1:
        raise ValidationError(params={"field": name, "reason": "positive"})
    return value


def parse_pagination() -> tuple[int, int]:
    """page (default 1) and perPage (alias limit; default 20, capped at 100)."""
    page = _positive_int("page", request.args.get("page"), 1)
    raw_per_page = request.args.get("perPage", request.args.get("limit"))
    per_page = min(_positive_int("perPage", raw_per_page, DEFAULT_PER_PAGE), MAX_PER_PAGE)
    return page, per_page


def query_flag(name: str) -> bool:
    return (request.args.get(name) or "").strip().lower() in ("1", "true", "yes")


def parse_time_range():
    """Inclusive from / to bounds (ISO-8601) as naive UTC; either may be None."""
    bounds = []
    for name in ("from", "to"):
        try:
            bounds.append(parse_iso_datetime(request.args.get(name)))
        except ValueError:
            raise ValidationError(params={"field": name, "reason": "datetime"})
    return bounds[0], bounds[1]


def json_body() -> dict:
    """Request JSON object, {} when absent; any non-object body is a ValidationError."""
    data = request.get_json(silent=True)
    if data is None:
        if request.get_data(cache=True):
            raise ValidationError(params={"reason": "json"})
        return {}
    if not isinstance(data, dict):
        raise ValidationError(params={"reason": "object"})
    return data


def error_response(exc):
    """{"error": {"key", "params"}} with the error's HTTP status."""
    return jsonify(exc.to_dict()), exc.status_code

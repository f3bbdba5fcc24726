# Overview: Service-layer operations for webhooks; subscription management and signed delivery.

"""
Outbound Webhooks

DELIVERY CONTRACT:
- POST to the subscriber URL, body = compact JSON {id, event, timestamp, data}
- The body is serialized once; the HMAC-SHA256 signature is computed over
  exactly those bytes with the webhook's secret
- Headers: X-Webhook-Signature: sha256=<hex>, X-Webhook-Id, X-Webhook-Event
- Up to WEBHOOK_MAX_ATTEMPTS attempts, WEBHOOK_TIMEOUT each, sleeping
  WEBHOOK_BACKOFF_SECONDS * attempt between attempts
- One WebhookDelivery row per dispatch, updated after every attempt
- Final failure bumps the webhook's fail_count

Dispatch never raises into the request that triggered it. In "background"
mode deliveries run on a thread pool, each inside its own app context; in
"inline" mode (tests, CLI) they run before the request returns.
"""

from __future__ import annotations

import atexit
import hashlib
import hmac
import json
import secrets
import time
import uuid
from concurrent.futures import ThreadPoolExecutor

import httpx
from flask import current_app

from .. import messages
from ..errors import NotFound, ValidationError
from ..models import Webhook, WebhookDelivery
from ..models.events import WEBHOOK_EVENT_TYPES
from ..storage import Storage, get_storage, new_id
from . import audit_service
from wasteflow.time_utils import to_utc_z, utcnow

EXTENSION_KEY = "wasteflow.webhooks"
USER_AGENT = "WasteCollectionAPI-Webhooks/1.0"
RESPONSE_SNIPPET_LENGTH = 1000


def sign_payload(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the raw request body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, secret: str, header_value: str) -> bool:
    """Check an X-Webhook-Signature header value against body."""
    expected = f"sha256={sign_payload(body, secret)}"
    return hmac.compare_digest(expected, header_value or "")


def build_envelope(event_type: str, data: dict, test: bool = False) -> dict:
    envelope = {
        "id": str(uuid.uuid4()),
        "event": event_type,
        "timestamp": to_utc_z(utcnow()),
        "data": data,
    }
    if test:
        envelope["test"] = True
    return envelope


def serialize_envelope(envelope: dict) -> bytes:
    return json.dumps(envelope, separators=(",", ":"), default=str).encode("utf-8")


class WebhookDispatcher:
    """
    Fan-out of product events to subscribed webhooks.

    Lives in app.extensions["wasteflow.webhooks"]. The httpx client can be
    swapped (tests pass one built on httpx.MockTransport).
    """

    def __init__(self, app, client: httpx.Client | None = None):
        self.app = app
        self.mode = app.config["WEBHOOK_DISPATCH_MODE"]
        self.max_attempts = app.config["WEBHOOK_MAX_ATTEMPTS"]
        self.backoff = app.config["WEBHOOK_BACKOFF_SECONDS"]
        self.timeout = app.config["WEBHOOK_TIMEOUT"]
        self.client = client or httpx.Client(timeout=self.timeout)
        self.sleep = time.sleep
        self._executor = None
        if self.mode == "background":
            self._executor = ThreadPoolExecutor(
                max_workers=app.config["WEBHOOK_MAX_WORKERS"],
                thread_name_prefix="webhook",
            )
            atexit.register(self.shutdown)

    def shutdown(self, wait: bool = True) -> None:
        """Drain the worker pool (waiting for queued deliveries by default); later events go out inline."""
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None
            atexit.unregister(self.shutdown)

    # -- scheduling --

    def dispatch(self, store: Storage, event_type: str, data: dict) -> int:
        """Schedule delivery of event_type to every active subscriber; returns the count."""
        webhooks = store.list_subscribed_webhooks(event_type)
        for webhook in webhooks:
            envelope = build_envelope(event_type, data)
            self._schedule(webhook.id, envelope)
        return len(webhooks)

    def _schedule(self, webhook_id: str, envelope: dict) -> None:
        if self._executor is None:
            self._run(webhook_id, envelope)
        else:
            self._executor.submit(self._run_in_context, webhook_id, envelope)

    def _run_in_context(self, webhook_id: str, envelope: dict) -> None:
        with self.app.app_context():
            self._run(webhook_id, envelope)

    def _run(self, webhook_id: str, envelope: dict) -> None:
        try:
            store = get_storage()
            webhook = store.get_webhook(webhook_id)
            if webhook is None or webhook.status != "active":
                return
            self.deliver(store, webhook, envelope)
        except Exception:
            current_app.logger.exception(
                "Webhook dispatch crashed (webhook=%s, event=%s)", webhook_id, envelope.get("event")
            )

    # -- delivery --

    def deliver(self, store: Storage, webhook: Webhook, envelope: dict) -> WebhookDelivery:
        """
        Deliver envelope to webhook synchronously with retries.

        Returns the final state of the delivery record.
        """
        body = serialize_envelope(envelope)
        event_type = envelope["event"]
        headers = {
            "Content-Type": "application/json",
            "X-Webhook-Signature": f"sha256={sign_payload(body, webhook.secret)}",
            "X-Webhook-Id": envelope["id"],
            "X-Webhook-Event": event_type,
            "User-Agent": USER_AGENT,
        }

        delivery = store.add_webhook_delivery(WebhookDelivery(
            id=new_id(),
            webhook_id=webhook.id,
            event_type=event_type,
            payload=envelope,
            attempts=0,
            created_at=utcnow(),
        ))

        for attempt in range(1, self.max_attempts + 1):
            try:
                response = self.client.post(webhook.url, content=body, headers=headers, timeout=self.timeout)
                status_code = response.status_code
                snippet = response.text[:RESPONSE_SNIPPET_LENGTH]
                success = 200 <= status_code < 300
            except httpx.HTTPError as exc:
                status_code = 0
                snippet = (str(exc) or type(exc).__name__)[:RESPONSE_SNIPPET_LENGTH]
                success = False

            now = utcnow()
            changes = {"attempts": attempt, "status_code": status_code, "response": snippet}
            if success:
                changes["delivered_at"] = now
            delivery = store.update_webhook_delivery(delivery.id, changes) or delivery

            if success:
                store.update_webhook(webhook.id, {"last_triggered_at": now})
                return delivery

            current_app.logger.warning(
                "Webhook delivery attempt %d/%d failed (webhook=%s, event=%s, status=%s)",
                attempt, self.max_attempts, webhook.id, event_type, status_code,
            )
            if attempt < self.max_attempts:
                self.sleep(self.backoff * attempt)

        store.increment_webhook_failures(webhook.id)
        store.update_webhook(webhook.id, {"last_triggered_at": utcnow()})
        return delivery


def get_dispatcher() -> WebhookDispatcher:
    return current_app.extensions[EXTENSION_KEY]


# ==================== MANAGEMENT ====================

def _validate_url(url) -> str:
    if not isinstance(url, str) or not url.startswith(("http://", "https://")):
        raise ValidationError(params={"field": "url"})
    return url


def _validate_events(events) -> list[str]:
    if not isinstance(events, list) or not events:
        raise ValidationError(params={"field": "events", "allowed": list(WEBHOOK_EVENT_TYPES)})
    unknown = [event for event in events if event not in WEBHOOK_EVENT_TYPES]
    if unknown:
        raise ValidationError(params={"field": "events", "allowed": list(WEBHOOK_EVENT_TYPES)})
    return list(dict.fromkeys(events))


def create_webhook(store: Storage, actor, payload: dict) -> Webhook:
    """Register a webhook; the generated secret is only returned here."""
    webhook = store.add_webhook(Webhook(
        id=new_id(),
        url=_validate_url(payload.get("url")),
        secret=secrets.token_hex(32),
        events=_validate_events(payload.get("events")),
        status="active",
        fail_count=0,
        created_by=actor.id,
        created_at=utcnow(),
    ))
    audit_service.record(
        store,
        actor=actor,
        action="CREATE_WEBHOOK",
        entity="webhook",
        entity_id=webhook.id,
        metadata={"url": webhook.url, "events": webhook.events},
    )
    return webhook


def get_webhook_or_404(store: Storage, webhook_id: str) -> Webhook:
    webhook = store.get_webhook(webhook_id)
    if webhook is None:
        raise NotFound(messages.WEBHOOK_NOT_FOUND, {"webhookId": webhook_id})
    return webhook


def delete_webhook(store: Storage, actor, webhook_id: str) -> None:
    webhook = get_webhook_or_404(store, webhook_id)
    url = webhook.url
    store.delete_webhook(webhook_id)
    audit_service.record(
        store,
        actor=actor,
        action="DELETE_WEBHOOK",
        entity="webhook",
        entity_id=webhook_id,
        metadata={"url": url},
    )


def send_test(store: Storage, webhook_id: str) -> WebhookDelivery:
    """Deliver a {"test": true} ping inline and return the delivery record."""
    webhook = get_webhook_or_404(store, webhook_id)
    event_type = (webhook.events or list(WEBHOOK_EVENT_TYPES))[0]
    envelope = build_envelope(event_type, {"test": True}, test=True)
    return get_dispatcher().deliver(store, webhook, envelope)

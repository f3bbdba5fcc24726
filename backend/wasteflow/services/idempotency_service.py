# Overview: Service-layer operations for idempotency keys; replay of the first response to a retried write.

"""
Idempotent Writes

A client may send an Idempotency-Key header with any mutating request. The
first request with a given (user, "METHOD path", key) triple executes; every
retry within IDEMPOTENCY_TTL gets the stored response back, byte for byte.

PROTOCOL:
1. begin(): insert an 'in_flight' marker keyed by the triple's digest, leased for
   IDEMPOTENCY_IN_FLIGHT_TTL
   - insert wins: execute the handler
   - completed, unexpired record exists: replay it
   - in-flight record exists: Conflict(common.idempotency_in_progress)
   - expired record or lapsed lease: delete it and claim again
2. finish(): status < 500 is stored as 'completed' for IDEMPOTENCY_TTL; 5xx releases the marker
   so the client can retry
3. release(): handler raised; drop the marker
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass

from flask import current_app

from .. import messages
from ..errors import Conflict, ValidationError
from ..models import IdempotencyRecord
from ..storage import Storage
from wasteflow.time_utils import expires_in, is_expired, utcnow

HEADER = "Idempotency-Key"
REPLAY_HEADER = "Idempotent-Replayed"
IN_FLIGHT = "in_flight"
COMPLETED = "completed"
MAX_KEY_LENGTH = 255

# Expired-record cleanup + re-claim attempts before giving up
CLAIM_ATTEMPTS = 3


def record_id(user_id: str, endpoint: str, key: str) -> str:
    return hashlib.sha256(f"{user_id}:{endpoint}:{key}".encode("utf-8")).hexdigest()


@dataclass
class Claim:
    """Outcome of begin(): either we own the key, or there is a response to replay."""
    record_id: str
    replay: IdempotencyRecord | None = None


def begin(store: Storage, user_id: str, endpoint: str, key: str) -> Claim:
    if not key or len(key) > MAX_KEY_LENGTH:
        raise ValidationError(params={"field": HEADER, "maxLength": MAX_KEY_LENGTH})

    rid = record_id(user_id, endpoint, key)
    for _ in range(CLAIM_ATTEMPTS):
        now = utcnow()
        claimed = store.claim_idempotency_key(IdempotencyRecord(
            id=rid,
            key=key,
            user_id=user_id,
            endpoint=endpoint,
            state=IN_FLIGHT,
            created_at=now,
            expires_at=expires_in(current_app.config["IDEMPOTENCY_IN_FLIGHT_TTL"], now),
        ))
        if claimed is not None:
            return Claim(record_id=rid)

        existing = store.get_idempotency_record(rid)
        if existing is None:
            # Released between our insert and read
            continue
        if is_expired(existing.expires_at, now):
            store.release_idempotency_key(rid)
            continue
        if existing.state == IN_FLIGHT:
            raise Conflict(messages.COMMON_IDEMPOTENCY_IN_PROGRESS, {"key": key})
        return Claim(record_id=rid, replay=existing)

    raise Conflict(messages.COMMON_IDEMPOTENCY_IN_PROGRESS, {"key": key})


def finish(store: Storage, rid: str, status_code: int, body: str, content_type: str | None) -> None:
    if status_code >= 500:
        release(store, rid)
        return
    stored = store.complete_idempotency_key(rid, {
        "state": COMPLETED,
        "status_code": status_code,
        "response_body": body,
        "content_type": content_type,
        "expires_at": expires_in(current_app.config["IDEMPOTENCY_TTL"]),
    })
    if stored is None:
        current_app.logger.warning("Idempotency record %s vanished before completion", rid)


def release(store: Storage, rid: str) -> None:
    store.release_idempotency_key(rid)

# Overview: Service-layer operations for maintenance; retention of operational tables.

from __future__ import annotations

from datetime import timedelta

from ..storage import Storage
from wasteflow.time_utils import utcnow, window_start


def cleanup_security_events(store: Storage, *, retention_days: int = 90) -> int:
    """
    Delete security events older than retention_days.

    Audit logs are preserved for compliance.
    """
    cutoff = window_start(timedelta(days=retention_days))
    return store.purge_security_events(cutoff)


def purge_idempotency_records(store: Storage) -> int:
    """Delete idempotency records past their expiry."""
    return store.purge_expired_idempotency(utcnow())

# Overview: Storage backends and the factory used by create_app().

from flask import current_app

from .base import DuplicateKeyError, Page, Storage, StorageError, new_id
from .memory import MemoryStorage
from .sql import SqlStorage

EXTENSION_KEY = "wasteflow.storage"

BACKENDS = {
    "memory": MemoryStorage,
    "sql": SqlStorage,
}


def create_storage(backend: str) -> Storage:
    try:
        return BACKENDS[backend]()
    except KeyError:
        raise ValueError(f"Unknown STORAGE_BACKEND '{backend}' (expected one of {sorted(BACKENDS)})")


def get_storage() -> Storage:
    """Storage handle of the current application."""
    return current_app.extensions[EXTENSION_KEY]


__all__ = [
    "BACKENDS",
    "DuplicateKeyError",
    "EXTENSION_KEY",
    "MemoryStorage",
    "Page",
    "SqlStorage",
    "Storage",
    "StorageError",
    "create_storage",
    "get_storage",
    "new_id",
]

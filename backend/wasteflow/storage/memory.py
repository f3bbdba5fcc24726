# Overview: Process-local storage backend (tests, demos, sandbox instances).

from __future__ import annotations

import copy
import threading
from typing import Iterable, Sequence

from sqlalchemy import UniqueConstraint
from sqlalchemy import inspect as sa_inspect

from .base import Criterion, DuplicateKeyError, Storage


class _Table:
    """Rows of one model keyed by primary key, plus its unique constraints."""

    def __init__(self, model):
        mapper = sa_inspect(model)
        by_column_name = {}
        self.columns = {}
        for prop in mapper.column_attrs:
            column = prop.columns[0]
            self.columns[prop.key] = column
            by_column_name[column.name] = prop.key
        self.pk = by_column_name[mapper.primary_key[0].name]
        self.unique = [
            tuple(by_column_name[column.name] for column in constraint.columns)
            for constraint in model.__table__.constraints
            if isinstance(constraint, UniqueConstraint)
        ]
        self.rows: dict = {}

    def row_from(self, obj) -> dict:
        row = {}
        for attr, column in self.columns.items():
            value = getattr(obj, attr)
            if value is None and column.default is not None:
                default = column.default
                value = default.arg(None) if default.is_callable else default.arg
            row[attr] = value
        return row

    def collides(self, row: dict, replacing=None) -> bool:
        if replacing is None and row[self.pk] in self.rows:
            return True
        for attrs in self.unique:
            key = tuple(row[attr] for attr in attrs)
            if any(value is None for value in key):
                continue
            for pk, existing in self.rows.items():
                if pk == replacing:
                    continue
                if tuple(existing[attr] for attr in attrs) == key:
                    return True
        return False


def _matches(row: dict, criteria: Iterable[Criterion]) -> bool:
    for attr, op, value in criteria:
        current = row.get(attr)
        if op == "eq":
            ok = current == value
        elif op == "ne":
            ok = current != value
        elif op == "in":
            ok = current in value
        elif op == "is_null":
            ok = (current is None) == bool(value)
        elif current is None:
            ok = False
        elif op == "lt":
            ok = current < value
        elif op == "le":
            ok = current <= value
        elif op == "gt":
            ok = current > value
        elif op == "ge":
            ok = current >= value
        else:
            raise ValueError(f"Unsupported operator: {op}")
        if not ok:
            return False
    return True


class MemoryStorage(Storage):
    """
    Dict-backed storage guarded by one re-entrant lock.

    Every read materializes a fresh transient model instance from a deep copy
    of the row, so callers can never alias stored state.
    """

    name = "memory"

    def __init__(self):
        self._lock = threading.RLock()
        self._tables: dict = {}

    def _table(self, model) -> _Table:
        table = self._tables.get(model)
        if table is None:
            table = self._tables[model] = _Table(model)
        return table

    @staticmethod
    def _materialize(model, row: dict):
        return model(**copy.deepcopy(row))

    def _store(self, obj, *, strict: bool):
        model = type(obj)
        with self._lock:
            table = self._table(model)
            row = table.row_from(obj)
            if table.collides(row):
                if strict:
                    raise DuplicateKeyError(f"{model.__tablename__}: duplicate key")
                return None
            table.rows[row[table.pk]] = copy.deepcopy(row)
            return self._materialize(model, row)

    def _insert(self, obj):
        return self._store(obj, strict=True)

    def _insert_if_absent(self, obj):
        return self._store(obj, strict=False)

    def _get(self, model, pk):
        with self._lock:
            row = self._table(model).rows.get(pk)
            return self._materialize(model, row) if row is not None else None

    def _select(self, model, criteria) -> list[dict]:
        criteria = list(criteria)
        return [row for row in self._table(model).rows.values() if _matches(row, criteria)]

    def _find(
        self,
        model,
        criteria: Iterable[Criterion] = (),
        order_by: Sequence[str] = (),
        limit: int | None = None,
        offset: int = 0,
    ) -> list:
        with self._lock:
            rows = self._select(model, criteria)
            # Stable sorts applied from the least significant key
            for key in reversed(list(order_by)):
                descending = key.startswith("-")
                attr = key.lstrip("-")
                rows.sort(key=lambda row: (row[attr] is None, row[attr]), reverse=descending)
            end = None if limit is None else offset + limit
            return [self._materialize(model, row) for row in rows[offset:end]]

    def _count(self, model, criteria: Iterable[Criterion] = ()) -> int:
        with self._lock:
            return len(self._select(model, criteria))

    def _update(self, model, pk, changes: dict, expected: dict | None = None):
        with self._lock:
            table = self._table(model)
            row = table.rows.get(pk)
            if row is None:
                return None
            if expected and any(row.get(attr) != value for attr, value in expected.items()):
                return None
            updated = dict(row)
            updated.update(copy.deepcopy(changes))
            if table.collides(updated, replacing=pk):
                raise DuplicateKeyError(f"{model.__tablename__}: duplicate key")
            table.rows[pk] = updated
            return self._materialize(model, updated)

    def _increment(self, model, pk, attr: str, amount: int = 1):
        with self._lock:
            table = self._table(model)
            row = table.rows.get(pk)
            if row is None:
                return None
            row[attr] = (row[attr] or 0) + amount
            return self._materialize(model, row)

    def _delete(self, model, pk) -> bool:
        with self._lock:
            return self._table(model).rows.pop(pk, None) is not None

    def reset(self) -> None:
        with self._lock:
            self._tables.clear()

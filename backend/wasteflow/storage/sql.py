# Overview: Relational storage backend on the Flask-SQLAlchemy session.

from __future__ import annotations

from typing import Iterable, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from .base import Criterion, DuplicateKeyError, Storage


def _clause(model, criterion: Criterion):
    attr, op, value = criterion
    column = getattr(model, attr)
    if op == "eq":
        return column.is_(None) if value is None else column == value
    if op == "ne":
        return column.is_not(None) if value is None else column != value
    if op == "in":
        return column.in_(list(value))
    if op == "is_null":
        return column.is_(None) if value else column.is_not(None)
    if op == "lt":
        return column < value
    if op == "le":
        return column <= value
    if op == "gt":
        return column > value
    if op == "ge":
        return column >= value
    raise ValueError(f"Unsupported operator: {op}")


def _pk_column(model):
    mapper = sa_inspect(model)
    pk = mapper.primary_key[0]
    for prop in mapper.column_attrs:
        if prop.columns[0] is pk:
            return getattr(model, prop.key)
    raise ValueError(f"{model.__name__} has no mapped primary key")


class SqlStorage(Storage):
    """
    Storage on db.session.

    Each primitive commits its own unit of work. Compare-and-swap is an
    UPDATE ... WHERE carrying the expected values, judged by rowcount.
    Uniqueness is enforced by the database constraints declared on the models.
    """

    name = "sql"

    def _insert(self, obj):
        db.session.add(obj)
        try:
            db.session.commit()
        except IntegrityError as exc:
            db.session.rollback()
            raise DuplicateKeyError(f"{type(obj).__tablename__}: duplicate key") from exc
        return obj

    def _insert_if_absent(self, obj):
        try:
            return self._insert(obj)
        except DuplicateKeyError:
            return None

    def _get(self, model, pk):
        return db.session.get(model, pk)

    def _query(self, model, criteria: Iterable[Criterion]):
        stmt = select(model)
        clauses = [_clause(model, criterion) for criterion in criteria]
        if clauses:
            stmt = stmt.where(*clauses)
        return stmt

    def _find(
        self,
        model,
        criteria: Iterable[Criterion] = (),
        order_by: Sequence[str] = (),
        limit: int | None = None,
        offset: int = 0,
    ) -> list:
        stmt = self._query(model, criteria)
        for key in order_by:
            column = getattr(model, key.lstrip("-"))
            stmt = stmt.order_by(column.desc() if key.startswith("-") else column.asc())
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(db.session.execute(stmt).scalars().all())

    def _count(self, model, criteria: Iterable[Criterion] = ()) -> int:
        stmt = select(func.count()).select_from(model)
        clauses = [_clause(model, criterion) for criterion in criteria]
        if clauses:
            stmt = stmt.where(*clauses)
        return db.session.execute(stmt).scalar_one()

    def _update(self, model, pk, changes: dict, expected: dict | None = None):
        pk_column = _pk_column(model)
        clauses = [pk_column == pk]
        for attr, value in (expected or {}).items():
            clauses.append(_clause(model, (attr, "eq", value)))
        stmt = (
            update(model)
            .where(*clauses)
            .values(**changes)
            .execution_options(synchronize_session=False)
        )
        try:
            result = db.session.execute(stmt)
            db.session.commit()
        except IntegrityError as exc:
            db.session.rollback()
            raise DuplicateKeyError(f"{model.__tablename__}: duplicate key") from exc
        if result.rowcount == 0:
            return None
        return db.session.get(model, pk, populate_existing=True)

    def _increment(self, model, pk, attr: str, amount: int = 1):
        column = getattr(model, attr)
        stmt = (
            update(model)
            .where(_pk_column(model) == pk)
            .values({column: column + amount})
            .execution_options(synchronize_session=False)
        )
        result = db.session.execute(stmt)
        db.session.commit()
        if result.rowcount == 0:
            return None
        return db.session.get(model, pk, populate_existing=True)

    def _delete(self, model, pk) -> bool:
        stmt = delete(model).where(_pk_column(model) == pk).execution_options(synchronize_session=False)
        result = db.session.execute(stmt)
        db.session.commit()
        return result.rowcount > 0

    def create_schema(self) -> None:
        db.create_all()

    def reset(self) -> None:
        db.session.remove()
        db.drop_all()
        db.create_all()

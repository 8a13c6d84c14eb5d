"""Storage port used by the queue core.

Everything the workers, the dispatcher and the task creator need from the
database goes through four primitives: keyed upsert with merge, atomic
numeric increment (alone or in the same transaction as a conditional write),
bounded multi-item write batch, and simple queries.
Keeping the surface this small is what lets the core run on any SQL backend
SQLAlchemy speaks to.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, TypeVar

from sqlalchemy import func, inspect, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from atsqueue.core.errors import BatchSizeError

logger = logging.getLogger(__name__)

M = TypeVar("M")

MAX_BATCH_ITEMS = 500


@dataclass
class WriteOp:
    """One keyed upsert inside a write batch."""

    model: type
    key: Any
    values: dict[str, Any] = field(default_factory=dict)


def _pk_name(model: type) -> str:
    return inspect(model).primary_key[0].name


class Store:
    def __init__(self, session_factory: sessionmaker, max_batch_items: int = MAX_BATCH_ITEMS):
        self._session_factory = session_factory
        self.max_batch_items = max_batch_items

    @contextmanager
    def session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # -- reads -------------------------------------------------------------

    def get(self, model: type[M], key: Any) -> M | None:
        with self.session() as db:
            return db.get(model, key)

    def query(
        self,
        model: type[M],
        *criteria: Any,
        order_by: Any = None,
        limit: int | None = None,
    ) -> list[M]:
        stmt = select(model).where(*criteria)
        if order_by is not None:
            stmt = stmt.order_by(*order_by) if isinstance(order_by, (list, tuple)) else stmt.order_by(order_by)
        if limit is not None:
            stmt = stmt.limit(limit)
        with self.session() as db:
            return list(db.scalars(stmt).all())

    def count(self, model: type, *criteria: Any) -> int:
        stmt = select(func.count()).select_from(model).where(*criteria)
        with self.session() as db:
            return int(db.scalar(stmt) or 0)

    def count_by(self, column: Any, *criteria: Any) -> dict[Any, int]:
        stmt = select(column, func.count()).where(*criteria).group_by(column)
        with self.session() as db:
            return {value: int(n) for value, n in db.execute(stmt).all()}

    # -- writes ------------------------------------------------------------

    def upsert(self, model: type, key: Any, values: dict[str, Any]) -> None:
        """Insert or merge `values` into the row identified by `key`.

        Fields not named in `values` keep their stored value. A concurrent
        insert of the same key is resolved by retrying as an update.
        """
        try:
            with self.session() as db:
                _merge(db, model, key, values)
        except IntegrityError:
            with self.session() as db:
                _merge(db, model, key, values)

    def increment(self, model: type, key: Any, **deltas: int) -> int:
        """Atomically add `deltas` to numeric columns. Returns rows matched."""
        if not deltas:
            return 0
        with self.session() as db:
            return db.execute(_increment_stmt(model, key, deltas)).rowcount

    def update_where(self, model: type, key: Any, values: dict[str, Any], *conditions: Any) -> bool:
        """Conditional write: applies `values` only if `conditions` still hold."""
        with self.session() as db:
            return db.execute(_update_stmt(model, key, values, conditions)).rowcount == 1

    def update_where_and_increment(
        self,
        model: type,
        key: Any,
        values: dict[str, Any],
        conditions: Sequence[Any],
        counter_model: type,
        counter_key: Any,
        **deltas: int,
    ) -> bool:
        """Conditional write plus counter increments in one transaction.

        The increments only apply when the conditional write wins; a failure
        in either statement rolls back both.
        """
        with self.session() as db:
            won = db.execute(_update_stmt(model, key, values, conditions)).rowcount == 1
            if won and deltas:
                matched = db.execute(_increment_stmt(counter_model, counter_key, deltas)).rowcount
                if not matched:
                    logger.warning(
                        "counter row not found", extra={"table": counter_model.__tablename__, "key": counter_key}
                    )
            return won

    def write_batch(self, ops: Sequence[WriteOp]) -> int:
        """Apply every op in one transaction; all or nothing."""
        if len(ops) > self.max_batch_items:
            raise BatchSizeError(f"batch of {len(ops)} exceeds max {self.max_batch_items} items")
        with self.session() as db:
            for op in ops:
                _merge(db, op.model, op.key, op.values)
        return len(ops)

    def insert_all(self, rows: Iterable[Any]) -> None:
        with self.session() as db:
            db.add_all(list(rows))


def _merge(db: Session, model: type, key: Any, values: dict[str, Any]) -> None:
    row = db.get(model, key)
    if row is None:
        row = model(**{_pk_name(model): key}, **values)
        db.add(row)
    else:
        for name, value in values.items():
            setattr(row, name, value)
    # duplicates within one batch must see the pending row
    db.flush()


def _update_stmt(model: type, key: Any, values: dict[str, Any], conditions: Sequence[Any]):
    table = model.__table__
    pk = table.c[_pk_name(model)]
    return update(table).where(pk == key, *conditions).values(**values)


def _increment_stmt(model: type, key: Any, deltas: dict[str, int]):
    table = model.__table__
    pk = table.c[_pk_name(model)]
    return update(table).where(pk == key).values({table.c[name]: table.c[name] + delta for name, delta in deltas.items()})

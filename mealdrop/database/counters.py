"""
mealdrop.database.counters — Atomic Counter Primitives
=======================================================

The ledger's only way to change a number in the store.  Each primitive is a
single ``UPDATE … WHERE … RETURNING`` statement, so the read, the guard and
the write happen inside the database under the row's write lock.  Nothing
here reads a value into Python and writes it back.

A counter is addressed by a mapped integer column plus the row's primary
key::

    from mealdrop.database.counters import Counter, increment

    meals = Counter(User.meals_available, "u1")
    new_value = increment(session, meals, 2)

All primitives run inside the caller's transaction; atomicity across several
counters comes from :func:`mealdrop.database.engine.get_session`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Column, Table, inspect, select, update
from sqlalchemy.orm import InstrumentedAttribute, Session

__all__ = [
    "Counter",
    "CounterNotFound",
    "compare_and_decrement",
    "compare_and_increment_if_below",
    "compare_and_set",
    "increment",
    "read",
]


class CounterNotFound(LookupError):
    """The row addressed by a counter does not exist."""


@dataclass(frozen=True, slots=True)
class Counter:
    """An integer column on one row, addressed by primary key."""

    attribute: InstrumentedAttribute
    key: Any

    @property
    def table(self) -> Table:
        return self.attribute.class_.__table__

    @property
    def column(self) -> Column:
        return self.table.c[self.attribute.key]

    @property
    def pk_column(self) -> Column:
        return inspect(self.attribute.class_).primary_key[0]

    def __str__(self) -> str:
        return f"{self.table.name}.{self.column.name}[{self.key}]"


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def read(session: Session, counter: Counter) -> int:
    """Return the committed-or-own-transaction value of *counter*."""
    value = session.scalar(
        select(counter.column).where(counter.pk_column == counter.key)
    )
    if value is None:
        raise CounterNotFound(str(counter))
    return int(value)


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------
def increment(session: Session, counter: Counter, delta: int) -> int:
    """Add *delta* (may be negative) and return the new value."""
    new_value = session.execute(
        update(counter.table)
        .where(counter.pk_column == counter.key)
        .values({counter.column: counter.column + delta})
        .returning(counter.column)
    ).scalar_one_or_none()
    if new_value is None:
        raise CounterNotFound(str(counter))
    return int(new_value)


def compare_and_increment_if_below(
    session: Session, counter: Counter, delta: int, ceiling: int
) -> tuple[int, bool]:
    """Add *delta* only if the result stays ``<= ceiling``.

    Returns ``(value, accepted)``; when rejected, *value* is the unchanged
    current value.
    """
    new_value = session.execute(
        update(counter.table)
        .where(
            counter.pk_column == counter.key,
            counter.column + delta <= ceiling,
        )
        .values({counter.column: counter.column + delta})
        .returning(counter.column)
    ).scalar_one_or_none()
    if new_value is None:
        return read(session, counter), False
    return int(new_value), True


def compare_and_decrement(
    session: Session, counter: Counter, amount: int, floor: int = 0
) -> tuple[int, bool]:
    """Subtract *amount* only if the result stays ``>= floor``.

    Returns ``(value, accepted)`` like :func:`compare_and_increment_if_below`.
    """
    new_value = session.execute(
        update(counter.table)
        .where(
            counter.pk_column == counter.key,
            counter.column - amount >= floor,
        )
        .values({counter.column: counter.column - amount})
        .returning(counter.column)
    ).scalar_one_or_none()
    if new_value is None:
        return read(session, counter), False
    return int(new_value), True


def compare_and_set(
    session: Session,
    model: type,
    key: Any,
    *conditions,
    **values,
) -> bool:
    """Write *values* to the row only if every condition holds right now.

    Returns True when this call performed the write.  Among concurrent
    callers racing on the same transition exactly one sees True, because the
    conditions are re-evaluated under the row lock::

        won = compare_and_set(
            session, FlashSponsorship, sid,
            FlashSponsorship.is_completed.is_(False),
            is_completed=True,
        )
    """
    table: Table = model.__table__
    pk = inspect(model).primary_key[0]
    result = session.execute(
        update(table)
        .where(pk == key, *conditions)
        .values(**values)
        .returning(pk)
    )
    return result.first() is not None

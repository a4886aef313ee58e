# Overview: Service-layer operations for order numbering; encapsulates business logic and database work.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import OrderSequence


ORDER_SEQUENCE = "ORDER"


class SequenceError(Exception):
    """Raised when sequence operations fail."""
    pass


def _increment(name: str) -> int | None:
    stmt = (
        update(OrderSequence)
        .where(OrderSequence.name == name)
        .values(next_number=OrderSequence.next_number + 1)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    db.session.flush()
    current = (
        db.session.query(OrderSequence.next_number)
        .filter_by(name=name)
        .scalar()
    )
    return current - 1


def allocate_number(name: str) -> int:
    """
    Atomically allocate the next number of a named sequence.

    Runs inside the caller's transaction (no commit): the UPDATE takes a
    row lock, so the number is only consumed if the caller commits.
    """
    if not name:
        raise SequenceError("sequence name is required")

    number = _increment(name)
    if number is not None:
        return number

    # First use: create the row. A concurrent creator wins the unique
    # constraint, then we fall back to incrementing its row.
    try:
        with db.session.begin_nested():
            db.session.add(OrderSequence(name=name, next_number=2))
        return 1
    except IntegrityError:
        number = _increment(name)
        if number is None:
            raise SequenceError(f"sequence {name} could not be allocated")
        return number


def next_order_number() -> str:
    """Allocate the next human-readable order number (ORD-000001)."""
    return f"ORD-{allocate_number(ORDER_SEQUENCE):06d}"

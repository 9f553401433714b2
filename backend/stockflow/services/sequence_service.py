# Overview: Monotonic counters behind human-readable codes (ADJ-00001, TR-00001, ...).

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, ValidationError
from ..extensions import db
from ..models import DocumentSequence


SEQUENCE_ADJUSTMENT = ("adjustment", "ADJ")
SEQUENCE_TRANSFER = ("transfer", "TR")
SEQUENCE_RETURN = ("return", "RET")
SEQUENCE_LEDGER_ENTRY = ("ledger_entry", "IT")


def format_code(prefix: str, number: int, pad: int = 5) -> str:
    return f"{prefix}-{number:0{pad}d}"


def next_code(name: str, prefix: str, pad: int = 5) -> str:
    """
    Allocate the next number for a named sequence and format it.

    Runs inside the caller's transaction: the counter row is incremented with
    a single UPDATE ... SET next_number = next_number + 1, so a rolled-back
    step releases its number and two committed steps never share one.

    The first allocation inserts the counter row. A concurrent first insert
    trips the unique constraint; that surfaces as ConflictError so the whole
    step is retried (the session must be rolled back, not patched up here).
    """
    if not name:
        raise ValidationError("sequence name is required")
    if not prefix:
        raise ValidationError("sequence prefix is required")

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.name == name)
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(name=name)
            .scalar()
        )
        number = current - 1
    else:
        db.session.add(DocumentSequence(name=name, next_number=2))
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise ConflictError(f"Sequence {name} initialized concurrently") from exc
        number = 1

    return format_code(prefix, number, pad)

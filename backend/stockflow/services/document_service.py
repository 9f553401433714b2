# Overview: Shared plumbing for workflow documents (status guards, conditional transitions, input checks).

from __future__ import annotations

from typing import NamedTuple

from flask import current_app
from sqlalchemy import update

from ..errors import ConflictError, InvalidStateTransitionError, NotFoundError, ValidationError
from ..extensions import db
from ..time_utils import parse_iso_datetime
from .concurrency import lock_for_update


class StepResult(NamedTuple):
    """What a workflow step returns: the document plus everything it wrote."""
    document: object
    entries: list
    events: list


def load_document(model, document_id: int, document_type: str, *, lock: bool = False):
    if document_id is None:
        raise ValidationError(f"{document_type.lower()} id is required")
    query = db.session.query(model).filter_by(id=document_id)
    if lock:
        query = lock_for_update(query)
    doc = query.first()
    if not doc:
        raise NotFoundError(document_type, document_id)
    return doc


def load_document_by_code(model, code: str, document_type: str):
    doc = db.session.query(model).filter_by(code=code).first()
    if not doc:
        raise NotFoundError(document_type, code)
    return doc


def require_status(doc, document_type: str, action: str, allowed) -> None:
    if doc.status not in allowed:
        current_app.logger.warning(
            "Rejected %s on %s %s: status is %s", action, document_type, doc.code, doc.status
        )
        raise InvalidStateTransitionError(document_type, doc.code, doc.status, action)


def transition_status(model, doc, *, document_type: str, action: str, from_statuses, to_status: str, **fields) -> None:
    """
    Move doc to to_status only if its stored status is still one of from_statuses.

    Issued as UPDATE ... WHERE id = :id AND status IN (:from_statuses) so two
    concurrent calls cannot both win. Zero affected rows means another writer
    got there first: ConflictError (retryable; the retry re-reads the status
    and reports InvalidStateTransitionError if the move is no longer legal).
    """
    previous = doc.status
    stmt = (
        update(model)
        .where(model.id == doc.id, model.status.in_(tuple(from_statuses)))
        .values(status=to_status, **fields)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        current_app.logger.warning(
            "Lost status race: %s %s %s (expected one of %s)",
            action,
            document_type,
            doc.code,
            ", ".join(from_statuses),
        )
        raise ConflictError(f"{document_type} {doc.code} was modified concurrently")

    # Keep the in-session object in step with the row
    db.session.refresh(doc)
    current_app.logger.info(
        "%s %s: %s -> %s (%s)", document_type, doc.code, previous, to_status, action
    )


def ensure_deletable(doc, document_type: str, deletable_statuses) -> None:
    if doc.status not in deletable_statuses:
        current_app.logger.warning(
            "Rejected delete of %s %s in %s status", document_type, doc.code, doc.status
        )
        raise InvalidStateTransitionError(document_type, doc.code, doc.status, "delete")


# =============================================================================
# Input checks (run before any write)
# =============================================================================

def require_int(value, field: str, *, minimum: int | None = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer")
    if minimum is not None and value < minimum:
        raise ValidationError(f"{field} must be >= {minimum}")
    return value


def require_datetime(value, field: str):
    """Parse an optional ISO-8601 value; None and blank stay None."""
    try:
        return parse_iso_datetime(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an ISO-8601 datetime") from None


def require_choice(value, field: str, choices) -> str:
    if value not in choices:
        raise ValidationError(f"{field} must be one of: {', '.join(choices)}")
    return value


def require_lines(lines, document_type: str) -> list[dict]:
    if not lines or not isinstance(lines, (list, tuple)):
        raise ValidationError(f"{document_type} requires at least one line")
    for line in lines:
        if not isinstance(line, dict):
            raise ValidationError(f"{document_type} lines must be objects")
        if line.get("product_id") is None:
            raise ValidationError("product_id is required on every line")
    return list(lines)


def reject_duplicate_products(product_ids) -> None:
    seen = set()
    for product_id in product_ids:
        if product_id in seen:
            raise ValidationError(f"Product {product_id} appears on more than one line")
        seen.add(product_id)

"""
ORM-level append-only and terminal-state guards.

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database. The listeners registered here raise ImmutableRecordError from those
hooks, so the flush fails and the surrounding workflow step rolls back.

Protected records:

Entity              | When immutable
--------------------|-----------------------------------------
LedgerEntry         | Always (from creation)
AuditEvent          | Always (from creation)
Adjustment/Transfer | Content fields once Completed, Rejected
/Return             | or Cancelled; delete once stock moved
*Line               | Once the parent is terminal; delete once
                    | the parent moved stock

Status transitions are written with conditional UPDATE statements
(services/document_service.py) and do not pass through these hooks. Only
ORM unit-of-work changes are checked.

Bulk Core statements (table.delete(), drop_all) bypass mapper events. They
are used only by test fixtures and `flask system reset-db`.
"""
from __future__ import annotations

from flask import current_app
from sqlalchemy import event, inspect, select

from .errors import ImmutableRecordError
from .models import (
    Adjustment,
    AdjustmentLine,
    AuditEvent,
    LedgerEntry,
    Return,
    ReturnLine,
    Transfer,
    TransferLine,
)

TERMINAL_STATUSES = frozenset({"Completed", "Rejected", "Cancelled"})

# Statuses in which stock has already moved (or the outcome is final); no deletes.
LOCKED_STATUSES = {
    "Adjustment": frozenset({"Completed", "Rejected"}),
    "Transfer": frozenset({"In Transit", "Partially Received", "Completed"}),
    "Return": frozenset({"Completed"}),
}

_LINE_PARENTS = {
    AdjustmentLine: ("Adjustment", Adjustment, "adjustment_id"),
    TransferLine: ("Transfer", Transfer, "transfer_id"),
    ReturnLine: ("Return", Return, "return_id"),
}

# Lifecycle columns written by status transitions; everything else is content
AUDIT_FIELDS = frozenset({
    "status",
    "submitted_at",
    "approved_at",
    "approved_by_user_id",
    "approval_notes",
    "shipped_at",
    "shipped_by_user_id",
    "received_by_user_id",
    "completion_date",
    "completed_at",
    "completed_by_user_id",
    "processed_by_user_id",
    "processed_date",
    "rejected_at",
    "rejected_by_user_id",
    "rejection_reason",
    "cancelled_at",
    "cancelled_by_user_id",
    "cancellation_reason",
})


def _blocked(entity_type: str, entity_id, operation: str, reason: str):
    current_app.logger.error(
        "Immutability violation blocked: %s on %s %s (%s)",
        operation,
        entity_type,
        entity_id,
        reason,
    )
    raise ImmutableRecordError(f"Cannot {operation.lower()} {entity_type} {entity_id}: {reason}")


def _check_append_only_update(mapper, connection, target):
    _blocked(type(target).__name__, target.id, "UPDATE", "append-only record")


def _check_append_only_delete(mapper, connection, target):
    _blocked(type(target).__name__, target.id, "DELETE", "append-only record")


def _previous_status(target) -> str | None:
    history = inspect(target).attrs.status.history
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    return target.status


def _check_document_update(mapper, connection, target):
    previous = _previous_status(target)
    if previous not in TERMINAL_STATUSES:
        return

    state = inspect(target)
    changed = [
        attr.key
        for attr in state.mapper.column_attrs
        if state.attrs[attr.key].history.has_changes() and attr.key not in AUDIT_FIELDS
    ]
    if changed:
        _blocked(
            type(target).__name__,
            target.code,
            "UPDATE",
            f"{', '.join(sorted(changed))} cannot change in {previous} status",
        )


def _check_document_delete(mapper, connection, target):
    document_type = type(target).__name__
    status = _previous_status(target)
    if status in LOCKED_STATUSES[document_type]:
        _blocked(document_type, target.code, "DELETE", f"document is {status}")


def _parent_status(connection, target) -> tuple[str, str | None]:
    document_type, parent_model, fk_name = _LINE_PARENTS[type(target)]
    parent_id = getattr(target, fk_name)
    if parent_id is None:
        return document_type, None
    status = connection.execute(
        select(parent_model.status).where(parent_model.id == parent_id)
    ).scalar()
    return document_type, status


def _check_line_update(mapper, connection, target):
    document_type, status = _parent_status(connection, target)
    if status in TERMINAL_STATUSES:
        _blocked(f"{document_type}Line", target.id, "UPDATE", f"parent {document_type.lower()} is {status}")


def _check_line_delete(mapper, connection, target):
    document_type, status = _parent_status(connection, target)
    if status in LOCKED_STATUSES[document_type]:
        _blocked(f"{document_type}Line", target.id, "DELETE", f"parent {document_type.lower()} is {status}")


_LISTENERS = [
    (LedgerEntry, "before_update", _check_append_only_update),
    (LedgerEntry, "before_delete", _check_append_only_delete),
    (AuditEvent, "before_update", _check_append_only_update),
    (AuditEvent, "before_delete", _check_append_only_delete),
    (Adjustment, "before_update", _check_document_update),
    (Adjustment, "before_delete", _check_document_delete),
    (Transfer, "before_update", _check_document_update),
    (Transfer, "before_delete", _check_document_delete),
    (Return, "before_update", _check_document_update),
    (Return, "before_delete", _check_document_delete),
    (AdjustmentLine, "before_update", _check_line_update),
    (AdjustmentLine, "before_delete", _check_line_delete),
    (TransferLine, "before_update", _check_line_update),
    (TransferLine, "before_delete", _check_line_delete),
    (ReturnLine, "before_update", _check_line_update),
    (ReturnLine, "before_delete", _check_line_delete),
]


def register_immutability_listeners() -> None:
    """Register all guards. Safe to call more than once (one per app)."""
    for target, name, fn in _LISTENERS:
        if not event.contains(target, name, fn):
            event.listen(target, name, fn)


def unregister_immutability_listeners() -> None:
    """Remove all guards (tests only)."""
    for target, name, fn in _LISTENERS:
        if event.contains(target, name, fn):
            event.remove(target, name, fn)

# backend/stockflow/services/return_service.py
"""
Returned stock service.

WHY: Returned goods (from customers, to suppliers, internal) need an approved
decision per line before stock changes. Processing an approved return puts
"Return to Stock" lines back on the shelf through the movement coordinator;
every other disposition is recorded in the audit log only.

LIFECYCLE:
1. DRAFT: Created, lines editable
2. PENDING: Submitted for approval
3. APPROVED: Manager approved, ready to process
4. COMPLETED: Processed (stock restored where the action says so)
5. CANCELLED: Closed before processing
"""
from __future__ import annotations

from flask import current_app

from ..errors import ValidationError
from ..extensions import db
from ..models import Return, ReturnLine
from ..time_utils import utcnow
from .audit_service import append_audit_event
from .concurrency import run_step
from .directory_service import require_product, require_user, require_warehouse
from .document_service import (
    StepResult,
    ensure_deletable,
    load_document,
    load_document_by_code,
    require_choice,
    require_datetime,
    require_int,
    require_lines,
    require_status,
    transition_status,
)
from .movement_service import MOVEMENT_RETURN, Reference, _apply_movement_inner
from .sequence_service import SEQUENCE_RETURN, next_code


DOCUMENT_TYPE = "Return"

# Return status constants
RETURN_STATUS_DRAFT = "Draft"
RETURN_STATUS_PENDING = "Pending"
RETURN_STATUS_APPROVED = "Approved"
RETURN_STATUS_COMPLETED = "Completed"
RETURN_STATUS_CANCELLED = "Cancelled"

SOURCE_TYPE_CUSTOMER = "Customer"
SOURCE_TYPE_SUPPLIER = "Supplier"
SOURCE_TYPE_INTERNAL = "Internal"
SOURCE_TYPE_OTHER = "Other"
SOURCE_TYPES = (SOURCE_TYPE_CUSTOMER, SOURCE_TYPE_SUPPLIER, SOURCE_TYPE_INTERNAL, SOURCE_TYPE_OTHER)

RELATED_DOCUMENT_TYPES = ("Order", "Purchase")

RETURN_REASONS = (
    "Damaged Goods",
    "Wrong Item Shipped",
    "Quality Issue",
    "Customer Return",
    "Expired Product",
    "Recall",
    "Overstock",
    "Other",
)

RETURN_CONDITIONS = ("New", "Used", "Damaged", "Expired", "Defective")

ACTION_RETURN_TO_STOCK = "Return to Stock"
ACTION_RETURN_TO_SUPPLIER = "Return to Supplier"
ACTION_DISPOSE = "Dispose"
ACTION_REPAIR = "Repair"
ACTION_PENDING_INSPECTION = "Pending Inspection"
RETURN_ACTIONS = (
    ACTION_RETURN_TO_STOCK,
    ACTION_RETURN_TO_SUPPLIER,
    ACTION_DISPOSE,
    ACTION_REPAIR,
    ACTION_PENDING_INSPECTION,
)

EDITABLE_STATUSES = (RETURN_STATUS_DRAFT, RETURN_STATUS_PENDING)
DELETABLE_STATUSES = (RETURN_STATUS_DRAFT, RETURN_STATUS_CANCELLED)

# action -> (allowed current statuses, target status)
RETURN_TRANSITIONS = {
    "submit": ((RETURN_STATUS_DRAFT,), RETURN_STATUS_PENDING),
    "approve": ((RETURN_STATUS_PENDING,), RETURN_STATUS_APPROVED),
    "cancel": ((RETURN_STATUS_DRAFT, RETURN_STATUS_PENDING), RETURN_STATUS_CANCELLED),
    "process": ((RETURN_STATUS_APPROVED,), RETURN_STATUS_COMPLETED),
}


def _validate_lines(lines) -> list[dict]:
    lines = require_lines(lines, DOCUMENT_TYPE)
    cleaned = []
    for line in lines:
        cleaned.append({
            "product_id": require_int(line.get("product_id"), "product_id", minimum=1),
            "quantity": require_int(line.get("quantity"), "quantity", minimum=1),
            "reason": require_choice(line.get("reason"), "reason", RETURN_REASONS),
            "condition": require_choice(line.get("condition"), "condition", RETURN_CONDITIONS),
            "action": require_choice(line.get("action"), "action", RETURN_ACTIONS),
            "notes": line.get("notes"),
        })
    return cleaned


def _validate_source(source_type, source_id, source_name) -> None:
    require_choice(source_type, "source_type", SOURCE_TYPES)
    if source_type != SOURCE_TYPE_OTHER and source_id is None:
        raise ValidationError(f"source_id is required for {source_type} returns")
    if source_id is not None:
        require_int(source_id, "source_id", minimum=1)
    if not source_name or not str(source_name).strip():
        raise ValidationError("source_name is required")


def _related_values(related_document: dict | None) -> dict:
    if not related_document:
        return {}
    document_type = require_choice(
        related_document.get("document_type"), "related document_type", RELATED_DOCUMENT_TYPES
    )
    return {
        "related_document_type": document_type,
        "related_document_id": related_document.get("document_id"),
        "related_document_code": related_document.get("document_code"),
    }


def _add_lines(return_doc: Return, lines: list[dict]) -> None:
    for line in lines:
        require_product(line["product_id"])
        return_doc.lines.append(ReturnLine(**line))


def _transition(return_doc: Return, action: str, **fields) -> None:
    from_statuses, to_status = RETURN_TRANSITIONS[action]
    require_status(return_doc, DOCUMENT_TYPE, action, from_statuses)
    transition_status(
        Return,
        return_doc,
        document_type=DOCUMENT_TYPE,
        action=action,
        from_statuses=from_statuses,
        to_status=to_status,
        **fields,
    )


def _event(return_doc: Return, event_type: str, user_id: int, **kwargs):
    return append_audit_event(
        event_type=f"return.{event_type}",
        entity_type="return",
        entity_id=return_doc.id,
        document_code=return_doc.code,
        actor_user_id=user_id,
        **kwargs,
    )


def create_return(
    *,
    source_type: str,
    source_name: str,
    warehouse_id: int,
    lines: list[dict],
    requested_by_user_id: int,
    source_id: int | None = None,
    related_document: dict | None = None,
    notes: str | None = None,
    return_date=None,
) -> StepResult:
    """
    Create a new return (status: DRAFT).

    Args:
        source_type: Customer, Supplier, Internal or Other
        source_name: Display name of the source
        warehouse_id: Warehouse receiving the returned goods
        lines: [{"product_id", "quantity", "reason", "condition", "action", "notes"?}]
        requested_by_user_id: User recording the return
        source_id: Required unless source_type is Other
        related_document: Optional {"document_type": Order|Purchase, "document_id", "document_code"}

    Raises:
        ValidationError: Bad enums, missing source, no lines
        NotFoundError: Unknown warehouse, product or user
    """
    _validate_source(source_type, source_id, source_name)
    cleaned = _validate_lines(lines)
    related = _related_values(related_document)
    return_date = require_datetime(return_date, "return_date") or utcnow()

    def _op():
        require_warehouse(warehouse_id)
        require_user(requested_by_user_id)

        return_doc = Return(
            code=next_code(*SEQUENCE_RETURN),
            source_type=source_type,
            source_id=source_id,
            source_name=source_name,
            warehouse_id=warehouse_id,
            status=RETURN_STATUS_DRAFT,
            notes=notes,
            return_date=return_date,
            requested_by_user_id=requested_by_user_id,
            created_at=utcnow(),
            **related,
        )
        db.session.add(return_doc)
        _add_lines(return_doc, cleaned)
        db.session.flush()

        event = _event(return_doc, "created", requested_by_user_id, warehouse_id=warehouse_id, note=source_name)
        current_app.logger.info("Return %s created from %s %s", return_doc.code, source_type, source_name)
        return StepResult(return_doc, [], [event])

    return run_step(_op)


def update_return(
    return_id: int,
    *,
    user_id: int,
    lines: list[dict] | None = None,
    notes: str | None = None,
    source_name: str | None = None,
    related_document: dict | None = None,
) -> StepResult:
    """Edit a return in DRAFT or PENDING. lines replaces all lines."""
    cleaned = _validate_lines(lines) if lines is not None else None
    related = _related_values(related_document)
    if source_name is not None and not str(source_name).strip():
        raise ValidationError("source_name cannot be blank")

    def _op():
        require_user(user_id)
        return_doc = load_document(Return, return_id, DOCUMENT_TYPE, lock=True)
        require_status(return_doc, DOCUMENT_TYPE, "update", EDITABLE_STATUSES)

        if notes is not None:
            return_doc.notes = notes
        if source_name is not None:
            return_doc.source_name = source_name
        for field, value in related.items():
            setattr(return_doc, field, value)
        if cleaned is not None:
            return_doc.lines.clear()
            db.session.flush()
            _add_lines(return_doc, cleaned)
        db.session.flush()

        return StepResult(return_doc, [], [_event(return_doc, "updated", user_id)])

    return run_step(_op)


def submit_return(return_id: int, *, user_id: int) -> StepResult:
    """DRAFT -> PENDING."""
    def _op():
        require_user(user_id)
        return_doc = load_document(Return, return_id, DOCUMENT_TYPE, lock=True)
        _transition(return_doc, "submit", submitted_at=utcnow())
        return StepResult(return_doc, [], [_event(return_doc, "submitted", user_id)])

    return run_step(_op)


def approve_return(return_id: int, *, user_id: int, notes: str | None = None) -> StepResult:
    """PENDING -> APPROVED (manager action); records approved_by."""
    def _op():
        require_user(user_id)
        return_doc = load_document(Return, return_id, DOCUMENT_TYPE, lock=True)
        _transition(
            return_doc,
            "approve",
            approved_by_user_id=user_id,
            approved_at=utcnow(),
            approval_notes=notes,
        )
        return StepResult(return_doc, [], [_event(return_doc, "approved", user_id, note=notes)])

    return run_step(_op)


def cancel_return(return_id: int, *, user_id: int, reason: str | None = None) -> StepResult:
    """DRAFT or PENDING -> CANCELLED."""
    def _op():
        require_user(user_id)
        return_doc = load_document(Return, return_id, DOCUMENT_TYPE, lock=True)
        _transition(
            return_doc,
            "cancel",
            cancelled_by_user_id=user_id,
            cancelled_at=utcnow(),
            cancellation_reason=reason,
        )
        return StepResult(return_doc, [], [_event(return_doc, "cancelled", user_id, note=reason)])

    return run_step(_op)


def process_return(return_id: int, *, user_id: int) -> StepResult:
    """
    Process an approved return (APPROVED -> COMPLETED).

    Per line:
    - "Return to Stock": Return movement of +quantity into the return's
      warehouse. The snapshot must already exist (NotFoundError otherwise).
    - Any other action: a return.disposition_recorded audit event; stock is
      not touched and no ledger entry is written.

    One transaction: any failing line leaves the return APPROVED and writes
    nothing.

    Returns:
        StepResult: return, the Return ledger entries, audit events
    """
    def _op():
        require_user(user_id)
        return_doc = load_document(Return, return_id, DOCUMENT_TYPE, lock=True)
        require_status(return_doc, DOCUMENT_TYPE, "process", RETURN_TRANSITIONS["process"][0])

        reference = Reference(DOCUMENT_TYPE, return_doc.id, return_doc.code)
        entries = []
        events = []
        for line in return_doc.lines:
            if line.action == ACTION_RETURN_TO_STOCK:
                result = _apply_movement_inner(
                    movement_type=MOVEMENT_RETURN,
                    product_id=line.product_id,
                    warehouse_id=return_doc.warehouse_id,
                    quantity_change=line.quantity,
                    performed_by_user_id=user_id,
                    reference=reference,
                    notes=f"{line.reason} ({line.condition})",
                    require_existing=True,
                )
                entries.append(result.entry)
            else:
                events.append(_event(
                    return_doc,
                    "disposition_recorded",
                    user_id,
                    product_id=line.product_id,
                    warehouse_id=return_doc.warehouse_id,
                    quantity=line.quantity,
                    note=line.action,
                    payload={
                        "action": line.action,
                        "reason": line.reason,
                        "condition": line.condition,
                        "line_id": line.id,
                    },
                ))

        now = utcnow()
        _transition(
            return_doc,
            "process",
            processed_by_user_id=user_id,
            processed_date=now,
        )
        events.append(_event(return_doc, "completed", user_id, warehouse_id=return_doc.warehouse_id))
        current_app.logger.info(
            "Return %s processed: %d restocked, %d other dispositions",
            return_doc.code,
            len(entries),
            len(events) - 1,
        )
        return StepResult(return_doc, entries, events)

    return run_step(_op)


def delete_return(return_id: int, *, user_id: int) -> None:
    """Delete a return in DRAFT or CANCELLED."""
    def _op():
        require_user(user_id)
        return_doc = load_document(Return, return_id, DOCUMENT_TYPE, lock=True)
        ensure_deletable(return_doc, DOCUMENT_TYPE, DELETABLE_STATUSES)
        _event(return_doc, "deleted", user_id)
        current_app.logger.info("Return %s deleted", return_doc.code)
        db.session.delete(return_doc)
        db.session.flush()

    run_step(_op)


def get_return(return_id: int) -> Return:
    return load_document(Return, return_id, DOCUMENT_TYPE)


def get_return_by_code(code: str) -> Return:
    return load_document_by_code(Return, code, DOCUMENT_TYPE)


def list_returns(
    *,
    warehouse_id: int | None = None,
    status: str | None = None,
    source_type: str | None = None,
    limit: int = 100,
) -> list[Return]:
    query = db.session.query(Return)
    if warehouse_id is not None:
        query = query.filter(Return.warehouse_id == warehouse_id)
    if status:
        query = query.filter(Return.status == status)
    if source_type:
        query = query.filter(Return.source_type == source_type)
    return query.order_by(Return.id.desc()).limit(limit).all()

# backend/stockflow/services/adjustment_service.py
"""
Stock adjustment service.

WHY: Corrections to on-hand stock (physical counts, damage, expiry, system
fixes) need review before they touch the ledger. Completing an approved
adjustment posts one Adjustment movement per line with a non-zero delta.

LIFECYCLE:
1. DRAFT: Created, lines editable
2. PENDING APPROVAL: Submitted; may be approved, rejected or sent back
3. APPROVED: Ready to complete
4. COMPLETED: Deltas posted to the stock ledger
5. REJECTED / CANCELLED: Closed with no stock effect
"""
from __future__ import annotations

from flask import current_app

from ..errors import ValidationError
from ..extensions import db
from ..models import Adjustment, AdjustmentLine
from ..time_utils import utcnow
from .audit_service import append_audit_event
from .concurrency import run_step
from .directory_service import require_product, require_user, require_warehouse
from .document_service import (
    StepResult,
    ensure_deletable,
    load_document,
    load_document_by_code,
    reject_duplicate_products,
    require_choice,
    require_datetime,
    require_int,
    require_lines,
    require_status,
    transition_status,
)
from .movement_service import MOVEMENT_ADJUSTMENT, Reference, _apply_movement_inner
from .sequence_service import SEQUENCE_ADJUSTMENT, next_code


DOCUMENT_TYPE = "Adjustment"

# Adjustment status constants
ADJUSTMENT_STATUS_DRAFT = "Draft"
ADJUSTMENT_STATUS_PENDING_APPROVAL = "Pending Approval"
ADJUSTMENT_STATUS_APPROVED = "Approved"
ADJUSTMENT_STATUS_COMPLETED = "Completed"
ADJUSTMENT_STATUS_REJECTED = "Rejected"
ADJUSTMENT_STATUS_CANCELLED = "Cancelled"

ADJUSTMENT_REASONS = (
    "Physical Count",
    "Damaged Goods",
    "Expired Goods",
    "System Correction",
    "Quality Control",
    "Lost Items",
    "Found Items",
    "Initial Setup",
    "Other",
)

EDITABLE_STATUSES = (ADJUSTMENT_STATUS_DRAFT, ADJUSTMENT_STATUS_PENDING_APPROVAL)
DELETABLE_STATUSES = (
    ADJUSTMENT_STATUS_DRAFT,
    ADJUSTMENT_STATUS_PENDING_APPROVAL,
    ADJUSTMENT_STATUS_CANCELLED,
)

# action -> (allowed current statuses, target status)
ADJUSTMENT_TRANSITIONS = {
    "submit": ((ADJUSTMENT_STATUS_DRAFT,), ADJUSTMENT_STATUS_PENDING_APPROVAL),
    "approve": ((ADJUSTMENT_STATUS_PENDING_APPROVAL,), ADJUSTMENT_STATUS_APPROVED),
    "reject": ((ADJUSTMENT_STATUS_PENDING_APPROVAL,), ADJUSTMENT_STATUS_REJECTED),
    "return to draft": ((ADJUSTMENT_STATUS_PENDING_APPROVAL,), ADJUSTMENT_STATUS_DRAFT),
    "cancel": ((ADJUSTMENT_STATUS_DRAFT,), ADJUSTMENT_STATUS_CANCELLED),
    "complete": ((ADJUSTMENT_STATUS_APPROVED,), ADJUSTMENT_STATUS_COMPLETED),
}


def _validate_lines(lines) -> list[dict]:
    lines = require_lines(lines, DOCUMENT_TYPE)
    cleaned = []
    for line in lines:
        cleaned.append({
            "product_id": require_int(line.get("product_id"), "product_id", minimum=1),
            "quantity_before": require_int(line.get("quantity_before"), "quantity_before", minimum=0),
            "quantity_after": require_int(line.get("quantity_after"), "quantity_after", minimum=0),
            "reason": line.get("reason"),
        })
    reject_duplicate_products(line["product_id"] for line in cleaned)
    return cleaned


def _validate_adjustment_date(value):
    adjustment_date = require_datetime(value, "adjustment_date") or utcnow()
    if adjustment_date > utcnow():
        raise ValidationError("adjustment_date cannot be in the future")
    return adjustment_date


def _add_lines(adjustment: Adjustment, lines: list[dict]) -> None:
    for line in lines:
        require_product(line["product_id"])
        adjustment.lines.append(AdjustmentLine(**line))


def _transition(adjustment: Adjustment, action: str, **fields) -> None:
    from_statuses, to_status = ADJUSTMENT_TRANSITIONS[action]
    require_status(adjustment, DOCUMENT_TYPE, action, from_statuses)
    transition_status(
        Adjustment,
        adjustment,
        document_type=DOCUMENT_TYPE,
        action=action,
        from_statuses=from_statuses,
        to_status=to_status,
        **fields,
    )


def _event(adjustment: Adjustment, event_type: str, user_id: int, note: str | None = None):
    return append_audit_event(
        event_type=f"adjustment.{event_type}",
        entity_type="adjustment",
        entity_id=adjustment.id,
        document_code=adjustment.code,
        actor_user_id=user_id,
        warehouse_id=adjustment.warehouse_id,
        note=note,
    )


def create_adjustment(
    *,
    warehouse_id: int,
    reason: str,
    lines: list[dict],
    performed_by_user_id: int,
    description: str | None = None,
    adjustment_date=None,
) -> StepResult:
    """
    Create a new adjustment (status: DRAFT).

    Args:
        warehouse_id: Warehouse being corrected
        reason: One of ADJUSTMENT_REASONS
        lines: [{"product_id", "quantity_before", "quantity_after", "reason"?}]
        performed_by_user_id: User recording the adjustment
        description: Optional free text
        adjustment_date: Business date (defaults to now, never in the future)

    Raises:
        ValidationError: Bad reason, no lines, negative or duplicate lines
        NotFoundError: Unknown warehouse, product or user
    """
    require_choice(reason, "reason", ADJUSTMENT_REASONS)
    cleaned = _validate_lines(lines)
    adjustment_date = _validate_adjustment_date(adjustment_date)

    def _op():
        require_warehouse(warehouse_id)
        require_user(performed_by_user_id)

        adjustment = Adjustment(
            code=next_code(*SEQUENCE_ADJUSTMENT),
            warehouse_id=warehouse_id,
            reason=reason,
            description=description,
            status=ADJUSTMENT_STATUS_DRAFT,
            adjustment_date=adjustment_date,
            performed_by_user_id=performed_by_user_id,
            created_at=utcnow(),
        )
        db.session.add(adjustment)
        _add_lines(adjustment, cleaned)
        db.session.flush()

        event = _event(adjustment, "created", performed_by_user_id, note=reason)
        current_app.logger.info("Adjustment %s created (%d lines)", adjustment.code, len(cleaned))
        return StepResult(adjustment, [], [event])

    return run_step(_op)


def update_adjustment(
    adjustment_id: int,
    *,
    user_id: int,
    reason: str | None = None,
    description: str | None = None,
    lines: list[dict] | None = None,
) -> StepResult:
    """Edit an adjustment that has not been approved yet. lines replaces all lines."""
    if reason is not None:
        require_choice(reason, "reason", ADJUSTMENT_REASONS)
    cleaned = _validate_lines(lines) if lines is not None else None

    def _op():
        require_user(user_id)
        adjustment = load_document(Adjustment, adjustment_id, DOCUMENT_TYPE, lock=True)
        require_status(adjustment, DOCUMENT_TYPE, "update", EDITABLE_STATUSES)

        if reason is not None:
            adjustment.reason = reason
        if description is not None:
            adjustment.description = description
        if cleaned is not None:
            adjustment.lines.clear()
            # Old lines must be gone before new ones hit the (adjustment, product) unique key
            db.session.flush()
            _add_lines(adjustment, cleaned)
        db.session.flush()

        event = _event(adjustment, "updated", user_id)
        return StepResult(adjustment, [], [event])

    return run_step(_op)


def submit_adjustment(adjustment_id: int, *, user_id: int) -> StepResult:
    """DRAFT -> PENDING APPROVAL."""
    def _op():
        require_user(user_id)
        adjustment = load_document(Adjustment, adjustment_id, DOCUMENT_TYPE, lock=True)
        _transition(adjustment, "submit", submitted_at=utcnow())
        return StepResult(adjustment, [], [_event(adjustment, "submitted", user_id)])

    return run_step(_op)


def approve_adjustment(adjustment_id: int, *, user_id: int) -> StepResult:
    """PENDING APPROVAL -> APPROVED (manager action); records approved_by."""
    def _op():
        require_user(user_id)
        adjustment = load_document(Adjustment, adjustment_id, DOCUMENT_TYPE, lock=True)
        _transition(
            adjustment,
            "approve",
            approved_by_user_id=user_id,
            approved_at=utcnow(),
        )
        return StepResult(adjustment, [], [_event(adjustment, "approved", user_id)])

    return run_step(_op)


def reject_adjustment(adjustment_id: int, *, user_id: int, reason: str) -> StepResult:
    """PENDING APPROVAL -> REJECTED. A rejection reason is required."""
    if not reason or not str(reason).strip():
        raise ValidationError("Rejection reason is required")

    def _op():
        require_user(user_id)
        adjustment = load_document(Adjustment, adjustment_id, DOCUMENT_TYPE, lock=True)
        _transition(
            adjustment,
            "reject",
            rejected_by_user_id=user_id,
            rejected_at=utcnow(),
            rejection_reason=reason,
        )
        return StepResult(adjustment, [], [_event(adjustment, "rejected", user_id, note=reason)])

    return run_step(_op)


def return_adjustment_to_draft(adjustment_id: int, *, user_id: int, note: str | None = None) -> StepResult:
    """PENDING APPROVAL -> DRAFT (sent back for corrections)."""
    def _op():
        require_user(user_id)
        adjustment = load_document(Adjustment, adjustment_id, DOCUMENT_TYPE, lock=True)
        _transition(adjustment, "return to draft", submitted_at=None)
        return StepResult(adjustment, [], [_event(adjustment, "returned_to_draft", user_id, note=note)])

    return run_step(_op)


def cancel_adjustment(adjustment_id: int, *, user_id: int, reason: str | None = None) -> StepResult:
    """DRAFT -> CANCELLED. Approved adjustments can only be completed."""
    def _op():
        require_user(user_id)
        adjustment = load_document(Adjustment, adjustment_id, DOCUMENT_TYPE, lock=True)
        _transition(
            adjustment,
            "cancel",
            cancelled_by_user_id=user_id,
            cancelled_at=utcnow(),
            cancellation_reason=reason,
        )
        return StepResult(adjustment, [], [_event(adjustment, "cancelled", user_id, note=reason)])

    return run_step(_op)


def complete_adjustment(adjustment_id: int, *, user_id: int) -> StepResult:
    """
    APPROVED -> COMPLETED, posting each line's delta to the stock ledger.

    All line movements and the status change are one transaction: if any
    line fails (insufficient stock, missing snapshot) nothing is posted and
    the adjustment stays APPROVED. Lines whose counted quantity equals the
    expected quantity produce no ledger entry.

    Returns:
        StepResult: adjustment, the Adjustment ledger entries, audit events
    """
    def _op():
        require_user(user_id)
        adjustment = load_document(Adjustment, adjustment_id, DOCUMENT_TYPE, lock=True)
        require_status(adjustment, DOCUMENT_TYPE, "complete", ADJUSTMENT_TRANSITIONS["complete"][0])

        reference = Reference(DOCUMENT_TYPE, adjustment.id, adjustment.code)
        entries = []
        for line in adjustment.lines:
            delta = line.quantity_change
            if delta == 0:
                continue
            result = _apply_movement_inner(
                movement_type=MOVEMENT_ADJUSTMENT,
                product_id=line.product_id,
                warehouse_id=adjustment.warehouse_id,
                quantity_change=delta,
                performed_by_user_id=user_id,
                reference=reference,
                notes=line.reason or adjustment.reason,
            )
            entries.append(result.entry)

        _transition(
            adjustment,
            "complete",
            completed_by_user_id=user_id,
            completed_at=utcnow(),
        )
        event = _event(adjustment, "completed", user_id, note=f"{len(entries)} ledger entries")
        return StepResult(adjustment, entries, [event])

    return run_step(_op)


def delete_adjustment(adjustment_id: int, *, user_id: int) -> None:
    """Delete an adjustment that never touched stock (DRAFT, PENDING APPROVAL, CANCELLED)."""
    def _op():
        require_user(user_id)
        adjustment = load_document(Adjustment, adjustment_id, DOCUMENT_TYPE, lock=True)
        ensure_deletable(adjustment, DOCUMENT_TYPE, DELETABLE_STATUSES)
        _event(adjustment, "deleted", user_id)
        current_app.logger.info("Adjustment %s deleted", adjustment.code)
        db.session.delete(adjustment)
        db.session.flush()

    run_step(_op)


def get_adjustment(adjustment_id: int) -> Adjustment:
    return load_document(Adjustment, adjustment_id, DOCUMENT_TYPE)


def get_adjustment_by_code(code: str) -> Adjustment:
    return load_document_by_code(Adjustment, code, DOCUMENT_TYPE)


def list_adjustments(
    *,
    warehouse_id: int | None = None,
    status: str | None = None,
    reason: str | None = None,
    limit: int = 100,
) -> list[Adjustment]:
    query = db.session.query(Adjustment)
    if warehouse_id is not None:
        query = query.filter(Adjustment.warehouse_id == warehouse_id)
    if status:
        query = query.filter(Adjustment.status == status)
    if reason:
        query = query.filter(Adjustment.reason == reason)
    return query.order_by(Adjustment.id.desc()).limit(limit).all()

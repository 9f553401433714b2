# backend/stockflow/services/transfer_service.py
"""
Inter-warehouse transfer service.

WHY: Move stock between warehouses with approval and accountability. Posts
Transfer Out movements at the source when shipped and Transfer In movements
at the destination as units arrive.

LIFECYCLE:
1. DRAFT: Created, lines editable
2. PENDING: Submitted for approval (may be sent back to DRAFT)
3. APPROVED: Manager approved, ready to ship
4. IN TRANSIT: Shipped; every ordered unit left the source warehouse
5. PARTIALLY RECEIVED: Some units arrived at the destination
6. COMPLETED: Every ordered unit received
7. CANCELLED: Cancelled before shipping
"""
from __future__ import annotations

from flask import current_app

from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import StockSnapshot, Transfer, TransferLine
from ..time_utils import utcnow
from .audit_service import append_audit_event
from .concurrency import lock_for_update, run_step
from .directory_service import require_product, require_user, require_warehouse
from .document_service import (
    StepResult,
    ensure_deletable,
    load_document,
    load_document_by_code,
    reject_duplicate_products,
    require_datetime,
    require_int,
    require_lines,
    require_status,
    transition_status,
)
from .movement_service import (
    MOVEMENT_TRANSFER_IN,
    MOVEMENT_TRANSFER_OUT,
    Reference,
    _apply_movement_inner,
)
from .sequence_service import SEQUENCE_TRANSFER, next_code


DOCUMENT_TYPE = "Transfer"

# Transfer status constants
TRANSFER_STATUS_DRAFT = "Draft"
TRANSFER_STATUS_PENDING = "Pending"
TRANSFER_STATUS_APPROVED = "Approved"
TRANSFER_STATUS_IN_TRANSIT = "In Transit"
TRANSFER_STATUS_PARTIALLY_RECEIVED = "Partially Received"
TRANSFER_STATUS_COMPLETED = "Completed"
TRANSFER_STATUS_CANCELLED = "Cancelled"

EDITABLE_STATUSES = (TRANSFER_STATUS_DRAFT, TRANSFER_STATUS_PENDING)
# Only paperwork fields may change once approved
PAPERWORK_STATUSES = (
    TRANSFER_STATUS_APPROVED,
    TRANSFER_STATUS_IN_TRANSIT,
    TRANSFER_STATUS_PARTIALLY_RECEIVED,
)
RECEIVABLE_STATUSES = (TRANSFER_STATUS_IN_TRANSIT, TRANSFER_STATUS_PARTIALLY_RECEIVED)
DELETABLE_STATUSES = (TRANSFER_STATUS_DRAFT, TRANSFER_STATUS_PENDING, TRANSFER_STATUS_CANCELLED)

# action -> (allowed current statuses, target status)
TRANSFER_TRANSITIONS = {
    "submit": ((TRANSFER_STATUS_DRAFT,), TRANSFER_STATUS_PENDING),
    "return to draft": ((TRANSFER_STATUS_PENDING,), TRANSFER_STATUS_DRAFT),
    "approve": ((TRANSFER_STATUS_PENDING,), TRANSFER_STATUS_APPROVED),
    "cancel": (
        (TRANSFER_STATUS_DRAFT, TRANSFER_STATUS_PENDING, TRANSFER_STATUS_APPROVED),
        TRANSFER_STATUS_CANCELLED,
    ),
    "ship": ((TRANSFER_STATUS_APPROVED,), TRANSFER_STATUS_IN_TRANSIT),
    "receive partially": (RECEIVABLE_STATUSES, TRANSFER_STATUS_PARTIALLY_RECEIVED),
    "receive": (RECEIVABLE_STATUSES, TRANSFER_STATUS_COMPLETED),
}

_TRANSPORT_FIELDS = ("transport_method", "carrier", "tracking_number")


def _validate_lines(lines) -> list[dict]:
    lines = require_lines(lines, DOCUMENT_TYPE)
    cleaned = []
    for line in lines:
        cleaned.append({
            "product_id": require_int(line.get("product_id"), "product_id", minimum=1),
            "quantity": require_int(line.get("quantity"), "quantity", minimum=1),
            "notes": line.get("notes"),
        })
    reject_duplicate_products(line["product_id"] for line in cleaned)
    return cleaned


def _transport_values(transport_info: dict | None) -> dict:
    if not transport_info:
        return {}
    aliases = {"method": "transport_method"}
    values = {}
    for key, value in transport_info.items():
        field = aliases.get(key, key)
        if field not in _TRANSPORT_FIELDS:
            raise ValidationError(f"Unknown transport field: {key}")
        values[field] = value
    return values


def _add_lines(transfer: Transfer, lines: list[dict]) -> None:
    for line in lines:
        require_product(line["product_id"])
        transfer.lines.append(TransferLine(received_quantity=0, **line))


def _transition(transfer: Transfer, action: str, **fields) -> None:
    from_statuses, to_status = TRANSFER_TRANSITIONS[action]
    require_status(transfer, DOCUMENT_TYPE, action, from_statuses)
    transition_status(
        Transfer,
        transfer,
        document_type=DOCUMENT_TYPE,
        action=action,
        from_statuses=from_statuses,
        to_status=to_status,
        **fields,
    )


def _event(transfer: Transfer, event_type: str, user_id: int, **kwargs):
    return append_audit_event(
        event_type=f"transfer.{event_type}",
        entity_type="transfer",
        entity_id=transfer.id,
        document_code=transfer.code,
        actor_user_id=user_id,
        **kwargs,
    )


def _reference(transfer: Transfer) -> Reference:
    return Reference(DOCUMENT_TYPE, transfer.id, transfer.code)


def create_transfer(
    *,
    from_warehouse_id: int,
    to_warehouse_id: int,
    lines: list[dict],
    requested_by_user_id: int,
    transport_info: dict | None = None,
    expected_delivery_date=None,
    notes: str | None = None,
) -> StepResult:
    """
    Create a new transfer document (status: DRAFT).

    Args:
        from_warehouse_id: Source warehouse
        to_warehouse_id: Destination warehouse (must differ from source)
        lines: [{"product_id", "quantity" (>= 1), "notes"?}]
        requested_by_user_id: User requesting the transfer
        transport_info: Optional {"method", "carrier", "tracking_number"}
        expected_delivery_date: Optional ISO-8601 datetime

    Raises:
        ValidationError: Same warehouse, no lines, bad or duplicate lines
        NotFoundError: Unknown warehouse, product or user
    """
    if from_warehouse_id == to_warehouse_id:
        raise ValidationError("Cannot transfer to the same warehouse")
    cleaned = _validate_lines(lines)
    transport = _transport_values(transport_info)
    expected = require_datetime(expected_delivery_date, "expected_delivery_date")

    def _op():
        require_warehouse(from_warehouse_id)
        require_warehouse(to_warehouse_id)
        require_user(requested_by_user_id)

        transfer = Transfer(
            code=next_code(*SEQUENCE_TRANSFER),
            from_warehouse_id=from_warehouse_id,
            to_warehouse_id=to_warehouse_id,
            status=TRANSFER_STATUS_DRAFT,
            expected_delivery_date=expected,
            notes=notes,
            requested_by_user_id=requested_by_user_id,
            requested_at=utcnow(),
            **transport,
        )
        db.session.add(transfer)
        _add_lines(transfer, cleaned)
        db.session.flush()

        event = _event(transfer, "created", requested_by_user_id, warehouse_id=from_warehouse_id, note=notes)
        current_app.logger.info(
            "Transfer %s created: warehouse %s -> %s (%d lines)",
            transfer.code,
            from_warehouse_id,
            to_warehouse_id,
            len(cleaned),
        )
        return StepResult(transfer, [], [event])

    return run_step(_op)


def update_transfer(
    transfer_id: int,
    *,
    user_id: int,
    lines: list[dict] | None = None,
    transport_info: dict | None = None,
    expected_delivery_date=None,
    notes: str | None = None,
) -> StepResult:
    """
    Edit a transfer.

    DRAFT/PENDING: everything (lines replace all lines).
    APPROVED/IN TRANSIT/PARTIALLY RECEIVED: only notes, transport info and
    expected delivery date. Terminal transfers cannot be edited.
    """
    cleaned = _validate_lines(lines) if lines is not None else None
    transport = _transport_values(transport_info)
    expected = require_datetime(expected_delivery_date, "expected_delivery_date")

    def _op():
        require_user(user_id)
        transfer = load_document(Transfer, transfer_id, DOCUMENT_TYPE, lock=True)
        require_status(transfer, DOCUMENT_TYPE, "update", EDITABLE_STATUSES + PAPERWORK_STATUSES)
        if cleaned is not None and transfer.status not in EDITABLE_STATUSES:
            raise ValidationError(f"Lines cannot change once the transfer is {transfer.status}")

        for field, value in transport.items():
            setattr(transfer, field, value)
        if expected is not None:
            transfer.expected_delivery_date = expected
        if notes is not None:
            transfer.notes = notes
        if cleaned is not None:
            transfer.lines.clear()
            # Old lines must be gone before new ones hit the (transfer, product) unique key
            db.session.flush()
            _add_lines(transfer, cleaned)
        db.session.flush()

        return StepResult(transfer, [], [_event(transfer, "updated", user_id)])

    return run_step(_op)


def submit_transfer(transfer_id: int, *, user_id: int) -> StepResult:
    """DRAFT -> PENDING."""
    def _op():
        require_user(user_id)
        transfer = load_document(Transfer, transfer_id, DOCUMENT_TYPE, lock=True)
        _transition(transfer, "submit", submitted_at=utcnow())
        return StepResult(transfer, [], [_event(transfer, "submitted", user_id)])

    return run_step(_op)


def return_transfer_to_draft(transfer_id: int, *, user_id: int, note: str | None = None) -> StepResult:
    """PENDING -> DRAFT."""
    def _op():
        require_user(user_id)
        transfer = load_document(Transfer, transfer_id, DOCUMENT_TYPE, lock=True)
        _transition(transfer, "return to draft", submitted_at=None)
        return StepResult(transfer, [], [_event(transfer, "returned_to_draft", user_id, note=note)])

    return run_step(_op)


def approve_transfer(transfer_id: int, *, user_id: int) -> StepResult:
    """PENDING -> APPROVED (manager action); records approved_by."""
    def _op():
        require_user(user_id)
        transfer = load_document(Transfer, transfer_id, DOCUMENT_TYPE, lock=True)
        _transition(transfer, "approve", approved_by_user_id=user_id, approved_at=utcnow())
        return StepResult(transfer, [], [_event(transfer, "approved", user_id)])

    return run_step(_op)


def cancel_transfer(transfer_id: int, *, user_id: int, reason: str | None = None) -> StepResult:
    """DRAFT, PENDING or APPROVED -> CANCELLED. Shipped transfers cannot be cancelled."""
    def _op():
        require_user(user_id)
        transfer = load_document(Transfer, transfer_id, DOCUMENT_TYPE, lock=True)
        _transition(
            transfer,
            "cancel",
            cancelled_by_user_id=user_id,
            cancelled_at=utcnow(),
            cancellation_reason=reason,
        )
        return StepResult(transfer, [], [_event(transfer, "cancelled", user_id, note=reason)])

    return run_step(_op)


def ship_transfer(
    transfer_id: int,
    *,
    user_id: int,
    transport_info: dict | None = None,
    notes: str | None = None,
) -> StepResult:
    """
    Ship a transfer (APPROVED -> IN TRANSIT).

    Every line ships its full ordered quantity. Source stock for all lines is
    checked under lock before the first Transfer Out is written; if any line
    is short, nothing ships and the transfer stays APPROVED.

    transport_info and notes given at ship time are merged into the transfer
    in the same step (notes replace the existing notes).

    Raises:
        InvalidStateTransitionError: Transfer is not APPROVED
        NotFoundError: The source warehouse has no stock record for a product
        InsufficientStockError: A source snapshot holds less than ordered
    """
    transport = _transport_values(transport_info)

    def _op():
        require_user(user_id)
        transfer = load_document(Transfer, transfer_id, DOCUMENT_TYPE, lock=True)
        require_status(transfer, DOCUMENT_TYPE, "ship", TRANSFER_TRANSITIONS["ship"][0])

        for line in transfer.lines:
            snapshot = lock_for_update(
                db.session.query(StockSnapshot).filter_by(
                    product_id=line.product_id,
                    warehouse_id=transfer.from_warehouse_id,
                )
            ).first()
            if snapshot is None:
                current_app.logger.warning(
                    "Cannot ship %s: no stock record for product %s at warehouse %s",
                    transfer.code,
                    line.product_id,
                    transfer.from_warehouse_id,
                )
                raise NotFoundError(
                    "StockSnapshot",
                    f"product={line.product_id} warehouse={transfer.from_warehouse_id}",
                )
            if snapshot.quantity < line.quantity:
                current_app.logger.warning(
                    "Cannot ship %s: product %s short at warehouse %s (available %s, ordered %s)",
                    transfer.code,
                    line.product_id,
                    transfer.from_warehouse_id,
                    snapshot.quantity,
                    line.quantity,
                )
                raise InsufficientStockError(
                    line.product_id, transfer.from_warehouse_id, snapshot.quantity, line.quantity
                )

        for field, value in transport.items():
            setattr(transfer, field, value)
        if notes is not None:
            transfer.notes = notes
        db.session.flush()

        reference = _reference(transfer)
        entries = []
        for line in transfer.lines:
            result = _apply_movement_inner(
                movement_type=MOVEMENT_TRANSFER_OUT,
                product_id=line.product_id,
                warehouse_id=transfer.from_warehouse_id,
                quantity_change=-line.quantity,
                performed_by_user_id=user_id,
                reference=reference,
                notes=line.notes,
                from_warehouse_id=transfer.from_warehouse_id,
                to_warehouse_id=transfer.to_warehouse_id,
            )
            entries.append(result.entry)

        _transition(transfer, "ship", shipped_by_user_id=user_id, shipped_at=utcnow())
        event = _event(transfer, "shipped", user_id, warehouse_id=transfer.from_warehouse_id)
        return StepResult(transfer, entries, [event])

    return run_step(_op)


def _validate_receipt(received_items) -> list[dict]:
    if not received_items or not isinstance(received_items, (list, tuple)):
        raise ValidationError("received_items must list at least one product")
    cleaned = []
    for item in received_items:
        if not isinstance(item, dict):
            raise ValidationError("received_items entries must be objects")
        cleaned.append({
            "product_id": require_int(item.get("product_id"), "product_id", minimum=1),
            "received_quantity": require_int(item.get("received_quantity"), "received_quantity", minimum=0),
        })
    reject_duplicate_products(item["product_id"] for item in cleaned)
    return cleaned


def receive_transfer(
    transfer_id: int,
    *,
    user_id: int,
    received_items: list[dict],
    notes: str | None = None,
) -> StepResult:
    """
    Receive shipped units at the destination (IN TRANSIT / PARTIALLY RECEIVED).

    received_items: [{"product_id", "received_quantity"}], quantities are
    deltas on top of what was already received. The whole call is rejected
    if any product is not on the transfer or would be over-received.

    Status afterwards follows the aggregate totals:
    - nothing received yet: unchanged
    - some received: PARTIALLY RECEIVED
    - everything received: COMPLETED (completion_date, received_by set)

    Returns:
        StepResult: transfer, the Transfer In ledger entries, audit events
    """
    cleaned = _validate_receipt(received_items)

    def _op():
        require_user(user_id)
        transfer = load_document(Transfer, transfer_id, DOCUMENT_TYPE, lock=True)
        require_status(transfer, DOCUMENT_TYPE, "receive", RECEIVABLE_STATUSES)

        lines_by_product = {line.product_id: line for line in transfer.lines}
        for item in cleaned:
            line = lines_by_product.get(item["product_id"])
            if line is None:
                raise ValidationError(f"Product {item['product_id']} is not on transfer {transfer.code}")
            if item["received_quantity"] > line.outstanding_quantity:
                raise ValidationError(
                    f"Cannot receive {item['received_quantity']} of product {line.product_id}: "
                    f"ordered {line.quantity}, already received {line.received_quantity}"
                )

        reference = _reference(transfer)
        entries = []
        for item in cleaned:
            quantity = item["received_quantity"]
            if quantity == 0:
                continue
            line = lines_by_product[item["product_id"]]
            result = _apply_movement_inner(
                movement_type=MOVEMENT_TRANSFER_IN,
                product_id=line.product_id,
                warehouse_id=transfer.to_warehouse_id,
                quantity_change=quantity,
                performed_by_user_id=user_id,
                reference=reference,
                notes=notes or line.notes,
                from_warehouse_id=transfer.from_warehouse_id,
                to_warehouse_id=transfer.to_warehouse_id,
            )
            line.received_quantity = line.received_quantity + quantity
            entries.append(result.entry)
        db.session.flush()

        events = []
        if entries:
            events.append(_event(
                transfer,
                "received",
                user_id,
                warehouse_id=transfer.to_warehouse_id,
                quantity=sum(e.quantity_change for e in entries),
                note=notes,
            ))

        total_received = transfer.total_received_quantity
        if total_received >= transfer.total_quantity:
            now = utcnow()
            _transition(
                transfer,
                "receive",
                received_by_user_id=user_id,
                completion_date=now,
            )
            events.append(_event(transfer, "completed", user_id, warehouse_id=transfer.to_warehouse_id))
        elif entries:
            _transition(transfer, "receive partially")

        return StepResult(transfer, entries, events)

    return run_step(_op)


def delete_transfer(transfer_id: int, *, user_id: int) -> None:
    """Delete a transfer that never shipped (DRAFT, PENDING, CANCELLED)."""
    def _op():
        require_user(user_id)
        transfer = load_document(Transfer, transfer_id, DOCUMENT_TYPE, lock=True)
        ensure_deletable(transfer, DOCUMENT_TYPE, DELETABLE_STATUSES)
        _event(transfer, "deleted", user_id)
        current_app.logger.info("Transfer %s deleted", transfer.code)
        db.session.delete(transfer)
        db.session.flush()

    run_step(_op)


def get_transfer(transfer_id: int) -> Transfer:
    return load_document(Transfer, transfer_id, DOCUMENT_TYPE)


def get_transfer_by_code(code: str) -> Transfer:
    return load_document_by_code(Transfer, code, DOCUMENT_TYPE)


def list_transfers(
    *,
    status: str | None = None,
    from_warehouse_id: int | None = None,
    to_warehouse_id: int | None = None,
    warehouse_id: int | None = None,
    limit: int = 100,
) -> list[Transfer]:
    """warehouse_id matches either side of the transfer."""
    query = db.session.query(Transfer)
    if status:
        query = query.filter(Transfer.status == status)
    if from_warehouse_id is not None:
        query = query.filter(Transfer.from_warehouse_id == from_warehouse_id)
    if to_warehouse_id is not None:
        query = query.filter(Transfer.to_warehouse_id == to_warehouse_id)
    if warehouse_id is not None:
        query = query.filter(
            (Transfer.from_warehouse_id == warehouse_id) | (Transfer.to_warehouse_id == warehouse_id)
        )
    return query.order_by(Transfer.id.desc()).limit(limit).all()


def get_transfer_summary(transfer_id: int) -> dict:
    """
    Get transfer summary with line details and progress.
    """
    transfer = get_transfer(transfer_id)
    return {
        "transfer": transfer.to_dict(),
        "total_quantity": transfer.total_quantity,
        "total_received_quantity": transfer.total_received_quantity,
        "completion_percentage": transfer.completion_percentage,
        "outstanding_lines": [
            line.to_dict() for line in transfer.lines if line.outstanding_quantity > 0
        ],
        "line_count": len(transfer.lines),
    }

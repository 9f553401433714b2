# backend/stockflow/services/movement_service.py
"""
Movement coordinator: the only writer of stock snapshots and ledger entries.

WHY: Every quantity change must be durable and consistent. A movement writes
exactly one LedgerEntry and updates exactly one StockSnapshot in the same DB
transaction, so no reader ever sees one without the other.

INVARIANTS:
- snapshot.quantity == SUM(ledger_entries.quantity_change) for the key
- snapshot.quantity >= 0 (checked inside the transaction, after the lock)
- entry.quantity_after == entry.quantity_before + entry.quantity_change
- snapshot.stock_status == compute_stock_status(quantity, min, max)

Workflows call _apply_movement_inner from inside their own step so that all
movements of one step commit (or roll back) together. Everything else uses
apply_movement or the record_* wrappers, which open their own step.
"""
from __future__ import annotations

from datetime import datetime
from typing import NamedTuple, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import LedgerEntry, StockSnapshot
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_step
from .directory_service import require_product, require_user, require_warehouse
from .document_service import require_datetime, require_int
from .sequence_service import SEQUENCE_LEDGER_ENTRY, next_code
from .stock_service import compute_stock_status


# Movement type constants
MOVEMENT_PURCHASE = "Purchase"
MOVEMENT_SALE = "Sale"
MOVEMENT_ADJUSTMENT = "Adjustment"
MOVEMENT_TRANSFER_OUT = "Transfer Out"
MOVEMENT_TRANSFER_IN = "Transfer In"
MOVEMENT_RETURN = "Return"
MOVEMENT_DAMAGED = "Damaged"
MOVEMENT_EXPIRED = "Expired"
MOVEMENT_INITIAL = "Initial"

SIGN_POSITIVE = 1
SIGN_NEGATIVE = -1
SIGN_ANY = 0

# Required sign of quantity_change per movement type
MOVEMENT_SIGN_RULES = {
    MOVEMENT_PURCHASE: SIGN_POSITIVE,
    MOVEMENT_SALE: SIGN_NEGATIVE,
    MOVEMENT_ADJUSTMENT: SIGN_ANY,
    MOVEMENT_TRANSFER_OUT: SIGN_NEGATIVE,
    MOVEMENT_TRANSFER_IN: SIGN_POSITIVE,
    MOVEMENT_RETURN: SIGN_POSITIVE,
    MOVEMENT_DAMAGED: SIGN_NEGATIVE,
    MOVEMENT_EXPIRED: SIGN_NEGATIVE,
    MOVEMENT_INITIAL: SIGN_POSITIVE,
}

MOVEMENT_TYPES = tuple(MOVEMENT_SIGN_RULES)

TRANSFER_MOVEMENTS = (MOVEMENT_TRANSFER_OUT, MOVEMENT_TRANSFER_IN)


class Reference(NamedTuple):
    """Originating document of a movement."""
    document_type: str
    document_id: int | None = None
    document_code: str | None = None


class MovementResult(NamedTuple):
    snapshot: StockSnapshot
    entry: LedgerEntry


def validate_movement(
    movement_type: str,
    quantity_change,
    *,
    warehouse_id: int,
    from_warehouse_id: int | None = None,
    to_warehouse_id: int | None = None,
) -> None:
    """Shape checks that need no database access."""
    if movement_type not in MOVEMENT_SIGN_RULES:
        raise ValidationError(f"Unknown movement type: {movement_type}")

    require_int(quantity_change, "quantity_change")
    if quantity_change == 0:
        raise ValidationError("quantity_change must be non-zero")

    sign = MOVEMENT_SIGN_RULES[movement_type]
    if sign == SIGN_POSITIVE and quantity_change < 0:
        raise ValidationError(f"{movement_type} requires a positive quantity_change")
    if sign == SIGN_NEGATIVE and quantity_change > 0:
        raise ValidationError(f"{movement_type} requires a negative quantity_change")

    if movement_type in TRANSFER_MOVEMENTS:
        if from_warehouse_id is None or to_warehouse_id is None:
            raise ValidationError(f"{movement_type} requires from_warehouse_id and to_warehouse_id")
        if from_warehouse_id == to_warehouse_id:
            raise ValidationError("from_warehouse_id and to_warehouse_id must differ")
        expected = from_warehouse_id if movement_type == MOVEMENT_TRANSFER_OUT else to_warehouse_id
        if warehouse_id != expected:
            side = "source" if movement_type == MOVEMENT_TRANSFER_OUT else "destination"
            raise ValidationError(f"{movement_type} must post to the {side} warehouse")
    elif from_warehouse_id is not None or to_warehouse_id is not None:
        raise ValidationError(f"{movement_type} cannot carry from/to warehouses")


def _create_snapshot(product_id: int, warehouse_id: int, *, min_stock_level=None, max_stock_level=None) -> StockSnapshot:
    if min_stock_level is None:
        min_stock_level = current_app.config.get("STOCK_DEFAULT_MIN_LEVEL", 10)
    if max_stock_level is None:
        max_stock_level = current_app.config.get("STOCK_DEFAULT_MAX_LEVEL", 100)

    snapshot = StockSnapshot(
        product_id=product_id,
        warehouse_id=warehouse_id,
        quantity=0,
        min_stock_level=min_stock_level,
        max_stock_level=max_stock_level,
        stock_status=compute_stock_status(0, min_stock_level, max_stock_level),
    )
    db.session.add(snapshot)
    try:
        db.session.flush()
    except IntegrityError as exc:
        # Another writer created the same key first; retry the whole step
        raise ConflictError(
            f"Stock snapshot for product {product_id} in warehouse {warehouse_id} created concurrently"
        ) from exc
    return snapshot


def _lock_snapshot(product_id: int, warehouse_id: int) -> StockSnapshot | None:
    return lock_for_update(
        db.session.query(StockSnapshot).filter_by(product_id=product_id, warehouse_id=warehouse_id)
    ).first()


def _apply_movement_inner(
    *,
    movement_type: str,
    product_id: int,
    warehouse_id: int,
    quantity_change: int,
    performed_by_user_id: int,
    reference: Reference | None = None,
    notes: str | None = None,
    from_warehouse_id: int | None = None,
    to_warehouse_id: int | None = None,
    occurred_at: Optional[datetime] = None,
    require_existing: bool = False,
) -> MovementResult:
    """
    Apply one movement inside the caller's transaction (no commit here).

    require_existing=True refuses to create a snapshot lazily (returns to
    stock must land on a key that already exists).
    """
    validate_movement(
        movement_type,
        quantity_change,
        warehouse_id=warehouse_id,
        from_warehouse_id=from_warehouse_id,
        to_warehouse_id=to_warehouse_id,
    )
    require_product(product_id)
    require_warehouse(warehouse_id)
    require_user(performed_by_user_id)

    snapshot = _lock_snapshot(product_id, warehouse_id)
    if snapshot is None:
        if quantity_change <= 0 or require_existing:
            raise NotFoundError("StockSnapshot", f"product={product_id} warehouse={warehouse_id}")
        snapshot = _create_snapshot(product_id, warehouse_id)

    quantity_before = snapshot.quantity
    quantity_after = quantity_before + quantity_change
    if quantity_after < 0:
        current_app.logger.warning(
            "Insufficient stock: %s product=%s warehouse=%s available=%s change=%s",
            movement_type,
            product_id,
            warehouse_id,
            quantity_before,
            quantity_change,
        )
        raise InsufficientStockError(product_id, warehouse_id, quantity_before, -quantity_change)

    now = utcnow()
    reference = reference or Reference(document_type=None)

    entry = LedgerEntry(
        code=next_code(*SEQUENCE_LEDGER_ENTRY),
        movement_type=movement_type,
        product_id=product_id,
        warehouse_id=warehouse_id,
        snapshot_id=snapshot.id,
        quantity_before=quantity_before,
        quantity_change=quantity_change,
        quantity_after=quantity_after,
        reference_document_type=reference.document_type,
        reference_document_id=reference.document_id,
        reference_document_code=reference.document_code,
        from_warehouse_id=from_warehouse_id,
        to_warehouse_id=to_warehouse_id,
        performed_by_user_id=performed_by_user_id,
        occurred_at=require_datetime(occurred_at, "occurred_at") or now,
        notes=notes,
    )
    db.session.add(entry)

    snapshot.quantity = quantity_after
    snapshot.stock_status = compute_stock_status(
        quantity_after, snapshot.min_stock_level, snapshot.max_stock_level
    )
    snapshot.last_stock_check = now

    # Flush now so a stale snapshot version fails inside this step
    db.session.flush()

    current_app.logger.info(
        "Movement %s %s product=%s warehouse=%s %s -> %s (ref=%s)",
        entry.code,
        movement_type,
        product_id,
        warehouse_id,
        quantity_before,
        quantity_after,
        reference.document_code or reference.document_type,
    )
    return MovementResult(snapshot, entry)


def apply_movement(
    movement_type: str,
    product_id: int,
    warehouse_id: int,
    quantity_change: int,
    performed_by_user_id: int,
    reference: Reference | None = None,
    notes: str | None = None,
    from_warehouse_id: int | None = None,
    to_warehouse_id: int | None = None,
    occurred_at: Optional[datetime] = None,
) -> MovementResult:
    """
    Apply a single stock movement as its own atomic step.

    Raises:
        ValidationError: bad type, zero change, wrong sign, bad transfer sides,
            malformed occurred_at
        NotFoundError: decrease against a missing snapshot, unknown product,
            warehouse or user
        InsufficientStockError: the change would drive quantity below zero
        ConflictError: concurrent writers kept winning after all retries
    """
    validate_movement(
        movement_type,
        quantity_change,
        warehouse_id=warehouse_id,
        from_warehouse_id=from_warehouse_id,
        to_warehouse_id=to_warehouse_id,
    )
    occurred_at = require_datetime(occurred_at, "occurred_at")

    def _op():
        return _apply_movement_inner(
            movement_type=movement_type,
            product_id=product_id,
            warehouse_id=warehouse_id,
            quantity_change=quantity_change,
            performed_by_user_id=performed_by_user_id,
            reference=reference,
            notes=notes,
            from_warehouse_id=from_warehouse_id,
            to_warehouse_id=to_warehouse_id,
            occurred_at=occurred_at,
        )

    return run_step(_op)


# =============================================================================
# Typed wrappers (fix movement type and sign; quantity is always positive)
# =============================================================================

def _positive(quantity) -> int:
    return require_int(quantity, "quantity", minimum=1)


def record_purchase(product_id: int, warehouse_id: int, quantity: int, performed_by_user_id: int, **kwargs) -> MovementResult:
    return apply_movement(MOVEMENT_PURCHASE, product_id, warehouse_id, _positive(quantity), performed_by_user_id, **kwargs)


def record_sale(product_id: int, warehouse_id: int, quantity: int, performed_by_user_id: int, **kwargs) -> MovementResult:
    return apply_movement(MOVEMENT_SALE, product_id, warehouse_id, -_positive(quantity), performed_by_user_id, **kwargs)


def record_adjustment(product_id: int, warehouse_id: int, quantity_change: int, performed_by_user_id: int, **kwargs) -> MovementResult:
    """Signed correction; the only wrapper that accepts either direction."""
    return apply_movement(MOVEMENT_ADJUSTMENT, product_id, warehouse_id, quantity_change, performed_by_user_id, **kwargs)


def record_transfer_out(product_id: int, from_warehouse_id: int, to_warehouse_id: int, quantity: int, performed_by_user_id: int, **kwargs) -> MovementResult:
    return apply_movement(
        MOVEMENT_TRANSFER_OUT,
        product_id,
        from_warehouse_id,
        -_positive(quantity),
        performed_by_user_id,
        from_warehouse_id=from_warehouse_id,
        to_warehouse_id=to_warehouse_id,
        **kwargs,
    )


def record_transfer_in(product_id: int, from_warehouse_id: int, to_warehouse_id: int, quantity: int, performed_by_user_id: int, **kwargs) -> MovementResult:
    return apply_movement(
        MOVEMENT_TRANSFER_IN,
        product_id,
        to_warehouse_id,
        _positive(quantity),
        performed_by_user_id,
        from_warehouse_id=from_warehouse_id,
        to_warehouse_id=to_warehouse_id,
        **kwargs,
    )


def record_return(product_id: int, warehouse_id: int, quantity: int, performed_by_user_id: int, **kwargs) -> MovementResult:
    return apply_movement(MOVEMENT_RETURN, product_id, warehouse_id, _positive(quantity), performed_by_user_id, **kwargs)


def record_damage(product_id: int, warehouse_id: int, quantity: int, performed_by_user_id: int, **kwargs) -> MovementResult:
    return apply_movement(MOVEMENT_DAMAGED, product_id, warehouse_id, -_positive(quantity), performed_by_user_id, **kwargs)


def record_expiry(product_id: int, warehouse_id: int, quantity: int, performed_by_user_id: int, **kwargs) -> MovementResult:
    return apply_movement(MOVEMENT_EXPIRED, product_id, warehouse_id, -_positive(quantity), performed_by_user_id, **kwargs)


def record_initial_stock(product_id: int, warehouse_id: int, quantity: int, performed_by_user_id: int, **kwargs) -> MovementResult:
    return apply_movement(MOVEMENT_INITIAL, product_id, warehouse_id, _positive(quantity), performed_by_user_id, **kwargs)


# =============================================================================
# Thresholds and bin location (no ledger entry; quantity untouched)
# =============================================================================

def set_stock_levels(
    product_id: int,
    warehouse_id: int,
    *,
    min_stock_level: int,
    max_stock_level: int,
    aisle: str | None = None,
    rack: str | None = None,
    bin: str | None = None,
    notes: str | None = None,
) -> StockSnapshot:
    """
    Set reorder thresholds (and optionally bin location) for a key.

    Creates an empty snapshot (quantity 0) when the key has none yet, so
    thresholds can be configured before the first receipt. Status is
    recomputed from the new thresholds.
    """
    require_int(min_stock_level, "min_stock_level", minimum=0)
    require_int(max_stock_level, "max_stock_level", minimum=0)
    if min_stock_level > max_stock_level:
        raise ValidationError("min_stock_level cannot exceed max_stock_level")

    def _op():
        require_product(product_id)
        require_warehouse(warehouse_id)

        snapshot = _lock_snapshot(product_id, warehouse_id)
        if snapshot is None:
            snapshot = _create_snapshot(
                product_id,
                warehouse_id,
                min_stock_level=min_stock_level,
                max_stock_level=max_stock_level,
            )

        snapshot.min_stock_level = min_stock_level
        snapshot.max_stock_level = max_stock_level
        snapshot.stock_status = compute_stock_status(snapshot.quantity, min_stock_level, max_stock_level)
        if aisle is not None:
            snapshot.aisle = aisle
        if rack is not None:
            snapshot.rack = rack
        if bin is not None:
            snapshot.bin = bin
        if notes is not None:
            snapshot.notes = notes
        db.session.flush()

        current_app.logger.info(
            "Stock levels product=%s warehouse=%s min=%s max=%s status=%s",
            product_id,
            warehouse_id,
            min_stock_level,
            max_stock_level,
            snapshot.stock_status,
        )
        return snapshot

    return run_step(_op)

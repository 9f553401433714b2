# Overview: Read access to the stock ledger and the snapshot/ledger consistency check.

from __future__ import annotations

from sqlalchemy import func

from ..errors import NotFoundError
from ..extensions import db
from ..models import LedgerEntry, StockSnapshot
from .stock_service import compute_stock_status
"""
Stock ledger invariants (authoritative)

- Append-only: one row per quantity change, never updated or deleted.
- Every row is written by the movement coordinator together with its
  snapshot update, in the same DB transaction.
- quantity_change is never zero; only stock-affecting events are recorded.
- occurred_at is business time; created_at is system time (DB default).
"""


def get_entry_by_code(code: str) -> LedgerEntry:
    entry = db.session.query(LedgerEntry).filter_by(code=code).first()
    if not entry:
        raise NotFoundError("LedgerEntry", code)
    return entry


def list_entries(
    *,
    product_id: int | None = None,
    warehouse_id: int | None = None,
    movement_type: str | None = None,
    document_type: str | None = None,
    document_id: int | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[LedgerEntry]:
    """Ledger rows, newest first."""
    query = db.session.query(LedgerEntry)
    if product_id is not None:
        query = query.filter(LedgerEntry.product_id == product_id)
    if warehouse_id is not None:
        query = query.filter(LedgerEntry.warehouse_id == warehouse_id)
    if movement_type:
        query = query.filter(LedgerEntry.movement_type == movement_type)
    if document_type:
        query = query.filter(LedgerEntry.reference_document_type == document_type)
    if document_id is not None:
        query = query.filter(LedgerEntry.reference_document_id == document_id)

    if offset < 0:
        offset = 0
    if limit < 1:
        limit = 1
    if limit > 500:
        limit = 500

    return query.order_by(LedgerEntry.id.desc()).offset(offset).limit(limit).all()


def list_entries_for_document(document_type: str, document_id: int) -> list[LedgerEntry]:
    """Every ledger row a workflow document produced, in posting order."""
    return (
        db.session.query(LedgerEntry)
        .filter_by(reference_document_type=document_type, reference_document_id=document_id)
        .order_by(LedgerEntry.id.asc())
        .all()
    )


def verify_stock_invariants() -> list[dict]:
    """
    Check snapshots against the ledger. Returns one dict per violation.

    - snapshot.quantity == SUM(quantity_change) for the key
    - snapshot.quantity >= 0
    - stock_status == compute_stock_status(quantity, min, max)
    - every entry: quantity_after == quantity_before + quantity_change
    - every ledger key has a snapshot
    """
    violations: list[dict] = []

    sums = {
        (product_id, warehouse_id): total
        for product_id, warehouse_id, total in db.session.query(
            LedgerEntry.product_id,
            LedgerEntry.warehouse_id,
            func.coalesce(func.sum(LedgerEntry.quantity_change), 0),
        )
        .group_by(LedgerEntry.product_id, LedgerEntry.warehouse_id)
        .all()
    }

    seen = set()
    for snapshot in db.session.query(StockSnapshot).order_by(StockSnapshot.id.asc()).all():
        key = (snapshot.product_id, snapshot.warehouse_id)
        seen.add(key)
        ledger_total = sums.get(key, 0)
        base = {"product_id": snapshot.product_id, "warehouse_id": snapshot.warehouse_id}

        if snapshot.quantity != ledger_total:
            violations.append({
                **base,
                "check": "quantity_matches_ledger",
                "detail": f"snapshot {snapshot.quantity} != ledger sum {ledger_total}",
            })
        if snapshot.quantity < 0:
            violations.append({
                **base,
                "check": "quantity_non_negative",
                "detail": f"quantity {snapshot.quantity}",
            })
        expected = compute_stock_status(snapshot.quantity, snapshot.min_stock_level, snapshot.max_stock_level)
        if snapshot.stock_status != expected:
            violations.append({
                **base,
                "check": "status_derived",
                "detail": f"stored {snapshot.stock_status!r} != computed {expected!r}",
            })

    for key in sorted(set(sums) - seen):
        violations.append({
            "product_id": key[0],
            "warehouse_id": key[1],
            "check": "snapshot_exists",
            "detail": "ledger entries without a snapshot",
        })

    broken = (
        db.session.query(LedgerEntry)
        .filter(LedgerEntry.quantity_after != LedgerEntry.quantity_before + LedgerEntry.quantity_change)
        .all()
    )
    for entry in broken:
        violations.append({
            "product_id": entry.product_id,
            "warehouse_id": entry.warehouse_id,
            "check": "entry_arithmetic",
            "detail": f"{entry.code}: {entry.quantity_before} + {entry.quantity_change} != {entry.quantity_after}",
        })

    return violations

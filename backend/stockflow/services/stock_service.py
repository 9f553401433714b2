# backend/stockflow/services/stock_service.py
"""
Stock snapshot status derivation and read-only stock queries.

Snapshots are written only by services/movement_service.py. Everything here
reads.
"""
from __future__ import annotations

from sqlalchemy import func

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import StockSnapshot


# Stock status constants
STOCK_STATUS_IN_STOCK = "In Stock"
STOCK_STATUS_LOW_STOCK = "Low Stock"
STOCK_STATUS_OUT_OF_STOCK = "Out of Stock"
STOCK_STATUS_OVERSTOCKED = "Overstocked"

STOCK_STATUSES = (
    STOCK_STATUS_IN_STOCK,
    STOCK_STATUS_LOW_STOCK,
    STOCK_STATUS_OUT_OF_STOCK,
    STOCK_STATUS_OVERSTOCKED,
)


def compute_stock_status(quantity: int, min_stock_level: int, max_stock_level: int) -> str:
    """
    Pure status derivation; the only source of StockSnapshot.stock_status.

    Checked in order: out of stock, below minimum, above maximum.
    """
    if quantity <= 0:
        return STOCK_STATUS_OUT_OF_STOCK
    if quantity < min_stock_level:
        return STOCK_STATUS_LOW_STOCK
    if quantity > max_stock_level:
        return STOCK_STATUS_OVERSTOCKED
    return STOCK_STATUS_IN_STOCK


def find_snapshot(product_id: int, warehouse_id: int) -> StockSnapshot | None:
    return (
        db.session.query(StockSnapshot)
        .filter_by(product_id=product_id, warehouse_id=warehouse_id)
        .first()
    )


def get_stock_level(product_id: int, warehouse_id: int) -> StockSnapshot:
    snapshot = find_snapshot(product_id, warehouse_id)
    if not snapshot:
        raise NotFoundError("StockSnapshot", f"product={product_id} warehouse={warehouse_id}")
    return snapshot


def get_quantity_on_hand(product_id: int, warehouse_id: int) -> int:
    """On-hand quantity, 0 when no snapshot exists yet."""
    snapshot = find_snapshot(product_id, warehouse_id)
    return snapshot.quantity if snapshot else 0


def get_product_stock(product_id: int) -> dict:
    """All warehouses holding a product, with the cross-warehouse total."""
    snapshots = (
        db.session.query(StockSnapshot)
        .filter_by(product_id=product_id)
        .order_by(StockSnapshot.warehouse_id.asc())
        .all()
    )
    return {
        "product_id": product_id,
        "total_quantity": sum(s.quantity for s in snapshots),
        "warehouses": [s.to_dict() for s in snapshots],
    }


def get_warehouse_stock(warehouse_id: int, *, stock_status: str | None = None) -> list[StockSnapshot]:
    query = db.session.query(StockSnapshot).filter_by(warehouse_id=warehouse_id)
    if stock_status is not None:
        if stock_status not in STOCK_STATUSES:
            raise ValidationError(f"Unknown stock status: {stock_status}")
        query = query.filter(StockSnapshot.stock_status == stock_status)
    return query.order_by(StockSnapshot.product_id.asc()).all()


def get_low_stock_items(warehouse_id: int | None = None) -> list[StockSnapshot]:
    """Snapshots needing replenishment (Low Stock or Out of Stock)."""
    query = db.session.query(StockSnapshot).filter(
        StockSnapshot.stock_status.in_((STOCK_STATUS_LOW_STOCK, STOCK_STATUS_OUT_OF_STOCK))
    )
    if warehouse_id is not None:
        query = query.filter(StockSnapshot.warehouse_id == warehouse_id)
    return query.order_by(StockSnapshot.quantity.asc(), StockSnapshot.id.asc()).all()


def get_stock_by_status(warehouse_id: int | None = None) -> dict[str, int]:
    """Count of snapshots per status, every status present (zero if none)."""
    query = db.session.query(StockSnapshot.stock_status, func.count(StockSnapshot.id))
    if warehouse_id is not None:
        query = query.filter(StockSnapshot.warehouse_id == warehouse_id)
    counts = dict(query.group_by(StockSnapshot.stock_status).all())
    return {status: counts.get(status, 0) for status in STOCK_STATUSES}

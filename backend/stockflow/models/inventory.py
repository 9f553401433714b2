from __future__ import annotations

from ..extensions import db
from stockflow.time_utils import to_utc_z


class StockSnapshot(db.Model):
    """
    Current on-hand quantity for one product in one warehouse.

    OWNERSHIP: Only the movement coordinator (services/movement_service.py)
    writes quantity, stock_status and last_stock_check. Every quantity change
    is paired with exactly one LedgerEntry in the same DB transaction, so
    quantity always equals SUM(ledger_entries.quantity_change) for the key.

    stock_status is never set by callers. It is the output of
    compute_stock_status(quantity, min_stock_level, max_stock_level) and is
    recomputed whenever any of its inputs change.

    CONCURRENCY: version_id is an optimistic-lock column. Two writers that read
    the same version cannot both commit; the loser gets StaleDataError and the
    whole workflow step is retried.
    """
    __tablename__ = "stock_snapshots"
    __table_args__ = (
        db.UniqueConstraint("product_id", "warehouse_id", name="uq_stock_snapshots_product_warehouse"),
        db.CheckConstraint("quantity >= 0", name="ck_stock_snapshots_quantity_non_negative"),
        db.CheckConstraint("min_stock_level >= 0", name="ck_stock_snapshots_min_non_negative"),
        db.CheckConstraint("max_stock_level >= 0", name="ck_stock_snapshots_max_non_negative"),
        db.Index("ix_stock_snapshots_warehouse_status", "warehouse_id", "stock_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    min_stock_level = db.Column(db.Integer, nullable=False, default=10)
    max_stock_level = db.Column(db.Integer, nullable=False, default=100)

    # In Stock, Low Stock, Out of Stock, Overstocked (derived)
    stock_status = db.Column(db.String(16), nullable=False, index=True)

    last_stock_check = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    # Bin location inside the warehouse
    aisle = db.Column(db.String(10), nullable=True)
    rack = db.Column(db.String(10), nullable=True)
    bin = db.Column(db.String(10), nullable=True)
    notes = db.Column(db.String(500), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product")
    warehouse = db.relationship("Warehouse")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<StockSnapshot product_id={self.product_id} warehouse_id={self.warehouse_id} "
            f"quantity={self.quantity} status={self.stock_status!r}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "warehouse_id": self.warehouse_id,
            "quantity": self.quantity,
            "min_stock_level": self.min_stock_level,
            "max_stock_level": self.max_stock_level,
            "stock_status": self.stock_status,
            "last_stock_check": to_utc_z(self.last_stock_check),
            "location": {"aisle": self.aisle, "rack": self.rack, "bin": self.bin},
            "notes": self.notes,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class LedgerEntry(db.Model):
    """
    Append-only record of a single stock quantity change.

    IMMUTABLE: Rows are never updated or deleted once inserted (enforced by
    ORM listeners in stockflow/immutability.py). Corrections are new entries,
    typically through an adjustment document.

    reference_* points at the workflow document that caused the movement
    (Adjustment, Transfer, Return, or an external Purchase/Order).
    from_warehouse_id/to_warehouse_id are set only on Transfer Out/Transfer In.
    """
    __tablename__ = "ledger_entries"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_ledger_entries_code"),
        db.CheckConstraint("quantity_change <> 0", name="ck_ledger_entries_change_non_zero"),
        db.CheckConstraint("quantity_after >= 0", name="ck_ledger_entries_after_non_negative"),
        db.CheckConstraint(
            "quantity_after = quantity_before + quantity_change",
            name="ck_ledger_entries_after_matches_change",
        ),
        db.Index("ix_ledger_entries_product_warehouse_occurred", "product_id", "warehouse_id", "occurred_at"),
        db.Index("ix_ledger_entries_reference", "reference_document_type", "reference_document_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable code (e.g., "IT-00042")
    code = db.Column(db.String(32), nullable=False)

    movement_type = db.Column(db.String(16), nullable=False, index=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)
    snapshot_id = db.Column(db.Integer, db.ForeignKey("stock_snapshots.id"), nullable=False, index=True)

    quantity_before = db.Column(db.Integer, nullable=False)
    quantity_change = db.Column(db.Integer, nullable=False)
    quantity_after = db.Column(db.Integer, nullable=False)

    # Originating document
    reference_document_type = db.Column(db.String(16), nullable=True)
    reference_document_id = db.Column(db.Integer, nullable=True)
    reference_document_code = db.Column(db.String(32), nullable=True)

    from_warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=True)
    to_warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=True)

    performed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # Business time vs system time
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    notes = db.Column(db.String(500), nullable=True)

    snapshot = db.relationship("StockSnapshot")
    product = db.relationship("Product")
    warehouse = db.relationship("Warehouse", foreign_keys=[warehouse_id])
    from_warehouse = db.relationship("Warehouse", foreign_keys=[from_warehouse_id])
    to_warehouse = db.relationship("Warehouse", foreign_keys=[to_warehouse_id])
    performed_by = db.relationship("User")

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry code={self.code!r} type={self.movement_type!r} "
            f"{self.quantity_before}{self.quantity_change:+d}={self.quantity_after}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "movement_type": self.movement_type,
            "product_id": self.product_id,
            "warehouse_id": self.warehouse_id,
            "snapshot_id": self.snapshot_id,
            "quantity_before": self.quantity_before,
            "quantity_change": self.quantity_change,
            "quantity_after": self.quantity_after,
            "reference": {
                "document_type": self.reference_document_type,
                "document_id": self.reference_document_id,
                "document_code": self.reference_document_code,
            },
            "from_warehouse_id": self.from_warehouse_id,
            "to_warehouse_id": self.to_warehouse_id,
            "performed_by_user_id": self.performed_by_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
            "notes": self.notes,
        }

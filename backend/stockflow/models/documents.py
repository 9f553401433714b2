from __future__ import annotations

from ..extensions import db
from stockflow.time_utils import to_utc_z


class Adjustment(db.Model):
    """
    Stock correction document (physical counts, damage write-offs, etc.).

    LIFECYCLE:
    1. DRAFT: Created, lines editable
    2. PENDING APPROVAL: Submitted for manager review
    3. APPROVED: Manager approved, ready to complete
    4. COMPLETED: Line deltas posted to the stock ledger
    5. REJECTED / CANCELLED: Closed without touching stock

    Each line carries the expected quantity before and the counted quantity
    after. Completing the document posts quantity_after - quantity_before as
    an Adjustment movement per line, all in one DB transaction.

    IMMUTABLE: Once COMPLETED, REJECTED or CANCELLED, lines and header fields
    cannot change.
    """
    __tablename__ = "adjustments"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_adjustments_code"),
        db.Index("ix_adjustments_warehouse_status", "warehouse_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable code (e.g., "ADJ-00001")
    code = db.Column(db.String(32), nullable=False)

    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)

    reason = db.Column(db.String(32), nullable=False, index=True)
    description = db.Column(db.String(500), nullable=True)

    status = db.Column(db.String(20), nullable=False, default="Draft", index=True)

    # Business date of the count/correction
    adjustment_date = db.Column(db.DateTime(timezone=True), nullable=False)

    performed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    completed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    rejected_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    rejection_reason = db.Column(db.Text, nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)

    warehouse = db.relationship("Warehouse")
    performed_by = db.relationship("User", foreign_keys=[performed_by_user_id])
    approved_by = db.relationship("User", foreign_keys=[approved_by_user_id])

    def __repr__(self) -> str:
        return f"<Adjustment code={self.code!r} status={self.status!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "warehouse_id": self.warehouse_id,
            "reason": self.reason,
            "description": self.description,
            "status": self.status,
            "adjustment_date": to_utc_z(self.adjustment_date),
            "performed_by_user_id": self.performed_by_user_id,
            "approved_by_user_id": self.approved_by_user_id,
            "completed_by_user_id": self.completed_by_user_id,
            "rejected_by_user_id": self.rejected_by_user_id,
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "submitted_at": to_utc_z(self.submitted_at),
            "approved_at": to_utc_z(self.approved_at),
            "completed_at": to_utc_z(self.completed_at),
            "rejected_at": to_utc_z(self.rejected_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "rejection_reason": self.rejection_reason,
            "cancellation_reason": self.cancellation_reason,
            "lines": [line.to_dict() for line in self.lines],
        }


class AdjustmentLine(db.Model):
    __tablename__ = "adjustment_lines"
    __table_args__ = (
        db.UniqueConstraint("adjustment_id", "product_id", name="uq_adjustment_lines_doc_product"),
        db.CheckConstraint("quantity_before >= 0", name="ck_adjustment_lines_before_non_negative"),
        db.CheckConstraint("quantity_after >= 0", name="ck_adjustment_lines_after_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    adjustment_id = db.Column(db.Integer, db.ForeignKey("adjustments.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity_before = db.Column(db.Integer, nullable=False)
    quantity_after = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(255), nullable=True)

    adjustment = db.relationship(
        "Adjustment",
        backref=db.backref("lines", lazy=True, cascade="all, delete-orphan", order_by="AdjustmentLine.id"),
    )
    product = db.relationship("Product")

    @property
    def quantity_change(self) -> int:
        return self.quantity_after - self.quantity_before

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "adjustment_id": self.adjustment_id,
            "product_id": self.product_id,
            "quantity_before": self.quantity_before,
            "quantity_after": self.quantity_after,
            "quantity_change": self.quantity_change,
            "reason": self.reason,
        }


class Transfer(db.Model):
    """
    Inter-warehouse stock transfer document.

    LIFECYCLE:
    1. DRAFT: Created, lines editable
    2. PENDING: Submitted for approval
    3. APPROVED: Manager approved, ready to ship
    4. IN TRANSIT: Shipped; full ordered quantity left the source warehouse
    5. PARTIALLY RECEIVED: Some, not all, units arrived at the destination
    6. COMPLETED: Every ordered unit received
    7. CANCELLED: Cancelled before shipping

    Shipping posts one Transfer Out per line at the source. Each receipt posts
    one Transfer In per received line at the destination, so a line may have
    several Transfer In entries whose sum equals the shipped quantity once the
    transfer is COMPLETED.
    """
    __tablename__ = "transfers"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_transfers_code"),
        db.CheckConstraint("from_warehouse_id <> to_warehouse_id", name="ck_transfers_distinct_warehouses"),
        db.Index("ix_transfers_status_requested", "status", "requested_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable code (e.g., "TR-00001")
    code = db.Column(db.String(32), nullable=False)

    from_warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)
    to_warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)

    status = db.Column(db.String(20), nullable=False, default="Draft", index=True)

    # Transport details
    transport_method = db.Column(db.String(64), nullable=True)
    carrier = db.Column(db.String(128), nullable=True)
    tracking_number = db.Column(db.String(128), nullable=True)

    expected_delivery_date = db.Column(db.DateTime(timezone=True), nullable=True)
    completion_date = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.String(500), nullable=True)

    requested_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    shipped_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    received_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    requested_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    cancellation_reason = db.Column(db.Text, nullable=True)

    from_warehouse = db.relationship("Warehouse", foreign_keys=[from_warehouse_id])
    to_warehouse = db.relationship("Warehouse", foreign_keys=[to_warehouse_id])
    requested_by = db.relationship("User", foreign_keys=[requested_by_user_id])
    approved_by = db.relationship("User", foreign_keys=[approved_by_user_id])
    received_by = db.relationship("User", foreign_keys=[received_by_user_id])

    def __repr__(self) -> str:
        return f"<Transfer code={self.code!r} status={self.status!r}>"

    @property
    def total_quantity(self) -> int:
        return sum(line.quantity for line in self.lines)

    @property
    def total_received_quantity(self) -> int:
        return sum(line.received_quantity or 0 for line in self.lines)

    @property
    def completion_percentage(self) -> int:
        total = self.total_quantity
        if total == 0:
            return 0
        # nearest-percent rounding (half-up)
        return (self.total_received_quantity * 100 + total // 2) // total

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "from_warehouse_id": self.from_warehouse_id,
            "to_warehouse_id": self.to_warehouse_id,
            "status": self.status,
            "transport_info": {
                "method": self.transport_method,
                "carrier": self.carrier,
                "tracking_number": self.tracking_number,
            },
            "expected_delivery_date": to_utc_z(self.expected_delivery_date),
            "completion_date": to_utc_z(self.completion_date),
            "notes": self.notes,
            "requested_by_user_id": self.requested_by_user_id,
            "approved_by_user_id": self.approved_by_user_id,
            "shipped_by_user_id": self.shipped_by_user_id,
            "received_by_user_id": self.received_by_user_id,
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "requested_at": to_utc_z(self.requested_at),
            "submitted_at": to_utc_z(self.submitted_at),
            "approved_at": to_utc_z(self.approved_at),
            "shipped_at": to_utc_z(self.shipped_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancellation_reason": self.cancellation_reason,
            "total_quantity": self.total_quantity,
            "total_received_quantity": self.total_received_quantity,
            "completion_percentage": self.completion_percentage,
            "lines": [line.to_dict() for line in self.lines],
        }


class TransferLine(db.Model):
    __tablename__ = "transfer_lines"
    __table_args__ = (
        db.UniqueConstraint("transfer_id", "product_id", name="uq_transfer_lines_doc_product"),
        db.CheckConstraint("quantity >= 1", name="ck_transfer_lines_quantity_positive"),
        db.CheckConstraint(
            "received_quantity >= 0 AND received_quantity <= quantity",
            name="ck_transfer_lines_received_within_ordered",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transfer_id = db.Column(db.Integer, db.ForeignKey("transfers.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    # Ordered quantity (shipped in full)
    quantity = db.Column(db.Integer, nullable=False)

    # Running total received at destination
    received_quantity = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.String(255), nullable=True)

    transfer = db.relationship(
        "Transfer",
        backref=db.backref("lines", lazy=True, cascade="all, delete-orphan", order_by="TransferLine.id"),
    )
    product = db.relationship("Product")

    @property
    def outstanding_quantity(self) -> int:
        return self.quantity - (self.received_quantity or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transfer_id": self.transfer_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "received_quantity": self.received_quantity,
            "outstanding_quantity": self.outstanding_quantity,
            "notes": self.notes,
        }


class Return(db.Model):
    """
    Returned stock document (from customers, to suppliers, or internal).

    LIFECYCLE:
    1. DRAFT: Created, lines editable
    2. PENDING: Submitted for approval
    3. APPROVED: Manager approved, ready to process
    4. COMPLETED: Processed; "Return to Stock" lines posted to the ledger
    5. CANCELLED: Closed without touching stock

    Only lines whose action is "Return to Stock" change on-hand quantity.
    Every other disposition (dispose, repair, send back to supplier,
    inspection) is recorded as an audit event when the return is processed.
    """
    __tablename__ = "returns"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_returns_code"),
        db.Index("ix_returns_warehouse_status", "warehouse_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable code (e.g., "RET-00001")
    code = db.Column(db.String(32), nullable=False)

    # Customer, Supplier, Internal, Other
    source_type = db.Column(db.String(16), nullable=False, index=True)
    source_id = db.Column(db.Integer, nullable=True, index=True)
    source_name = db.Column(db.String(255), nullable=False)

    # Optional originating document (Order, Purchase)
    related_document_type = db.Column(db.String(16), nullable=True)
    related_document_id = db.Column(db.Integer, nullable=True)
    related_document_code = db.Column(db.String(32), nullable=True)

    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)

    status = db.Column(db.String(20), nullable=False, default="Draft", index=True)

    notes = db.Column(db.String(500), nullable=True)

    return_date = db.Column(db.DateTime(timezone=True), nullable=False)
    processed_date = db.Column(db.DateTime(timezone=True), nullable=True)

    requested_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    processed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    approval_notes = db.Column(db.Text, nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)

    warehouse = db.relationship("Warehouse")
    requested_by = db.relationship("User", foreign_keys=[requested_by_user_id])
    approved_by = db.relationship("User", foreign_keys=[approved_by_user_id])
    processed_by = db.relationship("User", foreign_keys=[processed_by_user_id])

    def __repr__(self) -> str:
        return f"<Return code={self.code!r} status={self.status!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "source_type": self.source_type,
            "source_id": self.source_id,
            "source_name": self.source_name,
            "related_document": {
                "document_type": self.related_document_type,
                "document_id": self.related_document_id,
                "document_code": self.related_document_code,
            },
            "warehouse_id": self.warehouse_id,
            "status": self.status,
            "notes": self.notes,
            "return_date": to_utc_z(self.return_date),
            "processed_date": to_utc_z(self.processed_date),
            "requested_by_user_id": self.requested_by_user_id,
            "approved_by_user_id": self.approved_by_user_id,
            "processed_by_user_id": self.processed_by_user_id,
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "submitted_at": to_utc_z(self.submitted_at),
            "approved_at": to_utc_z(self.approved_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "approval_notes": self.approval_notes,
            "cancellation_reason": self.cancellation_reason,
            "lines": [line.to_dict() for line in self.lines],
        }


class ReturnLine(db.Model):
    __tablename__ = "return_lines"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_return_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(32), nullable=False)
    condition = db.Column(db.String(16), nullable=False)
    action = db.Column(db.String(32), nullable=False)

    notes = db.Column(db.String(255), nullable=True)

    return_doc = db.relationship(
        "Return",
        backref=db.backref("lines", lazy=True, cascade="all, delete-orphan", order_by="ReturnLine.id"),
    )
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_id": self.return_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "reason": self.reason,
            "condition": self.condition,
            "action": self.action,
            "notes": self.notes,
        }


class AuditEvent(db.Model):
    """
    Append-only audit log for workflow lifecycle events.

    - Written inside the same DB transaction as the change it records.
    - Never updated or deleted (see stockflow/immutability.py).
    - Not part of stock accounting: quantity here is informational and is
      never summed into on-hand figures.
    """
    __tablename__ = "audit_events"
    __table_args__ = (
        db.Index("ix_audit_events_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # e.g., transfer.shipped, return.disposition_recorded
    event_type = db.Column(db.String(64), nullable=False, index=True)

    # adjustment, transfer, return
    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)
    document_code = db.Column(db.String(32), nullable=True, index=True)

    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    # Item-level context (set for per-line events)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=True)
    quantity = db.Column(db.Integer, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    note = db.Column(db.String(255), nullable=True)
    payload = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "document_code": self.document_code,
            "actor_user_id": self.actor_user_id,
            "product_id": self.product_id,
            "warehouse_id": self.warehouse_id,
            "quantity": self.quantity,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
            "note": self.note,
            "payload": self.payload,
        }


class DocumentSequence(db.Model):
    """
    Named monotonic counters for human-readable codes.

    WHY: Prevent race conditions when generating codes (ADJ-, TR-, RET-, IT-).
    Incremented with a single conditional UPDATE so two writers never
    receive the same number.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_document_sequences_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(32), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }

"""Initial stock schema: directories, snapshots, ledger, workflow documents, sequences, audit

Revision ID: s1a2b3c4d5e6
Revises:
Create Date: 2026-10-19 12:00:00.000000
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "s1a2b3c4d5e6"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    ]


def upgrade():
    # Directories (read-only from the stock engine)
    op.create_table(
        "warehouses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(length=32), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint("code", name="uq_warehouses_code"),
        sqlite_autoincrement=True,
    )
    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("sku", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint("sku", name="uq_products_sku"),
        sqlite_autoincrement=True,
    )
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(length=64), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint("username", name="uq_users_username"),
        sqlite_autoincrement=True,
    )

    # Stock snapshots
    op.create_table(
        "stock_snapshots",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("warehouse_id", sa.Integer(), sa.ForeignKey("warehouses.id"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("min_stock_level", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("max_stock_level", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("stock_status", sa.String(length=16), nullable=False),
        sa.Column("last_stock_check", sa.DateTime(timezone=True), nullable=True),
        sa.Column("aisle", sa.String(length=10), nullable=True),
        sa.Column("rack", sa.String(length=10), nullable=True),
        sa.Column("bin", sa.String(length=10), nullable=True),
        sa.Column("notes", sa.String(length=500), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.UniqueConstraint("product_id", "warehouse_id", name="uq_stock_snapshots_product_warehouse"),
        sa.CheckConstraint("quantity >= 0", name="ck_stock_snapshots_quantity_non_negative"),
        sa.CheckConstraint("min_stock_level >= 0", name="ck_stock_snapshots_min_non_negative"),
        sa.CheckConstraint("max_stock_level >= 0", name="ck_stock_snapshots_max_non_negative"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_stock_snapshots_product_id", "stock_snapshots", ["product_id"])
    op.create_index("ix_stock_snapshots_warehouse_id", "stock_snapshots", ["warehouse_id"])
    op.create_index("ix_stock_snapshots_stock_status", "stock_snapshots", ["stock_status"])
    op.create_index("ix_stock_snapshots_last_stock_check", "stock_snapshots", ["last_stock_check"])
    op.create_index("ix_stock_snapshots_warehouse_status", "stock_snapshots", ["warehouse_id", "stock_status"])

    # Stock ledger (append-only)
    op.create_table(
        "ledger_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(length=32), nullable=False),
        sa.Column("movement_type", sa.String(length=16), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("warehouse_id", sa.Integer(), sa.ForeignKey("warehouses.id"), nullable=False),
        sa.Column("snapshot_id", sa.Integer(), sa.ForeignKey("stock_snapshots.id"), nullable=False),
        sa.Column("quantity_before", sa.Integer(), nullable=False),
        sa.Column("quantity_change", sa.Integer(), nullable=False),
        sa.Column("quantity_after", sa.Integer(), nullable=False),
        sa.Column("reference_document_type", sa.String(length=16), nullable=True),
        sa.Column("reference_document_id", sa.Integer(), nullable=True),
        sa.Column("reference_document_code", sa.String(length=32), nullable=True),
        sa.Column("from_warehouse_id", sa.Integer(), sa.ForeignKey("warehouses.id"), nullable=True),
        sa.Column("to_warehouse_id", sa.Integer(), sa.ForeignKey("warehouses.id"), nullable=True),
        sa.Column("performed_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        *_timestamps(),
        sa.Column("notes", sa.String(length=500), nullable=True),
        sa.UniqueConstraint("code", name="uq_ledger_entries_code"),
        sa.CheckConstraint("quantity_change <> 0", name="ck_ledger_entries_change_non_zero"),
        sa.CheckConstraint("quantity_after >= 0", name="ck_ledger_entries_after_non_negative"),
        sa.CheckConstraint(
            "quantity_after = quantity_before + quantity_change",
            name="ck_ledger_entries_after_matches_change",
        ),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_ledger_entries_movement_type", "ledger_entries", ["movement_type"])
    op.create_index("ix_ledger_entries_product_id", "ledger_entries", ["product_id"])
    op.create_index("ix_ledger_entries_warehouse_id", "ledger_entries", ["warehouse_id"])
    op.create_index("ix_ledger_entries_snapshot_id", "ledger_entries", ["snapshot_id"])
    op.create_index("ix_ledger_entries_performed_by_user_id", "ledger_entries", ["performed_by_user_id"])
    op.create_index("ix_ledger_entries_occurred_at", "ledger_entries", ["occurred_at"])
    op.create_index(
        "ix_ledger_entries_product_warehouse_occurred",
        "ledger_entries",
        ["product_id", "warehouse_id", "occurred_at"],
    )
    op.create_index(
        "ix_ledger_entries_reference",
        "ledger_entries",
        ["reference_document_type", "reference_document_id"],
    )

    # Adjustments
    op.create_table(
        "adjustments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(length=32), nullable=False),
        sa.Column("warehouse_id", sa.Integer(), sa.ForeignKey("warehouses.id"), nullable=False),
        sa.Column("reason", sa.String(length=32), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="Draft"),
        sa.Column("adjustment_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("performed_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("approved_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("completed_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("rejected_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("cancelled_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        *_timestamps(),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.UniqueConstraint("code", name="uq_adjustments_code"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_adjustments_warehouse_id", "adjustments", ["warehouse_id"])
    op.create_index("ix_adjustments_reason", "adjustments", ["reason"])
    op.create_index("ix_adjustments_status", "adjustments", ["status"])
    op.create_index("ix_adjustments_performed_by_user_id", "adjustments", ["performed_by_user_id"])
    op.create_index("ix_adjustments_warehouse_status", "adjustments", ["warehouse_id", "status"])

    op.create_table(
        "adjustment_lines",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("adjustment_id", sa.Integer(), sa.ForeignKey("adjustments.id"), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("quantity_before", sa.Integer(), nullable=False),
        sa.Column("quantity_after", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(length=255), nullable=True),
        sa.UniqueConstraint("adjustment_id", "product_id", name="uq_adjustment_lines_doc_product"),
        sa.CheckConstraint("quantity_before >= 0", name="ck_adjustment_lines_before_non_negative"),
        sa.CheckConstraint("quantity_after >= 0", name="ck_adjustment_lines_after_non_negative"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_adjustment_lines_adjustment_id", "adjustment_lines", ["adjustment_id"])
    op.create_index("ix_adjustment_lines_product_id", "adjustment_lines", ["product_id"])

    # Transfers
    op.create_table(
        "transfers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(length=32), nullable=False),
        sa.Column("from_warehouse_id", sa.Integer(), sa.ForeignKey("warehouses.id"), nullable=False),
        sa.Column("to_warehouse_id", sa.Integer(), sa.ForeignKey("warehouses.id"), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="Draft"),
        sa.Column("transport_method", sa.String(length=64), nullable=True),
        sa.Column("carrier", sa.String(length=128), nullable=True),
        sa.Column("tracking_number", sa.String(length=128), nullable=True),
        sa.Column("expected_delivery_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completion_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.String(length=500), nullable=True),
        sa.Column("requested_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("approved_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("shipped_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("received_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("cancelled_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("shipped_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.UniqueConstraint("code", name="uq_transfers_code"),
        sa.CheckConstraint("from_warehouse_id <> to_warehouse_id", name="ck_transfers_distinct_warehouses"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_transfers_from_warehouse_id", "transfers", ["from_warehouse_id"])
    op.create_index("ix_transfers_to_warehouse_id", "transfers", ["to_warehouse_id"])
    op.create_index("ix_transfers_status", "transfers", ["status"])
    op.create_index("ix_transfers_requested_by_user_id", "transfers", ["requested_by_user_id"])
    op.create_index("ix_transfers_status_requested", "transfers", ["status", "requested_at"])

    op.create_table(
        "transfer_lines",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("transfer_id", sa.Integer(), sa.ForeignKey("transfers.id"), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("received_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("notes", sa.String(length=255), nullable=True),
        sa.UniqueConstraint("transfer_id", "product_id", name="uq_transfer_lines_doc_product"),
        sa.CheckConstraint("quantity >= 1", name="ck_transfer_lines_quantity_positive"),
        sa.CheckConstraint(
            "received_quantity >= 0 AND received_quantity <= quantity",
            name="ck_transfer_lines_received_within_ordered",
        ),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_transfer_lines_transfer_id", "transfer_lines", ["transfer_id"])
    op.create_index("ix_transfer_lines_product_id", "transfer_lines", ["product_id"])

    # Returns
    op.create_table(
        "returns",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(length=32), nullable=False),
        sa.Column("source_type", sa.String(length=16), nullable=False),
        sa.Column("source_id", sa.Integer(), nullable=True),
        sa.Column("source_name", sa.String(length=255), nullable=False),
        sa.Column("related_document_type", sa.String(length=16), nullable=True),
        sa.Column("related_document_id", sa.Integer(), nullable=True),
        sa.Column("related_document_code", sa.String(length=32), nullable=True),
        sa.Column("warehouse_id", sa.Integer(), sa.ForeignKey("warehouses.id"), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="Draft"),
        sa.Column("notes", sa.String(length=500), nullable=True),
        sa.Column("return_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("requested_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("approved_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("processed_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("cancelled_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        *_timestamps(),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approval_notes", sa.Text(), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.UniqueConstraint("code", name="uq_returns_code"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_returns_source_type", "returns", ["source_type"])
    op.create_index("ix_returns_source_id", "returns", ["source_id"])
    op.create_index("ix_returns_warehouse_id", "returns", ["warehouse_id"])
    op.create_index("ix_returns_status", "returns", ["status"])
    op.create_index("ix_returns_requested_by_user_id", "returns", ["requested_by_user_id"])
    op.create_index("ix_returns_warehouse_status", "returns", ["warehouse_id", "status"])

    op.create_table(
        "return_lines",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("return_id", sa.Integer(), sa.ForeignKey("returns.id"), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(length=32), nullable=False),
        sa.Column("condition", sa.String(length=16), nullable=False),
        sa.Column("action", sa.String(length=32), nullable=False),
        sa.Column("notes", sa.String(length=255), nullable=True),
        sa.CheckConstraint("quantity >= 1", name="ck_return_lines_quantity_positive"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_return_lines_return_id", "return_lines", ["return_id"])
    op.create_index("ix_return_lines_product_id", "return_lines", ["product_id"])

    # Audit log (append-only)
    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("entity_type", sa.String(length=32), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("document_code", sa.String(length=32), nullable=True),
        sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=True),
        sa.Column("warehouse_id", sa.Integer(), sa.ForeignKey("warehouses.id"), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        *_timestamps(),
        sa.Column("note", sa.String(length=255), nullable=True),
        sa.Column("payload", sa.Text(), nullable=True),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_audit_events_event_type", "audit_events", ["event_type"])
    op.create_index("ix_audit_events_document_code", "audit_events", ["document_code"])
    op.create_index("ix_audit_events_actor_user_id", "audit_events", ["actor_user_id"])
    op.create_index("ix_audit_events_occurred_at", "audit_events", ["occurred_at"])
    op.create_index("ix_audit_events_entity", "audit_events", ["entity_type", "entity_id"])

    # Document sequences
    op.create_table(
        "document_sequences",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=32), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.UniqueConstraint("name", name="uq_document_sequences_name"),
        sqlite_autoincrement=True,
    )


def downgrade():
    op.drop_table("document_sequences")
    op.drop_table("audit_events")
    op.drop_table("return_lines")
    op.drop_table("returns")
    op.drop_table("transfer_lines")
    op.drop_table("transfers")
    op.drop_table("adjustment_lines")
    op.drop_table("adjustments")
    op.drop_table("ledger_entries")
    op.drop_table("stock_snapshots")
    op.drop_table("users")
    op.drop_table("products")
    op.drop_table("warehouses")

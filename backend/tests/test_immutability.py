"""
Append-only ledger and audit rows; terminal workflow documents.
"""

from datetime import datetime

import pytest

from stockflow.errors import ImmutableRecordError
from stockflow.models import Adjustment, AuditEvent, LedgerEntry
from stockflow.services import adjustment_service


def _completed_adjustment(warehouse, product, clerk, manager):
    adjustment = adjustment_service.create_adjustment(
        warehouse_id=warehouse.id,
        reason="Found Items",
        lines=[{"product_id": product.id, "quantity_before": 0, "quantity_after": 4}],
        performed_by_user_id=clerk.id,
    ).document
    adjustment_service.submit_adjustment(adjustment.id, user_id=clerk.id)
    adjustment_service.approve_adjustment(adjustment.id, user_id=manager.id)
    adjustment_service.complete_adjustment(adjustment.id, user_id=manager.id)
    return adjustment_service.get_adjustment(adjustment.id)


class TestAppendOnly:
    def test_ledger_entry_cannot_be_updated(self, db_session, warehouse_1, product_1, stock):
        entry = stock(product_1, warehouse_1, 10).entry
        entry.notes = "rewritten"
        with pytest.raises(ImmutableRecordError):
            db_session.flush()
        db_session.rollback()

    def test_ledger_entry_cannot_be_deleted(self, db_session, warehouse_1, product_1, stock):
        stock(product_1, warehouse_1, 10)
        entry = db_session.query(LedgerEntry).first()
        db_session.delete(entry)
        with pytest.raises(ImmutableRecordError):
            db_session.flush()
        db_session.rollback()
        assert db_session.query(LedgerEntry).count() == 1

    def test_audit_event_cannot_be_changed(self, db_session, warehouse_1, product_1, clerk):
        adjustment_service.create_adjustment(
            warehouse_id=warehouse_1.id,
            reason="Other",
            lines=[{"product_id": product_1.id, "quantity_before": 0, "quantity_after": 1}],
            performed_by_user_id=clerk.id,
        )
        event = db_session.query(AuditEvent).first()
        event.note = "edited"
        with pytest.raises(ImmutableRecordError):
            db_session.flush()
        db_session.rollback()

        db_session.delete(db_session.query(AuditEvent).first())
        with pytest.raises(ImmutableRecordError):
            db_session.flush()
        db_session.rollback()


class TestTerminalDocuments:
    def test_completed_adjustment_content_is_frozen(self, db_session, warehouse_1, product_1, clerk, manager):
        adjustment = _completed_adjustment(warehouse_1, product_1, clerk, manager)
        adjustment.description = "after the fact"
        with pytest.raises(ImmutableRecordError):
            db_session.flush()
        db_session.rollback()

    def test_completed_adjustment_date_is_frozen(self, db_session, warehouse_1, product_1, clerk, manager):
        adjustment = _completed_adjustment(warehouse_1, product_1, clerk, manager)
        adjustment.adjustment_date = datetime(2001, 1, 1)
        with pytest.raises(ImmutableRecordError):
            db_session.flush()
        db_session.rollback()

    def test_completed_adjustment_lines_are_frozen(self, db_session, warehouse_1, product_1, clerk, manager):
        adjustment = _completed_adjustment(warehouse_1, product_1, clerk, manager)
        adjustment.lines[0].quantity_after = 40
        with pytest.raises(ImmutableRecordError):
            db_session.flush()
        db_session.rollback()

    def test_completed_adjustment_cannot_be_deleted(self, db_session, warehouse_1, product_1, clerk, manager):
        adjustment = _completed_adjustment(warehouse_1, product_1, clerk, manager)
        db_session.delete(adjustment)
        with pytest.raises(ImmutableRecordError):
            db_session.flush()
        db_session.rollback()
        assert db_session.query(Adjustment).count() == 1

    def test_cancelled_adjustment_can_be_deleted(self, db_session, warehouse_1, product_1, clerk):
        adjustment = adjustment_service.create_adjustment(
            warehouse_id=warehouse_1.id,
            reason="Other",
            lines=[{"product_id": product_1.id, "quantity_before": 0, "quantity_after": 1}],
            performed_by_user_id=clerk.id,
        ).document
        adjustment_service.cancel_adjustment(adjustment.id, user_id=clerk.id)

        db_session.delete(adjustment_service.get_adjustment(adjustment.id))
        db_session.commit()
        assert db_session.query(Adjustment).count() == 0

    def test_violation_is_logged(self, db_session, warehouse_1, product_1, stock, caplog):
        entry = stock(product_1, warehouse_1, 10).entry
        entry.quantity_change = 11
        with pytest.raises(ImmutableRecordError):
            db_session.flush()
        db_session.rollback()
        assert "Immutability violation blocked" in caplog.text

import pytest

from stockflow.errors import (
    InsufficientStockError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from stockflow.models import Adjustment, AuditEvent, LedgerEntry
from stockflow.services import adjustment_service, audit_service, ledger_service, stock_service


def _create(warehouse, user, lines, reason="Physical Count"):
    return adjustment_service.create_adjustment(
        warehouse_id=warehouse.id,
        reason=reason,
        lines=lines,
        performed_by_user_id=user.id,
    ).document


def _approved(warehouse, clerk, manager, lines, reason="Physical Count"):
    adjustment = _create(warehouse, clerk, lines, reason=reason)
    adjustment_service.submit_adjustment(adjustment.id, user_id=clerk.id)
    adjustment_service.approve_adjustment(adjustment.id, user_id=manager.id)
    return adjustment


class TestAdjustmentLifecycle:
    def test_create_assigns_code_and_draft_status(self, db_session, warehouse_1, product_1, clerk):
        result = adjustment_service.create_adjustment(
            warehouse_id=warehouse_1.id,
            reason="Physical Count",
            description="Cycle count aisle 3",
            lines=[{"product_id": product_1.id, "quantity_before": 20, "quantity_after": 15}],
            performed_by_user_id=clerk.id,
        )
        adjustment = result.document
        assert adjustment.code == "ADJ-00001"
        assert adjustment.status == "Draft"
        assert adjustment.lines[0].quantity_change == -5
        assert result.entries == []
        assert [e.event_type for e in result.events] == ["adjustment.created"]

    def test_scenario_physical_count_completes(self, db_session, warehouse_1, product_1, clerk, manager, stock):
        stock(product_1, warehouse_1, 20)
        adjustment = _approved(
            warehouse_1,
            clerk,
            manager,
            [{"product_id": product_1.id, "quantity_before": 20, "quantity_after": 15}],
        )
        assert adjustment_service.get_adjustment(adjustment.id).approved_by_user_id == manager.id

        result = adjustment_service.complete_adjustment(adjustment.id, user_id=manager.id)

        assert result.document.status == "Completed"
        assert result.document.completed_at is not None
        assert len(result.entries) == 1
        entry = result.entries[0]
        assert entry.movement_type == "Adjustment"
        assert entry.quantity_change == -5
        assert entry.reference_document_code == "ADJ-00001"
        assert stock_service.get_quantity_on_hand(product_1.id, warehouse_1.id) == 15

    def test_zero_delta_lines_post_nothing(self, db_session, warehouse_1, product_1, product_2, clerk, manager, stock):
        stock(product_1, warehouse_1, 10)
        stock(product_2, warehouse_1, 10)
        adjustment = _approved(
            warehouse_1,
            clerk,
            manager,
            [
                {"product_id": product_1.id, "quantity_before": 10, "quantity_after": 10},
                {"product_id": product_2.id, "quantity_before": 10, "quantity_after": 12},
            ],
        )
        result = adjustment_service.complete_adjustment(adjustment.id, user_id=manager.id)
        assert [e.product_id for e in result.entries] == [product_2.id]

    def test_failed_line_rolls_back_whole_completion(self, db_session, warehouse_1, product_1, product_2, clerk, manager, stock):
        stock(product_1, warehouse_1, 10)
        stock(product_2, warehouse_1, 2)
        adjustment = _approved(
            warehouse_1,
            clerk,
            manager,
            [
                {"product_id": product_1.id, "quantity_before": 10, "quantity_after": 4},
                # 2 on hand, delta -5 drives it negative
                {"product_id": product_2.id, "quantity_before": 5, "quantity_after": 0},
            ],
            reason="Lost Items",
        )
        entries_before = db_session.query(LedgerEntry).count()

        with pytest.raises(InsufficientStockError):
            adjustment_service.complete_adjustment(adjustment.id, user_id=manager.id)

        assert adjustment_service.get_adjustment(adjustment.id).status == "Approved"
        assert stock_service.get_quantity_on_hand(product_1.id, warehouse_1.id) == 10
        assert stock_service.get_quantity_on_hand(product_2.id, warehouse_1.id) == 2
        assert db_session.query(LedgerEntry).count() == entries_before

    def test_complete_twice_fails_without_new_entries(self, db_session, warehouse_1, product_1, clerk, manager, stock):
        stock(product_1, warehouse_1, 20)
        adjustment = _approved(
            warehouse_1,
            clerk,
            manager,
            [{"product_id": product_1.id, "quantity_before": 20, "quantity_after": 18}],
        )
        adjustment_service.complete_adjustment(adjustment.id, user_id=manager.id)
        entries = db_session.query(LedgerEntry).count()

        with pytest.raises(InvalidStateTransitionError):
            adjustment_service.complete_adjustment(adjustment.id, user_id=manager.id)
        assert db_session.query(LedgerEntry).count() == entries

    def test_approve_requires_pending(self, db_session, warehouse_1, product_1, clerk, manager):
        adjustment = _create(warehouse_1, clerk, [{"product_id": product_1.id, "quantity_before": 0, "quantity_after": 3}])
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            adjustment_service.approve_adjustment(adjustment.id, user_id=manager.id)
        assert "Draft" in str(exc_info.value)

    def test_complete_requires_approved(self, db_session, warehouse_1, product_1, clerk, manager):
        adjustment = _create(warehouse_1, clerk, [{"product_id": product_1.id, "quantity_before": 0, "quantity_after": 3}])
        adjustment_service.submit_adjustment(adjustment.id, user_id=clerk.id)
        with pytest.raises(InvalidStateTransitionError):
            adjustment_service.complete_adjustment(adjustment.id, user_id=manager.id)

    def test_reject_records_reason(self, db_session, warehouse_1, product_1, clerk, manager):
        adjustment = _create(warehouse_1, clerk, [{"product_id": product_1.id, "quantity_before": 0, "quantity_after": 3}])
        adjustment_service.submit_adjustment(adjustment.id, user_id=clerk.id)
        result = adjustment_service.reject_adjustment(adjustment.id, user_id=manager.id, reason="Recount needed")
        assert result.document.status == "Rejected"
        assert result.document.rejection_reason == "Recount needed"

        with pytest.raises(ValidationError):
            adjustment_service.reject_adjustment(adjustment.id, user_id=manager.id, reason=" ")

    def test_return_to_draft_and_resubmit(self, db_session, warehouse_1, product_1, clerk, manager):
        adjustment = _create(warehouse_1, clerk, [{"product_id": product_1.id, "quantity_before": 0, "quantity_after": 3}])
        adjustment_service.submit_adjustment(adjustment.id, user_id=clerk.id)
        result = adjustment_service.return_adjustment_to_draft(adjustment.id, user_id=manager.id, note="fix counts")
        assert result.document.status == "Draft"
        assert result.document.submitted_at is None
        assert adjustment_service.submit_adjustment(adjustment.id, user_id=clerk.id).document.status == "Pending Approval"

    def test_cancel_from_draft(self, db_session, warehouse_1, product_1, clerk):
        draft = _create(warehouse_1, clerk, [{"product_id": product_1.id, "quantity_before": 0, "quantity_after": 3}])
        result = adjustment_service.cancel_adjustment(draft.id, user_id=clerk.id, reason="duplicate")
        assert result.document.status == "Cancelled"
        assert result.document.cancellation_reason == "duplicate"

    def test_cancel_from_approved_not_allowed(self, db_session, warehouse_1, product_1, clerk, manager):
        approved = _approved(warehouse_1, clerk, manager, [{"product_id": product_1.id, "quantity_before": 0, "quantity_after": 3}])
        with pytest.raises(InvalidStateTransitionError):
            adjustment_service.cancel_adjustment(approved.id, user_id=manager.id, reason="duplicate")
        assert adjustment_service.get_adjustment(approved.id).status == "Approved"

    def test_cancel_from_pending_not_allowed(self, db_session, warehouse_1, product_1, clerk):
        adjustment = _create(warehouse_1, clerk, [{"product_id": product_1.id, "quantity_before": 0, "quantity_after": 3}])
        adjustment_service.submit_adjustment(adjustment.id, user_id=clerk.id)
        with pytest.raises(InvalidStateTransitionError):
            adjustment_service.cancel_adjustment(adjustment.id, user_id=clerk.id)

    def test_every_transition_is_audited(self, db_session, warehouse_1, product_1, clerk, manager, stock):
        stock(product_1, warehouse_1, 5)
        adjustment = _approved(
            warehouse_1, clerk, manager, [{"product_id": product_1.id, "quantity_before": 5, "quantity_after": 6}]
        )
        adjustment_service.complete_adjustment(adjustment.id, user_id=manager.id)
        events = (
            db_session.query(AuditEvent.event_type)
            .filter_by(entity_type="adjustment", entity_id=adjustment.id)
            .order_by(AuditEvent.id)
            .all()
        )
        assert [e[0] for e in events] == [
            "adjustment.created",
            "adjustment.submitted",
            "adjustment.approved",
            "adjustment.completed",
        ]

        approved = audit_service.list_audit_events(
            entity_type="adjustment", entity_id=adjustment.id, event_type="adjustment.approved"
        )
        assert [e.actor_user_id for e in approved] == [manager.id]


class TestAdjustmentValidation:
    def test_requires_lines(self, db_session, warehouse_1, clerk):
        with pytest.raises(ValidationError):
            _create(warehouse_1, clerk, [])

    def test_rejects_unknown_reason(self, db_session, warehouse_1, product_1, clerk):
        with pytest.raises(ValidationError):
            _create(
                warehouse_1,
                clerk,
                [{"product_id": product_1.id, "quantity_before": 0, "quantity_after": 1}],
                reason="Gremlins",
            )

    def test_rejects_negative_quantities(self, db_session, warehouse_1, product_1, clerk):
        with pytest.raises(ValidationError):
            _create(warehouse_1, clerk, [{"product_id": product_1.id, "quantity_before": -1, "quantity_after": 1}])

    def test_rejects_duplicate_products(self, db_session, warehouse_1, product_1, clerk):
        line = {"product_id": product_1.id, "quantity_before": 0, "quantity_after": 1}
        with pytest.raises(ValidationError):
            _create(warehouse_1, clerk, [line, dict(line)])

    def test_rejects_future_date(self, db_session, warehouse_1, product_1, clerk):
        with pytest.raises(ValidationError):
            adjustment_service.create_adjustment(
                warehouse_id=warehouse_1.id,
                reason="Other",
                lines=[{"product_id": product_1.id, "quantity_before": 0, "quantity_after": 1}],
                performed_by_user_id=clerk.id,
                adjustment_date="2999-01-01T00:00:00Z",
            )

    def test_rejects_malformed_date(self, db_session, warehouse_1, product_1, clerk):
        with pytest.raises(ValidationError):
            adjustment_service.create_adjustment(
                warehouse_id=warehouse_1.id,
                reason="Other",
                lines=[{"product_id": product_1.id, "quantity_before": 0, "quantity_after": 1}],
                performed_by_user_id=clerk.id,
                adjustment_date="yesterday",
            )

    def test_unknown_warehouse_is_not_found(self, db_session, product_1, clerk):
        with pytest.raises(NotFoundError):
            adjustment_service.create_adjustment(
                warehouse_id=4242,
                reason="Other",
                lines=[{"product_id": product_1.id, "quantity_before": 0, "quantity_after": 1}],
                performed_by_user_id=clerk.id,
            )
        assert db_session.query(Adjustment).count() == 0


class TestAdjustmentEditAndDelete:
    def test_update_replaces_lines(self, db_session, warehouse_1, product_1, product_2, clerk):
        adjustment = _create(warehouse_1, clerk, [{"product_id": product_1.id, "quantity_before": 0, "quantity_after": 1}])
        result = adjustment_service.update_adjustment(
            adjustment.id,
            user_id=clerk.id,
            description="recount",
            lines=[
                {"product_id": product_1.id, "quantity_before": 0, "quantity_after": 2},
                {"product_id": product_2.id, "quantity_before": 4, "quantity_after": 3},
            ],
        )
        assert result.document.description == "recount"
        assert sorted((l.product_id, l.quantity_after) for l in result.document.lines) == [
            (product_1.id, 2),
            (product_2.id, 3),
        ]

    def test_update_blocked_after_approval(self, db_session, warehouse_1, product_1, clerk, manager):
        adjustment = _approved(
            warehouse_1, clerk, manager, [{"product_id": product_1.id, "quantity_before": 0, "quantity_after": 1}]
        )
        with pytest.raises(InvalidStateTransitionError):
            adjustment_service.update_adjustment(adjustment.id, user_id=clerk.id, description="late edit")

    def test_delete_allowed_from_draft_pending_cancelled(self, db_session, warehouse_1, product_1, clerk):
        lines = [{"product_id": product_1.id, "quantity_before": 0, "quantity_after": 1}]
        draft = _create(warehouse_1, clerk, lines)
        pending = _create(warehouse_1, clerk, lines)
        adjustment_service.submit_adjustment(pending.id, user_id=clerk.id)
        cancelled = _create(warehouse_1, clerk, lines)
        adjustment_service.cancel_adjustment(cancelled.id, user_id=clerk.id)

        for adjustment_id in (draft.id, pending.id, cancelled.id):
            adjustment_service.delete_adjustment(adjustment_id, user_id=clerk.id)
            with pytest.raises(NotFoundError):
                adjustment_service.get_adjustment(adjustment_id)

    def test_delete_blocked_for_completed_and_approved(self, db_session, warehouse_1, product_1, clerk, manager, stock):
        stock(product_1, warehouse_1, 5)
        lines = [{"product_id": product_1.id, "quantity_before": 5, "quantity_after": 4}]
        approved = _approved(warehouse_1, clerk, manager, lines)
        with pytest.raises(InvalidStateTransitionError):
            adjustment_service.delete_adjustment(approved.id, user_id=clerk.id)

        adjustment_service.complete_adjustment(approved.id, user_id=manager.id)
        with pytest.raises(InvalidStateTransitionError):
            adjustment_service.delete_adjustment(approved.id, user_id=clerk.id)
        assert ledger_service.list_entries_for_document("Adjustment", approved.id)

    def test_lookup_and_list(self, db_session, warehouse_1, warehouse_2, product_1, clerk):
        lines = [{"product_id": product_1.id, "quantity_before": 0, "quantity_after": 1}]
        first = _create(warehouse_1, clerk, lines)
        _create(warehouse_2, clerk, lines, reason="Found Items")

        assert adjustment_service.get_adjustment_by_code("ADJ-00001").id == first.id
        with pytest.raises(NotFoundError):
            adjustment_service.get_adjustment_by_code("ADJ-99999")

        assert [a.code for a in adjustment_service.list_adjustments()] == ["ADJ-00002", "ADJ-00001"]
        assert [a.code for a in adjustment_service.list_adjustments(warehouse_id=warehouse_1.id)] == ["ADJ-00001"]
        assert [a.code for a in adjustment_service.list_adjustments(reason="Found Items")] == ["ADJ-00002"]
        assert adjustment_service.list_adjustments(status="Completed") == []

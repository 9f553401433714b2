"""
Retry, transaction and optimistic-locking behavior.

SQLite in tests runs on a single shared connection, so races are staged by
changing rows behind the ORM's back with Core UPDATE statements.
"""

import logging

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from stockflow.errors import ConflictError, InvalidStateTransitionError, ValidationError
from stockflow.models import Adjustment, StockSnapshot, Warehouse
from stockflow.services import adjustment_service
from stockflow.services.concurrency import run_in_transaction, run_step, run_with_retry
from stockflow.services.document_service import transition_status


def _locked_error():
    return OperationalError("UPDATE stock_snapshots", {}, Exception("database is locked"))


class TestRunWithRetry:
    def test_retries_then_succeeds(self, db_session, caplog):
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise ConflictError("lost race")
            return "ok"

        with caplog.at_level(logging.WARNING):
            assert run_with_retry(flaky, attempts=3, backoff_base=0) == "ok"

        assert len(calls) == 3
        assert "Retrying after concurrency failure" in caplog.text

    def test_exhausted_operational_error_becomes_conflict(self, db_session):
        calls = []

        def always_locked():
            calls.append(1)
            raise _locked_error()

        with pytest.raises(ConflictError) as exc_info:
            run_with_retry(always_locked, attempts=2, backoff_base=0)

        assert len(calls) == 2
        assert isinstance(exc_info.value.__cause__, OperationalError)
        assert exc_info.value.retryable is True

    def test_non_retryable_errors_surface_immediately(self, db_session):
        calls = []

        def invalid():
            calls.append(1)
            raise ValidationError("bad input")

        with pytest.raises(ValidationError):
            run_with_retry(invalid, attempts=5, backoff_base=0)
        assert len(calls) == 1

    def test_attempts_default_from_config(self, app, db_session):
        calls = []

        def always_conflict():
            calls.append(1)
            raise ConflictError("again")

        with pytest.raises(ConflictError):
            run_with_retry(always_conflict)
        assert len(calls) == app.config["STOCK_RETRY_ATTEMPTS"]


class TestTransactions:
    def test_failed_step_rolls_back_everything(self, db_session):
        def _op():
            db_session.add(Warehouse(code="TMP", name="Temporary"))
            db_session.flush()
            raise ValidationError("abort")

        with pytest.raises(ValidationError):
            run_step(_op)
        assert db_session.query(Warehouse).filter_by(code="TMP").count() == 0

    def test_successful_step_commits(self, db_session):
        run_in_transaction(lambda: db_session.add(Warehouse(code="KEEP", name="Kept")))
        db_session.rollback()
        assert db_session.query(Warehouse).filter_by(code="KEEP").count() == 1


class TestOptimisticLocking:
    def test_stale_snapshot_version_is_detected(self, db_session, warehouse_1, product_1, stock):
        stock(product_1, warehouse_1, 10)
        snapshot = db_session.query(StockSnapshot).filter_by(product_id=product_1.id).one()

        # Another writer bumps the version after we read the row
        db_session.execute(
            update(StockSnapshot)
            .where(StockSnapshot.id == snapshot.id)
            .values(version_id=StockSnapshot.version_id + 1)
            .execution_options(synchronize_session=False)
        )
        snapshot.quantity = 9

        with pytest.raises(StaleDataError):
            db_session.flush()
        db_session.rollback()

    def test_snapshot_version_increments_per_movement(self, db_session, warehouse_1, product_1, stock):
        first = stock(product_1, warehouse_1, 10).snapshot.version_id
        second = stock(product_1, warehouse_1, 5).snapshot.version_id
        assert second == first + 1


class TestConditionalTransitions:
    def test_lost_status_race_raises_conflict(self, db_session, warehouse_1, product_1, clerk):
        adjustment = adjustment_service.create_adjustment(
            warehouse_id=warehouse_1.id,
            reason="Physical Count",
            lines=[{"product_id": product_1.id, "quantity_before": 0, "quantity_after": 2}],
            performed_by_user_id=clerk.id,
        ).document

        # A concurrent submit already moved the row on
        db_session.execute(
            update(Adjustment)
            .where(Adjustment.id == adjustment.id)
            .values(status="Pending Approval")
            .execution_options(synchronize_session=False)
        )

        with pytest.raises(ConflictError):
            transition_status(
                Adjustment,
                adjustment,
                document_type="Adjustment",
                action="submit",
                from_statuses=("Draft",),
                to_status="Pending Approval",
            )
        db_session.rollback()

    def test_second_identical_transition_is_rejected(self, db_session, warehouse_1, product_1, clerk):
        adjustment = adjustment_service.create_adjustment(
            warehouse_id=warehouse_1.id,
            reason="Physical Count",
            lines=[{"product_id": product_1.id, "quantity_before": 0, "quantity_after": 2}],
            performed_by_user_id=clerk.id,
        ).document
        adjustment_service.submit_adjustment(adjustment.id, user_id=clerk.id)

        with pytest.raises(InvalidStateTransitionError):
            adjustment_service.submit_adjustment(adjustment.id, user_id=clerk.id)

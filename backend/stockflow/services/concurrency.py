# Overview: Transaction boundaries, row locking and retry for workflow steps.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConflictError
from ..extensions import db


RETRYABLE_ERRORS = (OperationalError, StaleDataError, ConflictError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    On SQLite the snapshot version_id column still catches lost updates.
    """
    return query.with_for_update()


def run_in_transaction(func):
    """
    Run func as one atomic unit: commit on success, roll back on any error.

    Everything func writes (ledger entries, snapshots, status changes, audit
    events) lands together or not at all.
    """
    try:
        result = func()
        db.session.commit()
        return result
    except Exception:
        db.session.rollback()
        raise


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks), StaleDataError
    (optimistic locking conflicts) and ConflictError (lost conditional status
    updates, concurrent counter/snapshot inserts). func must re-read
    everything it needs; objects from a failed attempt are expired.

    When attempts run out the failure surfaces as a retryable ConflictError.
    """
    if attempts is None:
        attempts = current_app.config.get("STOCK_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("STOCK_RETRY_BACKOFF", 0.1)
    attempts = max(1, attempts)

    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                current_app.logger.warning(
                    "Giving up after %d attempt(s): %s", attempts, exc
                )
                if isinstance(exc, ConflictError):
                    raise
                raise ConflictError(f"Concurrent modification detected: {exc}") from exc
            current_app.logger.warning(
                "Retrying after concurrency failure (attempt %d/%d): %s",
                attempt + 1,
                attempts,
                exc,
            )
            time.sleep(backoff_base * (2 ** attempt))


def run_step(func):
    """One workflow step: a single transaction, retried on write conflicts."""
    return run_with_retry(lambda: run_in_transaction(func))

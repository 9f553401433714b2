"""
Stockflow error taxonomy.

Every error raised by the service layer derives from StockflowError and carries:
- code: machine-readable identifier
- http_status: status the surrounding application layer should answer with
- retryable: whether the caller may retry the same call unchanged (or after
  correcting stock, for InsufficientStockError)

Validation and not-found errors are raised before any write happens. Anything
raised inside a workflow step aborts the whole step.
"""
from __future__ import annotations


class StockflowError(Exception):
    """Base class for all stock engine errors."""

    code: str = "STOCKFLOW_ERROR"
    http_status: int = 500
    retryable: bool = False

    def to_dict(self) -> dict:
        return {
            "error": str(self),
            "code": self.code,
            "retryable": self.retryable,
        }


class ValidationError(StockflowError, ValueError):
    """400-level input problem (missing fields, bad enum, bad quantity)."""

    code = "VALIDATION_ERROR"
    http_status = 400


class NotFoundError(StockflowError, LookupError):
    """Referenced snapshot, document, warehouse, product or user does not exist."""

    code = "NOT_FOUND"
    http_status = 404

    def __init__(self, entity_type: str, entity_id):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} {entity_id} not found")


class InsufficientStockError(StockflowError):
    """A decrease would drive on-hand quantity below zero."""

    code = "INSUFFICIENT_STOCK"
    http_status = 409
    retryable = True

    def __init__(self, product_id: int, warehouse_id: int, available: int, requested: int):
        self.product_id = product_id
        self.warehouse_id = warehouse_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for product {product_id} in warehouse {warehouse_id}. "
            f"Available: {available}, requested: {requested}"
        )


class InvalidStateTransitionError(StockflowError):
    """Workflow operation attempted from a status that does not allow it."""

    code = "INVALID_STATE_TRANSITION"
    http_status = 409

    def __init__(self, document_type: str, document_code: str | None, current: str, action: str):
        self.document_type = document_type
        self.document_code = document_code
        self.current = current
        self.action = action
        label = document_code or document_type
        super().__init__(f"Cannot {action} {document_type.lower()} {label} in {current} status")


class ConflictError(StockflowError):
    """Concurrent modification detected by the store; safe to retry."""

    code = "CONFLICT"
    http_status = 409
    retryable = True


class ImmutableRecordError(StockflowError):
    """Attempt to modify or delete an append-only or audit-protected record."""

    code = "IMMUTABLE_RECORD"
    http_status = 409

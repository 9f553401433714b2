from .directory import Warehouse, Product, User
from .inventory import StockSnapshot, LedgerEntry
from .documents import (
    Adjustment,
    AdjustmentLine,
    Transfer,
    TransferLine,
    Return,
    ReturnLine,
    AuditEvent,
    DocumentSequence,
)

__all__ = [
    'Warehouse', 'Product', 'User',
    'StockSnapshot', 'LedgerEntry',
    'Adjustment', 'AdjustmentLine',
    'Transfer', 'TransferLine',
    'Return', 'ReturnLine',
    'AuditEvent', 'DocumentSequence',
]

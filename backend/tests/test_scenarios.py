"""
End-to-end stock story: purchase, sale, transfer, count correction, short ship.
"""

import pytest

from stockflow.errors import InsufficientStockError
from stockflow.services import (
    adjustment_service,
    ledger_service,
    movement_service,
    stock_service,
    transfer_service,
)


def test_purchase_sale_transfer_adjust_short_ship(db_session, warehouse_1, warehouse_2, product_1, clerk, manager):
    movement_service.set_stock_levels(product_1.id, warehouse_1.id, min_stock_level=10, max_stock_level=200)

    purchase = movement_service.record_purchase(product_1.id, warehouse_1.id, 100, clerk.id)
    assert purchase.snapshot.quantity == 100
    assert purchase.snapshot.stock_status == "In Stock"

    sale = movement_service.record_sale(product_1.id, warehouse_1.id, 30, clerk.id)
    assert sale.snapshot.quantity == 70
    assert (sale.entry.quantity_before, sale.entry.quantity_after) == (100, 70)

    transfer = transfer_service.create_transfer(
        from_warehouse_id=warehouse_1.id,
        to_warehouse_id=warehouse_2.id,
        lines=[{"product_id": product_1.id, "quantity": 50}],
        requested_by_user_id=clerk.id,
    ).document
    assert transfer.code == "TR-00001"
    transfer_service.submit_transfer(transfer.id, user_id=clerk.id)
    transfer_service.approve_transfer(transfer.id, user_id=manager.id)

    shipped = transfer_service.ship_transfer(transfer.id, user_id=clerk.id)
    assert len(shipped.entries) == 1
    assert stock_service.get_quantity_on_hand(product_1.id, warehouse_1.id) == 20

    received = transfer_service.receive_transfer(
        transfer.id,
        user_id=manager.id,
        received_items=[{"product_id": product_1.id, "received_quantity": 50}],
    )
    assert received.document.status == "Completed"
    assert received.document.completion_date is not None
    assert stock_service.get_quantity_on_hand(product_1.id, warehouse_2.id) == 50

    adjustment = adjustment_service.create_adjustment(
        warehouse_id=warehouse_1.id,
        reason="Physical Count",
        lines=[{"product_id": product_1.id, "quantity_before": 20, "quantity_after": 15}],
        performed_by_user_id=clerk.id,
    ).document
    assert adjustment.code == "ADJ-00001"
    adjustment_service.submit_adjustment(adjustment.id, user_id=clerk.id)
    adjustment_service.approve_adjustment(adjustment.id, user_id=manager.id)
    completed = adjustment_service.complete_adjustment(adjustment.id, user_id=manager.id)
    assert completed.entries[0].quantity_change == -5
    assert stock_service.get_quantity_on_hand(product_1.id, warehouse_1.id) == 15

    big = transfer_service.create_transfer(
        from_warehouse_id=warehouse_1.id,
        to_warehouse_id=warehouse_2.id,
        lines=[{"product_id": product_1.id, "quantity": 1000}],
        requested_by_user_id=clerk.id,
    ).document
    transfer_service.submit_transfer(big.id, user_id=clerk.id)
    transfer_service.approve_transfer(big.id, user_id=manager.id)
    ledger_size = len(ledger_service.list_entries(limit=500))

    with pytest.raises(InsufficientStockError):
        transfer_service.ship_transfer(big.id, user_id=clerk.id)

    assert stock_service.get_quantity_on_hand(product_1.id, warehouse_1.id) == 15
    assert transfer_service.get_transfer(big.id).status == "Approved"
    assert len(ledger_service.list_entries(limit=500)) == ledger_size
    assert ledger_service.verify_stock_invariants() == []

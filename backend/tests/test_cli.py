from sqlalchemy import update

from stockflow.models import Product, StockSnapshot, User, Warehouse


def test_stock_verify_passes(app, db_session, warehouse_1, product_1, stock):
    stock(product_1, warehouse_1, 12)
    result = app.test_cli_runner().invoke(args=["stock", "verify"])
    assert result.exit_code == 0
    assert "PASS All stock invariants hold." in result.output


def test_stock_verify_fails_on_violation(app, db_session, warehouse_1, product_1, stock):
    stock(product_1, warehouse_1, 12)
    db_session.execute(
        update(StockSnapshot)
        .values(quantity=13)
        .execution_options(synchronize_session=False)
    )
    db_session.commit()

    result = app.test_cli_runner().invoke(args=["stock", "verify"])
    assert result.exit_code == 1
    assert "FAIL 1 violation(s)" in result.output
    assert "[quantity_matches_ledger]" in result.output


def test_stock_levels_and_low(app, db_session, warehouse_1, product_1, product_2, stock):
    stock(product_1, warehouse_1, 50)
    stock(product_2, warehouse_1, 3)
    runner = app.test_cli_runner()

    levels = runner.invoke(args=["stock", "levels", "--warehouse-id", str(warehouse_1.id)])
    assert levels.exit_code == 0
    assert "In Stock" in levels.output
    assert "Low Stock" in levels.output

    low = runner.invoke(args=["stock", "levels", "--status", "Overstocked"])
    assert "No stock found." in low.output

    low = runner.invoke(args=["stock", "low"])
    assert low.exit_code == 0
    assert "Low Stock" in low.output
    assert "In Stock" not in low.output


def test_stock_ledger(app, db_session, warehouse_1, product_1, stock):
    runner = app.test_cli_runner()
    assert "No ledger entries found." in runner.invoke(args=["stock", "ledger"]).output

    stock(product_1, warehouse_1, 7)
    result = runner.invoke(args=["stock", "ledger", "--product-id", str(product_1.id)])
    assert result.exit_code == 0
    assert "IT-00001" in result.output
    assert "Purchase" in result.output


def test_seed_demo_is_idempotent(app, db_session):
    runner = app.test_cli_runner()

    first = runner.invoke(args=["system", "seed-demo"])
    assert "PASS Created 8 demo record(s)." in first.output

    second = runner.invoke(args=["system", "seed-demo"])
    assert "PASS Demo data already present." in second.output

    assert db_session.query(Warehouse).count() == 2
    assert db_session.query(Product).count() == 3
    assert db_session.query(User).count() == 3


def test_reset_db(app, db_session, warehouse_1):
    result = app.test_cli_runner().invoke(args=["system", "reset-db", "--yes"])
    assert result.exit_code == 0
    assert "PASS Database reset complete." in result.output
    assert db_session.query(Warehouse).count() == 0

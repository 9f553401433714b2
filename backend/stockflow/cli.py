# Overview: Flask CLI command groups for stock inspection, verification and local bootstrap.

# backend/stockflow/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Stock inspection:
# - python -m flask stock verify
#   Check every snapshot against the ledger; exits non-zero on any violation.
# - python -m flask stock levels [--warehouse-id 1] [--status "Low Stock"]
#   List stock snapshots.
# - python -m flask stock low [--warehouse-id 1]
#   List Low Stock / Out of Stock items.
# - python -m flask stock ledger [--product-id 1] [--warehouse-id 1] [--limit 50]
#   Show recent ledger entries.
#
# System bootstrap:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Idempotent: create demo warehouses, products and users for local use.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Product, User, Warehouse
from .services import ledger_service, stock_service


@click.group('stock')
def stock_group():
    """Stock snapshot and ledger inspection."""


@stock_group.command('verify')
@with_appcontext
def verify_stock():
    """
    Verify snapshot/ledger consistency.

    Checks quantity == SUM(ledger changes), quantity >= 0, derived status and
    per-entry arithmetic.
    """
    violations = ledger_service.verify_stock_invariants()
    if not violations:
        click.echo("PASS All stock invariants hold.")
        return

    click.echo(f"FAIL {len(violations)} violation(s):")
    for v in violations:
        click.echo(
            f"  product={v['product_id']} warehouse={v['warehouse_id']} "
            f"[{v['check']}] {v['detail']}"
        )
    raise SystemExit(1)


@stock_group.command('levels')
@click.option('--warehouse-id', type=int, help='Filter by warehouse ID')
@click.option('--status', type=click.Choice(list(stock_service.STOCK_STATUSES)), help='Filter by stock status')
@with_appcontext
def list_levels(warehouse_id, status):
    """List stock snapshots."""
    from .models import StockSnapshot

    query = db.session.query(StockSnapshot)
    if warehouse_id:
        query = query.filter_by(warehouse_id=warehouse_id)
    if status:
        query = query.filter_by(stock_status=status)

    snapshots = query.order_by(StockSnapshot.warehouse_id, StockSnapshot.product_id).all()
    if not snapshots:
        click.echo("No stock found.")
        return

    _print_snapshots(snapshots)


@stock_group.command('low')
@click.option('--warehouse-id', type=int, help='Filter by warehouse ID')
@with_appcontext
def list_low(warehouse_id):
    """List items that need replenishment."""
    snapshots = stock_service.get_low_stock_items(warehouse_id)
    if not snapshots:
        click.echo("No low stock items.")
        return

    _print_snapshots(snapshots)


def _print_snapshots(snapshots):
    click.echo("\n" + "="*90)
    click.echo(f"{'Warehouse':<10} {'Product':<10} {'Qty':>8} {'Min':>6} {'Max':>6}  {'Status':<14} {'Last check'}")
    click.echo("="*90)
    for s in snapshots:
        last_check = s.last_stock_check.strftime("%Y-%m-%d %H:%M") if s.last_stock_check else "-"
        click.echo(
            f"{s.warehouse_id:<10} {s.product_id:<10} {s.quantity:>8} {s.min_stock_level:>6} "
            f"{s.max_stock_level:>6}  {s.stock_status:<14} {last_check}"
        )
    click.echo("="*90 + "\n")


@stock_group.command('ledger')
@click.option('--product-id', type=int, help='Filter by product ID')
@click.option('--warehouse-id', type=int, help='Filter by warehouse ID')
@click.option('--limit', type=int, default=50, help='Max entries to show')
@with_appcontext
def list_ledger(product_id, warehouse_id, limit):
    """Show recent ledger entries (newest first)."""
    entries = ledger_service.list_entries(product_id=product_id, warehouse_id=warehouse_id, limit=limit)
    if not entries:
        click.echo("No ledger entries found.")
        return

    click.echo("\n" + "="*110)
    click.echo(
        f"{'Code':<10} {'Type':<13} {'Product':<8} {'Wh':<4} {'Before':>7} {'Change':>7} {'After':>7}  "
        f"{'Reference':<12} {'When'}"
    )
    click.echo("="*110)
    for e in entries:
        when = e.occurred_at.strftime("%Y-%m-%d %H:%M") if e.occurred_at else "-"
        ref = e.reference_document_code or e.reference_document_type or "-"
        click.echo(
            f"{e.code:<10} {e.movement_type:<13} {e.product_id:<8} {e.warehouse_id:<4} "
            f"{e.quantity_before:>7} {e.quantity_change:>+7} {e.quantity_after:>7}  {ref:<12} {when}"
        )
    click.echo("="*110 + "\n")


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, including the stock ledger!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system seed-demo' for demo data.")


DEMO_WAREHOUSES = [("MAIN", "Main Warehouse"), ("EAST", "East Distribution Center")]
DEMO_PRODUCTS = [("SKU-1001", "Widget"), ("SKU-1002", "Gadget"), ("SKU-1003", "Sprocket")]
DEMO_USERS = [("admin", "Admin User"), ("manager", "Warehouse Manager"), ("clerk", "Stock Clerk")]


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Create demo warehouses, products and users (idempotent)."""
    created = 0
    for code, name in DEMO_WAREHOUSES:
        if not db.session.query(Warehouse).filter_by(code=code).first():
            db.session.add(Warehouse(code=code, name=name))
            created += 1
    for sku, name in DEMO_PRODUCTS:
        if not db.session.query(Product).filter_by(sku=sku).first():
            db.session.add(Product(sku=sku, name=name))
            created += 1
    for username, full_name in DEMO_USERS:
        if not db.session.query(User).filter_by(username=username).first():
            db.session.add(User(username=username, full_name=full_name))
            created += 1
    db.session.commit()

    if created:
        click.echo(f"PASS Created {created} demo record(s).")
    else:
        click.echo("PASS Demo data already present.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(stock_group)
    app.cli.add_command(system_group)

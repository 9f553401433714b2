"""
Pytest fixtures for stockflow tests.

Provides the in-memory application, a clean database per test, and directory
records (warehouses, products, users) to move stock between.
"""

import pytest
from stockflow import create_app
from stockflow.config import TestConfig
from stockflow.extensions import db
from stockflow.models import Product, User, Warehouse
from stockflow.services import movement_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def warehouse_1(db_session):
    warehouse = Warehouse(code="W1", name="Main Warehouse")
    db_session.add(warehouse)
    db_session.commit()
    return warehouse


@pytest.fixture(scope='function')
def warehouse_2(db_session):
    warehouse = Warehouse(code="W2", name="East Warehouse")
    db_session.add(warehouse)
    db_session.commit()
    return warehouse


@pytest.fixture(scope='function')
def product_1(db_session):
    product = Product(sku="P1", name="Widget")
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def product_2(db_session):
    product = Product(sku="P2", name="Gadget")
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def clerk(db_session):
    """User recording movements and documents."""
    user = User(username="clerk", full_name="Stock Clerk")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def manager(db_session):
    """User approving documents."""
    user = User(username="manager", full_name="Warehouse Manager")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def stock(clerk):
    """Helper: receive quantity of a product into a warehouse via a Purchase movement."""
    def _stock(product, warehouse, quantity):
        return movement_service.record_purchase(product.id, warehouse.id, quantity, clerk.id)
    return _stock

"""
Pytest fixtures for SuperPOS backend tests.

Provides the app on in-memory SQLite, a per-test table wipe, product
factories, the Flask test client and a CLI runner.
"""

from decimal import Decimal

import pytest
from superpos import create_app
from superpos.config import TestConfig
from superpos.extensions import db
from superpos.services import catalog_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def cli_runner(app):
    return app.test_cli_runner()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    # Clear all data but keep schema
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    # Cleanup after test
    db.session.rollback()


@pytest.fixture(scope='function')
def make_product(db_session):
    """
    Factory: make_product(name="Tea", price="100", stock=5, **fields).

    Opening stock goes through the ledger like any other receipt.
    """
    counter = {"n": 0}

    def _make(name=None, price="10.00", stock=0, discount="0", discount_type="percentage",
              min_stock_level=0, barcode=None, category=None):
        counter["n"] += 1
        patch = {
            "name": name or f"Product {counter['n']}",
            "price": Decimal(str(price)),
            "discount": Decimal(str(discount)),
            "discount_type": discount_type,
            "min_stock_level": min_stock_level,
            "barcode": barcode,
            "category": category,
        }
        return catalog_service.create_product(patch=patch, initial_quantity=stock)

    return _make


@pytest.fixture(scope='function')
def tea(make_product):
    """Price 100 with a 10% product discount (sale price 90), 5 on hand."""
    return make_product(name="Green Tea", price="100.00", discount="10", stock=5, barcode="TEA-001")


@pytest.fixture(scope='function')
def sugar(make_product):
    return make_product(name="Sugar 1kg", price="2.50", stock=3, min_stock_level=5, barcode="SUG-001")

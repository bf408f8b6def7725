"""
Pytest fixtures for BMS POS backend tests.

Provides the in-memory application, per-test table wipe, catalog fixtures
and a test client.
"""

import pytest
from bms_pos import create_app
from bms_pos.extensions import db
from bms_pos.services.products_service import create_product
from bms_pos.services.batch_service import receive_batch
from bms_pos.services.rate_service import StaticRateProvider

TEST_RATE = "40.00"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'RATE_PROVIDER': StaticRateProvider(TEST_RATE),
        'TAX_RATE_BPS': 1600,
        'DEFAULT_CREDIT_DAYS': 15,
        'PAYMENT_TOLERANCE_CENTS': 5,
        'LOW_STOCK_THRESHOLD': 10,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


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
def taxable_product(db_session):
    """$10.00 taxable product with 20 units in one undated batch."""
    return create_product(name="Harina PAN", price_usd_cents=1000, is_taxable=True, initial_stock=20)


@pytest.fixture(scope='function')
def exempt_product(db_session):
    """$5.00 tax-exempt product with 10 units."""
    return create_product(name="Acetaminofen 500mg", price_usd_cents=500, is_taxable=False, initial_stock=10)


@pytest.fixture(scope='function')
def dated_product(db_session):
    """
    Product with three batches:
    - 4 units expiring day 10
    - 3 units expiring day 5
    - 5 units that never expire
    """
    product = create_product(name="Yogurt", price_usd_cents=250, is_taxable=True)
    receive_batch(product_id=product.id, quantity=4, expiration_date="2030-01-10", batch_code="B10")
    receive_batch(product_id=product.id, quantity=3, expiration_date="2030-01-05", batch_code="B05")
    receive_batch(product_id=product.id, quantity=5, expiration_date=None, batch_code="BNULL")
    return product


def physical(product, quantity):
    return {"line_type": "PHYSICAL", "product_id": product.id, "quantity": quantity}


def credit_customer(**overrides) -> dict:
    data = {"full_name": "Maria Perez", "id_number": "V-12345678", "phone": "0414-5550000"}
    data.update(overrides)
    return data

"""
Pytest fixtures for medstock backend tests.

Provides test database setup, tenant fixtures, batch seeding and test client.
"""

from datetime import timedelta

import pytest

from medstock import create_app
from medstock.config import TestConfig
from medstock.extensions import db
from medstock.models import Organization
from medstock.services import batch_store, catalog_service
from medstock.time_utils import today


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

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
def org(db_session):
    """Create the primary organization (tenant)."""
    org = Organization(name="City Pharmacy", code="CITY", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def other_org(db_session):
    """Create a second organization for isolation checks."""
    org = Organization(name="Lakeside Chemists", code="LAKE", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def supplier(db_session, org):
    return catalog_service.create_supplier(org_id=org.id, name="MedSupply Ltd", code="MSL")


@pytest.fixture(scope='function')
def product(db_session, org):
    """Paracetamol: 5% tax, 20% default markup, low-stock threshold 10."""
    return catalog_service.create_product(
        org_id=org.id,
        name="Paracetamol 500mg",
        manufacturer="Acme Pharma",
        generic_name="Paracetamol",
        tax_percent=5,
        default_markup_percent=20,
        low_stock_threshold=10,
    )


@pytest.fixture(scope='function')
def other_product(db_session, org):
    return catalog_service.create_product(
        org_id=org.id,
        name="Amoxicillin 250mg",
        manufacturer="Beta Labs",
        tax_percent=12,
        low_stock_threshold=5,
    )


@pytest.fixture(scope='function')
def make_batch(db_session, org):
    """Seed stock through the batch store so movement history stays consistent."""
    def _make(
        product,
        batch_number,
        quantity,
        *,
        expiry_days=180,
        unit_cost_cents=100,
        unit_price_cents=150,
    ):
        return batch_store.credit(
            org_id=org.id,
            product_id=product.id,
            batch_number=batch_number,
            quantity=quantity,
            unit_cost_cents=unit_cost_cents,
            unit_price_cents=unit_price_cents,
            expiry_date=today() + timedelta(days=expiry_days),
        )
    return _make


@pytest.fixture(scope='function')
def headers(org):
    """Tenant headers forwarded by the upstream auth gateway."""
    return {'X-Org-Id': str(org.id), 'X-Actor-Id': '42'}

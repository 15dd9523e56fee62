"""
Pytest fixtures for CajaPOS backend tests.

Provides test database setup, catalog factories, and test client.
"""

from datetime import timedelta

import pytest
from cajapos import create_app
from cajapos.extensions import db
from cajapos.models import (
    BatchedProduct, Customer, PrescriptionProduct, Product, RecipeComponent, RecipeProduct, VariantProduct,
)
from cajapos.services import batch_service
from cajapos.time_utils import utcnow


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DEVICE_ID': 'test-device',
        'KDS_ENABLED': False,
        'RETRY_MAX_ATTEMPTS': 3,
        'RETRY_BASE_DELAY': 0.0,
        'RETRY_JITTER': 0.0,
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
def make_product(db_session):
    """Factory for legacy (stock-on-row) products."""
    def _make(name="Soda", price=1.5, cost=0.8, stock=10.0, track_stock=True, conversion_factor=None, unit="u"):
        product = Product(
            name=name,
            unit=unit,
            price=price,
            cost=cost,
            stock=stock,
            track_stock=track_stock,
            conversion_factor=conversion_factor,
        )
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def make_batched(db_session):
    """
    Factory for lot-managed products.

    `lots` is a list of (quantity, cost) received oldest first, one minute
    apart, so FIFO order is deterministic.
    """
    def _make(name="Flour", price=5.0, lots=(), unit="u", conversion_factor=None, prescription=False):
        cls = PrescriptionProduct if prescription else BatchedProduct
        product = cls(
            name=name,
            unit=unit,
            price=price,
            cost=0.0,
            stock=0.0,
            track_stock=True,
            conversion_factor=conversion_factor,
        )
        db_session.add(product)
        db_session.commit()

        start = utcnow() - timedelta(days=1)
        for i, (quantity, cost) in enumerate(lots):
            batch_service.create_batch(product.id, quantity, cost, created_at=start + timedelta(minutes=i))
        return db_session.get(Product, product.id)
    return _make


@pytest.fixture(scope='function')
def make_recipe(db_session):
    """Factory for recipe products: components are (ingredient, quantity per unit)."""
    def _make(name="Burger", price=8.0, components=()):
        product = RecipeProduct(name=name, price=price, cost=0.0, stock=0.0, track_stock=False)
        db_session.add(product)
        db_session.flush()
        for position, (ingredient, quantity) in enumerate(components):
            product.components.append(
                RecipeComponent(ingredient_id=ingredient.id, quantity=quantity, position=position)
            )
        db_session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def make_variant(db_session):
    def _make(parent, name="Soda (large)", price=2.5):
        variant = VariantProduct(name=name, price=price, cost=0.0, stock=0.0, track_stock=False, parent_id=parent.id)
        db_session.add(variant)
        db_session.commit()
        return variant
    return _make


@pytest.fixture(scope='function')
def customer(db_session):
    c = Customer(name="Dona Carmen", phone="555-0101", debt=0.0)
    db_session.add(c)
    db_session.commit()
    return c

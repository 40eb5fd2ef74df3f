"""
Pytest fixtures for StockDesk backend tests.

Provides a file-backed SQLite app per test (backups need a real file),
the test client, and small factories for catalog rows and orders.
"""

import pytest

from stockdesk import create_app
from stockdesk.extensions import db
from stockdesk.models import Brand, Category, Supplier, Product


@pytest.fixture(scope='function')
def app(tmp_path):
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'inventory.db'}",
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BACKUP_DIR': str(tmp_path / 'backups'),
        'COMPANY_NAME': 'Test Traders',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Database session bound to the test's app context."""
    yield db.session
    db.session.rollback()


@pytest.fixture(scope='function')
def make_brand(db_session):
    def _make(name="Acme", **kwargs):
        brand = Brand(name=name, **kwargs)
        db_session.add(brand)
        db_session.commit()
        return brand
    return _make


@pytest.fixture(scope='function')
def make_category(db_session):
    def _make(name="Tools", **kwargs):
        category = Category(name=name, **kwargs)
        db_session.add(category)
        db_session.commit()
        return category
    return _make


@pytest.fixture(scope='function')
def make_supplier(db_session):
    def _make(name="Northwind", **kwargs):
        supplier = Supplier(name=name, **kwargs)
        db_session.add(supplier)
        db_session.commit()
        return supplier
    return _make


@pytest.fixture(scope='function')
def make_product(db_session):
    def _make(name="Widget", sku=None, quantity=10, price=10.0, discount=0.0, **kwargs):
        product = Product(
            name=name,
            sku=sku,
            quantity=quantity,
            price=price,
            discount=discount,
            **kwargs,
        )
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def place_order(client):
    """POST an order and return the created order dict (asserts 201)."""
    def _place(items, **fields):
        resp = client.post('/api/orders', json={'items': items, **fields})
        assert resp.status_code == 201, resp.get_json()
        return resp.get_json()['order']
    return _place


@pytest.fixture(scope='function')
def stock_of(db_session):
    """Current on-hand quantity, read past the identity map."""
    def _stock(product_id):
        db_session.expire_all()
        return db_session.get(Product, product_id).quantity
    return _stock

"""
Pytest fixtures for field sales backend tests.

Provides the app on an in-memory database, a per-test clean session,
identity fixtures for each role, and small factories for stores and products.
"""

import pytest

from fieldsales import create_app
from fieldsales.extensions import db
from fieldsales.identity import Actor
from fieldsales.services import catalog_service, order_service, store_service, user_service


# Central Medical Store, MG Road, Bangalore
STORE_LAT = 12.9716
STORE_LNG = 77.5946


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'GEOFENCE_ENFORCED': True,
        'GEOFENCE_RADIUS_METERS': 200,
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


def _actor(user) -> Actor:
    return Actor(user_id=user.id, role=user.role)


@pytest.fixture(scope='function')
def salesman(db_session):
    return user_service.upsert_user(
        external_id="user_sales_1", role="SALESMAN", email="salesman@demo.com", name="Sales Person"
    )


@pytest.fixture(scope='function')
def stock_manager(db_session):
    return user_service.upsert_user(
        external_id="user_stock_1", role="stock-manager", email="stock@demo.com", name="Stock Manager"
    )


@pytest.fixture(scope='function')
def admin(db_session):
    return user_service.upsert_user(
        external_id="user_admin_1", role="ADMIN", email="admin@demo.com", name="Admin User"
    )


@pytest.fixture(scope='function')
def salesman_actor(salesman):
    return _actor(salesman)


@pytest.fixture(scope='function')
def stock_manager_actor(stock_manager):
    return _actor(stock_manager)


@pytest.fixture(scope='function')
def store(db_session):
    """Store with registered coordinates (geofence applies)."""
    return store_service.create_store(
        name="Central Medical Store",
        address="MG Road, Bangalore",
        latitude=STORE_LAT,
        longitude=STORE_LNG,
    )


@pytest.fixture(scope='function')
def store_without_location(db_session):
    return store_service.create_store(name="City Pharma", address="Indiranagar, Bangalore")


@pytest.fixture(scope='function')
def store_location():
    return {"latitude": STORE_LAT, "longitude": STORE_LNG}


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: make_product(name, inventory=0, mrp="25.00")."""
    def _make(name: str, inventory: int = 0, mrp: str = "25.00"):
        product = catalog_service.create_product(name=name, mrp=mrp, manufacturer="ABC Pharma")
        if inventory:
            catalog_service.set_inventory_quantity(product.id, inventory)
        return product
    return _make


@pytest.fixture(scope='function')
def make_order(salesman, store):
    """Factory: make_order({product_id: qty, ...}) for the default store and salesman."""
    def _make(lines: dict, store_id: int | None = None):
        return order_service.create_order(
            store_id=store_id or store.id,
            salesman_id=salesman.id,
            items=[{"product_id": pid, "quantity": qty} for pid, qty in lines.items()],
        )
    return _make


def headers_for(user, role: str | None = None) -> dict:
    headers = {"X-User-Id": user.external_id}
    if role is not None:
        headers["X-User-Role"] = role
    return headers


@pytest.fixture(scope='function')
def salesman_headers(salesman):
    return headers_for(salesman, "salesman")


@pytest.fixture(scope='function')
def stock_manager_headers(stock_manager):
    return headers_for(stock_manager, "stock-manager")


@pytest.fixture(scope='function')
def admin_headers(admin):
    return headers_for(admin, "admin")

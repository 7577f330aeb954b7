"""
Pytest fixtures for poscore backend tests.

Provides a file-backed SQLite database (worker threads in offline sync need
their own connections), a trading business with two stores, users for each
role, a product with a packaging unit, and bearer-token headers.
"""

import pytest
from poscore import create_app
from poscore.extensions import db
from poscore.models import Business, Store, Till, Unit, Product, ProductUnit
from poscore.services import auth_service, inventory_service, ledger_service, session_service


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing."""
    db_path = tmp_path_factory.mktemp("db") / "poscore-test.sqlite3"
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{db_path}",
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
        'TX_RETRY_BACKOFF_SECONDS': 0.01,
        'OFFLINE_SYNC_MAX_BATCH': 10,
        'OFFLINE_SYNC_WORKERS': 3,
    })

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
def db_session(app):
    """Create fresh database for each test."""
    # Clear all data but keep schema
    db.session.rollback()
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    # Cleanup after test
    db.session.rollback()
    db.session.remove()


@pytest.fixture(scope='function')
def business(db_session):
    """A trading business (no VAT) with the standard chart of accounts."""
    business = Business(name="Corner Shop", currency="GBP", vat_enabled=False, is_active=True)
    db_session.add(business)
    db_session.commit()
    ledger_service.ensure_chart_of_accounts(business.id)
    db_session.commit()
    return business


@pytest.fixture(scope='function')
def other_business(db_session):
    business = Business(name="Other Shop", currency="GBP", is_active=True)
    db_session.add(business)
    db_session.commit()
    return business


@pytest.fixture(scope='function')
def store(db_session, business):
    store = Store(business_id=business.id, name="High Street", code="HS")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def second_store(db_session, business):
    store = Store(business_id=business.id, name="Market Square", code="MS")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def till(db_session, store):
    till = Till(store_id=store.id, name="Till 1")
    db_session.add(till)
    db_session.commit()
    return till


@pytest.fixture(scope='function')
def owner(db_session, business, store):
    return auth_service.create_user(
        business_id=business.id,
        username="olivia",
        password="Password123!",
        role="OWNER",
        store_id=store.id,
        approval_pin="1111",
    )


@pytest.fixture(scope='function')
def manager(db_session, business, store):
    return auth_service.create_user(
        business_id=business.id,
        username="max",
        password="Password123!",
        role="MANAGER",
        store_id=store.id,
        approval_pin="2222",
    )


@pytest.fixture(scope='function')
def cashier(db_session, business, store):
    return auth_service.create_user(
        business_id=business.id,
        username="casey",
        password="Password123!",
        role="CASHIER",
        store_id=store.id,
    )


@pytest.fixture(scope='function')
def units(db_session, business):
    """Piece (base) and Pack units."""
    piece = Unit(business_id=business.id, name="Piece", symbol="pc")
    pack = Unit(business_id=business.id, name="Pack", symbol="pk")
    db_session.add_all([piece, pack])
    db_session.commit()
    return piece, pack


@pytest.fixture(scope='function')
def product(db_session, business, units):
    """Cola sold at 1000p a piece, 600p default cost, packs of 6."""
    piece, pack = units
    product = Product(
        business_id=business.id,
        sku="COLA-330",
        name="Cola 330ml",
        selling_price_base_pence=1000,
        default_cost_base_pence=600,
        vat_rate_bps=2000,
    )
    db_session.add(product)
    db_session.flush()
    db_session.add_all([
        ProductUnit(product_id=product.id, unit_id=piece.id, conversion_to_base=1, is_base_unit=True),
        ProductUnit(product_id=product.id, unit_id=pack.id, conversion_to_base=6, is_base_unit=False),
    ])
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def add_stock(db_session):
    """Receive stock directly into a balance: add_stock(store, product, qty_base, unit_cost)."""
    def _add(store, product, qty_base, unit_cost=600):
        snapshot = inventory_service.apply_stock_movement(
            store_id=store.id,
            product_id=product.id,
            delta_base=qty_base,
            movement_type="PURCHASE",
            unit_cost_base_pence=unit_cost,
        )
        db_session.commit()
        return snapshot
    return _add


@pytest.fixture(scope='function')
def stocked_product(product, store, add_stock):
    """Product with 20 pieces on hand at 600p average cost."""
    add_stock(store, product, 20, 600)
    return product


@pytest.fixture(scope='function')
def headers_for(db_session):
    """Bearer-token headers for a user."""
    def _headers(user):
        _, token = session_service.create_session(user.id)
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture(scope='function')
def on_hand(db_session):
    """Current base-unit quantity for (store, product), read fresh from the database."""
    def _on_hand(store, product):
        db_session.expire_all()
        balance = inventory_service.get_balance(store.id, product.id)
        return balance.qty_on_hand_base if balance else 0
    return _on_hand

"""
Pytest fixtures for valepos backend tests.

Provides the test app (in-memory SQLite), a wiped database per test,
warehouse/variant fixtures and actor headers for the API.
"""

import pytest

from valepos import create_app
from valepos.extensions import db
from valepos.models import ProductVariant, PriceModality, Warehouse, WarehouseStock
from valepos.services import inventory_service, order_service
from valepos.services.concurrency import vale_transaction
from valepos.services.config_service import get_configuration

SELLER_ID = 10
CASHIER_ID = 20
OTHER_CASHIER_ID = 21
MANAGER_ID = 30


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'VOUCHER_LOCK_STALE_SECONDS': 300,
        'TAX_RATE': '0.19',
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
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()
    get_configuration().invalidate()

    yield db.session

    # Cleanup after test
    db.session.rollback()
    db.session.remove()
    get_configuration().invalidate()


@pytest.fixture(scope='function')
def config(db_session):
    """Configuration provider of the test app, cache emptied."""
    return get_configuration()


@pytest.fixture(scope='function')
def set_setting(config):
    """Persist a setting the way the settings API does."""
    def _set(key, value):
        config.set(key, value)
        db.session.commit()
        config.invalidate(key)
    return _set


@pytest.fixture(scope='function')
def warehouses(db_session):
    """SALA (point of sale), BOD01 (back room), VIRTUAL (oversell sink)."""
    sala = Warehouse(code="SALA", name="Sala de ventas", is_point_of_sale=True, is_virtual=False, is_active=True)
    bod = Warehouse(code="BOD01", name="Bodega principal", is_point_of_sale=False, is_virtual=False, is_active=True)
    virtual = Warehouse(code="VIRTUAL", name="Sobreventa", is_point_of_sale=False, is_virtual=True, is_active=True)
    db_session.add_all([sala, bod, virtual])
    db_session.commit()
    return {"SALA": sala.id, "BOD01": bod.id, "VIRTUAL": virtual.id}


@pytest.fixture(scope='function')
def variant(db_session):
    """Fabric sold by the meter, with one price modality."""
    v = ProductVariant(sku="LIN-BLA-M", name="Lino blanco", unit="meter", is_active=True)
    db_session.add(v)
    db_session.flush()
    db_session.add(PriceModality(variant_id=v.id, name="Metro", standard_price=2000, invoice_price=1700))
    db_session.commit()
    return v.id


@pytest.fixture(scope='function')
def put_stock(db_session):
    """Receive stock into a warehouse (committed)."""
    def _put(variant_id, warehouse_id, quantity):
        with vale_transaction():
            inventory_service.receive_stock(variant_id, warehouse_id, quantity, reason="Test load")
    return _put


@pytest.fixture(scope='function')
def stock_of(db_session):
    """Fresh (available, reserved) of a stock row."""
    def _stock(variant_id, warehouse_id):
        db.session.expire_all()
        row = db.session.query(WarehouseStock).filter_by(variant_id=variant_id, warehouse_id=warehouse_id).first()
        if row is None:
            return None
        return row.available, row.reserved
    return _stock


@pytest.fixture(scope='function')
def stocked(warehouses, variant, put_stock):
    """5.00 of the variant on the shop floor."""
    put_stock(variant, warehouses["SALA"], "5")
    return {"variant": variant, **warehouses}


@pytest.fixture(scope='function')
def make_voucher(db_session):
    """Create a vale with a single line (defaults: 5 units at 2000)."""
    def _make(variant_id, quantity="5", unit_price=2000, document_type="ticket", **line):
        return order_service.create_voucher(
            SELLER_ID,
            document_type,
            [{"variant_id": variant_id, "quantity": quantity, "unit_price": unit_price, **line}],
        )
    return _make


def _headers(actor_id, role):
    return {"X-Actor-Id": str(actor_id), "X-Actor-Role": role}


@pytest.fixture
def seller_headers():
    return _headers(SELLER_ID, "seller")


@pytest.fixture
def cashier_headers():
    return _headers(CASHIER_ID, "cashier")


@pytest.fixture
def other_cashier_headers():
    return _headers(OTHER_CASHIER_ID, "cashier")


@pytest.fixture
def manager_headers():
    return _headers(MANAGER_ID, "manager")

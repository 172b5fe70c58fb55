"""
Pytest fixtures for vending backend tests.

Provides test database setup, a machine/product/slot catalog, and helpers to
walk sales into each lifecycle state.
"""

from datetime import datetime, timedelta

import pytest
from vending import create_app
from vending.extensions import db
from vending.models import VendingMachine, Product, Slot
from vending.models.sales import (
    SALE_CANCELED,
    SALE_DRAFT,
    SALE_EXPIRED,
    SALE_FULFILLED,
    SALE_PAID,
    SALE_RESERVED,
)
from vending.services import sale_service


NOW = datetime(2026, 3, 1, 12, 0, 0)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DB_RETRY_BACKOFF_SECONDS': 0,
        'DEFAULT_PICKUP_TTL_MINUTES': 60,
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
def machine(db_session):
    """Machine without its own pickup window (config default applies)."""
    machine = VendingMachine(name="Lobby Machine", location_ref="LOC-1", service_point_ref="SP-1")
    db_session.add(machine)
    db_session.commit()
    return machine


@pytest.fixture(scope='function')
def product(db_session):
    product = Product(sku="WATER-500", name="Water 500ml", price_cents=250)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def slot(db_session, machine, product):
    """capacity=5, available=5, reserved=0"""
    slot = Slot(
        machine_id=machine.id,
        slot_number=1,
        product_id=product.id,
        capacity=5,
        available=5,
        reserved=0,
        active=True,
    )
    db_session.add(slot)
    db_session.commit()
    return slot


def counters(slot_id: int) -> tuple[int, int]:
    """(available, reserved) as persisted."""
    slot = db.session.get(Slot, slot_id, populate_existing=True)
    return slot.available, slot.reserved


def walk_sale_to(state: str, slot_id: int, product_id: int, *, quantity: int = 1, now: datetime = NOW):
    """Create a sale and drive it through the lifecycle into `state`."""
    sale = sale_service.create_sale(slot_id, product_id, quantity=quantity, now=now)
    if state == SALE_DRAFT:
        return sale
    if state == SALE_CANCELED:
        return sale_service.cancel_sale(sale.id, now=now)

    sale = sale_service.reserve_sale(sale.id, now=now)
    if state == SALE_RESERVED:
        return sale

    sale = sale_service.confirm_payment(sale.id, "pay-fixture", 60, now=now)
    if state == SALE_PAID:
        return sale
    if state == SALE_FULFILLED:
        return sale_service.confirm_pickup(sale.id, sale.pickup_code, now=now)
    if state == SALE_EXPIRED:
        return sale_service.expire_sale(sale.id, now=now + timedelta(minutes=61))
    raise ValueError(state)


@pytest.fixture(scope='function')
def sale_in_state(slot, product):
    def _make(state: str, quantity: int = 1, now: datetime = NOW):
        return walk_sale_to(state, slot.id, product.id, quantity=quantity, now=now)
    return _make

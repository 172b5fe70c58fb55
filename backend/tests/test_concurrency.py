"""
Concurrency tests for the stock ledger and sale transitions.

Runs against a file-backed SQLite database so worker threads use separate
connections and contend for the real write lock.

Verifies:
- N concurrent reservations against available=K produce exactly K successes
- Concurrent sweeps release an expired sale's hold exactly once
"""

import threading
from datetime import timedelta

import pytest

from conftest import NOW, walk_sale_to
from vending import create_app
from vending.errors import InsufficientStock
from vending.extensions import db
from vending.models import Product, Slot, VendingMachine
from vending.models.sales import SALE_DRAFT, SALE_PAID, SALE_RESERVED
from vending.services import expiration_service, sale_service, stock_ledger_service


WORKERS = 10
STOCK = 3


@pytest.fixture
def file_app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'concurrency.sqlite3'}",
        'SQLALCHEMY_ENGINE_OPTIONS': {'connect_args': {'check_same_thread': False}},
        'LEDGER_LOCK_TIMEOUT_SECONDS': 30,
        'DB_RETRY_ATTEMPTS': 5,
        'DB_RETRY_BACKOFF_SECONDS': 0.01,
    })
    with app.app_context():
        db.create_all()

        machine = VendingMachine(name="Concurrency Machine")
        product = Product(sku="SNACK-1", name="Snack", price_cents=150)
        db.session.add_all([machine, product])
        db.session.flush()
        slot = Slot(machine_id=machine.id, slot_number=1, product_id=product.id, capacity=10, available=STOCK)
        db.session.add(slot)
        db.session.commit()

        app.config["TEST_SLOT_ID"] = slot.id
        app.config["TEST_PRODUCT_ID"] = product.id
        db.session.remove()

    yield app

    with app.app_context():
        db.drop_all()
        db.engine.dispose()


def _run_workers(app, targets):
    """Run one thread per target callable inside its own app context."""
    barrier = threading.Barrier(len(targets))
    results = []
    lock = threading.Lock()

    def worker(target):
        with app.app_context():
            try:
                barrier.wait()
                outcome = ("ok", target())
            except Exception as exc:
                outcome = ("error", exc)
            finally:
                db.session.remove()
            with lock:
                results.append(outcome)

    threads = [threading.Thread(target=worker, args=(t,)) for t in targets]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    return results


def _counters(app):
    with app.app_context():
        slot = db.session.get(Slot, app.config["TEST_SLOT_ID"])
        counts = (slot.available, slot.reserved)
        db.session.remove()
    return counts


def test_concurrent_ledger_reservations(file_app):
    slot_id = file_app.config["TEST_SLOT_ID"]

    results = _run_workers(
        file_app,
        [lambda: stock_ledger_service.reserve(slot_id, 1, commit=True) for _ in range(WORKERS)],
    )

    successes = [r for r in results if r[0] == "ok"]
    failures = [r[1] for r in results if r[0] == "error"]
    assert len(successes) == STOCK
    assert len(failures) == WORKERS - STOCK
    assert all(isinstance(exc, InsufficientStock) for exc in failures)
    assert _counters(file_app) == (0, STOCK)


def test_concurrent_sale_reservations(file_app):
    slot_id = file_app.config["TEST_SLOT_ID"]
    product_id = file_app.config["TEST_PRODUCT_ID"]

    with file_app.app_context():
        sale_ids = [walk_sale_to(SALE_DRAFT, slot_id, product_id).id for _ in range(WORKERS)]
        db.session.remove()

    results = _run_workers(
        file_app,
        [lambda sale_id=sale_id: sale_service.reserve_sale(sale_id, now=NOW).state for sale_id in sale_ids],
    )

    reserved = [r[1] for r in results if r[0] == "ok"]
    failures = [r[1] for r in results if r[0] == "error"]
    assert reserved == [SALE_RESERVED] * STOCK
    assert all(isinstance(exc, InsufficientStock) for exc in failures)
    assert len(failures) == WORKERS - STOCK
    assert _counters(file_app) == (0, STOCK)


def test_concurrent_sweeps_release_once(file_app):
    slot_id = file_app.config["TEST_SLOT_ID"]
    product_id = file_app.config["TEST_PRODUCT_ID"]

    with file_app.app_context():
        walk_sale_to(SALE_PAID, slot_id, product_id, quantity=2)
        db.session.remove()
    assert _counters(file_app) == (STOCK - 2, 2)

    later = NOW + timedelta(minutes=61)
    results = _run_workers(
        file_app,
        [lambda: expiration_service.sweep_expired_sales(now=later) for _ in range(5)],
    )

    assert all(kind == "ok" for kind, _ in results)
    assert sum(result.expired for _, result in results) == 1
    assert sum(result.units_released for _, result in results) == 2
    assert _counters(file_app) == (STOCK, 0)

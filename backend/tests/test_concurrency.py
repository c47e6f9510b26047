"""
Concurrent writers against one product.

These run on a file-backed SQLite database so every thread gets its own
connection and session, as separate request handlers would.
"""

import threading
from decimal import Decimal

import pytest
from superpos import create_app
from superpos.config import TestConfig
from superpos.errors import InsufficientStockError
from superpos.extensions import db
from superpos.models import Invoice
from superpos.services import catalog_service, checkout_service, stock_ledger
from superpos.services.concurrency import product_locks


pytestmark = pytest.mark.ledger

LAST_UNITS = 4


@pytest.fixture
def file_app(tmp_path):
    class FileConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'ledger.sqlite3'}"

    app = create_app(FileConfig)
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def last_units(file_app):
    with file_app.app_context():
        product = catalog_service.create_product(
            patch={"name": "Last Units", "price": Decimal("3.00")},
            initial_quantity=LAST_UNITS,
        )
        return product.id


def run_together(app, *calls):
    """Start every call at the same moment; collect ("ok", value) or ("error", exc)."""
    barrier = threading.Barrier(len(calls))
    outcomes = []
    outcomes_lock = threading.Lock()

    def worker(call):
        with app.app_context():
            try:
                barrier.wait()
                value = call()
            except Exception as exc:
                with outcomes_lock:
                    outcomes.append(("error", exc))
            else:
                with outcomes_lock:
                    outcomes.append(("ok", value))
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker, args=(call,)) for call in calls]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
        assert not thread.is_alive()
    return outcomes


class TestConcurrentStockOut:
    def test_only_one_writer_takes_the_last_units(self, file_app, last_units):
        def take_all():
            return stock_ledger.record_movement(last_units, "out", LAST_UNITS).id

        outcomes = run_together(file_app, take_all, take_all)

        assert sorted(kind for kind, _ in outcomes) == ["error", "ok"]
        error = next(value for kind, value in outcomes if kind == "error")
        assert isinstance(error, InsufficientStockError)
        assert error.details["available"] == 0

        with file_app.app_context():
            assert stock_ledger.current_balance(last_units) == 0
            assert stock_ledger.audit_ledger() == []

    def test_only_one_checkout_sells_the_last_units(self, file_app, last_units):
        def sell_all():
            return checkout_service.checkout(
                [{"product_id": last_units, "quantity": LAST_UNITS}],
                {"method": "cash", "amount": "100"},
            ).invoice.number

        outcomes = run_together(file_app, sell_all, sell_all)

        assert sorted(kind for kind, _ in outcomes) == ["error", "ok"]
        error = next(value for kind, value in outcomes if kind == "error")
        assert isinstance(error, InsufficientStockError)

        with file_app.app_context():
            assert db.session.query(Invoice).count() == 1
            assert stock_ledger.current_balance(last_units) == 0
            assert stock_ledger.audit_ledger() == []

    def test_small_outs_never_oversell(self, file_app, last_units):
        def take_one():
            return stock_ledger.record_movement(last_units, "out", 1).id

        outcomes = run_together(file_app, *([take_one] * (LAST_UNITS + 2)))

        kinds = [kind for kind, _ in outcomes]
        assert kinds.count("ok") == LAST_UNITS
        assert kinds.count("error") == 2
        with file_app.app_context():
            assert stock_ledger.current_balance(last_units) == 0
            assert stock_ledger.audit_ledger() == []


class TestProductLocks:
    def test_reentrant_and_duplicate_ids(self):
        with product_locks(["p-1", "p-1"]):
            with product_locks(["p-1", "p-2"]):
                pass

    def test_opposite_orders_do_not_deadlock(self):
        done = []

        def hold(ids):
            for _ in range(200):
                with product_locks(ids):
                    pass
            done.append(ids)

        threads = [
            threading.Thread(target=hold, args=(["p-a", "p-b"],)),
            threading.Thread(target=hold, args=(["p-b", "p-a"],)),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)
        assert len(done) == 2

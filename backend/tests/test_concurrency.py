"""
Concurrent checkout tests against a file-backed SQLite database.

In-memory SQLite shares one connection between threads, so these tests use
a separate app bound to a temporary database file where each thread gets
its own connection and BEGIN IMMEDIATE actually serializes writers.
The single-threaded retry and failure-mapping checks for with_transaction
run on the shared in-memory app.
"""

import threading

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from counterpos import create_app
from counterpos.errors import ConcurrencyConflict, InsufficientStock, PersistenceError
from counterpos.extensions import db
from counterpos.models import PaymentMethod, Product, Sale, StockChangeType, StockLog, User, UserRole
from counterpos.services import products_service
from counterpos.services.concurrency import with_transaction
from counterpos.services.sales_service import LineItemRequest, SaleRequest, create_sale
from counterpos.services.stock_service import adjust_product_stock, verify_stock_ledger


@pytest.fixture
def file_app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'concurrency.sqlite3'}",
        'SALE_RETRY_ATTEMPTS': 10,
        'RETRY_BACKOFF_SECONDS': 0.01,
    })
    with app.app_context():
        db.create_all()

        user = User(username="racer", role=UserRole.CASHIER, is_active=True)
        db.session.add(user)
        db.session.commit()
        app.config["TEST_ACTOR_ID"] = user.id

    yield app

    with app.app_context():
        db.drop_all()
        db.engine.dispose()


def _seed_product(app, stock):
    with app.app_context():
        product = products_service.create_product({
            "name": "Contended",
            "cost_price_cents": 100,
            "sale_price_cents": 250,
            "stock_quantity": stock,
        })
        return product.id


def _run_threads(app, count, target):
    """Start count threads on a barrier and collect (status, value) outcomes."""
    barrier = threading.Barrier(count)
    outcomes = []
    lock = threading.Lock()

    def worker():
        with app.app_context():
            barrier.wait()
            try:
                value = target()
                status = "ok"
            except InsufficientStock as exc:
                value = exc
                status = "insufficient"
            except Exception as exc:  # noqa: BLE001 - recorded for the assertion message
                value = exc
                status = "error"
        with lock:
            outcomes.append((status, value))

    threads = [threading.Thread(target=worker) for _ in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return outcomes


@pytest.mark.parametrize("stock,quantity,threads", [
    (10, 3, 8),
    (5, 1, 10),
    (7, 7, 6),
])
def test_concurrent_sales_never_oversell(file_app, stock, quantity, threads):
    product_id = _seed_product(file_app, stock)
    actor_id = file_app.config["TEST_ACTOR_ID"]

    def sell():
        request = SaleRequest(
            items=(LineItemRequest(product_id=product_id, quantity=quantity),),
            payment_method=PaymentMethod.CARD,
        )
        return create_sale(actor_id, request).sale.id

    outcomes = _run_threads(file_app, threads, sell)

    errors = [value for status, value in outcomes if status == "error"]
    assert not errors, errors

    expected_successes = min(threads, stock // quantity)
    successes = [value for status, value in outcomes if status == "ok"]
    assert len(successes) == expected_successes
    assert len(outcomes) - len(successes) == threads - expected_successes

    with file_app.app_context():
        product = db.session.get(Product, product_id)
        assert product.stock_quantity == stock - quantity * expected_successes
        assert db.session.query(Sale).count() == expected_successes
        assert db.session.query(StockLog).filter_by(
            product_id=product_id, type=StockChangeType.SALE
        ).count() == expected_successes
        assert verify_stock_ledger(product_id)["consistent"] is True


def test_concurrent_manual_and_sale_changes_keep_ledger(file_app):
    product_id = _seed_product(file_app, 20)
    actor_id = file_app.config["TEST_ACTOR_ID"]
    counter = {"n": 0}
    counter_lock = threading.Lock()

    def mixed():
        with counter_lock:
            counter["n"] += 1
            n = counter["n"]
        if n % 2:
            adjust_product_stock(product_id, "STOCK_IN", 2, "Delivery", actor_id=actor_id)
        else:
            request = SaleRequest(
                items=(LineItemRequest(product_id=product_id, quantity=3),),
                payment_method=PaymentMethod.CARD,
            )
            create_sale(actor_id, request)

    outcomes = _run_threads(file_app, 8, mixed)
    assert all(status == "ok" for status, _ in outcomes), outcomes

    with file_app.app_context():
        # 4 deliveries of 2, 4 sales of 3
        assert db.session.get(Product, product_id).stock_quantity == 20 + 8 - 12
        report = verify_stock_ledger(product_id)
        assert report["consistent"] is True
        assert report["entries"] == 9


# ============================================================================
# with_transaction retry and failure mapping
# ============================================================================

def _locked():
    return OperationalError("UPDATE products", {}, Exception("database is locked"))


class TestWithTransaction:

    def _flaky(self, failures, exc_factory):
        """Unit of work that writes a user, then fails the first `failures` calls."""
        calls = {"n": 0}

        def _op():
            calls["n"] += 1
            db.session.add(User(username="retry-user", role=UserRole.CASHIER, is_active=True))
            db.session.flush()
            if calls["n"] <= failures:
                raise exc_factory()
            return calls["n"]

        return _op, calls

    @pytest.mark.parametrize("exc_factory", [
        lambda: StaleDataError("stale version"),
        _locked,
    ])
    def test_conflict_retries_whole_unit(self, db_session, exc_factory):
        op, calls = self._flaky(2, exc_factory)

        assert with_transaction(op, attempts=3) == 3
        assert calls["n"] == 3
        assert db.session.query(User).filter_by(username="retry-user").count() == 1

    @pytest.mark.parametrize("exc_factory", [
        lambda: StaleDataError("stale version"),
        _locked,
    ])
    def test_exhausted_retries_raise_concurrency_conflict(self, db_session, exc_factory):
        op, calls = self._flaky(5, exc_factory)

        with pytest.raises(ConcurrencyConflict) as exc_info:
            with_transaction(op, attempts=3)

        assert calls["n"] == 3
        assert exc_info.value.status_code == 409
        assert exc_info.value.details == {"attempts": 3}
        assert db.session.query(User).filter_by(username="retry-user").count() == 0

    def test_attempts_default_to_config(self, app, db_session, monkeypatch):
        monkeypatch.setitem(app.config, "SALE_RETRY_ATTEMPTS", 2)
        op, calls = self._flaky(5, _locked)

        with pytest.raises(ConcurrencyConflict):
            with_transaction(op)
        assert calls["n"] == 2

    @pytest.mark.parametrize("exc_factory", [
        lambda: OperationalError("SELECT 1", {}, Exception("no such table: ghosts")),
        lambda: IntegrityError("INSERT INTO users", {}, Exception("UNIQUE constraint failed")),
    ])
    def test_storage_failure_is_not_retried(self, db_session, exc_factory):
        op, calls = self._flaky(5, exc_factory)

        with pytest.raises(PersistenceError) as exc_info:
            with_transaction(op, attempts=3)

        assert calls["n"] == 1
        assert exc_info.value.status_code == 500
        assert db.session.query(User).filter_by(username="retry-user").count() == 0

    def test_domain_error_propagates_and_rolls_back(self, db_session):
        op, calls = self._flaky(5, lambda: InsufficientStock(1, requested=2, available=1))

        with pytest.raises(InsufficientStock):
            with_transaction(op, attempts=3)

        assert calls["n"] == 1
        assert db.session.query(User).filter_by(username="retry-user").count() == 0

# Overview: Threaded concurrency checks against a file-backed SQLite database
# (one connection per thread, so the SQLite write lock is really contended).

import threading
from datetime import timedelta

import pytest

from medstock import create_app
from medstock.config import TestConfig
from medstock.errors import InsufficientStock, TransactionConflict
from medstock.extensions import db
from medstock.models import InventoryBatch, Organization, PurchaseOrder, StockMovement
from medstock.services import batch_store, catalog_service, purchase_order_service, reconciliation_service
from medstock.services.purchase_order_service import ExistingProduct, ReceiptLine
from medstock.time_utils import today


@pytest.fixture
def file_app(tmp_path):
    class FileConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'concurrency.db'}"
        TX_RETRY_ATTEMPTS = 10
        TX_RETRY_BACKOFF_SECONDS = 0.02

    app = create_app(FileConfig)
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def seeded(file_app):
    """One org, one product and a batch of 10 units; returns plain ids."""
    with file_app.app_context():
        org = Organization(name="City Pharmacy", code="CITY", is_active=True)
        db.session.add(org)
        db.session.commit()
        product = catalog_service.create_product(
            org_id=org.id, name="Paracetamol 500mg", manufacturer="Acme Pharma"
        )
        batch = batch_store.credit(
            org_id=org.id,
            product_id=product.id,
            batch_number="LOT-1",
            quantity=10,
            unit_cost_cents=100,
            unit_price_cents=150,
            expiry_date=today() + timedelta(days=180),
        )
        ids = {"org_id": org.id, "product_id": product.id, "batch_id": batch.id}
        db.session.remove()
    return ids


def _run_concurrently(app, *workers):
    """Start every worker at the same moment; collect results and exceptions."""
    results = []
    errors = []
    lock = threading.Lock()
    barrier = threading.Barrier(len(workers))

    def _target(worker):
        with app.app_context():
            try:
                barrier.wait()
                value = worker()
                with lock:
                    results.append(value)
            except Exception as exc:
                with lock:
                    errors.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=_target, args=(worker,)) for worker in workers]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    assert not any(thread.is_alive() for thread in threads)
    return results, errors


def _debit_worker(ids, quantity):
    def _work():
        batch_store.debit(
            org_id=ids["org_id"],
            product_id=ids["product_id"],
            allocations=[(ids["batch_id"], quantity)],
        )
        return quantity
    return _work


def test_two_half_debits_drain_batch_exactly(file_app, seeded):
    results, errors = _run_concurrently(
        file_app,
        _debit_worker(seeded, 5),
        _debit_worker(seeded, 5),
    )

    assert errors == []
    assert sorted(results) == [5, 5]

    with file_app.app_context():
        assert db.session.get(InventoryBatch, seeded["batch_id"]).quantity == 0
        deltas = [m.quantity_delta for m in db.session.query(StockMovement).filter_by(reason="sale")]
        assert sorted(deltas) == [-5, -5]
        assert reconciliation_service.ledger_discrepancies(seeded["org_id"]) == []
        db.session.remove()


def test_competing_debits_never_double_spend(file_app, seeded):
    results, errors = _run_concurrently(
        file_app,
        _debit_worker(seeded, 6),
        _debit_worker(seeded, 6),
    )

    assert results == [6]
    assert len(errors) == 1
    assert isinstance(errors[0], (InsufficientStock, TransactionConflict))

    with file_app.app_context():
        assert db.session.get(InventoryBatch, seeded["batch_id"]).quantity == 4
        assert reconciliation_service.ledger_discrepancies(seeded["org_id"]) == []
        db.session.remove()


def test_concurrent_receipts_never_exceed_ordered(file_app, seeded):
    with file_app.app_context():
        order = purchase_order_service.create(
            org_id=seeded["org_id"],
            items=[ExistingProduct(product_id=seeded["product_id"], quantity=100, unit_cost_cents=500)],
        )
        purchase_order_service.mark_ordered(org_id=seeded["org_id"], order_id=order.id)
        order_id = order.id
        item_id = order.items[0].id
        db.session.remove()

    def _receive_half():
        purchase_order_service.receive(
            org_id=seeded["org_id"],
            order_id=order_id,
            lines=[ReceiptLine(item_id=item_id, quantity=50)],
        )
        return 50

    results, errors = _run_concurrently(file_app, _receive_half, _receive_half)

    assert all(isinstance(exc, TransactionConflict) for exc in errors)
    assert len(results) + len(errors) == 2

    with file_app.app_context():
        order = db.session.get(PurchaseOrder, order_id)
        received = sum(item.received_quantity for item in order.items)
        assert received == sum(results)
        assert received <= 100
        assert (order.status == "received") == (received == 100)
        # seed batch holds 10 units
        on_hand = batch_store.quantity_on_hand(seeded["org_id"], seeded["product_id"])
        assert on_hand == 10 + received
        assert reconciliation_service.ledger_discrepancies(seeded["org_id"]) == []
        db.session.remove()


def test_concurrent_order_creation_gets_unique_numbers(file_app, seeded):
    def _create():
        order = purchase_order_service.create(
            org_id=seeded["org_id"],
            items=[ExistingProduct(product_id=seeded["product_id"], quantity=1, unit_cost_cents=100)],
        )
        return order.po_number

    results, errors = _run_concurrently(file_app, *[_create] * 4)

    assert errors == []
    assert len(set(results)) == 4

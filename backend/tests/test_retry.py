# Overview: Pytest coverage for run_with_retry and the first-writer insert helper.

import pytest
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, OperationalError

from medstock.errors import InsufficientStock, TransactionConflict
from medstock.extensions import db
from medstock.models import InventoryBatch, Product
from medstock.services.concurrency import InsertRace, insert_first_writer, run_with_retry


def _counting(exc_factory, succeed_on=None):
    calls = []

    def _op():
        calls.append(1)
        if succeed_on is not None and len(calls) >= succeed_on:
            return "done"
        raise exc_factory()

    return _op, calls


def test_lock_errors_retry_until_attempts_are_used(app, db_session):
    op, calls = _counting(lambda: OperationalError("UPDATE", {}, Exception("database is locked")))

    with pytest.raises(TransactionConflict) as exc_info:
        run_with_retry(op)

    assert len(calls) == app.config["TX_RETRY_ATTEMPTS"]
    assert exc_info.value.details["attempts"] == app.config["TX_RETRY_ATTEMPTS"]


def test_explicit_attempts_override_config(app, db_session):
    op, calls = _counting(lambda: OperationalError("UPDATE", {}, Exception("database is locked")))

    with pytest.raises(TransactionConflict):
        run_with_retry(op, attempts=5, backoff_base=0)

    assert len(calls) == 5


def test_lost_insert_race_is_retried(app, db_session):
    op, calls = _counting(lambda: InsertRace("UNIQUE constraint failed"), succeed_on=2)

    assert run_with_retry(op, backoff_base=0) == "done"
    assert len(calls) == 2


def test_domain_error_raises_on_first_attempt(app, db_session):
    op, calls = _counting(lambda: InsufficientStock("Batch A has 0 units, 1 requested"))

    with pytest.raises(InsufficientStock):
        run_with_retry(op)

    assert len(calls) == 1


def test_plain_integrity_error_is_not_a_conflict(app, db_session):
    op, calls = _counting(lambda: IntegrityError("INSERT", {}, Exception("CHECK constraint failed")))

    with pytest.raises(IntegrityError):
        run_with_retry(op)

    assert len(calls) == 1


def test_check_violation_propagates_and_rolls_back(app, db_session, product, make_batch):
    batch = make_batch(product, "A", 5)
    calls = []

    def _op():
        calls.append(1)
        db.session.execute(update(InventoryBatch).where(InventoryBatch.id == batch.id).values(quantity=-1))
        db.session.commit()

    with pytest.raises(IntegrityError):
        run_with_retry(_op)

    assert len(calls) == 1
    db_session.refresh(batch)
    assert batch.quantity == 5


def test_insert_first_writer_reports_duplicate_key_as_race(app, db_session, org, product):
    duplicate = Product(
        org_id=org.id,
        name=product.name,
        manufacturer=product.manufacturer,
        tax_percent=0,
        default_markup_percent=0,
        low_stock_threshold=10,
        is_active=True,
    )

    with pytest.raises(InsertRace):
        insert_first_writer(duplicate)
    db_session.rollback()

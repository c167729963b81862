# Overview: Pytest coverage for FEFO allocation planning.

from datetime import timedelta

import pytest

from medstock.errors import InsufficientStock, InvalidQuantity, NotFound
from medstock.models import InventoryBatch
from medstock.services import batch_store, stock_allocator
from medstock.time_utils import today


def _expire(db_session, batch):
    batch.expiry_date = today() - timedelta(days=1)
    db_session.commit()


def test_fefo_consumes_earliest_expiry_first(db_session, org, product, make_batch):
    """30 units from (20 expiring in 10 days, 50 expiring in 100 days) -> 20 + 10."""
    later = make_batch(product, "LATER", 50, expiry_days=100)
    sooner = make_batch(product, "SOONER", 20, expiry_days=10)

    plan = stock_allocator.allocate(org.id, product.id, 30)

    assert [(a.batch_id, a.quantity) for a in plan] == [(sooner.id, 20), (later.id, 10)]
    assert sum(a.quantity for a in plan) == 30


def test_allocation_carries_batch_cost_and_price(db_session, org, product, make_batch):
    batch = make_batch(product, "A", 5, unit_cost_cents=321, unit_price_cents=500)

    (allocation,) = stock_allocator.allocate(org.id, product.id, 2)

    assert allocation.batch_id == batch.id
    assert allocation.unit_cost_cents == 321
    assert allocation.unit_price_cents == 500
    assert allocation.expiry_date == batch.expiry_date


def test_expiry_ties_break_by_batch_id(db_session, org, product, make_batch):
    first = make_batch(product, "FIRST", 5, expiry_days=60)
    second = make_batch(product, "SECOND", 5, expiry_days=60)

    plan = stock_allocator.allocate(org.id, product.id, 7)

    assert [(a.batch_id, a.quantity) for a in plan] == [(first.id, 5), (second.id, 2)]


def test_allocate_does_not_mutate(db_session, org, product, make_batch):
    batch = make_batch(product, "A", 10)

    stock_allocator.allocate(org.id, product.id, 10)

    assert db_session.get(InventoryBatch, batch.id).quantity == 10


def test_insufficient_stock_reports_shortfall(db_session, org, product, make_batch):
    make_batch(product, "A", 4)
    make_batch(product, "B", 3)

    with pytest.raises(InsufficientStock) as exc_info:
        stock_allocator.allocate(org.id, product.id, 10)

    details = exc_info.value.details
    assert details["requested"] == 10
    assert details["available"] == 7
    assert details["shortfall"] == 3


def test_exhausted_and_inactive_batches_are_skipped(db_session, org, product, make_batch):
    empty = make_batch(product, "EMPTY", 2, expiry_days=5)
    batch_store.debit(org_id=org.id, product_id=product.id, allocations=[(empty.id, 2)])
    inactive = make_batch(product, "INACTIVE", 9, expiry_days=6)
    inactive.is_active = False
    db_session.commit()
    live = make_batch(product, "LIVE", 3, expiry_days=200)

    plan = stock_allocator.allocate(org.id, product.id, 3)

    assert [a.batch_id for a in plan] == [live.id]


def test_expired_batches_are_not_sold(db_session, org, product, make_batch):
    stale = make_batch(product, "STALE", 10, expiry_days=5)
    _expire(db_session, stale)
    fresh = make_batch(product, "FRESH", 4, expiry_days=50)

    plan = stock_allocator.allocate(org.id, product.id, 4)
    assert [a.batch_id for a in plan] == [fresh.id]

    with pytest.raises(InsufficientStock):
        stock_allocator.allocate(org.id, product.id, 5)

    with_expired = stock_allocator.allocate(org.id, product.id, 5, include_expired=True)
    assert with_expired[0].batch_id == stale.id


@pytest.mark.parametrize("requested", [0, -1])
def test_non_positive_request_rejected(db_session, org, product, requested):
    with pytest.raises(InvalidQuantity):
        stock_allocator.allocate(org.id, product.id, requested)


def test_select_return_batch_prefers_freshest(db_session, org, product, make_batch):
    make_batch(product, "OLDER", 1, expiry_days=20)
    newest = make_batch(product, "NEWER", 1, expiry_days=400)

    assert stock_allocator.select_return_batch(org.id, product.id).id == newest.id


def test_select_return_batch_without_stock(db_session, org, product):
    with pytest.raises(NotFound):
        stock_allocator.select_return_batch(org.id, product.id)

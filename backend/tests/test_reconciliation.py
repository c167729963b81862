# Overview: Pytest coverage for low stock, expiry and valuation reports and the ledger replay check.

from datetime import timedelta

import pytest
from sqlalchemy import update

from medstock.errors import InvalidQuantity
from medstock.models import InventoryBatch
from medstock.services import batch_store, reconciliation_service
from medstock.time_utils import today


def test_low_stock_uses_product_threshold(db_session, org, product, other_product, make_batch):
    # product threshold 10, other_product threshold 5
    make_batch(product, "A", 9)
    make_batch(other_product, "B", 5)

    rows = reconciliation_service.low_stock(org.id)

    assert [(p.id, qty) for p, qty in rows] == [(product.id, 9)]


def test_low_stock_counts_products_without_batches(db_session, org, product):
    rows = reconciliation_service.low_stock(org.id)
    assert [(p.id, qty) for p, qty in rows] == [(product.id, 0)]


def test_low_stock_threshold_override(db_session, org, product, other_product, make_batch):
    make_batch(product, "A", 9)
    make_batch(other_product, "B", 5)

    rows = reconciliation_service.low_stock(org.id, threshold_override=6)

    assert [p.id for p, _ in rows] == [other_product.id]


def test_low_stock_skips_inactive_products(db_session, org, product):
    product.is_active = False
    db_session.commit()
    assert reconciliation_service.low_stock(org.id) == []


def test_expiring_within_window(db_session, org, product, make_batch):
    soon = make_batch(product, "SOON", 3, expiry_days=5)
    make_batch(product, "LATER", 3, expiry_days=45)
    empty = make_batch(product, "EMPTY", 1, expiry_days=2)
    batch_store.debit(org_id=org.id, product_id=product.id, allocations=[(empty.id, 1)])

    rows = reconciliation_service.expiring_within(org.id, 30)

    assert [(b.id, p.id) for b, p in rows] == [(soon.id, product.id)]


def test_expiring_within_rejects_negative_days(db_session, org):
    with pytest.raises(InvalidQuantity):
        reconciliation_service.expiring_within(org.id, -1)


def test_expiry_report_buckets(db_session, org, product, make_batch):
    expired = make_batch(product, "EXPIRED", 2, expiry_days=10)
    db_session.execute(
        update(InventoryBatch)
        .where(InventoryBatch.id == expired.id)
        .values(expiry_date=today() - timedelta(days=3))
    )
    db_session.commit()
    make_batch(product, "CRIT", 3, expiry_days=7, unit_cost_cents=200)
    make_batch(product, "SOON", 4, expiry_days=8)
    make_batch(product, "UPCOMING", 5, expiry_days=60)
    make_batch(product, "BEYOND", 6, expiry_days=200)

    report = reconciliation_service.expiry_report(org.id, horizon_days=90)
    numbers = {name: [e["batch_number"] for e in entries] for name, entries in report["buckets"].items()}

    assert numbers == {
        "expired": ["EXPIRED"],
        "critical": ["CRIT"],
        "expiring_soon": ["SOON"],
        "upcoming": ["UPCOMING"],
    }
    assert report["summary"]["critical"] == {"batches": 1, "units": 3, "value_cents": 600}
    assert report["buckets"]["expired"][0]["days_to_expiry"] == -3


def test_valuation_sums_active_batches(db_session, org, product, other_product, make_batch):
    make_batch(product, "A", 10, unit_cost_cents=150)
    make_batch(other_product, "B", 4, unit_cost_cents=1000)
    hidden = make_batch(product, "C", 100, unit_cost_cents=1)
    hidden.is_active = False
    db_session.commit()

    assert reconciliation_service.valuation(org.id) == 10 * 150 + 4 * 1000

    by_product = {row["product_id"]: row for row in reconciliation_service.valuation_by_product(org.id)}
    assert by_product[product.id]["value_cents"] == 1500
    assert by_product[other_product.id]["quantity"] == 4


def test_valuation_is_org_scoped(db_session, org, other_org, product, make_batch):
    make_batch(product, "A", 10, unit_cost_cents=150)
    assert reconciliation_service.valuation(other_org.id) == 0


def test_ledger_consistent_after_normal_operations(db_session, org, product, make_batch):
    batch = make_batch(product, "A", 10)
    batch_store.debit(org_id=org.id, product_id=product.id, allocations=[(batch.id, 4)])
    batch_store.adjust(org_id=org.id, batch_id=batch.id, quantity_delta=1)

    assert reconciliation_service.ledger_discrepancies(org.id) == []


def test_ledger_check_detects_out_of_band_write(db_session, org, product, make_batch):
    batch = make_batch(product, "A", 10)
    db_session.execute(
        update(InventoryBatch).where(InventoryBatch.id == batch.id).values(quantity=13)
    )
    db_session.commit()

    (row,) = reconciliation_service.ledger_discrepancies(org.id)

    assert row["batch_id"] == batch.id
    assert row["quantity"] == 13
    assert row["replayed_quantity"] == 10
    assert row["difference"] == 3

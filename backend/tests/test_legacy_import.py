# Overview: Pytest coverage for migrating legacy flat stock into batches.

from datetime import timedelta

import pytest

from medstock.errors import InvalidItem
from medstock.models import InventoryBatch, Product, StockMovement
from medstock.services import reconciliation_service
from medstock.services.legacy_import_service import migrate_flat_stock
from medstock.time_utils import today


def _record(**overrides):
    record = {
        "name": "Ibuprofen 400mg",
        "manufacturer": "Delta Pharma",
        "generic_name": "Ibuprofen",
        "quantity": 24,
        "cost_price": "1.25",
        "selling_price": "2.10",
        "gst_rate": 12,
        "expiry_date": (today() + timedelta(days=200)).isoformat(),
    }
    record.update(overrides)
    return record


def test_record_becomes_product_and_default_batch(db_session, org):
    result = migrate_flat_stock(org_id=org.id, records=[_record()])

    assert result.products_created == 1
    assert result.batches_created == 1

    product = db_session.query(Product).filter_by(org_id=org.id, name="Ibuprofen 400mg").one()
    batch = db_session.query(InventoryBatch).filter_by(product_id=product.id).one()
    assert batch.batch_number == f"DEFAULT-{today().year}"
    assert batch.quantity == 24
    assert batch.unit_cost_cents == 125
    assert batch.unit_price_cents == 210
    assert str(product.tax_percent) == "12.00"

    movement = db_session.query(StockMovement).filter_by(batch_id=batch.id).one()
    assert movement.reason == "adjustment"
    assert reconciliation_service.ledger_discrepancies(org.id) == []


def test_existing_product_and_batch_number_are_reused(db_session, org, product):
    result = migrate_flat_stock(
        org_id=org.id,
        records=[_record(name=product.name, manufacturer=product.manufacturer, batch_number="L-77")],
    )

    assert result.products_created == 0
    batch = db_session.query(InventoryBatch).filter_by(product_id=product.id).one()
    assert batch.batch_number == "L-77"


def test_rerun_skips_existing_batches(db_session, org):
    migrate_flat_stock(org_id=org.id, records=[_record()])
    result = migrate_flat_stock(org_id=org.id, records=[_record()])

    assert result.batches_created == 0
    assert [s["reason"] for s in result.skipped] == ["batch already exists"]
    assert db_session.query(InventoryBatch).one().quantity == 24


def test_empty_and_expired_records_are_skipped(db_session, org):
    result = migrate_flat_stock(
        org_id=org.id,
        records=[
            _record(name="Empty", quantity=0),
            _record(name="Stale", expiry_date=(today() - timedelta(days=1)).isoformat()),
            _record(name="Good", quantity="7"),
        ],
    )

    assert result.products_created == 3
    assert result.batches_created == 1
    assert sorted(s["reason"] for s in result.skipped) == ["expired", "no stock"]


def test_missing_expiry_gets_default_shelf_life(db_session, org):
    migrate_flat_stock(org_id=org.id, records=[_record(expiry_date=None)])
    assert db_session.query(InventoryBatch).one().expiry_date == today() + timedelta(days=365)


def test_malformed_record_aborts_whole_import(db_session, org):
    with pytest.raises(InvalidItem):
        migrate_flat_stock(org_id=org.id, records=[_record(), _record(name="Broken", manufacturer="")])

    assert db_session.query(Product).count() == 0
    assert db_session.query(InventoryBatch).count() == 0


@pytest.mark.parametrize("quantity", ["12.7", "1e400", 12.7, "nan", "twelve"])
def test_non_integer_quantity_is_rejected(db_session, org, quantity):
    with pytest.raises(InvalidItem) as exc_info:
        migrate_flat_stock(org_id=org.id, records=[_record(), _record(name="Broken", quantity=quantity)])

    assert exc_info.value.details == {"record": 2}
    assert "Record 2 (Broken): quantity" in exc_info.value.message
    assert db_session.query(InventoryBatch).count() == 0


def test_non_integer_cents_and_threshold_are_rejected(db_session, org):
    with pytest.raises(InvalidItem) as exc_info:
        migrate_flat_stock(org_id=org.id, records=[_record(unit_cost_cents="99.5")])
    assert "unit_cost_cents" in exc_info.value.message

    with pytest.raises(InvalidItem) as exc_info:
        migrate_flat_stock(org_id=org.id, records=[_record(low_stock_threshold="2.5")])
    assert "low_stock_threshold" in exc_info.value.message

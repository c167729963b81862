# Overview: One-time migration of legacy one-row-per-medicine stock into products and batches.

"""
Legacy Flat-Stock Migration

The legacy system kept one row per medicine with a single quantity, price
and expiry. Each record becomes:

- a Product, found by (name, manufacturer) or created, and
- one InventoryBatch numbered by the record's batch_number, or
  DEFAULT-<year> when it has none.

Quantity enters through the batch store (reason "adjustment"), so every
migrated batch has a movement history that replays to its quantity.

The whole run is one transaction: a malformed record aborts the import
with nothing written. Records whose batch already exists are skipped, so
re-running an import is harmless. Zero-quantity and already-expired
records cannot become batches and are reported as skipped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Iterable

from flask import current_app

from ..errors import InvalidItem
from ..extensions import db
from ..models import InventoryBatch, Supplier
from ..models.inventory import REASON_ADJUSTMENT
from ..money import to_cents
from ..time_utils import parse_iso_date, today
from ..validation import ValidationError, coerce_int
from .batch_store import _credit_inner
from .catalog_service import find_or_create_product, find_product
from .concurrency import run_with_retry

logger = logging.getLogger(__name__)


@dataclass
class LegacyImportResult:
    products_created: int = 0
    batches_created: int = 0
    skipped: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "products_created": self.products_created,
            "batches_created": self.batches_created,
            "skipped": self.skipped,
        }


def _to_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _to_int(value: Any, field: str) -> int | None:
    if value is None or value == "":
        return None
    return coerce_int(value, field)


def _money(record: dict, cents_key: str, amount_key: str) -> int | None:
    """Prefer an explicit *_cents field, else convert the legacy decimal amount."""
    if record.get(cents_key) not in (None, ""):
        return _to_int(record[cents_key], cents_key)
    if record.get(amount_key) not in (None, ""):
        return to_cents(record[amount_key])
    return None


def _known_supplier(org_id: int, supplier_id: int | None) -> int | None:
    """Legacy supplier ids that no longer resolve are dropped."""
    if supplier_id is None:
        return None
    exists = db.session.query(Supplier.id).filter_by(id=supplier_id, org_id=org_id).first()
    return supplier_id if exists else None


def default_batch_number() -> str:
    return f"DEFAULT-{today().year}"


def migrate_flat_stock(
    *,
    org_id: int,
    records: Iterable[dict],
    actor_id: int | None = None,
) -> LegacyImportResult:
    """
    Migrate legacy stock records. Each record is a dict with at least
    name, manufacturer and quantity; optional generic_name, category,
    tax_percent (or gst_rate), low_stock_threshold, batch_number,
    expiry_date, cost_price / unit_cost_cents, selling_price /
    unit_price_cents, supplier_id.
    """
    records = list(records)

    def _op():
        result = LegacyImportResult()
        shelf_life = timedelta(days=int(current_app.config.get("DEFAULT_SHELF_LIFE_DAYS", 365)))

        for index, record in enumerate(records, start=1):
            name = _to_text(record.get("name"))
            manufacturer = _to_text(record.get("manufacturer"))
            if not name or not manufacturer:
                raise InvalidItem(
                    f"Record {index}: name and manufacturer are required",
                    details={"record": index},
                )
            try:
                quantity = _to_int(record.get("quantity"), "quantity") or 0
                low_stock_threshold = _to_int(record.get("low_stock_threshold"), "low_stock_threshold")
                supplier_id = _to_int(record.get("supplier_id"), "supplier_id")
                cost = _money(record, "unit_cost_cents", "cost_price")
                price = _money(record, "unit_price_cents", "selling_price")
                expiry = parse_iso_date(record.get("expiry_date"))
            except (ValueError, ValidationError) as e:
                raise InvalidItem(f"Record {index} ({name}): {e}", details={"record": index})

            existed = find_product(org_id, name, manufacturer) is not None
            product = find_or_create_product(
                org_id=org_id,
                name=name,
                manufacturer=manufacturer,
                created_by=actor_id,
                generic_name=_to_text(record.get("generic_name")),
                category=_to_text(record.get("category")),
                tax_percent=record.get("tax_percent", record.get("gst_rate")) or 0,
                low_stock_threshold=low_stock_threshold,
            )
            if not existed:
                result.products_created += 1

            batch_number = _to_text(record.get("batch_number")) or default_batch_number()
            skip_reason = None
            if db.session.query(InventoryBatch.id).filter_by(
                org_id=org_id, product_id=product.id, batch_number=batch_number
            ).first() is not None:
                skip_reason = "batch already exists"
            elif quantity <= 0:
                skip_reason = "no stock"
            elif expiry is not None and expiry < today():
                skip_reason = "expired"

            if skip_reason:
                result.skipped.append(
                    {"record": index, "name": name, "batch_number": batch_number, "reason": skip_reason}
                )
                continue

            _credit_inner(
                org_id=org_id,
                product_id=product.id,
                batch_number=batch_number,
                quantity=quantity,
                unit_cost_cents=cost or 0,
                unit_price_cents=price,
                expiry_date=expiry or (today() + shelf_life),
                supplier_id=_known_supplier(org_id, supplier_id),
                reason=REASON_ADJUSTMENT,
                reference_type="legacy_import",
                note="Migrated from flat stock",
                actor_id=actor_id,
            )
            result.batches_created += 1

        db.session.commit()
        return result

    result = run_with_retry(_op)
    logger.info(
        "legacy import for org %s: %d products created, %d batches created, %d skipped",
        org_id, result.products_created, result.batches_created, len(result.skipped),
    )
    return result

# Overview: Read-only stock reports: low stock, expiry, valuation and ledger replay checks.

"""
Reconciliation Reporter

Observability over the batch ledger, not part of its consistency boundary:
every report reads committed data and may be slightly stale relative to
concurrent writers. Nothing here locks or writes.
"""

from __future__ import annotations

from datetime import timedelta

from sqlalchemy import func

from ..errors import InvalidQuantity
from ..extensions import db
from ..models import InventoryBatch, Product, StockMovement
from ..time_utils import today

# Expiry report buckets (days until expiry, inclusive upper bounds)
CRITICAL_DAYS = 7
EXPIRING_SOON_DAYS = 30
DEFAULT_HORIZON_DAYS = 90


def _require_days(days, name: str = "days") -> int:
    if isinstance(days, bool) or not isinstance(days, int) or days < 0:
        raise InvalidQuantity(f"{name} must be a non-negative integer", details={name: days})
    return days


def _on_hand_subquery(org_id: int):
    return db.session.query(
        InventoryBatch.product_id.label("product_id"),
        func.sum(InventoryBatch.quantity).label("on_hand"),
    ).filter(
        InventoryBatch.org_id == org_id,
        InventoryBatch.is_active.is_(True),
    ).group_by(InventoryBatch.product_id).subquery()


def low_stock(org_id: int, threshold_override: int | None = None) -> list[tuple[Product, int]]:
    """
    Active products whose on-hand quantity is below their threshold
    (or below `threshold_override` when given). Products with no batches
    count as zero on hand.
    """
    if threshold_override is not None:
        _require_days(threshold_override, "threshold_override")

    on_hand = _on_hand_subquery(org_id)
    qty = func.coalesce(on_hand.c.on_hand, 0)
    threshold = Product.low_stock_threshold if threshold_override is None else threshold_override

    rows = db.session.query(Product, qty).outerjoin(
        on_hand, on_hand.c.product_id == Product.id
    ).filter(
        Product.org_id == org_id,
        Product.is_active.is_(True),
        qty < threshold,
    ).order_by(qty, Product.name).all()

    return [(product, int(quantity)) for product, quantity in rows]


def expiring_within(org_id: int, days: int) -> list[tuple[InventoryBatch, Product]]:
    """Active, stocked batches with today <= expiry_date <= today + days, soonest first."""
    _require_days(days)
    start = today()
    end = start + timedelta(days=days)

    return db.session.query(InventoryBatch, Product).join(
        Product, Product.id == InventoryBatch.product_id
    ).filter(
        InventoryBatch.org_id == org_id,
        InventoryBatch.is_active.is_(True),
        InventoryBatch.quantity > 0,
        InventoryBatch.expiry_date >= start,
        InventoryBatch.expiry_date <= end,
    ).order_by(InventoryBatch.expiry_date, InventoryBatch.id).all()


def expiry_report(org_id: int, horizon_days: int = DEFAULT_HORIZON_DAYS) -> dict:
    """
    Stocked batches grouped by urgency:

    - expired:        expiry_date < today
    - critical:       0..7 days left
    - expiring_soon:  8..30 days left
    - upcoming:       31..horizon_days days left
    """
    _require_days(horizon_days, "horizon_days")
    current = today()

    rows = db.session.query(InventoryBatch, Product).join(
        Product, Product.id == InventoryBatch.product_id
    ).filter(
        InventoryBatch.org_id == org_id,
        InventoryBatch.is_active.is_(True),
        InventoryBatch.quantity > 0,
        InventoryBatch.expiry_date <= current + timedelta(days=horizon_days),
    ).order_by(InventoryBatch.expiry_date, InventoryBatch.id).all()

    buckets = {"expired": [], "critical": [], "expiring_soon": [], "upcoming": []}
    for batch, product in rows:
        days_left = (batch.expiry_date - current).days
        if days_left < 0:
            bucket = "expired"
        elif days_left <= CRITICAL_DAYS:
            bucket = "critical"
        elif days_left <= EXPIRING_SOON_DAYS:
            bucket = "expiring_soon"
        else:
            bucket = "upcoming"

        entry = batch.to_dict()
        entry["product_name"] = product.name
        entry["days_to_expiry"] = days_left
        entry["value_cents"] = batch.quantity * batch.unit_cost_cents
        buckets[bucket].append(entry)

    summary = {
        name: {
            "batches": len(entries),
            "units": sum(e["quantity"] for e in entries),
            "value_cents": sum(e["value_cents"] for e in entries),
        }
        for name, entries in buckets.items()
    }
    return {"as_of": current.isoformat(), "horizon_days": horizon_days, "buckets": buckets, "summary": summary}


def valuation(org_id: int) -> int:
    """SUM(quantity * unit_cost_cents) over active batches."""
    total = db.session.query(
        func.coalesce(func.sum(InventoryBatch.quantity * InventoryBatch.unit_cost_cents), 0)
    ).filter(
        InventoryBatch.org_id == org_id,
        InventoryBatch.is_active.is_(True),
    ).scalar()
    return int(total or 0)


def valuation_by_product(org_id: int) -> list[dict]:
    rows = db.session.query(
        Product.id,
        Product.name,
        func.sum(InventoryBatch.quantity),
        func.sum(InventoryBatch.quantity * InventoryBatch.unit_cost_cents),
    ).join(
        InventoryBatch, InventoryBatch.product_id == Product.id
    ).filter(
        InventoryBatch.org_id == org_id,
        InventoryBatch.is_active.is_(True),
        InventoryBatch.quantity > 0,
    ).group_by(Product.id, Product.name).order_by(Product.name).all()

    return [
        {
            "product_id": product_id,
            "product_name": name,
            "quantity": int(quantity or 0),
            "value_cents": int(value or 0),
        }
        for product_id, name, quantity, value in rows
    ]


def ledger_discrepancies(org_id: int) -> list[dict]:
    """
    Batches whose live quantity differs from the replay of their movements.
    An empty list means the ledger is consistent.
    """
    replayed = db.session.query(
        StockMovement.batch_id.label("batch_id"),
        func.sum(StockMovement.quantity_delta).label("replayed"),
    ).filter(
        StockMovement.org_id == org_id
    ).group_by(StockMovement.batch_id).subquery()

    replayed_qty = func.coalesce(replayed.c.replayed, 0)
    rows = db.session.query(InventoryBatch, replayed_qty).outerjoin(
        replayed, replayed.c.batch_id == InventoryBatch.id
    ).filter(
        InventoryBatch.org_id == org_id,
        InventoryBatch.quantity != replayed_qty,
    ).order_by(InventoryBatch.id).all()

    return [
        {
            "batch_id": batch.id,
            "product_id": batch.product_id,
            "batch_number": batch.batch_number,
            "quantity": batch.quantity,
            "replayed_quantity": int(replayed_quantity),
            "difference": batch.quantity - int(replayed_quantity),
        }
        for batch, replayed_quantity in rows
    ]

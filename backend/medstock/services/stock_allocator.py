# Overview: FEFO allocation plans for sales; read-only over batch quantities.

"""
Stock Allocator

FEFO (first-expiry-first-out):
- Candidates are the product's active, non-exhausted batches.
- Expired batches are not sold (include_expired=True overrides for
  write-offs and audits).
- Order: expiry_date ascending, ties by batch id ascending.
- Each batch is consumed fully before moving to the next.

allocate() never mutates. With lock=True the candidate rows are read
FOR UPDATE so a caller that debits the plan in the same transaction
(checkout) works against rows nobody else can change meanwhile; the
conditional UPDATE in batch_store still guards SQLite, which has no row
locks.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date

from ..errors import InsufficientStock, InvalidQuantity, NotFound
from ..extensions import db
from ..models import InventoryBatch
from ..time_utils import today, to_iso_date
from .catalog_service import get_product
from .concurrency import lock_for_update

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Allocation:
    batch_id: int
    quantity: int
    unit_cost_cents: int
    unit_price_cents: int
    expiry_date: date

    def to_dict(self) -> dict:
        return {
            "batch_id": self.batch_id,
            "quantity": self.quantity,
            "unit_cost_cents": self.unit_cost_cents,
            "unit_price_cents": self.unit_price_cents,
            "expiry_date": to_iso_date(self.expiry_date),
        }


def _candidate_batches(org_id: int, product_id: int, *, include_expired: bool, lock: bool) -> list[InventoryBatch]:
    query = db.session.query(InventoryBatch).filter(
        InventoryBatch.org_id == org_id,
        InventoryBatch.product_id == product_id,
        InventoryBatch.is_active.is_(True),
        InventoryBatch.quantity > 0,
    )
    if not include_expired:
        query = query.filter(InventoryBatch.expiry_date >= today())
    query = query.order_by(InventoryBatch.expiry_date.asc(), InventoryBatch.id.asc())
    if lock:
        query = lock_for_update(query)
    return query.all()


def allocate(
    org_id: int,
    product_id: int,
    requested_quantity: int,
    *,
    lock: bool = False,
    include_expired: bool = False,
) -> list[Allocation]:
    """
    Plan which batches satisfy `requested_quantity` units.

    Returns the plan in FEFO order; quantities sum to exactly the request.

    Raises:
        InvalidQuantity: requested_quantity <= 0
        InsufficientStock: not enough sellable stock (no partial plan)
        NotFound: product not in this organization
    """
    if isinstance(requested_quantity, bool) or not isinstance(requested_quantity, int) or requested_quantity <= 0:
        raise InvalidQuantity(
            "Requested quantity must be a positive integer",
            details={"product_id": product_id, "requested": requested_quantity},
        )

    get_product(org_id, product_id)
    batches = _candidate_batches(org_id, product_id, include_expired=include_expired, lock=lock)

    plan: list[Allocation] = []
    remaining = requested_quantity
    for batch in batches:
        if remaining == 0:
            break
        take = min(batch.quantity, remaining)
        plan.append(
            Allocation(
                batch_id=batch.id,
                quantity=take,
                unit_cost_cents=batch.unit_cost_cents,
                unit_price_cents=batch.unit_price_cents,
                expiry_date=batch.expiry_date,
            )
        )
        remaining -= take

    if remaining > 0:
        available = requested_quantity - remaining
        raise InsufficientStock(
            f"Only {available} sellable units of product {product_id}, {requested_quantity} requested",
            details={
                "product_id": product_id,
                "requested": requested_quantity,
                "available": available,
                "shortfall": remaining,
            },
        )

    logger.debug("allocated %d units of product %s across %d batches", requested_quantity, product_id, len(plan))
    return plan


def select_return_batch(org_id: int, product_id: int) -> InventoryBatch:
    """
    Batch a customer return goes back into when the caller does not name one:
    the active, unexpired batch with the latest expiry (the freshest lot).
    """
    get_product(org_id, product_id)
    batch = db.session.query(InventoryBatch).filter(
        InventoryBatch.org_id == org_id,
        InventoryBatch.product_id == product_id,
        InventoryBatch.is_active.is_(True),
        InventoryBatch.expiry_date >= today(),
    ).order_by(
        InventoryBatch.expiry_date.desc(), InventoryBatch.id.desc()
    ).first()
    if batch is None:
        raise NotFound(
            f"No unexpired batch of product {product_id} to return into",
            details={"product_id": product_id},
        )
    return batch

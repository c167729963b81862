# Overview: Batch store; the only code path that changes batch quantities.

"""
Inventory Batch Store

Inventory invariants (authoritative):

- Stock is held per product as InventoryBatch rows (expiry + unit cost).
- batch.quantity >= 0 after every committed operation.
- A batch with quantity 0 is exhausted: excluded from allocation, kept for audit.
- Quantity on hand = SUM(quantity) over the product's active batches.
- Every quantity change appends exactly one StockMovement per batch touched,
  in the same DB transaction as the change. batch.quantity always equals the
  signed sum of that batch's movements (replay equivalence).

Write discipline:
- Quantities are changed with conditional UPDATEs
  (SET quantity = quantity - n WHERE quantity >= n) so the check and the
  write happen in one statement; two concurrent debits can never both pass
  a stale check and overdraw a batch, with or without row locks.
- `_..._inner` functions run inside the caller's transaction and never
  commit (purchase order receipts, checkout). The public functions wrap one
  inner call in run_with_retry and commit.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Iterable

from sqlalchemy import func, update

from ..errors import InsufficientStock, InvalidExpiry, InvalidItem, InvalidQuantity, NotFound, UnknownBatch
from ..extensions import db
from ..models import InventoryBatch, StockMovement
from ..models.inventory import (
    MOVEMENT_REASONS,
    REASON_ADJUSTMENT,
    REASON_PURCHASE_RECEIVE,
    REASON_RETURN,
    REASON_SALE,
)
from ..money import is_valid_cents
from ..time_utils import parse_iso_date, today
from .catalog_service import get_product, selling_price_cents
from .concurrency import insert_first_writer, lock_for_update, run_with_retry

logger = logging.getLogger(__name__)


def _require_positive_quantity(quantity, **details) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidQuantity(
            "Quantity must be a positive integer",
            details={"quantity": quantity, **details},
        )
    return quantity


def _normalize_allocations(allocations: Iterable) -> list[tuple[int, int]]:
    """
    Accept (batch_id, quantity) pairs or Allocation-like objects and merge
    repeated batch ids. Returned sorted by batch id so concurrent writers
    always touch rows in the same order.
    """
    merged: dict[int, int] = {}
    for entry in allocations or []:
        if isinstance(entry, (tuple, list)):
            batch_id, quantity = entry[0], entry[1]
        else:
            batch_id, quantity = entry.batch_id, entry.quantity
        _require_positive_quantity(quantity, batch_id=batch_id)
        merged[batch_id] = merged.get(batch_id, 0) + quantity

    if not merged:
        raise InvalidQuantity("At least one allocation is required")
    return sorted(merged.items())


def _append_movement(
    batch: InventoryBatch,
    quantity_delta: int,
    reason: str,
    *,
    reference_type: str | None = None,
    reference_id=None,
    unit_cost_cents: int | None = None,
    note: str | None = None,
    actor_id: int | None = None,
) -> StockMovement:
    if reason not in MOVEMENT_REASONS:
        raise ValueError(f"unknown stock movement reason {reason!r}")

    movement = StockMovement(
        org_id=batch.org_id,
        product_id=batch.product_id,
        batch_id=batch.id,
        quantity_delta=quantity_delta,
        reason=reason,
        reference_type=reference_type,
        reference_id=str(reference_id) if reference_id is not None else None,
        unit_cost_cents=unit_cost_cents if unit_cost_cents is not None else batch.unit_cost_cents,
        note=note,
        actor_id=actor_id,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def _increment(batch_id: int, quantity: int) -> None:
    db.session.execute(
        update(InventoryBatch)
        .where(InventoryBatch.id == batch_id)
        .values(quantity=InventoryBatch.quantity + quantity)
        .execution_options(synchronize_session=False)
    )


def _decrement(batch_id: int, quantity: int) -> bool:
    """Take `quantity` off a batch only if it still holds that many units."""
    result = db.session.execute(
        update(InventoryBatch)
        .where(InventoryBatch.id == batch_id, InventoryBatch.quantity >= quantity)
        .values(quantity=InventoryBatch.quantity - quantity)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _current_quantity(batch_id: int) -> int:
    return int(
        db.session.query(InventoryBatch.quantity).filter(InventoryBatch.id == batch_id).scalar() or 0
    )


def _get_batch_in_org(org_id: int, batch_id: int, *, lock: bool = False) -> InventoryBatch:
    query = db.session.query(InventoryBatch).filter_by(id=batch_id, org_id=org_id)
    if lock:
        query = lock_for_update(query)
    batch = query.first()
    if batch is None:
        raise UnknownBatch(f"Batch {batch_id} not found", details={"batch_id": batch_id})
    return batch


# =============================================================================
# CREDIT
# =============================================================================

def _credit_inner(
    *,
    org_id: int,
    product_id: int,
    batch_number: str,
    quantity: int,
    unit_cost_cents: int,
    unit_price_cents: int | None = None,
    expiry_date: date | str | None = None,
    supplier_id: int | None = None,
    reason: str = REASON_PURCHASE_RECEIVE,
    reference_type: str | None = None,
    reference_id=None,
    note: str | None = None,
    actor_id: int | None = None,
) -> InventoryBatch:
    """Core credit logic without retry or commit."""
    _require_positive_quantity(quantity, product_id=product_id)

    batch_number = (batch_number or "").strip()
    if not batch_number:
        raise InvalidItem("batch_number is required", details={"product_id": product_id})

    product = get_product(org_id, product_id)

    batch = lock_for_update(
        db.session.query(InventoryBatch).filter_by(
            org_id=org_id,
            product_id=product_id,
            batch_number=batch_number,
        )
    ).first()

    try:
        expiry = parse_iso_date(expiry_date)
    except ValueError:
        raise InvalidExpiry("expiry_date must be YYYY-MM-DD", details={"expiry_date": expiry_date})
    if expiry is not None and expiry < today():
        raise InvalidExpiry(
            f"Batch {batch_number} expired on {expiry.isoformat()}",
            details={"batch_number": batch_number, "expiry_date": expiry.isoformat()},
        )

    if batch is None:
        if expiry is None:
            raise InvalidExpiry("expiry_date is required for a new batch", details={"batch_number": batch_number})

        if not is_valid_cents(unit_cost_cents):
            raise InvalidItem("unit_cost_cents must be a non-negative integer", details={"product_id": product_id})
        if unit_price_cents is None:
            unit_price_cents = selling_price_cents(product, unit_cost_cents)
        elif not is_valid_cents(unit_price_cents):
            raise InvalidItem("unit_price_cents must be a non-negative integer", details={"product_id": product_id})

        batch = InventoryBatch(
            org_id=org_id,
            product_id=product_id,
            batch_number=batch_number,
            expiry_date=expiry,
            quantity=quantity,
            unit_cost_cents=unit_cost_cents,
            unit_price_cents=unit_price_cents,
            supplier_id=supplier_id,
            is_active=True,
        )
        insert_first_writer(batch)
        created = True
    else:
        # A batch number names one lot: same expiry and same cost
        if expiry is not None and expiry != batch.expiry_date:
            raise InvalidExpiry(
                f"Batch {batch_number} already exists with expiry {batch.expiry_date.isoformat()}",
                details={
                    "batch_number": batch_number,
                    "expiry_date": expiry.isoformat(),
                    "existing_expiry_date": batch.expiry_date.isoformat(),
                },
            )
        if unit_cost_cents is not None and unit_cost_cents != batch.unit_cost_cents:
            raise InvalidItem(
                f"Batch {batch_number} already exists with unit cost {batch.unit_cost_cents}",
                details={
                    "batch_number": batch_number,
                    "unit_cost_cents": unit_cost_cents,
                    "existing_unit_cost_cents": batch.unit_cost_cents,
                },
            )
        if batch.expiry_date < today():
            raise InvalidExpiry(
                f"Batch {batch_number} expired on {batch.expiry_date.isoformat()}",
                details={"batch_number": batch_number, "expiry_date": batch.expiry_date.isoformat()},
            )
        _increment(batch.id, quantity)
        if not batch.is_active:
            batch.is_active = True
        db.session.flush()
        db.session.expire(batch, ["quantity", "updated_at"])
        created = False

    _append_movement(
        batch,
        quantity,
        reason,
        reference_type=reference_type,
        reference_id=reference_id,
        unit_cost_cents=unit_cost_cents if is_valid_cents(unit_cost_cents) else None,
        note=note,
        actor_id=actor_id,
    )

    logger.info(
        "credited %d units to batch %s (%s, product %s, %s)",
        quantity, batch.id, batch_number, product_id, "new" if created else "existing",
    )
    return batch


def credit(
    *,
    org_id: int,
    product_id: int,
    batch_number: str,
    quantity: int,
    unit_cost_cents: int,
    unit_price_cents: int | None = None,
    expiry_date: date | str | None = None,
    supplier_id: int | None = None,
    reason: str = REASON_PURCHASE_RECEIVE,
    reference_type: str | None = None,
    reference_id=None,
    note: str | None = None,
    actor_id: int | None = None,
) -> InventoryBatch:
    """
    Create the batch if `batch_number` is unseen for the product, otherwise
    add `quantity` to it. An existing batch only accepts more units of the
    same lot: a differing expiry or unit cost is rejected.

    Raises:
        InvalidQuantity: quantity <= 0
        InvalidExpiry: expiry in the past, or differing from the existing batch
        InvalidItem: unit cost differing from the existing batch
        NotFound: product not in this organization
    """
    def _op():
        batch = _credit_inner(
            org_id=org_id,
            product_id=product_id,
            batch_number=batch_number,
            quantity=quantity,
            unit_cost_cents=unit_cost_cents,
            unit_price_cents=unit_price_cents,
            expiry_date=expiry_date,
            supplier_id=supplier_id,
            reason=reason,
            reference_type=reference_type,
            reference_id=reference_id,
            note=note,
            actor_id=actor_id,
        )
        db.session.commit()
        return batch

    return run_with_retry(_op)


# =============================================================================
# DEBIT
# =============================================================================

def _debit_inner(
    *,
    org_id: int,
    product_id: int,
    allocations: Iterable,
    reason: str = REASON_SALE,
    reference_type: str | None = None,
    reference_id=None,
    note: str | None = None,
    actor_id: int | None = None,
) -> list[StockMovement]:
    """
    Core debit logic without retry or commit.

    Validates every allocation before writing any of them; a failure after
    the first write raises, and the caller's rollback discards the partial
    writes, so the effect is all-or-nothing either way.
    """
    plan = _normalize_allocations(allocations)
    get_product(org_id, product_id)

    batch_ids = [batch_id for batch_id, _ in plan]
    batches = {
        b.id: b
        for b in lock_for_update(
            db.session.query(InventoryBatch)
            .filter(InventoryBatch.id.in_(batch_ids))
            .order_by(InventoryBatch.id)
        ).all()
    }

    for batch_id, quantity in plan:
        batch = batches.get(batch_id)
        if batch is None or batch.org_id != org_id or batch.product_id != product_id:
            raise UnknownBatch(
                f"Batch {batch_id} does not belong to product {product_id}",
                details={"batch_id": batch_id, "product_id": product_id},
            )
        if not batch.is_active:
            raise UnknownBatch(
                f"Batch {batch_id} is inactive",
                details={"batch_id": batch_id, "product_id": product_id},
            )
        if batch.quantity < quantity:
            raise InsufficientStock(
                f"Batch {batch.batch_number} has {batch.quantity} units, {quantity} requested",
                details={
                    "batch_id": batch_id,
                    "product_id": product_id,
                    "requested": quantity,
                    "available": batch.quantity,
                    "shortfall": quantity - batch.quantity,
                },
            )

    movements = []
    for batch_id, quantity in plan:
        batch = batches[batch_id]
        if not _decrement(batch_id, quantity):
            # Lost a race since the check above
            available = _current_quantity(batch_id)
            raise InsufficientStock(
                f"Batch {batch.batch_number} has {available} units, {quantity} requested",
                details={
                    "batch_id": batch_id,
                    "product_id": product_id,
                    "requested": quantity,
                    "available": available,
                    "shortfall": quantity - available,
                },
            )
        db.session.expire(batch, ["quantity", "updated_at"])
        movements.append(
            _append_movement(
                batch,
                -quantity,
                reason,
                reference_type=reference_type,
                reference_id=reference_id,
                note=note,
                actor_id=actor_id,
            )
        )

    logger.info(
        "debited product %s: %s (%s)",
        product_id, ", ".join(f"batch {b}x{q}" for b, q in plan), reason,
    )
    return movements


def debit(
    *,
    org_id: int,
    product_id: int,
    allocations: Iterable,
    reason: str = REASON_SALE,
    reference_type: str | None = None,
    reference_id=None,
    note: str | None = None,
    actor_id: int | None = None,
) -> list[StockMovement]:
    """
    Take stock out of the named batches, atomically.

    `allocations` is a list of (batch_id, quantity) pairs, typically the
    exact plan returned by stock_allocator.allocate().

    Raises:
        InsufficientStock: any allocation would drive a batch negative
        UnknownBatch: a batch id does not belong to the product
        InvalidQuantity: empty plan or non-positive quantity
    """
    def _op():
        movements = _debit_inner(
            org_id=org_id,
            product_id=product_id,
            allocations=allocations,
            reason=reason,
            reference_type=reference_type,
            reference_id=reference_id,
            note=note,
            actor_id=actor_id,
        )
        db.session.commit()
        return movements

    return run_with_retry(_op)


# =============================================================================
# RETURNS AND ADJUSTMENTS
# =============================================================================

def _restock_inner(
    *,
    org_id: int,
    batch_id: int,
    quantity: int,
    reason: str = REASON_RETURN,
    reference_type: str | None = None,
    reference_id=None,
    note: str | None = None,
    actor_id: int | None = None,
) -> InventoryBatch:
    _require_positive_quantity(quantity, batch_id=batch_id)
    batch = _get_batch_in_org(org_id, batch_id, lock=True)

    _increment(batch.id, quantity)
    db.session.flush()
    db.session.expire(batch, ["quantity", "updated_at"])

    _append_movement(
        batch,
        quantity,
        reason,
        reference_type=reference_type,
        reference_id=reference_id,
        note=note,
        actor_id=actor_id,
    )
    logger.info("restocked %d units into batch %s (%s)", quantity, batch.id, reason)
    return batch


def restock(
    *,
    org_id: int,
    batch_id: int,
    quantity: int,
    reference_type: str | None = None,
    reference_id=None,
    note: str | None = None,
    actor_id: int | None = None,
) -> InventoryBatch:
    """Put returned units back into an existing batch."""
    def _op():
        batch = _restock_inner(
            org_id=org_id,
            batch_id=batch_id,
            quantity=quantity,
            reference_type=reference_type,
            reference_id=reference_id,
            note=note,
            actor_id=actor_id,
        )
        db.session.commit()
        return batch

    return run_with_retry(_op)


def _adjust_inner(
    *,
    org_id: int,
    batch_id: int,
    quantity_delta: int,
    note: str | None = None,
    actor_id: int | None = None,
) -> InventoryBatch:
    if isinstance(quantity_delta, bool) or not isinstance(quantity_delta, int) or quantity_delta == 0:
        raise InvalidQuantity(
            "quantity_delta must be a non-zero integer",
            details={"batch_id": batch_id, "quantity_delta": quantity_delta},
        )

    batch = _get_batch_in_org(org_id, batch_id, lock=True)

    if quantity_delta > 0:
        _increment(batch.id, quantity_delta)
    elif not _decrement(batch.id, -quantity_delta):
        available = _current_quantity(batch.id)
        raise InsufficientStock(
            f"Adjustment would make batch {batch.batch_number} negative",
            details={
                "batch_id": batch.id,
                "requested": -quantity_delta,
                "available": available,
                "shortfall": -quantity_delta - available,
            },
        )
    db.session.flush()
    db.session.expire(batch, ["quantity", "updated_at"])

    _append_movement(batch, quantity_delta, REASON_ADJUSTMENT, note=note, actor_id=actor_id)
    logger.info("adjusted batch %s by %+d (%s)", batch.id, quantity_delta, note or "no note")
    return batch


def adjust(
    *,
    org_id: int,
    batch_id: int,
    quantity_delta: int,
    note: str | None = None,
    actor_id: int | None = None,
) -> InventoryBatch:
    """Stock correction (damage, count variance). Never drives a batch negative."""
    def _op():
        batch = _adjust_inner(
            org_id=org_id,
            batch_id=batch_id,
            quantity_delta=quantity_delta,
            note=note,
            actor_id=actor_id,
        )
        db.session.commit()
        return batch

    return run_with_retry(_op)


# =============================================================================
# READS
# =============================================================================

def quantity_on_hand(org_id: int, product_id: int) -> int:
    """Sum of active batch quantities, as of the latest committed write."""
    get_product(org_id, product_id)
    total = db.session.query(
        func.coalesce(func.sum(InventoryBatch.quantity), 0)
    ).filter(
        InventoryBatch.org_id == org_id,
        InventoryBatch.product_id == product_id,
        InventoryBatch.is_active.is_(True),
    ).scalar()
    return int(total or 0)


def get_batch(org_id: int, batch_id: int) -> InventoryBatch:
    batch = db.session.query(InventoryBatch).filter_by(id=batch_id, org_id=org_id).first()
    if batch is None:
        raise NotFound(f"Batch {batch_id} not found", details={"batch_id": batch_id})
    return batch


def list_batches(org_id: int, product_id: int, *, include_exhausted: bool = True) -> list[InventoryBatch]:
    get_product(org_id, product_id)
    query = db.session.query(InventoryBatch).filter(
        InventoryBatch.org_id == org_id,
        InventoryBatch.product_id == product_id,
    )
    if not include_exhausted:
        query = query.filter(InventoryBatch.quantity > 0, InventoryBatch.is_active.is_(True))
    return query.order_by(InventoryBatch.expiry_date, InventoryBatch.id).all()


def replay_quantity(batch_id: int) -> int:
    """Rebuild a batch quantity from its movement history."""
    total = db.session.query(
        func.coalesce(func.sum(StockMovement.quantity_delta), 0)
    ).filter(StockMovement.batch_id == batch_id).scalar()
    return int(total or 0)


def replay_product_quantity(org_id: int, product_id: int) -> int:
    """Movement replay over the product's active batches; equals quantity_on_hand()."""
    total = db.session.query(
        func.coalesce(func.sum(StockMovement.quantity_delta), 0)
    ).join(
        InventoryBatch, InventoryBatch.id == StockMovement.batch_id
    ).filter(
        StockMovement.org_id == org_id,
        StockMovement.product_id == product_id,
        InventoryBatch.is_active.is_(True),
    ).scalar()
    return int(total or 0)


def list_movements(
    org_id: int,
    *,
    product_id: int | None = None,
    batch_id: int | None = None,
    reason: str | None = None,
    limit: int = 200,
) -> list[StockMovement]:
    query = db.session.query(StockMovement).filter(StockMovement.org_id == org_id)
    if product_id is not None:
        query = query.filter(StockMovement.product_id == product_id)
    if batch_id is not None:
        query = query.filter(StockMovement.batch_id == batch_id)
    if reason:
        query = query.filter(StockMovement.reason == reason)
    return query.order_by(StockMovement.id.desc()).limit(limit).all()

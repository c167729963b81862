# Overview: Sale checkout and customer returns on top of the allocator and batch store.

"""
Checkout

A checkout allocates every line FEFO and debits exactly that plan, all in
one transaction: either every line is taken out of stock or nothing is.
Candidate batches are read FOR UPDATE between allocation and debit; on
SQLite (no row locks) the conditional UPDATE in the batch store makes a
lost race fail with InsufficientStock instead of overdrawing.

Totals:
- line revenue = SUM(allocated qty * unit price); the unit price is the
  line override when given, else each batch's own selling price
- line tax     = revenue * product.tax_percent / 100 (half-up)
- cost         = SUM(allocated qty * batch unit cost)
- total        = subtotal + tax - discount
- profit       = subtotal - discount - cost
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from ..errors import InvalidItem, InvalidOrder, InvalidQuantity, UnknownBatch
from ..extensions import db
from ..models import InventoryBatch
from ..models.inventory import REASON_RETURN, REASON_SALE
from ..money import is_valid_cents, percent_of
from .batch_store import _debit_inner, _restock_inner
from .catalog_service import get_product
from .concurrency import run_with_retry
from .stock_allocator import Allocation, allocate, select_return_batch

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckoutLine:
    product_id: int
    quantity: int
    unit_price_cents: int | None = None


@dataclass
class CheckoutLineResult:
    product_id: int
    quantity: int
    allocations: list[Allocation]
    revenue_cents: int
    tax_cents: int
    cost_cents: int

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "quantity": self.quantity,
            "allocations": [a.to_dict() for a in self.allocations],
            "revenue_cents": self.revenue_cents,
            "tax_cents": self.tax_cents,
            "cost_cents": self.cost_cents,
        }


@dataclass
class CheckoutResult:
    reference: str | None
    lines: list[CheckoutLineResult] = field(default_factory=list)
    subtotal_cents: int = 0
    tax_cents: int = 0
    discount_cents: int = 0
    total_cents: int = 0
    cost_cents: int = 0
    profit_cents: int = 0

    def to_dict(self) -> dict:
        return {
            "reference": self.reference,
            "lines": [line.to_dict() for line in self.lines],
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "cost_cents": self.cost_cents,
            "profit_cents": self.profit_cents,
        }


def _checkout_line(
    org_id: int,
    line: CheckoutLine,
    *,
    reference: str | None,
    actor_id: int | None,
) -> CheckoutLineResult:
    product = get_product(org_id, line.product_id, require_active=True)
    if line.unit_price_cents is not None and not is_valid_cents(line.unit_price_cents):
        raise InvalidItem(
            "unit_price_cents must be a non-negative integer",
            details={"product_id": line.product_id},
        )

    plan = allocate(org_id, line.product_id, line.quantity, lock=True)
    _debit_inner(
        org_id=org_id,
        product_id=line.product_id,
        allocations=plan,
        reason=REASON_SALE,
        reference_type="sale",
        reference_id=reference,
        actor_id=actor_id,
    )

    revenue = sum(
        a.quantity * (line.unit_price_cents if line.unit_price_cents is not None else a.unit_price_cents)
        for a in plan
    )
    return CheckoutLineResult(
        product_id=line.product_id,
        quantity=line.quantity,
        allocations=plan,
        revenue_cents=revenue,
        tax_cents=percent_of(revenue, product.tax_percent or 0),
        cost_cents=sum(a.quantity * a.unit_cost_cents for a in plan),
    )


def checkout(
    *,
    org_id: int,
    lines: Iterable[CheckoutLine],
    discount_cents: int = 0,
    reference: str | None = None,
    actor_id: int | None = None,
) -> CheckoutResult:
    """
    Sell `lines` out of stock, FEFO, atomically.

    Raises:
        InsufficientStock: some line cannot be covered (details carry the shortfall)
        InvalidQuantity: non-positive line quantity
        InvalidItem: empty checkout, inactive product, bad price override
        InvalidOrder: bad discount, discount above the sale total
    """
    lines = list(lines or [])
    if not lines:
        raise InvalidItem("Checkout requires at least one line")
    for line in lines:
        if isinstance(line.quantity, bool) or not isinstance(line.quantity, int) or line.quantity <= 0:
            raise InvalidQuantity(
                "Quantity must be a positive integer",
                details={"product_id": line.product_id, "quantity": line.quantity},
            )
    if isinstance(discount_cents, bool) or not isinstance(discount_cents, int) or discount_cents < 0:
        raise InvalidOrder("discount_cents must be a non-negative integer", details={"discount_cents": discount_cents})

    def _op():
        result = CheckoutResult(reference=reference, discount_cents=discount_cents)
        for line in lines:
            result.lines.append(_checkout_line(org_id, line, reference=reference, actor_id=actor_id))

        result.subtotal_cents = sum(l.revenue_cents for l in result.lines)
        result.tax_cents = sum(l.tax_cents for l in result.lines)
        result.cost_cents = sum(l.cost_cents for l in result.lines)
        result.total_cents = result.subtotal_cents + result.tax_cents - discount_cents
        if result.total_cents < 0:
            raise InvalidOrder(
                "Discount exceeds sale total",
                details={"subtotal_cents": result.subtotal_cents, "discount_cents": discount_cents},
            )
        result.profit_cents = result.subtotal_cents - discount_cents - result.cost_cents

        db.session.commit()
        return result

    result = run_with_retry(_op)
    logger.info(
        "checkout %s: %d lines, total %d cents, profit %d cents",
        reference or "(no reference)", len(result.lines), result.total_cents, result.profit_cents,
    )
    return result


def return_items(
    *,
    org_id: int,
    product_id: int,
    quantity: int,
    batch_id: int | None = None,
    reference: str | None = None,
    note: str | None = None,
    actor_id: int | None = None,
) -> InventoryBatch:
    """
    Put customer-returned units back on the shelf.

    Without `batch_id` the units go into the freshest unexpired batch.
    """
    def _op():
        if batch_id is None:
            target_id = select_return_batch(org_id, product_id).id
        else:
            target = db.session.query(InventoryBatch).filter_by(id=batch_id, org_id=org_id).first()
            if target is None or target.product_id != product_id:
                raise UnknownBatch(
                    f"Batch {batch_id} does not belong to product {product_id}",
                    details={"batch_id": batch_id, "product_id": product_id},
                )
            target_id = target.id

        batch = _restock_inner(
            org_id=org_id,
            batch_id=target_id,
            quantity=quantity,
            reason=REASON_RETURN,
            reference_type="sale" if reference else None,
            reference_id=reference,
            note=note,
            actor_id=actor_id,
        )
        db.session.commit()
        return batch

    return run_with_retry(_op)

# Overview: Purchase order lifecycle; owns order status and drives batch credits on receipt.

"""
Purchase Order Ledger

State machine (authoritative):

    pending --mark_ordered--> ordered --receive--> partially_received --receive--> received
    pending | ordered --cancel--> cancelled
    pending --receive--> received      (only when that one call receives every ordered unit)

- received and cancelled are terminal.
- update() is only allowed while pending.
- Every transition appends a PurchaseOrderStatusHistory row in the same
  transaction as the status change.

Receipt invariants:
- 0 <= item.received_quantity <= item.quantity, and it only grows.
- SUM(received) == SUM(ordered)  <=>  status == received.
- A receive call is one transaction: every line's batch credit, the
  received counters and the status change commit together or not at all.
- Concurrent receipts on one order serialize on the order row
  (SELECT ... FOR UPDATE) and on its version_id; the loser is rolled back
  and re-run by run_with_retry against the fresh state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, Union

from flask import current_app
from sqlalchemy import func

from ..errors import InvalidExpiry, InvalidItem, InvalidOrder, InvalidQuantity, InvalidTransition, NotFound, OverReceipt
from ..extensions import db
from ..models import Product, PurchaseOrder, PurchaseOrderItem, PurchaseOrderStatusHistory
from ..models.inventory import REASON_PURCHASE_RECEIVE
from ..models.purchasing import (
    STATUS_CANCELLED,
    STATUS_ORDERED,
    STATUS_PARTIALLY_RECEIVED,
    STATUS_PENDING,
    STATUS_RECEIVED,
    PO_STATUSES,
)
from ..money import is_valid_cents, percent_of, to_percent
from ..time_utils import parse_iso_date, today, utcnow
from .batch_store import _credit_inner
from .catalog_service import find_or_create_product, validate_supplier_for_org
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_po_number

logger = logging.getLogger(__name__)

RECEIVABLE_STATUSES = {STATUS_PENDING, STATUS_ORDERED, STATUS_PARTIALLY_RECEIVED}
CANCELLABLE_STATUSES = {STATUS_PENDING, STATUS_ORDERED}
OPEN_STATUSES = {STATUS_ORDERED, STATUS_PARTIALLY_RECEIVED}


@dataclass(frozen=True)
class ExistingProduct:
    """Order item that references a catalog product."""
    product_id: int
    quantity: int
    unit_cost_cents: int


@dataclass(frozen=True)
class NewProductRequest:
    """Order item for a product that may not exist yet (create-if-missing)."""
    name: str
    manufacturer: str
    quantity: int
    unit_cost_cents: int
    generic_name: str | None = None
    category: str | None = None
    tax_percent: object = 0
    default_markup_percent: object = 0
    low_stock_threshold: int | None = None


OrderItemInput = Union[ExistingProduct, NewProductRequest]


@dataclass(frozen=True)
class ReceiptLine:
    item_id: int
    quantity: int
    batch_number: str | None = None
    expiry_date: date | str | None = None
    unit_price_cents: int | None = None


# =============================================================================
# HELPERS
# =============================================================================

def _validate_item_numbers(index: int, quantity, unit_cost_cents) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidItem(
            f"Item {index}: quantity must be a positive integer",
            details={"item_index": index, "quantity": quantity},
        )
    if not is_valid_cents(unit_cost_cents):
        raise InvalidItem(
            f"Item {index}: unit_cost_cents must be a non-negative integer",
            details={"item_index": index, "unit_cost_cents": unit_cost_cents},
        )


def _resolve_items(org_id: int, items: Iterable[OrderItemInput], actor_id: int | None) -> list[tuple[Product, int, int]]:
    """
    Turn order item inputs into (product, quantity, unit_cost_cents).

    Products are resolved exactly once, before any totals are computed.
    Products created here belong to the caller's transaction and vanish
    with it if the order is rejected later.
    """
    items = list(items or [])
    if not items:
        raise InvalidItem("Purchase order requires at least one item")

    resolved = []
    for index, item in enumerate(items, start=1):
        if isinstance(item, ExistingProduct):
            _validate_item_numbers(index, item.quantity, item.unit_cost_cents)
            product = db.session.query(Product).filter_by(id=item.product_id, org_id=org_id).first()
            if product is None:
                raise InvalidItem(
                    f"Item {index}: product {item.product_id} not found",
                    details={"item_index": index, "product_id": item.product_id},
                )
            if not product.is_active:
                raise InvalidItem(
                    f"Item {index}: product {product.name} is inactive",
                    details={"item_index": index, "product_id": product.id},
                )
        elif isinstance(item, NewProductRequest):
            _validate_item_numbers(index, item.quantity, item.unit_cost_cents)
            product = find_or_create_product(
                org_id=org_id,
                name=item.name,
                manufacturer=item.manufacturer,
                created_by=actor_id,
                generic_name=item.generic_name,
                category=item.category,
                tax_percent=item.tax_percent,
                default_markup_percent=item.default_markup_percent,
                low_stock_threshold=item.low_stock_threshold,
            )
        else:
            raise InvalidItem(
                f"Item {index}: needs product_id or product creation data",
                details={"item_index": index},
            )
        resolved.append((product, item.quantity, item.unit_cost_cents))
    return resolved


def _validate_charges(tax_percent, discount_cents) -> Decimal:
    try:
        tax = to_percent(tax_percent)
    except ValueError as e:
        raise InvalidOrder(f"tax_percent: {e}", details={"tax_percent": str(tax_percent)})
    if isinstance(discount_cents, bool) or not isinstance(discount_cents, int) or discount_cents < 0:
        raise InvalidOrder(
            "discount_cents must be a non-negative integer",
            details={"discount_cents": discount_cents},
        )
    return tax


def _parse_delivery_date(value) -> date | None:
    try:
        return parse_iso_date(value)
    except ValueError:
        raise InvalidOrder("expected_delivery_date must be YYYY-MM-DD", details={"expected_delivery_date": value})


def _replace_items(order: PurchaseOrder, resolved: list[tuple[Product, int, int]]) -> None:
    if order.items:
        order.items.clear()
        # Old lines must be gone before new ones reuse their line numbers
        db.session.flush()

    for line_number, (product, quantity, unit_cost_cents) in enumerate(resolved, start=1):
        order.items.append(
            PurchaseOrderItem(
                product_id=product.id,
                line_number=line_number,
                quantity=quantity,
                unit_cost_cents=unit_cost_cents,
                line_cost_cents=quantity * unit_cost_cents,
                received_quantity=0,
            )
        )


def _apply_totals(order: PurchaseOrder) -> None:
    """subtotal = SUM(q * cost); tax = subtotal * pct / 100; total = subtotal + tax - discount."""
    subtotal = sum(item.line_cost_cents for item in order.items)
    tax = percent_of(subtotal, order.tax_percent or 0)
    total = subtotal + tax - (order.discount_cents or 0)
    if total < 0:
        raise InvalidOrder(
            "Discount exceeds order value",
            details={"subtotal_cents": subtotal, "tax_cents": tax, "discount_cents": order.discount_cents},
        )
    order.subtotal_cents = subtotal
    order.tax_cents = tax
    order.total_cents = total


def _record_transition(
    order: PurchaseOrder,
    old_status: str | None,
    new_status: str,
    *,
    actor_id: int | None = None,
    notes: str | None = None,
) -> None:
    order.status = new_status
    db.session.add(
        PurchaseOrderStatusHistory(
            purchase_order_id=order.id,
            old_status=old_status,
            new_status=new_status,
            changed_by=actor_id,
            notes=notes,
        )
    )
    logger.info("purchase order %s: %s -> %s", order.po_number, old_status or "(new)", new_status)


def _get_order_for_update(org_id: int, order_id: int) -> PurchaseOrder:
    order = lock_for_update(
        db.session.query(PurchaseOrder).filter_by(id=order_id, org_id=org_id)
    ).first()
    if order is None:
        raise NotFound(f"Purchase order {order_id} not found", details={"order_id": order_id})
    return order


# =============================================================================
# CREATE / UPDATE
# =============================================================================

def create(
    *,
    org_id: int,
    items: Iterable[OrderItemInput],
    supplier_id: int | None = None,
    tax_percent=0,
    discount_cents: int = 0,
    expected_delivery_date=None,
    notes: str | None = None,
    actor_id: int | None = None,
) -> PurchaseOrder:
    """
    Create a purchase order in `pending`.

    Raises:
        InvalidItem: empty item list, quantity <= 0, negative cost,
                     unknown/inactive product, missing creation data
        InvalidOrder: bad tax/discount, discount larger than the order
        NotFound: supplier not in this organization
    """
    items = list(items or [])
    tax = _validate_charges(tax_percent, discount_cents)
    expected = _parse_delivery_date(expected_delivery_date)

    def _op():
        validate_supplier_for_org(org_id, supplier_id)
        resolved = _resolve_items(org_id, items, actor_id)

        order = PurchaseOrder(
            org_id=org_id,
            po_number=next_po_number(org_id),
            supplier_id=supplier_id,
            status=STATUS_PENDING,
            tax_percent=tax,
            discount_cents=discount_cents,
            expected_delivery_date=expected,
            notes=notes,
            created_by=actor_id,
        )
        _replace_items(order, resolved)
        _apply_totals(order)
        db.session.add(order)
        db.session.flush()

        _record_transition(order, None, STATUS_PENDING, actor_id=actor_id)
        db.session.commit()
        return order

    order = run_with_retry(_op)
    logger.info(
        "created purchase order %s (%d items, total %d cents)",
        order.po_number, len(order.items), order.total_cents,
    )
    return order


_UNSET = object()


def update(
    *,
    org_id: int,
    order_id: int,
    items: Iterable[OrderItemInput] | None = None,
    tax_percent=None,
    discount_cents: int | None = None,
    expected_delivery_date=_UNSET,
    notes=_UNSET,
    actor_id: int | None = None,
) -> PurchaseOrder:
    """Edit a pending order. Omitted fields keep their values; totals are recomputed."""
    if items is not None:
        items = list(items)
    expected = _UNSET
    if expected_delivery_date is not _UNSET:
        expected = _parse_delivery_date(expected_delivery_date)

    def _op():
        order = _get_order_for_update(org_id, order_id)
        if order.status != STATUS_PENDING:
            raise InvalidTransition(
                f"Cannot edit {order.status} order {order.po_number}; only pending orders can change",
                details={"order_id": order.id, "status": order.status},
            )

        tax = order.tax_percent if tax_percent is None else tax_percent
        discount = order.discount_cents if discount_cents is None else discount_cents
        order.tax_percent = _validate_charges(tax, discount)
        order.discount_cents = discount

        if items is not None:
            _replace_items(order, _resolve_items(org_id, items, actor_id))
        if expected is not _UNSET:
            order.expected_delivery_date = expected
        if notes is not _UNSET:
            order.notes = notes

        _apply_totals(order)
        order.updated_at = utcnow()
        db.session.commit()
        return order

    order = run_with_retry(_op)
    logger.info("updated purchase order %s", order.po_number)
    return order


# =============================================================================
# TRANSITIONS
# =============================================================================

def mark_ordered(*, org_id: int, order_id: int, actor_id: int | None = None) -> PurchaseOrder:
    """pending -> ordered (sent to the supplier)."""
    def _op():
        order = _get_order_for_update(org_id, order_id)
        if order.status != STATUS_PENDING:
            raise InvalidTransition(
                f"Cannot mark {order.status} order {order.po_number} as ordered",
                details={"order_id": order.id, "status": order.status},
            )
        order.ordered_at = utcnow()
        _record_transition(order, order.status, STATUS_ORDERED, actor_id=actor_id)
        db.session.commit()
        return order

    return run_with_retry(_op)


def _plan_receipt(order: PurchaseOrder, lines: list[ReceiptLine]) -> list[tuple[PurchaseOrderItem, ReceiptLine]]:
    """Validate every line against the order before anything is written."""
    items_by_id = {item.id: item for item in order.items}

    if not lines:
        plan = [
            (item, ReceiptLine(item_id=item.id, quantity=item.outstanding_quantity))
            for item in order.items
            if item.outstanding_quantity > 0
        ]
        if not plan:
            raise InvalidItem(
                f"Order {order.po_number} has nothing outstanding",
                details={"order_id": order.id},
            )
        return plan

    plan = []
    incoming: dict[int, int] = {}
    for line in lines:
        item = items_by_id.get(line.item_id)
        if item is None:
            raise InvalidItem(
                f"Item {line.item_id} is not on order {order.po_number}",
                details={"order_id": order.id, "item_id": line.item_id},
            )
        if isinstance(line.quantity, bool) or not isinstance(line.quantity, int) or line.quantity <= 0:
            raise InvalidQuantity(
                "Received quantity must be a positive integer",
                details={"item_id": item.id, "quantity": line.quantity},
            )
        incoming[item.id] = incoming.get(item.id, 0) + line.quantity
        if incoming[item.id] > item.outstanding_quantity:
            raise OverReceipt(
                f"Item {item.id} (line {item.line_number}) has {item.outstanding_quantity} outstanding, "
                f"{incoming[item.id]} received",
                details={
                    "order_id": order.id,
                    "item_id": item.id,
                    "product_id": item.product_id,
                    "ordered": item.quantity,
                    "already_received": item.received_quantity,
                    "requested": incoming[item.id],
                },
            )
        plan.append((item, line))
    return plan


def _receipt_expiry(line: ReceiptLine, shelf_life: timedelta) -> date:
    try:
        expiry = parse_iso_date(line.expiry_date)
    except ValueError:
        raise InvalidExpiry(
            "expiry_date must be YYYY-MM-DD",
            details={"item_id": line.item_id, "expiry_date": line.expiry_date},
        )
    return expiry or (today() + shelf_life)


def _receipt_batch_number(order: PurchaseOrder, item: PurchaseOrderItem, expiry: date) -> str:
    """
    Default lot key for a delivery without a supplier batch number.

    Deliveries with different expiries land in different batches; repeat
    deliveries with the same expiry (and the line's fixed cost) are the same lot.
    """
    return f"{order.po_number}-{item.line_number}-{expiry:%Y%m%d}"


def _receive_inner(
    *,
    org_id: int,
    order_id: int,
    lines: list[ReceiptLine],
    actor_id: int | None,
    notes: str | None,
) -> PurchaseOrder:
    order = _get_order_for_update(org_id, order_id)
    if order.status not in RECEIVABLE_STATUSES:
        raise InvalidTransition(
            f"Cannot receive against {order.status} order {order.po_number}",
            details={"order_id": order.id, "status": order.status},
        )

    plan = _plan_receipt(order, lines)

    if order.status == STATUS_PENDING:
        incoming = sum(line.quantity for _, line in plan)
        if order.total_received + incoming != order.total_ordered:
            raise InvalidTransition(
                f"Order {order.po_number} is pending; mark it ordered before a partial receipt",
                details={"order_id": order.id, "status": order.status},
            )

    shelf_life = timedelta(days=int(current_app.config.get("DEFAULT_SHELF_LIFE_DAYS", 365)))

    for item, line in plan:
        item.received_quantity = item.received_quantity + line.quantity
        expiry = _receipt_expiry(line, shelf_life)
        _credit_inner(
            org_id=org_id,
            product_id=item.product_id,
            batch_number=line.batch_number or _receipt_batch_number(order, item, expiry),
            quantity=line.quantity,
            unit_cost_cents=item.unit_cost_cents,
            unit_price_cents=line.unit_price_cents,
            expiry_date=expiry,
            supplier_id=order.supplier_id,
            reason=REASON_PURCHASE_RECEIVE,
            reference_type="purchase_order",
            reference_id=order.id,
            note=f"Received on {order.po_number} line {item.line_number}",
            actor_id=actor_id,
        )

    old_status = order.status
    if order.total_received == order.total_ordered:
        new_status = STATUS_RECEIVED
        order.completed_at = utcnow()
        order.actual_delivery_date = today()
    else:
        new_status = STATUS_PARTIALLY_RECEIVED

    # Always touch the order row so its version_id is checked and bumped
    order.updated_at = utcnow()
    if new_status != old_status:
        _record_transition(order, old_status, new_status, actor_id=actor_id, notes=notes)

    db.session.flush()
    logger.info(
        "received %d units on %s (%d/%d)",
        sum(line.quantity for _, line in plan), order.po_number, order.total_received, order.total_ordered,
    )
    return order


def receive(
    *,
    org_id: int,
    order_id: int,
    lines: Iterable[ReceiptLine] | None = None,
    actor_id: int | None = None,
    notes: str | None = None,
) -> PurchaseOrder:
    """
    Record delivered goods and credit them into batches, atomically.

    Empty `lines` receives everything outstanding. A line without a
    batch number goes to batch "<po_number>-<line_number>"; a line without
    an expiry gets today + DEFAULT_SHELF_LIFE_DAYS.

    Raises:
        InvalidTransition: order is received/cancelled, or pending with a partial receipt
        OverReceipt: a line would exceed the item's ordered quantity
        InvalidItem: item not on this order
        InvalidQuantity: non-positive line quantity
        InvalidExpiry: a new batch would already be expired
    """
    lines = list(lines or [])

    def _op():
        order = _receive_inner(org_id=org_id, order_id=order_id, lines=lines, actor_id=actor_id, notes=notes)
        db.session.commit()
        return order

    return run_with_retry(_op)


def mark_received(*, org_id: int, order_id: int, actor_id: int | None = None) -> PurchaseOrder:
    """Receive every outstanding unit in one call."""
    return receive(org_id=org_id, order_id=order_id, lines=None, actor_id=actor_id, notes="Marked as received")


def cancel(*, org_id: int, order_id: int, reason: str | None = None, actor_id: int | None = None) -> PurchaseOrder:
    """pending | ordered -> cancelled. Nothing was received, so no stock changes."""
    def _op():
        order = _get_order_for_update(org_id, order_id)
        if order.status not in CANCELLABLE_STATUSES:
            raise InvalidTransition(
                f"Cannot cancel {order.status} order {order.po_number}",
                details={"order_id": order.id, "status": order.status},
            )
        order.cancelled_at = utcnow()
        order.cancellation_reason = reason
        _record_transition(order, order.status, STATUS_CANCELLED, actor_id=actor_id, notes=reason)
        db.session.commit()
        return order

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_order(org_id: int, order_id: int) -> PurchaseOrder:
    order = db.session.query(PurchaseOrder).filter_by(id=order_id, org_id=org_id).first()
    if order is None:
        raise NotFound(f"Purchase order {order_id} not found", details={"order_id": order_id})
    return order


def list_orders(
    org_id: int,
    *,
    status: str | None = None,
    supplier_id: int | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[PurchaseOrder], int]:
    """Newest first. Returns (orders, total matching count)."""
    if status is not None and status not in PO_STATUSES:
        raise InvalidOrder(f"Unknown status {status!r}", details={"status": status})

    query = db.session.query(PurchaseOrder).filter(PurchaseOrder.org_id == org_id)
    if status:
        query = query.filter(PurchaseOrder.status == status)
    if supplier_id is not None:
        query = query.filter(PurchaseOrder.supplier_id == supplier_id)

    total = query.count()
    orders = query.order_by(PurchaseOrder.id.desc()).offset(offset).limit(limit).all()
    return orders, total


def overdue_orders(org_id: int, *, as_of: date | None = None) -> list[PurchaseOrder]:
    """Open orders whose expected delivery date has passed."""
    as_of = as_of or today()
    return db.session.query(PurchaseOrder).filter(
        PurchaseOrder.org_id == org_id,
        PurchaseOrder.status.in_(OPEN_STATUSES),
        PurchaseOrder.expected_delivery_date.isnot(None),
        PurchaseOrder.expected_delivery_date < as_of,
    ).order_by(PurchaseOrder.expected_delivery_date, PurchaseOrder.id).all()


def order_stats(org_id: int) -> dict:
    rows = db.session.query(
        PurchaseOrder.status,
        func.count(PurchaseOrder.id),
        func.coalesce(func.sum(PurchaseOrder.total_cents), 0),
    ).filter(
        PurchaseOrder.org_id == org_id
    ).group_by(PurchaseOrder.status).all()

    by_status = {status: {"count": 0, "total_cents": 0} for status in PO_STATUSES}
    for status, count, total in rows:
        by_status[status] = {"count": int(count), "total_cents": int(total)}

    return {
        "total_orders": sum(s["count"] for s in by_status.values()),
        "by_status": by_status,
        "open_value_cents": sum(
            by_status[s]["total_cents"] for s in (STATUS_PENDING, STATUS_ORDERED, STATUS_PARTIALLY_RECEIVED)
        ),
        "received_value_cents": by_status[STATUS_RECEIVED]["total_cents"],
        "overdue_count": len(overdue_orders(org_id)),
    }


def status_history(org_id: int, order_id: int) -> list[PurchaseOrderStatusHistory]:
    order = get_order(org_id, order_id)
    return db.session.query(PurchaseOrderStatusHistory).filter_by(
        purchase_order_id=order.id
    ).order_by(PurchaseOrderStatusHistory.id).all()

# Overview: Flask API routes for purchase order operations; parses input and returns JSON responses.

"""
Purchase Order Routes

All routes require tenant context (@require_actor). Service errors
(InventoryError) are rendered by the application error handler.

Lifecycle: pending -> ordered -> partially_received -> received,
pending | ordered -> cancelled.
"""

from flask import Blueprint, request, g

from ..decorators import require_actor
from ..models import PurchaseOrder
from ..services import purchase_order_service
from ..services.purchase_order_service import ExistingProduct, NewProductRequest, ReceiptLine
from ..validation import (
    ModelValidationPolicy,
    ValidationError,
    coerce_int,
    optional_int,
    require_list,
    validate_payload,
)
from ..time_utils import parse_iso_date


purchase_orders_bp = Blueprint("purchase_orders", __name__, url_prefix="/api/purchase-orders")

ORDER_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={"supplier_id", "tax_percent", "discount_cents", "expected_delivery_date", "notes", "items"},
    required_on_create={"items"},
)

ORDER_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={"tax_percent", "discount_cents", "expected_delivery_date", "notes", "items"},
)

NEW_PRODUCT_FIELDS = ("generic_name", "category", "tax_percent", "default_markup_percent")


def _parse_order_items(raw_items: list) -> list:
    """Item with product_id -> ExistingProduct; item with name + manufacturer -> NewProductRequest."""
    items = []
    for index, entry in enumerate(raw_items, start=1):
        if "quantity" not in entry or "unit_cost_cents" not in entry:
            raise ValidationError(f"Item {index}: quantity and unit_cost_cents are required")
        quantity = coerce_int(entry["quantity"], "quantity")
        unit_cost_cents = coerce_int(entry["unit_cost_cents"], "unit_cost_cents")

        if entry.get("product_id") is not None:
            items.append(
                ExistingProduct(
                    product_id=coerce_int(entry["product_id"], "product_id"),
                    quantity=quantity,
                    unit_cost_cents=unit_cost_cents,
                )
            )
        elif entry.get("name") and entry.get("manufacturer"):
            extra = {k: entry[k] for k in NEW_PRODUCT_FIELDS if entry.get(k) is not None}
            items.append(
                NewProductRequest(
                    name=str(entry["name"]),
                    manufacturer=str(entry["manufacturer"]),
                    quantity=quantity,
                    unit_cost_cents=unit_cost_cents,
                    low_stock_threshold=optional_int(entry, "low_stock_threshold"),
                    **extra,
                )
            )
        else:
            raise ValidationError(f"Item {index}: product_id or name + manufacturer is required")
    return items


def _parse_receipt_lines(raw_lines: list) -> list[ReceiptLine]:
    lines = []
    for entry in raw_lines:
        if "item_id" not in entry or "quantity" not in entry:
            raise ValidationError("Each receipt line needs item_id and quantity")
        lines.append(
            ReceiptLine(
                item_id=coerce_int(entry["item_id"], "item_id"),
                quantity=coerce_int(entry["quantity"], "quantity"),
                batch_number=(str(entry["batch_number"]).strip() or None) if entry.get("batch_number") else None,
                expiry_date=entry.get("expiry_date"),
                unit_price_cents=optional_int(entry, "unit_price_cents"),
            )
        )
    return lines


@purchase_orders_bp.get("")
@require_actor
def list_purchase_orders_route():
    """
    List purchase orders, newest first.

    Query parameters:
    - status: pending | ordered | partially_received | received | cancelled
    - supplier_id: Filter by supplier
    - limit: Maximum results (default: 100, max 500)
    - offset: Pagination offset (default: 0)

    Returns:
        {items: PurchaseOrder[], count: int, limit: int, offset: int}
    """
    status = request.args.get("status") or None
    supplier_id = request.args.get("supplier_id", type=int)
    limit = request.args.get("limit", 100, type=int)
    offset = request.args.get("offset", 0, type=int)

    # Clamp limit
    limit = max(1, min(limit, 500))
    offset = max(0, offset)

    orders, count = purchase_order_service.list_orders(
        g.org_id,
        status=status,
        supplier_id=supplier_id,
        limit=limit,
        offset=offset,
    )
    return {
        "items": [o.to_dict(include_items=False) for o in orders],
        "count": count,
        "limit": limit,
        "offset": offset,
    }, 200


@purchase_orders_bp.post("")
@require_actor
def create_purchase_order_route():
    """
    Create a pending purchase order.

    Request body:
    {
        "supplier_id": 3,                  (optional)
        "tax_percent": "10",               (optional, default 0)
        "discount_cents": 0,               (optional)
        "expected_delivery_date": "2026-11-01",
        "notes": "...",
        "items": [
            {"product_id": 7, "quantity": 100, "unit_cost_cents": 500},
            {"name": "Paracetamol 500mg", "manufacturer": "Acme", "quantity": 50, "unit_cost_cents": 120}
        ]
    }
    """
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=PurchaseOrder, payload=payload, policy=ORDER_CREATE_POLICY, partial=False)
    items = _parse_order_items(require_list(patch, "items"))

    order = purchase_order_service.create(
        org_id=g.org_id,
        items=items,
        supplier_id=patch.get("supplier_id"),
        tax_percent=patch.get("tax_percent", 0) or 0,
        discount_cents=patch.get("discount_cents", 0) or 0,
        expected_delivery_date=patch.get("expected_delivery_date"),
        notes=patch.get("notes"),
        actor_id=g.actor_id,
    )
    return {"purchase_order": order.to_dict()}, 201


@purchase_orders_bp.get("/overdue")
@require_actor
def overdue_purchase_orders_route():
    """Open orders past their expected delivery date. Optional ?as_of=YYYY-MM-DD."""
    as_of_str = request.args.get("as_of")
    as_of = None
    if as_of_str:
        try:
            as_of = parse_iso_date(as_of_str)
        except ValueError:
            return {"error": "Invalid as_of format", "code": "validation_error"}, 400

    orders = purchase_order_service.overdue_orders(g.org_id, as_of=as_of)
    return {"items": [o.to_dict(include_items=False) for o in orders], "count": len(orders)}, 200


@purchase_orders_bp.get("/stats")
@require_actor
def purchase_order_stats_route():
    return {"stats": purchase_order_service.order_stats(g.org_id)}, 200


@purchase_orders_bp.get("/<int:order_id>")
@require_actor
def get_purchase_order_route(order_id: int):
    order = purchase_order_service.get_order(g.org_id, order_id)
    return {"purchase_order": order.to_dict()}, 200


@purchase_orders_bp.patch("/<int:order_id>")
@require_actor
def update_purchase_order_route(order_id: int):
    """Edit a pending order. Only provided fields change; `items` replaces all lines."""
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=PurchaseOrder, payload=payload, policy=ORDER_UPDATE_POLICY, partial=True)

    kwargs = {}
    if "items" in patch:
        kwargs["items"] = _parse_order_items(require_list(patch, "items"))
    if "tax_percent" in patch:
        kwargs["tax_percent"] = patch["tax_percent"] or 0
    if "discount_cents" in patch:
        kwargs["discount_cents"] = patch["discount_cents"] or 0
    if "expected_delivery_date" in patch:
        kwargs["expected_delivery_date"] = patch["expected_delivery_date"]
    if "notes" in patch:
        kwargs["notes"] = patch["notes"]

    order = purchase_order_service.update(org_id=g.org_id, order_id=order_id, actor_id=g.actor_id, **kwargs)
    return {"purchase_order": order.to_dict()}, 200


@purchase_orders_bp.post("/<int:order_id>/ordered")
@require_actor
def mark_ordered_route(order_id: int):
    order = purchase_order_service.mark_ordered(org_id=g.org_id, order_id=order_id, actor_id=g.actor_id)
    return {"purchase_order": order.to_dict()}, 200


@purchase_orders_bp.post("/<int:order_id>/receive")
@require_actor
def receive_purchase_order_route(order_id: int):
    """
    Receive goods against an order.

    Request body:
    {
        "lines": [
            {"item_id": 12, "quantity": 60, "batch_number": "B-001", "expiry_date": "2027-06-30"}
        ],
        "notes": "..."
    }

    An empty or missing `lines` list receives everything outstanding.
    """
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    lines = _parse_receipt_lines(require_list(payload, "lines", allow_empty=True))

    order = purchase_order_service.receive(
        org_id=g.org_id,
        order_id=order_id,
        lines=lines,
        actor_id=g.actor_id,
        notes=payload.get("notes"),
    )
    return {"purchase_order": order.to_dict()}, 200


@purchase_orders_bp.post("/<int:order_id>/mark-received")
@require_actor
def mark_received_route(order_id: int):
    order = purchase_order_service.mark_received(org_id=g.org_id, order_id=order_id, actor_id=g.actor_id)
    return {"purchase_order": order.to_dict()}, 200


@purchase_orders_bp.post("/<int:order_id>/cancel")
@require_actor
def cancel_purchase_order_route(order_id: int):
    payload = request.get_json(silent=True) or {}
    reason = payload.get("reason") if isinstance(payload, dict) else None

    order = purchase_order_service.cancel(
        org_id=g.org_id,
        order_id=order_id,
        reason=reason,
        actor_id=g.actor_id,
    )
    return {"purchase_order": order.to_dict()}, 200


@purchase_orders_bp.get("/<int:order_id>/history")
@require_actor
def purchase_order_history_route(order_id: int):
    history = purchase_order_service.status_history(g.org_id, order_id)
    return {"items": [h.to_dict() for h in history]}, 200

# backend/medstock/routes/inventory.py
"""
Inventory routes.

All routes require tenant context (@require_actor).

Stock only changes through the batch store:
- /debit takes an explicit allocation plan (normally the one /allocate returned)
- /checkout allocates and debits in one transaction
- /returns and /adjust put units back or correct counts
"""
from flask import Blueprint, request, g

from ..decorators import require_actor
from ..models.inventory import REASON_ADJUSTMENT, REASON_SALE
from ..services import batch_store, checkout_service, stock_allocator
from ..services.checkout_service import CheckoutLine
from ..validation import ValidationError, coerce_int, optional_int, require_list


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

DEBIT_REASONS = {REASON_SALE, REASON_ADJUSTMENT}


def _json_body() -> dict:
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def _required_int(payload: dict, key: str) -> int:
    if payload.get(key) is None:
        raise ValidationError(f"{key} is required")
    return coerce_int(payload[key], key)


def _optional_text(payload: dict, key: str):
    value = payload.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


@inventory_bp.get("/products/<int:product_id>/on-hand")
@require_actor
def quantity_on_hand_route(product_id: int):
    quantity = batch_store.quantity_on_hand(g.org_id, product_id)
    return {"product_id": product_id, "quantity_on_hand": quantity}, 200


@inventory_bp.get("/products/<int:product_id>/batches")
@require_actor
def list_batches_route(product_id: int):
    """Batches of a product, soonest expiry first. ?include_exhausted=false hides empty ones."""
    include_exhausted = request.args.get("include_exhausted", "true").lower() != "false"
    batches = batch_store.list_batches(g.org_id, product_id, include_exhausted=include_exhausted)
    return {"items": [b.to_dict() for b in batches]}, 200


@inventory_bp.get("/batches/<int:batch_id>")
@require_actor
def get_batch_route(batch_id: int):
    return {"batch": batch_store.get_batch(g.org_id, batch_id).to_dict()}, 200


@inventory_bp.post("/allocate")
@require_actor
def allocate_route():
    """
    Preview a FEFO allocation plan. Nothing is reserved.

    Request body: {"product_id": 7, "quantity": 30}
    """
    payload = _json_body()
    plan = stock_allocator.allocate(
        g.org_id,
        _required_int(payload, "product_id"),
        _required_int(payload, "quantity"),
        include_expired=bool(payload.get("include_expired", False)),
    )
    return {"allocations": [a.to_dict() for a in plan]}, 200


@inventory_bp.post("/debit")
@require_actor
def debit_route():
    """
    Commit an allocation plan.

    Request body:
    {
        "product_id": 7,
        "allocations": [{"batch_id": 1, "quantity": 20}, {"batch_id": 2, "quantity": 10}],
        "reason": "sale",            (sale | adjustment, default sale)
        "reference": "S-0042",
        "note": "..."
    }
    """
    payload = _json_body()
    reason = payload.get("reason") or REASON_SALE
    if reason not in DEBIT_REASONS:
        raise ValidationError(f"reason must be one of: {', '.join(sorted(DEBIT_REASONS))}")

    allocations = [
        (_required_int(entry, "batch_id"), _required_int(entry, "quantity"))
        for entry in require_list(payload, "allocations")
    ]
    reference = _optional_text(payload, "reference")

    movements = batch_store.debit(
        org_id=g.org_id,
        product_id=_required_int(payload, "product_id"),
        allocations=allocations,
        reason=reason,
        reference_type=reason if reference else None,
        reference_id=reference,
        note=_optional_text(payload, "note"),
        actor_id=g.actor_id,
    )
    return {"movements": [m.to_dict() for m in movements]}, 201


@inventory_bp.post("/checkout")
@require_actor
def checkout_route():
    """
    Sell several products in one atomic step.

    Request body:
    {
        "lines": [{"product_id": 7, "quantity": 3, "unit_price_cents": 650}],
        "discount_cents": 0,
        "reference": "S-0042"
    }
    """
    payload = _json_body()
    lines = [
        CheckoutLine(
            product_id=_required_int(entry, "product_id"),
            quantity=_required_int(entry, "quantity"),
            unit_price_cents=optional_int(entry, "unit_price_cents"),
        )
        for entry in require_list(payload, "lines")
    ]

    result = checkout_service.checkout(
        org_id=g.org_id,
        lines=lines,
        discount_cents=optional_int(payload, "discount_cents") or 0,
        reference=_optional_text(payload, "reference"),
        actor_id=g.actor_id,
    )
    return {"checkout": result.to_dict()}, 201


@inventory_bp.post("/returns")
@require_actor
def return_items_route():
    """
    Customer return.

    Request body: {"product_id": 7, "quantity": 2, "batch_id": 1 (optional), "reference": "S-0042"}
    """
    payload = _json_body()
    batch = checkout_service.return_items(
        org_id=g.org_id,
        product_id=_required_int(payload, "product_id"),
        quantity=_required_int(payload, "quantity"),
        batch_id=optional_int(payload, "batch_id"),
        reference=_optional_text(payload, "reference"),
        note=_optional_text(payload, "note"),
        actor_id=g.actor_id,
    )
    return {"batch": batch.to_dict()}, 201


@inventory_bp.post("/adjust")
@require_actor
def adjust_route():
    """
    Stock correction on one batch.

    Request body: {"batch_id": 1, "quantity_delta": -2, "note": "damaged"}
    """
    payload = _json_body()
    batch = batch_store.adjust(
        org_id=g.org_id,
        batch_id=_required_int(payload, "batch_id"),
        quantity_delta=_required_int(payload, "quantity_delta"),
        note=_optional_text(payload, "note"),
        actor_id=g.actor_id,
    )
    return {"batch": batch.to_dict()}, 201


@inventory_bp.get("/movements")
@require_actor
def list_movements_route():
    """Stock movement history, newest first. Filters: product_id, batch_id, reason, limit."""
    limit = max(1, min(request.args.get("limit", 200, type=int), 1000))
    movements = batch_store.list_movements(
        g.org_id,
        product_id=request.args.get("product_id", type=int),
        batch_id=request.args.get("batch_id", type=int),
        reason=request.args.get("reason") or None,
        limit=limit,
    )
    return {"items": [m.to_dict() for m in movements]}, 200

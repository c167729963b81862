# Overview: Flask API routes for product and supplier master data.

"""
Catalog Routes

Products and suppliers are scoped to organizations (multi-tenant).
Products are soft-deleted (DELETE deactivates); batches keep referencing them.
"""

from flask import Blueprint, request, g

from ..decorators import require_actor
from ..models import Product, Supplier
from ..services import catalog_service
from ..validation import ModelValidationPolicy, ValidationError, coerce_int, validate_payload


products_bp = Blueprint("products", __name__, url_prefix="/api/products")
suppliers_bp = Blueprint("suppliers", __name__, url_prefix="/api/suppliers")

PRODUCT_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "name",
        "manufacturer",
        "generic_name",
        "category",
        "tax_percent",
        "default_markup_percent",
        "low_stock_threshold",
    },
    required_on_create={"name", "manufacturer"},
)

SUPPLIER_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={"name", "code", "contact_name", "contact_email", "contact_phone"},
    required_on_create={"name"},
)


def _include_inactive() -> bool:
    return request.args.get("include_inactive", "false").lower() == "true"


@products_bp.get("")
@require_actor
def list_products_route():
    products = catalog_service.list_products(g.org_id, include_inactive=_include_inactive())
    return {"items": [p.to_dict() for p in products], "count": len(products)}, 200


@products_bp.post("")
@require_actor
def create_product_route():
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_CREATE_POLICY, partial=False)

    name = patch.pop("name")
    manufacturer = patch.pop("manufacturer")
    product = catalog_service.create_product(
        org_id=g.org_id,
        name=name,
        manufacturer=manufacturer,
        created_by=g.actor_id,
        **patch,
    )
    return {"product": product.to_dict()}, 201


@products_bp.get("/<int:product_id>")
@require_actor
def get_product_route(product_id: int):
    return {"product": catalog_service.get_product(g.org_id, product_id).to_dict()}, 200


@products_bp.delete("/<int:product_id>")
@require_actor
def deactivate_product_route(product_id: int):
    product = catalog_service.deactivate_product(g.org_id, product_id)
    return {"product": product.to_dict()}, 200


@products_bp.put("/<int:product_id>/low-stock-threshold")
@require_actor
def set_threshold_route(product_id: int):
    """Request body: {"low_stock_threshold": 25}"""
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict) or payload.get("low_stock_threshold") is None:
        raise ValidationError("low_stock_threshold is required")
    threshold = coerce_int(payload["low_stock_threshold"], "low_stock_threshold")

    product = catalog_service.set_low_stock_threshold(g.org_id, product_id, threshold)
    return {"product": product.to_dict()}, 200


@suppliers_bp.get("")
@require_actor
def list_suppliers_route():
    suppliers = catalog_service.list_suppliers(g.org_id, include_inactive=_include_inactive())
    return {"items": [s.to_dict() for s in suppliers], "count": len(suppliers)}, 200


@suppliers_bp.post("")
@require_actor
def create_supplier_route():
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=Supplier, payload=payload, policy=SUPPLIER_CREATE_POLICY, partial=False)
    supplier = catalog_service.create_supplier(org_id=g.org_id, **patch)
    return {"supplier": supplier.to_dict()}, 201

# Overview: Product catalog and supplier master data; read-mostly from the inventory core.

"""
Product Catalog Service

Products and suppliers are master data edited by catalog management. The
inventory core only reads them, with two exceptions it owns:

- create-if-missing: a purchase order item may name a product that does not
  exist yet; find_or_create_product() resolves it to a concrete id inside the
  order's transaction, before any quantity math happens.
- soft delete: products are deactivated, never removed, because batches and
  stock movements keep referencing them.
"""

from __future__ import annotations

import logging

from ..errors import InvalidItem, NotFound
from ..extensions import db
from ..models import Product, Supplier
from ..money import apply_markup, to_percent
from .concurrency import insert_first_writer, run_with_retry

logger = logging.getLogger(__name__)

DEFAULT_LOW_STOCK_THRESHOLD = 10


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def get_product(org_id: int, product_id: int, *, require_active: bool = False) -> Product:
    product = db.session.query(Product).filter_by(id=product_id, org_id=org_id).first()
    if product is None:
        raise NotFound(f"Product {product_id} not found", details={"product_id": product_id})
    if require_active and not product.is_active:
        raise InvalidItem(f"Product {product_id} is inactive", details={"product_id": product_id})
    return product


def find_product(org_id: int, name: str, manufacturer: str) -> Product | None:
    return db.session.query(Product).filter_by(
        org_id=org_id,
        name=name.strip(),
        manufacturer=manufacturer.strip(),
    ).first()


def list_products(org_id: int, *, include_inactive: bool = False) -> list[Product]:
    query = db.session.query(Product).filter(Product.org_id == org_id)
    if not include_inactive:
        query = query.filter(Product.is_active.is_(True))
    return query.order_by(Product.name, Product.id).all()


def _create_product_inner(
    *,
    org_id: int,
    name: str,
    manufacturer: str,
    generic_name: str | None = None,
    category: str | None = None,
    tax_percent=0,
    default_markup_percent=0,
    low_stock_threshold: int | None = None,
    created_by: int | None = None,
) -> Product:
    """Validate and insert a product without committing."""
    name = _clean(name)
    manufacturer = _clean(manufacturer)
    if not name:
        raise InvalidItem("Product name is required")
    if not manufacturer:
        raise InvalidItem("Product manufacturer is required", details={"name": name})

    try:
        tax = to_percent(tax_percent)
        markup = to_percent(default_markup_percent)
    except ValueError as e:
        raise InvalidItem(f"Product {name}: {e}", details={"name": name})

    if low_stock_threshold is None:
        low_stock_threshold = DEFAULT_LOW_STOCK_THRESHOLD
    if isinstance(low_stock_threshold, bool) or not isinstance(low_stock_threshold, int) or low_stock_threshold < 0:
        raise InvalidItem("low_stock_threshold must be a non-negative integer", details={"name": name})

    product = Product(
        org_id=org_id,
        name=name,
        manufacturer=manufacturer,
        generic_name=_clean(generic_name),
        category=_clean(category),
        tax_percent=tax,
        default_markup_percent=markup,
        low_stock_threshold=low_stock_threshold,
        is_active=True,
        created_by=created_by,
    )
    return insert_first_writer(product)


def find_or_create_product(
    *,
    org_id: int,
    name: str,
    manufacturer: str,
    created_by: int | None = None,
    **defaults,
) -> Product:
    """
    Resolve (name, manufacturer) to a product, creating it if missing.

    Runs inside the caller's transaction. An inactive match is rejected
    rather than silently reactivated.
    """
    if not _clean(name) or not _clean(manufacturer):
        raise InvalidItem("New product requires name and manufacturer")

    existing = find_product(org_id, name, manufacturer)
    if existing is not None:
        if not existing.is_active:
            raise InvalidItem(
                f"Product {existing.name} is inactive",
                details={"product_id": existing.id},
            )
        return existing

    product = _create_product_inner(
        org_id=org_id,
        name=name,
        manufacturer=manufacturer,
        created_by=created_by,
        **defaults,
    )
    logger.info("created product %s (%s) for org %s", product.id, product.name, org_id)
    return product


def create_product(*, org_id: int, name: str, manufacturer: str, created_by: int | None = None, **fields) -> Product:
    def _op():
        if find_product(org_id, name or "", manufacturer or "") is not None:
            raise InvalidItem(
                f"Product {name} by {manufacturer} already exists",
                details={"name": name, "manufacturer": manufacturer},
            )
        product = _create_product_inner(
            org_id=org_id,
            name=name,
            manufacturer=manufacturer,
            created_by=created_by,
            **fields,
        )
        db.session.commit()
        return product

    return run_with_retry(_op)


def deactivate_product(org_id: int, product_id: int) -> Product:
    """Soft delete. Existing batches stay for audit and valuation history."""
    def _op():
        product = get_product(org_id, product_id)
        product.is_active = False
        db.session.commit()
        return product

    return run_with_retry(_op)


def set_low_stock_threshold(org_id: int, product_id: int, threshold: int) -> Product:
    if isinstance(threshold, bool) or not isinstance(threshold, int) or threshold < 0:
        raise InvalidItem("low_stock_threshold must be a non-negative integer")

    def _op():
        product = get_product(org_id, product_id)
        product.low_stock_threshold = threshold
        db.session.commit()
        return product

    return run_with_retry(_op)


def selling_price_cents(product: Product, unit_cost_cents: int) -> int:
    """Pricing policy: cost plus the product's default markup."""
    return apply_markup(unit_cost_cents, product.default_markup_percent or 0)


# =============================================================================
# SUPPLIERS
# =============================================================================

def get_supplier(org_id: int, supplier_id: int) -> Supplier:
    supplier = db.session.query(Supplier).filter_by(id=supplier_id, org_id=org_id).first()
    if supplier is None:
        raise NotFound(f"Supplier {supplier_id} not found", details={"supplier_id": supplier_id})
    return supplier


def validate_supplier_for_org(org_id: int, supplier_id: int | None) -> Supplier | None:
    """None is allowed: orders may be placed without a named supplier."""
    if supplier_id is None:
        return None
    supplier = get_supplier(org_id, supplier_id)
    if not supplier.is_active:
        raise InvalidItem(
            f"Supplier {supplier.name} is inactive",
            details={"supplier_id": supplier_id},
        )
    return supplier


def create_supplier(
    *,
    org_id: int,
    name: str,
    code: str | None = None,
    contact_name: str | None = None,
    contact_email: str | None = None,
    contact_phone: str | None = None,
) -> Supplier:
    name = _clean(name)
    if not name:
        raise InvalidItem("Supplier name is required")
    code = _clean(code)

    def _op():
        if code and db.session.query(Supplier).filter_by(org_id=org_id, code=code).first():
            raise InvalidItem(f"Supplier code {code} already exists", details={"code": code})
        supplier = Supplier(
            org_id=org_id,
            name=name,
            code=code,
            contact_name=_clean(contact_name),
            contact_email=_clean(contact_email),
            contact_phone=_clean(contact_phone),
            is_active=True,
        )
        insert_first_writer(supplier)
        db.session.commit()
        return supplier

    return run_with_retry(_op)


def list_suppliers(org_id: int, *, include_inactive: bool = False) -> list[Supplier]:
    query = db.session.query(Supplier).filter(Supplier.org_id == org_id)
    if not include_inactive:
        query = query.filter(Supplier.is_active.is_(True))
    return query.order_by(Supplier.name).all()

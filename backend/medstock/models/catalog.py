from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..time_utils import to_utc_z


class Supplier(db.Model):
    """
    Supplier (dealer) a purchase order may be placed with.

    Orders may also be created without a named supplier, so every
    supplier reference elsewhere is nullable.
    """
    __tablename__ = "suppliers"
    __table_args__ = (
        db.UniqueConstraint("org_id", "code", name="uq_suppliers_org_code"),
        db.Index("ix_suppliers_org_active", "org_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(64), nullable=True)

    contact_name = db.Column(db.String(255), nullable=True)
    contact_email = db.Column(db.String(255), nullable=True)
    contact_phone = db.Column(db.String(64), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Supplier id={self.id} name={self.name!r} org_id={self.org_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "name": self.name,
            "code": self.code,
            "contact_name": self.contact_name,
            "contact_email": self.contact_email,
            "contact_phone": self.contact_phone,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Product master data (catalog entry).

    Stock is NOT stored here: quantity lives on InventoryBatch rows.
    Products are soft-deleted through is_active and are never removed
    while batches reference them.

    (org_id, name, manufacturer) identifies a product; purchase orders
    that name an unknown product resolve it through that key.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("org_id", "name", "manufacturer", name="uq_products_org_name_manufacturer"),
        db.Index("ix_products_org_active", "org_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    generic_name = db.Column(db.String(255), nullable=True)
    manufacturer = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(120), nullable=True)

    # Percent, e.g. 12.00 for 12% GST
    tax_percent = db.Column(db.Numeric(5, 2), nullable=False, default=Decimal("0"))
    # Selling price policy for new batches when no explicit price is given
    default_markup_percent = db.Column(db.Numeric(5, 2), nullable=False, default=Decimal("0"))

    low_stock_threshold = db.Column(db.Integer, nullable=False, default=10)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} org_id={self.org_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "name": self.name,
            "generic_name": self.generic_name,
            "manufacturer": self.manufacturer,
            "category": self.category,
            "tax_percent": str(self.tax_percent) if self.tax_percent is not None else None,
            "default_markup_percent": (
                str(self.default_markup_percent) if self.default_markup_percent is not None else None
            ),
            "low_stock_threshold": self.low_stock_threshold,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }

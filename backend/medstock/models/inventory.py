from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date


# StockMovement.reason values
REASON_PURCHASE_RECEIVE = "purchase_receive"
REASON_SALE = "sale"
REASON_RETURN = "return"
REASON_ADJUSTMENT = "adjustment"

MOVEMENT_REASONS = {
    REASON_PURCHASE_RECEIVE,
    REASON_SALE,
    REASON_RETURN,
    REASON_ADJUSTMENT,
}


class InventoryBatch(db.Model):
    """
    A physically distinct lot of one product: one expiry date, one cost.

    INVARIANTS:
    - quantity >= 0 (also enforced by a CHECK constraint)
    - quantity == 0 means exhausted: skipped by allocation, kept for audit
    - (org_id, product_id, batch_number) is unique
    - quantity equals the signed sum of this batch's StockMovement rows

    Only services/batch_store.py writes `quantity`, always with a
    conditional UPDATE plus a StockMovement row in the same transaction.
    """
    __tablename__ = "inventory_batches"
    __table_args__ = (
        db.UniqueConstraint("org_id", "product_id", "batch_number", name="uq_batches_org_product_number"),
        db.CheckConstraint("quantity >= 0", name="ck_batches_quantity_nonneg"),
        db.Index("ix_batches_product_expiry", "product_id", "expiry_date"),
        db.Index("ix_batches_org_active", "org_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    # May be synthetic (derived from the purchase order, or DEFAULT-<year>)
    batch_number = db.Column(db.String(64), nullable=False)
    expiry_date = db.Column(db.Date, nullable=False)

    quantity = db.Column(db.Integer, nullable=False, default=0)

    unit_cost_cents = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)

    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product", backref=db.backref("batches", lazy=True))
    supplier = db.relationship("Supplier")

    def __repr__(self) -> str:
        return (
            f"<InventoryBatch id={self.id} product_id={self.product_id} "
            f"batch_number={self.batch_number!r} qty={self.quantity}>"
        )

    @property
    def is_exhausted(self) -> bool:
        return self.quantity == 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "product_id": self.product_id,
            "batch_number": self.batch_number,
            "expiry_date": to_iso_date(self.expiry_date),
            "quantity": self.quantity,
            "unit_cost_cents": self.unit_cost_cents,
            "unit_price_cents": self.unit_price_cents,
            "supplier_id": self.supplier_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only audit row for every batch quantity change.

    Never updated or deleted. Replaying the deltas of a batch in id order
    reproduces its live quantity.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_movements_batch", "batch_id", "id"),
        db.Index("ix_movements_org_product", "org_id", "product_id"),
        db.Index("ix_movements_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    batch_id = db.Column(db.Integer, db.ForeignKey("inventory_batches.id"), nullable=False)

    quantity_delta = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(32), nullable=False, index=True)

    # Originating document, e.g. ("purchase_order", 12) or ("sale", "S-0042")
    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.String(64), nullable=True)

    unit_cost_cents = db.Column(db.Integer, nullable=True)
    note = db.Column(db.String(255), nullable=True)

    actor_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    batch = db.relationship("InventoryBatch", backref=db.backref("movements", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "product_id": self.product_id,
            "batch_id": self.batch_id,
            "quantity_delta": self.quantity_delta,
            "reason": self.reason,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "unit_cost_cents": self.unit_cost_cents,
            "note": self.note,
            "actor_id": self.actor_id,
            "created_at": to_utc_z(self.created_at),
        }

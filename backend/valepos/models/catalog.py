from __future__ import annotations

from ..extensions import db
from valepos.time_utils import to_utc_z


class ProductVariant(db.Model):
    """
    Sellable unit (SKU) owned by the catalog service.

    READ-ONLY to the vale pipeline: rows exist so that stock, order lines and
    movements can reference a variant. Catalog editing happens elsewhere.
    """
    __tablename__ = "product_variants"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_product_variants_sku"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)

    # meter | roll | unit
    unit = db.Column(db.String(16), nullable=False, default="unit")

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<ProductVariant id={self.id} sku={self.sku!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "unit": self.unit,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class PriceModality(db.Model):
    """Price list entry for a variant (per meter, per roll, per unit...)."""
    __tablename__ = "price_modalities"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)
    name = db.Column(db.String(64), nullable=False)

    # Integer currency units
    standard_price = db.Column(db.Integer, nullable=False)
    invoice_price = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "variant_id": self.variant_id,
            "name": self.name,
            "standard_price": self.standard_price,
            "invoice_price": self.invoice_price,
            "is_active": self.is_active,
        }

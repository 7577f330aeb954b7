from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Unit(db.Model):
    """Unit of measure (piece, pack, carton, crate)."""
    __tablename__ = "units"
    __table_args__ = (
        db.UniqueConstraint("business_id", "name", name="uq_units_business_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    name = db.Column(db.String(64), nullable=False)
    symbol = db.Column(db.String(16), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "name": self.name,
            "symbol": self.symbol,
        }


class Product(db.Model):
    """
    Sellable item. Prices and costs are per BASE unit in pence.

    promo_buy_qty / promo_get_qty describe a "buy N get M free" promotion
    counted in base units. Both must be positive for the promo to apply.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("business_id", "sku", name="uq_products_business_sku"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)

    selling_price_base_pence = db.Column(db.Integer, nullable=False, default=0)
    default_cost_base_pence = db.Column(db.Integer, nullable=False, default=0)
    vat_rate_bps = db.Column(db.Integer, nullable=False, default=0)  # 2000 = 20%

    promo_buy_qty = db.Column(db.Integer, nullable=False, default=0)
    promo_get_qty = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "sku": self.sku,
            "name": self.name,
            "selling_price_base_pence": self.selling_price_base_pence,
            "default_cost_base_pence": self.default_cost_base_pence,
            "vat_rate_bps": self.vat_rate_bps,
            "promo_buy_qty": self.promo_buy_qty,
            "promo_get_qty": self.promo_get_qty,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductUnit(db.Model):
    """
    Packaging unit configured for a product.

    Exactly one row per product has is_base_unit=True and
    conversion_to_base=1; every other row converts with an integer > 1.
    """
    __tablename__ = "product_units"
    __table_args__ = (
        db.UniqueConstraint("product_id", "unit_id", name="uq_product_units_product_unit"),
        db.CheckConstraint("conversion_to_base >= 1", name="ck_product_units_conversion_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=False, index=True)
    conversion_to_base = db.Column(db.Integer, nullable=False, default=1)
    is_base_unit = db.Column(db.Boolean, nullable=False, default=False)

    product = db.relationship("Product", backref=db.backref("units", lazy=True))
    unit = db.relationship("Unit")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "unit_id": self.unit_id,
            "conversion_to_base": self.conversion_to_base,
            "is_base_unit": self.is_base_unit,
        }

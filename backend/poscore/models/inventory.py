from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class InventoryBalance(db.Model):
    """
    Current on-hand quantity and weighted-average cost for one product in
    one store, in base units.

    Rows are never deleted. Every change goes through
    inventory_service.apply_stock_movement under a row lock and leaves a
    StockMovement behind.
    """
    __tablename__ = "inventory_balances"
    __table_args__ = (
        db.UniqueConstraint("store_id", "product_id", name="uq_inventory_balances_store_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    qty_on_hand_base = db.Column(db.Integer, nullable=False, default=0)
    avg_cost_base_pence = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    product = db.relationship("Product")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "product_id": self.product_id,
            "qty_on_hand_base": self.qty_on_hand_base,
            "avg_cost_base_pence": self.avg_cost_base_pence,
            "version_id": self.version_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only history of balance mutations.

    qty_base is signed (negative leaves the store). before/after quantities
    make every row independently auditable.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_store_product", "store_id", "product_id"),
        db.Index("ix_stock_movements_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    # SALE, PURCHASE, ADJUSTMENT, SALES_RETURN, TRANSFER_OUT, TRANSFER_IN
    type = db.Column(db.String(24), nullable=False, index=True)
    qty_base = db.Column(db.Integer, nullable=False)
    before_qty_base = db.Column(db.Integer, nullable=False)
    after_qty_base = db.Column(db.Integer, nullable=False)
    unit_cost_base_pence = db.Column(db.Integer, nullable=True)

    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "product_id": self.product_id,
            "type": self.type,
            "qty_base": self.qty_base,
            "before_qty_base": self.before_qty_base,
            "after_qty_base": self.after_qty_base,
            "unit_cost_base_pence": self.unit_cost_base_pence,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }


class StockAdjustment(db.Model):
    """Manual stock correction (damage, shrinkage, found stock)."""
    __tablename__ = "stock_adjustments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=False)

    qty_in_unit = db.Column(db.Integer, nullable=False)
    qty_base = db.Column(db.Integer, nullable=False)  # signed
    unit_cost_base_pence = db.Column(db.Integer, nullable=False, default=0)
    reason = db.Column(db.String(255), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "store_id": self.store_id,
            "product_id": self.product_id,
            "unit_id": self.unit_id,
            "qty_in_unit": self.qty_in_unit,
            "qty_base": self.qty_base,
            "unit_cost_base_pence": self.unit_cost_base_pence,
            "reason": self.reason,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }

from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Business(db.Model):
    """
    Tenant root. Every store, user, account and document belongs to exactly
    one business, and no query may cross business boundaries.

    Per-tenant policy flags live here rather than in app config so that two
    businesses on the same deployment can run different cash and tax rules.
    """
    __tablename__ = "businesses"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="GBP")

    vat_enabled = db.Column(db.Boolean, nullable=False, default=False)
    variance_reason_required = db.Column(db.Boolean, nullable=False, default=False)
    cash_variance_threshold_pence = db.Column(db.Integer, nullable=True)  # None -> app default

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Business id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "currency": self.currency,
            "vat_enabled": self.vat_enabled,
            "variance_reason_required": self.variance_reason_required,
            "cash_variance_threshold_pence": self.cash_variance_threshold_pence,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Store(db.Model):
    """
    Branch of a business. Inventory balances are kept per store.

    MULTI-TENANT: Store names and codes are unique within a business, not globally.
    """
    __tablename__ = "stores"
    __table_args__ = (
        db.UniqueConstraint("business_id", "name", name="uq_stores_business_name"),
        db.UniqueConstraint("business_id", "code", name="uq_stores_business_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    code = db.Column(db.String(32), nullable=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    business = db.relationship("Business", backref=db.backref("stores", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Till(db.Model):
    """
    Cash register within a store. At most one OPEN shift per till.
    """
    __tablename__ = "tills"
    __table_args__ = (
        db.UniqueConstraint("store_id", "name", name="uq_tills_store_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    name = db.Column(db.String(64), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    store = db.relationship("Store", backref=db.backref("tills", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }

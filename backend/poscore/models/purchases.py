from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class PurchaseInvoice(db.Model):
    """
    Supplier invoice that brings stock into a store.

    Posting: Dr Inventory (net), Dr VAT Receivable / Cr Cash, Bank and
    Accounts Payable for whatever is left unpaid.
    """
    __tablename__ = "purchase_invoices"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    document_number = db.Column(db.String(32), nullable=False)
    supplier_name = db.Column(db.String(255), nullable=True)
    supplier_invoice_ref = db.Column(db.String(64), nullable=True)

    payment_status = db.Column(db.String(16), nullable=False)  # UNPAID, PART_PAID, PAID
    subtotal_pence = db.Column(db.Integer, nullable=False, default=0)
    vat_pence = db.Column(db.Integer, nullable=False, default=0)
    total_pence = db.Column(db.Integer, nullable=False, default=0)
    amount_paid_pence = db.Column(db.Integer, nullable=False, default=0)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    lines = db.relationship("PurchaseInvoiceLine", backref="invoice", lazy=True, order_by="PurchaseInvoiceLine.id")
    payments = db.relationship("PurchasePayment", backref="invoice", lazy=True, order_by="PurchasePayment.id")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "store_id": self.store_id,
            "user_id": self.user_id,
            "document_number": self.document_number,
            "supplier_name": self.supplier_name,
            "supplier_invoice_ref": self.supplier_invoice_ref,
            "payment_status": self.payment_status,
            "subtotal_pence": self.subtotal_pence,
            "vat_pence": self.vat_pence,
            "total_pence": self.total_pence,
            "amount_paid_pence": self.amount_paid_pence,
            "occurred_at": to_utc_z(self.occurred_at),
            "lines": [line.to_dict() for line in self.lines],
            "payments": [payment.to_dict() for payment in self.payments],
        }


class PurchaseInvoiceLine(db.Model):
    __tablename__ = "purchase_invoice_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("purchase_invoices.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=False)

    qty_in_unit = db.Column(db.Integer, nullable=False)
    conversion_to_base = db.Column(db.Integer, nullable=False)
    qty_base = db.Column(db.Integer, nullable=False)
    unit_cost_pence = db.Column(db.Integer, nullable=False)  # per entered unit
    unit_cost_base_pence = db.Column(db.Integer, nullable=False)
    line_total_pence = db.Column(db.Integer, nullable=False)  # excl. VAT
    vat_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    vat_pence = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "unit_id": self.unit_id,
            "qty_in_unit": self.qty_in_unit,
            "conversion_to_base": self.conversion_to_base,
            "qty_base": self.qty_base,
            "unit_cost_pence": self.unit_cost_pence,
            "unit_cost_base_pence": self.unit_cost_base_pence,
            "line_total_pence": self.line_total_pence,
            "vat_rate_bps": self.vat_rate_bps,
            "vat_pence": self.vat_pence,
        }


class PurchasePayment(db.Model):
    __tablename__ = "purchase_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("purchase_invoices.id"), nullable=False, index=True)
    method = db.Column(db.String(16), nullable=False)  # CASH, BANK
    amount_pence = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "method": self.method,
            "amount_pence": self.amount_pence,
            "created_at": to_utc_z(self.created_at),
        }

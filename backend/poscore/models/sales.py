from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class SalesInvoice(db.Model):
    """
    Completed sale.

    IMMUTABLE after creation except for payment additions and the single
    terminal transition to RETURNED or VOID.

    IDEMPOTENCY: external_ref (e.g. "OFFLINE_SYNC:<client id>") is unique per
    business at the database level, so a replayed event can never create a
    second invoice even when two replays race.
    """
    __tablename__ = "sales_invoices"
    __table_args__ = (
        db.UniqueConstraint("business_id", "external_ref", name="uq_sales_invoices_business_external_ref"),
        db.Index("ix_sales_invoices_store_occurred", "store_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    till_id = db.Column(db.Integer, db.ForeignKey("tills.id"), nullable=True, index=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=True, index=True)
    cashier_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    invoice_number = db.Column(db.String(32), nullable=False)
    external_ref = db.Column(db.String(128), nullable=True)

    # UNPAID, PART_PAID, PAID, RETURNED, VOID
    payment_status = db.Column(db.String(16), nullable=False, index=True)

    gross_pence = db.Column(db.Integer, nullable=False, default=0)
    promo_discount_pence = db.Column(db.Integer, nullable=False, default=0)
    line_discount_pence = db.Column(db.Integer, nullable=False, default=0)
    order_discount_type = db.Column(db.String(16), nullable=False, default="NONE")
    order_discount_value = db.Column(db.String(32), nullable=True)
    order_discount_pence = db.Column(db.Integer, nullable=False, default=0)
    subtotal_pence = db.Column(db.Integer, nullable=False, default=0)  # net of discounts, excl. VAT
    vat_pence = db.Column(db.Integer, nullable=False, default=0)
    total_pence = db.Column(db.Integer, nullable=False, default=0)
    cogs_pence = db.Column(db.Integer, nullable=False, default=0)

    amount_paid_pence = db.Column(db.Integer, nullable=False, default=0)
    change_pence = db.Column(db.Integer, nullable=False, default=0)
    balance_due_pence = db.Column(db.Integer, nullable=False, default=0)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    lines = db.relationship("SalesInvoiceLine", backref="invoice", lazy=True, order_by="SalesInvoiceLine.line_no")
    payments = db.relationship("SalesPayment", backref="invoice", lazy=True, order_by="SalesPayment.id")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "business_id": self.business_id,
            "store_id": self.store_id,
            "till_id": self.till_id,
            "shift_id": self.shift_id,
            "cashier_user_id": self.cashier_user_id,
            "customer_id": self.customer_id,
            "invoice_number": self.invoice_number,
            "external_ref": self.external_ref,
            "payment_status": self.payment_status,
            "gross_pence": self.gross_pence,
            "promo_discount_pence": self.promo_discount_pence,
            "line_discount_pence": self.line_discount_pence,
            "order_discount_type": self.order_discount_type,
            "order_discount_value": self.order_discount_value,
            "order_discount_pence": self.order_discount_pence,
            "subtotal_pence": self.subtotal_pence,
            "vat_pence": self.vat_pence,
            "total_pence": self.total_pence,
            "amount_paid_pence": self.amount_paid_pence,
            "change_pence": self.change_pence,
            "balance_due_pence": self.balance_due_pence,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
            data["payments"] = [payment.to_dict() for payment in self.payments]
        return data


class SalesInvoiceLine(db.Model):
    """
    One priced line. Quantities are recorded both as entered
    (qty_in_unit of unit_id) and in base units; unit_cost_base_pence is the
    average cost read when stock was decremented.
    """
    __tablename__ = "sales_invoice_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("sales_invoices.id"), nullable=False, index=True)
    line_no = db.Column(db.Integer, nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=False)

    qty_in_unit = db.Column(db.Integer, nullable=False)
    conversion_to_base = db.Column(db.Integer, nullable=False)
    qty_base = db.Column(db.Integer, nullable=False)

    unit_price_pence = db.Column(db.Integer, nullable=False)
    gross_pence = db.Column(db.Integer, nullable=False)
    promo_free_qty_base = db.Column(db.Integer, nullable=False, default=0)
    promo_discount_pence = db.Column(db.Integer, nullable=False, default=0)
    discount_type = db.Column(db.String(16), nullable=False, default="NONE")
    discount_value = db.Column(db.String(32), nullable=True)
    line_discount_pence = db.Column(db.Integer, nullable=False, default=0)
    order_discount_pence = db.Column(db.Integer, nullable=False, default=0)
    net_pence = db.Column(db.Integer, nullable=False)
    vat_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    vat_pence = db.Column(db.Integer, nullable=False, default=0)
    total_pence = db.Column(db.Integer, nullable=False)

    unit_cost_base_pence = db.Column(db.Integer, nullable=False, default=0)
    cogs_pence = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "line_no": self.line_no,
            "product_id": self.product_id,
            "unit_id": self.unit_id,
            "qty_in_unit": self.qty_in_unit,
            "conversion_to_base": self.conversion_to_base,
            "qty_base": self.qty_base,
            "unit_price_pence": self.unit_price_pence,
            "gross_pence": self.gross_pence,
            "promo_free_qty_base": self.promo_free_qty_base,
            "promo_discount_pence": self.promo_discount_pence,
            "discount_type": self.discount_type,
            "discount_value": self.discount_value,
            "line_discount_pence": self.line_discount_pence,
            "order_discount_pence": self.order_discount_pence,
            "net_pence": self.net_pence,
            "vat_rate_bps": self.vat_rate_bps,
            "vat_pence": self.vat_pence,
            "total_pence": self.total_pence,
            "unit_cost_base_pence": self.unit_cost_base_pence,
            "cogs_pence": self.cogs_pence,
        }


class SalesPayment(db.Model):
    """Tender applied to an invoice. CASH amounts are net of change given."""
    __tablename__ = "sales_payments"
    __table_args__ = (
        db.CheckConstraint("amount_pence > 0", name="ck_sales_payments_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("sales_invoices.id"), nullable=False, index=True)
    method = db.Column(db.String(16), nullable=False)  # CASH, CARD, TRANSFER, MOBILE_MONEY
    amount_pence = db.Column(db.Integer, nullable=False)
    reference = db.Column(db.String(128), nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    # shift open on the till when the tender was taken
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "method": self.method,
            "amount_pence": self.amount_pence,
            "reference": self.reference,
            "user_id": self.user_id,
            "shift_id": self.shift_id,
            "created_at": to_utc_z(self.created_at),
        }


class SalesReturn(db.Model):
    """
    Full return or void of an invoice. At most one per invoice.

    RETURN refunds what was paid through refund_method. VOID refunds each
    payment through its original method. Both clear any receivable.
    """
    __tablename__ = "sales_returns"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("sales_invoices.id"), nullable=False, unique=True)
    type = db.Column(db.String(16), nullable=False)  # RETURN, VOID
    reason = db.Column(db.String(255), nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=True)

    refund_method = db.Column(db.String(16), nullable=True)
    refund_cash_pence = db.Column(db.Integer, nullable=False, default=0)
    refund_bank_pence = db.Column(db.Integer, nullable=False, default=0)
    receivable_cleared_pence = db.Column(db.Integer, nullable=False, default=0)
    restocked_cost_pence = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    invoice = db.relationship("SalesInvoice", backref=db.backref("sales_return", uselist=False))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "invoice_id": self.invoice_id,
            "type": self.type,
            "reason": self.reason,
            "user_id": self.user_id,
            "shift_id": self.shift_id,
            "refund_method": self.refund_method,
            "refund_cash_pence": self.refund_cash_pence,
            "refund_bank_pence": self.refund_bank_pence,
            "receivable_cleared_pence": self.receivable_cleared_pence,
            "restocked_cost_pence": self.restocked_cost_pence,
            "created_at": to_utc_z(self.created_at),
        }

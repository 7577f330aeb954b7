# Overview: Service-layer operations for supplier purchases; encapsulates business logic and database work.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Sequence

from ..extensions import db
from ..models import Business, Product, PurchaseInvoice, PurchaseInvoiceLine, PurchasePayment, Store
from ..time_utils import utcnow
from ..validation import ValidationError, amount_pence, choice, optional_text, positive_int
from . import audit_service, inventory_service, ledger_service
from .concurrency import begin_write_transaction, run_with_retry
from .document_service import next_document_number
from .ledger_service import credit, debit
from .pricing import BPS_DENOMINATOR, derive_payment_status, round_half_up_div
"""
Purchase Invariants (authoritative)

- Stock is received in any configured unit and stored in base units.
- Each line's cost per base unit feeds the store's weighted average cost.
- Inventory is debited net of VAT. Input VAT goes to VAT Receivable when the
  business is VAT registered; otherwise no VAT is computed.
- Whatever the supplier is not paid at once is owed on Accounts Payable.
"""

PURCHASE_PAYMENT_METHODS = ("CASH", "BANK")


class PurchaseError(Exception):
    """Raised for purchase operation errors."""

    code = "PURCHASE_ERROR"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


@dataclass(frozen=True)
class PurchaseLineInput:
    product_id: int
    unit_id: int
    qty_in_unit: int
    unit_cost_pence: int  # per entered unit, excl. VAT


@dataclass(frozen=True)
class PurchasePaymentInput:
    method: str
    amount_pence: int


@dataclass
class PurchaseInput:
    business_id: int
    store_id: int
    lines: Sequence[PurchaseLineInput]
    payments: Sequence[PurchasePaymentInput] = field(default_factory=tuple)
    supplier_name: str | None = None
    supplier_invoice_ref: str | None = None
    user_id: int | None = None
    occurred_at: datetime | None = None


def parse_purchase_payload(*, business_id: int, user_id: int | None, payload: dict) -> PurchaseInput:
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    raw_lines = payload.get("lines")
    if not isinstance(raw_lines, list) or not raw_lines:
        raise ValidationError("lines must be a non-empty list")
    raw_payments = payload.get("payments") or []
    if not isinstance(raw_payments, list):
        raise ValidationError("payments must be a list")

    lines = []
    for idx, raw in enumerate(raw_lines):
        if not isinstance(raw, dict):
            raise ValidationError(f"lines[{idx}] must be an object")
        lines.append(PurchaseLineInput(
            product_id=positive_int(raw.get("product_id"), f"lines[{idx}].product_id"),
            unit_id=positive_int(raw.get("unit_id"), f"lines[{idx}].unit_id"),
            qty_in_unit=positive_int(raw.get("qty_in_unit"), f"lines[{idx}].qty_in_unit"),
            unit_cost_pence=amount_pence(raw.get("unit_cost_pence"), f"lines[{idx}].unit_cost_pence"),
        ))

    payments = []
    for idx, raw in enumerate(raw_payments):
        if not isinstance(raw, dict):
            raise ValidationError(f"payments[{idx}] must be an object")
        payments.append(PurchasePaymentInput(
            method=choice(raw.get("method"), f"payments[{idx}].method", PURCHASE_PAYMENT_METHODS),
            amount_pence=amount_pence(raw.get("amount_pence"), f"payments[{idx}].amount_pence"),
        ))

    return PurchaseInput(
        business_id=business_id,
        store_id=positive_int(payload.get("store_id"), "store_id"),
        lines=lines,
        payments=payments,
        supplier_name=optional_text(payload.get("supplier_name")),
        supplier_invoice_ref=optional_text(payload.get("supplier_invoice_ref"), max_length=64),
        user_id=user_id,
    )


def record_purchase(data: PurchaseInput) -> PurchaseInvoice:
    """
    Receive supplier stock into a store.

    Posts Dr Inventory (subtotal), Dr VAT Receivable / Cr Cash, Cr Bank,
    Cr Accounts Payable (unpaid remainder). Payments above the invoice
    total are rejected.
    """
    if not data.lines:
        raise ValidationError("Purchase requires at least one line")
    for idx, line in enumerate(data.lines):
        positive_int(line.product_id, f"lines[{idx}].product_id")
        positive_int(line.unit_id, f"lines[{idx}].unit_id")
        positive_int(line.qty_in_unit, f"lines[{idx}].qty_in_unit")
        amount_pence(line.unit_cost_pence, f"lines[{idx}].unit_cost_pence")
    payments = [
        PurchasePaymentInput(
            method=choice(p.method, f"payments[{idx}].method", PURCHASE_PAYMENT_METHODS),
            amount_pence=amount_pence(p.amount_pence, f"payments[{idx}].amount_pence"),
        )
        for idx, p in enumerate(data.payments)
    ]
    payments = [p for p in payments if p.amount_pence > 0]

    def _op() -> PurchaseInvoice:
        begin_write_transaction()
        business = db.session.get(Business, data.business_id)
        if business is None or not business.is_active:
            raise PurchaseError("Business not found or inactive", {"business_id": data.business_id})
        store = db.session.query(Store).filter_by(id=data.store_id, business_id=business.id).first()
        if store is None or not store.is_active:
            raise PurchaseError("Store not found in business", {"store_id": data.store_id})

        invoice = PurchaseInvoice(
            business_id=business.id,
            store_id=store.id,
            user_id=data.user_id,
            document_number=next_document_number(store_id=store.id, document_type="PURCHASE_INVOICE"),
            supplier_name=data.supplier_name,
            supplier_invoice_ref=data.supplier_invoice_ref,
            payment_status="UNPAID",
            occurred_at=data.occurred_at or utcnow(),
        )
        db.session.add(invoice)
        db.session.flush()

        subtotal = 0
        vat_total = 0
        stock_value = 0
        for idx, line in enumerate(data.lines):
            product = db.session.query(Product).filter_by(id=line.product_id, business_id=business.id).first()
            if product is None or not product.is_active:
                raise PurchaseError("Product not found or inactive", {"line": idx, "product_id": line.product_id})
            product_unit = inventory_service.get_product_unit(product.id, line.unit_id)
            if product_unit is None:
                raise PurchaseError(
                    "Unit not configured for product",
                    {"line": idx, "product_id": product.id, "unit_id": line.unit_id},
                )

            qty_base = inventory_service.to_base_qty(product_unit, line.qty_in_unit)
            unit_cost_base = round_half_up_div(line.unit_cost_pence, product_unit.conversion_to_base)
            line_total = line.unit_cost_pence * line.qty_in_unit
            vat_rate = product.vat_rate_bps if business.vat_enabled else 0
            line_vat = round_half_up_div(line_total * vat_rate, BPS_DENOMINATOR)

            db.session.add(PurchaseInvoiceLine(
                invoice_id=invoice.id,
                product_id=product.id,
                unit_id=line.unit_id,
                qty_in_unit=line.qty_in_unit,
                conversion_to_base=product_unit.conversion_to_base,
                qty_base=qty_base,
                unit_cost_pence=line.unit_cost_pence,
                unit_cost_base_pence=unit_cost_base,
                line_total_pence=line_total,
                vat_rate_bps=vat_rate,
                vat_pence=line_vat,
            ))
            inventory_service.apply_stock_movement(
                store_id=store.id,
                product_id=product.id,
                delta_base=qty_base,
                movement_type="PURCHASE",
                unit_cost_base_pence=unit_cost_base,
                reference_type="PURCHASE_INVOICE",
                reference_id=invoice.id,
                user_id=data.user_id,
            )
            subtotal += line_total
            vat_total += line_vat
            stock_value += unit_cost_base * qty_base

        total = subtotal + vat_total
        paid = sum(p.amount_pence for p in payments)
        if paid > total:
            raise ValidationError(
                "Payments exceed the purchase total",
                {"total_pence": total, "paid_pence": paid},
            )
        for payment in payments:
            db.session.add(PurchasePayment(invoice_id=invoice.id, method=payment.method, amount_pence=payment.amount_pence))

        invoice.subtotal_pence = subtotal
        invoice.vat_pence = vat_total
        invoice.total_pence = total
        invoice.amount_paid_pence = paid
        invoice.payment_status = derive_payment_status(total, paid)
        db.session.flush()

        # Inventory carries the stock at its base-unit cost; pack rounding goes to COGS
        rounding = subtotal - stock_value
        if total:
            ledger_service.post_journal_entry(
                business_id=business.id,
                description=f"Purchase {invoice.document_number}",
                reference_type="PURCHASE_INVOICE",
                reference_id=invoice.id,
                entry_date=invoice.occurred_at,
                lines=[
                    debit(ledger_service.INVENTORY, stock_value),
                    debit(ledger_service.COST_OF_GOODS_SOLD, rounding) if rounding > 0
                    else credit(ledger_service.COST_OF_GOODS_SOLD, -rounding),
                    debit(ledger_service.VAT_RECEIVABLE, vat_total),
                    credit(ledger_service.CASH, sum(p.amount_pence for p in payments if p.method == "CASH")),
                    credit(ledger_service.BANK, sum(p.amount_pence for p in payments if p.method == "BANK")),
                    credit(ledger_service.ACCOUNTS_PAYABLE, total - paid),
                ],
                commit=False,
            )

        db.session.commit()
        return invoice

    invoice = run_with_retry(_op)
    audit_service.emit_audit_event(
        business_id=data.business_id,
        user_id=data.user_id,
        action="PURCHASE_CREATE",
        entity_type="PURCHASE_INVOICE",
        entity_id=invoice.id,
        details={
            "document_number": invoice.document_number,
            "total_pence": invoice.total_pence,
            "payment_status": invoice.payment_status,
        },
    )
    return invoice


def get_purchase(business_id: int, purchase_id: int) -> PurchaseInvoice:
    invoice = db.session.query(PurchaseInvoice).filter_by(id=purchase_id, business_id=business_id).first()
    if invoice is None:
        raise PurchaseError("Purchase not found", {"purchase_id": purchase_id})
    return invoice

# Overview: Service-layer operations for sales; encapsulates business logic and database work.

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Sequence

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import (
    Business,
    Customer,
    Product,
    SalesInvoice,
    SalesInvoiceLine,
    SalesPayment,
    SalesReturn,
    Store,
    Till,
    User,
)
from ..time_utils import utcnow
from ..validation import (
    ValidationError,
    amount_pence,
    choice,
    optional_datetime,
    optional_int,
    optional_text,
    positive_int,
)
from . import audit_service, inventory_service, ledger_service, risk_service, shift_service
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry
from .document_service import next_document_number
from .ledger_service import credit, debit
from .pricing import (
    BANK_METHODS,
    DISCOUNT_TYPES,
    PAYMENT_METHODS,
    PAYMENT_STATUSES,
    LinePricingInput,
    PaymentInput,
    derive_payment_status,
    parse_discount_value,
    price_order,
    settle_payments,
)
"""
Sale Invariants (authoritative)

- A sale is one transaction: invoice, lines, payments, stock decrements,
  journal entry and the till's cash drawer entry commit together or not
  at all.
- Stock never goes negative through a sale.
- external_ref makes a sale exactly-once: a replay returns the original
  invoice untouched (checked before the transaction, re-checked under the
  write lock, and backed by a unique constraint).
- Revenue is credited net of discounts and excluding VAT; COGS is valued at
  the average cost read when stock was decremented.
- Invoices are immutable except for payments and the terminal
  RETURNED/VOID transition.
"""

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset({"RETURNED", "VOID"})
RETURN_TYPES = ("RETURN", "VOID")


class SaleError(Exception):
    """Raised for sale operation errors."""

    code = "SALE_ERROR"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class InvalidReference(SaleError):
    code = "INVALID_REFERENCE"


class SaleNotFound(SaleError):
    code = "SALE_NOT_FOUND"


class SaleNotReturnable(SaleError):
    code = "SALE_NOT_RETURNABLE"


class InvoiceNotPayable(SaleError):
    code = "INVOICE_NOT_PAYABLE"


@dataclass(frozen=True)
class SaleLineInput:
    product_id: int
    unit_id: int
    qty_in_unit: int
    discount_type: str = "NONE"
    discount_value: Any = None


@dataclass
class SaleInput:
    business_id: int
    store_id: int
    lines: Sequence[SaleLineInput]
    payments: Sequence[PaymentInput] = field(default_factory=tuple)
    till_id: int | None = None
    cashier_user_id: int | None = None
    customer_id: int | None = None
    payment_status: str = "PAID"
    order_discount_type: str = "NONE"
    order_discount_value: Any = None
    external_ref: str | None = None
    occurred_at: datetime | None = None


@dataclass(frozen=True)
class SaleResult:
    invoice: SalesInvoice
    replayed: bool


def parse_sale_payload(*, business_id: int, cashier_user_id: int | None, payload: dict) -> SaleInput:
    """Strict mapping of a JSON body onto SaleInput."""
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
        lines.append(SaleLineInput(
            product_id=positive_int(raw.get("product_id"), f"lines[{idx}].product_id"),
            unit_id=positive_int(raw.get("unit_id"), f"lines[{idx}].unit_id"),
            qty_in_unit=positive_int(raw.get("qty_in_unit"), f"lines[{idx}].qty_in_unit"),
            discount_type=str(raw.get("discount_type") or "NONE").upper(),
            discount_value=raw.get("discount_value"),
        ))

    payments = []
    for idx, raw in enumerate(raw_payments):
        if not isinstance(raw, dict):
            raise ValidationError(f"payments[{idx}] must be an object")
        payments.append(PaymentInput(
            method=choice(raw.get("method"), f"payments[{idx}].method", PAYMENT_METHODS),
            amount_pence=amount_pence(raw.get("amount_pence"), f"payments[{idx}].amount_pence"),
            reference=optional_text(raw.get("reference"), max_length=128),
        ))

    return SaleInput(
        business_id=business_id,
        store_id=positive_int(payload.get("store_id"), "store_id"),
        till_id=optional_int(payload.get("till_id"), "till_id"),
        cashier_user_id=cashier_user_id,
        customer_id=optional_int(payload.get("customer_id"), "customer_id"),
        payment_status=str(payload.get("payment_status") or "PAID").upper(),
        lines=lines,
        payments=payments,
        order_discount_type=str(payload.get("order_discount_type") or "NONE").upper(),
        order_discount_value=payload.get("order_discount_value"),
        external_ref=optional_text(payload.get("external_ref"), max_length=128),
        occurred_at=optional_datetime(payload.get("occurred_at"), "occurred_at"),
    )


def find_by_external_ref(business_id: int, external_ref: str | None) -> SalesInvoice | None:
    if not external_ref:
        return None
    return (
        db.session.query(SalesInvoice)
        .filter_by(business_id=business_id, external_ref=external_ref)
        .first()
    )


def get_invoice(business_id: int, invoice_id: int) -> SalesInvoice:
    invoice = db.session.query(SalesInvoice).filter_by(id=invoice_id, business_id=business_id).first()
    if invoice is None:
        raise SaleNotFound("Invoice not found", {"invoice_id": invoice_id})
    return invoice


def _validate_sale_input(data: SaleInput) -> None:
    positive_int(data.business_id, "business_id")
    positive_int(data.store_id, "store_id")
    if not data.lines:
        raise ValidationError("Sale requires at least one line")
    for idx, line in enumerate(data.lines):
        positive_int(line.product_id, f"lines[{idx}].product_id")
        positive_int(line.unit_id, f"lines[{idx}].unit_id")
        positive_int(line.qty_in_unit, f"lines[{idx}].qty_in_unit")
        choice(line.discount_type, f"lines[{idx}].discount_type", DISCOUNT_TYPES)
        parse_discount_value(line.discount_type, line.discount_value)
    for idx, payment in enumerate(data.payments):
        choice(payment.method, f"payments[{idx}].method", PAYMENT_METHODS)
        amount_pence(payment.amount_pence, f"payments[{idx}].amount_pence")
    choice(data.payment_status, "payment_status", PAYMENT_STATUSES)
    choice(data.order_discount_type, "order_discount_type", DISCOUNT_TYPES)
    parse_discount_value(data.order_discount_type, data.order_discount_value)
    if data.external_ref is not None and len(data.external_ref) > 128:
        raise ValidationError("external_ref must be at most 128 characters")


def _resolve_references(data: SaleInput):
    business = db.session.get(Business, data.business_id)
    if business is None or not business.is_active:
        raise InvalidReference("Business not found or inactive", {"business_id": data.business_id})

    store = db.session.query(Store).filter_by(id=data.store_id, business_id=business.id).first()
    if store is None or not store.is_active:
        raise InvalidReference("Store not found in business", {"store_id": data.store_id})

    till = None
    if data.till_id is not None:
        till = db.session.query(Till).filter_by(id=data.till_id, store_id=store.id).first()
        if till is None or not till.is_active:
            raise InvalidReference("Till not found in store or inactive", {"till_id": data.till_id})

    customer = None
    if data.customer_id is not None:
        customer = db.session.query(Customer).filter_by(id=data.customer_id, business_id=business.id).first()
        if customer is None or not customer.is_active:
            raise InvalidReference("Customer not found in business", {"customer_id": data.customer_id})

    if data.cashier_user_id is not None:
        cashier = db.session.query(User).filter_by(id=data.cashier_user_id, business_id=business.id).first()
        if cashier is None:
            raise InvalidReference("Cashier not found in business", {"user_id": data.cashier_user_id})

    return business, store, till, customer


def _pricing_inputs(business_id: int, lines: Sequence[SaleLineInput]) -> list[LinePricingInput]:
    product_ids = {line.product_id for line in lines}
    products = {
        p.id: p
        for p in db.session.query(Product).filter(Product.business_id == business_id, Product.id.in_(product_ids)).all()
    }
    items = []
    for idx, line in enumerate(lines):
        product = products.get(line.product_id)
        if product is None or not product.is_active:
            raise InvalidReference("Product not found or inactive", {"line": idx, "product_id": line.product_id})
        product_unit = inventory_service.get_product_unit(product.id, line.unit_id)
        if product_unit is None:
            raise InvalidReference(
                "Unit not configured for product",
                {"line": idx, "product_id": product.id, "unit_id": line.unit_id},
            )
        items.append(LinePricingInput(
            product_id=product.id,
            unit_id=line.unit_id,
            qty_in_unit=line.qty_in_unit,
            conversion_to_base=product_unit.conversion_to_base,
            base_price_pence=product.selling_price_base_pence,
            vat_rate_bps=product.vat_rate_bps,
            promo_buy_qty=product.promo_buy_qty,
            promo_get_qty=product.promo_get_qty,
            discount_type=line.discount_type.upper(),
            discount_value=parse_discount_value(line.discount_type.upper(), line.discount_value),
        ))
    return items


def _discount_text(value) -> str | None:
    return None if value is None else str(value)


def _insert_sale(data: SaleInput) -> SaleResult:
    """Body of the sale transaction. Caller owns retry and rollback."""
    begin_write_transaction()

    existing = find_by_external_ref(data.business_id, data.external_ref)
    if existing is not None:
        db.session.commit()
        return SaleResult(invoice=existing, replayed=True)

    business, store, till, customer = _resolve_references(data)

    order_discount_type = data.order_discount_type.upper()
    order = price_order(
        _pricing_inputs(business.id, data.lines),
        order_discount_type=order_discount_type,
        order_discount_value=parse_discount_value(order_discount_type, data.order_discount_value),
        vat_enabled=bool(business.vat_enabled),
    )
    settlement = settle_payments(order.total_pence, data.payments, data.payment_status.upper())
    if settlement.payment_status != "PAID" and customer is None:
        raise InvalidReference(
            "A customer is required when the sale is not fully paid",
            {"payment_status": settlement.payment_status, "balance_due_pence": settlement.balance_due_pence},
        )

    shift = shift_service.get_open_shift_for_till(till.id, lock=True) if till else None

    invoice = SalesInvoice(
        business_id=business.id,
        store_id=store.id,
        till_id=till.id if till else None,
        shift_id=shift.id if shift else None,
        cashier_user_id=data.cashier_user_id,
        customer_id=customer.id if customer else None,
        invoice_number=next_document_number(store_id=store.id, document_type="SALES_INVOICE"),
        external_ref=data.external_ref,
        payment_status=settlement.payment_status,
        gross_pence=order.gross_pence,
        promo_discount_pence=order.promo_discount_pence,
        line_discount_pence=order.line_discount_pence,
        order_discount_type=order_discount_type,
        order_discount_value=_discount_text(data.order_discount_value) if order_discount_type != "NONE" else None,
        order_discount_pence=order.order_discount_pence,
        subtotal_pence=order.subtotal_pence,
        vat_pence=order.vat_pence,
        total_pence=order.total_pence,
        amount_paid_pence=settlement.paid_pence,
        change_pence=settlement.change_pence,
        balance_due_pence=settlement.balance_due_pence,
        occurred_at=data.occurred_at or utcnow(),
    )
    db.session.add(invoice)
    db.session.flush()

    # One decrement per product, in first-seen order, so a product sold on
    # two lines is checked against its total quantity.
    qty_by_product: dict[int, int] = {}
    for line in order.lines:
        qty_by_product[line.product_id] = qty_by_product.get(line.product_id, 0) + line.qty_base
    cost_by_product: dict[int, int] = {}
    for product_id, qty_base in qty_by_product.items():
        snapshot = inventory_service.apply_stock_movement(
            store_id=store.id,
            product_id=product_id,
            delta_base=-qty_base,
            movement_type="SALE",
            allow_negative=False,
            reference_type="SALES_INVOICE",
            reference_id=invoice.id,
            user_id=data.cashier_user_id,
        )
        cost_by_product[product_id] = snapshot.unit_cost_base_pence

    cogs_total = 0
    for line_no, line in enumerate(order.lines, start=1):
        unit_cost = cost_by_product[line.product_id]
        cogs = unit_cost * line.qty_base
        cogs_total += cogs
        db.session.add(SalesInvoiceLine(
            invoice_id=invoice.id,
            line_no=line_no,
            product_id=line.product_id,
            unit_id=line.unit_id,
            qty_in_unit=line.qty_in_unit,
            conversion_to_base=line.conversion_to_base,
            qty_base=line.qty_base,
            unit_price_pence=line.unit_price_pence,
            gross_pence=line.gross_pence,
            promo_free_qty_base=line.promo_free_qty_base,
            promo_discount_pence=line.promo_discount_pence,
            discount_type=line.discount_type,
            discount_value=_discount_text(line.discount_value),
            line_discount_pence=line.line_discount_pence,
            order_discount_pence=line.order_discount_pence,
            net_pence=line.net_pence,
            vat_rate_bps=line.vat_rate_bps,
            vat_pence=line.vat_pence,
            total_pence=line.total_pence,
            unit_cost_base_pence=unit_cost,
            cogs_pence=cogs,
        ))
    invoice.cogs_pence = cogs_total

    for payment in settlement.payments:
        db.session.add(SalesPayment(
            invoice_id=invoice.id,
            method=payment.method,
            amount_pence=payment.amount_pence,
            reference=payment.reference,
            user_id=data.cashier_user_id,
            shift_id=shift.id if shift else None,
        ))

    if order.total_pence or cogs_total:
        ledger_service.post_journal_entry(
            business_id=business.id,
            description=f"Sale {invoice.invoice_number}",
            reference_type="SALES_INVOICE",
            reference_id=invoice.id,
            entry_date=invoice.occurred_at,
            lines=[
                debit(ledger_service.CASH, settlement.cash_pence),
                debit(ledger_service.BANK, settlement.bank_pence),
                debit(ledger_service.ACCOUNTS_RECEIVABLE, settlement.balance_due_pence),
                credit(ledger_service.SALES_REVENUE, order.subtotal_pence),
                credit(ledger_service.VAT_PAYABLE, order.vat_pence),
                debit(ledger_service.COST_OF_GOODS_SOLD, cogs_total),
                credit(ledger_service.INVENTORY, cogs_total),
            ],
            commit=False,
        )

    if shift is not None and settlement.cash_pence > 0:
        shift_service.append_drawer_entry(
            shift,
            entry_type="CASH_SALE",
            amount_pence=settlement.cash_pence,
            user_id=data.cashier_user_id,
            reference_type="SALES_INVOICE",
            reference_id=invoice.id,
        )

    db.session.commit()
    return SaleResult(invoice=invoice, replayed=False)


def record_sale(data: SaleInput) -> SaleResult:
    """
    Create a sale, or return the invoice already recorded for its external_ref.

    Raises ValidationError for malformed input (before any transaction),
    InvalidReference, InsufficientStock, and storage errors after retries.
    """
    _validate_sale_input(data)

    existing = find_by_external_ref(data.business_id, data.external_ref)
    if existing is not None:
        return SaleResult(invoice=existing, replayed=True)

    try:
        result = run_with_retry(lambda: _insert_sale(data))
    except IntegrityError:
        # A concurrent replay won the unique constraint on external_ref
        existing = find_by_external_ref(data.business_id, data.external_ref)
        if existing is None:
            raise
        return SaleResult(invoice=existing, replayed=True)

    if not result.replayed:
        invoice = result.invoice
        audit_service.emit_audit_event(
            business_id=invoice.business_id,
            user_id=data.cashier_user_id,
            action="SALE_CREATE",
            entity_type="SALES_INVOICE",
            entity_id=invoice.id,
            details={
                "invoice_number": invoice.invoice_number,
                "total_pence": invoice.total_pence,
                "payment_status": invoice.payment_status,
                "external_ref": invoice.external_ref,
            },
        )
        risk_service.check_sale_margin(invoice)
    return result


def create_sale(data: SaleInput) -> SalesInvoice:
    return record_sale(data).invoice


def add_payment(
    *,
    business_id: int,
    invoice_id: int,
    method: str,
    amount: int,
    user_id: int | None = None,
    reference: str | None = None,
) -> SalesInvoice:
    """
    Pay down an UNPAID or PART_PAID invoice.

    Cash over-tender is returned as change; non-cash tender above the
    balance due is rejected. Posts Dr Cash/Bank, Cr Accounts Receivable.
    """
    method = choice(method, "method", PAYMENT_METHODS)
    amount = amount_pence(amount, "amount_pence", allow_zero=False)

    def _op() -> SalesInvoice:
        begin_write_transaction()
        invoice = lock_for_update(
            db.session.query(SalesInvoice).filter_by(id=invoice_id, business_id=business_id)
        ).first()
        if invoice is None:
            raise SaleNotFound("Invoice not found", {"invoice_id": invoice_id})
        if invoice.payment_status not in ("UNPAID", "PART_PAID"):
            raise InvoiceNotPayable(
                "Invoice is not awaiting payment",
                {"invoice_id": invoice.id, "payment_status": invoice.payment_status},
            )

        balance_due = invoice.balance_due_pence
        if method in BANK_METHODS and amount > balance_due:
            raise ValidationError(
                "Non-cash payment exceeds the balance due",
                {"balance_due_pence": balance_due, "amount_pence": amount},
            )
        applied = min(amount, balance_due)
        shift = shift_service.get_open_shift_for_till(invoice.till_id, lock=True) if invoice.till_id else None

        db.session.add(SalesPayment(
            invoice_id=invoice.id,
            method=method,
            amount_pence=applied,
            reference=reference,
            user_id=user_id,
            shift_id=shift.id if shift else None,
        ))
        invoice.amount_paid_pence += applied
        invoice.balance_due_pence -= applied
        invoice.payment_status = derive_payment_status(invoice.total_pence, invoice.amount_paid_pence)
        db.session.flush()

        cash_account = ledger_service.CASH if method == "CASH" else ledger_service.BANK
        ledger_service.post_journal_entry(
            business_id=business_id,
            description=f"Payment on {invoice.invoice_number}",
            reference_type="SALES_INVOICE",
            reference_id=invoice.id,
            lines=[
                debit(cash_account, applied),
                credit(ledger_service.ACCOUNTS_RECEIVABLE, applied),
            ],
            commit=False,
        )

        if method == "CASH" and shift is not None:
            shift_service.append_drawer_entry(
                shift,
                entry_type="CASH_SALE",
                amount_pence=applied,
                user_id=user_id,
                reference_type="SALES_PAYMENT",
                reference_id=invoice.id,
            )

        db.session.commit()
        return invoice

    invoice = run_with_retry(_op)
    audit_service.emit_audit_event(
        business_id=business_id,
        user_id=user_id,
        action="SALE_PAYMENT",
        entity_type="SALES_INVOICE",
        entity_id=invoice.id,
        details={"method": method, "amount_pence": amount, "payment_status": invoice.payment_status},
    )
    return invoice


def create_sales_return(
    *,
    business_id: int,
    invoice_id: int,
    user_id: int | None = None,
    return_type: str = "RETURN",
    refund_method: str | None = None,
    reason: str | None = None,
) -> SalesReturn:
    """
    Fully return or void an invoice.

    Restocks every line at its recorded cost and reverses revenue, VAT and
    COGS. A VOID refunds each payment through its original method; a
    RETURN refunds the amount paid through refund_method (default CASH).
    Any unpaid balance is written off the receivable. Cash refunds on a
    till with an open shift leave a negative CASH_REFUND drawer entry.
    """
    return_type = choice(return_type, "type", RETURN_TYPES)
    if return_type == "RETURN":
        refund_method = choice(refund_method or "CASH", "refund_method", PAYMENT_METHODS)
    else:
        refund_method = None
    reason = optional_text(reason)

    def _op() -> SalesReturn:
        begin_write_transaction()
        invoice = lock_for_update(
            db.session.query(SalesInvoice).filter_by(id=invoice_id, business_id=business_id)
        ).first()
        if invoice is None:
            raise SaleNotFound("Invoice not found", {"invoice_id": invoice_id})
        if invoice.payment_status in TERMINAL_STATUSES or invoice.sales_return is not None:
            raise SaleNotReturnable(
                f"Invoice is already {invoice.payment_status}",
                {"invoice_id": invoice.id, "payment_status": invoice.payment_status},
            )

        if return_type == "VOID":
            refund_cash = sum(p.amount_pence for p in invoice.payments if p.method == "CASH")
            refund_bank = sum(p.amount_pence for p in invoice.payments if p.method in BANK_METHODS)
        elif refund_method == "CASH":
            refund_cash, refund_bank = invoice.amount_paid_pence, 0
        else:
            refund_cash, refund_bank = 0, invoice.amount_paid_pence
        receivable = invoice.balance_due_pence

        shift = shift_service.get_open_shift_for_till(invoice.till_id, lock=True) if invoice.till_id else None

        sales_return = SalesReturn(
            business_id=business_id,
            invoice_id=invoice.id,
            type=return_type,
            reason=reason,
            user_id=user_id,
            shift_id=shift.id if shift else None,
            refund_method=refund_method,
            refund_cash_pence=refund_cash,
            refund_bank_pence=refund_bank,
            receivable_cleared_pence=receivable,
            restocked_cost_pence=invoice.cogs_pence,
        )
        db.session.add(sales_return)
        db.session.flush()

        cost_by_product: dict[int, int] = {}
        qty_by_product: dict[int, int] = {}
        for line in invoice.lines:
            qty_by_product[line.product_id] = qty_by_product.get(line.product_id, 0) + line.qty_base
            cost_by_product.setdefault(line.product_id, line.unit_cost_base_pence)
        for product_id, qty_base in qty_by_product.items():
            inventory_service.apply_stock_movement(
                store_id=invoice.store_id,
                product_id=product_id,
                delta_base=qty_base,
                movement_type="SALES_RETURN",
                unit_cost_base_pence=cost_by_product[product_id],
                reference_type="SALES_RETURN",
                reference_id=sales_return.id,
                user_id=user_id,
            )

        if invoice.total_pence or invoice.cogs_pence:
            ledger_service.post_journal_entry(
                business_id=business_id,
                description=f"{return_type.title()} of {invoice.invoice_number}",
                reference_type="SALES_RETURN",
                reference_id=sales_return.id,
                lines=[
                    debit(ledger_service.SALES_REVENUE, invoice.subtotal_pence),
                    debit(ledger_service.VAT_PAYABLE, invoice.vat_pence),
                    credit(ledger_service.CASH, refund_cash),
                    credit(ledger_service.BANK, refund_bank),
                    credit(ledger_service.ACCOUNTS_RECEIVABLE, receivable),
                    debit(ledger_service.INVENTORY, invoice.cogs_pence),
                    credit(ledger_service.COST_OF_GOODS_SOLD, invoice.cogs_pence),
                ],
                commit=False,
            )

        invoice.payment_status = "RETURNED" if return_type == "RETURN" else "VOID"
        invoice.balance_due_pence = 0

        if shift is not None and refund_cash > 0:
            shift_service.append_drawer_entry(
                shift,
                entry_type="CASH_REFUND",
                amount_pence=-refund_cash,
                user_id=user_id,
                reason=reason,
                reference_type="SALES_RETURN",
                reference_id=sales_return.id,
            )

        db.session.commit()
        return sales_return

    sales_return = run_with_retry(_op)
    audit_service.emit_audit_event(
        business_id=business_id,
        user_id=user_id,
        action="SALE_VOID" if return_type == "VOID" else "SALE_RETURN",
        entity_type="SALES_INVOICE",
        entity_id=invoice_id,
        reason=reason,
        details={
            "sales_return_id": sales_return.id,
            "refund_cash_pence": sales_return.refund_cash_pence,
            "refund_bank_pence": sales_return.refund_bank_pence,
        },
    )
    if return_type == "VOID":
        risk_service.check_void_frequency(business_id, user_id)
    return sales_return

# Overview: Pytest coverage for sale recording, payments, returns and voids.

"""
Sales Transaction Tests

Each sale is one transaction: invoice, lines, payments, stock decrement,
journal entry and drawer entry. These tests verify the totals, the ledger
effect, exactly-once replay on external_ref, and that a failed sale leaves
nothing behind.
"""

import pytest
from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError

from poscore.models import (
    AuditLog,
    Customer,
    JournalEntry,
    RiskAlert,
    SalesInvoice,
    StockMovement,
)
from poscore.services import ledger_service, sales_service
from poscore.services.inventory_service import InsufficientStock
from poscore.services.ledger_service import UnbalancedEntry
from poscore.services.pricing import PaymentInput
from poscore.services.sales_service import (
    InvalidReference,
    InvoiceNotPayable,
    SaleInput,
    SaleLineInput,
    SaleNotFound,
    SaleNotReturnable,
)
from poscore.validation import ValidationError


@pytest.fixture
def customer(db_session, business):
    customer = Customer(business_id=business.id, name="Ada Lovelace", phone="07700900123")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture
def sell(business, store, cashier, units):
    """sell(product, qty, **overrides) records a sale in pieces."""
    piece, _ = units

    def _sell(product, qty, **overrides):
        values = dict(
            business_id=business.id,
            store_id=store.id,
            cashier_user_id=cashier.id,
            lines=[SaleLineInput(product_id=product.id, unit_id=piece.id, qty_in_unit=qty)],
        )
        values.update(overrides)
        return sales_service.record_sale(SaleInput(**values))
    return _sell


def _balance(business, code):
    return ledger_service.get_account_balance(business.id, code)


class TestRecordSale:

    def test_cash_sale_posts_stock_and_ledger(self, db_session, business, store, stocked_product, sell, on_hand):
        result = sell(stocked_product, 3, payments=[PaymentInput("CASH", 3000)])
        invoice = result.invoice

        assert result.replayed is False
        assert invoice.total_pence == 3000
        assert invoice.vat_pence == 0
        assert invoice.payment_status == "PAID"
        assert invoice.cogs_pence == 1800
        assert on_hand(store, stocked_product) == 17

        assert _balance(business, ledger_service.CASH) == 3000
        assert _balance(business, ledger_service.SALES_REVENUE) == 3000
        assert _balance(business, ledger_service.COST_OF_GOODS_SOLD) == 1800
        assert _balance(business, ledger_service.INVENTORY) == -1800
        assert ledger_service.trial_balance(business.id)["balanced"] is True

        assert db_session.query(AuditLog).filter_by(action="SALE_CREATE", entity_id=invoice.id).count() == 1

    def test_packaging_unit_converted_to_base(self, db_session, business, store, stocked_product, units, cashier, on_hand):
        _, pack = units
        invoice = sales_service.create_sale(SaleInput(
            business_id=business.id,
            store_id=store.id,
            cashier_user_id=cashier.id,
            lines=[SaleLineInput(product_id=stocked_product.id, unit_id=pack.id, qty_in_unit=2)],
        ))
        line = invoice.lines[0]
        assert line.qty_base == 12
        assert line.unit_price_pence == 6000
        assert invoice.total_pence == 12000
        assert on_hand(store, stocked_product) == 8

    def test_vat_charged_when_business_registered(self, db_session, business, stocked_product, sell):
        business.vat_enabled = True
        db_session.commit()
        invoice = sell(stocked_product, 1).invoice
        assert invoice.subtotal_pence == 1000
        assert invoice.vat_pence == 200
        assert invoice.total_pence == 1200
        assert _balance(business, ledger_service.VAT_PAYABLE) == 200

    def test_invoice_numbers_are_sequential(self, db_session, store, stocked_product, sell):
        first = sell(stocked_product, 1).invoice
        second = sell(stocked_product, 1).invoice
        assert first.invoice_number.startswith("INV-")
        assert first.invoice_number.endswith("000001")
        assert second.invoice_number.endswith("000002")

    def test_cash_change_recorded(self, db_session, business, stocked_product, sell):
        invoice = sell(stocked_product, 2, payments=[PaymentInput("CASH", 5000)]).invoice
        assert invoice.change_pence == 3000
        assert invoice.amount_paid_pence == 2000
        assert _balance(business, ledger_service.CASH) == 2000

    def test_order_discount_reduces_revenue(self, db_session, business, stocked_product, sell):
        invoice = sell(stocked_product, 4, order_discount_type="PERCENT", order_discount_value="25").invoice
        assert invoice.gross_pence == 4000
        assert invoice.order_discount_pence == 1000
        assert invoice.total_pence == 3000
        assert _balance(business, ledger_service.SALES_REVENUE) == 3000


class TestIdempotency:

    def test_replay_returns_original_invoice(self, db_session, store, stocked_product, sell, on_hand):
        first = sell(stocked_product, 2, external_ref="POS-1-0001")
        second = sell(stocked_product, 2, external_ref="POS-1-0001")

        assert first.replayed is False
        assert second.replayed is True
        assert second.invoice.id == first.invoice.id
        assert db_session.query(SalesInvoice).count() == 1
        assert db_session.query(StockMovement).filter_by(type="SALE").count() == 1
        assert on_hand(store, stocked_product) == 18

    def test_external_ref_scoped_per_business(self, db_session, business, stocked_product, sell):
        sell(stocked_product, 1, external_ref="shared-ref")
        found = sales_service.find_by_external_ref(business.id + 1000, "shared-ref")
        assert found is None


class TestFailedSales:

    def test_insufficient_stock_leaves_nothing(self, db_session, business, store, stocked_product, sell, on_hand):
        with pytest.raises(InsufficientStock):
            sell(stocked_product, 21)
        assert db_session.query(SalesInvoice).count() == 0
        assert db_session.query(JournalEntry).count() == 0
        assert on_hand(store, stocked_product) == 20

    def test_ledger_failure_rolls_back_stock(self, db_session, store, stocked_product, sell, on_hand, monkeypatch):
        def _reject(**kwargs):
            raise UnbalancedEntry("Journal entry does not balance", {"debit_pence": 1, "credit_pence": 0})

        monkeypatch.setattr(ledger_service, "post_journal_entry", _reject)
        with pytest.raises(UnbalancedEntry):
            sell(stocked_product, 3)
        assert on_hand(store, stocked_product) == 20
        assert db_session.query(SalesInvoice).count() == 0
        assert db_session.query(StockMovement).filter_by(type="SALE").count() == 0

    def test_audit_failure_keeps_sale(self, db_session, store, stocked_product, sell, on_hand):
        def _fail_insert(mapper, connection, target):
            raise SQLAlchemyError("audit table unavailable")

        event.listen(AuditLog, "before_insert", _fail_insert)
        try:
            result = sell(stocked_product, 3)
        finally:
            event.remove(AuditLog, "before_insert", _fail_insert)

        assert result.invoice.id is not None
        assert on_hand(store, stocked_product) == 17
        assert db_session.query(SalesInvoice).count() == 1
        assert db_session.query(AuditLog).filter_by(action="SALE_CREATE").count() == 0

    def test_credit_sale_requires_customer(self, db_session, stocked_product, sell, on_hand, store):
        with pytest.raises(InvalidReference):
            sell(stocked_product, 1, payment_status="UNPAID")
        assert on_hand(store, stocked_product) == 20

    def test_store_from_other_business_rejected(self, db_session, other_business, stocked_product, sell):
        with pytest.raises(InvalidReference):
            sell(stocked_product, 1, business_id=other_business.id)

    def test_inactive_product_rejected(self, db_session, stocked_product, sell):
        stocked_product.is_active = False
        db_session.commit()
        with pytest.raises(InvalidReference):
            sell(stocked_product, 1)

    def test_empty_sale_rejected(self, db_session, business, store):
        with pytest.raises(ValidationError):
            sales_service.record_sale(SaleInput(business_id=business.id, store_id=store.id, lines=[]))

    def test_card_over_total_rejected(self, db_session, stocked_product, sell):
        with pytest.raises(ValidationError):
            sell(stocked_product, 1, payments=[PaymentInput("CARD", 5000)])
        assert db_session.query(SalesInvoice).count() == 0


class TestCreditSalesAndPayments:

    def test_unpaid_sale_books_receivable(self, db_session, business, stocked_product, sell, customer):
        invoice = sell(stocked_product, 2, payment_status="UNPAID", customer_id=customer.id).invoice
        assert invoice.payment_status == "UNPAID"
        assert invoice.balance_due_pence == 2000
        assert _balance(business, ledger_service.ACCOUNTS_RECEIVABLE) == 2000

    def test_payments_settle_invoice(self, db_session, business, stocked_product, sell, customer, cashier):
        invoice = sell(
            stocked_product, 2,
            payment_status="PART_PAID",
            customer_id=customer.id,
            payments=[PaymentInput("CASH", 500)],
        ).invoice
        assert invoice.payment_status == "PART_PAID"

        invoice = sales_service.add_payment(
            business_id=business.id, invoice_id=invoice.id, method="TRANSFER", amount=1000, user_id=cashier.id,
        )
        assert invoice.payment_status == "PART_PAID"
        assert invoice.balance_due_pence == 500

        invoice = sales_service.add_payment(
            business_id=business.id, invoice_id=invoice.id, method="CASH", amount=2000, user_id=cashier.id,
        )
        assert invoice.payment_status == "PAID"
        assert invoice.balance_due_pence == 0
        assert invoice.amount_paid_pence == 2000
        assert _balance(business, ledger_service.ACCOUNTS_RECEIVABLE) == 0
        assert _balance(business, ledger_service.BANK) == 1000
        assert _balance(business, ledger_service.CASH) == 1000

    def test_non_cash_payment_above_balance_rejected(self, db_session, business, stocked_product, sell, customer):
        invoice = sell(stocked_product, 1, payment_status="UNPAID", customer_id=customer.id).invoice
        with pytest.raises(ValidationError):
            sales_service.add_payment(business_id=business.id, invoice_id=invoice.id, method="CARD", amount=1500)

    def test_paid_invoice_not_payable(self, db_session, business, stocked_product, sell):
        invoice = sell(stocked_product, 1).invoice
        with pytest.raises(InvoiceNotPayable):
            sales_service.add_payment(business_id=business.id, invoice_id=invoice.id, method="CASH", amount=100)

    def test_unknown_invoice(self, db_session, business):
        with pytest.raises(SaleNotFound):
            sales_service.add_payment(business_id=business.id, invoice_id=999, method="CASH", amount=100)


class TestReturnsAndVoids:

    def test_return_restocks_and_reverses(self, db_session, business, store, stocked_product, sell, on_hand, manager):
        invoice = sell(stocked_product, 3).invoice
        sales_return = sales_service.create_sales_return(
            business_id=business.id,
            invoice_id=invoice.id,
            user_id=manager.id,
            return_type="RETURN",
            reason="Customer changed mind",
        )
        assert sales_return.refund_cash_pence == 3000
        assert sales_return.restocked_cost_pence == 1800
        assert on_hand(store, stocked_product) == 20
        db_session.refresh(invoice)
        assert invoice.payment_status == "RETURNED"

        assert _balance(business, ledger_service.CASH) == 0
        assert _balance(business, ledger_service.SALES_REVENUE) == 0
        assert _balance(business, ledger_service.COST_OF_GOODS_SOLD) == 0
        assert _balance(business, ledger_service.INVENTORY) == 0

    def test_second_return_rejected(self, db_session, business, stocked_product, sell):
        invoice = sell(stocked_product, 1).invoice
        sales_service.create_sales_return(business_id=business.id, invoice_id=invoice.id)
        with pytest.raises(SaleNotReturnable):
            sales_service.create_sales_return(business_id=business.id, invoice_id=invoice.id, return_type="VOID")

    def test_void_refunds_original_methods(self, db_session, business, stocked_product, sell, manager):
        invoice = sell(
            stocked_product, 3,
            payments=[PaymentInput("CARD", 1000), PaymentInput("CASH", 2000)],
        ).invoice
        sales_return = sales_service.create_sales_return(
            business_id=business.id, invoice_id=invoice.id, user_id=manager.id, return_type="VOID",
        )
        assert sales_return.refund_bank_pence == 1000
        assert sales_return.refund_cash_pence == 2000
        assert _balance(business, ledger_service.BANK) == 0
        assert db_session.query(AuditLog).filter_by(action="SALE_VOID").count() == 1

    def test_return_clears_receivable(self, db_session, business, stocked_product, sell, customer):
        invoice = sell(stocked_product, 2, payment_status="UNPAID", customer_id=customer.id).invoice
        sales_return = sales_service.create_sales_return(business_id=business.id, invoice_id=invoice.id)
        assert sales_return.receivable_cleared_pence == 2000
        assert sales_return.refund_cash_pence == 0
        assert _balance(business, ledger_service.ACCOUNTS_RECEIVABLE) == 0

    def test_frequent_voids_raise_alert(self, db_session, business, stocked_product, sell, manager):
        for _ in range(3):
            invoice = sell(stocked_product, 1).invoice
            sales_service.create_sales_return(
                business_id=business.id, invoice_id=invoice.id, user_id=manager.id, return_type="VOID",
            )
        assert db_session.query(RiskAlert).filter_by(alert_type="FREQUENT_VOIDS").count() == 1


class TestRiskChecks:

    def test_negative_margin_sale_alerts(self, db_session, stocked_product, sell):
        stocked_product.selling_price_base_pence = 100
        db_session.commit()
        sell(stocked_product, 1)
        alert = db_session.query(RiskAlert).filter_by(alert_type="NEGATIVE_MARGIN_SALE").one()
        assert alert.details["gross_margin_pence"] == -500

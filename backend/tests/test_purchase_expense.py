# Overview: Pytest coverage for supplier purchases and operating expenses.

import pytest

from poscore.models import AuditLog, Expense, PurchaseInvoice, StockMovement
from poscore.services import audit_service, expense_service, inventory_service, ledger_service, purchase_service
from poscore.services.expense_service import ExpenseError
from poscore.services.purchase_service import (
    PurchaseError,
    PurchaseInput,
    PurchaseLineInput,
    PurchasePaymentInput,
)
from poscore.validation import ValidationError


@pytest.fixture
def buy(business, store, manager, units):
    """buy(product, packs, cost_per_pack, payments=[...]) receives stock in packs."""
    _, pack = units

    def _buy(product, packs, cost_per_pack, payments=(), **overrides):
        values = dict(
            business_id=business.id,
            store_id=store.id,
            lines=[PurchaseLineInput(
                product_id=product.id, unit_id=pack.id, qty_in_unit=packs, unit_cost_pence=cost_per_pack,
            )],
            payments=[PurchasePaymentInput(method=m, amount_pence=a) for m, a in payments],
            supplier_name="Wholesale Ltd",
            user_id=manager.id,
        )
        values.update(overrides)
        return purchase_service.record_purchase(PurchaseInput(**values))
    return _buy


class TestRecordPurchase:

    def test_receives_in_base_units(self, db_session, business, store, product, buy):
        invoice = buy(product, 2, 4800, payments=[("CASH", 5000)])

        assert invoice.document_number == f"PUR-{store.id:03d}-000001"
        assert invoice.total_pence == 9600
        assert invoice.amount_paid_pence == 5000
        assert invoice.payment_status == "PART_PAID"
        assert invoice.lines[0].qty_base == 12
        assert invoice.lines[0].unit_cost_base_pence == 800

        summary = inventory_service.get_inventory_summary(store.id, product.id)
        assert summary["qty_on_hand_base"] == 12
        assert summary["avg_cost_base_pence"] == 800

        assert ledger_service.get_account_balance(business.id, ledger_service.INVENTORY) == 9600
        assert ledger_service.get_account_balance(business.id, ledger_service.CASH) == -5000
        assert ledger_service.get_account_balance(business.id, ledger_service.ACCOUNTS_PAYABLE) == 4600
        assert ledger_service.trial_balance(business.id)["balanced"]

    def test_blends_with_existing_stock(self, db_session, store, stocked_product, buy):
        buy(stocked_product, 2, 4800)
        summary = inventory_service.get_inventory_summary(store.id, stocked_product.id)
        # (20 * 600 + 12 * 800) / 32
        assert summary["qty_on_hand_base"] == 32
        assert summary["avg_cost_base_pence"] == 675

    @pytest.mark.parametrize("pack_cost,cogs", [(4801, 1), (4799, -1)])
    def test_inventory_matches_stock_value_when_pack_cost_rounds(self, db_session, business, store, product, buy, pack_cost, cogs):
        invoice = buy(product, 1, pack_cost)

        summary = inventory_service.get_inventory_summary(store.id, product.id)
        assert summary["avg_cost_base_pence"] == 800
        stock_value = summary["qty_on_hand_base"] * summary["avg_cost_base_pence"]
        assert ledger_service.get_account_balance(business.id, ledger_service.INVENTORY) == stock_value == 4800
        assert ledger_service.get_account_balance(business.id, ledger_service.COST_OF_GOODS_SOLD) == cogs
        assert invoice.total_pence == pack_cost
        assert ledger_service.get_account_balance(business.id, ledger_service.ACCOUNTS_PAYABLE) == pack_cost
        assert ledger_service.trial_balance(business.id)["balanced"]

    def test_unpaid_purchase_goes_to_payables(self, db_session, business, product, buy):
        invoice = buy(product, 1, 4800)
        assert invoice.payment_status == "UNPAID"
        assert ledger_service.get_account_balance(business.id, ledger_service.ACCOUNTS_PAYABLE) == 4800

    def test_bank_payment_settles_in_full(self, db_session, business, product, buy):
        invoice = buy(product, 1, 4800, payments=[("BANK", 4800)])
        assert invoice.payment_status == "PAID"
        assert ledger_service.get_account_balance(business.id, ledger_service.BANK) == -4800
        assert ledger_service.get_account_balance(business.id, ledger_service.ACCOUNTS_PAYABLE) == 0

    def test_input_vat_when_registered(self, db_session, business, product, buy):
        business.vat_enabled = True
        db_session.commit()
        invoice = buy(product, 2, 4800)
        assert invoice.vat_pence == 1920
        assert invoice.total_pence == 11520
        assert ledger_service.get_account_balance(business.id, ledger_service.INVENTORY) == 9600
        assert ledger_service.get_account_balance(business.id, ledger_service.VAT_RECEIVABLE) == 1920
        assert ledger_service.get_account_balance(business.id, ledger_service.ACCOUNTS_PAYABLE) == 11520

    def test_overpayment_rejected(self, db_session, product, buy):
        with pytest.raises(ValidationError):
            buy(product, 1, 4800, payments=[("CASH", 5000)])
        assert db_session.query(PurchaseInvoice).count() == 0
        assert db_session.query(StockMovement).count() == 0

    def test_card_payment_not_accepted(self, db_session, product, buy):
        with pytest.raises(ValidationError):
            buy(product, 1, 4800, payments=[("CARD", 100)])

    def test_product_from_other_business_rejected(self, db_session, other_business, product, buy):
        with pytest.raises(PurchaseError):
            buy(product, 1, 4800, business_id=other_business.id)

    def test_purchase_audited(self, db_session, product, buy):
        invoice = buy(product, 1, 4800)
        log = db_session.query(AuditLog).filter_by(action="PURCHASE_CREATE").one()
        assert log.entity_id == invoice.id


class TestParsePurchasePayload:

    def test_parses_lines_and_payments(self, business, units, product):
        _, pack = units
        data = purchase_service.parse_purchase_payload(
            business_id=business.id,
            user_id=None,
            payload={
                "store_id": 3,
                "lines": [{"product_id": product.id, "unit_id": pack.id, "qty_in_unit": 2, "unit_cost_pence": 4800}],
                "payments": [{"method": "bank", "amount_pence": 100}],
            },
        )
        assert data.store_id == 3
        assert data.lines[0].unit_cost_pence == 4800
        assert data.payments[0].method == "BANK"

    def test_empty_lines_rejected(self, business):
        with pytest.raises(ValidationError):
            purchase_service.parse_purchase_payload(business_id=business.id, user_id=None, payload={"store_id": 1, "lines": []})


class TestRecordExpense:

    @pytest.mark.parametrize("method,credit_account", [
        ("CASH", ledger_service.CASH),
        ("BANK", ledger_service.BANK),
        ("CREDIT", ledger_service.ACCOUNTS_PAYABLE),
    ])
    def test_credit_side_follows_method(self, db_session, business, store, method, credit_account):
        expense = expense_service.record_expense(
            business_id=business.id, account_code="6100", amount=25000, payment_method=method, store_id=store.id,
        )
        assert expense.payment_method == method
        assert ledger_service.get_account_balance(business.id, "6100") == 25000
        expected = 25000 if credit_account == ledger_service.ACCOUNTS_PAYABLE else -25000
        assert ledger_service.get_account_balance(business.id, credit_account) == expected

    def test_non_expense_account_rejected(self, db_session, business):
        for code in (ledger_service.COST_OF_GOODS_SOLD, ledger_service.CASH, "9999"):
            with pytest.raises(ValidationError):
                expense_service.record_expense(business_id=business.id, account_code=code, amount=100)
        assert db_session.query(Expense).count() == 0

    def test_zero_amount_rejected(self, db_session, business):
        with pytest.raises(ValidationError):
            expense_service.record_expense(business_id=business.id, account_code="6200", amount=0)

    def test_foreign_store_rejected(self, db_session, other_business, store):
        with pytest.raises(ExpenseError):
            expense_service.record_expense(
                business_id=other_business.id, account_code="6200", amount=100, store_id=store.id,
            )

    def test_expense_audited(self, db_session, business, manager):
        expense = expense_service.record_expense(
            business_id=business.id, account_code="6600", amount=1500, user_id=manager.id, description="Flyers",
        )
        log = db_session.query(AuditLog).filter_by(action="EXPENSE_CREATE").one()
        assert log.entity_id == expense.id
        assert log.user_id == manager.id
        entries = ledger_service.get_entries_for_reference(business.id, "EXPENSE", expense.id)
        assert entries[0].description == "Flyers"

    def test_audit_listing_filters_by_action(self, db_session, business, product, buy):
        buy(product, 1, 4800)
        expense_service.record_expense(business_id=business.id, account_code="6100", amount=100)
        actions = [log.action for log in audit_service.list_audit_events(business.id)]
        assert actions == ["EXPENSE_CREATE", "PURCHASE_CREATE"]
        only = audit_service.list_audit_events(business.id, action="PURCHASE_CREATE")
        assert [log.action for log in only] == ["PURCHASE_CREATE"]

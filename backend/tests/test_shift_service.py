# Overview: Pytest coverage for till shifts, cash drawer entries and closing reconciliation.

import pytest

from poscore.models import AuditLog, CashDrawerEntry, Customer, Expense, RiskAlert, ShiftClosure
from poscore.services import ledger_service, sales_service, shift_service
from poscore.services.pricing import PaymentInput
from poscore.services.sales_service import SaleInput, SaleLineInput
from poscore.services.shift_service import (
    AlreadyClosed,
    InvalidApproval,
    NoOpenShift,
    OwnerOverrideApproval,
    PinApproval,
    ShiftNotFound,
    TillAlreadyOpen,
    VarianceReasonRequired,
)
from poscore.validation import ValidationError


@pytest.fixture
def open_shift(db_session, business, till, cashier):
    return shift_service.open_shift(
        business_id=business.id, till_id=till.id, user_id=cashier.id, opening_cash_pence=5000,
    )


@pytest.fixture
def till_sale(business, store, till, cashier, units, stocked_product):
    """till_sale(qty, payments) rings up pieces on the till."""
    piece, _ = units

    def _sale(qty, payments=(), **overrides):
        return sales_service.create_sale(SaleInput(
            business_id=business.id,
            store_id=store.id,
            till_id=till.id,
            cashier_user_id=cashier.id,
            lines=[SaleLineInput(product_id=stocked_product.id, unit_id=piece.id, qty_in_unit=qty)],
            payments=list(payments),
            **overrides,
        ))
    return _sale


class TestOpenShift:

    def test_open_records_float(self, db_session, open_shift):
        assert open_shift.status == "OPEN"
        assert open_shift.expected_cash_pence == 5000
        entry = db_session.query(CashDrawerEntry).filter_by(shift_id=open_shift.id).one()
        assert entry.entry_type == "OPEN_FLOAT"
        assert entry.before_expected_cash_pence == 0
        assert entry.after_expected_cash_pence == 5000

    def test_one_open_shift_per_till(self, db_session, business, till, manager, open_shift):
        with pytest.raises(TillAlreadyOpen):
            shift_service.open_shift(
                business_id=business.id, till_id=till.id, user_id=manager.id, opening_cash_pence=0,
            )

    def test_till_from_other_business_rejected(self, db_session, other_business, till, cashier):
        with pytest.raises(shift_service.ShiftError):
            shift_service.open_shift(
                business_id=other_business.id, till_id=till.id, user_id=cashier.id, opening_cash_pence=0,
            )

    def test_negative_float_rejected(self, db_session, business, till, cashier):
        with pytest.raises(ValidationError):
            shift_service.open_shift(
                business_id=business.id, till_id=till.id, user_id=cashier.id, opening_cash_pence=-1,
            )


class TestDrawerEntries:

    def test_cash_sales_raise_expected_cash(self, db_session, open_shift, till_sale):
        till_sale(12, [PaymentInput("CASH", 12000)])
        db_session.refresh(open_shift)
        assert open_shift.expected_cash_pence == 17000

    def test_card_sales_leave_drawer_alone(self, db_session, open_shift, till_sale):
        till_sale(2, [PaymentInput("CARD", 2000)])
        db_session.refresh(open_shift)
        assert open_shift.expected_cash_pence == 5000
        assert shift_service.payment_totals(open_shift.id) == {"CARD": 2000}

    def test_payment_counts_toward_shift_it_was_taken_in(self, db_session, business, till, cashier, manager, open_shift, till_sale):
        customer = Customer(business_id=business.id, name="Tab Customer")
        db_session.add(customer)
        db_session.commit()
        invoice = till_sale(2, payment_status="UNPAID", customer_id=customer.id)
        shift_service.close_shift(
            business_id=business.id, shift_id=open_shift.id, actual_cash_pence=5000, approval=PinApproval("2222"),
        )
        later = shift_service.open_shift(
            business_id=business.id, till_id=till.id, user_id=cashier.id, opening_cash_pence=0,
        )

        sales_service.add_payment(
            business_id=business.id, invoice_id=invoice.id, method="CARD", amount=2000, user_id=cashier.id,
        )

        assert invoice.shift_id == open_shift.id
        assert shift_service.payment_totals(open_shift.id) == {}
        assert shift_service.payment_totals(later.id) == {"CARD": 2000}

    def test_voided_card_payment_netted_out(self, db_session, business, manager, open_shift, till_sale):
        till_sale(1, [PaymentInput("CARD", 1000)])
        voided = till_sale(3, [PaymentInput("CARD", 3000)])
        sales_service.create_sales_return(
            business_id=business.id, invoice_id=voided.id, user_id=manager.id, return_type="VOID",
        )
        assert shift_service.payment_totals(open_shift.id) == {"CARD": 1000}

        closed = shift_service.close_shift(
            business_id=business.id, shift_id=open_shift.id, actual_cash_pence=5000, approval=PinApproval("2222"),
        )
        assert closed.card_total_pence == 1000

    def test_cash_refund_lowers_expected_cash(self, db_session, business, open_shift, till_sale, manager):
        invoice = till_sale(3)
        sales_service.create_sales_return(business_id=business.id, invoice_id=invoice.id, user_id=manager.id)
        db_session.refresh(open_shift)
        assert open_shift.expected_cash_pence == 5000
        refund = db_session.query(CashDrawerEntry).filter_by(entry_type="CASH_REFUND").one()
        assert refund.amount_pence == -3000

    def test_manual_entry_sign_enforced(self, db_session, business, till, open_shift):
        with pytest.raises(ValidationError):
            shift_service.record_cash_drawer_entry(
                business_id=business.id, till_id=till.id, entry_type="CASH_REFUND", amount_pence=500,
            )

    def test_lifecycle_entries_not_manual(self, db_session, business, till, open_shift):
        with pytest.raises(ValidationError):
            shift_service.record_cash_drawer_entry(
                business_id=business.id, till_id=till.id, entry_type="OPEN_FLOAT", amount_pence=500,
            )

    def test_entry_needs_open_shift(self, db_session, business, till):
        with pytest.raises(NoOpenShift):
            shift_service.record_cash_drawer_entry(
                business_id=business.id, till_id=till.id, entry_type="CASH_SALE", amount_pence=500,
            )


class TestPaidOut:

    def test_paid_out_books_expense_and_drawer(self, db_session, business, till, cashier, open_shift):
        expense = shift_service.record_paid_out(
            business_id=business.id,
            till_id=till.id,
            amount=700,
            expense_account_code="6500",
            reason="Taxi for delivery",
            user_id=cashier.id,
        )
        db_session.refresh(open_shift)
        assert open_shift.expected_cash_pence == 4300
        assert expense.shift_id == open_shift.id
        assert expense.payment_method == "CASH"
        assert ledger_service.get_account_balance(business.id, "6500") == 700
        assert ledger_service.get_account_balance(business.id, ledger_service.CASH) == -700

    def test_paid_out_rejects_non_expense_account(self, db_session, business, till, open_shift):
        with pytest.raises(ValidationError):
            shift_service.record_paid_out(
                business_id=business.id,
                till_id=till.id,
                amount=700,
                expense_account_code=ledger_service.COST_OF_GOODS_SOLD,
                reason="Not an expense",
            )

    def test_paid_out_without_shift(self, db_session, business, till):
        with pytest.raises(NoOpenShift):
            shift_service.record_paid_out(
                business_id=business.id,
                till_id=till.id,
                amount=700,
                expense_account_code="6000",
                reason="Milk",
            )
        assert db_session.query(Expense).count() == 0


class TestCloseShift:

    def test_variance_reason_required(self, db_session, business, manager, open_shift, till_sale):
        business.variance_reason_required = True
        db_session.commit()
        till_sale(12, [PaymentInput("CASH", 12000)])

        with pytest.raises(VarianceReasonRequired) as exc:
            shift_service.close_shift(
                business_id=business.id,
                shift_id=open_shift.id,
                actual_cash_pence=16500,
                approval=PinApproval("2222"),
            )
        assert exc.value.details["expected_cash_pence"] == 17000
        assert exc.value.details["variance_pence"] == -500

        shift = shift_service.close_shift(
            business_id=business.id,
            shift_id=open_shift.id,
            actual_cash_pence=16500,
            approval=PinApproval("2222"),
            variance_reason_code="CHANGE_ERROR",
            variance_reason="Gave too much change",
        )
        assert shift.status == "CLOSED"
        assert shift.expected_cash_pence == 17000
        assert shift.variance_pence == -500
        assert shift.approval_mode == "PIN"
        assert shift.approved_by_user_id == manager.id

        closure = db_session.query(ShiftClosure).filter_by(shift_id=shift.id).one()
        assert closure.opening_cash_pence == 5000
        assert closure.cash_entries_total_pence == 12000
        assert closure.counted_cash_pence == 16500
        assert closure.approved_by_username == "max"

    def test_reason_text_alone_is_enough(self, db_session, business, manager, open_shift):
        business.variance_reason_required = True
        db_session.commit()
        shift = shift_service.close_shift(
            business_id=business.id,
            shift_id=open_shift.id,
            actual_cash_pence=4900,
            approval=PinApproval("2222"),
            variance_reason="Coin dropped behind counter",
        )
        assert shift.variance_pence == -100

    def test_balanced_close(self, db_session, business, manager, open_shift):
        shift = shift_service.close_shift(
            business_id=business.id,
            shift_id=open_shift.id,
            actual_cash_pence=5000,
            approval=PinApproval("2222"),
        )
        assert shift.variance_pence == 0
        reconciliation = db_session.query(CashDrawerEntry).filter_by(entry_type="CLOSE_RECONCILIATION").one()
        assert reconciliation.reason_code == "RECONCILED"
        assert reconciliation.amount_pence == 0

    def test_unrecognised_pin_rejected(self, db_session, business, manager, open_shift):
        with pytest.raises(InvalidApproval):
            shift_service.close_shift(
                business_id=business.id,
                shift_id=open_shift.id,
                actual_cash_pence=5000,
                approval=PinApproval("9999"),
            )
        rejected = db_session.query(AuditLog).filter_by(action="SHIFT_CLOSE_REJECTED").one()
        assert rejected.success is False
        db_session.refresh(open_shift)
        assert open_shift.status == "OPEN"

    def test_missing_approval(self, db_session, business, open_shift):
        with pytest.raises(InvalidApproval):
            shift_service.close_shift(
                business_id=business.id, shift_id=open_shift.id, actual_cash_pence=5000, approval=None,
            )

    def test_owner_override(self, db_session, business, owner, open_shift):
        shift = shift_service.close_shift(
            business_id=business.id,
            shift_id=open_shift.id,
            actual_cash_pence=5000,
            approval=OwnerOverrideApproval(
                owner_password="Password123!",
                reason_code="MANAGER_UNAVAILABLE",
                justification="Manager off sick",
            ),
        )
        assert shift.approval_mode == "OWNER_OVERRIDE"
        assert shift.approved_by_user_id == owner.id
        assert shift.override_reason_code == "MANAGER_UNAVAILABLE"

    def test_owner_override_needs_justification(self, db_session, business, owner, open_shift):
        with pytest.raises(InvalidApproval):
            shift_service.close_shift(
                business_id=business.id,
                shift_id=open_shift.id,
                actual_cash_pence=5000,
                approval=OwnerOverrideApproval(
                    owner_password="Password123!",
                    reason_code="MANAGER_UNAVAILABLE",
                    justification="  ",
                ),
            )

    def test_already_closed(self, db_session, business, manager, open_shift):
        shift_service.close_shift(
            business_id=business.id, shift_id=open_shift.id, actual_cash_pence=5000, approval=PinApproval("2222"),
        )
        with pytest.raises(AlreadyClosed):
            shift_service.close_shift(
                business_id=business.id, shift_id=open_shift.id, actual_cash_pence=5000, approval=PinApproval("2222"),
            )

    def test_unknown_shift(self, db_session, business, manager):
        with pytest.raises(ShiftNotFound):
            shift_service.close_shift(
                business_id=business.id, shift_id=404, actual_cash_pence=0, approval=PinApproval("2222"),
            )

    def test_till_reopens_after_close(self, db_session, business, till, cashier, manager, open_shift):
        shift_service.close_shift(
            business_id=business.id, shift_id=open_shift.id, actual_cash_pence=5000, approval=PinApproval("2222"),
        )
        reopened = shift_service.open_shift(
            business_id=business.id, till_id=till.id, user_id=cashier.id, opening_cash_pence=2000,
        )
        assert reopened.id != open_shift.id

    def test_large_variance_raises_alert(self, db_session, business, manager, open_shift):
        shift_service.close_shift(
            business_id=business.id,
            shift_id=open_shift.id,
            actual_cash_pence=2500,
            approval=PinApproval("2222"),
        )
        alert = db_session.query(RiskAlert).filter_by(alert_type="CASH_VARIANCE").one()
        assert alert.severity == "HIGH"
        assert alert.details["variance_pence"] == -2500

    def test_small_variance_no_alert(self, db_session, business, manager, open_shift):
        shift_service.close_shift(
            business_id=business.id,
            shift_id=open_shift.id,
            actual_cash_pence=4900,
            approval=PinApproval("2222"),
        )
        assert db_session.query(RiskAlert).count() == 0

    def test_variance_at_threshold_no_alert(self, db_session, business, manager, open_shift):
        business.cash_variance_threshold_pence = 2000
        db_session.commit()
        shift_service.close_shift(
            business_id=business.id,
            shift_id=open_shift.id,
            actual_cash_pence=3000,
            approval=PinApproval("2222"),
        )
        assert db_session.query(RiskAlert).count() == 0

    def test_repeated_variances_alert_only_when_short_again(self, db_session, business, till, cashier, manager):
        def run_shift(actual):
            shift = shift_service.open_shift(
                business_id=business.id, till_id=till.id, user_id=cashier.id, opening_cash_pence=5000,
            )
            return shift_service.close_shift(
                business_id=business.id, shift_id=shift.id, actual_cash_pence=actual, approval=PinApproval("2222"),
            )

        run_shift(4900)
        run_shift(4900)
        run_shift(5000)
        assert db_session.query(RiskAlert).count() == 0

        short = run_shift(4900)
        alert = db_session.query(RiskAlert).filter_by(alert_type="CASH_VARIANCE").one()
        assert alert.severity == "MEDIUM"
        assert alert.reference_id == short.id


class TestShiftSummary:

    def test_summary_includes_closure(self, db_session, business, manager, open_shift, till_sale):
        till_sale(1, [PaymentInput("CARD", 1000)])
        shift_service.close_shift(
            business_id=business.id, shift_id=open_shift.id, actual_cash_pence=5000, approval=PinApproval("2222"),
        )
        summary = shift_service.get_shift_summary(business.id, open_shift.id)
        assert summary["payment_totals"] == {"CARD": 1000}
        assert summary["cash_entries_by_type"]["OPEN_FLOAT"] == 5000
        assert summary["closure"]["card_total_pence"] == 1000

    def test_summary_scoped_to_business(self, db_session, other_business, open_shift):
        with pytest.raises(ShiftNotFound):
            shift_service.get_shift_summary(other_business.id, open_shift.id)

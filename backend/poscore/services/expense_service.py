# Overview: Service-layer operations for operating expenses.

from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..models import Business, Expense, Store
from ..time_utils import utcnow
from ..validation import ValidationError, amount_pence, choice, optional_text
from . import audit_service, ledger_service
from .concurrency import run_with_retry
from .ledger_service import credit, debit

EXPENSE_PAYMENT_METHODS = ("CASH", "BANK", "CREDIT")

_CREDIT_ACCOUNT_BY_METHOD = {
    "CASH": ledger_service.CASH,
    "BANK": ledger_service.BANK,
    "CREDIT": ledger_service.ACCOUNTS_PAYABLE,
}


class ExpenseError(Exception):
    """Raised for expense operation errors."""

    code = "EXPENSE_ERROR"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def validate_expense_account(account_code: str) -> str:
    code = str(account_code or "").strip()
    if code not in ledger_service.EXPENSE_ACCOUNT_CODES:
        raise ValidationError(
            "account_code must be an operating expense account",
            {"allowed": sorted(ledger_service.EXPENSE_ACCOUNT_CODES)},
        )
    return code


def insert_expense(
    *,
    business_id: int,
    account_code: str,
    amount: int,
    payment_method: str,
    store_id: int | None = None,
    shift_id: int | None = None,
    user_id: int | None = None,
    description: str | None = None,
    occurred_at: datetime | None = None,
) -> Expense:
    """Expense row plus its journal entry, inside the caller's transaction."""
    expense = Expense(
        business_id=business_id,
        store_id=store_id,
        shift_id=shift_id,
        user_id=user_id,
        account_code=account_code,
        amount_pence=amount,
        payment_method=payment_method,
        description=description,
        occurred_at=occurred_at or utcnow(),
    )
    db.session.add(expense)
    db.session.flush()

    ledger_service.post_journal_entry(
        business_id=business_id,
        description=description or f"Expense #{expense.id}",
        reference_type="EXPENSE",
        reference_id=expense.id,
        entry_date=expense.occurred_at,
        lines=[
            debit(account_code, amount),
            credit(_CREDIT_ACCOUNT_BY_METHOD[payment_method], amount),
        ],
        commit=False,
    )
    return expense


def record_expense(
    *,
    business_id: int,
    account_code: str,
    amount: int,
    payment_method: str = "CASH",
    store_id: int | None = None,
    user_id: int | None = None,
    description: str | None = None,
    occurred_at: datetime | None = None,
) -> Expense:
    """
    Record an expense paid from cash, bank, or left on account.

    Cash taken out of a till during a shift goes through
    shift_service.record_paid_out instead, so the drawer stays reconciled.
    """
    account_code = validate_expense_account(account_code)
    amount = amount_pence(amount, "amount_pence", allow_zero=False)
    payment_method = choice(payment_method, "payment_method", EXPENSE_PAYMENT_METHODS)
    description = optional_text(description)

    def _op() -> Expense:
        business = db.session.get(Business, business_id)
        if business is None or not business.is_active:
            raise ExpenseError("Business not found or inactive", {"business_id": business_id})
        if store_id is not None:
            store = db.session.query(Store).filter_by(id=store_id, business_id=business_id).first()
            if store is None:
                raise ExpenseError("Store not found in business", {"store_id": store_id})
        expense = insert_expense(
            business_id=business_id,
            account_code=account_code,
            amount=amount,
            payment_method=payment_method,
            store_id=store_id,
            user_id=user_id,
            description=description,
            occurred_at=occurred_at,
        )
        db.session.commit()
        return expense

    expense = run_with_retry(_op)
    audit_service.emit_audit_event(
        business_id=business_id,
        user_id=user_id,
        action="EXPENSE_CREATE",
        entity_type="EXPENSE",
        entity_id=expense.id,
        details={"account_code": account_code, "amount_pence": amount, "payment_method": payment_method},
    )
    return expense

# Overview: Service-layer operations for the double-entry ledger; encapsulates business logic and database work.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import func

from ..extensions import db
from ..models import Account, JournalEntry, JournalLine
from ..time_utils import utcnow
from ..validation import ValidationError, non_negative_int
from . import audit_service
from .concurrency import run_with_retry
"""
Ledger Invariants (authoritative)

- Every JournalEntry balances: sum(debit_pence) == sum(credit_pence).
- A line carries exactly one non-zero side; amounts are never negative.
- Entries are append-only. Reversals are new entries.
- The poster never touches inventory or invoices; callers own those.
- Posting inside a caller's transaction (commit=False) only flushes, so the
  entry commits or rolls back together with the document it describes.
"""


class LedgerError(Exception):
    """Raised for ledger posting errors."""

    code = "LEDGER_ERROR"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class AccountNotFound(LedgerError):
    code = "ACCOUNT_NOT_FOUND"


class UnbalancedEntry(LedgerError):
    code = "UNBALANCED_ENTRY"


CASH = "1000"
BANK = "1010"
ACCOUNTS_RECEIVABLE = "1100"
INVENTORY = "1200"
VAT_RECEIVABLE = "1300"
ACCOUNTS_PAYABLE = "2000"
VAT_PAYABLE = "2100"
RETAINED_EARNINGS = "3000"
SALES_REVENUE = "4000"
COST_OF_GOODS_SOLD = "5000"
OPERATING_EXPENSES = "6000"

# (code, name, type)
STANDARD_CHART_OF_ACCOUNTS: tuple[tuple[str, str, str], ...] = (
    (CASH, "Cash on Hand", "ASSET"),
    (BANK, "Bank", "ASSET"),
    (ACCOUNTS_RECEIVABLE, "Accounts Receivable", "ASSET"),
    (INVENTORY, "Inventory", "ASSET"),
    (VAT_RECEIVABLE, "VAT Receivable", "ASSET"),
    (ACCOUNTS_PAYABLE, "Accounts Payable", "LIABILITY"),
    (VAT_PAYABLE, "VAT Payable", "LIABILITY"),
    (RETAINED_EARNINGS, "Retained Earnings", "EQUITY"),
    (SALES_REVENUE, "Sales Revenue", "INCOME"),
    (COST_OF_GOODS_SOLD, "Cost of Goods Sold", "EXPENSE"),
    (OPERATING_EXPENSES, "Operating Expenses", "EXPENSE"),
    ("6100", "Rent", "EXPENSE"),
    ("6200", "Utilities", "EXPENSE"),
    ("6300", "Salaries", "EXPENSE"),
    ("6400", "Repairs & Maintenance", "EXPENSE"),
    ("6500", "Fuel & Transport", "EXPENSE"),
    ("6600", "Marketing", "EXPENSE"),
)

EXPENSE_ACCOUNT_CODES = frozenset(code for code, _, kind in STANDARD_CHART_OF_ACCOUNTS if kind == "EXPENSE" and code != COST_OF_GOODS_SOLD)

# Normal balance side per account type
DEBIT_NORMAL_TYPES = frozenset({"ASSET", "EXPENSE"})


@dataclass(frozen=True)
class JournalLineInput:
    account_code: str
    debit_pence: int = 0
    credit_pence: int = 0
    memo: str | None = None


def debit(account_code: str, amount: int, memo: str | None = None) -> JournalLineInput:
    return JournalLineInput(account_code=account_code, debit_pence=amount, memo=memo)


def credit(account_code: str, amount: int, memo: str | None = None) -> JournalLineInput:
    return JournalLineInput(account_code=account_code, credit_pence=amount, memo=memo)


def ensure_chart_of_accounts(business_id: int) -> int:
    """
    Idempotently seed the standard chart for a business.

    Only missing codes are inserted; existing accounts are left alone.
    Flushes but does not commit. Returns the number of accounts created.
    """
    existing = {
        code for (code,) in db.session.query(Account.code).filter(Account.business_id == business_id).all()
    }
    created = 0
    for code, name, kind in STANDARD_CHART_OF_ACCOUNTS:
        if code in existing:
            continue
        db.session.add(Account(business_id=business_id, code=code, name=name, type=kind))
        created += 1
    if created:
        db.session.flush()
    return created


def _accounts_by_code(business_id: int, codes: set[str]) -> dict[str, Account]:
    rows = (
        db.session.query(Account)
        .filter(Account.business_id == business_id, Account.code.in_(codes))
        .all()
    )
    return {row.code: row for row in rows}


def _validate_lines(lines: Iterable[Optional[JournalLineInput]]) -> list[JournalLineInput]:
    """
    Drop empty (None or zero-amount) lines and reject malformed ones.
    """
    kept: list[JournalLineInput] = []
    for idx, line in enumerate(lines):
        if line is None:
            continue
        debit_pence = non_negative_int(line.debit_pence, f"lines[{idx}].debit_pence")
        credit_pence = non_negative_int(line.credit_pence, f"lines[{idx}].credit_pence")
        if debit_pence and credit_pence:
            raise ValidationError(
                f"lines[{idx}] cannot carry both a debit and a credit",
                {"account_code": line.account_code},
            )
        if not debit_pence and not credit_pence:
            continue
        if not line.account_code:
            raise ValidationError(f"lines[{idx}].account_code is required")
        kept.append(line)
    if not kept:
        raise ValidationError("Journal entry requires at least one non-zero line")
    return kept


def post_journal_entry(
    *,
    business_id: int,
    description: str,
    lines: Iterable[Optional[JournalLineInput]],
    reference_type: str | None = None,
    reference_id: int | None = None,
    entry_date: datetime | None = None,
    commit: bool = True,
) -> JournalEntry:
    """
    Persist one balanced journal entry.

    Account codes are resolved within the business. When any code is
    missing the standard chart is seeded and the lookup retried once; a code
    still missing raises AccountNotFound. Debits must equal credits or
    UnbalancedEntry is raised. In both cases nothing is persisted.

    commit=False posts inside the caller's transaction (flush only).
    """
    if not description or not str(description).strip():
        raise ValidationError("description is required")
    kept = _validate_lines(lines)

    total_debit = sum(line.debit_pence for line in kept)
    total_credit = sum(line.credit_pence for line in kept)
    if total_debit != total_credit:
        raise UnbalancedEntry(
            "Journal entry is not balanced",
            {"debit_pence": total_debit, "credit_pence": total_credit},
        )

    codes = {line.account_code for line in kept}
    accounts = _accounts_by_code(business_id, codes)
    if len(accounts) != len(codes):
        ensure_chart_of_accounts(business_id)
        accounts = _accounts_by_code(business_id, codes)
        missing = sorted(codes - set(accounts))
        if missing:
            if commit:
                db.session.rollback()
            raise AccountNotFound(
                f"Account code(s) not found: {', '.join(missing)}",
                {"business_id": business_id, "missing": missing},
            )

    entry = JournalEntry(
        business_id=business_id,
        description=str(description).strip()[:255],
        reference_type=reference_type,
        reference_id=reference_id,
        entry_date=entry_date or utcnow(),
    )
    db.session.add(entry)
    for line in kept:
        entry.lines.append(
            JournalLine(
                account_id=accounts[line.account_code].id,
                debit_pence=line.debit_pence,
                credit_pence=line.credit_pence,
                memo=line.memo,
            )
        )
    db.session.flush()

    if commit:
        db.session.commit()
    return entry


def get_entries_for_reference(business_id: int, reference_type: str, reference_id: int) -> list[JournalEntry]:
    return (
        db.session.query(JournalEntry)
        .filter_by(business_id=business_id, reference_type=reference_type, reference_id=reference_id)
        .order_by(JournalEntry.id.asc())
        .all()
    )


def get_account_balances(business_id: int) -> list[dict]:
    """
    Per-account debit/credit totals and the balance on the account's
    normal side (debit-normal for assets and expenses).
    """
    rows = (
        db.session.query(
            Account,
            func.coalesce(func.sum(JournalLine.debit_pence), 0),
            func.coalesce(func.sum(JournalLine.credit_pence), 0),
        )
        .outerjoin(JournalLine, JournalLine.account_id == Account.id)
        .filter(Account.business_id == business_id)
        .group_by(Account.id)
        .order_by(Account.code.asc())
        .all()
    )
    balances = []
    for account, debit_total, credit_total in rows:
        debit_total = int(debit_total)
        credit_total = int(credit_total)
        if account.type in DEBIT_NORMAL_TYPES:
            balance = debit_total - credit_total
        else:
            balance = credit_total - debit_total
        balances.append({
            "code": account.code,
            "name": account.name,
            "type": account.type,
            "debit_pence": debit_total,
            "credit_pence": credit_total,
            "balance_pence": balance,
        })
    return balances


def get_account_balance(business_id: int, account_code: str) -> int:
    for row in get_account_balances(business_id):
        if row["code"] == account_code:
            return row["balance_pence"]
    return 0


def trial_balance(business_id: int) -> dict:
    accounts = get_account_balances(business_id)
    total_debit = sum(row["debit_pence"] for row in accounts)
    total_credit = sum(row["credit_pence"] for row in accounts)
    return {
        "business_id": business_id,
        "accounts": accounts,
        "total_debit_pence": total_debit,
        "total_credit_pence": total_credit,
        "balanced": total_debit == total_credit,
    }


def parse_journal_lines(raw_lines) -> list[JournalLineInput]:
    if not isinstance(raw_lines, list) or not raw_lines:
        raise ValidationError("lines must be a non-empty list")
    lines = []
    for idx, raw in enumerate(raw_lines):
        if not isinstance(raw, dict):
            raise ValidationError(f"lines[{idx}] must be an object")
        lines.append(JournalLineInput(
            account_code=str(raw.get("account_code") or "").strip(),
            debit_pence=non_negative_int(raw.get("debit_pence") or 0, f"lines[{idx}].debit_pence"),
            credit_pence=non_negative_int(raw.get("credit_pence") or 0, f"lines[{idx}].credit_pence"),
            memo=raw.get("memo"),
        ))
    return lines


def post_manual_entry(
    *,
    business_id: int,
    user_id: int | None,
    description: str,
    lines: list[JournalLineInput],
    entry_date: datetime | None = None,
) -> JournalEntry:
    """Standalone journal posting (adjustments, opening balances). Audited as JOURNAL_POST."""
    def _op() -> JournalEntry:
        return post_journal_entry(
            business_id=business_id,
            description=description,
            lines=lines,
            reference_type="MANUAL",
            entry_date=entry_date,
            commit=True,
        )

    entry = run_with_retry(_op)
    audit_service.emit_audit_event(
        business_id=business_id,
        user_id=user_id,
        action="JOURNAL_POST",
        entity_type="JOURNAL_ENTRY",
        entity_id=entry.id,
        details={"lines": len(entry.lines)},
    )
    return entry

# Overview: Service-layer operations for till shifts and cash drawer reconciliation.

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import (
    Business,
    CashDrawerEntry,
    SalesPayment,
    SalesReturn,
    Shift,
    ShiftClosure,
    Store,
    Till,
    User,
)
from ..time_utils import utcnow
from ..validation import (
    ValidationError,
    amount_pence,
    coerce_int,
    optional_text,
    required_text,
)
from . import audit_service, auth_service, expense_service, risk_service
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry
"""
Shift Invariants (authoritative)

- OPEN -> CLOSED only; a closed shift is never reopened.
- At most one OPEN shift per till (partial unique index).
- expected_cash_pence moves only through CashDrawerEntry rows, each
  recording the expected cash before and after.
- variance = counted cash - expected cash, fixed at close.
- Closing needs an approval (manager PIN or owner override). A business
  that requires variance reasons rejects a non-zero variance without one.
- The closure snapshot (ShiftClosure) is written in the same transaction
  as the status change.
"""

logger = logging.getLogger(__name__)

ENTRY_TYPES = (
    "OPEN_FLOAT",
    "CASH_SALE",
    "CASH_REFUND",
    "PAID_OUT_EXPENSE",
    "CLOSE_RECONCILIATION",
)

# Entry types written by the shift lifecycle itself, never by callers
SYSTEM_ENTRY_TYPES = frozenset({"OPEN_FLOAT", "CLOSE_RECONCILIATION"})
OUTFLOW_ENTRY_TYPES = frozenset({"CASH_REFUND", "PAID_OUT_EXPENSE"})

OVERRIDE_REASON_CODES = (
    "MANAGER_UNAVAILABLE",
    "PIN_FORGOTTEN",
    "END_OF_DAY",
    "EMERGENCY",
)

VARIANCE_REASON_CODES = (
    "COUNTING_ERROR",
    "CHANGE_ERROR",
    "UNRECORDED_PAID_OUT",
    "SUSPECTED_THEFT",
    "OTHER",
)


class ShiftError(Exception):
    """Raised for shift operation errors."""

    code = "SHIFT_ERROR"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ShiftNotFound(ShiftError):
    code = "SHIFT_NOT_FOUND"


class TillAlreadyOpen(ShiftError):
    code = "TILL_ALREADY_OPEN"


class NoOpenShift(ShiftError):
    code = "NO_OPEN_SHIFT"


class AlreadyClosed(ShiftError):
    code = "ALREADY_CLOSED"


class InvalidApproval(ShiftError):
    code = "INVALID_APPROVAL"


class VarianceReasonRequired(ShiftError):
    code = "VARIANCE_REASON_REQUIRED"


@dataclass(frozen=True)
class PinApproval:
    manager_pin: str


@dataclass(frozen=True)
class OwnerOverrideApproval:
    owner_password: str
    reason_code: str
    justification: str


def get_open_shift_for_till(till_id: int, *, lock: bool = False) -> Shift | None:
    query = db.session.query(Shift).filter_by(till_id=till_id, status="OPEN")
    if lock:
        query = lock_for_update(query)
    return query.first()


def append_drawer_entry(
    shift: Shift,
    *,
    entry_type: str,
    amount_pence: int,
    user_id: int | None = None,
    reason_code: str | None = None,
    reason: str | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
) -> CashDrawerEntry:
    """
    Append a drawer entry and move the shift's expected cash by its amount.

    Runs inside the caller's transaction; the shift row should already be
    locked by the caller.
    """
    if entry_type not in ENTRY_TYPES:
        raise ValidationError(f"Unknown cash drawer entry type {entry_type}")
    if shift.status != "OPEN":
        raise AlreadyClosed("Shift is closed", {"shift_id": shift.id})

    before = shift.expected_cash_pence
    after = before + amount_pence
    entry = CashDrawerEntry(
        business_id=shift.business_id,
        shift_id=shift.id,
        till_id=shift.till_id,
        user_id=user_id,
        entry_type=entry_type,
        amount_pence=amount_pence,
        before_expected_cash_pence=before,
        after_expected_cash_pence=after,
        reason_code=reason_code,
        reason=reason,
        reference_type=reference_type,
        reference_id=reference_id,
    )
    shift.expected_cash_pence = after
    db.session.add(entry)
    db.session.flush()
    return entry


def _till_in_business(business_id: int, till_id: int) -> Till | None:
    return (
        db.session.query(Till)
        .join(Store, Store.id == Till.store_id)
        .filter(Till.id == till_id, Store.business_id == business_id)
        .first()
    )


def open_shift(*, business_id: int, till_id: int, user_id: int, opening_cash_pence: int) -> Shift:
    """
    Open a shift on a till with a cash float.

    Raises TillAlreadyOpen when the till already has an OPEN shift,
    including when two opens race and the unique index rejects the loser.
    """
    opening = amount_pence(opening_cash_pence, "opening_cash_pence")

    def _op() -> Shift:
        begin_write_transaction()
        till = _till_in_business(business_id, till_id)
        if till is None or not till.is_active:
            raise ShiftError("Till not found in business or inactive", {"till_id": till_id})
        user = db.session.query(User).filter_by(id=user_id, business_id=business_id, is_active=True).first()
        if user is None:
            raise ShiftError("User not found in business", {"user_id": user_id})

        existing = get_open_shift_for_till(till.id)
        if existing is not None:
            raise TillAlreadyOpen(
                "Till already has an open shift",
                {"till_id": till.id, "shift_id": existing.id},
            )

        shift = Shift(
            business_id=business_id,
            store_id=till.store_id,
            till_id=till.id,
            user_id=user.id,
            status="OPEN",
            opening_cash_pence=opening,
            expected_cash_pence=0,
            opened_at=utcnow(),
        )
        db.session.add(shift)
        db.session.flush()

        append_drawer_entry(
            shift,
            entry_type="OPEN_FLOAT",
            amount_pence=opening,
            user_id=user.id,
            reason="Opening float",
            reference_type="SHIFT",
            reference_id=shift.id,
        )
        db.session.commit()
        return shift

    try:
        shift = run_with_retry(_op)
    except IntegrityError:
        raise TillAlreadyOpen("Till already has an open shift", {"till_id": till_id})

    audit_service.emit_audit_event(
        business_id=business_id,
        user_id=user_id,
        action="SHIFT_OPEN",
        entity_type="SHIFT",
        entity_id=shift.id,
        details={"till_id": till_id, "opening_cash_pence": opening},
    )
    return shift


def record_cash_drawer_entry(
    *,
    business_id: int,
    till_id: int,
    entry_type: str,
    amount_pence: int,
    user_id: int | None = None,
    reason_code: str | None = None,
    reason: str | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
) -> CashDrawerEntry:
    """
    Append a manual entry to the till's open shift.

    Money leaving the drawer (CASH_REFUND, PAID_OUT_EXPENSE) must be
    negative, CASH_SALE positive. OPEN_FLOAT and CLOSE_RECONCILIATION
    belong to the shift lifecycle and are rejected here.
    """
    if entry_type not in ENTRY_TYPES or entry_type in SYSTEM_ENTRY_TYPES:
        raise ValidationError(f"entry_type {entry_type} cannot be recorded manually")
    amount = coerce_int(amount_pence, "amount_pence")
    if amount == 0:
        raise ValidationError("amount_pence cannot be zero")
    if entry_type in OUTFLOW_ENTRY_TYPES and amount > 0:
        raise ValidationError(f"{entry_type} amounts must be negative")
    if entry_type not in OUTFLOW_ENTRY_TYPES and amount < 0:
        raise ValidationError(f"{entry_type} amounts must be positive")

    def _op() -> CashDrawerEntry:
        begin_write_transaction()
        till = _till_in_business(business_id, till_id)
        if till is None:
            raise ShiftError("Till not found in business", {"till_id": till_id})
        shift = get_open_shift_for_till(till.id, lock=True)
        if shift is None:
            raise NoOpenShift("Till has no open shift", {"till_id": till_id})
        entry = append_drawer_entry(
            shift,
            entry_type=entry_type,
            amount_pence=amount,
            user_id=user_id,
            reason_code=reason_code,
            reason=optional_text(reason),
            reference_type=reference_type,
            reference_id=reference_id,
        )
        db.session.commit()
        return entry

    return run_with_retry(_op)


def record_paid_out(
    *,
    business_id: int,
    till_id: int,
    amount: int,
    expense_account_code: str,
    reason: str,
    user_id: int | None = None,
):
    """
    Pay an expense out of the till drawer during a shift.

    Writes the Expense (Dr expense account, Cr Cash) and a negative
    PAID_OUT_EXPENSE drawer entry in one transaction.
    """
    amount = amount_pence(amount, "amount_pence", allow_zero=False)
    account_code = expense_service.validate_expense_account(expense_account_code)
    reason = required_text(reason, "reason")

    def _op():
        begin_write_transaction()
        till = _till_in_business(business_id, till_id)
        if till is None:
            raise ShiftError("Till not found in business", {"till_id": till_id})
        shift = get_open_shift_for_till(till.id, lock=True)
        if shift is None:
            raise NoOpenShift("Till has no open shift", {"till_id": till_id})

        expense = expense_service.insert_expense(
            business_id=business_id,
            account_code=account_code,
            amount=amount,
            payment_method="CASH",
            store_id=till.store_id,
            shift_id=shift.id,
            user_id=user_id,
            description=reason,
        )
        append_drawer_entry(
            shift,
            entry_type="PAID_OUT_EXPENSE",
            amount_pence=-amount,
            user_id=user_id,
            reason=reason,
            reference_type="EXPENSE",
            reference_id=expense.id,
        )
        db.session.commit()
        return expense

    expense = run_with_retry(_op)
    audit_service.emit_audit_event(
        business_id=business_id,
        user_id=user_id,
        action="CASH_PAID_OUT",
        entity_type="EXPENSE",
        entity_id=expense.id,
        reason=reason,
        details={"till_id": till_id, "amount_pence": amount, "account_code": account_code},
    )
    return expense


def payment_totals(shift_id: int) -> dict[str, int]:
    """
    Tender taken while the shift was open, summed per method.

    Payments count toward the shift they were taken in, not the shift the
    invoice was raised in. Refunds issued during the shift are netted out:
    a VOID gives back each payment by its own method, a RETURN gives back
    the amount paid by its refund method.
    """
    rows = (
        db.session.query(SalesPayment.method, func.coalesce(func.sum(SalesPayment.amount_pence), 0))
        .filter(SalesPayment.shift_id == shift_id)
        .group_by(SalesPayment.method)
        .all()
    )
    totals = {method: int(total) for method, total in rows}

    for sales_return in db.session.query(SalesReturn).filter_by(shift_id=shift_id):
        if sales_return.type == "VOID":
            refunds = [(p.method, p.amount_pence) for p in sales_return.invoice.payments]
        else:
            refunds = [(
                sales_return.refund_method,
                sales_return.refund_cash_pence + sales_return.refund_bank_pence,
            )]
        for method, amount in refunds:
            if amount:
                totals[method] = totals.get(method, 0) - amount
    return totals


def _verify_approval(business_id: int, approval) -> tuple[User | None, str, str | None]:
    """Returns (approver, mode, failure reason)."""
    if isinstance(approval, PinApproval):
        approver = auth_service.find_approver_by_pin(business_id, approval.manager_pin)
        if approver is None:
            return None, "PIN", "Manager PIN not recognised"
        return approver, "PIN", None
    if isinstance(approval, OwnerOverrideApproval):
        if approval.reason_code not in OVERRIDE_REASON_CODES:
            return None, "OWNER_OVERRIDE", "Override reason code not allowed"
        if not (approval.justification or "").strip():
            return None, "OWNER_OVERRIDE", "Override justification is required"
        owner = auth_service.find_owner_by_password(business_id, approval.owner_password)
        if owner is None:
            return None, "OWNER_OVERRIDE", "Owner password not recognised"
        return owner, "OWNER_OVERRIDE", None
    return None, "UNKNOWN", "Approval is required"


def close_shift(
    *,
    business_id: int,
    shift_id: int,
    actual_cash_pence: int,
    approval: PinApproval | OwnerOverrideApproval | None,
    actor_user_id: int | None = None,
    variance_reason_code: str | None = None,
    variance_reason: str | None = None,
    notes: str | None = None,
) -> Shift:
    """
    Close an OPEN shift against a counted cash amount.

    Checks run in order: shift exists in the business (ShiftNotFound),
    still OPEN (AlreadyClosed), approval verifies (InvalidApproval, audited),
    variance reason present when the business requires one
    (VarianceReasonRequired). Only then is anything written.
    """
    actual = amount_pence(actual_cash_pence, "actual_cash_pence")
    variance_reason = optional_text(variance_reason, max_length=2000)
    notes = optional_text(notes, max_length=2000)
    if variance_reason_code is not None:
        variance_reason_code = str(variance_reason_code).strip().upper() or None
        if variance_reason_code is not None and variance_reason_code not in VARIANCE_REASON_CODES:
            raise ValidationError(
                "variance_reason_code is not recognised",
                {"allowed": list(VARIANCE_REASON_CODES)},
            )

    def _op() -> Shift:
        begin_write_transaction()
        shift = lock_for_update(
            db.session.query(Shift).filter_by(id=shift_id, business_id=business_id)
        ).first()
        if shift is None:
            raise ShiftNotFound("Shift not found", {"shift_id": shift_id})
        if shift.status != "OPEN":
            raise AlreadyClosed("Shift is already closed", {"shift_id": shift.id})

        approver, mode, failure = _verify_approval(business_id, approval)
        if approver is None:
            raise InvalidApproval(failure, {"shift_id": shift.id, "approval_mode": mode})

        expected = shift.expected_cash_pence
        variance = actual - expected
        business = db.session.get(Business, business_id)
        if (
            variance != 0
            and business.variance_reason_required
            and not (variance_reason or variance_reason_code)
        ):
            raise VarianceReasonRequired(
                "A reason is required for a cash variance",
                {"expected_cash_pence": expected, "actual_cash_pence": actual, "variance_pence": variance},
            )

        totals = payment_totals(shift.id)
        now = utcnow()
        override = approval if mode == "OWNER_OVERRIDE" else None

        append_drawer_entry(
            shift,
            entry_type="CLOSE_RECONCILIATION",
            amount_pence=0,
            user_id=actor_user_id,
            reason_code="RECONCILED" if variance == 0 else ("OVER" if variance > 0 else "SHORT"),
            reason=variance_reason or notes or ("Till closed (owner override)" if override else "Till closed"),
            reference_type="SHIFT",
            reference_id=shift.id,
        )

        db.session.add(ShiftClosure(
            shift_id=shift.id,
            business_id=business_id,
            schema_version=ShiftClosure.SCHEMA_VERSION,
            opening_cash_pence=shift.opening_cash_pence,
            cash_entries_total_pence=expected - shift.opening_cash_pence,
            expected_cash_pence=expected,
            counted_cash_pence=actual,
            variance_pence=variance,
            card_total_pence=totals.get("CARD", 0),
            transfer_total_pence=totals.get("TRANSFER", 0),
            mobile_money_total_pence=totals.get("MOBILE_MONEY", 0),
            variance_reason_code=variance_reason_code,
            variance_reason=variance_reason,
            approval_mode=mode,
            approved_by_user_id=approver.id,
            approved_by_username=approver.username,
            approved_by_role=approver.role,
            override_reason_code=override.reason_code if override else None,
            override_justification=override.justification.strip() if override else None,
            closed_by_user_id=actor_user_id,
            closed_at=now,
        ))

        shift.status = "CLOSED"
        shift.actual_cash_pence = actual
        shift.variance_pence = variance
        shift.card_total_pence = totals.get("CARD", 0)
        shift.transfer_total_pence = totals.get("TRANSFER", 0)
        shift.mobile_money_total_pence = totals.get("MOBILE_MONEY", 0)
        shift.variance_reason_code = variance_reason_code
        shift.variance_reason = variance_reason
        shift.approval_mode = mode
        shift.approved_by_user_id = approver.id
        shift.override_reason_code = override.reason_code if override else None
        shift.override_justification = override.justification.strip() if override else None
        shift.closed_by_user_id = actor_user_id
        shift.notes = notes
        shift.closed_at = now

        db.session.commit()
        return shift

    try:
        shift = run_with_retry(_op)
    except InvalidApproval as exc:
        audit_service.emit_audit_event(
            business_id=business_id,
            user_id=actor_user_id,
            action="SHIFT_CLOSE_REJECTED",
            entity_type="SHIFT",
            entity_id=shift_id,
            success=False,
            reason=str(exc),
            details=exc.details,
        )
        raise

    audit_service.emit_audit_event(
        business_id=business_id,
        user_id=actor_user_id,
        action="SHIFT_CLOSE",
        entity_type="SHIFT",
        entity_id=shift.id,
        reason=shift.variance_reason,
        details={
            "expected_cash_pence": shift.expected_cash_pence,
            "actual_cash_pence": shift.actual_cash_pence,
            "variance_pence": shift.variance_pence,
            "variance_reason_code": shift.variance_reason_code,
            "approval_mode": shift.approval_mode,
            "approved_by_user_id": shift.approved_by_user_id,
        },
    )
    risk_service.check_cash_variance(shift)
    return shift


def get_shift(business_id: int, shift_id: int) -> Shift:
    shift = db.session.query(Shift).filter_by(id=shift_id, business_id=business_id).first()
    if shift is None:
        raise ShiftNotFound("Shift not found", {"shift_id": shift_id})
    return shift


def get_shift_summary(business_id: int, shift_id: int) -> dict:
    shift = get_shift(business_id, shift_id)

    entries_by_type: dict[str, int] = {}
    for entry in shift.drawer_entries:
        entries_by_type[entry.entry_type] = entries_by_type.get(entry.entry_type, 0) + entry.amount_pence

    data = shift.to_dict()
    data["payment_totals"] = payment_totals(shift.id)
    data["cash_entries_by_type"] = entries_by_type
    data["drawer_entries"] = [entry.to_dict() for entry in shift.drawer_entries]
    data["closure"] = shift.closure.to_dict() if shift.closure else None
    return data

from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Shift(db.Model):
    """
    Till shift (cashier session).

    LIFECYCLE:
    - OPEN: sales on the till append CASH_SALE drawer entries
    - CLOSED: cash counted, variance recorded, approval captured

    Only one OPEN shift may exist per till; the partial unique index
    enforces it even when two opens race. A CLOSED shift is never reopened.

    expected_cash_pence is a running figure: every CashDrawerEntry moves it
    by its amount.
    """
    __tablename__ = "shifts"
    __table_args__ = (
        db.Index(
            "uq_shifts_one_open_per_till",
            "till_id",
            unique=True,
            sqlite_where=db.text("status = 'OPEN'"),
            postgresql_where=db.text("status = 'OPEN'"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    till_id = db.Column(db.Integer, db.ForeignKey("tills.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="OPEN", index=True)  # OPEN, CLOSED

    # Cash tracking (all amounts in pence)
    opening_cash_pence = db.Column(db.Integer, nullable=False, default=0)
    expected_cash_pence = db.Column(db.Integer, nullable=False, default=0)
    actual_cash_pence = db.Column(db.Integer, nullable=True)
    variance_pence = db.Column(db.Integer, nullable=True)  # actual - expected

    # Non-cash takings, derived from the shift's invoices at close
    card_total_pence = db.Column(db.Integer, nullable=True)
    transfer_total_pence = db.Column(db.Integer, nullable=True)
    mobile_money_total_pence = db.Column(db.Integer, nullable=True)

    variance_reason_code = db.Column(db.String(32), nullable=True)
    variance_reason = db.Column(db.Text, nullable=True)

    approval_mode = db.Column(db.String(16), nullable=True)  # PIN, OWNER_OVERRIDE
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    override_reason_code = db.Column(db.String(32), nullable=True)
    override_justification = db.Column(db.Text, nullable=True)
    closed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    till = db.relationship("Till", backref=db.backref("shifts", lazy=True))
    user = db.relationship("User", foreign_keys=[user_id])
    approved_by = db.relationship("User", foreign_keys=[approved_by_user_id])
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "store_id": self.store_id,
            "till_id": self.till_id,
            "user_id": self.user_id,
            "status": self.status,
            "opening_cash_pence": self.opening_cash_pence,
            "expected_cash_pence": self.expected_cash_pence,
            "actual_cash_pence": self.actual_cash_pence,
            "variance_pence": self.variance_pence,
            "card_total_pence": self.card_total_pence,
            "transfer_total_pence": self.transfer_total_pence,
            "mobile_money_total_pence": self.mobile_money_total_pence,
            "variance_reason_code": self.variance_reason_code,
            "variance_reason": self.variance_reason,
            "approval_mode": self.approval_mode,
            "approved_by_user_id": self.approved_by_user_id,
            "override_reason_code": self.override_reason_code,
            "override_justification": self.override_justification,
            "closed_by_user_id": self.closed_by_user_id,
            "notes": self.notes,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "version_id": self.version_id,
        }


class ShiftClosure(db.Model):
    """
    Immutable snapshot written once when a shift closes.

    schema_version is bumped whenever a column is added so that reports can
    tell old snapshots from new ones without guessing.
    """
    __tablename__ = "shift_closures"
    __table_args__ = {"sqlite_autoincrement": True}

    SCHEMA_VERSION = 1

    id = db.Column(db.Integer, primary_key=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=False, unique=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    schema_version = db.Column(db.Integer, nullable=False, default=SCHEMA_VERSION)

    opening_cash_pence = db.Column(db.Integer, nullable=False)
    cash_entries_total_pence = db.Column(db.Integer, nullable=False)
    expected_cash_pence = db.Column(db.Integer, nullable=False)
    counted_cash_pence = db.Column(db.Integer, nullable=False)
    variance_pence = db.Column(db.Integer, nullable=False)
    card_total_pence = db.Column(db.Integer, nullable=False, default=0)
    transfer_total_pence = db.Column(db.Integer, nullable=False, default=0)
    mobile_money_total_pence = db.Column(db.Integer, nullable=False, default=0)

    variance_reason_code = db.Column(db.String(32), nullable=True)
    variance_reason = db.Column(db.Text, nullable=True)

    approval_mode = db.Column(db.String(16), nullable=False)
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    approved_by_username = db.Column(db.String(64), nullable=False)
    approved_by_role = db.Column(db.String(16), nullable=False)
    override_reason_code = db.Column(db.String(32), nullable=True)
    override_justification = db.Column(db.Text, nullable=True)

    closed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=False)

    shift = db.relationship("Shift", backref=db.backref("closure", uselist=False))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shift_id": self.shift_id,
            "schema_version": self.schema_version,
            "opening_cash_pence": self.opening_cash_pence,
            "cash_entries_total_pence": self.cash_entries_total_pence,
            "expected_cash_pence": self.expected_cash_pence,
            "counted_cash_pence": self.counted_cash_pence,
            "variance_pence": self.variance_pence,
            "card_total_pence": self.card_total_pence,
            "transfer_total_pence": self.transfer_total_pence,
            "mobile_money_total_pence": self.mobile_money_total_pence,
            "variance_reason_code": self.variance_reason_code,
            "variance_reason": self.variance_reason,
            "approval_mode": self.approval_mode,
            "approved_by_user_id": self.approved_by_user_id,
            "approved_by_username": self.approved_by_username,
            "approved_by_role": self.approved_by_role,
            "override_reason_code": self.override_reason_code,
            "override_justification": self.override_justification,
            "closed_by_user_id": self.closed_by_user_id,
            "closed_at": to_utc_z(self.closed_at),
        }


class CashDrawerEntry(db.Model):
    """
    Append-only movement of expected cash within a shift.

    entry_type: OPEN_FLOAT, CASH_SALE, CASH_REFUND, PAID_OUT_EXPENSE,
    CLOSE_RECONCILIATION. amount_pence is signed; money leaving the drawer
    is negative.
    """
    __tablename__ = "cash_drawer_entries"
    __table_args__ = (
        db.Index("ix_cash_drawer_entries_shift", "shift_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=False)
    till_id = db.Column(db.Integer, db.ForeignKey("tills.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    entry_type = db.Column(db.String(32), nullable=False, index=True)
    amount_pence = db.Column(db.Integer, nullable=False)
    before_expected_cash_pence = db.Column(db.Integer, nullable=False)
    after_expected_cash_pence = db.Column(db.Integer, nullable=False)

    reason_code = db.Column(db.String(32), nullable=True)
    reason = db.Column(db.Text, nullable=True)
    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    shift = db.relationship("Shift", backref=db.backref("drawer_entries", lazy=True, order_by="CashDrawerEntry.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shift_id": self.shift_id,
            "till_id": self.till_id,
            "user_id": self.user_id,
            "entry_type": self.entry_type,
            "amount_pence": self.amount_pence,
            "before_expected_cash_pence": self.before_expected_cash_pence,
            "after_expected_cash_pence": self.after_expected_cash_pence,
            "reason_code": self.reason_code,
            "reason": self.reason,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "created_at": to_utc_z(self.created_at),
        }

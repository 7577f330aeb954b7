from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Account(db.Model):
    """Chart-of-accounts entry. Codes are unique within a business."""
    __tablename__ = "accounts"
    __table_args__ = (
        db.UniqueConstraint("business_id", "code", name="uq_accounts_business_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    code = db.Column(db.String(16), nullable=False)
    name = db.Column(db.String(128), nullable=False)
    type = db.Column(db.String(16), nullable=False)  # ASSET, LIABILITY, EQUITY, INCOME, EXPENSE

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "code": self.code,
            "name": self.name,
            "type": self.type,
        }


class JournalEntry(db.Model):
    """
    Balanced double-entry posting.

    APPEND-ONLY: Corrections are new entries (returns, voids), never edits.
    reference_type/reference_id point at the originating document
    (SALES_INVOICE, SALES_RETURN, PURCHASE_INVOICE, EXPENSE, ...).
    """
    __tablename__ = "journal_entries"
    __table_args__ = (
        db.Index("ix_journal_entries_reference", "business_id", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    description = db.Column(db.String(255), nullable=False)
    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)
    entry_date = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    lines = db.relationship(
        "JournalLine",
        backref="entry",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="JournalLine.id",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "description": self.description,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "entry_date": to_utc_z(self.entry_date),
            "lines": [line.to_dict() for line in self.lines],
        }


class JournalLine(db.Model):
    __tablename__ = "journal_lines"
    __table_args__ = (
        db.CheckConstraint("debit_pence >= 0 AND credit_pence >= 0", name="ck_journal_lines_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    journal_entry_id = db.Column(db.Integer, db.ForeignKey("journal_entries.id"), nullable=False, index=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)
    debit_pence = db.Column(db.Integer, nullable=False, default=0)
    credit_pence = db.Column(db.Integer, nullable=False, default=0)
    memo = db.Column(db.String(255), nullable=True)

    account = db.relationship("Account")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "account_code": self.account.code if self.account else None,
            "debit_pence": self.debit_pence,
            "credit_pence": self.credit_pence,
            "memo": self.memo,
        }


class Expense(db.Model):
    """
    Operating expense paid from cash, bank, or left on account (payable).
    Cash paid out of a till during a shift carries the shift_id.
    """
    __tablename__ = "expenses"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=True, index=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    account_code = db.Column(db.String(16), nullable=False)
    amount_pence = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(16), nullable=False)  # CASH, BANK, CREDIT
    description = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "store_id": self.store_id,
            "shift_id": self.shift_id,
            "user_id": self.user_id,
            "account_code": self.account_code,
            "amount_pence": self.amount_pence,
            "payment_method": self.payment_method,
            "description": self.description,
            "occurred_at": to_utc_z(self.occurred_at),
        }

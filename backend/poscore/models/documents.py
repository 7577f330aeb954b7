from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class StockTransfer(db.Model):
    """
    Inter-store stock transfer.

    LIFECYCLE:
    - PENDING: requested, no stock has moved
    - COMPLETED: approved; source decremented and destination incremented
      in one transaction
    - CANCELLED: withdrawn while pending, no stock change

    COMPLETED and CANCELLED are terminal.
    """
    __tablename__ = "stock_transfers"
    __table_args__ = (
        db.CheckConstraint("from_store_id <> to_store_id", name="ck_stock_transfers_distinct_stores"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    document_number = db.Column(db.String(32), nullable=False)
    from_store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    to_store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    reason = db.Column(db.Text, nullable=True)

    requested_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancel_reason = db.Column(db.Text, nullable=True)

    requested_at = db.Column(db.DateTime(timezone=True), nullable=False)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    lines = db.relationship("StockTransferLine", backref="transfer", lazy=True, order_by="StockTransferLine.id")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "document_number": self.document_number,
            "from_store_id": self.from_store_id,
            "to_store_id": self.to_store_id,
            "status": self.status,
            "reason": self.reason,
            "requested_by_user_id": self.requested_by_user_id,
            "approved_by_user_id": self.approved_by_user_id,
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "cancel_reason": self.cancel_reason,
            "requested_at": to_utc_z(self.requested_at),
            "approved_at": to_utc_z(self.approved_at) if self.approved_at else None,
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "lines": [line.to_dict() for line in self.lines],
        }


class StockTransferLine(db.Model):
    __tablename__ = "stock_transfer_lines"
    __table_args__ = (
        db.CheckConstraint("qty_base > 0", name="ck_stock_transfer_lines_qty_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transfer_id = db.Column(db.Integer, db.ForeignKey("stock_transfers.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    qty_base = db.Column(db.Integer, nullable=False)
    unit_cost_base_pence = db.Column(db.Integer, nullable=True)  # source average at completion

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "qty_base": self.qty_base,
            "unit_cost_base_pence": self.unit_cost_base_pence,
        }


class DocumentSequence(db.Model):
    """
    Atomic per-store document sequences.

    WHY: Prevent race conditions when generating document numbers
    (sales invoices, purchases, transfers).
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("store_id", "document_type", name="uq_doc_sequences_store_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    document_type = db.Column(db.String(32), nullable=False, index=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

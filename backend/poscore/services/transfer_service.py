# Overview: Service-layer operations for inter-store stock transfers; encapsulates business logic and database work.

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from ..extensions import db
from ..models import Product, StockTransfer, StockTransferLine, Store
from ..time_utils import utcnow
from ..validation import ValidationError, optional_text, positive_int
from . import audit_service, auth_service, inventory_service
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry
from .document_service import next_document_number
"""
Transfer Invariants (authoritative)

- PENDING -> COMPLETED or PENDING -> CANCELLED; both are terminal.
- Requesting moves no stock. Approval moves all of it or none of it: every
  line is decremented at the source (never below zero) and incremented at
  the destination in one transaction.
- The destination receives stock at the source's average cost, which then
  feeds the destination's weighted average.
- Approval requires the PIN of an active MANAGER or OWNER in the business.
"""


class TransferError(Exception):
    """Raised for transfer operation errors."""

    code = "TRANSFER_ERROR"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class TransferNotFound(TransferError):
    code = "TRANSFER_NOT_FOUND"


class InvalidPin(TransferError):
    code = "INVALID_PIN"


class NotPending(TransferError):
    code = "NOT_PENDING"


@dataclass(frozen=True)
class TransferLineInput:
    product_id: int
    qty_base: int


def _load_for_update(business_id: int, transfer_id: int) -> StockTransfer:
    transfer = lock_for_update(
        db.session.query(StockTransfer).filter_by(id=transfer_id, business_id=business_id)
    ).first()
    if transfer is None:
        raise TransferNotFound(f"Transfer {transfer_id} not found", {"transfer_id": transfer_id})
    return transfer


def request_stock_transfer(
    *,
    business_id: int,
    requested_by_user_id: int,
    from_store_id: int,
    to_store_id: int,
    lines: Sequence[TransferLineInput],
    reason: str | None = None,
) -> StockTransfer:
    """Create a PENDING transfer. No stock moves until approval."""
    from_store_id = positive_int(from_store_id, "from_store_id")
    to_store_id = positive_int(to_store_id, "to_store_id")
    if from_store_id == to_store_id:
        raise ValidationError("Cannot transfer to the same store")
    if not lines:
        raise ValidationError("Transfer requires at least one line")
    cleaned = [
        TransferLineInput(
            product_id=positive_int(line.product_id, f"lines[{idx}].product_id"),
            qty_base=positive_int(line.qty_base, f"lines[{idx}].qty_base"),
        )
        for idx, line in enumerate(lines)
    ]
    reason = optional_text(reason, max_length=2000)

    def _op() -> StockTransfer:
        begin_write_transaction()
        stores = (
            db.session.query(Store)
            .filter(Store.business_id == business_id, Store.id.in_([from_store_id, to_store_id]))
            .all()
        )
        if len(stores) != 2 or not all(store.is_active for store in stores):
            raise TransferError(
                "Both stores must be active and belong to the business",
                {"from_store_id": from_store_id, "to_store_id": to_store_id},
            )

        product_ids = {line.product_id for line in cleaned}
        active = {
            pid for (pid,) in db.session.query(Product.id).filter(
                Product.business_id == business_id,
                Product.id.in_(product_ids),
                Product.is_active.is_(True),
            ).all()
        }
        missing = sorted(product_ids - active)
        if missing:
            raise TransferError("Products not found or inactive", {"product_ids": missing})

        transfer = StockTransfer(
            business_id=business_id,
            document_number=next_document_number(store_id=from_store_id, document_type="STOCK_TRANSFER"),
            from_store_id=from_store_id,
            to_store_id=to_store_id,
            status="PENDING",
            reason=reason,
            requested_by_user_id=requested_by_user_id,
            requested_at=utcnow(),
        )
        db.session.add(transfer)
        db.session.flush()
        for line in cleaned:
            db.session.add(StockTransferLine(
                transfer_id=transfer.id,
                product_id=line.product_id,
                qty_base=line.qty_base,
            ))
        db.session.commit()
        return transfer

    transfer = run_with_retry(_op)
    audit_service.emit_audit_event(
        business_id=business_id,
        user_id=requested_by_user_id,
        action="TRANSFER_REQUEST",
        entity_type="STOCK_TRANSFER",
        entity_id=transfer.id,
        details={"from_store_id": from_store_id, "to_store_id": to_store_id, "lines": len(cleaned)},
    )
    return transfer


def approve_stock_transfer(*, business_id: int, transfer_id: int, manager_pin: str) -> StockTransfer:
    """
    Approve and complete a PENDING transfer.

    The PIN is checked first and outside the write transaction (bcrypt is
    slow). InvalidPin is audited. InsufficientStock on any line aborts the
    whole transfer.
    """
    approver = auth_service.find_approver_by_pin(business_id, manager_pin)
    if approver is None:
        audit_service.emit_audit_event(
            business_id=business_id,
            user_id=None,
            action="TRANSFER_APPROVE_REJECTED",
            entity_type="STOCK_TRANSFER",
            entity_id=transfer_id,
            success=False,
            reason="Manager PIN not recognised",
        )
        raise InvalidPin("Manager PIN not recognised", {"transfer_id": transfer_id})

    def _op() -> StockTransfer:
        begin_write_transaction()
        transfer = _load_for_update(business_id, transfer_id)
        if transfer.status != "PENDING":
            raise NotPending(
                f"Cannot approve transfer in {transfer.status} status",
                {"transfer_id": transfer.id, "status": transfer.status},
            )

        for line in transfer.lines:
            out = inventory_service.apply_stock_movement(
                store_id=transfer.from_store_id,
                product_id=line.product_id,
                delta_base=-line.qty_base,
                movement_type="TRANSFER_OUT",
                allow_negative=False,
                reference_type="STOCK_TRANSFER",
                reference_id=transfer.id,
                user_id=approver.id,
            )
            inventory_service.apply_stock_movement(
                store_id=transfer.to_store_id,
                product_id=line.product_id,
                delta_base=line.qty_base,
                movement_type="TRANSFER_IN",
                unit_cost_base_pence=out.unit_cost_base_pence,
                reference_type="STOCK_TRANSFER",
                reference_id=transfer.id,
                user_id=approver.id,
            )
            line.unit_cost_base_pence = out.unit_cost_base_pence

        now = utcnow()
        transfer.status = "COMPLETED"
        transfer.approved_by_user_id = approver.id
        transfer.approved_at = now
        transfer.completed_at = now
        db.session.commit()
        return transfer

    transfer = run_with_retry(_op)
    audit_service.emit_audit_event(
        business_id=business_id,
        user_id=approver.id,
        action="TRANSFER_APPROVE",
        entity_type="STOCK_TRANSFER",
        entity_id=transfer.id,
        details={"from_store_id": transfer.from_store_id, "to_store_id": transfer.to_store_id},
    )
    return transfer


def cancel_stock_transfer(
    *,
    business_id: int,
    transfer_id: int,
    user_id: int | None = None,
    reason: str | None = None,
) -> StockTransfer:
    reason = optional_text(reason, max_length=2000)

    def _op() -> StockTransfer:
        begin_write_transaction()
        transfer = _load_for_update(business_id, transfer_id)
        if transfer.status != "PENDING":
            raise NotPending(
                f"Cannot cancel transfer in {transfer.status} status",
                {"transfer_id": transfer.id, "status": transfer.status},
            )
        transfer.status = "CANCELLED"
        transfer.cancelled_by_user_id = user_id
        transfer.cancel_reason = reason
        transfer.cancelled_at = utcnow()
        db.session.commit()
        return transfer

    transfer = run_with_retry(_op)
    audit_service.emit_audit_event(
        business_id=business_id,
        user_id=user_id,
        action="TRANSFER_CANCEL",
        entity_type="STOCK_TRANSFER",
        entity_id=transfer.id,
        reason=reason,
    )
    return transfer


def get_transfer(business_id: int, transfer_id: int) -> StockTransfer:
    transfer = db.session.query(StockTransfer).filter_by(id=transfer_id, business_id=business_id).first()
    if transfer is None:
        raise TransferNotFound(f"Transfer {transfer_id} not found", {"transfer_id": transfer_id})
    return transfer

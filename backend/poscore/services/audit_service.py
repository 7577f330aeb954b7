# Overview: Service-layer operations for audit events; fire-and-forget writes after the business commit.

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import AuditLog

logger = logging.getLogger(__name__)


def emit_audit_event(
    *,
    business_id: int | None,
    user_id: int | None,
    action: str,
    entity_type: str | None = None,
    entity_id: int | None = None,
    success: bool = True,
    reason: str | None = None,
    details: dict | None = None,
) -> AuditLog | None:
    """
    Record an audit event in its own short transaction.

    Call only after the business transaction has committed (or been rolled
    back, for rejected attempts). A storage failure here is logged and
    swallowed: losing an audit row must never undo or fail the operation
    it describes.

    action examples:
    - SALE_CREATE, SALE_RETURN, SALE_VOID, SALE_PAYMENT
    - SHIFT_OPEN, SHIFT_CLOSE, SHIFT_CLOSE_REJECTED
    - TRANSFER_REQUEST, TRANSFER_APPROVE, TRANSFER_APPROVE_REJECTED, TRANSFER_CANCEL
    - STOCK_ADJUST, PURCHASE_CREATE, EXPENSE_CREATE, CASH_PAID_OUT
    - PERMISSION_DENIED
    """
    event = AuditLog(
        business_id=business_id,
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        success=success,
        reason=reason,
        details=details,
    )
    try:
        db.session.add(event)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to write audit event %s for %s %s", action, entity_type, entity_id)
        return None
    return event


def list_audit_events(business_id: int, *, action: str | None = None, limit: int = 100) -> list[AuditLog]:
    query = db.session.query(AuditLog).filter(AuditLog.business_id == business_id)
    if action:
        query = query.filter(AuditLog.action == action)
    return query.order_by(AuditLog.id.desc()).limit(limit).all()

# Overview: Service-layer risk checks that raise alerts for owner review. Never blocks the operation checked.

from __future__ import annotations

import logging

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Business, RiskAlert, SalesInvoice, SalesReturn, Shift
from ..time_utils import days_ago

logger = logging.getLogger(__name__)

VOID_FREQUENCY_THRESHOLD = 3
VOID_FREQUENCY_WINDOW_DAYS = 7


def _save_alert(alert: RiskAlert) -> RiskAlert | None:
    try:
        db.session.add(alert)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to record %s risk alert", alert.alert_type)
        return None
    return alert


def cash_variance_threshold(business: Business | None) -> int:
    if business is not None and business.cash_variance_threshold_pence is not None:
        return business.cash_variance_threshold_pence
    return current_app.config.get("DEFAULT_CASH_VARIANCE_THRESHOLD_PENCE", 2000)


def check_cash_variance(shift: Shift) -> RiskAlert | None:
    """
    Alert when a closed shift's variance exceeds the business threshold, or
    when it is non-zero and the same cashier already had repeated non-zero
    variances in the lookback window (other shifts only). A variance equal
    to the threshold does not alert.
    """
    try:
        business = db.session.get(Business, shift.business_id)
        threshold = cash_variance_threshold(business)
        lookback = current_app.config.get("CASH_VARIANCE_LOOKBACK_DAYS", 14)
        repeat_count = current_app.config.get("CASH_VARIANCE_REPEAT_COUNT", 2)

        variance = shift.variance_pence or 0
        recent = (
            db.session.query(Shift)
            .filter(
                Shift.business_id == shift.business_id,
                Shift.store_id == shift.store_id,
                Shift.user_id == shift.user_id,
                Shift.id != shift.id,
                Shift.status == "CLOSED",
                Shift.closed_at >= days_ago(lookback),
                Shift.variance_pence != 0,
            )
            .count()
        )
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Cash variance check failed for shift %s", shift.id)
        return None

    if variance == 0:
        return None
    over_threshold = abs(variance) > threshold
    if not over_threshold and recent < repeat_count:
        return None

    return _save_alert(RiskAlert(
        business_id=shift.business_id,
        store_id=shift.store_id,
        user_id=shift.user_id,
        alert_type="CASH_VARIANCE",
        severity="HIGH" if over_threshold else "MEDIUM",
        message="Shift closed with high cash variance" if over_threshold else "Cashier has repeated cash variances",
        reference_type="SHIFT",
        reference_id=shift.id,
        details={
            "variance_pence": variance,
            "threshold_pence": threshold,
            "recent_variance_count": recent + 1,
            "lookback_days": lookback,
        },
    ))


def check_sale_margin(invoice: SalesInvoice) -> RiskAlert | None:
    """Alert on a sale whose cost of goods exceeds its net revenue."""
    margin = invoice.subtotal_pence - invoice.cogs_pence
    if margin >= 0:
        return None
    return _save_alert(RiskAlert(
        business_id=invoice.business_id,
        store_id=invoice.store_id,
        user_id=invoice.cashier_user_id,
        alert_type="NEGATIVE_MARGIN_SALE",
        severity="HIGH",
        message="Sale recorded with negative gross margin",
        reference_type="SALES_INVOICE",
        reference_id=invoice.id,
        details={"gross_margin_pence": margin},
    ))


def check_void_frequency(business_id: int, user_id: int | None) -> RiskAlert | None:
    """Alert when a user has voided too many invoices in the last week."""
    if user_id is None:
        return None
    try:
        count = (
            db.session.query(SalesReturn)
            .filter(
                SalesReturn.business_id == business_id,
                SalesReturn.user_id == user_id,
                SalesReturn.type == "VOID",
                SalesReturn.created_at >= days_ago(VOID_FREQUENCY_WINDOW_DAYS),
            )
            .count()
        )
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Void frequency check failed for user %s", user_id)
        return None
    if count < VOID_FREQUENCY_THRESHOLD:
        return None
    return _save_alert(RiskAlert(
        business_id=business_id,
        user_id=user_id,
        alert_type="FREQUENT_VOIDS",
        severity="HIGH",
        message=f"User has {count} voids in the last {VOID_FREQUENCY_WINDOW_DAYS} days",
        details={"void_count": count, "threshold": VOID_FREQUENCY_THRESHOLD},
    ))

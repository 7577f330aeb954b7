# Overview: Service-layer operations for replaying sales queued by offline terminals.

from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Sequence

from flask import current_app

from ..extensions import db
from ..validation import ValidationError, optional_datetime
from .inventory_service import InventoryError
from .ledger_service import LedgerError
from .pricing import DISCOUNT_TYPES, PAYMENT_STATUSES, PaymentInput
from .sales_service import SaleError, SaleInput, SaleLineInput, record_sale
"""
Offline Sync Invariants (authoritative)

- Each payload becomes exactly one create_sale call keyed by
  external_ref "OFFLINE_SYNC:<payload id>", so replaying a payload or a
  whole unacknowledged batch never duplicates stock or ledger effects.
- Payloads run in a bounded worker pool; each worker has its own app
  context, session and transaction. One payload failing never affects
  its siblings.
- Results are reported in input order.
"""

logger = logging.getLogger(__name__)

EXTERNAL_REF_PREFIX = "OFFLINE_SYNC:"

# Failures reported back to the terminal with their message; anything else
# is logged and reported generically.
_EXPECTED_ERRORS = (ValidationError, SaleError, InventoryError, LedgerError)


@dataclass
class SyncResult:
    synced: list[str] = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)
    invoices: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"synced": self.synced, "failed": self.failed, "invoices": self.invoices}


def _whole_number(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return math.floor(number)


def _amount(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(number):
        return 0
    return max(0, round(number))


def _discount_type(value: Any) -> str:
    normalized = str(value or "").strip().upper()
    return normalized if normalized in DISCOUNT_TYPES else "NONE"


def _payment_status(value: Any) -> str:
    normalized = str(value or "").strip().upper()
    return normalized if normalized in PAYMENT_STATUSES else "PAID"


def _occurred_at(value: Any):
    try:
        return optional_datetime(value, "created_at")
    except ValidationError:
        return None


def payload_id(payload: Any) -> str | None:
    if not isinstance(payload, dict):
        return None
    raw = payload.get("id")
    if raw is None or isinstance(raw, bool):
        return None
    text = str(raw).strip()
    return text or None


def normalize_payload(*, business_id: int, actor_user_id: int | None, payload: dict) -> SaleInput:
    """
    Map one queued offline sale onto SaleInput.

    Lenient where a terminal may have stored odd values: unknown discount
    types become NONE, an unknown status becomes PAID, lines with no
    positive quantity are dropped and negative payments count as zero.
    Missing identifiers are still rejected.
    """
    sync_id = payload_id(payload)
    if sync_id is None:
        raise ValidationError("Offline payload requires an id")
    store_id = _whole_number(payload.get("store_id"))
    till_id = _whole_number(payload.get("till_id"))
    raw_lines = payload.get("lines")
    if not store_id or not till_id or not isinstance(raw_lines, list):
        raise ValidationError("Invalid offline payload", {"id": sync_id})

    lines = []
    for raw in raw_lines:
        if not isinstance(raw, dict):
            continue
        product_id = _whole_number(raw.get("product_id"))
        unit_id = _whole_number(raw.get("unit_id"))
        qty = _whole_number(raw.get("qty_in_unit"))
        if not product_id or not unit_id or qty is None or qty <= 0:
            continue
        discount_type = _discount_type(raw.get("discount_type"))
        lines.append(SaleLineInput(
            product_id=product_id,
            unit_id=unit_id,
            qty_in_unit=qty,
            discount_type=discount_type,
            discount_value=raw.get("discount_value") if discount_type != "NONE" else None,
        ))
    if not lines:
        raise ValidationError("No valid sale lines to sync", {"id": sync_id})

    external_ref = f"{EXTERNAL_REF_PREFIX}{sync_id}"
    payments = []
    raw_payments = payload.get("payments")
    for raw in raw_payments if isinstance(raw_payments, list) else []:
        if not isinstance(raw, dict):
            continue
        amount = _amount(raw.get("amount_pence"))
        if amount > 0:
            payments.append(PaymentInput(
                method=str(raw.get("method") or "").strip().upper(),
                amount_pence=amount,
                reference=external_ref,
            ))

    order_discount_type = _discount_type(payload.get("order_discount_type"))
    customer_id = _whole_number(payload.get("customer_id"))

    return SaleInput(
        business_id=business_id,
        store_id=store_id,
        till_id=till_id,
        cashier_user_id=actor_user_id,
        customer_id=customer_id or None,
        payment_status=_payment_status(payload.get("payment_status")),
        lines=lines,
        payments=payments,
        order_discount_type=order_discount_type,
        order_discount_value=payload.get("order_discount_value") if order_discount_type != "NONE" else None,
        external_ref=external_ref,
        occurred_at=_occurred_at(payload.get("created_at")),
    )


def _sync_one(app, business_id: int, actor_user_id: int | None, payload: Any) -> tuple[str | None, int | None, str | None]:
    """Run one payload in its own app context. Returns (id, invoice_id, error)."""
    sync_id = payload_id(payload)
    with app.app_context():
        try:
            if sync_id is None:
                raise ValidationError("Offline payload requires an id")
            data = normalize_payload(business_id=business_id, actor_user_id=actor_user_id, payload=payload)
            result = record_sale(data)
            return sync_id, result.invoice.id, None
        except _EXPECTED_ERRORS as exc:
            logger.info("Offline payload %s rejected: %s", sync_id, exc)
            return sync_id, None, str(exc)
        except Exception:
            logger.exception("Offline payload %s failed", sync_id)
            return sync_id, None, "Sync failed"
        finally:
            db.session.remove()


def sync_offline_batch(
    *,
    business_id: int,
    actor_user_id: int | None,
    payloads: Sequence[Any],
) -> SyncResult:
    """
    Replay a batch of queued offline sales.

    Raises ValidationError for an empty or oversized batch. Everything
    else is reported per payload in the result.
    """
    if not isinstance(payloads, (list, tuple)) or not payloads:
        raise ValidationError("payloads must be a non-empty list")
    max_batch = current_app.config.get("OFFLINE_SYNC_MAX_BATCH", 50)
    if len(payloads) > max_batch:
        raise ValidationError(
            f"Batch exceeds maximum of {max_batch} payloads",
            {"max_batch": max_batch, "received": len(payloads)},
        )

    app = current_app._get_current_object()
    workers = max(1, int(current_app.config.get("OFFLINE_SYNC_WORKERS", 5)))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        outcomes = list(pool.map(lambda p: _sync_one(app, business_id, actor_user_id, p), payloads))

    result = SyncResult()
    for index, (sync_id, invoice_id, error) in enumerate(outcomes):
        if error is None:
            result.synced.append(sync_id)
            result.invoices[sync_id] = invoice_id
        else:
            result.failed.append({"id": sync_id if sync_id is not None else f"#{index}", "error": error})
    logger.info(
        "Offline sync for business %s: %d synced, %d failed",
        business_id, len(result.synced), len(result.failed),
    )
    return result

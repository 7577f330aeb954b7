# Overview: Service-layer operations for inventory balances and costing; encapsulates business logic and database work.

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..extensions import db
from ..models import InventoryBalance, Product, ProductUnit, StockAdjustment, StockMovement, Store
from ..validation import ValidationError, coerce_int, positive_int, required_text
from . import audit_service, ledger_service
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry
from .pricing import round_half_up_div
"""
Inventory Invariants (authoritative)

- One InventoryBalance row per (store, product), created on first touch,
  never deleted. Quantities are base units; costs are pence per base unit.
- Every mutation goes through apply_stock_movement: the row is locked,
  updated, and a StockMovement with before/after quantities is appended in
  the same transaction. Nothing else writes qty_on_hand_base.
- Stock-out never changes the weighted average cost (WAC).
- Stock-in with a known unit cost recomputes WAC:
    (old_qty * old_avg + in_qty * in_cost) / (old_qty + in_qty), half-up.
  A negative old quantity carries no value and counts as zero.
- A movement that would leave the balance below zero is rejected unless the
  caller explicitly allows it (authorised adjustments only).
"""

logger = logging.getLogger(__name__)

MOVEMENT_TYPES = (
    "SALE",
    "PURCHASE",
    "ADJUSTMENT",
    "SALES_RETURN",
    "TRANSFER_OUT",
    "TRANSFER_IN",
)


class InventoryError(Exception):
    """Raised for inventory operation errors."""

    code = "INVENTORY_ERROR"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class InsufficientStock(InventoryError):
    code = "INSUFFICIENT_STOCK"


@dataclass(frozen=True)
class BalanceSnapshot:
    store_id: int
    product_id: int
    qty_on_hand_base: int
    avg_cost_base_pence: int
    previous_qty_base: int
    movement_id: int | None = None
    # cost per base unit the movement was valued at; None for uncosted stock-in
    unit_cost_base_pence: int | None = None


def to_base_qty(product_unit: ProductUnit, qty_in_unit: int) -> int:
    return qty_in_unit * product_unit.conversion_to_base


def weighted_average_cost(old_qty: int, old_avg: int, in_qty: int, in_cost: int) -> int:
    valued_qty = max(old_qty, 0)
    denominator = valued_qty + in_qty
    if denominator <= 0:
        return old_avg
    return round_half_up_div(valued_qty * old_avg + in_qty * in_cost, denominator)


def resolve_avg_cost(balance: InventoryBalance | None, product: Product | None) -> int:
    """Average cost, falling back to the product's default cost when unknown."""
    if balance is not None and balance.avg_cost_base_pence > 0:
        return balance.avg_cost_base_pence
    if product is not None:
        return product.default_cost_base_pence or 0
    return 0


def get_product_unit(product_id: int, unit_id: int) -> ProductUnit | None:
    return db.session.query(ProductUnit).filter_by(product_id=product_id, unit_id=unit_id).first()


def get_balance(store_id: int, product_id: int) -> InventoryBalance | None:
    return db.session.query(InventoryBalance).filter_by(store_id=store_id, product_id=product_id).first()


def _locked_balance(store_id: int, product_id: int) -> InventoryBalance:
    balance = lock_for_update(
        db.session.query(InventoryBalance).filter_by(store_id=store_id, product_id=product_id)
    ).first()
    if balance is None:
        balance = InventoryBalance(
            store_id=store_id,
            product_id=product_id,
            qty_on_hand_base=0,
            avg_cost_base_pence=0,
        )
        db.session.add(balance)
        db.session.flush()
    return balance


def apply_stock_movement(
    *,
    store_id: int,
    product_id: int,
    delta_base: int,
    movement_type: str,
    unit_cost_base_pence: int | None = None,
    allow_negative: bool = False,
    reference_type: str | None = None,
    reference_id: int | None = None,
    user_id: int | None = None,
) -> BalanceSnapshot:
    """
    Apply a signed base-unit change to one (store, product) balance.

    Runs inside the caller's transaction: flushes, never commits. Raises
    InsufficientStock (and writes nothing) when the result would be negative
    and allow_negative is False.
    """
    delta_base = coerce_int(delta_base, "delta_base")
    if delta_base == 0:
        raise ValidationError("delta_base cannot be zero")
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"Unknown movement type {movement_type}")

    product = db.session.get(Product, product_id)
    if product is None:
        raise InventoryError("Product not found", {"product_id": product_id})

    balance = _locked_balance(store_id, product_id)
    old_qty = balance.qty_on_hand_base
    old_avg = balance.avg_cost_base_pence
    new_qty = old_qty + delta_base

    if delta_base < 0:
        if new_qty < 0 and not allow_negative:
            raise InsufficientStock(
                "Insufficient stock",
                {
                    "store_id": store_id,
                    "product_id": product_id,
                    "on_hand_base": old_qty,
                    "requested_base": -delta_base,
                },
            )
        new_avg = old_avg
        movement_cost = resolve_avg_cost(balance, product)
    elif unit_cost_base_pence is None:
        new_avg = old_avg
        movement_cost = None
    else:
        movement_cost = coerce_int(unit_cost_base_pence, "unit_cost_base_pence")
        if movement_cost < 0:
            raise ValidationError("unit_cost_base_pence cannot be negative")
        new_avg = weighted_average_cost(old_qty, old_avg, delta_base, movement_cost)

    balance.qty_on_hand_base = new_qty
    balance.avg_cost_base_pence = new_avg

    movement = StockMovement(
        store_id=store_id,
        product_id=product_id,
        type=movement_type,
        qty_base=delta_base,
        before_qty_base=old_qty,
        after_qty_base=new_qty,
        unit_cost_base_pence=movement_cost,
        reference_type=reference_type,
        reference_id=reference_id,
        user_id=user_id,
    )
    db.session.add(movement)
    db.session.flush()

    return BalanceSnapshot(
        store_id=store_id,
        product_id=product_id,
        qty_on_hand_base=new_qty,
        avg_cost_base_pence=new_avg,
        previous_qty_base=old_qty,
        movement_id=movement.id,
        unit_cost_base_pence=movement_cost,
    )


def create_stock_adjustment(
    *,
    business_id: int,
    store_id: int,
    product_id: int,
    unit_id: int,
    qty_in_unit: int,
    reason: str,
    user_id: int | None = None,
    allow_negative: bool = False,
) -> StockAdjustment:
    """
    Manual stock correction in any configured unit.

    qty_in_unit is signed: negative writes stock off (Dr COGS / Cr
    Inventory), positive brings found stock back (Dr Inventory / Cr COGS),
    both valued at the current average cost. A write-off may take the
    balance below zero only when allow_negative is passed by an authorised
    caller.
    """
    qty_in_unit = coerce_int(qty_in_unit, "qty_in_unit")
    if qty_in_unit == 0:
        raise ValidationError("qty_in_unit cannot be zero")
    reason = required_text(reason, "reason")

    def _op() -> StockAdjustment:
        begin_write_transaction()
        store = db.session.query(Store).filter_by(id=store_id, business_id=business_id).first()
        if store is None:
            raise InventoryError("Store not found in business", {"store_id": store_id})
        product = db.session.query(Product).filter_by(id=product_id, business_id=business_id).first()
        if product is None:
            raise InventoryError("Product not found in business", {"product_id": product_id})
        product_unit = get_product_unit(product_id, unit_id)
        if product_unit is None:
            raise InventoryError("Unit not configured for product", {"product_id": product_id, "unit_id": unit_id})

        qty_base = to_base_qty(product_unit, qty_in_unit)
        unit_cost = resolve_avg_cost(get_balance(store_id, product_id), product)

        adjustment = StockAdjustment(
            business_id=business_id,
            store_id=store_id,
            product_id=product_id,
            unit_id=unit_id,
            qty_in_unit=qty_in_unit,
            qty_base=qty_base,
            unit_cost_base_pence=unit_cost,
            reason=reason,
            user_id=user_id,
        )
        db.session.add(adjustment)
        db.session.flush()

        apply_stock_movement(
            store_id=store_id,
            product_id=product_id,
            delta_base=qty_base,
            movement_type="ADJUSTMENT",
            unit_cost_base_pence=unit_cost if qty_base > 0 else None,
            allow_negative=allow_negative,
            reference_type="STOCK_ADJUSTMENT",
            reference_id=adjustment.id,
            user_id=user_id,
        )

        value = abs(qty_base) * unit_cost
        if value:
            if qty_base < 0:
                lines = [
                    ledger_service.debit(ledger_service.COST_OF_GOODS_SOLD, value, reason),
                    ledger_service.credit(ledger_service.INVENTORY, value, reason),
                ]
            else:
                lines = [
                    ledger_service.debit(ledger_service.INVENTORY, value, reason),
                    ledger_service.credit(ledger_service.COST_OF_GOODS_SOLD, value, reason),
                ]
            ledger_service.post_journal_entry(
                business_id=business_id,
                description=f"Stock adjustment #{adjustment.id}",
                reference_type="STOCK_ADJUSTMENT",
                reference_id=adjustment.id,
                lines=lines,
                commit=False,
            )

        db.session.commit()
        return adjustment

    adjustment = run_with_retry(_op)
    audit_service.emit_audit_event(
        business_id=business_id,
        user_id=user_id,
        action="STOCK_ADJUST",
        entity_type="STOCK_ADJUSTMENT",
        entity_id=adjustment.id,
        details={"store_id": store_id, "product_id": product_id, "qty_base": adjustment.qty_base},
    )
    return adjustment


def get_inventory_summary(store_id: int, product_id: int, *, movement_limit: int = 20) -> dict:
    product = db.session.get(Product, product_id)
    balance = get_balance(store_id, product_id)
    qty = balance.qty_on_hand_base if balance else 0
    avg_cost = resolve_avg_cost(balance, product)
    movements = (
        db.session.query(StockMovement)
        .filter_by(store_id=store_id, product_id=product_id)
        .order_by(StockMovement.id.desc())
        .limit(positive_int(movement_limit, "movement_limit"))
        .all()
    )
    return {
        "store_id": store_id,
        "product_id": product_id,
        "qty_on_hand_base": qty,
        "avg_cost_base_pence": avg_cost,
        "stock_value_pence": max(qty, 0) * avg_cost,
        "recent_movements": [m.to_dict() for m in movements],
    }

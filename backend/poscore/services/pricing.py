# Overview: Pure sale arithmetic (promotions, discounts, VAT, tender settlement). No database access.

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Sequence

from ..validation import ValidationError
"""
Pricing rules (authoritative)

All amounts are integer pence; quantities are integer base units.

Order of operations per sale:
1. Promotion: "buy N get M free" counted in base units,
   free = floor(qty_base / (N + M)) * M, valued at the base price and
   capped at the line gross.
2. Line discount on the promo-reduced gross:
   PERCENT clamped to [0, 100] and rounded half up, AMOUNT clamped to
   [0, promo-reduced gross].
3. Order discount on the sum of line nets, allocated back to lines in
   proportion to each line's net (largest remainder, so shares sum exactly).
4. VAT per line = round(line net * vat_rate_bps / 10000) when enabled.
"""

DISCOUNT_TYPES = ("NONE", "PERCENT", "AMOUNT")
PAYMENT_METHODS = ("CASH", "CARD", "TRANSFER", "MOBILE_MONEY")
BANK_METHODS = frozenset({"CARD", "TRANSFER", "MOBILE_MONEY"})
PAYMENT_STATUSES = ("PAID", "PART_PAID", "UNPAID")

BPS_DENOMINATOR = 10_000


def round_half_up_div(numerator: int, denominator: int) -> int:
    """Integer division rounded half away from zero."""
    if denominator <= 0:
        raise ValueError("denominator must be positive")
    if numerator >= 0:
        return (2 * numerator + denominator) // (2 * denominator)
    return -((2 * -numerator + denominator) // (2 * denominator))


def parse_discount_value(discount_type: str, value: Any) -> Decimal | None:
    if discount_type == "NONE" or value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError("discount value must be a number")
    try:
        parsed = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError("discount value must be a number")
    if not parsed.is_finite():
        raise ValidationError("discount value must be a number")
    if discount_type == "AMOUNT" and parsed != parsed.to_integral_value():
        raise ValidationError("AMOUNT discount must be whole pence")
    return parsed


def discount_amount(base_pence: int, discount_type: str, value: Decimal | None) -> int:
    """
    Discount in pence against base_pence, clamped so it never exceeds the base
    and never goes negative.
    """
    if base_pence <= 0 or discount_type == "NONE" or value is None:
        return 0
    if discount_type == "PERCENT":
        percent = min(max(value, Decimal(0)), Decimal(100))
        amount = (Decimal(base_pence) * percent / Decimal(100)).quantize(Decimal(1), rounding=ROUND_HALF_UP)
        return min(int(amount), base_pence)
    if discount_type == "AMOUNT":
        return min(max(int(value), 0), base_pence)
    raise ValidationError(f"Unknown discount type {discount_type}")


def promo_free_units(qty_base: int, buy_qty: int, get_qty: int) -> int:
    if buy_qty <= 0 or get_qty <= 0 or qty_base <= 0:
        return 0
    return (qty_base // (buy_qty + get_qty)) * get_qty


def allocate_proportionally(total: int, weights: Sequence[int]) -> list[int]:
    """
    Split total across weights by the largest-remainder method.

    Shares always sum to total exactly. Ties go to the earlier index.
    """
    weight_sum = sum(weights)
    if total <= 0 or weight_sum <= 0:
        return [0 for _ in weights]
    shares = []
    remainders = []
    for idx, weight in enumerate(weights):
        share, remainder = divmod(total * weight, weight_sum)
        shares.append(share)
        remainders.append((remainder, idx))
    leftover = total - sum(shares)
    for _, idx in sorted(remainders, key=lambda item: (-item[0], item[1]))[:leftover]:
        shares[idx] += 1
    return shares


@dataclass
class LinePricingInput:
    product_id: int
    unit_id: int
    qty_in_unit: int
    conversion_to_base: int
    base_price_pence: int
    vat_rate_bps: int = 0
    promo_buy_qty: int = 0
    promo_get_qty: int = 0
    discount_type: str = "NONE"
    discount_value: Decimal | None = None


@dataclass
class PricedLine:
    product_id: int
    unit_id: int
    qty_in_unit: int
    conversion_to_base: int
    qty_base: int
    unit_price_pence: int
    gross_pence: int
    promo_free_qty_base: int
    promo_discount_pence: int
    discount_type: str
    discount_value: Decimal | None
    line_discount_pence: int
    order_discount_pence: int = 0
    net_pence: int = 0
    vat_rate_bps: int = 0
    vat_pence: int = 0
    total_pence: int = 0

    @property
    def net_before_order_discount_pence(self) -> int:
        return self.gross_pence - self.promo_discount_pence - self.line_discount_pence


@dataclass
class PricedOrder:
    lines: list[PricedLine] = field(default_factory=list)
    gross_pence: int = 0
    promo_discount_pence: int = 0
    line_discount_pence: int = 0
    order_discount_pence: int = 0
    subtotal_pence: int = 0
    vat_pence: int = 0
    total_pence: int = 0


def price_line(item: LinePricingInput) -> PricedLine:
    qty_base = item.qty_in_unit * item.conversion_to_base
    unit_price = item.base_price_pence * item.conversion_to_base
    gross = unit_price * item.qty_in_unit

    free_units = promo_free_units(qty_base, item.promo_buy_qty, item.promo_get_qty)
    promo = min(free_units * item.base_price_pence, gross)

    line_discount = discount_amount(gross - promo, item.discount_type, item.discount_value)

    return PricedLine(
        product_id=item.product_id,
        unit_id=item.unit_id,
        qty_in_unit=item.qty_in_unit,
        conversion_to_base=item.conversion_to_base,
        qty_base=qty_base,
        unit_price_pence=unit_price,
        gross_pence=gross,
        promo_free_qty_base=free_units,
        promo_discount_pence=promo,
        discount_type=item.discount_type,
        discount_value=item.discount_value,
        line_discount_pence=line_discount,
        vat_rate_bps=item.vat_rate_bps,
    )


def price_order(
    items: Sequence[LinePricingInput],
    *,
    order_discount_type: str = "NONE",
    order_discount_value: Decimal | None = None,
    vat_enabled: bool = False,
) -> PricedOrder:
    lines = [price_line(item) for item in items]
    nets = [line.net_before_order_discount_pence for line in lines]

    order_discount = discount_amount(sum(nets), order_discount_type, order_discount_value)
    shares = allocate_proportionally(order_discount, nets)

    order = PricedOrder(lines=lines, order_discount_pence=order_discount)
    for line, net, share in zip(lines, nets, shares):
        line.order_discount_pence = share
        line.net_pence = net - share
        if vat_enabled and line.vat_rate_bps > 0:
            line.vat_pence = round_half_up_div(line.net_pence * line.vat_rate_bps, BPS_DENOMINATOR)
        else:
            line.vat_pence = 0
        line.total_pence = line.net_pence + line.vat_pence

        order.gross_pence += line.gross_pence
        order.promo_discount_pence += line.promo_discount_pence
        order.line_discount_pence += line.line_discount_pence
        order.subtotal_pence += line.net_pence
        order.vat_pence += line.vat_pence

    order.total_pence = order.subtotal_pence + order.vat_pence
    return order


@dataclass(frozen=True)
class PaymentInput:
    method: str
    amount_pence: int
    reference: str | None = None


@dataclass
class Settlement:
    payments: list[PaymentInput]
    cash_pence: int
    bank_pence: int
    paid_pence: int
    change_pence: int
    balance_due_pence: int
    payment_status: str


def derive_payment_status(total_pence: int, paid_pence: int) -> str:
    if paid_pence >= total_pence:
        return "PAID"
    if paid_pence > 0:
        return "PART_PAID"
    return "UNPAID"


def settle_payments(total_pence: int, payments: Sequence[PaymentInput], intent: str = "PAID") -> Settlement:
    """
    Apply tender to an invoice total.

    - zero amounts are dropped
    - no tender with intent PAID means exact cash for the total
    - cash over-tender becomes change and reduces the recorded cash
    - non-cash tender above the total is rejected (no change on cards)
    """
    tendered = [p for p in payments if p.amount_pence > 0]
    if not tendered and intent == "PAID" and total_pence > 0:
        tendered = [PaymentInput(method="CASH", amount_pence=total_pence)]

    bank = sum(p.amount_pence for p in tendered if p.method in BANK_METHODS)
    cash_tendered = sum(p.amount_pence for p in tendered if p.method == "CASH")
    if bank > total_pence:
        raise ValidationError(
            "Non-cash payments exceed the invoice total",
            {"total_pence": total_pence, "non_cash_pence": bank},
        )

    change = max(cash_tendered - (total_pence - bank), 0)
    remaining_change = change
    applied: list[PaymentInput] = []
    for payment in reversed(tendered):
        amount = payment.amount_pence
        if payment.method == "CASH" and remaining_change:
            taken = min(amount, remaining_change)
            amount -= taken
            remaining_change -= taken
        if amount > 0:
            applied.append(PaymentInput(method=payment.method, amount_pence=amount, reference=payment.reference))
    applied.reverse()

    cash = cash_tendered - change
    paid = bank + cash
    return Settlement(
        payments=applied,
        cash_pence=cash,
        bank_pence=bank,
        paid_pence=paid,
        change_pence=change,
        balance_due_pence=max(total_pence - paid, 0),
        payment_status=derive_payment_status(total_pence, paid),
    )

# Overview: Pytest coverage for sale arithmetic (promotions, discounts, VAT, tender).

from decimal import Decimal

import pytest

from poscore.services.pricing import (
    LinePricingInput,
    PaymentInput,
    allocate_proportionally,
    derive_payment_status,
    discount_amount,
    parse_discount_value,
    price_line,
    price_order,
    promo_free_units,
    round_half_up_div,
    settle_payments,
)
from poscore.validation import ValidationError


def _line(**overrides):
    values = dict(
        product_id=1,
        unit_id=1,
        qty_in_unit=1,
        conversion_to_base=1,
        base_price_pence=1000,
    )
    values.update(overrides)
    return LinePricingInput(**values)


class TestRounding:

    def test_half_rounds_away_from_zero(self):
        assert round_half_up_div(5, 2) == 3
        assert round_half_up_div(-5, 2) == -3
        assert round_half_up_div(4, 3) == 1

    def test_rejects_non_positive_denominator(self):
        with pytest.raises(ValueError):
            round_half_up_div(1, 0)


class TestPromotions:

    def test_buy_two_get_one(self):
        assert promo_free_units(7, 2, 1) == 2
        assert promo_free_units(2, 2, 1) == 0

    def test_no_promo_configured(self):
        assert promo_free_units(10, 0, 0) == 0

    def test_promo_counted_in_base_units(self):
        # 2 packs of 6 = 12 pieces, buy 3 get 1 -> 3 free pieces
        line = price_line(_line(qty_in_unit=2, conversion_to_base=6, promo_buy_qty=3, promo_get_qty=1))
        assert line.qty_base == 12
        assert line.unit_price_pence == 6000
        assert line.gross_pence == 12000
        assert line.promo_free_qty_base == 3
        assert line.promo_discount_pence == 3000


class TestDiscounts:

    def test_percent_rounds_half_up(self):
        assert discount_amount(999, "PERCENT", Decimal("12.5")) == 125

    def test_percent_clamped_to_hundred(self):
        assert discount_amount(500, "PERCENT", Decimal("150")) == 500
        assert discount_amount(500, "PERCENT", Decimal("-10")) == 0

    def test_amount_clamped_to_base(self):
        assert discount_amount(500, "AMOUNT", Decimal("800")) == 500

    def test_line_discount_applies_after_promo(self):
        line = price_line(_line(
            qty_in_unit=3, promo_buy_qty=2, promo_get_qty=1,
            discount_type="PERCENT", discount_value=Decimal("10"),
        ))
        assert line.promo_discount_pence == 1000
        assert line.line_discount_pence == 200
        assert line.net_before_order_discount_pence == 1800

    def test_parse_rejects_fractional_amount(self):
        with pytest.raises(ValidationError):
            parse_discount_value("AMOUNT", "1.5")

    def test_parse_rejects_non_numeric(self):
        with pytest.raises(ValidationError):
            parse_discount_value("PERCENT", "ten")

    def test_parse_none_type_ignores_value(self):
        assert parse_discount_value("NONE", "42") is None


class TestOrderPricing:

    def test_order_discount_allocated_exactly(self):
        assert allocate_proportionally(100, [1, 1, 1]) == [34, 33, 33]
        assert sum(allocate_proportionally(7, [3, 5, 11])) == 7

    def test_order_discount_and_vat(self):
        order = price_order(
            [
                _line(product_id=1, qty_in_unit=2, vat_rate_bps=2000),
                _line(product_id=2, qty_in_unit=1, base_price_pence=500),
            ],
            order_discount_type="AMOUNT",
            order_discount_value=Decimal("250"),
            vat_enabled=True,
        )
        first, second = order.lines
        assert first.order_discount_pence == 200
        assert second.order_discount_pence == 50
        assert first.net_pence == 1800
        assert first.vat_pence == 360
        assert second.vat_pence == 0
        assert order.subtotal_pence == 2250
        assert order.vat_pence == 360
        assert order.total_pence == 2610

    def test_vat_ignored_when_business_not_registered(self):
        order = price_order([_line(vat_rate_bps=2000)], vat_enabled=False)
        assert order.vat_pence == 0
        assert order.total_pence == 1000


class TestSettlement:

    def test_cash_over_tender_gives_change(self):
        settlement = settle_payments(2500, [PaymentInput("CASH", 3000)])
        assert settlement.change_pence == 500
        assert settlement.cash_pence == 2500
        assert settlement.payments[0].amount_pence == 2500
        assert settlement.payment_status == "PAID"

    def test_split_tender(self):
        settlement = settle_payments(2500, [PaymentInput("CARD", 1000), PaymentInput("CASH", 2000)])
        assert settlement.bank_pence == 1000
        assert settlement.cash_pence == 1500
        assert settlement.change_pence == 500

    def test_no_tender_paid_means_exact_cash(self):
        settlement = settle_payments(1200, [])
        assert settlement.cash_pence == 1200
        assert settlement.payment_status == "PAID"

    def test_unpaid_intent_without_tender(self):
        settlement = settle_payments(1200, [], "UNPAID")
        assert settlement.paid_pence == 0
        assert settlement.balance_due_pence == 1200
        assert settlement.payment_status == "UNPAID"

    def test_part_payment(self):
        settlement = settle_payments(1200, [PaymentInput("CASH", 200)], "PART_PAID")
        assert settlement.balance_due_pence == 1000
        assert settlement.payment_status == "PART_PAID"

    def test_card_above_total_rejected(self):
        with pytest.raises(ValidationError):
            settle_payments(1000, [PaymentInput("CARD", 1500)])

    def test_derive_payment_status(self):
        assert derive_payment_status(0, 0) == "PAID"
        assert derive_payment_status(100, 50) == "PART_PAID"
        assert derive_payment_status(100, 0) == "UNPAID"

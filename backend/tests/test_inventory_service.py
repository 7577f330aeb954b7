# Overview: Pytest coverage for stock balances, weighted average cost and adjustments.

import pytest

from poscore.models import AuditLog, StockAdjustment, StockMovement
from poscore.services import inventory_service, ledger_service
from poscore.services.inventory_service import InsufficientStock, InventoryError
from poscore.validation import ValidationError


class TestWeightedAverageCost:

    def test_blends_existing_and_incoming(self):
        assert inventory_service.weighted_average_cost(10, 600, 10, 800) == 700

    def test_rounds_half_up(self):
        # (1 * 100 + 2 * 101) / 3 = 100.67
        assert inventory_service.weighted_average_cost(1, 100, 2, 101) == 101

    def test_negative_balance_is_not_valued(self):
        assert inventory_service.weighted_average_cost(-5, 600, 10, 800) == 800


class TestApplyStockMovement:

    def test_receipt_updates_qty_and_average(self, db_session, store, product, add_stock):
        add_stock(store, product, 10, 600)
        snapshot = add_stock(store, product, 10, 800)
        assert snapshot.previous_qty_base == 10
        assert snapshot.qty_on_hand_base == 20
        assert snapshot.avg_cost_base_pence == 700

    def test_decrement_records_average_cost(self, db_session, store, stocked_product):
        snapshot = inventory_service.apply_stock_movement(
            store_id=store.id,
            product_id=stocked_product.id,
            delta_base=-4,
            movement_type="SALE",
        )
        db_session.commit()
        assert snapshot.qty_on_hand_base == 16
        movement = db_session.get(StockMovement, snapshot.movement_id)
        assert movement.before_qty_base == 20
        assert movement.after_qty_base == 16
        assert movement.unit_cost_base_pence == 600

    def test_insufficient_stock_writes_nothing(self, db_session, store, stocked_product, on_hand):
        with pytest.raises(InsufficientStock) as exc:
            inventory_service.apply_stock_movement(
                store_id=store.id,
                product_id=stocked_product.id,
                delta_base=-21,
                movement_type="SALE",
            )
        db_session.rollback()
        assert exc.value.details["on_hand_base"] == 20
        assert exc.value.details["requested_base"] == 21
        assert on_hand(store, stocked_product) == 20
        assert db_session.query(StockMovement).filter_by(type="SALE").count() == 0

    def test_allow_negative(self, db_session, store, stocked_product):
        snapshot = inventory_service.apply_stock_movement(
            store_id=store.id,
            product_id=stocked_product.id,
            delta_base=-25,
            movement_type="ADJUSTMENT",
            allow_negative=True,
        )
        db_session.commit()
        assert snapshot.qty_on_hand_base == -5

    def test_zero_delta_rejected(self, db_session, store, product):
        with pytest.raises(ValidationError):
            inventory_service.apply_stock_movement(
                store_id=store.id, product_id=product.id, delta_base=0, movement_type="SALE",
            )

    def test_unknown_movement_type_rejected(self, db_session, store, product):
        with pytest.raises(ValidationError):
            inventory_service.apply_stock_movement(
                store_id=store.id, product_id=product.id, delta_base=1, movement_type="GIFT",
            )

    def test_first_decrement_falls_back_to_default_cost(self, db_session, store, product):
        snapshot = inventory_service.apply_stock_movement(
            store_id=store.id,
            product_id=product.id,
            delta_base=-1,
            movement_type="ADJUSTMENT",
            allow_negative=True,
        )
        db_session.commit()
        assert snapshot.unit_cost_base_pence == 600
        assert snapshot.avg_cost_base_pence == 0

    def test_decrement_keeps_zero_average(self, db_session, store, product, add_stock):
        add_stock(store, product, 10, 0)
        snapshot = inventory_service.apply_stock_movement(
            store_id=store.id,
            product_id=product.id,
            delta_base=-2,
            movement_type="SALE",
        )
        db_session.commit()
        assert snapshot.unit_cost_base_pence == 600
        assert snapshot.avg_cost_base_pence == 0
        db_session.expire_all()
        balance = inventory_service.get_balance(store.id, product.id)
        assert balance.avg_cost_base_pence == 0
        assert balance.qty_on_hand_base == 8


class TestStockAdjustment:

    def test_write_off_in_packs(self, db_session, business, store, stocked_product, units, on_hand):
        _, pack = units
        adjustment = inventory_service.create_stock_adjustment(
            business_id=business.id,
            store_id=store.id,
            product_id=stocked_product.id,
            unit_id=pack.id,
            qty_in_unit=-1,
            reason="Damaged pack",
        )
        assert adjustment.qty_base == -6
        assert adjustment.unit_cost_base_pence == 600
        assert on_hand(store, stocked_product) == 14

        entries = ledger_service.get_entries_for_reference(business.id, "STOCK_ADJUSTMENT", adjustment.id)
        assert len(entries) == 1
        assert ledger_service.get_account_balance(business.id, ledger_service.COST_OF_GOODS_SOLD) == 3600
        assert db_session.query(AuditLog).filter_by(action="STOCK_ADJUST").count() == 1

    def test_found_stock_credits_cogs(self, db_session, business, store, stocked_product, units, on_hand):
        piece, _ = units
        inventory_service.create_stock_adjustment(
            business_id=business.id,
            store_id=store.id,
            product_id=stocked_product.id,
            unit_id=piece.id,
            qty_in_unit=2,
            reason="Found in back room",
        )
        assert on_hand(store, stocked_product) == 22
        assert ledger_service.get_account_balance(business.id, ledger_service.COST_OF_GOODS_SOLD) == -1200

    def test_write_off_cannot_go_negative(self, db_session, business, store, stocked_product, units, on_hand):
        _, pack = units
        with pytest.raises(InsufficientStock):
            inventory_service.create_stock_adjustment(
                business_id=business.id,
                store_id=store.id,
                product_id=stocked_product.id,
                unit_id=pack.id,
                qty_in_unit=-4,
                reason="Stock count",
            )
        assert on_hand(store, stocked_product) == 20
        assert db_session.query(StockAdjustment).count() == 0

    def test_reason_required(self, db_session, business, store, stocked_product, units):
        piece, _ = units
        with pytest.raises(ValidationError):
            inventory_service.create_stock_adjustment(
                business_id=business.id,
                store_id=store.id,
                product_id=stocked_product.id,
                unit_id=piece.id,
                qty_in_unit=-1,
                reason="  ",
            )

    def test_foreign_store_rejected(self, db_session, other_business, store, stocked_product, units):
        piece, _ = units
        with pytest.raises(InventoryError):
            inventory_service.create_stock_adjustment(
                business_id=other_business.id,
                store_id=store.id,
                product_id=stocked_product.id,
                unit_id=piece.id,
                qty_in_unit=-1,
                reason="Cross tenant",
            )


class TestInventorySummary:

    def test_summary_values_stock(self, db_session, store, stocked_product):
        summary = inventory_service.get_inventory_summary(store.id, stocked_product.id)
        assert summary["qty_on_hand_base"] == 20
        assert summary["avg_cost_base_pence"] == 600
        assert summary["stock_value_pence"] == 12000
        assert len(summary["recent_movements"]) == 1

"""
Inventory tests: the stock ledger, manual movements and production consumption.
"""

import logging
from decimal import Decimal

import pytest

from printshop.errors import InvalidStateError, ValidationError
from printshop.models import DomainEvent, InventoryItem, InventoryTransaction, MaterialConsumptionRule
from printshop.services import inventory_service, order_service
from printshop.validation import enforce_rules_consumption_rule


def _on_hand(db_session, item):
    return db_session.get(InventoryItem, item.id).qty_on_hand


def _proofless_rule(proofless_service, stock_item, qty_per_unit, tier_filter=None):
    return inventory_service.create_consumption_rule({
        "service_id": proofless_service.id,
        "inventory_item_id": stock_item.id,
        "qty_per_unit": qty_per_unit,
        "tier_filter": tier_filter,
    })


class TestMovements:

    def test_ledger_drives_on_hand(self, db_session, stock_item):
        inventory_service.record_movement(stock_item.id, transaction_type="RETURN", qty_change=2, reason="Unused")
        inventory_service.record_movement(stock_item.id, transaction_type="ADJUSTMENT", qty_change=-4, reason="Count")

        assert _on_hand(db_session, stock_item) == 8
        assert inventory_service.get_quantity_on_hand(stock_item.id) == 8
        types = [tx.transaction_type for tx in inventory_service.list_transactions(item_id=stock_item.id)]
        assert sorted(types) == ["ADJUSTMENT", "PURCHASE", "RETURN"]

    @pytest.mark.parametrize("tx_type,qty", [
        ("PURCHASE", 0),
        ("PURCHASE", -5),
        ("RETURN", -1),
        ("ADJUSTMENT", 0),
        ("CONSUMPTION", -1),
        ("THEFT", -1),
    ])
    def test_invalid_movements(self, db_session, stock_item, tx_type, qty):
        with pytest.raises(ValidationError):
            inventory_service.record_movement(stock_item.id, transaction_type=tx_type, qty_change=qty, reason="x")
        assert _on_hand(db_session, stock_item) == 10

    def test_reason_required(self, db_session, stock_item):
        with pytest.raises(ValidationError):
            inventory_service.record_movement(stock_item.id, transaction_type="PURCHASE", qty_change=1, reason="")

    def test_crossing_reorder_point_emits_once(self, db_session, stock_item):
        inventory_service.record_movement(stock_item.id, transaction_type="ADJUSTMENT", qty_change=-7, reason="Damaged")
        inventory_service.record_movement(stock_item.id, transaction_type="ADJUSTMENT", qty_change=-1, reason="Damaged")

        events = db_session.query(DomainEvent).filter_by(event_type="inventory.reorder_needed").all()
        assert len(events) == 1
        assert events[0].payload["qty_on_hand"] == 3
        assert [item.sku for item in inventory_service.reorder_alert_items()] == ["CARD-350"]

    def test_duplicate_sku(self, db_session, stock_item):
        with pytest.raises(InvalidStateError):
            inventory_service.create_item({"sku": "CARD-350", "name": "Another card", "category": "paper", "unit": "sheet"})


class TestConsumption:

    def test_quantity_rounds_up(self):
        rule = MaterialConsumptionRule(qty_per_unit=Decimal("0.042"))
        assert inventory_service.consumption_quantity(rule, 100) == 5
        assert inventory_service.consumption_quantity(rule, 1000) == 42

    def test_consumed_once_per_order(self, db_session, make_order, proofless_service, stock_item):
        _proofless_rule(proofless_service, stock_item, "3")
        order = make_order(service_id=proofless_service.id, tier_id=None)
        order_service.advance_status(order.id, "IN_PRODUCTION")

        again = inventory_service.apply_consumption(order.id)

        assert len(again) == 1
        assert again[0].qty_change == -3
        assert _on_hand(db_session, stock_item) == 7
        assert db_session.query(InventoryTransaction).filter_by(
            order_id=order.id, transaction_type="CONSUMPTION"
        ).count() == 1

    def test_only_in_production(self, db_session, make_order, proofless_service, stock_item):
        _proofless_rule(proofless_service, stock_item, "1")
        order = make_order(service_id=proofless_service.id, tier_id=None)

        with pytest.raises(InvalidStateError):
            inventory_service.apply_consumption(order.id)
        assert _on_hand(db_session, stock_item) == 10

    @pytest.mark.parametrize("qty", ["inf", "-Infinity", "1e400", "nan", "0", "-1", "abc", True])
    def test_invalid_qty_per_unit(self, db_session, proofless_service, stock_item, qty):
        with pytest.raises(ValidationError):
            enforce_rules_consumption_rule({"qty_per_unit": qty})
        with pytest.raises(ValidationError):
            _proofless_rule(proofless_service, stock_item, qty)
        assert db_session.query(MaterialConsumptionRule).count() == 0

    def test_tier_filter(self, db_session, make_order, proofless_service, stock_item, tier, unlimited_tier):
        _proofless_rule(proofless_service, stock_item, "1", tier_filter=[unlimited_tier.id])
        _proofless_rule(proofless_service, stock_item, "2", tier_filter=[tier.id])
        order = make_order(service_id=proofless_service.id, tier_id=tier.id)

        order_service.advance_status(order.id, "IN_PRODUCTION")

        assert _on_hand(db_session, stock_item) == 8

    def test_stock_may_go_negative(self, db_session, make_order, proofless_service, stock_item, caplog):
        _proofless_rule(proofless_service, stock_item, "12")
        order = make_order(service_id=proofless_service.id, tier_id=None)

        with caplog.at_level(logging.WARNING, logger="printshop.services.inventory_service"):
            order_service.advance_status(order.id, "IN_PRODUCTION")

        assert _on_hand(db_session, stock_item) == -2
        assert "is negative" in caplog.text
        assert db_session.query(DomainEvent).filter_by(event_type="inventory.reorder_needed").count() == 1

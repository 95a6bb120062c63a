# Overview: Service-layer operations for inventory; material consumption and the stock ledger.

# backend/printshop/services/inventory_service.py

import logging
import math
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func

from ..extensions import db
from ..models import Order, Service, InventoryItem, InventoryTransaction, MaterialConsumptionRule
from ..errors import InvalidStateError, NotFoundError, ValidationError
from ..validation import parse_quantity
from printshop.time_utils import utcnow
from . import event_service
from .concurrency import lock_for_update, run_with_retry
"""
Inventory Invariants (authoritative)

Inventory model:
- Stock is ledger-derived from InventoryTransaction rows.
- InventoryItem.qty_on_hand caches SUM(qty_change) and is refreshed in the
  same DB transaction as every ledger row; it is never written directly.

Transaction types:
- CONSUMPTION: negative, created when an order enters IN_PRODUCTION,
  one row per matching MaterialConsumptionRule.
- PURCHASE / RETURN: positive.
- ADJUSTMENT: non-zero, either sign (stock counts, damage).

Consumption:
- Rules match on service_id and, when tier_filter is non-empty, on the order's tier.
- qty_change = -ceil(qty_per_unit x order.quantity).
- Applied at most once per order, marked by Order.consumed_at; re-entering
  production does not consume again, even if rules were added since.
- Stock may go negative (production is not blocked); a warning is logged and
  the item shows up in reorder alerts.
"""

logger = logging.getLogger(__name__)

TX_CONSUMPTION = "CONSUMPTION"
TX_PURCHASE = "PURCHASE"
TX_RETURN = "RETURN"
TX_ADJUSTMENT = "ADJUSTMENT"

VALID_TRANSACTION_TYPES = {TX_CONSUMPTION, TX_PURCHASE, TX_RETURN, TX_ADJUSTMENT}
MANUAL_TRANSACTION_TYPES = {TX_PURCHASE, TX_RETURN, TX_ADJUSTMENT}


def get_quantity_on_hand(item_id: int) -> int:
    """Quantity on hand as the running sum of the item's ledger."""
    q = db.session.query(
        func.coalesce(func.sum(InventoryTransaction.qty_change), 0)
    ).filter(InventoryTransaction.inventory_item_id == item_id)
    return int(q.scalar() or 0)


def _lock_item(item_id: int) -> InventoryItem:
    item = lock_for_update(db.session.query(InventoryItem).filter_by(id=item_id)).first()
    if item is None:
        raise NotFoundError(f"Inventory item {item_id} not found")
    return item


def _append_transaction(
    item: InventoryItem,
    *,
    transaction_type: str,
    qty_change: int,
    reason: str,
    order_id: int | None = None,
    rule_id: int | None = None,
    user_id: int | None = None,
) -> InventoryTransaction:
    was_above_reorder_point = item.qty_on_hand > item.reorder_point

    tx = InventoryTransaction(
        inventory_item_id=item.id,
        transaction_type=transaction_type,
        qty_change=qty_change,
        reason=reason,
        order_id=order_id,
        rule_id=rule_id,
        user_id=user_id,
    )
    db.session.add(tx)
    db.session.flush()

    item.qty_on_hand = get_quantity_on_hand(item.id)

    if item.qty_on_hand < 0:
        logger.warning("Inventory item %s (%s) is negative: %s", item.id, item.sku, item.qty_on_hand)

    if was_above_reorder_point and item.qty_on_hand <= item.reorder_point:
        event_service.emit(
            event_service.INVENTORY_REORDER,
            entity_type="inventory_item",
            entity_id=item.id,
            order_id=order_id,
            actor_id=user_id,
            payload={
                "sku": item.sku,
                "qty_on_hand": item.qty_on_hand,
                "reorder_point": item.reorder_point,
                "reorder_qty": item.reorder_qty,
            },
        )
    return tx


def consumption_quantity(rule: MaterialConsumptionRule, order_quantity: int) -> int:
    """Units consumed by one rule, rounded up to whole units."""
    return int(math.ceil(Decimal(rule.qty_per_unit) * Decimal(order_quantity)))


def apply_consumption_locked(order: Order, *, now: datetime | None = None) -> list[InventoryTransaction]:
    """
    Create CONSUMPTION rows for an order (caller holds the order lock).

    Idempotent: once order.consumed_at is set the existing rows are returned,
    even when no rule matched the first time.
    """
    if order.consumed_at is not None:
        return (
            db.session.query(InventoryTransaction)
            .filter_by(order_id=order.id, transaction_type=TX_CONSUMPTION)
            .order_by(InventoryTransaction.id.asc())
            .all()
        )
    order.consumed_at = now or utcnow()

    rules = (
        db.session.query(MaterialConsumptionRule)
        .filter_by(service_id=order.service_id)
        .order_by(MaterialConsumptionRule.id.asc())
        .all()
    )

    transactions = []
    for rule in rules:
        if not rule.applies_to_tier(order.tier_id):
            continue
        qty = consumption_quantity(rule, order.quantity)
        if qty <= 0:
            continue
        item = _lock_item(rule.inventory_item_id)
        transactions.append(
            _append_transaction(
                item,
                transaction_type=TX_CONSUMPTION,
                qty_change=-qty,
                reason=f"Order {order.order_number} production",
                order_id=order.id,
                rule_id=rule.id,
            )
        )
    return transactions


def apply_consumption(order_id: int) -> list[InventoryTransaction]:
    """Consume materials for an order that is in production."""
    def _op():
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        if order.status != "IN_PRODUCTION":
            raise InvalidStateError(
                f"Order {order_id} is {order.status}; materials are consumed only in IN_PRODUCTION",
                details={"current_status": order.status},
            )
        transactions = apply_consumption_locked(order)
        db.session.commit()
        return transactions

    return run_with_retry(_op)


def record_movement(
    item_id: int,
    *,
    transaction_type: str,
    qty_change: int,
    reason: str,
    user_id: int | None = None,
) -> InventoryTransaction:
    """
    Record a manual stock movement.

    PURCHASE and RETURN must be positive; ADJUSTMENT must be non-zero.
    CONSUMPTION is reserved for order production.
    """
    if transaction_type not in MANUAL_TRANSACTION_TYPES:
        raise ValidationError(
            f"transaction_type must be one of: {', '.join(sorted(MANUAL_TRANSACTION_TYPES))}"
        )
    if not isinstance(qty_change, int) or isinstance(qty_change, bool):
        raise ValidationError("qty_change must be an integer")
    if transaction_type in (TX_PURCHASE, TX_RETURN) and qty_change <= 0:
        raise ValidationError(f"qty_change must be > 0 for {transaction_type}")
    if transaction_type == TX_ADJUSTMENT and qty_change == 0:
        raise ValidationError("qty_change must be non-zero for ADJUSTMENT")
    if not reason or not reason.strip():
        raise ValidationError("reason is required")

    def _op():
        item = _lock_item(item_id)
        tx = _append_transaction(
            item,
            transaction_type=transaction_type,
            qty_change=qty_change,
            reason=reason.strip(),
            user_id=user_id,
        )
        db.session.commit()
        return tx

    return run_with_retry(_op)


def create_item(patch: dict) -> InventoryItem:
    """Create an inventory item from a validated payload. Stock starts at zero."""
    def _op():
        if db.session.query(InventoryItem.id).filter_by(sku=patch["sku"]).first() is not None:
            raise InvalidStateError(f"SKU {patch['sku']} already exists", details={"sku": patch["sku"]})
        item = InventoryItem(**patch)
        item.qty_on_hand = 0
        db.session.add(item)
        db.session.commit()
        return item

    return run_with_retry(_op)


def list_items(*, include_inactive: bool = False) -> list[InventoryItem]:
    q = db.session.query(InventoryItem)
    if not include_inactive:
        q = q.filter(InventoryItem.is_active.is_(True))
    return q.order_by(InventoryItem.sku.asc()).all()


def create_consumption_rule(patch: dict) -> MaterialConsumptionRule:
    def _op():
        if db.session.get(Service, patch["service_id"]) is None:
            raise NotFoundError(f"Service {patch['service_id']} not found")
        if db.session.get(InventoryItem, patch["inventory_item_id"]) is None:
            raise NotFoundError(f"Inventory item {patch['inventory_item_id']} not found")
        rule = MaterialConsumptionRule(
            service_id=patch["service_id"],
            inventory_item_id=patch["inventory_item_id"],
            qty_per_unit=parse_quantity(patch["qty_per_unit"], "qty_per_unit"),
            tier_filter=patch.get("tier_filter") or None,
        )
        db.session.add(rule)
        db.session.commit()
        return rule

    return run_with_retry(_op)


def reorder_alert_items() -> list[InventoryItem]:
    """Active items at or below their reorder point."""
    return (
        db.session.query(InventoryItem)
        .filter(
            InventoryItem.is_active.is_(True),
            InventoryItem.qty_on_hand <= InventoryItem.reorder_point,
        )
        .order_by(InventoryItem.sku.asc())
        .all()
    )


def list_transactions(
    *,
    item_id: int | None = None,
    order_id: int | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[InventoryTransaction]:
    q = db.session.query(InventoryTransaction)
    if item_id is not None:
        q = q.filter(InventoryTransaction.inventory_item_id == item_id)
    if order_id is not None:
        q = q.filter(InventoryTransaction.order_id == order_id)
    return (
        q.order_by(InventoryTransaction.created_at.desc(), InventoryTransaction.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )

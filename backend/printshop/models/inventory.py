from __future__ import annotations

from ..extensions import db
from printshop.time_utils import to_utc_z


class InventoryItem(db.Model):
    """
    Stock-keeping material (blanks, vinyl, paper, ink).

    qty_on_hand is a cache of SUM(inventory_transactions.qty_change) for the
    item; it is refreshed by inventory_service in the same DB transaction as
    every ledger row and is never written directly.
    """
    __tablename__ = "inventory_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(64), nullable=False)
    unit = db.Column(db.String(32), nullable=False)

    qty_on_hand = db.Column(db.Integer, nullable=False, default=0)
    reorder_point = db.Column(db.Integer, nullable=False, default=0)
    reorder_qty = db.Column(db.Integer, nullable=False, default=0)

    supplier_name = db.Column(db.String(255), nullable=True)
    cost_per_unit_cents = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<InventoryItem id={self.id} sku={self.sku!r} on_hand={self.qty_on_hand}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "category": self.category,
            "unit": self.unit,
            "qty_on_hand": self.qty_on_hand,
            "reorder_point": self.reorder_point,
            "reorder_qty": self.reorder_qty,
            "supplier_name": self.supplier_name,
            "cost_per_unit_cents": self.cost_per_unit_cents,
            "is_active": self.is_active,
            "needs_reorder": self.qty_on_hand <= self.reorder_point,
            "version_id": self.version_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class MaterialConsumptionRule(db.Model):
    """
    How much of an item one unit of a service consumes.

    tier_filter: JSON list of tier ids; NULL/empty applies to every tier.
    """
    __tablename__ = "material_consumption_rules"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    service_id = db.Column(db.Integer, db.ForeignKey("services.id"), nullable=False, index=True)
    inventory_item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=False, index=True)
    qty_per_unit = db.Column(db.Numeric(12, 3), nullable=False)
    tier_filter = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    inventory_item = db.relationship("InventoryItem")

    def applies_to_tier(self, tier_id: int | None) -> bool:
        if not self.tier_filter:
            return True
        return tier_id is not None and tier_id in self.tier_filter

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "service_id": self.service_id,
            "inventory_item_id": self.inventory_item_id,
            "qty_per_unit": str(self.qty_per_unit),
            "tier_filter": self.tier_filter,
        }


class InventoryTransaction(db.Model):
    """
    Append-only stock ledger row.

    CONSUMPTION rows are negative and reference the order that consumed them.
    PURCHASE / RETURN rows are positive; ADJUSTMENT rows may be either sign.
    """
    __tablename__ = "inventory_transactions"
    __table_args__ = (
        db.Index("ix_inventory_transactions_order_type", "order_id", "transaction_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    inventory_item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=False, index=True)
    transaction_type = db.Column(db.String(16), nullable=False, index=True)
    qty_change = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=False)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    rule_id = db.Column(db.Integer, db.ForeignKey("material_consumption_rules.id"), nullable=True)
    user_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    inventory_item = db.relationship("InventoryItem")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "inventory_item_id": self.inventory_item_id,
            "transaction_type": self.transaction_type,
            "qty_change": self.qty_change,
            "reason": self.reason,
            "order_id": self.order_id,
            "rule_id": self.rule_id,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }

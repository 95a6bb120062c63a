from __future__ import annotations

from ..extensions import db
from printshop.time_utils import to_utc_z


class Order(db.Model):
    """
    Production order created from exactly one finalized quote.

    WHY: The order is the hub every other component reports back into.
    balance_due_cents, revisions_used and sla_breached are denormalized
    summaries; they are recomputed by the services, never accepted from clients.

    INVARIANTS:
    - balance_due_cents == total_amount_cents - SUM(completed payments net of refunds)
    - revisions_used <= tier revision limit when the limit is finite
    - COMPLETED and CANCELLED are terminal (only refunds may follow)
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_status_created", "status", "created_at"),
        db.Index("ix_orders_customer_created", "customer_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False, unique=True)
    quote_id = db.Column(db.Integer, db.ForeignKey("quotes.id"), nullable=False, unique=True)

    customer_id = db.Column(db.Integer, nullable=False, index=True)
    service_id = db.Column(db.Integer, db.ForeignKey("services.id"), nullable=False, index=True)
    tier_id = db.Column(db.Integer, db.ForeignKey("tiers.id"), nullable=True, index=True)
    assigned_staff_id = db.Column(db.Integer, nullable=True, index=True)

    status = db.Column(db.String(24), nullable=False, default="DEPOSIT_PAID", index=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)

    # Amounts in cents, rates in basis points
    subtotal_cents = db.Column(db.Integer, nullable=False)
    emergency_fee_cents = db.Column(db.Integer, nullable=False, default=0)
    rush_fee_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    tax_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_amount_cents = db.Column(db.Integer, nullable=False)
    deposit_percentage_bps = db.Column(db.Integer, nullable=False)
    deposit_amount_cents = db.Column(db.Integer, nullable=False)
    balance_due_cents = db.Column(db.Integer, nullable=False)

    revisions_used = db.Column(db.Integer, nullable=False, default=0)
    due_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    # Set on first entry to IN_PRODUCTION; materials are consumed at most once
    consumed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    sla_breached = db.Column(db.Boolean, nullable=False, default=False, index=True)
    priority = db.Column(db.Integer, nullable=False, default=3)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    quote = db.relationship("Quote", backref=db.backref("order", uselist=False))
    service = db.relationship("Service")
    tier = db.relationship("Tier")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "quote_id": self.quote_id,
            "customer_id": self.customer_id,
            "service_id": self.service_id,
            "tier_id": self.tier_id,
            "assigned_staff_id": self.assigned_staff_id,
            "status": self.status,
            "quantity": self.quantity,
            "subtotal_cents": self.subtotal_cents,
            "emergency_fee_cents": self.emergency_fee_cents,
            "rush_fee_cents": self.rush_fee_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "tax_amount_cents": self.tax_amount_cents,
            "total_amount_cents": self.total_amount_cents,
            "deposit_percentage_bps": self.deposit_percentage_bps,
            "deposit_amount_cents": self.deposit_amount_cents,
            "balance_due_cents": self.balance_due_cents,
            "revisions_used": self.revisions_used,
            "due_at": to_utc_z(self.due_at),
            "completed_at": to_utc_z(self.completed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "consumed_at": to_utc_z(self.consumed_at),
            "sla_breached": self.sla_breached,
            "priority": self.priority,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class OrderChecklistItem(db.Model):
    """Deliverable copied from the order's tier when the order is created."""
    __tablename__ = "order_checklist_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    deliverable_id = db.Column(db.Integer, db.ForeignKey("tier_deliverables.id"), nullable=True)
    description = db.Column(db.String(255), nullable=False)
    is_completed = db.Column(db.Boolean, nullable=False, default=False)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_by_staff_id = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    sort_order = db.Column(db.Integer, nullable=False, default=0)

    order = db.relationship(
        "Order",
        backref=db.backref("checklist_items", lazy=True, order_by="OrderChecklistItem.sort_order"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "deliverable_id": self.deliverable_id,
            "description": self.description,
            "is_completed": self.is_completed,
            "completed_at": to_utc_z(self.completed_at),
            "completed_by_staff_id": self.completed_by_staff_id,
            "notes": self.notes,
            "sort_order": self.sort_order,
        }


class ProofVersion(db.Model):
    """
    Versioned proof artifact sent to the customer.

    STATE MACHINE:
        SENT -> VIEWED (optional) -> APPROVED | REVISION_REQUESTED

    file_ref is an opaque reference issued by the file-storage collaborator.
    """
    __tablename__ = "proof_versions"
    __table_args__ = (
        db.UniqueConstraint("order_id", "version_number", name="uq_proof_versions_order_version"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    version_number = db.Column(db.Integer, nullable=False)
    file_ref = db.Column(db.String(512), nullable=False)
    file_type = db.Column(db.String(64), nullable=True)
    file_size = db.Column(db.Integer, nullable=True)
    created_by_staff_id = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(24), nullable=False, default="SENT", index=True)
    staff_message = db.Column(db.Text, nullable=True)
    customer_comment = db.Column(db.Text, nullable=True)

    viewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    responded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", backref=db.backref("proofs", lazy=True, order_by="ProofVersion.version_number"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "version_number": self.version_number,
            "file_ref": self.file_ref,
            "file_type": self.file_type,
            "file_size": self.file_size,
            "created_by_staff_id": self.created_by_staff_id,
            "status": self.status,
            "staff_message": self.staff_message,
            "customer_comment": self.customer_comment,
            "viewed_at": to_utc_z(self.viewed_at),
            "responded_at": to_utc_z(self.responded_at),
            "approved_at": to_utc_z(self.approved_at),
            "created_at": to_utc_z(self.created_at),
        }

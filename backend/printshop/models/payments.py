from __future__ import annotations

from ..extensions import db
from printshop.time_utils import to_utc_z


class Payment(db.Model):
    """
    Payment against an order.

    LIFECYCLE:
        PENDING -> COMPLETED | FAILED
        COMPLETED -> REFUNDED (once refund_amount_cents == amount_cents)

    Only COMPLETED payments count toward the order balance, net of any
    partial refund.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.Index("ix_payments_order_status", "order_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    payment_number = db.Column(db.String(32), nullable=False, unique=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    method = db.Column(db.String(16), nullable=False)  # CREDIT_CARD, BANK_TRANSFER, CHECK, CASH
    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    is_deposit = db.Column(db.Boolean, nullable=False, default=False)
    transaction_ref = db.Column(db.String(255), nullable=True)

    payment_date = db.Column(db.DateTime(timezone=True), nullable=True)
    verified_by_admin_id = db.Column(db.Integer, nullable=True)
    verified_at = db.Column(db.DateTime(timezone=True), nullable=True)
    failed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    refund_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    refund_reason = db.Column(db.String(255), nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    order = db.relationship("Order", backref=db.backref("payments", lazy=True, order_by="Payment.id"))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def net_amount_cents(self) -> int:
        return self.amount_cents - (self.refund_amount_cents or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_number": self.payment_number,
            "order_id": self.order_id,
            "amount_cents": self.amount_cents,
            "method": self.method,
            "status": self.status,
            "is_deposit": self.is_deposit,
            "transaction_ref": self.transaction_ref,
            "payment_date": to_utc_z(self.payment_date),
            "verified_by_admin_id": self.verified_by_admin_id,
            "verified_at": to_utc_z(self.verified_at),
            "failed_at": to_utc_z(self.failed_at),
            "refund_amount_cents": self.refund_amount_cents,
            "refund_reason": self.refund_reason,
            "refunded_at": to_utc_z(self.refunded_at),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }


class Invoice(db.Model):
    """Snapshot of an order's financials; one per order, refreshed on re-issue."""
    __tablename__ = "invoices"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(32), nullable=False, unique=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, unique=True)
    customer_id = db.Column(db.Integer, nullable=False, index=True)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    fees_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_rate_bps = db.Column(db.Integer, nullable=False)
    tax_amount_cents = db.Column(db.Integer, nullable=False)
    total_amount_cents = db.Column(db.Integer, nullable=False)
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    amount_due_cents = db.Column(db.Integer, nullable=False)

    issued_at = db.Column(db.DateTime(timezone=True), nullable=False)
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    order = db.relationship("Order", backref=db.backref("invoice", uselist=False))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "order_id": self.order_id,
            "customer_id": self.customer_id,
            "subtotal_cents": self.subtotal_cents,
            "fees_cents": self.fees_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "tax_amount_cents": self.tax_amount_cents,
            "total_amount_cents": self.total_amount_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "amount_due_cents": self.amount_due_cents,
            "issued_at": to_utc_z(self.issued_at),
            "due_date": to_utc_z(self.due_date),
            "paid_at": to_utc_z(self.paid_at),
        }

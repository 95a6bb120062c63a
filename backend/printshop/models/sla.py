from __future__ import annotations

from ..extensions import db
from printshop.time_utils import to_utc_z


class SlaTimer(db.Model):
    """
    Deadline clock for one production milestone of an order.

    timer_type: FIRST_PROOF, REVISION_TURNAROUND, PRODUCTION
    At most one open (completed_at IS NULL) timer per (order_id, timer_type).
    paused_at set => clock stopped; resume shifts due_at by the paused span.
    """
    __tablename__ = "sla_timers"
    __table_args__ = (
        db.Index("ix_sla_timers_open_due", "completed_at", "is_breached", "due_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    timer_type = db.Column(db.String(24), nullable=False)
    started_at = db.Column(db.DateTime(timezone=True), nullable=False)
    due_at = db.Column(db.DateTime(timezone=True), nullable=False)
    paused_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    is_breached = db.Column(db.Boolean, nullable=False, default=False)
    breach_notified = db.Column(db.Boolean, nullable=False, default=False)

    order = db.relationship("Order", backref=db.backref("sla_timers", lazy=True, order_by="SlaTimer.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "timer_type": self.timer_type,
            "started_at": to_utc_z(self.started_at),
            "due_at": to_utc_z(self.due_at),
            "paused_at": to_utc_z(self.paused_at),
            "completed_at": to_utc_z(self.completed_at),
            "is_breached": self.is_breached,
            "breach_notified": self.breach_notified,
        }


class SlaBreach(db.Model):
    """One row per breached timer (unique timer_id keeps scans idempotent)."""
    __tablename__ = "sla_breaches"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    timer_id = db.Column(db.Integer, db.ForeignKey("sla_timers.id"), nullable=False, unique=True)
    breach_type = db.Column(db.String(24), nullable=False)  # PROOF_DELAY, PRODUCTION_DELAY, RESPONSE_DELAY
    target_time = db.Column(db.DateTime(timezone=True), nullable=False)
    actual_time = db.Column(db.DateTime(timezone=True), nullable=True)
    breach_duration_hours = db.Column(db.Numeric(10, 2), nullable=True)
    reason = db.Column(db.String(255), nullable=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    timer = db.relationship("SlaTimer", backref=db.backref("breach", uselist=False))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "timer_id": self.timer_id,
            "breach_type": self.breach_type,
            "target_time": to_utc_z(self.target_time),
            "actual_time": to_utc_z(self.actual_time),
            "breach_duration_hours": (
                float(self.breach_duration_hours) if self.breach_duration_hours is not None else None
            ),
            "reason": self.reason,
            "resolved_at": to_utc_z(self.resolved_at),
        }

from __future__ import annotations

from ..extensions import db
from printshop.time_utils import to_utc_z


class Quote(db.Model):
    """
    Customer request for a priced job.

    LIFECYCLE:
        REQUESTED -> UNDER_REVIEW -> PENDING_APPROVAL -> FINALIZED
        any open state -> REJECTED | EXPIRED

    INVARIANTS:
    - final_subtotal_cents is set iff status == FINALIZED
    - expires_at is only enforced while the quote is open
    - FINALIZED spawns exactly one Order (orders.quote_id is unique)
    """
    __tablename__ = "quotes"
    __table_args__ = (
        db.Index("ix_quotes_status_expires", "status", "expires_at"),
        db.Index("ix_quotes_customer_created", "customer_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    quote_number = db.Column(db.String(32), nullable=False, unique=True)

    customer_id = db.Column(db.Integer, nullable=False, index=True)
    service_id = db.Column(db.Integer, db.ForeignKey("services.id"), nullable=False, index=True)
    tier_id = db.Column(db.Integer, db.ForeignKey("tiers.id"), nullable=True)

    status = db.Column(db.String(24), nullable=False, default="REQUESTED", index=True)

    # Amounts in cents, rates in basis points
    estimate_min_cents = db.Column(db.Integer, nullable=True)
    estimate_max_cents = db.Column(db.Integer, nullable=True)
    final_subtotal_cents = db.Column(db.Integer, nullable=True)
    tax_rate_bps = db.Column(db.Integer, nullable=True)
    tax_amount_cents = db.Column(db.Integer, nullable=True)
    total_amount_cents = db.Column(db.Integer, nullable=True)

    customer_notes = db.Column(db.Text, nullable=True)
    admin_notes = db.Column(db.Text, nullable=True)
    rejection_reason = db.Column(db.String(255), nullable=True)
    no_design_files = db.Column(db.Boolean, nullable=False, default=False)

    reviewed_by_staff_id = db.Column(db.Integer, nullable=True)
    finalized_at = db.Column(db.DateTime(timezone=True), nullable=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    service = db.relationship("Service")
    tier = db.relationship("Tier")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Quote id={self.id} number={self.quote_number!r} status={self.status}>"

    def to_dict(self, include_answers: bool = False) -> dict:
        data = {
            "id": self.id,
            "quote_number": self.quote_number,
            "customer_id": self.customer_id,
            "service_id": self.service_id,
            "tier_id": self.tier_id,
            "status": self.status,
            "estimate_min_cents": self.estimate_min_cents,
            "estimate_max_cents": self.estimate_max_cents,
            "final_subtotal_cents": self.final_subtotal_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "tax_amount_cents": self.tax_amount_cents,
            "total_amount_cents": self.total_amount_cents,
            "customer_notes": self.customer_notes,
            "admin_notes": self.admin_notes,
            "rejection_reason": self.rejection_reason,
            "no_design_files": self.no_design_files,
            "reviewed_by_staff_id": self.reviewed_by_staff_id,
            "finalized_at": to_utc_z(self.finalized_at),
            "expires_at": to_utc_z(self.expires_at),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_answers:
            data["answers"] = [a.to_dict() for a in self.answers]
        return data


class QuoteAnswer(db.Model):
    """Append-only answer to one service option; frozen once the quote is finalized."""
    __tablename__ = "quote_answers"
    __table_args__ = (
        db.UniqueConstraint("quote_id", "option_key", name="uq_quote_answers_quote_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    quote_id = db.Column(db.Integer, db.ForeignKey("quotes.id"), nullable=False, index=True)
    option_key = db.Column(db.String(100), nullable=False)
    option_label = db.Column(db.String(255), nullable=False)
    answer_value = db.Column(db.Text, nullable=False)

    quote = db.relationship("Quote", backref=db.backref("answers", lazy=True, order_by="QuoteAnswer.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "quote_id": self.quote_id,
            "option_key": self.option_key,
            "option_label": self.option_label,
            "answer_value": self.answer_value,
        }

from __future__ import annotations

from ..extensions import db
from printshop.time_utils import to_utc_z


class DomainEvent(db.Model):
    """
    Append-only outbox of lifecycle events for the external notifier.

    - Written in the same DB transaction as the change it describes.
    - dispatched_at is set by the notifier once it has taken the event.
    """
    __tablename__ = "domain_events"
    __table_args__ = (
        db.Index("ix_domain_events_dispatched", "dispatched_at", "id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    event_type = db.Column(db.String(64), nullable=False, index=True)
    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)
    order_id = db.Column(db.Integer, nullable=True, index=True)
    actor_id = db.Column(db.Integer, nullable=True)
    payload = db.Column(db.JSON, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)
    dispatched_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "order_id": self.order_id,
            "actor_id": self.actor_id,
            "payload": self.payload or {},
            "occurred_at": to_utc_z(self.occurred_at),
            "dispatched_at": to_utc_z(self.dispatched_at),
        }


class DocumentSequence(db.Model):
    """
    Atomic per-type document sequences.

    WHY: Prevent race conditions when generating document numbers
    (quotes, orders, payments, invoices).
    """
    __tablename__ = "document_sequences"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False, unique=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

# Overview: Service-layer operations for the notification outbox; records and hands out domain events.

from __future__ import annotations

from datetime import datetime
from typing import Optional

from ..extensions import db
from ..models import DomainEvent
from printshop.time_utils import utcnow
from .concurrency import run_with_retry
"""
Notification Outbox Invariants (authoritative)

- Append-only: events are never edited except for dispatched_at.
- Events are written inside the same DB transaction as the change they describe,
  so a rolled-back operation never announces anything.
- Delivery is owned by an external notifier polling pending_events();
  nothing in the lifecycle core waits on delivery.
"""

QUOTE_FINALIZED = "quote.finalized"
QUOTE_EXPIRED = "quote.expired"
QUOTE_REJECTED = "quote.rejected"
ORDER_STATUS_CHANGED = "order.status_changed"
PROOF_UPLOADED = "proof.uploaded"
PROOF_RESPONDED = "proof.responded"
PAYMENT_COMPLETED = "payment.completed"
PAYMENT_REFUNDED = "payment.refunded"
BOOKING_CREATED = "booking.created"
BOOKING_CANCELLED = "booking.cancelled"
SLA_BREACHED = "sla.breached"
INVENTORY_REORDER = "inventory.reorder_needed"


def emit(
    event_type: str,
    *,
    entity_type: str,
    entity_id: int,
    order_id: int | None = None,
    actor_id: int | None = None,
    payload: dict | None = None,
    occurred_at: Optional[datetime] = None,
) -> DomainEvent:
    """
    Append an event to the outbox. Does not commit.
    """
    ev = DomainEvent(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        order_id=order_id,
        actor_id=actor_id,
        payload=payload or {},
        occurred_at=occurred_at or utcnow(),
    )
    db.session.add(ev)
    db.session.flush()
    return ev


def pending_events(limit: int = 100) -> list[DomainEvent]:
    """Oldest-first undispatched events."""
    return (
        db.session.query(DomainEvent)
        .filter(DomainEvent.dispatched_at.is_(None))
        .order_by(DomainEvent.id.asc())
        .limit(limit)
        .all()
    )


def list_events(
    *,
    order_id: int | None = None,
    event_type: str | None = None,
    after_id: int | None = None,
    limit: int = 100,
) -> list[DomainEvent]:
    q = db.session.query(DomainEvent)
    if order_id is not None:
        q = q.filter(DomainEvent.order_id == order_id)
    if event_type:
        q = q.filter(DomainEvent.event_type == event_type)
    if after_id is not None:
        q = q.filter(DomainEvent.id > after_id)
    return q.order_by(DomainEvent.id.asc()).limit(limit).all()


def mark_dispatched(event_ids: list[int]) -> int:
    """
    Mark events as handed to the notifier.

    Idempotent: already-dispatched events are left untouched.
    Returns the number of events newly marked.
    """
    def _op() -> int:
        if not event_ids:
            return 0
        count = (
            db.session.query(DomainEvent)
            .filter(DomainEvent.id.in_(event_ids), DomainEvent.dispatched_at.is_(None))
            .update({DomainEvent.dispatched_at: utcnow()}, synchronize_session=False)
        )
        db.session.commit()
        return count

    return run_with_retry(_op)

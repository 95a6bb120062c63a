# Overview: Service-layer operations for SLA timers; deadline clocks, breach detection and escalation.

"""
SLA Timer Engine

TIMERS (one open timer per order and type):
- FIRST_PROOF:          order enters design -> first proof uploaded
- REVISION_TURNAROUND:  customer requests a revision -> staff sends the next proof
                        (paused while a proof waits on the customer, resumed on
                        the next revision request, completed on approval)
- PRODUCTION:           order enters production -> order completed

BREACH RULES:
- A timer is breached when it is still open past due_at (scan) or is completed
  after due_at (completion). Whichever happens first records the breach.
- Exactly one SlaBreach per timer; re-running a scan never duplicates.
- A breach flips the parent order's sla_breached flag and emits sla.breached.
- Paused timers are never breached by a scan.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from ..extensions import db
from ..models import Order, SlaTimer, SlaBreach
from ..errors import InvalidStateError, NotFoundError, ValidationError
from printshop.time_utils import utcnow, normalize_datetime
from . import event_service
from .concurrency import lock_for_update, run_with_retry

logger = logging.getLogger(__name__)


TIMER_FIRST_PROOF = "FIRST_PROOF"
TIMER_REVISION_TURNAROUND = "REVISION_TURNAROUND"
TIMER_PRODUCTION = "PRODUCTION"

VALID_TIMER_TYPES = {TIMER_FIRST_PROOF, TIMER_REVISION_TURNAROUND, TIMER_PRODUCTION}

BREACH_TYPES = {
    TIMER_FIRST_PROOF: "PROOF_DELAY",
    TIMER_REVISION_TURNAROUND: "PROOF_DELAY",
    TIMER_PRODUCTION: "PRODUCTION_DELAY",
}

TERMINAL_ORDER_STATUSES = {"COMPLETED", "CANCELLED"}


def validate_timer_type(timer_type: str) -> None:
    if timer_type not in VALID_TIMER_TYPES:
        raise ValidationError(
            f"Invalid timer_type '{timer_type}'. Must be one of: {', '.join(sorted(VALID_TIMER_TYPES))}"
        )


def get_open_timer(order_id: int, timer_type: str) -> SlaTimer | None:
    return (
        db.session.query(SlaTimer)
        .filter_by(order_id=order_id, timer_type=timer_type)
        .filter(SlaTimer.completed_at.is_(None))
        .first()
    )


def _breach_hours(due_at: datetime, at: datetime) -> Decimal:
    seconds = (at - due_at).total_seconds()
    return (Decimal(str(seconds)) / Decimal(3600)).quantize(Decimal("0.01"))


def _record_breach(timer: SlaTimer, order: Order, *, at: datetime, actual_time: datetime | None = None) -> SlaBreach | None:
    """Mark timer breached and record its single SlaBreach row. Returns None if already recorded."""
    existing = db.session.query(SlaBreach).filter_by(timer_id=timer.id).first()
    timer.is_breached = True
    order.sla_breached = True
    if existing is not None:
        return None

    breach = SlaBreach(
        order_id=order.id,
        timer_id=timer.id,
        breach_type=BREACH_TYPES[timer.timer_type],
        target_time=timer.due_at,
        actual_time=actual_time,
        breach_duration_hours=_breach_hours(timer.due_at, at),
        reason=f"{timer.timer_type} deadline missed",
    )
    db.session.add(breach)
    db.session.flush()

    event_service.emit(
        event_service.SLA_BREACHED,
        entity_type="sla_timer",
        entity_id=timer.id,
        order_id=order.id,
        payload={
            "timer_type": timer.timer_type,
            "breach_type": breach.breach_type,
            "breach_duration_hours": float(breach.breach_duration_hours),
        },
        occurred_at=at,
    )
    timer.breach_notified = True
    logger.info("SLA breach recorded: order=%s timer=%s type=%s", order.id, timer.id, timer.timer_type)
    return breach


# =============================================================================
# LOCKED HELPERS (caller holds the order lock and owns the commit)
# =============================================================================

def start_timer_locked(order: Order, timer_type: str, due_at: datetime, *, now: datetime | None = None) -> SlaTimer:
    validate_timer_type(timer_type)
    if order.status in TERMINAL_ORDER_STATUSES:
        raise InvalidStateError(f"Cannot start {timer_type} timer on {order.status} order {order.id}")

    existing = get_open_timer(order.id, timer_type)
    if existing is not None:
        return existing

    timer = SlaTimer(
        order_id=order.id,
        timer_type=timer_type,
        started_at=now or utcnow(),
        due_at=normalize_datetime(due_at),
    )
    db.session.add(timer)
    db.session.flush()
    return timer


def complete_timer_locked(timer: SlaTimer, order: Order, *, now: datetime | None = None, evaluate_breach: bool = True) -> SlaTimer:
    """
    Close a timer. A paused timer is judged at the moment it was paused.
    evaluate_breach=False stops the clock without judging it (order cancelled).
    """
    if timer.completed_at is not None:
        return timer

    now = now or utcnow()
    effective = timer.paused_at or now
    timer.completed_at = now
    timer.paused_at = None

    if evaluate_breach and effective > timer.due_at:
        _record_breach(timer, order, at=effective, actual_time=effective)
    return timer


def complete_open_timer_locked(order: Order, timer_type: str, *, now: datetime | None = None) -> SlaTimer | None:
    timer = get_open_timer(order.id, timer_type)
    if timer is None:
        return None
    return complete_timer_locked(timer, order, now=now)


def pause_timer_locked(timer: SlaTimer, *, now: datetime | None = None) -> SlaTimer:
    if timer.completed_at is not None or timer.paused_at is not None:
        return timer
    timer.paused_at = now or utcnow()
    return timer


def resume_timer_locked(timer: SlaTimer, *, now: datetime | None = None) -> SlaTimer:
    if timer.completed_at is not None or timer.paused_at is None:
        return timer
    now = now or utcnow()
    timer.due_at = timer.due_at + (now - timer.paused_at)
    timer.paused_at = None
    return timer


def stop_open_timers_locked(order: Order, *, now: datetime | None = None) -> int:
    timers = (
        db.session.query(SlaTimer)
        .filter_by(order_id=order.id)
        .filter(SlaTimer.completed_at.is_(None))
        .all()
    )
    for timer in timers:
        complete_timer_locked(timer, order, now=now, evaluate_breach=False)
    return len(timers)


# =============================================================================
# PUBLIC OPERATIONS
# =============================================================================

def _lock_order(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def _lock_timer_and_order(timer_id: int) -> tuple[SlaTimer, Order]:
    timer = db.session.get(SlaTimer, timer_id)
    if timer is None:
        raise NotFoundError(f"SLA timer {timer_id} not found")
    order = _lock_order(timer.order_id)
    timer = lock_for_update(db.session.query(SlaTimer).filter_by(id=timer_id)).first()
    return timer, order


def start_timer(order_id: int, timer_type: str, due_at: datetime) -> SlaTimer:
    """Start a timer; returns the existing open timer of that type if there is one."""
    def _op():
        order = _lock_order(order_id)
        timer = start_timer_locked(order, timer_type, due_at)
        db.session.commit()
        return timer

    return run_with_retry(_op)


def complete_timer(timer_id: int, *, now: datetime | None = None) -> SlaTimer:
    def _op():
        timer, order = _lock_timer_and_order(timer_id)
        complete_timer_locked(timer, order, now=now)
        db.session.commit()
        return timer

    return run_with_retry(_op)


def pause_timer(timer_id: int, *, now: datetime | None = None) -> SlaTimer:
    def _op():
        timer, _order = _lock_timer_and_order(timer_id)
        pause_timer_locked(timer, now=now)
        db.session.commit()
        return timer

    return run_with_retry(_op)


def resume_timer(timer_id: int, *, now: datetime | None = None) -> SlaTimer:
    def _op():
        timer, _order = _lock_timer_and_order(timer_id)
        resume_timer_locked(timer, now=now)
        db.session.commit()
        return timer

    return run_with_retry(_op)


def scan_for_breaches(now: datetime | None = None) -> dict:
    """
    Batch job: breach every open, running timer that is past due.

    Each timer is processed in its own transaction with a conditional
    re-check, so overlapping or repeated runs are safe. A failing row is
    logged and skipped.
    """
    now = normalize_datetime(now) if now is not None else utcnow()

    candidate_ids = [
        row.id for row in db.session.query(SlaTimer.id)
        .filter(
            SlaTimer.completed_at.is_(None),
            SlaTimer.paused_at.is_(None),
            SlaTimer.is_breached.is_(False),
            SlaTimer.due_at < now,
        )
        .order_by(SlaTimer.id.asc())
        .all()
    ]

    breached = 0
    failed = 0
    for timer_id in candidate_ids:
        try:
            def _op():
                timer, order = _lock_timer_and_order(timer_id)
                if (
                    timer.completed_at is not None
                    or timer.paused_at is not None
                    or timer.is_breached
                    or timer.due_at >= now
                ):
                    return False
                _record_breach(timer, order, at=now)
                db.session.commit()
                return True

            if run_with_retry(_op):
                breached += 1
        except Exception:
            failed += 1
            logger.exception("SLA scan failed for timer %s", timer_id)

    logger.info("SLA scan complete: scanned=%s breached=%s failed=%s", len(candidate_ids), breached, failed)
    return {"scanned": len(candidate_ids), "breached": breached, "failed": failed}


def list_timers(order_id: int) -> list[SlaTimer]:
    return db.session.query(SlaTimer).filter_by(order_id=order_id).order_by(SlaTimer.id.asc()).all()


def list_breaches(*, order_id: int | None = None, unresolved_only: bool = False, limit: int = 100) -> list[SlaBreach]:
    q = db.session.query(SlaBreach)
    if order_id is not None:
        q = q.filter(SlaBreach.order_id == order_id)
    if unresolved_only:
        q = q.filter(SlaBreach.resolved_at.is_(None))
    return q.order_by(SlaBreach.id.desc()).limit(limit).all()


def resolve_breach(breach_id: int, reason: str | None = None) -> SlaBreach:
    def _op():
        breach = lock_for_update(db.session.query(SlaBreach).filter_by(id=breach_id)).first()
        if breach is None:
            raise NotFoundError(f"SLA breach {breach_id} not found")
        if breach.resolved_at is None:
            breach.resolved_at = utcnow()
            if reason:
                breach.reason = reason
        db.session.commit()
        return breach

    return run_with_retry(_op)

# Overview: Service-layer operations for bookings; daily capacity, blackouts and emergency surcharges.

"""
Booking / Scheduling

CAPACITY (per calendar date):
- Standard pool: CapacityOverride.slots_available for the date, else the
  weekday CapacitySetting.default_slots, else DEFAULT_SLOTS_PER_DAY.
- Emergency pool: CapacitySetting.emergency_slots_max, else DEFAULT_EMERGENCY_SLOTS.
- Active bookings (PENDING, CONFIRMED, RESCHEDULED) occupy a slot in their pool.
- A non-working weekday has no capacity; a blackout range refuses the date outright.

EMERGENCY FEE:
- Rate comes from the weekday CapacitySetting.emergency_fee_bps (authoritative),
  else DEFAULT_EMERGENCY_FEE_BPS.
- Amount = rate x order subtotal (or the finalized quote subtotal). When the
  quote already has an order, the order is repriced in the same transaction.

CANCELLATION:
- Allowed from PENDING / CONFIRMED / RESCHEDULED while the booking start is
  more than BOOKING_CANCELLATION_LEAD_HOURS away.
- Cancelling an emergency booking removes its fee from the order.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, time, timedelta

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Booking, BlackoutDate, CapacityOverride, CapacitySetting, Quote
from ..errors import (
    BlackoutDateError,
    CancellationWindowClosed,
    CapacityExceededError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from ..money_utils import apply_bps
from printshop.time_utils import utcnow
from . import event_service, order_service
from .concurrency import lock_for_update, run_with_retry

logger = logging.getLogger(__name__)


STATUS_PENDING = "PENDING"
STATUS_CONFIRMED = "CONFIRMED"
STATUS_RESCHEDULED = "RESCHEDULED"
STATUS_CANCELLED = "CANCELLED"
STATUS_COMPLETED = "COMPLETED"

ACTIVE_STATUSES = order_service.ACTIVE_BOOKING_STATUSES
BOOKABLE_QUOTE_STATUSES = ("REQUESTED", "UNDER_REVIEW", "PENDING_APPROVAL", "FINALIZED")

TIME_SLOT_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)(-([01]\d|2[0-3]):([0-5]\d))?$")


# =============================================================================
# CAPACITY LOOKUPS
# =============================================================================

def _setting_for(day: date) -> CapacitySetting | None:
    return db.session.query(CapacitySetting).filter_by(day_of_week=day.weekday()).first()


def _blackout_for(day: date) -> BlackoutDate | None:
    return (
        db.session.query(BlackoutDate)
        .filter(BlackoutDate.start_date <= day, BlackoutDate.end_date >= day)
        .first()
    )


def _standard_capacity(day: date, setting: CapacitySetting | None) -> int:
    override = db.session.query(CapacityOverride).filter_by(override_date=day).first()
    if override is not None:
        return override.slots_available
    if setting is not None:
        return setting.default_slots
    return current_app.config["DEFAULT_SLOTS_PER_DAY"]


def _emergency_capacity(setting: CapacitySetting | None) -> int:
    if setting is not None:
        return setting.emergency_slots_max
    return current_app.config["DEFAULT_EMERGENCY_SLOTS"]


def emergency_fee_bps_for(day: date) -> int:
    setting = _setting_for(day)
    if setting is not None and setting.emergency_fee_bps is not None:
        return setting.emergency_fee_bps
    return current_app.config["DEFAULT_EMERGENCY_FEE_BPS"]


def _booked_count(day: date, *, is_emergency: bool, exclude_booking_id: int | None = None) -> int:
    q = db.session.query(func.count(Booking.id)).filter(
        Booking.booking_date == day,
        Booking.is_emergency.is_(is_emergency),
        Booking.status.in_(ACTIVE_STATUSES),
    )
    if exclude_booking_id is not None:
        q = q.filter(Booking.id != exclude_booking_id)
    return int(q.scalar() or 0)


def _check_capacity(day: date, *, is_emergency: bool, exclude_booking_id: int | None = None) -> None:
    blackout = _blackout_for(day)
    if blackout is not None:
        raise BlackoutDateError(
            f"{day.isoformat()} is blacked out",
            details={"date": day.isoformat(), "reason": blackout.reason},
        )

    setting = _setting_for(day)
    if setting is not None and not setting.is_working_day:
        raise CapacityExceededError(
            f"{day.isoformat()} is not a working day",
            details={"date": day.isoformat(), "capacity": 0},
        )

    capacity = _emergency_capacity(setting) if is_emergency else _standard_capacity(day, setting)
    booked = _booked_count(day, is_emergency=is_emergency, exclude_booking_id=exclude_booking_id)
    if booked >= capacity:
        pool = "emergency" if is_emergency else "standard"
        raise CapacityExceededError(
            f"No {pool} slots left on {day.isoformat()}",
            details={"date": day.isoformat(), "pool": pool, "capacity": capacity, "booked": booked},
        )


def available_slots(day: date) -> dict:
    """Remaining capacity for one date, per pool."""
    setting = _setting_for(day)
    blackout = _blackout_for(day)
    working = setting is None or setting.is_working_day
    closed = blackout is not None or not working

    standard_capacity = 0 if closed else _standard_capacity(day, setting)
    emergency_capacity = 0 if closed else _emergency_capacity(setting)
    standard_booked = _booked_count(day, is_emergency=False)
    emergency_booked = _booked_count(day, is_emergency=True)

    return {
        "date": day.isoformat(),
        "is_working_day": working,
        "is_blackout": blackout is not None,
        "standard_capacity": standard_capacity,
        "standard_booked": standard_booked,
        "standard_available": max(standard_capacity - standard_booked, 0),
        "emergency_capacity": emergency_capacity,
        "emergency_booked": emergency_booked,
        "emergency_available": max(emergency_capacity - emergency_booked, 0),
        "emergency_fee_bps": emergency_fee_bps_for(day),
    }


# =============================================================================
# HELPERS
# =============================================================================

def _validate_time_slot(time_slot: str | None) -> str | None:
    if time_slot is None:
        return None
    time_slot = time_slot.strip()
    if not time_slot:
        return None
    if not TIME_SLOT_RE.match(time_slot):
        raise ValidationError("time_slot must be HH:MM or HH:MM-HH:MM", details={"time_slot": time_slot})
    return time_slot


def _parse_clock(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def booking_start(booking: Booking) -> datetime:
    """Start of a booking: its time slot, else the day's opening time, else midnight (UTC)."""
    if booking.time_slot:
        start = _parse_clock(booking.time_slot.split("-")[0])
    else:
        setting = _setting_for(booking.booking_date)
        if setting is not None and setting.start_time:
            start = _parse_clock(setting.start_time)
        else:
            start = time(0, 0)
    return datetime.combine(booking.booking_date, start)


def _lock_booking(booking_id: int) -> Booking:
    booking = lock_for_update(db.session.query(Booking).filter_by(id=booking_id)).first()
    if booking is None:
        raise NotFoundError(f"Booking {booking_id} not found")
    return booking


def _ensure_order_open(booking: Booking) -> None:
    order = booking.quote.order
    if order is not None and order.status in order_service.TERMINAL_STATUSES:
        raise InvalidStateError(
            f"Order for booking {booking.id} is {order.status}",
            details={"order_id": order.id, "order_status": order.status},
        )


def _fee_base_cents(quote: Quote) -> int | None:
    if quote.order is not None:
        return quote.order.subtotal_cents
    return quote.final_subtotal_cents


def _apply_fee_to_order(quote: Quote, fee_cents: int | None) -> None:
    order = quote.order
    if order is None or order.status in order_service.TERMINAL_STATUSES:
        return
    order_service.apply_emergency_fee_locked(order, fee_cents or 0)


def get_booking(booking_id: int) -> Booking:
    booking = db.session.get(Booking, booking_id)
    if booking is None:
        raise NotFoundError(f"Booking {booking_id} not found")
    return booking


def list_bookings(
    *,
    quote_id: int | None = None,
    booking_date: date | None = None,
    status: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[Booking]:
    q = db.session.query(Booking)
    if quote_id is not None:
        q = q.filter(Booking.quote_id == quote_id)
    if booking_date is not None:
        q = q.filter(Booking.booking_date == booking_date)
    if status:
        q = q.filter(Booking.status == status)
    return q.order_by(Booking.booking_date.asc(), Booking.id.asc()).offset(offset).limit(limit).all()


# =============================================================================
# BOOKING LIFECYCLE
# =============================================================================

def create_booking(
    quote_id: int,
    booking_date: date,
    *,
    time_slot: str | None = None,
    is_emergency: bool = False,
    now: datetime | None = None,
) -> Booking:
    """
    Reserve a slot for a quote.

    Raises:
        InvalidStateError: quote closed, or it already holds an active booking
        BlackoutDateError: date inside a blackout range
        CapacityExceededError: pool full or non-working day
    """
    time_slot = _validate_time_slot(time_slot)

    def _op():
        at = now or utcnow()
        if booking_date < at.date():
            raise ValidationError("booking_date cannot be in the past", details={"booking_date": booking_date.isoformat()})

        quote = lock_for_update(db.session.query(Quote).filter_by(id=quote_id)).first()
        if quote is None:
            raise NotFoundError(f"Quote {quote_id} not found")
        if quote.status not in BOOKABLE_QUOTE_STATUSES:
            raise InvalidStateError(
                f"Cannot book for quote {quote_id} in status {quote.status}",
                details={"current_status": quote.status},
            )
        if quote.order is not None and quote.order.status in order_service.TERMINAL_STATUSES:
            raise InvalidStateError(f"Order for quote {quote_id} is {quote.order.status}")

        active = (
            db.session.query(Booking)
            .filter(Booking.quote_id == quote_id, Booking.status.in_(ACTIVE_STATUSES))
            .first()
        )
        if active is not None:
            raise InvalidStateError(
                f"Quote {quote_id} already has active booking {active.id}",
                details={"booking_id": active.id},
            )

        _check_capacity(booking_date, is_emergency=is_emergency)

        booking = Booking(
            quote_id=quote.id,
            customer_id=quote.customer_id,
            booking_date=booking_date,
            time_slot=time_slot,
            status=STATUS_PENDING,
            is_emergency=bool(is_emergency),
        )
        if is_emergency:
            booking.emergency_fee_bps = emergency_fee_bps_for(booking_date)
            base = _fee_base_cents(quote)
            booking.emergency_fee_cents = apply_bps(base, booking.emergency_fee_bps) if base is not None else None
        db.session.add(booking)
        db.session.flush()

        if is_emergency:
            _apply_fee_to_order(quote, booking.emergency_fee_cents)

        event_service.emit(
            event_service.BOOKING_CREATED,
            entity_type="booking",
            entity_id=booking.id,
            order_id=quote.order.id if quote.order is not None else None,
            payload={
                "quote_id": quote.id,
                "booking_date": booking_date.isoformat(),
                "time_slot": time_slot,
                "is_emergency": booking.is_emergency,
                "emergency_fee_cents": booking.emergency_fee_cents,
            },
            occurred_at=at,
        )
        db.session.commit()
        return booking

    return run_with_retry(_op)


def confirm_booking(booking_id: int) -> Booking:
    """PENDING | RESCHEDULED -> CONFIRMED."""
    def _op():
        booking = _lock_booking(booking_id)
        if booking.status not in (STATUS_PENDING, STATUS_RESCHEDULED):
            raise InvalidStateError(
                f"Cannot confirm booking {booking_id} in status {booking.status}",
                details={"current_status": booking.status},
            )
        _ensure_order_open(booking)
        booking.status = STATUS_CONFIRMED
        booking.confirmed_at = utcnow()
        db.session.commit()
        return booking

    return run_with_retry(_op)


def reschedule(
    booking_id: int,
    new_date: date,
    *,
    time_slot: str | None = None,
    now: datetime | None = None,
) -> Booking:
    """
    Move an active booking to another date; it then awaits re-confirmation.

    The booking's own slot does not count against the new date.
    """
    time_slot = _validate_time_slot(time_slot)

    def _op():
        at = now or utcnow()
        if new_date < at.date():
            raise ValidationError("new_date cannot be in the past", details={"new_date": new_date.isoformat()})

        booking = _lock_booking(booking_id)
        if booking.status not in ACTIVE_STATUSES:
            raise InvalidStateError(
                f"Cannot reschedule booking {booking_id} in status {booking.status}",
                details={"current_status": booking.status},
            )
        _ensure_order_open(booking)

        _check_capacity(new_date, is_emergency=booking.is_emergency, exclude_booking_id=booking.id)

        booking.booking_date = new_date
        booking.time_slot = time_slot
        booking.reschedule_count = (booking.reschedule_count or 0) + 1
        booking.status = STATUS_RESCHEDULED
        booking.confirmed_at = None

        if booking.is_emergency:
            new_bps = emergency_fee_bps_for(new_date)
            if new_bps != booking.emergency_fee_bps:
                quote = booking.quote
                booking.emergency_fee_bps = new_bps
                base = _fee_base_cents(quote)
                booking.emergency_fee_cents = apply_bps(base, new_bps) if base is not None else None
                _apply_fee_to_order(quote, booking.emergency_fee_cents)

        db.session.commit()
        return booking

    return run_with_retry(_op)


def cancel(booking_id: int, *, now: datetime | None = None, reason: str | None = None) -> Booking:
    """
    Cancel a booking ahead of the cancellation window.

    Raises:
        InvalidStateError: booking already cancelled or completed
        CancellationWindowClosed: start is BOOKING_CANCELLATION_LEAD_HOURS away or less
    """
    def _op():
        at = now or utcnow()
        booking = _lock_booking(booking_id)
        if booking.status not in ACTIVE_STATUSES:
            raise InvalidStateError(
                f"Cannot cancel booking {booking_id} in status {booking.status}",
                details={"current_status": booking.status},
            )

        lead = timedelta(hours=current_app.config["BOOKING_CANCELLATION_LEAD_HOURS"])
        start = booking_start(booking)
        if start - at <= lead:
            raise CancellationWindowClosed(
                f"Booking {booking_id} starts within {int(lead.total_seconds() // 3600)} hours",
                details={"starts_at": start.isoformat(), "lead_hours": int(lead.total_seconds() // 3600)},
            )

        booking.status = STATUS_CANCELLED
        booking.cancelled_at = at

        quote = booking.quote
        if booking.is_emergency:
            _apply_fee_to_order(quote, 0)

        event_service.emit(
            event_service.BOOKING_CANCELLED,
            entity_type="booking",
            entity_id=booking.id,
            order_id=quote.order.id if quote.order is not None else None,
            payload={"quote_id": quote.id, "reason": reason, "was_emergency": booking.is_emergency},
            occurred_at=at,
        )
        db.session.commit()
        logger.info("Booking %s cancelled", booking.id)
        return booking

    return run_with_retry(_op)


def complete_booking(booking_id: int) -> Booking:
    """CONFIRMED -> COMPLETED."""
    def _op():
        booking = _lock_booking(booking_id)
        if booking.status != STATUS_CONFIRMED:
            raise InvalidStateError(
                f"Cannot complete booking {booking_id} in status {booking.status}",
                details={"current_status": booking.status},
            )
        _ensure_order_open(booking)
        booking.status = STATUS_COMPLETED
        booking.completed_at = utcnow()
        db.session.commit()
        return booking

    return run_with_retry(_op)


# =============================================================================
# CAPACITY ADMINISTRATION
# =============================================================================

def set_capacity_setting(day_of_week: int, **fields) -> CapacitySetting:
    """Create or update the capacity row for a weekday (0=Monday)."""
    if not isinstance(day_of_week, int) or not 0 <= day_of_week <= 6:
        raise ValidationError("day_of_week must be between 0 (Monday) and 6 (Sunday)")
    for key in ("default_slots", "emergency_slots_max", "emergency_fee_bps"):
        value = fields.get(key)
        if value is not None and value < 0:
            raise ValidationError(f"{key} cannot be negative")
    for key in ("start_time", "end_time"):
        value = fields.get(key)
        if value is not None and not re.match(r"^([01]\d|2[0-3]):[0-5]\d$", value):
            raise ValidationError(f"{key} must be HH:MM")

    allowed = {"is_working_day", "start_time", "end_time", "default_slots", "emergency_slots_max", "emergency_fee_bps"}

    def _op():
        setting = lock_for_update(db.session.query(CapacitySetting).filter_by(day_of_week=day_of_week)).first()
        if setting is None:
            setting = CapacitySetting(day_of_week=day_of_week)
            db.session.add(setting)
        for key, value in fields.items():
            if key in allowed and value is not None:
                setattr(setting, key, value)
        db.session.commit()
        return setting

    return run_with_retry(_op)


def list_capacity_settings() -> list[CapacitySetting]:
    return db.session.query(CapacitySetting).order_by(CapacitySetting.day_of_week.asc()).all()


def set_capacity_override(override_date: date, slots_available: int, reason: str | None = None) -> CapacityOverride:
    if not isinstance(slots_available, int) or slots_available < 0:
        raise ValidationError("slots_available must be a non-negative integer")

    def _op():
        override = db.session.query(CapacityOverride).filter_by(override_date=override_date).first()
        if override is None:
            override = CapacityOverride(override_date=override_date, slots_available=slots_available)
            db.session.add(override)
        override.slots_available = slots_available
        override.reason = reason
        db.session.commit()
        return override

    return run_with_retry(_op)


def add_blackout(start_date: date, end_date: date, reason: str | None = None) -> BlackoutDate:
    if start_date > end_date:
        raise ValidationError("start_date must be on or before end_date")

    def _op():
        blackout = BlackoutDate(start_date=start_date, end_date=end_date, reason=reason)
        db.session.add(blackout)
        db.session.commit()
        return blackout

    return run_with_retry(_op)


def remove_blackout(blackout_id: int) -> None:
    def _op():
        blackout = db.session.get(BlackoutDate, blackout_id)
        if blackout is None:
            raise NotFoundError(f"Blackout {blackout_id} not found")
        db.session.delete(blackout)
        db.session.commit()

    run_with_retry(_op)


def list_blackouts() -> list[BlackoutDate]:
    return db.session.query(BlackoutDate).order_by(BlackoutDate.start_date.asc()).all()

from __future__ import annotations

from ..extensions import db
from printshop.time_utils import to_utc_z, to_iso_date


class Booking(db.Model):
    """
    On-site / slot booking attached to a quote (and its order once finalized).

    Active statuses (occupy capacity): PENDING, CONFIRMED, RESCHEDULED.
    Emergency bookings draw from a separate, smaller capacity pool.
    """
    __tablename__ = "bookings"
    __table_args__ = (
        db.Index("ix_bookings_date_status", "booking_date", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    quote_id = db.Column(db.Integer, db.ForeignKey("quotes.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, nullable=False, index=True)

    booking_date = db.Column(db.Date, nullable=False)
    time_slot = db.Column(db.String(50), nullable=True)  # "HH:MM" or "HH:MM-HH:MM"
    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)

    is_emergency = db.Column(db.Boolean, nullable=False, default=False)
    emergency_fee_bps = db.Column(db.Integer, nullable=True)
    emergency_fee_cents = db.Column(db.Integer, nullable=True)
    reschedule_count = db.Column(db.Integer, nullable=False, default=0)

    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    quote = db.relationship("Quote", backref=db.backref("bookings", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "quote_id": self.quote_id,
            "customer_id": self.customer_id,
            "booking_date": to_iso_date(self.booking_date),
            "time_slot": self.time_slot,
            "status": self.status,
            "is_emergency": self.is_emergency,
            "emergency_fee_bps": self.emergency_fee_bps,
            "emergency_fee_cents": self.emergency_fee_cents,
            "reschedule_count": self.reschedule_count,
            "confirmed_at": to_utc_z(self.confirmed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "completed_at": to_utc_z(self.completed_at),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class CapacitySetting(db.Model):
    """Per-weekday capacity (day_of_week: 0=Monday ... 6=Sunday)."""
    __tablename__ = "capacity_settings"
    __table_args__ = (
        db.UniqueConstraint("day_of_week", name="uq_capacity_settings_day"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    day_of_week = db.Column(db.Integer, nullable=False)
    is_working_day = db.Column(db.Boolean, nullable=False, default=True)
    start_time = db.Column(db.String(5), nullable=True)
    end_time = db.Column(db.String(5), nullable=True)
    default_slots = db.Column(db.Integer, nullable=False, default=5)
    emergency_slots_max = db.Column(db.Integer, nullable=False, default=2)
    # Authoritative emergency surcharge rate
    emergency_fee_bps = db.Column(db.Integer, nullable=False, default=2000)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "day_of_week": self.day_of_week,
            "is_working_day": self.is_working_day,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "default_slots": self.default_slots,
            "emergency_slots_max": self.emergency_slots_max,
            "emergency_fee_bps": self.emergency_fee_bps,
        }


class CapacityOverride(db.Model):
    """Replaces the weekday default_slots for one specific date."""
    __tablename__ = "capacity_overrides"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    override_date = db.Column(db.Date, nullable=False, unique=True)
    slots_available = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "override_date": to_iso_date(self.override_date),
            "slots_available": self.slots_available,
            "reason": self.reason,
        }


class BlackoutDate(db.Model):
    """Inclusive date range on which nothing can be booked."""
    __tablename__ = "blackout_dates"
    __table_args__ = (
        db.CheckConstraint("start_date <= end_date", name="ck_blackout_dates_range"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    start_date = db.Column(db.Date, nullable=False, index=True)
    end_date = db.Column(db.Date, nullable=False, index=True)
    reason = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "start_date": to_iso_date(self.start_date),
            "end_date": to_iso_date(self.end_date),
            "reason": self.reason,
        }

"""
Booking tests.

Verifies:
- Standard and emergency pools are counted separately per date
- Non-working days, blackouts and past dates are refused
- Emergency fees reprice the order and are removed on cancellation
- The cancellation window closes 24 hours before the booking starts
"""

from datetime import datetime, time, timedelta

import pytest

from printshop.errors import (
    BlackoutDateError,
    CancellationWindowClosed,
    CapacityExceededError,
    InvalidStateError,
    ValidationError,
)
from printshop.models import Booking, DomainEvent, Order
from printshop.services import booking_service, order_service, quote_service
from printshop.time_utils import utcnow

from conftest import STAFF_ID


class TestCapacity:

    def test_standard_pool_fills_up(self, db_session, make_quote, capacity, next_monday):
        for _ in range(2):
            booking_service.create_booking(make_quote().id, next_monday)

        with pytest.raises(CapacityExceededError) as exc:
            booking_service.create_booking(make_quote().id, next_monday)
        assert exc.value.details["pool"] == "standard"

        # The emergency pool is separate
        emergency = booking_service.create_booking(make_quote().id, next_monday, is_emergency=True)
        assert emergency.is_emergency

        slots = booking_service.available_slots(next_monday)
        assert slots["standard_available"] == 0
        assert slots["emergency_available"] == 0

    def test_weekend_closed(self, db_session, make_quote, capacity, next_monday):
        saturday = next_monday + timedelta(days=5)
        with pytest.raises(CapacityExceededError):
            booking_service.create_booking(make_quote().id, saturday)
        assert booking_service.available_slots(saturday)["is_working_day"] is False

    def test_blackout_refused(self, db_session, make_quote, capacity, next_monday):
        booking_service.add_blackout(next_monday, next_monday + timedelta(days=2), "Press maintenance")

        with pytest.raises(BlackoutDateError) as exc:
            booking_service.create_booking(make_quote().id, next_monday + timedelta(days=1))
        assert exc.value.details["reason"] == "Press maintenance"
        assert booking_service.available_slots(next_monday)["standard_capacity"] == 0

    def test_inverted_blackout_range(self, db_session, next_monday):
        with pytest.raises(ValidationError):
            booking_service.add_blackout(next_monday, next_monday - timedelta(days=1))

    def test_override_adds_slots(self, db_session, make_quote, capacity, next_monday):
        booking_service.set_capacity_override(next_monday, 3, "Extra shift")
        for _ in range(3):
            booking_service.create_booking(make_quote().id, next_monday)
        assert booking_service.available_slots(next_monday)["standard_available"] == 0

    def test_defaults_without_settings(self, db_session, next_monday):
        slots = booking_service.available_slots(next_monday)
        assert slots["standard_capacity"] == 5
        assert slots["emergency_capacity"] == 2
        assert slots["emergency_fee_bps"] == 2000

    def test_past_date_refused(self, db_session, make_quote, capacity):
        yesterday = utcnow().date() - timedelta(days=1)
        with pytest.raises(ValidationError):
            booking_service.create_booking(make_quote().id, yesterday)

    def test_one_active_booking_per_quote(self, db_session, make_quote, capacity, next_monday):
        quote = make_quote()
        booking_service.create_booking(quote.id, next_monday)
        with pytest.raises(InvalidStateError):
            booking_service.create_booking(quote.id, next_monday + timedelta(days=1))

    def test_bad_time_slot(self, db_session, make_quote, capacity, next_monday):
        with pytest.raises(ValidationError):
            booking_service.create_booking(make_quote().id, next_monday, time_slot="9am")

    def test_negative_capacity_setting_refused(self, db_session):
        with pytest.raises(ValidationError):
            booking_service.set_capacity_setting(2, default_slots=-1)


class TestEmergencyFee:

    def test_emergency_booking_reprices_order(self, db_session, make_order, capacity, next_monday):
        order = make_order()

        booking = booking_service.create_booking(order.quote_id, next_monday, is_emergency=True)

        assert booking.emergency_fee_bps == 2000
        assert booking.emergency_fee_cents == 2400
        order = db_session.get(Order, order.id)
        assert order.emergency_fee_cents == 2400
        assert order.total_amount_cents == 15_840
        assert order.balance_due_cents == 9240

        booking_service.cancel(booking.id, reason="Not needed")

        order = db_session.get(Order, order.id)
        assert order.emergency_fee_cents == 0
        assert order.total_amount_cents == 13_200
        assert order.balance_due_cents == 6600

    def test_fee_applied_when_quote_is_finalized(self, db_session, make_quote, capacity, next_monday):
        quote = make_quote()
        booking = booking_service.create_booking(quote.id, next_monday, is_emergency=True)
        assert booking.emergency_fee_cents is None

        quote_service.start_review(quote.id, STAFF_ID)
        order = quote_service.finalize_quote(quote.id, 12_000, 1000)

        assert order.emergency_fee_cents == 2400
        assert order.total_amount_cents == 15_840
        assert order.deposit_amount_cents == 7920
        assert db_session.get(Booking, booking.id).emergency_fee_cents == 2400


class TestBookingLifecycle:

    def test_confirm_reschedule_and_complete(self, db_session, make_quote, capacity, next_monday):
        booking = booking_service.create_booking(make_quote().id, next_monday, time_slot="10:00-11:00")

        booking = booking_service.confirm_booking(booking.id)
        assert booking.status == "CONFIRMED"
        assert booking.confirmed_at is not None

        booking = booking_service.reschedule(booking.id, next_monday + timedelta(days=1))
        assert booking.status == "RESCHEDULED"
        assert booking.confirmed_at is None
        assert booking.reschedule_count == 1
        assert booking.time_slot is None

        with pytest.raises(InvalidStateError):
            booking_service.complete_booking(booking.id)

        booking_service.confirm_booking(booking.id)
        booking = booking_service.complete_booking(booking.id)
        assert booking.status == "COMPLETED"

    def test_reschedule_into_full_day_refused(self, db_session, make_quote, capacity, next_monday):
        tuesday = next_monday + timedelta(days=1)
        for _ in range(2):
            booking_service.create_booking(make_quote().id, tuesday)
        booking = booking_service.create_booking(make_quote().id, next_monday)

        with pytest.raises(CapacityExceededError):
            booking_service.reschedule(booking.id, tuesday)
        assert db_session.get(Booking, booking.id).booking_date == next_monday

    def test_reschedule_keeps_own_slot(self, db_session, make_quote, capacity, next_monday):
        booking_service.create_booking(make_quote().id, next_monday)
        booking = booking_service.create_booking(make_quote().id, next_monday)

        booking = booking_service.reschedule(booking.id, next_monday, time_slot="14:00")
        assert booking.time_slot == "14:00"

    def test_cancel_window_closed(self, db_session, make_quote, capacity, next_monday):
        booking = booking_service.create_booking(make_quote().id, next_monday)
        # Day opens at 09:00
        now = datetime.combine(next_monday, time(9, 0)) - timedelta(hours=12)

        with pytest.raises(CancellationWindowClosed):
            booking_service.cancel(booking.id, now=now)
        assert db_session.get(Booking, booking.id).status == "PENDING"

    def test_cancel_frees_slot(self, db_session, make_quote, capacity, next_monday):
        booking = booking_service.create_booking(make_quote().id, next_monday)
        booking_service.cancel(booking.id)

        assert booking_service.available_slots(next_monday)["standard_available"] == 2
        with pytest.raises(InvalidStateError):
            booking_service.cancel(booking.id)


class TestOrderCancellation:

    def test_cancelled_order_releases_booking(self, db_session, make_order, capacity, next_monday):
        order = make_order()
        booking = booking_service.create_booking(order.quote_id, next_monday)

        order_service.advance_status(order.id, "CANCELLED")

        booking = db_session.get(Booking, booking.id)
        assert booking.status == "CANCELLED"
        assert booking.cancelled_at is not None
        assert booking_service.available_slots(next_monday)["standard_booked"] == 0
        event = db_session.query(DomainEvent).filter_by(
            event_type="booking.cancelled", entity_id=booking.id
        ).one()
        assert event.payload["reason"] == "order cancelled"

    def test_completed_order_freezes_booking(self, db_session, make_order, proofless_service, capacity, next_monday):
        order = make_order(service_id=proofless_service.id, tier_id=None)
        booking = booking_service.create_booking(order.quote_id, next_monday)
        for status in ("IN_PRODUCTION", "QUALITY_CHECK", "READY_FOR_PICKUP", "SHIPPED", "COMPLETED"):
            order_service.advance_status(order.id, status)

        with pytest.raises(InvalidStateError) as exc:
            booking_service.confirm_booking(booking.id)
        assert exc.value.details["order_status"] == "COMPLETED"
        with pytest.raises(InvalidStateError):
            booking_service.reschedule(booking.id, next_monday + timedelta(days=1))
        assert db_session.get(Booking, booking.id).status == "PENDING"

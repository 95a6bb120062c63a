"""
Quote engine tests.

Verifies:
- Submission validates answers and computes the estimate range
- Only reviewable quotes can be finalized, and never past expiry
- Finalizing creates exactly one order, atomically
- Rejection and expiry release bookings
"""

from datetime import timedelta

import pytest

from printshop.errors import InvalidStateError, NotFoundError, ValidationError
from printshop.models import Booking, DomainEvent, Order, Quote
from printshop.services import booking_service, order_service, quote_service
from printshop.time_utils import utcnow

from conftest import CUSTOMER_ID, STAFF_ID


class TestSubmitQuote:

    def test_submit_creates_requested_quote_with_estimate(self, db_session, make_quote):
        quote = make_quote()

        assert quote.status == "REQUESTED"
        assert quote.quote_number == "Q-000001"
        assert quote.customer_id == CUSTOMER_ID
        # 25.00 base + 10 x 0.12
        assert quote.estimate_min_cents == 2620
        # plus the Standard tier's 25% rush fee
        assert quote.estimate_max_cents == 3275
        assert [a.option_key for a in quote.answers] == ["quantity", "finish"]

    def test_expiry_defaults_to_thirty_days(self, db_session, make_quote):
        now = utcnow().replace(microsecond=0)
        quote = make_quote(now=now)
        assert quote.expires_at == now + timedelta(days=30)

    def test_missing_required_answer_rejected(self, db_session, make_quote):
        with pytest.raises(ValidationError) as exc:
            make_quote(answers=[{"option_key": "quantity", "answer_value": "10"}])
        assert exc.value.details["missing"] == ["finish"]
        assert db_session.query(Quote).count() == 0

    def test_choice_must_be_declared(self, db_session, make_quote):
        with pytest.raises(ValidationError):
            make_quote(answers=[
                {"option_key": "quantity", "answer_value": "10"},
                {"option_key": "finish", "answer_value": "velvet"},
            ])

    def test_number_respects_rules(self, db_session, make_quote):
        with pytest.raises(ValidationError):
            make_quote(answers=[
                {"option_key": "quantity", "answer_value": "0"},
                {"option_key": "finish", "answer_value": "matte"},
            ])

    def test_inactive_service_rejected(self, db_session, service, make_quote):
        service.is_active = False
        db_session.commit()
        with pytest.raises(ValidationError):
            make_quote()

    def test_unknown_tier(self, db_session, make_quote):
        with pytest.raises(NotFoundError):
            make_quote(tier_id=99999)

    def test_add_answer_only_while_open_for_review(self, db_session, make_quote):
        quote = make_quote()
        answer = quote_service.add_answer(quote.id, "notes", "Logo on the back")
        assert answer.option_label == "notes"

        quote_service.start_review(quote.id, STAFF_ID)
        quote_service.send_for_approval(quote.id)
        with pytest.raises(InvalidStateError):
            quote_service.add_answer(quote.id, "colour", "blue")


class TestReview:

    def test_review_rejects_inverted_range(self, db_session, make_quote):
        quote = make_quote()
        with pytest.raises(ValidationError):
            quote_service.start_review(quote.id, STAFF_ID, estimate_min_cents=5000, estimate_max_cents=4000)
        assert db_session.get(Quote, quote.id).status == "REQUESTED"

    def test_send_requires_review_first(self, db_session, make_quote):
        quote = make_quote()
        with pytest.raises(InvalidStateError):
            quote_service.send_for_approval(quote.id)


class TestFinalize:

    def test_finalize_prices_quote_and_creates_order(self, db_session, make_quote):
        quote = make_quote()
        quote_service.start_review(quote.id, STAFF_ID)

        order = quote_service.finalize_quote(quote.id, 12_000, 1000, staff_id=STAFF_ID)

        quote = db_session.get(Quote, quote.id)
        assert quote.status == "FINALIZED"
        assert quote.final_subtotal_cents == 12_000
        assert quote.tax_amount_cents == 1200
        assert quote.total_amount_cents == 13_200
        assert quote.finalized_at is not None

        assert order.quote_id == quote.id
        assert order.status == "DEPOSIT_PAID"
        assert order.order_number == "ORD-000001"

        event_types = [e.event_type for e in db_session.query(DomainEvent).order_by(DomainEvent.id)]
        assert "quote.finalized" in event_types

    def test_finalize_from_pending_approval(self, db_session, make_quote):
        quote = make_quote()
        quote_service.start_review(quote.id, STAFF_ID)
        quote_service.send_for_approval(quote.id)
        order = quote_service.finalize_quote(quote.id, 5000, 0)
        assert order.total_amount_cents == 5000

    def test_finalize_requires_review(self, db_session, make_quote):
        quote = make_quote()
        with pytest.raises(InvalidStateError):
            quote_service.finalize_quote(quote.id, 12_000, 1000)

    def test_finalize_twice_refused(self, db_session, make_quote):
        quote = make_quote()
        quote_service.start_review(quote.id, STAFF_ID)
        quote_service.finalize_quote(quote.id, 12_000, 1000)

        with pytest.raises(InvalidStateError):
            quote_service.finalize_quote(quote.id, 12_000, 1000)
        assert db_session.query(Order).count() == 1

    def test_finalize_after_expiry_refused(self, db_session, make_quote):
        created = utcnow() - timedelta(days=40)
        quote = make_quote(now=created)
        quote_service.start_review(quote.id, STAFF_ID)

        with pytest.raises(InvalidStateError):
            quote_service.finalize_quote(quote.id, 12_000, 1000)
        assert db_session.get(Quote, quote.id).status == "UNDER_REVIEW"

    @pytest.mark.parametrize("subtotal,tax", [(-1, 1000), (12_000, -5), (12_000, 10_001)])
    def test_finalize_rejects_bad_amounts(self, db_session, make_quote, subtotal, tax):
        quote = make_quote()
        quote_service.start_review(quote.id, STAFF_ID)
        with pytest.raises(ValidationError):
            quote_service.finalize_quote(quote.id, subtotal, tax)

    def test_order_failure_leaves_quote_untouched(self, db_session, make_quote, monkeypatch):
        quote = make_quote()
        quote_service.start_review(quote.id, STAFF_ID)

        def boom(*args, **kwargs):
            raise RuntimeError("order store unavailable")

        monkeypatch.setattr(order_service, "create_order_from_quote_locked", boom)

        with pytest.raises(RuntimeError):
            quote_service.finalize_quote(quote.id, 12_000, 1000)

        quote = db_session.get(Quote, quote.id)
        assert quote.status == "UNDER_REVIEW"
        assert quote.final_subtotal_cents is None
        assert db_session.query(Order).count() == 0
        assert db_session.query(DomainEvent).filter_by(event_type="quote.finalized").count() == 0


class TestRejectAndExpire:

    def test_reject_releases_bookings(self, db_session, make_quote, capacity, next_monday):
        quote = make_quote()
        booking = booking_service.create_booking(quote.id, next_monday)

        quote_service.reject_quote(quote.id, "Out of scope", staff_id=STAFF_ID)

        quote = db_session.get(Quote, quote.id)
        assert quote.status == "REJECTED"
        assert quote.rejection_reason == "Out of scope"
        assert db_session.get(Booking, booking.id).status == "CANCELLED"
        assert booking_service.available_slots(next_monday)["standard_available"] == 2

    def test_reject_finalized_quote_refused(self, db_session, make_order):
        order = make_order()
        with pytest.raises(InvalidStateError):
            quote_service.reject_quote(order.quote_id)

    def test_expire_stale_quotes(self, db_session, make_quote, capacity, next_monday):
        now = utcnow()
        stale = make_quote(now=now - timedelta(days=31))
        fresh = make_quote(now=now)
        booking = booking_service.create_booking(stale.id, next_monday)

        result = quote_service.expire_stale_quotes(now)

        assert result == {"scanned": 1, "expired": 1, "failed": 0}
        assert db_session.get(Quote, stale.id).status == "EXPIRED"
        assert db_session.get(Quote, fresh.id).status == "REQUESTED"
        assert db_session.get(Booking, booking.id).status == "CANCELLED"

    def test_expire_is_repeatable(self, db_session, make_quote):
        now = utcnow()
        make_quote(now=now - timedelta(days=31))

        quote_service.expire_stale_quotes(now)
        second = quote_service.expire_stale_quotes(now)

        assert second == {"scanned": 0, "expired": 0, "failed": 0}
        assert db_session.query(DomainEvent).filter_by(event_type="quote.expired").count() == 1

    def test_finalized_quotes_never_expire(self, db_session, make_order):
        order = make_order()
        result = quote_service.expire_stale_quotes(utcnow() + timedelta(days=365))
        assert result["expired"] == 0
        assert db_session.get(Quote, order.quote_id).status == "FINALIZED"

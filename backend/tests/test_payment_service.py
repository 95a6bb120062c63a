"""
Payment and invoice tests.

Verifies:
- Balance due is re-derived from completed payments net of refunds
- Payments cannot exceed the balance left after pending payments
- Refunds are capped by the unrefunded remainder
- One invoice per order, refreshed as payments land
"""

from datetime import timedelta

import pytest

from printshop.errors import InvalidStateError, NotFoundError, ValidationError
from printshop.models import DomainEvent, Order
from printshop.services import order_service, payment_service
from printshop.time_utils import utcnow

from conftest import STAFF_ID


def _deposit(db_session, order):
    return next(p for p in payment_service.list_payments(order.id) if p.is_deposit)


class TestRecordPayment:

    def test_settling_the_balance(self, db_session, make_order):
        order = make_order()

        payment = payment_service.record_payment(order.id, 6600, "BANK_TRANSFER", confirm=True, verified_by=STAFF_ID)

        assert payment.status == "COMPLETED"
        assert payment.payment_number == "PAY-000002"
        assert payment.verified_by_admin_id == STAFF_ID
        assert db_session.get(Order, order.id).balance_due_cents == 0

        summary = payment_service.payment_summary(order.id)
        assert summary["payment_status"] == "PAID"
        assert summary["amount_paid_cents"] == 13_200
        assert len(summary["payments"]) == 2

    def test_pending_until_confirmed(self, db_session, make_order):
        order = make_order()

        payment = payment_service.record_payment(order.id, 2000, "CHECK", transaction_ref="CHK-1009")
        assert payment.status == "PENDING"
        assert db_session.get(Order, order.id).balance_due_cents == 6600

        payment = payment_service.confirm_payment(payment.id, verified_by=STAFF_ID)
        assert payment.status == "COMPLETED"
        assert db_session.get(Order, order.id).balance_due_cents == 4600

        summary = payment_service.payment_summary(order.id)
        assert summary["payment_status"] == "PARTIAL"
        event_types = [e.event_type for e in db_session.query(DomainEvent).filter_by(order_id=order.id)]
        assert "payment.completed" in event_types

    def test_amount_capped_by_balance(self, db_session, make_order):
        order = make_order()
        with pytest.raises(ValidationError) as exc:
            payment_service.record_payment(order.id, 6601, "CASH")
        assert exc.value.details["balance_due_cents"] == 6600

    def test_pending_payments_count_toward_cap(self, db_session, make_order):
        order = make_order()
        payment_service.record_payment(order.id, 5000, "CHECK")

        with pytest.raises(ValidationError) as exc:
            payment_service.record_payment(order.id, 2000, "CASH")
        assert exc.value.details["balance_due_cents"] == 1600

    @pytest.mark.parametrize("amount,method", [(0, "CASH"), (-100, "CASH"), (100, "BITCOIN")])
    def test_bad_input(self, db_session, make_order, amount, method):
        order = make_order()
        with pytest.raises(ValidationError):
            payment_service.record_payment(order.id, amount, method)

    def test_failed_payment_leaves_balance(self, db_session, make_order):
        order = make_order()
        payment = payment_service.record_payment(order.id, 3000, "CREDIT_CARD")

        payment = payment_service.fail_payment(payment.id, reason="Card declined")

        assert payment.status == "FAILED"
        assert payment.failed_at is not None
        assert db_session.get(Order, order.id).balance_due_cents == 6600
        with pytest.raises(InvalidStateError):
            payment_service.confirm_payment(payment.id)

    def test_no_payment_on_cancelled_order(self, db_session, make_order):
        order = make_order()
        order_service.advance_status(order.id, "CANCELLED")
        with pytest.raises(InvalidStateError):
            payment_service.record_payment(order.id, 100, "CASH")

    def test_unknown_order(self, db_session):
        with pytest.raises(NotFoundError):
            payment_service.record_payment(999_999, 100, "CASH")


class TestRefunds:

    def test_partial_then_full_refund(self, db_session, make_order):
        order = make_order()
        deposit = _deposit(db_session, order)

        deposit = payment_service.refund_payment(deposit.id, 1000, "Goodwill")
        assert deposit.status == "COMPLETED"
        assert deposit.refund_amount_cents == 1000
        assert db_session.get(Order, order.id).balance_due_cents == 7600

        deposit = payment_service.refund_payment(deposit.id, 5600, "Order dropped")
        assert deposit.status == "REFUNDED"
        assert deposit.refund_amount_cents == 6600
        assert db_session.get(Order, order.id).balance_due_cents == 13_200

    def test_refund_capped_by_remainder(self, db_session, make_order):
        order = make_order()
        deposit = _deposit(db_session, order)
        payment_service.refund_payment(deposit.id, 6000, "Partial")

        with pytest.raises(ValidationError) as exc:
            payment_service.refund_payment(deposit.id, 601, "Too much")
        assert exc.value.details["refundable_cents"] == 600

    def test_refund_needs_reason(self, db_session, make_order):
        order = make_order()
        with pytest.raises(ValidationError):
            payment_service.refund_payment(_deposit(db_session, order).id, 100, " ")

    def test_only_completed_payments_refundable(self, db_session, make_order):
        order = make_order()
        pending = payment_service.record_payment(order.id, 1000, "CHECK")
        with pytest.raises(InvalidStateError):
            payment_service.refund_payment(pending.id, 500, "Bounced")

    def test_refund_allowed_on_cancelled_order(self, db_session, make_order):
        order = make_order()
        order_service.advance_status(order.id, "CANCELLED")

        deposit = payment_service.refund_payment(_deposit(db_session, order).id, 6600, "Cancelled by customer")
        assert deposit.status == "REFUNDED"


class TestInvoices:

    def test_issue_and_settle(self, db_session, make_order):
        order = make_order()
        issued_at = utcnow().replace(microsecond=0)

        invoice = payment_service.issue_invoice(order.id, now=issued_at)

        assert invoice.invoice_number == "INV-000001"
        assert invoice.due_date == issued_at + timedelta(days=14)
        assert invoice.total_amount_cents == 13_200
        assert invoice.amount_paid_cents == 6600
        assert invoice.amount_due_cents == 6600
        assert invoice.paid_at is None

        payment_service.record_payment(order.id, 6600, "CASH", confirm=True)

        invoice = payment_service.get_invoice(order.id)
        assert invoice.amount_due_cents == 0
        assert invoice.paid_at is not None

    def test_reissue_keeps_number(self, db_session, make_order):
        order = make_order()
        first = payment_service.issue_invoice(order.id)
        order_service.apply_emergency_fee(order.id, 2400)

        second = payment_service.issue_invoice(order.id)

        assert second.id == first.id
        assert second.invoice_number == "INV-000001"
        assert second.fees_cents == 2400
        assert second.total_amount_cents == 15_840

    def test_missing_invoice(self, db_session, make_order):
        order = make_order()
        with pytest.raises(NotFoundError):
            payment_service.get_invoice(order.id)

# Overview: Service-layer operations for payments and invoices; keeps the order balance in step with the ledger.

"""
Payment & Invoicing

DESIGN PRINCIPLES:
- Payments are separate rows against an order (many-to-one).
- Only COMPLETED payments count toward the balance, net of partial refunds.
- The order's balance_due is always re-derived after a payment changes state,
  never adjusted by delta.
- Refunds are recorded on the original payment (refund_amount_cents grows);
  a fully refunded payment becomes REFUNDED.

PAYMENT STATUS:
    PENDING -> COMPLETED | FAILED
    COMPLETED -> REFUNDED (fully refunded)

DERIVED ORDER PAYMENT STATUS:
- UNPAID: nothing collected
- PARTIAL: 0 < collected < total
- PAID: collected >= total
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from ..extensions import db
from ..models import Invoice, Order, Payment
from ..errors import InvalidStateError, NotFoundError, ValidationError
from printshop.time_utils import utcnow
from . import event_service, order_service
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

METHOD_CREDIT_CARD = "CREDIT_CARD"
METHOD_BANK_TRANSFER = "BANK_TRANSFER"
METHOD_CHECK = "CHECK"
METHOD_CASH = "CASH"

VALID_METHODS = order_service.PAYMENT_METHODS

STATUS_PENDING = "PENDING"
STATUS_COMPLETED = "COMPLETED"
STATUS_FAILED = "FAILED"
STATUS_REFUNDED = "REFUNDED"

PAYMENT_STATUS_UNPAID = "UNPAID"
PAYMENT_STATUS_PARTIAL = "PARTIAL"
PAYMENT_STATUS_PAID = "PAID"

INVOICE_DUE_DAYS = 14


def _lock_order(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def _lock_payment_and_order(payment_id: int) -> tuple[Payment, Order]:
    payment = db.session.get(Payment, payment_id)
    if payment is None:
        raise NotFoundError(f"Payment {payment_id} not found")
    order = _lock_order(payment.order_id)
    payment = lock_for_update(db.session.query(Payment).filter_by(id=payment_id)).first()
    return payment, order


def _pending_total_cents(order_id: int, exclude_payment_id: int | None = None) -> int:
    q = db.session.query(Payment).filter(Payment.order_id == order_id, Payment.status == STATUS_PENDING)
    if exclude_payment_id is not None:
        q = q.filter(Payment.id != exclude_payment_id)
    return sum(p.amount_cents for p in q.all())


def _complete_locked(payment: Payment, order: Order, *, verified_by: int | None, at: datetime) -> None:
    payment.status = STATUS_COMPLETED
    payment.payment_date = payment.payment_date or at
    payment.verified_at = at
    payment.verified_by_admin_id = verified_by
    order_service.recompute_balance_locked(order, now=at)
    event_service.emit(
        event_service.PAYMENT_COMPLETED,
        entity_type="payment",
        entity_id=payment.id,
        order_id=order.id,
        actor_id=verified_by,
        payload={
            "payment_number": payment.payment_number,
            "amount_cents": payment.amount_cents,
            "method": payment.method,
            "balance_due_cents": order.balance_due_cents,
        },
        occurred_at=at,
    )


# =============================================================================
# PAYMENT CREATION AND CONFIRMATION
# =============================================================================

def record_payment(
    order_id: int,
    amount_cents: int,
    method: str,
    *,
    transaction_ref: str | None = None,
    confirm: bool = False,
    verified_by: int | None = None,
    now: datetime | None = None,
) -> Payment:
    """
    Record a payment against an order.

    The amount may not exceed the balance still uncovered by completed or
    pending payments. With confirm=True the payment completes immediately.

    Raises:
        ValidationError: bad method or amount, or amount above the balance due
        InvalidStateError: order is COMPLETED or CANCELLED
    """
    if method not in VALID_METHODS:
        raise ValidationError(f"Invalid payment method: {method}. Must be one of {VALID_METHODS}")
    if not isinstance(amount_cents, int) or isinstance(amount_cents, bool) or amount_cents <= 0:
        raise ValidationError("Payment amount must be a positive integer (cents)")

    def _op():
        at = now or utcnow()
        order = _lock_order(order_id)
        if order.status in order_service.TERMINAL_STATUSES:
            raise InvalidStateError(
                f"Cannot take payment on {order.status} order {order_id}",
                details={"current_status": order.status},
            )

        order_service.recompute_balance_locked(order, now=at)
        open_balance = order.balance_due_cents - _pending_total_cents(order.id)
        if amount_cents > open_balance:
            raise ValidationError(
                "Payment amount exceeds balance due",
                details={"amount_cents": amount_cents, "balance_due_cents": max(open_balance, 0)},
            )

        payment = Payment(
            payment_number=next_document_number("PAYMENT"),
            order_id=order.id,
            amount_cents=amount_cents,
            method=method,
            status=STATUS_PENDING,
            is_deposit=False,
            transaction_ref=transaction_ref,
            payment_date=at,
        )
        db.session.add(payment)
        db.session.flush()

        if confirm:
            _complete_locked(payment, order, verified_by=verified_by, at=at)

        db.session.commit()
        logger.info("Payment %s recorded for order %s (%s)", payment.payment_number, order.order_number, payment.status)
        return payment

    return run_with_retry(_op)


def confirm_payment(payment_id: int, *, verified_by: int | None = None, now: datetime | None = None) -> Payment:
    """PENDING -> COMPLETED, then re-derive the order balance."""
    def _op():
        at = now or utcnow()
        payment, order = _lock_payment_and_order(payment_id)
        if payment.status != STATUS_PENDING:
            raise InvalidStateError(
                f"Cannot confirm payment {payment_id} in status {payment.status}",
                details={"current_status": payment.status},
            )
        order_service.recompute_balance_locked(order, now=at)
        if payment.amount_cents > order.balance_due_cents:
            raise ValidationError(
                "Payment amount exceeds balance due",
                details={"amount_cents": payment.amount_cents, "balance_due_cents": order.balance_due_cents},
            )
        _complete_locked(payment, order, verified_by=verified_by, at=at)
        db.session.commit()
        return payment

    return run_with_retry(_op)


def fail_payment(payment_id: int, *, reason: str | None = None) -> Payment:
    """PENDING -> FAILED. Failed payments never touch the balance."""
    def _op():
        payment, _order = _lock_payment_and_order(payment_id)
        if payment.status != STATUS_PENDING:
            raise InvalidStateError(
                f"Cannot fail payment {payment_id} in status {payment.status}",
                details={"current_status": payment.status},
            )
        payment.status = STATUS_FAILED
        payment.failed_at = utcnow()
        db.session.commit()
        logger.info("Payment %s failed: %s", payment.payment_number, reason or "no reason given")
        return payment

    return run_with_retry(_op)


# =============================================================================
# REFUNDS
# =============================================================================

def refund_payment(
    payment_id: int,
    amount_cents: int,
    reason: str,
    *,
    actor_id: int | None = None,
    now: datetime | None = None,
) -> Payment:
    """
    Refund part or all of a completed payment.

    Allowed on closed orders as well. The refund may not exceed what is
    left of the payment after earlier refunds.
    """
    if not isinstance(amount_cents, int) or isinstance(amount_cents, bool) or amount_cents <= 0:
        raise ValidationError("Refund amount must be a positive integer (cents)")
    if not reason or not reason.strip():
        raise ValidationError("reason is required")

    def _op():
        at = now or utcnow()
        payment, order = _lock_payment_and_order(payment_id)
        if payment.status != STATUS_COMPLETED:
            raise InvalidStateError(
                f"Only COMPLETED payments can be refunded (payment {payment_id} is {payment.status})",
                details={"current_status": payment.status},
            )

        refundable = payment.amount_cents - (payment.refund_amount_cents or 0)
        if amount_cents > refundable:
            raise ValidationError(
                "Refund amount exceeds the refundable remainder",
                details={"amount_cents": amount_cents, "refundable_cents": refundable},
            )

        payment.refund_amount_cents = (payment.refund_amount_cents or 0) + amount_cents
        payment.refund_reason = reason.strip()[:255]
        payment.refunded_at = at
        if payment.refund_amount_cents == payment.amount_cents:
            payment.status = STATUS_REFUNDED

        order_service.recompute_balance_locked(order, now=at)

        event_service.emit(
            event_service.PAYMENT_REFUNDED,
            entity_type="payment",
            entity_id=payment.id,
            order_id=order.id,
            actor_id=actor_id,
            payload={
                "payment_number": payment.payment_number,
                "refund_cents": amount_cents,
                "refund_total_cents": payment.refund_amount_cents,
                "balance_due_cents": order.balance_due_cents,
            },
            occurred_at=at,
        )
        db.session.commit()
        return payment

    return run_with_retry(_op)


# =============================================================================
# INVOICES
# =============================================================================

def issue_invoice(order_id: int, *, now: datetime | None = None) -> Invoice:
    """
    Issue the order's invoice, or refresh it if it already exists.

    One invoice per order; re-issuing keeps the number and updates the figures.
    """
    def _op():
        at = now or utcnow()
        order = _lock_order(order_id)
        invoice = order.invoice
        if invoice is None:
            invoice = Invoice(
                invoice_number=next_document_number("INVOICE"),
                order_id=order.id,
                customer_id=order.customer_id,
                subtotal_cents=order.subtotal_cents,
                tax_rate_bps=order.tax_rate_bps,
                tax_amount_cents=order.tax_amount_cents,
                total_amount_cents=order.total_amount_cents,
                amount_due_cents=order.balance_due_cents,
                issued_at=at,
                due_date=at + timedelta(days=INVOICE_DUE_DAYS),
            )
            db.session.add(invoice)
            db.session.flush()
            order.invoice = invoice
        order_service.recompute_balance_locked(order, now=at)
        db.session.commit()
        return invoice

    return run_with_retry(_op)


def get_invoice(order_id: int) -> Invoice:
    invoice = db.session.query(Invoice).filter_by(order_id=order_id).first()
    if invoice is None:
        raise NotFoundError(f"No invoice issued for order {order_id}")
    return invoice


# =============================================================================
# REPORTING
# =============================================================================

def list_payments(order_id: int) -> list[Payment]:
    order_service.get_order(order_id)
    return db.session.query(Payment).filter_by(order_id=order_id).order_by(Payment.id.asc()).all()


def payment_summary(order_id: int) -> dict:
    """
    Derived payment position of an order.

    Returns totals plus payment_status (UNPAID, PARTIAL, PAID) and the
    payment rows themselves.
    """
    order = order_service.get_order(order_id)
    paid = order_service.amount_paid_cents(order.id)
    total = order.total_amount_cents
    balance = total - paid

    if paid <= 0:
        status = PAYMENT_STATUS_UNPAID
    elif paid < total:
        status = PAYMENT_STATUS_PARTIAL
    else:
        status = PAYMENT_STATUS_PAID

    payments = list_payments(order_id)
    return {
        "order_id": order.id,
        "total_amount_cents": total,
        "deposit_amount_cents": order.deposit_amount_cents,
        "amount_paid_cents": paid,
        "amount_pending_cents": _pending_total_cents(order.id),
        "refunded_cents": sum(p.refund_amount_cents or 0 for p in payments),
        "balance_due_cents": balance,
        "payment_status": status,
        "payments": [p.to_dict() for p in payments],
    }

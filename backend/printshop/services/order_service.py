# Overview: Service-layer operations for orders; status state machine, derived totals and balance.

"""
Order Engine

WHY: The order is the hub of fulfillment. Every status change goes through
one allow-list graph so that proofs, inventory, SLA timers and payments
agree on where an order is.

STATUS GRAPH:
    DEPOSIT_PAID        -> DESIGN_IN_PROGRESS | IN_PRODUCTION (*)
    DESIGN_IN_PROGRESS  -> WAITING_APPROVAL | IN_PRODUCTION (*)
    WAITING_APPROVAL    -> DESIGN_IN_PROGRESS | IN_PRODUCTION (approved proof)
    IN_PRODUCTION       -> QUALITY_CHECK
    QUALITY_CHECK       -> IN_PRODUCTION | READY_FOR_PICKUP
    READY_FOR_PICKUP    -> SHIPPED | COMPLETED
    SHIPPED             -> COMPLETED
    any non-terminal    -> CANCELLED

    (*) only when the service does not require a proof.

DERIVED VALUES (never accepted from clients):
- taxable = subtotal + rush_fee + emergency_fee
- tax = taxable x tax_rate, total = taxable + tax
- balance_due = total - SUM(amount - refund_amount) over COMPLETED payments
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation

from sqlalchemy import func

from ..extensions import db
from ..models import (
    Order,
    OrderChecklistItem,
    Payment,
    ProofVersion,
    Quote,
    SlaTimer,
    Booking,
)
from ..errors import (
    IllegalTransitionError,
    InvalidStateError,
    NotFoundError,
    RevisionLimitExceeded,
    ValidationError,
)
from ..money_utils import apply_bps
from printshop.time_utils import utcnow
from . import catalog_service, event_service, inventory_service, sla_service
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number

logger = logging.getLogger(__name__)


# =============================================================================
# ORDER STATUS (CONSTANTS)
# =============================================================================

STATUS_DEPOSIT_PAID = "DEPOSIT_PAID"
STATUS_DESIGN_IN_PROGRESS = "DESIGN_IN_PROGRESS"
STATUS_WAITING_APPROVAL = "WAITING_APPROVAL"
STATUS_IN_PRODUCTION = "IN_PRODUCTION"
STATUS_QUALITY_CHECK = "QUALITY_CHECK"
STATUS_READY_FOR_PICKUP = "READY_FOR_PICKUP"
STATUS_SHIPPED = "SHIPPED"
STATUS_COMPLETED = "COMPLETED"
STATUS_CANCELLED = "CANCELLED"

ORDER_STATUSES = [
    STATUS_DEPOSIT_PAID,
    STATUS_DESIGN_IN_PROGRESS,
    STATUS_WAITING_APPROVAL,
    STATUS_IN_PRODUCTION,
    STATUS_QUALITY_CHECK,
    STATUS_READY_FOR_PICKUP,
    STATUS_SHIPPED,
    STATUS_COMPLETED,
    STATUS_CANCELLED,
]

TERMINAL_STATUSES = {STATUS_COMPLETED, STATUS_CANCELLED}

ALLOWED_TRANSITIONS = {
    STATUS_DEPOSIT_PAID: {STATUS_DESIGN_IN_PROGRESS, STATUS_IN_PRODUCTION},
    STATUS_DESIGN_IN_PROGRESS: {STATUS_WAITING_APPROVAL, STATUS_IN_PRODUCTION},
    STATUS_WAITING_APPROVAL: {STATUS_DESIGN_IN_PROGRESS, STATUS_IN_PRODUCTION},
    STATUS_IN_PRODUCTION: {STATUS_QUALITY_CHECK},
    STATUS_QUALITY_CHECK: {STATUS_IN_PRODUCTION, STATUS_READY_FOR_PICKUP},
    STATUS_READY_FOR_PICKUP: {STATUS_SHIPPED, STATUS_COMPLETED},
    STATUS_SHIPPED: {STATUS_COMPLETED},
}

# Shortcuts that skip proofing entirely
PROOFLESS_SHORTCUTS = {
    (STATUS_DEPOSIT_PAID, STATUS_IN_PRODUCTION),
    (STATUS_DESIGN_IN_PROGRESS, STATUS_IN_PRODUCTION),
}

PAYMENT_METHODS = ["CREDIT_CARD", "BANK_TRANSFER", "CHECK", "CASH"]
ACTIVE_BOOKING_STATUSES = ("PENDING", "CONFIRMED", "RESCHEDULED")

SORTABLE_FIELDS = {
    "order_number": Order.order_number,
    "created_at": Order.created_at,
    "due_at": Order.due_at,
    "priority": Order.priority,
}


# =============================================================================
# LOOKUPS
# =============================================================================

def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def _lock_order(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def list_orders(
    *,
    customer_id: int | None = None,
    status: str | None = None,
    assigned_staff_id: int | None = None,
    priority: int | None = None,
    sla_breached: bool | None = None,
    limit: int = 50,
    offset: int = 0,
    sort_by: str = "created_at",
    sort_order: str = "desc",
) -> tuple[list[Order], int]:
    """Filtered, paginated order listing. Returns (orders, total_count)."""
    q = db.session.query(Order)
    if customer_id is not None:
        q = q.filter(Order.customer_id == customer_id)
    if status:
        q = q.filter(Order.status == status)
    if assigned_staff_id is not None:
        q = q.filter(Order.assigned_staff_id == assigned_staff_id)
    if priority is not None:
        q = q.filter(Order.priority == priority)
    if sla_breached is not None:
        q = q.filter(Order.sla_breached.is_(sla_breached))

    total = q.count()

    column = SORTABLE_FIELDS.get(sort_by, Order.created_at)
    ordering = column.asc() if sort_order == "asc" else column.desc()
    orders = q.order_by(ordering, Order.id.desc()).offset(offset).limit(limit).all()
    return orders, total


# =============================================================================
# PRICING AND BALANCE (caller holds the order lock)
# =============================================================================

def _apply_totals(order: Order) -> None:
    taxable = order.subtotal_cents + (order.rush_fee_cents or 0) + (order.emergency_fee_cents or 0)
    order.tax_amount_cents = apply_bps(taxable, order.tax_rate_bps or 0)
    order.total_amount_cents = taxable + order.tax_amount_cents


def amount_paid_cents(order_id: int) -> int:
    """Net amount collected: completed payments minus their partial refunds."""
    paid = (
        db.session.query(
            func.coalesce(func.sum(Payment.amount_cents - Payment.refund_amount_cents), 0)
        )
        .filter(Payment.order_id == order_id, Payment.status == "COMPLETED")
        .scalar()
    )
    return int(paid or 0)


def refresh_invoice_locked(order: Order, *, now: datetime | None = None) -> None:
    """Bring an already-issued invoice in line with the order's current figures."""
    invoice = order.invoice
    if invoice is None:
        return
    paid = amount_paid_cents(order.id)
    invoice.subtotal_cents = order.subtotal_cents
    invoice.fees_cents = (order.rush_fee_cents or 0) + (order.emergency_fee_cents or 0)
    invoice.tax_rate_bps = order.tax_rate_bps
    invoice.tax_amount_cents = order.tax_amount_cents
    invoice.total_amount_cents = order.total_amount_cents
    invoice.amount_paid_cents = paid
    invoice.amount_due_cents = order.balance_due_cents
    if order.balance_due_cents <= 0:
        if invoice.paid_at is None:
            invoice.paid_at = now or utcnow()
    else:
        invoice.paid_at = None


def recompute_balance_locked(order: Order, *, now: datetime | None = None) -> Order:
    db.session.flush()
    order.balance_due_cents = order.total_amount_cents - amount_paid_cents(order.id)
    refresh_invoice_locked(order, now=now)
    return order


def recompute_balance(order_id: int) -> Order:
    """Re-derive balance_due from the payment ledger."""
    def _op():
        order = _lock_order(order_id)
        recompute_balance_locked(order)
        db.session.commit()
        return order

    return run_with_retry(_op)


def apply_emergency_fee_locked(order: Order, fee_cents: int) -> Order:
    """Set (or clear, with 0) the emergency fee and reprice the order."""
    if fee_cents < 0:
        raise ValidationError("Emergency fee cannot be negative")
    if order.status in TERMINAL_STATUSES:
        raise InvalidStateError(
            f"Cannot reprice {order.status} order {order.id}",
            details={"current_status": order.status},
        )
    order.emergency_fee_cents = fee_cents
    _apply_totals(order)
    recompute_balance_locked(order)
    return order


def apply_emergency_fee(order_id: int, fee_cents: int) -> Order:
    def _op():
        order = _lock_order(order_id)
        apply_emergency_fee_locked(order, fee_cents)
        db.session.commit()
        return order

    return run_with_retry(_op)


# =============================================================================
# ORDER CREATION (called by the quote engine inside finalize)
# =============================================================================

def _quantity_from_answers(quote: Quote) -> int:
    for answer in quote.answers:
        if answer.option_key != "quantity":
            continue
        try:
            quantity = int(Decimal(answer.answer_value.strip()))
        except (InvalidOperation, AttributeError, ValueError):
            raise ValidationError(
                "quantity answer must be a whole number",
                details={"option_key": "quantity", "answer_value": answer.answer_value},
            )
        if quantity < 1:
            raise ValidationError("quantity answer must be at least 1", details={"option_key": "quantity"})
        return quantity
    return 1


def active_emergency_booking(quote_id: int) -> Booking | None:
    return (
        db.session.query(Booking)
        .filter(
            Booking.quote_id == quote_id,
            Booking.is_emergency.is_(True),
            Booking.status.in_(ACTIVE_BOOKING_STATUSES),
        )
        .first()
    )


def release_bookings_locked(quote: Quote, now: datetime, reason: str) -> int:
    """Cancel a quote's active bookings so their capacity is freed. Does not commit."""
    released = 0
    for booking in quote.bookings:
        if booking.status not in ACTIVE_BOOKING_STATUSES:
            continue
        booking.status = "CANCELLED"
        booking.cancelled_at = now
        event_service.emit(
            event_service.BOOKING_CANCELLED,
            entity_type="booking",
            entity_id=booking.id,
            order_id=quote.order.id if quote.order is not None else None,
            payload={"quote_id": quote.id, "reason": reason, "was_emergency": booking.is_emergency},
            occurred_at=now,
        )
        released += 1
    return released


def create_order_from_quote_locked(
    quote: Quote,
    *,
    rush: bool = False,
    deposit_method: str = "CREDIT_CARD",
    actor_id: int | None = None,
    now: datetime | None = None,
) -> Order:
    """
    Build the order for a quote that is being finalized (caller holds the quote lock).

    The deposit is recorded as a COMPLETED payment so balance_due starts at
    total - deposit. Does not commit.
    """
    if quote.final_subtotal_cents is None:
        raise InvalidStateError(f"Quote {quote.id} has no final subtotal")
    if quote.order is not None:
        raise InvalidStateError(
            f"Quote {quote.id} already has order {quote.order.order_number}",
            details={"order_id": quote.order.id},
        )
    if deposit_method not in PAYMENT_METHODS:
        raise ValidationError(f"deposit_method must be one of: {', '.join(PAYMENT_METHODS)}")

    now = now or utcnow()
    tier = quote.tier
    service = quote.service
    subtotal = quote.final_subtotal_cents

    rush_fee = apply_bps(subtotal, tier.rush_fee_bps or 0) if rush and tier is not None else 0

    emergency_fee = 0
    booking = active_emergency_booking(quote.id)
    if booking is not None:
        emergency_fee = apply_bps(subtotal, booking.emergency_fee_bps or 0)
        booking.emergency_fee_cents = emergency_fee

    order = Order(
        order_number=next_document_number("ORDER"),
        quote_id=quote.id,
        customer_id=quote.customer_id,
        service_id=quote.service_id,
        tier_id=quote.tier_id,
        status=STATUS_DEPOSIT_PAID,
        quantity=_quantity_from_answers(quote),
        subtotal_cents=subtotal,
        rush_fee_cents=rush_fee,
        emergency_fee_cents=emergency_fee,
        tax_rate_bps=quote.tax_rate_bps or 0,
        deposit_percentage_bps=catalog_service.deposit_percentage_bps(service, tier),
        due_at=now + timedelta(days=catalog_service.production_days(tier)),
        priority=1 if rush else 3,
    )
    _apply_totals(order)
    order.deposit_amount_cents = apply_bps(order.total_amount_cents, order.deposit_percentage_bps)
    order.balance_due_cents = order.total_amount_cents
    db.session.add(order)
    db.session.flush()

    if order.deposit_amount_cents > 0:
        db.session.add(Payment(
            payment_number=next_document_number("PAYMENT"),
            order_id=order.id,
            amount_cents=order.deposit_amount_cents,
            method=deposit_method,
            status="COMPLETED",
            is_deposit=True,
            payment_date=now,
            verified_at=now,
        ))

    for idx, deliverable in enumerate(catalog_service.deliverables_for(tier, service)):
        db.session.add(OrderChecklistItem(
            order_id=order.id,
            deliverable_id=deliverable.id,
            description=deliverable.description,
            sort_order=deliverable.sort_order if deliverable.sort_order is not None else idx,
        ))

    recompute_balance_locked(order)

    event_service.emit(
        event_service.ORDER_STATUS_CHANGED,
        entity_type="order",
        entity_id=order.id,
        order_id=order.id,
        actor_id=actor_id,
        payload={"from": None, "to": STATUS_DEPOSIT_PAID, "order_number": order.order_number},
        occurred_at=now,
    )
    logger.info("Order %s created from quote %s", order.order_number, quote.quote_number)
    return order


# =============================================================================
# STATUS MACHINE
# =============================================================================

def _has_approved_proof(order_id: int) -> bool:
    return (
        db.session.query(ProofVersion.id)
        .filter_by(order_id=order_id, status="APPROVED")
        .first()
        is not None
    )


def _first_proof_timer_exists(order_id: int) -> bool:
    return (
        db.session.query(SlaTimer.id)
        .filter_by(order_id=order_id, timer_type=sla_service.TIMER_FIRST_PROOF)
        .first()
        is not None
    )


def _check_transition(order: Order, target_status: str, force: bool) -> None:
    current = order.status

    if target_status not in ORDER_STATUSES:
        raise ValidationError(
            f"Invalid status '{target_status}'. Must be one of: {', '.join(ORDER_STATUSES)}"
        )
    if current in TERMINAL_STATUSES:
        raise IllegalTransitionError("order", current, target_status, "order is closed")

    if target_status == STATUS_CANCELLED:
        return

    if target_status not in ALLOWED_TRANSITIONS.get(current, set()):
        raise IllegalTransitionError("order", current, target_status)

    requires_proof = order.service.requires_proof
    if (current, target_status) in PROOFLESS_SHORTCUTS and requires_proof:
        raise IllegalTransitionError("order", current, target_status, "service requires an approved proof")

    if current == STATUS_WAITING_APPROVAL and target_status == STATUS_IN_PRODUCTION:
        if requires_proof and not _has_approved_proof(order.id):
            raise IllegalTransitionError("order", current, target_status, "no approved proof")

    if target_status == STATUS_COMPLETED and not force:
        pending = [item.id for item in order.checklist_items if not item.is_completed]
        if pending:
            raise InvalidStateError(
                f"Order {order.id} has {len(pending)} incomplete checklist item(s)",
                details={"pending_checklist_item_ids": pending},
            )


def advance_status_locked(
    order: Order,
    target_status: str,
    *,
    actor_id: int | None = None,
    force: bool = False,
    now: datetime | None = None,
) -> Order:
    """Validate and apply one status move plus its side effects. Does not commit."""
    _check_transition(order, target_status, force)

    now = now or utcnow()
    previous = order.status
    order.status = target_status

    if target_status == STATUS_DESIGN_IN_PROGRESS and not _first_proof_timer_exists(order.id):
        hours = catalog_service.first_proof_hours(order.tier)
        sla_service.start_timer_locked(
            order, sla_service.TIMER_FIRST_PROOF, now + timedelta(hours=hours), now=now
        )

    elif target_status == STATUS_IN_PRODUCTION:
        inventory_service.apply_consumption_locked(order, now=now)
        due_at = order.due_at or now + timedelta(days=catalog_service.production_days(order.tier))
        sla_service.start_timer_locked(order, sla_service.TIMER_PRODUCTION, due_at, now=now)

    elif target_status == STATUS_COMPLETED:
        sla_service.complete_open_timer_locked(order, sla_service.TIMER_PRODUCTION, now=now)
        sla_service.stop_open_timers_locked(order, now=now)
        order.completed_at = now

    elif target_status == STATUS_CANCELLED:
        sla_service.stop_open_timers_locked(order, now=now)
        release_bookings_locked(order.quote, now, "order cancelled")
        order.cancelled_at = now

    event_service.emit(
        event_service.ORDER_STATUS_CHANGED,
        entity_type="order",
        entity_id=order.id,
        order_id=order.id,
        actor_id=actor_id,
        payload={"from": previous, "to": target_status, "forced": bool(force)},
        occurred_at=now,
    )
    logger.info("Order %s: %s -> %s", order.order_number, previous, target_status)
    return order


def advance_status(
    order_id: int,
    target_status: str,
    *,
    actor_id: int | None = None,
    force: bool = False,
    now: datetime | None = None,
) -> Order:
    """
    Move an order along the status graph.

    Raises:
        IllegalTransitionError: move not in the graph, or its gate is not met
        InvalidStateError: completing with open checklist items (without force)
    """
    def _op():
        order = _lock_order(order_id)
        advance_status_locked(order, target_status, actor_id=actor_id, force=force, now=now)
        db.session.commit()
        return order

    return run_with_retry(_op)


# =============================================================================
# REVISIONS, ASSIGNMENT, CHECKLIST
# =============================================================================

def record_revision_locked(order: Order, *, override: bool = False) -> Order:
    limit = catalog_service.revision_limit(order.tier)
    if limit is not None and order.revisions_used >= limit and not override:
        raise RevisionLimitExceeded(
            f"Order {order.id} has used all {limit} revision(s)",
            details={"revisions_used": order.revisions_used, "revisions_allowed": limit},
        )
    order.revisions_used = (order.revisions_used or 0) + 1
    return order


def record_revision(order_id: int, *, override: bool = False) -> Order:
    """Count one revision round against the tier limit (override lets staff exceed it)."""
    def _op():
        order = _lock_order(order_id)
        if order.status in TERMINAL_STATUSES:
            raise InvalidStateError(f"Order {order_id} is {order.status}")
        record_revision_locked(order, override=override)
        db.session.commit()
        return order

    return run_with_retry(_op)


def assign_staff(order_id: int, staff_id: int | None) -> Order:
    def _op():
        order = _lock_order(order_id)
        if order.status in TERMINAL_STATUSES:
            raise InvalidStateError(f"Cannot reassign {order.status} order {order_id}")
        order.assigned_staff_id = staff_id
        db.session.commit()
        return order

    return run_with_retry(_op)


def set_priority(order_id: int, priority: int) -> Order:
    if not isinstance(priority, int) or isinstance(priority, bool) or not 1 <= priority <= 5:
        raise ValidationError("priority must be an integer between 1 and 5")

    def _op():
        order = _lock_order(order_id)
        if order.status in TERMINAL_STATUSES:
            raise InvalidStateError(f"Cannot reprioritize {order.status} order {order_id}")
        order.priority = priority
        db.session.commit()
        return order

    return run_with_retry(_op)


def complete_checklist_item(item_id: int, staff_id: int | None, notes: str | None = None) -> OrderChecklistItem:
    """Tick off a deliverable. Completing an already-completed item is a no-op."""
    def _op():
        item = db.session.get(OrderChecklistItem, item_id)
        if item is None:
            raise NotFoundError(f"Checklist item {item_id} not found")
        order = _lock_order(item.order_id)
        if order.status in TERMINAL_STATUSES:
            raise InvalidStateError(
                f"Order {order.id} is {order.status}",
                details={"current_status": order.status},
            )
        if not item.is_completed:
            item.is_completed = True
            item.completed_at = utcnow()
            item.completed_by_staff_id = staff_id
            if notes:
                item.notes = notes
        db.session.commit()
        return item

    return run_with_retry(_op)


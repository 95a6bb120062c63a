# Overview: Service-layer operations for quotes; request capture, staff review and finalization.

"""
Quote Engine

LIFECYCLE:
    REQUESTED -> UNDER_REVIEW -> PENDING_APPROVAL -> FINALIZED (spawns the Order)
    REQUESTED | UNDER_REVIEW | PENDING_APPROVAL -> REJECTED | EXPIRED

RULES:
- Only active services and tiers can be quoted.
- Answers are validated against the service's option definitions and are
  frozen once the quote leaves the open states.
- expires_at is enforced only while the quote is open; finalizing an open
  quote past its expiry is refused.
- Finalizing flips the quote and creates the order in ONE transaction.
  If order creation fails, the quote stays open and nothing is written.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from flask import current_app

from ..extensions import db
from ..models import Quote, QuoteAnswer
from ..errors import InvalidStateError, NotFoundError, ValidationError
from ..money_utils import apply_bps
from printshop.time_utils import utcnow, normalize_datetime
from . import catalog_service, event_service, order_service
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number

logger = logging.getLogger(__name__)


STATUS_REQUESTED = "REQUESTED"
STATUS_UNDER_REVIEW = "UNDER_REVIEW"
STATUS_PENDING_APPROVAL = "PENDING_APPROVAL"
STATUS_FINALIZED = "FINALIZED"
STATUS_REJECTED = "REJECTED"
STATUS_EXPIRED = "EXPIRED"

QUOTE_STATUSES = [
    STATUS_REQUESTED,
    STATUS_UNDER_REVIEW,
    STATUS_PENDING_APPROVAL,
    STATUS_FINALIZED,
    STATUS_REJECTED,
    STATUS_EXPIRED,
]

OPEN_STATUSES = (STATUS_REQUESTED, STATUS_UNDER_REVIEW, STATUS_PENDING_APPROVAL)
FINALIZABLE_STATUSES = (STATUS_UNDER_REVIEW, STATUS_PENDING_APPROVAL)
ANSWERABLE_STATUSES = (STATUS_REQUESTED, STATUS_UNDER_REVIEW)

SORTABLE_FIELDS = {
    "quote_number": Quote.quote_number,
    "created_at": Quote.created_at,
    "expires_at": Quote.expires_at,
    "status": Quote.status,
}


def get_quote(quote_id: int) -> Quote:
    quote = db.session.get(Quote, quote_id)
    if quote is None:
        raise NotFoundError(f"Quote {quote_id} not found")
    return quote


def _lock_quote(quote_id: int) -> Quote:
    quote = lock_for_update(db.session.query(Quote).filter_by(id=quote_id)).first()
    if quote is None:
        raise NotFoundError(f"Quote {quote_id} not found")
    return quote


def _is_expired(quote: Quote, now: datetime) -> bool:
    return quote.expires_at is not None and quote.expires_at < now


def _require_status(quote: Quote, allowed: tuple, action: str) -> None:
    if quote.status not in allowed:
        raise InvalidStateError(
            f"Cannot {action} quote {quote.id} in status {quote.status}",
            details={"current_status": quote.status, "allowed": list(allowed)},
        )


def list_quotes(
    *,
    customer_id: int | None = None,
    status: str | None = None,
    service_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
    sort_by: str = "created_at",
    sort_order: str = "desc",
) -> tuple[list[Quote], int]:
    q = db.session.query(Quote)
    if customer_id is not None:
        q = q.filter(Quote.customer_id == customer_id)
    if status:
        q = q.filter(Quote.status == status)
    if service_id is not None:
        q = q.filter(Quote.service_id == service_id)

    total = q.count()
    column = SORTABLE_FIELDS.get(sort_by, Quote.created_at)
    ordering = column.asc() if sort_order == "asc" else column.desc()
    return q.order_by(ordering, Quote.id.desc()).offset(offset).limit(limit).all(), total


# =============================================================================
# CUSTOMER SUBMISSION
# =============================================================================

def submit_quote(
    customer_id: int,
    service_id: int,
    *,
    tier_id: int | None = None,
    answers: list[dict] | None = None,
    customer_notes: str | None = None,
    no_design_files: bool = False,
    now: datetime | None = None,
) -> Quote:
    """
    Create a REQUESTED quote with its answers and an estimate range.

    Raises:
        NotFoundError: unknown service or tier
        ValidationError: inactive service/tier, or answers that fail the option rules
    """
    def _op():
        service = catalog_service.get_active_service(service_id)
        tier = catalog_service.get_active_tier(tier_id) if tier_id is not None else None
        normalized = catalog_service.validate_answers(service, answers or [])
        estimate_min, estimate_max = catalog_service.estimate_price(service, tier, normalized)

        created_at = normalize_datetime(now) if now is not None else utcnow()
        quote = Quote(
            quote_number=next_document_number("QUOTE"),
            customer_id=customer_id,
            service_id=service.id,
            tier_id=tier.id if tier is not None else None,
            status=STATUS_REQUESTED,
            estimate_min_cents=estimate_min,
            estimate_max_cents=estimate_max,
            customer_notes=customer_notes,
            no_design_files=bool(no_design_files),
            expires_at=created_at + timedelta(days=current_app.config["QUOTE_EXPIRY_DAYS"]),
        )
        db.session.add(quote)
        db.session.flush()

        for answer in normalized:
            db.session.add(QuoteAnswer(
                quote_id=quote.id,
                option_key=answer.option_key,
                option_label=answer.option_label,
                answer_value=answer.answer_value,
            ))

        db.session.commit()
        logger.info("Quote %s submitted by customer %s", quote.quote_number, customer_id)
        return quote

    return run_with_retry(_op)


def add_answer(quote_id: int, option_key: str, answer_value: str, option_label: str | None = None) -> QuoteAnswer:
    """Add one answer to a quote that is still being reviewed; the estimate is refreshed."""
    def _op():
        quote = _lock_quote(quote_id)
        _require_status(quote, ANSWERABLE_STATUSES, "answer")

        raw = [
            {"option_key": a.option_key, "option_label": a.option_label, "answer_value": a.answer_value}
            for a in quote.answers
        ]
        raw.append({"option_key": option_key, "option_label": option_label, "answer_value": answer_value})
        normalized = catalog_service.validate_answers(quote.service, raw)
        new_answer = normalized[-1]

        row = QuoteAnswer(
            quote_id=quote.id,
            option_key=new_answer.option_key,
            option_label=new_answer.option_label,
            answer_value=new_answer.answer_value,
        )
        db.session.add(row)
        quote.estimate_min_cents, quote.estimate_max_cents = catalog_service.estimate_price(
            quote.service, quote.tier, normalized
        )
        db.session.commit()
        return row

    return run_with_retry(_op)


# =============================================================================
# STAFF REVIEW
# =============================================================================

def start_review(
    quote_id: int,
    staff_id: int | None,
    *,
    estimate_min_cents: int | None = None,
    estimate_max_cents: int | None = None,
    admin_notes: str | None = None,
) -> Quote:
    """REQUESTED -> UNDER_REVIEW, optionally overriding the estimate range."""
    def _op():
        quote = _lock_quote(quote_id)
        _require_status(quote, (STATUS_REQUESTED,), "review")

        low = estimate_min_cents if estimate_min_cents is not None else quote.estimate_min_cents
        high = estimate_max_cents if estimate_max_cents is not None else quote.estimate_max_cents
        if low is not None and high is not None and low > high:
            raise ValidationError("estimate_min_cents cannot exceed estimate_max_cents")

        quote.estimate_min_cents = low
        quote.estimate_max_cents = high
        quote.status = STATUS_UNDER_REVIEW
        quote.reviewed_by_staff_id = staff_id
        if admin_notes is not None:
            quote.admin_notes = admin_notes
        db.session.commit()
        return quote

    return run_with_retry(_op)


def send_for_approval(quote_id: int, *, now: datetime | None = None) -> Quote:
    """UNDER_REVIEW -> PENDING_APPROVAL (the customer is asked to accept the price)."""
    def _op():
        quote = _lock_quote(quote_id)
        _require_status(quote, (STATUS_UNDER_REVIEW,), "send")
        if _is_expired(quote, normalize_datetime(now) if now is not None else utcnow()):
            raise InvalidStateError(f"Quote {quote_id} has expired", details={"expires_at": str(quote.expires_at)})
        quote.status = STATUS_PENDING_APPROVAL
        db.session.commit()
        return quote

    return run_with_retry(_op)


def finalize_quote(
    quote_id: int,
    final_subtotal_cents: int,
    tax_rate_bps: int,
    *,
    admin_notes: str | None = None,
    rush: bool = False,
    deposit_method: str = "CREDIT_CARD",
    staff_id: int | None = None,
    now: datetime | None = None,
):
    """
    Finalize pricing and create the order.

    tax_amount = subtotal x tax_rate, total = subtotal + tax_amount (order fees
    such as rush or emergency are added on the order itself).

    Raises:
        InvalidStateError: quote not in UNDER_REVIEW / PENDING_APPROVAL, or past expires_at
        ValidationError: bad amounts
    """
    if not isinstance(final_subtotal_cents, int) or isinstance(final_subtotal_cents, bool) or final_subtotal_cents < 0:
        raise ValidationError("final_subtotal_cents must be a non-negative integer")
    if not isinstance(tax_rate_bps, int) or isinstance(tax_rate_bps, bool) or not 0 <= tax_rate_bps <= 10_000:
        raise ValidationError("tax_rate_bps must be an integer between 0 and 10000")

    def _op():
        at = normalize_datetime(now) if now is not None else utcnow()
        quote = _lock_quote(quote_id)
        _require_status(quote, FINALIZABLE_STATUSES, "finalize")
        if _is_expired(quote, at):
            raise InvalidStateError(
                f"Quote {quote_id} expired and cannot be finalized",
                details={"current_status": quote.status, "expires_at": str(quote.expires_at)},
            )

        tax_amount = apply_bps(final_subtotal_cents, tax_rate_bps)
        quote.final_subtotal_cents = final_subtotal_cents
        quote.tax_rate_bps = tax_rate_bps
        quote.tax_amount_cents = tax_amount
        quote.total_amount_cents = final_subtotal_cents + tax_amount
        quote.status = STATUS_FINALIZED
        quote.finalized_at = at
        if staff_id is not None:
            quote.reviewed_by_staff_id = staff_id
        if admin_notes is not None:
            quote.admin_notes = admin_notes

        order = order_service.create_order_from_quote_locked(
            quote, rush=rush, deposit_method=deposit_method, actor_id=staff_id, now=at
        )

        event_service.emit(
            event_service.QUOTE_FINALIZED,
            entity_type="quote",
            entity_id=quote.id,
            order_id=order.id,
            actor_id=staff_id,
            payload={
                "quote_number": quote.quote_number,
                "order_number": order.order_number,
                "total_amount_cents": order.total_amount_cents,
            },
            occurred_at=at,
        )
        db.session.commit()
        logger.info("Quote %s finalized as order %s", quote.quote_number, order.order_number)
        return order

    return run_with_retry(_op)


def reject_quote(quote_id: int, reason: str | None = None, *, staff_id: int | None = None) -> Quote:
    def _op():
        at = utcnow()
        quote = _lock_quote(quote_id)
        _require_status(quote, OPEN_STATUSES, "reject")
        quote.status = STATUS_REJECTED
        quote.rejection_reason = (reason or "").strip()[:255] or None
        if staff_id is not None:
            quote.reviewed_by_staff_id = staff_id
        order_service.release_bookings_locked(quote, at, f"quote {quote.status.lower()}")
        event_service.emit(
            event_service.QUOTE_REJECTED,
            entity_type="quote",
            entity_id=quote.id,
            actor_id=staff_id,
            payload={"quote_number": quote.quote_number, "reason": quote.rejection_reason},
            occurred_at=at,
        )
        db.session.commit()
        return quote

    return run_with_retry(_op)


# =============================================================================
# BATCH EXPIRY
# =============================================================================

def expire_stale_quotes(now: datetime | None = None) -> dict:
    """
    Move open quotes past expires_at to EXPIRED.

    Each quote is re-checked under its own lock and committed on its own,
    so repeated or overlapping runs are safe and one bad row does not stop
    the pass.
    """
    now = normalize_datetime(now) if now is not None else utcnow()

    candidate_ids = [
        row.id for row in db.session.query(Quote.id)
        .filter(Quote.status.in_(OPEN_STATUSES), Quote.expires_at < now)
        .order_by(Quote.id.asc())
        .all()
    ]

    expired = 0
    failed = 0
    for quote_id in candidate_ids:
        try:
            def _op():
                quote = _lock_quote(quote_id)
                if quote.status not in OPEN_STATUSES or not _is_expired(quote, now):
                    return False
                quote.status = STATUS_EXPIRED
                order_service.release_bookings_locked(quote, now, f"quote {quote.status.lower()}")
                event_service.emit(
                    event_service.QUOTE_EXPIRED,
                    entity_type="quote",
                    entity_id=quote.id,
                    payload={"quote_number": quote.quote_number, "expires_at": str(quote.expires_at)},
                    occurred_at=now,
                )
                db.session.commit()
                return True

            if run_with_retry(_op):
                expired += 1
        except Exception:
            failed += 1
            logger.exception("Quote expiry failed for quote %s", quote_id)

    logger.info("Quote expiry complete: scanned=%s expired=%s failed=%s", len(candidate_ids), expired, failed)
    return {"scanned": len(candidate_ids), "expired": expired, "failed": failed}

# Overview: Service-layer operations for design proofs; versioned uploads and customer decisions.

"""
Proofing

STATE MACHINE (per proof version):
    SENT -> VIEWED (optional) -> APPROVED | REVISION_REQUESTED

RULES:
- Version numbers are contiguous per order, starting at 1.
- Only one proof may await the customer at a time (SENT or VIEWED).
- Nothing can be uploaded once a proof is APPROVED or the order is closed.
- Requesting a revision spends one tier revision; the limit failure rolls
  the whole response back, so the proof stays open.

ORDER / SLA COUPLING:
- upload: order -> WAITING_APPROVAL, FIRST_PROOF completed, REVISION_TURNAROUND paused
- approve: REVISION_TURNAROUND completed, order WAITING_APPROVAL -> IN_PRODUCTION
- revision: order -> DESIGN_IN_PROGRESS, REVISION_TURNAROUND started or resumed
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Order, ProofVersion
from ..errors import InvalidStateError, NotFoundError, ValidationError
from printshop.time_utils import utcnow
from . import event_service, order_service, sla_service
from .concurrency import lock_for_update, run_with_retry

logger = logging.getLogger(__name__)


PROOF_SENT = "SENT"
PROOF_VIEWED = "VIEWED"
PROOF_APPROVED = "APPROVED"
PROOF_REVISION_REQUESTED = "REVISION_REQUESTED"

AWAITING_CUSTOMER = (PROOF_SENT, PROOF_VIEWED)

DECISION_APPROVE = "APPROVE"
DECISION_REQUEST_REVISION = "REQUEST_REVISION"
VALID_DECISIONS = [DECISION_APPROVE, DECISION_REQUEST_REVISION]

UPLOADABLE_ORDER_STATUSES = (
    order_service.STATUS_DEPOSIT_PAID,
    order_service.STATUS_DESIGN_IN_PROGRESS,
    order_service.STATUS_WAITING_APPROVAL,
)


def get_proof(proof_id: int) -> ProofVersion:
    proof = db.session.get(ProofVersion, proof_id)
    if proof is None:
        raise NotFoundError(f"Proof {proof_id} not found")
    return proof


def list_proofs(order_id: int) -> list[ProofVersion]:
    order_service.get_order(order_id)
    return (
        db.session.query(ProofVersion)
        .filter_by(order_id=order_id)
        .order_by(ProofVersion.version_number.asc())
        .all()
    )


def _lock_order(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def _lock_proof_and_order(proof_id: int) -> tuple[ProofVersion, Order]:
    proof = db.session.get(ProofVersion, proof_id)
    if proof is None:
        raise NotFoundError(f"Proof {proof_id} not found")
    order = _lock_order(proof.order_id)
    proof = lock_for_update(db.session.query(ProofVersion).filter_by(id=proof_id)).first()
    return proof, order


def upload_proof(
    order_id: int,
    file_ref: str,
    staff_id: int,
    *,
    note: str | None = None,
    file_type: str | None = None,
    file_size: int | None = None,
    now: datetime | None = None,
) -> ProofVersion:
    """
    Send the next proof version to the customer.

    Raises:
        ValidationError: missing file reference
        InvalidStateError: order closed or past design, a proof is still
            awaiting the customer, or a proof was already approved
    """
    if not file_ref or not str(file_ref).strip():
        raise ValidationError("file_ref is required")
    if file_size is not None and file_size < 0:
        raise ValidationError("file_size cannot be negative")

    def _op():
        at = now or utcnow()
        order = _lock_order(order_id)

        if order.status not in UPLOADABLE_ORDER_STATUSES:
            raise InvalidStateError(
                f"Cannot upload a proof for order {order_id} in status {order.status}",
                details={"current_status": order.status},
            )

        open_proof = (
            db.session.query(ProofVersion)
            .filter(ProofVersion.order_id == order_id, ProofVersion.status.in_(AWAITING_CUSTOMER))
            .first()
        )
        if open_proof is not None:
            raise InvalidStateError(
                f"Proof v{open_proof.version_number} is still awaiting the customer",
                details={"proof_id": open_proof.id, "proof_status": open_proof.status},
            )

        approved = db.session.query(ProofVersion.id).filter_by(order_id=order_id, status=PROOF_APPROVED).first()
        if approved is not None:
            raise InvalidStateError(
                f"Order {order_id} already has an approved proof",
                details={"proof_id": approved.id},
            )

        latest = (
            db.session.query(func.max(ProofVersion.version_number))
            .filter(ProofVersion.order_id == order_id)
            .scalar()
        )
        proof = ProofVersion(
            order_id=order_id,
            version_number=(latest or 0) + 1,
            file_ref=str(file_ref).strip(),
            file_type=file_type,
            file_size=file_size,
            created_by_staff_id=staff_id,
            status=PROOF_SENT,
            staff_message=note,
        )
        db.session.add(proof)
        db.session.flush()

        if order.status == order_service.STATUS_DEPOSIT_PAID:
            order_service.advance_status_locked(
                order, order_service.STATUS_DESIGN_IN_PROGRESS, actor_id=staff_id, now=at
            )
        if order.status == order_service.STATUS_DESIGN_IN_PROGRESS:
            order_service.advance_status_locked(
                order, order_service.STATUS_WAITING_APPROVAL, actor_id=staff_id, now=at
            )

        sla_service.complete_open_timer_locked(order, sla_service.TIMER_FIRST_PROOF, now=at)
        revision_timer = sla_service.get_open_timer(order.id, sla_service.TIMER_REVISION_TURNAROUND)
        if revision_timer is not None:
            sla_service.pause_timer_locked(revision_timer, now=at)

        event_service.emit(
            event_service.PROOF_UPLOADED,
            entity_type="proof",
            entity_id=proof.id,
            order_id=order.id,
            actor_id=staff_id,
            payload={"version_number": proof.version_number, "file_ref": proof.file_ref},
            occurred_at=at,
        )
        db.session.commit()
        logger.info("Proof v%s uploaded for order %s", proof.version_number, order.order_number)
        return proof

    return run_with_retry(_op)


def mark_viewed(proof_id: int, *, now: datetime | None = None) -> ProofVersion:
    """SENT -> VIEWED. Any other state is left alone."""
    def _op():
        proof = lock_for_update(db.session.query(ProofVersion).filter_by(id=proof_id)).first()
        if proof is None:
            raise NotFoundError(f"Proof {proof_id} not found")
        if proof.status == PROOF_SENT:
            proof.status = PROOF_VIEWED
            proof.viewed_at = now or utcnow()
            db.session.commit()
        return proof

    return run_with_retry(_op)


def respond_to_proof(
    proof_id: int,
    decision: str,
    *,
    customer_comment: str | None = None,
    customer_id: int | None = None,
    override_limit: bool = False,
    now: datetime | None = None,
) -> ProofVersion:
    """
    Record the customer's decision on a proof.

    Raises:
        ValidationError: unknown decision
        InvalidStateError: proof already answered
        RevisionLimitExceeded: revision requested with no revisions left
    """
    if decision not in VALID_DECISIONS:
        raise ValidationError(f"decision must be one of: {', '.join(VALID_DECISIONS)}")

    def _op():
        at = now or utcnow()
        proof, order = _lock_proof_and_order(proof_id)

        if proof.status not in AWAITING_CUSTOMER:
            raise InvalidStateError(
                f"Proof {proof_id} was already answered ({proof.status})",
                details={"proof_status": proof.status},
            )
        if order.status in order_service.TERMINAL_STATUSES:
            raise InvalidStateError(
                f"Order {order.id} is {order.status}",
                details={"current_status": order.status},
            )

        proof.customer_comment = customer_comment
        proof.responded_at = at
        if proof.viewed_at is None:
            proof.viewed_at = at

        if decision == DECISION_APPROVE:
            proof.status = PROOF_APPROVED
            proof.approved_at = at
            sla_service.complete_open_timer_locked(order, sla_service.TIMER_REVISION_TURNAROUND, now=at)
            if order.status == order_service.STATUS_WAITING_APPROVAL:
                order_service.advance_status_locked(
                    order, order_service.STATUS_IN_PRODUCTION, actor_id=customer_id, now=at
                )
        else:
            proof.status = PROOF_REVISION_REQUESTED
            order_service.record_revision_locked(order, override=override_limit)
            if order.status == order_service.STATUS_WAITING_APPROVAL:
                order_service.advance_status_locked(
                    order, order_service.STATUS_DESIGN_IN_PROGRESS, actor_id=customer_id, now=at
                )
            timer = sla_service.get_open_timer(order.id, sla_service.TIMER_REVISION_TURNAROUND)
            if timer is None:
                hours = current_app.config["REVISION_TURNAROUND_SLA_HOURS"]
                sla_service.start_timer_locked(
                    order, sla_service.TIMER_REVISION_TURNAROUND, at + timedelta(hours=hours), now=at
                )
            else:
                sla_service.resume_timer_locked(timer, now=at)

        event_service.emit(
            event_service.PROOF_RESPONDED,
            entity_type="proof",
            entity_id=proof.id,
            order_id=order.id,
            actor_id=customer_id,
            payload={
                "version_number": proof.version_number,
                "decision": decision,
                "revisions_used": order.revisions_used,
            },
            occurred_at=at,
        )
        db.session.commit()
        return proof

    return run_with_retry(_op)

# Overview: Flask API routes for payments, refunds and invoices.

# backend/printshop/routes/payments.py
from flask import Blueprint, request, jsonify, g, current_app

from ..errors import LifecycleError, error_response, internal_error_response
from ..services import order_service, payment_service
from ..decorators import require_actor, require_role, ensure_owner, is_staff, ROLE_STAFF
from ..validation import (
    validate_request,
    RECORD_PAYMENT_SCHEMA,
    FAIL_PAYMENT_SCHEMA,
    REFUND_PAYMENT_SCHEMA,
)


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


@payments_bp.post("/orders/<int:order_id>")
@require_actor
def record_payment_route(order_id: int):
    """
    Record a payment against an order.

    Customers create PENDING payments; only staff may complete a payment
    on the spot with confirm=true.
    """
    try:
        data = validate_request(request.get_json(silent=True), RECORD_PAYMENT_SCHEMA)
        ensure_owner(order_service.get_order(order_id).customer_id)
        confirm = bool(data.get("confirm")) and is_staff()
        payment = payment_service.record_payment(
            order_id,
            data["amount_cents"],
            data["method"],
            transaction_ref=data.get("transaction_ref"),
            confirm=confirm,
            verified_by=g.actor_id if confirm else None,
        )
        return jsonify({"payment": payment.to_dict()}), 201

    except LifecycleError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record payment")
        return internal_error_response()


@payments_bp.get("/orders/<int:order_id>")
@require_actor
def payment_summary_route(order_id: int):
    ensure_owner(order_service.get_order(order_id).customer_id)
    return jsonify(payment_service.payment_summary(order_id)), 200


@payments_bp.post("/<int:payment_id>/confirm")
@require_actor
@require_role(ROLE_STAFF)
def confirm_payment_route(payment_id: int):
    try:
        payment = payment_service.confirm_payment(payment_id, verified_by=g.actor_id)
        return jsonify({"payment": payment.to_dict()}), 200

    except LifecycleError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to confirm payment")
        return internal_error_response()


@payments_bp.post("/<int:payment_id>/fail")
@require_actor
@require_role(ROLE_STAFF)
def fail_payment_route(payment_id: int):
    try:
        data = validate_request(request.get_json(silent=True), FAIL_PAYMENT_SCHEMA)
        payment = payment_service.fail_payment(payment_id, reason=data.get("reason"))
        return jsonify({"payment": payment.to_dict()}), 200

    except LifecycleError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to mark payment failed")
        return internal_error_response()


@payments_bp.post("/<int:payment_id>/refund")
@require_actor
@require_role(ROLE_STAFF)
def refund_payment_route(payment_id: int):
    try:
        data = validate_request(request.get_json(silent=True), REFUND_PAYMENT_SCHEMA)
        payment = payment_service.refund_payment(
            payment_id,
            data["amount_cents"],
            data["reason"],
            actor_id=g.actor_id,
        )
        return jsonify({"payment": payment.to_dict()}), 200

    except LifecycleError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to refund payment")
        return internal_error_response()


@payments_bp.post("/orders/<int:order_id>/invoice")
@require_actor
@require_role(ROLE_STAFF)
def issue_invoice_route(order_id: int):
    try:
        invoice = payment_service.issue_invoice(order_id)
        return jsonify({"invoice": invoice.to_dict()}), 201

    except LifecycleError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to issue invoice")
        return internal_error_response()


@payments_bp.get("/orders/<int:order_id>/invoice")
@require_actor
def get_invoice_route(order_id: int):
    ensure_owner(order_service.get_order(order_id).customer_id)
    invoice = payment_service.get_invoice(order_id)
    return jsonify({"invoice": invoice.to_dict()}), 200

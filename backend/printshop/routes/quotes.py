# Overview: Flask API routes for quotes; parses input and returns JSON responses.

# backend/printshop/routes/quotes.py
"""
Quote API routes.

- Customers submit quotes and add answers to their own quotes.
- Staff review, send, finalize and reject.
- ADMIN runs the expiry batch on demand (normally the CLI does).
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import LifecycleError, ValidationError, error_response, internal_error_response
from ..services import quote_service
from ..decorators import require_actor, require_role, ensure_owner, ROLE_CUSTOMER, ROLE_STAFF, ROLE_ADMIN
from ..validation import (
    validate_request,
    parse_list_params,
    parse_optional_int,
    SUBMIT_QUOTE_SCHEMA,
    ADD_ANSWER_SCHEMA,
    START_REVIEW_SCHEMA,
    FINALIZE_QUOTE_SCHEMA,
    REJECT_QUOTE_SCHEMA,
    SCAN_SCHEMA,
)


quotes_bp = Blueprint("quotes", __name__, url_prefix="/api/quotes")


@quotes_bp.post("/")
@require_actor
def submit_quote_route():
    """
    Submit a quote request.

    Customers always submit for themselves; staff submitting on a
    customer's behalf must pass customer_id.
    """
    try:
        data = validate_request(request.get_json(silent=True), SUBMIT_QUOTE_SCHEMA)

        if g.actor_role == ROLE_CUSTOMER:
            customer_id = g.actor_id
        else:
            customer_id = data.get("customer_id")
            if not customer_id:
                raise ValidationError("customer_id required")

        quote = quote_service.submit_quote(
            customer_id,
            data["service_id"],
            tier_id=data.get("tier_id"),
            answers=data.get("answers") or [],
            customer_notes=data.get("customer_notes"),
            no_design_files=bool(data.get("no_design_files")),
        )
        return jsonify({"quote": quote.to_dict(include_answers=True)}), 201

    except LifecycleError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to submit quote")
        return internal_error_response()


@quotes_bp.get("/")
@require_actor
def list_quotes_route():
    params = parse_list_params(request.args, sortable=set(quote_service.SORTABLE_FIELDS))
    customer_id = parse_optional_int(request.args, "customer_id")
    if g.actor_role == ROLE_CUSTOMER:
        customer_id = g.actor_id

    quotes, total = quote_service.list_quotes(
        customer_id=customer_id,
        status=request.args.get("status") or None,
        service_id=parse_optional_int(request.args, "service_id"),
        **params,
    )
    return jsonify({
        "quotes": [q.to_dict() for q in quotes],
        "total": total,
        "limit": params["limit"],
        "offset": params["offset"],
    }), 200


@quotes_bp.get("/<int:quote_id>")
@require_actor
def get_quote_route(quote_id: int):
    quote = quote_service.get_quote(quote_id)
    ensure_owner(quote.customer_id)
    data = quote.to_dict(include_answers=True)
    data["bookings"] = [b.to_dict() for b in quote.bookings]
    data["order_id"] = quote.order.id if quote.order is not None else None
    return jsonify({"quote": data}), 200


@quotes_bp.post("/<int:quote_id>/answers")
@require_actor
def add_answer_route(quote_id: int):
    try:
        data = validate_request(request.get_json(silent=True), ADD_ANSWER_SCHEMA)
        ensure_owner(quote_service.get_quote(quote_id).customer_id)
        answer = quote_service.add_answer(
            quote_id,
            data["option_key"],
            data["answer_value"],
            option_label=data.get("option_label"),
        )
        return jsonify({"answer": answer.to_dict()}), 201

    except LifecycleError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add quote answer")
        return internal_error_response()


@quotes_bp.post("/<int:quote_id>/review")
@require_actor
@require_role(ROLE_STAFF)
def start_review_route(quote_id: int):
    try:
        data = validate_request(request.get_json(silent=True), START_REVIEW_SCHEMA)
        quote = quote_service.start_review(
            quote_id,
            g.actor_id,
            estimate_min_cents=data.get("estimate_min_cents"),
            estimate_max_cents=data.get("estimate_max_cents"),
            admin_notes=data.get("admin_notes"),
        )
        return jsonify({"quote": quote.to_dict()}), 200

    except LifecycleError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to start quote review")
        return internal_error_response()


@quotes_bp.post("/<int:quote_id>/send")
@require_actor
@require_role(ROLE_STAFF)
def send_for_approval_route(quote_id: int):
    try:
        quote = quote_service.send_for_approval(quote_id)
        return jsonify({"quote": quote.to_dict()}), 200

    except LifecycleError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to send quote for approval")
        return internal_error_response()


@quotes_bp.post("/<int:quote_id>/finalize")
@require_actor
@require_role(ROLE_STAFF)
def finalize_quote_route(quote_id: int):
    """
    Finalize pricing; creates the order in the same transaction.

    Returns the quote and the new order.
    """
    try:
        data = validate_request(request.get_json(silent=True), FINALIZE_QUOTE_SCHEMA)
        order = quote_service.finalize_quote(
            quote_id,
            data["final_subtotal_cents"],
            data["tax_rate_bps"],
            admin_notes=data.get("admin_notes"),
            rush=bool(data.get("rush")),
            deposit_method=data.get("deposit_method") or "CREDIT_CARD",
            staff_id=g.actor_id,
        )
        return jsonify({
            "quote": order.quote.to_dict(),
            "order": order.to_dict(),
        }), 201

    except LifecycleError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to finalize quote")
        return internal_error_response()


@quotes_bp.post("/<int:quote_id>/reject")
@require_actor
@require_role(ROLE_STAFF)
def reject_quote_route(quote_id: int):
    try:
        data = validate_request(request.get_json(silent=True), REJECT_QUOTE_SCHEMA)
        quote = quote_service.reject_quote(quote_id, data.get("reason"), staff_id=g.actor_id)
        return jsonify({"quote": quote.to_dict()}), 200

    except LifecycleError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reject quote")
        return internal_error_response()


@quotes_bp.post("/expire")
@require_actor
@require_role(ROLE_ADMIN)
def expire_quotes_route():
    try:
        data = validate_request(request.get_json(silent=True), SCAN_SCHEMA)
        result = quote_service.expire_stale_quotes(data.get("now"))
        return jsonify(result), 200

    except LifecycleError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to expire quotes")
        return internal_error_response()

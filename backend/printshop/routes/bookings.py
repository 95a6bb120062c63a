# Overview: Flask API routes for bookings and capacity administration.

# backend/printshop/routes/bookings.py
"""
Booking API routes.

Customer endpoints:
- POST /api/bookings                       reserve a slot for one of their quotes
- GET  /api/bookings/availability?date=    remaining capacity for a day
- POST /api/bookings/<id>/reschedule|cancel

Staff endpoints:
- POST /api/bookings/<id>/confirm|complete
- capacity settings, overrides, blackouts
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import LifecycleError, ValidationError, error_response, internal_error_response
from ..services import booking_service, quote_service
from ..decorators import require_actor, require_role, ensure_owner, ROLE_STAFF, ROLE_ADMIN
from ..validation import (
    validate_request,
    parse_optional_int,
    parse_optional_date,
    CREATE_BOOKING_SCHEMA,
    RESCHEDULE_BOOKING_SCHEMA,
    CANCEL_BOOKING_SCHEMA,
    CAPACITY_SETTING_SCHEMA,
    CAPACITY_OVERRIDE_SCHEMA,
    BLACKOUT_SCHEMA,
)


bookings_bp = Blueprint("bookings", __name__, url_prefix="/api/bookings")


@bookings_bp.post("/")
@require_actor
def create_booking_route():
    try:
        data = validate_request(request.get_json(silent=True), CREATE_BOOKING_SCHEMA)
        ensure_owner(quote_service.get_quote(data["quote_id"]).customer_id)
        booking = booking_service.create_booking(
            data["quote_id"],
            data["booking_date"],
            time_slot=data.get("time_slot"),
            is_emergency=bool(data.get("is_emergency")),
        )
        return jsonify({"booking": booking.to_dict()}), 201

    except LifecycleError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create booking")
        return internal_error_response()


@bookings_bp.get("/")
@require_actor
@require_role(ROLE_STAFF)
def list_bookings_route():
    bookings = booking_service.list_bookings(
        quote_id=parse_optional_int(request.args, "quote_id"),
        booking_date=parse_optional_date(request.args, "date"),
        status=request.args.get("status") or None,
        limit=parse_optional_int(request.args, "limit") or 100,
        offset=parse_optional_int(request.args, "offset") or 0,
    )
    return jsonify({"bookings": [b.to_dict() for b in bookings]}), 200


@bookings_bp.get("/availability")
@require_actor
def availability_route():
    day = parse_optional_date(request.args, "date")
    if day is None:
        raise ValidationError("date query parameter required")
    return jsonify(booking_service.available_slots(day)), 200


@bookings_bp.get("/<int:booking_id>")
@require_actor
def get_booking_route(booking_id: int):
    booking = booking_service.get_booking(booking_id)
    ensure_owner(booking.quote.customer_id)
    return jsonify({"booking": booking.to_dict()}), 200


@bookings_bp.post("/<int:booking_id>/confirm")
@require_actor
@require_role(ROLE_STAFF)
def confirm_booking_route(booking_id: int):
    try:
        booking = booking_service.confirm_booking(booking_id)
        return jsonify({"booking": booking.to_dict()}), 200

    except LifecycleError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to confirm booking")
        return internal_error_response()


@bookings_bp.post("/<int:booking_id>/reschedule")
@require_actor
def reschedule_booking_route(booking_id: int):
    try:
        data = validate_request(request.get_json(silent=True), RESCHEDULE_BOOKING_SCHEMA)
        ensure_owner(booking_service.get_booking(booking_id).quote.customer_id)
        booking = booking_service.reschedule(
            booking_id,
            data["booking_date"],
            time_slot=data.get("time_slot"),
        )
        return jsonify({"booking": booking.to_dict()}), 200

    except LifecycleError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reschedule booking")
        return internal_error_response()


@bookings_bp.post("/<int:booking_id>/cancel")
@require_actor
def cancel_booking_route(booking_id: int):
    try:
        data = validate_request(request.get_json(silent=True), CANCEL_BOOKING_SCHEMA)
        ensure_owner(booking_service.get_booking(booking_id).quote.customer_id)
        booking = booking_service.cancel(booking_id, reason=data.get("reason"))
        return jsonify({"booking": booking.to_dict()}), 200

    except LifecycleError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel booking")
        return internal_error_response()


@bookings_bp.post("/<int:booking_id>/complete")
@require_actor
@require_role(ROLE_STAFF)
def complete_booking_route(booking_id: int):
    try:
        booking = booking_service.complete_booking(booking_id)
        return jsonify({"booking": booking.to_dict()}), 200

    except LifecycleError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to complete booking")
        return internal_error_response()


# =============================================================================
# CAPACITY ADMINISTRATION
# =============================================================================

@bookings_bp.get("/capacity")
@require_actor
@require_role(ROLE_STAFF)
def list_capacity_route():
    settings = booking_service.list_capacity_settings()
    return jsonify({"settings": [s.to_dict() for s in settings]}), 200


@bookings_bp.put("/capacity/<int:day_of_week>")
@require_actor
@require_role(ROLE_ADMIN)
def set_capacity_route(day_of_week: int):
    try:
        data = validate_request(request.get_json(silent=True), CAPACITY_SETTING_SCHEMA)
        setting = booking_service.set_capacity_setting(day_of_week, **data)
        current_app.logger.info("Capacity for weekday %s updated by %s", day_of_week, g.actor_id)
        return jsonify({"setting": setting.to_dict()}), 200

    except LifecycleError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update capacity setting")
        return internal_error_response()


@bookings_bp.post("/capacity/overrides")
@require_actor
@require_role(ROLE_ADMIN)
def set_capacity_override_route():
    try:
        data = validate_request(request.get_json(silent=True), CAPACITY_OVERRIDE_SCHEMA)
        override = booking_service.set_capacity_override(
            data["override_date"],
            data["slots_available"],
            reason=data.get("reason"),
        )
        return jsonify({"override": override.to_dict()}), 200

    except LifecycleError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to set capacity override")
        return internal_error_response()


@bookings_bp.get("/blackouts")
@require_actor
def list_blackouts_route():
    blackouts = booking_service.list_blackouts()
    return jsonify({"blackouts": [b.to_dict() for b in blackouts]}), 200


@bookings_bp.post("/blackouts")
@require_actor
@require_role(ROLE_ADMIN)
def add_blackout_route():
    try:
        data = validate_request(request.get_json(silent=True), BLACKOUT_SCHEMA)
        blackout = booking_service.add_blackout(
            data["start_date"],
            data["end_date"],
            reason=data.get("reason"),
        )
        return jsonify({"blackout": blackout.to_dict()}), 201

    except LifecycleError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add blackout")
        return internal_error_response()


@bookings_bp.delete("/blackouts/<int:blackout_id>")
@require_actor
@require_role(ROLE_ADMIN)
def remove_blackout_route(blackout_id: int):
    try:
        booking_service.remove_blackout(blackout_id)
        return "", 204

    except LifecycleError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to remove blackout")
        return internal_error_response()

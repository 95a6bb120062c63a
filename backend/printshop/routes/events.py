# Overview: Flask API routes for the domain event outbox read by the notifier.

# backend/printshop/routes/events.py
"""
Event outbox API.

The notifier polls /pending, delivers, then acknowledges through
/dispatched. Acknowledging the same ids twice is harmless.
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import LifecycleError, ValidationError, error_response, internal_error_response
from ..services import event_service
from ..decorators import require_actor, require_role, ROLE_STAFF, ROLE_ADMIN
from ..validation import validate_request, parse_optional_int, MARK_DISPATCHED_SCHEMA


events_bp = Blueprint("events", __name__, url_prefix="/api/events")


@events_bp.get("/pending")
@require_actor
@require_role(ROLE_ADMIN)
def pending_events_route():
    events = event_service.pending_events(limit=parse_optional_int(request.args, "limit") or 100)
    return jsonify({"events": [e.to_dict() for e in events]}), 200


@events_bp.get("/")
@require_actor
@require_role(ROLE_STAFF)
def list_events_route():
    events = event_service.list_events(
        order_id=parse_optional_int(request.args, "order_id"),
        event_type=request.args.get("event_type") or None,
        after_id=parse_optional_int(request.args, "after_id"),
        limit=parse_optional_int(request.args, "limit") or 100,
    )
    return jsonify({"events": [e.to_dict() for e in events]}), 200


@events_bp.post("/dispatched")
@require_actor
@require_role(ROLE_ADMIN)
def mark_dispatched_route():
    try:
        data = validate_request(request.get_json(silent=True), MARK_DISPATCHED_SCHEMA)
        event_ids = data["event_ids"]
        if not all(isinstance(i, int) and not isinstance(i, bool) for i in event_ids):
            raise ValidationError("event_ids must be a list of integers")
        count = event_service.mark_dispatched(event_ids)
        return jsonify({"dispatched": count}), 200

    except LifecycleError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to mark events dispatched")
        return internal_error_response()

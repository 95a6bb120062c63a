# Overview: Flask API routes for SLA timers and breaches.

# backend/printshop/routes/sla.py
from flask import Blueprint, request, jsonify, current_app

from ..errors import LifecycleError, error_response, internal_error_response
from ..services import sla_service
from ..decorators import require_actor, require_role, ROLE_STAFF, ROLE_ADMIN
from ..validation import (
    validate_request,
    parse_optional_int,
    parse_optional_bool,
    RESOLVE_BREACH_SCHEMA,
    SCAN_SCHEMA,
)


sla_bp = Blueprint("sla", __name__, url_prefix="/api/sla")


@sla_bp.get("/orders/<int:order_id>/timers")
@require_actor
@require_role(ROLE_STAFF)
def list_timers_route(order_id: int):
    timers = sla_service.list_timers(order_id)
    return jsonify({"timers": [t.to_dict() for t in timers]}), 200


def _timer_action(action, timer_id: int, label: str):
    try:
        timer = action(timer_id)
        return jsonify({"timer": timer.to_dict()}), 200

    except LifecycleError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to %s SLA timer", label)
        return internal_error_response()


@sla_bp.post("/timers/<int:timer_id>/complete")
@require_actor
@require_role(ROLE_STAFF)
def complete_timer_route(timer_id: int):
    return _timer_action(sla_service.complete_timer, timer_id, "complete")


@sla_bp.post("/timers/<int:timer_id>/pause")
@require_actor
@require_role(ROLE_STAFF)
def pause_timer_route(timer_id: int):
    return _timer_action(sla_service.pause_timer, timer_id, "pause")


@sla_bp.post("/timers/<int:timer_id>/resume")
@require_actor
@require_role(ROLE_STAFF)
def resume_timer_route(timer_id: int):
    return _timer_action(sla_service.resume_timer, timer_id, "resume")


@sla_bp.post("/scan")
@require_actor
@require_role(ROLE_ADMIN)
def scan_route():
    """Run the breach scan now. Normally scheduled through the CLI."""
    try:
        data = validate_request(request.get_json(silent=True), SCAN_SCHEMA)
        return jsonify(sla_service.scan_for_breaches(data.get("now"))), 200

    except LifecycleError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to scan for SLA breaches")
        return internal_error_response()


@sla_bp.get("/breaches")
@require_actor
@require_role(ROLE_STAFF)
def list_breaches_route():
    breaches = sla_service.list_breaches(
        order_id=parse_optional_int(request.args, "order_id"),
        unresolved_only=parse_optional_bool(request.args, "unresolved_only") or False,
        limit=parse_optional_int(request.args, "limit") or 100,
    )
    return jsonify({"breaches": [b.to_dict() for b in breaches]}), 200


@sla_bp.post("/breaches/<int:breach_id>/resolve")
@require_actor
@require_role(ROLE_STAFF)
def resolve_breach_route(breach_id: int):
    try:
        data = validate_request(request.get_json(silent=True), RESOLVE_BREACH_SCHEMA)
        breach = sla_service.resolve_breach(breach_id, reason=data.get("reason"))
        return jsonify({"breach": breach.to_dict()}), 200

    except LifecycleError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to resolve SLA breach")
        return internal_error_response()

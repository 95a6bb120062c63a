# Overview: Flask API routes for orders; status moves, revisions, assignment and checklist.

# backend/printshop/routes/orders.py
from flask import Blueprint, request, jsonify, g, current_app

from ..errors import LifecycleError, error_response, internal_error_response
from ..services import order_service
from ..decorators import require_actor, require_role, ensure_owner, ROLE_CUSTOMER, ROLE_STAFF
from ..validation import (
    validate_request,
    parse_list_params,
    parse_optional_int,
    parse_optional_bool,
    ADVANCE_STATUS_SCHEMA,
    RECORD_REVISION_SCHEMA,
    ASSIGN_STAFF_SCHEMA,
    SET_PRIORITY_SCHEMA,
    CHECKLIST_SCHEMA,
)


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.get("/")
@require_actor
def list_orders_route():
    """
    List orders.

    Filters: customer_id, status, assigned_staff_id, priority, sla_breached.
    Customers only ever see their own orders.
    """
    params = parse_list_params(request.args, sortable=set(order_service.SORTABLE_FIELDS))
    customer_id = parse_optional_int(request.args, "customer_id")
    if g.actor_role == ROLE_CUSTOMER:
        customer_id = g.actor_id

    orders, total = order_service.list_orders(
        customer_id=customer_id,
        status=request.args.get("status") or None,
        assigned_staff_id=parse_optional_int(request.args, "assigned_staff_id"),
        priority=parse_optional_int(request.args, "priority"),
        sla_breached=parse_optional_bool(request.args, "sla_breached"),
        **params,
    )
    return jsonify({
        "orders": [o.to_dict() for o in orders],
        "total": total,
        "limit": params["limit"],
        "offset": params["offset"],
    }), 200


@orders_bp.get("/<int:order_id>")
@require_actor
def get_order_route(order_id: int):
    order = order_service.get_order(order_id)
    ensure_owner(order.customer_id)
    return jsonify({
        "order": order.to_dict(),
        "checklist": [item.to_dict() for item in order.checklist_items],
    }), 200


@orders_bp.post("/<int:order_id>/status")
@require_actor
@require_role(ROLE_STAFF)
def advance_status_route(order_id: int):
    try:
        data = validate_request(request.get_json(silent=True), ADVANCE_STATUS_SCHEMA)
        order = order_service.advance_status(
            order_id,
            data["status"],
            actor_id=g.actor_id,
            force=bool(data.get("force")),
        )
        return jsonify({"order": order.to_dict()}), 200

    except LifecycleError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to advance order status")
        return internal_error_response()


@orders_bp.post("/<int:order_id>/revisions")
@require_actor
@require_role(ROLE_STAFF)
def record_revision_route(order_id: int):
    try:
        data = validate_request(request.get_json(silent=True), RECORD_REVISION_SCHEMA)
        order = order_service.record_revision(order_id, override=bool(data.get("override")))
        return jsonify({"order": order.to_dict()}), 200

    except LifecycleError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record revision")
        return internal_error_response()


@orders_bp.patch("/<int:order_id>/assignment")
@require_actor
@require_role(ROLE_STAFF)
def assign_staff_route(order_id: int):
    try:
        data = validate_request(request.get_json(silent=True), ASSIGN_STAFF_SCHEMA)
        order = order_service.assign_staff(order_id, data.get("staff_id"))
        return jsonify({"order": order.to_dict()}), 200

    except LifecycleError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to assign staff")
        return internal_error_response()


@orders_bp.patch("/<int:order_id>/priority")
@require_actor
@require_role(ROLE_STAFF)
def set_priority_route(order_id: int):
    try:
        data = validate_request(request.get_json(silent=True), SET_PRIORITY_SCHEMA)
        order = order_service.set_priority(order_id, data["priority"])
        return jsonify({"order": order.to_dict()}), 200

    except LifecycleError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to set priority")
        return internal_error_response()


@orders_bp.post("/<int:order_id>/recompute-balance")
@require_actor
@require_role(ROLE_STAFF)
def recompute_balance_route(order_id: int):
    try:
        order = order_service.recompute_balance(order_id)
        return jsonify({"order": order.to_dict()}), 200

    except LifecycleError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to recompute balance")
        return internal_error_response()


@orders_bp.post("/checklist/<int:item_id>/complete")
@require_actor
@require_role(ROLE_STAFF)
def complete_checklist_item_route(item_id: int):
    try:
        data = validate_request(request.get_json(silent=True), CHECKLIST_SCHEMA)
        item = order_service.complete_checklist_item(item_id, g.actor_id, data.get("notes"))
        return jsonify({"item": item.to_dict()}), 200

    except LifecycleError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to complete checklist item")
        return internal_error_response()

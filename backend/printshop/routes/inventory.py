# Overview: Flask API routes for inventory items, stock movements and consumption rules.

# backend/printshop/routes/inventory.py
from flask import Blueprint, request, jsonify, g, current_app

from ..errors import LifecycleError, error_response, internal_error_response
from ..models import InventoryItem, MaterialConsumptionRule
from ..services import inventory_service
from ..decorators import require_actor, require_role, ROLE_STAFF, ROLE_ADMIN
from ..validation import (
    validate_payload,
    validate_request,
    parse_optional_int,
    parse_optional_bool,
    INVENTORY_ITEM_POLICY,
    CONSUMPTION_RULE_POLICY,
    INVENTORY_MOVEMENT_SCHEMA,
    enforce_rules_inventory_item,
    enforce_rules_consumption_rule,
)


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("/items")
@require_actor
@require_role(ROLE_STAFF)
def list_items_route():
    include_inactive = parse_optional_bool(request.args, "include_inactive") or False
    items = inventory_service.list_items(include_inactive=include_inactive)
    return jsonify({"items": [i.to_dict() for i in items]}), 200


@inventory_bp.post("/items")
@require_actor
@require_role(ROLE_ADMIN)
def create_item_route():
    try:
        patch = validate_payload(
            model=InventoryItem,
            payload=request.get_json(silent=True),
            policy=INVENTORY_ITEM_POLICY,
            partial=False,
        )
        enforce_rules_inventory_item(patch)
        item = inventory_service.create_item(patch)
        return jsonify({"item": item.to_dict()}), 201

    except LifecycleError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create inventory item")
        return internal_error_response()


@inventory_bp.post("/items/<int:item_id>/movements")
@require_actor
@require_role(ROLE_STAFF)
def record_movement_route(item_id: int):
    """PURCHASE, RETURN or ADJUSTMENT. Stock is never edited directly."""
    try:
        data = validate_request(request.get_json(silent=True), INVENTORY_MOVEMENT_SCHEMA)
        tx = inventory_service.record_movement(
            item_id,
            transaction_type=data["transaction_type"],
            qty_change=data["qty_change"],
            reason=data["reason"],
            user_id=g.actor_id,
        )
        return jsonify({"transaction": tx.to_dict()}), 201

    except LifecycleError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record inventory movement")
        return internal_error_response()


@inventory_bp.get("/items/<int:item_id>/transactions")
@require_actor
@require_role(ROLE_STAFF)
def list_transactions_route(item_id: int):
    transactions = inventory_service.list_transactions(
        item_id=item_id,
        limit=parse_optional_int(request.args, "limit") or 100,
        offset=parse_optional_int(request.args, "offset") or 0,
    )
    return jsonify({
        "transactions": [t.to_dict() for t in transactions],
        "qty_on_hand": inventory_service.get_quantity_on_hand(item_id),
    }), 200


@inventory_bp.get("/reorder-alerts")
@require_actor
@require_role(ROLE_STAFF)
def reorder_alerts_route():
    items = inventory_service.reorder_alert_items()
    return jsonify({"items": [i.to_dict() for i in items]}), 200


@inventory_bp.post("/rules")
@require_actor
@require_role(ROLE_ADMIN)
def create_rule_route():
    try:
        patch = validate_payload(
            model=MaterialConsumptionRule,
            payload=request.get_json(silent=True),
            policy=CONSUMPTION_RULE_POLICY,
            partial=False,
        )
        enforce_rules_consumption_rule(patch)
        rule = inventory_service.create_consumption_rule(patch)
        return jsonify({"rule": rule.to_dict()}), 201

    except LifecycleError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create consumption rule")
        return internal_error_response()


@inventory_bp.post("/orders/<int:order_id>/consume")
@require_actor
@require_role(ROLE_STAFF)
def apply_consumption_route(order_id: int):
    """Idempotent; the production transition normally does this itself."""
    try:
        transactions = inventory_service.apply_consumption(order_id)
        return jsonify({"transactions": [t.to_dict() for t in transactions]}), 200

    except LifecycleError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to apply material consumption")
        return internal_error_response()

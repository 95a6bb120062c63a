# Overview: Flask API routes for design proofs; staff uploads and customer decisions.

# backend/printshop/routes/proofs.py
"""
Proof API routes.

File upload transport is handled elsewhere; this API receives the opaque
file_ref issued by file storage.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import LifecycleError, error_response, internal_error_response
from ..services import order_service, proof_service
from ..decorators import require_actor, require_role, ensure_owner, is_staff, ROLE_STAFF
from ..validation import validate_request, UPLOAD_PROOF_SCHEMA, RESPOND_PROOF_SCHEMA


proofs_bp = Blueprint("proofs", __name__, url_prefix="/api/proofs")


@proofs_bp.post("/orders/<int:order_id>")
@require_actor
@require_role(ROLE_STAFF)
def upload_proof_route(order_id: int):
    try:
        data = validate_request(request.get_json(silent=True), UPLOAD_PROOF_SCHEMA)
        proof = proof_service.upload_proof(
            order_id,
            data["file_ref"],
            g.actor_id,
            note=data.get("note"),
            file_type=data.get("file_type"),
            file_size=data.get("file_size"),
        )
        return jsonify({"proof": proof.to_dict()}), 201

    except LifecycleError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to upload proof")
        return internal_error_response()


@proofs_bp.get("/orders/<int:order_id>")
@require_actor
def list_proofs_route(order_id: int):
    order = order_service.get_order(order_id)
    ensure_owner(order.customer_id)
    proofs = proof_service.list_proofs(order_id)
    return jsonify({"proofs": [p.to_dict() for p in proofs]}), 200


@proofs_bp.post("/<int:proof_id>/view")
@require_actor
def mark_viewed_route(proof_id: int):
    """Best-effort: marking an already viewed or answered proof is a no-op."""
    try:
        proof = proof_service.get_proof(proof_id)
        ensure_owner(proof.order.customer_id)
        proof = proof_service.mark_viewed(proof_id)
        return jsonify({"proof": proof.to_dict()}), 200

    except LifecycleError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to mark proof viewed")
        return internal_error_response()


@proofs_bp.post("/<int:proof_id>/respond")
@require_actor
def respond_to_proof_route(proof_id: int):
    """
    Customer decision: APPROVE or REQUEST_REVISION.

    override_limit is honoured for staff only.
    """
    try:
        data = validate_request(request.get_json(silent=True), RESPOND_PROOF_SCHEMA)
        proof = proof_service.get_proof(proof_id)
        ensure_owner(proof.order.customer_id)
        proof = proof_service.respond_to_proof(
            proof_id,
            data["decision"],
            customer_comment=data.get("customer_comment"),
            customer_id=g.actor_id,
            override_limit=bool(data.get("override_limit")) and is_staff(),
        )
        return jsonify({"proof": proof.to_dict(), "order": proof.order.to_dict()}), 200

    except LifecycleError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to respond to proof")
        return internal_error_response()

# Overview: Flask API routes for the pricing catalog; read-only service and tier listings.

# backend/printshop/routes/catalog.py
from flask import Blueprint, jsonify, request

from ..services import catalog_service
from ..validation import parse_optional_bool


catalog_bp = Blueprint("catalog", __name__, url_prefix="/api/catalog")


@catalog_bp.get("/services")
def list_services_route():
    include_inactive = parse_optional_bool(request.args, "include_inactive") or False
    services = catalog_service.list_services(include_inactive=include_inactive)
    return jsonify({"services": [s.to_dict() for s in services]}), 200


@catalog_bp.get("/services/<int:service_id>")
def get_service_route(service_id: int):
    """Service with its option definitions (the quote form)."""
    service = catalog_service.get_service(service_id)
    return jsonify({
        "service": service.to_dict(),
        "options": [opt.to_dict() for opt in service.options],
    }), 200


@catalog_bp.get("/tiers")
def list_tiers_route():
    include_inactive = parse_optional_bool(request.args, "include_inactive") or False
    tiers = catalog_service.list_tiers(include_inactive=include_inactive)
    return jsonify({"tiers": [t.to_dict() for t in tiers]}), 200

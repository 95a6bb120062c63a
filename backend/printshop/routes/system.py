# backend/printshop/routes/system.py
"""
System health and version endpoints.

Health reports database reachability and whether the pricing catalog
and shop capacity have been configured.
"""

import sys
import time
from flask import Blueprint, current_app
from sqlalchemy import text

from ..extensions import db
from ..models import Service, Tier, CapacitySetting, DomainEvent
from ..time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__, url_prefix="/api/system")


def check_database_health() -> dict:
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        pending_events = db.session.query(DomainEvent).filter(DomainEvent.dispatched_at.is_(None)).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"pending_events": pending_events},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_configuration_health() -> dict:
    """Degraded when there is nothing to quote or no capacity to book."""
    start_time = time.time()
    try:
        services = db.session.query(Service).filter(Service.is_active.is_(True)).count()
        tiers = db.session.query(Tier).filter(Tier.is_active.is_(True)).count()
        capacity_days = db.session.query(CapacitySetting).count()
        elapsed_ms = (time.time() - start_time) * 1000

        details = {"active_services": services, "active_tiers": tiers, "capacity_days": capacity_days}
        if services == 0 or capacity_days == 0:
            return {
                "status": "degraded",
                "latency_ms": round(elapsed_ms, 2),
                "warning": "Catalog or capacity not configured",
                "details": details,
            }
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2), "details": details}
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Configuration health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Configuration check error",
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    configuration_health = check_configuration_health()

    all_checks = [database_health, configuration_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status = "unhealthy"
        http_status = 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status = "degraded"
        http_status = 200
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    return {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "configuration": configuration_health,
        },
    }, http_status


@system_bp.get("/version")
def version():
    env = "production" if not current_app.debug else "development"
    return {
        "api_version": current_app.config.get("API_VERSION", "0.1.0"),
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": to_utc_z(utcnow()),
    }

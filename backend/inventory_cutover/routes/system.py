# backend/inventory_cutover/routes/system.py
"""
System health endpoint.

Checks the database and reports how much cutover state exists, so an
operator can tell at a glance whether a migration is mid-flight.
"""

import time
from flask import Blueprint, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Cutover, CutoverLock, ExtractionSession, Location
from inventory_cutover.time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api/system")


def check_database_health() -> dict:
    """Count core tables; any storage error marks the database unhealthy."""
    start_time = time.time()
    try:
        details = {
            "locations": db.session.query(Location).count(),
            "cutovers": db.session.query(Cutover).count(),
            "cutovers_in_progress": db.session.query(Cutover).filter(
                Cutover.status.in_(("PENDING", "IN_PROGRESS"))
            ).count(),
            "locked_locations": db.session.query(CutoverLock).filter_by(is_locked=True).count(),
            "open_extraction_sessions": db.session.query(ExtractionSession).filter_by(
                status="IN_PROGRESS"
            ).count(),
        }
    except SQLAlchemyError:
        db.session.rollback()
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }

    elapsed_ms = (time.time() - start_time) * 1000
    return {
        "status": "healthy",
        "latency_ms": round(elapsed_ms, 2),
        "details": details,
    }


@system_bp.get("/health")
def health():
    """
    Health check.

    Returns:
    - 200: database reachable
    - 503: database unreachable
    """
    start_time = time.time()
    database_health = check_database_health()
    http_status = 503 if database_health["status"] == "unhealthy" else 200

    response = {
        "status": database_health["status"],
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {"database": database_health},
    }
    return response, http_status

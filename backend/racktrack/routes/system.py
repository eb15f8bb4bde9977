# backend/racktrack/routes/system.py
"""
System health endpoint.

Checks the database and reports QuickBooks connection state so a deployment
check can tell "app is up" from "app is up but QuickBooks is failing".
"""

import time

from flask import Blueprint, current_app

from ..config import validate_quickbooks_config
from ..extensions import db
from ..models import CustomerPO, QBConnection
from racktrack.time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    start_time = time.time()
    try:
        order_count = db.session.query(CustomerPO).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"customer_pos": order_count},
        }
    except Exception:
        db.session.rollback()
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_quickbooks_health() -> dict:
    """Degraded (never unhealthy): the order workflow runs without QuickBooks."""
    problems = validate_quickbooks_config(current_app.config)
    try:
        active = db.session.query(QBConnection).filter(QBConnection.is_active.is_(True)).all()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("QuickBooks health check failed")
        return {"status": "degraded", "error": "Connection table unavailable"}

    failing = [c.id for c in active if c.error_count]
    if not active:
        problems.append("No active QuickBooks connection")
    if failing:
        problems.append(f"Connections with refresh errors: {failing}")

    return {
        "status": "degraded" if problems else "healthy",
        "warnings": problems,
        "details": {
            "active_connections": len(active),
            "next_token_expiry": to_utc_z(min((c.token_expires_at for c in active), default=None)),
        },
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
    quickbooks_health = check_quickbooks_health()

    if database_health["status"] == "unhealthy":
        overall_status, http_status = "unhealthy", 503
    elif quickbooks_health["status"] == "degraded":
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "quickbooks": quickbooks_health,
        },
    }, http_status

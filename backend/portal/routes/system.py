# backend/portal/routes/system.py
"""
System health and version endpoints.
"""

import sys
import time

from flask import Blueprint, current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Client, SessionToken, SyncPushTask
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        client_count = db.session.query(func.count(Client.id)).scalar()
        active_sessions = db.session.query(func.count(SessionToken.id)).filter(
            SessionToken.is_revoked.is_(False)
        ).scalar()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"clients": client_count, "active_sessions": active_sessions},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {"status": "unhealthy", "latency_ms": round(elapsed_ms, 2), "error": "Database error"}


def check_sync_queue_health() -> dict:
    """
    Degraded when pushes are failing permanently; the ledger stays correct,
    the platform is just behind.
    """
    start_time = time.time()
    try:
        counts = dict(
            db.session.query(SyncPushTask.status, func.count(SyncPushTask.id))
            .group_by(SyncPushTask.status)
            .all()
        )
        elapsed_ms = (time.time() - start_time) * 1000
        result = {
            "status": "degraded" if counts.get("failed") else "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "pending": counts.get("pending", 0),
                "failed": counts.get("failed", 0),
            },
        }
        return result
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Sync queue health check failed")
        return {"status": "unhealthy", "latency_ms": round(elapsed_ms, 2), "error": "Sync queue error"}


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded
    - 503: one or more checks unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    sync_health = check_sync_queue_health()

    all_checks = [database_health, sync_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "sync_queue": sync_health,
        },
    }, http_status


@system_bp.get("/version")
def version():
    env = "production" if not current_app.debug else "development"
    return {
        "api_version": "1.0.0",
        "environment": env,
        "python_version": sys.version.split()[0],
        "shopify_api_version": current_app.config["SHOPIFY_API_VERSION"],
        "server_time": utcnow().isoformat() + "Z",
    }

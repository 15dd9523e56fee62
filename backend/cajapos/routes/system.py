# backend/cajapos/routes/system.py
"""
System health endpoint.

Reports database reachability and the identity of this terminal.
"""

import time
from flask import Blueprint, current_app, jsonify
from sqlalchemy import text

from ..extensions import db
from cajapos.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        return {
            "status": "healthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
        }
    except Exception as e:
        db.session.rollback()
        current_app.logger.error("Database health check failed: %s", e)
        return {"status": "unhealthy", "error": str(e)}


@system_bp.get("/api/health")
def health():
    database = check_database_health()
    ok = database["status"] == "healthy"
    body = {
        "status": "ok" if ok else "degraded",
        "device_id": current_app.config.get("DEVICE_ID"),
        "timestamp": to_utc_z(utcnow()),
        "database": database,
    }
    return jsonify(body), 200 if ok else 503

# Overview: Flask API routes for stats operations; parses input and returns JSON responses.

# backend/cajapos/routes/stats.py
"""Running and daily stats API routes"""

from flask import Blueprint, request, jsonify

from ..services import stats_service
from ..decorators import handle_pos_errors


stats_bp = Blueprint("stats", __name__, url_prefix="/api/stats")


@stats_bp.get("")
@stats_bp.get("/")
@handle_pos_errors("get_stats")
def get_stats_route():
    return jsonify({"stats": stats_service.get_running_stats().to_dict()}), 200


@stats_bp.post("/rebuild")
@handle_pos_errors("rebuild_stats")
def rebuild_stats_route():
    """Recompute every aggregate from sales and batches."""
    snapshot = stats_service.rebuild()
    return jsonify({"stats": snapshot.to_dict()}), 200


@stats_bp.get("/daily")
@handle_pos_errors("get_daily_stats")
def daily_stats_route():
    """
    Day buckets.

    Query params:
    - from: YYYY-MM-DD (inclusive, optional)
    - to: YYYY-MM-DD (inclusive, optional)
    """
    rows = stats_service.get_daily_stats(request.args.get("from"), request.args.get("to"))
    return jsonify({"days": [r.to_dict() for r in rows]}), 200

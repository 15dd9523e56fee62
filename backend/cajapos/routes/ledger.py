# Overview: Flask API routes for ledger operations; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify

from ..services.ledger_service import list_ledger_events
from ..decorators import handle_pos_errors

"""
Read-only view over the append-only audit ledger.
Newest events first; `limit` is clamped to [1, 500].
"""

ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/ledger")


@ledger_bp.get("")
@handle_pos_errors("list_ledger_events")
def list_ledger_events_route():
    limit = request.args.get("limit", default=100, type=int)
    limit = max(1, min(limit, 500))
    events = list_ledger_events(
        event_category=request.args.get("category"),
        sale_id=request.args.get("sale_id", type=int),
        session_id=request.args.get("session_id", type=int),
        limit=limit,
    )
    return jsonify({"events": [e.to_dict() for e in events]}), 200

# Overview: Flask API routes for cash drawer operations; parses input and returns JSON responses.

# backend/cajapos/routes/cash.py
"""
Cash Drawer API Routes

DESIGN:
- No explicit open: GET /session opens one on demand
- Movements and close act on the device's open session
- Device is taken from the X-Device-Id header, falling back to DEVICE_ID
"""

from flask import Blueprint, request, jsonify

from ..services import cash_service
from ..decorators import handle_pos_errors, require_json, result_response
from ..errors import ValidationError


cash_bp = Blueprint("cash", __name__, url_prefix="/api/cash")


def _device() -> str | None:
    return request.headers.get("X-Device-Id")


@cash_bp.get("/session")
@handle_pos_errors("get_cash_session")
def get_active_session_route():
    """Open (or return) the active session with its running totals."""
    session = cash_service.open_or_get_active_session(_device())
    return jsonify(cash_service.get_session_summary(session)), 200


@cash_bp.get("/sessions")
@handle_pos_errors("list_cash_sessions")
def list_sessions_route():
    try:
        limit = int(request.args.get("limit", 20))
    except ValueError:
        raise ValidationError("limit must be an integer")
    limit = max(1, min(limit, 200))
    sessions = cash_service.list_sessions(_device(), limit=limit)
    return jsonify({"sessions": [s.to_dict() for s in sessions]}), 200


@cash_bp.get("/sessions/<int:session_id>")
@handle_pos_errors("get_cash_session")
def get_session_route(session_id: int):
    session = cash_service.get_session(session_id)
    return jsonify(cash_service.get_session_summary(session)), 200


@cash_bp.post("/movements")
@require_json
@handle_pos_errors("record_cash_movement")
def record_movement_route():
    """
    Record a manual cash entry or withdrawal.

    Request body:
    {
        "movement_type": "in" | "out",
        "amount": 100.0,
        "memo": "Change fund"
    }
    """
    data = request.get_json()
    result = cash_service.record_cash_movement(
        data.get("movement_type"),
        data.get("amount"),
        data.get("memo"),
        device_id=_device(),
    )
    return result_response(result, lambda movement: {"movement": movement.to_dict()}, success_status=201)


@cash_bp.post("/session/float")
@require_json
@handle_pos_errors("adjust_opening_float")
def adjust_float_route():
    data = request.get_json()
    result = cash_service.adjust_opening_float(data.get("opening_float"), data.get("reason"), device_id=_device())
    return result_response(result, lambda session: {"session": session.to_dict()})


@cash_bp.post("/session/close")
@require_json
@handle_pos_errors("close_cash_session")
def close_session_route():
    """
    Audit and close the open session.

    Request body:
    {
        "physical_count": 520.00,
        "comment": "Short 3.40, change given twice"
    }

    422 BUSINESS_RULE when the variance exceeds tolerance without a comment.
    """
    data = request.get_json()
    result = cash_service.audit_and_close_session(
        data.get("physical_count"),
        data.get("comment"),
        device_id=_device(),
    )
    return result_response(
        result,
        lambda variance, session, theoretical: {
            "variance": variance,
            "theoretical": theoretical,
            "session": session.to_dict(),
        },
    )

# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/cajapos/routes/sales.py
"""Sales API routes: checkout, lookup and void"""

from flask import Blueprint, request, jsonify

from ..services import sales_service
from ..decorators import handle_pos_errors, require_json, result_response
from ..errors import ValidationError
from ..time_utils import parse_iso_datetime


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _sale_payload(sale, **_extra):
    return {"sale": sale.to_dict()}


@sales_bp.post("")
@sales_bp.post("/")
@require_json
@handle_pos_errors("process_sale")
def process_sale_route():
    """
    Check out a cart.

    Request body:
    {
        "items": [{"product_id": 1, "quantity": 2, "unit_price": 10.0}],
        "payment": {"method": "cash", "amount_tendered": 50.0},
        "ignore_stock": false,                (optional)
        "prescription_details": {...}         (optional)
    }

    409 INSUFFICIENT_STOCK carries details.deficits; 409 CONCURRENCY_CONFLICT
    carries retry=true.
    """
    data = request.get_json()
    result = sales_service.process_sale(
        data.get("items") or [],
        data.get("payment"),
        ignore_stock=bool(data.get("ignore_stock", False)),
        prescription_details=data.get("prescription_details"),
        device_id=request.headers.get("X-Device-Id"),
    )
    return result_response(result, _sale_payload, success_status=201)


@sales_bp.get("")
@sales_bp.get("/")
@handle_pos_errors("list_sales")
def list_sales_route():
    try:
        start = parse_iso_datetime(request.args.get("from"))
        end = parse_iso_datetime(request.args.get("to"))
    except ValueError:
        raise ValidationError("from/to must be ISO-8601 datetimes")
    try:
        limit = int(request.args.get("limit", 100))
    except ValueError:
        raise ValidationError("limit must be an integer")
    limit = max(1, min(limit, 500))
    include_voided = request.args.get("include_voided", "false").lower() == "true"
    sales = sales_service.list_sales(start=start, end=end, include_voided=include_voided, limit=limit)
    return jsonify({"sales": [s.to_dict(include_lines=False) for s in sales]}), 200


@sales_bp.get("/<int:sale_id>")
@handle_pos_errors("get_sale")
def get_sale_route(sale_id: int):
    sale = sales_service.get_sale(sale_id)
    return jsonify({"sale": sale.to_dict()}), 200


@sales_bp.post("/<int:sale_id>/void")
@handle_pos_errors("void_sale")
def void_sale_route(sale_id: int):
    """
    Void a sale and restore its stock.

    Request body (optional):
    {
        "reason": "Customer returned the order"
    }
    """
    data = request.get_json(silent=True) or {}
    result = sales_service.void_sale(
        sale_id,
        data.get("reason"),
        device_id=request.headers.get("X-Device-Id"),
    )
    return result_response(result, _sale_payload)

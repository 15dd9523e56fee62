# Overview: Flask API routes for customer operations; parses input and returns JSON responses.

# backend/cajapos/routes/customers.py
"""Customer credit API routes"""

from flask import Blueprint, request, jsonify

from ..services import customer_service
from ..decorators import handle_pos_errors, require_json, result_response


customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.post("")
@customers_bp.post("/")
@require_json
@handle_pos_errors("create_customer")
def create_customer_route():
    data = request.get_json()
    customer = customer_service.create_customer(
        data.get("name"),
        phone=data.get("phone"),
        credit_limit=data.get("credit_limit"),
    )
    return jsonify({"customer": customer.to_dict()}), 201


@customers_bp.get("/debtors")
@handle_pos_errors("list_debtors")
def list_debtors_route():
    return jsonify({"customers": [c.to_dict() for c in customer_service.list_debtors()]}), 200


@customers_bp.get("/<int:customer_id>")
@handle_pos_errors("get_customer")
def get_customer_route(customer_id: int):
    customer = customer_service.get_customer(customer_id)
    return jsonify({"customer": customer.to_dict()}), 200


@customers_bp.post("/<int:customer_id>/payments")
@require_json
@handle_pos_errors("record_customer_payment")
def record_payment_route(customer_id: int):
    """
    Take a cash payment toward the customer's balance.

    Request body:
    {
        "amount": 50.0,
        "note": "Weekly payment"   (optional)
    }
    """
    data = request.get_json()
    result = customer_service.record_customer_payment(
        customer_id,
        data.get("amount"),
        data.get("note"),
        device_id=request.headers.get("X-Device-Id"),
    )
    return result_response(result, lambda payment: {"payment": payment.to_dict()}, success_status=201)

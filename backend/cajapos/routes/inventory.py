# Overview: Flask API routes for inventory operations; parses input and returns JSON responses.

# backend/cajapos/routes/inventory.py
"""Inventory API routes: lot receipts, stock receipts and cache reconciliation"""

from flask import Blueprint, request, jsonify

from ..services import batch_service
from ..decorators import handle_pos_errors, require_json


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("/products/<int:product_id>/batches")
@handle_pos_errors("list_batches")
def list_batches_route(product_id: int):
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    batches = batch_service.list_batches(product_id, include_inactive=include_inactive)
    return jsonify({"batches": [b.to_dict() for b in batches]}), 200


@inventory_bp.post("/products/<int:product_id>/batches")
@require_json
@handle_pos_errors("create_batch")
def create_batch_route(product_id: int):
    """
    Receive a lot.

    Request body:
    {
        "quantity": 12,
        "cost": 2.5,
        "price": 4.0,                         (optional)
        "created_at": "2025-01-01T10:00:00Z"  (optional)
    }
    """
    data = request.get_json()
    batch = batch_service.create_batch(
        product_id,
        data.get("quantity"),
        data.get("cost"),
        price=data.get("price"),
        created_at=data.get("created_at"),
    )
    return jsonify({"batch": batch.to_dict()}), 201


@inventory_bp.post("/products/<int:product_id>/receive")
@require_json
@handle_pos_errors("receive_stock")
def receive_stock_route(product_id: int):
    data = request.get_json()
    product = batch_service.receive_product_stock(product_id, data.get("quantity"), data.get("cost"))
    return jsonify({"product": product.to_dict()}), 200


@inventory_bp.post("/reconcile")
@handle_pos_errors("reconcile_stock")
def reconcile_route():
    data = request.get_json(silent=True) or {}
    corrections = batch_service.reconcile(data.get("product_id"))
    return jsonify({"corrections": corrections}), 200

# Overview: Flask API routes for guest checkout; parses input and returns JSON responses.

from flask import Blueprint, request

from ..results import run_operation
from ..services import order_service


checkout_bp = Blueprint("checkout", __name__, url_prefix="/api/checkout")


@checkout_bp.post("/guest-orders")
def create_guest_orders_route():
    """
    Guest checkout. Public: no session required.

    A cart spanning several stores produces one order per store; the first
    one is returned as primary_order_id.
    """
    payload = request.get_json(silent=True) or {}

    def _checkout():
        orders = order_service.create_guest_order(payload)
        return {
            "order_ids": [o.id for o in orders],
            "primary_order_id": orders[0].id,
            "orders": [o.to_dict() for o in orders],
        }

    return run_operation(_checkout, description="create guest orders", success_status=201).to_response()

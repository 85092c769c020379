# Overview: Flask API routes for order operations; parses input and returns JSON responses.

from flask import Blueprint, request

from ..decorators import current_user_id, require_auth, resolve_store_scope
from ..results import run_operation
from ..services import fulfillment_service, order_service
from ..validation import parse_id_list, parse_int, require_fields


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _scope():
    return resolve_store_scope(request.args.get("store_id", type=int))


def _order_detail(order) -> dict:
    data = order.to_dict()
    data["events"] = [e.to_dict() for e in sorted(order.events, key=lambda e: e.id)]
    data["payments"] = [p.to_dict() for p in order.payments]
    data["fulfillments"] = [f.to_dict() for f in order.fulfillments]
    return data


@orders_bp.get("/")
@require_auth
def list_orders_route():
    """
    List orders in the caller's stores.

    Query params: store_id, status, payment_status, fulfillment_status,
    search, page, page_size
    """
    def _load():
        orders, total = order_service.list_orders(
            store_ids=_scope(),
            status=request.args.get("status"),
            payment_status=request.args.get("payment_status"),
            fulfillment_status=request.args.get("fulfillment_status"),
            search=request.args.get("search"),
            page=request.args.get("page", 1, type=int),
            page_size=request.args.get("page_size", order_service.DEFAULT_PAGE_SIZE, type=int),
        )
        return {"orders": [o.to_dict(include_items=False) for o in orders], "total": total}

    return run_operation(_load, description="list orders").to_response()


@orders_bp.post("/")
@require_auth
def create_order_route():
    """
    Create an open order directly (no draft). Stock is reserved immediately.

    Body: {"store_id": 1, "customer_email": ..., "items": [{"listing_id": 3,
           "variant_id": 7, "quantity": 2}], "shipping_amount": ...,
           "tax_amount": ..., "discount_amount": ..., "mark_as_paid": false}
    """
    data = request.get_json(silent=True) or {}

    def _create():
        require_fields(data, "store_id", "customer_email", "items")
        store_id = parse_int(data["store_id"], "store_id", minimum=1)
        resolve_store_scope(store_id)
        order = order_service.create_order(
            store_id,
            data["items"],
            customer_email=data["customer_email"],
            customer_first_name=data.get("customer_first_name"),
            customer_last_name=data.get("customer_last_name"),
            customer_phone=data.get("customer_phone"),
            currency=data.get("currency"),
            discount_amount=data.get("discount_amount") or 0,
            shipping_amount=data.get("shipping_amount") or 0,
            tax_amount=data.get("tax_amount") or 0,
            shipping_address=data.get("shipping_address"),
            billing_address=data.get("billing_address"),
            shipping_method=data.get("shipping_method"),
            mark_as_paid=bool(data.get("mark_as_paid", False)),
            user_id=current_user_id(),
        )
        return {"order": _order_detail(order)}

    return run_operation(_create, description="create order", success_status=201).to_response()


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    return run_operation(
        lambda: _order_detail(order_service.get_order(order_id, store_ids=_scope())),
        description="load order",
    ).to_response()


@orders_bp.post("/<int:order_id>/fulfill")
@require_auth
def fulfill_order_route(order_id: int):
    """
    Ship some or all remaining units.

    Body: {"items": [{"order_item_id": 1, "quantity": 2}], "carrier": ...,
           "tracking_number": ..., "tracking_url": ...}
    """
    data = request.get_json(silent=True) or {}

    def _fulfill():
        items = data.get("items") or data.get("fulfilled_items") or []
        fulfillment = fulfillment_service.fulfill_order(
            order_id,
            items,
            carrier=data.get("carrier"),
            tracking_number=data.get("tracking_number"),
            tracking_url=data.get("tracking_url"),
            fulfilled_by=current_user_id(),
            store_ids=_scope(),
        )
        order = order_service.get_order(order_id)
        return {"fulfillment": fulfillment.to_dict(), "order": order.to_dict()}

    return run_operation(_fulfill, description="fulfill order", success_status=201).to_response()


@orders_bp.post("/<int:order_id>/payment-status")
@require_auth
def update_payment_status_route(order_id: int):
    data = request.get_json(silent=True) or {}

    def _update():
        require_fields(data, "payment_status")
        order = order_service.update_payment_status(
            order_id,
            data["payment_status"],
            store_ids=_scope(),
            user_id=current_user_id(),
        )
        return {"order": order.to_dict()}

    return run_operation(_update, description="update payment status").to_response()


@orders_bp.post("/<int:order_id>/workflow")
@require_auth
def update_workflow_route(order_id: int):
    """Body: {"workflow_status": "on_hold", "hold_reason": "Address check"}"""
    data = request.get_json(silent=True) or {}

    def _update():
        require_fields(data, "workflow_status")
        order = order_service.update_workflow_status(
            order_id,
            data["workflow_status"],
            data.get("hold_reason"),
            store_ids=_scope(),
            user_id=current_user_id(),
        )
        return {"order": order.to_dict()}

    return run_operation(_update, description="update workflow status").to_response()


@orders_bp.post("/<int:order_id>/cancel")
@require_auth
def cancel_order_route(order_id: int):
    data = request.get_json(silent=True) or {}

    def _cancel():
        order = order_service.cancel_order(
            order_id,
            data.get("reason"),
            restock=bool(data.get("restock", True)),
            store_ids=_scope(),
            user_id=current_user_id(),
        )
        return {"order": order.to_dict()}

    return run_operation(_cancel, description="cancel order").to_response()


@orders_bp.post("/archive")
@require_auth
def archive_orders_route():
    """Body: {"order_ids": [1, 2, 3]}"""
    data = request.get_json(silent=True) or {}

    def _archive():
        count = order_service.archive_orders(
            parse_id_list(data.get("order_ids"), "order_ids"),
            store_ids=_scope(),
            user_id=current_user_id(),
        )
        return {"archived": count}

    return run_operation(_archive, description="archive orders").to_response()


@orders_bp.post("/unarchive")
@require_auth
def unarchive_orders_route():
    data = request.get_json(silent=True) or {}

    def _unarchive():
        count = order_service.unarchive_orders(
            parse_id_list(data.get("order_ids"), "order_ids"),
            store_ids=_scope(),
            user_id=current_user_id(),
        )
        return {"unarchived": count}

    return run_operation(_unarchive, description="unarchive orders").to_response()

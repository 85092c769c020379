# Overview: Flask API routes for draft order operations; parses input and returns JSON responses.

from flask import Blueprint, request

from ..decorators import current_user_id, require_auth, resolve_store_scope
from ..results import run_operation
from ..services import order_service
from ..validation import parse_id_list, parse_int, require_fields


draft_orders_bp = Blueprint("draft_orders", __name__, url_prefix="/api/draft-orders")


def _scope():
    return resolve_store_scope(request.args.get("store_id", type=int))


@draft_orders_bp.post("/")
@require_auth
def create_draft_route():
    """
    Create a draft order. Inventory is untouched until completion.

    Body: {"store_id": 1, "items": [{"listing_id": 3, "variant_id": 7,
           "quantity": 2}], "customer_email": ..., "discount_amount": ...,
           "shipping_amount": ..., "tax_amount": ..., "note": ...}
    """
    data = request.get_json(silent=True) or {}

    def _create():
        require_fields(data, "store_id", "items")
        store_id = parse_int(data["store_id"], "store_id", minimum=1)
        resolve_store_scope(store_id)
        draft = order_service.create_draft_order(
            store_id,
            data["items"],
            customer_email=data.get("customer_email"),
            customer_first_name=data.get("customer_first_name"),
            customer_last_name=data.get("customer_last_name"),
            customer_phone=data.get("customer_phone"),
            currency=data.get("currency"),
            discount_amount=data.get("discount_amount") or 0,
            shipping_amount=data.get("shipping_amount") or 0,
            tax_amount=data.get("tax_amount") or 0,
            shipping_address=data.get("shipping_address"),
            billing_address=data.get("billing_address"),
            note=data.get("note"),
            user_id=current_user_id(),
        )
        return {"draft_order": draft.to_dict()}

    return run_operation(_create, description="create draft order", success_status=201).to_response()


@draft_orders_bp.get("/")
@require_auth
def list_drafts_route():
    """Query params: store_id, view (all|open|completed), search, page, page_size"""
    def _load():
        drafts, total = order_service.list_draft_orders(
            store_ids=_scope(),
            view=request.args.get("view", "all"),
            search=request.args.get("search"),
            page=request.args.get("page", 1, type=int),
            page_size=request.args.get("page_size", order_service.DEFAULT_PAGE_SIZE, type=int),
        )
        return {"draft_orders": [d.to_dict(include_items=False) for d in drafts], "total": total}

    return run_operation(_load, description="list draft orders").to_response()


@draft_orders_bp.get("/<int:draft_id>")
@require_auth
def get_draft_route(draft_id: int):
    return run_operation(
        lambda: {"draft_order": order_service.get_draft_order(draft_id, store_ids=_scope()).to_dict()},
        description="load draft order",
    ).to_response()


@draft_orders_bp.post("/<int:draft_id>/complete")
@require_auth
def complete_draft_route(draft_id: int):
    """Convert a draft into an order. Body: {"mark_as_paid": true}"""
    data = request.get_json(silent=True) or {}

    def _complete():
        order = order_service.complete_draft_order(
            draft_id,
            bool(data.get("mark_as_paid", False)),
            store_ids=_scope(),
            user_id=current_user_id(),
        )
        return {"order": order.to_dict()}

    return run_operation(_complete, description="complete draft order", success_status=201).to_response()


@draft_orders_bp.post("/<int:draft_id>/send-invoice")
@require_auth
def send_invoice_route(draft_id: int):
    """Body: {"email": "override@example.com", "message": "Thanks!"}"""
    data = request.get_json(silent=True) or {}
    return run_operation(
        lambda: order_service.send_invoice(draft_id, data.get("email"), data.get("message"), store_ids=_scope()),
        description="send invoice",
    ).to_response()


@draft_orders_bp.post("/<int:draft_id>/mark-paid")
@require_auth
def mark_draft_paid_route(draft_id: int):
    def _mark():
        draft = order_service.mark_draft_paid(draft_id, store_ids=_scope())
        return {"draft_order": draft.to_dict()}

    return run_operation(_mark, description="mark draft order paid").to_response()


@draft_orders_bp.patch("/<int:draft_id>")
@require_auth
def update_draft_route(draft_id: int):
    """
    Edit an open draft. Any of: customer_*, note, shipping_address,
    billing_address, discount_amount, shipping_amount, tax_amount, items.
    """
    data = request.get_json(silent=True) or {}

    def _update():
        draft = order_service.update_draft_order(draft_id, data, store_ids=_scope())
        return {"draft_order": draft.to_dict()}

    return run_operation(_update, description="update draft order").to_response()


@draft_orders_bp.post("/<int:draft_id>/duplicate")
@require_auth
def duplicate_draft_route(draft_id: int):
    def _duplicate():
        draft = order_service.duplicate_draft_order(draft_id, store_ids=_scope(), user_id=current_user_id())
        return {"draft_order": draft.to_dict()}

    return run_operation(_duplicate, description="duplicate draft order", success_status=201).to_response()


@draft_orders_bp.post("/delete")
@require_auth
def delete_drafts_route():
    """Body: {"draft_ids": [1, 2]}. Completed drafts are skipped."""
    data = request.get_json(silent=True) or {}
    return run_operation(
        lambda: order_service.delete_draft_orders(
            parse_id_list(data.get("draft_ids"), "draft_ids"),
            store_ids=_scope(),
        ),
        description="delete draft orders",
    ).to_response()

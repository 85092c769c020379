# Overview: Flask API routes for inventory operations; parses input and returns JSON responses.

"""
Inventory API routes.

Every route is store-scoped: members see their stores, admins see all
stores (or the one named by ?store_id=). Levels outside the caller's scope
answer 404.
"""

from flask import Blueprint, request

from ..decorators import current_user_id, require_auth, resolve_store_scope
from ..results import run_operation
from ..services import inventory_service
from ..validation import parse_int, parse_money, require_fields


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def _scope():
    return resolve_store_scope(request.args.get("store_id", type=int))


@inventory_bp.get("/rows")
@require_auth
def list_rows_route():
    """
    Inventory table.

    Query params: store_id, location_id, search, page, page_size
    """
    def _load():
        rows, total = inventory_service.get_inventory_rows(
            store_ids=_scope(),
            location_id=request.args.get("location_id", type=int),
            search=request.args.get("search"),
            page=request.args.get("page", 1, type=int),
            page_size=request.args.get("page_size", inventory_service.DEFAULT_PAGE_SIZE, type=int),
        )
        return {"rows": rows, "total": total}

    return run_operation(_load, description="list inventory rows").to_response()


@inventory_bp.get("/locations")
@require_auth
def list_locations_route():
    def _load():
        locations = inventory_service.list_locations(
            store_ids=_scope(),
            include_inactive=request.args.get("include_inactive") == "true",
        )
        return {"locations": [location.to_dict() for location in locations]}

    return run_operation(_load, description="list inventory locations").to_response()


@inventory_bp.post("/levels/<int:level_id>/adjust")
@require_auth
def adjust_level_route(level_id: int):
    """
    Set the available quantity of a level.

    Body: {"available": 12, "reason": "cycle count"}
    """
    data = request.get_json(silent=True) or {}

    def _adjust():
        require_fields(data, "available")
        return inventory_service.adjust_manual(
            level_id,
            parse_int(data["available"], "available"),
            data.get("reason") or "manual",
            store_ids=_scope(),
            user_id=current_user_id(),
        )

    return run_operation(_adjust, description="adjust inventory level").to_response()


@inventory_bp.put("/items/<int:item_id>/cost")
@require_auth
def update_cost_route(item_id: int):
    data = request.get_json(silent=True) or {}

    def _update():
        require_fields(data, "cost_per_item")
        return inventory_service.update_cost_per_item(
            item_id,
            parse_money(data["cost_per_item"], "cost_per_item", allow_negative=True),
            store_ids=_scope(),
        )

    return run_operation(_update, description="update cost per item").to_response()


@inventory_bp.put("/levels/<int:level_id>/incoming")
@require_auth
def update_incoming_route(level_id: int):
    data = request.get_json(silent=True) or {}

    def _update():
        require_fields(data, "incoming")
        return inventory_service.update_incoming(
            level_id,
            parse_int(data["incoming"], "incoming"),
            store_ids=_scope(),
            user_id=current_user_id(),
        )

    return run_operation(_update, description="update incoming quantity").to_response()


@inventory_bp.delete("/levels/<int:level_id>")
@require_auth
def delete_level_route(level_id: int):
    """Delete a level together with its inventory item and variant."""
    return run_operation(
        lambda: inventory_service.delete_inventory_level(level_id, store_ids=_scope()),
        description="delete inventory level",
    ).to_response()


@inventory_bp.get("/history")
@require_auth
def adjustment_history_route():
    """
    Adjustment history for one item at one location, newest first.

    Query params: inventory_item_id, location_id, limit
    """
    def _load():
        item_id = parse_int(request.args.get("inventory_item_id"), "inventory_item_id", minimum=1)
        location_id = parse_int(request.args.get("location_id"), "location_id", minimum=1)
        adjustments = inventory_service.get_adjustment_history(
            item_id,
            location_id,
            store_ids=_scope(),
            limit=request.args.get("limit", inventory_service.HISTORY_LIMIT, type=int),
        )
        return {"adjustments": [a.to_dict() for a in adjustments]}

    return run_operation(_load, description="load adjustment history").to_response()

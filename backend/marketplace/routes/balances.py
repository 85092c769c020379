# Overview: Flask API routes for seller balances; parses input and returns JSON responses.

from flask import Blueprint, request

from ..decorators import current_user_id, require_admin, require_auth, resolve_store_scope
from ..results import run_operation
from ..services import balance_service
from ..validation import require_fields


balances_bp = Blueprint("balances", __name__, url_prefix="/api/balances")


@balances_bp.get("/<int:store_id>")
@require_auth
def get_balance_route(store_id: int):
    """Balance plus the most recent ledger entries. Query param: limit"""
    def _load():
        resolve_store_scope(store_id)
        transactions = balance_service.list_balance_transactions(
            store_id,
            request.args.get("limit", balance_service.DEFAULT_HISTORY_LIMIT, type=int),
        )
        return {
            "balance": balance_service.get_balance(store_id),
            "transactions": [t.to_dict() for t in transactions],
        }

    return run_operation(_load, description="load seller balance").to_response()


@balances_bp.get("/<int:store_id>/payouts")
@require_auth
def list_payouts_route(store_id: int):
    def _load():
        resolve_store_scope(store_id)
        payouts = balance_service.list_payouts(
            store_id,
            request.args.get("limit", balance_service.DEFAULT_HISTORY_LIMIT, type=int),
        )
        return {"payouts": [p.to_dict() for p in payouts]}

    return run_operation(_load, description="list payouts").to_response()


@balances_bp.post("/<int:store_id>/payouts")
@require_auth
def request_payout_route(store_id: int):
    """
    Request a payout and send it to the provider right away.

    Body: {"amount": "50.00"}
    """
    data = request.get_json(silent=True) or {}

    def _request():
        require_fields(data, "amount")
        resolve_store_scope(store_id)
        payout = balance_service.request_payout(store_id, data["amount"], user_id=current_user_id())
        payout = balance_service.process_payout(payout.id)
        return {"payout": payout.to_dict(), "balance": balance_service.get_balance(store_id)}

    return run_operation(_request, description="request payout", success_status=201).to_response()


@balances_bp.post("/payouts/<int:payout_id>/process")
@require_auth
@require_admin
def process_payout_route(payout_id: int):
    """Admin: send a payout that is still pending to the provider."""
    return run_operation(
        lambda: {"payout": balance_service.process_payout(payout_id).to_dict()},
        description="process payout",
    ).to_response()

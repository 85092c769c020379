# Overview: Flask API routes for payment provider webhooks; verifies and dispatches events.

from flask import Blueprint, current_app, jsonify, request

from ..errors import MarketplaceError
from ..services import payment_reconciler


webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/api/webhooks")


@webhooks_bp.post("/stripe")
def stripe_webhook_route():
    """
    Stripe webhook endpoint.

    Answers 200 {"received": true} for handled, duplicate and ignored
    events. A bad signature is 400; business failures map to their status
    so the provider retries the delivery. A multi-store charge with a held
    transfer answers 502 for the same reason.
    """
    payload = request.get_data()
    signature = request.headers.get("Stripe-Signature")

    try:
        result = payment_reconciler.handle_webhook(payload, signature)
        if result.get("failed_stores"):
            return jsonify(result), 502
        return jsonify(result), 200

    except MarketplaceError as e:
        current_app.logger.warning("Webhook rejected: %s", e)
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to process webhook")
        return jsonify({"error": "Webhook processing failed"}), 500

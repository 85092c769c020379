# Overview: Service-layer operations for payment webhooks; turns provider events into idempotent order/payment state changes.

"""
Payment Reconciliation Invariants (authoritative)

Delivery is at-least-once and may race with dashboard actions, so every
handler is idempotent on two levels:

1. Event level: ProcessedWebhookEvent(provider, event_id) is written in the
   same transaction as the event's effects. A redelivered event id is
   acknowledged without side effects.
2. Payment level: record_payment() refuses a second OrderPayment for the same
   (order, provider payment id), even if the event id differs.

Provider data is re-fetched (checkout session, payment intent, refunds);
the webhook body is only used to learn which objects to fetch.

Multi-store checkouts settle one charge and then transfer each store's net
share to its connected account. Stores are processed independently: one
store's failure is logged and the remaining stores still go through. The
event stays unprocessed until every store's transfer succeeded, so the
provider's redelivery retries the held ones.
"""

from __future__ import annotations

import json
from decimal import Decimal, ROUND_HALF_UP

from flask import current_app

from ..extensions import db
from ..errors import NotFoundError, ValidationError
from ..models import DraftOrder, Order, OrderPayment, ProcessedWebhookEvent, Store
from ..money import ZERO, cents_to_money, money_str, to_money
from . import balance_service, email_service
from .concurrency import RETRYABLE_WITH_UNIQUE, lock_for_update, run_with_retry
from .order_service import (
    EVENT_REFUND,
    PaymentCapture,
    append_order_event,
    complete_draft_locked,
    lock_order,
    record_payment,
)
from .order_status import aggregate_payment_status, apply_derived_status, payment_record_status

PROVIDER = "stripe"

EVENT_CHECKOUT_COMPLETED = "checkout.session.completed"
EVENT_REFUND_UPDATED = "refund.updated"
EVENT_ACCOUNT_UPDATED = "account.updated"

TRANSFER_HELD = "held"
TRANSFER_TRANSFERRED = "transferred"
TRANSFER_PENDING_PAYOUT = "pending_payout"


def get_payment_provider():
    return current_app.extensions["payment_provider"]


def _platform_fee_percent() -> Decimal:
    return Decimal(str(current_app.config.get("PLATFORM_FEE_PERCENT", "5")))


def platform_fee(amount) -> Decimal:
    """Marketplace commission on an amount, rounded half-up to cents."""
    return to_money(to_money(amount) * _platform_fee_percent() / Decimal(100))


def _fee_cents(amount_cents: int) -> int:
    fee = Decimal(amount_cents) * _platform_fee_percent() / Decimal(100)
    return int(fee.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def _is_processed(event_id: str) -> bool:
    return (
        db.session.query(ProcessedWebhookEvent.id)
        .filter_by(provider=PROVIDER, event_id=event_id)
        .first()
        is not None
    )


def _mark_processed(event) -> None:
    db.session.add(ProcessedWebhookEvent(provider=PROVIDER, event_id=event.id, event_type=event.type))
    db.session.flush()


# =============================================================================
# ENTRY POINT
# =============================================================================

def handle_webhook(payload: bytes, signature: str | None) -> dict:
    """
    Verify and dispatch one provider event.

    Raises InvalidSignatureError before touching anything when the signature
    does not verify.
    """
    provider = get_payment_provider()
    event = provider.verify_webhook(payload, signature)

    if _is_processed(event.id):
        current_app.logger.info("Webhook event %s (%s) already processed", event.id, event.type)
        return {"received": True, "duplicate": True}

    handler = _HANDLERS.get(event.type)
    if handler is None:
        current_app.logger.info("Ignoring webhook event type %s", event.type)
        return {"received": True, "ignored": True}

    return handler(provider, event)


# =============================================================================
# checkout.session.completed
# =============================================================================

def _metadata_id(metadata: dict, *keys: str) -> int | None:
    for key in keys:
        value = metadata.get(key)
        if value not in (None, ""):
            try:
                return int(value)
            except (TypeError, ValueError):
                raise ValidationError(f"Invalid {key} in payment metadata")
    return None


def _handle_checkout_completed(provider, event) -> dict:
    session = provider.retrieve_checkout_session(event.object.get("id"))
    metadata = dict(session.metadata or {})

    intent = None
    if session.payment_intent_id:
        intent = provider.retrieve_payment_intent(session.payment_intent_id)
        # Session metadata wins; the intent fills in what the session lacks
        for key, value in (intent.metadata or {}).items():
            metadata.setdefault(key, value)

    if str(metadata.get("multiStore", "")).lower() == "true":
        if intent is None:
            raise ValidationError("Missing payment intent ID")
        return _settle_multi_store(provider, event, session, intent, metadata)
    return _settle_single(event, session, intent, metadata)


def _settle_single(event, session, intent, metadata: dict) -> dict:
    draft_id = _metadata_id(metadata, "draftId", "draft_id")
    order_id = _metadata_id(metadata, "orderId", "order_id")
    if draft_id is None and order_id is None:
        raise ValidationError("Missing draftId or orderId")
    if intent is None:
        raise ValidationError("Missing payment intent ID")

    total = cents_to_money(intent.amount)
    fee = cents_to_money(intent.application_fee_amount or 0)

    def _op():
        if _is_processed(event.id):
            db.session.commit()
            return None, False

        if draft_id is not None:
            draft = lock_for_update(db.session.query(DraftOrder).filter_by(id=draft_id)).first()
            if draft is None:
                raise NotFoundError("Draft order not found")
            capture = PaymentCapture(
                amount=total,
                currency=draft.currency,
                provider=PROVIDER,
                provider_payment_id=intent.id,
                checkout_session_id=session.id,
                platform_fee_amount=fee,
                transfer_status=TRANSFER_PENDING_PAYOUT,
            )
            if draft.completed and draft.converted_to_order_id:
                order = lock_order(draft.converted_to_order_id)
                payment = record_payment(order, capture)
            else:
                order = complete_draft_locked(draft, mark_as_paid=True, capture=capture)
                payment = (
                    db.session.query(OrderPayment)
                    .filter_by(order_id=order.id, provider_payment_id=intent.id)
                    .first()
                )
        else:
            order = lock_order(order_id)
            capture = PaymentCapture(
                amount=total,
                currency=order.currency,
                provider=PROVIDER,
                provider_payment_id=intent.id,
                checkout_session_id=session.id,
                platform_fee_amount=fee,
                transfer_status=TRANSFER_PENDING_PAYOUT,
            )
            payment = record_payment(order, capture)

        if payment is not None:
            balance_service.record_balance_transaction(
                order.store_id,
                balance_service.TX_ORDER_PAYMENT,
                payment.net_amount_to_store,
                currency=payment.currency,
                order_id=order.id,
                order_payment_id=payment.id,
                description=f"Payment for order #{order.order_number}",
            )
        else:
            current_app.logger.info("Payment %s already recorded for order %s", intent.id, order.id)

        _mark_processed(event)
        db.session.commit()
        return order, payment is not None

    order, recorded = run_with_retry(_op, retry_on=RETRYABLE_WITH_UNIQUE)
    if order is None:
        return {"received": True, "duplicate": True}

    if recorded:
        _send_confirmation(order)
    return {"received": True, "order_ids": [order.id]}


def _parse_breakdown(metadata: dict) -> dict[int, dict]:
    raw = metadata.get("storeBreakdown")
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            raise ValidationError("Invalid store breakdown in payment metadata")
    if not isinstance(raw, dict) or not raw:
        raise ValidationError("Missing store breakdown in payment metadata")

    breakdown = {}
    for store_key, entry in raw.items():
        try:
            breakdown[int(store_key)] = {
                "stripe_account_id": entry.get("stripeAccountId"),
                "amount": int(entry.get("amount") or 0),
                "order_ids": [int(o) for o in entry.get("orderIds") or []],
            }
        except (AttributeError, TypeError, ValueError):
            raise ValidationError("Invalid store breakdown in payment metadata")
    return breakdown


def _record_store_payments(store_id: int, order_ids: list[int], intent, session) -> tuple[list[OrderPayment], list[int]]:
    """
    Record one payment per order of a store bucket.

    Returns every payment for this intent plus the ids of orders paid by this
    call, so a redelivery can retry transfers without confirming twice.
    """
    def _op():
        payments = []
        newly_paid = []
        for order_id in order_ids:
            order = lock_order(order_id)
            if order.store_id != store_id:
                current_app.logger.warning(
                    "Order %s listed under store %s belongs to store %s; skipped",
                    order_id, store_id, order.store_id,
                )
                continue
            total = to_money(order.total_amount)
            capture = PaymentCapture(
                amount=total,
                currency=order.currency,
                provider=PROVIDER,
                provider_payment_id=intent.id,
                checkout_session_id=session.id,
                platform_fee_amount=platform_fee(total),
                transfer_status=TRANSFER_HELD,
            )
            payment = record_payment(order, capture)
            if payment is not None:
                balance_service.record_balance_transaction(
                    store_id,
                    balance_service.TX_ORDER_PAYMENT,
                    payment.net_amount_to_store,
                    currency=payment.currency,
                    order_id=order.id,
                    order_payment_id=payment.id,
                    description=f"Payment for order #{order.order_number}",
                )
                newly_paid.append(order.id)
            else:
                payment = (
                    db.session.query(OrderPayment)
                    .filter_by(order_id=order.id, provider_payment_id=intent.id)
                    .first()
                )
            payments.append(payment)
        db.session.commit()
        return payments, newly_paid

    return run_with_retry(_op, retry_on=RETRYABLE_WITH_UNIQUE)


def _mark_transferred(payment_ids: list[int], transfer_id: str) -> None:
    def _op():
        for payment in lock_for_update(
            db.session.query(OrderPayment).filter(OrderPayment.id.in_(payment_ids))
        ).all():
            payment.transfer_status = TRANSFER_TRANSFERRED
            payment.transfer_id = transfer_id
        db.session.commit()

    run_with_retry(_op)


def _settle_multi_store(provider, event, session, intent, metadata: dict) -> dict:
    """
    Settle a multi-store charge store by store.

    The event is only marked processed once every store's transfer went
    through. While any store is still held the provider gets a non-2xx reply
    and redelivers; payments and transfers already made are skipped then.
    """
    breakdown = _parse_breakdown(metadata)
    order_ids: list[int] = []
    confirm: list[int] = []
    failed_stores: list[int] = []

    for store_id, entry in breakdown.items():
        try:
            payments, newly_paid = _record_store_payments(store_id, entry["order_ids"], intent, session)
            order_ids.extend(p.order_id for p in payments)
            confirm.extend(newly_paid)

            pending = [p for p in payments if p.transfer_status != TRANSFER_TRANSFERRED]
            if not pending:
                continue

            store = db.session.get(Store, store_id)
            destination = entry["stripe_account_id"] or (store.stripe_account_id if store else None)
            if not destination:
                raise ValidationError(f"Store {store_id} has no connected payout account")

            amount = entry["amount"]
            transfer = provider.create_transfer(
                amount=amount - _fee_cents(amount),
                currency=intent.currency,
                destination=destination,
                source_transaction=intent.latest_charge,
                metadata={"store_id": str(store_id), "payment_intent": intent.id},
                idempotency_key=f"transfer-{intent.id}-{store_id}",
            )
            _mark_transferred([p.id for p in pending], transfer.id)
        except Exception:
            db.session.rollback()
            failed_stores.append(store_id)
            current_app.logger.exception(
                "Failed to settle store %s for payment %s; funds stay held", store_id, intent.id
            )

    if failed_stores:
        current_app.logger.warning(
            "Event %s left unprocessed; stores %s await redelivery", event.id, failed_stores
        )
    else:
        def _finish():
            if not _is_processed(event.id):
                _mark_processed(event)
            db.session.commit()

        run_with_retry(_finish, retry_on=RETRYABLE_WITH_UNIQUE)

    for order_id in dict.fromkeys(confirm):
        order = db.session.get(Order, order_id)
        _send_confirmation(order)

    return {"received": True, "order_ids": list(dict.fromkeys(order_ids)), "failed_stores": failed_stores}


def _send_confirmation(order) -> None:
    if not order.customer_email:
        current_app.logger.info("No customer email on order %s; skipping confirmation", order.id)
        return
    email_service.deliver(email_service.order_confirmation_message(order))


# =============================================================================
# refund.updated
# =============================================================================

def _handle_refund_updated(provider, event) -> dict:
    payment_intent_id = event.object.get("payment_intent")
    if isinstance(payment_intent_id, dict):
        payment_intent_id = payment_intent_id.get("id")
    if not payment_intent_id:
        current_app.logger.warning("Refund event %s has no payment intent; ignored", event.id)
        return {"received": True, "ignored": True}

    refunds = provider.list_refunds(payment_intent_id)
    refunded_total = cents_to_money(sum(r.amount for r in refunds if r.status == "succeeded"))

    def _op():
        if _is_processed(event.id):
            db.session.commit()
            return []

        payments = lock_for_update(
            db.session.query(OrderPayment)
            .filter_by(provider_payment_id=payment_intent_id)
            .order_by(OrderPayment.id.asc())
        ).all()
        if not payments:
            current_app.logger.warning("No payment recorded for refunded intent %s", payment_intent_id)

        # One intent can pay several orders (multi-store); refunds fill them in order
        remaining = refunded_total
        touched = []
        for payment in payments:
            amount = to_money(payment.amount)
            share = min(amount, remaining)
            remaining -= share
            previous = to_money(payment.refunded_amount)
            if share <= previous:
                continue

            delta = share - previous
            payment.refunded_amount = share
            payment.status = payment_record_status(amount, share)

            order = lock_order(payment.order_id)
            db.session.flush()
            order.refunded_amount = sum((to_money(p.refunded_amount) for p in order.payments), ZERO)
            order.payment_status = aggregate_payment_status(order.payments, order.total_amount)
            apply_derived_status(order)

            append_order_event(
                order,
                EVENT_REFUND,
                f"Refund of {money_str(delta)} {payment.currency} recorded ({money_str(share)} refunded in total)",
                metadata={
                    "provider_payment_id": payment_intent_id,
                    "refunded_amount": money_str(share),
                    "payment_status": order.payment_status,
                },
            )
            balance_service.record_balance_transaction(
                order.store_id,
                balance_service.TX_REFUND,
                delta,
                currency=payment.currency,
                order_id=order.id,
                order_payment_id=payment.id,
                description=f"Refund for order #{order.order_number}",
            )
            touched.append(order.id)

        _mark_processed(event)
        db.session.commit()
        return touched

    order_ids = run_with_retry(_op, retry_on=RETRYABLE_WITH_UNIQUE)
    return {"received": True, "order_ids": order_ids}


# =============================================================================
# account.updated
# =============================================================================

def _handle_account_updated(provider, event) -> dict:
    account_id = event.object.get("id")
    if not account_id:
        return {"received": True, "ignored": True}

    try:
        account = provider.retrieve_account(account_id)

        def _op():
            store = lock_for_update(db.session.query(Store).filter_by(stripe_account_id=account_id)).first()
            if store is not None:
                store.stripe_charges_enabled = account.charges_enabled
                store.stripe_payouts_enabled = account.payouts_enabled
                store.stripe_onboarding_complete = (
                    account.details_submitted and account.charges_enabled and account.payouts_enabled
                )
            _mark_processed(event)
            db.session.commit()
            return store.id if store is not None else None

        store_id = run_with_retry(_op, retry_on=RETRYABLE_WITH_UNIQUE)
    except Exception:
        current_app.logger.exception("Failed to sync payout account %s", account_id)
        return {"received": True}

    return {"received": True, "store_id": store_id}


_HANDLERS = {
    EVENT_CHECKOUT_COMPLETED: _handle_checkout_completed,
    EVENT_REFUND_UPDATED: _handle_refund_updated,
    EVENT_ACCOUNT_UPDATED: _handle_account_updated,
}

# Overview: Pytest coverage for the payment webhook reconciler (settlement, transfers, refunds, accounts).

"""
Payment Reconciler Tests

The fake provider stands in for Stripe: tests register checkout sessions,
payment intents, refunds and accounts on it, then deliver events either
through handle_webhook() directly or through the HTTP endpoint.
"""

import json
from decimal import Decimal

import pytest

from conftest import VALID_SIGNATURE, webhook_payload
from marketplace.errors import InvalidSignatureError, ValidationError
from marketplace.models import (
    DraftOrder,
    Order,
    OrderPayment,
    ProcessedWebhookEvent,
    SellerBalance,
    SellerBalanceTransaction,
    Store,
)
from marketplace.services import fulfillment_service, order_service, payment_reconciler
from marketplace.services.payment_provider import ConnectedAccount, Refund


def deliver(event_id, event_type, obj):
    return payment_reconciler.handle_webhook(webhook_payload(event_id, event_type, obj), VALID_SIGNATURE)


def checkout_completed(event_id, session_id):
    return deliver(event_id, "checkout.session.completed", {"id": session_id})


def balance_of(db_session, store):
    db_session.expire_all()
    return db_session.query(SellerBalance).filter_by(store_id=store.id).one()


def guest_order(items, total, email="buyer@example.com"):
    return order_service.create_guest_order({
        "customer_email": email,
        "currency": "EUR",
        "total_amount": total,
        "line_items": items,
    })


@pytest.fixture
def honey_order(db_session, honey):
    """Open, unpaid order for 3 honey jars (30.00)."""
    listing, variant, _ = honey
    (order,) = guest_order([{"listing_id": listing.id, "variant_id": variant.id, "quantity": 3}], "30.00")
    return order


@pytest.fixture
def paid_honey_order(db_session, provider, honey_order):
    provider.add_checkout("cs_1", "pi_1", 3000, metadata={"orderId": str(honey_order.id)}, fee_cents=150)
    checkout_completed("evt_paid", "cs_1")
    db_session.expire_all()
    return db_session.get(Order, honey_order.id)


@pytest.fixture
def split_orders(db_session, honey, candle):
    """One checkout across both stores: 70.00 of honey, 30.00 of candles."""
    honey_listing, honey_variant, _ = honey
    candle_listing, candle_variant, _ = candle
    return guest_order([
        {"listing_id": honey_listing.id, "variant_id": honey_variant.id, "quantity": 7},
        {"listing_id": candle_listing.id, "variant_id": candle_variant.id, "quantity": 2},
    ], "100.00")


def register_split_checkout(provider, split_orders, session_id="cs_multi", intent_id="pi_multi"):
    hive, candles = split_orders
    breakdown = {
        str(hive.store_id): {"stripeAccountId": "acct_golden", "amount": 7000, "orderIds": [hive.id]},
        str(candles.store_id): {"stripeAccountId": "acct_candle", "amount": 3000, "orderIds": [candles.id]},
    }
    provider.add_checkout(
        session_id,
        intent_id,
        10000,
        metadata={"multiStore": "true"},
        intent_metadata={"storeBreakdown": json.dumps(breakdown)},
    )


class TestSingleOrderSettlement:
    def test_order_marked_paid(self, db_session, paid_honey_order):
        assert paid_honey_order.payment_status == "paid"
        assert paid_honey_order.paid_at is not None
        assert paid_honey_order.status == "open"

        payment = db_session.query(OrderPayment).filter_by(order_id=paid_honey_order.id).one()
        assert payment.provider == "stripe"
        assert payment.provider_payment_id == "pi_1"
        assert payment.checkout_session_id == "cs_1"
        assert payment.amount == Decimal("30.00")
        assert payment.platform_fee_amount == Decimal("1.50")
        assert payment.net_amount_to_store == Decimal("28.50")
        assert payment.transfer_status == "pending_payout"

    def test_balance_credited_as_pending(self, db_session, store, paid_honey_order):
        balance = balance_of(db_session, store)
        assert balance.pending_balance == Decimal("28.50")
        assert balance.available_balance == Decimal("0.00")

        entry = db_session.query(SellerBalanceTransaction).one()
        assert entry.type == "order_payment"
        assert entry.status == "pending"
        assert entry.available_at is not None

    def test_confirmation_email_sent(self, db_session, mailbox, paid_honey_order):
        assert len(mailbox.sent) == 1
        assert mailbox.sent[0].subject == f"Order #{paid_honey_order.order_number} confirmed"

    def test_fulfilled_order_completes_on_payment(self, db_session, provider, honey_order):
        line = honey_order.items[0]
        fulfillment_service.fulfill_order(honey_order.id, [{"order_item_id": line.id, "quantity": 3}])
        provider.add_checkout("cs_1", "pi_1", 3000, metadata={"orderId": str(honey_order.id)})

        checkout_completed("evt_1", "cs_1")

        db_session.expire_all()
        assert db_session.get(Order, honey_order.id).status == "completed"

    def test_intent_metadata_fills_missing_ids(self, db_session, provider, honey_order):
        provider.add_checkout("cs_1", "pi_1", 3000, intent_metadata={"order_id": str(honey_order.id)})

        result = checkout_completed("evt_1", "cs_1")

        assert result == {"received": True, "order_ids": [honey_order.id]}


class TestIdempotency:
    def test_same_event_twice_is_a_no_op(self, db_session, store, mailbox, paid_honey_order):
        result = checkout_completed("evt_paid", "cs_1")

        assert result == {"received": True, "duplicate": True}
        assert db_session.query(OrderPayment).count() == 1
        assert db_session.query(SellerBalanceTransaction).count() == 1
        assert len(mailbox.sent) == 1

    def test_new_event_for_same_payment_records_nothing(self, db_session, store, mailbox, paid_honey_order):
        result = checkout_completed("evt_paid_again", "cs_1")

        assert result["order_ids"] == [paid_honey_order.id]
        assert db_session.query(OrderPayment).count() == 1
        assert balance_of(db_session, store).pending_balance == Decimal("28.50")
        assert len(mailbox.sent) == 1
        assert db_session.query(ProcessedWebhookEvent).count() == 2

    def test_failed_event_is_not_marked_processed(self, db_session, provider):
        provider.add_checkout("cs_1", "pi_1", 3000)

        with pytest.raises(ValidationError, match="Missing draftId or orderId"):
            checkout_completed("evt_1", "cs_1")

        assert db_session.query(ProcessedWebhookEvent).count() == 0


class TestDraftSettlement:
    @pytest.fixture
    def invoiced_draft(self, db_session, store, honey):
        listing, variant, _ = honey
        return order_service.create_draft_order(
            store.id,
            [{"listing_id": listing.id, "variant_id": variant.id, "quantity": 2}],
            customer_email="invoice@example.com",
        )

    def test_payment_completes_draft(self, db_session, provider, honey, invoiced_draft):
        provider.add_checkout("cs_d", "pi_d", 2000, metadata={"draftId": str(invoiced_draft.id)}, fee_cents=100)

        result = checkout_completed("evt_d", "cs_d")

        db_session.expire_all()
        draft = db_session.get(DraftOrder, invoiced_draft.id)
        assert draft.completed is True
        assert draft.payment_status == "paid"
        order = db_session.get(Order, draft.converted_to_order_id)
        assert result["order_ids"] == [order.id]
        assert order.payment_status == "paid"
        assert order.payments[0].provider_payment_id == "pi_d"
        payment_events = [e for e in order.events if e.type == "payment"]
        assert [e.message for e in payment_events] == ["Payment received via Stripe (20.00 EUR)"]
        assert payment_events[0].event_metadata["checkout_session_id"] == "cs_d"
        assert payment_events[0].event_metadata["net_amount_to_store"] == "19.00"

        _, _, level = honey
        assert (level.available, level.committed) == (8, 2)

    def test_payment_for_completed_draft_goes_to_its_order(self, db_session, provider, invoiced_draft):
        order = order_service.complete_draft_order(invoiced_draft.id)
        provider.add_checkout("cs_d", "pi_d", 2000, metadata={"draftId": str(invoiced_draft.id)})

        result = checkout_completed("evt_d", "cs_d")

        assert result["order_ids"] == [order.id]
        assert db_session.query(Order).count() == 1
        db_session.expire_all()
        assert db_session.get(Order, order.id).payment_status == "paid"

    def test_unknown_draft(self, db_session, provider):
        from marketplace.errors import NotFoundError

        provider.add_checkout("cs_d", "pi_d", 2000, metadata={"draftId": "999"})
        with pytest.raises(NotFoundError):
            checkout_completed("evt_d", "cs_d")


class TestMultiStoreSettlement:
    def test_each_store_gets_its_transfer(self, db_session, provider, store, other_store, split_orders):
        register_split_checkout(provider, split_orders)

        result = checkout_completed("evt_m", "cs_multi")

        assert result["failed_stores"] == []
        assert sorted(result["order_ids"]) == sorted(o.id for o in split_orders)
        transfers = {t["transfer"].destination: t for t in provider.transfers}
        assert transfers["acct_golden"]["transfer"].amount == 6650
        assert transfers["acct_candle"]["transfer"].amount == 2850
        assert transfers["acct_golden"]["source_transaction"] == "ch_pi_multi"
        assert transfers["acct_golden"]["idempotency_key"] == f"transfer-pi_multi-{store.id}"

        assert all(p.transfer_status == "transferred" for p in db_session.query(OrderPayment).all())
        assert balance_of(db_session, store).pending_balance == Decimal("66.50")
        assert balance_of(db_session, other_store).pending_balance == Decimal("28.50")

    def test_failed_transfer_keeps_funds_held(self, db_session, provider, store, other_store, split_orders):
        hive, candles = split_orders
        register_split_checkout(provider, split_orders)
        provider.failing_destinations.add("acct_candle")

        result = checkout_completed("evt_m", "cs_multi")

        assert result["failed_stores"] == [other_store.id]
        db_session.expire_all()
        hive_payment = db_session.query(OrderPayment).filter_by(order_id=hive.id).one()
        candle_payment = db_session.query(OrderPayment).filter_by(order_id=candles.id).one()
        assert (hive_payment.transfer_status, hive_payment.transfer_id) == ("transferred", "tr_1")
        assert (candle_payment.transfer_status, candle_payment.transfer_id) == ("held", None)
        assert db_session.get(Order, candles.id).payment_status == "paid"
        assert balance_of(db_session, other_store).pending_balance == Decimal("28.50")

    def test_held_transfer_leaves_event_unprocessed(self, db_session, provider, other_store, split_orders):
        register_split_checkout(provider, split_orders)
        provider.failing_destinations.add("acct_candle")

        checkout_completed("evt_m", "cs_multi")

        assert db_session.query(ProcessedWebhookEvent).count() == 0

    def test_redelivery_retries_only_held_transfers(self, db_session, provider, mailbox, other_store, split_orders):
        hive, candles = split_orders
        register_split_checkout(provider, split_orders)
        provider.failing_destinations.add("acct_candle")
        checkout_completed("evt_m", "cs_multi")
        assert len(mailbox.sent) == 2

        provider.failing_destinations.clear()
        result = checkout_completed("evt_m", "cs_multi")

        assert result["failed_stores"] == []
        assert sorted(result["order_ids"]) == sorted([hive.id, candles.id])
        assert [t["transfer"].destination for t in provider.transfers] == ["acct_golden", "acct_candle"]
        assert db_session.query(OrderPayment).count() == 2
        assert db_session.query(SellerBalanceTransaction).count() == 2
        assert db_session.query(ProcessedWebhookEvent).filter_by(event_id="evt_m").count() == 1
        assert len(mailbox.sent) == 2

        db_session.expire_all()
        candle_payment = db_session.query(OrderPayment).filter_by(order_id=candles.id).one()
        assert (candle_payment.transfer_status, candle_payment.transfer_id) == ("transferred", "tr_2")

    def test_settled_event_not_replayed(self, db_session, provider, split_orders):
        register_split_checkout(provider, split_orders)
        checkout_completed("evt_m", "cs_multi")

        result = checkout_completed("evt_m", "cs_multi")

        assert result == {"received": True, "duplicate": True}
        assert len(provider.transfers) == 2

    def test_store_without_account_fails_alone(self, db_session, provider, store, other_store, split_orders):
        hive, candles = split_orders
        breakdown = {
            str(store.id): {"amount": 7000, "orderIds": [hive.id]},
            str(other_store.id): {"amount": 3000, "orderIds": [candles.id]},
        }
        other_store.stripe_account_id = None
        db_session.commit()
        provider.add_checkout(
            "cs_multi", "pi_multi", 10000,
            metadata={"multiStore": "true", "storeBreakdown": json.dumps(breakdown)},
        )

        result = checkout_completed("evt_m", "cs_multi")

        assert result["failed_stores"] == [other_store.id]
        assert [t["transfer"].destination for t in provider.transfers] == ["acct_golden"]

    def test_invalid_breakdown(self, db_session, provider):
        provider.add_checkout("cs_multi", "pi_multi", 10000, metadata={"multiStore": "true", "storeBreakdown": "{oops"})
        with pytest.raises(ValidationError):
            checkout_completed("evt_m", "cs_multi")


class TestRefunds:
    def refund_event(self, event_id, intent_id="pi_1"):
        return deliver(event_id, "refund.updated", {"id": "re_x", "payment_intent": intent_id})

    def test_partial_refund_keeps_order_completed(self, db_session, provider, store, paid_honey_order):
        line = paid_honey_order.items[0]
        fulfillment_service.fulfill_order(paid_honey_order.id, [{"order_item_id": line.id, "quantity": 3}])
        provider.refunds["pi_1"] = [Refund("re_1", 1000, "succeeded")]

        result = self.refund_event("evt_r1")

        assert result["order_ids"] == [paid_honey_order.id]
        db_session.expire_all()
        order = db_session.get(Order, paid_honey_order.id)
        assert order.refunded_amount == Decimal("10.00")
        assert order.payment_status == "partially_refunded"
        assert order.status == "completed"
        assert order.payments[0].status == "partially_refunded"
        assert balance_of(db_session, store).available_balance == Decimal("-10.00")

    def test_full_refund_reverts_completion(self, db_session, provider, store, paid_honey_order):
        line = paid_honey_order.items[0]
        fulfillment_service.fulfill_order(paid_honey_order.id, [{"order_item_id": line.id, "quantity": 3}])
        provider.refunds["pi_1"] = [Refund("re_1", 1000, "succeeded")]
        self.refund_event("evt_r1")
        provider.refunds["pi_1"].append(Refund("re_2", 2000, "succeeded"))

        self.refund_event("evt_r2")

        db_session.expire_all()
        order = db_session.get(Order, paid_honey_order.id)
        assert order.payment_status == "refunded"
        assert order.status == "open"
        refunds = (
            db_session.query(SellerBalanceTransaction)
            .filter_by(type="refund")
            .order_by(SellerBalanceTransaction.id)
            .all()
        )
        assert [r.amount for r in refunds] == [Decimal("10.00"), Decimal("20.00")]

    def test_unchanged_total_is_not_applied_twice(self, db_session, provider, store, paid_honey_order):
        provider.refunds["pi_1"] = [Refund("re_1", 1000, "succeeded")]
        self.refund_event("evt_r1")

        result = self.refund_event("evt_r1_again")

        assert result["order_ids"] == []
        assert balance_of(db_session, store).available_balance == Decimal("-10.00")

    def test_pending_refunds_ignored(self, db_session, provider, paid_honey_order):
        provider.refunds["pi_1"] = [Refund("re_1", 1000, "pending")]

        result = self.refund_event("evt_r1")

        assert result["order_ids"] == []
        db_session.expire_all()
        assert db_session.get(Order, paid_honey_order.id).payment_status == "paid"

    def test_refund_spread_across_split_orders(self, db_session, provider, split_orders):
        hive, candles = split_orders
        register_split_checkout(provider, split_orders)
        checkout_completed("evt_m", "cs_multi")
        provider.refunds["pi_multi"] = [Refund("re_1", 8000, "succeeded")]

        self.refund_event("evt_r", intent_id="pi_multi")

        db_session.expire_all()
        assert db_session.get(Order, hive.id).payment_status == "refunded"
        assert db_session.get(Order, candles.id).refunded_amount == Decimal("10.00")
        assert db_session.get(Order, candles.id).payment_status == "partially_refunded"

    def test_event_without_intent_ignored(self, db_session):
        result = deliver("evt_r", "refund.updated", {"id": "re_x"})
        assert result == {"received": True, "ignored": True}


class TestAccountUpdates:
    def test_flags_synced(self, db_session, provider, store):
        provider.accounts["acct_golden"] = ConnectedAccount(
            "acct_golden", charges_enabled=True, payouts_enabled=True, details_submitted=True
        )

        result = deliver("evt_a", "account.updated", {"id": "acct_golden"})

        assert result == {"received": True, "store_id": store.id}
        db_session.expire_all()
        synced = db_session.get(Store, store.id)
        assert synced.stripe_charges_enabled is True
        assert synced.stripe_onboarding_complete is True

    def test_onboarding_incomplete_without_details(self, db_session, provider, store):
        provider.accounts["acct_golden"] = ConnectedAccount("acct_golden", charges_enabled=True, payouts_enabled=True)

        deliver("evt_a", "account.updated", {"id": "acct_golden"})

        db_session.expire_all()
        assert db_session.get(Store, store.id).stripe_onboarding_complete is False

    def test_provider_failure_is_acknowledged(self, db_session, store):
        result = deliver("evt_a", "account.updated", {"id": "acct_unknown"})

        assert result == {"received": True}
        assert db_session.query(ProcessedWebhookEvent).count() == 0


class TestWebhookEndpoint:
    def test_valid_event(self, db_session, provider, honey_order, send_webhook):
        provider.add_checkout("cs_1", "pi_1", 3000, metadata={"orderId": str(honey_order.id)})

        response = send_webhook("evt_1", "checkout.session.completed", {"id": "cs_1"})

        assert response.status_code == 200
        assert response.get_json() == {"received": True, "order_ids": [honey_order.id]}

    def test_bad_signature(self, db_session, send_webhook):
        response = send_webhook("evt_1", "checkout.session.completed", {"id": "cs_1"}, signature="t=1,v1=forged")

        assert response.status_code == 400
        assert response.get_json() == {"error": "Invalid signature"}

    def test_missing_signature(self, db_session, send_webhook):
        response = send_webhook("evt_1", "checkout.session.completed", {"id": "cs_1"}, signature=None)

        assert response.status_code == 400

    def test_missing_ids_is_400(self, db_session, provider, send_webhook):
        provider.add_checkout("cs_1", "pi_1", 3000)

        response = send_webhook("evt_1", "checkout.session.completed", {"id": "cs_1"})

        assert response.status_code == 400
        assert response.get_json()["error"] == "Missing draftId or orderId"

    def test_unknown_session_is_provider_error(self, db_session, send_webhook):
        response = send_webhook("evt_1", "checkout.session.completed", {"id": "cs_missing"})

        assert response.status_code == 502

    def test_unhandled_type_acknowledged(self, db_session, send_webhook):
        response = send_webhook("evt_1", "customer.created", {"id": "cus_1"})

        assert response.status_code == 200
        assert response.get_json() == {"received": True, "ignored": True}

    def test_signature_checked_before_anything_else(self, db_session):
        with pytest.raises(InvalidSignatureError):
            payment_reconciler.handle_webhook(b"{}", None)

    def test_held_transfer_answers_502_for_redelivery(self, db_session, provider, other_store, split_orders, send_webhook):
        register_split_checkout(provider, split_orders)
        provider.failing_destinations.add("acct_candle")

        response = send_webhook("evt_m", "checkout.session.completed", {"id": "cs_multi"})

        assert response.status_code == 502
        assert response.get_json()["failed_stores"] == [other_store.id]

        provider.failing_destinations.clear()
        response = send_webhook("evt_m", "checkout.session.completed", {"id": "cs_multi"})

        assert response.status_code == 200
        assert response.get_json()["failed_stores"] == []

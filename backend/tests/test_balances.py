# Overview: Pytest coverage for the seller balance ledger, hold release and payouts.

from decimal import Decimal

import pytest

from marketplace.errors import ConflictError, ProviderError, ValidationError
from marketplace.extensions import db
from marketplace.models import SellerBalance, SellerBalanceTransaction, SellerPayout
from marketplace.services import balance_service
from marketplace.time_utils import days_from_now


def _record(store, type, amount, **kwargs):
    entry = balance_service.record_balance_transaction(store.id, type, amount, currency="EUR", **kwargs)
    db.session.commit()
    return entry


class TestRecordBalanceTransaction:
    def test_payment_credits_pending_with_hold(self, db_session, store):
        entry = _record(store, balance_service.TX_ORDER_PAYMENT, "28.50", description="Payment for order #1")

        balance = db_session.query(SellerBalance).filter_by(store_id=store.id).one()
        assert balance.pending_balance == Decimal("28.50")
        assert balance.available_balance == Decimal("0.00")
        assert entry.status == "pending"
        assert (entry.balance_before, entry.balance_after) == (Decimal("0.00"), Decimal("28.50"))
        assert entry.available_at > days_from_now(6)

    def test_refund_debits_available(self, db_session, store):
        entry = _record(store, balance_service.TX_REFUND, "10.00")

        assert entry.amount == Decimal("10.00")
        assert entry.balance_after == Decimal("-10.00")
        assert entry.status == "available"

    def test_payout_is_marked_paid(self, db_session, store):
        _record(store, balance_service.TX_ADJUSTMENT, "50.00")
        entry = _record(store, balance_service.TX_PAYOUT, "40.00")

        assert entry.status == "paid"
        assert entry.balance_after == Decimal("10.00")

    def test_negative_adjustment_debits(self, db_session, store):
        entry = _record(store, balance_service.TX_ADJUSTMENT, "-5.00", description="Chargeback fee")

        assert entry.amount == Decimal("5.00")
        assert entry.balance_after == Decimal("-5.00")

    def test_negative_amount_rejected_outside_adjustments(self, db_session, store):
        with pytest.raises(ValidationError):
            balance_service.record_balance_transaction(store.id, balance_service.TX_REFUND, "-1.00", currency="EUR")

    def test_unknown_type_rejected(self, db_session, store):
        with pytest.raises(ValidationError):
            balance_service.record_balance_transaction(store.id, "bonus", "1.00", currency="EUR")


def _replay(entries):
    """Rebuild (pending, available) from ledger entries alone."""
    pending = available = Decimal("0.00")
    for entry in entries:
        if entry.type == "order_payment":
            pending += entry.amount
        elif entry.type == "release":
            pending -= entry.amount
            available += entry.amount
        else:
            available += entry.balance_after - entry.balance_before
    return pending, available


class TestReleaseMaturedFunds:
    def test_only_matured_entries_released(self, db_session, store):
        _record(store, balance_service.TX_ORDER_PAYMENT, "20.00")

        assert balance_service.release_matured_funds() == {"released": 0, "total": 0}

        result = balance_service.release_matured_funds(now=days_from_now(8))

        assert result == {"released": 1, "total": 1}
        db_session.expire_all()
        balance = db_session.query(SellerBalance).filter_by(store_id=store.id).one()
        assert balance.pending_balance == Decimal("0.00")
        assert balance.available_balance == Decimal("20.00")

    def test_release_appends_entry_and_keeps_original(self, db_session, store):
        held = _record(store, balance_service.TX_ORDER_PAYMENT, "20.00")

        balance_service.release_matured_funds(now=days_from_now(8))

        db_session.expire_all()
        original = db_session.get(SellerBalanceTransaction, held.id)
        assert original.status == "pending"
        assert (original.balance_before, original.balance_after) == (Decimal("0.00"), Decimal("20.00"))

        release = db_session.query(SellerBalanceTransaction).filter_by(type="release").one()
        assert release.release_of_id == held.id
        assert release.amount == Decimal("20.00")
        assert release.status == "available"
        assert (release.balance_before, release.balance_after) == (Decimal("0.00"), Decimal("20.00"))

    def test_release_is_idempotent(self, db_session, store):
        _record(store, balance_service.TX_ORDER_PAYMENT, "20.00")
        balance_service.release_matured_funds(now=days_from_now(8))

        assert balance_service.release_matured_funds(now=days_from_now(8)) == {"released": 0, "total": 0}
        assert db_session.query(SellerBalanceTransaction).filter_by(type="release").count() == 1

    def test_pending_shortfall_is_not_clamped(self, db_session, store):
        _record(store, balance_service.TX_ORDER_PAYMENT, "20.00")
        balance = db_session.query(SellerBalance).filter_by(store_id=store.id).one()
        balance.pending_balance = Decimal("5.00")
        db_session.commit()

        result = balance_service.release_matured_funds(now=days_from_now(8))

        assert result == {"released": 0, "total": 1}
        db_session.expire_all()
        balance = db_session.query(SellerBalance).filter_by(store_id=store.id).one()
        assert (balance.pending_balance, balance.available_balance) == (Decimal("5.00"), Decimal("0.00"))
        assert db_session.query(SellerBalanceTransaction).filter_by(type="release").count() == 0

    def test_balances_derivable_from_ledger(self, db_session, store):
        _record(store, balance_service.TX_ORDER_PAYMENT, "20.00")
        _record(store, balance_service.TX_ORDER_PAYMENT, "10.00")
        _record(store, balance_service.TX_REFUND, "5.00")
        balance_service.release_matured_funds(now=days_from_now(8))
        _record(store, balance_service.TX_ADJUSTMENT, "3.00")
        _record(store, balance_service.TX_ORDER_PAYMENT, "7.00")

        db_session.expire_all()
        balance = db_session.query(SellerBalance).filter_by(store_id=store.id).one()
        entries = db_session.query(SellerBalanceTransaction).order_by(SellerBalanceTransaction.id).all()
        assert _replay(entries) == (balance.pending_balance, balance.available_balance)
        assert (balance.pending_balance, balance.available_balance) == (Decimal("7.00"), Decimal("28.00"))


class TestGetBalance:
    def test_defaults_without_activity(self, db_session, store):
        assert balance_service.get_balance(store.id) == {
            "store_id": store.id,
            "available_balance": "0.00",
            "pending_balance": "0.00",
            "currency": "EUR",
            "updated_at": None,
        }

    def test_history_newest_first(self, db_session, store):
        _record(store, balance_service.TX_ORDER_PAYMENT, "20.00")
        _record(store, balance_service.TX_REFUND, "5.00")

        history = balance_service.list_balance_transactions(store.id)

        assert [t.type for t in history] == ["refund", "order_payment"]


class TestPayouts:
    @pytest.fixture
    def funded_store(self, db_session, store):
        _record(store, balance_service.TX_ADJUSTMENT, "100.00", description="Opening balance")
        return store

    def test_payout_completes_and_debits(self, db_session, provider, funded_store):
        payout = balance_service.request_payout(funded_store.id, "50.00")
        assert payout.status == "pending"

        payout = balance_service.process_payout(payout.id)

        assert payout.status == "completed"
        assert payout.provider_payout_id == "po_1"
        assert payout.completed_at is not None
        sent = provider.payouts[0]
        assert (sent["payout"].amount, sent["account_id"]) == (5000, "acct_golden")
        assert sent["idempotency_key"] == f"payout-{payout.id}"

        db_session.expire_all()
        balance = db_session.query(SellerBalance).filter_by(store_id=funded_store.id).one()
        assert balance.available_balance == Decimal("50.00")
        entry = db_session.query(SellerBalanceTransaction).filter_by(type="payout").one()
        assert (entry.amount, entry.status) == (Decimal("50.00"), "paid")

    def test_provider_failure_marks_failed_and_keeps_balance(self, db_session, provider, funded_store):
        payout = balance_service.request_payout(funded_store.id, "50.00")
        provider.failing_destinations.add("acct_golden")

        with pytest.raises(ProviderError):
            balance_service.process_payout(payout.id)

        db_session.expire_all()
        failed = db_session.get(SellerPayout, payout.id)
        assert failed.status == "failed"
        assert "acct_golden" in failed.failure_reason
        balance = db_session.query(SellerBalance).filter_by(store_id=funded_store.id).one()
        assert balance.available_balance == Decimal("100.00")
        assert db_session.query(SellerBalanceTransaction).filter_by(type="payout").count() == 0

    def test_below_minimum(self, db_session, funded_store):
        with pytest.raises(ValidationError, match="Minimum payout amount is 20.00 EUR"):
            balance_service.request_payout(funded_store.id, "10.00")

    def test_zero_amount(self, db_session, funded_store):
        with pytest.raises(ValidationError):
            balance_service.request_payout(funded_store.id, "0")

    def test_more_than_available(self, db_session, funded_store):
        with pytest.raises(ValidationError, match="Insufficient available balance"):
            balance_service.request_payout(funded_store.id, "150.00")

    def test_pending_funds_cannot_be_paid_out(self, db_session, store):
        _record(store, balance_service.TX_ORDER_PAYMENT, "80.00")

        with pytest.raises(ValidationError, match="Insufficient available balance"):
            balance_service.request_payout(store.id, "50.00")

    def test_one_payout_in_flight(self, db_session, funded_store):
        balance_service.request_payout(funded_store.id, "30.00")

        with pytest.raises(ConflictError, match="already in progress"):
            balance_service.request_payout(funded_store.id, "30.00")

    def test_one_completed_payout_per_day(self, db_session, provider, funded_store):
        payout = balance_service.request_payout(funded_store.id, "30.00")
        balance_service.process_payout(payout.id)

        with pytest.raises(ConflictError, match="one payout per day"):
            balance_service.request_payout(funded_store.id, "30.00")

    def test_failed_payout_does_not_block_a_new_one(self, db_session, provider, funded_store):
        payout = balance_service.request_payout(funded_store.id, "30.00")
        provider.failing_destinations.add("acct_golden")
        with pytest.raises(ProviderError):
            balance_service.process_payout(payout.id)

        assert balance_service.request_payout(funded_store.id, "30.00").status == "pending"

    def test_only_pending_payouts_processed(self, db_session, provider, funded_store):
        payout = balance_service.request_payout(funded_store.id, "30.00")
        balance_service.process_payout(payout.id)

        with pytest.raises(ConflictError):
            balance_service.process_payout(payout.id)
        assert len(provider.payouts) == 1

    def test_store_without_payout_account(self, db_session, funded_store):
        funded_store.stripe_account_id = None
        db_session.commit()

        with pytest.raises(ValidationError, match="payout account"):
            balance_service.request_payout(funded_store.id, "30.00")

    def test_history_newest_first(self, db_session, provider, funded_store):
        first = balance_service.request_payout(funded_store.id, "30.00")
        provider.failing_destinations.add("acct_golden")
        with pytest.raises(ProviderError):
            balance_service.process_payout(first.id)
        second = balance_service.request_payout(funded_store.id, "25.00")

        assert [p.id for p in balance_service.list_payouts(funded_store.id)] == [second.id, first.id]

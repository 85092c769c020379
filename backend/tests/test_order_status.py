# Overview: Pytest coverage for the pure order status derivation rules.

from decimal import Decimal
from types import SimpleNamespace

import pytest

from marketplace.services.order_status import (
    aggregate_payment_status,
    apply_derived_status,
    derive_order_status,
    fulfillment_status_for,
    payment_record_status,
    restored_status,
)


def _payment(amount, refunded="0.00", status="completed"):
    return SimpleNamespace(amount=Decimal(amount), refunded_amount=Decimal(refunded), status=status)


def _item(quantity, fulfilled):
    return SimpleNamespace(quantity=quantity, fulfilled_quantity=fulfilled)


class TestDeriveOrderStatus:
    """completed exactly when paid (or partially refunded) and (partially) fulfilled."""

    @pytest.mark.parametrize("payment,fulfillment", [
        ("paid", "fulfilled"),
        ("paid", "partial"),
        ("partially_refunded", "fulfilled"),
        ("partially_refunded", "partial"),
    ])
    def test_open_promotes_to_completed(self, payment, fulfillment):
        assert derive_order_status("open", payment, fulfillment) == "completed"

    @pytest.mark.parametrize("payment,fulfillment", [
        ("pending", "fulfilled"),
        ("paid", "unfulfilled"),
        ("refunded", "fulfilled"),
        ("void", "partial"),
    ])
    def test_open_stays_open(self, payment, fulfillment):
        assert derive_order_status("open", payment, fulfillment) == "open"

    def test_completed_reverts_when_fully_refunded(self):
        assert derive_order_status("completed", "refunded", "fulfilled") == "open"

    @pytest.mark.parametrize("status", ["draft", "canceled", "archived"])
    def test_out_of_band_statuses_untouched(self, status):
        assert derive_order_status(status, "paid", "fulfilled") == status

    def test_order_of_writers_does_not_matter(self):
        """Fulfill-then-pay and pay-then-fulfill end in the same state."""
        a = derive_order_status(derive_order_status("open", "pending", "fulfilled"), "paid", "fulfilled")
        b = derive_order_status(derive_order_status("open", "paid", "unfulfilled"), "paid", "fulfilled")
        assert a == b == "completed"

    def test_apply_derived_status_reports_change(self):
        order = SimpleNamespace(status="open", payment_status="paid", fulfillment_status="partial")
        assert apply_derived_status(order) is True
        assert order.status == "completed"
        assert apply_derived_status(order) is False


class TestRestoredStatus:
    def test_unarchive_paid_and_fulfilled_is_completed(self):
        order = SimpleNamespace(canceled_at=None, payment_status="paid", fulfillment_status="fulfilled")
        assert restored_status(order) == "completed"

    def test_unarchive_pending_is_open(self):
        order = SimpleNamespace(canceled_at=None, payment_status="pending", fulfillment_status="unfulfilled")
        assert restored_status(order) == "open"


class TestFulfillmentStatusFor:
    def test_nothing_shipped(self):
        assert fulfillment_status_for([_item(2, 0), _item(1, 0)]) == "unfulfilled"

    def test_some_shipped(self):
        assert fulfillment_status_for([_item(2, 1), _item(1, 0)]) == "partial"

    def test_everything_shipped(self):
        assert fulfillment_status_for([_item(2, 2), _item(1, 1)]) == "fulfilled"


class TestPaymentAggregation:
    def test_record_status(self):
        assert payment_record_status("30.00", "0.00") == "completed"
        assert payment_record_status("30.00", "10.00") == "partially_refunded"
        assert payment_record_status("30.00", "30.00") == "refunded"

    def test_no_payments_is_pending(self):
        assert aggregate_payment_status([], Decimal("30.00")) == "pending"

    def test_captured_total_is_paid(self):
        assert aggregate_payment_status([_payment("30.00")], Decimal("30.00")) == "paid"

    def test_under_captured_is_pending(self):
        assert aggregate_payment_status([_payment("10.00")], Decimal("30.00")) == "pending"

    def test_partial_refund(self):
        assert aggregate_payment_status([_payment("30.00", "5.00")], Decimal("30.00")) == "partially_refunded"

    def test_full_refund(self):
        assert aggregate_payment_status([_payment("30.00", "30.00")], Decimal("30.00")) == "refunded"

    def test_pending_rows_ignored(self):
        payments = [_payment("30.00", status="pending")]
        assert aggregate_payment_status(payments, Decimal("30.00")) == "pending"

# Overview: Pytest coverage for direct order entry from the dashboard (no draft).

from decimal import Decimal

import pytest

from marketplace.errors import InsufficientStockError, NotFoundError, ValidationError
from marketplace.models import Customer, Order, OrderPayment
from marketplace.services import order_service


def _items(honey, beeswax, honey_qty=2, wax_qty=1):
    honey_listing, honey_variant, _ = honey
    wax_listing, wax_variant, _ = beeswax
    return [
        {"listing_id": honey_listing.id, "variant_id": honey_variant.id, "quantity": honey_qty},
        {"listing_id": wax_listing.id, "variant_id": wax_variant.id, "quantity": wax_qty},
    ]


class TestCreateOrder:
    def test_open_order_with_reserved_stock(self, db_session, store, honey, beeswax):
        order = order_service.create_order(
            store.id,
            _items(honey, beeswax),
            customer_email="Walk.In@Example.com",
            shipping_amount="3.00",
        )

        assert order.status == "open"
        assert order.payment_status == "pending"
        assert order.fulfillment_status == "unfulfilled"
        assert order.guest_checkout is False
        assert order.customer_email == "walk.in@example.com"
        assert order.subtotal_amount == Decimal("27.50")
        assert order.total_amount == Decimal("30.50")

        _, _, honey_level = honey
        _, _, wax_level = beeswax
        db_session.expire_all()
        assert (honey_level.available, honey_level.committed) == (8, 2)
        assert (wax_level.available, wax_level.committed) == (4, 1)

    def test_customer_resolved_and_counted(self, db_session, store, honey, beeswax):
        order = order_service.create_order(store.id, _items(honey, beeswax), customer_email="walk.in@example.com")

        customer = db_session.query(Customer).one()
        assert order.customer_id == customer.id
        assert customer.orders_count == 1
        assert customer.total_spent == Decimal("27.50")

    def test_timeline(self, db_session, store, honey, beeswax):
        order = order_service.create_order(store.id, _items(honey, beeswax), customer_email="walk.in@example.com")

        messages = [e.message for e in sorted(order.events, key=lambda e: e.id)]
        assert messages == [
            "Order created manually",
            f"Order confirmation number generated: #{order.order_number}",
        ]

    def test_mark_as_paid(self, db_session, store, honey, beeswax):
        order = order_service.create_order(
            store.id, _items(honey, beeswax), customer_email="walk.in@example.com", mark_as_paid=True
        )

        assert order.payment_status == "paid"
        payment = db_session.query(OrderPayment).filter_by(order_id=order.id).one()
        assert (payment.provider, payment.amount) == ("manual", Decimal("27.50"))
        assert "Payment received" in [e.message for e in order.events]

    def test_billing_defaults_to_shipping(self, db_session, store, honey, beeswax):
        order = order_service.create_order(
            store.id,
            _items(honey, beeswax),
            customer_email="walk.in@example.com",
            shipping_address={"name": "Walk In", "city": "Leuven", "country": "BE"},
        )

        assert order.address_dict("billing")["city"] == "Leuven"

    def test_shortage_rolls_back(self, db_session, store, honey, beeswax):
        with pytest.raises(InsufficientStockError):
            order_service.create_order(
                store.id, _items(honey, beeswax, wax_qty=6), customer_email="walk.in@example.com"
            )

        _, _, honey_level = honey
        db_session.expire_all()
        assert db_session.query(Order).count() == 0
        assert db_session.query(Customer).count() == 0
        assert (honey_level.available, honey_level.committed) == (10, 0)

    def test_email_required(self, db_session, store, honey, beeswax):
        with pytest.raises(ValidationError):
            order_service.create_order(store.id, _items(honey, beeswax), customer_email="")

    def test_foreign_items_rejected(self, db_session, store, candle):
        listing, variant, _ = candle
        with pytest.raises(ValidationError):
            order_service.create_order(
                store.id,
                [{"listing_id": listing.id, "variant_id": variant.id, "quantity": 1}],
                customer_email="walk.in@example.com",
            )

    def test_unknown_store(self, db_session, honey, beeswax):
        with pytest.raises(NotFoundError):
            order_service.create_order(9999, _items(honey, beeswax), customer_email="walk.in@example.com")

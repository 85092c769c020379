"""
Pytest fixtures for marketplace backend tests.

Provides an in-memory database, a fake payment provider, a recording email
sender, store/catalog/inventory fixtures and authenticated users.
"""

import json
from decimal import Decimal

import pytest

from marketplace import create_app
from marketplace.config import Config
from marketplace.errors import InvalidSignatureError, ProviderError
from marketplace.extensions import db
from marketplace.models import (
    InventoryItem,
    InventoryLevel,
    InventoryLocation,
    Listing,
    ListingVariant,
    Store,
)
from marketplace.services import inventory_service, session_service
from marketplace.services.auth_service import create_user
from marketplace.services.payment_provider import (
    CheckoutSession,
    PaymentIntent,
    Payout,
    Transfer,
    WebhookEvent,
)

VALID_SIGNATURE = "t=1,v1=valid"
PASSWORD = "Password123"


class MarketplaceTestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    STRIPE_WEBHOOK_SECRET = "whsec_test"
    PLATFORM_FEE_PERCENT = "5"
    BALANCE_HOLD_DAYS = 7
    APP_URL = "https://shop.test"
    MAIL_FROM = "orders@shop.test"


class FakePaymentProvider:
    """In-memory stand-in for the Stripe adapter."""

    name = "stripe"

    def __init__(self):
        self.reset()

    def reset(self):
        self.sessions = {}
        self.intents = {}
        self.refunds = {}
        self.accounts = {}
        self.transfers = []
        self.payouts = []
        self.failing_destinations = set()

    # Test setup helpers

    def add_checkout(self, session_id, intent_id, amount_cents, *, metadata=None,
                     fee_cents=None, currency="EUR", intent_metadata=None):
        self.sessions[session_id] = CheckoutSession(
            id=session_id,
            payment_intent_id=intent_id,
            metadata=dict(metadata or {}),
            currency=currency.lower(),
            amount_total=amount_cents,
        )
        self.intents[intent_id] = PaymentIntent(
            id=intent_id,
            amount=amount_cents,
            currency=currency.upper(),
            application_fee_amount=fee_cents,
            latest_charge=f"ch_{intent_id}",
            metadata=dict(intent_metadata or {}),
        )

    # Provider interface

    def verify_webhook(self, payload, signature):
        if not signature:
            raise InvalidSignatureError("No signature")
        if signature != VALID_SIGNATURE:
            raise InvalidSignatureError("Invalid signature")
        body = json.loads(payload)
        return WebhookEvent(id=body["id"], type=body["type"], object=body["data"]["object"])

    def retrieve_checkout_session(self, session_id):
        try:
            return self.sessions[session_id]
        except KeyError:
            raise ProviderError(f"Failed to retrieve checkout session {session_id}")

    def retrieve_payment_intent(self, payment_intent_id):
        try:
            return self.intents[payment_intent_id]
        except KeyError:
            raise ProviderError(f"Failed to retrieve payment intent {payment_intent_id}")

    def list_refunds(self, payment_intent_id):
        return list(self.refunds.get(payment_intent_id, []))

    def create_transfer(self, *, amount, currency, destination, source_transaction=None,
                        metadata=None, idempotency_key=None):
        if destination in self.failing_destinations:
            raise ProviderError(f"Transfer to {destination} failed")
        transfer = Transfer(id=f"tr_{len(self.transfers) + 1}", amount=amount, destination=destination)
        self.transfers.append({
            "transfer": transfer,
            "currency": currency,
            "source_transaction": source_transaction,
            "metadata": metadata,
            "idempotency_key": idempotency_key,
        })
        return transfer

    def create_payout(self, *, amount, currency, account_id, idempotency_key=None):
        if account_id in self.failing_destinations:
            raise ProviderError(f"Payout from {account_id} failed")
        payout = Payout(id=f"po_{len(self.payouts) + 1}", amount=amount, status="pending")
        self.payouts.append({
            "payout": payout,
            "currency": currency,
            "account_id": account_id,
            "idempotency_key": idempotency_key,
        })
        return payout

    def retrieve_account(self, account_id):
        try:
            return self.accounts[account_id]
        except KeyError:
            raise ProviderError(f"Failed to retrieve account {account_id}")


class RecordingEmailSender:
    def __init__(self):
        self.reset()

    def reset(self):
        self.sent = []
        self.fail = False

    def send(self, message):
        if self.fail:
            raise RuntimeError("SMTP unavailable")
        self.sent.append(message)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(
        MarketplaceTestConfig,
        payment_provider=FakePaymentProvider(),
        email_sender=RecordingEmailSender(),
    )

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        app.extensions["payment_provider"].reset()
        app.extensions["email_sender"].reset()

        yield db.session

        db.session.rollback()


@pytest.fixture(scope='function')
def provider(app, db_session):
    return app.extensions["payment_provider"]


@pytest.fixture(scope='function')
def mailbox(app, db_session):
    return app.extensions["email_sender"]


@pytest.fixture(scope='function')
def store(db_session):
    """Store with a connected payout account."""
    store = Store(name="Golden Hive", slug="golden-hive", currency="EUR", stripe_account_id="acct_golden")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def other_store(db_session):
    store = Store(name="Candle Works", slug="candle-works", currency="EUR", stripe_account_id="acct_candle")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def location(db_session, store):
    location = InventoryLocation(store_id=store.id, name="Main Warehouse", is_default=True, is_active=True)
    db_session.add(location)
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def other_location(db_session, other_store):
    location = InventoryLocation(store_id=other_store.id, name="Workshop", is_default=True, is_active=True)
    db_session.add(location)
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def stock_variant(db_session):
    """
    Factory: listing + variant + inventory item + level seeded through the ledger.

    Returns (listing, variant, level).
    """
    def _make(store, location, name, price, quantity, *, sku=None, tracked=True):
        listing = Listing(store_id=store.id, name=name, price=Decimal(price), currency=store.currency)
        db_session.add(listing)
        db_session.flush()
        variant = ListingVariant(listing_id=listing.id, title="Default", sku=sku, price=Decimal(price))
        db_session.add(variant)
        db_session.flush()

        level = None
        if tracked:
            item = InventoryItem(variant_id=variant.id, cost_per_item=Decimal("4.00"))
            db_session.add(item)
            db_session.flush()
            level = InventoryLevel(inventory_item_id=item.id, location_id=location.id)
            db_session.add(level)
        db_session.commit()

        if tracked and quantity:
            inventory_service.adjust_manual(level.id, quantity, "initial stock")
            db_session.refresh(level)
        return listing, variant, level

    return _make


@pytest.fixture(scope='function')
def honey(store, location, stock_variant):
    """Honey jar, 10.00 EUR, 10 in stock."""
    return stock_variant(store, location, "Honey Jar", "10.00", 10, sku="HONEY-1")


@pytest.fixture(scope='function')
def beeswax(store, location, stock_variant):
    """Beeswax wrap, 7.50 EUR, 5 in stock."""
    return stock_variant(store, location, "Beeswax Wrap", "7.50", 5, sku="WAX-1")


@pytest.fixture(scope='function')
def candle(other_store, other_location, stock_variant):
    """Candle from the second store, 15.00 EUR, 8 in stock."""
    return stock_variant(other_store, other_location, "Soy Candle", "15.00", 8, sku="CANDLE-1")


@pytest.fixture(scope='function')
def owner(db_session, store):
    return create_user("owner@goldenhive.test", PASSWORD, name="Hive Owner", store_id=store.id)


@pytest.fixture(scope='function')
def outsider(db_session, other_store):
    return create_user("owner@candleworks.test", PASSWORD, name="Candle Owner", store_id=other_store.id)


@pytest.fixture(scope='function')
def admin(db_session):
    return create_user("admin@marketplace.test", PASSWORD, name="Platform Admin", is_admin=True)


def token_for(user) -> str:
    _, token = session_service.create_session(user.id)
    return token


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def owner_headers(owner):
    return auth_headers(token_for(owner))


@pytest.fixture(scope='function')
def outsider_headers(outsider):
    return auth_headers(token_for(outsider))


@pytest.fixture(scope='function')
def admin_headers(admin):
    return auth_headers(token_for(admin))


def webhook_payload(event_id: str, event_type: str, obj: dict) -> bytes:
    return json.dumps({"id": event_id, "type": event_type, "data": {"object": obj}}).encode("utf-8")


@pytest.fixture(scope='function')
def send_webhook(client):
    """Post a signed event to the webhook endpoint."""
    def _send(event_id, event_type, obj, signature=VALID_SIGNATURE):
        headers = {"Stripe-Signature": signature} if signature else {}
        return client.post(
            "/api/webhooks/stripe",
            data=webhook_payload(event_id, event_type, obj),
            headers=headers,
            content_type="application/json",
        )

    return _send

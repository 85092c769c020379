# Overview: Payment provider collaborator (Stripe Connect) behind a small, testable interface.

"""
The reconciler never talks to the Stripe SDK directly. StripePaymentProvider
wraps the SDK calls it needs and returns plain dataclasses, so tests can
install a fake provider with the same methods.

Amounts crossing this boundary are integer minor units (cents), as the
provider reports them.

Errors:
- bad or missing signature -> InvalidSignatureError (never retried)
- any other SDK failure     -> ProviderError
"""

from __future__ import annotations

from dataclasses import dataclass, field

import stripe

from ..errors import InvalidSignatureError, ProviderError


@dataclass
class WebhookEvent:
    id: str
    type: str
    object: dict = field(default_factory=dict)


@dataclass
class CheckoutSession:
    id: str
    payment_intent_id: str | None
    metadata: dict = field(default_factory=dict)
    currency: str | None = None
    amount_total: int | None = None


@dataclass
class PaymentIntent:
    id: str
    amount: int
    currency: str
    application_fee_amount: int | None = None
    latest_charge: str | None = None
    metadata: dict = field(default_factory=dict)


@dataclass
class Refund:
    id: str
    amount: int
    status: str


@dataclass
class Transfer:
    id: str
    amount: int
    destination: str


@dataclass
class Payout:
    id: str
    amount: int
    status: str


@dataclass
class ConnectedAccount:
    id: str
    charges_enabled: bool = False
    payouts_enabled: bool = False
    details_submitted: bool = False


def _plain(obj) -> dict:
    if obj is None:
        return {}
    return dict(obj)


def _id_of(value) -> str | None:
    """Expanded objects and bare ids both appear in SDK responses."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return value.get("id")


class StripePaymentProvider:
    """Stripe-backed provider. One instance per app, built from config."""

    name = "stripe"

    def __init__(self, api_key: str, webhook_secret: str):
        self._api_key = api_key
        self._webhook_secret = webhook_secret

    @classmethod
    def from_config(cls, config) -> "StripePaymentProvider":
        return cls(config.get("STRIPE_SECRET_KEY", ""), config.get("STRIPE_WEBHOOK_SECRET", ""))

    def verify_webhook(self, payload: bytes, signature: str | None) -> WebhookEvent:
        if not signature:
            raise InvalidSignatureError("No signature")
        if not self._webhook_secret:
            raise InvalidSignatureError("Webhook secret is not configured")
        try:
            event = stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except stripe.SignatureVerificationError:
            raise InvalidSignatureError("Invalid signature")
        except ValueError:
            raise InvalidSignatureError("Invalid payload")
        return WebhookEvent(id=event["id"], type=event["type"], object=_plain(event["data"]["object"]))

    def retrieve_checkout_session(self, session_id: str) -> CheckoutSession:
        try:
            session = stripe.checkout.Session.retrieve(
                session_id,
                expand=["payment_intent"],
                api_key=self._api_key,
            )
        except stripe.StripeError as e:
            raise ProviderError(f"Failed to retrieve checkout session {session_id}: {e}")
        return CheckoutSession(
            id=session["id"],
            payment_intent_id=_id_of(session.get("payment_intent")),
            metadata=_plain(session.get("metadata")),
            currency=session.get("currency"),
            amount_total=session.get("amount_total"),
        )

    def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentIntent:
        try:
            intent = stripe.PaymentIntent.retrieve(payment_intent_id, api_key=self._api_key)
        except stripe.StripeError as e:
            raise ProviderError(f"Failed to retrieve payment intent {payment_intent_id}: {e}")
        return PaymentIntent(
            id=intent["id"],
            amount=int(intent.get("amount") or 0),
            currency=(intent.get("currency") or "").upper(),
            application_fee_amount=intent.get("application_fee_amount"),
            latest_charge=_id_of(intent.get("latest_charge")),
            metadata=_plain(intent.get("metadata")),
        )

    def list_refunds(self, payment_intent_id: str) -> list[Refund]:
        try:
            page = stripe.Refund.list(payment_intent=payment_intent_id, limit=100, api_key=self._api_key)
            return [
                Refund(id=r["id"], amount=int(r.get("amount") or 0), status=r.get("status") or "")
                for r in page.auto_paging_iter()
            ]
        except stripe.StripeError as e:
            raise ProviderError(f"Failed to list refunds for {payment_intent_id}: {e}")

    def create_transfer(
        self,
        *,
        amount: int,
        currency: str,
        destination: str,
        source_transaction: str | None = None,
        metadata: dict | None = None,
        idempotency_key: str | None = None,
    ) -> Transfer:
        params = {
            "amount": amount,
            "currency": currency.lower(),
            "destination": destination,
            "metadata": metadata or {},
        }
        if source_transaction:
            params["source_transaction"] = source_transaction
        if idempotency_key:
            params["idempotency_key"] = idempotency_key
        try:
            transfer = stripe.Transfer.create(api_key=self._api_key, **params)
        except stripe.StripeError as e:
            raise ProviderError(f"Transfer to {destination} failed: {e}")
        return Transfer(id=transfer["id"], amount=int(transfer.get("amount") or amount), destination=destination)

    def retrieve_account(self, account_id: str) -> ConnectedAccount:
        try:
            account = stripe.Account.retrieve(account_id, api_key=self._api_key)
        except stripe.StripeError as e:
            raise ProviderError(f"Failed to retrieve account {account_id}: {e}")
        return ConnectedAccount(
            id=account["id"],
            charges_enabled=bool(account.get("charges_enabled")),
            payouts_enabled=bool(account.get("payouts_enabled")),
            details_submitted=bool(account.get("details_submitted")),
        )

    def create_payout(
        self,
        *,
        amount: int,
        currency: str,
        account_id: str,
        idempotency_key: str | None = None,
    ) -> Payout:
        """Pay out from a connected account's balance to its bank account."""
        params = {"amount": amount, "currency": currency.lower()}
        if idempotency_key:
            params["idempotency_key"] = idempotency_key
        try:
            payout = stripe.Payout.create(api_key=self._api_key, stripe_account=account_id, **params)
        except stripe.StripeError as e:
            raise ProviderError(f"Payout from {account_id} failed: {e}")
        return Payout(id=payout["id"], amount=int(payout.get("amount") or amount), status=payout.get("status") or "")

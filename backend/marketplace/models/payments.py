from __future__ import annotations

from ..extensions import db
from ..money import money_str
from ..time_utils import to_utc_z


class OrderPayment(db.Model):
    """
    One row per provider payment applied to an order.

    IDEMPOTENCY: (order_id, provider_payment_id) is unique. Reconciliation
    checks for an existing row before inserting, and the constraint backs
    that check up under concurrent webhook redelivery.

    AMOUNTS:
    - amount: captured for this order
    - platform_fee_amount: marketplace commission
    - net_amount_to_store: amount - platform_fee_amount
    - refunded_amount: provider-reported refunds to date (never decreases)

    STATUS: pending | completed | partially_refunded | refunded
    TRANSFER:
    - held: multi-store share still on the platform account
    - transferred: share moved to the store's connected account (transfer_id)
    - pending_payout: charged straight to the store, waiting for a payout
    """
    __tablename__ = "order_payments"
    __table_args__ = (
        db.UniqueConstraint("order_id", "provider_payment_id", name="uq_order_payments_order_provider_payment"),
        db.Index("ix_order_payments_provider_payment", "provider_payment_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    amount = db.Column(db.Numeric(10, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False)
    provider = db.Column(db.String(32), nullable=True)  # stripe | manual
    provider_payment_id = db.Column(db.String(128), nullable=True)
    checkout_session_id = db.Column(db.String(128), nullable=True)

    platform_fee_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    net_amount_to_store = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    refunded_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)

    status = db.Column(db.String(24), nullable=False, default="pending")
    transfer_status = db.Column(db.String(16), nullable=False, default="held")
    transfer_id = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<OrderPayment id={self.id} order_id={self.order_id} amount={self.amount} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "amount": money_str(self.amount),
            "currency": self.currency,
            "provider": self.provider,
            "provider_payment_id": self.provider_payment_id,
            "checkout_session_id": self.checkout_session_id,
            "platform_fee_amount": money_str(self.platform_fee_amount),
            "net_amount_to_store": money_str(self.net_amount_to_store),
            "refunded_amount": money_str(self.refunded_amount),
            "status": self.status,
            "transfer_status": self.transfer_status,
            "transfer_id": self.transfer_id,
            "created_at": to_utc_z(self.created_at),
        }


class ProcessedWebhookEvent(db.Model):
    """
    Provider event ids that have already been applied.

    Inserted in the same transaction as the event's effects, so a redelivery
    either sees the row (and is acknowledged as a no-op) or the whole first
    attempt rolled back and may be applied again.
    """
    __tablename__ = "processed_webhook_events"
    __table_args__ = (
        db.UniqueConstraint("provider", "event_id", name="uq_processed_webhook_events_provider_event"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    provider = db.Column(db.String(32), nullable=False, default="stripe")
    event_id = db.Column(db.String(128), nullable=False)
    event_type = db.Column(db.String(64), nullable=False)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())


class SellerBalance(db.Model):
    """Running balance per store. Only balance_service writes it."""
    __tablename__ = "seller_balances"
    __table_args__ = (
        db.UniqueConstraint("store_id", name="uq_seller_balances_store"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)
    available_balance = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    pending_balance = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="EUR")

    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "store_id": self.store_id,
            "available_balance": money_str(self.available_balance),
            "pending_balance": money_str(self.pending_balance),
            "currency": self.currency,
            "updated_at": to_utc_z(self.updated_at),
        }


class SellerBalanceTransaction(db.Model):
    """
    Immutable balance ledger entry.

    - amount is always positive; type decides credit vs debit
    - balance_before/balance_after snapshot the bucket (pending or available) it moved;
      a release snapshots available
    - status/available_at record the hold period an order_payment credit started with;
      its release is a separate "release" entry whose release_of_id points back here
    """
    __tablename__ = "seller_balance_transactions"
    __table_args__ = (
        db.Index("ix_seller_balance_tx_store_created", "store_id", "created_at"),
        db.Index("ix_seller_balance_tx_status_available_at", "status", "available_at"),
        db.UniqueConstraint("release_of_id", name="uq_seller_balance_tx_release_of"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    # order_payment | release | refund | payout | adjustment
    type = db.Column(db.String(16), nullable=False, index=True)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    order_payment_id = db.Column(db.Integer, db.ForeignKey("order_payments.id"), nullable=True)
    release_of_id = db.Column(db.Integer, db.ForeignKey("seller_balance_transactions.id"), nullable=True)

    balance_before = db.Column(db.Numeric(10, 2), nullable=False)
    balance_after = db.Column(db.Numeric(10, 2), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="available")  # pending | available | paid
    available_at = db.Column(db.DateTime(timezone=True), nullable=True)
    description = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "type": self.type,
            "amount": money_str(self.amount),
            "currency": self.currency,
            "order_id": self.order_id,
            "order_payment_id": self.order_payment_id,
            "release_of_id": self.release_of_id,
            "balance_before": money_str(self.balance_before),
            "balance_after": money_str(self.balance_after),
            "status": self.status,
            "available_at": to_utc_z(self.available_at),
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
        }


class SellerPayout(db.Model):
    """
    A store's request to move available funds to its bank account.

    pending -> processing -> completed | failed. The balance is only debited
    (one "payout" ledger entry) once the provider accepted the payout.
    """
    __tablename__ = "seller_payouts"
    __table_args__ = (
        db.Index("ix_seller_payouts_store_status", "store_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="pending")
    provider_payout_id = db.Column(db.String(128), nullable=True)
    failure_reason = db.Column(db.String(255), nullable=True)
    requested_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "amount": money_str(self.amount),
            "currency": self.currency,
            "status": self.status,
            "provider_payout_id": self.provider_payout_id,
            "failure_reason": self.failure_reason,
            "requested_by_user_id": self.requested_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "processed_at": to_utc_z(self.processed_at),
            "completed_at": to_utc_z(self.completed_at),
        }

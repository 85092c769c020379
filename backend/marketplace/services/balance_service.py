# Overview: Service-layer operations for seller balances; encapsulates business logic and database work.

"""
Seller Balance Ledger

- record_balance_transaction() is the only writer of SellerBalance. Every
  change appends one SellerBalanceTransaction with before/after snapshots of
  the bucket it moved.
- order_payment credits the pending bucket and stays on hold for
  BALANCE_HOLD_DAYS; release_matured_funds() later moves it to available by
  appending a release entry. Entries are never updated after insert.
- adjustment credits or debits available by the sign of the amount; every
  other type debits available.
- Stored amounts are always positive; the type (and, for adjustments, the
  description) carries the direction.
- A payout debits available only after the provider accepted it.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy.orm import aliased

from ..extensions import db
from ..errors import ConflictError, NotFoundError, ProviderError, ValidationError
from ..models import SellerBalance, SellerBalanceTransaction, SellerPayout, Store
from ..money import ZERO, money_str, money_to_cents, to_money
from ..time_utils import days_from_now, utcnow
from ..validation import parse_money
from .concurrency import RETRYABLE_WITH_UNIQUE, lock_for_update, run_with_retry

TX_ORDER_PAYMENT = "order_payment"
TX_REFUND = "refund"
TX_PAYOUT = "payout"
TX_ADJUSTMENT = "adjustment"
TX_RELEASE = "release"
TRANSACTION_TYPES = (TX_ORDER_PAYMENT, TX_REFUND, TX_PAYOUT, TX_ADJUSTMENT)

STATUS_PENDING = "pending"
STATUS_AVAILABLE = "available"
STATUS_PAID = "paid"

DEFAULT_HISTORY_LIMIT = 50


def _lock_balance(store_id: int, currency: str) -> SellerBalance:
    balance = lock_for_update(db.session.query(SellerBalance).filter_by(store_id=store_id)).first()
    if balance is None:
        balance = SellerBalance(
            store_id=store_id,
            available_balance=ZERO,
            pending_balance=ZERO,
            currency=currency,
        )
        db.session.add(balance)
        db.session.flush()
    return balance


def record_balance_transaction(
    store_id: int,
    type: str,
    amount,
    *,
    currency: str,
    order_id: int | None = None,
    order_payment_id: int | None = None,
    description: str | None = None,
) -> SellerBalanceTransaction:
    """Apply one balance change inside the caller's transaction."""
    if type not in TRANSACTION_TYPES:
        raise ValidationError(f"Unknown balance transaction type: {type}")
    amount = to_money(amount)
    if type != TX_ADJUSTMENT and amount < 0:
        raise ValidationError("Balance amounts must be positive")

    balance = _lock_balance(store_id, currency)

    if type == TX_ORDER_PAYMENT:
        before = to_money(balance.pending_balance)
        after = before + amount
        balance.pending_balance = after
        status = STATUS_PENDING
        available_at = days_from_now(current_app.config["BALANCE_HOLD_DAYS"])
    else:
        delta = amount if type == TX_ADJUSTMENT else -amount
        before = to_money(balance.available_balance)
        after = before + delta
        balance.available_balance = after
        status = STATUS_PAID if type == TX_PAYOUT else STATUS_AVAILABLE
        available_at = None

    entry = SellerBalanceTransaction(
        store_id=store_id,
        type=type,
        amount=abs(amount),
        currency=currency,
        order_id=order_id,
        order_payment_id=order_payment_id,
        balance_before=before,
        balance_after=after,
        status=status,
        available_at=available_at,
        description=description,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def _due_for_release(now: datetime) -> list[int]:
    released = aliased(SellerBalanceTransaction)
    return [
        row.id
        for row in db.session.query(SellerBalanceTransaction.id)
        .filter(
            SellerBalanceTransaction.type == TX_ORDER_PAYMENT,
            SellerBalanceTransaction.status == STATUS_PENDING,
            SellerBalanceTransaction.available_at <= now,
            ~db.session.query(released.id)
            .filter(released.release_of_id == SellerBalanceTransaction.id)
            .exists(),
        )
        .order_by(SellerBalanceTransaction.id.asc())
        .all()
    ]


def release_matured_funds(now: datetime | None = None) -> dict:
    """
    Move pending order_payment credits whose hold has passed to available.

    The held entry is never touched: each release appends its own "release"
    entry pointing back at it (release_of_id is unique, so a credit can only
    be released once). Each entry is released in its own transaction; a
    failure is logged and the remaining entries still go through.
    """
    now = now or utcnow()
    due_ids = _due_for_release(now)

    released = 0
    for tx_id in due_ids:
        def _op(tx_id=tx_id):
            entry = lock_for_update(db.session.query(SellerBalanceTransaction).filter_by(id=tx_id)).first()
            already = (
                db.session.query(SellerBalanceTransaction.id).filter_by(release_of_id=tx_id).first()
            )
            if entry is None or already is not None:
                db.session.commit()
                return False

            balance = _lock_balance(entry.store_id, entry.currency)
            amount = to_money(entry.amount)
            pending = to_money(balance.pending_balance)
            if pending < amount:
                raise ConflictError(
                    f"Pending balance {money_str(pending)} of store {entry.store_id} "
                    f"cannot cover release of {money_str(amount)}"
                )
            before = to_money(balance.available_balance)
            balance.pending_balance = pending - amount
            balance.available_balance = before + amount

            db.session.add(SellerBalanceTransaction(
                store_id=entry.store_id,
                type=TX_RELEASE,
                amount=amount,
                currency=entry.currency,
                order_id=entry.order_id,
                order_payment_id=entry.order_payment_id,
                release_of_id=entry.id,
                balance_before=before,
                balance_after=before + amount,
                status=STATUS_AVAILABLE,
                description=f"Hold released for entry #{entry.id}",
            ))
            db.session.commit()
            return True

        try:
            if run_with_retry(_op, retry_on=RETRYABLE_WITH_UNIQUE):
                released += 1
        except Exception:
            current_app.logger.exception("Failed to release balance transaction %s", tx_id)

    return {"released": released, "total": len(due_ids)}


def get_balance(store_id: int) -> dict:
    balance = db.session.query(SellerBalance).filter_by(store_id=store_id).first()
    if balance is None:
        store = db.session.get(Store, store_id)
        return {
            "store_id": store_id,
            "available_balance": "0.00",
            "pending_balance": "0.00",
            "currency": store.currency if store else "EUR",
            "updated_at": None,
        }
    return balance.to_dict()


def list_balance_transactions(store_id: int, limit: int = DEFAULT_HISTORY_LIMIT) -> list[SellerBalanceTransaction]:
    return (
        db.session.query(SellerBalanceTransaction)
        .filter_by(store_id=store_id)
        .order_by(SellerBalanceTransaction.created_at.desc(), SellerBalanceTransaction.id.desc())
        .limit(max(1, min(int(limit), 200)))
        .all()
    )


# =============================================================================
# PAYOUTS
# =============================================================================

PAYOUT_PENDING = "pending"
PAYOUT_PROCESSING = "processing"
PAYOUT_COMPLETED = "completed"
PAYOUT_FAILED = "failed"


def _start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def request_payout(store_id: int, amount, *, user_id: int | None = None) -> SellerPayout:
    """
    Queue a payout of available funds.

    Rules: positive amount, at least PAYOUT_MINIMUM_AMOUNT, covered by the
    available balance, no other payout in flight, one completed payout per day.
    """
    amount = parse_money(amount, "amount")
    if amount <= 0:
        raise ValidationError("Payout amount must be greater than zero")
    minimum = to_money(current_app.config["PAYOUT_MINIMUM_AMOUNT"])

    def _op():
        store = db.session.get(Store, store_id)
        if store is None:
            raise NotFoundError("Store not found")
        if not store.stripe_account_id:
            raise ValidationError("Store has not connected a payout account")
        if amount < minimum:
            raise ValidationError(f"Minimum payout amount is {money_str(minimum)} {store.currency}")

        balance = _lock_balance(store_id, store.currency)
        available = to_money(balance.available_balance)
        if amount > available:
            raise ValidationError(
                f"Insufficient available balance: {money_str(available)} {balance.currency}"
            )

        in_flight = (
            db.session.query(SellerPayout.id)
            .filter(
                SellerPayout.store_id == store_id,
                SellerPayout.status.in_((PAYOUT_PENDING, PAYOUT_PROCESSING)),
            )
            .first()
        )
        if in_flight is not None:
            raise ConflictError("A payout is already in progress for this store")

        paid_today = (
            db.session.query(SellerPayout.id)
            .filter(
                SellerPayout.store_id == store_id,
                SellerPayout.status == PAYOUT_COMPLETED,
                SellerPayout.completed_at >= _start_of_day(utcnow()),
            )
            .first()
        )
        if paid_today is not None:
            raise ConflictError("Only one payout per day is allowed")

        payout = SellerPayout(
            store_id=store_id,
            amount=amount,
            currency=balance.currency,
            status=PAYOUT_PENDING,
            requested_by_user_id=user_id,
        )
        db.session.add(payout)
        db.session.commit()
        return payout

    return run_with_retry(_op)


def _lock_payout(payout_id: int, *, store_ids=None) -> SellerPayout:
    payout = lock_for_update(db.session.query(SellerPayout).filter_by(id=payout_id)).first()
    if payout is None or (store_ids is not None and payout.store_id not in store_ids):
        raise NotFoundError("Payout not found")
    return payout


def _fail_payout(payout_id: int, reason: str) -> SellerPayout:
    def _op():
        payout = _lock_payout(payout_id)
        payout.status = PAYOUT_FAILED
        payout.failure_reason = reason[:255]
        db.session.commit()
        return payout

    return run_with_retry(_op)


def process_payout(payout_id: int, *, store_ids=None) -> SellerPayout:
    """
    Send a pending payout to the provider and debit the balance.

    The balance is re-checked when the payout is claimed. A provider failure
    marks the payout failed (committed) and raises ProviderError; the balance
    is untouched.
    """
    def _claim():
        payout = _lock_payout(payout_id, store_ids=store_ids)
        if payout.status != PAYOUT_PENDING:
            raise ConflictError(f"Payout is {payout.status}, not pending")
        balance = _lock_balance(payout.store_id, payout.currency)
        available = to_money(balance.available_balance)
        if to_money(payout.amount) > available:
            payout.status = PAYOUT_FAILED
            payout.failure_reason = f"Insufficient available balance: {money_str(available)} {payout.currency}"
            db.session.commit()
            return payout, None
        payout.status = PAYOUT_PROCESSING
        payout.processed_at = utcnow()
        store = db.session.get(Store, payout.store_id)
        db.session.commit()
        return payout, store.stripe_account_id

    payout, account_id = run_with_retry(_claim)
    if payout.status == PAYOUT_FAILED:
        raise ValidationError(payout.failure_reason)
    if not account_id:
        _fail_payout(payout_id, "Store has not connected a payout account")
        raise ValidationError("Store has not connected a payout account")

    provider = current_app.extensions["payment_provider"]
    try:
        provider_payout = provider.create_payout(
            amount=money_to_cents(payout.amount),
            currency=payout.currency,
            account_id=account_id,
            idempotency_key=f"payout-{payout_id}",
        )
    except ProviderError as e:
        current_app.logger.warning("Payout %s failed at the provider: %s", payout_id, e)
        _fail_payout(payout_id, str(e))
        raise

    def _complete():
        locked = _lock_payout(payout_id)
        locked.status = PAYOUT_COMPLETED
        locked.provider_payout_id = provider_payout.id
        locked.completed_at = utcnow()
        record_balance_transaction(
            locked.store_id,
            TX_PAYOUT,
            locked.amount,
            currency=locked.currency,
            description=f"Payout #{locked.id}",
        )
        db.session.commit()
        return locked

    return run_with_retry(_complete)


def list_payouts(store_id: int, limit: int = DEFAULT_HISTORY_LIMIT) -> list[SellerPayout]:
    return (
        db.session.query(SellerPayout)
        .filter_by(store_id=store_id)
        .order_by(SellerPayout.created_at.desc(), SellerPayout.id.desc())
        .limit(max(1, min(int(limit), 200)))
        .all()
    )

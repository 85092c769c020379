# Overview: Order status vocabulary and the pure derivation rules shared by every writer.

"""
Order status rules (authoritative)

Axes are independent; only `status` is derived:

    completed  <=>  payment_status in PAID_STATES and fulfillment_status in FULFILLED_STATES

- derive_order_status() promotes open -> completed when both axes qualify and
  reverts completed -> open when they stop qualifying (a full refund). It never
  moves an order to canceled or archived; those are explicit operations.
- Draft, canceled and archived orders are terminal/out-of-band for derivation
  and are returned unchanged.
- The payment reconciler, fulfillment processor and manual status updates all
  call apply_derived_status(); there is no second copy of the rule.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable

from ..money import ZERO, to_money

# status
STATUS_OPEN = "open"
STATUS_DRAFT = "draft"
STATUS_ARCHIVED = "archived"
STATUS_CANCELED = "canceled"
STATUS_COMPLETED = "completed"
ORDER_STATUSES = (STATUS_OPEN, STATUS_DRAFT, STATUS_ARCHIVED, STATUS_CANCELED, STATUS_COMPLETED)

# payment_status
PAYMENT_PENDING = "pending"
PAYMENT_PAID = "paid"
PAYMENT_PARTIALLY_REFUNDED = "partially_refunded"
PAYMENT_REFUNDED = "refunded"
PAYMENT_FAILED = "failed"
PAYMENT_VOID = "void"
PAYMENT_STATUSES = (
    PAYMENT_PENDING,
    PAYMENT_PAID,
    PAYMENT_PARTIALLY_REFUNDED,
    PAYMENT_REFUNDED,
    PAYMENT_FAILED,
    PAYMENT_VOID,
)

# fulfillment_status
FULFILLMENT_UNFULFILLED = "unfulfilled"
FULFILLMENT_PARTIAL = "partial"
FULFILLMENT_FULFILLED = "fulfilled"
FULFILLMENT_CANCELED = "canceled"
FULFILLMENT_STATUSES = (
    FULFILLMENT_UNFULFILLED,
    FULFILLMENT_PARTIAL,
    FULFILLMENT_FULFILLED,
    FULFILLMENT_CANCELED,
)

# workflow_status
WORKFLOW_NORMAL = "normal"
WORKFLOW_IN_PROGRESS = "in_progress"
WORKFLOW_ON_HOLD = "on_hold"
WORKFLOW_STATUSES = (WORKFLOW_NORMAL, WORKFLOW_IN_PROGRESS, WORKFLOW_ON_HOLD)

PAID_STATES = frozenset({PAYMENT_PAID, PAYMENT_PARTIALLY_REFUNDED})
FULFILLED_STATES = frozenset({FULFILLMENT_FULFILLED, FULFILLMENT_PARTIAL})

# Statuses derivation never touches
OUT_OF_BAND_STATUSES = frozenset({STATUS_DRAFT, STATUS_CANCELED, STATUS_ARCHIVED})

# OrderPayment.status values
OP_PENDING = "pending"
OP_COMPLETED = "completed"
OP_PARTIALLY_REFUNDED = "partially_refunded"
OP_REFUNDED = "refunded"


def is_paid(payment_status: str) -> bool:
    return payment_status in PAID_STATES


def is_fulfilled(fulfillment_status: str) -> bool:
    return fulfillment_status in FULFILLED_STATES


def derive_order_status(status: str, payment_status: str, fulfillment_status: str) -> str:
    """
    Pure: the status an order should have given its payment and fulfillment axes.

    Idempotent and order-independent: whichever writer runs last, the result
    depends only on the final pair of axes.
    """
    if status in OUT_OF_BAND_STATUSES:
        return status
    if is_paid(payment_status) and is_fulfilled(fulfillment_status):
        return STATUS_COMPLETED
    if status == STATUS_COMPLETED:
        return STATUS_OPEN
    return status


def apply_derived_status(order) -> bool:
    """Re-derive order.status in place. Returns True when it changed."""
    new_status = derive_order_status(order.status, order.payment_status, order.fulfillment_status)
    if new_status != order.status:
        order.status = new_status
        return True
    return False


def restored_status(order) -> str:
    """Status an archived order returns to when unarchived."""
    if order.canceled_at is not None or order.fulfillment_status == FULFILLMENT_CANCELED:
        return STATUS_CANCELED
    return derive_order_status(STATUS_OPEN, order.payment_status, order.fulfillment_status)


def fulfillment_status_for(items) -> str:
    """unfulfilled / partial / fulfilled from line-item fulfilled quantities."""
    items = list(items)
    if not items or all((i.fulfilled_quantity or 0) == 0 for i in items):
        return FULFILLMENT_UNFULFILLED
    if all((i.fulfilled_quantity or 0) >= i.quantity for i in items):
        return FULFILLMENT_FULFILLED
    return FULFILLMENT_PARTIAL


def payment_record_status(amount, refunded_amount) -> str:
    """OrderPayment.status after refunds: completed / partially_refunded / refunded."""
    amount = to_money(amount)
    refunded = to_money(refunded_amount)
    if refunded <= ZERO:
        return OP_COMPLETED
    if refunded >= amount:
        return OP_REFUNDED
    return OP_PARTIALLY_REFUNDED


def aggregate_payment_status(payments: Iterable, order_total) -> str:
    """
    Order-level payment_status from all of its OrderPayment rows.

    - no captured payments -> pending
    - every captured unit refunded -> refunded
    - some refunds -> partially_refunded
    - captured >= total -> paid, else pending
    """
    captured = Decimal("0")
    refunded = Decimal("0")
    seen = False
    for p in payments:
        if p.status == OP_PENDING:
            continue
        seen = True
        captured += to_money(p.amount)
        refunded += to_money(p.refunded_amount)

    if not seen or captured <= ZERO:
        return PAYMENT_PENDING
    if refunded >= captured:
        return PAYMENT_REFUNDED
    if refunded > ZERO:
        return PAYMENT_PARTIALLY_REFUNDED
    if captured >= to_money(order_total):
        return PAYMENT_PAID
    return PAYMENT_PENDING

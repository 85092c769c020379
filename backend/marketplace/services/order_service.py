# Overview: Service-layer operations for orders and draft orders; encapsulates business logic and database work.

"""
Order Aggregate Rules

- Drafts never touch inventory. Reservation happens exactly once per sale,
  when an Order row is created (draft completion, guest checkout or direct
  order entry). Completed drafts can no longer be edited or deleted.
- complete_draft_order is all-or-nothing: order, items, reservations,
  optional payment, events and the draft's completed flag commit together.
  Completing a completed draft raises ConflictError.
- Order numbers come from DocumentSequence inside the same transaction.
- status is only ever changed through order_status.apply_derived_status or
  the explicit cancel/archive operations below.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import (
    DraftOrder,
    DraftOrderItem,
    Listing,
    ListingVariant,
    Order,
    OrderDiscount,
    OrderEvent,
    OrderItem,
    OrderPayment,
    Store,
)
from ..money import ZERO, money_str, to_money
from ..time_utils import days_from_now, utcnow
from ..validation import parse_choice, parse_email, parse_int, parse_money, require_fields
from . import customer_service, email_service, inventory_service
from .concurrency import RETRYABLE_WITH_UNIQUE, lock_for_update, run_with_retry
from .document_service import next_draft_number, next_order_number
from .filters import FilterSet, equals, one_of, search_text, store_scope
from .order_status import (
    FULFILLMENT_CANCELED,
    OP_COMPLETED,
    PAYMENT_PAID,
    PAYMENT_STATUSES,
    STATUS_ARCHIVED,
    STATUS_CANCELED,
    STATUS_COMPLETED,
    STATUS_OPEN,
    WORKFLOW_IN_PROGRESS,
    WORKFLOW_ON_HOLD,
    WORKFLOW_STATUSES,
    apply_derived_status,
    restored_status,
)

# OrderEvent.type
EVENT_SYSTEM = "system"
EVENT_PAYMENT = "payment"
EVENT_FULFILLMENT = "fulfillment"
EVENT_REFUND = "refund"
EVENT_EMAIL = "email"
EVENT_WORKFLOW = "workflow"

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200

NOT_CANCELABLE = (STATUS_COMPLETED, STATUS_ARCHIVED, STATUS_CANCELED)


@dataclass
class PaymentCapture:
    """A settled payment about to be applied to one order."""
    amount: Decimal
    currency: str
    provider: str = "manual"
    provider_payment_id: str | None = None
    checkout_session_id: str | None = None
    platform_fee_amount: Decimal = ZERO
    transfer_status: str = "held"


# =============================================================================
# SHARED HELPERS (caller's transaction)
# =============================================================================

def append_order_event(
    order: Order,
    event_type: str,
    message: str,
    *,
    metadata: dict | None = None,
    user_id: int | None = None,
    visibility: str = "internal",
) -> OrderEvent:
    event = OrderEvent(
        order_id=order.id,
        type=event_type,
        visibility=visibility,
        message=message,
        event_metadata=metadata or {},
        created_by_user_id=user_id,
    )
    db.session.add(event)
    return event


def lock_order(order_id: int, *, store_ids=None) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if order is None or (store_ids is not None and order.store_id not in store_ids):
        raise NotFoundError("Order not found")
    return order


def _lock_draft(draft_id: int, *, store_ids=None) -> DraftOrder:
    draft = lock_for_update(db.session.query(DraftOrder).filter_by(id=draft_id)).first()
    if draft is None or (store_ids is not None and draft.store_id not in store_ids):
        raise NotFoundError("Draft order not found")
    return draft


def reserve_order_stock(order: Order, *, user_id: int | None = None) -> None:
    """Reserve every tracked line of a freshly created order at the store's default location."""
    location = inventory_service.resolve_default_location(order.store_id)
    inventory_service.reserve_items(order.items, location.id, order.id, user_id=user_id)


def record_payment(
    order: Order,
    capture: PaymentCapture,
    *,
    user_id: int | None = None,
    message: str | None = None,
) -> OrderPayment | None:
    """
    Apply a settled payment to an order.

    Returns None without writing anything when this provider payment was
    already recorded for the order (webhook redelivery).
    """
    if capture.provider_payment_id:
        existing = (
            db.session.query(OrderPayment.id)
            .filter_by(order_id=order.id, provider_payment_id=capture.provider_payment_id)
            .first()
        )
        if existing is not None:
            return None

    amount = to_money(capture.amount)
    fee = to_money(capture.platform_fee_amount)
    payment = OrderPayment(
        order_id=order.id,
        amount=amount,
        currency=capture.currency,
        provider=capture.provider,
        provider_payment_id=capture.provider_payment_id,
        checkout_session_id=capture.checkout_session_id,
        platform_fee_amount=fee,
        net_amount_to_store=amount - fee,
        refunded_amount=ZERO,
        status=OP_COMPLETED,
        transfer_status=capture.transfer_status,
    )
    db.session.add(payment)

    order.payment_status = PAYMENT_PAID
    if order.paid_at is None:
        order.paid_at = utcnow()
    apply_derived_status(order)

    if message is None:
        provider_label = "Stripe" if capture.provider == "stripe" else capture.provider
        message = f"Payment received via {provider_label} ({money_str(amount)} {capture.currency})"
    event_metadata = {
        "amount": money_str(amount),
        "currency": capture.currency,
        "provider": capture.provider,
        "provider_payment_id": capture.provider_payment_id,
    }
    if capture.checkout_session_id:
        event_metadata["checkout_session_id"] = capture.checkout_session_id
        event_metadata["platform_fee"] = money_str(fee)
        event_metadata["net_amount_to_store"] = money_str(amount - fee)
    append_order_event(order, EVENT_PAYMENT, message, metadata=event_metadata, user_id=user_id)
    db.session.flush()
    return payment


# =============================================================================
# LINE ITEMS AND TOTALS
# =============================================================================

def _load_catalog(items: list[dict]) -> tuple[dict[int, Listing], dict[int, ListingVariant]]:
    listing_ids = {parse_int(i.get("listing_id"), "listing_id", minimum=1) for i in items}
    variant_ids = {parse_int(i["variant_id"], "variant_id", minimum=1) for i in items if i.get("variant_id")}

    listings = {l.id: l for l in db.session.query(Listing).filter(Listing.id.in_(listing_ids)).all()}
    if len(listings) != len(listing_ids):
        raise ValidationError("One or more listings not found")

    variants = {}
    if variant_ids:
        variants = {v.id: v for v in db.session.query(ListingVariant).filter(ListingVariant.id.in_(variant_ids)).all()}
        if len(variants) != len(variant_ids):
            raise ValidationError("One or more variants not found")
    return listings, variants


def _build_line(model, raw: dict, listings, variants, currency: str):
    """
    Snapshot one input line onto a DraftOrderItem/OrderItem.

    Caller-supplied unit prices are trusted; the catalog price is only a
    fallback when none is given.
    """
    listing = listings[int(raw["listing_id"])]
    variant = variants.get(int(raw["variant_id"])) if raw.get("variant_id") else None
    if variant is not None and variant.listing_id != listing.id:
        raise ValidationError(f"Variant {variant.id} does not belong to listing {listing.id}")

    quantity = parse_int(raw.get("quantity"), "quantity", minimum=1)
    if raw.get("unit_price") not in (None, ""):
        unit_price = parse_money(raw["unit_price"], "unit_price")
    elif variant is not None and variant.price is not None:
        unit_price = to_money(variant.price)
    else:
        unit_price = to_money(listing.price)

    line_subtotal = to_money(unit_price * quantity)
    line_discount = parse_money(raw.get("discount_amount") or 0, "discount_amount")
    if line_discount > line_subtotal:
        raise ValidationError("Line discount exceeds line subtotal")

    title = raw.get("title")
    if not title:
        title = listing.name
        if variant is not None and variant.title and variant.title != "Default":
            title = f"{listing.name} - {variant.title}"

    return model(
        listing_id=listing.id,
        variant_id=variant.id if variant is not None else None,
        title=title,
        sku=raw.get("sku") or (variant.sku if variant is not None else None),
        quantity=quantity,
        unit_price=unit_price,
        currency=currency,
        line_subtotal=line_subtotal,
        discount_amount=line_discount,
        line_total=line_subtotal - line_discount,
    )


def _apply_totals(doc, lines, *, order_discount, shipping, tax) -> None:
    subtotal = sum((to_money(l.line_subtotal) for l in lines), ZERO)
    line_discounts = sum((to_money(l.discount_amount) for l in lines), ZERO)
    discount = line_discounts + to_money(order_discount)
    total = subtotal - discount + to_money(shipping) + to_money(tax)
    if total < 0:
        raise ValidationError("Discount exceeds order subtotal")

    doc.subtotal_amount = subtotal
    doc.discount_amount = discount
    doc.shipping_amount = to_money(shipping)
    doc.tax_amount = to_money(tax)
    doc.total_amount = total


# =============================================================================
# DRAFT ORDERS
# =============================================================================

def create_draft_order(
    store_id: int,
    items: list[dict],
    *,
    customer_email: str | None = None,
    customer_first_name: str | None = None,
    customer_last_name: str | None = None,
    customer_phone: str | None = None,
    currency: str | None = None,
    discount_amount=0,
    shipping_amount=0,
    tax_amount=0,
    shipping_address: dict | None = None,
    billing_address: dict | None = None,
    note: str | None = None,
    user_id: int | None = None,
) -> DraftOrder:
    """Create a draft with computed totals. Inventory is not touched."""
    if not items:
        raise ValidationError("Draft order must have at least one item")
    order_discount = parse_money(discount_amount, "discount_amount")
    shipping = parse_money(shipping_amount, "shipping_amount")
    tax = parse_money(tax_amount, "tax_amount")
    email = parse_email(customer_email, "customer email") if customer_email else None

    def _op():
        store = db.session.get(Store, store_id)
        if store is None:
            raise NotFoundError("Store not found")
        doc_currency = (currency or store.currency).upper()

        listings, variants = _load_catalog(items)
        if any(l.store_id != store.id for l in listings.values()):
            raise ValidationError("All items must belong to the draft's store")

        draft = DraftOrder(
            draft_number=next_draft_number(store.id),
            store_id=store.id,
            customer_email=email,
            customer_first_name=customer_first_name,
            customer_last_name=customer_last_name,
            currency=doc_currency,
            payment_status="pending",
            note=note,
            completed=False,
            invoice_sent_count=0,
            created_by_user_id=user_id,
        )
        if email:
            customer = customer_service.resolve_customer(
                store.id,
                email,
                first_name=customer_first_name,
                last_name=customer_last_name,
                phone=customer_phone,
            )
            draft.customer_id = customer.id
        draft.set_address("shipping", shipping_address)
        draft.set_address("billing", billing_address)

        lines = [_build_line(DraftOrderItem, raw, listings, variants, doc_currency) for raw in items]
        _apply_totals(draft, lines, order_discount=order_discount, shipping=shipping, tax=tax)
        draft.items.extend(lines)

        db.session.add(draft)
        db.session.commit()
        return draft

    return run_with_retry(_op, retry_on=RETRYABLE_WITH_UNIQUE)


def get_draft_order(draft_id: int, *, store_ids=None) -> DraftOrder:
    draft = db.session.get(DraftOrder, draft_id)
    if draft is None or (store_ids is not None and draft.store_id not in store_ids):
        raise NotFoundError("Draft order not found")
    return draft


DRAFT_VIEWS = ("all", "open", "completed")


def list_draft_orders(
    *,
    store_ids=None,
    view: str = "all",
    search: str | None = None,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> tuple[list[DraftOrder], int]:
    """Views: all, open (not completed) or completed. Newest first."""
    parse_choice(view or "all", "view", DRAFT_VIEWS)
    page = max(int(page or 1), 1)
    page_size = min(max(int(page_size or DEFAULT_PAGE_SIZE), 1), MAX_PAGE_SIZE)

    completed = {"open": False, "completed": True}.get(view)
    filters = (
        FilterSet()
        .add(store_scope(DraftOrder.store_id, store_ids))
        .add(equals(DraftOrder.completed, completed))
        .add(search_text(
            search,
            DraftOrder.draft_number,
            DraftOrder.customer_email,
            DraftOrder.customer_first_name,
            DraftOrder.customer_last_name,
        ))
    )
    query = filters.apply(db.session.query(DraftOrder))
    total = query.count()
    drafts = (
        query.order_by(DraftOrder.created_at.desc(), DraftOrder.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return drafts, total


def _order_level_discount(draft: DraftOrder) -> Decimal:
    line_discounts = sum((to_money(i.discount_amount) for i in draft.items), ZERO)
    return to_money(draft.discount_amount) - line_discounts


def update_draft_order(draft_id: int, data: dict, *, store_ids=None) -> DraftOrder:
    """
    Edit an open draft. Only keys present in `data` change.

    "items" replaces every line. Totals are recomputed on each call; the
    order-level discount is kept unless "discount_amount" is given.
    """
    def _op():
        draft = _lock_draft(draft_id, store_ids=store_ids)
        if draft.completed:
            raise ConflictError("Draft order is already completed")

        order_discount = _order_level_discount(draft)
        if "discount_amount" in data:
            order_discount = parse_money(data["discount_amount"] or 0, "discount_amount")
        shipping = draft.shipping_amount
        if "shipping_amount" in data:
            shipping = parse_money(data["shipping_amount"] or 0, "shipping_amount")
        tax = draft.tax_amount
        if "tax_amount" in data:
            tax = parse_money(data["tax_amount"] or 0, "tax_amount")

        for field in ("customer_first_name", "customer_last_name", "note"):
            if field in data:
                setattr(draft, field, data[field])
        if "customer_email" in data:
            email = parse_email(data["customer_email"], "customer email") if data["customer_email"] else None
            draft.customer_email = email
            draft.customer_id = None
            if email:
                customer = customer_service.resolve_customer(
                    draft.store_id,
                    email,
                    first_name=draft.customer_first_name,
                    last_name=draft.customer_last_name,
                    phone=data.get("customer_phone"),
                )
                draft.customer_id = customer.id
        for kind in ("shipping", "billing"):
            if f"{kind}_address" in data:
                draft.set_address(kind, data[f"{kind}_address"])

        lines = list(draft.items)
        if "items" in data:
            raw_items = data["items"]
            if not isinstance(raw_items, list) or not raw_items:
                raise ValidationError("Draft order must have at least one item")
            listings, variants = _load_catalog(raw_items)
            if any(l.store_id != draft.store_id for l in listings.values()):
                raise ValidationError("All items must belong to the draft's store")
            lines = [_build_line(DraftOrderItem, raw, listings, variants, draft.currency) for raw in raw_items]
            draft.items.clear()
            draft.items.extend(lines)

        _apply_totals(draft, lines, order_discount=order_discount, shipping=shipping, tax=tax)
        db.session.commit()
        return draft

    return run_with_retry(_op)


def delete_draft_orders(draft_ids: list[int], *, store_ids=None) -> dict:
    """
    Delete open drafts. Completed drafts are kept as the record of their order
    and reported back as skipped.
    """
    def _op():
        filters = (
            FilterSet()
            .add(one_of(DraftOrder.id, draft_ids))
            .add(store_scope(DraftOrder.store_id, store_ids))
        )
        drafts = lock_for_update(filters.apply(db.session.query(DraftOrder))).all()
        deletable = [d for d in drafts if not d.completed]
        if not deletable:
            raise ValidationError("No open draft orders to delete")
        deleted_ids = sorted(d.id for d in deletable)
        for draft in deletable:
            db.session.delete(draft)
        db.session.commit()
        return {
            "deleted": deleted_ids,
            "skipped": sorted(set(draft_ids) - set(deleted_ids)),
        }

    return run_with_retry(_op)


def duplicate_draft_order(draft_id: int, *, store_ids=None, user_id: int | None = None) -> DraftOrder:
    """Copy customer, addresses, note and lines into a new open draft."""
    def _op():
        source = get_draft_order(draft_id, store_ids=store_ids)
        copy = DraftOrder(
            draft_number=next_draft_number(source.store_id),
            store_id=source.store_id,
            customer_id=source.customer_id,
            customer_email=source.customer_email,
            customer_first_name=source.customer_first_name,
            customer_last_name=source.customer_last_name,
            currency=source.currency,
            subtotal_amount=source.subtotal_amount,
            discount_amount=source.discount_amount,
            shipping_amount=source.shipping_amount,
            tax_amount=source.tax_amount,
            total_amount=source.total_amount,
            payment_status="pending",
            note=source.note,
            completed=False,
            invoice_sent_count=0,
            created_by_user_id=user_id,
        )
        copy.copy_addresses_from(source)
        for item in source.items:
            copy.items.append(DraftOrderItem(
                listing_id=item.listing_id,
                variant_id=item.variant_id,
                title=item.title,
                sku=item.sku,
                quantity=item.quantity,
                unit_price=item.unit_price,
                currency=item.currency,
                line_subtotal=item.line_subtotal,
                discount_amount=item.discount_amount,
                line_total=item.line_total,
            ))
        db.session.add(copy)
        db.session.commit()
        return copy

    return run_with_retry(_op, retry_on=RETRYABLE_WITH_UNIQUE)


def complete_draft_locked(
    draft: DraftOrder,
    *,
    mark_as_paid: bool = False,
    capture: PaymentCapture | None = None,
    user_id: int | None = None,
) -> Order:
    """
    Promote a locked draft to an Order inside the caller's transaction.

    Also used by the payment reconciler, which passes the provider capture.
    """
    if draft.completed:
        raise ConflictError("Draft order is already completed")
    if not draft.items:
        raise ValidationError("Draft order has no items")
    if not draft.customer_email:
        raise ValidationError("Draft order has no customer email")

    now = utcnow()
    order = Order(
        order_number=next_order_number(draft.store_id),
        store_id=draft.store_id,
        customer_id=draft.customer_id,
        customer_email=draft.customer_email,
        customer_first_name=draft.customer_first_name,
        customer_last_name=draft.customer_last_name,
        currency=draft.currency,
        subtotal_amount=draft.subtotal_amount,
        discount_amount=draft.discount_amount,
        shipping_amount=draft.shipping_amount,
        tax_amount=draft.tax_amount,
        total_amount=draft.total_amount,
        refunded_amount=ZERO,
        status=STATUS_OPEN,
        payment_status="pending",
        fulfillment_status="unfulfilled",
        workflow_status="normal",
        created_by_user_id=user_id,
        placed_at=now,
    )
    order.copy_addresses_from(draft)
    for item in draft.items:
        order.items.append(OrderItem(
            listing_id=item.listing_id,
            variant_id=item.variant_id,
            title=item.title,
            sku=item.sku,
            quantity=item.quantity,
            unit_price=item.unit_price,
            currency=item.currency,
            line_subtotal=item.line_subtotal,
            discount_amount=item.discount_amount,
            line_total=item.line_total,
            tax_amount=ZERO,
            fulfilled_quantity=0,
        ))
    db.session.add(order)
    db.session.flush()

    reserve_order_stock(order, user_id=user_id)

    append_order_event(
        order,
        EVENT_SYSTEM,
        f"Order created from draft #{draft.draft_number}",
        metadata={
            "source": "draft",
            "draft_id": draft.id,
            "draft_number": draft.draft_number,
            "mark_as_paid": mark_as_paid,
        },
        user_id=user_id,
    )
    append_order_event(
        order,
        EVENT_SYSTEM,
        f"Order confirmation number generated: #{order.order_number}",
        metadata={"order_number": order.order_number},
        user_id=user_id,
    )

    if mark_as_paid:
        message = None
        if capture is None:
            capture = PaymentCapture(amount=to_money(order.total_amount), currency=order.currency)
            message = "Payment received"
        record_payment(order, capture, user_id=user_id, message=message)
        draft.payment_status = "paid"

    draft.completed = True
    draft.completed_at = now
    draft.converted_to_order_id = order.id

    customer_service.record_order(draft.customer, order.total_amount)
    db.session.flush()
    return order


def complete_draft_order(
    draft_id: int,
    mark_as_paid: bool = False,
    *,
    store_ids=None,
    user_id: int | None = None,
) -> Order:
    def _op():
        draft = _lock_draft(draft_id, store_ids=store_ids)
        order = complete_draft_locked(draft, mark_as_paid=mark_as_paid, user_id=user_id)
        db.session.commit()
        return order

    return run_with_retry(_op, retry_on=RETRYABLE_WITH_UNIQUE)


def send_invoice(
    draft_id: int,
    email: str | None = None,
    message: str | None = None,
    *,
    store_ids=None,
) -> dict:
    """
    Issue a fresh invoice link and email it.

    The token is committed before sending so the link works even if the
    sender reports a failure. invoice_sent_count only counts deliveries.
    """
    def _issue():
        draft = _lock_draft(draft_id, store_ids=store_ids)
        if draft.completed:
            raise ConflictError("Draft order is already completed")
        recipient = parse_email(email or draft.customer_email)
        draft.invoice_token = secrets.token_urlsafe(32)
        draft.invoice_expires_at = days_from_now(current_app.config["INVOICE_EXPIRY_DAYS"])
        db.session.commit()
        return draft, recipient

    draft, recipient = run_with_retry(_issue)
    payment_url = f"{current_app.config['APP_URL'].rstrip('/')}/pay/invoice/{draft.invoice_token}"

    delivered = email_service.deliver(
        email_service.invoice_message(draft, to=recipient, payment_url=payment_url, custom_message=message)
    )

    if delivered:
        def _mark_sent():
            locked = _lock_draft(draft_id)
            locked.invoice_sent_at = utcnow()
            locked.invoice_sent_count = (locked.invoice_sent_count or 0) + 1
            db.session.commit()
            return locked

        draft = run_with_retry(_mark_sent)
    else:
        current_app.logger.warning("Invoice for draft %s was issued but not delivered", draft.draft_number)

    return {"draft": draft.to_dict(), "delivered": delivered, "payment_url": payment_url}


def mark_draft_paid(draft_id: int, *, store_ids=None) -> DraftOrder:
    def _op():
        draft = _lock_draft(draft_id, store_ids=store_ids)
        if draft.completed:
            raise ConflictError("Draft order is already completed")
        if draft.payment_status == "paid":
            raise ConflictError("Draft order is already marked as paid")
        draft.payment_status = "paid"
        db.session.commit()
        return draft

    return run_with_retry(_op)


def get_draft_by_invoice_token(token: str) -> DraftOrder:
    if not token:
        raise NotFoundError("Invoice not found")
    draft = db.session.query(DraftOrder).filter_by(invoice_token=token).first()
    if draft is None:
        raise NotFoundError("Invoice not found")
    if draft.completed:
        raise ConflictError("This invoice has already been paid")
    if draft.invoice_expires_at is not None and draft.invoice_expires_at < utcnow():
        raise ValidationError("This invoice link has expired")
    return draft


# =============================================================================
# GUEST CHECKOUT
# =============================================================================

def _store_share(store_subtotal: Decimal, cart_subtotal: Decimal, store_count: int) -> Decimal:
    if cart_subtotal > 0:
        return store_subtotal / cart_subtotal
    return Decimal(1) / Decimal(store_count)


def create_guest_order(payload: dict) -> list[Order]:
    """
    Guest checkout: one Order per store in the cart, all in one transaction.

    Shared shipping/tax (and the order-level discount when no line carries
    its own) are split across stores by subtotal share, equal shares when
    the cart subtotal is zero. Each share is rounded half-up to 2 places.

    The client's total_amount must equal the sum of the per-store totals;
    a stale cart or a tampered price is rejected instead of charged.
    """
    require_fields(payload, "customer_email", "line_items", "currency", "total_amount")
    raw_items = payload["line_items"]
    if not isinstance(raw_items, list):
        raise ValidationError("line_items must be a list")
    email = parse_email(payload["customer_email"], "customer email")
    currency = str(payload["currency"]).upper()
    order_discount = parse_money(payload.get("discount_amount") or 0, "discount_amount")
    shipping = parse_money(payload.get("shipping_amount") or 0, "shipping_amount")
    tax = parse_money(payload.get("tax_amount") or 0, "tax_amount")
    declared_total = parse_money(payload["total_amount"], "total_amount")

    def _op():
        listings, variants = _load_catalog(raw_items)

        store_ids = list(dict.fromkeys(listings[int(i["listing_id"])].store_id for i in raw_items))
        stores = {s.id: s for s in db.session.query(Store).filter(Store.id.in_(store_ids)).all()}
        if len(stores) != len(store_ids):
            raise NotFoundError("One or more stores not found")
        missing_payout = [s.name for s in stores.values() if not s.stripe_account_id]
        if missing_payout:
            raise ValidationError(
                f"Store(s) have not connected a payout account: {', '.join(sorted(missing_payout))}"
            )

        lines_by_store: dict[int, list[OrderItem]] = {sid: [] for sid in store_ids}
        for raw in raw_items:
            line = _build_line(OrderItem, raw, listings, variants, currency)
            line.tax_amount = ZERO
            line.fulfilled_quantity = 0
            lines_by_store[listings[line.listing_id].store_id].append(line)

        cart_subtotal = sum((to_money(l.line_subtotal) for ls in lines_by_store.values() for l in ls), ZERO)
        has_line_discounts = any(to_money(l.discount_amount) > 0 for ls in lines_by_store.values() for l in ls)
        now = utcnow()

        orders = []
        for store_id, lines in lines_by_store.items():
            store_subtotal = sum((to_money(l.line_subtotal) for l in lines), ZERO)
            share = _store_share(store_subtotal, cart_subtotal, len(store_ids))
            store_order_discount = ZERO if has_line_discounts else to_money(order_discount * share)

            order = Order(
                order_number=next_order_number(store_id),
                store_id=store_id,
                customer_email=email,
                customer_first_name=payload.get("customer_first_name"),
                customer_last_name=payload.get("customer_last_name"),
                currency=currency,
                refunded_amount=ZERO,
                status=STATUS_OPEN,
                payment_status="pending",
                fulfillment_status="unfulfilled",
                workflow_status="normal",
                shipping_method=payload.get("shipping_method"),
                guest_checkout=True,
                placed_at=now,
            )
            order.set_address("shipping", payload.get("shipping_address"))
            order.set_address("billing", payload.get("billing_address") or payload.get("shipping_address"))
            _apply_totals(
                order,
                lines,
                order_discount=store_order_discount,
                shipping=to_money(shipping * share),
                tax=to_money(tax * share),
            )
            order.items.extend(lines)

            customer = customer_service.resolve_customer(
                store_id,
                email,
                first_name=payload.get("customer_first_name"),
                last_name=payload.get("customer_last_name"),
                phone=payload.get("customer_phone"),
            )
            order.customer_id = customer.id
            customer_service.record_order(customer, order.total_amount)

            db.session.add(order)
            db.session.flush()

            if payload.get("discount_code") and to_money(order.discount_amount) > 0:
                db.session.add(OrderDiscount(
                    order_id=order.id,
                    code=payload["discount_code"],
                    type="order",
                    value_type=payload.get("discount_value_type") or "fixed",
                    value=parse_money(payload.get("discount_value") or order.discount_amount, "discount_value"),
                    amount=order.discount_amount,
                    currency=currency,
                ))

            reserve_order_stock(order)

            append_order_event(
                order,
                EVENT_SYSTEM,
                "Order placed via guest checkout",
                metadata={"source": "guest_checkout", "store_count": len(store_ids)},
            )
            append_order_event(
                order,
                EVENT_SYSTEM,
                f"Order confirmation number generated: #{order.order_number}",
                metadata={"order_number": order.order_number},
            )
            orders.append(order)

        charged = sum((to_money(o.total_amount) for o in orders), ZERO)
        if charged != declared_total:
            raise ValidationError(
                f"Cart total mismatch: expected {money_str(charged)} {currency}, "
                f"got {money_str(declared_total)}"
            )

        db.session.commit()
        return orders

    return run_with_retry(_op, retry_on=RETRYABLE_WITH_UNIQUE)


# =============================================================================
# ORDER OPERATIONS
# =============================================================================

def create_order(
    store_id: int,
    items: list[dict],
    *,
    customer_email: str,
    customer_first_name: str | None = None,
    customer_last_name: str | None = None,
    customer_phone: str | None = None,
    currency: str | None = None,
    discount_amount=0,
    shipping_amount=0,
    tax_amount=0,
    shipping_address: dict | None = None,
    billing_address: dict | None = None,
    shipping_method: str | None = None,
    mark_as_paid: bool = False,
    user_id: int | None = None,
) -> Order:
    """
    Dashboard order entry without a draft: an open order with its stock
    reserved, optionally paid manually, in one transaction.
    """
    if not items:
        raise ValidationError("Order must have at least one item")
    email = parse_email(customer_email, "customer email")
    order_discount = parse_money(discount_amount, "discount_amount")
    shipping = parse_money(shipping_amount, "shipping_amount")
    tax = parse_money(tax_amount, "tax_amount")

    def _op():
        store = db.session.get(Store, store_id)
        if store is None:
            raise NotFoundError("Store not found")
        doc_currency = (currency or store.currency).upper()

        listings, variants = _load_catalog(items)
        if any(l.store_id != store.id for l in listings.values()):
            raise ValidationError("All items must belong to the order's store")

        customer = customer_service.resolve_customer(
            store.id,
            email,
            first_name=customer_first_name,
            last_name=customer_last_name,
            phone=customer_phone,
        )
        order = Order(
            order_number=next_order_number(store.id),
            store_id=store.id,
            customer_id=customer.id,
            customer_email=email,
            customer_first_name=customer_first_name,
            customer_last_name=customer_last_name,
            currency=doc_currency,
            refunded_amount=ZERO,
            status=STATUS_OPEN,
            payment_status="pending",
            fulfillment_status="unfulfilled",
            workflow_status="normal",
            shipping_method=shipping_method,
            created_by_user_id=user_id,
            placed_at=utcnow(),
        )
        order.set_address("shipping", shipping_address)
        order.set_address("billing", billing_address or shipping_address)

        lines = []
        for raw in items:
            line = _build_line(OrderItem, raw, listings, variants, doc_currency)
            line.tax_amount = ZERO
            line.fulfilled_quantity = 0
            lines.append(line)
        _apply_totals(order, lines, order_discount=order_discount, shipping=shipping, tax=tax)
        order.items.extend(lines)
        db.session.add(order)
        db.session.flush()

        reserve_order_stock(order, user_id=user_id)
        customer_service.record_order(customer, order.total_amount)

        append_order_event(
            order,
            EVENT_SYSTEM,
            "Order created manually",
            metadata={"source": "manual", "mark_as_paid": mark_as_paid},
            user_id=user_id,
        )
        append_order_event(
            order,
            EVENT_SYSTEM,
            f"Order confirmation number generated: #{order.order_number}",
            metadata={"order_number": order.order_number},
            user_id=user_id,
        )
        if mark_as_paid:
            capture = PaymentCapture(amount=to_money(order.total_amount), currency=order.currency)
            record_payment(order, capture, user_id=user_id, message="Payment received")

        db.session.commit()
        return order

    return run_with_retry(_op, retry_on=RETRYABLE_WITH_UNIQUE)


def get_order(order_id: int, *, store_ids=None) -> Order:
    order = db.session.get(Order, order_id)
    if order is None or (store_ids is not None and order.store_id not in store_ids):
        raise NotFoundError("Order not found")
    return order


def list_orders(
    *,
    store_ids=None,
    status: str | None = None,
    payment_status: str | None = None,
    fulfillment_status: str | None = None,
    search: str | None = None,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> tuple[list[Order], int]:
    page = max(int(page or 1), 1)
    page_size = min(max(int(page_size or DEFAULT_PAGE_SIZE), 1), MAX_PAGE_SIZE)

    filters = (
        FilterSet()
        .add(store_scope(Order.store_id, store_ids))
        .add(equals(Order.status, status))
        .add(equals(Order.payment_status, payment_status))
        .add(equals(Order.fulfillment_status, fulfillment_status))
        .add(search_text(
            search,
            Order.order_number,
            Order.customer_email,
            Order.customer_first_name,
            Order.customer_last_name,
        ))
    )
    query = filters.apply(db.session.query(Order))
    total = query.count()
    orders = (
        query.order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return orders, total


def update_payment_status(
    order_id: int,
    payment_status: str,
    *,
    store_ids=None,
    user_id: int | None = None,
) -> Order:
    """Manual payment status change (mark paid, void, ...). Re-derives status."""
    parse_choice(payment_status, "payment_status", PAYMENT_STATUSES)

    def _op():
        order = lock_order(order_id, store_ids=store_ids)
        previous = order.payment_status
        if previous == payment_status:
            db.session.commit()
            return order

        order.payment_status = payment_status
        if payment_status == PAYMENT_PAID and order.paid_at is None:
            order.paid_at = utcnow()
        apply_derived_status(order)

        append_order_event(
            order,
            EVENT_PAYMENT,
            f"Payment status changed from {previous} to {payment_status}",
            metadata={"previous_payment_status": previous, "payment_status": payment_status},
            user_id=user_id,
        )
        db.session.commit()
        return order

    return run_with_retry(_op)


def update_workflow_status(
    order_id: int,
    workflow_status: str,
    hold_reason: str | None = None,
    *,
    store_ids=None,
    user_id: int | None = None,
) -> Order:
    parse_choice(workflow_status, "workflow_status", WORKFLOW_STATUSES)
    reason = (hold_reason or "").strip()
    if workflow_status == WORKFLOW_ON_HOLD and not reason:
        raise ValidationError("Hold reason is required when setting order to on hold")

    def _op():
        order = lock_order(order_id, store_ids=store_ids)
        previous = order.workflow_status
        order.workflow_status = workflow_status
        order.hold_reason = reason if workflow_status == WORKFLOW_ON_HOLD else None

        if workflow_status == WORKFLOW_IN_PROGRESS:
            message = "Order marked as in progress"
        elif workflow_status == WORKFLOW_ON_HOLD:
            message = f"Order placed on hold: {reason}"
        else:
            message = "Order workflow status reset to normal"

        append_order_event(
            order,
            EVENT_WORKFLOW,
            message,
            metadata={
                "workflow_status": workflow_status,
                "hold_reason": order.hold_reason,
                "previous_workflow_status": previous,
            },
            user_id=user_id,
        )
        db.session.commit()
        return order

    return run_with_retry(_op)


def cancel_order(
    order_id: int,
    reason: str | None = None,
    restock: bool = True,
    *,
    store_ids=None,
    user_id: int | None = None,
) -> Order:
    """
    Cancel an open order.

    With restock, the still-unfulfilled quantity of every line is released
    back to available at the default location.
    """
    def _op():
        order = lock_order(order_id, store_ids=store_ids)
        if order.status in NOT_CANCELABLE:
            raise ConflictError(f"Cannot cancel an order with status {order.status}")

        released = []
        if restock:
            location = inventory_service.resolve_default_location(order.store_id)
            for item in order.items:
                remaining = item.remaining_quantity
                if item.variant_id and remaining > 0:
                    level = inventory_service.release(
                        item.variant_id,
                        location.id,
                        remaining,
                        "order_canceled",
                        order_id=order.id,
                        user_id=user_id,
                    )
                    if level is not None:
                        released.append({"order_item_id": item.id, "quantity": remaining})

        order.status = STATUS_CANCELED
        order.fulfillment_status = FULFILLMENT_CANCELED
        order.canceled_at = utcnow()
        order.cancel_reason = reason

        message = f"Order canceled: {reason}" if reason else "Order canceled"
        append_order_event(
            order,
            EVENT_SYSTEM,
            message,
            metadata={"restock": restock, "released": released},
            user_id=user_id,
        )
        db.session.commit()
        return order

    return run_with_retry(_op)


def archive_orders(order_ids: list[int], *, store_ids=None, user_id: int | None = None) -> int:
    if not order_ids:
        raise ValidationError("No orders selected")

    def _op():
        query = db.session.query(Order).filter(Order.id.in_(order_ids))
        query = FilterSet().add(store_scope(Order.store_id, store_ids)).apply(query)
        orders = lock_for_update(query).all()
        if not orders:
            raise NotFoundError("No orders found")

        archivable = [o for o in orders if o.status != STATUS_ARCHIVED and o.archived_at is None]
        if not archivable:
            raise ValidationError("No orders can be archived (already archived or invalid status)")

        now = utcnow()
        for order in archivable:
            order.status = STATUS_ARCHIVED
            order.archived_at = now
            append_order_event(order, EVENT_SYSTEM, "Order archived", user_id=user_id)
        db.session.commit()
        return len(archivable)

    return run_with_retry(_op)


def unarchive_orders(order_ids: list[int], *, store_ids=None, user_id: int | None = None) -> int:
    if not order_ids:
        raise ValidationError("No orders selected")

    def _op():
        query = db.session.query(Order).filter(Order.id.in_(order_ids))
        query = FilterSet().add(store_scope(Order.store_id, store_ids)).apply(query)
        orders = lock_for_update(query).all()
        if not orders:
            raise NotFoundError("No orders found")

        archived = [o for o in orders if o.status == STATUS_ARCHIVED]
        if not archived:
            raise ValidationError("No archived orders selected")

        for order in archived:
            order.status = restored_status(order)
            order.archived_at = None
            append_order_event(order, EVENT_SYSTEM, "Order unarchived", user_id=user_id)
        db.session.commit()
        return len(archived)

    return run_with_retry(_op)

# Overview: Service-layer operations for order fulfillment; encapsulates business logic and database work.

"""
Fulfillment rules:
- Guard: draft/canceled orders and orders on hold cannot be fulfilled (error, not no-op).
- Validation is a full pass before any mutation: a single over-fulfilled or
  negative line rejects the whole call.
- Each call writes one Fulfillment record, one inventory fulfill() per
  shipped line, one OrderEvent, then re-derives order.status.
"""

from __future__ import annotations

from ..extensions import db
from ..errors import ConflictError, ValidationError
from ..models import Fulfillment, Order
from ..time_utils import utcnow
from ..validation import parse_int
from . import inventory_service
from .concurrency import run_with_retry
from .order_service import EVENT_FULFILLMENT, append_order_event, lock_order
from .order_status import (
    FULFILLMENT_FULFILLED,
    STATUS_CANCELED,
    STATUS_DRAFT,
    WORKFLOW_ON_HOLD,
    apply_derived_status,
    fulfillment_status_for,
)


def _check_fulfillable(order: Order) -> None:
    if order.status in (STATUS_DRAFT, STATUS_CANCELED):
        raise ConflictError("Cannot fulfill draft or canceled orders")
    if order.workflow_status == WORKFLOW_ON_HOLD:
        reason = f": {order.hold_reason}" if order.hold_reason else ""
        raise ConflictError(f"Cannot fulfill an order that is on hold{reason}")


def _validate_request(order: Order, fulfilled_items: list[dict]) -> dict[int, int]:
    """Return {order_item_id: quantity} for the lines to ship, or raise."""
    if not fulfilled_items:
        raise ValidationError("No items to fulfill")
    if not order.items:
        raise ValidationError("Order has no items")

    items_by_id = {item.id: item for item in order.items}
    requested: dict[int, int] = {}
    for entry in fulfilled_items:
        item_id = parse_int(entry.get("order_item_id"), "order_item_id", minimum=1)
        if item_id not in items_by_id:
            raise ValidationError(f"Item {item_id} does not belong to this order")
        quantity = parse_int(entry.get("quantity"), "quantity")
        if quantity < 0:
            raise ValidationError(f"Fulfilled quantity cannot be negative for item {item_id}")
        requested[item_id] = requested.get(item_id, 0) + quantity

    for item_id, quantity in requested.items():
        item = items_by_id[item_id]
        if (item.fulfilled_quantity or 0) + quantity > item.quantity:
            raise ValidationError(f"Cannot fulfill more than ordered quantity for item {item_id}")

    shipping = {item_id: qty for item_id, qty in requested.items() if qty > 0}
    if not shipping:
        raise ValidationError("No items to fulfill")
    return shipping


def fulfill_order(
    order_id: int,
    fulfilled_items: list[dict],
    *,
    carrier: str | None = None,
    tracking_number: str | None = None,
    tracking_url: str | None = None,
    fulfilled_by: int | None = None,
    store_ids=None,
) -> Fulfillment:
    """
    Ship some or all remaining units of an order.

    fulfilled_items: [{"order_item_id": 1, "quantity": 2}, ...]
    """
    def _op():
        order = lock_order(order_id, store_ids=store_ids)
        _check_fulfillable(order)
        shipping = _validate_request(order, fulfilled_items)
        location = inventory_service.resolve_default_location(order.store_id)

        fulfillment = Fulfillment(
            order_id=order.id,
            store_id=order.store_id,
            location_id=location.id,
            status="success",
            carrier=carrier,
            tracking_number=tracking_number,
            tracking_url=tracking_url,
            line_items=[{"order_item_id": k, "quantity": v} for k, v in shipping.items()],
            fulfilled_by_user_id=fulfilled_by,
        )
        db.session.add(fulfillment)
        db.session.flush()

        items_by_id = {item.id: item for item in order.items}
        for item_id, quantity in shipping.items():
            item = items_by_id[item_id]
            item.fulfilled_quantity = (item.fulfilled_quantity or 0) + quantity
            if item.variant_id:
                inventory_service.fulfill(
                    item.variant_id,
                    location.id,
                    quantity,
                    order.id,
                    fulfillment_id=fulfillment.id,
                    user_id=fulfilled_by,
                )

        order.fulfillment_status = fulfillment_status_for(order.items)
        if order.fulfillment_status == FULFILLMENT_FULFILLED:
            order.fulfilled_at = utcnow()
        apply_derived_status(order)

        fully = order.fulfillment_status == FULFILLMENT_FULFILLED
        append_order_event(
            order,
            EVENT_FULFILLMENT,
            "Order fulfilled" if fully else "Order partially fulfilled",
            metadata={
                "fulfillment_id": fulfillment.id,
                "items": fulfillment.line_items,
                "carrier": carrier,
                "tracking_number": tracking_number,
            },
            user_id=fulfilled_by,
        )
        db.session.commit()
        return fulfillment

    return run_with_retry(_op)

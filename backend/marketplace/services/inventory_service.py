# Overview: Service-layer operations for the inventory ledger; encapsulates business logic and database work.

"""
Inventory Ledger Invariants (authoritative)

Counters live on InventoryLevel per (inventory item, location):
available, committed, on_hand, incoming (plus shipped/damaged/returned).

Transitions (signed deltas):
- reserve(q):  available -q, committed +q            (order created/opened)
- fulfill(q):  committed -q, on_hand -q              (goods shipped; available untouched)
- release(q):  available +q, committed -q            (cancel / restock)
- adjust_manual(new): available +d, on_hand +d       (d = new - available)
- update_incoming(new): incoming +d

Rules:
- Every counter mutation writes exactly one InventoryAdjustment carrying the
  per-counter deltas, in the same transaction. Replaying the adjustments for
  a level reproduces its counters (replay_level).
- reserve hard-fails with InsufficientStockError when available < q, so
  available is never negative. release/fulfill fail when committed < q.
- on_hand == available + committed holds across every transition above.
- Levels are locked FOR UPDATE before read-modify-write.
- reserve/fulfill/release join the caller's transaction (flush, no commit);
  the remaining operations are standalone and commit.
- Variants without an InventoryItem are untracked: reserve/fulfill/release
  return None and write nothing.
"""

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..models import (
    DraftOrderItem,
    InventoryAdjustment,
    InventoryItem,
    InventoryLevel,
    InventoryLocation,
    Listing,
    ListingVariant,
    OrderItem,
)
from ..money import money_str, to_money
from .concurrency import lock_for_update, run_with_retry
from .filters import FilterSet, equals, search_text, store_scope

# InventoryAdjustment.event_type
EVENT_RESERVE = "reserve"
EVENT_RELEASE = "release"
EVENT_FULFILL = "fulfill"
EVENT_ADJUSTMENT = "adjustment"

REFERENCE_ORDER = "order"
REFERENCE_FULFILLMENT = "fulfillment"
REFERENCE_MANUAL = "manual"

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200
HISTORY_LIMIT = 50


# =============================================================================
# LOOKUPS
# =============================================================================

def resolve_default_location(store_id: int) -> InventoryLocation:
    """
    The location orders reserve and fulfill against.

    Active location flagged is_default first, then the oldest active location.
    """
    location = (
        db.session.query(InventoryLocation)
        .filter_by(store_id=store_id, is_active=True)
        .order_by(InventoryLocation.is_default.desc(), InventoryLocation.id.asc())
        .first()
    )
    if location is None:
        raise NotFoundError("No inventory location found")
    return location


def _inventory_item_for_variant(variant_id: int | None) -> InventoryItem | None:
    if not variant_id:
        return None
    return (
        db.session.query(InventoryItem)
        .filter_by(variant_id=variant_id)
        .order_by(InventoryItem.id.asc())
        .first()
    )


def _lock_level(inventory_item_id: int, location_id: int) -> InventoryLevel:
    """Lock the (item, location) level row, creating an all-zero row if missing."""
    level = lock_for_update(
        db.session.query(InventoryLevel).filter_by(
            inventory_item_id=inventory_item_id,
            location_id=location_id,
        )
    ).first()
    if level is None:
        level = InventoryLevel(
            inventory_item_id=inventory_item_id,
            location_id=location_id,
            available=0,
            committed=0,
            incoming=0,
            on_hand=0,
        )
        db.session.add(level)
        db.session.flush()
    return level


def _require_level_in_scope(level_id: int, store_ids, *, lock: bool = False) -> InventoryLevel:
    query = db.session.query(InventoryLevel).filter_by(id=level_id)
    if lock:
        query = lock_for_update(query)
    level = query.first()
    if level is None:
        raise NotFoundError("Inventory level not found")
    location = db.session.get(InventoryLocation, level.location_id)
    # Out-of-scope levels look exactly like missing ones
    if store_ids is not None and (location is None or location.store_id not in store_ids):
        raise NotFoundError("Inventory level not found")
    return level


def _check_quantity(qty) -> int:
    if isinstance(qty, bool) or not isinstance(qty, int):
        raise ValidationError("quantity must be an integer")
    if qty <= 0:
        raise ValidationError("quantity must be positive")
    return qty


def _check_count(value, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{label} must be an integer")
    if value < 0:
        raise ValidationError(f"{label} cannot be negative")
    return value


# =============================================================================
# LEDGER WRITES
# =============================================================================

def _record_adjustment(
    level: InventoryLevel,
    *,
    event_type: str,
    change: int,
    available_change: int = 0,
    committed_change: int = 0,
    on_hand_change: int = 0,
    incoming_change: int = 0,
    reason: str | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    user_id: int | None = None,
) -> InventoryAdjustment:
    """Apply the deltas to the level and append the matching ledger row."""
    level.available += available_change
    level.committed += committed_change
    level.on_hand += on_hand_change
    level.incoming += incoming_change

    adjustment = InventoryAdjustment(
        inventory_item_id=level.inventory_item_id,
        location_id=level.location_id,
        event_type=event_type,
        change=change,
        available_change=available_change,
        committed_change=committed_change,
        on_hand_change=on_hand_change,
        incoming_change=incoming_change,
        reason=reason,
        reference_type=reference_type,
        reference_id=reference_id,
        created_by_user_id=user_id,
    )
    db.session.add(adjustment)
    db.session.flush()
    return adjustment


def reserve(
    variant_id: int,
    location_id: int,
    qty: int,
    order_id: int | None,
    *,
    reason: str = "order_created",
    user_id: int | None = None,
) -> InventoryLevel | None:
    """
    Reserve stock for a sale: available -qty, committed +qty.

    Joins the caller's transaction. Raises InsufficientStockError rather
    than letting available go negative.
    """
    _check_quantity(qty)
    item = _inventory_item_for_variant(variant_id)
    if item is None:
        return None

    level = _lock_level(item.id, location_id)
    if level.available < qty:
        raise InsufficientStockError(
            f"Insufficient stock for variant {variant_id}: requested {qty}, available {level.available}",
            variant_id=variant_id,
            requested=qty,
            available=level.available,
        )

    _record_adjustment(
        level,
        event_type=EVENT_RESERVE,
        change=-qty,
        available_change=-qty,
        committed_change=qty,
        reason=reason,
        reference_type=REFERENCE_ORDER,
        reference_id=order_id,
        user_id=user_id,
    )
    return level


def fulfill(
    variant_id: int,
    location_id: int,
    qty: int,
    order_id: int | None,
    *,
    fulfillment_id: int | None = None,
    reason: str = "order_fulfilled",
    user_id: int | None = None,
) -> InventoryLevel | None:
    """
    Ship reserved stock: committed -qty, on_hand -qty. available is untouched
    (it already went down at reserve time).
    """
    _check_quantity(qty)
    item = _inventory_item_for_variant(variant_id)
    if item is None:
        return None

    level = _lock_level(item.id, location_id)
    if level.committed < qty:
        raise ValidationError(
            f"Cannot fulfill {qty} of variant {variant_id}: only {level.committed} committed at this location"
        )

    _record_adjustment(
        level,
        event_type=EVENT_FULFILL,
        change=-qty,
        committed_change=-qty,
        on_hand_change=-qty,
        reason=reason,
        reference_type=REFERENCE_FULFILLMENT if fulfillment_id else REFERENCE_ORDER,
        reference_id=fulfillment_id or order_id,
        user_id=user_id,
    )
    return level


def release(
    variant_id: int,
    location_id: int,
    qty: int,
    reason: str,
    *,
    order_id: int | None = None,
    user_id: int | None = None,
) -> InventoryLevel | None:
    """Return reserved stock to sale: available +qty, committed -qty."""
    _check_quantity(qty)
    item = _inventory_item_for_variant(variant_id)
    if item is None:
        return None

    level = _lock_level(item.id, location_id)
    if level.committed < qty:
        raise ValidationError(
            f"Cannot release {qty} of variant {variant_id}: only {level.committed} committed at this location"
        )

    _record_adjustment(
        level,
        event_type=EVENT_RELEASE,
        change=qty,
        available_change=qty,
        committed_change=-qty,
        reason=reason,
        reference_type=REFERENCE_ORDER if order_id else None,
        reference_id=order_id,
        user_id=user_id,
    )
    return level


def reserve_items(items, location_id: int, order_id: int, *, user_id: int | None = None) -> None:
    """Reserve every tracked line of an order at one location."""
    for item in items:
        if item.variant_id:
            reserve(item.variant_id, location_id, item.quantity, order_id, user_id=user_id)


# =============================================================================
# STANDALONE OPERATIONS (dashboard)
# =============================================================================

def adjust_manual(
    inventory_level_id: int,
    new_available: int,
    reason: str = "manual",
    *,
    store_ids=None,
    user_id: int | None = None,
) -> dict:
    """
    Set `available` to an absolute value (admin correction).

    The delta also moves on_hand so on_hand == available + committed keeps
    holding. A zero delta writes nothing.
    """
    _check_count(new_available, "Quantity")

    def _op():
        level = _require_level_in_scope(inventory_level_id, store_ids, lock=True)
        delta = new_available - level.available
        if delta != 0:
            _record_adjustment(
                level,
                event_type=EVENT_ADJUSTMENT,
                change=delta,
                available_change=delta,
                on_hand_change=delta,
                reason=reason or "manual",
                reference_type=REFERENCE_MANUAL,
                user_id=user_id,
            )
        db.session.commit()
        return {"level": level.to_dict(), "change": delta}

    return run_with_retry(_op)


def update_cost_per_item(inventory_item_id: int, new_cost, *, store_ids=None) -> dict:
    cost = to_money(new_cost)
    if cost < 0:
        raise ValidationError("Cost cannot be negative")

    def _op():
        item = db.session.get(InventoryItem, inventory_item_id)
        if item is None or not _item_in_scope(item, store_ids):
            raise NotFoundError("Inventory item not found")
        item.cost_per_item = cost
        db.session.commit()
        return {"inventory_item_id": item.id, "cost_per_item": money_str(item.cost_per_item)}

    return run_with_retry(_op)


def update_incoming(
    inventory_level_id: int,
    new_incoming: int,
    *,
    store_ids=None,
    user_id: int | None = None,
    reason: str = "incoming_updated",
) -> dict:
    _check_count(new_incoming, "Incoming quantity")

    def _op():
        level = _require_level_in_scope(inventory_level_id, store_ids, lock=True)
        delta = new_incoming - level.incoming
        if delta != 0:
            _record_adjustment(
                level,
                event_type=EVENT_ADJUSTMENT,
                change=delta,
                incoming_change=delta,
                reason=reason,
                reference_type=REFERENCE_MANUAL,
                user_id=user_id,
            )
        db.session.commit()
        return {"level": level.to_dict(), "change": delta}

    return run_with_retry(_op)


def _item_in_scope(item: InventoryItem, store_ids) -> bool:
    if store_ids is None:
        return True
    store_id = (
        db.session.query(Listing.store_id)
        .join(ListingVariant, ListingVariant.listing_id == Listing.id)
        .filter(ListingVariant.id == item.variant_id)
        .scalar()
    )
    return store_id in store_ids


def cascade_delete_level(level: InventoryLevel) -> dict:
    """
    Delete a level, then its item if no level remains, then the variant if no
    item remains. Runs inside the caller's transaction.

    Order lines keep their title/sku snapshot; only their variant reference
    is cleared when the variant goes away.
    """
    item_id = level.inventory_item_id
    deleted = {"inventory_level_id": level.id, "inventory_item_id": None, "variant_id": None}

    db.session.delete(level)
    db.session.flush()

    remaining_levels = db.session.query(InventoryLevel.id).filter_by(inventory_item_id=item_id).count()
    if remaining_levels:
        return deleted

    item = db.session.get(InventoryItem, item_id)
    if item is None:
        return deleted
    variant_id = item.variant_id
    db.session.delete(item)
    db.session.flush()
    deleted["inventory_item_id"] = item_id

    remaining_items = db.session.query(InventoryItem.id).filter_by(variant_id=variant_id).count()
    if remaining_items:
        return deleted

    for model in (OrderItem, DraftOrderItem):
        db.session.query(model).filter(model.variant_id == variant_id).update(
            {model.variant_id: None}, synchronize_session="fetch"
        )
    variant = db.session.get(ListingVariant, variant_id)
    if variant is not None:
        db.session.delete(variant)
        db.session.flush()
        deleted["variant_id"] = variant_id
    return deleted


def delete_inventory_level(inventory_level_id: int, *, store_ids=None) -> dict:
    def _op():
        level = _require_level_in_scope(inventory_level_id, store_ids, lock=True)
        deleted = cascade_delete_level(level)
        db.session.commit()
        return deleted

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_inventory_rows(
    *,
    store_ids=None,
    location_id: int | None = None,
    search: str | None = None,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> tuple[list[dict], int]:
    """
    Inventory table rows (one per level) with a total count.

    store_ids=None means admin scope (all stores).
    """
    page = max(int(page or 1), 1)
    page_size = min(max(int(page_size or DEFAULT_PAGE_SIZE), 1), MAX_PAGE_SIZE)

    filters = (
        FilterSet()
        .add(store_scope(InventoryLocation.store_id, store_ids))
        .add(equals(InventoryLevel.location_id, location_id))
        .add(search_text(search, Listing.name, ListingVariant.title, ListingVariant.sku))
    )

    base = (
        db.session.query(InventoryLevel, InventoryItem, ListingVariant, Listing, InventoryLocation)
        .join(InventoryItem, InventoryLevel.inventory_item_id == InventoryItem.id)
        .join(ListingVariant, InventoryItem.variant_id == ListingVariant.id)
        .join(Listing, ListingVariant.listing_id == Listing.id)
        .join(InventoryLocation, InventoryLevel.location_id == InventoryLocation.id)
    )
    base = filters.apply(base)

    total = base.with_entities(func.count(InventoryLevel.id)).scalar() or 0
    records = (
        base.order_by(Listing.name.asc(), ListingVariant.title.asc(), InventoryLevel.id.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )

    rows = []
    for level, item, variant, listing, location in records:
        rows.append({
            "inventory_level_id": level.id,
            "inventory_item_id": item.id,
            "variant_id": variant.id,
            "variant_title": variant.title,
            "sku": variant.sku,
            "listing_id": listing.id,
            "listing_name": listing.name,
            "store_id": location.store_id,
            "location_id": location.id,
            "location_name": location.name,
            "available": level.available,
            "committed": level.committed,
            "incoming": level.incoming,
            "on_hand": level.on_hand,
            "cost_per_item": money_str(item.cost_per_item) if item.cost_per_item is not None else None,
        })
    return rows, int(total)


def list_locations(*, store_ids=None, include_inactive: bool = False) -> list[InventoryLocation]:
    filters = FilterSet().add(store_scope(InventoryLocation.store_id, store_ids))
    if not include_inactive:
        filters.add(equals(InventoryLocation.is_active, True))
    query = filters.apply(db.session.query(InventoryLocation))
    return query.order_by(InventoryLocation.store_id.asc(), InventoryLocation.name.asc()).all()


def get_adjustment_history(
    inventory_item_id: int,
    location_id: int,
    *,
    store_ids=None,
    limit: int = HISTORY_LIMIT,
) -> list[InventoryAdjustment]:
    """Newest-first adjustments for one (item, location)."""
    location = db.session.get(InventoryLocation, location_id)
    if location is None or (store_ids is not None and location.store_id not in store_ids):
        raise NotFoundError("Inventory location not found")

    return (
        db.session.query(InventoryAdjustment)
        .filter_by(inventory_item_id=inventory_item_id, location_id=location_id)
        .order_by(InventoryAdjustment.created_at.desc(), InventoryAdjustment.id.desc())
        .limit(min(max(int(limit), 1), HISTORY_LIMIT))
        .all()
    )


def replay_level(inventory_level_id: int) -> dict:
    """
    Sum the ledger for a level.

    Levels are created all-zero, so for a consistent level the sums equal the
    cached counters exactly.
    """
    level = db.session.get(InventoryLevel, inventory_level_id)
    if level is None:
        raise NotFoundError("Inventory level not found")

    sums = (
        db.session.query(
            func.coalesce(func.sum(InventoryAdjustment.available_change), 0),
            func.coalesce(func.sum(InventoryAdjustment.committed_change), 0),
            func.coalesce(func.sum(InventoryAdjustment.on_hand_change), 0),
            func.coalesce(func.sum(InventoryAdjustment.incoming_change), 0),
        )
        .filter(
            InventoryAdjustment.inventory_item_id == level.inventory_item_id,
            InventoryAdjustment.location_id == level.location_id,
        )
        .one()
    )
    replayed = {
        "available": int(sums[0]),
        "committed": int(sums[1]),
        "on_hand": int(sums[2]),
        "incoming": int(sums[3]),
    }
    replayed["consistent"] = (
        replayed["available"] == level.available
        and replayed["committed"] == level.committed
        and replayed["on_hand"] == level.on_hand
        and replayed["incoming"] == level.incoming
    )
    return replayed

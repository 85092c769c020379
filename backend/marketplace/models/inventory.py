from __future__ import annotations

from ..extensions import db
from ..money import money_str
from ..time_utils import to_utc_z


class InventoryLocation(db.Model):
    """
    A place where a store keeps stock (warehouse, shop floor, 3PL).

    DEFAULT LOCATION: orders reserve and fulfill against the store's default
    location: the active location flagged is_default, else the first active one.
    """
    __tablename__ = "inventory_locations"
    __table_args__ = (
        db.UniqueConstraint("store_id", "name", name="uq_inventory_locations_store_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    is_default = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    store = db.relationship("Store", backref=db.backref("locations", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "name": self.name,
            "is_default": self.is_default,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class InventoryItem(db.Model):
    """
    Physical/shipping attributes of a variant. A variant with no InventoryItem
    is untracked: orders for it never touch inventory counters.
    """
    __tablename__ = "inventory_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("listing_variants.id"), nullable=False, index=True)

    cost_per_item = db.Column(db.Numeric(10, 2), nullable=True)
    requires_shipping = db.Column(db.Boolean, nullable=False, default=True)
    weight_grams = db.Column(db.Integer, nullable=True)
    length_cm = db.Column(db.Numeric(8, 2), nullable=True)
    width_cm = db.Column(db.Numeric(8, 2), nullable=True)
    height_cm = db.Column(db.Numeric(8, 2), nullable=True)
    country_of_origin = db.Column(db.String(2), nullable=True)
    hs_code = db.Column(db.String(16), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    variant = db.relationship("ListingVariant", backref=db.backref("inventory_items", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "variant_id": self.variant_id,
            "cost_per_item": money_str(self.cost_per_item) if self.cost_per_item is not None else None,
            "requires_shipping": self.requires_shipping,
            "weight_grams": self.weight_grams,
            "country_of_origin": self.country_of_origin,
            "hs_code": self.hs_code,
        }


class InventoryLevel(db.Model):
    """
    Cached stock counters for one (item, location) pair.

    WHY CACHED: Counters are read on every listing page; replaying the ledger
    for each read is too slow. They must always equal the sum of the
    InventoryAdjustment deltas for the pair (see inventory_service.replay_level).

    STEADY STATE: on_hand == available + committed.

    CONCURRENCY: Rows are locked (SELECT ... FOR UPDATE) by every mutating
    operation; version_id catches lost updates on databases that ignore the lock.
    """
    __tablename__ = "inventory_levels"
    __table_args__ = (
        db.UniqueConstraint("inventory_item_id", "location_id", name="uq_inventory_levels_item_location"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    inventory_item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("inventory_locations.id"), nullable=False, index=True)

    available = db.Column(db.Integer, nullable=False, default=0)
    committed = db.Column(db.Integer, nullable=False, default=0)
    incoming = db.Column(db.Integer, nullable=False, default=0)
    on_hand = db.Column(db.Integer, nullable=False, default=0)
    shipped = db.Column(db.Integer, nullable=False, default=0)
    damaged = db.Column(db.Integer, nullable=False, default=0)
    returned = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    inventory_item = db.relationship("InventoryItem", backref=db.backref("levels", lazy=True))
    location = db.relationship("InventoryLocation", backref=db.backref("levels", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<InventoryLevel id={self.id} item={self.inventory_item_id} location={self.location_id} "
            f"available={self.available} committed={self.committed} on_hand={self.on_hand}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "inventory_item_id": self.inventory_item_id,
            "location_id": self.location_id,
            "available": self.available,
            "committed": self.committed,
            "incoming": self.incoming,
            "on_hand": self.on_hand,
            "shipped": self.shipped,
            "damaged": self.damaged,
            "returned": self.returned,
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryAdjustment(db.Model):
    """
    Append-only inventory ledger row.

    - Exactly one row per counter mutation, written in the same transaction.
    - Per-counter signed deltas make every counter replayable.
    - `change` is the headline delta shown in history (what the event did to
      the counter it is named after).
    - Never updated or deleted; outlives the level it describes (no FK cascade).
    """
    __tablename__ = "inventory_adjustments"
    __table_args__ = (
        db.Index("ix_inv_adj_item_location_created", "inventory_item_id", "location_id", "created_at"),
        db.Index("ix_inv_adj_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    inventory_item_id = db.Column(db.Integer, nullable=False, index=True)
    location_id = db.Column(db.Integer, nullable=False, index=True)

    event_type = db.Column(db.String(16), nullable=False, index=True)
    change = db.Column(db.Integer, nullable=False)

    available_change = db.Column(db.Integer, nullable=False, default=0)
    committed_change = db.Column(db.Integer, nullable=False, default=0)
    on_hand_change = db.Column(db.Integer, nullable=False, default=0)
    incoming_change = db.Column(db.Integer, nullable=False, default=0)

    reason = db.Column(db.String(255), nullable=True)

    # order | fulfillment | manual
    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    created_by = db.relationship("User", foreign_keys=[created_by_user_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "inventory_item_id": self.inventory_item_id,
            "location_id": self.location_id,
            "event_type": self.event_type,
            "change": self.change,
            "available_change": self.available_change,
            "committed_change": self.committed_change,
            "on_hand_change": self.on_hand_change,
            "incoming_change": self.incoming_change,
            "reason": self.reason,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "created_by_user_id": self.created_by_user_id,
            "created_by_name": self.created_by.name if self.created_by else None,
            "created_at": to_utc_z(self.created_at),
        }

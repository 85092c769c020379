from __future__ import annotations

from ..extensions import db
from ..money import money_str
from ..time_utils import to_utc_z


class Listing(db.Model):
    """
    A product listed by a store.

    Orders never read prices from here after checkout: line items snapshot
    title/sku/unit price so catalog edits do not rewrite history.
    """
    __tablename__ = "listings"
    __table_args__ = (
        db.Index("ix_listings_store_status", "store_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    price = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="EUR")
    status = db.Column(db.String(16), nullable=False, default="active")  # active | draft | archived

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    store = db.relationship("Store", backref=db.backref("listings", lazy=True))

    def __repr__(self) -> str:
        return f"<Listing id={self.id} name={self.name!r} store_id={self.store_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "name": self.name,
            "price": money_str(self.price),
            "currency": self.currency,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }


class ListingVariant(db.Model):
    __tablename__ = "listing_variants"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    listing_id = db.Column(db.Integer, db.ForeignKey("listings.id"), nullable=False, index=True)
    title = db.Column(db.String(255), nullable=False, default="Default")
    sku = db.Column(db.String(64), nullable=True, index=True)
    price = db.Column(db.Numeric(10, 2), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    listing = db.relationship("Listing", backref=db.backref("variants", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "listing_id": self.listing_id,
            "title": self.title,
            "sku": self.sku,
            "price": money_str(self.price) if self.price is not None else None,
        }

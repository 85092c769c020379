from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Store(db.Model):
    """
    Seller storefront; the tenant boundary for the marketplace.

    MULTI-TENANT: Listings, inventory locations, orders, drafts, customers and
    balances all carry store_id. Non-admin users only see stores they are
    members of (StoreMember).

    PAYOUTS: stripe_account_id is the connected payout account that receives
    transfers after a (possibly multi-store) checkout settles. The capability
    flags are synced from account.updated webhooks.
    """
    __tablename__ = "stores"
    __table_args__ = (
        db.UniqueConstraint("slug", name="uq_stores_slug"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    slug = db.Column(db.String(120), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="EUR")

    stripe_account_id = db.Column(db.String(64), nullable=True, index=True)
    stripe_charges_enabled = db.Column(db.Boolean, nullable=False, default=False)
    stripe_payouts_enabled = db.Column(db.Boolean, nullable=False, default=False)
    stripe_onboarding_complete = db.Column(db.Boolean, nullable=False, default=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Store id={self.id} slug={self.slug!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "currency": self.currency,
            "stripe_account_id": self.stripe_account_id,
            "stripe_charges_enabled": self.stripe_charges_enabled,
            "stripe_payouts_enabled": self.stripe_payouts_enabled,
            "stripe_onboarding_complete": self.stripe_onboarding_complete,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class StoreMember(db.Model):
    """User membership in a store (owner or staff)."""
    __tablename__ = "store_members"
    __table_args__ = (
        db.UniqueConstraint("store_id", "user_id", name="uq_store_members_store_user"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    role = db.Column(db.String(16), nullable=False, default="owner")  # owner | staff

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    store = db.relationship("Store", backref=db.backref("members", lazy=True))
    user = db.relationship("User", backref=db.backref("memberships", lazy=True))

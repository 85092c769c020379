from __future__ import annotations

from ..extensions import db
from ..money import money_str
from ..time_utils import to_utc_z


class Customer(db.Model):
    """
    Buyer record, unique per (store, email).

    Draft orders and guest checkouts resolve-or-create the customer by that
    pair, so repeat buyers accumulate orders under one record per store.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("store_id", "email", name="uq_customers_store_email"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    email = db.Column(db.String(255), nullable=False)
    first_name = db.Column(db.String(120), nullable=True)
    last_name = db.Column(db.String(120), nullable=True)
    phone = db.Column(db.String(32), nullable=True)

    orders_count = db.Column(db.Integer, nullable=False, default=0)
    total_spent = db.Column(db.Numeric(10, 2), nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "phone": self.phone,
            "orders_count": self.orders_count,
            "total_spent": money_str(self.total_spent),
            "created_at": to_utc_z(self.created_at),
        }

from __future__ import annotations

from sqlalchemy.orm import declared_attr

from ..extensions import db
from ..money import money_str
from ..time_utils import to_utc_z


class AddressSnapshotMixin:
    """Shipping/billing address copied onto the document at creation time."""

    shipping_name = db.Column(db.String(255), nullable=True)
    shipping_phone = db.Column(db.String(32), nullable=True)
    shipping_address_line1 = db.Column(db.String(255), nullable=True)
    shipping_address_line2 = db.Column(db.String(255), nullable=True)
    shipping_city = db.Column(db.String(120), nullable=True)
    shipping_region = db.Column(db.String(120), nullable=True)
    shipping_postal_code = db.Column(db.String(32), nullable=True)
    shipping_country = db.Column(db.String(2), nullable=True)

    billing_name = db.Column(db.String(255), nullable=True)
    billing_phone = db.Column(db.String(32), nullable=True)
    billing_address_line1 = db.Column(db.String(255), nullable=True)
    billing_address_line2 = db.Column(db.String(255), nullable=True)
    billing_city = db.Column(db.String(120), nullable=True)
    billing_region = db.Column(db.String(120), nullable=True)
    billing_postal_code = db.Column(db.String(32), nullable=True)
    billing_country = db.Column(db.String(2), nullable=True)

    ADDRESS_FIELDS = ("name", "phone", "address_line1", "address_line2", "city", "region", "postal_code", "country")

    def address_dict(self, kind: str) -> dict | None:
        values = {f: getattr(self, f"{kind}_{f}") for f in self.ADDRESS_FIELDS}
        if not any(values.values()):
            return None
        return values

    def copy_addresses_from(self, other: "AddressSnapshotMixin") -> None:
        for kind in ("shipping", "billing"):
            for f in self.ADDRESS_FIELDS:
                setattr(self, f"{kind}_{f}", getattr(other, f"{kind}_{f}"))

    def set_address(self, kind: str, data: dict | None) -> None:
        data = data or {}
        for f in self.ADDRESS_FIELDS:
            setattr(self, f"{kind}_{f}", data.get(f))


class MoneyBreakdownMixin:
    """Monetary breakdown shared by drafts and orders (all 2-digit decimals)."""

    currency = db.Column(db.String(3), nullable=False, default="EUR")
    subtotal_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    shipping_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    tax_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)

    def totals_dict(self) -> dict:
        return {
            "currency": self.currency,
            "subtotal_amount": money_str(self.subtotal_amount),
            "discount_amount": money_str(self.discount_amount),
            "shipping_amount": money_str(self.shipping_amount),
            "tax_amount": money_str(self.tax_amount),
            "total_amount": money_str(self.total_amount),
        }


class DraftOrder(AddressSnapshotMixin, MoneyBreakdownMixin, db.Model):
    """
    Mutable pre-order used for manual creation and invoicing.

    INVENTORY: nothing is reserved while a draft is open. Reservation happens
    only when complete_draft_order() converts it into an Order.

    LIFECYCLE: completed=False -> completed=True (one way, guarded so a second
    completion fails with ConflictError). converted_to_order_id points at the
    order the draft became.
    """
    __tablename__ = "draft_orders"
    __table_args__ = (
        db.UniqueConstraint("draft_number", name="uq_draft_orders_number"),
        db.Index("ix_draft_orders_store_completed", "store_id", "completed"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    draft_number = db.Column(db.String(32), nullable=False)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    customer_email = db.Column(db.String(255), nullable=True)
    customer_first_name = db.Column(db.String(120), nullable=True)
    customer_last_name = db.Column(db.String(120), nullable=True)

    payment_status = db.Column(db.String(16), nullable=False, default="pending")  # pending | paid
    note = db.Column(db.Text, nullable=True)

    completed = db.Column(db.Boolean, nullable=False, default=False)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    converted_to_order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True)

    invoice_token = db.Column(db.String(64), nullable=True, unique=True, index=True)
    invoice_expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    invoice_sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    invoice_sent_count = db.Column(db.Integer, nullable=False, default=0)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    items = db.relationship(
        "DraftOrderItem",
        backref="draft_order",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="DraftOrderItem.id",
    )
    customer = db.relationship("Customer")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<DraftOrder id={self.id} number={self.draft_number!r} completed={self.completed}>"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "draft_number": self.draft_number,
            "store_id": self.store_id,
            "customer_id": self.customer_id,
            "customer_email": self.customer_email,
            "customer_first_name": self.customer_first_name,
            "customer_last_name": self.customer_last_name,
            "payment_status": self.payment_status,
            "note": self.note,
            "completed": self.completed,
            "completed_at": to_utc_z(self.completed_at),
            "converted_to_order_id": self.converted_to_order_id,
            "invoice_expires_at": to_utc_z(self.invoice_expires_at),
            "invoice_sent_at": to_utc_z(self.invoice_sent_at),
            "invoice_sent_count": self.invoice_sent_count,
            "shipping_address": self.address_dict("shipping"),
            "billing_address": self.address_dict("billing"),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        data.update(self.totals_dict())
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class LineItemMixin:
    """Line item snapshot, decoupled from the live catalog."""

    @declared_attr
    def listing_id(cls):
        return db.Column(db.Integer, db.ForeignKey("listings.id"), nullable=True, index=True)

    @declared_attr
    def variant_id(cls):
        return db.Column(db.Integer, db.ForeignKey("listing_variants.id"), nullable=True, index=True)

    title = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(10, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="EUR")
    line_subtotal = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    line_total = db.Column(db.Numeric(10, 2), nullable=False, default=0)

    def line_dict(self) -> dict:
        return {
            "id": self.id,
            "listing_id": self.listing_id,
            "variant_id": self.variant_id,
            "title": self.title,
            "sku": self.sku,
            "quantity": self.quantity,
            "unit_price": money_str(self.unit_price),
            "currency": self.currency,
            "line_subtotal": money_str(self.line_subtotal),
            "discount_amount": money_str(self.discount_amount),
            "line_total": money_str(self.line_total),
        }


class DraftOrderItem(LineItemMixin, db.Model):
    __tablename__ = "draft_order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    draft_order_id = db.Column(db.Integer, db.ForeignKey("draft_orders.id"), nullable=False, index=True)

    def to_dict(self) -> dict:
        data = self.line_dict()
        data["draft_order_id"] = self.draft_order_id
        return data


class Order(AddressSnapshotMixin, MoneyBreakdownMixin, db.Model):
    """
    Finalized, payable order for one store.

    STATUS AXES (independent):
    - status: open | draft | archived | canceled | completed
    - payment_status: pending | paid | partially_refunded | refunded | failed | void
    - fulfillment_status: unfulfilled | partial | fulfilled | canceled
    - workflow_status: normal | in_progress | on_hold (operational flag; on_hold blocks fulfillment)

    DERIVED: status == completed iff payment_status in {paid, partially_refunded}
    and fulfillment_status in {fulfilled, partial}. Every writer re-derives it
    through order_status.derive_order_status(); it is never set ad hoc.

    CONCURRENCY: payment reconciliation and fulfillment mutate the same row
    independently; version_id turns a lost update into a retried StaleDataError.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_number"),
        db.Index("ix_orders_store_status", "store_id", "status"),
        db.Index("ix_orders_store_placed", "store_id", "placed_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    customer_email = db.Column(db.String(255), nullable=True)
    customer_first_name = db.Column(db.String(120), nullable=True)
    customer_last_name = db.Column(db.String(120), nullable=True)

    refunded_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default="open", index=True)
    payment_status = db.Column(db.String(24), nullable=False, default="pending", index=True)
    fulfillment_status = db.Column(db.String(16), nullable=False, default="unfulfilled", index=True)
    workflow_status = db.Column(db.String(16), nullable=False, default="normal")
    hold_reason = db.Column(db.String(255), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    shipping_method = db.Column(db.String(64), nullable=True)
    guest_checkout = db.Column(db.Boolean, nullable=False, default=False)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    placed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    fulfilled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    canceled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    archived_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )
    discounts = db.relationship("OrderDiscount", backref="order", lazy=True, cascade="all, delete-orphan")
    events = db.relationship(
        "OrderEvent",
        backref="order",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="OrderEvent.id",
    )
    payments = db.relationship(
        "OrderPayment",
        backref="order",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="OrderPayment.id",
    )
    fulfillments = db.relationship("Fulfillment", backref="order", lazy=True, cascade="all, delete-orphan")
    store = db.relationship("Store")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<Order id={self.id} number={self.order_number!r} status={self.status} "
            f"payment={self.payment_status} fulfillment={self.fulfillment_status}>"
        )

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "store_id": self.store_id,
            "customer_id": self.customer_id,
            "customer_email": self.customer_email,
            "customer_first_name": self.customer_first_name,
            "customer_last_name": self.customer_last_name,
            "refunded_amount": money_str(self.refunded_amount),
            "status": self.status,
            "payment_status": self.payment_status,
            "fulfillment_status": self.fulfillment_status,
            "workflow_status": self.workflow_status,
            "hold_reason": self.hold_reason,
            "cancel_reason": self.cancel_reason,
            "shipping_method": self.shipping_method,
            "guest_checkout": self.guest_checkout,
            "shipping_address": self.address_dict("shipping"),
            "billing_address": self.address_dict("billing"),
            "placed_at": to_utc_z(self.placed_at),
            "paid_at": to_utc_z(self.paid_at),
            "fulfilled_at": to_utc_z(self.fulfilled_at),
            "canceled_at": to_utc_z(self.canceled_at),
            "archived_at": to_utc_z(self.archived_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        data.update(self.totals_dict())
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
            data["discounts"] = [d.to_dict() for d in self.discounts]
        return data


class OrderItem(LineItemMixin, db.Model):
    """fulfilled_quantity is monotonically non-decreasing and never exceeds quantity."""
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("fulfilled_quantity >= 0", name="ck_order_items_fulfilled_nonneg"),
        db.CheckConstraint("fulfilled_quantity <= quantity", name="ck_order_items_fulfilled_bounded"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    tax_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    fulfilled_quantity = db.Column(db.Integer, nullable=False, default=0)

    @property
    def remaining_quantity(self) -> int:
        return self.quantity - (self.fulfilled_quantity or 0)

    def to_dict(self) -> dict:
        data = self.line_dict()
        data["order_id"] = self.order_id
        data["tax_amount"] = money_str(self.tax_amount)
        data["fulfilled_quantity"] = self.fulfilled_quantity
        return data


class OrderDiscount(db.Model):
    """
    Discount as applied to one order. A snapshot: later edits to the live
    discount never change what this order was charged.
    """
    __tablename__ = "order_discounts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    code = db.Column(db.String(100), nullable=True)
    type = db.Column(db.String(50), nullable=False, default="order")
    value_type = db.Column(db.String(20), nullable=False)  # fixed | percentage
    value = db.Column(db.Numeric(10, 2), nullable=False)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "code": self.code,
            "type": self.type,
            "value_type": self.value_type,
            "value": money_str(self.value),
            "amount": money_str(self.amount),
            "currency": self.currency,
        }


class OrderEvent(db.Model):
    """Order timeline entry (append-only)."""
    __tablename__ = "order_events"
    __table_args__ = (
        db.Index("ix_order_events_order_created", "order_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    # system | payment | fulfillment | refund | email | comment | workflow
    type = db.Column(db.String(16), nullable=False)
    visibility = db.Column(db.String(16), nullable=False, default="internal")  # internal | customer
    message = db.Column(db.Text, nullable=False)
    event_metadata = db.Column("metadata", db.JSON, nullable=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "type": self.type,
            "visibility": self.visibility,
            "message": self.message,
            "metadata": self.event_metadata,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class Fulfillment(db.Model):
    """One record per fulfill call, covering every line it shipped."""
    __tablename__ = "fulfillments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=True)
    location_id = db.Column(db.Integer, db.ForeignKey("inventory_locations.id"), nullable=True)
    status = db.Column(db.String(16), nullable=False, default="success")
    carrier = db.Column(db.String(64), nullable=True)
    tracking_number = db.Column(db.String(128), nullable=True)
    tracking_url = db.Column(db.String(512), nullable=True)
    # [{"order_item_id": 1, "quantity": 2}, ...]
    line_items = db.Column(db.JSON, nullable=False, default=list)
    fulfilled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "store_id": self.store_id,
            "location_id": self.location_id,
            "status": self.status,
            "carrier": self.carrier,
            "tracking_number": self.tracking_number,
            "tracking_url": self.tracking_url,
            "line_items": self.line_items,
            "fulfilled_by_user_id": self.fulfilled_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }

# Overview: Service-layer operations for store customers; encapsulates business logic and database work.

from __future__ import annotations

from ..extensions import db
from ..models import Customer
from ..money import to_money


def resolve_customer(
    store_id: int,
    email: str,
    *,
    first_name: str | None = None,
    last_name: str | None = None,
    phone: str | None = None,
) -> Customer:
    """
    Find the customer for (store, email) or create one.

    Runs inside the caller's transaction. Blank name fields on an existing
    customer are filled in; known values are never overwritten.

    A concurrent first checkout for the same email raises IntegrityError on
    flush; callers retry with RETRYABLE_WITH_UNIQUE and take the lookup path.
    """
    email = email.strip().lower()
    customer = db.session.query(Customer).filter_by(store_id=store_id, email=email).first()
    if customer is None:
        customer = Customer(
            store_id=store_id,
            email=email,
            first_name=first_name,
            last_name=last_name,
            phone=phone,
            orders_count=0,
            total_spent=0,
        )
        db.session.add(customer)
        db.session.flush()
        return customer

    if first_name and not customer.first_name:
        customer.first_name = first_name
    if last_name and not customer.last_name:
        customer.last_name = last_name
    if phone and not customer.phone:
        customer.phone = phone
    return customer


def record_order(customer: Customer | None, total) -> None:
    """Bump the customer's order stats for a newly created order."""
    if customer is None:
        return
    customer.orders_count = (customer.orders_count or 0) + 1
    customer.total_spent = to_money(customer.total_spent) + to_money(total)

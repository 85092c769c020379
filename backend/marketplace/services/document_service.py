# Overview: Service-layer operations for document numbering; encapsulates business logic and database work.

from __future__ import annotations

from sqlalchemy import update

from ..extensions import db
from ..models import DocumentSequence
from ..errors import ValidationError

DOCUMENT_DRAFT_ORDER = "DRAFT_ORDER"
DOCUMENT_ORDER = "ORDER"

DRAFT_PREFIX = "D"
ORDER_PREFIX = "GM"


def next_document_number(
    *,
    store_id: int,
    document_type: str,
    prefix: str,
    pad: int = 4,
) -> str:
    """
    Allocate the next sequential number for (store, document type).

    Runs inside the caller's transaction (no commit here): a rolled-back
    checkout also rolls back its number, so numbers stay gap-free per store.

    Format: {prefix}-{store_id:03d}-{n:0{pad}d}, e.g. GM-007-0042.
    """
    if not store_id:
        raise ValidationError("store_id is required")
    if not document_type:
        raise ValidationError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.store_id == store_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        db.session.flush()
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(store_id=store_id, document_type=document_type)
            .scalar()
        )
        next_num = current - 1
    else:
        # First number for this store/type. A concurrent first allocation
        # raises IntegrityError here; callers retry with RETRYABLE_WITH_UNIQUE.
        db.session.add(DocumentSequence(store_id=store_id, document_type=document_type, next_number=2))
        db.session.flush()
        next_num = 1

    return f"{prefix}-{store_id:03d}-{next_num:0{pad}d}"


def next_order_number(store_id: int) -> str:
    return next_document_number(store_id=store_id, document_type=DOCUMENT_ORDER, prefix=ORDER_PREFIX)


def next_draft_number(store_id: int) -> str:
    return next_document_number(store_id=store_id, document_type=DOCUMENT_DRAFT_ORDER, prefix=DRAFT_PREFIX)

from __future__ import annotations

from ..extensions import db


class DocumentSequence(db.Model):
    """
    Per-store counters for human-readable document numbers (drafts, orders).

    Allocation is an atomic UPDATE ... SET next_number = next_number + 1,
    so two concurrent checkouts can never receive the same number.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("store_id", "document_type", name="uq_document_sequences_store_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    document_type = db.Column(db.String(32), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)

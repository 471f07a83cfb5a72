from __future__ import annotations

import uuid

from ..extensions import db
from inventory_cutover.time_utils import to_utc_z


class ExtractionSession(db.Model):
    """
    Batched, resumable cost-review workflow for a set of locations.

    WHY: Thousands of items cannot be reviewed in one screen, and a dropped
    request must not lose progress. The session only stores the cursor
    (current_batch) and counters; the inventory snapshot is re-fetched on every
    call because the POS item set may shift between calls.

    LIFECYCLE:
    1. IN_PROGRESS: windows remain to be reviewed
    2. COMPLETED: current_batch reached total_batches (terminal)
    3. CANCELLED: abandoned by an operator (terminal)

    learned_supplier_initials maps supplier name -> initials the operator
    confirmed during this session (e.g. {"Compra Center": ["CC"]}).
    """
    __tablename__ = "extraction_sessions"
    __table_args__ = (
        db.Index("ix_extraction_sessions_status", "status"),
    )

    id = db.Column(db.String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    location_ids = db.Column(db.JSON, nullable=False)
    cost_basis = db.Column(db.String(32), nullable=False, default="DESCRIPTION")

    # 1-based cursor into the non-skipped snapshot
    current_batch = db.Column(db.Integer, nullable=False, default=1)
    total_batches = db.Column(db.Integer, nullable=False, default=0)
    total_items = db.Column(db.Integer, nullable=False, default=0)
    processed_items = db.Column(db.Integer, nullable=False, default=0)
    batch_size = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default="IN_PROGRESS")
    learned_supplier_initials = db.Column(db.JSON, nullable=False, default=dict)
    last_approved_batch_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "location_ids": list(self.location_ids or []),
            "cost_basis": self.cost_basis,
            "current_batch": self.current_batch,
            "total_batches": self.total_batches,
            "total_items": self.total_items,
            "processed_items": self.processed_items,
            "batch_size": self.batch_size,
            "status": self.status,
            "learned_supplier_initials": dict(self.learned_supplier_initials or {}),
            "last_approved_batch_id": self.last_approved_batch_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class ExtractionBatch(db.Model):
    """
    One reviewable window of an extraction session.

    Materialized the first time its batch number is produced and never
    recreated: (session_id, batch_number) is unique. product_ids records which
    products the operator saw, which is what approve_batch validates against.
    """
    __tablename__ = "extraction_batches"
    __table_args__ = (
        db.UniqueConstraint("session_id", "batch_number", name="uq_extraction_batches_session_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.String(64), db.ForeignKey("extraction_sessions.id"), nullable=False, index=True)
    batch_number = db.Column(db.Integer, nullable=False)
    location_ids = db.Column(db.JSON, nullable=False)
    product_ids = db.Column(db.JSON, nullable=False)

    total_products = db.Column(db.Integer, nullable=False, default=0)
    products_with_extraction = db.Column(db.Integer, nullable=False, default=0)
    products_requiring_manual_input = db.Column(db.Integer, nullable=False, default=0)
    approved_count = db.Column(db.Integer, nullable=False, default=0)

    # EXTRACTED, APPROVED, REJECTED
    status = db.Column(db.String(16), nullable=False, default="EXTRACTED")

    extracted_at = db.Column(db.DateTime(timezone=True), nullable=False)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_by = db.Column(db.String(128), nullable=True)

    session = db.relationship("ExtractionSession", backref=db.backref("batches", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "batch_number": self.batch_number,
            "location_ids": list(self.location_ids or []),
            "product_ids": list(self.product_ids or []),
            "total_products": self.total_products,
            "products_with_extraction": self.products_with_extraction,
            "products_requiring_manual_input": self.products_requiring_manual_input,
            "approved_count": self.approved_count,
            "status": self.status,
            "extracted_at": to_utc_z(self.extracted_at),
            "approved_at": to_utc_z(self.approved_at),
            "approved_by": self.approved_by,
        }

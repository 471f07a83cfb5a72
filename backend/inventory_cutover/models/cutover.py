from __future__ import annotations

import uuid

from ..extensions import db
from inventory_cutover.time_utils import to_utc_z


def _new_id() -> str:
    return str(uuid.uuid4())


class Cutover(db.Model):
    """
    One migration attempt from the POS into the owned ledger.

    LIFECYCLE:
    1. PENDING: Created, no batch written yet
    2. IN_PROGRESS: At least one batch committed, more remain
    3. COMPLETED: Final batch committed, locks installed (immutable from here)
    4. FAILED: A batch transaction failed; partial result preserved, reset to replay

    RESUMPTION:
    - current_batch counts COMPLETED batches (0 before the first one)
    - resume_state is the typed resumption record (see
      migration_service.ResumptionState); continue_cutover rebuilds its input
      from it and nothing else
    - approval_id names the CostApproval scope (usually the extraction session)
    """
    __tablename__ = "cutovers"
    __table_args__ = (
        db.Index("ix_cutovers_status", "status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_new_id)

    cutover_date = db.Column(db.DateTime(timezone=True), nullable=False)
    cost_basis = db.Column(db.String(32), nullable=False)

    owner_approved = db.Column(db.Boolean, nullable=False, default=False)
    owner_approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    owner_approved_by = db.Column(db.String(128), nullable=True)

    approval_id = db.Column(db.String(64), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default="PENDING")

    batch_size = db.Column(db.Integer, nullable=True)
    current_batch = db.Column(db.Integer, nullable=False, default=0)
    total_batches = db.Column(db.Integer, nullable=True)
    total_items = db.Column(db.Integer, nullable=True)
    processed_items = db.Column(db.Integer, nullable=False, default=0)

    result = db.Column(db.JSON, nullable=True)
    resume_state = db.Column(db.JSON, nullable=True)
    error_message = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cutover_date": to_utc_z(self.cutover_date),
            "cost_basis": self.cost_basis,
            "owner_approved": self.owner_approved,
            "owner_approved_at": to_utc_z(self.owner_approved_at),
            "owner_approved_by": self.owner_approved_by,
            "approval_id": self.approval_id,
            "status": self.status,
            "batch_size": self.batch_size,
            "current_batch": self.current_batch,
            "total_batches": self.total_batches,
            "total_items": self.total_items,
            "processed_items": self.processed_items,
            "result": self.result,
            "error_message": self.error_message,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "completed_at": to_utc_z(self.completed_at),
            "version_id": self.version_id,
        }


class CutoverLock(db.Model):
    """
    History lock for a location after a completed cutover.

    WHY: Once the ledger is seeded at cutover_date, any mutation dated before it
    would silently rewrite the opening balance. Other subsystems consult this
    table (via migration_service.validate_no_backdated_operation) and reject
    those writes.

    Created only when a cutover COMPLETES; never deleted by this service.
    """
    __tablename__ = "cutover_locks"
    __table_args__ = (
        db.UniqueConstraint("location_id", "cutover_date", name="uq_cutover_locks_location_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)
    cutover_id = db.Column(db.String(36), db.ForeignKey("cutovers.id"), nullable=False, index=True)
    cutover_date = db.Column(db.DateTime(timezone=True), nullable=False)
    is_locked = db.Column(db.Boolean, nullable=False, default=True)
    locked_at = db.Column(db.DateTime(timezone=True), nullable=False)
    locked_by = db.Column(db.String(128), nullable=True)

    location = db.relationship("Location", backref=db.backref("cutover_locks", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "location_id": self.location_id,
            "cutover_id": self.cutover_id,
            "cutover_date": to_utc_z(self.cutover_date),
            "is_locked": self.is_locked,
            "locked_at": to_utc_z(self.locked_at),
            "locked_by": self.locked_by,
        }


class CostApproval(db.Model):
    """
    Operator decision about one product's cost.

    KEY: (cutover_id, product_id) is unique. cutover_id is an approval scope id,
    not a FK: review approvals are written under the extraction session id and
    a cutover reads them through Cutover.approval_id.

    migration_status:
    - PENDING: reviewed/edited but not confirmed (or restored after a discard)
    - APPROVED: approved_cost_cents is authoritative for migration
    - SKIPPED: excluded from extraction windows and from the migration
    """
    __tablename__ = "cost_approvals"
    __table_args__ = (
        db.UniqueConstraint("cutover_id", "product_id", name="uq_cost_approvals_cutover_product"),
        db.Index("ix_cost_approvals_cutover_status", "cutover_id", "migration_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cutover_id = db.Column(db.String(64), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    approved_cost_cents = db.Column(db.Integer, nullable=True)
    # DESCRIPTION, MANUAL_INPUT, EXTRACTED, ...
    source = db.Column(db.String(32), nullable=False, default="MANUAL_INPUT")
    migration_status = db.Column(db.String(16), nullable=False, default="PENDING")
    notes = db.Column(db.Text, nullable=True)

    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True)
    selling_price_cents = db.Column(db.Integer, nullable=True)

    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_by = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cutover_id": self.cutover_id,
            "product_id": self.product_id,
            "approved_cost_cents": self.approved_cost_cents,
            "source": self.source,
            "migration_status": self.migration_status,
            "notes": self.notes,
            "supplier_id": self.supplier_id,
            "selling_price_cents": self.selling_price_cents,
            "approved_at": to_utc_z(self.approved_at),
            "approved_by": self.approved_by,
        }

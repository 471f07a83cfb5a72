from __future__ import annotations

from ..extensions import db
from inventory_cutover.time_utils import to_utc_z


OPENING_BALANCE = "OPENING_BALANCE"


class InventoryLot(db.Model):
    """
    Cost-lot batch of on-hand stock.

    WHY: The owned ledger tracks cost per lot, not a single running average, so
    every receipt (and the cutover seed) is its own row.

    OPENING BALANCE INVARIANT:
    Exactly one row with source = OPENING_BALANCE per (product_id, location_id).
    Enforced by a partial unique index so other sources (RECEIVE, ADJUSTMENT, ...)
    can still repeat. Batch replay relies on this to stay idempotent.

    quantity is never negative; negative POS counts are clamped to 0 on import.
    """
    __tablename__ = "inventory_lots"
    __table_args__ = (
        db.Index(
            "uq_inventory_lots_opening_balance",
            "product_id",
            "location_id",
            unique=True,
            sqlite_where=db.text("source = 'OPENING_BALANCE'"),
            postgresql_where=db.text("source = 'OPENING_BALANCE'"),
        ),
        db.Index("ix_inventory_lots_product_location", "product_id", "location_id"),
        db.CheckConstraint("quantity >= 0", name="ck_inventory_lots_quantity_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False)
    received_at = db.Column(db.DateTime(timezone=True), nullable=False)

    # OPENING_BALANCE, RECEIVE, ADJUSTMENT
    source = db.Column(db.String(32), nullable=False, index=True)
    # Which cost basis produced unit_cost_cents (MANUAL_INPUT, DESCRIPTION, ...)
    cost_source = db.Column(db.String(32), nullable=True)

    cutover_id = db.Column(db.String(36), db.ForeignKey("cutovers.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("inventory_lots", lazy=True))
    location = db.relationship("Location", backref=db.backref("inventory_lots", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "location_id": self.location_id,
            "quantity": self.quantity,
            "unit_cost_cents": self.unit_cost_cents,
            "received_at": to_utc_z(self.received_at),
            "source": self.source,
            "cost_source": self.cost_source,
            "cutover_id": self.cutover_id,
            "created_at": to_utc_z(self.created_at),
        }


class Supplier(db.Model):
    """
    Supplier recovered from cost notes.

    normalized_name (lowercase, no accents, collapsed whitespace) is the identity
    used for find-or-create so "Compra  Center" and "compra center" are one row.
    initials holds the short labels operators write in notes ("L", "Rx").
    """
    __tablename__ = "suppliers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    normalized_name = db.Column(db.String(128), nullable=False, unique=True, index=True)
    initials = db.Column(db.JSON, nullable=False, default=list)
    contact_info = db.Column(db.String(255), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "normalized_name": self.normalized_name,
            "initials": list(self.initials or []),
            "contact_info": self.contact_info,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class SupplierProduct(db.Model):
    """Latest known cost of a product from one supplier (feeds AVERAGE_COST)."""
    __tablename__ = "supplier_products"
    __table_args__ = (
        db.UniqueConstraint("supplier_id", "product_id", name="uq_supplier_products_supplier_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    cost_cents = db.Column(db.Integer, nullable=False)
    is_preferred = db.Column(db.Boolean, nullable=False, default=False)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    supplier = db.relationship("Supplier", backref=db.backref("products", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "supplier_id": self.supplier_id,
            "product_id": self.product_id,
            "cost_cents": self.cost_cents,
            "is_preferred": self.is_preferred,
            "updated_at": to_utc_z(self.updated_at),
        }


class SupplierCostHistory(db.Model):
    """
    Append-only cost observations per (product, supplier).

    Exactly one row per pair has is_current = True; recording a new cost flips
    the previous current row off.
    """
    __tablename__ = "supplier_cost_history"
    __table_args__ = (
        db.Index("ix_supplier_cost_history_product_supplier", "product_id", "supplier_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False)
    effective_at = db.Column(db.DateTime(timezone=True), nullable=False)
    # EXTRACTED, MANUAL, MIGRATION
    source = db.Column(db.String(32), nullable=False)
    is_current = db.Column(db.Boolean, nullable=False, default=True)
    notes = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "supplier_id": self.supplier_id,
            "unit_cost_cents": self.unit_cost_cents,
            "effective_at": to_utc_z(self.effective_at),
            "source": self.source,
            "is_current": self.is_current,
            "notes": self.notes,
        }

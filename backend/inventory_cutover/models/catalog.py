from __future__ import annotations

from ..extensions import db
from inventory_cutover.time_utils import to_utc_z


class Location(db.Model):
    """
    A physical selling location that also exists on the external POS.

    external_location_id links the row to the POS location whose stock is read
    during extraction and cutover. A location without it cannot be migrated.
    """
    __tablename__ = "locations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    external_location_id = db.Column(db.String(64), nullable=True, unique=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Location id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "external_location_id": self.external_location_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Product master data.

    EXTERNAL METADATA CACHE:
    The POS catalog is the source of names/descriptions during cutover review.
    Cost notes live in the description, so extraction needs it locally.
    - external_name / external_description / external_image_url / external_variation_name
      mirror the catalog item
    - external_synced_at is when they were last refreshed; rows older than the
      staleness window are re-fetched opportunistically
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=True, unique=True)
    name = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    external_name = db.Column(db.String(255), nullable=True)
    external_description = db.Column(db.Text, nullable=True)
    external_image_url = db.Column(db.String(512), nullable=True)
    external_variation_name = db.Column(db.String(255), nullable=True)
    external_synced_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "is_active": self.is_active,
            "external_name": self.external_name,
            "external_description": self.external_description,
            "external_image_url": self.external_image_url,
            "external_variation_name": self.external_variation_name,
            "external_synced_at": to_utc_z(self.external_synced_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class CatalogMapping(db.Model):
    """
    External catalog variation -> internal product.

    PRECEDENCE:
    - location_id set: mapping applies only at that location
    - location_id NULL: global mapping, used when no location row exists
    A location-scoped row always wins over the global row for the same
    external_variation_id.

    price_cents is the cached selling price from the last catalog sync; it feeds
    the price guard during cost review.
    """
    __tablename__ = "catalog_mappings"
    __table_args__ = (
        db.UniqueConstraint("external_variation_id", "location_id", name="uq_catalog_mapping_variation_location"),
        db.Index("ix_catalog_mapping_product", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    external_variation_id = db.Column(db.String(64), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True, index=True)

    # No FK: the mapper must be able to detect (and report) orphaned mappings.
    product_id = db.Column(db.Integer, nullable=False)

    price_cents = db.Column(db.Integer, nullable=True)
    price_currency = db.Column(db.String(3), nullable=True)
    synced_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    location = db.relationship("Location", backref=db.backref("catalog_mappings", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "external_variation_id": self.external_variation_id,
            "location_id": self.location_id,
            "product_id": self.product_id,
            "price_cents": self.price_cents,
            "price_currency": self.price_currency,
            "synced_at": to_utc_z(self.synced_at),
            "created_at": to_utc_z(self.created_at),
        }

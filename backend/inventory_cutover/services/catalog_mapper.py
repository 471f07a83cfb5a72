# Overview: Service-layer operations for catalog mappings; resolves external variations to products.

"""
Catalog Mapper

PRECEDENCE: a mapping scoped to the location beats the global (location_id
NULL) mapping for the same external id.

STRICT vs LENIENT:
- resolve() is strict: unmapped -> UnmappedProductError, mapped to a missing
  product -> DataIntegrityError.
- batch_resolve() is lenient: unmapped ids and ids whose product is missing are
  dropped from the returned map. Bulk extraction/migration report the gaps as
  per-item errors and keep going instead of failing the whole batch.
Callers choose the form knowingly; the two are not interchangeable.
"""

from __future__ import annotations

from typing import Iterable

from sqlalchemy import or_

from ..errors import DataIntegrityError, UnmappedProductError
from ..extensions import db
from ..models import CatalogMapping, Product


def resolve(external_id: str, location_id: int | None) -> int:
    """Resolve one external variation id at a location. Raises on any gap."""
    mapping = None
    if location_id is not None:
        mapping = (
            db.session.query(CatalogMapping)
            .filter_by(external_variation_id=external_id, location_id=location_id)
            .first()
        )
    if mapping is None:
        mapping = (
            db.session.query(CatalogMapping)
            .filter(CatalogMapping.external_variation_id == external_id)
            .filter(CatalogMapping.location_id.is_(None))
            .first()
        )
    if mapping is None:
        raise UnmappedProductError(
            f"No product mapping for external item {external_id}",
            user_message="This POS item is not linked to a product yet.",
            external_id=external_id,
            location_id=location_id,
        )

    if db.session.get(Product, mapping.product_id) is None:
        raise DataIntegrityError(
            f"Mapping {mapping.id} points at missing product {mapping.product_id}",
            external_id=external_id,
            location_id=location_id,
            product_id=mapping.product_id,
        )
    return mapping.product_id


def batch_resolve(external_ids: Iterable[str], location_id: int | None) -> dict[str, int]:
    """
    Resolve many external ids in one read.

    Returns only the ids that resolve to an existing product; see module
    docstring for why gaps are dropped rather than raised.
    """
    ids = list(dict.fromkeys(external_ids))
    if not ids:
        return {}

    query = db.session.query(CatalogMapping).filter(CatalogMapping.external_variation_id.in_(ids))
    if location_id is None:
        query = query.filter(CatalogMapping.location_id.is_(None))
    else:
        query = query.filter(
            or_(CatalogMapping.location_id == location_id, CatalogMapping.location_id.is_(None))
        )

    scoped: dict[str, int] = {}
    global_: dict[str, int] = {}
    for mapping in query.all():
        if mapping.location_id is None:
            global_[mapping.external_variation_id] = mapping.product_id
        else:
            scoped[mapping.external_variation_id] = mapping.product_id

    candidates = {ext_id: scoped.get(ext_id, global_.get(ext_id)) for ext_id in ids}
    candidate_products = {pid for pid in candidates.values() if pid is not None}
    existing = set()
    if candidate_products:
        existing = {
            pid for (pid,) in db.session.query(Product.id).filter(Product.id.in_(candidate_products)).all()
        }

    return {
        ext_id: pid
        for ext_id, pid in candidates.items()
        if pid is not None and pid in existing
    }


def find_selling_prices(product_ids: Iterable[int], location_id: int | None = None) -> dict[int, int]:
    """Lowest cached selling price (cents) per product, from mappings visible at the location."""
    ids = list(set(product_ids))
    if not ids:
        return {}
    query = (
        db.session.query(CatalogMapping.product_id, db.func.min(CatalogMapping.price_cents))
        .filter(CatalogMapping.product_id.in_(ids))
        .filter(CatalogMapping.price_cents.isnot(None))
    )
    if location_id is not None:
        query = query.filter(
            or_(CatalogMapping.location_id == location_id, CatalogMapping.location_id.is_(None))
        )
    return {pid: int(price) for pid, price in query.group_by(CatalogMapping.product_id).all()}

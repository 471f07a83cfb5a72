# Overview: Live inventory snapshots from the POS source, mapped to local products.

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Iterable

from flask import current_app

from ..errors import (
    ExternalSourceError,
    MigrationError,
    UnmappedProductError,
    catalog_fetch_failed,
    cost_fetch_failed,
    inventory_fetch_failed,
    location_not_connected,
    location_not_found,
)
from ..extensions import db
from ..models import Location, Product
from inventory_cutover.time_utils import utcnow
from .catalog_mapper import batch_resolve
from .concurrency import chunked, fan_out
from .pos_source import CatalogItem, PosSource


@dataclass(frozen=True)
class SnapshotItem:
    location_id: int
    external_id: str
    quantity: int
    # None when the catalog mapper could not resolve the external id
    product_id: int | None


def find_location_problems(location_ids: Iterable[int]) -> tuple[list[Location], list[MigrationError]]:
    """Load locations in request order; collect (not raise) every problem."""
    ids = list(dict.fromkeys(location_ids))
    rows = {loc.id: loc for loc in db.session.query(Location).filter(Location.id.in_(ids)).all()} if ids else {}

    locations: list[Location] = []
    problems: list[MigrationError] = []
    for location_id in ids:
        location = rows.get(location_id)
        if location is None:
            problems.append(location_not_found(location_id))
        elif not location.external_location_id:
            problems.append(location_not_connected(location_id))
        else:
            locations.append(location)
    return locations, problems


def load_locations(location_ids: Iterable[int]) -> list[Location]:
    locations, problems = find_location_problems(location_ids)
    if problems:
        raise problems[0]
    return locations


def fetch_snapshot(locations: list[Location], source: PosSource) -> list[SnapshotItem]:
    """
    Ordered snapshot: locations in the given order, items by external id.

    The POS item set is not stable between calls, so this is never persisted;
    the stable ordering is what makes batch windows reproducible.
    """
    items: list[SnapshotItem] = []
    for location in locations:
        try:
            counts = source.list_inventory(location.external_location_id)
        except ExternalSourceError as exc:
            raise inventory_fetch_failed(location.id, exc) from exc

        counts = sorted(counts, key=lambda c: c.external_id)
        resolved = batch_resolve([c.external_id for c in counts], location.id)
        for count in counts:
            items.append(
                SnapshotItem(
                    location_id=location.id,
                    external_id=count.external_id,
                    quantity=count.quantity,
                    product_id=resolved.get(count.external_id),
                )
            )
    return items


def unmapped_error(item: SnapshotItem, batch_number: int | None = None) -> dict:
    return UnmappedProductError(
        f"External item {item.external_id} at location {item.location_id} has no product mapping",
        user_message="This POS item is not linked to a product and was left out.",
        external_id=item.external_id,
        location_id=item.location_id,
        batch_number=batch_number,
    ).to_dict()


def load_products(product_ids: Iterable[int]) -> dict[int, Product]:
    ids = list(set(product_ids))
    if not ids:
        return {}
    return {p.id: p for p in db.session.query(Product).filter(Product.id.in_(ids)).all()}


def needs_metadata_refresh(product: Product, *, now=None) -> bool:
    if product.external_synced_at is None or not product.external_name:
        return True
    hours = int(current_app.config.get("METADATA_STALE_AFTER_HOURS", 24))
    synced_at = product.external_synced_at.replace(tzinfo=None)
    return synced_at < (now or utcnow()) - timedelta(hours=hours)


def fetch_catalog_metadata(external_ids: list[str], source: PosSource) -> tuple[dict[str, CatalogItem], list[dict]]:
    """
    Fetch catalog items concurrently in chunks.

    A failed chunk becomes a CATALOG_FETCH_FAILED warning; callers fall back to
    whatever metadata is already cached on the product.
    """
    if not external_ids:
        return {}, []
    chunk_size = int(current_app.config.get("CATALOG_FETCH_CHUNK_SIZE", 20))
    workers = int(current_app.config.get("CATALOG_FETCH_MAX_WORKERS", 4))

    outcome = fan_out(source.fetch_catalog_items, chunked(list(dict.fromkeys(external_ids)), chunk_size), max_workers=workers)

    items: dict[str, CatalogItem] = {}
    for found in outcome.results:
        items.update(found)
    warnings = []
    for chunk, exc in outcome.failures:
        current_app.logger.warning("Catalog fetch failed for %s item(s): %s", len(chunk), exc)
        warnings.append(catalog_fetch_failed(chunk, exc).to_dict())
    return items, warnings


def fetch_unit_costs(external_ids: list[str], source: PosSource) -> tuple[dict[str, Decimal | None], list[dict]]:
    """
    POS unit costs, looked up concurrently in chunks like the catalog fetch.

    Ids in a failed chunk are left out of the result (they become missing
    costs) and the chunk is reported as a COST_FETCH_FAILED warning.
    """
    if not external_ids:
        return {}, []
    chunk_size = int(current_app.config.get("CATALOG_FETCH_CHUNK_SIZE", 20))
    workers = int(current_app.config.get("CATALOG_FETCH_MAX_WORKERS", 4))

    def _lookup(chunk: list[str]) -> dict[str, Decimal | None]:
        return {external_id: source.fetch_unit_cost(external_id) for external_id in chunk}

    outcome = fan_out(_lookup, chunked(list(dict.fromkeys(external_ids)), chunk_size), max_workers=workers)

    costs: dict[str, Decimal | None] = {}
    for found in outcome.results:
        costs.update(found)
    warnings = []
    for chunk, exc in outcome.failures:
        current_app.logger.warning("POS cost lookup failed for %s item(s): %s", len(chunk), exc)
        warnings.append(cost_fetch_failed(chunk, exc).to_dict())
    return costs, warnings


def apply_catalog_metadata(product: Product, item: CatalogItem, *, synced_at=None) -> None:
    product.external_name = item.name
    product.external_description = item.description
    product.external_image_url = item.image_url
    product.external_variation_name = item.variation_name
    product.external_synced_at = synced_at or utcnow()

# Overview: Service-layer operations for suppliers; encapsulates business logic and database work.

"""
Supplier Service

WHY: Cost notes name suppliers loosely ("L", "Rx", "compra center",
"Compra Center"). Review turns those labels into real Supplier rows so
later cost history (and AVERAGE_COST) can aggregate per supplier.

DESIGN:
- Identity is the normalized name (accents stripped, lowercase, single spaces)
- Initials learned during review are stored on the supplier AND in the
  extraction session's learned map (session map wins when inferring)
- Cost history is append-only; is_current marks the latest per (product, supplier)
- Nothing here commits; callers own the transaction
"""

from __future__ import annotations

import re
import unicodedata
from typing import Iterable

from sqlalchemy import func

from ..errors import ValidationError
from ..extensions import db
from ..models import Supplier, SupplierCostHistory, SupplierProduct
from inventory_cutover.time_utils import utcnow


# Suggestion scores (policy, tuned by hand)
SCORE_EXACT = 100
SCORE_PREFIX = 80
SCORE_CONTAINS = 60
SCORE_WORD_OVERLAP_MAX = 40

# Cost changes smaller than this (cents) are not recorded as a new history row
COST_CHANGE_TOLERANCE_CENTS = 1


class SupplierValidationError(ValidationError):
    """Raised when supplier data fails validation."""


def normalize_supplier_name(name: str | None) -> str:
    if not name:
        return ""
    decomposed = unicodedata.normalize("NFKD", name)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch)).lower()
    cleaned = re.sub(r"[^a-z0-9\s]", " ", stripped)
    return re.sub(r"\s+", " ", cleaned).strip()


def find_or_create_supplier(*, name: str, initials: Iterable[str] | None = None) -> Supplier:
    """
    Return the supplier with this normalized name, creating it if needed.

    An inactive match is reactivated rather than duplicated.
    """
    if not name or not name.strip():
        raise SupplierValidationError("Supplier name is required", code="SUPPLIER_NAME_REQUIRED")
    normalized = normalize_supplier_name(name)
    if not normalized:
        raise SupplierValidationError(
            f"Supplier name {name!r} has no letters or digits",
            code="SUPPLIER_NAME_INVALID",
        )

    supplier = db.session.query(Supplier).filter_by(normalized_name=normalized).first()
    if supplier is None:
        supplier = Supplier(name=name.strip(), normalized_name=normalized, initials=[], is_active=True)
        db.session.add(supplier)
        db.session.flush()
    elif not supplier.is_active:
        supplier.is_active = True

    if initials:
        add_supplier_initials(supplier=supplier, initials=initials)
    return supplier


def add_supplier_initials(*, supplier: Supplier, initials: Iterable[str]) -> Supplier:
    current = list(supplier.initials or [])
    for initial in initials:
        initial = (initial or "").strip()
        if initial and initial.upper() not in (i.upper() for i in current):
            current.append(initial)
    # Reassign so the JSON column is flagged dirty.
    supplier.initials = current
    return supplier


def suggest_suppliers(term: str, *, limit: int = 5) -> list[dict]:
    """
    Rank active suppliers against a free-text label.

    Scores: exact 100, prefix 80, substring 60, else up to 40 by shared words.
    Initials matching the term exactly count as an exact match.
    """
    needle = normalize_supplier_name(term)
    if not needle:
        return []
    needle_words = set(needle.split())

    scored = []
    for supplier in db.session.query(Supplier).filter_by(is_active=True).all():
        name = supplier.normalized_name
        initials = {i.upper() for i in (supplier.initials or [])}
        if name == needle or needle.upper() in initials:
            score = SCORE_EXACT
        elif name.startswith(needle):
            score = SCORE_PREFIX
        elif needle in name:
            score = SCORE_CONTAINS
        else:
            overlap = needle_words & set(name.split())
            if not overlap:
                continue
            score = round(SCORE_WORD_OVERLAP_MAX * len(overlap) / max(len(needle_words), 1))
        scored.append({"id": supplier.id, "name": supplier.name, "score": score, "initials": list(supplier.initials or [])})

    scored.sort(key=lambda s: (-s["score"], s["name"].lower(), s["id"]))
    return scored[: max(0, int(limit))]


def infer_supplier_name(initial: str, learned: dict[str, list[str]] | None = None) -> str | None:
    """
    Resolve a short label (e.g. "CC") to a supplier name.

    The session's learned map is consulted first, then initials stored on
    active suppliers. Matching ignores case.
    """
    key = (initial or "").strip().upper()
    if not key:
        return None
    for supplier_name, initials in sorted((learned or {}).items()):
        if key in {i.upper() for i in initials or []}:
            return supplier_name
    for supplier in db.session.query(Supplier).filter_by(is_active=True).order_by(Supplier.id.asc()).all():
        if key in {i.upper() for i in supplier.initials or []}:
            return supplier.name
    return None


def record_supplier_cost(
    *,
    supplier_id: int,
    product_id: int,
    unit_cost_cents: int,
    source: str,
    effective_at=None,
    notes: str | None = None,
) -> SupplierCostHistory | None:
    """
    Record a cost observation and keep SupplierProduct.cost_cents current.

    Returns None when the current cost already matches (within tolerance).
    """
    if unit_cost_cents < 0:
        raise SupplierValidationError("Cost cannot be negative", code="INVALID_COST", product_id=product_id)

    link = db.session.query(SupplierProduct).filter_by(supplier_id=supplier_id, product_id=product_id).first()
    if link is None:
        db.session.add(SupplierProduct(supplier_id=supplier_id, product_id=product_id, cost_cents=unit_cost_cents))
    else:
        link.cost_cents = unit_cost_cents

    current = (
        db.session.query(SupplierCostHistory)
        .filter_by(supplier_id=supplier_id, product_id=product_id, is_current=True)
        .first()
    )
    if current is not None and abs(current.unit_cost_cents - unit_cost_cents) < COST_CHANGE_TOLERANCE_CENTS:
        return None
    if current is not None:
        current.is_current = False

    entry = SupplierCostHistory(
        supplier_id=supplier_id,
        product_id=product_id,
        unit_cost_cents=unit_cost_cents,
        effective_at=effective_at or utcnow(),
        source=source,
        is_current=True,
        notes=notes,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def set_preferred_supplier(*, product_id: int, supplier_id: int) -> SupplierProduct:
    link = db.session.query(SupplierProduct).filter_by(supplier_id=supplier_id, product_id=product_id).first()
    if link is None:
        raise SupplierValidationError(
            f"Supplier {supplier_id} has no recorded cost for product {product_id}",
            code="SUPPLIER_PRODUCT_NOT_FOUND",
            product_id=product_id,
        )
    (
        db.session.query(SupplierProduct)
        .filter(SupplierProduct.product_id == product_id)
        .filter(SupplierProduct.id != link.id)
        .update({SupplierProduct.is_preferred: False}, synchronize_session="fetch")
    )
    link.is_preferred = True
    return link


def average_supplier_costs(product_ids: Iterable[int]) -> dict[int, int]:
    """Mean of known supplier costs per product, in cents (half up)."""
    ids = list(set(product_ids))
    if not ids:
        return {}
    rows = (
        db.session.query(
            SupplierProduct.product_id,
            func.sum(SupplierProduct.cost_cents),
            func.count(SupplierProduct.id),
        )
        .filter(SupplierProduct.product_id.in_(ids))
        .group_by(SupplierProduct.product_id)
        .all()
    )
    return {
        int(product_id): (int(total) * 2 + int(count)) // (2 * int(count))
        for product_id, total, count in rows
        if count
    }

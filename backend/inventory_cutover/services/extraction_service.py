# Overview: Service-layer operations for cost extraction sessions; encapsulates business logic and database work.

"""
Extraction Session Manager

WHY: An operator reviews historical costs for thousands of items. The review
must be chunked, resumable after any failure, and must never show a batch
that is already fully decided.

STATE MACHINE (ExtractionSession.status):
    IN_PROGRESS -> COMPLETED   (cursor reached the last window)
    IN_PROGRESS -> CANCELLED   (cancel_extraction_session)

EACH CALL:
1. Re-fetch the live snapshot (never persisted) and map it to products
2. Drop items whose product is SKIPPED in this session's approval scope
3. Pull the cursor back to the window holding the first outstanding item
   (discards shift later items into earlier windows), then slice
   [(current_batch-1)*batch_size, current_batch*batch_size)
4. Auto-advance past windows where every item is APPROVED/SKIPPED
   (bounded loop, at most EXTRACTION_AUTO_ADVANCE_LIMIT windows per call)
5. Deduplicate by product, reuse approvals or run extract_costs()
6. Materialize the ExtractionBatch once per (session, batch_number)

APPROVAL SCOPE: CostApproval.cutover_id == ExtractionSession.id for every
approval made during review. A cutover later reads them via approval_id.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass
from typing import Any

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import (
    InvalidStateError,
    NotFoundError,
    ValidationError,
    session_invalid_state,
    session_not_found,
)
from ..extensions import db
from ..models import CostApproval, ExtractionBatch, ExtractionSession, Product
from ..money import from_cents, to_cents, to_decimal
from inventory_cutover.time_utils import utcnow
from .catalog_mapper import find_selling_prices
from .concurrency import lock_for_update, run_in_transaction
from .cost_extraction import DEFAULT_SUPPLIER, extract_costs
from .pos_source import PosSource
from .snapshot import (
    SnapshotItem,
    apply_catalog_metadata,
    fetch_catalog_metadata,
    fetch_snapshot,
    load_locations,
    load_products,
    needs_metadata_refresh,
    unmapped_error,
)
from . import supplier_service


PENDING = "PENDING"
APPROVED = "APPROVED"
SKIPPED = "SKIPPED"
RESOLVED_STATUSES = (APPROVED, SKIPPED)

SESSION_IN_PROGRESS = "IN_PROGRESS"
SESSION_COMPLETED = "COMPLETED"
SESSION_CANCELLED = "CANCELLED"

BATCH_EXTRACTED = "EXTRACTED"
BATCH_APPROVED = "APPROVED"
BATCH_REJECTED = "REJECTED"

EXTRACTION_COST_BASIS = "DESCRIPTION"
SUPPLIER_SUGGESTION_LIMIT = 3


@dataclass
class _Cursor:
    batch_size: int
    current_batch: int
    total_items: int
    total_batches: int


def _total_batches(total_items: int, batch_size: int) -> int:
    return math.ceil(total_items / batch_size) if total_items else 0


def _window(items: list[SnapshotItem], cursor: _Cursor) -> list[SnapshotItem]:
    start = (cursor.current_batch - 1) * cursor.batch_size
    return items[start:start + cursor.batch_size]


def _is_resolved(item: SnapshotItem, approvals: dict[int, CostApproval]) -> bool:
    if item.product_id is None:
        return False
    approval = approvals.get(item.product_id)
    return approval is not None and approval.migration_status in RESOLVED_STATUSES


def _validate_batch_size(batch_size: Any) -> int | None:
    if batch_size is None:
        return None
    if isinstance(batch_size, bool) or not isinstance(batch_size, int) or batch_size < 1:
        raise ValidationError(
            f"batch_size must be a positive integer, got {batch_size!r}",
            code="INVALID_BATCH_SIZE",
        )
    return batch_size


def get_approvals_by_product(scope_id: str) -> dict[int, CostApproval]:
    rows = db.session.query(CostApproval).filter_by(cutover_id=scope_id).all()
    return {row.product_id: row for row in rows}


def _first_outstanding(active: list[SnapshotItem], approvals: dict[int, CostApproval]) -> int:
    """Index of the first mapped item neither approved nor skipped; len(active) when none is left."""
    return next(
        (
            index for index, item in enumerate(active)
            if item.product_id is not None and not _is_resolved(item, approvals)
        ),
        len(active),
    )


def _rebatch(cursor: _Cursor, active: list[SnapshotItem], approvals: dict[int, CostApproval], new_size: int) -> None:
    """
    Change batch size without revisiting finished work.

    The cursor restarts at the window (in the new size) holding the first item
    that is still outstanding; the batch count covers the remaining items
    beyond the finished prefix.
    """
    first_outstanding = _first_outstanding(active, approvals)
    cursor.batch_size = new_size
    cursor.total_items = len(active)
    cursor.total_batches = _total_batches(len(active), new_size)
    cursor.current_batch = max(1, min(first_outstanding // new_size + 1, max(cursor.total_batches, 1)))


def _enrich_entries(
    entries: list[dict],
    learned: dict[str, list[str]],
    suggestion_cache: dict[str, list[dict]],
) -> list[dict]:
    for entry in entries:
        label = entry["supplier"]
        inferred = None
        suggestions: list[dict] = []
        if label != DEFAULT_SUPPLIER:
            inferred = supplier_service.infer_supplier_name(label, learned)
            term = inferred or label
            if term not in suggestion_cache:
                suggestion_cache[term] = supplier_service.suggest_suppliers(term, limit=SUPPLIER_SUGGESTION_LIMIT)
            suggestions = suggestion_cache[term]
        entry["inferred_supplier"] = inferred
        entry["supplier_suggestions"] = suggestions
        entry["supplier_id"] = (
            suggestions[0]["id"]
            if suggestions and suggestions[0]["score"] == supplier_service.SCORE_EXACT
            else None
        )
    return entries


def price_guard(selected_cost_cents: int | None, selling_price_cents: int | None) -> dict[str, Any]:
    """Flag costs that meet or exceed the known selling price."""
    has_price = selling_price_cents is not None
    too_high = bool(has_price and selected_cost_cents is not None and selected_cost_cents >= selling_price_cents)
    guard = {
        "has_selling_price": has_price,
        "min_selling_price_cents": selling_price_cents,
        "selected_cost_cents": selected_cost_cents,
        "is_cost_too_high": too_high,
        "margin_cents": (
            selling_price_cents - selected_cost_cents
            if has_price and selected_cost_cents is not None
            else None
        ),
        "message": None,
    }
    if too_high:
        guard["message"] = "Cost is at or above the selling price."
    return guard


def _build_item(
    item: SnapshotItem,
    product: Product,
    approval: CostApproval | None,
    catalog_item,
    selling_price_cents: int | None,
    learned: dict[str, list[str]],
    suggestion_cache: dict[str, list[dict]],
) -> dict[str, Any]:
    name = product.external_name or product.name
    description = product.external_description
    image_url = product.external_image_url
    if catalog_item is not None:
        name = catalog_item.display_name
        description = catalog_item.description
        image_url = catalog_item.image_url
        if selling_price_cents is None:
            selling_price_cents = catalog_item.price_cents

    data: dict[str, Any] = {
        "product_id": product.id,
        "external_id": item.external_id,
        "location_id": item.location_id,
        "quantity": item.quantity,
        "product_name": name,
        "description": description,
        "image_url": image_url,
        "approval_status": approval.migration_status if approval else None,
        "is_already_approved": bool(approval and approval.migration_status == APPROVED),
    }

    if approval is not None and approval.approved_cost_cents is not None and approval.migration_status != SKIPPED:
        selected_cents = approval.approved_cost_cents
        data.update(
            entries=[],
            selected_cost=float(from_cents(selected_cents)),
            selected_cost_cents=selected_cents,
            requires_manual_review=approval.migration_status != APPROVED,
            errors=[],
            cost_source=approval.source,
        )
    else:
        result = extract_costs(name, description).to_dict()
        selected_cents = result["selected_cost_cents"]
        data.update(
            entries=_enrich_entries(result["entries"], learned, suggestion_cache),
            selected_cost=result["selected_cost"],
            selected_cost_cents=selected_cents,
            requires_manual_review=result["requires_manual_review"],
            errors=result["errors"],
            cost_source=EXTRACTION_COST_BASIS,
        )

    data["price_guard"] = price_guard(selected_cents, selling_price_cents)
    return data


def _materialize_batch(
    *,
    session_id: str,
    batch_number: int,
    location_ids: list[int],
    items: list[dict],
) -> ExtractionBatch:
    """
    Create-if-absent per (session, batch_number); a lost race re-reads the winner.

    A batch whose window changed (batch size change, discarded items, live
    snapshot drift) is refreshed in place and reopened, even after approval,
    so approve_batch validates against what the operator is looking at. The
    decisions themselves live on CostApproval and are not touched.
    """
    counts = {
        "product_ids": [i["product_id"] for i in items],
        "total_products": len(items),
        "products_with_extraction": sum(1 for i in items if i["entries"]),
        "products_requiring_manual_input": sum(
            1 for i in items if i["requires_manual_review"] and not i["is_already_approved"]
        ),
        "approved_count": sum(1 for i in items if i["is_already_approved"]),
    }

    existing = db.session.query(ExtractionBatch).filter_by(session_id=session_id, batch_number=batch_number).first()
    if existing is not None:
        if existing.product_ids != counts["product_ids"] or existing.status == BATCH_REJECTED:
            for key, value in counts.items():
                setattr(existing, key, value)
            existing.status = BATCH_EXTRACTED
            existing.extracted_at = utcnow()
        return existing

    batch = ExtractionBatch(
        session_id=session_id,
        batch_number=batch_number,
        location_ids=location_ids,
        status=BATCH_EXTRACTED,
        extracted_at=utcnow(),
        **counts,
    )
    nested = db.session.begin_nested()
    try:
        db.session.add(batch)
        db.session.flush()
        nested.commit()
        return batch
    except IntegrityError:
        nested.rollback()
        return (
            db.session.query(ExtractionBatch)
            .filter_by(session_id=session_id, batch_number=batch_number)
            .one()
        )


def start_or_resume_extraction(
    *,
    location_ids: list[int],
    source: PosSource,
    cost_basis: str = EXTRACTION_COST_BASIS,
    batch_size: int | None = None,
    session_id: str | None = None,
) -> dict[str, Any]:
    """
    Produce the next reviewable batch for a session (creating it on first use).

    A session's location set is fixed at creation; on resume the persisted
    location_ids are used.
    """
    if cost_basis != EXTRACTION_COST_BASIS:
        raise ValidationError(
            f"Cost extraction only supports the {EXTRACTION_COST_BASIS} cost basis, got {cost_basis!r}",
            code="INVALID_COST_BASIS",
        )
    batch_size = _validate_batch_size(batch_size)

    session = db.session.get(ExtractionSession, session_id) if session_id else None
    if session is not None:
        if session.status == SESSION_CANCELLED:
            raise session_invalid_state(session.id, session.status)
        location_ids = list(session.location_ids)
    elif not location_ids:
        raise ValidationError("At least one location is required", code="LOCATIONS_REQUIRED")

    scope_id = session.id if session is not None else (session_id or str(uuid.uuid4()))
    locations = load_locations(location_ids)
    snapshot = fetch_snapshot(locations, source)
    approvals = get_approvals_by_product(scope_id)

    active = [
        item for item in snapshot
        if item.product_id is None
        or approvals.get(item.product_id) is None
        or approvals[item.product_id].migration_status != SKIPPED
    ]

    if session is None:
        size = batch_size or max(len(active), 1)
        cursor = _Cursor(size, 1, len(active), _total_batches(len(active), size))
        learned: dict[str, list[str]] = {}
    else:
        cursor = _Cursor(session.batch_size, session.current_batch, session.total_items, session.total_batches)
        learned = dict(session.learned_supplier_initials or {})
        if batch_size is not None and batch_size != session.batch_size:
            _rebatch(cursor, active, approvals, batch_size)
        else:
            cursor.total_items = len(active)
            cursor.total_batches = _total_batches(len(active), cursor.batch_size)
            # The stored cursor only moves forward; an item that slid into an
            # already approved window is picked up again here.
            earliest = _first_outstanding(active, approvals) // cursor.batch_size + 1
            cursor.current_batch = max(1, min(cursor.current_batch, earliest))

    limit = int(current_app.config.get("EXTRACTION_AUTO_ADVANCE_LIMIT", 100))
    warnings: list[dict] = []
    advanced = 0
    window = _window(active, cursor)
    while cursor.current_batch <= cursor.total_batches and all(_is_resolved(i, approvals) for i in window):
        if advanced >= limit:
            warnings.append({
                "code": "AUTO_ADVANCE_LIMIT_REACHED",
                "message": f"Skipped {advanced} fully reviewed batches; call again to continue.",
            })
            break
        cursor.current_batch += 1
        advanced += 1
        window = _window(active, cursor)

    exhausted = cursor.current_batch > cursor.total_batches
    if exhausted:
        cursor.current_batch = max(cursor.total_batches, 1)

    # Deduplicate: one representative row per product for metadata/extraction.
    errors: list[dict] = []
    representatives: dict[int, SnapshotItem] = {}
    if not exhausted:
        for item in window:
            if item.product_id is None:
                errors.append(unmapped_error(item, cursor.current_batch))
            elif item.product_id not in representatives:
                representatives[item.product_id] = item

    products = load_products(representatives)
    stale = [pid for pid, product in products.items() if needs_metadata_refresh(product)]
    catalog, fetch_warnings = fetch_catalog_metadata([representatives[pid].external_id for pid in stale], source)
    warnings.extend(fetch_warnings)
    catalog_by_product = {
        pid: catalog[representatives[pid].external_id]
        for pid in stale
        if representatives[pid].external_id in catalog
    }

    selling_prices = find_selling_prices(products.keys())
    suggestion_cache: dict[str, list[dict]] = {}
    items = [
        _build_item(
            representatives[pid],
            products[pid],
            approvals.get(pid),
            catalog_by_product.get(pid),
            selling_prices.get(pid),
            learned,
            suggestion_cache,
        )
        for pid in representatives
        if pid in products
    ]

    def _persist():
        row = db.session.get(ExtractionSession, scope_id)
        if row is None:
            row = ExtractionSession(
                id=scope_id,
                location_ids=[loc.id for loc in locations],
                cost_basis=cost_basis,
                learned_supplier_initials={},
            )
            db.session.add(row)
        row.batch_size = cursor.batch_size
        row.current_batch = cursor.current_batch
        row.total_items = cursor.total_items
        row.total_batches = cursor.total_batches
        row.processed_items = (
            cursor.total_items if exhausted else min(cursor.current_batch * cursor.batch_size, cursor.total_items)
        )
        row.status = SESSION_COMPLETED if exhausted or cursor.current_batch >= cursor.total_batches else SESSION_IN_PROGRESS
        db.session.flush()

        batch = None
        if not exhausted:
            batch = _materialize_batch(
                session_id=row.id,
                batch_number=cursor.current_batch,
                location_ids=list(row.location_ids),
                items=items,
            )
        for pid, catalog_item in catalog_by_product.items():
            apply_catalog_metadata(products[pid], catalog_item)
        return row, batch

    session, batch = run_in_transaction(_persist)

    is_complete = session.status == SESSION_COMPLETED
    return {
        "session_id": session.id,
        "batch_id": batch.id if batch else None,
        "batch_number": batch.batch_number if batch else None,
        "items": items,
        "total_products": len(items),
        "products_with_extraction": sum(1 for i in items if i["entries"]),
        "products_requiring_manual_input": sum(
            1 for i in items if i["requires_manual_review"] and not i["is_already_approved"]
        ),
        "current_batch": session.current_batch,
        "total_batches": session.total_batches,
        "total_items": session.total_items,
        "processed_items": session.processed_items,
        "batch_size": session.batch_size,
        "auto_advanced": advanced,
        "is_complete": is_complete,
        "can_continue": not is_complete,
        "errors": errors,
        "warnings": warnings,
    }


def _get_session(session_id: str) -> ExtractionSession:
    session = db.session.get(ExtractionSession, session_id)
    if session is None:
        raise session_not_found(session_id)
    return session


def get_extraction_session(*, session_id: str) -> dict[str, Any]:
    session = _get_session(session_id)
    batches = (
        db.session.query(ExtractionBatch)
        .filter_by(session_id=session.id)
        .order_by(ExtractionBatch.batch_number.asc())
        .all()
    )
    data = session.to_dict()
    data["batches"] = [b.to_dict() for b in batches]
    return data


def cancel_extraction_session(*, session_id: str) -> dict[str, Any]:
    session = _get_session(session_id)
    if session.status == SESSION_CANCELLED:
        return session.to_dict()
    if session.status == SESSION_COMPLETED:
        raise session_invalid_state(session.id, session.status)

    def _write():
        session.status = SESSION_CANCELLED
        return session.to_dict()

    return run_in_transaction(_write)


def _get_approval(scope_id: str, product_id: int) -> CostApproval | None:
    return db.session.query(CostApproval).filter_by(cutover_id=scope_id, product_id=product_id).first()


def upsert_cost_approval(*, scope_id: str, product_id: int, **fields: Any) -> CostApproval:
    """
    Insert or update the single CostApproval for (scope_id, product_id).

    A concurrent insert of the same key loses to the existing row, which is
    then updated instead.
    """
    approval = _get_approval(scope_id, product_id)
    if approval is None:
        nested = db.session.begin_nested()
        try:
            approval = CostApproval(cutover_id=scope_id, product_id=product_id, **fields)
            db.session.add(approval)
            db.session.flush()
            nested.commit()
            return approval
        except IntegrityError:
            nested.rollback()
            approval = _get_approval(scope_id, product_id)
            if approval is None:
                raise
    for key, value in fields.items():
        setattr(approval, key, value)
    return approval


def _parse_cost_cents(value: Any, *, product_id: int | None = None) -> int:
    try:
        cents = to_cents(to_decimal(value))
    except ValueError as exc:
        raise ValidationError(str(exc), code="INVALID_COST", product_id=product_id) from exc
    if cents < 0:
        raise ValidationError("Cost cannot be negative", code="INVALID_COST", product_id=product_id)
    return cents


def _require_product(product_id: Any) -> int:
    if isinstance(product_id, bool) or not isinstance(product_id, int):
        raise ValidationError(f"product_id must be an integer, got {product_id!r}", code="INVALID_PRODUCT_ID")
    if db.session.get(Product, product_id) is None:
        raise NotFoundError(f"Product {product_id} not found", code="PRODUCT_NOT_FOUND", product_id=product_id)
    return product_id


@dataclass
class _ApprovalInput:
    product_id: int
    cost_cents: int
    source: str
    notes: str | None
    supplier_name: str | None
    is_preferred: bool


def _parse_batch_approvals(batch: ExtractionBatch, approvals: list[dict]) -> list[_ApprovalInput]:
    if not isinstance(approvals, list):
        raise ValidationError("approvals must be a list", code="INVALID_APPROVALS")
    allowed = set(batch.product_ids or [])
    parsed = []
    for raw in approvals:
        if not isinstance(raw, dict):
            raise ValidationError("Each approval must be an object", code="INVALID_APPROVALS")
        product_id = raw.get("product_id")
        if product_id not in allowed:
            raise ValidationError(
                f"Product {product_id!r} is not part of batch {batch.batch_number}",
                code="PRODUCT_NOT_IN_BATCH",
                batch_number=batch.batch_number,
            )
        parsed.append(
            _ApprovalInput(
                product_id=product_id,
                cost_cents=_parse_cost_cents(raw.get("cost"), product_id=product_id),
                source=raw.get("source") or EXTRACTION_COST_BASIS,
                notes=raw.get("notes"),
                supplier_name=(raw.get("supplier_name") or "").strip() or None,
                is_preferred=bool(raw.get("is_preferred")),
            )
        )
    return parsed


def approve_batch(
    *,
    batch_id: int,
    approvals: list[dict],
    supplier_initials_updates: list[dict] | None = None,
    approved_by: str | None = None,
) -> dict[str, Any]:
    """
    Approve a reviewed batch as a whole.

    approvals: [{product_id, cost, source?, notes?, supplier_name?, is_preferred?}]
    supplier_initials_updates: [{supplier_name, initials: [..]}]
    """
    batch = db.session.get(ExtractionBatch, batch_id)
    if batch is None:
        raise NotFoundError(f"Extraction batch {batch_id} not found", code="BATCH_NOT_FOUND")
    session = batch.session
    if session.status == SESSION_CANCELLED:
        raise session_invalid_state(session.id, session.status)

    parsed = _parse_batch_approvals(batch, approvals)
    updates = []
    for update in supplier_initials_updates or []:
        name = (update.get("supplier_name") or "").strip() if isinstance(update, dict) else ""
        initials = [i for i in (update.get("initials") or []) if isinstance(i, str) and i.strip()] if name else []
        if not name or not initials:
            raise ValidationError("Initials updates need supplier_name and initials", code="INVALID_INITIALS_UPDATE")
        updates.append((name, initials))

    selling_prices = find_selling_prices([a.product_id for a in parsed])

    def _write():
        locked = lock_for_update(db.session.query(ExtractionSession).filter_by(id=session.id)).one()
        now = utcnow()
        for item in parsed:
            supplier_id = None
            if item.supplier_name:
                supplier = supplier_service.find_or_create_supplier(name=item.supplier_name)
                supplier_id = supplier.id
                supplier_service.record_supplier_cost(
                    supplier_id=supplier.id,
                    product_id=item.product_id,
                    unit_cost_cents=item.cost_cents,
                    source="EXTRACTED" if item.source == EXTRACTION_COST_BASIS else "MANUAL",
                    notes=item.notes,
                )
                if item.is_preferred:
                    db.session.flush()
                    supplier_service.set_preferred_supplier(product_id=item.product_id, supplier_id=supplier.id)
            upsert_cost_approval(
                scope_id=locked.id,
                product_id=item.product_id,
                approved_cost_cents=item.cost_cents,
                source=item.source,
                migration_status=APPROVED,
                notes=item.notes,
                supplier_id=supplier_id,
                selling_price_cents=selling_prices.get(item.product_id),
                approved_at=now,
                approved_by=approved_by,
            )

        learned = {k: list(v) for k, v in (locked.learned_supplier_initials or {}).items()}
        for name, initials in updates:
            supplier = supplier_service.find_or_create_supplier(name=name, initials=initials)
            known = learned.setdefault(supplier.name, [])
            for initial in initials:
                if initial.strip().upper() not in {k.upper() for k in known}:
                    known.append(initial.strip())
        locked.learned_supplier_initials = learned

        batch.status = BATCH_APPROVED
        batch.approved_count = len(parsed)
        batch.approved_at = now
        batch.approved_by = approved_by
        locked.last_approved_batch_id = batch.id

        if batch.batch_number == locked.current_batch:
            if locked.current_batch < locked.total_batches:
                locked.current_batch += 1
            else:
                locked.status = SESSION_COMPLETED
        return {
            "batch_id": batch.id,
            "session_id": locked.id,
            "approved_count": len(parsed),
            "current_batch": locked.current_batch,
            "total_batches": locked.total_batches,
            "is_complete": locked.status == SESSION_COMPLETED,
            "next_batch_available": locked.status == SESSION_IN_PROGRESS,
        }

    return run_in_transaction(_write)


def reject_batch(*, batch_id: int) -> dict[str, Any]:
    batch = db.session.get(ExtractionBatch, batch_id)
    if batch is None:
        raise NotFoundError(f"Extraction batch {batch_id} not found", code="BATCH_NOT_FOUND")
    if batch.status == BATCH_APPROVED:
        raise InvalidStateError(f"Batch {batch_id} is already approved", code="BATCH_INVALID_STATE")

    def _write():
        batch.status = BATCH_REJECTED
        return batch.to_dict()

    return run_in_transaction(_write)


def approve_item(
    *,
    cutover_id: str,
    product_id: int,
    cost: Any,
    source: str = "MANUAL_INPUT",
    notes: str | None = None,
    approved_by: str | None = None,
) -> dict[str, Any]:
    _require_product(product_id)
    cents = _parse_cost_cents(cost, product_id=product_id)

    def _write():
        return upsert_cost_approval(
            scope_id=cutover_id,
            product_id=product_id,
            approved_cost_cents=cents,
            source=source,
            migration_status=APPROVED,
            notes=notes,
            approved_at=utcnow(),
            approved_by=approved_by,
        ).to_dict()

    return run_in_transaction(_write)


def discard_item(*, cutover_id: str, product_id: int, notes: str | None = None) -> dict[str, Any]:
    """Mark a product SKIPPED: hidden from review windows and excluded from migration."""
    _require_product(product_id)

    def _write():
        fields: dict[str, Any] = {"migration_status": SKIPPED}
        if notes is not None:
            fields["notes"] = notes
        return upsert_cost_approval(scope_id=cutover_id, product_id=product_id, **fields).to_dict()

    return run_in_transaction(_write)


def restore_item(*, cutover_id: str, product_id: int) -> dict[str, Any]:
    approval = _get_approval(cutover_id, product_id)
    if approval is None:
        raise NotFoundError(
            f"No approval for product {product_id} in {cutover_id}",
            code="APPROVAL_NOT_FOUND",
            product_id=product_id,
        )
    if approval.migration_status != SKIPPED:
        return approval.to_dict()

    def _write():
        approval.migration_status = PENDING
        return approval.to_dict()

    return run_in_transaction(_write)


def get_cost_approvals(*, cutover_id: str) -> list[dict[str, Any]]:
    rows = (
        db.session.query(CostApproval)
        .filter_by(cutover_id=cutover_id)
        .order_by(CostApproval.product_id.asc())
        .all()
    )
    return [row.to_dict() for row in rows]

# Overview: Service-layer operations for the inventory cutover; encapsulates business logic and database work.

"""
Migration Executor

WHY: The cutover seeds the owned ledger with one OPENING_BALANCE lot per
(product, location) and then locks history. It runs batch by batch so a
large catalog can be migrated across several requests, and every batch
must be safe to replay.

BATCH PIPELINE (execute_migration):
1. Validate input, aggregating every violation (no writes on failure)
2. Load or create the Cutover; COMPLETED and FAILED are blocked
3. SKIPPED products (approval scope) are excluded
4. Live snapshot -> window [current_batch*size, (current_batch+1)*size)
5. Map products (lenient batch_resolve; gaps become per-item errors)
6. Outside any transaction: product lookups, catalog fan-out, unit costs
7. One transaction: clamp negatives, create-or-reuse opening balances,
   refresh product metadata, advance the cursor, persist ResumptionState
8. Final batch: status COMPLETED + CutoverLock per location
9. Any write-phase failure: Cutover FAILED (partial result kept), error re-raised

IDEMPOTENCY:
- Opening balances: check-then-create, savepoint + re-read on unique conflict
- Locks: one per (location, cutover_date)
- The write phase runs under run_with_retry and redoes all writes per attempt
"""

from __future__ import annotations

import math
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..errors import (
    ExternalSourceError,
    MigrationBlocked,
    MigrationError,
    MissingCostError,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import CostApproval, Cutover, CutoverLock, InventoryLot, OPENING_BALANCE, Product
from ..money import to_cents, to_decimal
from inventory_cutover.time_utils import parse_iso_datetime, to_utc_z, utcnow, as_utc_naive
from .concurrency import run_in_transaction
from .cost_extraction import extract_costs
from .extraction_service import APPROVED, SKIPPED, get_approvals_by_product
from .pos_source import CatalogItem, PosSource
from .snapshot import (
    SnapshotItem,
    apply_catalog_metadata,
    fetch_catalog_metadata,
    fetch_snapshot,
    fetch_unit_costs,
    find_location_problems,
    load_products,
    needs_metadata_refresh,
    unmapped_error,
)
from .supplier_service import average_supplier_costs


MANUAL_INPUT = "MANUAL_INPUT"
DESCRIPTION = "DESCRIPTION"
SOURCE_COST = "SOURCE_COST"
AVERAGE_COST = "AVERAGE_COST"
COST_BASES = (MANUAL_INPUT, DESCRIPTION, SOURCE_COST, AVERAGE_COST)

CUTOVER_PENDING = "PENDING"
CUTOVER_IN_PROGRESS = "IN_PROGRESS"
CUTOVER_COMPLETED = "COMPLETED"
CUTOVER_FAILED = "FAILED"


@dataclass
class CutoverInput:
    cutover_date: datetime | None
    location_ids: list[int]
    cost_basis: str
    owner_approved: bool
    owner_approved_by: str | None = None
    # CostApproval scope to read approvals from (usually an extraction session id)
    approval_id: str | None = None

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "CutoverInput":
        raw_date = data.get("cutover_date")
        try:
            cutover_date = parse_iso_datetime(raw_date) if isinstance(raw_date, str) else None
        except ValueError as exc:
            raise ValidationError(
                f"cutover_date {raw_date!r} is not an ISO-8601 date",
                code="INVALID_CUTOVER_DATE",
            ) from exc

        location_ids = data.get("location_ids") or []
        if not isinstance(location_ids, list) or not all(
            isinstance(i, int) and not isinstance(i, bool) for i in location_ids
        ):
            raise ValidationError("location_ids must be a list of integers", code="INVALID_LOCATION_IDS")

        return cls(
            cutover_date=cutover_date,
            location_ids=location_ids,
            cost_basis=str(data.get("cost_basis") or ""),
            owner_approved=data.get("owner_approved") is True,
            owner_approved_by=data.get("owner_approved_by"),
            approval_id=data.get("approval_id"),
        )


@dataclass
class ResumptionState:
    """
    Everything continue_cutover needs, persisted on Cutover.resume_state.

    from_record() refuses incomplete or mistyped records instead of guessing.
    """
    location_ids: list[int]
    cutover_date: str
    cost_basis: str
    owner_approved: bool
    batch_size: int
    approval_id: str | None = None
    owner_approved_by: str | None = None
    # product_id (as str, JSON keys) -> cost in cents
    manual_costs: dict[str, int] = field(default_factory=dict)

    REQUIRED = ("location_ids", "cutover_date", "cost_basis", "owner_approved", "batch_size")

    def to_record(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_record(cls, record: Any) -> "ResumptionState":
        if not isinstance(record, dict):
            raise _invalid_resume_state("no resumption record stored", missing=list(cls.REQUIRED))
        missing = [name for name in cls.REQUIRED if record.get(name) is None]
        if missing:
            raise _invalid_resume_state(f"missing {', '.join(missing)}", missing=missing)

        location_ids = record["location_ids"]
        if not isinstance(location_ids, list) or not location_ids or not all(
            isinstance(i, int) and not isinstance(i, bool) for i in location_ids
        ):
            raise _invalid_resume_state("location_ids must be a non-empty list of integers")
        if record["cost_basis"] not in COST_BASES:
            raise _invalid_resume_state(f"unknown cost_basis {record['cost_basis']!r}")
        if not isinstance(record["batch_size"], int) or record["batch_size"] < 1:
            raise _invalid_resume_state("batch_size must be a positive integer")
        if not isinstance(record["owner_approved"], bool):
            raise _invalid_resume_state("owner_approved must be a boolean")
        try:
            if parse_iso_datetime(record["cutover_date"]) is None:
                raise ValueError("empty")
        except (TypeError, ValueError, AttributeError):
            raise _invalid_resume_state("cutover_date is not an ISO-8601 date") from None

        manual_costs = record.get("manual_costs") or {}
        if not isinstance(manual_costs, dict) or not all(
            isinstance(v, int) and v >= 0 for v in manual_costs.values()
        ):
            raise _invalid_resume_state("manual_costs must map product ids to non-negative cents")

        return cls(
            location_ids=location_ids,
            cutover_date=record["cutover_date"],
            cost_basis=record["cost_basis"],
            owner_approved=record["owner_approved"],
            batch_size=record["batch_size"],
            approval_id=record.get("approval_id"),
            owner_approved_by=record.get("owner_approved_by"),
            manual_costs={str(k): int(v) for k, v in manual_costs.items()},
        )

    def to_input(self) -> CutoverInput:
        return CutoverInput(
            cutover_date=parse_iso_datetime(self.cutover_date),
            location_ids=list(self.location_ids),
            cost_basis=self.cost_basis,
            owner_approved=self.owner_approved,
            owner_approved_by=self.owner_approved_by,
            approval_id=self.approval_id,
        )


def _invalid_resume_state(reason: str, *, missing: list[str] | None = None) -> ValidationError:
    return ValidationError(
        f"Cutover resumption state is invalid: {reason}",
        code="RESUME_STATE_INVALID",
        user_message="This cutover cannot be resumed because its saved state is incomplete.",
        recovery_action="Start a new cutover with the same locations.",
        can_retry=False,
        details={"missing": missing} if missing else None,
    )


def _parse_manual_costs(approved_costs: Any) -> dict[int, int]:
    """Accept {product_id: cost} or [{product_id, cost}] and return cents per product."""
    if not approved_costs:
        return {}
    if isinstance(approved_costs, dict):
        pairs = list(approved_costs.items())
    elif isinstance(approved_costs, list):
        pairs = []
        for entry in approved_costs:
            if not isinstance(entry, dict):
                raise ValidationError("approved_costs entries must be objects", code="INVALID_APPROVED_COSTS")
            pairs.append((entry.get("product_id"), entry.get("cost")))
    else:
        raise ValidationError("approved_costs must be an object or a list", code="INVALID_APPROVED_COSTS")

    costs: dict[int, int] = {}
    for raw_pid, raw_cost in pairs:
        try:
            product_id = int(raw_pid)
            cents = to_cents(to_decimal(raw_cost))
        except (TypeError, ValueError) as exc:
            raise ValidationError(
                f"Invalid approved cost {raw_cost!r} for product {raw_pid!r}",
                code="INVALID_APPROVED_COSTS",
            ) from exc
        if cents < 0:
            raise ValidationError(
                f"Approved cost for product {product_id} cannot be negative",
                code="INVALID_APPROVED_COSTS",
                product_id=product_id,
            )
        costs[product_id] = cents
    return costs


def validate_cutover_input(data: CutoverInput) -> list:
    """
    Check every precondition and raise ONE ValidationError listing all violations.

    Returns the Location rows (request order) when valid.
    """
    violations: list[dict[str, Any]] = []

    if data.cutover_date is None:
        violations.append({"field": "cutover_date", "code": "CUTOVER_DATE_REQUIRED", "message": "Cutover date is required"})
    elif as_utc_naive(data.cutover_date) > utcnow():
        violations.append({"field": "cutover_date", "code": "CUTOVER_DATE_IN_FUTURE", "message": "Cutover date cannot be in the future"})

    if not data.owner_approved:
        violations.append({"field": "owner_approved", "code": "OWNER_APPROVAL_REQUIRED", "message": "Owner approval is required"})

    if data.cost_basis not in COST_BASES:
        violations.append({
            "field": "cost_basis",
            "code": "INVALID_COST_BASIS",
            "message": f"Cost basis must be one of {', '.join(COST_BASES)}",
        })

    locations = []
    if not data.location_ids:
        violations.append({"field": "location_ids", "code": "LOCATIONS_REQUIRED", "message": "At least one location is required"})
    else:
        locations, problems = find_location_problems(data.location_ids)
        for problem in problems:
            violations.append({"field": "location_ids", "code": problem.code, "message": problem.message})

        if data.cutover_date is not None:
            later_locks = (
                db.session.query(CutoverLock)
                .filter(CutoverLock.location_id.in_(data.location_ids))
                .filter(CutoverLock.is_locked.is_(True))
                .filter(CutoverLock.cutover_date > as_utc_naive(data.cutover_date))
                .all()
            )
            for lock in later_locks:
                violations.append({
                    "field": "cutover_date",
                    "code": "BACKDATED_OPERATION",
                    "message": f"Location {lock.location_id} is locked since {to_utc_z(lock.cutover_date)}",
                })

    if violations:
        raise ValidationError(
            "; ".join(v["message"] for v in violations),
            code="CUTOVER_VALIDATION_FAILED",
            user_message="The cutover request is not valid.",
            details={"errors": violations},
        )
    return locations


def determine_unit_cost(
    *,
    product: Product,
    cost_basis: str,
    external_id: str,
    owner_costs: dict[int, int],
    average_costs: dict[int, int],
    source: PosSource,
    catalog_item: CatalogItem | None = None,
    source_costs: dict[str, Decimal | None] | None = None,
) -> int | None:
    """
    Unit cost in cents for one product under a cost basis, or None when unknown.

    - MANUAL_INPUT: owner-supplied cost only
    - DESCRIPTION: owner approval first, else the extraction's selected cost
    - SOURCE_COST: POS cost lookup (may be unavailable); source_costs holds
      lookups already made for the window, so the POS is not called again
    - AVERAGE_COST: mean of known supplier costs
    """
    if cost_basis == MANUAL_INPUT:
        return owner_costs.get(product.id)

    if cost_basis == DESCRIPTION:
        if product.id in owner_costs:
            return owner_costs[product.id]
        name = catalog_item.display_name if catalog_item else (product.external_name or product.name)
        description = catalog_item.description if catalog_item else product.external_description
        selected = extract_costs(name, description).selected_cost
        return to_cents(selected) if selected is not None else None

    if cost_basis == SOURCE_COST:
        if source_costs is not None:
            cost = source_costs.get(external_id)
            return to_cents(cost) if cost is not None else None
        try:
            cost = source.fetch_unit_cost(external_id)
        except ExternalSourceError as exc:
            current_app.logger.warning("POS cost lookup failed for %s: %s", external_id, exc)
            return None
        return to_cents(cost) if cost is not None else None

    if cost_basis == AVERAGE_COST:
        return average_costs.get(product.id)

    raise ValidationError(f"Unknown cost basis {cost_basis!r}", code="INVALID_COST_BASIS")


def create_opening_balance(
    *,
    product_id: int,
    location_id: int,
    quantity: int,
    unit_cost_cents: int,
    received_at: datetime,
    cost_source: str,
    cutover_id: str | None = None,
) -> tuple[InventoryLot, bool]:
    """
    Create the OPENING_BALANCE lot for (product, location) unless it exists.

    Returns (lot, created). An existing row is returned untouched, which is
    what makes replaying a batch harmless.
    """
    def _existing():
        return (
            db.session.query(InventoryLot)
            .filter_by(product_id=product_id, location_id=location_id, source=OPENING_BALANCE)
            .first()
        )

    lot = _existing()
    if lot is not None:
        return lot, False
    if quantity < 0:
        raise ValidationError(
            f"Opening balance quantity cannot be negative ({quantity})",
            code="INVALID_QUANTITY",
            product_id=product_id,
            location_id=location_id,
        )

    nested = db.session.begin_nested()
    try:
        lot = InventoryLot(
            product_id=product_id,
            location_id=location_id,
            quantity=quantity,
            unit_cost_cents=unit_cost_cents,
            received_at=received_at,
            source=OPENING_BALANCE,
            cost_source=cost_source,
            cutover_id=cutover_id,
        )
        db.session.add(lot)
        db.session.flush()
        nested.commit()
        return lot, True
    except IntegrityError:
        nested.rollback()
        lot = _existing()
        if lot is None:
            raise
        return lot, False


def enable_cutover_locks(*, cutover: Cutover, location_ids: list[int], locked_by: str | None = None) -> list[CutoverLock]:
    locks = []
    now = utcnow()
    for location_id in location_ids:
        lock = (
            db.session.query(CutoverLock)
            .filter_by(location_id=location_id, cutover_date=cutover.cutover_date)
            .first()
        )
        if lock is None:
            lock = CutoverLock(
                location_id=location_id,
                cutover_id=cutover.id,
                cutover_date=cutover.cutover_date,
                is_locked=True,
                locked_at=now,
                locked_by=locked_by,
            )
            db.session.add(lock)
        else:
            lock.is_locked = True
        locks.append(lock)
    db.session.flush()
    return locks


def validate_no_backdated_operation(*, location_id: int, effective_at: datetime) -> None:
    """
    Reject an operation dated before the location's cutover.

    Called by any subsystem that writes location-owned history.
    """
    effective_at = as_utc_naive(effective_at)
    lock = (
        db.session.query(CutoverLock)
        .filter(CutoverLock.location_id == location_id)
        .filter(CutoverLock.is_locked.is_(True))
        .filter(CutoverLock.cutover_date > effective_at)
        .order_by(CutoverLock.cutover_date.desc())
        .first()
    )
    if lock is not None:
        raise MigrationBlocked(
            f"Location {location_id} is locked: operations before {to_utc_z(lock.cutover_date)} are not allowed",
            code="BACKDATED_OPERATION",
            user_message="This date is before the inventory cutover for this location.",
            recovery_action="Use a date on or after the cutover date.",
            location_id=location_id,
            details={"cutover_date": to_utc_z(lock.cutover_date), "effective_at": to_utc_z(effective_at)},
        )


def get_cutover_status(*, location_id: int | None = None) -> dict[str, Any]:
    if location_id is not None:
        lock = (
            db.session.query(CutoverLock)
            .filter_by(location_id=location_id, is_locked=True)
            .order_by(CutoverLock.cutover_date.desc())
            .first()
        )
        return {
            "location_id": location_id,
            "is_locked": lock is not None,
            "cutover_date": to_utc_z(lock.cutover_date) if lock else None,
            "locked_at": to_utc_z(lock.locked_at) if lock else None,
            "cutover_id": lock.cutover_id if lock else None,
        }

    locks = (
        db.session.query(CutoverLock)
        .filter_by(is_locked=True)
        .order_by(CutoverLock.location_id.asc(), CutoverLock.cutover_date.desc())
        .all()
    )
    latest = db.session.query(Cutover).order_by(Cutover.created_at.desc()).first()
    return {
        "is_locked": bool(locks),
        "locks": [lock.to_dict() for lock in locks],
        "latest_cutover": latest.to_dict() if latest else None,
    }


@dataclass
class _Prepared:
    """Read-phase output for one window (no DB writes happened yet)."""
    costs: list[tuple[SnapshotItem, int]] = field(default_factory=list)
    catalog_by_product: dict[int, CatalogItem] = field(default_factory=dict)
    products: dict[int, Product] = field(default_factory=dict)
    errors: list[dict] = field(default_factory=list)
    warnings: list[dict] = field(default_factory=list)
    skipped_items: int = 0
    unmapped_items: int = 0


def _prepare_window(
    window: list[SnapshotItem],
    *,
    cost_basis: str,
    skipped: set[int],
    owner_costs: dict[int, int],
    source: PosSource,
    batch_number: int | None = None,
) -> _Prepared:
    prepared = _Prepared()
    eligible: list[SnapshotItem] = []
    for item in window:
        if item.product_id is None:
            prepared.unmapped_items += 1
            prepared.errors.append(unmapped_error(item, batch_number))
        elif item.product_id in skipped:
            prepared.skipped_items += 1
        else:
            eligible.append(item)

    prepared.products = load_products(i.product_id for i in eligible)

    if cost_basis == DESCRIPTION:
        first_external: dict[int, str] = {}
        for item in eligible:
            first_external.setdefault(item.product_id, item.external_id)
        stale = [
            pid for pid, product in prepared.products.items()
            if pid not in owner_costs and needs_metadata_refresh(product)
        ]
        catalog, warnings = fetch_catalog_metadata([first_external[pid] for pid in stale], source)
        prepared.warnings.extend(warnings)
        prepared.catalog_by_product = {
            pid: catalog[first_external[pid]] for pid in stale if first_external[pid] in catalog
        }

    average_costs = average_supplier_costs(prepared.products) if cost_basis == AVERAGE_COST else {}

    source_costs = None
    if cost_basis == SOURCE_COST:
        source_costs, warnings = fetch_unit_costs(
            [item.external_id for item in eligible if item.product_id in prepared.products], source,
        )
        prepared.warnings.extend(warnings)

    unit_costs: dict[int, int | None] = {}
    for item in eligible:
        product = prepared.products.get(item.product_id)
        if product is None:
            continue
        if item.product_id not in unit_costs:
            unit_costs[item.product_id] = determine_unit_cost(
                product=product,
                cost_basis=cost_basis,
                external_id=item.external_id,
                owner_costs=owner_costs,
                average_costs=average_costs,
                source=source,
                catalog_item=prepared.catalog_by_product.get(item.product_id),
                source_costs=source_costs,
            )
        cost = unit_costs[item.product_id]
        if cost is None:
            prepared.errors.append(
                MissingCostError(
                    f"No {cost_basis} cost for product {item.product_id}",
                    user_message=f"No cost could be determined for {product.name}.",
                    product_id=item.product_id,
                    location_id=item.location_id,
                    external_id=item.external_id,
                    batch_number=batch_number,
                ).to_dict()
            )
            continue
        prepared.costs.append((item, cost))
    return prepared


def _owner_costs(approvals: dict[int, CostApproval], manual_costs: dict[int, int]) -> dict[int, int]:
    costs = {
        pid: approval.approved_cost_cents
        for pid, approval in approvals.items()
        if approval.migration_status == APPROVED and approval.approved_cost_cents is not None
    }
    costs.update(manual_costs)
    return costs


def _load_cutover(cutover_id: str) -> Cutover:
    cutover = db.session.get(Cutover, cutover_id)
    if cutover is None:
        raise NotFoundError(f"Cutover {cutover_id} not found", code="CUTOVER_NOT_FOUND")
    return cutover


def _assert_runnable(cutover: Cutover) -> None:
    if cutover.status == CUTOVER_COMPLETED:
        raise MigrationBlocked(
            f"Cutover {cutover.id} is already completed",
            code="CUTOVER_ALREADY_COMPLETED",
            user_message="This cutover has already been completed.",
            recovery_action="No action needed; the opening balances are in place.",
        )
    if cutover.status == CUTOVER_FAILED:
        raise MigrationBlocked(
            f"Cutover {cutover.id} failed and must be reset before it can run again",
            code="CUTOVER_RESET_REQUIRED",
            user_message="The last batch of this cutover failed.",
            recovery_action="Reset the cutover, then continue it.",
            can_resume=True,
        )


def _mark_failed(cutover_id: str, result: dict[str, Any], message: str) -> None:
    db.session.rollback()
    try:
        row = db.session.get(Cutover, cutover_id)
        row.status = CUTOVER_FAILED
        row.error_message = message
        row.result = result
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Could not record failure state for cutover %s", cutover_id)


def execute_migration(
    *,
    data: CutoverInput,
    source: PosSource,
    approved_costs: Any = None,
    batch_size: int | None = None,
    cutover_id: str | None = None,
) -> dict[str, Any]:
    """
    Migrate the next batch of a cutover (creating the cutover on first call).

    approved_costs: owner-supplied costs ({product_id: cost} or
    [{product_id, cost}]), layered over APPROVED CostApprovals of the scope.
    """
    if batch_size is not None and (isinstance(batch_size, bool) or not isinstance(batch_size, int) or batch_size < 1):
        raise ValidationError(f"batch_size must be a positive integer, got {batch_size!r}", code="INVALID_BATCH_SIZE")
    return _run_batch(
        data=data,
        source=source,
        manual_costs=_parse_manual_costs(approved_costs),
        batch_size=batch_size,
        cutover_id=cutover_id,
    )


def _match_stored_cutover(cutover: Cutover, stored: ResumptionState, data: CutoverInput, locations: list) -> list:
    """
    A request that resumes an existing cutover must describe that cutover.

    Lots and locks both take the stored cutover date, so a different date or
    location set is refused. Returns the locations in their stored order.
    """
    mismatches = []
    requested_date = to_utc_z(as_utc_naive(data.cutover_date))
    if requested_date != to_utc_z(cutover.cutover_date):
        mismatches.append({
            "field": "cutover_date",
            "expected": to_utc_z(cutover.cutover_date),
            "received": requested_date,
        })
    if set(data.location_ids) != set(stored.location_ids):
        mismatches.append({
            "field": "location_ids",
            "expected": list(stored.location_ids),
            "received": list(data.location_ids),
        })
    if mismatches:
        raise ValidationError(
            f"Request does not match cutover {cutover.id}: {', '.join(m['field'] for m in mismatches)} differ",
            code="CUTOVER_INPUT_MISMATCH",
            user_message="This cutover was started with a different date or different locations.",
            recovery_action="Continue the cutover with its original date and locations, or start a new cutover.",
            can_retry=False,
            details={"mismatches": mismatches},
        )
    by_id = {loc.id: loc for loc in locations}
    return [by_id[location_id] for location_id in stored.location_ids]


def _run_batch(
    *,
    data: CutoverInput,
    source: PosSource,
    manual_costs: dict[int, int],
    batch_size: int | None,
    cutover_id: str | None,
) -> dict[str, Any]:
    locations = validate_cutover_input(data)

    cutover = None
    if cutover_id is not None:
        cutover = _load_cutover(cutover_id)
        _assert_runnable(cutover)
        stored = ResumptionState.from_record(cutover.resume_state)
        locations = _match_stored_cutover(cutover, stored, data, locations)
        manual_costs = {**{int(pid): cents for pid, cents in stored.manual_costs.items()}, **manual_costs}
        cutover_date = cutover.cutover_date
        new_id = cutover.id
        approval_id = cutover.approval_id
        cost_basis = cutover.cost_basis
        current_batch = cutover.current_batch
    else:
        cutover_date = as_utc_naive(data.cutover_date)
        new_id = str(uuid.uuid4())
        approval_id = data.approval_id
        cost_basis = data.cost_basis
        current_batch = 0

    approvals = get_approvals_by_product(approval_id or new_id)
    skipped = {pid for pid, a in approvals.items() if a.migration_status == SKIPPED}
    owner_costs = _owner_costs(approvals, manual_costs)

    # Structural failures (fetch) abort here, before the cutover row is written.
    snapshot = fetch_snapshot(locations, source)
    size = (cutover.batch_size if cutover is not None else None) or batch_size or max(len(snapshot), 1)
    total_batches = max(math.ceil(len(snapshot) / size), 1)
    batch_number = current_batch + 1
    start = current_batch * size
    window = snapshot[start:start + size]
    is_last = batch_number >= total_batches

    state = ResumptionState(
        location_ids=[loc.id for loc in locations],
        cutover_date=to_utc_z(cutover_date),
        cost_basis=cost_basis,
        owner_approved=data.owner_approved,
        batch_size=size,
        approval_id=approval_id,
        owner_approved_by=data.owner_approved_by,
        manual_costs={str(pid): cents for pid, cents in manual_costs.items()},
    )

    if cutover is None:
        def _create():
            row = Cutover(
                id=new_id,
                cutover_date=cutover_date,
                cost_basis=cost_basis,
                owner_approved=data.owner_approved,
                owner_approved_at=utcnow(),
                owner_approved_by=data.owner_approved_by,
                approval_id=approval_id,
                status=CUTOVER_PENDING,
                batch_size=size,
                current_batch=0,
                total_batches=total_batches,
                total_items=len(snapshot),
                processed_items=0,
                resume_state=state.to_record(),
            )
            db.session.add(row)
            db.session.flush()
            return row

        cutover = run_in_transaction(_create)

    prepared = _prepare_window(
        window,
        cost_basis=cost_basis,
        skipped=skipped,
        owner_costs=owner_costs,
        source=source,
        batch_number=batch_number,
    )

    def _write():
        warnings = list(prepared.warnings)
        created = existing = clamped = 0
        for item, cost in prepared.costs:
            quantity = item.quantity
            if quantity < 0:
                clamped += 1
                warnings.append({
                    "code": "NEGATIVE_QUANTITY_CLAMPED",
                    "message": f"Negative quantity {quantity} clamped to 0",
                    "product_id": item.product_id,
                    "location_id": item.location_id,
                })
                quantity = 0
            _, was_created = create_opening_balance(
                product_id=item.product_id,
                location_id=item.location_id,
                quantity=quantity,
                unit_cost_cents=cost,
                received_at=cutover_date,
                cost_source=cutover.cost_basis,
                cutover_id=cutover.id,
            )
            if was_created:
                created += 1
            else:
                existing += 1

        for pid, catalog_item in prepared.catalog_by_product.items():
            apply_catalog_metadata(prepared.products[pid], catalog_item)

        row = db.session.get(Cutover, cutover.id)
        row.batch_size = size
        row.current_batch = batch_number
        row.total_batches = total_batches
        row.total_items = len(snapshot)
        row.processed_items = min((row.processed_items or 0) + len(window), len(snapshot))
        row.status = CUTOVER_COMPLETED if is_last else CUTOVER_IN_PROGRESS
        row.error_message = None
        row.resume_state = state.to_record()

        locked: list[int] = []
        if is_last:
            row.completed_at = utcnow()
            enable_cutover_locks(cutover=row, location_ids=state.location_ids, locked_by=cutover.owner_approved_by)
            locked = list(state.location_ids)

        result = _result(
            row,
            batch_number=batch_number,
            items_in_batch=len(window),
            created=created,
            existing=existing,
            clamped=clamped,
            prepared=prepared,
            warnings=warnings,
            locked=locked,
        )
        row.result = result
        return result

    try:
        result = run_in_transaction(_write)
    except Exception as exc:
        current_app.logger.exception("Cutover %s batch %s failed", cutover.id, batch_number)
        failure = (
            exc.to_dict() if isinstance(exc, MigrationError)
            else {"code": "UNEXPECTED_ERROR", "message": str(exc), "can_retry": False, "can_resume": True}
        )
        partial = {
            "cutover_id": cutover.id,
            "status": CUTOVER_FAILED,
            "batch_number": batch_number,
            "errors": prepared.errors + [failure],
            "warnings": prepared.warnings,
        }
        _mark_failed(cutover.id, partial, str(exc))
        raise

    current_app.logger.info(
        "Cutover %s batch %s/%s committed: %s opening balances (%s new)",
        cutover.id, batch_number, total_batches, result["opening_balances"], result["opening_balances_created"],
    )
    return result


def _result(
    row: Cutover,
    *,
    batch_number: int,
    items_in_batch: int,
    created: int,
    existing: int,
    clamped: int,
    prepared: _Prepared,
    warnings: list[dict],
    locked: list[int],
) -> dict[str, Any]:
    is_complete = row.status == CUTOVER_COMPLETED
    return {
        "cutover_id": row.id,
        "status": row.status,
        "cutover_date": to_utc_z(row.cutover_date),
        "cost_basis": row.cost_basis,
        "batch_number": batch_number,
        "current_batch": row.current_batch,
        "total_batches": row.total_batches,
        "total_items": row.total_items,
        "processed_items": row.processed_items,
        "items_in_batch": items_in_batch,
        "opening_balances": created + existing,
        "opening_balances_created": created,
        "opening_balances_existing": existing,
        "skipped_items": prepared.skipped_items,
        "unmapped_items": prepared.unmapped_items,
        "missing_costs": sum(1 for e in prepared.errors if e["code"] == MissingCostError.default_code),
        "clamped_quantities": clamped,
        "locked_location_ids": locked,
        "is_complete": is_complete,
        "can_continue": not is_complete,
        "errors": list(prepared.errors),
        "warnings": warnings,
    }


def initiate_cutover(
    *,
    data: CutoverInput,
    source: PosSource,
    approved_costs: Any = None,
    batch_size: int | None = None,
    existing_cutover_id: str | None = None,
) -> dict[str, Any]:
    return execute_migration(
        data=data,
        source=source,
        approved_costs=approved_costs,
        batch_size=batch_size,
        cutover_id=existing_cutover_id,
    )


def continue_cutover(*, cutover_id: str, source: PosSource) -> dict[str, Any]:
    """Run the next batch using only the persisted ResumptionState."""
    cutover = _load_cutover(cutover_id)
    _assert_runnable(cutover)
    state = ResumptionState.from_record(cutover.resume_state)
    return _run_batch(
        data=state.to_input(),
        source=source,
        manual_costs={int(pid): cents for pid, cents in state.manual_costs.items()},
        batch_size=state.batch_size,
        cutover_id=cutover.id,
    )


def reset_cutover(*, cutover_id: str) -> dict[str, Any]:
    """Clear a FAILED cutover so the next batch can be replayed from its checkpoint."""
    cutover = _load_cutover(cutover_id)
    if cutover.status == CUTOVER_COMPLETED:
        raise MigrationBlocked(
            f"Cutover {cutover.id} is completed and cannot be reset",
            code="CUTOVER_ALREADY_COMPLETED",
        )
    if cutover.status != CUTOVER_FAILED:
        return cutover.to_dict()

    def _write():
        cutover.status = CUTOVER_IN_PROGRESS if cutover.current_batch > 0 else CUTOVER_PENDING
        cutover.error_message = None
        return cutover.to_dict()

    return run_in_transaction(_write)


def preview_cutover(*, data: CutoverInput, source: PosSource, approved_costs: Any = None) -> dict[str, Any]:
    """Dry run over the whole snapshot: what each location would get. Writes nothing."""
    manual_costs = _parse_manual_costs(approved_costs)
    locations = validate_cutover_input(data)

    approvals = get_approvals_by_product(data.approval_id) if data.approval_id else {}
    skipped = {pid for pid, a in approvals.items() if a.migration_status == SKIPPED}
    owner_costs = _owner_costs(approvals, manual_costs)
    snapshot = fetch_snapshot(locations, source)

    per_location = []
    errors: list[dict] = []
    warnings: list[dict] = []
    for location in locations:
        items = [i for i in snapshot if i.location_id == location.id]
        prepared = _prepare_window(
            items,
            cost_basis=data.cost_basis,
            skipped=skipped,
            owner_costs=owner_costs,
            source=source,
        )
        errors.extend(prepared.errors)
        warnings.extend(prepared.warnings)
        per_location.append({
            "location_id": location.id,
            "location_name": location.name,
            "items": len(items),
            "with_cost": len(prepared.costs),
            "skipped_items": prepared.skipped_items,
            "unmapped_items": prepared.unmapped_items,
            "missing_costs": sum(1 for e in prepared.errors if e["code"] == MissingCostError.default_code),
            "negative_quantities": sum(1 for item, _ in prepared.costs if item.quantity < 0),
            "total_quantity": sum(max(item.quantity, 0) for item, _ in prepared.costs),
            "estimated_value_cents": sum(max(item.quantity, 0) * cost for item, cost in prepared.costs),
        })
    return {
        "cutover_date": to_utc_z(as_utc_naive(data.cutover_date)),
        "cost_basis": data.cost_basis,
        "total_items": len(snapshot),
        "locations": per_location,
        "errors": errors,
        "warnings": warnings,
    }

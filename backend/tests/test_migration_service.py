# Overview: Pytest coverage for the batched inventory cutover and history locks.

"""
Cutover Migration Tests

Covers:
- Aggregated input validation (nothing written on failure)
- Opening balances per cost basis, clamping, missing costs, unmapped items
- Batch continuation from the persisted resumption state
- Replay idempotency, retry and FAILED -> reset -> continue
- Location locks and the backdated-operation guard
- Preview (dry run)
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from inventory_cutover.errors import ExternalSourceError, MigrationBlocked, StorageError, ValidationError
from inventory_cutover.models import Cutover, CutoverLock, InventoryLot, OPENING_BALANCE
from inventory_cutover.services import extraction_service, migration_service, snapshot, supplier_service
from inventory_cutover.services.migration_service import CutoverInput, ResumptionState
from inventory_cutover.time_utils import utcnow


CUTOVER_DATE = datetime(2024, 1, 1)


def cutover_input(location_ids, **overrides):
    fields = dict(
        cutover_date=CUTOVER_DATE,
        location_ids=list(location_ids),
        cost_basis=migration_service.MANUAL_INPUT,
        owner_approved=True,
        owner_approved_by="owner",
    )
    fields.update(overrides)
    return CutoverInput(**fields)


def costs_for(products, cost="2.50"):
    return {p.id: cost for p in products}


def lots(db_session):
    return db_session.query(InventoryLot).order_by(InventoryLot.product_id.asc()).all()


class TestValidation:
    """validate_cutover_input() reports every violation at once."""

    def test_all_violations_are_aggregated(self, db_session, pos_source):
        data = CutoverInput(cutover_date=None, location_ids=[], cost_basis="BOGUS", owner_approved=False)

        with pytest.raises(ValidationError) as exc:
            migration_service.initiate_cutover(data=data, source=pos_source)

        assert exc.value.code == "CUTOVER_VALIDATION_FAILED"
        codes = {e["code"] for e in exc.value.details["errors"]}
        assert codes == {"CUTOVER_DATE_REQUIRED", "OWNER_APPROVAL_REQUIRED", "INVALID_COST_BASIS", "LOCATIONS_REQUIRED"}
        assert db_session.query(Cutover).count() == 0

    def test_future_date_rejected(self, db_session, location, pos_source):
        data = cutover_input([location.id], cutover_date=utcnow() + timedelta(days=2))

        with pytest.raises(ValidationError) as exc:
            migration_service.initiate_cutover(data=data, source=pos_source)

        assert [e["code"] for e in exc.value.details["errors"]] == ["CUTOVER_DATE_IN_FUTURE"]

    def test_location_problems_are_listed(self, db_session, location, pos_source):
        with pytest.raises(ValidationError) as exc:
            migration_service.initiate_cutover(data=cutover_input([location.id, 4242]), source=pos_source)

        assert [e["code"] for e in exc.value.details["errors"]] == ["LOCATION_NOT_FOUND"]

    def test_from_payload(self):
        data = CutoverInput.from_payload({
            "cutover_date": "2024-01-01T00:00:00Z",
            "location_ids": [1, 2],
            "cost_basis": "DESCRIPTION",
            "owner_approved": "yes",
        })

        assert data.cutover_date == CUTOVER_DATE
        assert data.location_ids == [1, 2]
        # Only a literal true counts as approval
        assert data.owner_approved is False

        with pytest.raises(ValidationError) as exc:
            CutoverInput.from_payload({"cutover_date": "last tuesday"})
        assert exc.value.code == "INVALID_CUTOVER_DATE"

        with pytest.raises(ValidationError) as exc:
            CutoverInput.from_payload({"location_ids": ["1"]})
        assert exc.value.code == "INVALID_LOCATION_IDS"

    def test_invalid_approved_costs(self, db_session, location, pos_source, stocked_products):
        products = stocked_products(1)

        with pytest.raises(ValidationError) as exc:
            migration_service.initiate_cutover(
                data=cutover_input([location.id]), source=pos_source, approved_costs={products[0].id: "-4"},
            )
        assert exc.value.code == "INVALID_APPROVED_COSTS"


class TestOpeningBalances:
    def test_single_batch_creates_lots_and_locks(self, db_session, location, pos_source, stocked_products):
        products = stocked_products(3)

        result = migration_service.initiate_cutover(
            data=cutover_input([location.id]), source=pos_source, approved_costs=costs_for(products),
        )

        assert result["status"] == migration_service.CUTOVER_COMPLETED
        assert result["is_complete"] is True
        assert result["opening_balances"] == 3
        assert result["opening_balances_created"] == 3
        assert result["locked_location_ids"] == [location.id]
        created = lots(db_session)
        assert [lot.product_id for lot in created] == [p.id for p in products]
        assert all(lot.source == OPENING_BALANCE for lot in created)
        assert all(lot.quantity == 5 and lot.unit_cost_cents == 250 for lot in created)
        assert all(lot.received_at == CUTOVER_DATE for lot in created)
        assert all(lot.cost_source == migration_service.MANUAL_INPUT for lot in created)
        assert db_session.query(CutoverLock).filter_by(location_id=location.id).count() == 1

    def test_missing_manual_cost_is_per_item(self, db_session, location, pos_source, stocked_products):
        products = stocked_products(3)

        result = migration_service.initiate_cutover(
            data=cutover_input([location.id]), source=pos_source, approved_costs=costs_for(products[:2]),
        )

        assert result["missing_costs"] == 1
        assert result["errors"][0]["code"] == "MISSING_COST"
        assert result["errors"][0]["product_id"] == products[2].id
        assert result["opening_balances"] == 2
        assert result["is_complete"] is True

    def test_negative_quantity_is_clamped(self, db_session, location, pos_source, make_product):
        product = make_product("Aspirin", "VAR-A")
        pos_source.set_inventory("LOC-1", [("VAR-A", -3)])

        result = migration_service.initiate_cutover(
            data=cutover_input([location.id]), source=pos_source, approved_costs={product.id: 1},
        )

        assert result["clamped_quantities"] == 1
        assert [w["code"] for w in result["warnings"]] == ["NEGATIVE_QUANTITY_CLAMPED"]
        assert lots(db_session)[0].quantity == 0

    def test_unmapped_and_skipped_items(self, db_session, location, pos_source, make_product):
        kept = make_product("Aspirin", "VAR-A")
        dropped = make_product("Gauze", "VAR-B")
        pos_source.set_inventory("LOC-1", [("VAR-A", 1), ("VAR-B", 1), ("VAR-Z", 1)])
        extraction_service.discard_item(cutover_id="review-1", product_id=dropped.id)

        result = migration_service.initiate_cutover(
            data=cutover_input([location.id], approval_id="review-1"),
            source=pos_source,
            approved_costs={kept.id: 1, dropped.id: 1},
        )

        assert result["unmapped_items"] == 1
        assert result["skipped_items"] == 1
        assert [e["code"] for e in result["errors"]] == ["UNMAPPED_PRODUCT"]
        assert [lot.product_id for lot in lots(db_session)] == [kept.id]

    def test_description_basis_prefers_approvals(self, db_session, location, pos_source, stocked_products):
        products = stocked_products(3, description="L $10.00 abril")
        extraction_service.approve_item(cutover_id="review-1", product_id=products[0].id, cost="12")
        extraction_service.approve_item(cutover_id="review-1", product_id=products[1].id, cost="12")

        migration_service.initiate_cutover(
            data=cutover_input([location.id], cost_basis=migration_service.DESCRIPTION, approval_id="review-1"),
            source=pos_source,
            # Request costs win over stored approvals
            approved_costs={products[1].id: "13"},
        )

        assert [lot.unit_cost_cents for lot in lots(db_session)] == [1200, 1300, 1000]

    def test_source_cost_basis(self, db_session, location, pos_source, stocked_products):
        stocked_products(2)
        pos_source.unit_costs["VAR-000"] = Decimal("3.10")

        result = migration_service.initiate_cutover(
            data=cutover_input([location.id], cost_basis=migration_service.SOURCE_COST), source=pos_source,
        )

        assert [lot.unit_cost_cents for lot in lots(db_session)] == [310]
        assert result["missing_costs"] == 1

    def test_source_costs_are_fetched_concurrently(
        self, app, monkeypatch, db_session, location, pos_source, stocked_products
    ):
        stocked_products(3)
        pos_source.unit_costs.update({"VAR-000": Decimal("3.10"), "VAR-001": Decimal("4.00"), "VAR-002": Decimal("5")})
        pos_source.failing_costs.add("VAR-002")
        monkeypatch.setitem(app.config, "CATALOG_FETCH_CHUNK_SIZE", 1)
        seen_chunks = []
        real_fan_out = snapshot.fan_out

        def recording_fan_out(func, chunks, **kwargs):
            chunks = list(chunks)
            seen_chunks.extend(chunks)
            return real_fan_out(func, chunks, **kwargs)

        monkeypatch.setattr(snapshot, "fan_out", recording_fan_out)

        result = migration_service.initiate_cutover(
            data=cutover_input([location.id], cost_basis=migration_service.SOURCE_COST), source=pos_source,
        )

        assert seen_chunks == [["VAR-000"], ["VAR-001"], ["VAR-002"]]
        assert sorted(pos_source.cost_calls) == ["VAR-000", "VAR-001", "VAR-002"]
        assert [lot.unit_cost_cents for lot in lots(db_session)] == [310, 400]
        assert result["missing_costs"] == 1
        assert [w["code"] for w in result["warnings"]] == ["COST_FETCH_FAILED"]

    def test_average_cost_basis(self, db_session, location, pos_source, stocked_products):
        products = stocked_products(2)
        for name, cents in (("Compra Center", 1000), ("Rx Pharma", 1001)):
            supplier = supplier_service.find_or_create_supplier(name=name)
            supplier_service.record_supplier_cost(
                supplier_id=supplier.id, product_id=products[0].id, unit_cost_cents=cents, source="MANUAL",
            )
        db_session.commit()

        result = migration_service.initiate_cutover(
            data=cutover_input([location.id], cost_basis=migration_service.AVERAGE_COST), source=pos_source,
        )

        assert [lot.unit_cost_cents for lot in lots(db_session)] == [1001]
        assert result["missing_costs"] == 1

    def test_empty_snapshot_completes(self, db_session, location, pos_source):
        result = migration_service.initiate_cutover(data=cutover_input([location.id]), source=pos_source)

        assert result["total_batches"] == 1
        assert result["opening_balances"] == 0
        assert result["is_complete"] is True
        assert migration_service.get_cutover_status(location_id=location.id)["is_locked"] is True

    def test_fetch_failure_writes_nothing(self, db_session, location, pos_source):
        pos_source.failing_locations.add("LOC-1")

        with pytest.raises(ExternalSourceError):
            migration_service.initiate_cutover(data=cutover_input([location.id]), source=pos_source)

        assert db_session.query(Cutover).count() == 0


class TestCreateOpeningBalance:
    def test_is_idempotent(self, db_session, location, make_product):
        product = make_product("Aspirin", "VAR-A")
        kwargs = dict(
            product_id=product.id,
            location_id=location.id,
            quantity=4,
            unit_cost_cents=100,
            received_at=CUTOVER_DATE,
            cost_source="MANUAL_INPUT",
        )

        first, created = migration_service.create_opening_balance(**kwargs)
        again, created_again = migration_service.create_opening_balance(**{**kwargs, "quantity": 9})
        db_session.commit()

        assert created is True
        assert created_again is False
        assert again.id == first.id
        assert again.quantity == 4

    def test_rejects_negative_quantity(self, db_session, location, make_product):
        product = make_product("Aspirin", "VAR-A")

        with pytest.raises(ValidationError) as exc:
            migration_service.create_opening_balance(
                product_id=product.id, location_id=location.id, quantity=-1,
                unit_cost_cents=100, received_at=CUTOVER_DATE, cost_source="MANUAL_INPUT",
            )
        assert exc.value.code == "INVALID_QUANTITY"


class TestBatchedCutover:
    def test_continue_runs_remaining_batches(self, db_session, location, pos_source, stocked_products):
        products = stocked_products(5)

        first = migration_service.initiate_cutover(
            data=cutover_input([location.id]), source=pos_source,
            approved_costs=costs_for(products), batch_size=2,
        )
        assert first["status"] == migration_service.CUTOVER_IN_PROGRESS
        assert (first["current_batch"], first["total_batches"]) == (1, 3)
        assert first["can_continue"] is True
        assert first["locked_location_ids"] == []
        assert db_session.query(CutoverLock).count() == 0

        # Costs given on the first call are replayed from the resumption state
        second = migration_service.continue_cutover(cutover_id=first["cutover_id"], source=pos_source)
        third = migration_service.continue_cutover(cutover_id=first["cutover_id"], source=pos_source)

        assert second["batch_number"] == 2
        assert third["batch_number"] == 3
        assert third["is_complete"] is True
        assert third["processed_items"] == 5
        assert len(lots(db_session)) == 5

        with pytest.raises(MigrationBlocked) as exc:
            migration_service.continue_cutover(cutover_id=first["cutover_id"], source=pos_source)
        assert exc.value.code == "CUTOVER_ALREADY_COMPLETED"

    def test_initiate_with_existing_id_continues(self, db_session, location, pos_source, stocked_products):
        products = stocked_products(4)
        data = cutover_input([location.id])
        first = migration_service.initiate_cutover(
            data=data, source=pos_source, approved_costs=costs_for(products), batch_size=2,
        )

        second = migration_service.initiate_cutover(
            data=data, source=pos_source, existing_cutover_id=first["cutover_id"],
        )

        assert second["batch_number"] == 2
        assert second["is_complete"] is True
        assert db_session.query(Cutover).count() == 1

    def test_existing_id_keeps_stored_date_and_locations(
        self, db_session, location, second_location, pos_source, stocked_products
    ):
        products = stocked_products(4)
        first = migration_service.initiate_cutover(
            data=cutover_input([location.id]), source=pos_source,
            approved_costs=costs_for(products), batch_size=2,
        )

        for changed in (
            cutover_input([location.id], cutover_date=datetime(2024, 3, 1)),
            cutover_input([location.id, second_location.id]),
        ):
            with pytest.raises(ValidationError) as exc:
                migration_service.initiate_cutover(
                    data=changed, source=pos_source, existing_cutover_id=first["cutover_id"],
                )
            assert exc.value.code == "CUTOVER_INPUT_MISMATCH"

        cutover = db_session.get(Cutover, first["cutover_id"])
        assert cutover.current_batch == 1
        assert cutover.resume_state["cutover_date"] == "2024-01-01T00:00:00Z"
        assert len(lots(db_session)) == 2

        second = migration_service.initiate_cutover(
            data=cutover_input([location.id]), source=pos_source, existing_cutover_id=first["cutover_id"],
        )

        assert second["is_complete"] is True
        assert {lot.received_at for lot in lots(db_session)} == {CUTOVER_DATE}
        assert [lock.cutover_date for lock in db_session.query(CutoverLock).all()] == [CUTOVER_DATE]

    def test_replaying_a_batch_creates_nothing(self, db_session, location, pos_source, stocked_products):
        products = stocked_products(4)
        first = migration_service.initiate_cutover(
            data=cutover_input([location.id]), source=pos_source,
            approved_costs=costs_for(products), batch_size=2,
        )
        cutover = db_session.get(Cutover, first["cutover_id"])
        cutover.current_batch = 0
        db_session.commit()

        replay = migration_service.continue_cutover(cutover_id=cutover.id, source=pos_source)

        assert replay["batch_number"] == 1
        assert replay["opening_balances"] == 2
        assert replay["opening_balances_created"] == 0
        assert replay["opening_balances_existing"] == 2
        assert len(lots(db_session)) == 2

    def test_transient_failure_is_retried(self, db_session, location, pos_source, stocked_products, monkeypatch):
        products = stocked_products(3)
        real = migration_service.create_opening_balance
        calls = {"count": 0}

        def flaky(**kwargs):
            calls["count"] += 1
            if calls["count"] == 1:
                raise OperationalError("INSERT INTO inventory_lots", {}, Exception("database is locked"))
            return real(**kwargs)

        monkeypatch.setattr(migration_service, "create_opening_balance", flaky)

        result = migration_service.initiate_cutover(
            data=cutover_input([location.id]), source=pos_source, approved_costs=costs_for(products),
        )

        assert result["opening_balances_created"] == 3
        assert len(lots(db_session)) == 3

    def test_failed_batch_requires_reset(self, db_session, location, pos_source, stocked_products, monkeypatch):
        products = stocked_products(2)

        def broken(**kwargs):
            raise OperationalError("INSERT INTO inventory_lots", {}, Exception("disk I/O error"))

        monkeypatch.setattr(migration_service, "create_opening_balance", broken)
        with pytest.raises(StorageError):
            migration_service.initiate_cutover(
                data=cutover_input([location.id]), source=pos_source, approved_costs=costs_for(products),
            )
        monkeypatch.undo()

        cutover = db_session.query(Cutover).one()
        assert cutover.status == migration_service.CUTOVER_FAILED
        assert cutover.error_message
        assert cutover.result["status"] == migration_service.CUTOVER_FAILED
        assert len(lots(db_session)) == 0

        with pytest.raises(MigrationBlocked) as exc:
            migration_service.continue_cutover(cutover_id=cutover.id, source=pos_source)
        assert exc.value.code == "CUTOVER_RESET_REQUIRED"

        reset = migration_service.reset_cutover(cutover_id=cutover.id)
        assert reset["status"] == migration_service.CUTOVER_PENDING

        result = migration_service.continue_cutover(cutover_id=cutover.id, source=pos_source)
        assert result["is_complete"] is True
        assert len(lots(db_session)) == 2

        with pytest.raises(MigrationBlocked):
            migration_service.reset_cutover(cutover_id=cutover.id)

    @pytest.mark.parametrize("error,code", [
        (RuntimeError("lot writer crashed"), "UNEXPECTED_ERROR"),
        (ValidationError("Opening balance quantity cannot be negative", code="INVALID_QUANTITY"), "INVALID_QUANTITY"),
    ])
    def test_non_database_error_marks_cutover_failed(
        self, db_session, location, pos_source, stocked_products, monkeypatch, error, code
    ):
        products = stocked_products(2)

        def broken(**kwargs):
            raise error

        monkeypatch.setattr(migration_service, "create_opening_balance", broken)
        with pytest.raises(type(error)):
            migration_service.initiate_cutover(
                data=cutover_input([location.id]), source=pos_source, approved_costs=costs_for(products),
            )
        monkeypatch.undo()

        cutover = db_session.query(Cutover).one()
        assert cutover.status == migration_service.CUTOVER_FAILED
        assert cutover.error_message == str(error)
        assert cutover.result["errors"][-1]["code"] == code
        assert len(lots(db_session)) == 0
        assert db_session.query(CutoverLock).count() == 0

    def test_corrupt_resume_state(self, db_session, location, pos_source, stocked_products):
        products = stocked_products(2)
        first = migration_service.initiate_cutover(
            data=cutover_input([location.id]), source=pos_source,
            approved_costs=costs_for(products), batch_size=1,
        )
        cutover = db_session.get(Cutover, first["cutover_id"])
        cutover.resume_state = {"location_ids": [location.id], "cost_basis": "MANUAL_INPUT"}
        db_session.commit()

        with pytest.raises(ValidationError) as exc:
            migration_service.continue_cutover(cutover_id=cutover.id, source=pos_source)

        assert exc.value.code == "RESUME_STATE_INVALID"
        assert "cutover_date" in exc.value.details["missing"]
        assert exc.value.can_retry is False

    def test_unknown_cutover(self, db_session, pos_source):
        with pytest.raises(ValidationError) as exc:
            migration_service.continue_cutover(cutover_id="missing", source=pos_source)
        assert exc.value.code == "CUTOVER_NOT_FOUND"


class TestResumptionState:
    RECORD = {
        "location_ids": [1],
        "cutover_date": "2024-01-01T00:00:00Z",
        "cost_basis": "DESCRIPTION",
        "owner_approved": True,
        "batch_size": 50,
        "manual_costs": {"7": 125},
    }

    def test_valid_record(self):
        state = ResumptionState.from_record(self.RECORD)

        assert state.to_input().cutover_date == CUTOVER_DATE
        assert state.manual_costs == {"7": 125}

    @pytest.mark.parametrize("override", [
        {"cost_basis": "GUESS"},
        {"batch_size": 0},
        {"location_ids": []},
        {"owner_approved": "true"},
        {"cutover_date": "soon"},
        {"manual_costs": {"7": -1}},
    ])
    def test_invalid_records(self, override):
        with pytest.raises(ValidationError) as exc:
            ResumptionState.from_record({**self.RECORD, **override})
        assert exc.value.code == "RESUME_STATE_INVALID"

    def test_missing_record(self):
        with pytest.raises(ValidationError):
            ResumptionState.from_record(None)


class TestLocks:
    def complete(self, location, pos_source):
        return migration_service.initiate_cutover(data=cutover_input([location.id]), source=pos_source)

    def test_backdated_operation_blocked(self, db_session, location, second_location, pos_source):
        self.complete(location, pos_source)

        with pytest.raises(MigrationBlocked) as exc:
            migration_service.validate_no_backdated_operation(
                location_id=location.id, effective_at=datetime(2023, 12, 31),
            )
        assert exc.value.code == "BACKDATED_OPERATION"
        assert exc.value.location_id == location.id

        migration_service.validate_no_backdated_operation(location_id=location.id, effective_at=datetime(2024, 1, 2))
        migration_service.validate_no_backdated_operation(
            location_id=second_location.id, effective_at=datetime(2020, 1, 1),
        )

    def test_earlier_cutover_on_locked_location_is_rejected(self, db_session, location, pos_source):
        self.complete(location, pos_source)

        with pytest.raises(ValidationError) as exc:
            migration_service.initiate_cutover(
                data=cutover_input([location.id], cutover_date=datetime(2023, 6, 1)), source=pos_source,
            )
        assert "BACKDATED_OPERATION" in {e["code"] for e in exc.value.details["errors"]}

    def test_status(self, db_session, location, second_location, pos_source):
        result = self.complete(location, pos_source)

        per_location = migration_service.get_cutover_status(location_id=location.id)
        other = migration_service.get_cutover_status(location_id=second_location.id)
        overall = migration_service.get_cutover_status()

        assert per_location["is_locked"] is True
        assert per_location["cutover_id"] == result["cutover_id"]
        assert per_location["cutover_date"] == "2024-01-01T00:00:00Z"
        assert other["is_locked"] is False
        assert [lock["location_id"] for lock in overall["locks"]] == [location.id]
        assert overall["latest_cutover"]["id"] == result["cutover_id"]


def test_preview_writes_nothing(db_session, location, second_location, pos_source, make_product):
    aspirin = make_product("Aspirin", "VAR-A")
    gauze = make_product("Gauze", "VAR-B")
    pos_source.set_inventory("LOC-1", [("VAR-A", 4), ("VAR-B", -2)])
    pos_source.set_inventory("LOC-2", [("VAR-A", 3)])

    preview = migration_service.preview_cutover(
        data=cutover_input([location.id, second_location.id]),
        source=pos_source,
        approved_costs={aspirin.id: "1.00", gauze.id: "2.00"},
    )

    assert preview["total_items"] == 3
    main, harbor = preview["locations"]
    assert (main["location_name"], main["items"], main["with_cost"]) == ("Main Street", 2, 2)
    assert main["negative_quantities"] == 1
    assert main["total_quantity"] == 4
    assert main["estimated_value_cents"] == 400
    assert harbor["estimated_value_cents"] == 300
    assert db_session.query(Cutover).count() == 0
    assert db_session.query(InventoryLot).count() == 0

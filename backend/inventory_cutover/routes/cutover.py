# Overview: Flask API routes for cost review and inventory cutover; parses input and returns JSON responses.

"""
Cutover Routes

Extraction (review) endpoints drive one batch per call; cutover endpoints
migrate one batch per call. Every response carries current_batch,
total_batches, is_complete and can_continue so a client can drive the loop.

Errors from the service layer are MigrationError subclasses and are rendered
as {"error": {code, message, recovery_action, can_retry, can_resume, ...}}.
"""

from flask import Blueprint, current_app, jsonify, request

from ..errors import MigrationError, ValidationError
from ..services import extraction_service, migration_service, supplier_service
from ..services.migration_service import CutoverInput
from ..services.pos_source import get_pos_source
from ..time_utils import parse_iso_datetime


cutover_bp = Blueprint("cutover", __name__, url_prefix="/api/inventory/cutover")


@cutover_bp.errorhandler(MigrationError)
def handle_migration_error(error: MigrationError):
    if error.http_status >= 500:
        current_app.logger.error("Cutover request failed: %s (%s)", error.message, error.code)
    return jsonify({"error": error.to_dict()}), error.http_status


def _require_fields(data: dict, *names: str):
    missing = [name for name in names if data.get(name) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required field(s): {', '.join(missing)}", code="MISSING_FIELDS")


@cutover_bp.post("/extract-costs")
def extract_costs_route():
    data = request.get_json(silent=True) or {}
    if not data.get("session_id"):
        _require_fields(data, "location_ids")

    result = extraction_service.start_or_resume_extraction(
        location_ids=data.get("location_ids") or [],
        cost_basis=data.get("cost_basis") or extraction_service.EXTRACTION_COST_BASIS,
        batch_size=data.get("batch_size"),
        session_id=data.get("session_id"),
        source=get_pos_source(),
    )
    return jsonify(result), 200


@cutover_bp.get("/extraction-sessions/<session_id>")
def get_extraction_session_route(session_id: str):
    return jsonify({"session": extraction_service.get_extraction_session(session_id=session_id)}), 200


@cutover_bp.post("/extraction-sessions/<session_id>/cancel")
def cancel_extraction_session_route(session_id: str):
    return jsonify({"session": extraction_service.cancel_extraction_session(session_id=session_id)}), 200


@cutover_bp.post("/extraction-batches/<int:batch_id>/approve")
def approve_batch_route(batch_id: int):
    data = request.get_json(silent=True) or {}
    result = extraction_service.approve_batch(
        batch_id=batch_id,
        approvals=data.get("approvals") or [],
        supplier_initials_updates=data.get("supplier_initials_updates"),
        approved_by=data.get("approved_by"),
    )
    return jsonify(result), 200


@cutover_bp.post("/extraction-batches/<int:batch_id>/reject")
def reject_batch_route(batch_id: int):
    return jsonify({"batch": extraction_service.reject_batch(batch_id=batch_id)}), 200


@cutover_bp.post("/approvals")
def approve_item_route():
    data = request.get_json(silent=True) or {}
    _require_fields(data, "cutover_id", "product_id", "cost")
    approval = extraction_service.approve_item(
        cutover_id=str(data["cutover_id"]),
        product_id=data["product_id"],
        cost=data["cost"],
        source=data.get("source") or migration_service.MANUAL_INPUT,
        notes=data.get("notes"),
        approved_by=data.get("approved_by"),
    )
    return jsonify({"approval": approval}), 200


@cutover_bp.post("/approvals/discard")
def discard_item_route():
    data = request.get_json(silent=True) or {}
    _require_fields(data, "cutover_id", "product_id")
    approval = extraction_service.discard_item(
        cutover_id=str(data["cutover_id"]),
        product_id=data["product_id"],
        notes=data.get("notes"),
    )
    return jsonify({"approval": approval}), 200


@cutover_bp.post("/approvals/restore")
def restore_item_route():
    data = request.get_json(silent=True) or {}
    _require_fields(data, "cutover_id", "product_id")
    approval = extraction_service.restore_item(cutover_id=str(data["cutover_id"]), product_id=data["product_id"])
    return jsonify({"approval": approval}), 200


@cutover_bp.get("/approvals/<cutover_id>")
def list_approvals_route(cutover_id: str):
    return jsonify({"approvals": extraction_service.get_cost_approvals(cutover_id=cutover_id)}), 200


@cutover_bp.post("")
def initiate_cutover_route():
    data = request.get_json(silent=True) or {}
    result = migration_service.initiate_cutover(
        data=CutoverInput.from_payload(data),
        source=get_pos_source(),
        approved_costs=data.get("approved_costs"),
        batch_size=data.get("batch_size"),
        existing_cutover_id=data.get("cutover_id"),
    )
    return jsonify(result), 200


@cutover_bp.post("/preview")
def preview_cutover_route():
    data = request.get_json(silent=True) or {}
    result = migration_service.preview_cutover(
        data=CutoverInput.from_payload(data),
        source=get_pos_source(),
        approved_costs=data.get("approved_costs"),
    )
    return jsonify(result), 200


@cutover_bp.post("/<cutover_id>/continue")
def continue_cutover_route(cutover_id: str):
    return jsonify(migration_service.continue_cutover(cutover_id=cutover_id, source=get_pos_source())), 200


@cutover_bp.post("/<cutover_id>/reset")
def reset_cutover_route(cutover_id: str):
    return jsonify({"cutover": migration_service.reset_cutover(cutover_id=cutover_id)}), 200


@cutover_bp.get("/status")
def cutover_status_route():
    location_id = request.args.get("location_id", type=int)
    return jsonify(migration_service.get_cutover_status(location_id=location_id)), 200


@cutover_bp.post("/check-backdated")
def check_backdated_route():
    data = request.get_json(silent=True) or {}
    _require_fields(data, "location_id", "effective_at")
    try:
        effective_at = parse_iso_datetime(str(data["effective_at"]))
    except ValueError as exc:
        raise ValidationError("effective_at must be an ISO-8601 datetime", code="INVALID_EFFECTIVE_AT") from exc
    try:
        location_id = int(data["location_id"])
    except (TypeError, ValueError) as exc:
        raise ValidationError(
            f"location_id must be an integer, got {data['location_id']!r}", code="INVALID_LOCATION_ID",
        ) from exc

    migration_service.validate_no_backdated_operation(location_id=location_id, effective_at=effective_at)
    return jsonify({"allowed": True}), 200


@cutover_bp.get("/suppliers/suggest")
def suggest_suppliers_route():
    term = request.args.get("q", "")
    limit = request.args.get("limit", default=5, type=int)
    return jsonify({"suggestions": supplier_service.suggest_suppliers(term, limit=limit)}), 200

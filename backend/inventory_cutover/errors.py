"""
Cutover Error Taxonomy

WHY: Every failure surfaced by extraction or migration must tell the caller
what went wrong AND what to do next. A UI (or a script) decides whether to
retry the same call, fix input, run a catalog sync, or resume later purely
from these fields.

FIELDS:
- code: stable machine-readable identifier (never reworded)
- message: technical description (logs)
- user_message: operator-facing description
- recovery_action: suggested next step
- can_retry: repeating the same call may succeed
- can_resume: the session/cutover can be continued from its checkpoint

CLASSES:
- ValidationError: bad caller input, fix-and-retry
- UnmappedProductError: catalog gap, retryable after a catalog sync
- MissingCostError: per-item, non-blocking for the rest of the batch
- ExternalSourceError: transient network/API failure, retryable
- StorageError: transient database failure, retryable
- MigrationBlocked: explicit rule violation, not retryable without override
- DataIntegrityError: mapping points at a missing product, fatal

Per-item errors are collected as to_dict() entries inside results; structural
errors are raised.
"""

from __future__ import annotations

from typing import Any


class MigrationError(Exception):
    """Base class for all cutover/extraction errors."""

    default_code = "MIGRATION_ERROR"
    http_status = 500
    default_recovery_action = "Contact support if the problem persists."
    default_can_retry = False
    default_can_resume = False

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        user_message: str | None = None,
        recovery_action: str | None = None,
        can_retry: bool | None = None,
        can_resume: bool | None = None,
        product_id: int | None = None,
        location_id: int | None = None,
        external_id: str | None = None,
        batch_number: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.code = code or self.default_code
        self.message = message
        self.user_message = user_message or message
        self.recovery_action = recovery_action or self.default_recovery_action
        self.can_retry = self.default_can_retry if can_retry is None else can_retry
        self.can_resume = self.default_can_resume if can_resume is None else can_resume
        self.product_id = product_id
        self.location_id = location_id
        self.external_id = external_id
        self.batch_number = batch_number
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "user_message": self.user_message,
            "recovery_action": self.recovery_action,
            "can_retry": self.can_retry,
            "can_resume": self.can_resume,
        }
        if self.product_id is not None:
            data["product_id"] = self.product_id
        if self.location_id is not None:
            data["location_id"] = self.location_id
        if self.external_id is not None:
            data["external_id"] = self.external_id
        if self.batch_number is not None:
            data["batch_number"] = self.batch_number
        if self.details:
            data["details"] = self.details
        return data


class ValidationError(MigrationError):
    """Raised when caller input is invalid."""

    default_code = "VALIDATION_ERROR"
    http_status = 400
    default_recovery_action = "Correct the request and try again."
    default_can_retry = True


class NotFoundError(ValidationError):
    """Raised when a referenced session/batch/cutover/approval does not exist."""

    default_code = "NOT_FOUND"
    http_status = 404
    default_recovery_action = "Check the identifier, or start a new session."


class InvalidStateError(ValidationError):
    """Raised when an operation is not allowed in the record's current status."""

    default_code = "INVALID_STATE"
    http_status = 409
    default_recovery_action = "Start a new session or reset the record first."
    default_can_retry = False


class UnmappedProductError(MigrationError):
    default_code = "UNMAPPED_PRODUCT"
    http_status = 422
    default_recovery_action = "Run a catalog sync so the item gets a product mapping, then retry."
    # Only after a catalog sync, never as-is.
    default_can_retry = False
    default_can_resume = True


class MissingCostError(MigrationError):
    default_code = "MISSING_COST"
    http_status = 422
    default_recovery_action = "Approve a cost for this product, then continue the cutover."
    default_can_resume = True


class DataIntegrityError(MigrationError):
    """A catalog mapping references a product row that no longer exists."""

    default_code = "DATA_INTEGRITY_ERROR"
    http_status = 500
    default_recovery_action = "Repair the catalog mapping; this cannot be fixed by retrying."


class ExternalSourceError(MigrationError):
    default_code = "EXTERNAL_SOURCE_ERROR"
    http_status = 502
    default_recovery_action = "Check the POS connection and retry."
    default_can_retry = True
    default_can_resume = True


class StorageError(MigrationError):
    default_code = "DATABASE_ERROR"
    http_status = 503
    default_recovery_action = "Retry the operation; progress up to the last completed batch is saved."
    default_can_retry = True
    default_can_resume = True


class MigrationBlocked(MigrationError):
    default_code = "MIGRATION_BLOCKED"
    http_status = 409
    default_recovery_action = "This action is not allowed by the cutover policy."


def session_not_found(session_id: str) -> NotFoundError:
    return NotFoundError(
        f"Extraction session {session_id} not found",
        code="SESSION_NOT_FOUND",
        user_message="The extraction session was not found.",
        recovery_action="Start a new extraction session.",
        details={"session_id": session_id},
    )


def session_invalid_state(session_id: str, status: str) -> InvalidStateError:
    return InvalidStateError(
        f"Extraction session {session_id} is {status}",
        code="SESSION_INVALID_STATE",
        user_message=f"The extraction session is {status.lower()} and cannot be used.",
        recovery_action="Start a new extraction session.",
        details={"session_id": session_id, "status": status},
    )


def location_not_found(location_id: int) -> ValidationError:
    return ValidationError(
        f"Location {location_id} not found",
        code="LOCATION_NOT_FOUND",
        user_message="The selected location does not exist.",
        recovery_action="Select a different location.",
        location_id=location_id,
    )


def location_not_connected(location_id: int) -> ValidationError:
    return ValidationError(
        f"Location {location_id} has no external POS location id",
        code="LOCATION_NOT_CONNECTED",
        user_message="The selected location is not connected to the POS.",
        recovery_action="Link the location to its POS location, then try again.",
        location_id=location_id,
    )


def inventory_fetch_failed(location_id: int, cause: Exception) -> ExternalSourceError:
    return ExternalSourceError(
        f"Failed to fetch inventory for location {location_id}: {cause}",
        code="INVENTORY_FETCH_FAILED",
        user_message="Could not read inventory from the POS.",
        location_id=location_id,
    )


def catalog_fetch_failed(variation_ids: list[str], cause: Exception) -> ExternalSourceError:
    return ExternalSourceError(
        f"Failed to fetch catalog metadata for {len(variation_ids)} item(s): {cause}",
        code="CATALOG_FETCH_FAILED",
        user_message="Some product details could not be loaded from the POS; cached details were used.",
        details={"variation_ids": list(variation_ids)},
    )


def cost_fetch_failed(variation_ids: list[str], cause: Exception) -> ExternalSourceError:
    return ExternalSourceError(
        f"Failed to fetch POS unit costs for {len(variation_ids)} item(s): {cause}",
        code="COST_FETCH_FAILED",
        user_message="Some costs could not be read from the POS; those items have no cost.",
        details={"variation_ids": list(variation_ids)},
    )

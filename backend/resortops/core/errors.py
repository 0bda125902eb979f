"""Typed errors raised by the lifecycle core.

Every error carries the HTTP status it maps to and a stable ``code`` so the
page layer can decide how to render it (disabled action, inline message,
silent retry).
"""

from typing import Any, Dict, Optional


class LifecycleError(Exception):
    """Base class for all lifecycle core errors."""

    code = "lifecycle_error"
    http_status = 400

    def __init__(self, message: str, **extra: Any):
        self.message = message
        self.extra: Dict[str, Any] = extra
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "code": self.code, **self.extra}


class NotFoundError(LifecycleError):
    """The entity or stock item does not exist."""

    code = "not_found"
    http_status = 404


class EntityExistsError(LifecycleError):
    """An entity with the same (entity_type, entity_id) is already tracked."""

    code = "entity_exists"
    http_status = 409


class IllegalTransitionError(LifecycleError):
    """The target status is not reachable from the current one."""

    code = "illegal_transition"
    http_status = 422

    def __init__(self, entity_type: str, from_status: Optional[str], to_status: str, allowed=None):
        allowed = sorted(allowed or [])
        super().__init__(
            f"{entity_type} cannot move from '{from_status}' to '{to_status}'",
            entity_type=entity_type,
            from_status=from_status,
            to_status=to_status,
            allowed=allowed,
        )


class VersionConflictError(LifecycleError):
    """The caller read a stale version; it must re-read and retry."""

    code = "version_conflict"
    http_status = 409

    def __init__(self, entity_type: str, entity_id: str, expected: Optional[int], current: Optional[int]):
        super().__init__(
            f"Version conflict on {entity_type} {entity_id}: expected {expected}, current {current}",
            entity_type=entity_type,
            entity_id=entity_id,
            expected_version=expected,
            current_version=current,
        )


class InsufficientStockError(LifecycleError):
    """An outbound movement would take the item below zero."""

    code = "insufficient_stock"
    http_status = 409

    def __init__(self, item_id: int, item_name: str, current_level: int, requested: int):
        super().__init__(
            f"Insufficient stock for '{item_name}': need {requested}, have {current_level}",
            item_id=item_id,
            current_level=current_level,
            requested=requested,
        )


class InvalidMovementError(LifecycleError):
    """A stock movement request is malformed (bad kind, non-positive quantity)."""

    code = "invalid_movement"
    http_status = 422


class InvalidEntityError(LifecycleError):
    """Entity attributes are missing something a lifecycle rule depends on."""

    code = "invalid_entity"
    http_status = 422


class InvalidTransactionError(LifecycleError):
    """A manual finance entry has an unknown type or category, or a bad amount."""

    code = "invalid_transaction"
    http_status = 422


class InactiveRecordError(LifecycleError):
    """The referenced supplier has been deactivated."""

    code = "inactive_record"
    http_status = 422


class DispatchFailedError(LifecycleError):
    """A derived record could not be created; the transition was rolled back."""

    code = "dispatch_failed"
    http_status = 503


class ImmutableRecordError(Exception):
    """Raised when code tries to update or delete an append-only row."""

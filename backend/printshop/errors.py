# Overview: Error taxonomy for the fulfillment lifecycle; every failure carries a machine-readable kind.

"""
Lifecycle error taxonomy.

Each error carries:
- kind: stable machine-readable identifier returned to API callers
- status_code: HTTP status the API layer responds with
- details: structured context (current/target states, limits, dates)

Retry semantics:
- ConcurrencyConflictError: the caller (or infrastructure) may retry the operation.
- DependencyUnavailableError: retried with backoff at the boundary; nothing was committed.
- Everything else is a business or input problem and is never retried.
"""

from __future__ import annotations

from flask import jsonify


class LifecycleError(Exception):
    """Base class for all typed lifecycle failures."""

    kind = "lifecycle_error"
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(LifecycleError):
    """400-level input problem."""
    kind = "validation_error"
    status_code = 400


class AuthenticationRequired(LifecycleError):
    kind = "authentication_required"
    status_code = 401


class ForbiddenError(LifecycleError):
    kind = "forbidden"
    status_code = 403


class NotFoundError(LifecycleError):
    kind = "not_found"
    status_code = 404


class InvalidStateError(LifecycleError):
    """Operation is incompatible with the entity's current state."""
    kind = "invalid_state"
    status_code = 409


class IllegalTransitionError(InvalidStateError):
    """Requested status change is not in the allow-list graph."""
    kind = "illegal_transition"

    def __init__(self, entity: str, current_status: str, target_status: str, reason: str | None = None):
        message = f"Cannot move {entity} from {current_status} to {target_status}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message,
            details={"current_status": current_status, "target_status": target_status},
        )
        self.current_status = current_status
        self.target_status = target_status


class ConcurrencyConflictError(LifecycleError):
    """Optimistic-lock failure that survived the retry budget."""
    kind = "concurrency_conflict"
    status_code = 409


class CapacityExceededError(LifecycleError):
    kind = "capacity_exceeded"
    status_code = 422


class BlackoutDateError(LifecycleError):
    kind = "blackout_date"
    status_code = 422


class CancellationWindowClosed(LifecycleError):
    kind = "cancellation_window_closed"
    status_code = 422


class RevisionLimitExceeded(LifecycleError):
    kind = "revision_limit_exceeded"
    status_code = 422


class DependencyUnavailableError(LifecycleError):
    """Persistence or collaborator failure; the operation committed nothing."""
    kind = "dependency_unavailable"
    status_code = 503


def error_response(exc: LifecycleError):
    """JSON body and status for a typed failure."""
    return jsonify({"error": exc.to_dict()}), exc.status_code


def internal_error_response():
    return jsonify({"error": {
        "kind": "internal_error",
        "message": "Internal server error",
        "details": {},
    }}), 500

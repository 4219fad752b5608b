"""Domain errors raised by the check services.

Every error carries the HTTP status it maps to so the API layer can
translate it with a single exception handler.
"""

from typing import Any


class CheckCoreError(Exception):
    """Base class for check core errors."""

    status_code = 400
    kind = "check_core_error"

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"detail": self.message, "error": self.kind}
        if self.details:
            payload["context"] = self.details
        return payload


class ValidationError(CheckCoreError):
    """Bad input; state is unchanged."""

    status_code = 422
    kind = "validation_error"


class NotFoundError(CheckCoreError):
    """Referenced entity does not exist."""

    status_code = 404
    kind = "not_found"


class PreconditionError(CheckCoreError):
    """Operation is illegal in the current state (e.g. split with unsent items)."""

    status_code = 409
    kind = "precondition_failed"


class VersionConflictError(PreconditionError):
    """The caller's check version is stale."""

    kind = "version_conflict"

    def __init__(self, expected: int, current: int):
        super().__init__(
            f"Version conflict: expected {expected}, current {current}",
            expected=expected,
            current=current,
        )


class AuthorizationError(CheckCoreError):
    """Missing or invalid manager approval for a gated action."""

    status_code = 403
    kind = "authorization_failed"


class PartialWriteError(CheckCoreError):
    """A multi-row write failed part way; the unit of work was rolled back."""

    status_code = 500
    kind = "partial_write"

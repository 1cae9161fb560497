from __future__ import annotations

from typing import Any


class RailfleetError(Exception):
    """Base error for RailFleet; carries the HTTP status and stable error code."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class NotFoundError(RailfleetError):
    """Entity id absent or outside the caller's tenant scope."""

    status_code = 404
    code = "NOT_FOUND"


class ValidationFailure(RailfleetError):
    """Missing or malformed request fields."""

    status_code = 400
    code = "VALIDATION_FAILED"


class StateConflictError(RailfleetError):
    """Requested transition does not apply to the entity's current state."""

    status_code = 409
    code = "STATE_CONFLICT"


class TransactionFailure(RailfleetError):
    """A statement inside a transaction failed; the transaction was rolled back."""

    status_code = 500
    code = "TRANSACTION_FAILED"


class AuthError(RailfleetError):
    """Missing, malformed or unverifiable bearer token."""

    status_code = 401
    code = "AUTH_UNAUTHORIZED"


class ForbiddenError(RailfleetError):
    """Authenticated identity lacks permission for the operation."""

    status_code = 403
    code = "AUTH_FORBIDDEN"


class UpstreamUnavailableError(RailfleetError):
    """External search or completion service unreachable or misconfigured."""

    status_code = 503
    code = "UPSTREAM_UNAVAILABLE"


class SearchError(UpstreamUnavailableError):
    """Document search request failure."""


class CompletionError(UpstreamUnavailableError):
    """Chat completion request failure."""

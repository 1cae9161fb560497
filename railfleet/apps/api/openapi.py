from __future__ import annotations

from typing import Any

from railfleet.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "success": False,
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _response(description: str, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {
            "application/json": {
                "example": _error_example(code=code, message=message, details=details),
            }
        },
    }


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: _response(
        "Validation failed",
        "VALIDATION_FAILED",
        "Request validation failed",
        details={"errors": [{"loc": ["body", "reason"], "msg": "Field required", "type": "missing"}]},
    ),
    401: _response("Unauthorized", "AUTH_UNAUTHORIZED", "Missing or invalid bearer token"),
    403: _response("Forbidden", "AUTH_FORBIDDEN", "Super-admin access required"),
    404: _response("Not found", "NOT_FOUND", "Aggregate not found", details={"aggregate_id": 10}),
    409: _response(
        "State conflict",
        "STATE_CONFLICT",
        "Old aggregate is not attached to a wagon",
        details={"aggregate_id": 10},
    ),
    500: _response("Transaction failed", "TRANSACTION_FAILED", "Failed to replace aggregate"),
}

UPSTREAM_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    503: _response("Upstream unavailable", "UPSTREAM_UNAVAILABLE", "Database connection failed"),
}

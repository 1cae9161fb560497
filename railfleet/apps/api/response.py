from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import uuid4

from fastapi import Request
from pydantic import BaseModel, Field


class ResponseMeta(BaseModel):
    # Include the request id so clients can correlate failures with server logs.
    request_id: str


class ErrorDetail(BaseModel):
    # Standardize error codes/messages with optional structured details.
    code: str
    message: str
    details: dict[str, Any] | None = None


class ErrorEnvelope(BaseModel):
    success: bool = Field(default=False)
    error: ErrorDetail
    meta: ResponseMeta


class MessageResponse(BaseModel):
    success: bool = True
    message: str


def get_request_id(request: Request) -> str:
    # Use existing request IDs when provided to preserve traceability.
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return request_id
    header_request_id = request.headers.get("X-Request-Id")
    if header_request_id:
        request.state.request_id = header_request_id
        return header_request_id
    generated = str(uuid4())
    request.state.request_id = generated
    return generated


def error_response(
    *,
    request: Request,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    meta = ResponseMeta(request_id=get_request_id(request))
    error = ErrorDetail(code=code, message=message, details=details)
    return {"success": False, "error": error.model_dump(exclude_none=True), "meta": meta.model_dump()}


def isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None

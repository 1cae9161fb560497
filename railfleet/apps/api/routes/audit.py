from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from railfleet.apps.api.deps import Principal, get_current_principal, get_db
from railfleet.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from railfleet.apps.api.response import isoformat
from railfleet.persistence.repos import audit as audit_repo


router = APIRouter(prefix="/api/audit-logs", tags=["audit"], responses=DEFAULT_ERROR_RESPONSES)


class AuditLogResponse(BaseModel):
    id: int
    tenant_id: str | None
    user_email: str | None
    user_name: str | None
    action: str
    entity_type: str
    entity_id: str | None
    old_value: dict[str, Any] | None
    new_value: dict[str, Any] | None
    description: str | None
    ip_address: str | None
    created_at: str | None


class AuditLogsPage(BaseModel):
    items: list[AuditLogResponse]
    next_offset: int | None


def _to_response(entry) -> AuditLogResponse:
    return AuditLogResponse(
        id=entry.id,
        tenant_id=entry.tenant_id,
        user_email=entry.user_email,
        user_name=entry.user_name,
        action=entry.action,
        entity_type=entry.entity_type,
        entity_id=entry.entity_id,
        old_value=entry.old_value,
        new_value=entry.new_value,
        description=entry.description,
        ip_address=entry.ip_address,
        created_at=isoformat(entry.created_at),
    )


@router.get("", response_model=AuditLogsPage)
async def list_audit_logs(
    action: str | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=500),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> AuditLogsPage:
    # Newest first; fetch one extra row to know whether another page exists.
    entries = await audit_repo.list_logs(
        db,
        tenant_id=principal.tenant_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        offset=offset,
        limit=limit + 1,
    )
    next_offset = None
    if len(entries) > limit:
        entries = entries[:limit]
        next_offset = offset + limit
    return AuditLogsPage(items=[_to_response(entry) for entry in entries], next_offset=next_offset)

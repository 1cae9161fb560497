from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from railfleet.apps.api.deps import Principal, actor_for, get_db, get_tenant_resolver, require_super_admin
from railfleet.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from railfleet.persistence.db import atomic
from railfleet.services import audit
from railfleet.services.tenancy import TenantMapping, TenantResolver


router = APIRouter(prefix="/api/tenant-mappings", tags=["tenants"], responses=DEFAULT_ERROR_RESPONSES)


class TenantMappingResponse(BaseModel):
    external_id: str
    internal_id: str
    name: str


class TenantMappingsResponse(BaseModel):
    default_tenant_id: str
    mappings: list[TenantMappingResponse]


class TenantMappingUpsertRequest(BaseModel):
    external_id: str = Field(min_length=1)
    internal_id: str = Field(min_length=1, max_length=100)
    name: str = ""


class TenantMappingUpsertResponse(BaseModel):
    created: bool
    mapping: TenantMappingResponse


def _to_response(mapping: TenantMapping) -> TenantMappingResponse:
    return TenantMappingResponse(
        external_id=mapping.external_id, internal_id=mapping.internal_id, name=mapping.name
    )


@router.get("", response_model=TenantMappingsResponse)
async def list_tenant_mappings(
    _principal: Principal = Depends(require_super_admin),
    resolver: TenantResolver = Depends(get_tenant_resolver),
) -> TenantMappingsResponse:
    return TenantMappingsResponse(
        default_tenant_id=resolver.default_tenant_id,
        mappings=[_to_response(mapping) for mapping in resolver.mappings()],
    )


@router.put("", response_model=TenantMappingUpsertResponse)
async def upsert_tenant_mapping(
    payload: TenantMappingUpsertRequest,
    request: Request,
    principal: Principal = Depends(require_super_admin),
    resolver: TenantResolver = Depends(get_tenant_resolver),
    db: AsyncSession = Depends(get_db),
) -> TenantMappingUpsertResponse:
    # In-memory only; restarts fall back to TENANT_MAPPING_JSON or the built-in table.
    mapping = TenantMapping(
        external_id=payload.external_id, internal_id=payload.internal_id, name=payload.name
    )
    previous = next(
        (existing for existing in resolver.mappings() if existing.external_id == mapping.external_id), None
    )
    async with atomic(db, operation="record tenant mapping change"):
        audit.record(
            db,
            tenant_id=mapping.internal_id,
            actor=actor_for(principal, request),
            action="UPDATE" if previous is not None else "CREATE",
            entity_type="tenant_mapping",
            entity_id=mapping.external_id,
            old_value=previous.model_dump() if previous is not None else None,
            new_value=mapping.model_dump(),
            description=f"Mapped identity tenant {mapping.external_id} to {mapping.internal_id}",
        )
    created = resolver.add_or_update(mapping)
    return TenantMappingUpsertResponse(created=created, mapping=_to_response(mapping))

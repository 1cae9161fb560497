from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from railfleet.apps.api.deps import (
    Principal,
    actor_for,
    ensure_tenant_access,
    get_current_principal,
    get_db,
)
from railfleet.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from railfleet.apps.api.response import MessageResponse, isoformat
from railfleet.services import fleet


router = APIRouter(prefix="/api/tenants", tags=["tenants"], responses=DEFAULT_ERROR_RESPONSES)


class TenantResponse(BaseModel):
    id: int
    tenant_id: str
    name: str
    logo_url: str | None
    primary_color: str
    language: str
    created_at: str | None
    updated_at: str | None


class TenantSummaryResponse(TenantResponse):
    wagon_count: int | None
    wagon_types: list[str] | None


class TrainConfigurationResponse(BaseModel):
    tenant_id: str
    wagon_count: int
    wagon_types: list[str]
    custom_labels: dict[str, str] | None
    updated_at: str | None


class TenantConfigurationResponse(BaseModel):
    tenant: TenantResponse
    configuration: TrainConfigurationResponse | None


class TenantConfigurationUpdateResult(MessageResponse):
    tenant: TenantResponse
    configuration: TrainConfigurationResponse


class TenantConfigurationUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    logo_url: str | None = None
    primary_color: str | None = Field(default=None, pattern=r"^#[0-9A-Fa-f]{6}$")
    language: str | None = Field(default=None, min_length=2, max_length=5)
    wagon_count: int | None = Field(default=None, ge=1)
    wagon_types: list[str] | None = Field(default=None, min_length=1)
    custom_labels: dict[str, str] | None = None


def _tenant_response(tenant) -> TenantResponse:
    return TenantResponse(
        id=tenant.id,
        tenant_id=tenant.tenant_id,
        name=tenant.name,
        logo_url=tenant.logo_url,
        primary_color=tenant.primary_color,
        language=tenant.language,
        created_at=isoformat(tenant.created_at),
        updated_at=isoformat(tenant.updated_at),
    )


def _config_response(config) -> TrainConfigurationResponse | None:
    if config is None:
        return None
    return TrainConfigurationResponse(
        tenant_id=config.tenant_id,
        wagon_count=config.wagon_count,
        wagon_types=list(config.wagon_types or []),
        custom_labels=config.custom_labels,
        updated_at=isoformat(config.updated_at),
    )


@router.get("", response_model=list[TenantSummaryResponse])
async def list_tenants(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> list[TenantSummaryResponse]:
    # Super-admins see every tenant; everyone else sees their own.
    scope = None if principal.is_super_admin else [principal.tenant_id]
    rows = await fleet.list_tenants(db, scope)
    return [
        TenantSummaryResponse(
            **_tenant_response(tenant).model_dump(),
            wagon_count=config.wagon_count if config is not None else None,
            wagon_types=list(config.wagon_types or []) if config is not None else None,
        )
        for tenant, config in rows
    ]


@router.get("/{tenant_id}/configuration", response_model=TenantConfigurationResponse)
async def get_tenant_configuration(
    tenant_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> TenantConfigurationResponse:
    ensure_tenant_access(principal, tenant_id)
    tenant, config = await fleet.get_tenant_configuration(db, tenant_id)
    return TenantConfigurationResponse(tenant=_tenant_response(tenant), configuration=_config_response(config))


@router.put("/{tenant_id}/configuration", response_model=TenantConfigurationUpdateResult)
async def update_tenant_configuration(
    tenant_id: str,
    payload: TenantConfigurationUpdateRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> TenantConfigurationUpdateResult:
    ensure_tenant_access(principal, tenant_id)
    tenant, config = await fleet.update_tenant_configuration(
        db,
        tenant_id=tenant_id,
        actor=actor_for(principal, request),
        **payload.model_dump(),
    )
    return TenantConfigurationUpdateResult(
        message="Configuration updated",
        tenant=_tenant_response(tenant),
        configuration=_config_response(config),
    )

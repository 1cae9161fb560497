from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from railfleet.apps.api.deps import Principal, get_current_principal, get_tenant_resolver
from railfleet.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from railfleet.services.tenancy import TenantResolver


router = APIRouter(tags=["identity"], responses=DEFAULT_ERROR_RESPONSES)


class MeResponse(BaseModel):
    email: str
    name: str
    tenant_id: str
    tenant_name: str
    external_tenant_id: str | None
    object_id: str | None
    groups: list[str]
    is_super_admin: bool
    auth_method: str


@router.get("/me", response_model=MeResponse)
async def me(
    principal: Principal = Depends(get_current_principal),
    resolver: TenantResolver = Depends(get_tenant_resolver),
) -> MeResponse:
    return MeResponse(
        **principal.model_dump(),
        tenant_name=resolver.tenant_name(principal.tenant_id),
    )

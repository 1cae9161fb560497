from __future__ import annotations

import logging
from typing import AsyncGenerator

from fastapi import Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from railfleet.core.config import get_settings
from railfleet.core.errors import AuthError, ForbiddenError
from railfleet.persistence.db import get_session
from railfleet.services.audit import Actor, client_ip
from railfleet.services.auth.tokens import Identity, verify_bearer_token
from railfleet.services.chat import ChatGateway
from railfleet.services.tenancy import TenantResolver


logger = logging.getLogger(__name__)

DEV_EMAIL = "dev@railfleet.app"
DEV_NAME = "Development User"


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


def get_tenant_resolver(request: Request) -> TenantResolver:
    return request.app.state.tenant_resolver


def get_chat_gateway(request: Request) -> ChatGateway:
    return request.app.state.chat_gateway


class Principal(BaseModel):
    # Authenticated caller plus the internal tenant every query is scoped to.
    email: str
    name: str
    tenant_id: str
    external_tenant_id: str | None = None
    object_id: str | None = None
    groups: list[str] = Field(default_factory=list)
    is_super_admin: bool = False
    auth_method: str = "bearer"

    def identity(self) -> Identity:
        return Identity(
            email=self.email,
            name=self.name,
            external_tenant_id=self.external_tenant_id,
            object_id=self.object_id,
            groups=list(self.groups),
        )


def _parse_bearer_token(header_value: str | None) -> str | None:
    if not header_value:
        return None
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AuthError("Missing or invalid bearer token")
    return parts[1]


def _principal_from_dev_headers(request: Request, resolver: TenantResolver) -> Principal:
    # Local development only: identity and internal tenant come straight from headers.
    email = request.headers.get("X-Dev-Email") or DEV_EMAIL
    name = request.headers.get("X-Dev-Name") or DEV_NAME
    is_super_admin = resolver.is_super_admin(email)
    if is_super_admin:
        tenant_id = resolver.resolve(None, email, request.headers.get("X-Tenant-Id"))
    else:
        tenant_id = request.headers.get("X-Dev-Tenant") or resolver.default_tenant_id
    return Principal(
        email=email,
        name=name,
        tenant_id=tenant_id,
        object_id=f"dev-{email}",
        is_super_admin=is_super_admin,
        auth_method="dev_bypass",
    )


async def get_current_principal(
    request: Request,
    resolver: TenantResolver = Depends(get_tenant_resolver),
) -> Principal:
    settings = get_settings()
    token = _parse_bearer_token(request.headers.get("Authorization"))

    if token is None or not settings.auth_enabled:
        if settings.auth_dev_bypass:
            principal = _principal_from_dev_headers(request, resolver)
            request.state.principal = principal
            return principal
        if not settings.auth_enabled:
            raise AuthError("Authentication disabled; set AUTH_DEV_BYPASS=true for dev access")
        raise AuthError("Authentication required")

    identity = await verify_bearer_token(token, settings=settings)
    tenant_id = resolver.resolve(
        identity.external_tenant_id,
        identity.email,
        request.headers.get("X-Tenant-Id"),
    )
    principal = Principal(
        email=identity.email,
        name=identity.name,
        tenant_id=tenant_id,
        external_tenant_id=identity.external_tenant_id,
        object_id=identity.object_id,
        groups=identity.groups,
        is_super_admin=resolver.is_super_admin(identity.email),
    )
    request.state.principal = principal
    return principal


async def require_super_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    if not principal.is_super_admin:
        raise ForbiddenError("Super-admin access required")
    return principal


def ensure_tenant_access(principal: Principal, tenant_id: str) -> None:
    # Only super-admins may read or change another tenant's settings.
    if principal.is_super_admin or principal.tenant_id == tenant_id:
        return
    logger.warning(
        "tenant_access_denied email=%s tenant_id=%s requested=%s",
        principal.email,
        principal.tenant_id,
        tenant_id,
    )
    raise ForbiddenError("Tenant scope does not match caller", details={"tenant_id": tenant_id})


def actor_for(principal: Principal, request: Request) -> Actor:
    return Actor(email=principal.email, name=principal.name, ip_address=client_ip(request))

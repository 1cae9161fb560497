from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from railfleet.domain.models import Tenant, TrainConfiguration
from railfleet.persistence.guards import require_tenant_id, tenant_predicate


async def get_tenant(session: AsyncSession, tenant_id: str, *, for_update: bool = False) -> Tenant | None:
    stmt = select(Tenant).where(tenant_predicate(Tenant, tenant_id))
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_configuration(
    session: AsyncSession, tenant_id: str, *, for_update: bool = False
) -> TrainConfiguration | None:
    stmt = select(TrainConfiguration).where(tenant_predicate(TrainConfiguration, tenant_id))
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_tenants_with_configuration(
    session: AsyncSession, tenant_ids: list[str] | None = None
) -> list[tuple[Tenant, TrainConfiguration | None]]:
    # tenant_ids=None lists every tenant; callers pass an explicit scope for non-admins.
    stmt = select(Tenant, TrainConfiguration).outerjoin(
        TrainConfiguration, TrainConfiguration.tenant_id == Tenant.tenant_id
    )
    if tenant_ids is not None:
        for tenant_id in tenant_ids:
            require_tenant_id(tenant_id)
        stmt = stmt.where(Tenant.tenant_id.in_(tenant_ids))
    stmt = stmt.order_by(Tenant.name, Tenant.id)
    result = await session.execute(stmt)
    return [(tenant, config) for tenant, config in result.all()]

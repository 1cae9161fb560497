from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from railfleet.domain.models import AuditLog
from railfleet.persistence.guards import tenant_predicate


async def list_logs(
    session: AsyncSession,
    *,
    tenant_id: str,
    action: str | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    offset: int = 0,
    limit: int = 100,
) -> list[AuditLog]:
    # Scope all audit queries to a tenant to prevent cross-tenant leakage.
    stmt = select(AuditLog).where(tenant_predicate(AuditLog, tenant_id))
    if action:
        stmt = stmt.where(AuditLog.action == action)
    if entity_type:
        stmt = stmt.where(AuditLog.entity_type == entity_type)
    if entity_id:
        stmt = stmt.where(AuditLog.entity_id == entity_id)

    stmt = stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
    stmt = stmt.offset(offset).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


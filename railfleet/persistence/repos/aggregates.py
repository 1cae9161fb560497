from __future__ import annotations

from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from railfleet.domain.models import (
    Aggregate,
    AggregateLog,
    AggregateReplacement,
    SensorReading,
    Train,
    Wagon,
)
from railfleet.persistence.guards import tenant_predicate


async def get_aggregate(
    session: AsyncSession,
    tenant_id: str,
    aggregate_id: int,
    *,
    for_update: bool = False,
) -> Aggregate | None:
    # Lifecycle transitions pass for_update so the row is re-read under lock.
    stmt = select(Aggregate).where(Aggregate.id == aggregate_id, tenant_predicate(Aggregate, tenant_id))
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def claim_placement(
    session: AsyncSession,
    tenant_id: str,
    aggregate_id: int,
    *,
    expected_wagon_id: int | None,
    wagon_id: int | None,
) -> bool:
    # Compare-and-set on the placement; False when a concurrent writer moved the row first.
    current = (
        Aggregate.current_wagon_id.is_(None)
        if expected_wagon_id is None
        else Aggregate.current_wagon_id == expected_wagon_id
    )
    stmt = (
        update(Aggregate)
        .where(Aggregate.id == aggregate_id, tenant_predicate(Aggregate, tenant_id), current)
        .values(current_wagon_id=wagon_id, is_spare=wagon_id is None)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.rowcount == 1


def _with_placement(stmt):
    return stmt.outerjoin(Wagon, Aggregate.current_wagon_id == Wagon.id).outerjoin(
        Train, Wagon.train_id == Train.id
    )


def _placement_row(aggregate: Aggregate, wagon_number, wagon_type, train_number, train_name) -> dict[str, Any]:
    return {
        "aggregate": aggregate,
        "wagon_number": wagon_number,
        "wagon_type": wagon_type,
        "train_number": train_number,
        "train_name": train_name,
    }


async def list_aggregates(session: AsyncSession, tenant_id: str) -> list[dict[str, Any]]:
    stmt = _with_placement(
        select(Aggregate, Wagon.wagon_number, Wagon.wagon_type, Train.train_number, Train.name)
    )
    stmt = stmt.where(tenant_predicate(Aggregate, tenant_id)).order_by(
        Aggregate.aggregate_number, Aggregate.id
    )
    result = await session.execute(stmt)
    return [_placement_row(*row) for row in result.all()]


async def get_aggregate_with_placement(
    session: AsyncSession, tenant_id: str, aggregate_id: int
) -> dict[str, Any] | None:
    stmt = _with_placement(
        select(Aggregate, Wagon.wagon_number, Wagon.wagon_type, Train.train_number, Train.name)
    )
    stmt = stmt.where(Aggregate.id == aggregate_id, tenant_predicate(Aggregate, tenant_id))
    row = (await session.execute(stmt)).first()
    if row is None:
        return None
    return _placement_row(*row)


async def list_spare(session: AsyncSession, tenant_id: str) -> list[Aggregate]:
    result = await session.execute(
        select(Aggregate)
        .where(
            tenant_predicate(Aggregate, tenant_id),
            Aggregate.is_spare.is_(True),
            Aggregate.current_wagon_id.is_(None),
        )
        .order_by(Aggregate.aggregate_number, Aggregate.id)
    )
    return list(result.scalars().all())


async def list_attached_to_wagons(
    session: AsyncSession, tenant_id: str, wagon_ids: list[int], *, for_update: bool = False
) -> list[Aggregate]:
    if not wagon_ids:
        return []
    stmt = select(Aggregate).where(
        tenant_predicate(Aggregate, tenant_id),
        Aggregate.current_wagon_id.in_(wagon_ids),
    )
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def recent_readings(session: AsyncSession, aggregate_id: int, *, limit: int = 10) -> list[SensorReading]:
    result = await session.execute(
        select(SensorReading)
        .where(SensorReading.aggregate_id == aggregate_id)
        .order_by(SensorReading.reading_timestamp.desc(), SensorReading.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def list_logs(session: AsyncSession, aggregate_id: int, *, limit: int = 50) -> list[AggregateLog]:
    result = await session.execute(
        select(AggregateLog)
        .where(AggregateLog.aggregate_id == aggregate_id)
        .order_by(AggregateLog.created_at.desc(), AggregateLog.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def list_replacements(
    session: AsyncSession,
    tenant_id: str,
    *,
    offset: int = 0,
    limit: int = 50,
) -> list[AggregateReplacement]:
    result = await session.execute(
        select(AggregateReplacement)
        .where(tenant_predicate(AggregateReplacement, tenant_id))
        .order_by(AggregateReplacement.replaced_at.desc(), AggregateReplacement.id.desc())
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars().all())

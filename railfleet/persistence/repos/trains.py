from __future__ import annotations

from typing import Any

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from railfleet.domain.models import AGGREGATE_STATUS_OPERATIONAL, Aggregate, Train, Wagon
from railfleet.persistence.guards import tenant_predicate


async def list_trains_with_counts(session: AsyncSession, tenant_id: str) -> list[dict[str, Any]]:
    # Aggregate counts in one round trip; ordering by train number keeps listings stable.
    stmt = (
        select(
            Train,
            func.count(func.distinct(Wagon.id)).label("wagon_count"),
            func.count(func.distinct(Aggregate.id)).label("aggregate_count"),
            func.count(
                func.distinct(case((Aggregate.status == AGGREGATE_STATUS_OPERATIONAL, Aggregate.id)))
            ).label("operational_aggregates"),
            func.count(
                func.distinct(case((Aggregate.status != AGGREGATE_STATUS_OPERATIONAL, Aggregate.id)))
            ).label("faulty_aggregates"),
        )
        .outerjoin(Wagon, Wagon.train_id == Train.id)
        .outerjoin(Aggregate, Aggregate.current_wagon_id == Wagon.id)
        .where(tenant_predicate(Train, tenant_id))
        .group_by(Train.id)
        .order_by(Train.train_number, Train.id)
    )
    result = await session.execute(stmt)
    rows: list[dict[str, Any]] = []
    for train, wagon_count, aggregate_count, operational, faulty in result.all():
        rows.append(
            {
                "train": train,
                "wagon_count": int(wagon_count or 0),
                "aggregate_count": int(aggregate_count or 0),
                "operational_aggregates": int(operational or 0),
                "faulty_aggregates": int(faulty or 0),
            }
        )
    return rows


async def get_train(
    session: AsyncSession,
    tenant_id: str,
    train_id: int,
    *,
    for_update: bool = False,
) -> Train | None:
    # Out-of-tenant ids look exactly like missing ones.
    stmt = select(Train).where(Train.id == train_id, tenant_predicate(Train, tenant_id))
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_train_by_number(session: AsyncSession, tenant_id: str, train_number: str) -> Train | None:
    result = await session.execute(
        select(Train).where(Train.train_number == train_number, tenant_predicate(Train, tenant_id))
    )
    return result.scalar_one_or_none()


async def list_wagons_with_aggregates(
    session: AsyncSession, train_id: int
) -> list[tuple[Wagon, list[Aggregate]]]:
    stmt = (
        select(Wagon, Aggregate)
        .outerjoin(Aggregate, Aggregate.current_wagon_id == Wagon.id)
        .where(Wagon.train_id == train_id)
        .order_by(Wagon.position, Aggregate.id)
    )
    result = await session.execute(stmt)
    # One entry per wagon; a wagon may carry several aggregates.
    grouped: dict[int, tuple[Wagon, list[Aggregate]]] = {}
    for wagon, aggregate in result.all():
        _wagon, attached = grouped.setdefault(wagon.id, (wagon, []))
        if aggregate is not None:
            attached.append(aggregate)
    return list(grouped.values())


async def list_wagon_ids(session: AsyncSession, train_id: int) -> list[int]:
    result = await session.execute(select(Wagon.id).where(Wagon.train_id == train_id))
    return [row[0] for row in result.all()]


async def get_wagon_for_tenant(session: AsyncSession, tenant_id: str, wagon_id: int) -> Wagon | None:
    # Wagons carry no tenant column; scope through the owning train.
    result = await session.execute(
        select(Wagon)
        .join(Train, Train.id == Wagon.train_id)
        .where(Wagon.id == wagon_id, tenant_predicate(Train, tenant_id))
    )
    return result.scalar_one_or_none()

"""Aggregate lifecycle: assignment, replacement, swap, readings and status.

Every mutation runs in one transaction on the caller's session and re-reads
the aggregate rows it changes under a row lock, so existence checks and the
captured "before" state come from the same lock scope as the writes. History
(AggregateLog) and audit rows are staged in that same transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from railfleet.core.errors import NotFoundError, StateConflictError, ValidationFailure
from railfleet.domain.models import (
    AGGREGATE_STATUS_MAINTENANCE,
    AGGREGATE_STATUS_OPERATIONAL,
    AGGREGATE_STATUS_RESERVE,
    AGGREGATE_STATUSES,
    Aggregate,
    AggregateLog,
    AggregateReplacement,
    SensorReading,
    utc_now,
)
from railfleet.persistence.db import atomic
from railfleet.persistence.repos import aggregates as aggregates_repo
from railfleet.persistence.repos import trains as trains_repo
from railfleet.services import audit
from railfleet.services.audit import Actor


logger = logging.getLogger(__name__)

EVENT_ASSIGNED = "assigned"
EVENT_UNASSIGNED = "unassigned"
EVENT_REPLACED_OUT = "replaced_out"
EVENT_REPLACED_IN = "replaced_in"
EVENT_SWAPPED = "swapped"
EVENT_STATUS_CHANGE = "status_change"

ENTITY_AGGREGATE = "aggregate"
RECENT_READINGS_LIMIT = 10
LOGS_LIMIT = 50


@dataclass(frozen=True)
class ReplacementResult:
    old_aggregate: Aggregate
    new_aggregate: Aggregate
    replacement: AggregateReplacement


@dataclass(frozen=True)
class ReadingInput:
    temperature: float | None = None
    pressure: float | None = None
    humidity: float | None = None
    power_consumption: float | None = None
    error_codes: list[str] | None = None
    reading_timestamp: datetime | None = None


def snapshot(aggregate: Aggregate) -> dict[str, Any]:
    # Placement fields only; used for before/after JSON on history and audit rows.
    return {
        "aggregate_id": aggregate.id,
        "aggregate_number": aggregate.aggregate_number,
        "wagon_id": aggregate.current_wagon_id,
        "is_spare": aggregate.is_spare,
        "status": aggregate.status,
    }


def _log_event(
    session: AsyncSession,
    *,
    aggregate: Aggregate,
    wagon_id: int | None,
    event_type: str,
    description: str,
    actor: Actor,
    old_value: dict[str, Any] | None = None,
    new_value: dict[str, Any] | None = None,
) -> AggregateLog:
    entry = AggregateLog(
        aggregate_id=aggregate.id,
        wagon_id=wagon_id,
        event_type=event_type,
        description=description,
        old_value=old_value,
        new_value=new_value,
        actor_email=actor.email,
    )
    session.add(entry)
    return entry


async def _lock_aggregate(session: AsyncSession, tenant_id: str, aggregate_id: int) -> Aggregate:
    aggregate = await aggregates_repo.get_aggregate(session, tenant_id, aggregate_id, for_update=True)
    if aggregate is None:
        raise NotFoundError("Aggregate not found", details={"aggregate_id": aggregate_id})
    return aggregate


async def _lock_pair(
    session: AsyncSession, tenant_id: str, first_id: int, second_id: int
) -> dict[int, Aggregate | None]:
    # Ascending id order so two transactions touching the same pair cannot deadlock.
    locked: dict[int, Aggregate | None] = {}
    for aggregate_id in sorted((first_id, second_id)):
        locked[aggregate_id] = await aggregates_repo.get_aggregate(
            session, tenant_id, aggregate_id, for_update=True
        )
    return locked


def _place(aggregate: Aggregate, wagon_id: int | None) -> None:
    # Keep is_spare derived from the wagon reference on every write.
    aggregate.current_wagon_id = wagon_id
    aggregate.is_spare = wagon_id is None


async def create(
    session: AsyncSession,
    *,
    tenant_id: str,
    actor: Actor,
    aggregate_number: str,
    aggregate_type: str,
    temperature_setpoint: float | None = None,
) -> Aggregate:
    if not aggregate_number or not aggregate_number.strip():
        raise ValidationFailure("aggregate_number is required")
    if not aggregate_type or not aggregate_type.strip():
        raise ValidationFailure("type is required")
    async with atomic(session, operation="create aggregate"):
        aggregate = Aggregate(
            tenant_id=tenant_id,
            aggregate_number=aggregate_number.strip(),
            type=aggregate_type.strip(),
            status=AGGREGATE_STATUS_RESERVE,
            current_wagon_id=None,
            is_spare=True,
            temperature_setpoint=22.0 if temperature_setpoint is None else temperature_setpoint,
        )
        session.add(aggregate)
        await session.flush()
        audit.record(
            session,
            tenant_id=tenant_id,
            actor=actor,
            action="CREATE",
            entity_type=ENTITY_AGGREGATE,
            entity_id=aggregate.id,
            new_value=snapshot(aggregate),
            description=f"Created aggregate {aggregate.aggregate_number}",
        )
    logger.info("aggregate_created tenant_id=%s aggregate_id=%s", tenant_id, aggregate.id)
    return aggregate


async def assign(
    session: AsyncSession,
    *,
    tenant_id: str,
    actor: Actor,
    aggregate_id: int,
    wagon_id: int,
) -> Aggregate:
    async with atomic(session, operation="assign aggregate"):
        aggregate = await _lock_aggregate(session, tenant_id, aggregate_id)
        if aggregate.current_wagon_id is not None:
            raise StateConflictError(
                "Aggregate is already attached to a wagon",
                details={"aggregate_id": aggregate_id, "wagon_id": aggregate.current_wagon_id},
            )
        wagon = await trains_repo.get_wagon_for_tenant(session, tenant_id, wagon_id)
        if wagon is None:
            raise NotFoundError("Wagon not found", details={"wagon_id": wagon_id})
        before = snapshot(aggregate)
        _place(aggregate, wagon.id)
        aggregate.status = AGGREGATE_STATUS_OPERATIONAL
        after = snapshot(aggregate)
        _log_event(
            session,
            aggregate=aggregate,
            wagon_id=wagon.id,
            event_type=EVENT_ASSIGNED,
            description=f"Assigned to wagon {wagon.wagon_number} ({wagon.wagon_type})",
            actor=actor,
            old_value={"wagon_id": None},
            new_value={"wagon_id": wagon.id},
        )
        audit.record(
            session,
            tenant_id=tenant_id,
            actor=actor,
            action="ASSIGN",
            entity_type=ENTITY_AGGREGATE,
            entity_id=aggregate.id,
            old_value=before,
            new_value=after,
            description=f"Assigned aggregate {aggregate.aggregate_number} to wagon {wagon.id}",
        )
    logger.info(
        "aggregate_assigned tenant_id=%s aggregate_id=%s wagon_id=%s", tenant_id, aggregate_id, wagon_id
    )
    return aggregate


async def unassign(
    session: AsyncSession,
    *,
    tenant_id: str,
    actor: Actor,
    aggregate_id: int,
) -> Aggregate:
    async with atomic(session, operation="unassign aggregate"):
        aggregate = await _lock_aggregate(session, tenant_id, aggregate_id)
        previous_wagon_id = aggregate.current_wagon_id
        if previous_wagon_id is None:
            raise StateConflictError(
                "Aggregate is not attached to a wagon", details={"aggregate_id": aggregate_id}
            )
        before = snapshot(aggregate)
        _place(aggregate, None)
        aggregate.status = AGGREGATE_STATUS_RESERVE
        after = snapshot(aggregate)
        _log_event(
            session,
            aggregate=aggregate,
            wagon_id=previous_wagon_id,
            event_type=EVENT_UNASSIGNED,
            description="Moved to spare pool",
            actor=actor,
            old_value={"wagon_id": previous_wagon_id},
            new_value={"wagon_id": None},
        )
        audit.record(
            session,
            tenant_id=tenant_id,
            actor=actor,
            action="UNASSIGN",
            entity_type=ENTITY_AGGREGATE,
            entity_id=aggregate.id,
            old_value=before,
            new_value=after,
            description=f"Unassigned aggregate {aggregate.aggregate_number} from wagon {previous_wagon_id}",
        )
    logger.info(
        "aggregate_unassigned tenant_id=%s aggregate_id=%s wagon_id=%s",
        tenant_id,
        aggregate_id,
        previous_wagon_id,
    )
    return aggregate


async def replace(
    session: AsyncSession,
    *,
    tenant_id: str,
    actor: Actor,
    old_aggregate_id: int,
    new_aggregate_id: int,
    reason: str | None = None,
) -> ReplacementResult:
    """Move the old aggregate to the spare pool and put the new one in its wagon.

    Both rows are locked before any check. A second replace of the same old
    aggregate therefore sees it already detached and fails with a conflict
    instead of writing a second replacement record.
    """
    if old_aggregate_id == new_aggregate_id:
        raise ValidationFailure(
            "Old and new aggregate must differ", details={"aggregate_id": old_aggregate_id}
        )
    async with atomic(session, operation="replace aggregate"):
        locked = await _lock_pair(session, tenant_id, old_aggregate_id, new_aggregate_id)
        old = locked[old_aggregate_id]
        if old is None:
            raise NotFoundError("Old aggregate not found", details={"aggregate_id": old_aggregate_id})
        if old.current_wagon_id is None:
            raise StateConflictError(
                "Old aggregate is not attached to a wagon", details={"aggregate_id": old_aggregate_id}
            )
        new = locked[new_aggregate_id]
        if new is None:
            raise NotFoundError("New aggregate not found", details={"aggregate_id": new_aggregate_id})
        if new.current_wagon_id is not None:
            raise StateConflictError(
                "New aggregate is already attached to a wagon",
                details={"aggregate_id": new_aggregate_id, "wagon_id": new.current_wagon_id},
            )

        wagon_id = old.current_wagon_id
        old_before, new_before = snapshot(old), snapshot(new)
        # Backends without FOR UPDATE (SQLite) still serialize on these conditional writes.
        moved_out = await aggregates_repo.claim_placement(
            session, tenant_id, old.id, expected_wagon_id=wagon_id, wagon_id=None
        )
        moved_in = moved_out and await aggregates_repo.claim_placement(
            session, tenant_id, new.id, expected_wagon_id=None, wagon_id=wagon_id
        )
        if not moved_in:
            raise StateConflictError(
                "Aggregate placement changed concurrently",
                details={"old_aggregate_id": old.id, "new_aggregate_id": new.id},
            )
        _place(old, None)
        old.status = AGGREGATE_STATUS_MAINTENANCE
        _place(new, wagon_id)
        new.status = AGGREGATE_STATUS_OPERATIONAL

        replacement = AggregateReplacement(
            tenant_id=tenant_id,
            old_aggregate_id=old.id,
            new_aggregate_id=new.id,
            wagon_id=wagon_id,
            reason=reason,
            replaced_by=actor.email,
        )
        session.add(replacement)
        _log_event(
            session,
            aggregate=old,
            wagon_id=wagon_id,
            event_type=EVENT_REPLACED_OUT,
            description=f"Replaced by aggregate {new.aggregate_number}",
            actor=actor,
            old_value=old_before,
            new_value=snapshot(old),
        )
        _log_event(
            session,
            aggregate=new,
            wagon_id=wagon_id,
            event_type=EVENT_REPLACED_IN,
            description=f"Replaced aggregate {old.aggregate_number}",
            actor=actor,
            old_value=new_before,
            new_value=snapshot(new),
        )
        audit.record(
            session,
            tenant_id=tenant_id,
            actor=actor,
            action="REPLACE",
            entity_type=ENTITY_AGGREGATE,
            entity_id=old.id,
            old_value={"aggregate_id": old.id, "wagon_id": wagon_id},
            new_value={"aggregate_id": new.id, "wagon_id": wagon_id},
            description=f"Replaced aggregate {old.aggregate_number} with spare. Reason: {reason or 'n/a'}",
        )
        await session.flush()
    logger.info(
        "aggregate_replaced tenant_id=%s old=%s new=%s wagon_id=%s",
        tenant_id,
        old_aggregate_id,
        new_aggregate_id,
        wagon_id,
    )
    return ReplacementResult(old_aggregate=old, new_aggregate=new, replacement=replacement)


async def swap(
    session: AsyncSession,
    *,
    tenant_id: str,
    actor: Actor,
    aggregate_id: int,
    other_aggregate_id: int,
) -> tuple[Aggregate, Aggregate]:
    if aggregate_id == other_aggregate_id:
        raise ValidationFailure("Cannot swap an aggregate with itself", details={"aggregate_id": aggregate_id})
    async with atomic(session, operation="swap aggregates"):
        locked = await _lock_pair(session, tenant_id, aggregate_id, other_aggregate_id)
        first, second = locked[aggregate_id], locked[other_aggregate_id]
        for requested_id, aggregate in ((aggregate_id, first), (other_aggregate_id, second)):
            if aggregate is None:
                raise NotFoundError("Aggregate not found", details={"aggregate_id": requested_id})

        first_before, second_before = snapshot(first), snapshot(second)
        first_wagon, second_wagon = first.current_wagon_id, second.current_wagon_id
        for aggregate, wagon_id in ((first, second_wagon), (second, first_wagon)):
            was_detached = aggregate.current_wagon_id is None
            _place(aggregate, wagon_id)
            if wagon_id is None:
                aggregate.status = AGGREGATE_STATUS_RESERVE
            elif was_detached and aggregate.status == AGGREGATE_STATUS_RESERVE:
                aggregate.status = AGGREGATE_STATUS_OPERATIONAL

        for aggregate, before, partner in ((first, first_before, second), (second, second_before, first)):
            _log_event(
                session,
                aggregate=aggregate,
                wagon_id=aggregate.current_wagon_id,
                event_type=EVENT_SWAPPED,
                description=f"Swapped with aggregate {partner.aggregate_number}",
                actor=actor,
                old_value=before,
                new_value=snapshot(aggregate),
            )
        audit.record(
            session,
            tenant_id=tenant_id,
            actor=actor,
            action="SWAP",
            entity_type=ENTITY_AGGREGATE,
            entity_id=first.id,
            old_value={"aggregates": [first_before, second_before]},
            new_value={"aggregates": [snapshot(first), snapshot(second)]},
            description=f"Swapped aggregates {first.aggregate_number} and {second.aggregate_number}",
        )
    logger.info(
        "aggregates_swapped tenant_id=%s first=%s second=%s", tenant_id, aggregate_id, other_aggregate_id
    )
    return first, second


async def record_reading(
    session: AsyncSession,
    *,
    tenant_id: str,
    aggregate_id: int,
    reading: ReadingInput,
) -> SensorReading:
    async with atomic(session, operation="record reading"):
        aggregate = await _lock_aggregate(session, tenant_id, aggregate_id)
        row = SensorReading(
            aggregate_id=aggregate.id,
            reading_timestamp=reading.reading_timestamp or utc_now(),
            temperature=reading.temperature,
            pressure=reading.pressure,
            humidity=reading.humidity,
            power_consumption=reading.power_consumption,
            error_codes=reading.error_codes,
        )
        session.add(row)
        # Current values mirror the latest reading; absent measurements keep the last known value.
        if reading.temperature is not None:
            aggregate.current_temperature = reading.temperature
        if reading.pressure is not None:
            aggregate.pressure_value = reading.pressure
        await session.flush()
    logger.debug("sensor_reading_recorded tenant_id=%s aggregate_id=%s", tenant_id, aggregate_id)
    return row


async def update_status(
    session: AsyncSession,
    *,
    tenant_id: str,
    actor: Actor,
    aggregate_id: int,
    status: str,
) -> Aggregate:
    if status not in AGGREGATE_STATUSES:
        raise ValidationFailure(
            "Unknown aggregate status",
            details={"status": status, "allowed": list(AGGREGATE_STATUSES)},
        )
    async with atomic(session, operation="update aggregate status"):
        aggregate = await _lock_aggregate(session, tenant_id, aggregate_id)
        previous = aggregate.status
        aggregate.status = status
        _log_event(
            session,
            aggregate=aggregate,
            wagon_id=aggregate.current_wagon_id,
            event_type=EVENT_STATUS_CHANGE,
            description=f"Status changed from {previous} to {status}",
            actor=actor,
            old_value={"status": previous},
            new_value={"status": status},
        )
        audit.record(
            session,
            tenant_id=tenant_id,
            actor=actor,
            action="STATUS",
            entity_type=ENTITY_AGGREGATE,
            entity_id=aggregate.id,
            old_value={"status": previous},
            new_value={"status": status},
            description=f"Aggregate {aggregate.aggregate_number} status {previous} -> {status}",
        )
    logger.info(
        "aggregate_status_changed tenant_id=%s aggregate_id=%s from=%s to=%s",
        tenant_id,
        aggregate_id,
        previous,
        status,
    )
    return aggregate


async def list_aggregates(session: AsyncSession, tenant_id: str) -> list[dict[str, Any]]:
    return await aggregates_repo.list_aggregates(session, tenant_id)


async def list_spare(session: AsyncSession, tenant_id: str) -> list[Aggregate]:
    return await aggregates_repo.list_spare(session, tenant_id)


async def get_detail(session: AsyncSession, tenant_id: str, aggregate_id: int) -> dict[str, Any]:
    row = await aggregates_repo.get_aggregate_with_placement(session, tenant_id, aggregate_id)
    if row is None:
        raise NotFoundError("Aggregate not found", details={"aggregate_id": aggregate_id})
    row["recent_readings"] = await aggregates_repo.recent_readings(
        session, aggregate_id, limit=RECENT_READINGS_LIMIT
    )
    return row


async def get_logs(session: AsyncSession, tenant_id: str, aggregate_id: int) -> list[AggregateLog]:
    # History has no tenant column; scope through the owning aggregate first.
    if await aggregates_repo.get_aggregate(session, tenant_id, aggregate_id) is None:
        raise NotFoundError("Aggregate not found", details={"aggregate_id": aggregate_id})
    return await aggregates_repo.list_logs(session, aggregate_id, limit=LOGS_LIMIT)


async def list_replacements(
    session: AsyncSession, tenant_id: str, *, offset: int = 0, limit: int = 50
) -> list[AggregateReplacement]:
    return await aggregates_repo.list_replacements(session, tenant_id, offset=offset, limit=limit)

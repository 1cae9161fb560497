from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from railfleet.core.errors import NotFoundError, StateConflictError, TransactionFailure, ValidationFailure
from railfleet.domain.models import AggregateLog, AggregateReplacement, AuditLog
from railfleet.persistence.db import SessionLocal
from railfleet.services import aggregates as lifecycle
from railfleet.services.aggregates import ReadingInput
from railfleet.tests.utils.fleet import (
    TEST_ACTOR,
    history_counts,
    load_aggregate,
    seed_aggregate,
    seed_tenant,
    seed_train,
)


def _assert_placement_consistent(aggregate) -> None:
    assert aggregate.is_spare is (aggregate.current_wagon_id is None)


@pytest.mark.asyncio
async def test_create_assign_unassign_cycle() -> None:
    _train_id, wagon_ids = await seed_train()

    async with SessionLocal() as session:
        created = await lifecycle.create(
            session, tenant_id="default", actor=TEST_ACTOR, aggregate_number=" AGG-100 ", aggregate_type="HVAC"
        )
    assert created.aggregate_number == "AGG-100"
    assert created.is_spare is True
    assert created.status == "reserve"
    assert created.temperature_setpoint == 22.0

    async with SessionLocal() as session:
        assigned = await lifecycle.assign(
            session, tenant_id="default", actor=TEST_ACTOR, aggregate_id=created.id, wagon_id=wagon_ids[0]
        )
    assert assigned.current_wagon_id == wagon_ids[0]
    assert assigned.status == "operational"
    _assert_placement_consistent(assigned)

    async with SessionLocal() as session:
        with pytest.raises(StateConflictError):
            await lifecycle.assign(
                session, tenant_id="default", actor=TEST_ACTOR, aggregate_id=created.id, wagon_id=wagon_ids[1]
            )

    async with SessionLocal() as session:
        detached = await lifecycle.unassign(session, tenant_id="default", actor=TEST_ACTOR, aggregate_id=created.id)
    assert detached.current_wagon_id is None
    assert detached.status == "reserve"
    _assert_placement_consistent(detached)

    async with SessionLocal() as session:
        with pytest.raises(StateConflictError):
            await lifecycle.unassign(session, tenant_id="default", actor=TEST_ACTOR, aggregate_id=created.id)

    async with SessionLocal() as session:
        logs = await lifecycle.get_logs(session, "default", created.id)
    assert sorted(log.event_type for log in logs) == ["assigned", "unassigned"]
    assert all(log.actor_email == TEST_ACTOR.email for log in logs)


@pytest.mark.asyncio
async def test_assign_to_missing_wagon_leaves_aggregate_spare() -> None:
    aggregate_id = await seed_aggregate(aggregate_number="AGG-1")
    async with SessionLocal() as session:
        with pytest.raises(NotFoundError):
            await lifecycle.assign(
                session, tenant_id="default", actor=TEST_ACTOR, aggregate_id=aggregate_id, wagon_id=999
            )
    aggregate = await load_aggregate(aggregate_id)
    assert aggregate.current_wagon_id is None
    assert aggregate.is_spare is True
    assert (await history_counts())["aggregate_logs"] == 0


@pytest.mark.asyncio
async def test_replace_moves_wagon_to_new_aggregate() -> None:
    _train_id, wagon_ids = await seed_train()
    old_id = await seed_aggregate(aggregate_number="AGG-OLD", wagon_id=wagon_ids[0])
    new_id = await seed_aggregate(aggregate_number="AGG-NEW")

    async with SessionLocal() as session:
        result = await lifecycle.replace(
            session,
            tenant_id="default",
            actor=TEST_ACTOR,
            old_aggregate_id=old_id,
            new_aggregate_id=new_id,
            reason="Compressor failure",
        )

    assert result.replacement.wagon_id == wagon_ids[0]
    assert result.replacement.replaced_by == TEST_ACTOR.email
    old = await load_aggregate(old_id)
    new = await load_aggregate(new_id)
    assert old.current_wagon_id is None and old.is_spare is True and old.status == "maintenance"
    assert new.current_wagon_id == wagon_ids[0] and new.is_spare is False and new.status == "operational"

    async with SessionLocal() as session:
        events = (await session.execute(select(AggregateLog.aggregate_id, AggregateLog.event_type))).all()
        audit_rows = (await session.execute(select(AuditLog).where(AuditLog.action == "REPLACE"))).scalars().all()
    assert sorted(tuple(row) for row in events) == sorted([(old_id, "replaced_out"), (new_id, "replaced_in")])
    assert len(audit_rows) == 1
    assert audit_rows[0].entity_id == str(old_id)
    assert audit_rows[0].ip_address == TEST_ACTOR.ip_address


@pytest.mark.asyncio
async def test_second_replace_of_same_aggregate_conflicts_without_writes() -> None:
    _train_id, wagon_ids = await seed_train()
    old_id = await seed_aggregate(aggregate_number="AGG-OLD", wagon_id=wagon_ids[0])
    first_spare = await seed_aggregate(aggregate_number="AGG-S1")
    second_spare = await seed_aggregate(aggregate_number="AGG-S2")

    async with SessionLocal() as session:
        await lifecycle.replace(
            session, tenant_id="default", actor=TEST_ACTOR, old_aggregate_id=old_id, new_aggregate_id=first_spare
        )
    before = await history_counts()

    async with SessionLocal() as session:
        with pytest.raises(StateConflictError):
            await lifecycle.replace(
                session,
                tenant_id="default",
                actor=TEST_ACTOR,
                old_aggregate_id=old_id,
                new_aggregate_id=second_spare,
            )

    assert await history_counts() == before
    assert (await load_aggregate(second_spare)).current_wagon_id is None
    assert (await load_aggregate(first_spare)).current_wagon_id == wagon_ids[0]


@pytest.mark.asyncio
async def test_replace_with_missing_new_aggregate_rolls_back() -> None:
    _train_id, wagon_ids = await seed_train()
    old_id = await seed_aggregate(aggregate_number="AGG-OLD", wagon_id=wagon_ids[0])

    async with SessionLocal() as session:
        with pytest.raises(NotFoundError):
            await lifecycle.replace(
                session, tenant_id="default", actor=TEST_ACTOR, old_aggregate_id=old_id, new_aggregate_id=4242
            )

    old = await load_aggregate(old_id)
    assert old.current_wagon_id == wagon_ids[0]
    assert old.is_spare is False
    assert await history_counts() == {"replacements": 0, "aggregate_logs": 0, "audit_logs": 0}


@pytest.mark.asyncio
async def test_replace_with_missing_old_aggregate_writes_nothing() -> None:
    new_id = await seed_aggregate(aggregate_number="AGG-NEW")

    async with SessionLocal() as session:
        with pytest.raises(NotFoundError):
            await lifecycle.replace(
                session, tenant_id="default", actor=TEST_ACTOR, old_aggregate_id=4242, new_aggregate_id=new_id
            )

    new = await load_aggregate(new_id)
    assert new.current_wagon_id is None
    assert new.is_spare is True
    assert new.status == "reserve"
    assert await history_counts() == {"replacements": 0, "aggregate_logs": 0, "audit_logs": 0}


async def _replace_in_own_session(old_id: int, new_id: int):
    async with SessionLocal() as session:
        return await lifecycle.replace(
            session, tenant_id="default", actor=TEST_ACTOR, old_aggregate_id=old_id, new_aggregate_id=new_id
        )


@pytest.mark.asyncio
async def test_concurrent_replace_of_same_aggregate_records_once() -> None:
    _train_id, wagon_ids = await seed_train()
    old_id = await seed_aggregate(aggregate_number="AGG-OLD", wagon_id=wagon_ids[0])
    first_spare = await seed_aggregate(aggregate_number="AGG-S1")
    second_spare = await seed_aggregate(aggregate_number="AGG-S2")

    results = await asyncio.gather(
        _replace_in_own_session(old_id, first_spare),
        _replace_in_own_session(old_id, second_spare),
        return_exceptions=True,
    )
    succeeded = [result for result in results if not isinstance(result, BaseException)]
    failed = [result for result in results if isinstance(result, BaseException)]
    assert len(succeeded) == 1
    assert len(failed) == 1
    assert isinstance(failed[0], (StateConflictError, TransactionFailure))

    assert await history_counts() == {"replacements": 1, "aggregate_logs": 2, "audit_logs": 1}
    async with SessionLocal() as session:
        audit_rows = (await session.execute(select(AuditLog).where(AuditLog.action == "REPLACE"))).scalars().all()
    assert len(audit_rows) == 1

    winner_id = succeeded[0].new_aggregate.id
    loser_id = second_spare if winner_id == first_spare else first_spare
    assert (await load_aggregate(old_id)).current_wagon_id is None
    assert (await load_aggregate(winner_id)).current_wagon_id == wagon_ids[0]
    loser = await load_aggregate(loser_id)
    assert loser.current_wagon_id is None
    assert loser.is_spare is True


@pytest.mark.asyncio
async def test_replace_rejects_attached_new_aggregate_and_same_ids() -> None:
    _train_id, wagon_ids = await seed_train()
    old_id = await seed_aggregate(aggregate_number="AGG-A", wagon_id=wagon_ids[0])
    busy_id = await seed_aggregate(aggregate_number="AGG-B", wagon_id=wagon_ids[1])

    async with SessionLocal() as session:
        with pytest.raises(StateConflictError):
            await lifecycle.replace(
                session, tenant_id="default", actor=TEST_ACTOR, old_aggregate_id=old_id, new_aggregate_id=busy_id
            )
    async with SessionLocal() as session:
        with pytest.raises(ValidationFailure):
            await lifecycle.replace(
                session, tenant_id="default", actor=TEST_ACTOR, old_aggregate_id=old_id, new_aggregate_id=old_id
            )
    assert (await load_aggregate(busy_id)).current_wagon_id == wagon_ids[1]


@pytest.mark.asyncio
async def test_swap_round_trip_restores_placement() -> None:
    _train_id, wagon_ids = await seed_train()
    attached_id = await seed_aggregate(aggregate_number="AGG-ON", wagon_id=wagon_ids[0])
    spare_id = await seed_aggregate(aggregate_number="AGG-OFF")

    async with SessionLocal() as session:
        first, second = await lifecycle.swap(
            session, tenant_id="default", actor=TEST_ACTOR, aggregate_id=attached_id, other_aggregate_id=spare_id
        )
    assert first.current_wagon_id is None and first.is_spare is True and first.status == "reserve"
    assert second.current_wagon_id == wagon_ids[0] and second.is_spare is False
    assert second.status == "operational"

    async with SessionLocal() as session:
        await lifecycle.swap(
            session, tenant_id="default", actor=TEST_ACTOR, aggregate_id=spare_id, other_aggregate_id=attached_id
        )
    assert (await load_aggregate(attached_id)).current_wagon_id == wagon_ids[0]
    assert (await load_aggregate(spare_id)).current_wagon_id is None
    assert (await history_counts())["aggregate_logs"] == 4


@pytest.mark.asyncio
async def test_swap_between_two_wagons() -> None:
    _train_id, wagon_ids = await seed_train()
    a_id = await seed_aggregate(aggregate_number="AGG-A", wagon_id=wagon_ids[0])
    b_id = await seed_aggregate(aggregate_number="AGG-B", wagon_id=wagon_ids[1])

    async with SessionLocal() as session:
        await lifecycle.swap(session, tenant_id="default", actor=TEST_ACTOR, aggregate_id=a_id, other_aggregate_id=b_id)

    assert (await load_aggregate(a_id)).current_wagon_id == wagon_ids[1]
    assert (await load_aggregate(b_id)).current_wagon_id == wagon_ids[0]

    async with SessionLocal() as session:
        with pytest.raises(ValidationFailure):
            await lifecycle.swap(
                session, tenant_id="default", actor=TEST_ACTOR, aggregate_id=a_id, other_aggregate_id=a_id
            )


@pytest.mark.asyncio
async def test_readings_update_current_values_only_when_present() -> None:
    aggregate_id = await seed_aggregate(aggregate_number="AGG-R")
    stamp = datetime(2026, 1, 15, 8, 30, tzinfo=timezone.utc)

    async with SessionLocal() as session:
        await lifecycle.record_reading(
            session,
            tenant_id="default",
            aggregate_id=aggregate_id,
            reading=ReadingInput(temperature=21.5, pressure=2.4, error_codes=["E12"], reading_timestamp=stamp),
        )
    async with SessionLocal() as session:
        await lifecycle.record_reading(
            session, tenant_id="default", aggregate_id=aggregate_id, reading=ReadingInput(humidity=40.0)
        )

    aggregate = await load_aggregate(aggregate_id)
    assert aggregate.current_temperature == 21.5
    assert aggregate.pressure_value == 2.4

    async with SessionLocal() as session:
        detail = await lifecycle.get_detail(session, "default", aggregate_id)
    assert len(detail["recent_readings"]) == 2
    assert detail["wagon_number"] is None


@pytest.mark.asyncio
async def test_status_change_validates_and_logs() -> None:
    aggregate_id = await seed_aggregate(aggregate_number="AGG-S")

    async with SessionLocal() as session:
        with pytest.raises(ValidationFailure):
            await lifecycle.update_status(
                session, tenant_id="default", actor=TEST_ACTOR, aggregate_id=aggregate_id, status="broken"
            )
    async with SessionLocal() as session:
        updated = await lifecycle.update_status(
            session, tenant_id="default", actor=TEST_ACTOR, aggregate_id=aggregate_id, status="maintenance"
        )
    assert updated.status == "maintenance"

    async with SessionLocal() as session:
        logs = await lifecycle.get_logs(session, "default", aggregate_id)
    assert [log.event_type for log in logs] == ["status_change"]
    assert logs[0].old_value == {"status": "reserve"}


@pytest.mark.asyncio
async def test_other_tenants_aggregates_are_invisible() -> None:
    await seed_tenant("skane", "Skånetrafiken")
    _train_id, wagon_ids = await seed_train()
    foreign_id = await seed_aggregate(tenant_id="skane", aggregate_number="SK-1")
    _foreign_train, foreign_wagons = await seed_train(tenant_id="skane", train_number="SK-T1")
    own_id = await seed_aggregate(aggregate_number="AGG-OWN")

    async with SessionLocal() as session:
        with pytest.raises(NotFoundError):
            await lifecycle.assign(
                session, tenant_id="default", actor=TEST_ACTOR, aggregate_id=foreign_id, wagon_id=wagon_ids[0]
            )
    async with SessionLocal() as session:
        with pytest.raises(NotFoundError):
            await lifecycle.assign(
                session, tenant_id="default", actor=TEST_ACTOR, aggregate_id=own_id, wagon_id=foreign_wagons[0]
            )
    async with SessionLocal() as session:
        with pytest.raises(NotFoundError):
            await lifecycle.get_logs(session, "default", foreign_id)
        spare = await lifecycle.list_spare(session, "default")
        replacements = await lifecycle.list_replacements(session, "skane")
    assert [aggregate.id for aggregate in spare] == [own_id]
    assert replacements == []
    assert await history_counts() == {"replacements": 0, "aggregate_logs": 0, "audit_logs": 0}


@pytest.mark.asyncio
async def test_replacement_history_pages_newest_first() -> None:
    _train_id, wagon_ids = await seed_train()
    current = await seed_aggregate(aggregate_number="AGG-0", wagon_id=wagon_ids[0])
    for idx in range(1, 4):
        spare = await seed_aggregate(aggregate_number=f"AGG-{idx}")
        async with SessionLocal() as session:
            await lifecycle.replace(
                session, tenant_id="default", actor=TEST_ACTOR, old_aggregate_id=current, new_aggregate_id=spare
            )
        current = spare

    async with SessionLocal() as session:
        first_page = await lifecycle.list_replacements(session, "default", offset=0, limit=2)
        second_page = await lifecycle.list_replacements(session, "default", offset=2, limit=2)
        stored = (await session.execute(select(AggregateReplacement))).scalars().all()
    assert len(stored) == 3
    assert len(first_page) == 2 and len(second_page) == 1
    assert first_page[0].new_aggregate_id == current

from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass

from railfleet.core.errors import RailfleetError
from railfleet.persistence.db import SessionLocal
from railfleet.persistence.repos import aggregates as aggregates_repo
from railfleet.persistence.repos import trains as trains_repo
from railfleet.services import aggregates as lifecycle
from railfleet.services import fleet
from railfleet.services.audit import SYSTEM_ACTOR


DEMO_TENANT_ID = "default"
DEMO_SPARE_COUNT = 2


@dataclass(frozen=True)
class DemoTrain:
    train_number: str
    name: str


DEMO_TRAINS: tuple[DemoTrain, ...] = (
    DemoTrain(train_number="X31-001", name="Öresund 1"),
    DemoTrain(train_number="X31-002", name="Öresund 2"),
)


async def seed_demo() -> int:
    # Idempotent: an existing train number means the fleet was already seeded.
    async with SessionLocal() as session:
        if await trains_repo.get_train_by_number(session, DEMO_TENANT_ID, DEMO_TRAINS[0].train_number):
            print("Demo fleet already seeded; skipping.")
            return 0

        unit = 0
        for demo in DEMO_TRAINS:
            train = await fleet.create_train(
                session,
                tenant_id=DEMO_TENANT_ID,
                actor=SYSTEM_ACTOR,
                train_number=demo.train_number,
                name=demo.name,
            )
            for wagon_id in await trains_repo.list_wagon_ids(session, train.id):
                unit += 1
                aggregate = await lifecycle.create(
                    session,
                    tenant_id=DEMO_TENANT_ID,
                    actor=SYSTEM_ACTOR,
                    aggregate_number=f"HVAC-{unit:03d}",
                    aggregate_type="HVAC",
                )
                await lifecycle.assign(
                    session,
                    tenant_id=DEMO_TENANT_ID,
                    actor=SYSTEM_ACTOR,
                    aggregate_id=aggregate.id,
                    wagon_id=wagon_id,
                )
        for _ in range(DEMO_SPARE_COUNT):
            unit += 1
            await lifecycle.create(
                session,
                tenant_id=DEMO_TENANT_ID,
                actor=SYSTEM_ACTOR,
                aggregate_number=f"HVAC-{unit:03d}",
                aggregate_type="HVAC",
            )
        spares = await aggregates_repo.list_spare(session, DEMO_TENANT_ID)
        print(f"Seeded {len(DEMO_TRAINS)} trains, {unit} aggregates ({len(spares)} spare).")
        return 0


def main() -> int:
    # Exit non-zero so setup scripts can detect a failed seed.
    try:
        return asyncio.run(seed_demo())
    except RailfleetError as exc:
        print(f"seed_demo failed: {exc.message}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())

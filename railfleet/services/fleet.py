from __future__ import annotations

import logging
from typing import Any, Sequence

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from railfleet.core.errors import NotFoundError, StateConflictError, ValidationFailure
from railfleet.domain.models import (
    AGGREGATE_STATUS_RESERVE,
    Tenant,
    Train,
    TrainConfiguration,
    Wagon,
)
from railfleet.persistence.db import atomic
from railfleet.persistence.repos import aggregates as aggregates_repo
from railfleet.persistence.repos import tenants as tenants_repo
from railfleet.persistence.repos import trains as trains_repo
from railfleet.services import audit
from railfleet.services.audit import Actor


logger = logging.getLogger(__name__)

# X31 layout used when a tenant has no stored train configuration.
DEFAULT_WAGON_TYPES: tuple[str, ...] = ("M43 Hytt", "M43 Salong", "T47 Salong", "M45 Salong", "M45 Hytt")


def _clean_wagon_types(wagon_types: Sequence[str] | None) -> list[str]:
    if not wagon_types:
        raise ValidationFailure("wagon_types must be a non-empty list")
    cleaned: list[str] = []
    for idx, wagon_type in enumerate(wagon_types):
        if not isinstance(wagon_type, str) or not wagon_type.strip():
            raise ValidationFailure("wagon_types entries must be non-empty strings", details={"index": idx})
        cleaned.append(wagon_type.strip())
    return cleaned


def _require_text(value: str | None, field: str) -> str:
    if value is None or not value.strip():
        raise ValidationFailure(f"{field} is required", details={"field": field})
    return value.strip()


def _configuration_snapshot(tenant: Tenant, config: TrainConfiguration | None) -> dict[str, Any]:
    snapshot: dict[str, Any] = {
        "name": tenant.name,
        "logo_url": tenant.logo_url,
        "primary_color": tenant.primary_color,
        "language": tenant.language,
    }
    if config is not None:
        snapshot.update(
            wagon_count=config.wagon_count,
            wagon_types=list(config.wagon_types or []),
            custom_labels=dict(config.custom_labels) if config.custom_labels else None,
        )
    return snapshot


async def list_trains(session: AsyncSession, tenant_id: str) -> list[dict[str, Any]]:
    return await trains_repo.list_trains_with_counts(session, tenant_id)


async def get_train_detail(session: AsyncSession, tenant_id: str, train_id: int) -> dict[str, Any]:
    train = await trains_repo.get_train(session, tenant_id, train_id)
    if train is None:
        raise NotFoundError("Train not found", details={"train_id": train_id})
    rows = await trains_repo.list_wagons_with_aggregates(session, train.id)
    return {
        "train": train,
        "wagons": [{"wagon": wagon, "aggregates": attached} for wagon, attached in rows],
    }


async def _insert_train(
    session: AsyncSession,
    *,
    tenant_id: str,
    actor: Actor,
    train_number: str,
    name: str,
    operator: str | None,
    wagon_types: list[str],
) -> Train:
    # Train and wagons commit together; a train never exists without its layout.
    if await trains_repo.get_train_by_number(session, tenant_id, train_number) is not None:
        raise StateConflictError("Train number already exists", details={"train_number": train_number})
    if operator is None:
        tenant = await tenants_repo.get_tenant(session, tenant_id)
        operator = tenant.name if tenant is not None else None
    train = Train(train_number=train_number, name=name, operator=operator, tenant_id=tenant_id)
    session.add(train)
    try:
        await session.flush()
        for position, wagon_type in enumerate(wagon_types, start=1):
            session.add(
                Wagon(train_id=train.id, wagon_number=position, wagon_type=wagon_type, position=position)
            )
        await session.flush()
    except IntegrityError as exc:
        raise StateConflictError(
            "Train number already exists", details={"train_number": train_number}
        ) from exc
    audit.record(
        session,
        tenant_id=tenant_id,
        actor=actor,
        action="CREATE",
        entity_type="train",
        entity_id=train.id,
        new_value={"train_number": train_number, "wagon_types": wagon_types},
        description=f"Created train {train_number} with {len(wagon_types)} wagons",
    )
    return train


async def create_train(
    session: AsyncSession,
    *,
    tenant_id: str,
    actor: Actor,
    train_number: str,
    name: str,
    operator: str | None = None,
) -> Train:
    """Create a train laid out from the tenant's stored configuration."""
    train_number = _require_text(train_number, "train_number")
    name = _require_text(name, "name")
    async with atomic(session, operation="create train"):
        config = await tenants_repo.get_configuration(session, tenant_id)
        if config is not None and config.wagon_types:
            wagon_types = _clean_wagon_types(config.wagon_types)
        else:
            wagon_types = list(DEFAULT_WAGON_TYPES)
        train = await _insert_train(
            session,
            tenant_id=tenant_id,
            actor=actor,
            train_number=train_number,
            name=name,
            operator=operator,
            wagon_types=wagon_types,
        )
    logger.info(
        "train_created tenant_id=%s train_id=%s wagons=%s", tenant_id, train.id, len(wagon_types)
    )
    return train


async def configure_train(
    session: AsyncSession,
    *,
    tenant_id: str,
    actor: Actor,
    train_number: str,
    name: str,
    wagon_types: Sequence[str],
    operator: str | None = None,
) -> Train:
    """Create a train from an explicit ordered list of wagon types."""
    train_number = _require_text(train_number, "train_number")
    name = _require_text(name, "name")
    cleaned = _clean_wagon_types(wagon_types)
    async with atomic(session, operation="configure train"):
        train = await _insert_train(
            session,
            tenant_id=tenant_id,
            actor=actor,
            train_number=train_number,
            name=name,
            operator=operator,
            wagon_types=cleaned,
        )
    logger.info("train_configured tenant_id=%s train_id=%s wagons=%s", tenant_id, train.id, len(cleaned))
    return train


async def update_train(
    session: AsyncSession,
    *,
    tenant_id: str,
    actor: Actor,
    train_id: int,
    name: str | None = None,
    operator: str | None = None,
    status: str | None = None,
) -> Train:
    async with atomic(session, operation="update train"):
        train = await trains_repo.get_train(session, tenant_id, train_id, for_update=True)
        if train is None:
            raise NotFoundError("Train not found", details={"train_id": train_id})
        before = {"name": train.name, "operator": train.operator, "status": train.status}
        if name is not None:
            train.name = _require_text(name, "name")
        if operator is not None:
            train.operator = operator
        if status is not None:
            train.status = _require_text(status, "status")
        after = {"name": train.name, "operator": train.operator, "status": train.status}
        audit.record(
            session,
            tenant_id=tenant_id,
            actor=actor,
            action="UPDATE",
            entity_type="train",
            entity_id=train.id,
            old_value=before,
            new_value=after,
            description=f"Updated train {train.train_number}",
        )
        await session.flush()
    logger.info("train_updated tenant_id=%s train_id=%s", tenant_id, train_id)
    return train


async def delete_train(
    session: AsyncSession,
    *,
    tenant_id: str,
    actor: Actor,
    train_id: int,
) -> Train:
    """Delete a train and its wagons; attached aggregates return to the spare pool."""
    async with atomic(session, operation="delete train"):
        train = await trains_repo.get_train(session, tenant_id, train_id, for_update=True)
        if train is None:
            raise NotFoundError("Train not found", details={"train_id": train_id})
        wagon_ids = await trains_repo.list_wagon_ids(session, train.id)
        attached = await aggregates_repo.list_attached_to_wagons(
            session, tenant_id, wagon_ids, for_update=True
        )
        for aggregate in attached:
            aggregate.current_wagon_id = None
            aggregate.is_spare = True
            aggregate.status = AGGREGATE_STATUS_RESERVE
        # Detach before the wagons go so no aggregate points at a deleted row.
        await session.flush()
        if wagon_ids:
            await session.execute(delete(Wagon).where(Wagon.train_id == train.id))
        audit.record(
            session,
            tenant_id=tenant_id,
            actor=actor,
            action="DELETE",
            entity_type="train",
            entity_id=train.id,
            old_value={
                "train_number": train.train_number,
                "name": train.name,
                "wagon_ids": wagon_ids,
                "detached_aggregate_ids": [aggregate.id for aggregate in attached],
            },
            description=f"Deleted train {train.train_number}",
        )
        await session.delete(train)
    logger.info(
        "train_deleted tenant_id=%s train_id=%s detached=%s", tenant_id, train_id, len(attached)
    )
    return train


async def list_tenants(
    session: AsyncSession, tenant_ids: list[str] | None = None
) -> list[tuple[Tenant, TrainConfiguration | None]]:
    return await tenants_repo.list_tenants_with_configuration(session, tenant_ids)


async def get_tenant_configuration(
    session: AsyncSession, tenant_id: str
) -> tuple[Tenant, TrainConfiguration | None]:
    tenant = await tenants_repo.get_tenant(session, tenant_id)
    if tenant is None:
        raise NotFoundError("Tenant not found", details={"tenant_id": tenant_id})
    config = await tenants_repo.get_configuration(session, tenant_id)
    return tenant, config


async def update_tenant_configuration(
    session: AsyncSession,
    *,
    tenant_id: str,
    actor: Actor,
    name: str | None = None,
    logo_url: str | None = None,
    primary_color: str | None = None,
    language: str | None = None,
    wagon_count: int | None = None,
    wagon_types: Sequence[str] | None = None,
    custom_labels: dict[str, str] | None = None,
) -> tuple[Tenant, TrainConfiguration]:
    """Patch branding fields and upsert the tenant's train layout.

    Fields left as None keep their stored value.
    """
    cleaned_types = _clean_wagon_types(wagon_types) if wagon_types is not None else None
    async with atomic(session, operation="update tenant configuration"):
        tenant = await tenants_repo.get_tenant(session, tenant_id, for_update=True)
        if tenant is None:
            raise NotFoundError("Tenant not found", details={"tenant_id": tenant_id})
        config = await tenants_repo.get_configuration(session, tenant_id, for_update=True)
        before = _configuration_snapshot(tenant, config)

        types = cleaned_types or (list(config.wagon_types) if config is not None else list(DEFAULT_WAGON_TYPES))
        # wagon_count is derived from the layout; a differing value would contradict it.
        if wagon_count is not None and wagon_count != len(types):
            raise ValidationFailure(
                "wagon_count must match the number of wagon types",
                details={"wagon_count": wagon_count, "wagon_types": len(types)},
            )

        for field, value in (
            ("name", name),
            ("logo_url", logo_url),
            ("primary_color", primary_color),
            ("language", language),
        ):
            if value is not None:
                setattr(tenant, field, value)

        if config is None:
            config = TrainConfiguration(
                tenant_id=tenant_id,
                wagon_count=len(types),
                wagon_types=types,
                custom_labels=custom_labels,
            )
            session.add(config)
        else:
            if cleaned_types is not None:
                config.wagon_types = cleaned_types
                config.wagon_count = len(cleaned_types)
            if custom_labels is not None:
                config.custom_labels = custom_labels
        audit.record(
            session,
            tenant_id=tenant_id,
            actor=actor,
            action="UPDATE",
            entity_type="tenant_config",
            entity_id=tenant_id,
            old_value=before,
            new_value=_configuration_snapshot(tenant, config),
            description=f"Updated tenant configuration for {tenant_id}",
        )
        await session.flush()
    logger.info("tenant_configuration_updated tenant_id=%s", tenant_id)
    return tenant, config

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import AliasChoices, BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from railfleet.apps.api.deps import Principal, actor_for, get_current_principal, get_db
from railfleet.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from railfleet.apps.api.response import MessageResponse, isoformat
from railfleet.domain.models import AGGREGATE_STATUSES
from railfleet.services import aggregates as lifecycle
from railfleet.services.aggregates import ReadingInput


router = APIRouter(prefix="/api/aggregates", tags=["aggregates"], responses=DEFAULT_ERROR_RESPONSES)


class AggregateResponse(BaseModel):
    id: int
    tenant_id: str
    aggregate_number: str
    type: str
    status: str
    current_wagon_id: int | None
    is_spare: bool
    temperature_setpoint: float
    current_temperature: float | None
    pressure_value: float | None
    last_maintenance: str | None
    next_maintenance: str | None
    created_at: str | None
    updated_at: str | None


class PlacedAggregateResponse(AggregateResponse):
    wagon_number: int | None = None
    wagon_type: str | None = None
    train_number: str | None = None
    train_name: str | None = None


class SensorReadingResponse(BaseModel):
    id: int
    aggregate_id: int
    reading_timestamp: str | None
    temperature: float | None
    pressure: float | None
    humidity: float | None
    power_consumption: float | None
    error_codes: list[str] | None


class AggregateDetailResponse(PlacedAggregateResponse):
    recent_readings: list[SensorReadingResponse]


class AggregateLogResponse(BaseModel):
    id: int
    aggregate_id: int
    wagon_id: int | None
    event_type: str
    description: str | None
    old_value: dict[str, Any] | None
    new_value: dict[str, Any] | None
    actor_email: str | None
    created_at: str | None


class ReplacementResponse(BaseModel):
    id: int
    old_aggregate_id: int
    new_aggregate_id: int
    wagon_id: int | None
    reason: str | None
    replaced_by: str | None
    replaced_at: str | None


class ReplaceResultResponse(MessageResponse):
    replacement: ReplacementResponse


class SwapResultResponse(MessageResponse):
    aggregates: list[AggregateResponse]


class AggregateCreateRequest(BaseModel):
    aggregate_number: str = Field(min_length=1, max_length=50)
    type: str = Field(min_length=1, max_length=30)
    temperature_setpoint: float | None = None


class AssignRequest(BaseModel):
    wagon_id: int


class SwapRequest(BaseModel):
    # Older clients sent other_aggregate_id.
    target_aggregate_id: int = Field(
        validation_alias=AliasChoices("target_aggregate_id", "other_aggregate_id")
    )


class ReplaceRequest(BaseModel):
    old_aggregate_id: int
    new_aggregate_id: int
    reason: str | None = Field(default=None, max_length=2000)


class StatusRequest(BaseModel):
    status: str = Field(min_length=1, description=f"One of: {', '.join(AGGREGATE_STATUSES)}")


class ReadingRequest(BaseModel):
    temperature: float | None = None
    pressure: float | None = None
    humidity: float | None = None
    power_consumption: float | None = None
    error_codes: list[str] | None = None
    reading_timestamp: datetime | None = None


def _to_response(aggregate) -> AggregateResponse:
    return AggregateResponse(
        id=aggregate.id,
        tenant_id=aggregate.tenant_id,
        aggregate_number=aggregate.aggregate_number,
        type=aggregate.type,
        status=aggregate.status,
        current_wagon_id=aggregate.current_wagon_id,
        is_spare=aggregate.is_spare,
        temperature_setpoint=aggregate.temperature_setpoint,
        current_temperature=aggregate.current_temperature,
        pressure_value=aggregate.pressure_value,
        last_maintenance=isoformat(aggregate.last_maintenance),
        next_maintenance=isoformat(aggregate.next_maintenance),
        created_at=isoformat(aggregate.created_at),
        updated_at=isoformat(aggregate.updated_at),
    )


def _to_placed_response(row: dict[str, Any]) -> PlacedAggregateResponse:
    return PlacedAggregateResponse(
        **_to_response(row["aggregate"]).model_dump(),
        wagon_number=row["wagon_number"],
        wagon_type=row["wagon_type"],
        train_number=row["train_number"],
        train_name=row["train_name"],
    )


def _to_reading_response(reading) -> SensorReadingResponse:
    return SensorReadingResponse(
        id=reading.id,
        aggregate_id=reading.aggregate_id,
        reading_timestamp=isoformat(reading.reading_timestamp),
        temperature=reading.temperature,
        pressure=reading.pressure,
        humidity=reading.humidity,
        power_consumption=reading.power_consumption,
        error_codes=reading.error_codes,
    )


def _to_replacement_response(replacement) -> ReplacementResponse:
    return ReplacementResponse(
        id=replacement.id,
        old_aggregate_id=replacement.old_aggregate_id,
        new_aggregate_id=replacement.new_aggregate_id,
        wagon_id=replacement.wagon_id,
        reason=replacement.reason,
        replaced_by=replacement.replaced_by,
        replaced_at=isoformat(replacement.replaced_at),
    )


@router.get("", response_model=list[PlacedAggregateResponse])
async def list_aggregates(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> list[PlacedAggregateResponse]:
    rows = await lifecycle.list_aggregates(db, principal.tenant_id)
    return [_to_placed_response(row) for row in rows]


@router.post("", response_model=AggregateResponse)
async def create_aggregate(
    payload: AggregateCreateRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> AggregateResponse:
    aggregate = await lifecycle.create(
        db,
        tenant_id=principal.tenant_id,
        actor=actor_for(principal, request),
        aggregate_number=payload.aggregate_number,
        aggregate_type=payload.type,
        temperature_setpoint=payload.temperature_setpoint,
    )
    return _to_response(aggregate)


@router.get("/spare", response_model=list[AggregateResponse])
async def list_spare_aggregates(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> list[AggregateResponse]:
    return [_to_response(aggregate) for aggregate in await lifecycle.list_spare(db, principal.tenant_id)]


@router.get("/replacements", response_model=list[ReplacementResponse])
async def list_replacements(
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=500),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> list[ReplacementResponse]:
    rows = await lifecycle.list_replacements(db, principal.tenant_id, offset=offset, limit=limit)
    return [_to_replacement_response(row) for row in rows]


@router.post("/replace", response_model=ReplaceResultResponse)
async def replace_aggregate(
    payload: ReplaceRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> ReplaceResultResponse:
    result = await lifecycle.replace(
        db,
        tenant_id=principal.tenant_id,
        actor=actor_for(principal, request),
        old_aggregate_id=payload.old_aggregate_id,
        new_aggregate_id=payload.new_aggregate_id,
        reason=payload.reason,
    )
    return ReplaceResultResponse(
        message="Aggregate replaced successfully",
        replacement=_to_replacement_response(result.replacement),
    )


@router.get("/{aggregate_id}", response_model=AggregateDetailResponse)
async def get_aggregate(
    aggregate_id: int,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> AggregateDetailResponse:
    row = await lifecycle.get_detail(db, principal.tenant_id, aggregate_id)
    return AggregateDetailResponse(
        **_to_placed_response(row).model_dump(),
        recent_readings=[_to_reading_response(reading) for reading in row["recent_readings"]],
    )


@router.post("/{aggregate_id}/assign", response_model=AggregateResponse)
async def assign_aggregate(
    aggregate_id: int,
    payload: AssignRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> AggregateResponse:
    aggregate = await lifecycle.assign(
        db,
        tenant_id=principal.tenant_id,
        actor=actor_for(principal, request),
        aggregate_id=aggregate_id,
        wagon_id=payload.wagon_id,
    )
    return _to_response(aggregate)


@router.post("/{aggregate_id}/unassign", response_model=AggregateResponse)
async def unassign_aggregate(
    aggregate_id: int,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> AggregateResponse:
    aggregate = await lifecycle.unassign(
        db,
        tenant_id=principal.tenant_id,
        actor=actor_for(principal, request),
        aggregate_id=aggregate_id,
    )
    return _to_response(aggregate)


@router.post("/{aggregate_id}/swap", response_model=SwapResultResponse)
async def swap_aggregates(
    aggregate_id: int,
    payload: SwapRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> SwapResultResponse:
    first, second = await lifecycle.swap(
        db,
        tenant_id=principal.tenant_id,
        actor=actor_for(principal, request),
        aggregate_id=aggregate_id,
        other_aggregate_id=payload.target_aggregate_id,
    )
    return SwapResultResponse(
        message="Aggregates swapped successfully",
        aggregates=[_to_response(first), _to_response(second)],
    )


@router.patch("/{aggregate_id}/status", response_model=AggregateResponse)
async def update_aggregate_status(
    aggregate_id: int,
    payload: StatusRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> AggregateResponse:
    aggregate = await lifecycle.update_status(
        db,
        tenant_id=principal.tenant_id,
        actor=actor_for(principal, request),
        aggregate_id=aggregate_id,
        status=payload.status,
    )
    return _to_response(aggregate)


@router.post("/{aggregate_id}/readings", response_model=SensorReadingResponse)
async def record_reading(
    aggregate_id: int,
    payload: ReadingRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> SensorReadingResponse:
    reading = await lifecycle.record_reading(
        db,
        tenant_id=principal.tenant_id,
        aggregate_id=aggregate_id,
        reading=ReadingInput(**payload.model_dump()),
    )
    return _to_reading_response(reading)


@router.get("/{aggregate_id}/logs", response_model=list[AggregateLogResponse])
async def list_aggregate_logs(
    aggregate_id: int,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> list[AggregateLogResponse]:
    logs = await lifecycle.get_logs(db, principal.tenant_id, aggregate_id)
    return [
        AggregateLogResponse(
            id=log.id,
            aggregate_id=log.aggregate_id,
            wagon_id=log.wagon_id,
            event_type=log.event_type,
            description=log.description,
            old_value=log.old_value,
            new_value=log.new_value,
            actor_email=log.actor_email,
            created_at=isoformat(log.created_at),
        )
        for log in logs
    ]

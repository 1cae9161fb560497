from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from railfleet.apps.api.deps import Principal, actor_for, get_current_principal, get_db
from railfleet.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from railfleet.apps.api.response import isoformat
from railfleet.services import fleet


router = APIRouter(prefix="/api/trains", tags=["trains"], responses=DEFAULT_ERROR_RESPONSES)


class TrainResponse(BaseModel):
    id: int
    train_number: str
    name: str
    operator: str | None
    status: str
    tenant_id: str
    created_at: str | None
    updated_at: str | None


class TrainSummaryResponse(TrainResponse):
    wagon_count: int
    aggregate_count: int
    operational_aggregates: int
    faulty_aggregates: int


class WagonAggregateSummary(BaseModel):
    id: int
    aggregate_number: str
    type: str
    status: str


class WagonResponse(BaseModel):
    id: int
    wagon_number: int
    wagon_type: str
    position: int
    status: str
    aggregates: list[WagonAggregateSummary]


class TrainDetailResponse(TrainResponse):
    wagons: list[WagonResponse]


class TrainDeleteResponse(BaseModel):
    success: bool = True
    deleted: TrainResponse


class TrainCreateRequest(BaseModel):
    train_number: str = Field(min_length=1, max_length=50)
    name: str = Field(min_length=1, max_length=200)
    operator: str | None = Field(default=None, max_length=200)


class TrainConfigureRequest(TrainCreateRequest):
    wagon_types: list[str] = Field(min_length=1)


class TrainUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    operator: str | None = Field(default=None, max_length=200)
    status: str | None = Field(default=None, min_length=1, max_length=30)


def _to_response(train) -> TrainResponse:
    return TrainResponse(
        id=train.id,
        train_number=train.train_number,
        name=train.name,
        operator=train.operator,
        status=train.status,
        tenant_id=train.tenant_id,
        created_at=isoformat(train.created_at),
        updated_at=isoformat(train.updated_at),
    )


def _to_wagon_response(wagon, aggregates) -> WagonResponse:
    return WagonResponse(
        id=wagon.id,
        wagon_number=wagon.wagon_number,
        wagon_type=wagon.wagon_type,
        position=wagon.position,
        status=wagon.status,
        aggregates=[
            WagonAggregateSummary(
                id=aggregate.id,
                aggregate_number=aggregate.aggregate_number,
                type=aggregate.type,
                status=aggregate.status,
            )
            for aggregate in aggregates
        ],
    )


@router.get("", response_model=list[TrainSummaryResponse])
async def list_trains(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> list[TrainSummaryResponse]:
    rows = await fleet.list_trains(db, principal.tenant_id)
    return [
        TrainSummaryResponse(
            **_to_response(row["train"]).model_dump(),
            wagon_count=row["wagon_count"],
            aggregate_count=row["aggregate_count"],
            operational_aggregates=row["operational_aggregates"],
            faulty_aggregates=row["faulty_aggregates"],
        )
        for row in rows
    ]


@router.post("", response_model=TrainResponse)
async def create_train(
    payload: TrainCreateRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> TrainResponse:
    # Layout comes from the tenant's stored configuration, not the request.
    train = await fleet.create_train(
        db,
        tenant_id=principal.tenant_id,
        actor=actor_for(principal, request),
        train_number=payload.train_number,
        name=payload.name,
        operator=payload.operator,
    )
    return _to_response(train)


@router.post("/configure", response_model=TrainResponse)
async def configure_train(
    payload: TrainConfigureRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> TrainResponse:
    train = await fleet.configure_train(
        db,
        tenant_id=principal.tenant_id,
        actor=actor_for(principal, request),
        train_number=payload.train_number,
        name=payload.name,
        wagon_types=payload.wagon_types,
        operator=payload.operator,
    )
    return _to_response(train)


@router.get("/{train_id}", response_model=TrainDetailResponse)
async def get_train(
    train_id: int,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> TrainDetailResponse:
    detail = await fleet.get_train_detail(db, principal.tenant_id, train_id)
    return TrainDetailResponse(
        **_to_response(detail["train"]).model_dump(),
        wagons=[_to_wagon_response(row["wagon"], row["aggregates"]) for row in detail["wagons"]],
    )


@router.put("/{train_id}", response_model=TrainResponse)
async def update_train(
    train_id: int,
    payload: TrainUpdateRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> TrainResponse:
    train = await fleet.update_train(
        db,
        tenant_id=principal.tenant_id,
        actor=actor_for(principal, request),
        train_id=train_id,
        name=payload.name,
        operator=payload.operator,
        status=payload.status,
    )
    return _to_response(train)


@router.delete("/{train_id}", response_model=TrainDeleteResponse)
async def delete_train(
    train_id: int,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> TrainDeleteResponse:
    train = await fleet.delete_train(
        db,
        tenant_id=principal.tenant_id,
        actor=actor_for(principal, request),
        train_id=train_id,
    )
    return TrainDeleteResponse(deleted=_to_response(train))

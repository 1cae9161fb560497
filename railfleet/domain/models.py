from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utc_now() -> datetime:
    # Python-side timestamps stay loaded after flush; async sessions cannot lazy-refresh.
    return datetime.now(timezone.utc)


# JSONB on Postgres, plain JSON on SQLite for local and test databases.
JsonType = JSON().with_variant(JSONB(), "postgresql")

AGGREGATE_STATUS_OPERATIONAL = "operational"
AGGREGATE_STATUS_MAINTENANCE = "maintenance"
AGGREGATE_STATUS_RESERVE = "reserve"
AGGREGATE_STATUSES = (
    AGGREGATE_STATUS_OPERATIONAL,
    AGGREGATE_STATUS_MAINTENANCE,
    AGGREGATE_STATUS_RESERVE,
)


class Base(DeclarativeBase):
    pass


class Tenant(Base):
    __tablename__ = "tenants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Stable string key referenced by every tenant-scoped table.
    tenant_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    logo_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    primary_color: Mapped[str] = mapped_column(String(7), default="#3B82F6", nullable=False)
    language: Mapped[str] = mapped_column(String(5), default="sv", nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now(), onupdate=utc_now
    )


class TrainConfiguration(Base):
    __tablename__ = "train_configurations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # One layout per tenant; upserts key on this column.
    tenant_id: Mapped[str] = mapped_column(
        String(100), ForeignKey("tenants.tenant_id", ondelete="CASCADE"), unique=True, nullable=False
    )
    wagon_count: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    wagon_types: Mapped[list[str]] = mapped_column(JsonType, nullable=False)
    custom_labels: Mapped[dict[str, str] | None] = mapped_column(JsonType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now(), onupdate=utc_now
    )


class Train(Base):
    __tablename__ = "trains"
    __table_args__ = (
        UniqueConstraint("tenant_id", "train_number", name="uq_trains_tenant_number"),
        Index("ix_trains_tenant_id", "tenant_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    train_number: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    operator: Mapped[str | None] = mapped_column(String(200), nullable=True)
    status: Mapped[str] = mapped_column(String(30), default="active", nullable=False)
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now(), onupdate=utc_now
    )


class Wagon(Base):
    __tablename__ = "wagons"
    __table_args__ = (
        UniqueConstraint("train_id", "position", name="uq_wagons_train_position"),
        Index("ix_wagons_train_id", "train_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    train_id: Mapped[int] = mapped_column(Integer, ForeignKey("trains.id", ondelete="CASCADE"), nullable=False)
    wagon_number: Mapped[int] = mapped_column(Integer, nullable=False)
    wagon_type: Mapped[str] = mapped_column(String(50), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(30), default="active", nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )


class Aggregate(Base):
    __tablename__ = "aggregates"
    __table_args__ = (
        Index("ix_aggregates_tenant_id", "tenant_id"),
        Index("ix_aggregates_is_spare", "is_spare"),
        Index("ix_aggregates_current_wagon_id", "current_wagon_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    aggregate_number: Mapped[str] = mapped_column(String(50), nullable=False)
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    status: Mapped[str] = mapped_column(String(30), default=AGGREGATE_STATUS_RESERVE, nullable=False)
    # Attached aggregates are never spare; detached aggregates always are.
    current_wagon_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("wagons.id", ondelete="SET NULL"), nullable=True
    )
    is_spare: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    temperature_setpoint: Mapped[float] = mapped_column(Float, default=22.0, nullable=False)
    current_temperature: Mapped[float | None] = mapped_column(Float, nullable=True)
    pressure_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    last_maintenance: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    next_maintenance: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now(), onupdate=utc_now
    )


class SensorReading(Base):
    __tablename__ = "sensor_readings"
    __table_args__ = (
        Index("ix_sensor_readings_aggregate_ts", "aggregate_id", "reading_timestamp"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    aggregate_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("aggregates.id", ondelete="CASCADE"), nullable=False
    )
    reading_timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    temperature: Mapped[float | None] = mapped_column(Float, nullable=True)
    pressure: Mapped[float | None] = mapped_column(Float, nullable=True)
    humidity: Mapped[float | None] = mapped_column(Float, nullable=True)
    power_consumption: Mapped[float | None] = mapped_column(Float, nullable=True)
    error_codes: Mapped[list[str] | None] = mapped_column(JsonType, nullable=True)


class AggregateLog(Base):
    __tablename__ = "aggregate_logs"
    __table_args__ = (
        Index("ix_aggregate_logs_aggregate_created", "aggregate_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    aggregate_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("aggregates.id", ondelete="CASCADE"), nullable=False
    )
    wagon_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    old_value: Mapped[dict[str, Any] | None] = mapped_column(JsonType, nullable=True)
    new_value: Mapped[dict[str, Any] | None] = mapped_column(JsonType, nullable=True)
    actor_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )


class AggregateReplacement(Base):
    __tablename__ = "aggregate_replacements"
    __table_args__ = (
        Index("ix_aggregate_replacements_tenant_id", "tenant_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    old_aggregate_id: Mapped[int] = mapped_column(Integer, ForeignKey("aggregates.id"), nullable=False)
    new_aggregate_id: Mapped[int] = mapped_column(Integer, ForeignKey("aggregates.id"), nullable=False)
    # Wagon references stay plain ints so history survives train deletion.
    wagon_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    replaced_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    replaced_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )


class AuditLog(Base):
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_tenant_id", "tenant_id"),
        Index("ix_audit_logs_created_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    user_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    user_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    old_value: Mapped[dict[str, Any] | None] = mapped_column(JsonType, nullable=True)
    new_value: Mapped[dict[str, Any] | None] = mapped_column(JsonType, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )

"""fleet schema: tenants, trains, wagons, aggregates and history tables

Revision ID: 0001_fleet_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000

Every step checks the live schema first, so the revision also applies cleanly
to databases created by the earlier hand-run SQL scripts (which lack tenant
columns on aggregates and the actor column on aggregate_logs).
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "0001_fleet_schema"
down_revision = None
branch_labels = None
depends_on = None

_JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _inspector() -> sa.Inspector:
    return sa.inspect(op.get_bind())


def _has_table(name: str) -> bool:
    return name in _inspector().get_table_names()


def _columns(table: str) -> set[str]:
    return {column["name"] for column in _inspector().get_columns(table)}


def _indexes(table: str) -> set[str]:
    return {index["name"] for index in _inspector().get_indexes(table) if index.get("name")}


def _timestamps(*, with_updated: bool = True) -> list[sa.Column]:
    columns = [sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now())]
    if with_updated:
        columns.append(sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()))
    return columns


def _add_column_if_missing(table: str, column: sa.Column) -> None:
    if column.name not in _columns(table):
        op.add_column(table, column)


def _create_index_if_missing(name: str, table: str, columns: list[str], *, unique: bool = False) -> None:
    if name not in _indexes(table):
        op.create_index(name, table, columns, unique=unique)


def upgrade() -> None:
    if not _has_table("tenants"):
        op.create_table(
            "tenants",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("tenant_id", sa.String(100), nullable=False, unique=True),
            sa.Column("name", sa.String(200), nullable=False),
            sa.Column("logo_url", sa.Text(), nullable=True),
            sa.Column("primary_color", sa.String(7), nullable=False, server_default="#3B82F6"),
            sa.Column("language", sa.String(5), nullable=False, server_default="sv"),
            *_timestamps(),
        )

    if not _has_table("train_configurations"):
        op.create_table(
            "train_configurations",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column(
                "tenant_id",
                sa.String(100),
                sa.ForeignKey("tenants.tenant_id", ondelete="CASCADE"),
                nullable=False,
                unique=True,
            ),
            sa.Column("wagon_count", sa.Integer(), nullable=False, server_default="5"),
            sa.Column("wagon_types", _JSON, nullable=False),
            sa.Column("custom_labels", _JSON, nullable=True),
            *_timestamps(),
        )

    if not _has_table("trains"):
        op.create_table(
            "trains",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("train_number", sa.String(50), nullable=False),
            sa.Column("name", sa.String(200), nullable=False),
            sa.Column("operator", sa.String(200), nullable=True),
            sa.Column("status", sa.String(30), nullable=False, server_default="active"),
            sa.Column("tenant_id", sa.String(100), nullable=False, server_default="default"),
            *_timestamps(),
        )
    else:
        _add_column_if_missing(
            "trains", sa.Column("tenant_id", sa.String(100), nullable=False, server_default="default")
        )
    _create_index_if_missing("ix_trains_tenant_id", "trains", ["tenant_id"])
    # Unique index rather than a constraint so the step can be skipped when present.
    _create_index_if_missing("uq_trains_tenant_number", "trains", ["tenant_id", "train_number"], unique=True)

    if not _has_table("wagons"):
        op.create_table(
            "wagons",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("train_id", sa.Integer(), sa.ForeignKey("trains.id", ondelete="CASCADE"), nullable=False),
            sa.Column("wagon_number", sa.Integer(), nullable=False),
            sa.Column("wagon_type", sa.String(50), nullable=False),
            sa.Column("position", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(30), nullable=False, server_default="active"),
            *_timestamps(with_updated=False),
        )
    _create_index_if_missing("ix_wagons_train_id", "wagons", ["train_id"])
    _create_index_if_missing("uq_wagons_train_position", "wagons", ["train_id", "position"], unique=True)

    if not _has_table("aggregates"):
        op.create_table(
            "aggregates",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("tenant_id", sa.String(100), nullable=False, server_default="default"),
            sa.Column("aggregate_number", sa.String(50), nullable=False),
            sa.Column("type", sa.String(30), nullable=False),
            sa.Column("status", sa.String(30), nullable=False, server_default="reserve"),
            sa.Column(
                "current_wagon_id",
                sa.Integer(),
                sa.ForeignKey("wagons.id", ondelete="SET NULL"),
                nullable=True,
            ),
            sa.Column("is_spare", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("temperature_setpoint", sa.Float(), nullable=False, server_default="22.0"),
            sa.Column("current_temperature", sa.Float(), nullable=True),
            sa.Column("pressure_value", sa.Float(), nullable=True),
            sa.Column("last_maintenance", sa.DateTime(timezone=True), nullable=True),
            sa.Column("next_maintenance", sa.DateTime(timezone=True), nullable=True),
            *_timestamps(),
        )
    else:
        _add_column_if_missing(
            "aggregates", sa.Column("tenant_id", sa.String(100), nullable=False, server_default="default")
        )
        _add_column_if_missing(
            "aggregates", sa.Column("is_spare", sa.Boolean(), nullable=False, server_default=sa.false())
        )
    _create_index_if_missing("ix_aggregates_tenant_id", "aggregates", ["tenant_id"])
    _create_index_if_missing("ix_aggregates_is_spare", "aggregates", ["is_spare"])
    _create_index_if_missing("ix_aggregates_current_wagon_id", "aggregates", ["current_wagon_id"])

    if not _has_table("sensor_readings"):
        op.create_table(
            "sensor_readings",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column(
                "aggregate_id", sa.Integer(), sa.ForeignKey("aggregates.id", ondelete="CASCADE"), nullable=False
            ),
            sa.Column(
                "reading_timestamp", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
            ),
            sa.Column("temperature", sa.Float(), nullable=True),
            sa.Column("pressure", sa.Float(), nullable=True),
            sa.Column("humidity", sa.Float(), nullable=True),
            sa.Column("power_consumption", sa.Float(), nullable=True),
            sa.Column("error_codes", _JSON, nullable=True),
        )
    _create_index_if_missing(
        "ix_sensor_readings_aggregate_ts", "sensor_readings", ["aggregate_id", "reading_timestamp"]
    )

    if not _has_table("aggregate_logs"):
        op.create_table(
            "aggregate_logs",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column(
                "aggregate_id", sa.Integer(), sa.ForeignKey("aggregates.id", ondelete="CASCADE"), nullable=False
            ),
            sa.Column("wagon_id", sa.Integer(), nullable=True),
            sa.Column("event_type", sa.String(50), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("old_value", _JSON, nullable=True),
            sa.Column("new_value", _JSON, nullable=True),
            sa.Column("actor_email", sa.String(255), nullable=True),
            *_timestamps(with_updated=False),
        )
    else:
        _add_column_if_missing("aggregate_logs", sa.Column("actor_email", sa.String(255), nullable=True))
    _create_index_if_missing(
        "ix_aggregate_logs_aggregate_created", "aggregate_logs", ["aggregate_id", "created_at"]
    )

    if not _has_table("aggregate_replacements"):
        op.create_table(
            "aggregate_replacements",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("tenant_id", sa.String(100), nullable=False, server_default="default"),
            sa.Column("old_aggregate_id", sa.Integer(), sa.ForeignKey("aggregates.id"), nullable=False),
            sa.Column("new_aggregate_id", sa.Integer(), sa.ForeignKey("aggregates.id"), nullable=False),
            sa.Column("wagon_id", sa.Integer(), nullable=True),
            sa.Column("reason", sa.Text(), nullable=True),
            sa.Column("replaced_by", sa.String(255), nullable=True),
            sa.Column("replaced_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
    _create_index_if_missing("ix_aggregate_replacements_tenant_id", "aggregate_replacements", ["tenant_id"])

    if not _has_table("audit_logs"):
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("tenant_id", sa.String(100), nullable=True),
            sa.Column("user_email", sa.String(255), nullable=True),
            sa.Column("user_name", sa.String(255), nullable=True),
            sa.Column("action", sa.String(100), nullable=False),
            sa.Column("entity_type", sa.String(50), nullable=False),
            sa.Column("entity_id", sa.String(50), nullable=True),
            sa.Column("old_value", _JSON, nullable=True),
            sa.Column("new_value", _JSON, nullable=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("ip_address", sa.String(45), nullable=True),
            *_timestamps(with_updated=False),
        )
    _create_index_if_missing("ix_audit_logs_tenant_id", "audit_logs", ["tenant_id"])
    _create_index_if_missing("ix_audit_logs_created_at", "audit_logs", ["created_at"])


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("aggregate_replacements")
    op.drop_table("aggregate_logs")
    op.drop_table("sensor_readings")
    op.drop_table("aggregates")
    op.drop_table("wagons")
    op.drop_table("trains")
    op.drop_table("train_configurations")
    op.drop_table("tenants")

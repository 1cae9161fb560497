"""seed the default tenant and its X31 train layout

Revision ID: 0002_seed_default_tenant
Revises: 0001_fleet_schema
Create Date: 2026-10-19 09:05:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql, sqlite


# revision identifiers, used by Alembic.
revision = "0002_seed_default_tenant"
down_revision = "0001_fleet_schema"
branch_labels = None
depends_on = None

DEFAULT_TENANT_ID = "default"
DEFAULT_WAGON_TYPES = ["M43 Hytt", "M43 Salong", "T47 Salong", "M45 Salong", "M45 Hytt"]

_JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")

tenants = sa.table(
    "tenants",
    sa.column("tenant_id", sa.String),
    sa.column("name", sa.String),
    sa.column("primary_color", sa.String),
    sa.column("language", sa.String),
)
train_configurations = sa.table(
    "train_configurations",
    sa.column("tenant_id", sa.String),
    sa.column("wagon_count", sa.Integer),
    sa.column("wagon_types", _JSON),
)


def _insert(table: sa.TableClause):
    # Both dialects support ON CONFLICT DO NOTHING; re-running the seed is a no-op.
    dialect = op.get_bind().dialect.name
    insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
    return insert(table)


def upgrade() -> None:
    op.execute(
        _insert(tenants)
        .values(tenant_id=DEFAULT_TENANT_ID, name="Öresundståg", primary_color="#3B82F6", language="sv")
        .on_conflict_do_nothing(index_elements=["tenant_id"])
    )
    op.execute(
        _insert(train_configurations)
        .values(
            tenant_id=DEFAULT_TENANT_ID,
            wagon_count=len(DEFAULT_WAGON_TYPES),
            wagon_types=DEFAULT_WAGON_TYPES,
        )
        .on_conflict_do_nothing(index_elements=["tenant_id"])
    )


def downgrade() -> None:
    op.execute(train_configurations.delete().where(train_configurations.c.tenant_id == DEFAULT_TENANT_ID))
    op.execute(tenants.delete().where(tenants.c.tenant_id == DEFAULT_TENANT_ID))

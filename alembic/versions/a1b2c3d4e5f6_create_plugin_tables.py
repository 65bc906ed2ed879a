"""create_plugin_tables

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-17 00:00:00.000000

Initial schema:
  - `plugin_settings`: per-organization plugin configuration.
  - `dashboards`: dashboards imported into an organization.
"""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic
revision: str = "a1b2c3d4e5f6"
down_revision: str | None = None
branch_labels: str | None = None
depends_on: str | None = None


def upgrade() -> None:
    op.create_table(
        "plugin_settings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("plugin_id", sa.String(190), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        sa.Column("pinned", sa.Boolean(), nullable=False),
        sa.Column("json_data", sa.JSON(), nullable=True),
        sa.Column("secure_json_data", sa.JSON(), nullable=True),
        sa.Column("plugin_version", sa.String(50), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("org_id", "plugin_id", name="uq_plugin_settings_org_plugin"),
    )
    op.create_index(op.f("ix_plugin_settings_id"), "plugin_settings", ["id"], unique=False)
    op.create_index(op.f("ix_plugin_settings_org_id"), "plugin_settings", ["org_id"], unique=False)

    op.create_table(
        "dashboards",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("folder_id", sa.Integer(), nullable=False),
        sa.Column("uid", sa.String(40), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(255), nullable=False),
        sa.Column("data", sa.JSON(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("plugin_id", sa.String(190), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_dashboards_id"), "dashboards", ["id"], unique=False)
    op.create_index(op.f("ix_dashboards_org_id"), "dashboards", ["org_id"], unique=False)
    op.create_index("ix_dashboards_org_uid", "dashboards", ["org_id", "uid"], unique=True)
    op.create_index("ix_dashboards_org_folder_title", "dashboards", ["org_id", "folder_id", "title"], unique=False)
    op.create_index("ix_dashboards_org_plugin", "dashboards", ["org_id", "plugin_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_dashboards_org_plugin", table_name="dashboards")
    op.drop_index("ix_dashboards_org_folder_title", table_name="dashboards")
    op.drop_index("ix_dashboards_org_uid", table_name="dashboards")
    op.drop_index(op.f("ix_dashboards_org_id"), table_name="dashboards")
    op.drop_index(op.f("ix_dashboards_id"), table_name="dashboards")
    op.drop_table("dashboards")

    op.drop_index(op.f("ix_plugin_settings_org_id"), table_name="plugin_settings")
    op.drop_index(op.f("ix_plugin_settings_id"), table_name="plugin_settings")
    op.drop_table("plugin_settings")

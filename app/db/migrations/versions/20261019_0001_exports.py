"""exports and user_assets

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19

"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op


revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "exports",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Uuid(as_uuid=True), nullable=True),
        sa.Column("scene_id", sa.String(length=255), nullable=False),
        sa.Column("usdz_path", sa.Text(), nullable=False),
        sa.Column("json_path", sa.Text(), nullable=True),
        sa.Column("glb_path", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="queued"),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint(
            "status IN ('queued', 'processing', 'ready', 'failed')",
            name="ck_exports_status",
        ),
        sa.CheckConstraint("(status = 'ready') = (glb_path IS NOT NULL)", name="ck_exports_glb_path_ready"),
        sa.CheckConstraint("(status = 'failed') = (error IS NOT NULL)", name="ck_exports_error_failed"),
    )
    op.create_index("ix_exports_user_id", "exports", ["user_id"], unique=False)
    op.create_index("ix_exports_status_created_at", "exports", ["status", "created_at"], unique=False)

    op.create_table(
        "user_assets",
        sa.Column("asset_id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Uuid(as_uuid=True), nullable=True),
        sa.Column("export_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("asset_type", sa.String(length=32), nullable=False, server_default="glb"),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_user_assets_user_id", "user_assets", ["user_id"], unique=False)
    op.create_index("ix_user_assets_export_id", "user_assets", ["export_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_user_assets_export_id", table_name="user_assets")
    op.drop_index("ix_user_assets_user_id", table_name="user_assets")
    op.drop_table("user_assets")
    op.drop_index("ix_exports_status_created_at", table_name="exports")
    op.drop_index("ix_exports_user_id", table_name="exports")
    op.drop_table("exports")

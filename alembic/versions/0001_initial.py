"""initial media schema

Revision ID: 0001_initial
Revises: None
Create Date: 2026-10-17
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _asset_fk() -> sa.Column:
    return sa.Column("asset_id", sa.Uuid(), sa.ForeignKey("assets.id", ondelete="CASCADE"), nullable=False)


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()"))


def upgrade() -> None:
    op.create_table(
        "assets",
        sa.Column("id", sa.Uuid(), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("kind", sa.String(length=20), nullable=False),
        sa.Column("state", sa.String(length=20), nullable=False, server_default=sa.text("'uploading'")),
        sa.Column("bucket", sa.String(length=100), nullable=False),
        sa.Column("object_key", sa.String(length=500), nullable=False),
        sa.Column("filename", sa.String(length=255), nullable=False),
        sa.Column("mime_type", sa.String(length=100), nullable=False),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column("sha256", sa.String(length=64), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("bucket", "object_key", name="uq_assets_bucket_object_key"),
        sa.CheckConstraint("kind in ('image','video','audio','document')", name="ck_assets_kind"),
        sa.CheckConstraint("state in ('uploading','processing','ready','failed')", name="ck_assets_state"),
    )
    op.create_index("ix_assets_kind", "assets", ["kind"])
    op.create_index("ix_assets_state", "assets", ["state"])
    op.create_index("ix_assets_created_at", "assets", [sa.text("created_at DESC")])

    op.create_table(
        "asset_meta",
        sa.Column(
            "asset_id",
            sa.Uuid(),
            sa.ForeignKey("assets.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("width", sa.Integer(), nullable=True),
        sa.Column("height", sa.Integer(), nullable=True),
        sa.Column("duration_seconds", sa.Numeric(10, 2), nullable=True),
        sa.Column("bitrate", sa.Integer(), nullable=True),
        sa.Column("codec", sa.String(length=50), nullable=True),
        sa.Column("exif", postgresql.JSONB(), nullable=True),
        _created_at(),
    )

    op.create_table(
        "asset_variants",
        sa.Column("id", sa.Uuid(), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        _asset_fk(),
        sa.Column("variant_type", sa.String(length=50), nullable=False),
        sa.Column("path", sa.String(length=500), nullable=False),
        sa.Column("mime_type", sa.String(length=100), nullable=False),
        sa.Column("width", sa.Integer(), nullable=True),
        sa.Column("height", sa.Integer(), nullable=True),
        sa.Column("bitrate", sa.Integer(), nullable=True),
        sa.Column("size_bytes", sa.BigInteger(), nullable=True),
        _created_at(),
    )
    op.create_index("ix_asset_variants_asset_id", "asset_variants", ["asset_id"])
    op.create_index("ix_asset_variants_variant_type", "asset_variants", ["variant_type"])

    op.create_table(
        "asset_tags",
        sa.Column("id", sa.Uuid(), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        _asset_fk(),
        sa.Column("tag", sa.String(length=100), nullable=False),
        _created_at(),
        sa.UniqueConstraint("asset_id", "tag", name="uq_asset_tags_asset_tag"),
    )
    op.create_index("ix_asset_tags_asset_id", "asset_tags", ["asset_id"])
    op.create_index("ix_asset_tags_tag", "asset_tags", ["tag"])

    op.create_table(
        "asset_usage",
        sa.Column("id", sa.Uuid(), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        _asset_fk(),
        sa.Column("owner_type", sa.String(length=50), nullable=False),
        sa.Column("owner_id", sa.Uuid(), nullable=False),
        sa.Column("purpose", sa.String(length=100), nullable=True),
        _created_at(),
        sa.UniqueConstraint("asset_id", "owner_type", "owner_id", "purpose", name="uq_asset_usage"),
    )
    op.create_index("ix_asset_usage_asset_id", "asset_usage", ["asset_id"])
    op.create_index("ix_asset_usage_owner", "asset_usage", ["owner_type", "owner_id"])

    op.create_table(
        "processing_jobs",
        sa.Column("id", sa.Uuid(), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        _asset_fk(),
        sa.Column("job_type", sa.String(length=50), nullable=False),
        sa.Column("state", sa.String(length=20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("priority", sa.Integer(), nullable=False, server_default=sa.text("5")),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default=sa.text("3")),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.CheckConstraint(
            "state in ('pending','processing','completed','failed')",
            name="ck_processing_jobs_state",
        ),
    )
    op.create_index("ix_processing_jobs_asset_id", "processing_jobs", ["asset_id"])
    op.create_index("ix_processing_jobs_state", "processing_jobs", ["state"])
    op.create_index(
        "ix_processing_jobs_priority",
        "processing_jobs",
        [sa.text("priority DESC"), sa.text("created_at ASC")],
    )

    op.execute(
        """
        CREATE OR REPLACE FUNCTION update_updated_at_column()
        RETURNS TRIGGER AS $$
        BEGIN
            NEW.updated_at = now();
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql
        """
    )
    op.execute(
        """
        CREATE TRIGGER update_assets_updated_at
        BEFORE UPDATE ON assets
        FOR EACH ROW EXECUTE FUNCTION update_updated_at_column()
        """
    )


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS update_assets_updated_at ON assets")
    op.execute("DROP FUNCTION IF EXISTS update_updated_at_column()")
    op.drop_table("processing_jobs")
    op.drop_table("asset_usage")
    op.drop_table("asset_tags")
    op.drop_table("asset_variants")
    op.drop_table("asset_meta")
    op.drop_table("assets")

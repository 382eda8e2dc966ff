"""delivery schema: projects, assets, tags, annotations, events

Revision ID: 0001
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def _asset_type() -> sa.Enum:
    return sa.Enum("raw", "wip", "deliverable", "avatar", "portfolio", name="assettype", native_enum=False)


def _ingest_status() -> sa.Enum:
    return sa.Enum("uploaded", "processing", "ready", "failed", name="ingeststatus", native_enum=False)


def _approval_status() -> sa.Enum:
    return sa.Enum(
        "pending", "approved", "revision_requested", "delivered", name="approvalstatus", native_enum=False
    )


def upgrade() -> None:
    op.create_table(
        "projects",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=160), nullable=False),
        sa.Column("client_id", sa.String(length=64), nullable=True),
        sa.Column("team_ids", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_projects_client_id", "projects", ["client_id"])

    op.create_table(
        "assets",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("project_id", sa.Uuid(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("asset_type", _asset_type(), nullable=False),
        sa.Column("status", _ingest_status(), nullable=False),
        sa.Column("approval_status", _approval_status(), nullable=True),
        sa.Column("filename", sa.String(length=255), nullable=False),
        sa.Column("mime_type", sa.String(length=120), nullable=False),
        sa.Column("size_bytes", sa.Integer(), nullable=False),
        sa.Column("width", sa.Integer(), nullable=True),
        sa.Column("height", sa.Integer(), nullable=True),
        sa.Column("duration_seconds", sa.Float(), nullable=True),
        sa.Column("title", sa.String(length=255), nullable=True),
        sa.Column("caption", sa.Text(), nullable=True),
        sa.Column("storage_ref", sa.String(length=512), nullable=True),
        sa.Column("thumbnail_ref", sa.String(length=512), nullable=True),
        sa.Column("uploaded_by", sa.String(length=64), nullable=False),
        sa.Column("focal_x", sa.Float(), nullable=False),
        sa.Column("focal_y", sa.Float(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("access_revoked", sa.Boolean(), nullable=False),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_by", sa.String(length=64), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("view_count", sa.Integer(), nullable=False),
        sa.Column("download_count", sa.Integer(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    for column in ("project_id", "asset_type", "status", "approval_status", "uploaded_by", "expires_at", "created_at"):
        op.create_index(f"ix_assets_{column}", "assets", [column])

    op.create_table(
        "asset_tags",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("asset_id", sa.Uuid(), sa.ForeignKey("assets.id", ondelete="CASCADE"), nullable=False),
        sa.Column("value", sa.String(length=64), nullable=False),
        sa.Column("display", sa.String(length=64), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.UniqueConstraint("asset_id", "value", name="uq_asset_tags_asset_value"),
    )
    op.create_index("ix_asset_tags_asset_id", "asset_tags", ["asset_id"])
    op.create_index("ix_asset_tags_value", "asset_tags", ["value"])

    op.create_table(
        "asset_annotations",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("asset_id", sa.Uuid(), sa.ForeignKey("assets.id", ondelete="CASCADE"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("author_name", sa.String(length=255), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("timecode_seconds", sa.Float(), nullable=True),
        sa.Column("resolved", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("asset_id", "position", name="uq_asset_annotations_asset_position"),
    )
    op.create_index("ix_asset_annotations_asset_id", "asset_annotations", ["asset_id"])

    op.create_table(
        "delivery_events",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("asset_id", sa.Uuid(), nullable=False),
        sa.Column("action", sa.String(length=80), nullable=False),
        sa.Column("from_status", _approval_status(), nullable=True),
        sa.Column("to_status", _approval_status(), nullable=True),
        sa.Column("actor_id", sa.String(length=64), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_delivery_events_asset_id", "delivery_events", ["asset_id"])
    op.create_index("ix_delivery_events_action", "delivery_events", ["action"])


def downgrade() -> None:
    op.drop_index("ix_delivery_events_action", table_name="delivery_events")
    op.drop_index("ix_delivery_events_asset_id", table_name="delivery_events")
    op.drop_table("delivery_events")
    op.drop_index("ix_asset_annotations_asset_id", table_name="asset_annotations")
    op.drop_table("asset_annotations")
    op.drop_index("ix_asset_tags_value", table_name="asset_tags")
    op.drop_index("ix_asset_tags_asset_id", table_name="asset_tags")
    op.drop_table("asset_tags")
    for column in ("created_at", "expires_at", "uploaded_by", "approval_status", "status", "asset_type", "project_id"):
        op.drop_index(f"ix_assets_{column}", table_name="assets")
    op.drop_table("assets")
    op.drop_index("ix_projects_client_id", table_name="projects")
    op.drop_table("projects")

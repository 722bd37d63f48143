"""media pipeline tables

Revision ID: 5c1e2f9a7b31
Revises:
Create Date: 2026-10-19 09:12:44.318201

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "5c1e2f9a7b31"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create media items, moderation decisions and strikes."""
    op.create_table(
        "media_item",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("owner_id", sa.String(length=64), nullable=False),
        sa.Column("kind", sa.String(length=20), nullable=False),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("content_type", sa.String(length=100), nullable=False),
        sa.Column("duration_seconds", sa.Float(), nullable=True),
        sa.Column("local_temp_path", sa.Text(), nullable=True),
        sa.Column("durable_uri", sa.Text(), nullable=True),
        sa.Column("content_hash", sa.CHAR(length=64), nullable=True),
        sa.Column("cdn_asset_id", sa.String(length=128), nullable=True),
        sa.Column("processing_status", sa.String(length=24), nullable=False),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("recovery_attempts", sa.SmallInteger(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_media_item_owner_id", "media_item", ["owner_id"])
    op.create_index("ix_media_item_processing_status", "media_item", ["processing_status"])
    op.create_index("ix_media_item_updated_at", "media_item", ["updated_at"])

    op.create_table(
        "moderation_decision",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("media_item_id", sa.String(length=64), nullable=False),
        sa.Column("outcome", sa.String(length=16), nullable=False),
        sa.Column("reason", sa.String(length=64), nullable=True),
        sa.Column("reasoning", sa.Text(), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("categories", sa.JSON(), nullable=False),
        sa.Column("moderator_id", sa.String(length=64), nullable=True),
        sa.Column("attempt", sa.SmallInteger(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["media_item_id"], ["media_item.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_moderation_decision_media_item_id", "moderation_decision", ["media_item_id"]
    )

    op.create_table(
        "strike",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("owner_id", sa.String(length=64), nullable=False),
        sa.Column("subject_kind", sa.String(length=20), nullable=False),
        sa.Column("subject_id", sa.String(length=64), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("decision_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["subject_id"], ["media_item.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["decision_id"], ["moderation_decision.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("decision_id"),
    )
    op.create_index("ix_strike_owner_id", "strike", ["owner_id"])


def downgrade() -> None:
    """Drop the media pipeline tables."""
    op.drop_index("ix_strike_owner_id", table_name="strike")
    op.drop_table("strike")
    op.drop_index("ix_moderation_decision_media_item_id", table_name="moderation_decision")
    op.drop_table("moderation_decision")
    op.drop_index("ix_media_item_updated_at", table_name="media_item")
    op.drop_index("ix_media_item_processing_status", table_name="media_item")
    op.drop_index("ix_media_item_owner_id", table_name="media_item")
    op.drop_table("media_item")

"""create reels and parsing_runs tables

Revision ID: 0002_reels_and_parsing_runs
Revises: 0001_create_tracking_tables
Create Date: 2026-10-19 09:05:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0002_reels_and_parsing_runs"
down_revision = "0001_create_tracking_tables"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "reels",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("reel_url", sa.Text(), nullable=False),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("source_type", sa.String(length=32), nullable=False),
        sa.Column("source_identifier", sa.String(length=255), nullable=False),
        sa.Column("profile_url", sa.Text(), nullable=True),
        sa.Column("author_username", sa.String(length=255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("views_count", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("likes_count", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("comments_count", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("audio_title", sa.Text(), nullable=True),
        sa.Column("audio_artist", sa.Text(), nullable=True),
        sa.Column("thumbnail_url", sa.Text(), nullable=True),
        sa.Column("video_download_url", sa.Text(), nullable=True),
        sa.Column("raw_data", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("reel_url", name="uq_reels_reel_url"),
    )
    op.create_index("ix_reels_project_id", "reels", ["project_id"])
    op.create_index("ix_reels_published_at", "reels", ["published_at"])
    op.create_index("ix_reels_created_at", "reels", ["created_at"])

    op.create_table(
        "parsing_runs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("run_id", sa.String(length=36), nullable=False, unique=True),
        sa.Column("parent_run_id", sa.String(length=36), nullable=True),
        sa.Column("project_id", sa.Integer(), nullable=True),
        sa.Column("source_type", sa.String(length=32), nullable=False),
        sa.Column("source_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reels_found_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reels_added_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("errors_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("log_message", sa.Text(), nullable=True),
        sa.Column("error_details", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        # ended_at is stamped exactly when the run reaches a terminal status
        sa.CheckConstraint(
            "(ended_at IS NULL) = (status IN ('started', 'running'))",
            name="ck_parsing_runs_ended_at_terminal",
        ),
    )
    op.create_index("ix_parsing_runs_parent_run_id", "parsing_runs", ["parent_run_id"])
    op.create_index("ix_parsing_runs_project_id", "parsing_runs", ["project_id"])
    op.create_index("ix_parsing_runs_status", "parsing_runs", ["status"])


def downgrade() -> None:
    op.drop_index("ix_parsing_runs_status", table_name="parsing_runs")
    op.drop_index("ix_parsing_runs_project_id", table_name="parsing_runs")
    op.drop_index("ix_parsing_runs_parent_run_id", table_name="parsing_runs")
    op.drop_table("parsing_runs")
    op.drop_index("ix_reels_created_at", table_name="reels")
    op.drop_index("ix_reels_published_at", table_name="reels")
    op.drop_index("ix_reels_project_id", table_name="reels")
    op.drop_table("reels")

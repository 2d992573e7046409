from __future__ import annotations

from datetime import datetime
from enum import Enum

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship as sa_relationship

from .db import Base


def relationship(*args, **kwargs):
    """Wrap SQLAlchemy relationship to forbid lazy loading by default."""
    kwargs.setdefault("lazy", "raise")
    return sa_relationship(*args, **kwargs)


class SourceType(str, Enum):
    competitor = "competitor"
    hashtag = "hashtag"


class RunSourceType(str, Enum):
    overall_run = "overall_run"
    project_processing = "project_processing"
    competitor = "competitor"
    hashtag = "hashtag"


class RunStatus(str, Enum):
    started = "started"
    running = "running"
    completed = "completed"
    completed_with_errors = "completed_with_errors"
    failed = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({RunStatus.completed, RunStatus.completed_with_errors, RunStatus.failed})


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    telegram_id: Mapped[str] = mapped_column(sa.String(64), unique=True, nullable=False)
    username: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)
    first_name: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(sa.Boolean(), nullable=False, server_default=sa.true())
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )

    projects: Mapped[list["Project"]] = relationship(
        back_populates="user", cascade="all, delete-orphan", passive_deletes=True
    )


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(sa.Text(), nullable=False)
    description: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    is_active: Mapped[bool] = mapped_column(sa.Boolean(), nullable=False, server_default=sa.true())
    created_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now(), nullable=False
    )

    user: Mapped[User] = relationship(back_populates="projects")
    competitors: Mapped[list["Competitor"]] = relationship(
        back_populates="project", cascade="all, delete-orphan", passive_deletes=True
    )
    hashtags: Mapped[list["Hashtag"]] = relationship(
        back_populates="project", cascade="all, delete-orphan", passive_deletes=True
    )


class Competitor(Base):
    __tablename__ = "competitors"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    username: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    profile_url: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    is_active: Mapped[bool] = mapped_column(sa.Boolean(), nullable=False, server_default=sa.true())
    created_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)

    project: Mapped[Project] = relationship(back_populates="competitors")


class Hashtag(Base):
    __tablename__ = "hashtags"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    tag_name: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(sa.Boolean(), nullable=False, server_default=sa.true())
    created_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)

    project: Mapped[Project] = relationship(back_populates="hashtags")


class Reel(Base):
    __tablename__ = "reels"
    __table_args__ = (sa.UniqueConstraint("reel_url", name="uq_reels_reel_url"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    reel_url: Mapped[str] = mapped_column(sa.Text(), nullable=False)
    project_id: Mapped[int] = mapped_column(sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    source_type: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    source_identifier: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    profile_url: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    author_username: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    views_count: Mapped[int] = mapped_column(sa.BigInteger(), nullable=False, server_default="0")
    likes_count: Mapped[int] = mapped_column(sa.BigInteger(), nullable=False, server_default="0")
    comments_count: Mapped[int] = mapped_column(sa.BigInteger(), nullable=False, server_default="0")
    published_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True, index=True)
    audio_title: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    audio_artist: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    thumbnail_url: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    video_download_url: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    raw_data: Mapped[dict | None] = mapped_column(sa.JSON(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False, index=True
    )


class ParsingRun(Base):
    """One row per tracked execution: overall run, project pass or single source scrape."""
    __tablename__ = "parsing_runs"
    __table_args__ = (
        sa.CheckConstraint(
            "(ended_at IS NULL) = (status IN ('started', 'running'))",
            name="ck_parsing_runs_ended_at_terminal",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    run_id: Mapped[str] = mapped_column(sa.String(36), unique=True, nullable=False)
    # Nullable, not a foreign key: a child row may be written before the parent
    # row exists when the parent insert failed.
    parent_run_id: Mapped[str | None] = mapped_column(sa.String(36), nullable=True, index=True)
    project_id: Mapped[int | None] = mapped_column(sa.Integer(), nullable=True, index=True)
    source_type: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    source_id: Mapped[int | None] = mapped_column(sa.Integer(), nullable=True)
    status: Mapped[str] = mapped_column(sa.String(32), nullable=False, index=True)
    started_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)
    ended_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    reels_found_count: Mapped[int] = mapped_column(sa.Integer(), nullable=False, server_default="0")
    reels_added_count: Mapped[int] = mapped_column(sa.Integer(), nullable=False, server_default="0")
    errors_count: Mapped[int] = mapped_column(sa.Integer(), nullable=False, server_default="0")
    log_message: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    error_details: Mapped[dict | None] = mapped_column(sa.JSON(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now(), nullable=False
    )

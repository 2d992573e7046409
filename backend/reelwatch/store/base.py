"""
Narrow persistence boundary consumed by the ingestion pipeline.

Two implementations: SqlStore (PostgreSQL via SQLAlchemy async) and
MemoryStore (in-process, for tests and local rehearsal).
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from reelwatch.models import Competitor, Hashtag, ParsingRun, Project, Reel, User


class ReelStore(ABC):
    # ── reels ────────────────────────────────────────────────
    @abstractmethod
    async def exists_by_url(self, reel_url: str) -> bool: ...

    @abstractmethod
    async def insert_one(self, values: dict[str, Any]) -> Reel | None:
        """Insert one reel. Returns None when the URL already exists."""

    @abstractmethod
    async def insert_many_ignoring_conflicts(self, rows: list[dict[str, Any]]) -> list[Reel]:
        """Insert a batch, skipping URL conflicts. Returns only the rows actually inserted."""

    @abstractmethod
    async def list_recent_reels(
        self, limit: int = 15, *, project_id: int | None = None, source_type: str | None = None
    ) -> list[Reel]: ...

    @abstractmethod
    async def delete_stale_reels(
        self, *, min_views: int | None, published_before: datetime | None, dry_run: bool = False
    ) -> int:
        """Delete reels below the view floor, published before the cutoff or with no publish date."""

    # ── run log ──────────────────────────────────────────────
    @abstractmethod
    async def insert_run_log(self, values: dict[str, Any]) -> ParsingRun: ...

    @abstractmethod
    async def update_run_log(self, run_id: str, fields: dict[str, Any]) -> ParsingRun | None:
        """Update a run that has not ended yet. Returns None if no such open run exists."""

    @abstractmethod
    async def get_run(self, run_id: str) -> ParsingRun | None: ...

    @abstractmethod
    async def list_runs(
        self, limit: int = 50, *, source_type: str | None = None, status: str | None = None
    ) -> list[ParsingRun]: ...

    @abstractmethod
    async def list_child_runs(self, parent_run_id: str) -> list[ParsingRun]: ...

    # ── tracked entities ─────────────────────────────────────
    @abstractmethod
    async def list_active_users(self) -> list[User]: ...

    @abstractmethod
    async def list_active_projects(self, user_id: int) -> list[Project]: ...

    @abstractmethod
    async def list_active_competitors(self, project_id: int) -> list[Competitor]: ...

    @abstractmethod
    async def list_active_hashtags(self, project_id: int) -> list[Hashtag]: ...

    async def close(self) -> None:
        return None

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from reelwatch.models import Competitor, Hashtag, ParsingRun, Project, Reel, User
from reelwatch.store.base import ReelStore


class MemoryStore(ReelStore):
    """In-process store with the same contract as SqlStore, including the
    unique reel URL and the refuse-to-update-ended-runs rule."""

    def __init__(self):
        self.users: list[User] = []
        self.projects: list[Project] = []
        self.competitors: list[Competitor] = []
        self.hashtags: list[Hashtag] = []
        self.reels: dict[str, Reel] = {}
        self.runs: dict[str, ParsingRun] = {}
        self._ids: dict[str, int] = {}
        self.closed = False

    def _next_id(self, kind: str) -> int:
        self._ids[kind] = self._ids.get(kind, 0) + 1
        return self._ids[kind]

    # ── seeding ──────────────────────────────────────────────
    def add_user(self, *, is_active: bool = True, **fields: Any) -> User:
        user_id = self._next_id("user")
        fields.setdefault("telegram_id", str(100000 + user_id))
        user = User(id=user_id, is_active=is_active, **fields)
        self.users.append(user)
        return user

    def add_project(self, user_id: int, name: str, *, is_active: bool = True) -> Project:
        project = Project(id=self._next_id("project"), user_id=user_id, name=name, is_active=is_active)
        self.projects.append(project)
        return project

    def add_competitor(self, project_id: int, username: str, *, is_active: bool = True) -> Competitor:
        competitor = Competitor(
            id=self._next_id("competitor"), project_id=project_id, username=username, is_active=is_active
        )
        self.competitors.append(competitor)
        return competitor

    def add_hashtag(self, project_id: int, tag_name: str, *, is_active: bool = True) -> Hashtag:
        hashtag = Hashtag(id=self._next_id("hashtag"), project_id=project_id, tag_name=tag_name, is_active=is_active)
        self.hashtags.append(hashtag)
        return hashtag

    # ── reels ────────────────────────────────────────────────
    async def exists_by_url(self, reel_url: str) -> bool:
        return bool(reel_url) and reel_url in self.reels

    async def insert_one(self, values: dict[str, Any]) -> Reel | None:
        if values["reel_url"] in self.reels:
            return None
        reel = Reel(id=self._next_id("reel"), created_at=datetime.now(timezone.utc), **values)
        self.reels[reel.reel_url] = reel
        return reel

    async def insert_many_ignoring_conflicts(self, rows: list[dict[str, Any]]) -> list[Reel]:
        inserted = []
        for values in rows:
            reel = await self.insert_one(values)
            if reel is not None:
                inserted.append(reel)
        return inserted

    async def list_recent_reels(
        self, limit: int = 15, *, project_id: int | None = None, source_type: str | None = None
    ) -> list[Reel]:
        reels = [
            r for r in self.reels.values()
            if (project_id is None or r.project_id == project_id)
            and (not source_type or r.source_type == source_type)
        ]
        reels.sort(key=lambda r: (r.created_at, r.id), reverse=True)
        return reels[:limit]

    async def delete_stale_reels(
        self, *, min_views: int | None, published_before: datetime | None, dry_run: bool = False
    ) -> int:
        def _stale(reel: Reel) -> bool:
            if reel.published_at is None:
                return True
            if min_views is not None and (reel.views_count or 0) < min_views:
                return True
            return published_before is not None and reel.published_at < published_before

        stale = [url for url, reel in self.reels.items() if _stale(reel)]
        if not dry_run:
            for url in stale:
                del self.reels[url]
        return len(stale)

    # ── run log ──────────────────────────────────────────────
    async def insert_run_log(self, values: dict[str, Any]) -> ParsingRun:
        if values["run_id"] in self.runs:
            raise ValueError(f"duplicate run_id {values['run_id']}")
        values = {"reels_found_count": 0, "reels_added_count": 0, "errors_count": 0, **values}
        now = datetime.now(timezone.utc)
        run = ParsingRun(id=self._next_id("run"), created_at=now, updated_at=now, **values)
        self.runs[run.run_id] = run
        return run

    async def update_run_log(self, run_id: str, fields: dict[str, Any]) -> ParsingRun | None:
        run = self.runs.get(run_id)
        if run is None or run.ended_at is not None:
            return None
        for key, value in fields.items():
            setattr(run, key, value)
        run.updated_at = datetime.now(timezone.utc)
        return run

    async def get_run(self, run_id: str) -> ParsingRun | None:
        return self.runs.get(run_id)

    async def list_runs(
        self, limit: int = 50, *, source_type: str | None = None, status: str | None = None
    ) -> list[ParsingRun]:
        runs = [
            r for r in self.runs.values()
            if (not source_type or r.source_type == source_type) and (not status or r.status == status)
        ]
        runs.sort(key=lambda r: (r.started_at, r.id), reverse=True)
        return runs[:limit]

    async def list_child_runs(self, parent_run_id: str) -> list[ParsingRun]:
        children = [r for r in self.runs.values() if r.parent_run_id == parent_run_id]
        children.sort(key=lambda r: (r.started_at, r.id))
        return children

    # ── tracked entities ─────────────────────────────────────
    async def list_active_users(self) -> list[User]:
        return [u for u in self.users if u.is_active]

    async def list_active_projects(self, user_id: int) -> list[Project]:
        return [p for p in self.projects if p.user_id == user_id and p.is_active]

    async def list_active_competitors(self, project_id: int) -> list[Competitor]:
        return [c for c in self.competitors if c.project_id == project_id and c.is_active]

    async def list_active_hashtags(self, project_id: int) -> list[Hashtag]:
        return [h for h in self.hashtags if h.project_id == project_id and h.is_active]

    async def close(self) -> None:
        self.closed = True

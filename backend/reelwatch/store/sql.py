from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from reelwatch.db import create_engine, create_session_factory
from reelwatch.models import Competitor, Hashtag, ParsingRun, Project, Reel, User
from reelwatch.settings import Settings
from reelwatch.store.base import ReelStore

logger = logging.getLogger(__name__)


class SqlStore(ReelStore):
    """PostgreSQL store. Every operation runs in its own short session, so
    concurrent source workers never share one."""

    def __init__(self, engine: AsyncEngine, session_factory: async_sessionmaker[AsyncSession] | None = None):
        self.engine = engine
        self.session_factory = session_factory or create_session_factory(engine)

    # ── reels ────────────────────────────────────────────────
    async def exists_by_url(self, reel_url: str) -> bool:
        if not reel_url:
            return False
        async with self.session_factory() as session:
            found = await session.scalar(select(Reel.id).where(Reel.reel_url == reel_url).limit(1))
            return found is not None

    async def insert_one(self, values: dict[str, Any]) -> Reel | None:
        async with self.session_factory() as session:
            reel = Reel(**values)
            session.add(reel)
            try:
                await session.commit()
            except IntegrityError:
                # lost the race against a concurrent insert of the same URL
                await session.rollback()
                logger.info("[store] reel %s already stored by a concurrent writer", values.get("reel_url"))
                return None
            return reel

    async def insert_many_ignoring_conflicts(self, rows: list[dict[str, Any]]) -> list[Reel]:
        if not rows:
            return []
        stmt = (
            pg_insert(Reel)
            .values(rows)
            .on_conflict_do_nothing(index_elements=[Reel.reel_url])
            .returning(Reel)
        )
        async with self.session_factory() as session:
            result = await session.scalars(stmt)
            inserted = list(result.all())
            await session.commit()
            return inserted

    async def list_recent_reels(
        self, limit: int = 15, *, project_id: int | None = None, source_type: str | None = None
    ) -> list[Reel]:
        q = select(Reel)
        filters = []
        if project_id is not None:
            filters.append(Reel.project_id == project_id)
        if source_type:
            filters.append(Reel.source_type == source_type)
        if filters:
            q = q.where(and_(*filters))
        q = q.order_by(Reel.created_at.desc(), Reel.id.desc()).limit(limit)
        async with self.session_factory() as session:
            return list((await session.scalars(q)).all())

    async def delete_stale_reels(
        self, *, min_views: int | None, published_before: datetime | None, dry_run: bool = False
    ) -> int:
        conditions = [Reel.published_at.is_(None)]
        if min_views is not None:
            conditions.append(Reel.views_count < min_views)
        if published_before is not None:
            conditions.append(Reel.published_at < published_before)
        where = or_(*conditions)
        async with self.session_factory() as session:
            if dry_run:
                return int(await session.scalar(select(func.count(Reel.id)).where(where)) or 0)
            result = await session.execute(delete(Reel).where(where).returning(Reel.id))
            deleted = len(result.all())
            await session.commit()
            return deleted

    # ── run log ──────────────────────────────────────────────
    async def insert_run_log(self, values: dict[str, Any]) -> ParsingRun:
        async with self.session_factory() as session:
            run = ParsingRun(**values)
            session.add(run)
            await session.commit()
            return run

    async def update_run_log(self, run_id: str, fields: dict[str, Any]) -> ParsingRun | None:
        stmt = (
            update(ParsingRun)
            .where(and_(ParsingRun.run_id == run_id, ParsingRun.ended_at.is_(None)))
            .values(**fields, updated_at=func.now())
            .returning(ParsingRun)
            .execution_options(synchronize_session=False)
        )
        async with self.session_factory() as session:
            run = (await session.scalars(stmt)).one_or_none()
            await session.commit()
            return run

    async def get_run(self, run_id: str) -> ParsingRun | None:
        async with self.session_factory() as session:
            return await session.scalar(select(ParsingRun).where(ParsingRun.run_id == run_id))

    async def list_runs(
        self, limit: int = 50, *, source_type: str | None = None, status: str | None = None
    ) -> list[ParsingRun]:
        q = select(ParsingRun)
        filters = []
        if source_type:
            filters.append(ParsingRun.source_type == source_type)
        if status:
            filters.append(ParsingRun.status == status)
        if filters:
            q = q.where(and_(*filters))
        q = q.order_by(ParsingRun.started_at.desc(), ParsingRun.id.desc()).limit(limit)
        async with self.session_factory() as session:
            return list((await session.scalars(q)).all())

    async def list_child_runs(self, parent_run_id: str) -> list[ParsingRun]:
        q = select(ParsingRun).where(ParsingRun.parent_run_id == parent_run_id).order_by(ParsingRun.started_at, ParsingRun.id)
        async with self.session_factory() as session:
            return list((await session.scalars(q)).all())

    # ── tracked entities ─────────────────────────────────────
    async def list_active_users(self) -> list[User]:
        async with self.session_factory() as session:
            return list((await session.scalars(select(User).where(User.is_active.is_(True)).order_by(User.id))).all())

    async def list_active_projects(self, user_id: int) -> list[Project]:
        q = select(Project).where(and_(Project.user_id == user_id, Project.is_active.is_(True))).order_by(Project.id)
        async with self.session_factory() as session:
            return list((await session.scalars(q)).all())

    async def list_active_competitors(self, project_id: int) -> list[Competitor]:
        q = (
            select(Competitor)
            .where(and_(Competitor.project_id == project_id, Competitor.is_active.is_(True)))
            .order_by(Competitor.id)
        )
        async with self.session_factory() as session:
            return list((await session.scalars(q)).all())

    async def list_active_hashtags(self, project_id: int) -> list[Hashtag]:
        q = (
            select(Hashtag)
            .where(and_(Hashtag.project_id == project_id, Hashtag.is_active.is_(True)))
            .order_by(Hashtag.id)
        )
        async with self.session_factory() as session:
            return list((await session.scalars(q)).all())

    async def close(self) -> None:
        await self.engine.dispose()


@asynccontextmanager
async def open_store(settings: Settings) -> AsyncIterator[SqlStore]:
    """Open a store for one run; the engine is disposed on every exit path."""
    store = SqlStore(create_engine(settings.async_database_url))
    try:
        yield store
    finally:
        await store.close()
        logger.info("[store] database connection closed")

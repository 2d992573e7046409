"""
Scheduler Service

Runs the daily scraping job on a cron schedule (DAILY_RUN_CRON).

Single-leader election via Postgres advisory locks:
- Every daily run (cron tick or API trigger) takes the same lock
- Only the instance that acquires it runs; other instances skip
- Within one process a run is skipped while another is in progress
- Controlled by SCHEDULER_ENABLED env (default: true)
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from reelwatch.db import create_engine
from reelwatch.settings import Settings, get_settings

logger = logging.getLogger("scheduler")

# Advisory lock key (arbitrary int64, unique per job type)
LOCK_DAILY_SCRAPING = 910_001


class SchedulerService:
    """Schedules the daily scraping run.

    Uses Postgres pg_try_advisory_lock around each run so that only
    one instance (the leader) executes the job while others skip.
    """

    _instance: "SchedulerService | None" = None

    def __init__(self):
        self.scheduler = AsyncIOScheduler()
        self._engine: AsyncEngine | None = None
        self._owns_engine = False
        self._settings: Settings | None = None
        self._running = False
        self._daily_in_progress = False

    @classmethod
    def get_instance(cls) -> "SchedulerService":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def configure(self, settings: Settings, engine: AsyncEngine | None = None):
        """Use ``engine`` for the advisory lock when given (e.g. the app store's);
        otherwise one is created on first use and disposed on stop."""
        self._settings = settings
        if engine is not None:
            self._engine = engine
            self._owns_engine = False

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    @property
    def daily_in_progress(self) -> bool:
        return self._daily_in_progress

    def _get_engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = create_engine(self.settings.async_database_url)
            self._owns_engine = True
        return self._engine

    async def _try_advisory_lock(self, session: AsyncSession, lock_key: int) -> bool:
        """Non-blocking session-level advisory lock; released when the connection closes."""
        result = await session.execute(text("SELECT pg_try_advisory_lock(:key)"), {"key": lock_key})
        return bool(result.scalar())

    async def _release_advisory_lock(self, session: AsyncSession, lock_key: int):
        await session.execute(text("SELECT pg_advisory_unlock(:key)"), {"key": lock_key})

    @asynccontextmanager
    async def _leader_lock(self, lock_key: int) -> AsyncIterator[bool]:
        async with AsyncSession(self._get_engine()) as session:
            acquired = await self._try_advisory_lock(session, lock_key)
            try:
                yield acquired
            finally:
                if acquired:
                    await self._release_advisory_lock(session, lock_key)

    def start(self):
        """Start the scheduler (respects SCHEDULER_ENABLED env)."""
        settings = self.settings
        if not settings.scheduler_enabled:
            logger.info("Scheduler DISABLED by SCHEDULER_ENABLED=false, skipping start")
            return
        if self._running:
            return

        self.scheduler.add_job(
            self._run_daily_scraping,
            CronTrigger.from_crontab(settings.daily_run_cron, timezone="UTC"),
            id="daily_scraping",
            name="Daily reel scraping",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        self._running = True
        logger.info("Scheduler started (cron=%r, single-leader via advisory locks)", settings.daily_run_cron)

    async def stop(self):
        if self._running:
            self.scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Scheduler stopped")
        if self._engine is not None and self._owns_engine:
            await self._engine.dispose()
        self._engine = None
        self._owns_engine = False

    def is_running(self) -> bool:
        return self._running

    async def _run_daily_scraping(self) -> dict | None:
        """Scheduled tick."""
        return await self.run_daily_now()

    async def run_daily_now(self) -> dict | None:
        """Run the daily job if no run is in progress here and this instance wins the lock.

        Returns None when the run was skipped.
        """
        if self._daily_in_progress:
            logger.info("[daily_scraping] a daily run is already in progress, skipping")
            return None
        self._daily_in_progress = True
        try:
            async with self._leader_lock(LOCK_DAILY_SCRAPING) as acquired:
                if not acquired:
                    logger.debug("[daily_scraping] Advisory lock not acquired, another instance is leader, skipping")
                    return None
                logger.info("[daily_scraping] LEADER, running daily scraping")
                return await self._execute_daily()
        except Exception as e:
            logger.error("[daily_scraping] could not take the leader lock: %s", e, exc_info=e)
            return {"error": str(e)}
        finally:
            self._daily_in_progress = False

    async def _execute_daily(self) -> dict:
        from reelwatch.services.daily_scraping import run_daily_job

        try:
            summary = await run_daily_job(self.settings)
            return summary.as_dict()
        except Exception as e:
            logger.error("[daily_scraping] run failed: %s", e, exc_info=e)
            return {"error": str(e)}

    def get_jobs(self) -> list[dict]:
        jobs = []
        for job in self.scheduler.get_jobs():
            next_run = job.next_run_time
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run": next_run.isoformat() if next_run else None,
                "trigger": str(job.trigger),
            })
        return jobs


# Global instance
scheduler_service = SchedulerService.get_instance()

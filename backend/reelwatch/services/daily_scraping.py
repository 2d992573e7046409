"""
Daily scraping run.

Walks active users -> active projects -> competitor sources, then hashtag
sources, and for each source: normalize -> run actor -> filter -> persist.

Failures are contained at the smallest scope: a bad item is skipped, a failing
source is recorded as ``failed`` and the next source runs, a project whose
sources cannot be listed is recorded as ``failed`` and the next project runs.
Only a failure outside those guards marks the overall run ``failed``.

With SOURCE_CONCURRENCY > 1 a project's sources run concurrently; each worker
returns its own counts and the project sums them after the join.

Dry run: every read happens, but the actor, persistence and run-log writes are
replaced by log lines.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from reelwatch.errors import ConfigurationError
from reelwatch.integrations.apify_client import ApifyActorClient
from reelwatch.models import Project, RunSourceType, RunStatus, SourceType
from reelwatch.services.notify import notify_run_result
from reelwatch.services.reel_filter import process_items
from reelwatch.services.reel_persist import persist_reels
from reelwatch.services.run_tracker import RunCounts, RunLevel, RunTracker, error_details, status_for
from reelwatch.services.source_normalizer import normalize_source
from reelwatch.settings import Settings
from reelwatch.store.base import ReelStore
from reelwatch.store.sql import open_store

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceJob:
    source_type: SourceType
    source_id: int
    descriptor: str


@dataclass
class RunSummary:
    run_id: str
    status: RunStatus
    counts: RunCounts
    projects: int = 0
    sources: int = 0
    failed_sources: int = 0
    dry_run: bool = False
    error: dict | None = field(default=None, repr=False)

    def as_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "status": self.status.value,
            "reels_found": self.counts.found,
            "reels_added": self.counts.added,
            "errors": self.counts.errors,
            "projects": self.projects,
            "sources": self.sources,
            "failed_sources": self.failed_sources,
            "dry_run": self.dry_run,
        }


class DailyScraper:
    def __init__(
        self,
        settings: Settings,
        store: ReelStore,
        actor: ApifyActorClient | None = None,
    ):
        if actor is None and not settings.dry_run:
            raise ConfigurationError("an actor client is required outside dry-run")
        self.settings = settings
        self.store = store
        self.actor = actor
        self.dry_run = settings.dry_run
        self.tracker = RunTracker(store, dry_run=settings.dry_run)
        self._projects = 0
        self._sources = 0
        self._failed_sources = 0

    async def run(self) -> RunSummary:
        if self.dry_run:
            logger.info("[daily] DRY RUN: no actor calls, no writes")
        overall_id = await self.tracker.start(
            RunLevel(RunSourceType.overall_run, message="Daily scraping started")
        )
        logger.info("[daily] ===== daily scraping started, run %s =====", overall_id)

        totals = RunCounts()
        try:
            users = await self.store.list_active_users()
            logger.info("[daily] %d active users", len(users))
            for user in users:
                try:
                    projects = await self.store.list_active_projects(user.id)
                except Exception as exc:
                    logger.error("[daily] failed to list projects of user %s: %s", user.id, exc, exc_info=exc)
                    totals += RunCounts(errors=1)
                    continue
                logger.info("[daily] user %s (%s): %d active projects", user.id, user.username or user.telegram_id, len(projects))
                for project in projects:
                    totals += await self._process_project(project, overall_id)
        except Exception as exc:
            logger.exception("[daily] daily scraping aborted")
            totals += RunCounts(errors=1)
            err = error_details(exc)
            await self.tracker.finish(
                overall_id,
                RunStatus.failed,
                totals,
                f"Daily scraping aborted: {err['message']}",
                err,
            )
            return self._summary(overall_id, RunStatus.failed, totals, err)

        status = status_for(totals.errors)
        await self.tracker.finish(
            overall_id,
            status,
            totals,
            f"Daily scraping finished. Reels added: {totals.added}, errors: {totals.errors}.",
        )
        logger.info(
            "[daily] ===== daily scraping finished: %s, added=%d, errors=%d =====",
            status.value, totals.added, totals.errors,
        )
        return self._summary(overall_id, status, totals)

    def _summary(self, run_id: str, status: RunStatus, counts: RunCounts, error: dict | None = None) -> RunSummary:
        return RunSummary(
            run_id=run_id,
            status=status,
            counts=counts,
            projects=self._projects,
            sources=self._sources,
            failed_sources=self._failed_sources,
            dry_run=self.dry_run,
            error=error,
        )

    async def _process_project(self, project: Project, parent_run_id: str) -> RunCounts:
        self._projects += 1
        run_id = await self.tracker.start(
            RunLevel(
                RunSourceType.project_processing,
                project_id=project.id,
                parent_run_id=parent_run_id,
                message=f"Processing project {project.name}",
            )
        )
        logger.info("[daily] project %s (%s)", project.id, project.name)

        try:
            competitors = await self.store.list_active_competitors(project.id)
            hashtags = await self.store.list_active_hashtags(project.id)
        except Exception as exc:
            logger.error("[daily] failed to list sources of project %s: %s", project.id, exc, exc_info=exc)
            counts = RunCounts(errors=1)
            err = error_details(exc)
            await self.tracker.finish(
                run_id, RunStatus.failed, counts, f"Project {project.name} aborted: {err['message']}", err
            )
            return counts

        jobs = [SourceJob(SourceType.competitor, c.id, c.username) for c in competitors]
        jobs += [SourceJob(SourceType.hashtag, h.id, h.tag_name) for h in hashtags]
        logger.info(
            "[daily] project %s: %d competitors, %d hashtags", project.id, len(competitors), len(hashtags)
        )

        outcomes = await self._run_sources(project, jobs, run_id)
        counts = sum(outcomes, RunCounts())
        await self.tracker.finish(
            run_id,
            status_for(counts.errors),
            counts,
            f"Project {project.name} done. Reels added: {counts.added}, errors: {counts.errors}.",
        )
        return counts

    async def _run_sources(self, project: Project, jobs: list[SourceJob], parent_run_id: str) -> list[RunCounts]:
        concurrency = max(1, self.settings.source_concurrency)
        if concurrency == 1:
            return [await self._process_source(project, job, parent_run_id) for job in jobs]

        semaphore = asyncio.Semaphore(concurrency)

        async def _worker(job: SourceJob) -> RunCounts:
            async with semaphore:
                return await self._process_source(project, job, parent_run_id)

        return list(await asyncio.gather(*(_worker(job) for job in jobs)))

    async def _process_source(self, project: Project, job: SourceJob, parent_run_id: str) -> RunCounts:
        self._sources += 1
        label = f"{job.source_type.value} {job.descriptor}"
        run_id = await self.tracker.start(
            RunLevel(
                RunSourceType(job.source_type.value),
                project_id=project.id,
                source_id=job.source_id,
                parent_run_id=parent_run_id,
                message=f"Scraping {label}",
            )
        )
        try:
            identifier = normalize_source(job.descriptor)
            if self.dry_run:
                logger.info("[daily] [DRY RUN] skipping actor for %s (identifier=%r)", label, identifier)
                counts = RunCounts()
                await self.tracker.finish(run_id, RunStatus.completed, counts, f"[DRY RUN] {label} skipped")
                return counts

            raw_items = await self.actor.invoke(identifier, self.settings.actor_results_limit)
            records = process_items(
                raw_items,
                min_views=self.settings.view_floor,
                max_age_days=self.settings.age_ceiling_days,
            )
            result = await persist_reels(
                self.store,
                records,
                project.id,
                job.source_type,
                job.source_id,
                strategy=self.settings.persist_strategy,
            )
        except Exception as exc:
            logger.error("[daily] scraping %s failed: %s", label, exc, exc_info=exc)
            self._failed_sources += 1
            counts = RunCounts(errors=1)
            err = error_details(exc)
            await self.tracker.finish(run_id, RunStatus.failed, counts, f"Scraping {label} failed: {err['message']}", err)
            return counts

        counts = RunCounts(found=len(records), added=result.added, errors=result.errors)
        await self.tracker.finish(
            run_id,
            status_for(result.errors),
            counts,
            f"Scraping {label} done. Found {counts.found} reels, saved {counts.added} new.",
        )
        return counts


async def run_daily(settings: Settings, store: ReelStore, actor: ApifyActorClient | None = None) -> RunSummary:
    summary = await DailyScraper(settings, store, actor).run()
    if not summary.dry_run and summary.status != RunStatus.completed:
        await notify_run_result(settings, summary.as_dict())
    return summary


async def run_daily_job(settings: Settings) -> RunSummary:
    """Process entrypoint: validate config, open the store for the run's lifetime, run."""
    settings.validate_for_run()
    actor = None if settings.dry_run else ApifyActorClient.from_settings(settings)
    async with open_store(settings) as store:
        return await run_daily(settings, store, actor)

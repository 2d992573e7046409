"""
reelwatch CLI

Commands:
    run-daily     - Scrape every active source of every active project once
    cleanup       - Delete reels that fall outside MIN_VIEWS / MAX_AGE_DAYS
    recent-reels  - Show the most recently stored reels
    runs          - Show recent run log entries
    schedule      - Run the cron scheduler in the foreground

Usage:
    reelwatch run-daily
    reelwatch run-daily --dry-run
    reelwatch cleanup --dry-run
    reelwatch recent-reels --limit 15
"""
from __future__ import annotations

import asyncio
import logging
import sys

import click

from reelwatch.errors import ConfigurationError
from reelwatch.models import RunStatus
from reelwatch.settings import get_settings

logger = logging.getLogger("reelwatch.cli")


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@click.group()
@click.version_option(version="0.1.0", prog_name="reelwatch")
def cli():
    """Reel ingestion pipeline."""
    _configure_logging(get_settings().log_level)


@cli.command("run-daily")
@click.option("--dry-run", is_flag=True, help="Read everything, write nothing, do not call the actor")
def run_daily_cmd(dry_run):
    """Run the daily scraping once and exit."""
    from reelwatch.services.daily_scraping import run_daily_job

    settings = get_settings()
    if dry_run:
        settings = settings.model_copy(update={"dry_run": True})

    try:
        summary = asyncio.run(run_daily_job(settings))
    except ConfigurationError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)
    except Exception:
        logger.exception("Daily run crashed")
        sys.exit(1)

    click.echo(
        f"Run {summary.run_id}: {summary.status.value}, "
        f"found {summary.counts.found}, added {summary.counts.added}, errors {summary.counts.errors}"
    )
    if summary.status == RunStatus.failed:
        sys.exit(1)


@cli.command("cleanup")
@click.option("--dry-run", is_flag=True, help="Only count what would be deleted")
def cleanup_cmd(dry_run):
    """Delete reels below MIN_VIEWS, older than MAX_AGE_DAYS or without a publish date."""
    from reelwatch.services.cleanup import cleanup_stale_reels
    from reelwatch.store.sql import open_store

    settings = get_settings()

    async def _run() -> int:
        async with open_store(settings) as store:
            return await cleanup_stale_reels(
                store,
                min_views=settings.view_floor,
                max_age_days=settings.age_ceiling_days,
                dry_run=dry_run,
            )

    count = asyncio.run(_run())
    click.echo(f"{'Would delete' if dry_run else 'Deleted'} {count} reels")


@cli.command("recent-reels")
@click.option("--limit", default=15, show_default=True, type=int)
@click.option("--project-id", default=None, type=int)
def recent_reels_cmd(limit, project_id):
    """Show the most recently stored reels."""
    from reelwatch.store.sql import open_store

    async def _run():
        async with open_store(get_settings()) as store:
            return await store.list_recent_reels(limit, project_id=project_id)

    reels = asyncio.run(_run())
    if not reels:
        click.echo("No reels stored.")
        return
    for i, reel in enumerate(reels, 1):
        click.echo(f"\n--- Reel {i} (ID: {reel.id}) ---")
        click.echo(f"URL: {reel.reel_url}")
        click.echo(f"Author: {reel.author_username}")
        click.echo(f"Views: {reel.views_count}")
        click.echo(f"Published: {reel.published_at}")
        click.echo(f"Description: {(reel.description or '')[:150]}")
        click.echo(f"Stored: {reel.created_at}")


@cli.command("runs")
@click.option("--limit", default=20, show_default=True, type=int)
@click.option("--source-type", default=None, help="overall_run, project_processing, competitor or hashtag")
def runs_cmd(limit, source_type):
    """Show recent run log entries."""
    from reelwatch.store.sql import open_store

    async def _run():
        async with open_store(get_settings()) as store:
            return await store.list_runs(limit, source_type=source_type)

    for run in asyncio.run(_run()):
        ended = run.ended_at.isoformat() if run.ended_at else "-"
        click.echo(
            f"{run.run_id} {run.source_type:<18} {run.status:<22} "
            f"found={run.reels_found_count} added={run.reels_added_count} errors={run.errors_count} "
            f"started={run.started_at.isoformat()} ended={ended}"
        )


@cli.command("schedule")
def schedule_cmd():
    """Run the cron scheduler in the foreground until interrupted."""
    from reelwatch.services.scheduler import scheduler_service

    async def _run():
        scheduler_service.configure(get_settings())
        scheduler_service.start()
        if not scheduler_service.is_running():
            return
        try:
            while True:
                await asyncio.sleep(3600)
        finally:
            await scheduler_service.stop()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        click.echo("Interrupted")
        sys.exit(130)


if __name__ == "__main__":
    cli()

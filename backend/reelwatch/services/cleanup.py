"""
Stale reel cleanup.

Removes reels that no longer meet the ingestion thresholds: below MIN_VIEWS,
published more than MAX_AGE_DAYS ago, or without a publish date. This is the
only code path that deletes reels; the daily run never does.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from reelwatch.store.base import ReelStore

logger = logging.getLogger(__name__)


async def cleanup_stale_reels(
    store: ReelStore,
    *,
    min_views: int | None,
    max_age_days: int | None,
    dry_run: bool = False,
    now: datetime | None = None,
) -> int:
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=max_age_days) if max_age_days is not None else None
    logger.info(
        "[cleanup] removing reels published before %s or with fewer than %s views%s",
        cutoff.isoformat() if cutoff else "-", min_views, " (dry run)" if dry_run else "",
    )
    count = await store.delete_stale_reels(min_views=min_views, published_before=cutoff, dry_run=dry_run)
    logger.info("[cleanup] %s %d reels", "would delete" if dry_run else "deleted", count)
    return count

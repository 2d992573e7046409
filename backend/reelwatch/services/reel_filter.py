"""
Filter raw actor items down to fresh, popular-enough reels and map them into
canonical ReelRecord objects.

An item is kept iff it is video-typed, passes the view floor (when set; unknown
views fail), passes the age ceiling (when set; unknown date fails) and has a
permanent URL. Items that fail validation are dropped one by one.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable

from pydantic import ValidationError

from reelwatch.schemas import ReelRecord, VideoItem, parse_actor_item

logger = logging.getLogger(__name__)


def _passes_age(item: VideoItem, cutoff: datetime | None) -> bool:
    if cutoff is None:
        return True
    if item.timestamp is None:
        return False
    return item.timestamp >= cutoff


def _passes_views(item: VideoItem, min_views: int | None) -> bool:
    if min_views is None:
        return True
    views = item.views
    if views is None:
        return False
    return views >= min_views


def to_record(item: VideoItem) -> ReelRecord:
    music = item.music_info
    return ReelRecord(
        reel_url=item.url or "",
        profile_url=item.input_url,
        author_username=item.owner_username,
        description=item.caption,
        views_count=item.views or 0,
        likes_count=item.likes_count or 0,
        comments_count=item.comments_count or 0,
        published_at=item.timestamp,
        audio_title=music.song_name if music else None,
        audio_artist=music.artist_name if music else None,
        thumbnail_url=item.display_url,
        video_download_url=item.video_url,
        raw_data=item.raw,
    )


def process_items(
    raw_items: Iterable[dict[str, Any]],
    min_views: int | None = None,
    max_age_days: int | None = None,
    *,
    now: datetime | None = None,
) -> list[ReelRecord]:
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=max_age_days) if max_age_days is not None else None

    records: list[ReelRecord] = []
    total = not_video = malformed = too_old = too_few_views = no_url = 0
    for raw in raw_items:
        total += 1
        if not isinstance(raw, dict):
            not_video += 1
            continue
        try:
            item = parse_actor_item(raw)
        except ValidationError as exc:
            logger.warning(
                "[filter] dropping malformed item %s: %s", raw.get("url") or raw.get("shortCode"), exc.errors()[:3]
            )
            malformed += 1
            continue
        if not isinstance(item, VideoItem):
            not_video += 1
            continue
        if not _passes_age(item, cutoff):
            too_old += 1
            continue
        if not _passes_views(item, min_views):
            too_few_views += 1
            continue
        if not item.url:
            logger.warning("[filter] skipping reel without URL (shortCode=%s)", item.short_code)
            no_url += 1
            continue
        records.append(to_record(item))

    logger.info(
        "[filter] %d items -> %d reels (not video=%d, malformed=%d, too old=%d, below %s views=%d, no url=%d)",
        total, len(records), not_video, malformed, too_old, min_views, too_few_views, no_url,
    )
    return records

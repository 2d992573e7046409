"""
Dedup & persistence of canonical reels.

Two strategies with the same observable contract (``added`` equals the number
of genuinely new rows, re-running never duplicates):

- check_then_insert: exists_by_url + insert_one per reel; a failing item is
  logged, counted in ``errors`` and skipped.
- bulk: one insert that ignores URL conflicts.

The unique constraint on reels.reel_url backs both against concurrent writers.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from reelwatch.models import SourceType
from reelwatch.schemas import ReelRecord
from reelwatch.store.base import ReelStore

logger = logging.getLogger(__name__)

CHECK_THEN_INSERT = "check_then_insert"
BULK = "bulk"


@dataclass
class PersistResult:
    added: int = 0
    skipped: int = 0
    errors: int = 0


def _row(record: ReelRecord, project_id: int, source_type: SourceType | str, source_id: int | str) -> dict[str, Any]:
    return {
        **record.model_dump(),
        "project_id": project_id,
        "source_type": SourceType(source_type).value,
        "source_identifier": str(source_id),
    }


async def _check_then_insert(store: ReelStore, rows: list[dict[str, Any]]) -> PersistResult:
    result = PersistResult()
    for row in rows:
        url = row["reel_url"]
        try:
            if await store.exists_by_url(url):
                logger.debug("[persist] %s already stored, skipping", url)
                result.skipped += 1
                continue
            inserted = await store.insert_one(row)
        except Exception as exc:
            logger.error("[persist] failed to save reel %s: %s", url, exc, exc_info=exc)
            result.errors += 1
            continue
        if inserted is None:
            result.skipped += 1
        else:
            result.added += 1
    return result


async def _bulk(store: ReelStore, rows: list[dict[str, Any]]) -> PersistResult:
    inserted = await store.insert_many_ignoring_conflicts(rows)
    return PersistResult(added=len(inserted), skipped=len(rows) - len(inserted))


async def persist_reels(
    store: ReelStore,
    records: list[ReelRecord],
    project_id: int,
    source_type: SourceType | str,
    source_id: int | str,
    *,
    strategy: str = CHECK_THEN_INSERT,
) -> PersistResult:
    # duplicates inside one batch count as skipped
    unique: dict[str, dict[str, Any]] = {}
    for record in records:
        unique.setdefault(record.reel_url, _row(record, project_id, source_type, source_id))
    rows = list(unique.values())
    in_batch_dupes = len(records) - len(rows)

    if strategy == CHECK_THEN_INSERT:
        result = await _check_then_insert(store, rows)
    elif strategy == BULK:
        result = await _bulk(store, rows)
    else:
        raise ValueError(f"unknown persist strategy {strategy!r}")

    result.skipped += in_batch_dupes
    logger.info(
        "[persist] project=%s %s:%s -> added=%d skipped=%d errors=%d",
        project_id, SourceType(source_type).value, source_id, result.added, result.skipped, result.errors,
    )
    return result

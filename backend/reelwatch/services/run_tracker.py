"""
Run tracker: the parsing_runs audit trail.

Each unit of work (overall run, project pass, single source) gets its own row:

    started | running  ──►  completed | completed_with_errors | failed

A row is opened once by ``start`` and closed once by ``finish``; ``ended_at`` is
stamped only on that terminal update. Parent counts are summed by the caller
and written in the parent's ``finish``.

Tracker write failures are logged and swallowed: losing an audit row must not
abort the scrape it describes.
"""
from __future__ import annotations

import logging
import traceback
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from reelwatch.errors import ActorInvocationError, RunStateError
from reelwatch.models import RunSourceType, RunStatus
from reelwatch.store.base import ReelStore

logger = logging.getLogger(__name__)

SOURCE_LEVELS = {RunSourceType.competitor, RunSourceType.hashtag}


@dataclass
class RunCounts:
    found: int = 0
    added: int = 0
    errors: int = 0

    def __add__(self, other: "RunCounts") -> "RunCounts":
        return RunCounts(
            found=self.found + other.found,
            added=self.added + other.added,
            errors=self.errors + other.errors,
        )


@dataclass(frozen=True)
class RunLevel:
    source_type: RunSourceType
    project_id: int | None = None
    source_id: int | None = None
    parent_run_id: str | None = None
    message: str | None = None

    @property
    def initial_status(self) -> RunStatus:
        return RunStatus.running if self.source_type in SOURCE_LEVELS else RunStatus.started


def status_for(errors: int) -> RunStatus:
    return RunStatus.completed_with_errors if errors > 0 else RunStatus.completed


def error_details(exc: BaseException) -> dict[str, Any]:
    details: dict[str, Any] = {}
    # actor errors carry status, body and run id
    if isinstance(exc, ActorInvocationError):
        details.update(exc.to_dict())
    details["message"] = str(exc) or type(exc).__name__
    details["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return details


class RunTracker:
    def __init__(self, store: ReelStore, *, dry_run: bool = False):
        self.store = store
        self.dry_run = dry_run
        self._open: set[str] = set()
        self._finished: set[str] = set()

    async def start(self, level: RunLevel) -> str:
        run_id = str(uuid4())
        values: dict[str, Any] = {
            "run_id": run_id,
            "parent_run_id": level.parent_run_id,
            "project_id": level.project_id,
            "source_type": RunSourceType(level.source_type).value,
            "source_id": level.source_id,
            "status": level.initial_status.value,
            "started_at": datetime.now(timezone.utc),
            "log_message": level.message,
        }
        self._open.add(run_id)
        if self.dry_run:
            logger.info("[tracker] [DRY RUN] would open %s run %s (project=%s source=%s)",
                        values["source_type"], run_id, level.project_id, level.source_id)
            return run_id
        try:
            await self.store.insert_run_log(values)
        except Exception as exc:
            logger.error("[tracker] failed to open %s run %s: %s", values["source_type"], run_id, exc, exc_info=exc)
        return run_id

    async def finish(
        self,
        run_id: str,
        status: RunStatus | str,
        counts: RunCounts,
        message: str,
        error: dict[str, Any] | None = None,
    ) -> bool:
        status = RunStatus(status)
        if not status.is_terminal:
            raise RunStateError(f"finish() needs a terminal status, got {status.value}")
        if run_id in self._finished:
            logger.warning("[tracker] run %s already finished, ignoring %s", run_id, status.value)
            return False
        if run_id not in self._open:
            logger.warning("[tracker] run %s was never started here, ignoring %s", run_id, status.value)
            return False
        self._open.discard(run_id)
        self._finished.add(run_id)

        fields: dict[str, Any] = {
            "status": status.value,
            "ended_at": datetime.now(timezone.utc),
            "reels_found_count": counts.found,
            "reels_added_count": counts.added,
            "errors_count": counts.errors,
            "log_message": message,
        }
        if error is not None:
            fields["error_details"] = error

        if self.dry_run:
            logger.info("[tracker] [DRY RUN] would close run %s as %s: %s", run_id, status.value, message)
            return True
        try:
            updated = await self.store.update_run_log(run_id, fields)
        except Exception as exc:
            logger.error("[tracker] failed to close run %s: %s", run_id, exc, exc_info=exc)
            return False
        if updated is None:
            logger.warning("[tracker] no open run log row for %s", run_id)
            return False
        return True

    @property
    def open_runs(self) -> set[str]:
        return set(self._open)

"""
Run log endpoints: browse the parsing_runs tree, trigger a daily run.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status

from reelwatch.deps import get_store
from reelwatch.models import RunSourceType, RunStatus
from reelwatch.schemas import RunDetail, RunRead
from reelwatch.services.scheduler import scheduler_service
from reelwatch.store.base import ReelStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/runs", tags=["runs"])

StoreDep = Depends(get_store)


@router.get("", response_model=list[RunRead])
async def list_runs(
    source_type: str | None = Query(default=None),
    status_filter: str | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=500),
    store: ReelStore = StoreDep,
):
    if source_type and source_type not in {s.value for s in RunSourceType}:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid source_type filter")
    if status_filter and status_filter not in {s.value for s in RunStatus}:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid status filter")
    return await store.list_runs(limit, source_type=source_type, status=status_filter)


@router.get("/{run_id}", response_model=RunDetail)
async def get_run(run_id: str, store: ReelStore = StoreDep):
    """A run with its direct children (projects of an overall run, sources of a project)."""
    run = await store.get_run(run_id)
    if not run:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Run not found")
    children = await store.list_child_runs(run_id)
    detail = RunDetail.model_validate(run)
    detail.children = [RunRead.model_validate(c) for c in children]
    return detail


@router.post("/daily", status_code=status.HTTP_202_ACCEPTED)
async def trigger_daily_run(background_tasks: BackgroundTasks):
    if scheduler_service.daily_in_progress:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Daily run already in progress")
    background_tasks.add_task(scheduler_service.run_daily_now)
    logger.info("Daily run triggered via API")
    return {"ok": True, "status": "scheduled"}

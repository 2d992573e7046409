from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from reelwatch.deps import get_store
from reelwatch.models import SourceType
from reelwatch.schemas import ReelRead
from reelwatch.store.base import ReelStore

router = APIRouter(prefix="/api", tags=["reels"])

StoreDep = Depends(get_store)


@router.get("/reels", response_model=list[ReelRead])
async def list_reels(
    project_id: int | None = Query(default=None),
    source_type: str | None = Query(default=None),
    limit: int = Query(default=15, ge=1, le=200),
    store: ReelStore = StoreDep,
):
    """Most recently stored reels."""
    if source_type and source_type not in {s.value for s in SourceType}:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid source_type filter")
    return await store.list_recent_reels(limit, project_id=project_id, source_type=source_type)

from __future__ import annotations

from fastapi import Request

from reelwatch.store.base import ReelStore


def get_store(request: Request) -> ReelStore:
    return request.app.state.store

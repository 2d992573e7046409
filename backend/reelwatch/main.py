from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from .db import create_engine
from .routes_reels import router as reels_router
from .routes_runs import router as runs_router
from .settings import get_settings
from .store.sql import SqlStore

logger = logging.getLogger("reelwatch")

app = FastAPI(title="reelwatch")
settings = get_settings()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url)
    return PlainTextResponse("Internal Server Error", status_code=500)


@app.get("/ping")
async def ping():
    return {"status": "ok"}


app.include_router(reels_router)
app.include_router(runs_router)


@app.on_event("startup")
async def startup_event():
    app.state.store = SqlStore(create_engine(settings.async_database_url))
    from reelwatch.services.scheduler import scheduler_service
    scheduler_service.configure(settings, engine=app.state.store.engine)
    scheduler_service.start()
    logger.info("Scheduler started on app startup")


@app.on_event("shutdown")
async def shutdown_event():
    from reelwatch.services.scheduler import scheduler_service
    await scheduler_service.stop()
    await app.state.store.close()
    logger.info("Scheduler stopped on app shutdown")

"""Index cache status and control API."""
from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, HTTPException, Request
from pydantic import BaseModel

from deeptrace.index.cache import IndexCache
from deeptrace.live.file_watcher import file_watcher

logger = logging.getLogger("deeptrace.cache")

cache_router = APIRouter(prefix="/api/cache", tags=["cache"])


class RefreshRequest(BaseModel):
    background: bool = False
    trigger: str = "api"


def _get_cache(request: Request) -> IndexCache:
    cache = getattr(request.app.state, "index_cache", None)
    if not cache:
        raise HTTPException(status_code=503, detail="Index cache not initialized")
    return cache


@cache_router.get("/status")
async def get_cache_status(request: Request):
    cache = _get_cache(request)
    broker = getattr(request.app.state, "broker", None)
    payload = cache.status()
    payload["watcher"] = {
        "running": file_watcher.is_running,
        "watched": [str(p) for p in file_watcher.watched],
    }
    payload["subscribers"] = broker.subscriber_count if broker else 0
    return payload


@cache_router.post("/refresh")
async def refresh_cache(request: Request, background_tasks: BackgroundTasks, body: RefreshRequest | None = None):
    """Force a full rebuild of the index."""
    cache = _get_cache(request)
    req = body or RefreshRequest()
    if req.background:
        background_tasks.add_task(cache.refresh, req.trigger)
        return {"status": "scheduled"}
    snapshot = await cache.refresh(req.trigger)
    return {
        "status": "ok",
        "generation": snapshot.generation,
        "sessionCount": len(snapshot.sessions),
        "errors": dict(snapshot.errors),
    }

"""API routers for sessions, search, the change stream and providers."""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from deeptrace import config
from deeptrace.errors import DeepTraceError, InvalidInputError, IOFailureError, NotFoundError, PathMismatchError
from deeptrace.index.cache import IndexCache
from deeptrace.live.notifier import ChangeBroker
from deeptrace.loader import load_messages_payload
from deeptrace.models import (
    ChangeEvent,
    PaginatedResponse,
    ProviderStatus,
    SearchHit,
    SessionRecord,
    SessionTreeNode,
    TurnNode,
)
from deeptrace.search import search_sessions
from deeptrace.tree import build_forest, session_turns
from deeptrace.trash import delete_session, restore_session

logger = logging.getLogger("deeptrace.api")

sessions_router = APIRouter(prefix="/api/sessions", tags=["sessions"])
api_router = APIRouter(prefix="/api", tags=["api"])


class SessionFileRequest(BaseModel):
    filePath: str | None = None


class SearchRequest(BaseModel):
    query: str = ""
    limit: int | None = Field(None, ge=1)
    regex: bool = False


def _get_cache(request: Request) -> IndexCache:
    cache = getattr(request.app.state, "index_cache", None)
    if not cache:
        raise HTTPException(status_code=503, detail="Index cache not initialized")
    return cache


def _get_broker(request: Request) -> ChangeBroker:
    broker = getattr(request.app.state, "broker", None)
    if not broker:
        raise HTTPException(status_code=503, detail="Change broker not initialized")
    return broker


def _http_error(e: DeepTraceError) -> HTTPException:
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (InvalidInputError, PathMismatchError)):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, IOFailureError):
        return HTTPException(status_code=500, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


# ── sessions ──

@sessions_router.get("", response_model=PaginatedResponse[SessionRecord])
async def list_sessions(
    request: Request,
    provider: str | None = Query(None, description="Only sessions from this provider"),
    period: str | None = Query(None, description="1d, 7d, 30d, 90d or all"),
    offset: int = 0,
    limit: int = 50,
    include_deleted: bool = False,
):
    """Return paginated sessions from the index snapshot."""
    cache = _get_cache(request)
    try:
        sessions = cache.list_sessions(provider=provider, period=period, include_deleted=include_deleted)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    offset = max(0, offset)
    limit = max(1, limit)
    return PaginatedResponse(
        items=sessions[offset:offset + limit],
        total=len(sessions),
        offset=offset,
        limit=limit,
    )


@sessions_router.get("/tree", response_model=list[SessionTreeNode])
async def get_session_tree(request: Request):
    """Return the parent/child session forest."""
    cache = _get_cache(request)
    return build_forest(cache.list_sessions())


@sessions_router.get("/{session_id}/messages")
async def get_session_messages(
    request: Request,
    session_id: str,
    source: str | None = None,
    full: bool = False,
):
    """Return a session's normalized messages, redacted unless ``full``."""
    cache = _get_cache(request)
    try:
        return await asyncio.to_thread(load_messages_payload, cache, session_id, source, full)
    except DeepTraceError as e:
        raise _http_error(e)


@sessions_router.get("/{session_id}/turns", response_model=list[TurnNode])
async def get_session_turns(request: Request, session_id: str, source: str | None = None):
    cache = _get_cache(request)
    try:
        return await asyncio.to_thread(session_turns, cache, session_id, source)
    except DeepTraceError as e:
        raise _http_error(e)


@sessions_router.delete("/{session_id}")
async def delete_session_file(request: Request, session_id: str, body: SessionFileRequest):
    """Move a session file into its sibling trash directory."""
    cache = _get_cache(request)
    try:
        trashed = delete_session(session_id, body.filePath, cache.roots().values())
    except DeepTraceError as e:
        raise _http_error(e)
    await _after_mutation(request, cache, [Path(body.filePath or "")])
    return {"ok": True, "trashPath": str(trashed) if trashed else None}


@sessions_router.post("/{session_id}/restore")
async def restore_session_file(request: Request, session_id: str, body: SessionFileRequest):
    """Move a trashed session file back into place."""
    cache = _get_cache(request)
    try:
        restored = restore_session(session_id, body.filePath, cache.roots().values())
    except DeepTraceError as e:
        raise _http_error(e)
    await _after_mutation(request, cache, [restored])
    return {"ok": True, "filePath": str(restored)}


async def _after_mutation(request: Request, cache: IndexCache, paths: list[Path]) -> None:
    try:
        await cache.refresh_paths(paths)
    except Exception as e:
        logger.error(f"Index refresh after mutation failed: {e}")
    broker = getattr(request.app.state, "broker", None)
    if broker:
        broker.publish(ChangeEvent(kind="sessions_index_updated"))


# ── misc ──

@api_router.get("/all-sessions", response_model=list[SessionRecord])
async def list_all_sessions(request: Request):
    return _get_cache(request).list_sessions()


@api_router.get("/session-by-key", response_model=SessionRecord)
async def get_session_by_key(request: Request, key: str = Query(..., min_length=1)):
    record = _get_cache(request).find_by_key(key)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Session with key {key} not found")
    return record


@api_router.post("/search", response_model=list[SearchHit])
async def search(request: Request, body: SearchRequest):
    """Full-text search across session bodies; short queries return nothing."""
    cache = _get_cache(request)
    try:
        return await asyncio.to_thread(search_sessions, cache, body.query, body.limit, body.regex)
    except DeepTraceError as e:
        raise _http_error(e)


@api_router.get("/sse")
async def stream_changes(request: Request):
    """Long-lived server-sent-events stream of ChangeEvents."""
    broker = _get_broker(request)
    subscription = broker.subscribe()
    return StreamingResponse(
        broker.stream(subscription),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"},
    )


@api_router.get("/providers", response_model=list[ProviderStatus])
async def list_providers(request: Request):
    """Resolved root, existence, override and indexed count per provider."""
    cache = _get_cache(request)
    snapshot = cache.snapshot
    counts = snapshot.counts()
    custom = config.overridden_providers()
    return [
        ProviderStatus(
            id=provider,
            sessionsDir=str(root),
            dirExists=root.is_dir(),
            isCustom=provider in custom,
            sessionCount=counts.get(provider, 0),
            error=snapshot.errors.get(provider),
        )
        for provider, root in cache.roots().items()
    ]

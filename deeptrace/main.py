"""llm-deep-trace FastAPI app: main application entry point."""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from deeptrace import config
from deeptrace.index.cache import IndexCache
from deeptrace.live.file_watcher import file_watcher
from deeptrace.live.notifier import ChangeBroker
from deeptrace.observability import initialize as initialize_observability, shutdown as shutdown_observability
from deeptrace.routers.analytics import analytics_router
from deeptrace.routers.api import api_router, sessions_router
from deeptrace.routers.cache import cache_router

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("deeptrace")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("llm-deep-trace starting up")
    initialize_observability(app)

    cache = IndexCache()
    broker = ChangeBroker()
    app.state.index_cache = cache
    app.state.broker = broker

    # Initial index build runs in the background so startup is not blocked.
    app.state.index_task = asyncio.create_task(cache.refresh("startup"))
    cache.start_periodic()
    await file_watcher.start(cache, broker)

    yield

    logger.info("llm-deep-trace shutting down")
    app.state.index_task.cancel()
    try:
        await app.state.index_task
    except asyncio.CancelledError:
        pass
    await cache.stop_periodic()
    await file_watcher.stop()
    shutdown_observability(app)


app = FastAPI(
    title="llm-deep-trace API",
    description="Catalog and live view of coding-assistant conversation logs",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        config.FRONTEND_ORIGIN,
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sessions_router)
app.include_router(api_router)
app.include_router(analytics_router)
app.include_router(cache_router)


@app.get("/api/health")
def health():
    """Health check endpoint."""
    cache = getattr(app.state, "index_cache", None)
    return {
        "status": "ok",
        "generation": cache.snapshot.generation if cache else 0,
        "watcher": "running" if file_watcher.is_running else "stopped",
    }


def run() -> None:
    import uvicorn

    uvicorn.run("deeptrace.main:app", host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    run()

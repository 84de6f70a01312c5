"""Analytics router."""
from __future__ import annotations

import asyncio

from fastapi import APIRouter, HTTPException, Query, Request

from deeptrace import config
from deeptrace.analytics import compute_analytics
from deeptrace.date_utils import PERIOD_DAYS
from deeptrace.models import AnalyticsData

analytics_router = APIRouter(prefix="/api/analytics", tags=["analytics"])


@analytics_router.get("", response_model=AnalyticsData)
async def get_analytics(
    request: Request,
    period: str = Query("30d", description="1d, 7d, 30d, 90d or all"),
    agent: str = Query("all", description="Provider id or all"),
):
    """Aggregate counts from a direct pass over every provider root."""
    if (period or "").strip().lower() not in PERIOD_DAYS:
        raise HTTPException(status_code=400, detail=f"Unknown period: {period}")
    cache = getattr(request.app.state, "index_cache", None)
    roots = cache.roots() if cache else config.provider_roots()
    return await asyncio.to_thread(compute_analytics, roots, period, agent)

# telemetry/routers/stats.py
from __future__ import annotations

import os

from fastapi import APIRouter, Request
from pydantic import BaseModel

from telemetry.services.cloudflare import fetch_site_stats
from telemetry.utils import metrics, rcache

router = APIRouter(tags=["stats"])


class SiteStats(BaseModel):
    uniqueVisitors: int
    requests: int
    edgeResponseBytes: int
    windowHours: int


@router.get("/neverlanding/stats", response_model=SiteStats)
def get_stats(request: Request):
    """Cloudflare zone traffic summed over the last 7 days."""
    key = rcache.make_key("stats")
    cached = rcache.get(key)
    if cached:
        metrics.incr("cache_hits_total")
        request.state.log_context = {"cache_hit": True}
        return cached

    stats = fetch_site_stats()
    rcache.set(key, stats, ttl=int(os.getenv("STATS_CACHE_TTL_SECONDS", "300")))
    request.state.log_context = {"cache_hit": False}
    return stats

# telemetry/routers/github.py
from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import List, Literal, Optional

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel

from telemetry.services import github as gh
from telemetry.utils import metrics, rcache

router = APIRouter(prefix="/github", tags=["github"])

_USER_PATTERN = r"^[A-Za-z0-9](?:[A-Za-z0-9-]{0,38})$"


def _ttl(env: str, default: int) -> int:
    return int(os.getenv(env, str(default)))


# --------- Schemas ---------

class ActivityItem(BaseModel):
    id: str
    type: Literal["commit", "pull_request"]
    title: str
    url: str
    repo: str
    created_at: str

class ActivityResponse(BaseModel):
    user: str
    items: List[ActivityItem]

class ContributionCell(BaseModel):
    date: str
    level: int
    row: int
    col: int

class ContributionGrid(BaseModel):
    user: str
    year: int
    minCol: int
    maxCol: int
    cells: List[ContributionCell]


# --------- Routes ---------

@router.get("/activity", response_model=ActivityResponse)
def get_activity(
    request: Request,
    user: Optional[str] = Query(None, pattern=_USER_PATTERN),
):
    """
    Up to 5 recent commits / pull requests, newest first.
    Falls back from the events feed to repo listings to the Atom feed.
    """
    user = user or gh.default_user()
    key = rcache.make_key("activity", user)
    cached = rcache.get(key)
    if cached:
        metrics.incr("cache_hits_total")
        request.state.log_context = {"user": user, "cache_hit": True}
        return cached

    items, tier = gh.collect_activity(user)
    resp = {"user": user, "items": items}
    # placeholder-only answers are not worth holding for the full TTL
    if tier != "placeholder":
        rcache.set(key, resp, ttl=_ttl("ACTIVITY_CACHE_TTL_SECONDS", 300))
    request.state.log_context = {"user": user, "cache_hit": False, "tier": tier, "items": len(items)}
    return resp


@router.get("/contributions", response_model=ContributionGrid)
def get_contributions(
    request: Request,
    user: Optional[str] = Query(None, pattern=_USER_PATTERN),
    year: Optional[int] = Query(None, ge=2008, le=2100),
):
    user = user or gh.default_user()
    year = year or datetime.now(timezone.utc).year
    key = rcache.make_key("contributions", user, year)
    cached = rcache.get(key)
    if cached:
        metrics.incr("cache_hits_total")
        request.state.log_context = {"user": user, "year": year, "cache_hit": True}
        return cached

    grid = gh.fetch_contribution_grid(user, year)
    rcache.set(key, grid, ttl=_ttl("CONTRIB_CACHE_TTL_SECONDS", 3600))
    request.state.log_context = {"user": user, "year": year, "cache_hit": False, "cells": len(grid["cells"])}
    return grid

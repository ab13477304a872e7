# =============================================
# File: tests/test_cache.py
# Purpose: Route-level response caching and the single-slot usage cache
# =============================================
import sys, os
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

from fastapi.testclient import TestClient
from telemetry.utils import rcache
from telemetry.utils.caching import SlotCache

def _mount_client(monkeypatch):
    monkeypatch.setenv("CONTRIB_CACHE_TTL_SECONDS", "300")
    rcache.clear()

    calls = {"n": 0}
    def _stub_fetch_contribution_grid(user, year):
        calls["n"] += 1
        return {"user": user, "year": year, "minCol": 0, "maxCol": 0,
                "cells": [{"date": f"{year}-01-01", "level": 1, "row": 0, "col": 0}]}

    from telemetry.services import github as gh
    monkeypatch.setattr(gh, "fetch_contribution_grid", _stub_fetch_contribution_grid)

    from telemetry.main import app
    return TestClient(app), calls

def test_router_cache_hits(monkeypatch):
    client, calls = _mount_client(monkeypatch)
    params = {"user": "octo", "year": 2024}

    r1 = client.get("/api/github/contributions", params=params)
    assert r1.status_code == 200
    r2 = client.get("/api/github/contributions", params=params)
    assert r2.json() == r1.json()
    assert calls["n"] == 1

    # different year is a different key
    client.get("/api/github/contributions", params={"user": "octo", "year": 2023})
    assert calls["n"] == 2

def test_ttl_expiry_and_lru_bound(monkeypatch):
    rcache.clear()
    clock = {"t": 1000.0}
    monkeypatch.setattr(rcache, "_now", lambda: clock["t"])
    monkeypatch.setenv("CACHE_MAX_ENTRIES", "2")

    rcache.set("a", {"v": 1}, ttl=10)
    rcache.set("b", {"v": 2}, ttl=10)
    assert rcache.get("a") == {"v": 1}   # touch a
    rcache.set("c", {"v": 3}, ttl=10)     # evicts b
    assert rcache.get("b") is None
    assert rcache.get("a") == {"v": 1}

    clock["t"] += 11
    assert rcache.get("a") is None
    assert rcache.get("c") is None

def test_make_key_normalizes():
    assert rcache.make_key("activity", " Octo ") == "activity:octo"
    assert rcache.make_key("contributions", "octo", 2024) == "contributions:octo:2024"

def test_slot_cache_fresh_and_stale():
    c = SlotCache(ttl_s=60)
    assert c.fresh(0) is None and c.stale() is None
    c.set({"x": 1}, now=100)
    assert c.fresh(159) == {"x": 1}
    assert c.fresh(160) is None
    assert c.stale() == {"x": 1}
    c.clear()
    assert c.stale() is None

# =============================================
# File: tests/test_stats.py
# =============================================
import sys, os
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

from datetime import datetime, timezone

from fastapi.testclient import TestClient

from telemetry.services import cloudflare
from telemetry.utils import rcache


class _Resp:
    def __init__(self, status=200, payload=None):
        self.status_code = status
        self.ok = 200 <= status < 300
        self._payload = payload

    def json(self):
        return self._payload


def _group(count, visits, bytes_):
    return {"data": {"viewer": {"zones": [{"httpRequestsAdaptiveGroups": [
        {"count": count, "sum": {"visits": visits, "edgeResponseBytes": bytes_}},
    ]}]}}}


def _mount_client(monkeypatch, payload):
    rcache.clear()
    monkeypatch.setenv("CLOUDFLARE_API_TOKEN", "cf-token")
    monkeypatch.setenv("CLOUDFLARE_ZONE_ID", "zone-1")
    bodies = []
    def _fake_post(url, json=None, headers=None, timeout=None, **kw):
        bodies.append(json)
        return _Resp(200, payload)
    monkeypatch.setattr(cloudflare.requests, "post", _fake_post)

    from telemetry.main import app
    return TestClient(app), bodies


def test_daily_windows_are_contiguous():
    end = datetime(2025, 3, 10, 12, tzinfo=timezone.utc)
    windows = cloudflare.daily_windows(end)
    assert len(windows) == 7
    assert windows[0][1] == end
    for (s, e), (s_next, e_next) in zip(windows, windows[1:]):
        assert e_next == s


def test_sums_seven_windows(monkeypatch):
    client, bodies = _mount_client(monkeypatch, _group(10, 3, 1000))
    r = client.get("/api/neverlanding/stats")
    assert r.status_code == 200
    assert r.json() == {"uniqueVisitors": 21, "requests": 70, "edgeResponseBytes": 7000, "windowHours": 168}
    assert len(bodies) == 7
    assert bodies[0]["variables"]["zoneTag"] == "zone-1"


def test_missing_group_counts_as_zero(monkeypatch):
    client, _ = _mount_client(monkeypatch, {"data": {"viewer": {"zones": []}}})
    assert client.get("/api/neverlanding/stats").json()["requests"] == 0


def test_graphql_errors_are_502_with_details(monkeypatch):
    errors = [{"message": "zone not authorized"}]
    client, _ = _mount_client(monkeypatch, {"data": None, "errors": errors})
    r = client.get("/api/neverlanding/stats")
    assert r.status_code == 502
    assert r.json() == {"error": "Cloudflare GraphQL error.", "details": errors}


def test_missing_credentials_is_500(monkeypatch):
    client, bodies = _mount_client(monkeypatch, _group(1, 1, 1))
    monkeypatch.delenv("CLOUDFLARE_ZONE_ID")
    r = client.get("/api/neverlanding/stats")
    assert r.status_code == 500
    assert bodies == []

# =============================================
# File: telemetry/services/cloudflare.py
# Purpose: Zone traffic (visits / requests / bytes) for the last 7 days via Cloudflare GraphQL
# =============================================
from __future__ import annotations
import os
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Tuple

import requests

from ..utils import metrics
from ..utils.errors import CloudflareError, ConfigError, UpstreamError
from ..utils.timing import upstream_timeout

GRAPHQL_URL = "https://api.cloudflare.com/client/v4/graphql"
WINDOW_DAYS = 7

QUERY = """
query ($zoneTag: String!, $start: Time!, $end: Time!) {
  viewer {
    zones(filter: { zoneTag: $zoneTag }) {
      httpRequestsAdaptiveGroups(
        limit: 1
        filter: { datetime_geq: $start, datetime_lt: $end, requestSource: "eyeball" }
      ) {
        count
        sum {
          visits
          edgeResponseBytes
        }
      }
    }
  }
}
"""


def _iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z")


def daily_windows(end: datetime, days: int = WINDOW_DAYS) -> List[Tuple[datetime, datetime]]:
    """Consecutive 24h windows walking back from `end` (newest first)."""
    day = timedelta(days=1)
    return [(end - (i + 1) * day, end - i * day) for i in range(days)]


def _first_group(payload: Dict[str, Any]) -> Dict[str, Any]:
    try:
        group = payload["data"]["viewer"]["zones"][0]["httpRequestsAdaptiveGroups"][0]
    except (KeyError, IndexError, TypeError):
        return {}
    return group if isinstance(group, dict) else {}


def _fetch_window(token: str, zone: str, start: datetime, end: datetime) -> Dict[str, int]:
    body = {"query": QUERY, "variables": {"zoneTag": zone, "start": _iso(start), "end": _iso(end)}}
    headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
    try:
        resp = requests.post(GRAPHQL_URL, json=body, headers=headers, timeout=upstream_timeout())
    except requests.RequestException as e:
        metrics.record_upstream("cloudflare", ok=False)
        raise UpstreamError("Cloudflare request failed.", details=str(e)) from e
    if not resp.ok:
        metrics.record_upstream("cloudflare", ok=False)
        raise UpstreamError("Cloudflare request failed.", details=f"HTTP {resp.status_code}")

    try:
        payload = resp.json()
    except ValueError as e:
        metrics.record_upstream("cloudflare", ok=False)
        raise UpstreamError("Cloudflare request failed.", details="invalid JSON") from e

    if isinstance(payload, dict) and payload.get("errors"):
        metrics.record_upstream("cloudflare", ok=False)
        raise CloudflareError("Cloudflare GraphQL error.", details=payload["errors"])
    metrics.record_upstream("cloudflare")

    group = _first_group(payload if isinstance(payload, dict) else {})
    sums = group.get("sum") or {}
    return {
        "visits": sums.get("visits") or 0,
        "requests": group.get("count") or 0,
        "edgeResponseBytes": sums.get("edgeResponseBytes") or 0,
    }


def fetch_site_stats() -> Dict[str, Any]:
    token = os.getenv("CLOUDFLARE_API_TOKEN")
    zone = os.getenv("CLOUDFLARE_ZONE_ID")
    if not token or not zone:
        raise ConfigError("Missing Cloudflare credentials.")

    windows = daily_windows(datetime.now(timezone.utc))
    with ThreadPoolExecutor(max_workers=len(windows)) as pool:
        results = list(pool.map(lambda w: _fetch_window(token, zone, w[0], w[1]), windows))

    return {
        "uniqueVisitors": sum(r["visits"] for r in results),
        "requests": sum(r["requests"] for r in results),
        "edgeResponseBytes": sum(r["edgeResponseBytes"] for r in results),
        "windowHours": WINDOW_DAYS * 24,
    }

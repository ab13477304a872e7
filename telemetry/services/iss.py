# =============================================
# File: telemetry/services/iss.py
# Purpose: Live ISS position + 30-minute trail persisted in the KV store
# =============================================
from __future__ import annotations
import json
import math
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import requests
from loguru import logger

from ..utils import kvstore, metrics
from ..utils.errors import KVError, KVQuotaError, UpstreamError
from ..utils.timing import upstream_timeout

ISS_URL = "http://api.open-notify.org/iss-now.json"
TRAIL_KEY = "iss-trail-points"
TRAIL_WINDOW_MS = 30 * 60 * 1000
WRITE_COOLDOWN_MS = 2 * 60 * 1000

# Process-wide write gate: no KV writes until this epoch-ms passes
_lock = threading.Lock()
_kv_blocked_until_ms = 0


def _now_ms() -> int:
    return int(time.time() * 1000)


# ---------------------------------------------------------------------
# Write gate
# ---------------------------------------------------------------------

def next_utc_midnight_ms(now_ms: int) -> int:
    now = datetime.fromtimestamp(now_ms / 1000, tz=timezone.utc)
    midnight = (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    return int(midnight.timestamp() * 1000)


def kv_blocked(now_ms: int) -> bool:
    with _lock:
        return now_ms < _kv_blocked_until_ms


def blocked_until_ms() -> int:
    with _lock:
        return _kv_blocked_until_ms


def block_kv_until(ts_ms: int) -> None:
    global _kv_blocked_until_ms
    with _lock:
        _kv_blocked_until_ms = max(_kv_blocked_until_ms, ts_ms)


def reset_state() -> None:
    """For tests: clear the write gate."""
    global _kv_blocked_until_ms
    with _lock:
        _kv_blocked_until_ms = 0


# ---------------------------------------------------------------------
# Trail helpers (pure)
# ---------------------------------------------------------------------

def _coerce_point(raw: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(raw, dict):
        return None
    try:
        lat = float(raw["lat"])
        lon = float(raw["lon"])
        ts_f = float(raw["ts"])
        if not all(math.isfinite(v) for v in (lat, lon, ts_f)):
            return None
        ts = int(ts_f)
    except (KeyError, TypeError, ValueError, OverflowError):
        return None
    if any(isinstance(raw[k], bool) for k in ("lat", "lon", "ts")):
        return None
    return {"lat": lat, "lon": lon, "ts": ts}


def normalize_trail(raw: Any) -> List[Dict[str, Any]]:
    """
    Accept a JSON string or a list; drop malformed entries, dedupe by
    (ts, lat, lon) and sort ascending by ts. Anything unusable -> [].
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError:
            return []
    if not isinstance(raw, list):
        return []

    seen = set()
    points: List[Dict[str, Any]] = []
    for item in raw:
        p = _coerce_point(item)
        if p is None:
            continue
        key = (p["ts"], p["lat"], p["lon"])
        if key in seen:
            continue
        seen.add(key)
        points.append(p)
    points.sort(key=lambda p: p["ts"])
    return points


def prune_trail(points: List[Dict[str, Any]], now_ms: int) -> List[Dict[str, Any]]:
    return [p for p in points if now_ms - p["ts"] <= TRAIL_WINDOW_MS]


def should_append(points: List[Dict[str, Any]], lat: float, lon: float, now_ms: int) -> bool:
    if not points:
        return True
    last = points[-1]
    if last["lat"] == lat and last["lon"] == lon:
        return False
    return now_ms - last["ts"] >= WRITE_COOLDOWN_MS


def merge_position(
    points: Any, lat: float, lon: float, now_ms: int
) -> Tuple[List[Dict[str, Any]], bool]:
    """Return (pruned trail, appended?) after offering the live position."""
    trail = normalize_trail(points)
    appended = should_append(trail, lat, lon, now_ms)
    if appended:
        trail.append({"lat": lat, "lon": lon, "ts": now_ms})
    return prune_trail(trail, now_ms), appended


# ---------------------------------------------------------------------
# I/O
# ---------------------------------------------------------------------

def fetch_position() -> Dict[str, Any]:
    """Current ISS position from Open-Notify; raises UpstreamError on any failure."""
    try:
        resp = requests.get(ISS_URL, timeout=upstream_timeout(), headers={"Cache-Control": "no-cache"})
    except requests.RequestException as e:
        metrics.record_upstream("open-notify", ok=False)
        raise UpstreamError("Failed to fetch ISS position.", details=str(e)) from e

    if not resp.ok:
        metrics.record_upstream("open-notify", ok=False)
        raise UpstreamError("Failed to fetch ISS position.", status=resp.status_code)

    try:
        payload = resp.json()
    except ValueError as e:
        metrics.record_upstream("open-notify", ok=False)
        raise UpstreamError("ISS API returned an invalid payload.") from e

    if not isinstance(payload, dict) or payload.get("message") != "success":
        metrics.record_upstream("open-notify", ok=False)
        raise UpstreamError("ISS API returned an error.")

    pos = payload.get("iss_position") or {}
    try:
        lat = float(pos["latitude"])
        lon = float(pos["longitude"])
    except (KeyError, TypeError, ValueError) as e:
        metrics.record_upstream("open-notify", ok=False)
        raise UpstreamError("ISS API returned an invalid position.") from e
    if not (math.isfinite(lat) and math.isfinite(lon)):
        metrics.record_upstream("open-notify", ok=False)
        raise UpstreamError("ISS API returned an invalid position.")

    metrics.record_upstream("open-notify")
    return {
        "message": payload["message"],
        "timestamp": payload.get("timestamp"),
        "iss_position": {"latitude": str(pos["latitude"]), "longitude": str(pos["longitude"])},
        "lat": lat,
        "lon": lon,
    }


def load_trail(store: Optional[kvstore.KVStore]) -> List[Dict[str, Any]]:
    if store is None:
        return []
    try:
        raw = store.get(TRAIL_KEY)
    except KVError as e:
        logger.warning(f"[iss] trail read failed: {e}")
        return []
    if raw is None:
        return []
    return normalize_trail(raw)


def save_trail(store: kvstore.KVStore, trail: List[Dict[str, Any]], now_ms: int) -> bool:
    """Write the trail; on quota exhaustion block writes until next UTC midnight."""
    try:
        store.set(TRAIL_KEY, json.dumps(trail))
    except KVQuotaError as e:
        until = next_utc_midnight_ms(now_ms)
        block_kv_until(until)
        metrics.incr("kv_lockouts_total")
        logger.warning(f"[iss] KV quota exhausted; writes blocked until {until}: {e}")
        return False
    except KVError as e:
        logger.warning(f"[iss] trail write failed: {e}")
        return False
    metrics.incr("kv_writes_total")
    return True


def get_iss_snapshot() -> Dict[str, Any]:
    """
    Live position plus the merged trail. Persistence is best effort and never
    delays or fails the live-position response.
    """
    position = fetch_position()
    store = kvstore.from_env()
    now_ms = _now_ms()

    trail: List[Dict[str, Any]] = []
    if store is not None:
        existing = load_trail(store)
        trail, appended = merge_position(existing, position["lat"], position["lon"], now_ms)
        if appended and not kv_blocked(now_ms):
            save_trail(store, trail, now_ms)
        elif appended:
            metrics.incr("kv_writes_skipped_total")

    return {
        "message": position["message"],
        "timestamp": position["timestamp"],
        "iss_position": position["iss_position"],
        "trail": trail,
    }

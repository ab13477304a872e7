# =============================================
# File: telemetry/services/usage.py
# Purpose: Anthropic / OpenAI usage-report aggregation with TTL caches and cost estimate
# =============================================
from __future__ import annotations
import os
import time
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

import requests
from loguru import logger

from ..utils import metrics
from ..utils.caching import SlotCache
from ..utils.errors import ConfigError, RateLimitedError, UpstreamError
from ..utils.timing import upstream_timeout

ANTHROPIC_USAGE_URL = "https://api.anthropic.com/v1/organizations/usage_report/messages"
ANTHROPIC_VERSION = "2023-06-01"
OPENAI_USAGE_URL = "https://api.openai.com/v1/organization/usage/completions"

ANTHROPIC_TTL_S = 60 * 60
OPENAI_TTL_S = 5 * 60

# USD per million tokens (Sonnet list prices); display estimate only
ANTHROPIC_PRICES: Dict[str, float] = {
    "input": 3.0,
    "output": 15.0,
    "cache_read": 0.30,
    "cache_write": 3.75,
}

_anthropic_cache = SlotCache(ANTHROPIC_TTL_S)
_openai_cache = SlotCache(OPENAI_TTL_S)


def _now() -> float:
    return time.time()


def reset_caches() -> None:
    """For tests: drop both cached totals."""
    _anthropic_cache.clear()
    _openai_cache.clear()


def anthropic_cost(input_tokens: int, output_tokens: int, cache_read: int, cache_write: int) -> float:
    total = (
        input_tokens / 1_000_000 * ANTHROPIC_PRICES["input"]
        + output_tokens / 1_000_000 * ANTHROPIC_PRICES["output"]
        + cache_read / 1_000_000 * ANTHROPIC_PRICES["cache_read"]
        + cache_write / 1_000_000 * ANTHROPIC_PRICES["cache_write"]
    )
    return round(total, 6)


def _parse_start(value: str, env_name: str) -> datetime:
    try:
        dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError as e:
        raise ConfigError(f"Invalid {env_name}: {value!r}") from e
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _rfc3339(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _error_info(resp: requests.Response) -> tuple[str, str]:
    """(error type, message) from an Anthropic/OpenAI error body."""
    try:
        data = resp.json()
    except ValueError:
        return "", ""
    err = data.get("error") if isinstance(data, dict) else None
    if not isinstance(err, dict):
        return "", ""
    return str(err.get("type") or ""), str(err.get("message") or "")


def _pages(source: str, url: str, headers: Dict[str, str], params: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
    """
    Yield each usage-report page, following `next_page` while `has_more`.
    Raises RateLimitedError on 429 / rate_limit_error, UpstreamError otherwise.
    """
    page: Optional[str] = None
    while True:
        q = dict(params)
        if page:
            q["page"] = page
        try:
            resp = requests.get(url, headers=headers, params=q, timeout=upstream_timeout())
        except requests.RequestException as e:
            metrics.record_upstream(source, ok=False)
            raise UpstreamError(f"Failed to fetch {source} usage: {e}") from e

        if not resp.ok:
            metrics.record_upstream(source, ok=False)
            etype, message = _error_info(resp)
            if resp.status_code == 429 or etype == "rate_limit_error":
                raise RateLimitedError(f"{source} usage rate limited", status=resp.status_code)
            raise UpstreamError(
                f"Failed to fetch {source} usage: {message or 'Unknown error'}",
                status=resp.status_code,
            )

        metrics.record_upstream(source)
        try:
            payload = resp.json()
        except ValueError as e:
            raise UpstreamError(f"Failed to fetch {source} usage: invalid JSON") from e
        if not isinstance(payload, dict):
            raise UpstreamError(f"Failed to fetch {source} usage: unexpected payload")
        yield payload

        page = payload.get("next_page") if payload.get("has_more") else None
        if not page:
            return


def _results(payload: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
    for bucket in payload.get("data") or []:
        if not isinstance(bucket, dict):
            continue
        for result in bucket.get("results") or []:
            if isinstance(result, dict):
                yield result


def _n(value: Any) -> int:
    return value if isinstance(value, int) and not isinstance(value, bool) else 0


def _serve_stale_or_raise(cache: SlotCache, source: str, err: RateLimitedError) -> Dict[str, Any]:
    stale = cache.stale()
    if stale is None:
        raise UpstreamError(f"Failed to fetch {source} usage: rate limited", status=err.status)
    metrics.incr("stale_served_total")
    logger.warning(f"[usage] {source} rate limited; serving cached totals from {stale.get('updated_at')}")
    return stale


# ---------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------

def get_anthropic_usage() -> Dict[str, Any]:
    now = _now()
    cached = _anthropic_cache.fresh(now)
    if cached is not None:
        metrics.incr("cache_hits_total")
        return cached

    admin_key = os.getenv("ANTHROPIC_ADMIN_KEY")
    start_date = os.getenv("ANTHROPIC_USAGE_START_DATE")
    if not admin_key or not start_date:
        raise ConfigError("Missing Anthropic usage configuration.")
    start = _parse_start(start_date, "ANTHROPIC_USAGE_START_DATE")

    headers = {"x-api-key": admin_key, "anthropic-version": ANTHROPIC_VERSION}
    params = {
        "starting_at": _rfc3339(start),
        "ending_at": _rfc3339(datetime.fromtimestamp(now, tz=timezone.utc)),
        "bucket_width": "1h",
        "limit": "168",
    }

    input_tokens = output_tokens = cache_read = cache_write = 0
    try:
        for payload in _pages("Anthropic", ANTHROPIC_USAGE_URL, headers, params):
            for r in _results(payload):
                input_tokens += _n(r.get("uncached_input_tokens"))
                output_tokens += _n(r.get("output_tokens"))
                cache_read += _n(r.get("cache_read_input_tokens"))
                creation = r.get("cache_creation") or {}
                cache_write += _n(creation.get("ephemeral_5m_input_tokens")) + _n(
                    creation.get("ephemeral_1h_input_tokens")
                )
    except RateLimitedError as e:
        return _serve_stale_or_raise(_anthropic_cache, "Anthropic", e)

    totals = {
        "input_tokens": input_tokens,
        "output_tokens": output_tokens,
        "cached_read_tokens": cache_read,
        "cached_creation_tokens": cache_write,
        "total_tokens": input_tokens + output_tokens + cache_read + cache_write,
        "total_cost_usd": anthropic_cost(input_tokens, output_tokens, cache_read, cache_write),
        "updated_at": int(now),
    }
    _anthropic_cache.set(totals, now)
    return totals


# ---------------------------------------------------------------------
# OpenAI
# ---------------------------------------------------------------------

def get_openai_usage() -> Dict[str, Any]:
    now = _now()
    cached = _openai_cache.fresh(now)
    if cached is not None:
        metrics.incr("cache_hits_total")
        return cached

    admin_key = os.getenv("OPENAI_ADMIN_KEY")
    start_date = os.getenv("OPENAI_USAGE_START_DATE")
    if not admin_key or not start_date:
        raise ConfigError("Missing OpenAI usage configuration.")
    start_time = int(_parse_start(start_date, "OPENAI_USAGE_START_DATE").timestamp())
    end_time = int(now)

    headers = {"Authorization": f"Bearer {admin_key}", "Content-Type": "application/json"}
    params = {
        "start_time": str(start_time),
        "end_time": str(end_time),
        "bucket_width": "1d",
        "limit": "31",
    }

    requests_count = input_tokens = output_tokens = cached_tokens = 0
    try:
        for payload in _pages("OpenAI", OPENAI_USAGE_URL, headers, params):
            for r in _results(payload):
                requests_count += _n(r.get("num_model_requests"))
                input_tokens += _n(r.get("input_tokens"))
                output_tokens += _n(r.get("output_tokens"))
                cached_tokens += _n(r.get("input_cached_tokens"))
    except RateLimitedError as e:
        return _serve_stale_or_raise(_openai_cache, "OpenAI", e)

    totals = {
        "start_time": start_time,
        "end_time": end_time,
        "requests": requests_count,
        "tokens": input_tokens + output_tokens,
        "input_tokens": input_tokens,
        "output_tokens": output_tokens,
        "cached_tokens": cached_tokens,
        "updated_at": int(now),
    }
    _openai_cache.set(totals, now)
    return totals

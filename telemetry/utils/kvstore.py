# =============================================
# File: telemetry/utils/kvstore.py
# Purpose: Minimal REST client for a Redis-compatible KV store (Upstash / Vercel KV)
# =============================================
from __future__ import annotations
import os
from typing import Optional
from urllib.parse import quote

import requests
from loguru import logger

from .errors import KVError, KVQuotaError
from .timing import upstream_timeout

# Phrases the store uses when the plan's request budget is exhausted
_QUOTA_CUES = ("limit exceeded", "max requests", "max daily request", "quota")


def _is_quota_error(status: int, message: str) -> bool:
    msg = (message or "").lower()
    return status == 429 or any(c in msg for c in _QUOTA_CUES)


def _error_message(resp: requests.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}"
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return f"HTTP {resp.status_code}"


class KVStore:
    """
    GET {url}/get/{key}  -> {"result": <string|null>}
    POST {url}/set/{key} (raw body) -> {"result": "OK"}
    Errors come back as {"error": "..."}; quota exhaustion raises KVQuotaError.
    """
    def __init__(self, url: str, token: str, timeout: float | None = None):
        self.url = url.rstrip("/")
        self.token = token
        self.timeout = timeout if timeout is not None else upstream_timeout()

    @property
    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.token}"}

    def _raise_for(self, resp: requests.Response, op: str) -> None:
        message = _error_message(resp)
        if _is_quota_error(resp.status_code, message):
            raise KVQuotaError(f"KV {op} quota exceeded: {message}")
        raise KVError(f"KV {op} failed: {message}")

    def get(self, key: str) -> Optional[str]:
        """Return the stored string, or None when the key does not exist."""
        try:
            resp = requests.get(
                f"{self.url}/get/{quote(key, safe='')}",
                headers=self._headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise KVError(f"KV get failed: {e}") from e
        if resp.status_code == 404:
            return None
        if not resp.ok:
            self._raise_for(resp, "get")
        try:
            data = resp.json()
        except ValueError as e:
            raise KVError("KV get returned invalid JSON") from e
        if isinstance(data, dict) and data.get("error"):
            if _is_quota_error(resp.status_code, str(data["error"])):
                raise KVQuotaError(f"KV get quota exceeded: {data['error']}")
            raise KVError(f"KV get failed: {data['error']}")
        result = data.get("result") if isinstance(data, dict) else None
        return result if isinstance(result, str) else None

    def set(self, key: str, value: str) -> None:
        try:
            resp = requests.post(
                f"{self.url}/set/{quote(key, safe='')}",
                headers=self._headers,
                data=value.encode("utf-8"),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise KVError(f"KV set failed: {e}") from e
        if not resp.ok:
            self._raise_for(resp, "set")
        try:
            data = resp.json()
        except ValueError:
            return
        if isinstance(data, dict) and data.get("error"):
            if _is_quota_error(resp.status_code, str(data["error"])):
                raise KVQuotaError(f"KV set quota exceeded: {data['error']}")
            raise KVError(f"KV set failed: {data['error']}")


def from_env() -> Optional[KVStore]:
    """Build a store from KV_REST_API_URL / KV_REST_API_TOKEN; None when either is absent."""
    url = os.getenv("KV_REST_API_URL")
    token = os.getenv("KV_REST_API_TOKEN")
    if not url or not token:
        logger.debug("[kv] credentials absent; trail persistence disabled")
        return None
    return KVStore(url, token)

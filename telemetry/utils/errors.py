# =============================================
# File: telemetry/utils/errors.py
# Purpose: Error types shared by services and mapped to HTTP codes in main.py
# =============================================
from __future__ import annotations
from typing import Any


class ConfigError(RuntimeError):
    """Required configuration (secret/env value) is missing or invalid. Maps to 500."""


class UpstreamError(RuntimeError):
    """An upstream API failed and no fallback applies. Maps to 502."""

    def __init__(self, message: str, details: Any = None, status: int | None = None):
        super().__init__(message)
        self.details = details
        self.status = status


class RateLimitedError(UpstreamError):
    """Upstream rejected the call because of rate limiting."""


class CloudflareError(UpstreamError):
    """Cloudflare GraphQL returned an `errors` array."""


class KVError(RuntimeError):
    """KV store read/write failed."""


class KVQuotaError(KVError):
    """KV store reports its request quota is exhausted."""

# =============================================
# File: telemetry/utils/rcache.py
# Purpose: In-process TTL cache for proxied route responses
# =============================================
from __future__ import annotations
import os
import threading
import time
from collections import OrderedDict
from typing import Any, Dict, Tuple

_lock = threading.Lock()

# Store: key -> (expires_at, value)
_store: "OrderedDict[str, Tuple[float, Dict[str, Any]]]" = OrderedDict()

def _now() -> float:
    return time.time()

def _max_entries() -> int:
    return int(os.getenv("CACHE_MAX_ENTRIES", "1000"))

def make_key(namespace: str, *parts: Any) -> str:
    norm = [" ".join(str(p).strip().lower().split()) for p in parts]
    return ":".join([namespace, *norm])

def get(key: str) -> Dict[str, Any] | None:
    now = _now()
    with _lock:
        # prune expired
        dead = [k for k, (exp, _) in _store.items() if exp < now]
        for k in dead:
            _store.pop(k, None)

        item = _store.get(key)
        if not item:
            return None
        # LRU touch: move to end
        _store.move_to_end(key, last=True)
        return item[1]

def set(key: str, value: Dict[str, Any], ttl: int) -> None:
    exp = _now() + ttl
    with _lock:
        _store[key] = (exp, value)
        _store.move_to_end(key, last=True)
        # enforce size
        while len(_store) > _max_entries():
            _store.popitem(last=False)

def clear() -> None:
    with _lock:
        _store.clear()

import os
import time
from contextlib import contextmanager

@contextmanager
def timer():
    t0 = time.perf_counter()
    yield lambda: int((time.perf_counter() - t0) * 1000)

def upstream_timeout() -> float:
    """Default timeout (seconds) for upstreams without an explicit cap."""
    return float(os.getenv("UPSTREAM_TIMEOUT_SECONDS", "15"))

def github_timeout() -> float:
    return float(os.getenv("GITHUB_TIMEOUT_SECONDS", "4"))

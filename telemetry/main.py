import os
import time
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.templating import Jinja2Templates

from telemetry.routers import equation, github, iss, metrics, stats, usage
from telemetry.utils import logging as _log_setup  # noqa: F401  (loguru file sink)
from telemetry.utils import slog
from telemetry.utils.errors import ConfigError, UpstreamError
from telemetry.utils.metrics import record_request, record_endpoint

BASE_DIR = Path(__file__).resolve().parent
API_PREFIX = "/api"

app = FastAPI(
    title="Portfolio Telemetry",
    description="Live telemetry proxies (GitHub, Anthropic, OpenAI, Cloudflare, ISS) for the portfolio dashboard.",
)

_origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "").split(",") if o.strip()]
if _origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

templates = Jinja2Templates(directory=str(BASE_DIR / "templates"))


# --------- Error mapping ---------

@app.exception_handler(ConfigError)
async def _config_error(request: Request, exc: ConfigError):
    request.state.log_context = {**(getattr(request.state, "log_context", None) or {}), "error": str(exc)}
    return JSONResponse({"error": str(exc)}, status_code=500)

@app.exception_handler(UpstreamError)
async def _upstream_error(request: Request, exc: UpstreamError):
    body = {"error": str(exc)}
    if exc.details is not None:
        body["details"] = exc.details
    request.state.log_context = {**(getattr(request.state, "log_context", None) or {}), "error": str(exc)}
    return JSONResponse(body, status_code=502)


# --------- Request logging + metrics ---------

@app.middleware("http")
async def _logging_middleware(request, call_next):
    start = time.perf_counter()
    req_id = slog.new_request_id()
    client_ip = request.client.host if request.client else None
    try:
        response = await call_next(request)
    except Exception as e:
        latency_ms = int((time.perf_counter() - start) * 1000)
        ctx = getattr(request.state, "log_context", {})
        slog.log_event(
            "request.error",
            request_id=req_id,
            path=str(request.url.path),
            method=request.method,
            latency_ms=latency_ms,
            client_ip=client_ip,
            error=str(e),
            **(ctx or {}),
        )
        raise
    latency_ms = int((time.perf_counter() - start) * 1000)
    ctx = getattr(request.state, "log_context", {}) or {}
    slog.finalize_request_log(
        request_id=req_id,
        method=request.method,
        path=str(request.url.path),
        status=response.status_code,
        latency_ms=latency_ms,
        client_ip=client_ip,
        ctx=ctx,
    )
    record_request(latency_ms=latency_ms)
    route = request.scope.get("route")
    # route template keeps the per-endpoint table bounded
    endpoint = getattr(route, "path", None) or "<unmatched>"
    record_endpoint(method=request.method, path=endpoint, latency_ms=latency_ms)
    response.headers["X-Request-ID"] = req_id
    return response


# --------- Pages ---------

@app.get("/", response_class=HTMLResponse, include_in_schema=False)
def home(request: Request):
    return templates.TemplateResponse(
        request,
        "index.html",
        {
            "app_name": "Portfolio Telemetry",
            "api_prefix": API_PREFIX,
            "iss_interval_ms": 5000,
            "activity_interval_ms": 60000,
            "contributions_interval_ms": 60 * 60 * 1000,
            "usage_interval_ms": 5 * 60 * 1000,
        },
    )

@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(iss.router, prefix=API_PREFIX)
app.include_router(github.router, prefix=API_PREFIX)
app.include_router(usage.router, prefix=API_PREFIX)
app.include_router(stats.router, prefix=API_PREFIX)
app.include_router(equation.router, prefix=API_PREFIX)
app.include_router(metrics.router)

# =============================================
# File: telemetry/routers/metrics.py
# Purpose: Expose internal metrics as JSON + a small HTML dashboard for them
# =============================================
from __future__ import annotations
from pathlib import Path
from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates
from telemetry.utils.metrics import snapshot

router = APIRouter(tags=["metrics"])

BASE_DIR = Path(__file__).resolve().parents[1]
templates = Jinja2Templates(directory=str(BASE_DIR / "templates"))

@router.get("/metrics")
def get_metrics():
    """Return in-process metrics (JSON)."""
    return snapshot()

@router.get("/metrics/dashboard", response_class=HTMLResponse, include_in_schema=False)
def metrics_dashboard(request: Request):
    """
    Render the HTML dashboard. The page fetches JSON from GET /metrics
    and auto-refreshes at a fixed interval on the client side.
    """
    return templates.TemplateResponse(
        request,
        "metrics.html",
        {
            "metrics_endpoint": "/metrics",
            "refresh_interval_ms": 5000,
            "app_name": "Portfolio Telemetry",
        },
    )

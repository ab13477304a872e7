# telemetry/routers/iss.py
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from telemetry.services import iss as iss_service
from telemetry.utils.errors import UpstreamError

router = APIRouter(tags=["iss"])

NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, max-age=0",
    "Pragma": "no-cache",
}


# --------- Schemas ---------

class IssPosition(BaseModel):
    latitude: str
    longitude: str

class TrailPoint(BaseModel):
    lat: float
    lon: float
    ts: int

class IssResponse(BaseModel):
    """
    Live position as reported by Open-Notify plus the last 30 minutes of
    sampled positions (oldest first). `trail` is empty when no KV store is configured.
    """
    message: str
    timestamp: Optional[int] = None
    iss_position: IssPosition
    trail: List[TrailPoint]


# --------- Route ---------

@router.get("/iss", response_model=IssResponse)
def get_iss(request: Request, response: Response):
    try:
        snapshot = iss_service.get_iss_snapshot()
    except UpstreamError as e:
        request.state.log_context = {"upstream_error": str(e)}
        body = {"error": str(e)}
        if e.details is not None:
            body["details"] = e.details
        return JSONResponse(body, status_code=502, headers=NO_CACHE_HEADERS)

    request.state.log_context = {
        "trail_len": len(snapshot["trail"]),
        "kv_blocked_until": iss_service.blocked_until_ms(),
    }
    response.headers.update(NO_CACHE_HEADERS)
    return snapshot

# telemetry/routers/equation.py
from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from telemetry.utils.fourier import wav_to_equation
from telemetry.utils.timing import timer

router = APIRouter(tags=["equation"])

MAX_UPLOAD_BYTES = 50 * 1024 * 1024


class EquationResponse(BaseModel):
    text: str
    durationSec: float
    samplesAnalyzed: int


@router.post("/equation", response_model=EquationResponse)
async def post_equation(request: Request):
    """
    Raw WAV bytes in the request body -> truncated Fourier series of the clip
    (64 harmonics over 8192 block-averaged samples).
    """
    body = await request.body()
    if not body:
        return JSONResponse({"error": "Empty request body; send a .wav file."}, status_code=400)
    if len(body) > MAX_UPLOAD_BYTES:
        return JSONResponse({"error": "Audio file too large."}, status_code=413)
    try:
        with timer() as elapsed:
            result = await run_in_threadpool(wav_to_equation, body)
    except ValueError as e:
        request.state.log_context = {"bytes": len(body), "error": str(e)}
        return JSONResponse({"error": str(e)}, status_code=400)
    request.state.log_context = {
        "bytes": len(body),
        "samples": result["samplesAnalyzed"],
        "compute_ms": elapsed(),
    }
    return result

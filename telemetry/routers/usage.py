# telemetry/routers/usage.py
from __future__ import annotations

from fastapi import APIRouter, Request
from pydantic import BaseModel

from telemetry.services import usage

router = APIRouter(tags=["usage"])


# --------- Schemas ---------

class AnthropicUsage(BaseModel):
    """Cumulative token counters since ANTHROPIC_USAGE_START_DATE plus an estimated USD cost."""
    input_tokens: int
    output_tokens: int
    cached_read_tokens: int
    cached_creation_tokens: int
    total_tokens: int
    total_cost_usd: float
    updated_at: int

class OpenAIUsage(BaseModel):
    requests: int
    tokens: int
    input_tokens: int
    output_tokens: int
    cached_tokens: int
    updated_at: int
    start_time: int
    end_time: int


# --------- Routes ---------

@router.get("/anthropic/usage", response_model=AnthropicUsage)
def get_anthropic_usage(request: Request):
    totals = usage.get_anthropic_usage()
    request.state.log_context = {"updated_at": totals["updated_at"]}
    return totals


@router.get("/openai/usage", response_model=OpenAIUsage)
def get_openai_usage(request: Request):
    totals = usage.get_openai_usage()
    request.state.log_context = {"updated_at": totals["updated_at"]}
    return totals

from __future__ import annotations

from fastapi import APIRouter, Request
from pydantic import BaseModel

from wafscope.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from wafscope.apps.api.response import SuccessEnvelope, success_response
from wafscope.services.telemetry import counters_snapshot, external_call_summary

router = APIRouter(tags=["health"], responses=DEFAULT_ERROR_RESPONSES)


class HealthResponse(BaseModel):
    status: str


class ExternalCallStats(BaseModel):
    calls: int
    failures: int
    p95_ms: float | None = None


class MetricsResponse(BaseModel):
    counters: dict[str, int]
    external_calls: dict[str, ExternalCallStats]


@router.get("/health", response_model=SuccessEnvelope[HealthResponse] | HealthResponse)
async def health(request: Request) -> dict:
    payload = HealthResponse(status="ok")
    return success_response(request=request, data=payload)


@router.get("/ops/metrics", response_model=SuccessEnvelope[MetricsResponse] | MetricsResponse)
async def metrics(request: Request, window_s: int = 300) -> dict:
    # In-process counters and ARM/notes call latency for the trailing window.
    payload = MetricsResponse(
        counters=counters_snapshot(),
        external_calls={
            name: ExternalCallStats(**stats) for name, stats in external_call_summary(window_s).items()
        },
    )
    return success_response(request=request, data=payload)

from __future__ import annotations

from fastapi import APIRouter, Depends

from sandbox_agent.observability.metrics import get_runtime_metrics
from sandbox_agent.security.auth_token import require_runtime_token
from sandbox_agent.security.patterns import PATTERN_VERSION

RUNTIME_VERSION = "0.1.0"

router = APIRouter(tags=["ops"])


@router.get("/health")
async def health():
    return {
        "ok": True,
        "version": RUNTIME_VERSION,
        "pattern_version": PATTERN_VERSION,
        "runtime_status": "ok",
    }


@router.get("/v1/metrics", dependencies=[Depends(require_runtime_token)])
async def metrics():
    return get_runtime_metrics().snapshot()

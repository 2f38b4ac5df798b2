"""Health check endpoints for SatuPintu API v1.

Liveness and readiness probes for container deployments.  The readiness
check exercises the cache and confirms the ticket pipeline was wired at
startup.
"""

from __future__ import annotations

import time

import structlog
from fastapi import APIRouter, Request
from pydantic import BaseModel

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

router = APIRouter(prefix="/health", tags=["health"])

_REQUIRED_SERVICES: tuple[str, ...] = ("tickets", "rating", "voice_agent", "sms_commands")


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    """Basic health check response."""

    status: str
    version: str
    uptime_seconds: float


class ReadinessResponse(BaseModel):
    """Readiness check response with individual service statuses."""

    status: str
    checks: dict[str, str]


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Liveness probe.  Does *not* check downstream dependencies."""
    start_time: float = getattr(request.app.state, "start_time", time.time())

    return HealthResponse(
        status="healthy",
        version=request.app.version,
        uptime_seconds=round(time.time() - start_time, 2),
    )


@router.get("/ready", response_model=ReadinessResponse)
async def readiness_check(request: Request) -> ReadinessResponse:
    """Readiness probe.

    Reports ``degraded`` while the cache round-trip fails or any core
    service is missing, so the load balancer only routes traffic to
    fully-initialised instances.  The LLM is reported but optional:
    without it intake runs on classifier fallbacks.
    """
    checks: dict[str, str] = {}
    all_ok = True

    cache = getattr(request.app.state, "cache", None)
    if cache is not None:
        try:
            await cache.set("_health_check", "ok", ttl_seconds=10)
            if await cache.get("_health_check") == "ok":
                checks["cache"] = "ok"
            else:
                checks["cache"] = "degraded"
                all_ok = False
        except Exception as exc:
            checks["cache"] = f"error: {exc!s}"
            all_ok = False
    else:
        checks["cache"] = "not_configured"

    for name in _REQUIRED_SERVICES:
        if getattr(request.app.state, name, None) is not None:
            checks[name] = "ok"
        else:
            checks[name] = "not_initialised"
            all_ok = False

    checks["llm"] = "ok" if getattr(request.app.state, "llm", None) is not None else "not_configured"
    checks["store"] = getattr(request.app.state, "store_backend", "unknown")

    status = "ready" if all_ok else "degraded"
    logger.info("health.readiness_check", status=status, checks=checks)
    return ReadinessResponse(status=status, checks=checks)

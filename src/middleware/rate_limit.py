"""Per-IP sliding-window rate limiting.

Two buckets: ``otp`` for OTP requests and rating submissions (paths
ending in ``/request-otp`` or ``/rate``), whose codes could otherwise be
brute-forced, and ``default`` for everything else.  State lives in
process memory, so each instance of a multi-instance deployment limits
independently.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import Callable
from typing import Final

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

DEFAULT_BUCKET: Final[str] = "default"
OTP_BUCKET: Final[str] = "otp"

_UNLIMITED_PATHS: Final[frozenset[str]] = frozenset({
    "/",
    "/api/v1/health",
    "/api/v1/health/ready",
    "/metrics",
    "/docs",
    "/redoc",
    "/openapi.json",
})
_OTP_SUFFIXES: Final[tuple[str, ...]] = ("/request-otp", "/rate")


def bucket_for(path: str) -> str:
    return OTP_BUCKET if path.rstrip("/").endswith(_OTP_SUFFIXES) else DEFAULT_BUCKET


def client_ip(request: Request, trusted_proxy_count: int) -> str:
    """Best guess at the caller's address.

    With *trusted_proxy_count* proxies appending to ``X-Forwarded-For``
    the caller is the entry just before them; spoofed entries further
    left are ignored.  A header too short to hold the caller's entry is
    not read; ``X-Real-IP`` (set by the nearest proxy) is used instead.
    Without trusted proxies both headers come from the client and only
    the socket address counts.
    """
    if trusted_proxy_count > 0:
        forwarded = [
            ip.strip() for ip in request.headers.get("X-Forwarded-For", "").split(",") if ip.strip()
        ]
        if len(forwarded) > trusted_proxy_count:
            return forwarded[-(trusted_proxy_count + 1)]
        real_ip = request.headers.get("X-Real-IP", "").strip()
        if real_ip:
            return real_ip
    return request.client.host if request.client else "unknown"


class SlidingWindowLimiter:
    """Timestamps of recent hits per ``(client, bucket)``.

    :meth:`hit` records a request and returns ``(allowed, remaining,
    retry_after)``; rejected requests are not recorded.
    """

    __slots__ = ("_clock", "_hits", "_limits", "_lock", "_since_sweep", "_window")

    _SWEEP_EVERY: Final[int] = 1000

    def __init__(
        self,
        limits: dict[str, int],
        *,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._limits = limits
        self._window = window_seconds
        self._clock = clock
        self._hits: dict[tuple[str, str], deque[float]] = {}
        self._lock = asyncio.Lock()
        self._since_sweep = 0

    def limit(self, bucket: str) -> int:
        return self._limits[bucket]

    async def hit(self, client: str, bucket: str) -> tuple[bool, int, int]:
        limit = self._limits[bucket]
        now = self._clock()
        async with self._lock:
            self._since_sweep += 1
            if self._since_sweep >= self._SWEEP_EVERY:
                self._sweep(now)

            hits = self._hits.setdefault((client, bucket), deque())
            while hits and hits[0] <= now - self._window:
                hits.popleft()

            if len(hits) >= limit:
                retry_after = max(1, int(hits[0] + self._window - now) + 1)
                return False, 0, retry_after
            hits.append(now)
            return True, limit - len(hits), 0

    def _sweep(self, now: float) -> None:
        self._since_sweep = 0
        idle = [key for key, hits in self._hits.items() if not hits or hits[-1] <= now - self._window]
        for key in idle:
            del self._hits[key]
        if idle:
            logger.debug("rate_limit.swept", removed=len(idle))


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Reject over-limit callers with ``429 RATE_LIMITED``.

    Parameters
    ----------
    app:
        The ASGI application.
    max_requests_per_minute:
        ``default`` bucket limit per IP.
    otp_requests_per_minute:
        ``otp`` bucket limit per IP.
    trusted_proxy_count:
        Reverse proxies in front of the app (see :func:`client_ip`).
    clock:
        Monotonic time source.
    """

    def __init__(
        self,
        app: object,
        max_requests_per_minute: int = 120,
        otp_requests_per_minute: int = 5,
        trusted_proxy_count: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(app)  # type: ignore[arg-type]
        self._limiter = SlidingWindowLimiter(
            {DEFAULT_BUCKET: max_requests_per_minute, OTP_BUCKET: otp_requests_per_minute},
            clock=clock,
        )
        self._trusted_proxy_count = trusted_proxy_count

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if path in _UNLIMITED_PATHS:
            return await call_next(request)

        bucket = bucket_for(path)
        limit = self._limiter.limit(bucket)
        ip = client_ip(request, self._trusted_proxy_count)
        allowed, remaining, retry_after = await self._limiter.hit(ip, bucket)

        if not allowed:
            logger.warning("rate_limit.exceeded", client_ip=ip, bucket=bucket, limit=limit)
            return JSONResponse(
                status_code=429,
                content={
                    "success": False,
                    "error": "Terlalu banyak permintaan. Silakan coba lagi nanti.",
                    "code": "RATE_LIMITED",
                    "waitSeconds": retry_after,
                },
                headers={
                    "Retry-After": str(retry_after),
                    "X-RateLimit-Limit": str(limit),
                    "X-RateLimit-Remaining": "0",
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        return response

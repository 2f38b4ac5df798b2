"""Dashboard aggregates: headline stats and chart analytics.

Both are computed over the caller's visible tickets (one agency, or all
for the all-agencies scope) and cached per scope.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Query, Request

from config.settings import settings
from src.api.dependencies import cached_envelope, get_tickets
from src.middleware.auth import require_staff
from src.models.staff import StaffPrincipal
from src.models.ticket import utcnow
from src.services.analytics import compute_analytics, compute_stats
from src.services.cache import cache_key
from src.services.store import TicketQuery

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

router = APIRouter(tags=["dashboard"])


@router.get("/stats")
async def stats(
    request: Request,
    principal: StaffPrincipal = Depends(require_staff),
) -> dict[str, Any]:
    """Status and urgency counts, overall and for today."""

    async def load() -> dict[str, Any]:
        tickets, _ = await get_tickets(request).list_tickets(principal, TicketQuery())
        return compute_stats(tickets, tz=settings.timezone)

    key = cache_key("stats", {"agency": principal.agency_filter or "all"})
    return await cached_envelope(request, key, settings.stats_cache_ttl, load)


@router.get("/analytics")
async def analytics(
    request: Request,
    principal: StaffPrincipal = Depends(require_staff),
    days: int = Query(default=30, ge=1, le=365),
) -> dict[str, Any]:
    """Daily series and breakdowns for tickets created in the last *days*."""

    async def load() -> dict[str, Any]:
        since = utcnow() - timedelta(days=days)
        tickets, _ = await get_tickets(request).list_tickets(
            principal, TicketQuery(created_from=since)
        )
        logger.debug("dashboard.analytics_computed", days=days, tickets=len(tickets))
        return compute_analytics(tickets, tz=settings.timezone)

    key = cache_key("analytics", {"agency": principal.agency_filter or "all", "days": days})
    return await cached_envelope(request, key, settings.analytics_cache_ttl, load)

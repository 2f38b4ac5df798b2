"""Shared helpers for the v1 routers.

Services are created once in the application lifespan and stored on
``app.state``; the getters below fetch them per request and fail with
``SERVICE_UNAVAILABLE`` if startup did not produce them.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from fastapi import Request

from src.services.errors import ServiceUnavailable

if TYPE_CHECKING:
    from src.models.ticket import Ticket, TimelineEntry
    from src.services.cache import CacheManager
    from src.services.rating import RatingService
    from src.services.sms_commands import SmsCommandService
    from src.services.tickets import TicketService
    from src.services.voice_agent import VoiceAgentService

# Never leaves the service layer.
_PRIVATE_TICKET_FIELDS: frozenset[str] = frozenset({"rating_otp", "rating_otp_expires_at"})


def _require(request: Request, name: str) -> Any:
    service = getattr(request.app.state, name, None)
    if service is None:
        raise ServiceUnavailable()
    return service


def get_tickets(request: Request) -> TicketService:
    return _require(request, "tickets")


def get_rating(request: Request) -> RatingService:
    return _require(request, "rating")


def get_voice_agent(request: Request) -> VoiceAgentService:
    return _require(request, "voice_agent")


def get_sms_commands(request: Request) -> SmsCommandService:
    return _require(request, "sms_commands")


def get_cache(request: Request) -> CacheManager | None:
    return getattr(request.app.state, "cache", None)


async def cached_envelope(
    request: Request,
    key: str | None,
    ttl_seconds: int,
    load: Callable[[], Awaitable[Any]],
) -> dict[str, Any]:
    """Envelope for *load()*'s payload, served from the cache when possible.

    A hit adds ``cached: true``.  A *key* of *None* bypasses the cache.
    """
    cache = get_cache(request)
    if cache is None or key is None:
        return envelope(await load())
    data, hit = await cache.read_through(key, ttl_seconds, load)
    return envelope(data, cached=True) if hit else envelope(data)


def envelope(data: Any, **extra: Any) -> dict[str, Any]:
    """``{"success": true, "data": ...}`` plus any top-level extras."""
    return {"success": True, "data": data, **extra}


def ticket_json(ticket: Ticket) -> dict[str, Any]:
    return ticket.model_dump(mode="json", exclude=set(_PRIVATE_TICKET_FIELDS))


def timeline_json(entries: list[TimelineEntry]) -> list[dict[str, Any]]:
    return [entry.model_dump(mode="json") for entry in entries]

"""Ticket REST endpoints.

Staff endpoints are scoped to the caller's agency unless the token
carries the all-agencies scope.  Ticket creation is for trusted internal
callers (``X-API-Key``).  OTP request and rating submission are public:
possession of the reporter's phone is the credential.

Reads go through the response cache; every mutation invalidates it in
the service layer.
"""

from __future__ import annotations

from math import ceil
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import ORJSONResponse
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from config.settings import settings
from src.api.dependencies import (
    cached_envelope,
    envelope,
    get_cache,
    get_rating,
    get_tickets,
    ticket_json,
    timeline_json,
)
from src.middleware.auth import require_internal_api_key, require_staff
from src.models.complaint import NewTicket
from src.models.enums import IntakeChannel, TicketCategory, TicketStatus, TicketUrgency
from src.models.staff import StaffPrincipal
from src.models.ticket import parse_time_bound
from src.services.cache import cache_key, detail_key
from src.services.errors import Forbidden, ValidationFailed
from src.services.routing import coerce_category, coerce_urgency
from src.services.store import TicketQuery

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

router = APIRouter(prefix="/tickets", tags=["tickets"])

MAX_PAGE_SIZE = 50


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class CreateTicketRequest(BaseModel):
    """Body for internal ticket creation; keys are camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    category: str
    description: str = ""
    reporter_name: str = ""
    reporter_phone: str = ""
    address: str = Field(default="", validation_alias=AliasChoices("address", "location"))
    subcategory: str | None = None
    urgency: str | None = None
    channel: IntakeChannel = IntakeChannel.API
    call_sid: str | None = None
    transcription: str | None = None


class UpdateTicketRequest(BaseModel):
    status: TicketStatus | None = None
    note: str | None = Field(default=None, max_length=1000)
    photo_before: str | None = Field(
        default=None,
        validation_alias=AliasChoices("photoBefore", "resolution_photo_before"),
    )
    photo_after: str | None = Field(
        default=None,
        validation_alias=AliasChoices("photoAfter", "resolution_photo_after"),
    )
    notify_reporter: bool = Field(
        default=False,
        validation_alias=AliasChoices("notifyReporter", "sendSms", "notify_reporter"),
    )


class RateTicketRequest(BaseModel):
    # Validated by the rating service (INVALID_RATING).
    rating: Any = None
    feedback: str | None = None
    otp: str | None = None


# ---------------------------------------------------------------------------
# Staff endpoints
# ---------------------------------------------------------------------------


@router.get("")
async def list_tickets(
    request: Request,
    principal: StaffPrincipal = Depends(require_staff),
    status: TicketStatus | None = None,
    urgency: TicketUrgency | None = None,
    category: TicketCategory | None = None,
    search: str | None = Query(default=None, max_length=100),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=MAX_PAGE_SIZE),
) -> dict[str, Any]:
    """Paginated ticket list, newest first.  Searches are not cached."""
    key = None
    if not search:
        key = cache_key(
            "tickets",
            {
                "agency": principal.agency_filter or "all",
                "status": status,
                "urgency": urgency,
                "category": category,
                "page": page,
                "limit": limit,
            },
        )

    async def load() -> dict[str, Any]:
        tickets, total = await get_tickets(request).list_tickets(
            principal,
            TicketQuery(
                status=status,
                urgency=urgency,
                category=category,
                search=search,
                page=page,
                limit=limit,
            ),
        )
        return {
            "tickets": [ticket_json(t) for t in tickets],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "totalPages": ceil(total / limit),
            },
        }

    return await cached_envelope(request, key, settings.tickets_list_cache_ttl, load)


@router.get("/map")
async def map_tickets(
    request: Request,
    principal: StaffPrincipal = Depends(require_staff),
    status: TicketStatus | None = None,
    urgency: TicketUrgency | None = None,
    category: TicketCategory | None = None,
    created_from_raw: str | None = Query(default=None, alias="from"),
    created_to_raw: str | None = Query(default=None, alias="to"),
) -> dict[str, Any]:
    """Tickets that carry coordinates, projected for the map.

    ``from`` and ``to`` take an ISO date or datetime; a bare date spans
    that whole day in the service timezone.
    """
    try:
        created_from = (
            parse_time_bound(created_from_raw, tz=settings.timezone) if created_from_raw else None
        )
        created_to = (
            parse_time_bound(created_to_raw, tz=settings.timezone, end_of_day=True)
            if created_to_raw
            else None
        )
    except ValueError:
        raise ValidationFailed("Format tanggal tidak valid", code="INVALID_DATE") from None
    key = cache_key(
        "map",
        {
            "agency": principal.agency_filter or "all",
            "status": status,
            "urgency": urgency,
            "category": category,
            "from": created_from.isoformat() if created_from else None,
            "to": created_to.isoformat() if created_to else None,
        },
    )

    async def load() -> dict[str, Any]:
        points = await get_tickets(request).map_points(
            principal,
            TicketQuery(
                status=status,
                urgency=urgency,
                category=category,
                created_from=created_from,
                created_to=created_to,
            ),
        )
        return {"tickets": [p.model_dump(mode="json") for p in points]}

    return await cached_envelope(request, key, settings.map_cache_ttl, load)


@router.get("/{ticket_id}")
async def get_ticket(
    ticket_id: str,
    request: Request,
    principal: StaffPrincipal = Depends(require_staff),
) -> dict[str, Any]:
    """Full ticket with its timeline, newest entry first."""
    ticket_id = ticket_id.strip().upper()

    async def load() -> dict[str, Any]:
        ticket, timeline = await get_tickets(request).get(ticket_id)
        return {**ticket_json(ticket), "timeline": timeline_json(timeline)}

    cache = get_cache(request)
    if cache is None:
        data = await load()
    else:
        data, _ = await cache.read_through(
            detail_key(ticket_id), settings.ticket_detail_cache_ttl, load
        )

    if not (principal.is_admin or principal.agency_id in data["assigned_dinas"]):
        logger.warning("tickets.access_denied", ticket_id=ticket_id, agency=principal.agency_id)
        raise Forbidden()
    return envelope(data)


@router.patch("/{ticket_id}")
async def update_ticket(
    ticket_id: str,
    body: UpdateTicketRequest,
    request: Request,
    principal: StaffPrincipal = Depends(require_staff),
) -> dict[str, Any]:
    """Change status and/or attach resolution photos."""
    updated = await get_tickets(request).update_status(
        ticket_id.strip().upper(),
        principal,
        status=body.status,
        note=body.note,
        photo_before=body.photo_before,
        photo_after=body.photo_after,
        notify_reporter=body.notify_reporter,
    )
    return envelope(ticket_json(updated))


# ---------------------------------------------------------------------------
# Internal creation
# ---------------------------------------------------------------------------


@router.post("", status_code=201, dependencies=[Depends(require_internal_api_key)])
async def create_ticket(body: CreateTicketRequest, request: Request) -> ORJSONResponse:
    category = coerce_category(body.category)
    if category is None:
        raise ValidationFailed("Kategori laporan tidak valid", code="INVALID_CATEGORY")

    created = await get_tickets(request).create(
        NewTicket(
            category=category,
            description=body.description,
            reporter_name=body.reporter_name,
            reporter_phone=body.reporter_phone,
            address=body.address,
            subcategory=body.subcategory,
            urgency=coerce_urgency(body.urgency),
            channel=body.channel,
            call_sid=body.call_sid,
            transcription=body.transcription,
        )
    )
    return ORJSONResponse(
        status_code=201,
        content=envelope(
            {
                "ticket": ticket_json(created.ticket),
                "trackUrl": created.track_url,
                "addressValidated": created.address is not None and created.address.usable,
                "notificationSent": bool(created.notification and created.notification.success),
            }
        ),
    )


# ---------------------------------------------------------------------------
# Citizen rating
# ---------------------------------------------------------------------------


@router.post("/{ticket_id}/request-otp")
async def request_otp(ticket_id: str, request: Request) -> dict[str, Any]:
    """Send a one-time rating code to the reporter's phone."""
    issued = await get_rating(request).request_otp(ticket_id.strip().upper())
    expires_at = issued.expires_at.isoformat()
    return envelope(
        {
            "maskedPhone": issued.masked_phone,
            "expiresAt": expires_at,
            "delivered": issued.delivered,
        },
        message=issued.message,
        expiresAt=expires_at,
    )


@router.post("/{ticket_id}/rate")
async def rate_ticket(ticket_id: str, body: RateTicketRequest, request: Request) -> dict[str, Any]:
    """Record the reporter's 1-5 rating, verified by OTP."""
    ticket = await get_rating(request).submit_rating(
        ticket_id.strip().upper(),
        body.rating,
        body.otp,
        body.feedback,
    )
    return envelope(
        {
            "rating": ticket.rating,
            "feedback": ticket.feedback,
            "ratedAt": ticket.rated_at.isoformat() if ticket.rated_at else None,
        }
    )

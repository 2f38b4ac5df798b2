"""Ticket, timeline and message-log models for SatuPintu.

A ticket is the central entity of the intake pipeline.  Timeline entries
and message logs are append-only records bound to a ticket (message logs
may also be unbound, e.g. an inbound SMS that matched no ticket).
"""

from __future__ import annotations

import random
import re
from datetime import UTC, date, datetime, time
from typing import Any, Final
from uuid import uuid4
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.models.enums import (
    MessageDirection,
    MessageStatus,
    TicketCategory,
    TicketStatus,
    TicketUrgency,
    TimelineAction,
)

_TICKET_ID_RE: Final[re.Pattern[str]] = re.compile(r"^([A-Z]+)-(\d{8})-(\d{4})$")
_DATE_ONLY_RE: Final[re.Pattern[str]] = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Ticket identity
# ---------------------------------------------------------------------------


def generate_ticket_id(
    *,
    prefix: str = "SP",
    now: datetime | None = None,
    tz: str = "Asia/Jakarta",
    rng: random.Random | None = None,
) -> str:
    """Generate a human-readable ticket ID ``PREFIX-YYYYMMDD-NNNN``.

    The date is the creation day in the service timezone; the suffix is
    uniformly random in 1000-9999 and therefore *not* collision-free.
    Callers must rely on the store's uniqueness constraint.
    """
    moment = (now or utcnow()).astimezone(ZoneInfo(tz))
    suffix = (rng or random).randint(1000, 9999)
    return f"{prefix}-{moment:%Y%m%d}-{suffix}"


def parse_ticket_id(ticket_id: str) -> date:
    """Return the creation date embedded in *ticket_id*.

    Raises
    ------
    ValueError
        If *ticket_id* is not of the form ``PREFIX-YYYYMMDD-NNNN``.
    """
    match = _TICKET_ID_RE.match(ticket_id.strip().upper())
    if not match:
        raise ValueError(f"Malformed ticket id: {ticket_id!r}")
    return datetime.strptime(match.group(2), "%Y%m%d").date()


def is_ticket_id(value: str) -> bool:
    try:
        parse_ticket_id(value)
    except ValueError:
        return False
    return True


def parse_time_bound(value: str, *, tz: str = "Asia/Jakarta", end_of_day: bool = False) -> datetime:
    """Parse a ``from``/``to`` filter value into an aware datetime.

    A bare ``YYYY-MM-DD`` covers that whole day in *tz*: its first
    instant, or its last one when *end_of_day* is set.  Datetimes
    without an offset are read in *tz*.

    Raises
    ------
    ValueError
        If *value* is neither an ISO date nor an ISO datetime.
    """
    text = value.strip()
    if _DATE_ONLY_RE.match(text):
        day = date.fromisoformat(text)
        moment = datetime.combine(day, time.max if end_of_day else time.min)
    else:
        moment = datetime.fromisoformat(text)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=ZoneInfo(tz))
    return moment


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


class Ticket(BaseModel):
    """Persisted complaint ticket."""

    id: str
    category: TicketCategory
    subcategory: str | None = None
    location: str
    description: str
    reporter_phone: str
    reporter_name: str | None = None
    validated_address: str | None = None
    address_lat: float | None = None
    address_lng: float | None = None
    status: TicketStatus = TicketStatus.PENDING
    urgency: TicketUrgency = TicketUrgency.MEDIUM
    assigned_dinas: list[str] = Field(min_length=1)
    call_sid: str | None = None
    transcription: str | None = None
    resolution_photo_before: str | None = None
    resolution_photo_after: str | None = None
    rating: int | None = Field(default=None, ge=1, le=5)
    feedback: str | None = None
    rating_otp: str | None = None
    rating_otp_expires_at: datetime | None = None
    rated_at: datetime | None = None
    resolved_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def has_coordinates(self) -> bool:
        return self.address_lat is not None and self.address_lng is not None


class TimelineEntry(BaseModel):
    """Immutable audit/event entry bound to a single ticket."""

    model_config = {"frozen": True}

    id: str = Field(default_factory=lambda: uuid4().hex)
    ticket_id: str
    action: TimelineAction
    message: str
    created_by: str = "system"
    is_public: bool = True
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class OutboundMessageLog(BaseModel):
    """Record of a single notification attempt or inbound message."""

    model_config = {"frozen": True}

    id: str = Field(default_factory=lambda: uuid4().hex)
    ticket_id: str | None = None
    phone_to: str
    message: str
    channel: str
    direction: MessageDirection = MessageDirection.OUTBOUND
    provider_message_id: str | None = None
    status: MessageStatus = MessageStatus.QUEUED
    error: str | None = None
    created_at: datetime = Field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Projections
# ---------------------------------------------------------------------------


class PublicTimelineItem(BaseModel):
    time: datetime
    message: str
    action: TimelineAction


class PublicTicketView(BaseModel):
    """Sanitized projection for the anonymous tracking page.

    Carries no reporter phone, no reporter name and no internal notes.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    category: TicketCategory
    category_text: str
    subcategory: str | None
    location: str
    status: TicketStatus
    status_text: str
    urgency: TicketUrgency
    assigned_to: list[str]
    created_at: datetime
    updated_at: datetime
    resolved_at: datetime | None
    resolution_photo_before: str | None
    resolution_photo_after: str | None
    rating: int | None
    feedback: str | None
    rated_at: datetime | None
    timeline: list[PublicTimelineItem]


class MapPoint(BaseModel):
    id: str
    lat: float
    lng: float
    category: TicketCategory
    status: TicketStatus
    urgency: TicketUrgency
    location: str
    description: str
    created_at: datetime

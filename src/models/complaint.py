"""Complaint intake models: classifier output and ticket-creation input."""

from __future__ import annotations

from pydantic import BaseModel, Field

from src.models.enums import IntakeChannel, TicketCategory, TicketUrgency


class AnalyzedComplaint(BaseModel):
    """Structured complaint extracted from free text or audio."""

    category: TicketCategory
    subcategory: str
    location: str
    description: str
    urgency: TicketUrgency
    assigned_agencies: list[str]
    spoken_summary: str
    defaulted_fields: list[str] = Field(default_factory=list)


class NewTicket(BaseModel):
    """Input to :meth:`TicketService.create`.

    Required-field emptiness is checked by the service (not here) so
    that every intake path reports the same error code.
    """

    category: TicketCategory
    description: str = ""
    reporter_name: str = ""
    reporter_phone: str = ""
    address: str = ""
    subcategory: str | None = None
    urgency: TicketUrgency | None = None
    channel: IntakeChannel = IntakeChannel.API
    call_sid: str | None = None
    transcription: str | None = None

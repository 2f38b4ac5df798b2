from __future__ import annotations

from enum import StrEnum


class TicketCategory(StrEnum):
    __slots__ = ()

    EMERGENCY = "EMERGENCY"
    INFRASTRUCTURE = "INFRASTRUCTURE"
    SANITATION = "SANITATION"
    SOCIAL = "SOCIAL"
    OTHER = "OTHER"


class TicketUrgency(StrEnum):
    """Expected response time: <15 min, <1 h, <24 h, <72 h."""

    __slots__ = ()

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class TicketStatus(StrEnum):
    __slots__ = ()

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    ESCALATED = "ESCALATED"
    RESOLVED = "RESOLVED"
    CANCELLED = "CANCELLED"


class TimelineAction(StrEnum):
    __slots__ = ()

    CREATED = "CREATED"
    ASSIGNED = "ASSIGNED"
    STATUS_CHANGE = "STATUS_CHANGE"
    UPDATE = "UPDATE"
    ESCALATED = "ESCALATED"
    RESOLVED = "RESOLVED"
    CANCELLED = "CANCELLED"
    NOTE = "NOTE"


class MessageDirection(StrEnum):
    __slots__ = ()

    INBOUND = "INBOUND"
    OUTBOUND = "OUTBOUND"


class MessageStatus(StrEnum):
    __slots__ = ()

    QUEUED = "QUEUED"
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"


class NotificationChannel(StrEnum):
    __slots__ = ()

    WHATSAPP = "whatsapp"
    SMS = "sms"


class IntakeChannel(StrEnum):
    """Where a ticket entered the system."""

    __slots__ = ()

    VOICE_AI = "voice_ai"
    PHONE_RECORDING = "phone_recording"
    SMS = "sms"
    API = "api"


class AddressConfidence(StrEnum):
    __slots__ = ()

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class AddressSource(StrEnum):
    __slots__ = ()

    LANDMARK = "landmark"
    GOOGLE_MAPS = "google_maps"
    NOMINATIM = "nominatim"
    LLM = "llm"
    FALLBACK = "fallback"


class DegradedReason(StrEnum):
    """Why an upstream-backed operation fell back to defaults."""

    __slots__ = ()

    LLM_UNAVAILABLE = "LLM_UNAVAILABLE"
    LLM_OUTPUT_INVALID = "LLM_OUTPUT_INVALID"
    GEOCODER_UNAVAILABLE = "GEOCODER_UNAVAILABLE"
    GEOCODER_NO_MATCH = "GEOCODER_NO_MATCH"

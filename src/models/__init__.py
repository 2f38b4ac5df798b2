from src.models.address import AddressResolution, Landmark
from src.models.complaint import AnalyzedComplaint, NewTicket
from src.models.enums import (
    AddressConfidence,
    AddressSource,
    DegradedReason,
    IntakeChannel,
    MessageDirection,
    MessageStatus,
    NotificationChannel,
    TicketCategory,
    TicketStatus,
    TicketUrgency,
    TimelineAction,
)
from src.models.result import Result
from src.models.staff import StaffPrincipal, StaffScope
from src.models.ticket import (
    MapPoint,
    OutboundMessageLog,
    PublicTicketView,
    PublicTimelineItem,
    Ticket,
    TimelineEntry,
)

__all__ = [
    "AddressConfidence",
    "AddressResolution",
    "AddressSource",
    "AnalyzedComplaint",
    "DegradedReason",
    "IntakeChannel",
    "Landmark",
    "MapPoint",
    "MessageDirection",
    "MessageStatus",
    "NewTicket",
    "NotificationChannel",
    "OutboundMessageLog",
    "PublicTicketView",
    "PublicTimelineItem",
    "Result",
    "StaffPrincipal",
    "StaffScope",
    "Ticket",
    "TicketCategory",
    "TicketStatus",
    "TicketUrgency",
    "TimelineAction",
    "TimelineEntry",
]

"""Role-scoped dashboard aggregates.

Both functions are pure over a list of tickets so that the API layer can
feed them from any store and cache the result.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo

from src.models.enums import TicketStatus, TicketUrgency
from src.models.ticket import Ticket, utcnow


def _hours(delta: timedelta) -> float:
    return delta.total_seconds() / 3600


def _round1(value: float) -> float:
    return round(value, 1)


def compute_stats(
    tickets: list[Ticket],
    *,
    tz: str = "Asia/Jakarta",
    now: datetime | None = None,
) -> dict[str, Any]:
    """Status and urgency counts, overall and for today in *tz*."""
    zone = ZoneInfo(tz)
    today = (now or utcnow()).astimezone(zone).date()
    statuses = Counter(t.status for t in tickets)
    urgencies = Counter(t.urgency for t in tickets)
    todays = [t for t in tickets if t.created_at.astimezone(zone).date() == today]
    today_statuses = Counter(t.status for t in todays)

    return {
        "total": len(tickets),
        "pending": statuses[TicketStatus.PENDING],
        "inProgress": statuses[TicketStatus.IN_PROGRESS],
        "escalated": statuses[TicketStatus.ESCALATED],
        "resolved": statuses[TicketStatus.RESOLVED],
        "cancelled": statuses[TicketStatus.CANCELLED],
        "byUrgency": {u.value.lower(): urgencies[u] for u in TicketUrgency},
        "today": {
            "total": len(todays),
            "pending": today_statuses[TicketStatus.PENDING],
            "inProgress": today_statuses[TicketStatus.IN_PROGRESS],
            "resolved": today_statuses[TicketStatus.RESOLVED],
        },
    }


def compute_analytics(tickets: list[Ticket], *, tz: str = "Asia/Jakarta") -> dict[str, Any]:
    """Daily series, breakdowns and average resolution time in hours.

    *tickets* should already be restricted to the requested day window.
    Resolution time counts only tickets carrying ``resolved_at``.
    """
    zone = ZoneInfo(tz)
    by_day: Counter[str] = Counter()
    by_category: Counter[str] = Counter()
    by_urgency: Counter[str] = Counter()
    by_status: Counter[str] = Counter()
    resolution: dict[str, list[float]] = defaultdict(list)

    for ticket in tickets:
        by_day[ticket.created_at.astimezone(zone).date().isoformat()] += 1
        by_category[ticket.category.value] += 1
        by_urgency[ticket.urgency.value] += 1
        by_status[ticket.status.value] += 1
        if ticket.resolved_at is not None:
            resolution[ticket.category.value].append(_hours(ticket.resolved_at - ticket.created_at))

    all_hours = [h for hours in resolution.values() for h in hours]
    return {
        "summary": {
            "total": len(tickets),
            "resolved": by_status[TicketStatus.RESOLVED.value],
            "pending": by_status[TicketStatus.PENDING.value],
            "inProgress": by_status[TicketStatus.IN_PROGRESS.value],
            "avgResolutionTimeHours": _round1(sum(all_hours) / len(all_hours)) if all_hours else 0,
        },
        "dailyData": [{"date": day, "count": by_day[day]} for day in sorted(by_day)],
        "categoryData": [{"name": k, "value": v} for k, v in by_category.items()],
        "urgencyData": [{"name": k, "value": v} for k, v in by_urgency.items()],
        "statusData": [{"name": k, "value": v} for k, v in by_status.items()],
        "resolutionData": [
            {"category": category, "avgHours": _round1(sum(hours) / len(hours))}
            for category, hours in resolution.items()
        ],
    }

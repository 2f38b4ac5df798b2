"""Tests for dashboard statistics and analytics aggregates."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from src.models.enums import TicketCategory, TicketStatus, TicketUrgency
from src.models.ticket import Ticket
from src.services.analytics import compute_analytics, compute_stats

# 10:00 in Jakarta on 2025-12-03.
NOW = datetime(2025, 12, 3, 3, 0, tzinfo=UTC)


def make_ticket(n: int, created_at: datetime, **overrides) -> Ticket:
    fields: dict = {
        "id": f"SP-20251203-{1000 + n}",
        "category": TicketCategory.INFRASTRUCTURE,
        "location": "Jl. Dago",
        "description": "x",
        "reporter_phone": "+6285155347701",
        "assigned_dinas": ["public_works"],
        "created_at": created_at,
        "updated_at": created_at,
    }
    fields.update(overrides)
    return Ticket(**fields)


class TestComputeStats:
    def test_counts(self) -> None:
        tickets = [
            make_ticket(1, NOW - timedelta(hours=1)),
            make_ticket(2, NOW - timedelta(hours=2), status=TicketStatus.IN_PROGRESS),
            make_ticket(3, NOW - timedelta(days=2), status=TicketStatus.RESOLVED),
            make_ticket(4, NOW - timedelta(days=3), urgency=TicketUrgency.CRITICAL),
        ]
        stats = compute_stats(tickets, now=NOW)

        assert stats["total"] == 4
        assert stats["pending"] == 2
        assert stats["inProgress"] == 1
        assert stats["resolved"] == 1
        assert stats["byUrgency"] == {"critical": 1, "high": 0, "medium": 3, "low": 0}
        assert stats["today"] == {"total": 2, "pending": 1, "inProgress": 1, "resolved": 0}

    def test_today_uses_service_timezone(self) -> None:
        # 23:30 UTC on Dec 2 is 06:30 Dec 3 in Jakarta.
        ticket = make_ticket(1, datetime(2025, 12, 2, 23, 30, tzinfo=UTC))
        assert compute_stats([ticket], now=NOW)["today"]["total"] == 1
        assert compute_stats([ticket], tz="UTC", now=NOW)["today"]["total"] == 0

    def test_empty(self) -> None:
        stats = compute_stats([], now=NOW)
        assert stats["total"] == 0
        assert stats["today"]["total"] == 0


class TestComputeAnalytics:
    def test_breakdowns_and_resolution_time(self) -> None:
        day1 = datetime(2025, 12, 1, 2, 0, tzinfo=UTC)
        day2 = datetime(2025, 12, 2, 2, 0, tzinfo=UTC)
        tickets = [
            make_ticket(
                1,
                day1,
                status=TicketStatus.RESOLVED,
                resolved_at=day1 + timedelta(hours=4),
            ),
            make_ticket(
                2,
                day2,
                status=TicketStatus.RESOLVED,
                resolved_at=day2 + timedelta(hours=7),
            ),
            make_ticket(
                3,
                day2,
                category=TicketCategory.SANITATION,
                assigned_dinas=["environment"],
                status=TicketStatus.RESOLVED,
                resolved_at=day2 + timedelta(hours=1),
            ),
            make_ticket(4, day2, category=TicketCategory.SOCIAL, assigned_dinas=["social_affairs"]),
        ]
        result = compute_analytics(tickets)

        assert result["summary"] == {
            "total": 4,
            "resolved": 3,
            "pending": 1,
            "inProgress": 0,
            "avgResolutionTimeHours": 4.0,
        }
        assert result["dailyData"] == [
            {"date": "2025-12-01", "count": 1},
            {"date": "2025-12-02", "count": 3},
        ]
        assert {"name": "INFRASTRUCTURE", "value": 2} in result["categoryData"]
        assert {"category": "INFRASTRUCTURE", "avgHours": 5.5} in result["resolutionData"]
        assert {"category": "SANITATION", "avgHours": 1.0} in result["resolutionData"]

    def test_no_resolved_tickets(self) -> None:
        result = compute_analytics([make_ticket(1, NOW)])
        assert result["summary"]["avgResolutionTimeHours"] == 0
        assert result["resolutionData"] == []

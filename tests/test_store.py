"""Tests for the ticket stores (in-memory and PostgREST)."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta

import httpx
import pytest

from src.models.enums import TicketCategory, TicketStatus, TicketUrgency, TimelineAction
from src.models.ticket import OutboundMessageLog, Ticket, TimelineEntry
from src.services.errors import DatastoreError
from src.services.store import (
    DuplicateTicketId,
    InMemoryTicketStore,
    PostgrestTicketStore,
    TicketQuery,
)

T0 = datetime(2025, 12, 3, 8, 0, tzinfo=UTC)


def make_ticket(ticket_id: str, **overrides) -> Ticket:
    fields: dict = {
        "id": ticket_id,
        "category": TicketCategory.INFRASTRUCTURE,
        "location": "Jl. Dago",
        "description": "Jalan berlubang",
        "reporter_phone": "+6285155347701",
        "assigned_dinas": ["public_works"],
        "created_at": T0,
        "updated_at": T0,
    }
    fields.update(overrides)
    return Ticket(**fields)


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class TestInMemoryTickets:
    async def test_insert_and_get(self) -> None:
        store = InMemoryTicketStore()
        ticket = make_ticket("SP-20251203-1001")
        await store.insert_ticket(ticket)
        assert await store.get_ticket("SP-20251203-1001") == ticket
        assert await store.get_ticket("SP-20251203-9999") is None

    async def test_duplicate_id(self) -> None:
        store = InMemoryTicketStore()
        await store.insert_ticket(make_ticket("SP-20251203-1001"))
        with pytest.raises(DuplicateTicketId):
            await store.insert_ticket(make_ticket("SP-20251203-1001"))

    async def test_update_bumps_updated_at(self) -> None:
        store = InMemoryTicketStore()
        await store.insert_ticket(make_ticket("SP-20251203-1001"))
        updated = await store.update_ticket("SP-20251203-1001", {"status": TicketStatus.IN_PROGRESS})
        assert updated is not None
        assert updated.status is TicketStatus.IN_PROGRESS
        assert updated.updated_at > T0
        assert await store.update_ticket("SP-20251203-9999", {"status": TicketStatus.RESOLVED}) is None

    async def test_list_filters_and_paginates(self) -> None:
        store = InMemoryTicketStore()
        for i in range(5):
            await store.insert_ticket(
                make_ticket(f"SP-20251203-100{i}", created_at=T0 + timedelta(minutes=i))
            )
        await store.insert_ticket(
            make_ticket(
                "SP-20251203-2000",
                category=TicketCategory.SANITATION,
                assigned_dinas=["environment"],
                urgency=TicketUrgency.HIGH,
                location="Pasar Kosambi",
            )
        )

        page, total = await store.list_tickets(TicketQuery(agency="public_works", page=2, limit=2))
        assert total == 5
        assert [t.id for t in page] == ["SP-20251203-1002", "SP-20251203-1001"], "newest first"

        scoped, total = await store.list_tickets(TicketQuery(agency="environment"))
        assert total == 1 and scoped[0].id == "SP-20251203-2000"

        by_urgency, _ = await store.list_tickets(TicketQuery(urgency=TicketUrgency.HIGH))
        assert [t.id for t in by_urgency] == ["SP-20251203-2000"]

        searched, _ = await store.list_tickets(TicketQuery(search="kosambi"))
        assert [t.id for t in searched] == ["SP-20251203-2000"]

        by_id, _ = await store.list_tickets(TicketQuery(search="sp-20251203-1004"))
        assert [t.id for t in by_id] == ["SP-20251203-1004"]

    async def test_with_coordinates_and_window(self) -> None:
        store = InMemoryTicketStore()
        await store.insert_ticket(make_ticket("SP-20251203-1001", address_lat=-6.9, address_lng=107.6))
        await store.insert_ticket(make_ticket("SP-20251203-1002", created_at=T0 - timedelta(days=40)))

        mapped, _ = await store.list_tickets(TicketQuery(with_coordinates=True))
        assert [t.id for t in mapped] == ["SP-20251203-1001"]

        recent, _ = await store.list_tickets(TicketQuery(created_from=T0 - timedelta(days=30)))
        assert [t.id for t in recent] == ["SP-20251203-1001"]

    async def test_naive_bounds_are_read_as_utc(self) -> None:
        store = InMemoryTicketStore()
        await store.insert_ticket(make_ticket("SP-20251203-1001", created_at=T0))

        naive = T0.replace(tzinfo=None)
        query = TicketQuery(created_from=naive - timedelta(hours=1), created_to=naive + timedelta(hours=1))
        assert query.created_from.tzinfo is UTC
        found, _ = await store.list_tickets(query)
        assert [t.id for t in found] == ["SP-20251203-1001"]

        later, _ = await store.list_tickets(TicketQuery(created_from=naive + timedelta(minutes=1)))
        assert later == []


class TestInMemoryTimelineAndMessages:
    async def test_timeline_newest_first_and_public_filter(self) -> None:
        store = InMemoryTicketStore()
        for i, public in enumerate((True, False, True)):
            await store.insert_timeline(
                TimelineEntry(
                    ticket_id="SP-20251203-1001",
                    action=TimelineAction.NOTE,
                    message=f"m{i}",
                    is_public=public,
                    created_at=T0 + timedelta(minutes=i),
                )
            )

        entries = await store.list_timeline("SP-20251203-1001")
        assert [e.message for e in entries] == ["m2", "m1", "m0"]
        public = await store.list_timeline("SP-20251203-1001", public_only=True)
        assert [e.message for e in public] == ["m2", "m0"]

    async def test_timeline_ties_keep_append_order(self) -> None:
        store = InMemoryTicketStore()
        for message in ("created", "assigned"):
            await store.insert_timeline(
                TimelineEntry(
                    ticket_id="SP-20251203-1001",
                    action=TimelineAction.NOTE,
                    message=message,
                    created_at=T0,
                )
            )
        entries = await store.list_timeline("SP-20251203-1001")
        assert [e.message for e in entries] == ["assigned", "created"]

    async def test_messages(self) -> None:
        store = InMemoryTicketStore()
        await store.insert_message(OutboundMessageLog(ticket_id="A", phone_to="+62851", message="1", channel="sms"))
        await store.insert_message(OutboundMessageLog(phone_to="+62851", message="2", channel="sms"))
        assert [m.message for m in await store.list_messages()] == ["2", "1"]
        assert [m.message for m in await store.list_messages("A")] == ["1"]


# ---------------------------------------------------------------------------
# PostgREST
# ---------------------------------------------------------------------------


def _row(ticket: Ticket) -> dict:
    return ticket.model_dump(mode="json")


def _store(handler) -> PostgrestTicketStore:
    client = httpx.AsyncClient(
        base_url="https://xyz.supabase.co/rest/v1", transport=httpx.MockTransport(handler)
    )
    return PostgrestTicketStore("https://xyz.supabase.co", "service-key", client=client)


class TestPostgrestTicketStore:
    async def test_get_ticket(self) -> None:
        seen: list[httpx.Request] = []
        ticket = make_ticket("SP-20251203-1001")

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=[_row(ticket)])

        fetched = await _store(handler).get_ticket("SP-20251203-1001")
        assert fetched == ticket
        assert seen[0].url.path == "/rest/v1/tickets"
        assert seen[0].url.params["id"] == "eq.SP-20251203-1001"

    async def test_insert_conflict_is_duplicate(self) -> None:
        store = _store(lambda request: httpx.Response(409, json={"code": "23505"}))
        with pytest.raises(DuplicateTicketId):
            await store.insert_ticket(make_ticket("SP-20251203-1001"))

    async def test_server_error_is_datastore_error(self) -> None:
        store = _store(lambda request: httpx.Response(500, text="boom"))
        with pytest.raises(DatastoreError):
            await store.get_ticket("SP-20251203-1001")

    async def test_transport_error_is_datastore_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused")

        with pytest.raises(DatastoreError):
            await _store(handler).list_timeline("SP-20251203-1001")

    async def test_list_builds_filters_and_reads_total(self) -> None:
        seen: list[httpx.Request] = []
        ticket = make_ticket("SP-20251203-1001")

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=[_row(ticket)], headers={"content-range": "0-0/17"})

        tickets, total = await _store(handler).list_tickets(
            TicketQuery(agency="public_works", status=TicketStatus.PENDING, page=3, limit=5)
        )
        assert total == 17
        assert len(tickets) == 1

        params = seen[0].url.params
        assert params["assigned_dinas"] == "cs.{public_works}"
        assert params["status"] == "eq.PENDING"
        assert params["offset"] == "10"
        assert params["limit"] == "5"
        assert seen[0].headers["Prefer"] == "count=exact"

    async def test_update_serialises_changes(self) -> None:
        seen: list[dict] = []
        ticket = make_ticket("SP-20251203-1001", status=TicketStatus.RESOLVED)

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(200, json=[_row(ticket)])

        resolved_at = datetime(2025, 12, 4, tzinfo=UTC)
        updated = await _store(handler).update_ticket(
            "SP-20251203-1001", {"status": TicketStatus.RESOLVED, "resolved_at": resolved_at}
        )
        assert updated is not None and updated.status is TicketStatus.RESOLVED
        body = seen[0]
        assert body["status"] == "RESOLVED"
        assert body["resolved_at"].startswith("2025-12-04")
        assert "updated_at" in body

    async def test_message_log_uses_legacy_column(self) -> None:
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(201)

        await _store(handler).insert_message(
            OutboundMessageLog(phone_to="+62851", message="x", channel="sms", provider_message_id="SM1")
        )
        assert seen[0]["twilio_sid"] == "SM1"
        assert "provider_message_id" not in seen[0]

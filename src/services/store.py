"""Ticket persistence.

:class:`TicketStore` is the async interface the lifecycle manager talks
to.  Two implementations:

* :class:`InMemoryTicketStore` -- process-local dicts; the default for
  development and the test-suite.
* :class:`PostgrestTicketStore` -- Supabase's PostgREST API over httpx,
  against the ``tickets``, ``ticket_timeline`` and ``sms_logs`` tables.

There are no cross-entity transactions: a ticket insert and its
timeline inserts are independent calls.  Concurrent updates to one
ticket are last-write-wins.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol

import httpx
import structlog
from pydantic_core import to_jsonable_python

from src.models.enums import TicketCategory, TicketStatus, TicketUrgency
from src.models.ticket import OutboundMessageLog, Ticket, TimelineEntry, utcnow
from src.services.errors import DatastoreError

logger = structlog.get_logger(__name__)


class DuplicateTicketId(Exception):
    """A ticket with the same ID already exists."""


# ---------------------------------------------------------------------------
# Query shape
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class TicketQuery:
    """Filters for :meth:`TicketStore.list_tickets`.

    ``agency`` of *None* means unscoped (all agencies).  ``limit`` of
    *None* returns every match.
    """

    agency: str | None = None
    status: TicketStatus | None = None
    urgency: TicketUrgency | None = None
    category: TicketCategory | None = None
    search: str | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    with_coordinates: bool = False
    page: int = 1
    limit: int | None = None

    def __post_init__(self) -> None:
        # created_at is always aware; naive bounds are taken as UTC.
        if self.created_from is not None and self.created_from.tzinfo is None:
            self.created_from = self.created_from.replace(tzinfo=UTC)
        if self.created_to is not None and self.created_to.tzinfo is None:
            self.created_to = self.created_to.replace(tzinfo=UTC)

    @property
    def offset(self) -> int:
        return (max(self.page, 1) - 1) * (self.limit or 0)

    def matches(self, ticket: Ticket) -> bool:
        if self.agency is not None and self.agency not in ticket.assigned_dinas:
            return False
        if self.status is not None and ticket.status != self.status:
            return False
        if self.urgency is not None and ticket.urgency != self.urgency:
            return False
        if self.category is not None and ticket.category != self.category:
            return False
        if self.created_from is not None and ticket.created_at < self.created_from:
            return False
        if self.created_to is not None and ticket.created_at > self.created_to:
            return False
        if self.with_coordinates and not ticket.has_coordinates:
            return False
        if self.search:
            needle = self.search.lower()
            if needle not in ticket.id.lower() and needle not in ticket.location.lower():
                return False
        return True


class TicketStore(Protocol):
    async def insert_ticket(self, ticket: Ticket) -> Ticket: ...

    async def get_ticket(self, ticket_id: str) -> Ticket | None: ...

    async def update_ticket(self, ticket_id: str, changes: dict[str, Any]) -> Ticket | None: ...

    async def list_tickets(self, query: TicketQuery) -> tuple[list[Ticket], int]: ...

    async def insert_timeline(self, entry: TimelineEntry) -> TimelineEntry: ...

    async def list_timeline(
        self, ticket_id: str, *, public_only: bool = False
    ) -> list[TimelineEntry]: ...

    async def insert_message(self, log: OutboundMessageLog) -> OutboundMessageLog: ...

    async def list_messages(self, ticket_id: str | None = None) -> list[OutboundMessageLog]: ...

    async def close(self) -> None: ...


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class InMemoryTicketStore:
    """Dict-backed store.  Timeline and message lists are newest-first on read."""

    __slots__ = ("_messages", "_tickets", "_timeline")

    def __init__(self) -> None:
        self._tickets: dict[str, Ticket] = {}
        self._timeline: dict[str, list[TimelineEntry]] = {}
        self._messages: list[OutboundMessageLog] = []

    async def insert_ticket(self, ticket: Ticket) -> Ticket:
        if ticket.id in self._tickets:
            raise DuplicateTicketId(ticket.id)
        self._tickets[ticket.id] = ticket
        return ticket

    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        return self._tickets.get(ticket_id)

    async def update_ticket(self, ticket_id: str, changes: dict[str, Any]) -> Ticket | None:
        current = self._tickets.get(ticket_id)
        if current is None:
            return None
        updated = current.model_copy(update={**changes, "updated_at": utcnow()})
        self._tickets[ticket_id] = updated
        return updated

    async def list_tickets(self, query: TicketQuery) -> tuple[list[Ticket], int]:
        matched = sorted(
            (t for t in self._tickets.values() if query.matches(t)),
            key=lambda t: t.created_at,
            reverse=True,
        )
        total = len(matched)
        if query.limit is not None:
            matched = matched[query.offset : query.offset + query.limit]
        return matched, total

    async def insert_timeline(self, entry: TimelineEntry) -> TimelineEntry:
        self._timeline.setdefault(entry.ticket_id, []).append(entry)
        return entry

    async def list_timeline(
        self, ticket_id: str, *, public_only: bool = False
    ) -> list[TimelineEntry]:
        entries = self._timeline.get(ticket_id, [])
        if public_only:
            entries = [e for e in entries if e.is_public]
        # Append order breaks created_at ties.
        return list(reversed(sorted(entries, key=lambda e: e.created_at)))

    async def insert_message(self, log: OutboundMessageLog) -> OutboundMessageLog:
        self._messages.append(log)
        return log

    async def list_messages(self, ticket_id: str | None = None) -> list[OutboundMessageLog]:
        logs = [m for m in self._messages if ticket_id is None or m.ticket_id == ticket_id]
        return list(reversed(logs))

    async def close(self) -> None:
        return None


# ---------------------------------------------------------------------------
# PostgREST (Supabase)
# ---------------------------------------------------------------------------


class PostgrestTicketStore:
    """Supabase PostgREST-backed store.

    Parameters
    ----------
    base_url:
        Supabase project URL, e.g. ``https://xyz.supabase.co``.
    service_key:
        Service-role key; sent as both ``apikey`` and bearer token.
    client:
        Pre-built client (tests inject one with ``httpx.MockTransport``).
    """

    __slots__ = ("_client",)

    def __init__(
        self,
        base_url: str,
        service_key: str,
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(
            base_url=f"{base_url.rstrip('/')}/rest/v1",
            timeout=timeout,
            headers={
                "apikey": service_key,
                "Authorization": f"Bearer {service_key}",
                "Content-Type": "application/json",
            },
        )

    async def close(self) -> None:
        await self._client.aclose()

    # -- helpers ------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | list[tuple[str, str]] | None = None,
        json_body: Any = None,
        prefer: str | None = None,
    ) -> httpx.Response:
        headers = {"Prefer": prefer} if prefer else None
        try:
            response = await self._client.request(
                method, path, params=params, json=json_body, headers=headers
            )
        except httpx.HTTPError as exc:
            logger.error("store.request_failed", path=path, error=str(exc))
            raise DatastoreError() from exc
        if response.status_code == 409:
            return response
        if response.status_code >= 400:
            logger.error(
                "store.request_rejected",
                path=path,
                status=response.status_code,
                body=response.text[:300],
            )
            raise DatastoreError()
        return response

    @staticmethod
    def _ticket_params(query: TicketQuery) -> list[tuple[str, str]]:
        params: list[tuple[str, str]] = [("select", "*"), ("order", "created_at.desc")]
        if query.agency is not None:
            params.append(("assigned_dinas", f"cs.{{{query.agency}}}"))
        if query.status is not None:
            params.append(("status", f"eq.{query.status.value}"))
        if query.urgency is not None:
            params.append(("urgency", f"eq.{query.urgency.value}"))
        if query.category is not None:
            params.append(("category", f"eq.{query.category.value}"))
        if query.created_from is not None:
            params.append(("created_at", f"gte.{query.created_from.isoformat()}"))
        if query.created_to is not None:
            params.append(("created_at", f"lte.{query.created_to.isoformat()}"))
        if query.with_coordinates:
            params.append(("address_lat", "not.is.null"))
            params.append(("address_lng", "not.is.null"))
        if query.search:
            term = query.search.replace(",", " ").replace("(", " ").replace(")", " ")
            params.append(("or", f"(id.ilike.*{term}*,location.ilike.*{term}*)"))
        if query.limit is not None:
            params.append(("offset", str(query.offset)))
            params.append(("limit", str(query.limit)))
        return params

    @staticmethod
    def _total_from(response: httpx.Response, fallback: int) -> int:
        content_range = response.headers.get("content-range", "")
        _, _, total = content_range.partition("/")
        return int(total) if total.isdigit() else fallback

    @staticmethod
    def _message_row(log: OutboundMessageLog) -> dict[str, Any]:
        row = log.model_dump(mode="json")
        row["twilio_sid"] = row.pop("provider_message_id")
        return row

    @staticmethod
    def _message_from_row(row: dict[str, Any]) -> OutboundMessageLog:
        row = dict(row)
        row["provider_message_id"] = row.pop("twilio_sid", None)
        row.setdefault("channel", "sms")
        return OutboundMessageLog.model_validate(row)

    # -- tickets ------------------------------------------------------------

    async def insert_ticket(self, ticket: Ticket) -> Ticket:
        response = await self._request(
            "POST",
            "/tickets",
            json_body=ticket.model_dump(mode="json"),
            prefer="return=representation",
        )
        if response.status_code == 409:
            raise DuplicateTicketId(ticket.id)
        rows = response.json()
        return Ticket.model_validate(rows[0]) if rows else ticket

    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        response = await self._request(
            "GET", "/tickets", params={"id": f"eq.{ticket_id}", "select": "*", "limit": "1"}
        )
        rows = response.json()
        return Ticket.model_validate(rows[0]) if rows else None

    async def update_ticket(self, ticket_id: str, changes: dict[str, Any]) -> Ticket | None:
        payload = to_jsonable_python(changes)
        payload["updated_at"] = utcnow().isoformat()
        response = await self._request(
            "PATCH",
            "/tickets",
            params={"id": f"eq.{ticket_id}"},
            json_body=payload,
            prefer="return=representation",
        )
        rows = response.json()
        return Ticket.model_validate(rows[0]) if rows else None

    async def list_tickets(self, query: TicketQuery) -> tuple[list[Ticket], int]:
        response = await self._request(
            "GET", "/tickets", params=self._ticket_params(query), prefer="count=exact"
        )
        tickets = [Ticket.model_validate(row) for row in response.json()]
        return tickets, self._total_from(response, len(tickets))

    # -- timeline -----------------------------------------------------------

    async def insert_timeline(self, entry: TimelineEntry) -> TimelineEntry:
        await self._request(
            "POST", "/ticket_timeline", json_body=entry.model_dump(mode="json")
        )
        return entry

    async def list_timeline(
        self, ticket_id: str, *, public_only: bool = False
    ) -> list[TimelineEntry]:
        params = {
            "ticket_id": f"eq.{ticket_id}",
            "select": "*",
            "order": "created_at.desc",
        }
        if public_only:
            params["is_public"] = "eq.true"
        response = await self._request("GET", "/ticket_timeline", params=params)
        return [
            TimelineEntry.model_validate({**row, "metadata": row.get("metadata") or {}})
            for row in response.json()
        ]

    # -- message log --------------------------------------------------------

    async def insert_message(self, log: OutboundMessageLog) -> OutboundMessageLog:
        await self._request("POST", "/sms_logs", json_body=self._message_row(log))
        return log

    async def list_messages(self, ticket_id: str | None = None) -> list[OutboundMessageLog]:
        params = {"select": "*", "order": "created_at.desc"}
        if ticket_id is not None:
            params["ticket_id"] = f"eq.{ticket_id}"
        response = await self._request("GET", "/sms_logs", params=params)
        return [self._message_from_row(row) for row in response.json()]

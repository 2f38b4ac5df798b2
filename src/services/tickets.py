"""Ticket lifecycle manager.

Owns every ticket mutation: creation (complaint and emergency intake),
status transitions, photo attachment and the public projection.  Each
operation is a sequence of independent I/O calls -- ticket write,
timeline writes, cache invalidation, notification -- with no enclosing
transaction:

* a failed ticket write aborts the operation (``DatastoreError``);
* a failed timeline write is logged and the operation continues;
* a failed notification is logged by the dispatcher and never fails
  the operation.

Rating and OTP live in :mod:`src.services.rating`.
"""

from __future__ import annotations

import random
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Final
from urllib.parse import urlparse

import structlog

from src.models.complaint import NewTicket
from src.models.enums import (
    IntakeChannel,
    NotificationChannel,
    TicketCategory,
    TicketStatus,
    TicketUrgency,
    TimelineAction,
)
from src.models.ticket import (
    MapPoint,
    PublicTicketView,
    PublicTimelineItem,
    Ticket,
    TimelineEntry,
    generate_ticket_id,
    utcnow,
)
from src.services.cache import invalidate_ticket_caches
from src.services.errors import Conflict, DatastoreError, Forbidden, NotFound, ValidationFailed
from src.services.phone import mask_phone, normalize_phone
from src.services.routing import (
    agencies_for,
    agency_names,
    category_label,
    default_urgency,
    status_label,
)
from src.services.store import DuplicateTicketId, TicketQuery
from src.services.templates import MessageKind

if TYPE_CHECKING:
    from src.models.address import AddressResolution
    from src.models.staff import StaffPrincipal
    from src.services.address import AddressResolver
    from src.services.cache import CacheManager
    from src.services.notifications import DeliveryResult, NotificationDispatcher
    from src.services.store import TicketStore

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

ALLOWED_TRANSITIONS: Final[dict[TicketStatus, frozenset[TicketStatus]]] = {
    TicketStatus.PENDING: frozenset(
        {TicketStatus.IN_PROGRESS, TicketStatus.RESOLVED, TicketStatus.CANCELLED}
    ),
    TicketStatus.IN_PROGRESS: frozenset(
        {TicketStatus.ESCALATED, TicketStatus.RESOLVED, TicketStatus.CANCELLED}
    ),
    TicketStatus.ESCALATED: frozenset(
        {TicketStatus.IN_PROGRESS, TicketStatus.RESOLVED, TicketStatus.CANCELLED}
    ),
    TicketStatus.RESOLVED: frozenset({TicketStatus.IN_PROGRESS}),
    TicketStatus.CANCELLED: frozenset(),
}

EMERGENCY_TYPES: Final[frozenset[str]] = frozenset(
    {"KEBAKARAN", "KECELAKAAN", "KEJAHATAN", "MEDIS", "BENCANA"}
)
EMERGENCY_PLACEHOLDER_PHONE: Final[str] = "+62000000000"
EMERGENCY_DEFAULT_NAME: Final[str] = "Pelapor Darurat"

MAX_ID_ATTEMPTS: Final[int] = 5

MISSING_FIELDS_MESSAGE: Final[str] = (
    "Maaf, ada informasi yang belum lengkap. Pastikan kategori, deskripsi, "
    "nama pelapor, dan alamat sudah diisi."
)
PHOTO_REQUIRED_MESSAGE: Final[str] = (
    "Foto bukti penyelesaian (sesudah) wajib diisi untuk menyelesaikan laporan"
)

_CREATED_MESSAGES: Final[dict[IntakeChannel, str]] = {
    IntakeChannel.VOICE_AI: "Laporan diterima via telepon dari {name}",
    IntakeChannel.PHONE_RECORDING: "Laporan diterima via telepon",
    IntakeChannel.SMS: "Laporan diterima via SMS dari {name}",
    IntakeChannel.API: "Laporan diterima dari {name}",
}


@dataclass(slots=True)
class CreatedTicket:
    ticket: Ticket
    track_url: str
    address: AddressResolution | None = None
    notification: DeliveryResult | None = None


def is_allowed_photo_url(url: str, host_suffixes: list[str] | tuple[str, ...]) -> bool:
    """True when *url* is http(s) on a host ending in one of *host_suffixes*."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    host = (parsed.hostname or "").lower()
    if parsed.scheme not in ("http", "https") or not host:
        return False
    return any(host.endswith(suffix.lower()) for suffix in host_suffixes)


# ---------------------------------------------------------------------------
# TicketService
# ---------------------------------------------------------------------------


class TicketService:
    """Create, transition and project tickets.

    Parameters
    ----------
    store:
        Ticket persistence.
    dispatcher:
        Notification dispatcher for citizen messages.
    track_url:
        Maps a ticket ID to its public tracking URL.
    resolver:
        Address resolver; when *None* addresses are stored unvalidated.
    cache:
        Response cache to invalidate on every mutation.
    notify_channel:
        Default channel for citizen notifications.
    photo_host_suffixes:
        Allowed storage hosts for resolution photos.
    allow_reopen:
        Whether ``RESOLVED -> IN_PROGRESS`` is permitted (never once rated).
    ticket_prefix, timezone:
        Ticket ID prefix and the timezone of its date component.
    rng, clock:
        Injectable randomness and time for tests.
    """

    __slots__ = (
        "_allow_reopen",
        "_cache",
        "_clock",
        "_dispatcher",
        "_notify_channel",
        "_photo_hosts",
        "_prefix",
        "_resolver",
        "_rng",
        "_store",
        "_timezone",
        "_track_url",
    )

    def __init__(
        self,
        store: TicketStore,
        dispatcher: NotificationDispatcher,
        track_url: Callable[[str], str],
        *,
        resolver: AddressResolver | None = None,
        cache: CacheManager | None = None,
        notify_channel: NotificationChannel = NotificationChannel.WHATSAPP,
        photo_host_suffixes: list[str] | tuple[str, ...] = (".supabase.co", ".supabase.in"),
        allow_reopen: bool = True,
        ticket_prefix: str = "SP",
        timezone: str = "Asia/Jakarta",
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._track_url = track_url
        self._resolver = resolver
        self._cache = cache
        self._notify_channel = notify_channel
        self._photo_hosts = tuple(photo_host_suffixes)
        self._allow_reopen = allow_reopen
        self._prefix = ticket_prefix
        self._timezone = timezone
        self._rng = rng
        self._clock = clock

    # -- internal helpers ---------------------------------------------------

    def track_url(self, ticket_id: str) -> str:
        return self._track_url(ticket_id)

    async def _insert_with_fresh_id(self, build: Callable[[str], Ticket]) -> Ticket:
        """Insert ``build(id)``, regenerating the ID on collision."""
        for attempt in range(1, MAX_ID_ATTEMPTS + 1):
            ticket_id = generate_ticket_id(
                prefix=self._prefix, now=self._clock(), tz=self._timezone, rng=self._rng
            )
            try:
                return await self._store.insert_ticket(build(ticket_id))
            except DuplicateTicketId:
                logger.warning("ticket.id_collision", ticket_id=ticket_id, attempt=attempt)
        raise DatastoreError("Gagal membuat nomor tiket unik", code="TICKET_ID_EXHAUSTED")

    async def _append(
        self,
        ticket_id: str,
        action: TimelineAction,
        message: str,
        *,
        created_by: str = "system",
        is_public: bool = True,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        entry = TimelineEntry(
            ticket_id=ticket_id,
            action=action,
            message=message,
            created_by=created_by,
            is_public=is_public,
            metadata=metadata or {},
            created_at=self._clock(),
        )
        try:
            await self._store.insert_timeline(entry)
        except Exception:
            logger.error(
                "ticket.timeline_write_failed",
                ticket_id=ticket_id,
                action=action.value,
                exc_info=True,
            )

    async def _resolve_address(self, address: str) -> AddressResolution | None:
        if self._resolver is None:
            return None
        try:
            result = await self._resolver.resolve(address)
        except Exception:
            logger.error("ticket.address_resolution_failed", exc_info=True)
            return None
        if result.is_degraded:
            logger.info(
                "ticket.address_degraded",
                reason=result.degraded_reason.value if result.degraded_reason else None,
            )
        return result.value

    async def _load(self, ticket_id: str) -> Ticket:
        ticket = await self._store.get_ticket(ticket_id.strip().upper())
        if ticket is None:
            raise NotFound()
        return ticket

    # -- creation -----------------------------------------------------------

    async def create(
        self,
        new: NewTicket,
        *,
        notify_via: NotificationChannel | None = None,
    ) -> CreatedTicket:
        """Validate, persist, record and announce a new ticket.

        Raises
        ------
        ValidationFailed
            ``MISSING_FIELDS`` when description, reporter name or
            address is blank; ``INVALID_PHONE`` when the reporter phone
            cannot be normalised.
        DatastoreError
            When the ticket itself cannot be written.
        """
        description = new.description.strip()
        reporter_name = new.reporter_name.strip()
        address = new.address.strip()
        if not (description and reporter_name and address):
            raise ValidationFailed(MISSING_FIELDS_MESSAGE, code="MISSING_FIELDS")

        try:
            phone = normalize_phone(new.reporter_phone)
        except ValueError:
            raise ValidationFailed("Nomor telepon pelapor tidak valid", code="INVALID_PHONE") from None

        log = logger.bind(channel=new.channel.value, reporter=mask_phone(phone))
        log.info("ticket.create.started", category=new.category.value)

        resolution = await self._resolve_address(address)
        usable = resolution is not None and resolution.usable
        agencies = agencies_for(new.category)
        urgency = new.urgency or default_urgency(new.category)
        now = self._clock()

        def build(ticket_id: str) -> Ticket:
            return Ticket(
                id=ticket_id,
                category=new.category,
                subcategory=(new.subcategory or "").strip() or None,
                location=address,
                description=description,
                reporter_phone=phone,
                reporter_name=reporter_name,
                validated_address=resolution.formatted_address if usable else None,
                address_lat=resolution.lat if usable else None,
                address_lng=resolution.lng if usable else None,
                urgency=urgency,
                assigned_dinas=agencies,
                call_sid=new.call_sid,
                transcription=new.transcription,
                created_at=now,
                updated_at=now,
            )

        ticket = await self._insert_with_fresh_id(build)
        log = log.bind(ticket_id=ticket.id)

        await self._append(
            ticket.id,
            TimelineAction.CREATED,
            _CREATED_MESSAGES[new.channel].format(name=reporter_name),
            metadata={"channel": new.channel.value},
        )
        await self._append(
            ticket.id,
            TimelineAction.ASSIGNED,
            f"Diteruskan ke {', '.join(agency_names(agencies))}",
            metadata={"assigned_dinas": agencies},
        )
        await invalidate_ticket_caches(self._cache)

        track_url = self.track_url(ticket.id)
        delivery = await self._dispatcher.notify(
            MessageKind.TICKET_CREATED,
            notify_via or self._notify_channel,
            phone,
            ticket_id=ticket.id,
            category=category_label(ticket.category),
            name=reporter_name,
            track_url=track_url,
        )
        log.info(
            "ticket.create.completed",
            urgency=ticket.urgency.value,
            agencies=agencies,
            geocoded=ticket.has_coordinates,
            notified=delivery.success,
        )
        return CreatedTicket(ticket, track_url, resolution, delivery)

    async def create_emergency(
        self,
        emergency_type: str,
        location: str,
        situation: str,
        *,
        reporter_name: str | None = None,
        reporter_phone: str | None = None,
        call_sid: str | None = None,
    ) -> CreatedTicket:
        """Record an emergency reported during a live call.

        The address is not resolved: the call is being transferred to
        112 and every second counts.  An unknown or invalid reporter
        phone is replaced by a placeholder and no notice is sent.
        """
        kind = (emergency_type or "").strip().upper()
        location = (location or "").strip()
        situation = (situation or "").strip()
        if not (kind and location and situation):
            raise ValidationFailed(
                "Maaf, saya perlu informasi lokasi dan kondisi darurat. "
                "Bisa diinfokan lokasinya dimana?",
                code="MISSING_FIELDS",
            )
        if kind not in EMERGENCY_TYPES:
            logger.warning("ticket.emergency_unknown_type", emergency_type=kind)

        try:
            phone: str | None = normalize_phone(reporter_phone)
        except ValueError:
            phone = None
        name = (reporter_name or "").strip() or EMERGENCY_DEFAULT_NAME
        agencies = agencies_for(TicketCategory.EMERGENCY)
        now = self._clock()

        def build(ticket_id: str) -> Ticket:
            return Ticket(
                id=ticket_id,
                category=TicketCategory.EMERGENCY,
                subcategory=kind,
                location=location,
                description=f"[DARURAT - {kind}] {situation}",
                reporter_phone=phone or EMERGENCY_PLACEHOLDER_PHONE,
                reporter_name=name,
                urgency=TicketUrgency.CRITICAL,
                assigned_dinas=agencies,
                call_sid=call_sid,
                transcription=f"Jenis: {kind}, Lokasi: {location}, Situasi: {situation}",
                created_at=now,
                updated_at=now,
            )

        ticket = await self._insert_with_fresh_id(build)
        logger.warning("ticket.emergency_created", ticket_id=ticket.id, emergency_type=kind)

        await self._append(
            ticket.id,
            TimelineAction.CREATED,
            f"Laporan darurat {kind} diterima via telepon",
            metadata={"channel": IntakeChannel.VOICE_AI.value, "emergency_type": kind},
        )
        await self._append(
            ticket.id,
            TimelineAction.ESCALATED,
            f"TRANSFER KE LAYANAN DARURAT 112 - {kind} di {location}",
            metadata={"transfer": "112"},
        )
        await invalidate_ticket_caches(self._cache)

        delivery = None
        if phone is not None:
            delivery = await self._dispatcher.notify(
                MessageKind.EMERGENCY_CREATED,
                NotificationChannel.WHATSAPP,
                phone,
                ticket_id=ticket.id,
                emergency_type=kind,
                location=location,
                name=name,
            )
        return CreatedTicket(ticket, self.track_url(ticket.id), None, delivery)

    # -- status transitions -------------------------------------------------

    def _check_transition(self, ticket: Ticket, target: TicketStatus) -> None:
        if target not in ALLOWED_TRANSITIONS[ticket.status]:
            raise Conflict(
                f"Status tidak dapat diubah dari {status_label(ticket.status)} "
                f"ke {status_label(target)}",
                code="INVALID_TRANSITION",
            )
        if ticket.status is TicketStatus.RESOLVED:
            if ticket.rating is not None:
                raise Conflict(
                    "Laporan yang sudah dinilai tidak dapat dibuka kembali",
                    code="INVALID_TRANSITION",
                )
            if not self._allow_reopen:
                raise Conflict(
                    "Laporan yang sudah selesai tidak dapat dibuka kembali",
                    code="INVALID_TRANSITION",
                )

    async def update_status(
        self,
        ticket_id: str,
        principal: StaffPrincipal,
        *,
        status: TicketStatus | None = None,
        note: str | None = None,
        photo_before: str | None = None,
        photo_after: str | None = None,
        notify_reporter: bool = False,
    ) -> Ticket:
        """Transition a ticket and/or attach resolution photos.

        Omitting *status* (or repeating the current one) records a
        photo/note-only ``UPDATE``.  Entering ``RESOLVED`` requires an
        after-photo, new or already stored, and always notifies the
        reporter with a rating link; *notify_reporter* adds a separate
        status-update message.

        Raises
        ------
        NotFound, Forbidden, ValidationFailed, Conflict
        """
        ticket = await self._load(ticket_id)
        if not principal.can_access(ticket):
            raise Forbidden()

        for url in (photo_before, photo_after):
            if url and not is_allowed_photo_url(url, self._photo_hosts):
                raise ValidationFailed("URL foto tidak valid", code="INVALID_PHOTO_URL")

        note = (note or "").strip() or None
        old_status = ticket.status
        is_change = status is not None and status != old_status
        if not is_change and not (photo_before or photo_after or note):
            raise ValidationFailed("Tidak ada perubahan yang dikirim", code="NO_CHANGES")

        changes: dict[str, Any] = {}
        if photo_before:
            changes["resolution_photo_before"] = photo_before
        if photo_after:
            changes["resolution_photo_after"] = photo_after

        if is_change and status is not None:
            self._check_transition(ticket, status)
            if status is TicketStatus.RESOLVED and not (photo_after or ticket.resolution_photo_after):
                raise ValidationFailed(PHOTO_REQUIRED_MESSAGE, code="PHOTO_REQUIRED")
            changes["status"] = status
            if status is TicketStatus.RESOLVED:
                changes["resolved_at"] = self._clock()
            elif old_status is TicketStatus.RESOLVED:
                changes["resolved_at"] = None

        updated = await self._store.update_ticket(ticket.id, changes)
        if updated is None:
            raise NotFound()

        log = logger.bind(ticket_id=ticket.id, by=principal.agency_id)
        if is_change:
            label = status_label(updated.status)
            await self._append(
                ticket.id,
                TimelineAction.STATUS_CHANGE,
                f"Status diubah ke {label}. {note}" if note else f"Status diubah ke {label}.",
                created_by=principal.agency_id,
                metadata={"old_status": old_status.value, "new_status": updated.status.value},
            )
            log.info("ticket.status_changed", old=old_status.value, new=updated.status.value)
        else:
            await self._append(
                ticket.id,
                TimelineAction.UPDATE,
                note or "Foto dokumentasi penanganan diperbarui",
                created_by=principal.agency_id,
                metadata={k: v for k, v in changes.items() if k.startswith("resolution_photo")},
            )
            log.info("ticket.updated", fields=sorted(changes))

        await invalidate_ticket_caches(self._cache, ticket.id)

        if is_change:
            await self._notify_status(updated, note, notify_reporter)
        return updated

    async def _notify_status(self, ticket: Ticket, note: str | None, notify_reporter: bool) -> None:
        track_url = self.track_url(ticket.id)
        if ticket.status is TicketStatus.RESOLVED:
            await self._dispatcher.notify(
                MessageKind.TICKET_RESOLVED,
                self._notify_channel,
                ticket.reporter_phone,
                ticket_id=ticket.id,
                name=ticket.reporter_name,
                track_url=track_url,
            )
        if notify_reporter:
            await self._dispatcher.notify(
                MessageKind.STATUS_UPDATE,
                self._notify_channel,
                ticket.reporter_phone,
                ticket_id=ticket.id,
                status=status_label(ticket.status),
                name=ticket.reporter_name,
                note=note,
                track_url=track_url,
            )

    # -- reads --------------------------------------------------------------

    async def get(
        self, ticket_id: str, principal: StaffPrincipal | None = None
    ) -> tuple[Ticket, list[TimelineEntry]]:
        """Ticket plus full timeline, newest first.

        Raises
        ------
        NotFound
        Forbidden
            When *principal* is given and not assigned to the ticket.
        """
        ticket = await self._load(ticket_id)
        if principal is not None and not principal.can_access(ticket):
            raise Forbidden()
        return ticket, await self._store.list_timeline(ticket.id)

    async def find(self, ticket_id: str) -> Ticket | None:
        return await self._store.get_ticket(ticket_id.strip().upper())

    async def latest_public_update(self, ticket_id: str) -> TimelineEntry | None:
        entries = await self._store.list_timeline(ticket_id, public_only=True)
        return entries[0] if entries else None

    async def track_public(self, ticket_id: str) -> PublicTicketView:
        """Sanitised projection for anonymous tracking.

        No reporter phone or name, only public timeline entries.
        """
        ticket = await self._load(ticket_id)
        entries = await self._store.list_timeline(ticket.id, public_only=True)
        return PublicTicketView(
            id=ticket.id,
            category=ticket.category,
            category_text=category_label(ticket.category),
            subcategory=ticket.subcategory,
            location=ticket.location,
            status=ticket.status,
            status_text=status_label(ticket.status),
            urgency=ticket.urgency,
            assigned_to=agency_names(ticket.assigned_dinas),
            created_at=ticket.created_at,
            updated_at=ticket.updated_at,
            resolved_at=ticket.resolved_at,
            resolution_photo_before=ticket.resolution_photo_before,
            resolution_photo_after=ticket.resolution_photo_after,
            rating=ticket.rating,
            feedback=ticket.feedback,
            rated_at=ticket.rated_at,
            timeline=[
                PublicTimelineItem(time=e.created_at, message=e.message, action=e.action)
                for e in entries
            ],
        )

    async def list_tickets(
        self, principal: StaffPrincipal, query: TicketQuery
    ) -> tuple[list[Ticket], int]:
        """Paginated listing, scoped to the principal's agency unless admin."""
        query.agency = principal.agency_filter
        return await self._store.list_tickets(query)

    async def map_points(self, principal: StaffPrincipal, query: TicketQuery) -> list[MapPoint]:
        """Coordinate-bearing tickets for the map, newest first."""
        query.agency = principal.agency_filter
        query.with_coordinates = True
        query.limit = None
        tickets, _ = await self._store.list_tickets(query)
        return [
            MapPoint(
                id=t.id,
                lat=t.address_lat,
                lng=t.address_lng,
                category=t.category,
                status=t.status,
                urgency=t.urgency,
                location=t.location,
                description=t.description,
                created_at=t.created_at,
            )
            for t in tickets
            if t.address_lat is not None and t.address_lng is not None
        ]

"""Citizen rating, gated by a one-time code sent to the reporter.

Per ticket the OTP moves ``none -> issued(code, expiry) -> consumed |
expired``.  A new code may be requested once the cooldown has elapsed
since the previous issue; it replaces the old one, which then no longer
verifies.  The issue instant is derived from the stored expiry
(``expiry - validity``), so no extra column is needed.
"""

from __future__ import annotations

import hmac
import math
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

import structlog

from src.models.enums import NotificationChannel, TicketStatus, TimelineAction
from src.models.ticket import Ticket, TimelineEntry, utcnow
from src.services.cache import invalidate_ticket_caches
from src.services.errors import CooldownActive, NotFound, ValidationFailed
from src.services.phone import mask_phone
from src.services.templates import MessageKind

if TYPE_CHECKING:
    from src.services.cache import CacheManager
    from src.services.notifications import NotificationDispatcher
    from src.services.store import TicketStore

logger = structlog.get_logger(__name__)


def generate_otp() -> str:
    """Six-digit numeric code, never starting with zero."""
    return str(100_000 + secrets.randbelow(900_000))


def coerce_rating(value: Any) -> int | None:
    """Return *value* as an int in 1-5, or *None* if it is not one.

    Integral floats (``4.0``) are accepted; ``3.5``, booleans and
    strings are not.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, float):
        if not value.is_integer():
            return None
        value = int(value)
    if not isinstance(value, int):
        return None
    return value if 1 <= value <= 5 else None


@dataclass(slots=True)
class OtpIssued:
    masked_phone: str
    expires_at: datetime
    delivered: bool

    @property
    def message(self) -> str:
        return f"Kode OTP telah dikirim ke {self.masked_phone}"


class RatingService:
    """Issue rating OTPs and record ratings.

    Parameters
    ----------
    store, dispatcher, cache:
        Shared collaborators (see :class:`~src.services.tickets.TicketService`).
    otp_channel:
        Channel the code is sent over.
    validity_minutes, cooldown_seconds:
        Code lifetime and the minimum gap between two issues.
    feedback_max_length:
        Cap on the free-text feedback.
    otp_factory, clock:
        Injectable code generator and time source.
    """

    __slots__ = (
        "_cache",
        "_clock",
        "_cooldown",
        "_dispatcher",
        "_feedback_max",
        "_otp_channel",
        "_otp_factory",
        "_store",
        "_validity",
    )

    def __init__(
        self,
        store: TicketStore,
        dispatcher: NotificationDispatcher,
        *,
        cache: CacheManager | None = None,
        otp_channel: NotificationChannel = NotificationChannel.SMS,
        validity_minutes: int = 30,
        cooldown_seconds: int = 60,
        feedback_max_length: int = 1000,
        otp_factory: Callable[[], str] = generate_otp,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._cache = cache
        self._otp_channel = otp_channel
        self._validity = timedelta(minutes=validity_minutes)
        self._cooldown = timedelta(seconds=cooldown_seconds)
        self._feedback_max = feedback_max_length
        self._otp_factory = otp_factory
        self._clock = clock

    async def _load_rateable(self, ticket_id: str) -> Ticket:
        ticket = await self._store.get_ticket(ticket_id.strip().upper())
        if ticket is None:
            raise NotFound()
        if ticket.status is not TicketStatus.RESOLVED:
            raise ValidationFailed(
                "Laporan belum selesai ditangani, belum dapat dinilai", code="NOT_RESOLVED"
            )
        if ticket.rating is not None:
            raise ValidationFailed("Laporan ini sudah dinilai", code="ALREADY_RATED")
        return ticket

    def cooldown_remaining(self, ticket: Ticket) -> int:
        """Whole seconds until a new OTP may be issued (0 if allowed now)."""
        if ticket.rating_otp_expires_at is None:
            return 0
        issued_at = ticket.rating_otp_expires_at - self._validity
        remaining = (issued_at + self._cooldown - self._clock()).total_seconds()
        return max(0, math.ceil(remaining))

    async def request_otp(self, ticket_id: str) -> OtpIssued:
        """Issue a fresh code and send it to the reporter.

        The code is stored before it is sent; a failed send is reported
        through ``delivered`` and the code stays valid.

        Raises
        ------
        NotFound, ValidationFailed
        CooldownActive
            When the previous code was issued less than the cooldown ago.
        """
        ticket = await self._load_rateable(ticket_id)
        wait = self.cooldown_remaining(ticket)
        if wait > 0:
            raise CooldownActive(wait)

        otp = self._otp_factory()
        expires_at = self._clock() + self._validity
        await self._store.update_ticket(
            ticket.id, {"rating_otp": otp, "rating_otp_expires_at": expires_at}
        )
        await invalidate_ticket_caches(self._cache, ticket.id)
        delivery = await self._dispatcher.notify(
            MessageKind.RATING_OTP,
            self._otp_channel,
            ticket.reporter_phone,
            ticket_id=ticket.id,
            otp=otp,
            validity_minutes=str(int(self._validity.total_seconds() // 60)),
        )
        masked = mask_phone(ticket.reporter_phone)
        logger.info(
            "rating.otp_issued",
            ticket_id=ticket.id,
            to=masked,
            delivered=delivery.success,
        )
        return OtpIssued(masked, expires_at, delivery.success)

    async def submit_rating(
        self,
        ticket_id: str,
        rating: Any,
        otp: str | None,
        feedback: str | None = None,
    ) -> Ticket:
        """Verify *otp* and record the rating.

        Checks run in a fixed order so that each failure has its own
        code: ``NOT_FOUND``, ``NOT_RESOLVED``, ``ALREADY_RATED``,
        ``INVALID_RATING``, ``FEEDBACK_TOO_LONG``, ``OTP_REQUIRED``,
        ``INVALID_OTP``, ``OTP_EXPIRED``.
        """
        ticket = await self._load_rateable(ticket_id)

        score = coerce_rating(rating)
        if score is None:
            raise ValidationFailed("Rating harus berupa angka bulat 1-5", code="INVALID_RATING")

        feedback = (feedback or "").strip() or None
        if feedback is not None and len(feedback) > self._feedback_max:
            raise ValidationFailed(
                f"Masukan maksimal {self._feedback_max} karakter", code="FEEDBACK_TOO_LONG"
            )

        code = (otp or "").strip()
        if not code:
            raise ValidationFailed("Kode OTP wajib diisi", code="OTP_REQUIRED")
        stored = ticket.rating_otp
        if stored is None or not hmac.compare_digest(code.encode(), stored.encode()):
            raise ValidationFailed("Kode OTP tidak valid", code="INVALID_OTP")
        if ticket.rating_otp_expires_at is None or self._clock() >= ticket.rating_otp_expires_at:
            raise ValidationFailed(
                "Kode OTP sudah kedaluwarsa. Silakan minta kode baru", code="OTP_EXPIRED"
            )

        updated = await self._store.update_ticket(
            ticket.id,
            {
                "rating": score,
                "feedback": feedback,
                "rated_at": self._clock(),
                "rating_otp": None,
                "rating_otp_expires_at": None,
            },
        )
        if updated is None:
            raise NotFound()

        message = f"Pelapor memberikan rating {score}/5"
        if feedback:
            message += f': "{feedback}"'
        try:
            await self._store.insert_timeline(
                TimelineEntry(
                    ticket_id=ticket.id,
                    action=TimelineAction.NOTE,
                    message=message,
                    created_by="reporter",
                    is_public=True,
                    metadata={"rating": score},
                    created_at=self._clock(),
                )
            )
        except Exception:
            logger.error("rating.timeline_write_failed", ticket_id=ticket.id, exc_info=True)

        await invalidate_ticket_caches(self._cache, ticket.id)
        logger.info("rating.submitted", ticket_id=ticket.id, rating=score)
        return updated

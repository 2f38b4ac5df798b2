"""Inbound SMS commands.

The only command is ``CEK <TICKET-ID>`` (case-insensitive).  The sender
must be the ticket's reporter; the reply carries the status and the
latest public timeline message.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Final

import structlog

from src.models.enums import NotificationChannel
from src.services.phone import mask_phone, normalize_phone
from src.services.routing import category_label, status_label
from src.services.templates import MessageKind, render

if TYPE_CHECKING:
    from src.services.notifications import NotificationDispatcher
    from src.services.tickets import TicketService

logger = structlog.get_logger(__name__)

UNKNOWN_COMMAND: Final[str] = (
    "Maaf, perintah tidak dikenali. Kirim CEK [NO_TIKET] untuk cek status laporan. "
    "Contoh: CEK SP-20251203-0001"
)
NOT_REPORTER: Final[str] = "Maaf, Anda tidak memiliki akses ke tiket ini."
NO_UPDATE: Final[str] = "Belum ada update"
SYSTEM_ERROR: Final[str] = "Maaf, terjadi kesalahan sistem. Silakan coba lagi nanti."


def parse_check_command(body: str, prefix: str = "SP") -> str | None:
    """Return the ticket ID of a ``CEK <ID>`` message, upper-cased."""
    pattern = re.compile(rf"\bCEK\s+({re.escape(prefix)}-\d{{8}}-\d{{4}})\b", re.IGNORECASE)
    match = pattern.search(body or "")
    return match.group(1).upper() if match else None


class SmsCommandService:
    """Answer ``CEK`` queries and log every inbound message."""

    __slots__ = ("_dispatcher", "_prefix", "_tickets")

    def __init__(
        self,
        tickets: TicketService,
        dispatcher: NotificationDispatcher,
        ticket_prefix: str = "SP",
    ) -> None:
        self._tickets = tickets
        self._dispatcher = dispatcher
        self._prefix = ticket_prefix

    async def reply(self, sender: str, body: str) -> str:
        """Text to send back to *sender*.  Never raises."""
        text = (body or "").strip()
        try:
            await self._dispatcher.record_inbound(sender, text)
            ticket_id = parse_check_command(text, self._prefix)
            if ticket_id is None:
                return UNKNOWN_COMMAND

            ticket = await self._tickets.find(ticket_id)
            if ticket is None:
                return f"Tiket {ticket_id} tidak ditemukan. Pastikan nomor tiket benar."

            try:
                same_sender = normalize_phone(sender) == ticket.reporter_phone
            except ValueError:
                same_sender = False
            if not same_sender:
                logger.warning("sms.tracking_denied", ticket_id=ticket_id, sender=mask_phone(sender))
                return NOT_REPORTER

            latest = await self._tickets.latest_public_update(ticket.id)
            return render(
                MessageKind.TRACKING_REPLY,
                NotificationChannel.SMS,
                ticket_id=ticket.id,
                category=category_label(ticket.category),
                status=status_label(ticket.status),
                last_update=latest.message if latest else NO_UPDATE,
                track_url=self._tickets.track_url(ticket.id),
            )
        except Exception:
            logger.error("sms.command_failed", exc_info=True)
            return SYSTEM_ERROR

"""Outbound message templates.

Every citizen-facing message body is produced here, by pure functions
keyed on :class:`MessageKind` and the delivery channel.  WhatsApp
bodies use WhatsApp markup (``*bold*``, ``_italic_``); SMS bodies are
plain text prefixed with ``[SatuPintu]``.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Final

from src.models.enums import NotificationChannel

_WA_FOOTER: Final[str] = "_SatuPintu - Layanan Pengaduan Terpadu Kota Bandung_"


class MessageKind(StrEnum):
    __slots__ = ()

    TICKET_CREATED = "ticket_created"
    STATUS_UPDATE = "status_update"
    TICKET_RESOLVED = "ticket_resolved"
    EMERGENCY_CREATED = "emergency_created"
    RATING_OTP = "rating_otp"
    TRACKING_REPLY = "tracking_reply"


def _greeting(name: str | None) -> str:
    return f"Halo {name}," if name else "Halo,"


# ---------------------------------------------------------------------------
# WhatsApp
# ---------------------------------------------------------------------------


def wa_ticket_created(ticket_id: str, category: str, name: str | None, track_url: str) -> str:
    return (
        f"{_greeting(name)}\n\n"
        "✅ *Laporan Anda telah diterima*\n\n"
        f"📋 No. Tiket: *{ticket_id}*\n"
        f"📁 Kategori: {category}\n\n"
        "Laporan Anda akan segera ditindaklanjuti oleh dinas terkait.\n\n"
        f"🔍 Lacak status laporan:\n{track_url}\n\n"
        f"{_WA_FOOTER}"
    )


def wa_status_update(
    ticket_id: str,
    status: str,
    name: str | None,
    note: str | None,
    track_url: str,
) -> str:
    lines = [
        f"{_greeting(name)}\n",
        "🔔 *Update Laporan Anda*\n",
        f"📋 No. Tiket: *{ticket_id}*",
        f"📊 Status: *{status}*",
    ]
    if note:
        lines.append(f"📝 Keterangan: {note}")
    lines.append(f"\n🔍 Detail laporan:\n{track_url}\n")
    lines.append(_WA_FOOTER)
    return "\n".join(lines)


def wa_ticket_resolved(ticket_id: str, name: str | None, track_url: str) -> str:
    return (
        f"{_greeting(name)}\n\n"
        "🎉 *Laporan Anda telah selesai ditangani*\n\n"
        f"📋 No. Tiket: *{ticket_id}*\n\n"
        "Terima kasih telah melapor. Mohon berikan penilaian Anda terhadap "
        "penanganan laporan ini melalui tautan berikut:\n"
        f"⭐ {track_url}\n\n"
        f"{_WA_FOOTER}"
    )


def wa_emergency_created(ticket_id: str, emergency_type: str, location: str, name: str | None) -> str:
    return (
        f"{_greeting(name)}\n\n"
        "🚨 *LAPORAN DARURAT DITERIMA*\n\n"
        f"📋 No. Tiket: *{ticket_id}*\n"
        f"⚠️ Jenis: {emergency_type}\n"
        f"📍 Lokasi: {location}\n\n"
        "Panggilan Anda sedang disambungkan ke layanan darurat 112. "
        "Tetap tenang dan ikuti arahan petugas.\n\n"
        f"{_WA_FOOTER}"
    )


def wa_rating_otp(otp: str, ticket_id: str, validity_minutes: str) -> str:
    return (
        f"🔐 Kode OTP penilaian laporan *{ticket_id}*: *{otp}*\n\n"
        f"Kode berlaku selama {validity_minutes} menit. Jangan berikan kode ini kepada siapa pun.\n\n"
        f"{_WA_FOOTER}"
    )


# ---------------------------------------------------------------------------
# SMS
# ---------------------------------------------------------------------------


def sms_ticket_created(ticket_id: str, category: str, track_url: str) -> str:
    return (
        "[SatuPintu] Laporan Anda diterima.\n\n"
        f"No. Tiket: {ticket_id}\n"
        f"Kategori: {category}\n\n"
        f"Cek status: {track_url}\n\n"
        f"Atau balas SMS: CEK {ticket_id}"
    )


def sms_status_update(ticket_id: str, status: str, note: str | None, track_url: str) -> str:
    body = f"[SatuPintu] Update {ticket_id}\n\nStatus: {status}"
    if note:
        body += f"\nKeterangan: {note}"
    return body + f"\n\nCek detail: {track_url}"


def sms_ticket_resolved(ticket_id: str, track_url: str) -> str:
    return (
        f"[SatuPintu] Laporan {ticket_id} telah selesai ditangani.\n\n"
        f"Mohon berikan penilaian Anda: {track_url}"
    )


def sms_rating_otp(otp: str, ticket_id: str, validity_minutes: str) -> str:
    return (
        f"[SatuPintu] Kode OTP untuk penilaian laporan {ticket_id}: {otp}\n\n"
        f"Berlaku {validity_minutes} menit. Jangan berikan kode ini kepada siapa pun."
    )


def sms_tracking_reply(
    ticket_id: str,
    category: str,
    status: str,
    last_update: str,
    track_url: str,
) -> str:
    return (
        f"[SatuPintu] Status {ticket_id}\n\n"
        f"Kategori: {category}\n"
        f"Status: {status}\n\n"
        f"Update terakhir:\n{last_update}\n\n"
        f"Detail: {track_url}"
    )


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def render(kind: MessageKind, channel: NotificationChannel, **params: str | None) -> str:
    """Render *kind* for *channel*.

    Kinds without a channel-specific variant fall back to the other
    channel's body (e.g. the tracking reply only exists as SMS).

    Raises
    ------
    KeyError
        If a required template parameter is missing.
    """
    p = params
    if channel is NotificationChannel.WHATSAPP:
        match kind:
            case MessageKind.TICKET_CREATED:
                return wa_ticket_created(p["ticket_id"], p["category"], p.get("name"), p["track_url"])
            case MessageKind.STATUS_UPDATE:
                return wa_status_update(
                    p["ticket_id"], p["status"], p.get("name"), p.get("note"), p["track_url"]
                )
            case MessageKind.TICKET_RESOLVED:
                return wa_ticket_resolved(p["ticket_id"], p.get("name"), p["track_url"])
            case MessageKind.EMERGENCY_CREATED:
                return wa_emergency_created(
                    p["ticket_id"], p["emergency_type"], p["location"], p.get("name")
                )
            case MessageKind.RATING_OTP:
                return wa_rating_otp(p["otp"], p["ticket_id"], p["validity_minutes"])

    match kind:
        case MessageKind.TICKET_CREATED:
            return sms_ticket_created(p["ticket_id"], p["category"], p["track_url"])
        case MessageKind.STATUS_UPDATE:
            return sms_status_update(p["ticket_id"], p["status"], p.get("note"), p["track_url"])
        case MessageKind.TICKET_RESOLVED:
            return sms_ticket_resolved(p["ticket_id"], p["track_url"])
        case MessageKind.RATING_OTP:
            return sms_rating_otp(p["otp"], p["ticket_id"], p["validity_minutes"])
        case MessageKind.TRACKING_REPLY:
            return sms_tracking_reply(
                p["ticket_id"], p["category"], p["status"], p["last_update"], p["track_url"]
            )
        case MessageKind.EMERGENCY_CREATED:
            return (
                f"[SatuPintu] DARURAT {p['emergency_type']} dicatat: {p['ticket_id']}. "
                f"Lokasi: {p['location']}."
            )
    raise TypeError(f"Unsupported message kind: {kind}")

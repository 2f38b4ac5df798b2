"""Voice intake: Vapi tool calls and recorded Twilio calls.

Everything here ends in words a caller can hear.  No exception escapes
:meth:`VoiceAgentService.handle_tool_call` or
:meth:`VoiceAgentService.process_recording`: a dropped phone call
cannot be recovered, so every failure becomes an apologetic sentence.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Final

import httpx
import structlog

from src.models.complaint import NewTicket
from src.models.enums import IntakeChannel, NotificationChannel, TicketUrgency
from src.services.errors import SatuPintuError, ValidationFailed
from src.services.routing import agency_names, coerce_category, coerce_urgency
from src.services.speech import format_address_for_speech, format_ticket_id_for_speech
from src.services.tickets import MISSING_FIELDS_MESSAGE
from src.services.twiml import Record, Say, build_response, say_and_hangup
from src.services.vapi import ToolCall, tool_error, tool_result

if TYPE_CHECKING:
    from src.services.address import AddressResolver
    from src.services.classifier import ComplaintClassifier
    from src.services.tickets import TicketService

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Spoken texts
# ---------------------------------------------------------------------------

GREETING: Final[str] = (
    "Selamat datang di Satu Pintu, layanan pengaduan terpadu Kota Bandung. "
    "Silakan sampaikan keluhan Anda setelah bunyi beep. "
    "Tekan tombol pagar jika sudah selesai."
)
SYSTEM_ERROR: Final[str] = "Maaf, terjadi kesalahan sistem. Silakan coba lagi nanti."
TOOL_SYSTEM_ERROR: Final[str] = "Maaf, terjadi kesalahan sistem. Silakan coba lagi."
RECORDING_ERROR: Final[str] = (
    "Maaf, kami kesulitan memproses keluhan Anda. "
    "Silakan coba lagi atau hubungi 112 untuk keadaan darurat."
)
CREATE_FAILED: Final[str] = (
    "Maaf, terjadi kesalahan saat membuat laporan. "
    "Silakan coba lagi atau hubungi 112 untuk keadaan darurat."
)
INVALID_PHONE: Final[str] = (
    "Maaf, nomor telepon tersebut tidak valid. Bisa disebutkan ulang nomor WhatsApp Anda?"
)
ADDRESS_MISSING: Final[str] = "Maaf, saya tidak mendengar alamatnya. Bisa diulangi?"
EMERGENCY_FAILED: Final[str] = (
    "Laporan darurat gagal dicatat, tapi saya akan tetap menyambungkan Anda ke layanan darurat."
)
ANONYMOUS_REPORTER: Final[str] = "Warga Anonim"


def _param(params: dict[str, Any], key: str) -> str:
    value = params.get(key)
    return value.strip() if isinstance(value, str) else ""


def _dispatch_sentence(urgency: TicketUrgency, agencies: list[str], *, via_phone: bool) -> str:
    names = " dan ".join(agency_names(agencies))
    if urgency is TicketUrgency.CRITICAL:
        lead = "Ini adalah laporan darurat dan akan segera ditindaklanjuti." if via_phone else (
            "Ini adalah laporan darurat."
        )
        return f"{lead} {names} sedang dikirim ke lokasi."
    return f"Laporan akan diteruskan ke {names} untuk ditindaklanjuti."


class RecordingClient:
    """Downloads Twilio call recordings as MP3."""

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        timeout: float = 20.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(
            timeout=timeout, auth=(account_sid, auth_token), follow_redirects=True
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def fetch(self, recording_url: str) -> bytes | None:
        """Return the MP3 bytes, or *None* if Twilio does not serve them."""
        try:
            response = await self._client.get(f"{recording_url}.mp3")
        except httpx.HTTPError as exc:
            logger.warning("voice.recording_fetch_failed", error=str(exc))
            return None
        if response.status_code != 200:
            logger.warning("voice.recording_unavailable", status=response.status_code)
            return None
        return response.content


class VoiceAgentService:
    """Turns voice-channel input into tickets and spoken replies.

    Parameters
    ----------
    tickets:
        Lifecycle manager that creates the tickets.
    classifier:
        Complaint classifier for recorded calls.
    resolver:
        Address resolver for ``validateAddress``; when *None* every
        address is echoed back as accepted.
    recordings:
        Recording downloader; when *None* only the transcription
        fallback is available.
    process_url:
        Callback URL Twilio posts the finished recording to.
    record_max_seconds:
        Upper bound on a recorded complaint.
    """

    __slots__ = (
        "_classifier",
        "_process_url",
        "_record_max",
        "_recordings",
        "_resolver",
        "_tickets",
    )

    def __init__(
        self,
        tickets: TicketService,
        classifier: ComplaintClassifier,
        *,
        resolver: AddressResolver | None = None,
        recordings: RecordingClient | None = None,
        process_url: str = "/api/v1/voice/process",
        record_max_seconds: int = 120,
    ) -> None:
        self._tickets = tickets
        self._classifier = classifier
        self._resolver = resolver
        self._recordings = recordings
        self._process_url = process_url
        self._record_max = record_max_seconds

    # -- Vapi tool calls ----------------------------------------------------

    async def handle_tool_call(
        self,
        call: ToolCall,
        *,
        customer_phone: str | None = None,
        call_sid: str | None = None,
    ) -> dict[str, Any]:
        """Run one tool call and build the Vapi results envelope."""
        log = logger.bind(tool=call.name, tool_call_id=call.tool_call_id)
        log.info("voice.tool_call")
        try:
            match call.name:
                case "validateAddress":
                    text = await self.validate_address(_param(call.params, "address"))
                    return tool_result(call.tool_call_id, call.name, text)
                case "createTicket":
                    return await self._create_ticket(call, customer_phone, call_sid)
                case "logEmergency":
                    text = await self.log_emergency(call.params, customer_phone, call_sid)
                    return tool_result(call.tool_call_id, call.name, text)
                case _:
                    log.warning("voice.unknown_tool")
                    return tool_error(call.tool_call_id, call.name, f"Unknown function: {call.name}")
        except Exception:
            log.error("voice.tool_call_failed", exc_info=True)
            return tool_error(call.tool_call_id, call.name, TOOL_SYSTEM_ERROR)

    async def validate_address(self, address: str) -> str:
        if not address:
            return ADDRESS_MISSING
        if self._resolver is None:
            return f"Alamat berhasil divalidasi: {address}, Kota Bandung, Jawa Barat"

        resolution = (await self._resolver.resolve(address)).value
        if not resolution.in_coverage:
            text = (
                f"Mohon maaf, {format_address_for_speech(address)} sepertinya berada di luar "
                "wilayah Kota Bandung. Bisa dipastikan kembali lokasinya?"
            )
        elif resolution.needs_clarification and resolution.clarification_question:
            text = (
                f"Baik, {format_address_for_speech(address)}. "
                f"{resolution.clarification_question}"
            )
        else:
            spoken = format_address_for_speech(resolution.formatted_address or address)
            text = f"Alamat berhasil divalidasi: {spoken}"
        return text

    async def _create_ticket(
        self, call: ToolCall, customer_phone: str | None, call_sid: str | None
    ) -> dict[str, Any]:
        params = call.params
        category = coerce_category(params.get("category"))
        if category is None:
            return tool_result(call.tool_call_id, call.name, MISSING_FIELDS_MESSAGE)

        description = _param(params, "description")
        new = NewTicket(
            category=category,
            subcategory=_param(params, "subcategory") or None,
            description=description,
            reporter_name=_param(params, "reporterName"),
            reporter_phone=_param(params, "reporterPhone") or (customer_phone or ""),
            address=_param(params, "address"),
            urgency=coerce_urgency(params.get("urgency")),
            channel=IntakeChannel.VOICE_AI,
            call_sid=call_sid,
            transcription=description or None,
        )
        try:
            created = await self._tickets.create(new)
        except ValidationFailed as exc:
            text = INVALID_PHONE if exc.code == "INVALID_PHONE" else exc.message
            return tool_result(call.tool_call_id, call.name, text)
        except SatuPintuError:
            logger.error("voice.create_ticket_failed", exc_info=True)
            return tool_error(call.tool_call_id, call.name, CREATE_FAILED)

        ticket = created.ticket
        text = (
            f"Terima kasih {ticket.reporter_name}. Laporan Anda telah berhasil dicatat dengan "
            f"nomor tiket {format_ticket_id_for_speech(ticket.id)}. "
            f"{_dispatch_sentence(ticket.urgency, ticket.assigned_dinas, via_phone=True)} "
            "Anda akan menerima WhatsApp konfirmasi dengan link untuk melacak status laporan. "
            "Terima kasih telah menggunakan SatuPintu."
        )
        return tool_result(
            call.tool_call_id,
            call.name,
            text,
            ticketId=ticket.id,
            trackUrl=created.track_url,
        )

    async def log_emergency(
        self,
        params: dict[str, Any],
        customer_phone: str | None,
        call_sid: str | None,
    ) -> str:
        try:
            created = await self._tickets.create_emergency(
                _param(params, "emergencyType"),
                _param(params, "location"),
                _param(params, "situation"),
                reporter_name=_param(params, "reporterName") or None,
                reporter_phone=_param(params, "reporterPhone") or customer_phone,
                call_sid=call_sid,
            )
        except ValidationFailed as exc:
            return exc.message
        except SatuPintuError:
            logger.error("voice.emergency_log_failed", exc_info=True)
            return EMERGENCY_FAILED
        return (
            f"Laporan darurat telah dicatat dengan nomor {created.ticket.id}. "
            "Saya akan segera menyambungkan Anda ke layanan darurat 112."
        )

    # -- recorded calls -----------------------------------------------------

    def incoming_call(self) -> str:
        """Greeting followed by a recording prompt."""
        return build_response(
            Say(GREETING),
            Record(action=self._process_url, max_length=self._record_max),
        )

    async def process_recording(
        self,
        *,
        from_number: str,
        recording_url: str | None,
        transcription: str | None = None,
        call_sid: str | None = None,
    ) -> str:
        """Classify a finished recording, file the ticket and say goodbye.

        Audio is classified natively; if it cannot be downloaded the
        Twilio transcription is classified instead.  With neither the
        caller hears the apology and no ticket is created.
        """
        log = logger.bind(call_sid=call_sid)
        try:
            if not recording_url:
                raise ValueError("no recording url")
            audio = await self._recordings.fetch(recording_url) if self._recordings else None
            if audio is not None:
                result = await self._classifier.classify(
                    transcription, audio=audio, mime_type="audio/mpeg"
                )
            elif transcription and transcription.strip():
                result = await self._classifier.classify(transcription)
            else:
                raise ValueError("no audio or transcription available")

            if result.is_degraded:
                log.warning(
                    "voice.classification_degraded",
                    reason=result.degraded_reason.value if result.degraded_reason else None,
                )
            complaint = result.value
            created = await self._tickets.create(
                NewTicket(
                    category=complaint.category,
                    subcategory=complaint.subcategory,
                    description=complaint.description,
                    reporter_name=ANONYMOUS_REPORTER,
                    reporter_phone=from_number,
                    address=complaint.location,
                    urgency=complaint.urgency,
                    channel=IntakeChannel.PHONE_RECORDING,
                    call_sid=call_sid,
                    transcription=transcription or complaint.description,
                ),
                notify_via=NotificationChannel.SMS,
            )
        except Exception:
            log.error("voice.recording_processing_failed", exc_info=True)
            return say_and_hangup(RECORDING_ERROR)

        ticket = created.ticket
        text = " ".join(
            [
                f"Baik, {complaint.spoken_summary}",
                "Laporan Anda sudah dicatat dengan nomor tiket "
                f"{format_ticket_id_for_speech(ticket.id)}.",
                _dispatch_sentence(ticket.urgency, ticket.assigned_dinas, via_phone=False),
                "Anda akan menerima S M S konfirmasi dengan link untuk melacak status laporan.",
                "Terima kasih telah menggunakan Satu Pintu.",
            ]
        )
        log.info("voice.recording_ticket_created", ticket_id=ticket.id)
        return say_and_hangup(text)

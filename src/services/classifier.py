"""Complaint classifier: raw text or audio -> :class:`AnalyzedComplaint`.

One instruction prompt serves both input kinds.  Audio is attached as
an inline part of the same Gemini request, so the recorded-call path
and the text path are parsed by identical code.

The classifier never raises.  It sits upstream of ticket creation in a
live phone call, so every failure degrades to a routable default and is
reported through :class:`~src.models.result.Result`.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Final

import structlog

from src.models.complaint import AnalyzedComplaint
from src.models.enums import DegradedReason, TicketCategory, TicketUrgency
from src.models.result import Result
from src.services.llm import LLMOutputError, extract_json
from src.services.routing import agencies_for, coerce_category, coerce_urgency

if TYPE_CHECKING:
    from src.services.llm import LLMService

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULT_SUBCATEGORY: Final[str] = "Umum"
LOCATION_NOT_STATED: Final[str] = "Lokasi tidak disebutkan"
AUDIO_DESCRIPTION: Final[str] = "Keluhan disampaikan melalui rekaman telepon"

_FAILURE_SUMMARY: Final[str] = (
    "Keluhan Anda telah dicatat dan akan diteruskan ke petugas terkait."
)
_AUDIO_FAILURE_SUMMARY: Final[str] = (
    "Maaf, kami kesulitan memahami keluhan Anda. Akan diteruskan ke petugas."
)

_REQUIRED_ENUM_FIELDS: Final[frozenset[str]] = frozenset({"category", "urgency"})

CLASSIFIER_PROMPT: Final[str] = """\
Kamu adalah asisten AI untuk SatuPintu, layanan pengaduan terpadu Kota Bandung.
Analisis keluhan warga berikut dan ekstrak informasinya.

KATEGORI (pilih satu):
- EMERGENCY: keadaan darurat yang mengancam nyawa atau harta (kecelakaan, \
kebakaran, kejahatan, kondisi medis darurat, bencana alam)
- INFRASTRUCTURE: kerusakan fasilitas umum (jalan rusak, lampu jalan mati, \
jembatan rusak, drainase tersumbat)
- SANITATION: kebersihan dan lingkungan (sampah menumpuk, got mampet, \
limbah, polusi)
- SOCIAL: masalah sosial (ODGJ, gelandangan, anak terlantar, lansia terlantar)
- OTHER: keluhan yang tidak masuk kategori di atas

URGENSI (pilih satu):
- CRITICAL: ancaman langsung terhadap nyawa, perlu respons < 15 menit \
(kebakaran aktif, kecelakaan dengan korban, kejahatan sedang berlangsung)
- HIGH: berpotensi membahayakan, perlu respons < 1 jam \
(pohon tumbang menutup jalan, banjir, kabel listrik putus)
- MEDIUM: mengganggu aktivitas warga, perlu respons < 24 jam \
(jalan berlubang, lampu jalan mati, sampah menumpuk)
- LOW: tidak mendesak, bisa ditangani < 72 jam \
(saran perbaikan, keluhan ringan)

Jawab HANYA dengan objek JSON berikut, tanpa teks lain:
{{
  "category": "EMERGENCY|INFRASTRUCTURE|SANITATION|SOCIAL|OTHER",
  "subcategory": "jenis masalah spesifik, mis. Jalan Rusak",
  "location": "lokasi yang disebutkan pelapor",
  "description": "ringkasan keluhan dalam satu atau dua kalimat",
  "urgency": "CRITICAL|HIGH|MEDIUM|LOW",
  "summary": "kalimat konfirmasi singkat untuk dibacakan ke pelapor"
}}

{input_block}\
"""

_TEXT_INPUT_BLOCK: Final[str] = 'Keluhan warga:\n"""\n{text}\n"""'
_AUDIO_INPUT_BLOCK: Final[str] = (
    "Keluhan warga ada pada rekaman audio terlampir (Bahasa Indonesia atau Sunda)."
)


def build_prompt(text: str | None = None) -> str:
    block = _TEXT_INPUT_BLOCK.format(text=text) if text is not None else _AUDIO_INPUT_BLOCK
    return CLASSIFIER_PROMPT.format(input_block=block)


def _clean_str(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def fallback_complaint(text: str | None, *, audio: bool = False) -> AnalyzedComplaint:
    """Fully-defaulted complaint routed to the admin agency."""
    return AnalyzedComplaint(
        category=TicketCategory.OTHER,
        subcategory=DEFAULT_SUBCATEGORY,
        location=LOCATION_NOT_STATED,
        description=(text or "").strip() or AUDIO_DESCRIPTION,
        urgency=TicketUrgency.MEDIUM,
        assigned_agencies=agencies_for(TicketCategory.OTHER),
        spoken_summary=_AUDIO_FAILURE_SUMMARY if audio else _FAILURE_SUMMARY,
        defaulted_fields=["category", "subcategory", "location", "description", "urgency"],
    )


def complaint_from_payload(data: dict[str, Any], original_text: str | None) -> AnalyzedComplaint:
    """Validate a parsed model payload field by field.

    Unknown or missing values are replaced with defaults and listed in
    ``defaulted_fields``.  Agencies always come from the routing table.
    """
    defaulted: list[str] = []

    category = coerce_category(data.get("category"))
    if category is None:
        category = TicketCategory.OTHER
        defaulted.append("category")

    urgency = coerce_urgency(data.get("urgency"))
    if urgency is None:
        urgency = TicketUrgency.MEDIUM
        defaulted.append("urgency")

    subcategory = _clean_str(data.get("subcategory"))
    if subcategory is None:
        subcategory = DEFAULT_SUBCATEGORY
        defaulted.append("subcategory")

    location = _clean_str(data.get("location"))
    if location is None:
        location = LOCATION_NOT_STATED
        defaulted.append("location")

    description = _clean_str(data.get("description"))
    if description is None:
        description = (original_text or "").strip() or AUDIO_DESCRIPTION
        defaulted.append("description")

    summary = _clean_str(data.get("summary")) or f"Keluhan tentang {subcategory} telah dicatat."

    return AnalyzedComplaint(
        category=category,
        subcategory=subcategory,
        location=location,
        description=description,
        urgency=urgency,
        assigned_agencies=agencies_for(category),
        spoken_summary=summary,
        defaulted_fields=defaulted,
    )


# ---------------------------------------------------------------------------
# ComplaintClassifier
# ---------------------------------------------------------------------------


class ComplaintClassifier:
    """Classify citizen complaints with Gemini.

    Parameters
    ----------
    llm:
        The :class:`LLMService`, or *None* when Vertex AI is not
        configured (every call then degrades immediately).
    """

    __slots__ = ("_llm",)

    def __init__(self, llm: LLMService | None) -> None:
        self._llm = llm

    async def classify(
        self,
        text: str | None = None,
        *,
        audio: bytes | None = None,
        mime_type: str | None = None,
    ) -> Result[AnalyzedComplaint]:
        """Classify a complaint given as *text* or as *audio* bytes.

        Exactly one of *text* / *audio* should be supplied; when both
        are, the audio is classified and the text is used only as the
        description fallback.
        """
        is_audio = audio is not None
        if not is_audio and not (text or "").strip():
            return Result.degraded(
                fallback_complaint(text),
                DegradedReason.LLM_OUTPUT_INVALID,
                "empty complaint text",
            )

        if self._llm is None:
            return Result.degraded(
                fallback_complaint(text, audio=is_audio),
                DegradedReason.LLM_UNAVAILABLE,
                "LLM not configured",
            )

        prompt = build_prompt(None if is_audio else text)
        try:
            raw = await self._llm.generate_json(prompt, audio=audio, mime_type=mime_type)
            data = extract_json(raw)
        except LLMOutputError as exc:
            logger.warning("classifier.output_invalid", error=str(exc), audio=is_audio)
            return Result.degraded(
                fallback_complaint(text, audio=is_audio),
                DegradedReason.LLM_OUTPUT_INVALID,
                str(exc),
            )
        except Exception as exc:
            logger.error("classifier.llm_failed", error=str(exc), audio=is_audio, exc_info=True)
            return Result.degraded(
                fallback_complaint(text, audio=is_audio),
                DegradedReason.LLM_UNAVAILABLE,
                str(exc),
            )

        complaint = complaint_from_payload(data, text)
        logger.info(
            "classifier.classified",
            category=complaint.category.value,
            urgency=complaint.urgency.value,
            defaulted=complaint.defaulted_fields,
            audio=is_audio,
        )
        if _REQUIRED_ENUM_FIELDS.intersection(complaint.defaulted_fields):
            return Result.degraded(
                complaint,
                DegradedReason.LLM_OUTPUT_INVALID,
                f"defaulted: {', '.join(complaint.defaulted_fields)}",
            )
        return Result.ok(complaint)

"""Voice-AI (Vapi) payload handling.

Vapi delivers tool invocations in several shapes depending on the SDK
and server-message version.  :func:`extract_tool_call` normalises all of
them into a :class:`ToolCall`; :func:`tool_result` and
:func:`tool_error` build the ``{"results": [...]}`` envelope Vapi
expects back.  :func:`build_assistant_config` answers
``assistant-request`` events with a transient assistant definition.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Final

UNKNOWN_TOOL_CALL_ID: Final[str] = "unknown"

ASSISTANT_NAME: Final[str] = "SatuPintu Bandung"

FIRST_MESSAGE: Final[str] = (
    "Halo, selamat datang di SatuPintu Bandung. Saya Satu, asisten virtual yang "
    "siap membantu Anda. Ada keluhan atau masalah apa yang ingin dilaporkan hari ini?"
)

_SYSTEM_PROMPT: Final[str] = """\
Kamu adalah "Satu", asisten suara layanan SatuPintu, pusat pengaduan \
terpadu Pemerintah Kota Bandung. Bantu warga melaporkan keluhan layanan \
publik dan infrastruktur kota.

GAYA BICARA
- Tenang, sopan, profesional, dan empatik. Gunakan Bahasa Indonesia yang mudah dipahami.
- Variasikan ungkapan konfirmasi ("Baik", "Siap", "Dicatat", "Dipahami").
- Sebelum tahu nama pelapor gunakan sapaan netral; sesudahnya "Pak"/"Bu" sesuai nama, \
atau tanyakan bila ragu.
- Eja nomor tiket per karakter dan nomor telepon per kelompok empat digit.

ALUR
1. Dengarkan keluhan dan pahami intinya. Tanyakan detail bila belum jelas.
2. Sampaikan ringkasan pemahaman dan minta konfirmasi.
3. Minta nama lengkap pelapor.
4. Nomor WhatsApp pelapor. Nomor penelepon yang terdeteksi: {phone_display}. \
{phone_instruction}
5. Minta lokasi. Patokan atau landmark boleh. Jika terlalu umum (hanya nama jalan \
atau kelurahan), tanyakan patokan terdekat. Gunakan validateAddress untuk memeriksa lokasi.
6. Bacakan ringkasan lengkap dan minta konfirmasi akhir.
7. Panggil createTicket, lalu sampaikan nomor tiket dengan jelas dan informasikan \
bahwa konfirmasi WhatsApp akan dikirim.
8. Tanyakan apakah ada keluhan lain. Jika tidak, ucapkan salam penutup lalu panggil endCall.

KATEGORI
- DARURAT: kecelakaan dengan korban, kebakaran aktif, kejahatan berlangsung, darurat \
medis, bencana. Diteruskan ke Polisi 110, Ambulans 119, Damkar 113.
- INFRA: jalan rusak, lampu jalan/lampu lalu lintas mati, drainase, pipa PDAM, pohon tumbang.
- KEBERSIHAN: sampah menumpuk, got bau, limbah, TPS penuh.
- SOSIAL: ODGJ, anak/lansia terlantar, gelandangan, PKL liar, ketertiban umum.
- LAINNYA: di luar kategori di atas, saran dan pertanyaan umum.

URGENSI
- CRITICAL (< 15 menit): ancaman nyawa atau kejadian darurat berlangsung.
- HIGH (< 1 jam): berpotensi membahayakan atau sudah ada korban/kerugian.
- MEDIUM (< 24 jam): mengganggu aktivitas warga.
- LOW (< 72 jam): keluhan umum atau saran.

DARURAT CRITICAL
Kumpulkan hanya lokasi, jenis kejadian, kondisi saat ini, dan nama bila sempat. \
Panggil logEmergency DULU, lalu langsung transferCall ke layanan darurat 112.

ATURAN
- Jangan membuat tiket sebelum semua informasi lengkap dan dikonfirmasi.
- Jangan menjanjikan waktu penyelesaian tertentu.
- Jika pelapor mengoreksi, akui dan perbaiki tanpa defensif.
- Jika kurang jelas, minta ulang hanya bagian yang tidak terdengar.\
"""

_PHONE_KNOWN: Final[str] = (
    "Tanyakan apakah nomor WhatsApp sama dengan nomor ini atau nomor lain, "
    "lalu konfirmasi nomornya sebelum dipakai sebagai reporterPhone."
)
_PHONE_UNKNOWN: Final[str] = (
    "Minta nomor WhatsApp yang bisa dihubungi dan ulangi untuk konfirmasi."
)


@dataclass(slots=True)
class ToolCall:
    tool_call_id: str
    name: str
    params: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


def _parse_args(args: Any) -> dict[str, Any]:
    """Arguments arrive as a dict or as a JSON-encoded string."""
    if isinstance(args, Mapping):
        return dict(args)
    if isinstance(args, str):
        try:
            parsed = json.loads(args)
        except json.JSONDecodeError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def _call_id(obj: Mapping[str, Any], *keys: str) -> str:
    for key in keys:
        value = obj.get(key)
        if isinstance(value, str) and value:
            return value
    return UNKNOWN_TOOL_CALL_ID


def _from_openai_style(tc: Mapping[str, Any]) -> ToolCall | None:
    fn = tc.get("function")
    if isinstance(fn, Mapping) and fn.get("name"):
        return ToolCall(_call_id(tc, "id"), str(fn["name"]), _parse_args(fn.get("arguments")))
    return None


def _from_vapi_style(tc: Mapping[str, Any]) -> ToolCall | None:
    if tc.get("name"):
        return ToolCall(
            _call_id(tc, "id"),
            str(tc["name"]),
            _parse_args(tc.get("arguments") or tc.get("parameters")),
        )
    return None


def _from_entry(tc: Any) -> ToolCall | None:
    if not isinstance(tc, Mapping):
        return None
    return _from_openai_style(tc) or _from_vapi_style(tc)


def _first(items: Any) -> Any:
    return items[0] if isinstance(items, list) and items else None


def _from_message(msg: Any) -> ToolCall | None:
    if not isinstance(msg, Mapping):
        return None

    fc = msg.get("functionCall")
    if isinstance(fc, Mapping) and fc.get("name"):
        return ToolCall(_call_id(fc, "id"), str(fc["name"]), _parse_args(fc.get("parameters")))

    if (found := _from_entry(_first(msg.get("toolCallList")))) is not None:
        return found

    for item in msg.get("toolWithToolCallList") or []:
        if not isinstance(item, Mapping):
            continue
        nested = item.get("toolCall")
        if (found := _from_entry(nested)) is not None:
            return found
        if item.get("name"):
            return ToolCall(
                _call_id(item, "id"), str(item["name"]), _parse_args(item.get("parameters"))
            )

    for key in ("toolCalls", "tool_calls"):
        if (found := _from_entry(_first(msg.get(key)))) is not None:
            return found

    if isinstance(msg.get("name"), str) and msg["name"]:
        return ToolCall(
            _call_id(msg, "id", "toolCallId"),
            msg["name"],
            _parse_args(msg.get("parameters") or msg.get("arguments")),
        )

    content = msg.get("content")
    if isinstance(content, list):
        for item in content:
            if isinstance(item, Mapping) and item.get("type") in ("tool_call", "function_call"):
                return _from_entry(item)
    return None


def extract_tool_call(payload: Mapping[str, Any]) -> ToolCall | None:
    """Find the first tool invocation in any of the known payload shapes.

    Checked in order: ``message`` (``functionCall``, ``toolCallList``,
    ``toolWithToolCallList``, ``toolCalls``, ``tool_calls``, direct
    ``name``, ``content[]``), each entry of ``messages[]``, then the
    root-level ``toolCalls``, ``tool_calls``, ``functionCall`` and
    ``toolCallList``.  Returns *None* when the payload carries no call.
    """
    if (found := _from_message(payload.get("message"))) is not None:
        return found

    for item in payload.get("messages") or []:
        if (found := _from_message(item)) is not None:
            return found

    for key in ("toolCalls", "tool_calls"):
        if (found := _from_entry(_first(payload.get(key)))) is not None:
            return found

    fc = payload.get("functionCall")
    if isinstance(fc, Mapping) and fc.get("name"):
        return ToolCall(_call_id(fc, "id"), str(fc["name"]), _parse_args(fc.get("parameters")))

    first = _first(payload.get("toolCallList"))
    if isinstance(first, Mapping):
        return _from_vapi_style(first)
    return None


def message_type(payload: Mapping[str, Any]) -> str | None:
    msg = payload.get("message")
    if isinstance(msg, Mapping) and isinstance(msg.get("type"), str):
        return msg["type"]
    return None


def customer_phone(payload: Mapping[str, Any]) -> str | None:
    """Caller number from ``message.call.customer.number``, if present."""
    msg = payload.get("message")
    call = msg.get("call") if isinstance(msg, Mapping) else None
    if not isinstance(call, Mapping):
        call = payload.get("call")
    customer = call.get("customer") if isinstance(call, Mapping) else None
    number = customer.get("number") if isinstance(customer, Mapping) else None
    return number if isinstance(number, str) and number else None


def call_id(payload: Mapping[str, Any]) -> str | None:
    msg = payload.get("message")
    call = msg.get("call") if isinstance(msg, Mapping) else None
    value = call.get("id") if isinstance(call, Mapping) else None
    return value if isinstance(value, str) and value else None


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


def tool_result(tool_call_id: str, name: str, result: str, **extra: Any) -> dict[str, Any]:
    """Envelope for a successful call; *result* is spoken to the caller."""
    return {"results": [{"toolCallId": tool_call_id, "name": name, "result": result, **extra}]}


def tool_error(tool_call_id: str, name: str | None, error: str) -> dict[str, Any]:
    entry: dict[str, Any] = {"toolCallId": tool_call_id, "error": error}
    if name is not None:
        entry["name"] = name
    return {"results": [entry]}


# ---------------------------------------------------------------------------
# Assistant configuration
# ---------------------------------------------------------------------------


def system_prompt(customer_phone: str | None = None) -> str:
    known = bool(customer_phone and len(customer_phone) > 5)
    return _SYSTEM_PROMPT.format(
        phone_display=customer_phone if known else "(tidak terdeteksi)",
        phone_instruction=_PHONE_KNOWN if known else _PHONE_UNKNOWN,
    )


def _function_tool(name: str, description: str, properties: dict, required: list[str]) -> dict:
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": {"type": "object", "properties": properties, "required": required},
        },
    }


def _string(description: str, enum: list[str] | None = None) -> dict[str, Any]:
    schema: dict[str, Any] = {"type": "string", "description": description}
    if enum:
        schema["enum"] = enum
    return schema


def build_assistant_config(
    server_url: str,
    *,
    customer_phone: str | None = None,
    transfer_number: str = "+62112",
) -> dict[str, Any]:
    """Transient assistant definition for ``assistant-request`` events."""
    tools = [
        _function_tool(
            "createTicket",
            "Membuat tiket laporan pengaduan baru. Panggil HANYA setelah semua informasi "
            "lengkap dan dikonfirmasi pelapor.",
            {
                "category": _string(
                    "Kategori keluhan", ["DARURAT", "INFRA", "KEBERSIHAN", "SOSIAL", "LAINNYA"]
                ),
                "subcategory": _string("Subkategori keluhan"),
                "description": _string("Deskripsi lengkap keluhan"),
                "reporterName": _string("Nama lengkap pelapor"),
                "reporterPhone": _string("Nomor telepon pelapor"),
                "address": _string("Alamat atau patokan lokasi masalah"),
                "urgency": _string("Tingkat urgensi", ["CRITICAL", "HIGH", "MEDIUM", "LOW"]),
            },
            ["category", "description", "reporterName", "reporterPhone", "address", "urgency"],
        ),
        _function_tool(
            "logEmergency",
            "Mencatat laporan darurat CRITICAL. Gunakan SEBELUM transfer panggilan ke 112.",
            {
                "emergencyType": _string(
                    "Jenis keadaan darurat",
                    ["KEBAKARAN", "KECELAKAAN", "KEJAHATAN", "MEDIS", "BENCANA"],
                ),
                "location": _string("Lokasi kejadian"),
                "situation": _string("Ringkasan situasi dan kondisi korban jika ada"),
                "reporterName": _string("Nama pelapor"),
                "reporterPhone": _string("Nomor telepon pelapor"),
            },
            ["emergencyType", "location", "situation"],
        ),
        _function_tool(
            "validateAddress",
            "Memeriksa apakah alamat atau patokan berada di Kota Bandung.",
            {"address": _string("Alamat atau patokan yang disebutkan pelapor")},
            ["address"],
        ),
        {
            "type": "transferCall",
            "destinations": [
                {
                    "type": "number",
                    "number": transfer_number,
                    "message": "Menyambungkan panggilan ke layanan darurat.",
                }
            ],
        },
        {"type": "endCall"},
    ]

    return {
        "name": ASSISTANT_NAME,
        "firstMessage": FIRST_MESSAGE,
        "model": {
            "provider": "openai",
            "model": "gpt-4o-mini",
            "temperature": 0.7,
            "messages": [{"role": "system", "content": system_prompt(customer_phone)}],
            "tools": tools,
        },
        "voice": {
            "provider": "11labs",
            "voiceId": "kSzQ9oZF2iytkgNNztpH",
            "model": "eleven_multilingual_v2",
            "language": "id",
            "stability": 0.55,
            "similarityBoost": 0.75,
            "style": 0.3,
            "useSpeakerBoost": True,
            "speed": 0.92,
        },
        "transcriber": {"provider": "google", "model": "gemini-2.0-flash", "language": "id"},
        "server": {"url": server_url, "timeoutSeconds": 30},
        "serverMessages": ["tool-calls", "status-update", "end-of-call-report"],
        "silenceTimeoutSeconds": 30,
        "maxDurationSeconds": 600,
    }

"""Speech formatting for voice replies.

Text-to-speech engines read ``SP-20251203-0001`` as a number salad, so
identifiers and phone numbers are spelled out digit by digit in
Indonesian, and common address abbreviations are expanded.
"""

from __future__ import annotations

import re
from typing import Final

DIGIT_WORDS: Final[dict[str, str]] = {
    "0": "nol",
    "1": "satu",
    "2": "dua",
    "3": "tiga",
    "4": "empat",
    "5": "lima",
    "6": "enam",
    "7": "tujuh",
    "8": "delapan",
    "9": "sembilan",
}

# Ordered: longer / dotted forms before bare ones.
_ADDRESS_EXPANSIONS: Final[tuple[tuple[re.Pattern[str], str], ...]] = (
    (re.compile(r"\bJl\.\s*", re.IGNORECASE), "Jalan "),
    (re.compile(r"\bKel\.\s*", re.IGNORECASE), "Kelurahan "),
    (re.compile(r"\bKec\.\s*", re.IGNORECASE), "Kecamatan "),
    (re.compile(r"\bNo\.\s*", re.IGNORECASE), "Nomor "),
    (re.compile(r"\bRT\b"), "R T"),
    (re.compile(r"\bRW\b"), "R W"),
)

_PHONE_GROUP: Final[int] = 4


def spell_digits(digits: str) -> str:
    """``"0042"`` -> ``"nol nol empat dua"``; non-digits pass through."""
    return " ".join(DIGIT_WORDS.get(ch, ch) for ch in digits)


def format_ticket_id_for_speech(ticket_id: str) -> str:
    """Spell a ticket ID for TTS.

    ``SP-20251203-0001`` becomes
    ``"S P, dua nol dua lima satu dua nol tiga, nol nol nol satu"``.
    """
    spoken: list[str] = []
    for part in ticket_id.split("-"):
        if part.isdigit():
            spoken.append(spell_digits(part))
        else:
            spoken.append(" ".join(part.upper()))
    return ", ".join(spoken)


def format_phone_for_speech(phone: str) -> str:
    """Spell a phone number in groups of four digits separated by pauses."""
    digits = "".join(ch for ch in phone if ch.isdigit())
    groups = [digits[i : i + _PHONE_GROUP] for i in range(0, len(digits), _PHONE_GROUP)]
    return ", ".join(spell_digits(g) for g in groups)


def format_address_for_speech(address: str) -> str:
    for pattern, replacement in _ADDRESS_EXPANSIONS:
        address = pattern.sub(replacement, address)
    return re.sub(r"\s{2,}", " ", address).strip()

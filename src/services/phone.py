"""Indonesian phone-number normalisation and masking.

The canonical form is ``+62`` followed by the subscriber digits.  Every
number is normalised before it is stored, sent to a gateway or logged,
so that an inbound SMS sender can be compared with a ticket's reporter
by plain string equality.
"""

from __future__ import annotations

import re
from typing import Final

_NON_DIGIT_RE: Final[re.Pattern[str]] = re.compile(r"\D")
_MASK_RE: Final[re.Pattern[str]] = re.compile(r"^(\+62)(\d{3})(\d+)(\d{3})$")

MIN_DIGITS: Final[int] = 9
MAX_DIGITS: Final[int] = 15
COUNTRY_CODE: Final[str] = "62"


def normalize_phone(raw: str | None) -> str:
    """Normalise *raw* to ``+62XXXXXXXXX``.

    ``0851-5534-7701``, ``+6285155347701`` and ``85155347701`` all
    yield ``+6285155347701``.

    Raises
    ------
    ValueError
        If *raw* is empty or has fewer than 9 or more than 15 digits.
    """
    digits = _NON_DIGIT_RE.sub("", raw or "")
    if not (MIN_DIGITS <= len(digits) <= MAX_DIGITS):
        raise ValueError(f"Invalid phone number: {raw!r}")

    if digits.startswith("0"):
        digits = COUNTRY_CODE + digits[1:]
    elif not digits.startswith(COUNTRY_CODE):
        digits = COUNTRY_CODE + digits
    return f"+{digits}"


def is_valid_phone(raw: str | None) -> bool:
    try:
        normalize_phone(raw)
    except ValueError:
        return False
    return True


def to_gateway_format(phone: str) -> str:
    """Canonical number without the ``+``, as the WhatsApp gateway expects."""
    return normalize_phone(phone).lstrip("+")


def mask_phone(phone: str) -> str:
    """Reveal the three digits after ``+62`` and the last three.

    ``+6285155347701`` becomes ``+62851****701``.  Numbers that cannot
    be normalised are fully masked.
    """
    try:
        canonical = normalize_phone(phone)
    except ValueError:
        return "****"
    return _MASK_RE.sub(r"\1\2****\4", canonical)

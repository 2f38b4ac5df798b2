"""Routing table: complaint category -> responsible municipal agencies.

Pure, stateless lookups.  Also owns the citizen-facing (Indonesian)
display labels for every ticket enum so that templates, the tracking
page and the voice replies all phrase things identically.

Unknown categories never raise: they route to the admin agency, which
triages anything the classifier could not place.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

from src.models.enums import TicketCategory, TicketStatus, TicketUrgency

# ---------------------------------------------------------------------------
# Agency registry
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Agency:
    """A responsible municipal department (dinas)."""

    id: str
    name: str
    categories: tuple[TicketCategory, ...]


ADMIN_AGENCY_ID: Final[str] = "admin"

_ALL_CATEGORIES: Final[tuple[TicketCategory, ...]] = tuple(TicketCategory)

AGENCIES: Final[dict[str, Agency]] = {
    a.id: a
    for a in (
        Agency("police", "Polisi (110)", (TicketCategory.EMERGENCY,)),
        Agency("ambulance", "Ambulans (119)", (TicketCategory.EMERGENCY,)),
        Agency("fire_department", "Damkar (113)", (TicketCategory.EMERGENCY,)),
        Agency("public_works", "Dinas PUPR", (TicketCategory.INFRASTRUCTURE,)),
        Agency("environment", "Dinas Lingkungan Hidup", (TicketCategory.SANITATION,)),
        Agency("social_affairs", "Dinas Sosial", (TicketCategory.SOCIAL,)),
        Agency("transportation", "Dinas Perhubungan", (TicketCategory.INFRASTRUCTURE,)),
        Agency("health", "Dinas Kesehatan", (TicketCategory.SOCIAL,)),
        Agency("housing", "Dinas Perkim & Pertanahan", (TicketCategory.INFRASTRUCTURE,)),
        Agency("public_order", "Satpol PP", (TicketCategory.SOCIAL,)),
        Agency("education", "Dinas Pendidikan", (TicketCategory.SOCIAL,)),
        Agency("water_utility", "PDAM Tirtawening", (TicketCategory.INFRASTRUCTURE,)),
        Agency("food_agriculture", "Dinas Pangan & Pertanian", (TicketCategory.OTHER,)),
        Agency(ADMIN_AGENCY_ID, "Admin SatuPintu", _ALL_CATEGORIES),
    )
}

CATEGORY_TO_AGENCIES: Final[dict[TicketCategory, tuple[str, ...]]] = {
    TicketCategory.EMERGENCY: ("police", "ambulance", "fire_department"),
    TicketCategory.INFRASTRUCTURE: ("public_works",),
    TicketCategory.SANITATION: ("environment",),
    TicketCategory.SOCIAL: ("social_affairs",),
    TicketCategory.OTHER: (ADMIN_AGENCY_ID,),
}

# Codes spoken by the voice assistant and stored by earlier deployments.
_LEGACY_CATEGORY_CODES: Final[dict[str, TicketCategory]] = {
    "DARURAT": TicketCategory.EMERGENCY,
    "INFRA": TicketCategory.INFRASTRUCTURE,
    "INFRASTRUKTUR": TicketCategory.INFRASTRUCTURE,
    "KEBERSIHAN": TicketCategory.SANITATION,
    "SOSIAL": TicketCategory.SOCIAL,
    "LAINNYA": TicketCategory.OTHER,
}

_LEGACY_URGENCY_CODES: Final[dict[str, TicketUrgency]] = {
    "KRITIS": TicketUrgency.CRITICAL,
    "TINGGI": TicketUrgency.HIGH,
    "SEDANG": TicketUrgency.MEDIUM,
    "RENDAH": TicketUrgency.LOW,
}

# ---------------------------------------------------------------------------
# Labels
# ---------------------------------------------------------------------------

CATEGORY_LABELS: Final[dict[TicketCategory, str]] = {
    TicketCategory.EMERGENCY: "Darurat",
    TicketCategory.INFRASTRUCTURE: "Infrastruktur",
    TicketCategory.SANITATION: "Kebersihan",
    TicketCategory.SOCIAL: "Sosial",
    TicketCategory.OTHER: "Lainnya",
}

STATUS_LABELS: Final[dict[TicketStatus, str]] = {
    TicketStatus.PENDING: "Menunggu",
    TicketStatus.IN_PROGRESS: "Dalam Proses",
    TicketStatus.ESCALATED: "Dieskalasi",
    TicketStatus.RESOLVED: "Selesai",
    TicketStatus.CANCELLED: "Dibatalkan",
}

URGENCY_LABELS: Final[dict[TicketUrgency, str]] = {
    TicketUrgency.CRITICAL: "Kritis",
    TicketUrgency.HIGH: "Tinggi",
    TicketUrgency.MEDIUM: "Sedang",
    TicketUrgency.LOW: "Rendah",
}


# ---------------------------------------------------------------------------
# Coercion
# ---------------------------------------------------------------------------


def coerce_category(value: object) -> TicketCategory | None:
    """Map a canonical or legacy category code to :class:`TicketCategory`.

    Returns *None* for anything unrecognised (including non-strings).
    """
    if isinstance(value, TicketCategory):
        return value
    if not isinstance(value, str):
        return None
    code = value.strip().upper()
    try:
        return TicketCategory(code)
    except ValueError:
        return _LEGACY_CATEGORY_CODES.get(code)


def coerce_urgency(value: object) -> TicketUrgency | None:
    if isinstance(value, TicketUrgency):
        return value
    if not isinstance(value, str):
        return None
    code = value.strip().upper()
    try:
        return TicketUrgency(code)
    except ValueError:
        return _LEGACY_URGENCY_CODES.get(code)


def default_urgency(category: TicketCategory) -> TicketUrgency:
    """Urgency assumed when the intake path did not supply one."""
    if category is TicketCategory.EMERGENCY:
        return TicketUrgency.CRITICAL
    return TicketUrgency.MEDIUM


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def agencies_for(category: object) -> list[str]:
    """Return the ordered, non-empty list of agency IDs for *category*.

    Accepts enum members, canonical codes and legacy codes.  Anything
    unrecognised routes to the admin agency.
    """
    resolved = coerce_category(category)
    if resolved is None:
        return [ADMIN_AGENCY_ID]
    return list(CATEGORY_TO_AGENCIES.get(resolved, (ADMIN_AGENCY_ID,)))


def agency_name(agency_id: str) -> str:
    agency = AGENCIES.get(agency_id)
    return agency.name if agency else agency_id


def agency_names(agency_ids: list[str]) -> list[str]:
    return [agency_name(a) for a in agency_ids]


def category_label(category: TicketCategory | str) -> str:
    resolved = coerce_category(category)
    return CATEGORY_LABELS.get(resolved, str(category)) if resolved else str(category)


def status_label(status: TicketStatus | str) -> str:
    try:
        return STATUS_LABELS[TicketStatus(status)]
    except ValueError:
        return str(status)


def urgency_label(urgency: TicketUrgency | str) -> str:
    resolved = coerce_urgency(urgency)
    return URGENCY_LABELS.get(resolved, str(urgency)) if resolved else str(urgency)

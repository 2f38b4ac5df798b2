"""Reference-data loading for the address resolver.

Loads the Bandung landmark registry from the bundled ``landmarks.json``
file.  Landmarks are the first tier of address resolution: residents
say "depan PVJ" or "perempatan Dago" far more often than a street
address, so these are matched before any geocoder is called.
"""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Final

import structlog

from src.models.address import Landmark

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

_DATA_DIR: Path = Path(__file__).resolve().parent
_LANDMARKS_PATH: Path = _DATA_DIR / "landmarks.json"

# ---------------------------------------------------------------------------
# Clarification suggestions -- keyword in the raw address -> nearby landmarks
# ---------------------------------------------------------------------------

SUGGESTION_KEYWORDS: Final[dict[str, tuple[str, ...]]] = {
    "sukajadi": ("Paris Van Java (PVJ)", "Perempatan Dago - Sukajadi - Pasteur (Simpang Dago)", "RS Hasan Sadikin (RSHS)"),
    "dago": ("Perempatan Dago - Sukajadi - Pasteur (Simpang Dago)", "Jalan Dago (Ir. H. Juanda)", "RS Borromeus"),
    "pasteur": ("Perempatan Cimahi - Pasteur (Simpang Pasteur)", "RS Hasan Sadikin (RSHS)", "Paris Van Java (PVJ)"),
    "cihampelas": ("Cihampelas Walk (Ciwalk)", "Perempatan Cihampelas - Cipaganti", "RS Advent Bandung"),
    "dipatiukur": ("Universitas Padjadjaran (Unpad) Dipatiukur", "Perempatan Sulanjana - Dipatiukur", "Lapangan Gasibu"),
    "braga": ("Jalan Braga", "Perempatan Cikapundung - Braga (Alun-alun)", "Museum Konferensi Asia Afrika"),
    "asia afrika": ("Museum Konferensi Asia Afrika", "Perempatan Cikapundung - Braga (Alun-alun)", "Masjid Raya Bandung"),
    "buah batu": ("Perempatan Buah Batu - Soekarno Hatta",),
    "gatot subroto": ("Trans Studio Mall (TSM)", "Perempatan Gatot Subroto - Soekarno Hatta"),
    "soekarno hatta": ("Perempatan Buah Batu - Soekarno Hatta", "Perempatan Gatot Subroto - Soekarno Hatta", "Terminal Leuwipanjang"),
    "setiabudi": ("Universitas Pendidikan Indonesia (UPI)",),
    "ciumbuleuit": ("Universitas Katolik Parahyangan (Unpar)",),
    "tamansari": ("Kebun Binatang Bandung", "Universitas Islam Bandung (Unisba)", "Bandung Electronic Center (BEC)"),
    "merdeka": ("Bandung Indah Plaza (BIP)", "Balai Kota Bandung", "Kantor Polrestabes Bandung"),
    "diponegoro": ("Gedung Sate (Pemprov Jabar)", "Lapangan Gasibu", "Museum Geologi"),
    "pvj": ("Paris Van Java (PVJ)", "Perempatan Dago - Sukajadi - Pasteur (Simpang Dago)"),
    "lampu merah": ("Perempatan Dago - Sukajadi - Pasteur (Simpang Dago)", "Perempatan Cimahi - Pasteur (Simpang Pasteur)", "Perempatan Simpang Lima"),
    "perempatan": ("Perempatan Dago - Sukajadi - Pasteur (Simpang Dago)", "Perempatan Simpang Lima", "Perempatan Cikapundung - Braga (Alun-alun)"),
    "pasir kaliki": ("23 Paskal Shopping Center", "Istana Plaza (IP)", "Stasiun Bandung (Hall)"),
    "paskal": ("23 Paskal Shopping Center",),
    "andir": ("Istana Plaza (IP)", "Stasiun Bandung (Hall)"),
    "kebon jeruk": ("Stasiun Bandung (Hall)", "23 Paskal Shopping Center"),
    "cicendo": ("Stasiun Bandung (Hall)", "Istana Plaza (IP)"),
}

DEFAULT_SUGGESTIONS: Final[tuple[str, ...]] = (
    "Alun-alun Bandung",
    "Gedung Sate",
    "BIP (Bandung Indah Plaza)",
)

MAX_SUGGESTIONS: Final[int] = 3


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def load_landmarks(path: Path | None = None) -> tuple[Landmark, ...]:
    """Load the landmark registry from a JSON file.

    Parameters
    ----------
    path:
        Path to the JSON file.  Defaults to the bundled ``landmarks.json``.

    Returns
    -------
    tuple[Landmark, ...]
        Parsed landmarks.  Malformed entries are logged and skipped.

    Raises
    ------
    FileNotFoundError
        If the JSON file does not exist.
    json.JSONDecodeError
        If the JSON is malformed.
    """
    file_path = path or _LANDMARKS_PATH

    if not file_path.exists():
        raise FileNotFoundError(f"Landmark data file not found: {file_path}")

    with file_path.open("r", encoding="utf-8") as f:
        raw_landmarks: list[dict] = json.load(f)

    landmarks: list[Landmark] = []
    for raw in raw_landmarks:
        try:
            landmarks.append(_parse_landmark(raw))
        except (KeyError, TypeError, ValueError):
            logger.warning(
                "seed.landmark_parse_error",
                name=raw.get("name", "unknown"),
                exc_info=True,
            )

    logger.info("seed.loaded_landmarks", count=len(landmarks), source=str(file_path))
    return tuple(landmarks)


def _parse_landmark(raw: dict) -> Landmark:
    return Landmark(
        name=raw["name"],
        aliases=tuple(a.lower() for a in raw.get("aliases", [])),
        address=raw["address"],
        lat=float(raw["lat"]),
        lng=float(raw["lng"]),
        category=raw.get("category", "lainnya"),
        kelurahan=raw.get("kelurahan"),
        kecamatan=raw.get("kecamatan"),
        keywords=tuple(k.lower() for k in raw.get("keywords", [])),
    )


@lru_cache(maxsize=1)
def bundled_landmarks() -> tuple[Landmark, ...]:
    """Return the bundled registry, parsed once per process."""
    return load_landmarks()

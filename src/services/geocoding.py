"""Geocoding clients: OpenStreetMap Nominatim and Google Geocoding.

Both clients answer the same question -- "where is this free-text
address?" -- and return a :class:`GeocodeHit` or *None* when the
provider has no match.  Transport failures and provider-side errors
raise :class:`GeocoderUnavailable` so the resolver can tell "no match"
apart from "provider down".
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Final, Protocol

import httpx
import structlog

from src.models.enums import AddressSource

logger = structlog.get_logger(__name__)

_GOOGLE_GEOCODE_URL: Final[str] = "https://maps.googleapis.com/maps/api/geocode/json"

# Fragments that confuse Nominatim: RT/RW, house numbers, relative words.
_SIMPLIFY_PATTERNS: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"\bRT\.?\s*\d+", re.IGNORECASE),
    re.compile(r"\bRW\.?\s*\d+", re.IGNORECASE),
    re.compile(r"\bNo\.?\s*\d+[A-Za-z]?(?:-\d+)?", re.IGNORECASE),
    re.compile(r"\bGg\.?\s*", re.IGNORECASE),
    re.compile(r"\b(?:depan|dekat|samping|belakang|seberang|sebelah)\b", re.IGNORECASE),
)


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------


class GeocoderUnavailable(Exception):
    """The geocoding provider could not be reached or returned an error."""


@dataclass(frozen=True, slots=True)
class BoundingBox:
    south: float
    north: float
    west: float
    east: float

    def contains(self, lat: float, lng: float) -> bool:
        return self.south <= lat <= self.north and self.west <= lng <= self.east


@dataclass(frozen=True, slots=True)
class GeocodeHit:
    formatted_address: str
    lat: float
    lng: float
    source: AddressSource
    partial_match: bool = False


class Geocoder(Protocol):
    async def geocode(self, query: str) -> GeocodeHit | None: ...

    async def close(self) -> None: ...


def simplify_query(query: str) -> str:
    """Drop RT/RW, house numbers and relative words from *query*."""
    simplified = query
    for pattern in _SIMPLIFY_PATTERNS:
        simplified = pattern.sub(" ", simplified)
    simplified = re.sub(r"\s*,\s*(,\s*)+", ", ", simplified)
    simplified = re.sub(r"\s{2,}", " ", simplified)
    return re.sub(r"\s+,", ",", simplified).strip(" ,")


# ---------------------------------------------------------------------------
# Nominatim
# ---------------------------------------------------------------------------


class NominatimGeocoder:
    """OpenStreetMap Nominatim search client.

    Nominatim is strict about literal matches, so a query with no result
    is retried once in simplified form (see :func:`simplify_query`).

    Parameters
    ----------
    base_url:
        Nominatim instance root, e.g. ``https://nominatim.openstreetmap.org``.
    user_agent:
        Identifying User-Agent, required by the public instance's policy.
    timeout:
        Per-request timeout in seconds.
    client:
        Pre-built client (tests inject one with ``httpx.MockTransport``).
    """

    __slots__ = ("_client",)

    def __init__(
        self,
        base_url: str,
        user_agent: str,
        timeout: float = 8.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"User-Agent": user_agent, "Accept": "application/json"},
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _search(self, query: str) -> GeocodeHit | None:
        params = {
            "q": query,
            "format": "json",
            "addressdetails": "1",
            "limit": "1",
            "countrycodes": "id",
        }
        try:
            response = await self._client.get("/search", params=params)
            response.raise_for_status()
            results = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("geocoding.nominatim_failed", error=str(exc))
            raise GeocoderUnavailable(str(exc)) from exc

        if not results:
            return None
        top = results[0]
        return GeocodeHit(
            formatted_address=top.get("display_name", query),
            lat=float(top["lat"]),
            lng=float(top["lon"]),
            source=AddressSource.NOMINATIM,
        )

    async def geocode(self, query: str) -> GeocodeHit | None:
        hit = await self._search(query)
        if hit is not None:
            return hit

        simplified = simplify_query(query)
        if simplified and simplified != query:
            logger.debug("geocoding.nominatim_retry_simplified", query=simplified)
            return await self._search(simplified)
        return None


# ---------------------------------------------------------------------------
# Google
# ---------------------------------------------------------------------------


class GoogleGeocoder:
    """Google Geocoding API client biased to the service area.

    ``partial_match`` results are returned but flagged, so the resolver
    can lower its confidence.
    """

    __slots__ = ("_api_key", "_bounds", "_client")

    def __init__(
        self,
        api_key: str,
        bounds: BoundingBox,
        timeout: float = 8.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._bounds = bounds
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def geocode(self, query: str) -> GeocodeHit | None:
        b = self._bounds
        params = {
            "address": query,
            "key": self._api_key,
            "region": "id",
            "language": "id",
            "bounds": f"{b.south},{b.west}|{b.north},{b.east}",
        }
        try:
            response = await self._client.get(_GOOGLE_GEOCODE_URL, params=params)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("geocoding.google_failed", error=str(exc))
            raise GeocoderUnavailable(str(exc)) from exc

        status = data.get("status")
        if status == "ZERO_RESULTS":
            return None
        if status != "OK" or not data.get("results"):
            logger.warning("geocoding.google_status", status=status)
            raise GeocoderUnavailable(f"Google geocoder status {status}")

        top = data["results"][0]
        location = top["geometry"]["location"]
        return GeocodeHit(
            formatted_address=top.get("formatted_address", query),
            lat=float(location["lat"]),
            lng=float(location["lng"]),
            source=AddressSource.GOOGLE_MAPS,
            partial_match=bool(top.get("partial_match", False)),
        )

"""Tiered address resolution for the Bandung service area.

Resolution order:

1. **Landmark registry** -- fuzzy match against well-known places
   ("depan PVJ", "perempatan Dago").  A hit is authoritative.
2. **Geocoder** -- Google (when a key is configured) or Nominatim, with
   the city appended to the query.  Coverage is the bounding box *or*
   the formatted address mentioning the city.
3. **LLM** -- a plausibility judgement from text alone.
4. **Permissive accept** -- when everything upstream failed the address
   is accepted as-is with low confidence.  Ticket creation is never
   blocked solely because validation infrastructure is down.

Every non-landmark outcome carries nearby-landmark suggestions and a
clarification question the voice assistant can ask.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Final

import structlog

from src.data.seed import DEFAULT_SUGGESTIONS, MAX_SUGGESTIONS, SUGGESTION_KEYWORDS, bundled_landmarks
from src.models.address import AddressResolution, Landmark
from src.models.enums import AddressConfidence, AddressSource, DegradedReason
from src.models.result import Result
from src.services.geocoding import BoundingBox, GeocodeHit, GeocoderUnavailable
from src.services.llm import LLMOutputError, extract_json

if TYPE_CHECKING:
    from src.services.geocoding import Geocoder
    from src.services.llm import LLMService

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MATCH_THRESHOLD: Final[float] = 0.7
_EXACT_SCORE: Final[float] = 1.0
_CONTAINS_SCORE: Final[float] = 0.8
_WORD_OVERLAP_WEIGHT: Final[float] = 0.7
_MIN_WORD_LEN: Final[int] = 3

_PUNCT_RE: Final[re.Pattern[str]] = re.compile(r"[^\w\s]")
_SPACE_RE: Final[re.Pattern[str]] = re.compile(r"\s+")

_FALLBACK_MESSAGE: Final[str] = (
    "Tidak dapat memvalidasi alamat secara otomatis. Alamat akan dicatat apa adanya."
)

_ADDRESS_PROMPT: Final[str] = """\
Nilai apakah alamat berikut masuk akal dan berada di wilayah Kota {city}, Indonesia.

Alamat: "{address}"

Jawab HANYA dengan JSON:
{{
  "isValid": true/false,
  "isInBandung": true/false,
  "formattedAddress": "alamat yang dirapikan",
  "confidence": "high" | "medium" | "low",
  "reason": "alasan singkat"
}}\
"""


# ---------------------------------------------------------------------------
# Fuzzy landmark matching
# ---------------------------------------------------------------------------


def normalize_text(text: str) -> str:
    text = _PUNCT_RE.sub(" ", text.lower().replace("-", " "))
    return _SPACE_RE.sub(" ", text).strip()


def match_score(query: str, candidate: str) -> float:
    """Similarity in [0, 1] between a normalised query and candidate.

    * exact match: 1.0
    * candidate appears in the query as whole words: 0.8
    * otherwise: the share of the candidate's words (3+ chars) found in
      the query, scaled by 0.7
    """
    if not query or not candidate:
        return 0.0
    if query == candidate:
        return _EXACT_SCORE
    if f" {candidate} " in f" {query} ":
        return _CONTAINS_SCORE

    candidate_words = [w for w in candidate.split() if len(w) >= _MIN_WORD_LEN]
    if not candidate_words:
        return 0.0
    query_words = set(query.split())
    matched = sum(1 for w in candidate_words if w in query_words)
    return (matched / len(candidate_words)) * _WORD_OVERLAP_WEIGHT


def find_landmark(
    text: str,
    landmarks: tuple[Landmark, ...] | None = None,
    threshold: float = MATCH_THRESHOLD,
) -> tuple[Landmark, float] | None:
    """Return the best-matching landmark and its score, or *None*.

    Ties are broken in favour of the longer (more specific) alias.
    """
    query = normalize_text(text)
    if not query:
        return None

    best: tuple[float, int, Landmark] | None = None
    for landmark in landmarks if landmarks is not None else bundled_landmarks():
        for candidate in (landmark.name, *landmark.aliases):
            normalized = normalize_text(candidate)
            score = match_score(query, normalized)
            if score < threshold:
                continue
            key = (score, len(normalized))
            if best is None or key > best[:2]:
                best = (score, len(normalized), landmark)

    if best is None:
        return None
    return best[2], best[0]


def suggest_landmarks(text: str, limit: int = MAX_SUGGESTIONS) -> list[str]:
    """Nearby landmark names for a clarification prompt."""
    lowered = text.lower()
    suggestions: list[str] = []
    for keyword, names in SUGGESTION_KEYWORDS.items():
        if keyword not in lowered:
            continue
        for name in names:
            if name not in suggestions:
                suggestions.append(name)
    if not suggestions:
        suggestions = list(DEFAULT_SUGGESTIONS)
    return suggestions[:limit]


def clarification_question(suggestions: list[str]) -> str | None:
    if not suggestions:
        return None
    return (
        "Untuk memastikan lokasi yang tepat, apakah lokasi tersebut dekat dengan "
        f"{suggestions[0]}?"
    )


# ---------------------------------------------------------------------------
# AddressResolver
# ---------------------------------------------------------------------------


class AddressResolver:
    """Resolve free-text addresses against the service area.

    Parameters
    ----------
    bounds:
        Service-area bounding box.
    geocoder:
        Optional geocoding client.  Skipped when *None*.
    llm:
        Optional LLM service for the plausibility fallback.
    city:
        Service city name, appended to geocoder queries.
    landmarks:
        Landmark registry; defaults to the bundled one.
    """

    __slots__ = ("_bounds", "_city", "_geocoder", "_landmarks", "_llm")

    def __init__(
        self,
        bounds: BoundingBox,
        geocoder: Geocoder | None = None,
        llm: LLMService | None = None,
        city: str = "Bandung",
        landmarks: tuple[Landmark, ...] | None = None,
    ) -> None:
        self._bounds = bounds
        self._geocoder = geocoder
        self._llm = llm
        self._city = city
        self._landmarks = landmarks

    # -- helpers ------------------------------------------------------------

    def _mentions_city(self, text: str) -> bool:
        lowered = text.lower()
        return self._city.lower() in lowered or (
            self._city.lower() == "bandung" and "bdg" in lowered.split()
        )

    def with_city(self, text: str) -> str:
        """Append ``, <city>, Indonesia`` unless the city is already named."""
        if self._mentions_city(text):
            return text
        return f"{text}, {self._city}, Indonesia"

    def _with_suggestions(self, resolution: AddressResolution) -> AddressResolution:
        suggestions = suggest_landmarks(resolution.raw_address)
        return resolution.model_copy(
            update={
                "needs_clarification": True,
                "suggestions": suggestions,
                "clarification_question": clarification_question(suggestions),
            }
        )

    # -- tiers --------------------------------------------------------------

    def _from_landmark(self, raw: str) -> AddressResolution | None:
        found = find_landmark(raw, self._landmarks)
        if found is None:
            return None
        landmark, score = found
        logger.info("address.landmark_hit", landmark=landmark.name, score=round(score, 2))
        return AddressResolution(
            valid=True,
            in_coverage=True,
            formatted_address=f"{landmark.name}, {landmark.address}",
            lat=landmark.lat,
            lng=landmark.lng,
            confidence=AddressConfidence.HIGH,
            source=AddressSource.LANDMARK,
            raw_address=raw,
            landmark_name=landmark.name,
            message=f"Lokasi ditemukan: {landmark.name}",
        )

    def _from_geocode(self, raw: str, hit: GeocodeHit) -> AddressResolution:
        in_box = self._bounds.contains(hit.lat, hit.lng)
        in_coverage = in_box or self._mentions_city(hit.formatted_address)
        confidence = (
            AddressConfidence.HIGH
            if in_box and not hit.partial_match
            else AddressConfidence.MEDIUM
        )
        message = (
            "Alamat berhasil divalidasi"
            if in_coverage
            else f"Alamat berada di luar wilayah layanan Kota {self._city}"
        )
        resolution = AddressResolution(
            valid=True,
            in_coverage=in_coverage,
            formatted_address=hit.formatted_address,
            lat=hit.lat,
            lng=hit.lng,
            confidence=confidence,
            source=hit.source,
            raw_address=raw,
            message=message,
        )
        if confidence is AddressConfidence.HIGH:
            return resolution
        return self._with_suggestions(resolution)

    async def _from_llm(self, llm: LLMService, raw: str) -> AddressResolution:
        prompt = _ADDRESS_PROMPT.format(city=self._city, address=raw)
        data = extract_json(await llm.generate_json(prompt))
        valid = bool(data.get("isValid", True))
        in_coverage = bool(data.get("isInBandung", self._mentions_city(raw)))
        formatted = data.get("formattedAddress") or raw
        reason = data.get("reason") or ""
        return self._with_suggestions(
            AddressResolution(
                valid=valid,
                in_coverage=in_coverage,
                formatted_address=str(formatted),
                confidence=AddressConfidence.MEDIUM,
                source=AddressSource.LLM,
                raw_address=raw,
                message=str(reason),
            )
        )

    def _permissive(self, raw: str) -> AddressResolution:
        return self._with_suggestions(
            AddressResolution(
                valid=True,
                in_coverage=self._mentions_city(raw),
                formatted_address=raw,
                confidence=AddressConfidence.LOW,
                source=AddressSource.FALLBACK,
                raw_address=raw,
                message=_FALLBACK_MESSAGE,
            )
        )

    # -- public API ---------------------------------------------------------

    async def resolve(self, address_text: str) -> Result[AddressResolution]:
        """Resolve *address_text* through the tiers.

        Raises
        ------
        ValueError
            If *address_text* is empty.  Callers validate presence first.
        """
        raw = (address_text or "").strip()
        if not raw:
            raise ValueError("address_text must not be empty")

        landmark = self._from_landmark(raw)
        if landmark is not None:
            return Result.ok(landmark)

        reason = DegradedReason.GEOCODER_NO_MATCH
        detail: str | None = None
        if self._geocoder is not None:
            try:
                hit = await self._geocoder.geocode(self.with_city(raw))
            except GeocoderUnavailable as exc:
                reason, detail = DegradedReason.GEOCODER_UNAVAILABLE, str(exc)
            else:
                if hit is not None:
                    return Result.ok(self._from_geocode(raw, hit))
        else:
            reason, detail = DegradedReason.GEOCODER_UNAVAILABLE, "no geocoder configured"

        if self._llm is not None:
            try:
                return Result.degraded(await self._from_llm(self._llm, raw), reason, detail)
            except LLMOutputError as exc:
                logger.warning("address.llm_output_invalid", error=str(exc))
                return Result.degraded(
                    self._permissive(raw), DegradedReason.LLM_OUTPUT_INVALID, str(exc)
                )
            except Exception as exc:
                logger.warning("address.llm_fallback_failed", error=str(exc))
                return Result.degraded(
                    self._permissive(raw), DegradedReason.LLM_UNAVAILABLE, str(exc)
                )

        logger.info("address.permissive_accept", reason=reason.value)
        return Result.degraded(self._permissive(raw), reason, detail)

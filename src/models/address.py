from __future__ import annotations

from dataclasses import dataclass, field

from pydantic import BaseModel, Field

from src.models.enums import AddressConfidence, AddressSource


@dataclass(frozen=True, slots=True)
class Landmark:
    """A well-known place residents use instead of a street address."""

    name: str
    aliases: tuple[str, ...]
    address: str
    lat: float
    lng: float
    category: str
    kelurahan: str | None = None
    kecamatan: str | None = None
    keywords: tuple[str, ...] = field(default_factory=tuple)


class AddressResolution(BaseModel):
    """Outcome of resolving a free-text address."""

    valid: bool
    in_coverage: bool
    formatted_address: str | None = None
    lat: float | None = None
    lng: float | None = None
    confidence: AddressConfidence = AddressConfidence.LOW
    source: AddressSource = AddressSource.FALLBACK
    raw_address: str = ""
    message: str = ""
    landmark_name: str | None = None
    needs_clarification: bool = False
    clarification_question: str | None = None
    suggestions: list[str] = Field(default_factory=list)

    @property
    def usable(self) -> bool:
        """True when the resolution may be stored as the validated address."""
        return self.valid and self.in_coverage

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

from src.models.enums import DegradedReason

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Result(Generic[T]):
    """A value that may have been produced by a fallback path.

    ``degraded_reason`` is *None* when the upstream service answered
    normally; otherwise it names why defaults were substituted.
    """

    value: T
    degraded_reason: DegradedReason | None = None
    detail: str | None = None

    @property
    def is_degraded(self) -> bool:
        return self.degraded_reason is not None

    @classmethod
    def ok(cls, value: T) -> Result[T]:
        return cls(value=value)

    @classmethod
    def degraded(cls, value: T, reason: DegradedReason, detail: str | None = None) -> Result[T]:
        return cls(value=value, degraded_reason=reason, detail=detail)

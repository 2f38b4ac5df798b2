"""Address validation for the intake form and the voice agent."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from src.api.dependencies import envelope
from src.services.errors import ServiceUnavailable

router = APIRouter(prefix="/address", tags=["address"])


class ValidateAddressRequest(BaseModel):
    address: str = Field(..., min_length=1, max_length=500)


@router.post("/validate")
async def validate_address(body: ValidateAddressRequest, request: Request) -> dict[str, Any]:
    """Resolve free text to a Bandung location.

    ``degraded`` names the fallback taken when a geocoder or the LLM was
    unavailable; the resolution is still usable in that case.
    """
    resolver = getattr(request.app.state, "address_resolver", None)
    if resolver is None:
        raise ServiceUnavailable()
    result = await resolver.resolve(body.address)
    return envelope(
        result.value.model_dump(mode="json"),
        degraded=result.degraded_reason.value if result.degraded_reason else None,
    )

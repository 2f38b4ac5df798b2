"""Staff identity."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from src.api.dependencies import envelope
from src.middleware.auth import require_staff
from src.models.staff import StaffPrincipal

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/me")
async def me(principal: StaffPrincipal = Depends(require_staff)) -> dict[str, Any]:
    return envelope(
        {
            "agencyId": principal.agency_id,
            "agencyName": principal.agency_name,
            "categories": [c.value for c in principal.categories],
            "scope": principal.scope.value,
        }
    )

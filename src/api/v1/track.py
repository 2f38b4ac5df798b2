"""Public ticket tracking.

Anyone holding a ticket number may follow its progress.  The projection
carries no reporter identity and only public timeline entries.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request

from src.api.dependencies import envelope, get_tickets

router = APIRouter(prefix="/track", tags=["tracking"])


@router.get("/{ticket_id}")
async def track_ticket(ticket_id: str, request: Request) -> dict[str, Any]:
    view = await get_tickets(request).track_public(ticket_id.strip().upper())
    return envelope(view.model_dump(mode="json", by_alias=True))

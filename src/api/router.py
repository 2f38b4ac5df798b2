"""Main API router combining all v1 route modules.

Aggregates all routers under the ``/api/v1`` prefix so the
FastAPI application only needs to include a single router.

Includes:
    * Intake webhooks: Vapi voice AI, Twilio SMS and recorded calls
    * Tickets: staff list/detail/update, internal create, citizen rating
    * Public tracking
    * Dashboard: stats and analytics
    * Address validation, staff identity, health
"""

from __future__ import annotations

from fastapi import APIRouter

from src.api.v1 import address, auth, dashboard, health, telephony, tickets, track, vapi

api_router = APIRouter(prefix="/api/v1")

# -- Intake ----------------------------------------------------------------
api_router.include_router(vapi.router)
api_router.include_router(telephony.router)

# -- Tickets and dashboard -------------------------------------------------
api_router.include_router(tickets.router)
api_router.include_router(track.router)
api_router.include_router(dashboard.router)

# -- Supporting ------------------------------------------------------------
api_router.include_router(address.router)
api_router.include_router(auth.router)
api_router.include_router(health.router)

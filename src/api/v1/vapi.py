"""Vapi voice-AI webhook.

Vapi posts every call event to one URL.  ``assistant-request`` gets the
transient assistant definition, tool calls are executed and answered
with a ``results`` envelope, and every other event is acknowledged.
The handler never returns an error status: a failed webhook would drop
the caller mid-conversation.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, Request

from config.settings import settings
from src.api.dependencies import get_voice_agent
from src.middleware.auth import verify_vapi_secret
from src.services import vapi
from src.services.voice_agent import TOOL_SYSTEM_ERROR

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

router = APIRouter(prefix="/vapi", tags=["vapi"])

_ACKNOWLEDGED: dict[str, str] = {"result": "OK"}


@router.get("/webhook")
async def webhook_health() -> dict[str, str]:
    return {"status": "ok", "service": "SatuPintu Vapi Webhook"}


@router.post("/webhook", dependencies=[Depends(verify_vapi_secret)])
async def webhook(request: Request) -> dict[str, Any]:
    try:
        payload = await request.json()
        if not isinstance(payload, dict):
            raise ValueError("webhook payload is not an object")

        kind = vapi.message_type(payload)
        phone = vapi.customer_phone(payload)
        log = logger.bind(event=kind, call_id=vapi.call_id(payload))

        if kind == "assistant-request":
            log.info("vapi.assistant_request")
            return {
                "assistant": vapi.build_assistant_config(
                    f"{settings.public_base_url.rstrip('/')}{request.url.path}",
                    customer_phone=phone,
                    transfer_number=settings.emergency_transfer_number,
                )
            }

        if kind == "status-update":
            log.info("vapi.status_update", status=payload["message"].get("status"))
            return _ACKNOWLEDGED

        if kind == "end-of-call-report":
            log.info("vapi.call_ended", reason=payload["message"].get("endedReason"))
            return _ACKNOWLEDGED

        call = vapi.extract_tool_call(payload)
        if call is None:
            return _ACKNOWLEDGED

        agent = get_voice_agent(request)
        return await agent.handle_tool_call(
            call,
            customer_phone=phone,
            call_sid=vapi.call_id(payload),
        )
    except Exception:
        logger.error("vapi.webhook_failed", exc_info=True)
        return vapi.tool_error(vapi.UNKNOWN_TOOL_CALL_ID, None, TOOL_SYSTEM_ERROR)

"""Twilio webhooks: inbound SMS and the recorded-call intake.

Twilio posts form-encoded fields (``From``, ``Body``, ``CallSid``,
``RecordingUrl``, ``TranscriptionText``) and expects TwiML back.  Every
path answers with markup, including failures, so the caller always
hears or reads an apology instead of a dropped connection.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Form, Request
from fastapi.responses import Response

from src.api.dependencies import get_sms_commands, get_voice_agent
from src.services.errors import SatuPintuError
from src.services.phone import mask_phone
from src.services.sms_commands import SYSTEM_ERROR as SMS_SYSTEM_ERROR
from src.services.twiml import message_response, say_and_hangup
from src.services.voice_agent import RECORDING_ERROR

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

router = APIRouter(tags=["telephony"])

_TWIML = "text/xml"


def _twiml(body: str) -> Response:
    return Response(content=body, media_type=_TWIML)


@router.post("/sms/incoming")
async def sms_incoming(
    request: Request,
    from_number: str = Form("", alias="From"),
    body: str = Form("", alias="Body"),
) -> Response:
    """Answer ``CEK <ticket>`` queries from reporters."""
    logger.info("sms.incoming", sender=mask_phone(from_number))
    try:
        commands = get_sms_commands(request)
    except SatuPintuError:
        logger.error("sms.service_unavailable")
        return _twiml(message_response(SMS_SYSTEM_ERROR))
    return _twiml(message_response(await commands.reply(from_number, body)))


@router.post("/voice/incoming")
async def voice_incoming(request: Request) -> Response:
    """Greet the caller and start recording the complaint."""
    try:
        agent = get_voice_agent(request)
    except SatuPintuError:
        logger.error("voice.service_unavailable")
        return _twiml(say_and_hangup(RECORDING_ERROR))
    return _twiml(agent.incoming_call())


@router.post("/voice/process")
async def voice_process(
    request: Request,
    from_number: str = Form("", alias="From"),
    call_sid: str | None = Form(None, alias="CallSid"),
    recording_url: str | None = Form(None, alias="RecordingUrl"),
    transcription: str | None = Form(None, alias="TranscriptionText"),
) -> Response:
    """Turn a finished recording into a ticket and read back the number."""
    logger.info("voice.recording_received", call_sid=call_sid, caller=mask_phone(from_number))
    try:
        agent = get_voice_agent(request)
    except SatuPintuError:
        logger.error("voice.service_unavailable")
        return _twiml(say_and_hangup(RECORDING_ERROR))
    return _twiml(
        await agent.process_recording(
            from_number=from_number,
            recording_url=recording_url,
            transcription=transcription,
            call_sid=call_sid,
        )
    )

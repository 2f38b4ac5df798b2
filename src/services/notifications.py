"""Outbound notification dispatch for SatuPintu.

Channels:

* **WhatsApp** via the Fonnte gateway (``api.fonnte.com``).
* **SMS** via Twilio's Messages API.
* **Mock** for development and tests; records every message.

:meth:`NotificationDispatcher.send` never raises.  Destinations are
normalised to ``+62...`` before sending and before logging, and every
attempt -- success or failure -- is written to the message log.
Transport errors and gateway 5xx/429 answers are retried with bounded
exponential backoff; other gateway rejections are not.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Final
from uuid import uuid4

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.models.enums import MessageDirection, MessageStatus, NotificationChannel
from src.models.ticket import OutboundMessageLog
from src.services.phone import mask_phone, normalize_phone, to_gateway_format
from src.services.templates import MessageKind, render

if TYPE_CHECKING:
    from src.services.store import TicketStore

logger = structlog.get_logger(__name__)

_TWILIO_API_BASE: Final[str] = "https://api.twilio.com/2010-04-01"


class GatewayUnavailable(Exception):
    """Transient gateway failure (5xx, 429).  Retried."""


class GatewayRejected(Exception):
    """The gateway refused the message.  Not retried."""


@dataclass(slots=True)
class DeliveryResult:
    success: bool
    channel: NotificationChannel
    destination: str
    provider_message_id: str | None = None
    error: str | None = None


# ---------------------------------------------------------------------------
# Channel implementations
# ---------------------------------------------------------------------------


class _ChannelBase:
    """A single delivery channel.  ``send`` returns the provider message ID."""

    channel: NotificationChannel

    async def send(self, to: str, body: str) -> str | None:
        raise NotImplementedError

    async def close(self) -> None:
        return None


def _raise_for_gateway_status(response: httpx.Response, gateway: str) -> None:
    if response.status_code >= 500 or response.status_code == 429:
        raise GatewayUnavailable(f"{gateway} returned {response.status_code}")
    if response.status_code >= 400:
        raise GatewayRejected(f"{gateway} returned {response.status_code}: {response.text[:200]}")


class FonnteWhatsAppChannel(_ChannelBase):
    """Fonnte WhatsApp gateway.  Targets are sent without the ``+``."""

    channel = NotificationChannel.WHATSAPP

    def __init__(
        self,
        token: str,
        url: str = "https://api.fonnte.com/send",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._token = token
        self._url = url
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def send(self, to: str, body: str) -> str | None:
        response = await self._client.post(
            self._url,
            headers={"Authorization": self._token},
            data={"target": to_gateway_format(to), "message": body, "countryCode": "62"},
        )
        _raise_for_gateway_status(response, "fonnte")
        result: dict[str, Any] = response.json()
        if not result.get("status"):
            raise GatewayRejected(str(result.get("reason", "fonnte rejected message")))
        ids = result.get("id")
        if isinstance(ids, list):
            return str(ids[0]) if ids else None
        return str(ids) if ids is not None else None


class TwilioSmsChannel(_ChannelBase):
    """Twilio Programmable SMS."""

    channel = NotificationChannel.SMS

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._account_sid = account_sid
        self._from_number = from_number
        self._client = client or httpx.AsyncClient(
            timeout=timeout, auth=(account_sid, auth_token)
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def send(self, to: str, body: str) -> str | None:
        response = await self._client.post(
            f"{_TWILIO_API_BASE}/Accounts/{self._account_sid}/Messages.json",
            data={"To": to, "From": self._from_number, "Body": body},
        )
        _raise_for_gateway_status(response, "twilio")
        return response.json().get("sid")


@dataclass(slots=True)
class SentMessage:
    to: str
    body: str


@dataclass
class MockChannel(_ChannelBase):
    """In-process channel that records messages instead of sending them.

    ``fail_times`` makes the first N sends raise :class:`GatewayUnavailable`.
    """

    channel: NotificationChannel = NotificationChannel.SMS
    fail_times: int = 0
    reject: bool = False
    sent: list[SentMessage] = field(default_factory=list)
    attempts: int = 0

    async def send(self, to: str, body: str) -> str | None:
        self.attempts += 1
        if self.reject:
            raise GatewayRejected("mock rejection")
        if self.attempts <= self.fail_times:
            raise GatewayUnavailable("mock transient failure")
        self.sent.append(SentMessage(to=to, body=body))
        logger.info("mock_channel.sent", channel=self.channel.value, to=mask_phone(to), length=len(body))
        return f"mock_{uuid4().hex[:12]}"


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


class NotificationDispatcher:
    """Send templated notifications and log every attempt.

    Parameters
    ----------
    store:
        Store receiving an :class:`OutboundMessageLog` per attempt.
    channels:
        Channel implementations keyed by :class:`NotificationChannel`.
    max_attempts:
        Upper bound on tries for transient gateway failures.
    whatsapp_test_number:
        When set, every WhatsApp message is redirected to this number
        (staging).  The log records the real recipient.
    """

    __slots__ = ("_channels", "_max_attempts", "_retry_wait", "_store", "_wa_test_number")

    def __init__(
        self,
        store: TicketStore,
        channels: dict[NotificationChannel, _ChannelBase],
        *,
        max_attempts: int = 3,
        whatsapp_test_number: str | None = None,
        retry_wait_max: float = 4.0,
    ) -> None:
        self._store = store
        self._channels = channels
        self._max_attempts = max(1, max_attempts)
        self._retry_wait = wait_exponential(multiplier=0.5, min=0, max=retry_wait_max)
        self._wa_test_number = whatsapp_test_number or None

    async def close(self) -> None:
        for channel in self._channels.values():
            await channel.close()

    async def _log(self, entry: OutboundMessageLog) -> None:
        try:
            await self._store.insert_message(entry)
        except Exception:
            logger.error("notification.log_failed", ticket_id=entry.ticket_id, exc_info=True)

    async def _deliver(self, impl: _ChannelBase, to: str, body: str) -> str | None:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type((GatewayUnavailable, httpx.TransportError)),
            stop=stop_after_attempt(self._max_attempts),
            wait=self._retry_wait,
            reraise=True,
        ):
            with attempt:
                return await impl.send(to, body)
        return None  # pragma: no cover

    async def send(
        self,
        channel: NotificationChannel,
        destination: str,
        body: str,
        *,
        ticket_id: str | None = None,
    ) -> DeliveryResult:
        """Send *body* to *destination* over *channel*.  Never raises."""
        log = logger.bind(channel=channel.value, ticket_id=ticket_id)

        try:
            to = normalize_phone(destination)
        except ValueError as exc:
            await self._log(
                OutboundMessageLog(
                    ticket_id=ticket_id,
                    phone_to=destination,
                    message=body,
                    channel=channel.value,
                    status=MessageStatus.FAILED,
                    error=str(exc),
                )
            )
            log.warning("notification.invalid_destination")
            return DeliveryResult(False, channel, destination, error=str(exc))

        log = log.bind(to=mask_phone(to))
        impl = self._channels.get(channel)
        if impl is None:
            error = f"channel {channel.value} not configured"
            await self._log(
                OutboundMessageLog(
                    ticket_id=ticket_id,
                    phone_to=to,
                    message=body,
                    channel=channel.value,
                    status=MessageStatus.FAILED,
                    error=error,
                )
            )
            log.warning("notification.channel_missing")
            return DeliveryResult(False, channel, to, error=error)

        target = to
        if channel is NotificationChannel.WHATSAPP and self._wa_test_number:
            target = normalize_phone(self._wa_test_number)
            log.debug("notification.test_redirect")

        try:
            provider_id = await self._deliver(impl, target, body)
        except Exception as exc:
            await self._log(
                OutboundMessageLog(
                    ticket_id=ticket_id,
                    phone_to=to,
                    message=body,
                    channel=channel.value,
                    status=MessageStatus.FAILED,
                    error=str(exc),
                )
            )
            log.error("notification.send_failed", error=str(exc))
            return DeliveryResult(False, channel, to, error=str(exc))

        await self._log(
            OutboundMessageLog(
                ticket_id=ticket_id,
                phone_to=to,
                message=body,
                channel=channel.value,
                provider_message_id=provider_id,
                status=MessageStatus.SENT,
            )
        )
        log.info("notification.sent", provider_id=provider_id)
        return DeliveryResult(True, channel, to, provider_message_id=provider_id)

    async def notify(
        self,
        kind: MessageKind,
        channel: NotificationChannel,
        destination: str,
        *,
        ticket_id: str | None = None,
        **params: str | None,
    ) -> DeliveryResult:
        """Render the *kind* template for *channel* and send it."""
        body = render(kind, channel, ticket_id=ticket_id, **params)
        return await self.send(channel, destination, body, ticket_id=ticket_id)

    async def record_inbound(self, sender: str, body: str) -> None:
        """Log a message received from a citizen."""
        try:
            phone = normalize_phone(sender)
        except ValueError:
            phone = sender
        await self._log(
            OutboundMessageLog(
                phone_to=phone,
                message=body,
                channel=NotificationChannel.SMS.value,
                direction=MessageDirection.INBOUND,
                status=MessageStatus.DELIVERED,
            )
        )

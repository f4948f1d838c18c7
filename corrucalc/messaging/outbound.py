"""Outbound WhatsApp delivery.

The conversational engine only ever talks to the `Messenger` interface.
`TwilioMessenger` calls the Twilio Messages REST API with httpx;
`LogMessenger` is used when Twilio is not configured and just logs.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import httpx

from corrucalc.config import MessagingConfig

logger = logging.getLogger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"
WHATSAPP_PREFIX = "whatsapp:"


def strip_channel_prefix(address: str) -> str:
    """'whatsapp:+549...' -> '+549...'."""
    if address.startswith(WHATSAPP_PREFIX):
        return address[len(WHATSAPP_PREFIX):]
    return address


def with_channel_prefix(address: str) -> str:
    return address if address.startswith(WHATSAPP_PREFIX) else f"{WHATSAPP_PREFIX}{address}"


class Messenger(ABC):
    """Send text (and optionally a document) to an address."""

    @abstractmethod
    async def send_text(self, to: str, body: str, media_url: str | None = None) -> bool:
        """Deliver one message. Returns False on failure, never raises."""


class LogMessenger(Messenger):
    """No-op delivery for unconfigured environments. Keeps what it 'sent'."""

    def __init__(self):
        self.sent: list[tuple[str, str]] = []

    async def send_text(self, to: str, body: str, media_url: str | None = None) -> bool:
        self.sent.append((to, body))
        logger.info("whatsapp_not_configured to=%s preview=%r", to, body[:50])
        return False


class TwilioMessenger(Messenger):
    """Twilio WhatsApp sender.

    Args:
        account_sid: Twilio account SID
        auth_token: Twilio auth token
        sender: Sender address, e.g. 'whatsapp:+14155238886'
        client: Optional shared httpx.AsyncClient (tests pass a mock transport)
    """

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        sender: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ):
        self.account_sid = account_sid
        self.sender = sender
        self._client = client or httpx.AsyncClient(
            base_url=TWILIO_API_BASE,
            auth=(account_sid, auth_token),
            timeout=timeout,
        )

    async def send_text(self, to: str, body: str, media_url: str | None = None) -> bool:
        data = {"From": self.sender, "To": with_channel_prefix(to), "Body": body}
        if media_url:
            data["MediaUrl"] = media_url

        try:
            response = await self._client.post(
                f"/Accounts/{self.account_sid}/Messages.json", data=data
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("whatsapp_send_failed to=%s error=%s", to, e)
            return False

        logger.info("whatsapp_sent to=%s sid=%s", to, response.json().get("sid"))
        return True

    async def aclose(self) -> None:
        await self._client.aclose()


def build_messenger(config: MessagingConfig) -> Messenger:
    if config.enabled:
        return TwilioMessenger(config.account_sid, config.auth_token, config.sender)
    return LogMessenger()

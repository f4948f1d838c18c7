"""Twilio WhatsApp webhook.

Twilio posts form-encoded messages and expects TwiML back. Replies are sent
through the Messenger (REST API) rather than inline TwiML, so the webhook
always answers with an empty <Response/>, even when processing fails.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Form, Response

from corrucalc.messaging.outbound import strip_channel_prefix
from corrucalc.web.dependencies import Services, get_services

logger = structlog.get_logger()

router = APIRouter(prefix="/api/whatsapp", tags=["WhatsApp"])

EMPTY_TWIML = '<?xml version="1.0" encoding="UTF-8"?><Response></Response>'


def _twiml() -> Response:
    return Response(content=EMPTY_TWIML, media_type="text/xml")


@router.post("/webhook")
async def whatsapp_webhook(
    sender: str = Form("", alias="From"),
    body: str = Form("", alias="Body"),
    num_media: int = Form(0, alias="NumMedia"),
    message_sid: str | None = Form(None, alias="MessageSid"),
    services: Services = Depends(get_services),
):
    address = strip_channel_prefix(sender.strip())
    if not address:
        logger.warning("whatsapp_webhook_missing_sender")
        return _twiml()

    try:
        await services.communications.record(
            address, "inbound", body, {"num_media": num_media, "message_sid": message_sid}
        )
        reply = await services.engine.handle(address, body, num_media)
        delivered = await services.messenger.send_text(address, reply)
        await services.communications.record(
            address, "outbound", reply, {"delivered": delivered}
        )
    except Exception as e:
        logger.exception("whatsapp_webhook_failed", address=address, error=str(e))

    return _twiml()


@router.get("/webhook")
async def whatsapp_webhook_status(services: Services = Depends(get_services)):
    """Reachability check used when configuring the Twilio sandbox."""
    return {
        "status": "active",
        "service": "whatsapp-webhook",
        "messaging_configured": services.config.messaging.enabled,
        "classifier_configured": services.config.classifier.enabled,
    }

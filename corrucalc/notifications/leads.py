"""Sales-team notifications for leads and high-value quotes.

Delivery channels are independent and optional:
- Slack incoming webhook (httpx)
- SMTP email (aiosmtplib)

Every delivery failure is logged and reported as False; nothing here raises
into the quoting path.
"""

from __future__ import annotations

import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from enum import Enum

import aiosmtplib
import httpx
from pydantic import BaseModel, Field

from corrucalc.config import NotificationsConfig
from corrucalc.models import ContactInfo, Number, Quote
from corrucalc.utils.formatting import format_ars

logger = logging.getLogger(__name__)


class LeadKind(str, Enum):
    LEAD_WITH_CONTACT = "lead_with_contact"
    HIGH_VALUE_QUOTE = "high_value_quote"
    CHAT_QUOTED = "chat_quoted"
    ADVISOR_REQUESTED = "advisor_requested"
    WEB_FORM_LEAD = "web_form_lead"


class LeadNotification(BaseModel):
    """Serializable notification payload (also used as an arq job argument)."""

    kind: LeadKind
    origin: str
    boxes: list[str] = Field(default_factory=list)
    quantity: int = 0
    total_m2: Number | None = None
    subtotal: Number | None = None
    contact: ContactInfo = Field(default_factory=ContactInfo)
    source_ip: str | None = None
    address: str | None = None
    below_minimum: bool = False

    @classmethod
    def from_quote(
        cls,
        kind: LeadKind,
        quote: Quote,
        origin: str,
        contact: ContactInfo | None = None,
        source_ip: str | None = None,
        address: str | None = None,
    ) -> LeadNotification:
        return cls(
            kind=kind,
            origin=origin,
            boxes=[f"{b.length_mm}x{b.width_mm}x{b.height_mm} x{b.quantity}" for b in quote.boxes],
            quantity=sum(b.quantity for b in quote.boxes),
            total_m2=quote.total_m2,
            subtotal=quote.subtotal,
            contact=contact or ContactInfo(),
            source_ip=source_ip,
            address=address,
            below_minimum=quote.below_minimum,
        )

    def subject(self) -> str:
        total = format_ars(self.subtotal) if self.subtotal is not None else "-"
        subjects = {
            LeadKind.LEAD_WITH_CONTACT: f"Nuevo lead via {self.origin}",
            LeadKind.HIGH_VALUE_QUOTE: f"Cotización alto valor: {total}",
            LeadKind.CHAT_QUOTED: f"Cotización WhatsApp {self.address or ''}: {total}".strip(),
            LeadKind.ADVISOR_REQUESTED: f"Cliente solicita asesor: {self.address or self.origin}",
            LeadKind.WEB_FORM_LEAD: f"Nueva solicitud web: {total}",
        }
        return subjects[self.kind]

    def lines(self) -> list[str]:
        lines = [f"Origen: {self.origin}"]
        lines.extend(f"Caja: {box}" for box in self.boxes)
        if self.quantity:
            lines.append(f"Cantidad total: {self.quantity} unidades")
        if self.total_m2 is not None:
            lines.append(f"Área total: {self.total_m2} m²")
        if self.subtotal is not None:
            lines.append(f"Total: {format_ars(self.subtotal)}")
        if self.below_minimum:
            lines.append("Bajo mínimo absoluto: requiere revisión manual")
        for label, value in (
            ("Nombre", self.contact.name),
            ("Empresa", self.contact.company),
            ("Email", self.contact.email),
            ("Teléfono", self.contact.phone),
            ("Notas", self.contact.notes),
        ):
            if value:
                lines.append(f"{label}: {value}")
        if self.address:
            lines.append(f"WhatsApp: {self.address}")
        if self.source_ip:
            lines.append(f"IP: {self.source_ip}")
        return lines


class SlackNotifier:
    """Posts notifications to a Slack incoming webhook."""

    def __init__(self, webhook_url: str | None, timeout: float = 10.0):
        self.webhook_url = webhook_url
        self.timeout = timeout

    async def send(self, notification: LeadNotification) -> bool:
        if not self.webhook_url:
            logger.debug("slack_webhook_not_configured")
            return False

        payload = {
            "text": notification.subject(),
            "blocks": [
                {"type": "header", "text": {"type": "plain_text", "text": notification.subject()}},
                {
                    "type": "section",
                    "text": {"type": "mrkdwn", "text": "\n".join(notification.lines())},
                },
            ],
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.webhook_url, json=payload)
            if response.status_code != 200:
                logger.error(
                    "slack_notification_failed: status=%s response=%s",
                    response.status_code,
                    response.text,
                )
                return False
            logger.info("slack_notification_sent kind=%s", notification.kind.value)
            return True
        except httpx.HTTPError as e:
            logger.error("slack_notification_error: %s", e)
            return False


class EmailNotifier:
    """Sends notification emails through SMTP."""

    def __init__(
        self,
        smtp_host: str | None,
        smtp_port: int = 587,
        smtp_user: str | None = None,
        smtp_password: str | None = None,
        from_email: str = "notificaciones@quilmescorrugados.com.ar",
        to_email: str = "ventas@quilmescorrugados.com.ar",
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.from_email = from_email
        self.to_email = to_email

    def build_message(self, notification: LeadNotification) -> MIMEMultipart:
        message = MIMEMultipart("alternative")
        message["From"] = self.from_email
        message["To"] = self.to_email
        message["Subject"] = notification.subject()
        if notification.contact.email:
            message["Reply-To"] = notification.contact.email

        lines = notification.lines()
        html = (
            '<div style="font-family: Arial, sans-serif; max-width: 600px;">'
            f"<h2>{notification.subject()}</h2>"
            + "".join(f"<p>{line}</p>" for line in lines)
            + "</div>"
        )
        message.attach(MIMEText("\n".join(lines), "plain"))
        message.attach(MIMEText(html, "html"))
        return message

    async def send(self, notification: LeadNotification) -> bool:
        if not self.smtp_host or not self.smtp_user or not self.smtp_password:
            logger.debug("smtp_not_configured")
            return False

        try:
            await aiosmtplib.send(
                self.build_message(notification),
                hostname=self.smtp_host,
                port=self.smtp_port,
                username=self.smtp_user,
                password=self.smtp_password,
                start_tls=True,
            )
            logger.info("email_notification_sent kind=%s", notification.kind.value)
            return True
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.error("email_notification_error: %s", e)
            return False


class LeadNotifier:
    """Fans a notification out to every configured channel."""

    def __init__(self, slack: SlackNotifier, email: EmailNotifier, enabled: bool = True):
        self.slack = slack
        self.email = email
        self.enabled = enabled

    @classmethod
    def from_config(cls, config: NotificationsConfig) -> LeadNotifier:
        return cls(
            slack=SlackNotifier(config.slack_webhook_url),
            email=EmailNotifier(
                smtp_host=config.smtp_host,
                smtp_port=config.smtp_port,
                smtp_user=config.smtp_user,
                smtp_password=config.smtp_password,
                from_email=config.from_email,
                to_email=config.to_email,
            ),
            enabled=config.enabled,
        )

    async def notify(self, notification: LeadNotification) -> dict[str, bool]:
        if not self.enabled:
            logger.debug("notifications_disabled kind=%s", notification.kind.value)
            return {"slack": False, "email": False}

        results = {
            "slack": await self.slack.send(notification),
            "email": await self.email.send(notification),
        }
        if not any(results.values()):
            logger.warning("notification_not_delivered kind=%s", notification.kind.value)
        return results

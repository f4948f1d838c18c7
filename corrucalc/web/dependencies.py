"""Shared dependencies for CorruCalc web routes.

Every long-lived collaborator (cache, limiter, engine, notifier...) is built
once by `create_app` and stored on `app.state.services`. Route handlers get
it through FastAPI's Depends() system.

Usage:
    from fastapi import Depends
    from corrucalc.web.dependencies import Services, get_services

    @router.post("/endpoint")
    async def handler(services: Services = Depends(get_services)):
        config = await services.pricing.get_active()
"""

from __future__ import annotations

from dataclasses import dataclass

from arq.connections import ArqRedis
from fastapi import Request

from corrucalc.config import AppConfig
from corrucalc.conversation.communications import CommunicationLog
from corrucalc.conversation.machine import ConversationEngine
from corrucalc.core.cache import Cache
from corrucalc.core.queue import NotificationDispatcher
from corrucalc.messaging.outbound import Messenger
from corrucalc.notifications.leads import LeadNotification, LeadNotifier
from corrucalc.pricing.assembler import QuoteAssembler
from corrucalc.pricing.config_source import PricingConfigRepository, SessionScope
from corrucalc.web.api_keys import CredentialVerifier
from corrucalc.web.rate_limit import RateLimiter
from corrucalc.web.telemetry import ApiRequestLogger
from corrucalc.worker import enqueue_lead_notification


@dataclass
class Services:
    """Application-wide collaborators."""

    config: AppConfig
    session_scope: SessionScope
    cache: Cache
    limiter: RateLimiter
    verifier: CredentialVerifier
    pricing: PricingConfigRepository
    assembler: QuoteAssembler
    dispatcher: NotificationDispatcher
    notifier: LeadNotifier
    messenger: Messenger
    engine: ConversationEngine
    telemetry: ApiRequestLogger
    communications: CommunicationLog
    queue: ArqRedis | None = None  # set when notifications go through the arq worker

    def notify(self, notification: LeadNotification) -> bool:
        """Queue a team notification without waiting for delivery."""
        name = notification.kind.value
        if self.queue is not None:
            return self.dispatcher.submit(name, enqueue_lead_notification, self.queue, notification)
        return self.dispatcher.submit(name, self.notifier.notify, notification)


def get_services(request: Request) -> Services:
    return request.app.state.services

"""Fixtures for HTTP-level tests.

The app is driven through httpx's ASGI transport so requests, the
notification dispatcher and the SQLite database share one event loop.
"""

from __future__ import annotations

import httpx
import pytest
import pytest_asyncio

from corrucalc.conversation.classifier import NullClassifier
from corrucalc.core.cache import MemoryCache
from corrucalc.messaging.outbound import LogMessenger
from corrucalc.notifications.leads import LeadNotification
from corrucalc.web.app import create_app


class RecordingNotifier:
    """Stands in for LeadNotifier and keeps every delivered notification."""

    def __init__(self):
        self.sent: list[LeadNotification] = []

    async def notify(self, notification: LeadNotification) -> dict[str, bool]:
        self.sent.append(notification)
        return {"slack": True, "email": True}

    def kinds(self) -> list[str]:
        return [n.kind.value for n in self.sent]


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def messenger() -> LogMessenger:
    return LogMessenger()


@pytest.fixture
def app(app_config, session_scope, messenger, notifier):
    return create_app(
        app_config,
        session_scope=session_scope,
        cache=MemoryCache(),
        classifier=NullClassifier(),
        messenger=messenger,
        notifier=notifier,
    )


@pytest.fixture
def services(app):
    return app.state.services


@pytest_asyncio.fixture
async def client(app, services):
    services.dispatcher.start()
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    await services.dispatcher.stop()

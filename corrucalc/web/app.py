"""FastAPI application factory for CorruCalc.

Run with:
    uvicorn corrucalc.web.app:create_app --factory

All shared collaborators are built here, once, and stored on
`app.state.services`; nothing in the quoting core holds module-level state.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.middleware.base import BaseHTTPMiddleware

from corrucalc.config import AppConfig, get_config
from corrucalc.conversation.classifier import IntentClassifier, build_classifier
from corrucalc.conversation.communications import CommunicationLog
from corrucalc.conversation.machine import ConversationEngine
from corrucalc.conversation.session_store import SessionStore
from corrucalc.core.cache import Cache, build_cache
from corrucalc.core.logging import configure_logging
from corrucalc.core.queue import NotificationDispatcher, get_queue
from corrucalc.db.connection import close_db, get_session
from corrucalc.exceptions import (
    BelowAbsoluteMinimum,
    ConfigUnavailable,
    CorruCalcError,
    RateLimited,
    UpstreamUnavailable,
    ValidationFailed,
)
from corrucalc.messaging.outbound import Messenger, TwilioMessenger, build_messenger
from corrucalc.notifications.leads import LeadNotification, LeadNotifier
from corrucalc.pricing.assembler import QuoteAssembler
from corrucalc.pricing.config_source import PricingConfigRepository, SessionScope
from corrucalc.web.api_keys import CredentialVerifier, DatabaseCredentialStore
from corrucalc.web.dependencies import Services
from corrucalc.web.rate_limit import RateLimiter
from corrucalc.web.routes import health, public_quote, quotes, whatsapp
from corrucalc.web.telemetry import ApiRequestLogger

logger = structlog.get_logger()


# Request Logging Middleware
class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        structlog.contextvars.clear_contextvars()

        request_id = request.headers.get("X-Request-ID", str(uuid4()))
        structlog.contextvars.bind_contextvars(request_id=request_id)

        logger.info(
            "request_started",
            method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else None,
        )

        try:
            response = await call_next(request)

            logger.info(
                "request_completed",
                status_code=response.status_code,
            )
            response.headers["X-Request-ID"] = request_id
            return response

        except Exception as exc:
            logger.error("request_failed", error=str(exc))
            raise


def _error_status(exc: CorruCalcError) -> int:
    if isinstance(exc, (ValidationFailed, BelowAbsoluteMinimum)):
        return 400
    if isinstance(exc, RateLimited):
        return 429
    if isinstance(exc, (ConfigUnavailable, UpstreamUnavailable)):
        return 503
    return 500


async def corrucalc_error_handler(request: Request, exc: CorruCalcError) -> JSONResponse:
    """Map domain errors raised by routes to structured JSON."""
    code = _error_status(exc)
    content: dict = {"error": str(exc)}
    if isinstance(exc, ValidationFailed):
        content = {"error": exc.message, "errors": exc.errors}
    elif code == 503:
        content = {"error": "Service temporarily unavailable"}
    elif code == 500:
        logger.error("unhandled_domain_error", error=str(exc), path=request.url.path)
        content = {"error": "Internal server error"}
    return JSONResponse(status_code=code, content=content)


def build_services(
    config: AppConfig,
    *,
    session_scope: SessionScope = get_session,
    cache: Cache | None = None,
    classifier: IntentClassifier | None = None,
    messenger: Messenger | None = None,
    notifier: LeadNotifier | None = None,
) -> Services:
    """Wire every collaborator from configuration (overrides win)."""
    cache = cache or build_cache(config.cache.backend, config.cache.redis_url)
    pricing = PricingConfigRepository(session_scope)
    assembler = QuoteAssembler(currency=config.quote.currency, max_lines=config.quote.max_lines)
    dispatcher = NotificationDispatcher(maxsize=config.notifications.queue_size)
    notifier = notifier or LeadNotifier.from_config(config.notifications)

    services: Services

    def notify(notification: LeadNotification) -> None:
        services.notify(notification)

    engine = ConversationEngine(
        store=SessionStore(
            session_scope, timeout_seconds=config.session.inactivity_timeout_seconds
        ),
        pricing=pricing,
        assembler=assembler,
        classifier=classifier or build_classifier(config.classifier),
        settings=config.session,
        messaging=config.messaging,
        notify=notify,
    )

    services = Services(
        config=config,
        session_scope=session_scope,
        cache=cache,
        limiter=RateLimiter(cache, config.rate_limit.window_seconds),
        verifier=CredentialVerifier(
            cache,
            DatabaseCredentialStore(session_scope),
            ttl_seconds=config.rate_limit.credential_cache_ttl_seconds,
        ),
        pricing=pricing,
        assembler=assembler,
        dispatcher=dispatcher,
        notifier=notifier,
        messenger=messenger or build_messenger(config.messaging),
        engine=engine,
        telemetry=ApiRequestLogger(session_scope),
        communications=CommunicationLog(session_scope),
    )
    return services


def create_app(
    config: AppConfig | None = None,
    *,
    session_scope: SessionScope = get_session,
    cache: Cache | None = None,
    classifier: IntentClassifier | None = None,
    messenger: Messenger | None = None,
    notifier: LeadNotifier | None = None,
) -> FastAPI:
    """Build the CorruCalc API.

    Args:
        config: Application config (defaults to environment via get_config())
        session_scope: Database session factory; tests pass an in-memory one
        cache, classifier, messenger, notifier: Optional overrides of the
            collaborators otherwise built from `config`
    """
    config = config or get_config()
    configure_logging(config.log_level, json_logs=config.log_format == "json")

    services = build_services(
        config,
        session_scope=session_scope,
        cache=cache,
        classifier=classifier,
        messenger=messenger,
        notifier=notifier,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        services.dispatcher.start()
        if config.notifications.use_worker:
            services.queue = await get_queue()
        logger.info("app_started", environment=config.environment, cache=config.cache.backend)
        try:
            yield
        finally:
            await services.dispatcher.stop()
            if services.queue is not None:
                await services.queue.aclose()
            await services.cache.close()
            if isinstance(services.messenger, TwilioMessenger):
                await services.messenger.aclose()
            if session_scope is get_session:
                await close_db()
            logger.info("app_stopped")

    app = FastAPI(
        title="CorruCalc Quote API",
        description="Corrugated box quoting: public API, WhatsApp assistant and internal forms",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(RequestLoggingMiddleware)

    # Prometheus Metrics
    if config.metrics_enabled:
        Instrumentator().instrument(app).expose(app)

    app.add_exception_handler(CorruCalcError, corrucalc_error_handler)

    app.include_router(health.router)
    app.include_router(public_quote.router)
    app.include_router(quotes.router)
    app.include_router(whatsapp.router)

    return app

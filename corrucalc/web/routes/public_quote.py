"""Public quoting API: /api/v1/quote.

Order of operations for POST:
1. Resolve the caller tier (X-API-Key verdict, cached) and count the request
   against its fixed-window limit. Over the limit -> 429, nothing else runs.
2. Parse and validate the body -> 400 with per-field errors.
3. Read the active pricing snapshot -> 503 when none is available.
4. Assemble the quote in strict mode -> 400 below the absolute floor.

Every outcome writes one telemetry row, and every response carries the
`rate_limit` block plus X-RateLimit-* headers.
"""

from __future__ import annotations

import math
import time
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from corrucalc.exceptions import (
    BelowAbsoluteMinimum,
    ConfigUnavailable,
    ValidationFailed,
)
from corrucalc.models import ContactInfo, Quote, QuoteResponse, RateLimitInfo
from corrucalc.notifications.leads import LeadKind, LeadNotification
from corrucalc.pricing.assembler import parse_boxes
from corrucalc.web.dependencies import Services, get_services
from corrucalc.web.rate_limit import RateLimitDecision, get_client_identifier, rate_limit_key
from corrucalc.web.telemetry import RequestRecord

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/quote", tags=["Public API"])

API_VERSION = "1.0"
ENDPOINT = "/api/v1/quote"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, X-API-Key",
}

RATE_LIMITED_MESSAGE = "Rate limit exceeded. Please wait before making more requests."


def _respond(
    status_code: int,
    decision: RateLimitDecision,
    *,
    quote: Quote | None = None,
    error: str | None = None,
    errors: list[str] | None = None,
) -> JSONResponse:
    body = QuoteResponse(
        success=quote is not None,
        quote=quote,
        error=error,
        errors=errors,
        rate_limit=RateLimitInfo(remaining=decision.remaining, reset_at=decision.reset_at),
    )
    headers = {**CORS_HEADERS, "X-API-Version": API_VERSION, **decision.headers()}
    if status_code == status.HTTP_429_TOO_MANY_REQUESTS:
        headers["Retry-After"] = str(
            max(0, math.ceil(decision.reset_at.timestamp() - time.time()))
        )
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json", exclude_none=True),
        headers=headers,
    )


def _parse_contact(raw: Any) -> ContactInfo:
    if raw is None:
        return ContactInfo()
    if not isinstance(raw, dict):
        raise ValidationFailed(["contact must be an object"])
    try:
        return ContactInfo.model_validate(raw)
    except ValidationError as e:
        raise ValidationFailed(
            [f"contact.{'.'.join(str(p) for p in err['loc'])} {err['msg']}" for err in e.errors()]
        ) from e


def _queue_notifications(
    services: Services, quote: Quote, contact: ContactInfo, origin: str, source_ip: str
) -> None:
    if quote.subtotal >= services.config.quote.high_value_threshold:
        services.notify(
            LeadNotification.from_quote(
                LeadKind.HIGH_VALUE_QUOTE, quote, origin, source_ip=source_ip
            )
        )
    if contact.is_present():
        services.notify(
            LeadNotification.from_quote(
                LeadKind.LEAD_WITH_CONTACT, quote, origin, contact=contact, source_ip=source_ip
            )
        )


@router.post("")
async def create_quote(request: Request, services: Services = Depends(get_services)):
    """Compute a quote for 1-10 box lines."""
    limits = services.config.rate_limit
    client_ip = get_client_identifier(request)
    raw_key = request.headers.get("X-API-Key")
    record = RequestRecord(
        endpoint=ENDPOINT,
        method="POST",
        user_agent=request.headers.get("user-agent"),
        ip_address=client_ip,
        api_key_prefix=raw_key[:8] + "..." if raw_key else None,
        origin=request.headers.get("origin"),
    )

    credential = await services.verifier.verify(raw_key) if raw_key else None
    if credential is not None and credential.valid:
        key = rate_limit_key(client_ip, credential.key_hash)
        limit = credential.rate_limit_per_minute or limits.authenticated_limit
        origin = f"API ({credential.name})" if credential.name else "API"
    else:
        key = rate_limit_key(client_ip)
        limit = limits.anonymous_limit
        origin = "API"

    decision = await services.limiter.hit(key, limit)
    if not decision.allowed:
        await services.telemetry.record(record.to_model(429, 0, rate_limited=True))
        return _respond(status.HTTP_429_TOO_MANY_REQUESTS, decision, error=RATE_LIMITED_MESSAGE)

    async def fail(code: int, error: str, errors: list[str] | None = None) -> JSONResponse:
        await services.telemetry.record(record.to_model(code, decision.remaining))
        return _respond(code, decision, error=error, errors=errors)

    try:
        payload = await request.json()
    except ValueError:
        return await fail(status.HTTP_400_BAD_REQUEST, "Invalid JSON body")
    if not isinstance(payload, dict):
        return await fail(
            status.HTTP_400_BAD_REQUEST, 'Request must include a non-empty "boxes" array'
        )

    try:
        boxes = parse_boxes(payload.get("boxes"), services.config.quote.max_lines)
        contact = _parse_contact(payload.get("contact"))
        config = await services.pricing.get_active()
        quote = services.assembler.assemble(boxes, config, strict=True)
    except ValidationFailed as e:
        return await fail(status.HTTP_400_BAD_REQUEST, e.message, e.errors)
    except BelowAbsoluteMinimum as e:
        return await fail(status.HTTP_400_BAD_REQUEST, str(e))
    except ConfigUnavailable as e:
        logger.error("public_quote_config_unavailable", error=str(e))
        return await fail(status.HTTP_503_SERVICE_UNAVAILABLE, "Service temporarily unavailable")
    except Exception as e:
        logger.exception("public_quote_failed", error=str(e))
        return await fail(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")

    await services.telemetry.record(
        record.to_model(
            200,
            decision.remaining,
            total_m2=quote.total_m2,
            total_amount=quote.subtotal,
            boxes_count=len(quote.boxes),
        )
    )
    _queue_notifications(services, quote, contact, origin, client_ip)

    logger.info(
        "quote_computed",
        channel="api",
        lines=len(quote.boxes),
        total_m2=str(quote.total_m2),
        subtotal=str(quote.subtotal),
    )
    return _respond(status.HTTP_200_OK, decision, quote=quote)


@router.get("")
async def quote_api_docs(services: Services = Depends(get_services)):
    """Self-describing usage document for API clients and crawlers."""
    limits = services.config.rate_limit
    return JSONResponse(
        content={
            "api": "Quilmes Corrugados Quote API",
            "version": API_VERSION,
            "documentation": "POST a JSON body with a non-empty 'boxes' array (max 10 items).",
            "endpoints": {
                "POST /api/v1/quote": {
                    "description": "Compute a quote for corrugated boxes",
                    "headers": {"X-API-Key": "Optional API key for higher rate limits"},
                    "body": {
                        "boxes": [
                            {
                                "length_mm": "integer, 100-2000",
                                "width_mm": "integer, 100-2000",
                                "height_mm": "integer, 50-1500",
                                "quantity": "integer, >= 1",
                                "has_printing": "boolean, optional",
                                "printing_colors": "integer 0-4, optional",
                            }
                        ],
                        "contact": {
                            "name": "optional",
                            "email": "optional",
                            "phone": "optional",
                            "company": "optional",
                            "notes": "optional",
                        },
                    },
                }
            },
            "rate_limits": {
                "without_api_key": f"{limits.anonymous_limit} requests/minute",
                "with_api_key": f"{limits.authenticated_limit} requests/minute",
            },
            "contact": "info@quilmescorrugados.com.ar",
        },
        headers={**CORS_HEADERS, "X-API-Version": API_VERSION},
    )


@router.options("")
async def quote_api_preflight():
    return Response(
        status_code=status.HTTP_204_NO_CONTENT,
        headers={**CORS_HEADERS, "Access-Control-Max-Age": "86400"},
    )

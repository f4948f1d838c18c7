"""Public API request telemetry.

Every request to the public quote endpoint (served, rejected or rate limited)
produces one `api_requests` row with a caller classification derived from
the User-Agent string. Telemetry failures are logged and never affect the
response.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError

from corrucalc.db.connection import get_session
from corrucalc.db.models import ApiRequestModel
from corrucalc.models import CallerType
from corrucalc.pricing.config_source import SessionScope

logger = logging.getLogger(__name__)

# Substring -> agent name, checked in order against the lowercased User-Agent
LLM_SIGNATURES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("gptbot", "chatgpt", "openai"), "gpt"),
    (("claude", "anthropic"), "claude"),
    (("perplexity",), "perplexity"),
    (("cohere",), "cohere"),
    (("gemini", "google-extended"), "gemini"),
    (("bingbot",), "bing"),
)

BROWSER_MARKERS = ("Mozilla", "Chrome", "Safari")


def detect_llm(user_agent: str | None) -> str | None:
    """Name of the automated agent in a User-Agent string, if any."""
    if not user_agent:
        return None
    ua = user_agent.lower()
    for needles, name in LLM_SIGNATURES:
        if any(needle in ua for needle in needles):
            return name
    return None


def classify_caller(user_agent: str | None, has_api_key: bool) -> CallerType:
    if detect_llm(user_agent):
        return CallerType.LLM
    if has_api_key:
        return CallerType.API_CLIENT
    if user_agent and any(marker in user_agent for marker in BROWSER_MARKERS):
        return CallerType.BROWSER
    return CallerType.UNKNOWN


def mask_ip(ip: str) -> str:
    """Keep the first three IPv4 octets: 203.0.113.xxx."""
    parts = ip.split(".")
    if len(parts) == 4:
        return ".".join(parts[:3]) + ".xxx"
    return ip


@dataclass
class RequestRecord:
    """Telemetry collected while a public request is being served."""

    endpoint: str
    method: str
    user_agent: str | None
    ip_address: str
    api_key_prefix: str | None = None
    origin: str | None = None
    started: float = field(default_factory=time.perf_counter)

    def to_model(
        self,
        status: int,
        rate_limit_remaining: int | None,
        rate_limited: bool = False,
        total_m2: Decimal | None = None,
        total_amount: Decimal | None = None,
        boxes_count: int | None = None,
    ) -> ApiRequestModel:
        return ApiRequestModel(
            endpoint=self.endpoint,
            method=self.method,
            api_key_prefix=self.api_key_prefix,
            user_agent=(self.user_agent or "unknown")[:500],
            ip_address=mask_ip(self.ip_address),
            origin=self.origin,
            response_status=status,
            response_time_ms=int((time.perf_counter() - self.started) * 1000),
            source_type=classify_caller(self.user_agent, self.api_key_prefix is not None).value,
            llm_detected=detect_llm(self.user_agent),
            total_m2=total_m2,
            total_amount=total_amount,
            boxes_count=boxes_count,
            rate_limit_remaining=rate_limit_remaining,
            rate_limited=rate_limited,
        )


class ApiRequestLogger:
    """Writes telemetry rows."""

    def __init__(self, session_scope: SessionScope = get_session):
        self.session_scope = session_scope

    async def record(self, row: ApiRequestModel) -> None:
        try:
            async with self.session_scope() as session:
                session.add(row)
        except SQLAlchemyError as e:
            logger.error("api_request_log_failed status=%s error=%s", row.response_status, e)
            return
        logger.info(
            "api_request status=%s source=%s llm=%s time_ms=%s",
            row.response_status, row.source_type, row.llm_detected, row.response_time_ms,
        )

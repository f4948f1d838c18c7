"""Inbound/outbound message log for the conversational channel."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from corrucalc.db.connection import get_session
from corrucalc.db.models import CommunicationModel
from corrucalc.pricing.config_source import SessionScope

logger = logging.getLogger(__name__)


class CommunicationLog:
    """Best-effort message history. A failed write never blocks a reply."""

    def __init__(self, session_scope: SessionScope = get_session, channel: str = "whatsapp"):
        self.session_scope = session_scope
        self.channel = channel

    async def record(
        self,
        address: str,
        direction: str,
        content: str,
        attributes: dict[str, Any] | None = None,
    ) -> None:
        try:
            async with self.session_scope() as session:
                session.add(
                    CommunicationModel(
                        channel=self.channel,
                        direction=direction,
                        address=address,
                        content=content,
                        attributes=attributes or {},
                    )
                )
        except SQLAlchemyError as e:
            logger.error("communication_log_failed address=%s direction=%s error=%s", address, direction, e)

    async def history(self, address: str, limit: int = 20) -> list[CommunicationModel]:
        """Latest messages for an address, oldest first."""
        async with self.session_scope() as session:
            stmt = (
                select(CommunicationModel)
                .where(
                    CommunicationModel.channel == self.channel,
                    CommunicationModel.address == address,
                )
                .order_by(CommunicationModel.created_at.desc())
                .limit(limit)
            )
            rows = (await session.execute(stmt)).scalars().all()
        return list(reversed(rows))

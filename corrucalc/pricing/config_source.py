"""Active pricing configuration source.

The strict channel (public API) treats a missing active configuration as a
hard failure. Assisted channels (WhatsApp bot, internal form) may substitute
FALLBACK_PRICING, which is flagged `is_fallback=True` on every quote it prices.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from corrucalc.db.connection import get_session
from corrucalc.db.models import PricingConfigModel
from corrucalc.exceptions import ConfigUnavailable
from corrucalc.models import PricingConfig

logger = logging.getLogger(__name__)

SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]

# Documented reference prices for assisted channels when the store is down
FALLBACK_PRICING = PricingConfig(
    id="fallback",
    price_per_m2_standard=Decimal("740"),
    price_per_m2_volume=Decimal("700"),
    volume_threshold_m2=Decimal("5000"),
    min_m2_per_model=Decimal("3000"),
    price_per_m2_below_minimum=Decimal("900"),
    absolute_minimum_m2=Decimal("1000"),
    free_shipping_min_m2=Decimal("4000"),
    free_shipping_max_km=Decimal("60"),
    production_days_standard=7,
    production_days_printing=14,
    quote_validity_days=7,
    valid_from=date(2025, 1, 1),
    is_active=True,
    is_fallback=True,
)

CONFIG_FIELDS = (
    "price_per_m2_standard",
    "price_per_m2_volume",
    "volume_threshold_m2",
    "min_m2_per_model",
    "price_per_m2_below_minimum",
    "absolute_minimum_m2",
    "free_shipping_min_m2",
    "free_shipping_max_km",
    "production_days_standard",
    "production_days_printing",
    "quote_validity_days",
)


def _to_snapshot(row: PricingConfigModel) -> PricingConfig:
    return PricingConfig(
        id=str(row.id),
        **{name: getattr(row, name) for name in CONFIG_FIELDS},
        valid_from=row.valid_from,
        valid_until=row.valid_until,
        is_active=row.is_active,
    )


class PricingConfigRepository:
    """Reads and versions pricing configuration rows."""

    def __init__(self, session_scope: SessionScope = get_session):
        self.session_scope = session_scope

    async def get_active(self) -> PricingConfig:
        """Return the currently active configuration.

        Raises:
            ConfigUnavailable: No active row, or the store cannot be read
        """
        try:
            async with self.session_scope() as session:
                stmt = (
                    select(PricingConfigModel)
                    .where(PricingConfigModel.is_active.is_(True))
                    .order_by(PricingConfigModel.valid_from.desc())
                    .limit(1)
                )
                row = (await session.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("pricing_config_read_failed: %s", e)
            raise ConfigUnavailable("Pricing configuration store unavailable") from e

        if row is None:
            raise ConfigUnavailable("No active pricing configuration")
        return _to_snapshot(row)

    async def get_active_or_fallback(self) -> PricingConfig:
        """Assisted-channel read: substitute FALLBACK_PRICING explicitly."""
        try:
            return await self.get_active()
        except ConfigUnavailable as e:
            logger.warning("pricing_config_fallback_used: %s", e)
            return FALLBACK_PRICING

    async def activate(self, values: dict[str, Any], valid_from: date | None = None) -> PricingConfig:
        """Append a new configuration version and make it the only active one.

        The previous active row is deactivated (valid_until set), never edited.
        """
        missing = [
            name for name in CONFIG_FIELDS
            if name not in values and name not in ("price_per_m2_below_minimum", "absolute_minimum_m2")
        ]
        if missing:
            raise ValueError(f"Missing pricing fields: {', '.join(missing)}")

        start = valid_from or date.today()
        async with self.session_scope() as session:
            await session.execute(
                update(PricingConfigModel)
                .where(PricingConfigModel.is_active.is_(True))
                .values(is_active=False, valid_until=start)
            )
            row = PricingConfigModel(
                **{name: values[name] for name in CONFIG_FIELDS if name in values},
                valid_from=start,
                is_active=True,
            )
            session.add(row)
            await session.flush()
            snapshot = _to_snapshot(row)

        logger.info("pricing_config_activated id=%s", snapshot.id)
        return snapshot

    async def history(self, limit: int = 20) -> list[PricingConfig]:
        async with self.session_scope() as session:
            stmt = (
                select(PricingConfigModel)
                .order_by(PricingConfigModel.created_at.desc())
                .limit(limit)
            )
            rows = (await session.execute(stmt)).scalars().all()
        return [_to_snapshot(row) for row in rows]

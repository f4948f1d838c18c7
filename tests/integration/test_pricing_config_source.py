"""Integration tests for versioned pricing configuration."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from corrucalc.db.models import PricingConfigModel
from corrucalc.exceptions import ConfigUnavailable
from corrucalc.pricing.config_source import FALLBACK_PRICING, PricingConfigRepository

pytestmark = pytest.mark.integration


class TestGetActive:
    @pytest.mark.asyncio
    async def test_empty_store_is_unavailable(self, session_scope):
        repo = PricingConfigRepository(session_scope)

        with pytest.raises(ConfigUnavailable):
            await repo.get_active()

    @pytest.mark.asyncio
    async def test_broken_store_is_unavailable(self, broken_scope):
        repo = PricingConfigRepository(broken_scope)

        with pytest.raises(ConfigUnavailable):
            await repo.get_active()

    @pytest.mark.asyncio
    async def test_assisted_read_falls_back(self, broken_scope):
        config = await PricingConfigRepository(broken_scope).get_active_or_fallback()

        assert config is FALLBACK_PRICING
        assert config.is_fallback is True

    @pytest.mark.asyncio
    async def test_active_snapshot(self, session_scope, active_pricing):
        config = await PricingConfigRepository(session_scope).get_active()

        assert config.id == active_pricing.id
        assert config.price_per_m2_standard == Decimal("700")
        assert config.absolute_minimum_m2 == Decimal("100")
        assert config.is_fallback is False


class TestActivate:
    @pytest.mark.asyncio
    async def test_new_version_deactivates_previous(self, session_scope, pricing_values, active_pricing):
        repo = PricingConfigRepository(session_scope)
        pricing_values["price_per_m2_standard"] = Decimal("720")

        newer = await repo.activate(pricing_values, valid_from=date(2025, 6, 1))

        assert (await repo.get_active()).id == newer.id
        versions = {c.id: c for c in await repo.history()}
        assert len(versions) == 2
        previous = versions[active_pricing.id]
        assert previous.is_active is False
        assert previous.valid_until == date(2025, 6, 1)
        assert previous.price_per_m2_standard == Decimal("700")

    @pytest.mark.asyncio
    async def test_second_active_row_rejected(self, session_scope, pricing_values, active_pricing):
        with pytest.raises(IntegrityError):
            async with session_scope() as session:
                session.add(
                    PricingConfigModel(**pricing_values, valid_from=date(2025, 6, 1), is_active=True)
                )

        assert (await PricingConfigRepository(session_scope).get_active()).id == active_pricing.id

    @pytest.mark.asyncio
    async def test_missing_fields_rejected(self, session_scope):
        repo = PricingConfigRepository(session_scope)

        with pytest.raises(ValueError, match="price_per_m2_volume"):
            await repo.activate({"price_per_m2_standard": Decimal("700")})

        with pytest.raises(ConfigUnavailable):
            await repo.get_active()

    @pytest.mark.asyncio
    async def test_optional_floor_fields_use_defaults(self, session_scope, pricing_values):
        del pricing_values["absolute_minimum_m2"]
        del pricing_values["price_per_m2_below_minimum"]

        config = await PricingConfigRepository(session_scope).activate(pricing_values)

        assert config.absolute_minimum_m2 == Decimal("1000")
        assert config.price_per_m2_below_minimum is None

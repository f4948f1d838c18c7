"""Pytest configuration and fixtures for CorruCalc tests.

Provides common fixtures for testing: pricing snapshots, a file-backed
SQLite database per test and an application config that never touches
external services.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import date
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from corrucalc.config import AppConfig, DBConfig, reset_config
from corrucalc.db.models import Base
from corrucalc.models import BoxSpec, PricingConfig
from corrucalc.pricing.config_source import PricingConfigRepository

TEST_PRICING = {
    "price_per_m2_standard": Decimal("700"),
    "price_per_m2_volume": Decimal("670"),
    "volume_threshold_m2": Decimal("5000"),
    "min_m2_per_model": Decimal("300"),
    "price_per_m2_below_minimum": Decimal("850"),
    "absolute_minimum_m2": Decimal("100"),
    "free_shipping_min_m2": Decimal("4000"),
    "free_shipping_max_km": Decimal("60"),
    "production_days_standard": 7,
    "production_days_printing": 14,
    "quote_validity_days": 7,
}


@pytest.fixture(autouse=True)
def setup_test_env(monkeypatch):
    """Set up test environment variables."""
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    reset_config()
    yield
    reset_config()


@pytest.fixture
def pricing_values() -> dict:
    """Raw pricing fields, as accepted by PricingConfigRepository.activate."""
    return dict(TEST_PRICING)


@pytest.fixture
def pricing_config() -> PricingConfig:
    """Active pricing snapshot used across pricing tests."""
    return PricingConfig(**TEST_PRICING, valid_from=date(2025, 1, 1))


@pytest.fixture
def standard_box() -> BoxSpec:
    """400x300x200 box: 500 x 1450 mm sheet, 0.725 m2 per unit."""
    return BoxSpec(length_mm=400, width_mm=300, height_mm=200, quantity=1000)


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """Fresh SQLite database with every table created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'corrucalc.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_scope(db_engine):
    """Session context manager factory bound to the test database."""
    factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    @asynccontextmanager
    async def scope() -> AsyncGenerator[AsyncSession, None]:
        session = factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    return scope


@pytest.fixture
def broken_scope():
    """Session factory whose every use fails like an unreachable database."""
    from sqlalchemy.exc import OperationalError

    @asynccontextmanager
    async def scope():
        raise OperationalError("SELECT 1", {}, Exception("database is down"))
        yield  # pragma: no cover

    return scope


@pytest_asyncio.fixture
async def active_pricing(session_scope) -> PricingConfig:
    """Store TEST_PRICING as the active configuration."""
    return await PricingConfigRepository(session_scope).activate(
        TEST_PRICING, valid_from=date(2025, 1, 1)
    )


@pytest.fixture
def app_config() -> AppConfig:
    """Config with metrics off and every external integration unconfigured."""
    return AppConfig(
        db=DBConfig(url="sqlite+aiosqlite:///:memory:"),
        environment="test",
        log_level="DEBUG",
        log_format="text",
        metrics_enabled=False,
    )

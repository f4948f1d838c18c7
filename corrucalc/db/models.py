"""SQLAlchemy async database models for CorruCalc.

Pricing configuration is append-only: a change inserts a new row and
deactivates the previous one, so historical quotes stay explainable.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Index,
    Integer,
    Numeric,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class PricingConfigModel(Base):
    """One version of the pricing configuration."""

    __tablename__ = "pricing_configs"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)

    price_per_m2_standard: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    price_per_m2_volume: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    volume_threshold_m2: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    min_m2_per_model: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    price_per_m2_below_minimum: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    absolute_minimum_m2: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("1000")
    )
    free_shipping_min_m2: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    free_shipping_max_km: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False)
    production_days_standard: Mapped[int] = mapped_column(Integer, nullable=False)
    production_days_printing: Mapped[int] = mapped_column(Integer, nullable=False)
    quote_validity_days: Mapped[int] = mapped_column(Integer, nullable=False)

    valid_from: Mapped[date] = mapped_column(Date, nullable=False)
    valid_until: Mapped[date | None] = mapped_column(Date)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("idx_pricing_active_valid_from", "is_active", "valid_from"),
        # At most one active version
        Index(
            "uq_pricing_single_active",
            "is_active",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active"),
        ),
    )


class ApiKeyModel(Base):
    """Public API credential. Only the sha256 hash of the key is stored."""

    __tablename__ = "api_keys"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    key_hash: Mapped[str] = mapped_column(Text, nullable=False, unique=True, index=True)
    key_prefix: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    owner_email: Mapped[str | None] = mapped_column(Text)
    owner_company: Mapped[str | None] = mapped_column(Text)
    rate_limit_per_minute: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class ApiRequestModel(Base):
    """Telemetry row for every public API request, including rejected ones."""

    __tablename__ = "api_requests"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    endpoint: Mapped[str] = mapped_column(Text, nullable=False)
    method: Mapped[str] = mapped_column(Text, nullable=False)
    api_key_prefix: Mapped[str | None] = mapped_column(Text)
    user_agent: Mapped[str | None] = mapped_column(Text)
    ip_address: Mapped[str | None] = mapped_column(Text)
    origin: Mapped[str | None] = mapped_column(Text)
    response_status: Mapped[int] = mapped_column(Integer, nullable=False)
    response_time_ms: Mapped[int] = mapped_column(Integer, nullable=False)
    source_type: Mapped[str] = mapped_column(Text, nullable=False)
    llm_detected: Mapped[str | None] = mapped_column(Text)
    total_m2: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    total_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    boxes_count: Mapped[int | None] = mapped_column(Integer)
    rate_limit_remaining: Mapped[int | None] = mapped_column(Integer)
    rate_limited: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("idx_api_requests_created", "created_at"),
        Index("idx_api_requests_source", "source_type"),
    )


class ConversationSessionModel(Base):
    """Durable conversational state, one row per address.

    `version` is bumped on every write; updates are compare-and-swap on it.
    """

    __tablename__ = "conversation_sessions"

    address: Mapped[str] = mapped_column(Text, primary_key=True)
    state: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    last_interaction: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class CommunicationModel(Base):
    """Inbound/outbound conversational message log."""

    __tablename__ = "communications"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    channel: Mapped[str] = mapped_column(Text, nullable=False, default="whatsapp")
    direction: Mapped[str] = mapped_column(Text, nullable=False)  # inbound, outbound
    address: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    attributes: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),  # sub-second ordering of a conversation
        server_default=func.now(),
        nullable=False,
    )


class PublicQuoteModel(Base):
    """Lead captured by the public web quoting form."""

    __tablename__ = "public_quotes"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)

    requester_name: Mapped[str] = mapped_column(Text, nullable=False)
    requester_email: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    requester_phone: Mapped[str] = mapped_column(Text, nullable=False)
    requester_company: Mapped[str | None] = mapped_column(Text)
    message: Mapped[str | None] = mapped_column(Text)
    distance_km: Mapped[Decimal | None] = mapped_column(Numeric(8, 2))

    boxes: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    total_m2: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    price_per_m2: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    estimated_days: Mapped[int] = mapped_column(Integer, nullable=False)
    valid_until: Mapped[date] = mapped_column(Date, nullable=False)

    below_minimum: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="pending")
    source_ip: Mapped[str | None] = mapped_column(Text)
    source_user_agent: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

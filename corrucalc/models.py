"""CorruCalc Pydantic models for type-safe data validation.

All monetary and area values are Decimals so every channel produces the same
figures for the same input. JSON output renders them as numbers.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer

# Decimal that serializes as a JSON number
Number = Annotated[
    Decimal, PlainSerializer(lambda v: float(v), return_type=float, when_used="json")
]


class ClientType(str, Enum):
    """Who is asking for the quote."""

    PARTICULAR = "particular"
    EMPRESA = "empresa"


class ConversationStep(str, Enum):
    """Conversational quoting steps."""

    INITIAL = "initial"
    WAITING_CLIENT_TYPE = "waiting_client_type"
    WAITING_NAME = "waiting_name"
    WAITING_COMPANY_INFO = "waiting_company_info"
    WAITING_DIMENSIONS = "waiting_dimensions"
    WAITING_QUANTITY = "waiting_quantity"
    WAITING_PRINTING = "waiting_printing"
    QUOTED = "quoted"


class Intent(str, Enum):
    """Fixed output vocabulary of the intent classifier."""

    GREETING = "greeting"
    QUOTE_REQUEST = "quote_request"
    CLOSING = "closing"
    ADVISOR = "advisor"
    CLIENT_PARTICULAR = "client_particular"
    CLIENT_EMPRESA = "client_empresa"
    QUESTION_SHIPPING = "question_shipping"
    QUESTION_OTHER = "question_other"
    UNKNOWN = "unknown"


class CallerType(str, Enum):
    """Caller classification used in request telemetry."""

    BROWSER = "browser"
    API_CLIENT = "api_client"
    LLM = "llm"
    UNKNOWN = "unknown"


class BoxSpec(BaseModel):
    """One requested box type."""

    model_config = ConfigDict(frozen=True)

    length_mm: int
    width_mm: int
    height_mm: int
    quantity: int
    has_printing: bool = False
    printing_colors: int = 0

    @property
    def is_printed(self) -> bool:
        return self.has_printing or self.printing_colors > 0

    def describe(self) -> str:
        return f"{self.length_mm}x{self.width_mm}x{self.height_mm}"


class UnfoldedSheet(BaseModel):
    """Flat corrugated-board blank for one box."""

    model_config = ConfigDict(frozen=True)

    sheet_width_mm: int
    sheet_length_mm: int
    area_per_unit_m2: Number


class PricingConfig(BaseModel):
    """Snapshot of one pricing configuration row.

    Instances are immutable: a quote computation holds a single snapshot for its
    whole duration.
    """

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: str | None = None
    price_per_m2_standard: Number
    price_per_m2_volume: Number
    volume_threshold_m2: Number
    min_m2_per_model: Number
    price_per_m2_below_minimum: Number | None = None
    absolute_minimum_m2: Number = Decimal("1000")
    free_shipping_min_m2: Number
    free_shipping_max_km: Number
    production_days_standard: int
    production_days_printing: int
    quote_validity_days: int
    valid_from: date
    valid_until: date | None = None
    is_active: bool = True
    is_fallback: bool = False


class QuoteLine(BaseModel):
    """One priced BoxSpec."""

    model_config = ConfigDict(frozen=True)

    length_mm: int
    width_mm: int
    height_mm: int
    quantity: int
    has_printing: bool
    printing_colors: int
    sheet_width_mm: int
    sheet_length_mm: int
    sqm_per_box: Number
    total_sqm: Number
    price_per_m2: Number
    unit_price: Number
    subtotal: Number


class Quote(BaseModel):
    """Priced collection of lines."""

    model_config = ConfigDict(frozen=True)

    boxes: list[QuoteLine]
    total_m2: Number
    subtotal: Number
    currency: str = "ARS"
    price_per_m2: Number
    estimated_days: int
    valid_until: date
    minimum_m2: Number
    meets_minimum: bool
    below_minimum: bool = False
    is_fallback_pricing: bool = False
    warnings: list[str] = Field(default_factory=list)


class ContactInfo(BaseModel):
    """Optional contact block attached to a public quote request."""

    name: str | None = None
    email: str | None = None
    phone: str | None = None
    company: str | None = None
    notes: str | None = None

    def is_present(self) -> bool:
        return any(
            (value or "").strip()
            for value in (self.name, self.email, self.phone, self.company)
        )


class RateLimitInfo(BaseModel):
    remaining: int
    reset_at: datetime


class QuoteResponse(BaseModel):
    """Envelope returned by the public quote endpoint."""

    success: bool
    quote: Quote | None = None
    error: str | None = None
    errors: list[str] | None = None
    rate_limit: RateLimitInfo


class Credential(BaseModel):
    """Cached verdict for an API credential (never holds the raw key)."""

    key_hash: str
    valid: bool
    rate_limit_per_minute: int | None = None
    name: str | None = None
    key_id: str | None = None


class BoxDimensions(BaseModel):
    length: int
    width: int
    height: int


class LastQuote(BaseModel):
    subtotal: Number
    total_m2: Number


class ConversationSession(BaseModel):
    """Per-address conversational state."""

    address: str
    step: ConversationStep = ConversationStep.INITIAL
    client_type: ClientType | None = None
    client_name: str | None = None
    company_name: str | None = None
    client_email: str | None = None
    dimensions: BoxDimensions | None = None
    quantity: int | None = None
    has_printing: bool | None = None
    last_quote: LastQuote | None = None
    last_interaction: datetime
    needs_advisor: bool = False
    attended: bool = False
    version: int = 0

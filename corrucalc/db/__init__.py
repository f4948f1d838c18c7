"""Database layer for CorruCalc with async SQLAlchemy."""

from corrucalc.db.connection import get_session, init_db
from corrucalc.db.models import (
    ApiKeyModel,
    ApiRequestModel,
    Base,
    CommunicationModel,
    ConversationSessionModel,
    PricingConfigModel,
    PublicQuoteModel,
)

__all__ = [
    "Base",
    "PricingConfigModel",
    "ApiKeyModel",
    "ApiRequestModel",
    "ConversationSessionModel",
    "CommunicationModel",
    "PublicQuoteModel",
    "get_session",
    "init_db",
]

"""CorruCalc web route modules.

Each module exports a `router` (APIRouter) that `create_app` includes:
- health: database/cache/notification status
- public_quote: rate-limited public quoting API (/api/v1/quote)
- quotes: internal quoting form and website lead form
- whatsapp: Twilio webhook driving the conversational engine
"""

from corrucalc.web.routes import health, public_quote, quotes, whatsapp

__all__ = ["health", "public_quote", "quotes", "whatsapp"]

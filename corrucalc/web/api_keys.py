"""API credential generation, lookup and short-TTL verdict caching.

Raw keys are shown once at creation and never stored: the database and the
cache only ever see the sha256 hash. Invalid verdicts are cached exactly like
valid ones so that random keys cannot bypass the cache to hammer the store.
Deactivating a key takes effect once its cached verdict expires.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from abc import ABC, abstractmethod
from datetime import datetime, timezone

from sqlalchemy import select, update

from corrucalc.core.cache import Cache
from corrucalc.db.connection import get_session
from corrucalc.db.models import ApiKeyModel
from corrucalc.models import Credential
from corrucalc.pricing.config_source import SessionScope

logger = logging.getLogger(__name__)

API_KEY_PREFIX = "qc_live_"
CREDENTIAL_CACHE_TTL = 300


def generate_api_key() -> str:
    """Format: qc_live_<32 url-safe characters>."""
    return f"{API_KEY_PREFIX}{secrets.token_urlsafe(24)}"


def hash_api_key(key: str) -> str:
    return hashlib.sha256(key.encode()).hexdigest()


def key_display_prefix(key: str) -> str:
    return key[:12] + "..."


class CredentialStore(ABC):
    """Source of truth for API credentials."""

    @abstractmethod
    async def lookup(self, key_hash: str) -> Credential | None:
        """Return the credential for a key hash, or None if unknown."""


class DatabaseCredentialStore(CredentialStore):
    """Credential lookup against the api_keys table."""

    def __init__(self, session_scope: SessionScope = get_session):
        self.session_scope = session_scope

    async def lookup(self, key_hash: str) -> Credential | None:
        async with self.session_scope() as session:
            stmt = select(ApiKeyModel).where(ApiKeyModel.key_hash == key_hash)
            row = (await session.execute(stmt)).scalar_one_or_none()
            if row is None:
                return None

            now = datetime.now(timezone.utc)
            expires_at = row.expires_at
            if expires_at is not None and expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
            valid = row.is_active and (expires_at is None or expires_at > now)

            if valid:
                await session.execute(
                    update(ApiKeyModel)
                    .where(ApiKeyModel.id == row.id)
                    .values(last_used_at=now)
                )

            return Credential(
                key_hash=key_hash,
                valid=valid,
                rate_limit_per_minute=row.rate_limit_per_minute,
                name=row.name,
                key_id=str(row.id),
            )

    async def create(
        self,
        name: str,
        rate_limit_per_minute: int = 100,
        owner_email: str | None = None,
        owner_company: str | None = None,
        expires_at: datetime | None = None,
    ) -> tuple[str, ApiKeyModel]:
        """Create a credential. Returns the raw key, which is not recoverable later."""
        if len(name.strip()) < 3:
            raise ValueError("name must have at least 3 characters")

        raw_key = generate_api_key()
        row = ApiKeyModel(
            key_hash=hash_api_key(raw_key),
            key_prefix=key_display_prefix(raw_key),
            name=name.strip(),
            owner_email=owner_email,
            owner_company=owner_company,
            rate_limit_per_minute=rate_limit_per_minute,
            expires_at=expires_at,
        )
        async with self.session_scope() as session:
            session.add(row)
        logger.info("api_key_created prefix=%s name=%s", row.key_prefix, row.name)
        return raw_key, row


class CredentialVerifier:
    """Verifies raw API keys with a TTL cache in front of the store.

    Args:
        cache: Shared cache
        store: Source of truth
        ttl_seconds: How long a verdict (valid or not) is trusted
    """

    def __init__(self, cache: Cache, store: CredentialStore, ttl_seconds: int = CREDENTIAL_CACHE_TTL):
        self.cache = cache
        self.store = store
        self.ttl_seconds = ttl_seconds

    async def verify(self, raw_key: str) -> Credential:
        key_hash = hash_api_key(raw_key)
        cache_key = f"cred:{key_hash}"

        try:
            cached = await self.cache.get(cache_key)
        except Exception as e:
            logger.error("credential_cache_read_failed error=%s", e)
            cached = None
        if cached is not None:
            return Credential(**cached)

        try:
            credential = await self.store.lookup(key_hash)
        except Exception as e:
            # Unverifiable: anonymous tier, and don't cache the outage
            logger.error("credential_store_unavailable error=%s", e)
            return Credential(key_hash=key_hash, valid=False)

        if credential is None:
            credential = Credential(key_hash=key_hash, valid=False)

        try:
            await self.cache.set(cache_key, credential.model_dump(), self.ttl_seconds)
        except Exception as e:
            logger.error("credential_cache_write_failed error=%s", e)

        return credential

"""Per-address conversation state with inactivity expiry.

Reads apply the expiry rule every time (no background sweep). Writes refresh
`last_interaction` and are compare-and-swap on the row version, serialized per
address by an in-process lock, so a read-modify-write of one address is a
single atomic unit while different addresses proceed independently.

Every successful read or write is mirrored into a process-local cache; when
the durable store errors, that cache serves the most recent known state.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from corrucalc.db.connection import get_session
from corrucalc.db.models import ConversationSessionModel
from corrucalc.exceptions import CorruCalcError
from corrucalc.models import ConversationSession
from corrucalc.pricing.config_source import SessionScope

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30 * 60

# Columns of ConversationSession that live outside the JSON state blob
_ROW_FIELDS = {"address", "version", "last_interaction"}


class SessionConflict(CorruCalcError):
    """Another writer updated the session since it was read."""


def _utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionTransaction:
    """Mutable holder used inside `SessionStore.transaction`."""

    def __init__(self, session: ConversationSession):
        self.session = session
        self.cleared = False
        self._on_commit: list[Callable[[], None]] = []

    def on_commit(self, callback: Callable[[], None]) -> None:
        """Run `callback` once the session write succeeded."""
        self._on_commit.append(callback)

    def _run_on_commit(self) -> None:
        for callback in self._on_commit:
            try:
                callback()
            except Exception as e:
                logger.error("session_on_commit_failed address=%s error=%s", self.session.address, e)

    def update(self, **changes: Any) -> ConversationSession:
        self.session = self.session.model_copy(update=changes)
        self.cleared = False
        return self.session

    def reset(self, **keep: Any) -> ConversationSession:
        """Back to a fresh initial record, optionally keeping some fields."""
        self.session = ConversationSession(
            address=self.session.address,
            last_interaction=self.session.last_interaction,
            version=self.session.version,
            **keep,
        )
        return self.session

    def clear(self) -> None:
        self.cleared = True


class SessionStore:
    """Conversation session repository.

    Args:
        session_scope: Async session context manager factory (DB access)
        timeout_seconds: Inactivity window after which a session reads as new
        clock: UTC clock, injectable for tests
    """

    def __init__(
        self,
        session_scope: SessionScope = get_session,
        timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.session_scope = session_scope
        self.timeout = timedelta(seconds=timeout_seconds)
        self.clock = clock
        self._local: dict[str, ConversationSession] = {}
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, address: str) -> asyncio.Lock:
        lock = self._locks.get(address)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[address] = lock
        return lock

    def _fresh(self, address: str, version: int = 0) -> ConversationSession:
        return ConversationSession(address=address, last_interaction=self.clock(), version=version)

    async def _load(self, address: str) -> ConversationSession | None:
        try:
            async with self.session_scope() as db:
                row = await db.get(ConversationSessionModel, address)
                if row is None:
                    self._local.pop(address, None)
                    return None
                stored = ConversationSession(
                    address=row.address,
                    version=row.version,
                    last_interaction=_utc(row.last_interaction),
                    **row.state,
                )
        except SQLAlchemyError as e:
            logger.warning("session_store_unavailable address=%s error=%s", address, e)
            return self._local.get(address)

        self._local[address] = stored
        return stored

    async def get(self, address: str) -> ConversationSession:
        """Current session for `address`; a fresh initial record if unknown or expired."""
        stored = await self._load(address)
        if stored is None:
            return self._fresh(address)

        if self.clock() - stored.last_interaction > self.timeout:
            logger.info("session_expired address=%s step=%s", address, stored.step.value)
            self._local.pop(address, None)
            # Keep the version so the next write replaces the stale row
            return self._fresh(address, version=stored.version)

        return stored

    async def _save(self, session: ConversationSession) -> ConversationSession:
        """Compare-and-swap write. Returns the stored record (version bumped)."""
        written = session.model_copy(
            update={"last_interaction": self.clock(), "version": session.version + 1}
        )
        state = written.model_dump(mode="json", exclude=_ROW_FIELDS)

        try:
            async with self.session_scope() as db:
                if session.version == 0:
                    db.add(
                        ConversationSessionModel(
                            address=written.address,
                            state=state,
                            version=written.version,
                            last_interaction=written.last_interaction,
                        )
                    )
                    await db.flush()
                else:
                    result = await db.execute(
                        update(ConversationSessionModel)
                        .where(
                            ConversationSessionModel.address == written.address,
                            ConversationSessionModel.version == session.version,
                        )
                        .values(
                            state=state,
                            version=written.version,
                            last_interaction=written.last_interaction,
                        )
                    )
                    if result.rowcount == 0:
                        raise SessionConflict(f"Session {written.address} changed concurrently")
        except IntegrityError as e:
            raise SessionConflict(f"Session {written.address} created concurrently") from e
        except SQLAlchemyError as e:
            logger.warning("session_store_write_failed address=%s error=%s", written.address, e)

        self._local[written.address] = written
        return written

    async def update(self, address: str, **changes: Any) -> ConversationSession:
        """Atomic read-modify-write of selected fields."""
        async with self.transaction(address) as txn:
            txn.update(**changes)
        return txn.session

    async def clear(self, address: str) -> None:
        async with self._lock_for(address):
            await self._delete(address)

    async def _delete(self, address: str) -> None:
        self._local.pop(address, None)
        try:
            async with self.session_scope() as db:
                await db.execute(
                    delete(ConversationSessionModel).where(
                        ConversationSessionModel.address == address
                    )
                )
        except SQLAlchemyError as e:
            logger.warning("session_store_delete_failed address=%s error=%s", address, e)

    @asynccontextmanager
    async def transaction(self, address: str) -> AsyncIterator[SessionTransaction]:
        """Hold the address lock across read, caller mutation and write.

        Usage:
            async with store.transaction(address) as txn:
                txn.update(step=ConversationStep.WAITING_QUANTITY)

        The write happens only if the block exits cleanly.
        """
        async with self._lock_for(address):
            txn = SessionTransaction(await self.get(address))
            yield txn
            if txn.cleared:
                await self._delete(address)
            else:
                txn.session = await self._save(txn.session)
        txn._run_on_commit()

    async def recent(self, limit: int = 50) -> list[ConversationSession]:
        """Most recently active sessions (expired ones included), newest first."""
        async with self.session_scope() as db:
            stmt = (
                select(ConversationSessionModel)
                .order_by(ConversationSessionModel.last_interaction.desc())
                .limit(limit)
            )
            rows = (await db.execute(stmt)).scalars().all()
        return [
            ConversationSession(
                address=row.address,
                version=row.version,
                last_interaction=_utc(row.last_interaction),
                **row.state,
            )
            for row in rows
        ]

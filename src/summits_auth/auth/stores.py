"""Session persistence backends.

A store maps an opaque session token to encoded session bytes and an
absolute expiry (epoch seconds). Stores never return expired records, and
`commit` replaces the whole record, so concurrent writers of one session
resolve as last-writer-wins instead of merging.

## Backends

- `DatabaseSessionStore`: the `sessions` table; survives restarts and is shared
  by every worker process using the same database.
- `MemorySessionStore`: a dict in the current process. Sessions (and pending
  OAuth state) are lost on restart and not visible to other workers, so it is
  only suitable for tests and single-process development servers.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError

from summits_auth.database.connection import Database
from summits_auth.database.models import SessionRecord

logger = logging.getLogger(__name__)

# Dialects with a single-statement INSERT ... ON CONFLICT DO UPDATE
_UPSERT_INSERTS = {
    "sqlite": sqlite_insert,
    "postgresql": postgresql_insert,
}


class SessionStoreError(Exception):
    """Raised when the session backend cannot serve a request."""


class SessionStore(ABC):
    """Key/value persistence for sessions."""

    @abstractmethod
    async def find(self, token: str) -> bytes | None:
        """Return the session bytes, or None if unknown or expired."""

    @abstractmethod
    async def commit(self, token: str, data: bytes, expiry: float) -> None:
        """Insert or replace a session record."""

    @abstractmethod
    async def delete(self, token: str) -> None:
        """Remove a session record. Deleting an unknown token is not an error."""

    async def delete_expired(self) -> int:
        """Remove expired records and return how many were removed."""
        return 0


class MemorySessionStore(SessionStore):
    """In-process session store."""

    def __init__(self) -> None:
        self._items: dict[str, tuple[bytes, float]] = {}

    async def find(self, token: str) -> bytes | None:
        item = self._items.get(token)
        if item is None:
            return None

        data, expiry = item
        if expiry <= time.time():
            del self._items[token]
            return None
        return data

    async def commit(self, token: str, data: bytes, expiry: float) -> None:
        self._items[token] = (data, expiry)

    async def delete(self, token: str) -> None:
        self._items.pop(token, None)

    async def delete_expired(self) -> int:
        now = time.time()
        expired = [token for token, (_, expiry) in self._items.items() if expiry <= now]
        for token in expired:
            del self._items[token]
        return len(expired)

    def __len__(self) -> int:
        return len(self._items)


class DatabaseSessionStore(SessionStore):
    """Session store backed by the `sessions` table."""

    def __init__(self, database: Database):
        self._db = database

    async def find(self, token: str) -> bytes | None:
        try:
            async with self._db.session() as session:
                result = await session.execute(
                    select(SessionRecord.data).where(
                        SessionRecord.token == token,
                        SessionRecord.expiry > time.time(),
                    )
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise SessionStoreError(f"Failed to load session: {e}") from e

    async def commit(self, token: str, data: bytes, expiry: float) -> None:
        values = {"token": token, "data": data, "expiry": expiry}
        try:
            async with self._db.session() as session:
                dialect = self._db.engine.dialect.name
                if dialect in _UPSERT_INSERTS:
                    stmt = _UPSERT_INSERTS[dialect](SessionRecord).values(**values)
                    await session.execute(
                        stmt.on_conflict_do_update(
                            index_elements=[SessionRecord.token],
                            set_={"data": stmt.excluded.data, "expiry": stmt.excluded.expiry},
                        )
                    )
                else:
                    await session.merge(SessionRecord(**values))
                await session.commit()
        except SQLAlchemyError as e:
            raise SessionStoreError(f"Failed to commit session: {e}") from e

    async def delete(self, token: str) -> None:
        try:
            async with self._db.session() as session:
                await session.execute(
                    delete(SessionRecord).where(SessionRecord.token == token)
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise SessionStoreError(f"Failed to delete session: {e}") from e

    async def delete_expired(self) -> int:
        try:
            async with self._db.session() as session:
                result = await session.execute(
                    delete(SessionRecord).where(SessionRecord.expiry <= time.time())
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise SessionStoreError(f"Failed to delete expired sessions: {e}") from e

        return result.rowcount or 0

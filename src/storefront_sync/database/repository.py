"""Key-value repositories — SQL-backed and in-memory stores."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront_sync.database.base import KeyValueStore
from storefront_sync.models.kv_entry import KVEntry

logger = logging.getLogger(__name__)


class SQLKeyValueStore(KeyValueStore):
    """Persists entries in the ``kv_entries`` table.

    Every call opens its own short-lived session, so the store can be
    shared freely between concurrent tasks.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, key: str) -> str | None:
        async with self._session_factory() as session:
            stmt = select(KVEntry.value).where(KVEntry.key == key)
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def set(self, key: str, value: str) -> None:
        async with self._session_factory() as session:
            entry = await session.get(KVEntry, key)
            if entry is None:
                session.add(KVEntry(key=key, value=value))
            else:
                entry.value = value
            await session.commit()
        logger.debug("Stored %s (%d chars)", key, len(value))

    async def delete(self, key: str) -> None:
        await self.delete_many([key])

    async def delete_many(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        async with self._session_factory() as session:
            await session.execute(delete(KVEntry).where(KVEntry.key.in_(keys)))
            await session.commit()
        logger.debug("Deleted keys %s", keys)


class MemoryKeyValueStore(KeyValueStore):
    """Dict-backed store for tests and throwaway simulator runs."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def delete_many(self, keys: Iterable[str]) -> None:
        for key in list(keys):
            self._data.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._data

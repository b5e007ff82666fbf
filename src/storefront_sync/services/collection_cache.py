"""Collection cache — whole-snapshot persistence for the customer list."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from pydantic import TypeAdapter, ValidationError

from storefront_sync.config import settings
from storefront_sync.database.base import KeyValueStore
from storefront_sync.models.entities import Customer

logger = logging.getLogger(__name__)

_snapshot_adapter = TypeAdapter(list[Customer])


class CollectionCache:
    """Single-slot store for the last known customer snapshot.

    The snapshot is always replaced wholesale; there is no merge, no
    expiry and no freshness check on restore.
    """

    def __init__(self, store: KeyValueStore, key: str | None = None) -> None:
        self._store = store
        self.key = key or settings.customers_key

    async def save_snapshot(self, records: Sequence[Customer]) -> None:
        """Serialize the full ordered sequence, replacing any prior value."""
        payload = _snapshot_adapter.dump_json(list(records)).decode()
        await self._store.set(self.key, payload)
        logger.info("Saved customer snapshot (%d records)", len(records))

    async def restore_snapshot(self) -> list[Customer]:
        """Return the stored snapshot, or an empty list if absent or corrupt."""
        raw = await self._store.get(self.key)
        if raw is None:
            logger.debug("No customer snapshot stored")
            return []
        try:
            records = _snapshot_adapter.validate_json(raw)
        except ValidationError:
            logger.warning("Stored customer snapshot is unreadable, treating as empty")
            return []
        logger.info("Restored customer snapshot (%d records)", len(records))
        return records

    async def clear_snapshot(self) -> None:
        await self._store.delete(self.key)
        logger.info("Customer snapshot cleared")

"""Session cache — persists the authenticated supplier across restarts."""

from __future__ import annotations

import logging

from pydantic import ValidationError

from storefront_sync.config import settings
from storefront_sync.database.base import KeyValueStore
from storefront_sync.models.entities import Identity
from storefront_sync.services.collection_cache import CollectionCache

logger = logging.getLogger(__name__)


class SessionCache:
    """Single-slot durable store for the :class:`Identity`.

    A readable identity under the session key is the only thing that
    decides whether a user is logged in at cold start.  Clearing the
    session also removes the bearer token and the customer snapshot, in
    one storage call, so stale customers never outlive their session.
    """

    def __init__(
        self,
        store: KeyValueStore,
        collection_cache: CollectionCache,
        key: str | None = None,
        token_key: str | None = None,
    ) -> None:
        self._store = store
        self._collection_cache = collection_cache
        self.key = key or settings.session_key
        self.token_key = token_key or settings.auth_token_key

    async def save_session(self, identity: Identity) -> None:
        """Write *identity* under the session key, overwriting any previous one."""
        await self._store.set(self.key, identity.model_dump_json())
        logger.info("Saved session for supplier %s", identity.id)

    async def restore_session(self) -> Identity | None:
        """Return the persisted identity, or ``None`` when there is none.

        A corrupt value is reported the same way as an absent one.
        """
        raw = await self._store.get(self.key)
        if raw is None:
            logger.debug("No stored session")
            return None
        try:
            identity = Identity.model_validate_json(raw)
        except ValidationError:
            logger.warning("Stored session is unreadable, treating as logged out")
            return None
        logger.info("Restored session for supplier %s", identity.id)
        return identity

    async def clear_session(self) -> None:
        """Delete the session, the token and the customer snapshot together."""
        await self._store.delete_many(
            [self.key, self.token_key, self._collection_cache.key]
        )
        logger.info("Session cleared (token and customer snapshot removed)")

    # ── Bearer token ─────────────────────────────────────

    async def save_token(self, token: str) -> None:
        await self._store.set(self.token_key, token)

    async def restore_token(self) -> str | None:
        return await self._store.get(self.token_key)

"""Durable key-value store — the storage capability the caches build on."""

from abc import ABC, abstractmethod
from collections.abc import Iterable


class KeyValueStore(ABC):
    """Abstract string-keyed, string-valued persistent store.

    Implementations hold pre-serialized payloads and know nothing about
    what they contain.  There are no transactions beyond
    :meth:`delete_many`, which must remove all keys or none.
    """

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the stored value, or ``None`` if *key* is absent."""

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store *value* under *key*, overwriting any previous value."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove *key*.  Deleting an absent key is not an error."""

    async def delete_many(self, keys: Iterable[str]) -> None:
        """Remove every key in *keys*."""
        for key in keys:
            await self.delete(key)

"""
Durable storage for the offline queue.

The queue is stored as one ordered JSON array under a well-known key, so a
pending write survives a process restart.
"""

import copy
from abc import ABC, abstractmethod
from typing import Any

from loguru import logger

from seatsync.datastore.repositories import KeyValueRepository


class QueueStorage(ABC):
    """Key → list-of-records store."""

    @abstractmethod
    async def load(self, key: str) -> list[dict[str, Any]]:
        """Stored records in order; empty when nothing was saved."""

    @abstractmethod
    async def save(self, key: str, items: list[dict[str, Any]]) -> None:
        """Replace the records stored under key."""


class MemoryStorage(QueueStorage):
    """Process-local storage for tests and ephemeral runs."""

    def __init__(self, initial: dict[str, list[dict[str, Any]]] | None = None):
        self._data: dict[str, list[dict[str, Any]]] = copy.deepcopy(initial or {})
        self.saves = 0

    async def load(self, key: str) -> list[dict[str, Any]]:
        return copy.deepcopy(self._data.get(key, []))

    async def save(self, key: str, items: list[dict[str, Any]]) -> None:
        self._data[key] = copy.deepcopy(items)
        self.saves += 1

    def peek(self, key: str) -> list[dict[str, Any]]:
        return copy.deepcopy(self._data.get(key, []))


class SqlStorage(QueueStorage):
    """
    Storage in the SQLite key-value table.

    Usage:
        await init_db()
        storage = SqlStorage(get_session_factory())
    """

    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def load(self, key: str) -> list[dict[str, Any]]:
        async with self._session_factory() as session:
            value = await KeyValueRepository(session).get(key, default=[])

        if not isinstance(value, list):
            logger.warning(f"Discarding malformed queue stored under '{key}'")
            return []
        return [item for item in value if isinstance(item, dict)]

    async def save(self, key: str, items: list[dict[str, Any]]) -> None:
        async with self._session_factory() as session:
            await KeyValueRepository(session).put(key, items)
            await session.commit()

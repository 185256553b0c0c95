"""
Tag usage counter adjustment.

The document store has no atomic increment, so counters are adjusted by
read-modify-write. Concurrent adjusters can under- or over-count; the
reconciliation job in consistency.maintenance recomputes the truth.
Callers depend only on CounterAdjuster so a store with atomic $inc can
swap in a single new implementation.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

from sqlite_db import SQLiteCollection


class CounterAdjuster(ABC):
    """Adjusts the usageCount field of documents in one collection."""

    @abstractmethod
    async def adjust(self, doc_id: str, delta: int) -> Optional[int]:
        """Add delta to the counter, floored at 0.

        Returns:
            The new value, or None if the document doesn't exist.
        """

    @abstractmethod
    async def set_count(self, doc_id: str, value: int) -> None:
        """Overwrite the counter with a known-good value."""


class ReadModifyWriteCounterAdjuster(CounterAdjuster):
    """Non-atomic counter: find_one, compute, update_one."""

    def __init__(self, collection: SQLiteCollection, field: str = "usageCount"):
        self._collection = collection
        self._field = field

    async def adjust(self, doc_id: str, delta: int) -> Optional[int]:
        doc = await self._collection.find_one({"_id": doc_id})
        if doc is None:
            return None
        current = doc.get(self._field) or 0
        new_value = max(0, current + delta)
        await self._collection.update_one(
            {"_id": doc_id},
            {"$set": {self._field: new_value, "updatedAt": datetime.now(timezone.utc)}},
        )
        return new_value

    async def set_count(self, doc_id: str, value: int) -> None:
        await self._collection.update_one(
            {"_id": doc_id},
            {"$set": {self._field: max(0, value), "updatedAt": datetime.now(timezone.utc)}},
        )

"""Storage contract for counters and its MongoDB implementation."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

import pydantic
from pymongo.asynchronous.collection import AsyncCollection
from pymongo.errors import DuplicateKeyError, PyMongoError

from shopdesk.core.modules.counter.models import Counter
from shopdesk.errors import CorruptCounterError, StoreUnavailableError, TransactionConflictError


class CounterStore(ABC):
    """Document store operations the allocator relies on.

    Implementations raise StoreUnavailableError for transport/permission
    failures and TransactionConflictError when a conditional write loses.
    """

    @abstractmethod
    async def get(self, key: str) -> Counter | None:
        """Read a counter, or None when it does not exist."""

    @abstractmethod
    async def create_if_absent(self, key: str, value: int, timestamp: datetime) -> bool:
        """Atomically create the counter unless it exists. Returns True if created."""

    @abstractmethod
    async def compare_and_set(self, key: str, expected: int, new: int, timestamp: datetime) -> None:
        """Write `new` only if the stored value still equals `expected`."""


def parse_counter(doc: dict[str, Any]) -> Counter:
    try:
        return Counter.model_validate(doc)
    except pydantic.ValidationError as e:
        raise CorruptCounterError(f"Malformed counter document '{doc.get('_id')}'") from e


class MongoCounterStore(CounterStore):
    """Counters in a MongoDB collection, one document per key.

    Conflict detection is optimistic: the update filter pins the value that
    was read, so a concurrent increment makes the write match nothing.
    """

    def __init__(self, collection: AsyncCollection[dict[str, Any]]) -> None:
        self._collection = collection

    async def get(self, key: str) -> Counter | None:
        try:
            doc = await self._collection.find_one({"_id": key})
        except PyMongoError as e:
            raise StoreUnavailableError(f"Cannot read counter '{key}': {e}") from e
        if doc is None:
            return None
        return parse_counter(doc)

    async def create_if_absent(self, key: str, value: int, timestamp: datetime) -> bool:
        try:
            result = await self._collection.update_one(
                {"_id": key},
                {"$setOnInsert": {"current_value": value, "last_updated": timestamp}},
                upsert=True,
            )
        except DuplicateKeyError:
            # Another process inserted it between our filter and upsert
            return False
        except PyMongoError as e:
            raise StoreUnavailableError(f"Cannot create counter '{key}': {e}") from e
        return result.upserted_id is not None

    async def compare_and_set(self, key: str, expected: int, new: int, timestamp: datetime) -> None:
        try:
            result = await self._collection.update_one(
                {"_id": key, "current_value": expected},
                {"$set": {"current_value": new, "last_updated": timestamp}},
            )
        except PyMongoError as e:
            raise StoreUnavailableError(f"Cannot update counter '{key}': {e}") from e
        if result.matched_count == 0:
            raise TransactionConflictError(f"Counter '{key}' changed since it was read (expected {expected})")

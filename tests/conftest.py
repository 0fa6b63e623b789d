"""Shared pytest fixtures."""

from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from shopdesk.config import Config
from shopdesk.core.modules.counter.allocator import SequenceAllocator
from shopdesk.core.modules.counter.memory import InMemoryCounterStore
from shopdesk.core.modules.counter.models import RetryPolicy
from shopdesk.core.modules.counter.service import CounterService
from shopdesk.errors import TransactionConflictError

NO_DELAY = RetryPolicy(max_attempts=3, delay=0)


class FlakyStore(InMemoryCounterStore):
    """In-memory store whose first `failures` conditional writes fail with `error`."""

    def __init__(self, failures: int, error: type[Exception] = TransactionConflictError, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.failures = failures
        self.error = error
        self.writes = 0

    async def compare_and_set(self, key, expected, new, timestamp):
        self.writes += 1
        if self.failures > 0:
            self.failures -= 1
            raise self.error("scripted failure")
        await super().compare_and_set(key, expected, new, timestamp)


class FakeCursor:
    """Stand-in for AsyncCursor supporting the chained calls used by services."""

    def __init__(self, docs: list[dict[str, Any]]) -> None:
        self._docs = docs
        self.sort_args: tuple[Any, ...] | None = None

    def sort(self, *args: Any, **kwargs: Any) -> "FakeCursor":
        self.sort_args = args
        return self

    def skip(self, count: int) -> "FakeCursor":
        return FakeCursor(self._docs[count:])

    def limit(self, count: int) -> "FakeCursor":
        return FakeCursor(self._docs[:count])

    async def __aiter__(self):
        for doc in self._docs:
            yield doc


def make_collection() -> MagicMock:
    collection = MagicMock()
    for method in ("insert_one", "replace_one", "update_one", "find_one", "bulk_write", "count_documents", "create_index"):
        setattr(collection, method, AsyncMock())
    collection.find.return_value = FakeCursor([])
    return collection


@pytest.fixture
def config():
    return Config(database_url="mongodb://localhost:27017/shopdesk_test", counter_retry_delay=0)


@pytest.fixture
def collections():
    """Mock collections by name, created on first access."""
    return {}


@pytest.fixture
def database(collections):
    database = MagicMock()
    database.get_collection.side_effect = lambda name: collections.setdefault(name, make_collection())
    return database


@pytest.fixture
def store():
    return InMemoryCounterStore()


@pytest.fixture
def allocator(store):
    return SequenceAllocator(store, NO_DELAY)


@pytest.fixture
def counter_service(database, config, allocator):
    service = CounterService(database, config)
    service.allocator = allocator
    return service


@pytest.fixture
def core(counter_service):
    """Minimal core exposing the counter service to the services under test."""
    return SimpleNamespace(services=SimpleNamespace(counter=counter_service))


class RacingStore(InMemoryCounterStore):
    """In-memory store where another writer commits `competing` increments just before our first write."""

    def __init__(self, competing: int = 1, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.competing = competing

    async def compare_and_set(self, key, expected, new, timestamp):
        if self.competing:
            current = expected
            for _ in range(self.competing):
                await super().compare_and_set(key, current, current + 1, timestamp)
                current += 1
            self.competing = 0
        await super().compare_and_set(key, expected, new, timestamp)

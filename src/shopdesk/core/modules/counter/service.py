from collections.abc import Callable
from typing import Any

from pymongo.asynchronous.database import AsyncDatabase

from shopdesk.config import Config
from shopdesk.core.core import Service
from shopdesk.core.modules.counter.allocator import SequenceAllocator
from shopdesk.core.modules.counter.models import CounterKey, RetryPolicy
from shopdesk.core.modules.counter.store import MongoCounterStore


class CounterService(Service):
    """Sequence numbers for business documents, one counter per CounterKey."""

    def __init__(self, database: AsyncDatabase[dict[str, Any]], config: Config) -> None:
        super().__init__(database, config)
        self._collection = database.get_collection("counters")
        self.allocator = SequenceAllocator(
            MongoCounterStore(self._collection),
            RetryPolicy(max_attempts=config.counter_max_attempts, delay=config.counter_retry_delay),
            width=config.counter_width,
            initial_value=config.counter_initial_value,
        )

    async def on_start(self) -> None:
        """Make sure every known counter exists."""
        for key in CounterKey:
            await self.allocator.initialize(key)

    async def next_number(self, key: CounterKey) -> str:
        return await self.allocator.next_number(key)

    async def next_value(self, key: CounterKey) -> int:
        return await self.allocator.next_value(key)

    async def get_current_value(self, key: CounterKey) -> int:
        return await self.allocator.current_value(key)

    async def reserve(self, key: CounterKey, plan: Callable[[int], int]) -> int:
        return await self.allocator.reserve(key, plan)

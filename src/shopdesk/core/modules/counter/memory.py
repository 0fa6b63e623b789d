"""In-process counter store for development and tests."""

import asyncio
from datetime import datetime

from shopdesk.core.modules.counter.models import Counter
from shopdesk.core.modules.counter.store import CounterStore
from shopdesk.errors import TransactionConflictError


class InMemoryCounterStore(CounterStore):
    """Dict-backed store with the same conditional-write semantics as MongoDB.

    Every operation yields to the event loop first, so tasks racing on the
    same key interleave between their read and their write.
    """

    def __init__(self, counters: dict[str, Counter] | None = None) -> None:
        self._counters: dict[str, Counter] = dict(counters or {})
        self._lock = asyncio.Lock()
        self.conflicts = 0

    async def get(self, key: str) -> Counter | None:
        await asyncio.sleep(0)
        counter = self._counters.get(key)
        return counter.model_copy() if counter is not None else None

    async def create_if_absent(self, key: str, value: int, timestamp: datetime) -> bool:
        await asyncio.sleep(0)
        async with self._lock:
            if key in self._counters:
                return False
            self._counters[key] = Counter(key=key, current_value=value, last_updated=timestamp)
            return True

    async def compare_and_set(self, key: str, expected: int, new: int, timestamp: datetime) -> None:
        await asyncio.sleep(0)
        async with self._lock:
            counter = self._counters.get(key)
            if counter is None or counter.current_value != expected:
                self.conflicts += 1
                raise TransactionConflictError(f"Counter '{key}' changed since it was read (expected {expected})")
            self._counters[key] = Counter(key=key, current_value=new, last_updated=timestamp)

"""Sequential number allocation on top of a CounterStore."""

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from shopdesk.core.modules.counter.models import RetryPolicy
from shopdesk.core.modules.counter.store import CounterStore
from shopdesk.errors import (
    AllocationExhaustedError,
    CounterError,
    CounterInitializationError,
    StoreUnavailableError,
    TransactionConflictError,
    ValidationError,
)
from shopdesk.utils import format_number, now

logger = structlog.get_logger(__name__)


class SequenceAllocator:
    """Issues unique, increasing numbers per domain key.

    Each attempt reads the counter, computes the next value and writes it
    with a conditional update. A conflict or a store failure consumes one
    attempt; after the last one AllocationExhaustedError is raised and
    nothing was committed by this call.
    """

    def __init__(
        self,
        store: CounterStore,
        policy: RetryPolicy | None = None,
        width: int = 4,
        initial_value: int = 0,
    ) -> None:
        if initial_value < 0:
            raise ValueError("initial_value must be non-negative")
        self._store = store
        self._policy = policy or RetryPolicy()
        self._width = width
        self._initial_value = initial_value

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    @property
    def initial_value(self) -> int:
        return self._initial_value

    async def initialize(self, key: str) -> None:
        """Create the counter with the seed value if it does not exist yet."""
        _validate_key(key)
        try:
            if await self._store.get(key) is not None:
                return
            created = await self._store.create_if_absent(key, self._initial_value, now())
        except StoreUnavailableError as e:
            logger.warning("counter_initialization_failed", key=key, error=str(e))
            raise CounterInitializationError(f"Failed to initialize counter '{key}'") from e
        if created:
            logger.info("counter_initialized", key=key, value=self._initial_value)

    async def next_number(self, key: str, max_retries: int | None = None) -> str:
        """Allocate the next value for `key` and return it zero-padded."""
        return format_number(await self.next_value(key, max_retries), self._width)

    async def next_value(self, key: str, max_retries: int | None = None) -> int:
        """Allocate the next value for `key`."""
        _validate_key(key)
        value = await self._with_retries(key, max_retries, lambda: self._increment(key))
        logger.debug("counter_committed", key=key, value=value)
        return value

    async def current_value(self, key: str) -> int:
        """Last issued value without mutating the counter."""
        _validate_key(key)
        counter = await self._store.get(key)
        return self._initial_value if counter is None else counter.current_value

    async def advance_to(self, key: str, value: int, max_retries: int | None = None) -> int:
        """Raise the counter to at least `value`. Never lowers it; returns the resulting value."""
        _validate_key(key)
        if value < 0:
            raise ValidationError("Counter value must be non-negative")
        return await self.reserve(key, lambda current: max(current, value), max_retries)

    async def reserve(self, key: str, plan: Callable[[int], int], max_retries: int | None = None) -> int:
        """Move the counter from the value read to `plan(value)` in one conditional write.

        `plan` is called again with the fresh value after every conflict, so
        the caller's decision is always based on the value that was committed
        over. Targets at or below the current value leave the counter as is.
        Returns the resulting value.
        """
        _validate_key(key)
        return await self._with_retries(key, max_retries, lambda: self._reserve(key, plan))

    async def _read_or_seed(self, key: str) -> int:
        counter = await self._store.get(key)
        if counter is not None:
            return counter.current_value
        await self.initialize(key)
        # Whoever seeded it, the conditional write below detects later increments
        return self._initial_value

    async def _increment(self, key: str) -> int:
        current = await self._read_or_seed(key)
        next_value = current + 1
        await self._store.compare_and_set(key, current, next_value, now())
        return next_value

    async def _reserve(self, key: str, plan: Callable[[int], int]) -> int:
        current = await self._read_or_seed(key)
        target = plan(current)
        if target <= current:
            return current
        await self._store.compare_and_set(key, current, target, now())
        logger.info("counter_advanced", key=key, previous=current, value=target)
        return target

    async def _with_retries(self, key: str, max_retries: int | None, operation: Callable[[], Awaitable[int]]) -> int:
        attempts = self._policy.max_attempts if max_retries is None else max_retries
        if attempts < 1:
            raise ValidationError("max_retries must be a positive integer")

        delays = self._policy.delays(attempts)
        last_error: CounterError | None = None
        for attempt in range(1, attempts + 1):
            try:
                return await operation()
            except TransactionConflictError as e:
                last_error = e
                logger.info("counter_conflict", key=key, attempt=attempt, max_attempts=attempts)
            except StoreUnavailableError as e:
                last_error = e
                logger.warning("counter_store_unavailable", key=key, attempt=attempt, max_attempts=attempts, error=str(e))

            delay = next(delays, None)
            if delay is not None:
                await asyncio.sleep(delay)

        logger.error("counter_allocation_exhausted", key=key, attempts=attempts)
        raise AllocationExhaustedError(key, attempts) from last_error


def _validate_key(key: str) -> None:
    if not key or not key.strip():
        raise ValidationError("Counter key must not be empty")

"""Tests for sequence number allocation."""

import asyncio
from datetime import UTC, datetime

import pytest
from conftest import NO_DELAY, FlakyStore, RacingStore

from shopdesk.core.modules.counter.allocator import SequenceAllocator
from shopdesk.core.modules.counter.memory import InMemoryCounterStore
from shopdesk.core.modules.counter.models import Counter, RetryPolicy
from shopdesk.errors import (
    AllocationExhaustedError,
    CounterInitializationError,
    StoreUnavailableError,
    TransactionConflictError,
    ValidationError,
)

T0 = datetime(2024, 1, 1, tzinfo=UTC)


def seed(key: str, value: int) -> dict[str, Counter]:
    return {key: Counter(key=key, current_value=value, last_updated=T0)}


def seeded_store(key: str, value: int) -> InMemoryCounterStore:
    return InMemoryCounterStore(seed(key, value))


class UnreachableStore(InMemoryCounterStore):
    async def get(self, key):
        raise StoreUnavailableError("connection refused")


class ReadOnlyStore(InMemoryCounterStore):
    async def create_if_absent(self, key, value, timestamp):
        raise StoreUnavailableError("not authorized to insert")


class TestInitialize:
    """Tests for lazy counter creation."""

    def test_creates_missing_counter_with_seed(self, allocator, store):
        asyncio.run(allocator.initialize("orders"))
        counter = asyncio.run(store.get("orders"))
        assert counter is not None
        assert counter.current_value == 0

    def test_second_call_is_noop(self, allocator, store):
        asyncio.run(allocator.initialize("orders"))
        first = asyncio.run(store.get("orders"))
        asyncio.run(allocator.initialize("orders"))
        second = asyncio.run(store.get("orders"))
        assert first == second

    def test_existing_counter_not_overwritten(self):
        store = seeded_store("orders", 41)
        asyncio.run(SequenceAllocator(store, NO_DELAY).initialize("orders"))
        assert asyncio.run(store.get("orders")).current_value == 41

    def test_custom_seed(self, store):
        allocator = SequenceAllocator(store, NO_DELAY, initial_value=1)
        asyncio.run(allocator.initialize("orders"))
        assert asyncio.run(store.get("orders")).current_value == 1

    def test_unreachable_store_raises_initialization_error(self):
        allocator = SequenceAllocator(UnreachableStore(), NO_DELAY)
        with pytest.raises(CounterInitializationError, match="orders"):
            asyncio.run(allocator.initialize("orders"))

    def test_empty_key_rejected(self, allocator):
        with pytest.raises(ValidationError):
            asyncio.run(allocator.initialize(""))
        with pytest.raises(ValidationError):
            asyncio.run(allocator.initialize("   "))

    def test_negative_seed_rejected(self, store):
        with pytest.raises(ValueError):
            SequenceAllocator(store, initial_value=-1)


class TestNextNumber:
    """Tests for single-caller allocation."""

    def test_fresh_key_starts_at_one(self, allocator, store):
        assert asyncio.run(allocator.next_number("orders")) == "0001"
        assert asyncio.run(store.get("orders")).current_value == 1

    def test_initialized_key_starts_at_one(self, allocator, store):
        asyncio.run(allocator.initialize("orders"))
        assert asyncio.run(allocator.next_number("orders")) == "0001"

    def test_legacy_seed_of_one_issues_two_first(self, store):
        """With a seed of 1 the first issued number is 0002, as in the old dashboard."""
        allocator = SequenceAllocator(store, NO_DELAY, initial_value=1)
        asyncio.run(allocator.initialize("orders"))
        assert asyncio.run(allocator.next_number("orders")) == "0002"
        assert asyncio.run(store.get("orders")).current_value == 2

    def test_sequential_calls_increase(self, allocator):
        async def allocate_many():
            return [await allocator.next_value("orders") for _ in range(5)]

        assert asyncio.run(allocate_many()) == [1, 2, 3, 4, 5]

    def test_last_updated_is_refreshed(self):
        store = seeded_store("orders", 3)
        asyncio.run(SequenceAllocator(store, NO_DELAY).next_number("orders"))
        assert asyncio.run(store.get("orders")).last_updated > T0

    def test_keys_are_independent(self, allocator):
        asyncio.run(allocator.next_number("deviceSales"))
        asyncio.run(allocator.next_number("deviceSales"))
        assert asyncio.run(allocator.next_number("productSales")) == "0001"

    @pytest.mark.parametrize(
        ("current", "expected"),
        [(6, "0007"), (41, "0042"), (9998, "9999"), (12344, "12345")],
    )
    def test_formatting(self, current, expected):
        allocator = SequenceAllocator(seeded_store("orders", current), NO_DELAY)
        assert asyncio.run(allocator.next_number("orders")) == expected

    def test_custom_width(self):
        allocator = SequenceAllocator(seeded_store("orders", 6), NO_DELAY, width=6)
        assert asyncio.run(allocator.next_number("orders")) == "000007"

    def test_non_positive_retries_rejected(self, allocator):
        with pytest.raises(ValidationError, match="max_retries"):
            asyncio.run(allocator.next_number("orders", max_retries=0))

    def test_current_value_does_not_increment(self, allocator):
        assert asyncio.run(allocator.current_value("orders")) == 0
        asyncio.run(allocator.next_number("orders"))
        assert asyncio.run(allocator.current_value("orders")) == 1
        assert asyncio.run(allocator.current_value("orders")) == 1


class TestRetries:
    """Tests for the bounded retry loop."""

    @pytest.mark.parametrize("failures", [0, 1, 2])
    def test_succeeds_when_failures_below_bound(self, failures):
        store = FlakyStore(failures, counters=seed("orders", 10))
        allocator = SequenceAllocator(store, NO_DELAY)
        assert asyncio.run(allocator.next_number("orders", max_retries=3)) == "0011"
        assert store.writes == failures + 1

    @pytest.mark.parametrize("failures", [3, 4])
    def test_exhausted_when_failures_reach_bound(self, failures):
        store = FlakyStore(failures, counters=seed("orders", 10))
        allocator = SequenceAllocator(store, NO_DELAY)
        with pytest.raises(AllocationExhaustedError) as exc_info:
            asyncio.run(allocator.next_number("orders", max_retries=3))
        assert exc_info.value.key == "orders"
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.__cause__, TransactionConflictError)
        assert store.writes == 3
        # Nothing committed by the failed call
        assert asyncio.run(store.get("orders")).current_value == 10

    def test_store_errors_count_against_bound(self):
        store = FlakyStore(2, error=StoreUnavailableError, counters=seed("orders", 10))
        allocator = SequenceAllocator(store, NO_DELAY)
        with pytest.raises(AllocationExhaustedError) as exc_info:
            asyncio.run(allocator.next_number("orders", max_retries=2))
        assert isinstance(exc_info.value.__cause__, StoreUnavailableError)

    def test_default_bound_comes_from_policy(self):
        store = FlakyStore(4, counters=seed("orders", 0))
        allocator = SequenceAllocator(store, RetryPolicy(max_attempts=5, delay=0))
        assert asyncio.run(allocator.next_value("orders")) == 1

    def test_initialization_failure_is_not_retried(self):
        allocator = SequenceAllocator(ReadOnlyStore(), NO_DELAY)
        with pytest.raises(CounterInitializationError):
            asyncio.run(allocator.next_number("orders"))

    def test_sleeps_between_attempts_only(self, monkeypatch):
        delays = []

        async def fake_sleep(delay):
            delays.append(delay)

        monkeypatch.setattr("shopdesk.core.modules.counter.allocator.asyncio.sleep", fake_sleep)
        store = FlakyStore(5, counters=seed("orders", 0))
        allocator = SequenceAllocator(store, RetryPolicy(max_attempts=3, delay=1.0))
        with pytest.raises(AllocationExhaustedError):
            asyncio.run(allocator.next_number("orders"))
        assert delays.count(1.0) == 2


class TestConcurrency:
    """Tests for callers racing on the same key."""

    def test_two_callers_get_consecutive_numbers(self):
        store = seeded_store("sales", 10)
        allocator = SequenceAllocator(store, NO_DELAY)

        async def race():
            return await asyncio.gather(allocator.next_number("sales"), allocator.next_number("sales"))

        results = asyncio.run(race())
        assert sorted(results) == ["0011", "0012"]
        assert store.conflicts == 1
        assert asyncio.run(store.get("sales")).current_value == 12

    def test_many_callers_get_unique_numbers(self):
        store = InMemoryCounterStore()
        allocator = SequenceAllocator(store, RetryPolicy(max_attempts=25, delay=0))

        async def race():
            return await asyncio.gather(*(allocator.next_value("sales") for _ in range(20)))

        results = asyncio.run(race())
        assert sorted(results) == list(range(1, 21))
        assert asyncio.run(store.get("sales")).current_value == 20

    def test_separate_allocators_share_store(self):
        """Two processes, modelled as two allocators, over one store."""
        store = seeded_store("orders", 0)
        first = SequenceAllocator(store, RetryPolicy(max_attempts=10, delay=0))
        second = SequenceAllocator(store, RetryPolicy(max_attempts=10, delay=0))

        async def race():
            return await asyncio.gather(*(a.next_value("orders") for a in (first, second) * 4))

        assert sorted(asyncio.run(race())) == list(range(1, 9))


class TestAdvanceTo:
    """Tests for moving a counter forward."""

    def test_raises_counter(self):
        store = seeded_store("orders", 5)
        allocator = SequenceAllocator(store, NO_DELAY)
        assert asyncio.run(allocator.advance_to("orders", 20)) == 20
        assert asyncio.run(allocator.next_number("orders")) == "0021"

    def test_never_lowers_counter(self):
        store = seeded_store("orders", 30)
        allocator = SequenceAllocator(store, NO_DELAY)
        assert asyncio.run(allocator.advance_to("orders", 20)) == 30
        assert asyncio.run(store.get("orders")).current_value == 30

    def test_creates_missing_counter(self, allocator, store):
        assert asyncio.run(allocator.advance_to("orders", 7)) == 7
        assert asyncio.run(store.get("orders")).current_value == 7

    def test_negative_value_rejected(self, allocator):
        with pytest.raises(ValidationError):
            asyncio.run(allocator.advance_to("orders", -1))


class TestReserve:
    """Tests for planned range reservations."""

    def test_plan_sees_current_value(self):
        store = seeded_store("orders", 5)
        seen = []

        def plan(current):
            seen.append(current)
            return current + 3

        assert asyncio.run(SequenceAllocator(store, NO_DELAY).reserve("orders", plan)) == 8
        assert seen == [5]
        assert asyncio.run(store.get("orders")).current_value == 8

    def test_plan_redone_after_conflict(self):
        store = RacingStore(competing=2, counters=seed("orders", 5))
        seen = []

        def plan(current):
            seen.append(current)
            return current + 3

        assert asyncio.run(SequenceAllocator(store, NO_DELAY).reserve("orders", plan)) == 10
        assert seen == [5, 7]
        assert store.conflicts == 1

    def test_target_not_above_current_leaves_counter(self):
        store = seeded_store("orders", 5)
        assert asyncio.run(SequenceAllocator(store, NO_DELAY).reserve("orders", lambda current: current)) == 5
        assert asyncio.run(store.get("orders")).current_value == 5

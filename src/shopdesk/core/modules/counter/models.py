"""Sequence counters for human-readable document numbers."""

from collections.abc import Iterator
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt

from shopdesk.utils import now


class CounterKey(StrEnum):
    """Sequence domains used by the business flows. Each owns its own counter document."""

    SERVICE_ORDER = "service_order"
    DEVICE_SALES = "deviceSales"
    PRODUCT_SALES = "productSales"


class Counter(BaseModel):
    """Last value issued for one sequence domain.

    Stored in the `counters` collection keyed by `_id` = domain key.
    `current_value` only ever grows.
    """

    key: str = Field(alias="_id", min_length=1)
    current_value: NonNegativeInt = 0
    last_updated: datetime = Field(default_factory=now)

    model_config = ConfigDict(populate_by_name=True)


class RetryPolicy(BaseModel):
    """Bounded attempts with a fixed pause between them."""

    max_attempts: int = Field(default=3, ge=1)
    delay: float = Field(default=1.0, ge=0)

    model_config = ConfigDict(frozen=True)

    def delays(self, attempts: int | None = None) -> Iterator[float]:
        """Yield the pause to take before each retry (one fewer than attempts)."""
        total = self.max_attempts if attempts is None else attempts
        for _ in range(total - 1):
            yield self.delay

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from uuid import UUID

from shopdesk.config import Config
from shopdesk.core.core import Core
from shopdesk.core.modules.counter.models import CounterKey
from shopdesk.core.modules.sale.models import Sale, SaleDraft, SaleKind
from shopdesk.core.modules.service_order.models import ServiceOrder, ServiceOrderDraft, ServiceOrderStatus
from shopdesk.core.pagination import PaginationResult


class App:
    """Facade for all application operations, delegating to Core services."""

    def __init__(self, config: Config) -> None:
        self._core = Core(config)

    @asynccontextmanager
    async def lifespan(self) -> AsyncGenerator[None]:
        """Application lifespan management - delegates to Core."""
        async with self._core.lifespan():
            yield

    # === Sequence numbers ===
    async def initialize_counter(self, key: str) -> None:
        """Create a counter if missing (no-op otherwise)."""
        await self._core.services.counter.allocator.initialize(key)

    async def next_number(self, key: str, max_retries: int | None = None) -> str:
        """Allocate the next zero-padded number for a sequence domain."""
        return await self._core.services.counter.allocator.next_number(key, max_retries)

    async def get_counter_value(self, key: CounterKey) -> int:
        return await self._core.services.counter.get_current_value(key)

    # === Sales ===
    async def create_sale(self, draft: SaleDraft) -> Sale:
        return await self._core.services.sale.create_sale(draft)

    async def update_sale(self, sale_id: UUID, draft: SaleDraft) -> Sale:
        return await self._core.services.sale.update_sale(sale_id, draft)

    async def get_sale(self, kind: SaleKind, sale_number: str) -> Sale:
        return await self._core.services.sale.get_sale_by_number(kind, sale_number)

    async def get_sales(self, kind: SaleKind, limit: int = 50, offset: int = 0) -> PaginationResult[Sale]:
        return await self._core.services.sale.list_sales(kind, limit, offset)

    # === Service orders ===
    async def create_service_order(self, draft: ServiceOrderDraft) -> ServiceOrder:
        return await self._core.services.service_order.create_service_order(draft)

    async def get_service_order(self, order_number: int) -> ServiceOrder:
        return await self._core.services.service_order.get_service_order_by_number(order_number)

    async def get_service_orders(self, limit: int = 50, offset: int = 0) -> PaginationResult[ServiceOrder]:
        return await self._core.services.service_order.list_service_orders(limit, offset)

    async def update_service_order_status(self, order_number: int, status: ServiceOrderStatus) -> ServiceOrder:
        order = await self._core.services.service_order.get_service_order_by_number(order_number)
        return await self._core.services.service_order.update_status(order.id, status)

    async def backfill_order_numbers(self) -> int:
        """Number legacy service orders stored without an order number."""
        return await self._core.services.service_order.backfill_order_numbers()

from typing import Any
from uuid import UUID

import structlog
from pymongo import UpdateOne
from pymongo.asynchronous.database import AsyncDatabase

from shopdesk.config import Config
from shopdesk.core.core import Service
from shopdesk.core.modules.counter.models import CounterKey
from shopdesk.core.modules.service_order.models import (
    OrderNumberRef,
    ServiceOrder,
    ServiceOrderDraft,
    ServiceOrderStatus,
    assign_missing_numbers,
)
from shopdesk.core.pagination import PaginationResult
from shopdesk.errors import NotFoundError, ValidationError
from shopdesk.utils import now

logger = structlog.get_logger(__name__)


class ServiceOrderService(Service):
    """Service orders numbered from the service_order counter."""

    def __init__(self, database: AsyncDatabase[dict[str, Any]], config: Config) -> None:
        super().__init__(database, config)
        self._collection = database.get_collection("serviceOrders")

    async def on_start(self) -> None:
        """Create indexes for number lookup; legacy orders without a number are left out."""
        await self._collection.create_index(
            [("order_number", 1)],
            unique=True,
            partialFilterExpression={"order_number": {"$type": "int"}},
        )
        await self._collection.create_index([("created_at", -1)])

    async def create_service_order(self, draft: ServiceOrderDraft) -> ServiceOrder:
        """Validate, number and store a new order. Nothing is stored if numbering fails."""
        draft.validate_complete()
        order_number = await self.core.services.counter.next_value(CounterKey.SERVICE_ORDER)
        order = ServiceOrder.from_draft(draft, order_number)
        await self._collection.insert_one(order.to_mongo())
        logger.info("service_order_created", order_number=order_number, total=order.discounted_amount)
        return order

    async def get_service_order(self, order_id: UUID) -> ServiceOrder:
        doc = await self._collection.find_one({"_id": order_id})
        if doc is None:
            raise NotFoundError(f"Service order '{order_id}' not found")
        return ServiceOrder.model_validate(doc)

    async def get_service_order_by_number(self, order_number: int) -> ServiceOrder:
        doc = await self._collection.find_one({"order_number": order_number})
        if doc is None:
            raise NotFoundError(f"Service order #{order_number} not found")
        return ServiceOrder.model_validate(doc)

    async def list_service_orders(self, limit: int = 50, offset: int = 0) -> PaginationResult[ServiceOrder]:
        """Get paginated service orders, newest first."""
        if limit < 1 or offset < 0:
            raise ValidationError("Invalid pagination parameters")
        total = await self._collection.count_documents({})
        cursor = self._collection.find({}).sort("created_at", -1).skip(offset).limit(limit)
        items = await ServiceOrder.list_cursor(cursor)
        return PaginationResult(items=items, total=total, limit=limit, offset=offset)

    async def update_status(self, order_id: UUID, status: ServiceOrderStatus) -> ServiceOrder:
        timestamp = now()
        updates: dict[str, Any] = {"status": status, "updated_at": timestamp}
        if status == ServiceOrderStatus.COMPLETED:
            updates["end_date"] = timestamp
        result = await self._collection.update_one({"_id": order_id}, {"$set": updates})
        if result.matched_count == 0:
            raise NotFoundError(f"Service order '{order_id}' not found")
        return await self.get_service_order(order_id)

    async def backfill_order_numbers(self) -> int:
        """Give sequential numbers to orders stored without one and move the counter past them.

        Numbering continues after both the highest stored number and the
        counter's value. The range is reserved with a conditional write on the
        counter value it was planned from; if an order is numbered meanwhile,
        the plan is redone from the new value.
        """
        cursor = self._collection.find({}, projection={"order_number": 1, "created_at": 1})
        orders = [OrderNumberRef.model_validate(doc) async for doc in cursor]

        assignments: list[tuple[Any, int]] = []

        def plan(current: int) -> int:
            nonlocal assignments
            assignments = assign_missing_numbers(orders, start_after=current)
            return assignments[-1][1] if assignments else current

        await self.core.services.counter.reserve(CounterKey.SERVICE_ORDER, plan)
        if not assignments:
            logger.info("order_numbers_backfilled", count=0)
            return 0

        await self._collection.bulk_write(
            [UpdateOne({"_id": order_id}, {"$set": {"order_number": number}}) for order_id, number in assignments]
        )
        logger.info("order_numbers_backfilled", count=len(assignments), last_number=assignments[-1][1])
        return len(assignments)

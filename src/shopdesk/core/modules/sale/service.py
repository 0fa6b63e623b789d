from typing import Any
from uuid import UUID

import structlog
from pymongo.asynchronous.collection import AsyncCollection
from pymongo.asynchronous.database import AsyncDatabase

from shopdesk.config import Config
from shopdesk.core.core import Service
from shopdesk.core.modules.sale.models import Sale, SaleDraft, SaleKind
from shopdesk.core.pagination import PaginationResult
from shopdesk.errors import NotFoundError, ValidationError
from shopdesk.utils import format_number, now

logger = structlog.get_logger(__name__)


class SaleService(Service):
    """Product and device sales, numbered per kind."""

    def __init__(self, database: AsyncDatabase[dict[str, Any]], config: Config) -> None:
        super().__init__(database, config)
        self._collections = {kind: database.get_collection(kind.collection_name) for kind in SaleKind}

    async def on_start(self) -> None:
        """Create indexes for number lookup and listing."""
        for collection in self._collections.values():
            await collection.create_index([("sale_number", 1)], unique=True)
            await collection.create_index([("number", -1)])

    def _collection(self, kind: SaleKind) -> AsyncCollection[dict[str, Any]]:
        return self._collections[kind]

    async def create_sale(self, draft: SaleDraft) -> Sale:
        """Validate, number and store a new sale. Nothing is stored if numbering fails."""
        draft.validate_complete()
        number = await self.core.services.counter.next_value(draft.kind.counter_key)
        sale_number = format_number(number, self.config.counter_width)
        sale = Sale.from_draft(draft, number, sale_number)
        await self._collection(draft.kind).insert_one(sale.to_mongo())
        logger.info("sale_created", kind=draft.kind, sale_number=sale_number, final_value=sale.final_value)
        return sale

    async def update_sale(self, sale_id: UUID, draft: SaleDraft) -> Sale:
        """Replace sale data, keeping its number and creation time."""
        existing = await self.get_sale(draft.kind, sale_id)
        draft.validate_complete()
        sale = Sale.from_draft(
            draft,
            existing.number,
            existing.sale_number,
            id=existing.id,
            created_at=existing.created_at,
            updated_at=now(),
        )
        await self._collection(draft.kind).replace_one({"_id": sale_id}, sale.to_mongo())
        return sale

    async def get_sale(self, kind: SaleKind, sale_id: UUID) -> Sale:
        doc = await self._collection(kind).find_one({"_id": sale_id})
        if doc is None:
            raise NotFoundError(f"Sale '{sale_id}' not found")
        return Sale.model_validate(doc)

    async def get_sale_by_number(self, kind: SaleKind, sale_number: str) -> Sale:
        doc = await self._collection(kind).find_one({"sale_number": sale_number})
        if doc is None:
            raise NotFoundError(f"Sale #{sale_number} not found")
        return Sale.model_validate(doc)

    async def list_sales(self, kind: SaleKind, limit: int = 50, offset: int = 0) -> PaginationResult[Sale]:
        """Get paginated sales of a kind, highest number first."""
        if limit < 1 or offset < 0:
            raise ValidationError("Invalid pagination parameters")
        collection = self._collection(kind)
        total = await collection.count_documents({})
        cursor = collection.find({}).sort("number", -1).skip(offset).limit(limit)
        items = await Sale.list_cursor(cursor)
        return PaginationResult(items=items, total=total, limit=limit, offset=offset)

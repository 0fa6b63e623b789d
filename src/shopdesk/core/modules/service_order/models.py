from collections.abc import Sequence
from datetime import datetime
from enum import StrEnum
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, NonNegativeFloat, NonNegativeInt, PositiveInt

from shopdesk.core.db import MongoModel
from shopdesk.errors import ValidationError
from shopdesk.utils import now


class ServiceOrderStatus(StrEnum):
    QUOTE = "quote"
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    AWAITING_PARTS = "awaiting_parts"
    APPROVED = "approved"
    COMPLETED = "completed"
    CANCELED = "canceled"
    WARRANTY_RETURN = "warranty_return"


class Equipment(BaseModel):
    """Device left with the shop for service."""

    category: str
    subcategory: str = ""
    brand: str
    model: str
    color: str | None = None
    imei: str | None = None
    serial_number: str | None = None
    reported_issue: str
    has_power: bool = False


class ChecklistItem(BaseModel):
    id: str
    text: str
    checked: bool = False


class OrderChecklist(BaseModel):
    """Inspection checklist filled for one of the order's equipments."""

    checklist_id: str
    equipment_index: NonNegativeInt
    items: list[ChecklistItem] = []


class OrderServiceLine(BaseModel):
    service_id: str
    service_name: str
    quantity: PositiveInt = 1
    unit_price: NonNegativeFloat

    @property
    def subtotal(self) -> float:
        return self.quantity * self.unit_price


class OrderProductLine(BaseModel):
    product_id: str
    product_name: str
    quantity: PositiveInt = 1
    unit_price: NonNegativeFloat

    @property
    def subtotal(self) -> float:
        return self.quantity * self.unit_price


class OrderTotals(BaseModel):
    services_total: float
    products_total: float
    discount: float
    total_amount: float  # Before discount
    discounted_amount: float  # Amount due


class ServiceOrderDraft(BaseModel):
    """Service order data as entered, before it receives a number."""

    customer_id: str
    customer_name: str = ""
    technician_id: str
    technician_name: str = ""
    status: ServiceOrderStatus = ServiceOrderStatus.OPEN
    start_date: datetime = Field(default_factory=now)
    end_date: datetime | None = None
    warranty_id: str | None = None
    warranty_days: NonNegativeInt = 0
    equipments: list[Equipment] = []
    checklists: list[OrderChecklist] = []
    services: list[OrderServiceLine] = []
    products: list[OrderProductLine] = []
    technical_feedback: str = ""
    discount: NonNegativeFloat = 0

    def totals(self) -> OrderTotals:
        services_total = sum(line.subtotal for line in self.services)
        products_total = sum(line.subtotal for line in self.products)
        total_amount = services_total + products_total
        return OrderTotals(
            services_total=services_total,
            products_total=products_total,
            discount=self.discount,
            total_amount=total_amount,
            discounted_amount=max(total_amount - self.discount, 0),
        )

    def validate_complete(self) -> None:
        """Check the draft can be saved. Raises ValidationError naming the first problem."""
        if not self.customer_id:
            raise ValidationError("Customer is required")
        if not self.technician_id:
            raise ValidationError("Technician is required")
        if not self.equipments:
            raise ValidationError("At least one equipment is required")
        for index, equipment in enumerate(self.equipments, start=1):
            if not equipment.reported_issue.strip():
                raise ValidationError(f"Equipment {index}: reported issue is required")
        for checklist in self.checklists:
            if checklist.equipment_index >= len(self.equipments):
                raise ValidationError(f"Checklist '{checklist.checklist_id}' refers to a missing equipment")
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValidationError("End date is before start date")


class ServiceOrder(MongoModel, ServiceOrderDraft):
    """Persisted service order.

    Orders created before numbering existed have no order_number until
    they are backfilled.
    """

    order_number: int | None = None
    services_total: float = 0
    products_total: float = 0
    total_amount: float = 0
    discounted_amount: float = 0
    created_at: datetime = Field(default_factory=now)
    updated_at: datetime = Field(default_factory=now)

    @classmethod
    def from_draft(cls, draft: ServiceOrderDraft, order_number: int, **extra: Any) -> Self:
        totals = draft.totals()
        return cls(
            **draft.model_dump(),
            order_number=order_number,
            services_total=totals.services_total,
            products_total=totals.products_total,
            total_amount=totals.total_amount,
            discounted_amount=totals.discounted_amount,
            **extra,
        )


class OrderNumberRef(BaseModel):
    """Minimal view of a stored order used when backfilling numbers."""

    id: Any = Field(alias="_id")
    order_number: int | None = None
    created_at: datetime | None = None

    model_config = ConfigDict(populate_by_name=True)


def assign_missing_numbers(orders: Sequence[OrderNumberRef], start_after: int = 0) -> list[tuple[Any, int]]:
    """Number orders that lack one, oldest first, continuing after the highest number in use.

    Returns (order id, number) pairs. Orders without created_at count as the newest and go last.
    """
    highest = max([start_after, *(order.order_number for order in orders if order.order_number is not None)])
    missing = [order for order in orders if order.order_number is None]
    missing.sort(key=lambda order: (order.created_at is None, order.created_at or datetime.min))
    return [(order.id, highest + position) for position, order in enumerate(missing, start=1)]

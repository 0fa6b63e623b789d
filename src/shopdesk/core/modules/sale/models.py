from datetime import datetime
from enum import StrEnum
from typing import Annotated, Literal, Self

from pydantic import BaseModel, Field, NonNegativeFloat

from shopdesk.core.db import MongoModel
from shopdesk.core.modules.counter.models import CounterKey
from shopdesk.errors import ValidationError
from shopdesk.utils import now


class SaleKind(StrEnum):
    """Sale families; each has its own collection and number sequence."""

    PRODUCT = "product"
    DEVICE = "device"

    @property
    def counter_key(self) -> CounterKey:
        return CounterKey.PRODUCT_SALES if self is SaleKind.PRODUCT else CounterKey.DEVICE_SALES

    @property
    def collection_name(self) -> str:
        return "productSales" if self is SaleKind.PRODUCT else "deviceSales"


class SaleStatus(StrEnum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELED = "canceled"


class DeviceCondition(StrEnum):
    NEW = "new"
    LIKE_NEW = "like_new"
    DISPLAY = "display"  # Showroom unit
    USED = "used"


class ProductItem(BaseModel):
    """Line of a product sale."""

    kind: Literal["product"] = "product"
    product_id: str
    name: str
    quantity: int
    unit_price: NonNegativeFloat
    discount: NonNegativeFloat = 0  # Absolute amount off this line

    @property
    def subtotal(self) -> float:
        return self.unit_price * self.quantity - self.discount


class DeviceItem(ProductItem):
    """Line of a device sale, with the unit's identification."""

    kind: Literal["device"] = "device"  # type: ignore[assignment]
    condition: DeviceCondition
    color: str | None = None
    ram: str | None = None
    storage: str | None = None
    serial_number: str | None = None
    imei1: str | None = None
    imei2: str | None = None


SaleItem = Annotated[ProductItem | DeviceItem, Field(discriminator="kind")]


class SaleTotals(BaseModel):
    total_value: float
    final_value: float

    @property
    def discount_amount(self) -> float:
        return self.total_value - self.final_value


def calculate_totals(items: list[ProductItem], discount_value: float, discount_percentage: float) -> SaleTotals:
    """Sum line subtotals, then take the fixed and the percentage discount off the sum."""
    total_value = sum(item.subtotal for item in items)
    percentage_discount = total_value * (discount_percentage / 100)
    return SaleTotals(total_value=total_value, final_value=total_value - discount_value - percentage_discount)


class SaleDraft(BaseModel):
    """Sale data as entered, before it receives a number."""

    kind: SaleKind
    customer_id: str
    customer_name: str = ""
    seller_id: str
    seller_name: str = ""
    status: SaleStatus = SaleStatus.OPEN
    purchased_at: datetime = Field(default_factory=now)
    payment_method: str
    items: list[SaleItem] = []
    discount_value: NonNegativeFloat = 0
    discount_percentage: float = Field(default=0, ge=0, le=100)

    def totals(self) -> SaleTotals:
        return calculate_totals(self.items, self.discount_value, self.discount_percentage)

    def validate_complete(self) -> None:
        """Check the draft can be saved. Raises ValidationError naming the first problem."""
        if not self.customer_id:
            raise ValidationError("Customer is required")
        if not self.seller_id:
            raise ValidationError("Seller is required")
        if not self.payment_method:
            raise ValidationError("Payment method is required")
        if not self.items:
            raise ValidationError("At least one item is required")
        for line, item in enumerate(self.items, start=1):
            if item.kind != self.kind:
                raise ValidationError(f"Line {line}: {item.kind} item in a {self.kind} sale")
            if not item.product_id:
                raise ValidationError(f"Line {line}: product is required")
            if item.quantity <= 0:
                raise ValidationError(f"Line {line}: quantity must be positive")
        if self.totals().final_value < 0:
            raise ValidationError("Discount exceeds sale total")


class Sale(MongoModel, SaleDraft):
    """Persisted sale. The number is assigned once, at creation.

    `number` is the counter value and orders listings; `sale_number` is its
    padded display form, which stops sorting correctly once it outgrows the width.
    """

    number: int
    sale_number: str
    total_value: float
    final_value: float
    created_at: datetime = Field(default_factory=now)
    updated_at: datetime = Field(default_factory=now)

    @classmethod
    def from_draft(cls, draft: SaleDraft, number: int, sale_number: str, **extra: object) -> Self:
        totals = draft.totals()
        return cls(
            **draft.model_dump(),
            number=number,
            sale_number=sale_number,
            total_value=totals.total_value,
            final_value=totals.final_value,
            **extra,
        )

"""
Order document schemas.

An Order is stored as one JSON document (see models.OrderRecord). Vendors
never receive the document itself, only a VendorDisplayOrder carrying their
own portion.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class OrderStatus(str, Enum):
    PENDING_CONFIRMATION = "Pending Confirmation"
    CONFIRMED = "Confirmed"
    IN_PROGRESS = "In Progress"
    READY_FOR_PICKUP = "Ready for Pickup"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class PortionStatus(str, Enum):
    NEW = "New"
    PREPARING = "Preparing"
    READY_FOR_PICKUP = "Ready for Pickup"
    PICKED_UP = "Picked Up"
    CANCELLED = "Cancelled"


class PaymentStatus(str, Enum):
    PAID = "Paid"
    PENDING = "Pending"
    FAILED = "Failed"


ACTIVE_ORDER_STATUSES = (
    OrderStatus.PENDING_CONFIRMATION,
    OrderStatus.CONFIRMED,
    OrderStatus.IN_PROGRESS,
    OrderStatus.READY_FOR_PICKUP,
)


class OrderItemDetail(BaseModel):
    item_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=0)
    price_per_item: Decimal = Field(..., ge=0)
    total_price: Decimal = Field(..., ge=0)
    image_url: Optional[str] = None
    details: Optional[str] = None


class VendorOrderPortion(BaseModel):
    vendor_id: str = Field(..., min_length=1)
    vendor_name: str = ""
    vendor_address: Optional[str] = None
    vendor_type: Optional[str] = None
    status: PortionStatus = PortionStatus.NEW
    items: List[OrderItemDetail] = Field(default_factory=list)
    vendor_subtotal: Decimal = Decimal("0")

    @model_validator(mode="after")
    def _subtotal_matches_items(self):
        expected = sum((i.total_price for i in self.items), Decimal("0"))
        if self.vendor_subtotal != expected:
            raise ValueError(
                f"vendor_subtotal {self.vendor_subtotal} does not equal the item total {expected}"
            )
        return self


class CustomerInfo(BaseModel):
    id: Optional[str] = None
    name: Optional[str] = None
    phone_number: Optional[str] = None


class OrderBase(BaseModel):
    """Fields every vendor may see."""
    order_id: str = Field(..., min_length=1)
    customer_info: Optional[CustomerInfo] = None
    trip_start_location: Optional[str] = None
    trip_destination: Optional[str] = None
    created_at: datetime
    overall_status: OrderStatus = OrderStatus.PENDING_CONFIRMATION
    payment_status: PaymentStatus = PaymentStatus.PENDING
    grand_total: Decimal
    platform_fee: Decimal = Decimal("0")
    payment_gateway_fee: Decimal = Decimal("0")

    @field_validator("created_at")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        # naive timestamps are taken to be UTC
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Order(OrderBase):
    vendor_portions: List[VendorOrderPortion] = Field(..., min_length=1)

    @model_validator(mode="after")
    def _unique_vendors(self):
        vendor_ids = [p.vendor_id for p in self.vendor_portions]
        if len(vendor_ids) != len(set(vendor_ids)):
            raise ValueError("each vendor may hold only one portion of an order")
        return self

    @model_validator(mode="after")
    def _grand_total_matches_portions(self):
        expected = sum((p.vendor_subtotal for p in self.vendor_portions), Decimal("0"))
        expected += self.platform_fee + self.payment_gateway_fee
        if self.grand_total != expected:
            raise ValueError(f"grand_total {self.grand_total} does not equal subtotals plus fees {expected}")
        return self

    @property
    def vendor_ids(self) -> List[str]:
        return [p.vendor_id for p in self.vendor_portions]

    def portion_for(self, vendor_id: str) -> Optional[VendorOrderPortion]:
        return next((p for p in self.vendor_portions if p.vendor_id == vendor_id), None)


class VendorDisplayOrder(OrderBase):
    """An order as one vendor sees it: shared fields plus only their portion."""
    vendor_portion: VendorOrderPortion

    @classmethod
    def for_vendor(cls, order: Order, vendor_id: str) -> Optional["VendorDisplayOrder"]:
        portion = order.portion_for(vendor_id)
        if portion is None:
            return None
        shared = order.model_dump(exclude={"vendor_portions"})
        return cls(**shared, vendor_portion=portion.model_copy(deep=True))

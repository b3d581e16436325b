# autopickup/schemas/orders.py
from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, EmailStr, Field

from autopickup.core.timeutil import utcnow
from autopickup.models.order import Order, effective_status
from autopickup.schemas.catalog import ProductBriefOut
from autopickup.schemas.common import Pagination


class CustomerInfo(BaseModel):
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, max_length=32)
    note: Optional[str] = Field(default=None, max_length=500)


class OrderCreateIn(BaseModel):
    product_id: int
    quantity: int = Field(default=1, ge=1)
    expires_in: Optional[int] = Field(default=None, ge=1, le=365)  # days
    customer_info: Optional[CustomerInfo] = None
    delivery_data: Any = None


class OrderCreatedOut(BaseModel):
    id: int
    order_number: str
    pickup_key: str
    product_id: int
    quantity: int
    total_amount_cents: int
    expires_at: datetime
    created_at: datetime

    class Config:
        from_attributes = True


class OrderOut(BaseModel):
    id: int
    order_number: str
    product_id: int
    quantity: int
    total_amount_cents: int
    status: str
    customer_info: Optional[dict] = None
    picked_up_at: Optional[datetime] = None
    expires_at: datetime
    created_at: datetime

    @classmethod
    def from_order(cls, o: Order, now: datetime | None = None) -> "OrderOut":
        return cls(
            id=o.id,
            order_number=o.order_number,
            product_id=o.product_id,
            quantity=o.quantity,
            total_amount_cents=o.total_amount_cents,
            status=effective_status(o, now or utcnow()),
            customer_info=o.customer_info,
            picked_up_at=o.picked_up_at,
            expires_at=o.expires_at,
            created_at=o.created_at,
        )


class OrderPage(BaseModel):
    orders: List[OrderOut]
    pagination: Pagination


class OrderDeliveryIn(BaseModel):
    delivery_data: Any = Field(...)


class OrderDeliveryOut(BaseModel):
    order_number: str
    delivery_data: Any = None


class PickupKeyIn(BaseModel):
    pickup_key: str = Field(min_length=1, max_length=128)


class PickupConfirmIn(PickupKeyIn):
    customer_info: Optional[CustomerInfo] = None


class OrderPreviewOut(BaseModel):
    order_number: str
    product: Optional[ProductBriefOut]
    quantity: int
    total_amount_cents: int
    expires_at: datetime


class OrderRedeemedOut(BaseModel):
    order_number: str
    product: Optional[ProductBriefOut]
    delivery_data: Any = None
    picked_up_at: datetime


class OrderStatusOut(BaseModel):
    order_number: str
    product: Optional[ProductBriefOut]
    status: str
    quantity: int
    total_amount_cents: int
    created_at: datetime
    expires_at: datetime
    picked_up_at: Optional[datetime] = None

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from autopickup.core.db import get_db
from autopickup.core.deps import require_merchant
from autopickup.models.user import User
from autopickup.schemas.common import Envelope, Pagination
from autopickup.schemas.orders import (
    OrderCreatedOut,
    OrderCreateIn,
    OrderDeliveryIn,
    OrderDeliveryOut,
    OrderOut,
    OrderPage,
)
from autopickup.services.issuance import issue_order
from autopickup.services.orders import cancel_order, list_orders, set_order_delivery

router = APIRouter(prefix="/api/orders", tags=["Merchant - Orders"])


@router.post("", response_model=Envelope[OrderCreatedOut], status_code=201)
async def create_order(
    body: OrderCreateIn,
    db: AsyncSession = Depends(get_db),
    merchant: User = Depends(require_merchant),
):
    order = await issue_order(
        db,
        product_id=body.product_id,
        merchant_id=merchant.id,
        quantity=body.quantity,
        expires_in_days=body.expires_in,
        customer_info=body.customer_info.model_dump(exclude_none=True) if body.customer_info else None,
        delivery_data=body.delivery_data,
    )
    return Envelope(message="Order created", data=OrderCreatedOut.model_validate(order))


@router.get("", response_model=Envelope[OrderPage])
async def get_orders(
    status: Optional[str] = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    merchant: User = Depends(require_merchant),
):
    result = await list_orders(db, merchant_id=merchant.id, status=status, page=page, limit=limit)
    p = result["pagination"]
    return Envelope(
        data=OrderPage(
            orders=[OrderOut.from_order(o) for o in result["orders"]],
            pagination=Pagination(**p, has_next=p["page"] < p["pages"], has_prev=p["page"] > 1),
        )
    )


@router.put("/{order_id}/delivery", response_model=Envelope[OrderDeliveryOut])
async def update_delivery(
    order_id: int,
    body: OrderDeliveryIn,
    db: AsyncSession = Depends(get_db),
    merchant: User = Depends(require_merchant),
):
    order = await set_order_delivery(
        db, order_id=order_id, merchant_id=merchant.id, delivery_data=body.delivery_data
    )
    return Envelope(
        message="Delivery data updated",
        data=OrderDeliveryOut(order_number=order.order_number, delivery_data=order.delivery_data),
    )


@router.post("/{order_id}/cancel", response_model=Envelope[OrderOut])
async def cancel(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    merchant: User = Depends(require_merchant),
):
    order = await cancel_order(db, order_id=order_id, merchant_id=merchant.id)
    return Envelope(message="Order cancelled", data=OrderOut.from_order(order))

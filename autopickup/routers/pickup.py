from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from autopickup.core.db import get_db
from autopickup.core.deps import enforce_pickup_rate_limit
from autopickup.core.timeutil import utcnow
from autopickup.models.order import effective_status
from autopickup.schemas.catalog import ProductBriefOut
from autopickup.schemas.common import Envelope
from autopickup.schemas.orders import (
    OrderPreviewOut,
    OrderRedeemedOut,
    OrderStatusOut,
    PickupConfirmIn,
    PickupKeyIn,
)
from autopickup.services.orders import get_order_by_number
from autopickup.services.redemption import preview_order_key, redeem_order_key

router = APIRouter(prefix="/api/pickup", tags=["Order pickup"])


@router.post(
    "/verify",
    response_model=Envelope[OrderPreviewOut],
    dependencies=[Depends(enforce_pickup_rate_limit)],
)
async def verify_pickup_key(
    body: PickupKeyIn,
    db: AsyncSession = Depends(get_db),
):
    order = await preview_order_key(db, body.pickup_key)
    return Envelope(
        data=OrderPreviewOut(
            order_number=order.order_number,
            product=ProductBriefOut.model_validate(order.product) if order.product else None,
            quantity=order.quantity,
            total_amount_cents=order.total_amount_cents,
            expires_at=order.expires_at,
        )
    )


@router.post(
    "/confirm",
    response_model=Envelope[OrderRedeemedOut],
    dependencies=[Depends(enforce_pickup_rate_limit)],
)
async def confirm_pickup(
    body: PickupConfirmIn,
    db: AsyncSession = Depends(get_db),
):
    customer_info = body.customer_info.model_dump(exclude_none=True) if body.customer_info else None

    result = await redeem_order_key(db, body.pickup_key, customer_info=customer_info)
    return Envelope(
        message="Pickup successful",
        data=OrderRedeemedOut(
            order_number=result.order.order_number,
            product=ProductBriefOut.model_validate(result.product) if result.product else None,
            delivery_data=result.delivery_data,
            picked_up_at=result.picked_up_at,
        ),
    )


@router.get("/status/{order_number}", response_model=Envelope[OrderStatusOut])
async def pickup_status(
    order_number: str,
    db: AsyncSession = Depends(get_db),
):
    # never exposes pickup_key or delivery_data
    order = await get_order_by_number(db, order_number)
    return Envelope(
        data=OrderStatusOut(
            order_number=order.order_number,
            product=ProductBriefOut.model_validate(order.product) if order.product else None,
            status=effective_status(order, utcnow()),
            quantity=order.quantity,
            total_amount_cents=order.total_amount_cents,
            created_at=order.created_at,
            expires_at=order.expires_at,
            picked_up_at=order.picked_up_at,
        )
    )

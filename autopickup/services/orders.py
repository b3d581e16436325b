from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy import and_, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from autopickup.core.errors import InvalidFormat, InvalidState, NotFound
from autopickup.core.timeutil import utcnow
from autopickup.models.order import (
    ORDER_CANCELLED,
    ORDER_EXPIRED,
    ORDER_PENDING,
    ORDER_STATUSES,
    Order,
)

logger = logging.getLogger(__name__)


def _status_filter(status: str):
    now = utcnow()
    if status == ORDER_EXPIRED:
        return and_(Order.status == ORDER_PENDING, Order.expires_at <= now)
    if status == ORDER_PENDING:
        return and_(Order.status == ORDER_PENDING, Order.expires_at > now)
    return Order.status == status


async def list_orders(
    db: AsyncSession,
    *,
    merchant_id: int,
    status: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> dict:
    if status is not None and status not in ORDER_STATUSES:
        raise InvalidFormat("Invalid status value", field="status")

    filters = [Order.merchant_id == int(merchant_id)]
    if status is not None:
        filters.append(_status_filter(status))

    where_clause = and_(*filters)

    total_res = await db.execute(select(func.count()).select_from(Order).where(where_clause))
    total = int(total_res.scalar_one())

    res = await db.execute(
        select(Order)
        .where(where_clause)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(int(limit))
        .offset((int(page) - 1) * int(limit))
    )
    orders = list(res.scalars().all())

    return {
        "orders": orders,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit if limit else 0,
        },
    }


async def set_order_delivery(
    db: AsyncSession,
    *,
    order_id: int,
    merchant_id: int,
    delivery_data: Any,
) -> Order:
    """Attach the payload to hand out; only while the order is still pending."""
    try:
        res = await db.execute(
            update(Order)
            .where(
                Order.id == int(order_id),
                Order.merchant_id == int(merchant_id),
                Order.status == ORDER_PENDING,
            )
            .values(delivery_data=delivery_data, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            raise NotFound("Order not found or access denied")

        await db.commit()

    except Exception:
        await db.rollback()
        raise

    order = await db.get(Order, int(order_id))
    await db.refresh(order)
    return order


async def cancel_order(db: AsyncSession, *, order_id: int, merchant_id: int) -> Order:
    """pending -> cancelled; terminal orders are left untouched."""
    try:
        res = await db.execute(
            update(Order)
            .where(
                Order.id == int(order_id),
                Order.merchant_id == int(merchant_id),
                Order.status == ORDER_PENDING,
            )
            .values(status=ORDER_CANCELLED, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            existing = await db.execute(
                select(Order.status).where(
                    Order.id == int(order_id),
                    Order.merchant_id == int(merchant_id),
                )
            )
            current = existing.scalar_one_or_none()
            if current is None:
                raise NotFound("Order not found or access denied")
            raise InvalidState(f"Order cannot be cancelled (current: {current})")

        await db.commit()

    except Exception:
        await db.rollback()
        raise

    order = await db.get(Order, int(order_id))
    await db.refresh(order)
    logger.info("order %s cancelled by merchant %s", order.order_number, merchant_id)
    return order


async def get_order_by_number(db: AsyncSession, order_number: str) -> Order:
    res = await db.execute(
        select(Order).where(Order.order_number == (order_number or "").strip().upper())
    )
    order = res.scalar_one_or_none()
    if order is None:
        raise NotFound("Order not found")
    return order

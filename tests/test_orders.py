from __future__ import annotations

import asyncio
import re
from datetime import timedelta

import pytest
from sqlalchemy import select, update

from autopickup.core.errors import (
    AlreadyRedeemed,
    Expired,
    InsufficientStock,
    InvalidFormat,
    InvalidState,
    NotFound,
    PickupError,
)
from autopickup.core.timeutil import utcnow
from autopickup.models.order import (
    ORDER_CANCELLED,
    ORDER_DELIVERED,
    ORDER_EXPIRED,
    ORDER_PENDING,
    Order,
    effective_status,
)
from autopickup.models.product import Product
from autopickup.services.issuance import issue_order
from autopickup.services.orders import (
    cancel_order,
    get_order_by_number,
    list_orders,
    set_order_delivery,
)
from autopickup.services.redemption import (
    OrderRedemption,
    preview_order_key,
    redeem_order_key,
)


async def _issue(db, seed, **kw) -> tuple[int, str, str]:
    order = await issue_order(db, product_id=seed.product_id, merchant_id=seed.merchant_id, **kw)
    return order.id, order.order_number, order.pickup_key


async def _expire(db, order_id: int) -> None:
    await db.execute(
        update(Order)
        .where(Order.id == order_id)
        .values(expires_at=utcnow() - timedelta(seconds=1))
    )
    await db.commit()


async def _status(db, order_id: int) -> str:
    res = await db.execute(select(Order.status).where(Order.id == order_id))
    return res.scalar_one()


async def _redeem_in_own_session(session_factory, pickup_key: str):
    async with session_factory() as s:
        try:
            return await redeem_order_key(s, pickup_key)
        except PickupError as e:
            return e


async def test_issue_order(db, seed) -> None:
    before = utcnow()
    order = await issue_order(
        db,
        product_id=seed.product_id,
        merchant_id=seed.merchant_id,
        quantity=2,
        customer_info={"email": "buyer@example.com"},
    )

    assert re.fullmatch(r"AP[0-9A-Z]+", order.order_number)
    assert re.fullmatch(r"[0-9A-F]{32}", order.pickup_key)
    assert order.status == ORDER_PENDING
    assert order.total_amount_cents == 2 * 1999
    assert order.delivery_data == seed.delivery_data
    assert order.customer_info == {"email": "buyer@example.com"}
    assert before + timedelta(days=30) <= order.expires_at <= utcnow() + timedelta(days=30)

    # issuing never touches stock
    res = await db.execute(select(Product.stock).where(Product.id == seed.product_id))
    assert res.scalar_one() == 10


async def test_issue_order_rejections(db, seed) -> None:
    with pytest.raises(InsufficientStock):
        await _issue(db, seed, quantity=11)
    with pytest.raises(InvalidFormat):
        await _issue(db, seed, quantity=0)
    with pytest.raises(InvalidFormat):
        await _issue(db, seed, expires_in_days=366)
    with pytest.raises(NotFound):
        await issue_order(db, product_id=seed.product_id, merchant_id=seed.other_merchant_id)


async def test_issue_order_for_inactive_product(db, seed) -> None:
    await db.execute(update(Product).where(Product.id == seed.product_id).values(is_active=False))
    await db.commit()

    with pytest.raises(NotFound):
        await _issue(db, seed)


async def test_pickup_key_redeems_exactly_once(db, seed) -> None:
    order_id, _, key = await _issue(db, seed, quantity=3)

    preview = await preview_order_key(db, key)
    assert preview.id == order_id

    result = await redeem_order_key(db, key, customer_info={"email": "buyer@example.com"})
    assert isinstance(result, OrderRedemption)
    assert result.order.status == ORDER_DELIVERED
    assert result.order.picked_up_at is not None
    assert result.order.customer_info == {"email": "buyer@example.com"}
    assert result.delivery_data == seed.delivery_data

    with pytest.raises(AlreadyRedeemed):
        await redeem_order_key(db, key)
    with pytest.raises(AlreadyRedeemed):
        await preview_order_key(db, key)

    res = await db.execute(select(Product.sales).where(Product.id == seed.product_id))
    assert res.scalar_one() == 3


async def test_concurrent_pickups_have_one_winner(db, seed, session_factory) -> None:
    order_id, _, key = await _issue(db, seed)

    results = await asyncio.gather(
        *(_redeem_in_own_session(session_factory, key) for _ in range(4))
    )

    assert sum(isinstance(r, OrderRedemption) for r in results) == 1
    assert sum(isinstance(r, AlreadyRedeemed) for r in results) == 3
    assert await _status(db, order_id) == ORDER_DELIVERED


async def test_unknown_and_malformed_keys(db, seed) -> None:
    with pytest.raises(InvalidFormat):
        await redeem_order_key(db, "short")
    with pytest.raises(NotFound):
        await redeem_order_key(db, "0" * 32)
    with pytest.raises(NotFound):
        await preview_order_key(db, "0" * 32)


async def test_expired_order(db, seed) -> None:
    order_id, order_number, key = await _issue(db, seed)
    await _expire(db, order_id)

    with pytest.raises(Expired):
        await preview_order_key(db, key)
    with pytest.raises(Expired):
        await redeem_order_key(db, key)

    # expiry is derived at read time; the stored status stays pending
    assert await _status(db, order_id) == ORDER_PENDING
    order = await get_order_by_number(db, order_number.lower())
    assert effective_status(order) == ORDER_EXPIRED


async def test_cancelled_order(db, seed) -> None:
    order_id, _, key = await _issue(db, seed)

    cancelled = await cancel_order(db, order_id=order_id, merchant_id=seed.merchant_id)
    assert cancelled.status == ORDER_CANCELLED

    with pytest.raises(NotFound):
        await redeem_order_key(db, key)
    with pytest.raises(InvalidState):
        await cancel_order(db, order_id=order_id, merchant_id=seed.merchant_id)
    with pytest.raises(NotFound):
        await cancel_order(db, order_id=order_id + 1000, merchant_id=seed.merchant_id)
    with pytest.raises(NotFound):
        await cancel_order(db, order_id=order_id, merchant_id=seed.other_merchant_id)


async def test_delivered_order_cannot_be_cancelled(db, seed) -> None:
    order_id, _, key = await _issue(db, seed)
    await redeem_order_key(db, key)

    with pytest.raises(InvalidState):
        await cancel_order(db, order_id=order_id, merchant_id=seed.merchant_id)


async def test_set_order_delivery_only_while_pending(db, seed) -> None:
    order_id, _, key = await _issue(db, seed)

    order = await set_order_delivery(
        db, order_id=order_id, merchant_id=seed.merchant_id, delivery_data={"serial": "XYZ-1"}
    )
    assert order.delivery_data == {"serial": "XYZ-1"}

    result = await redeem_order_key(db, key)
    assert result.delivery_data == {"serial": "XYZ-1"}

    with pytest.raises(NotFound):
        await set_order_delivery(
            db, order_id=order_id, merchant_id=seed.merchant_id, delivery_data={"serial": "XYZ-2"}
        )


async def test_list_orders_filters_by_effective_status(db, seed) -> None:
    live_id, _, _ = await _issue(db, seed)
    stale_id, _, _ = await _issue(db, seed)
    done_id, _, done_key = await _issue(db, seed)
    await _expire(db, stale_id)
    await redeem_order_key(db, done_key)

    async def ids(status):
        page = await list_orders(db, merchant_id=seed.merchant_id, status=status)
        return {o.id for o in page["orders"]}

    assert await ids(None) == {live_id, stale_id, done_id}
    assert await ids(ORDER_PENDING) == {live_id}
    assert await ids(ORDER_EXPIRED) == {stale_id}
    assert await ids(ORDER_DELIVERED) == {done_id}
    assert await ids(ORDER_CANCELLED) == set()

    assert await list_orders(db, merchant_id=seed.other_merchant_id) == {
        "orders": [],
        "pagination": {"page": 1, "limit": 20, "total": 0, "pages": 0},
    }

    with pytest.raises(InvalidFormat):
        await list_orders(db, merchant_id=seed.merchant_id, status="shipped")

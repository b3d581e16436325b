# autopickup/services/redemption.py
"""
Redemption engine.

Two paths consume a scarce credential:

* pickup codes: many distinct redeemers up to ``usage_limit``, each at most
  once. The quota is enforced by a conditional UPDATE on ``used_count`` and the
  per-redeemer rule by the unique (code, user) constraint on the ledger.
* order pickup keys: a bearer secret redeemable exactly once. Enforced by a
  compare-and-swap UPDATE on ``orders.status``.

Every rejection is raised as a PickupError subclass. Nothing is retried here.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from autopickup.core.errors import (
    AlreadyRedeemed,
    Expired,
    InvalidFormat,
    NotFound,
    QuotaExhausted,
)
from autopickup.core.timeutil import utcnow
from autopickup.models.order import (
    ORDER_CANCELLED,
    ORDER_DELIVERED,
    ORDER_PENDING,
    PICKUP_KEY_MIN_LENGTH,
    Order,
)
from autopickup.models.pickup_code import (
    CODE_MAX_LENGTH,
    CODE_MIN_LENGTH,
    PickupCode,
    is_exhausted,
    is_expired,
)
from autopickup.models.product import Product
from autopickup.models.user import User
from autopickup.services.pickup_codes import find_active_by_code, increment_usage
from autopickup.services.pickup_records import has_redeemed, record_redemption

logger = logging.getLogger(__name__)


@dataclass
class CodeRedemption:
    pickup_code: PickupCode
    product: Product | None
    merchant: User | None
    delivery_data: Any
    confirmed_at: datetime


@dataclass
class OrderRedemption:
    order: Order
    product: Product | None
    delivery_data: Any
    picked_up_at: datetime


def normalize_code(code: str | None) -> str:
    clean = (code or "").strip().upper()
    if not (CODE_MIN_LENGTH <= len(clean) <= CODE_MAX_LENGTH):
        raise InvalidFormat("Invalid pickup code format", field="code")
    return clean


def normalize_pickup_key(pickup_key: str | None) -> str:
    clean = (pickup_key or "").strip()
    if len(clean) < PICKUP_KEY_MIN_LENGTH:
        raise InvalidFormat("Invalid pickup key format", field="pickup_key")
    return clean


async def _bump_sales(db: AsyncSession, product_id: int, quantity: int) -> None:
    # best-effort: a lost sales tick never undoes a redemption
    try:
        await db.execute(
            update(Product)
            .where(Product.id == int(product_id))
            .values(sales=Product.sales + int(quantity))
            .execution_options(synchronize_session=False)
        )
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.warning("could not update sales for product %s", product_id, exc_info=True)


# -------------------------
# Pickup codes
# -------------------------
async def _load_redeemable_code(db: AsyncSession, code: str) -> PickupCode:
    clean = normalize_code(code)

    pickup_code = await find_active_by_code(db, clean)
    if pickup_code is None:
        # same answer for unknown, disabled and deleted codes
        raise NotFound("Pickup code is invalid or does not exist")

    if is_expired(pickup_code):
        raise Expired("Pickup code has expired")

    if is_exhausted(pickup_code):
        raise QuotaExhausted("Pickup code usage limit reached")

    return pickup_code


async def preview_redemption(db: AsyncSession, code: str) -> PickupCode:
    """Validate a code without touching any state."""
    return await _load_redeemable_code(db, code)


async def confirm_redemption(db: AsyncSession, code: str, user_id: int) -> CodeRedemption:
    """
    Consume one unit of ``code`` for ``user_id``.

    Order of writes inside one transaction:
      1. conditional used_count increment (fails once the quota is spent)
      2. ledger insert (fails if this user already redeemed)
    Either failure rolls back both, so used_count always equals the number of
    ledger rows for the code.
    """
    try:
        pickup_code = await _load_redeemable_code(db, code)

        if await has_redeemed(db, pickup_code.id, user_id):
            raise AlreadyRedeemed("You have already used this pickup code")

        if not await increment_usage(db, pickup_code.id):
            raise QuotaExhausted("Pickup code usage limit reached")

        await record_redemption(db, code=pickup_code, user_id=user_id)

        await db.commit()

    except Exception as e:
        await db.rollback()
        if isinstance(e, (AlreadyRedeemed, QuotaExhausted)):
            logger.info("pickup code redemption rejected (%s) for user %s", e.code, user_id)
        raise

    confirmed_at = utcnow()
    code_id, product_id, merchant_id = pickup_code.id, pickup_code.product_id, pickup_code.merchant_id

    await _bump_sales(db, product_id, 1)

    await db.refresh(pickup_code)
    product = await db.get(Product, product_id)
    merchant = await db.get(User, merchant_id)

    logger.info(
        "pickup code %s redeemed by user %s (%s/%s)",
        code_id,
        user_id,
        pickup_code.used_count,
        pickup_code.usage_limit if pickup_code.usage_limit is not None else "unlimited",
    )

    return CodeRedemption(
        pickup_code=pickup_code,
        product=product,
        merchant=merchant,
        delivery_data=product.delivery_data if product is not None else None,
        confirmed_at=confirmed_at,
    )


# -------------------------
# Order pickup keys
# -------------------------
async def _get_order_by_key(db: AsyncSession, pickup_key: str) -> Order | None:
    res = await db.execute(select(Order).where(Order.pickup_key == pickup_key))
    return res.scalar_one_or_none()


def _reject_order(order: Order | None, now: datetime) -> None:
    if order is None or order.status == ORDER_CANCELLED:
        raise NotFound("Pickup key is invalid or has expired")
    if order.status == ORDER_DELIVERED:
        raise AlreadyRedeemed("This order has already been picked up")
    if now >= order.expires_at:
        raise Expired("Pickup key has expired")


async def preview_order_key(db: AsyncSession, pickup_key: str) -> Order:
    clean = normalize_pickup_key(pickup_key)
    now = utcnow()

    order = await _get_order_by_key(db, clean)
    if order is None or order.status != ORDER_PENDING or now >= order.expires_at:
        _reject_order(order, now)
    return order


async def redeem_order_key(
    db: AsyncSession,
    pickup_key: str,
    customer_info: dict | None = None,
) -> OrderRedemption:
    """
    pending -> delivered, conditioned on the row still being pending and
    unexpired at write time. A concurrent loser sees zero rows updated.
    """
    clean = normalize_pickup_key(pickup_key)
    now = utcnow()

    values: dict[str, Any] = {"status": ORDER_DELIVERED, "picked_up_at": now, "updated_at": now}
    if customer_info:
        values["customer_info"] = customer_info

    try:
        res = await db.execute(
            update(Order)
            .where(
                Order.pickup_key == clean,
                Order.status == ORDER_PENDING,
                Order.expires_at > now,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            await db.rollback()
            _reject_order(await _get_order_by_key(db, clean), now)
            # row changed between the UPDATE and the re-read; report the race as a loss
            raise AlreadyRedeemed("This order has already been picked up")

        await db.commit()

    except Exception:
        await db.rollback()
        raise

    order = await _get_order_by_key(db, clean)
    await _bump_sales(db, order.product_id, order.quantity)
    await db.refresh(order)

    logger.info("order %s picked up", order.order_number)

    return OrderRedemption(
        order=order,
        product=await db.get(Product, order.product_id),
        delivery_data=order.delivery_data,
        picked_up_at=order.picked_up_at or now,
    )

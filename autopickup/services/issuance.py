# autopickup/services/issuance.py
from __future__ import annotations

import logging
import secrets
import string
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Union

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from autopickup.core.config import settings
from autopickup.core.errors import (
    InsufficientStock,
    Internal,
    InvalidFormat,
    NotFound,
    QuotaCeilingReached,
)
from autopickup.core.timeutil import to_naive_utc, utcnow
from autopickup.models.order import ORDER_PENDING, Order
from autopickup.models.pickup_code import PickupCode
from autopickup.models.product import Product
from autopickup.services.pickup_codes import count_live_codes, create_code

logger = logging.getLogger(__name__)

# fresh token per attempt when the unique index rejects a collision
MAX_MINT_ATTEMPTS = 5

_BASE36 = string.digits + string.ascii_uppercase


@dataclass
class UsageCodeSpec:
    """Code bounded by number of redemptions (None = unlimited)."""

    usage_limit: int | None = None


@dataclass
class TimeCodeSpec:
    """Code bounded by an expiry; give either an absolute time or a day count."""

    expires_at: datetime | None = None
    expires_in_days: int | None = None


CodeSpec = Union[UsageCodeSpec, TimeCodeSpec]


def _to_base36(n: int) -> str:
    if n == 0:
        return "0"
    out = []
    while n:
        n, r = divmod(n, 36)
        out.append(_BASE36[r])
    return "".join(reversed(out))


def generate_order_number() -> str:
    stamp = _to_base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(_BASE36) for _ in range(4))
    return f"AP{stamp}{suffix}"


def generate_pickup_key() -> str:
    # 128 bits
    return secrets.token_hex(16).upper()


async def get_merchant_product(
    db: AsyncSession,
    product_id: int,
    merchant_id: int,
) -> Product:
    stmt = select(Product).where(
        Product.id == int(product_id),
        Product.merchant_id == int(merchant_id),
    )
    res = await db.execute(stmt)
    product = res.scalar_one_or_none()
    if product is None:
        raise NotFound("Product not found or access denied")
    return product


async def _lock_merchant_product(db: AsyncSession, product_id: int, merchant_id: int) -> None:
    res = await db.execute(
        update(Product)
        .where(
            Product.id == int(product_id),
            Product.merchant_id == int(merchant_id),
        )
        .values(updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        raise NotFound("Product not found or access denied")


async def issue_code(
    db: AsyncSession,
    *,
    product_id: int,
    merchant_id: int,
    spec: CodeSpec,
) -> PickupCode:
    """
    Mint a pickup code for a merchant's product.

    The product row is written first so the transaction holds the write lock
    (SQLite RESERVED lock, Postgres row lock) before the live codes are
    counted; concurrent issuers for the same product queue up behind it.
    """
    usage_limit: int | None = None
    expires_at: datetime | None = None
    expires_in_days: int | None = None

    if isinstance(spec, UsageCodeSpec):
        usage_limit = spec.usage_limit
    elif isinstance(spec, TimeCodeSpec):
        if spec.expires_at is None and not spec.expires_in_days:
            raise InvalidFormat("expires_at or expires_in_days is required", field="expires_at")
        if spec.expires_at is not None and to_naive_utc(spec.expires_at) <= utcnow():
            raise InvalidFormat("expires_at must be in the future", field="expires_at")
        expires_at = spec.expires_at
        expires_in_days = spec.expires_in_days
    else:
        raise InvalidFormat("Unknown pickup code type", field="type")

    limit = settings.CODES_PER_PRODUCT_LIMIT

    for attempt in range(1, MAX_MINT_ATTEMPTS + 1):
        try:
            await _lock_merchant_product(db, product_id, merchant_id)

            if await count_live_codes(db, product_id) >= limit:
                raise QuotaCeilingReached(f"Each product can have at most {limit} pickup codes")

            c = await create_code(
                db,
                product_id=product_id,
                merchant_id=merchant_id,
                usage_limit=usage_limit,
                expires_in_days=expires_in_days,
                expires_at=expires_at,
            )

            await db.commit()
            await db.refresh(c)

            logger.info("pickup code %s issued for product %s", c.id, product_id)
            return c

        except IntegrityError:
            await db.rollback()
            logger.warning("pickup code token collision (attempt %s), minting a new one", attempt)

        except Exception:
            await db.rollback()
            raise

    raise Internal("Could not mint a unique pickup code")


async def issue_order(
    db: AsyncSession,
    *,
    product_id: int,
    merchant_id: int,
    quantity: int = 1,
    expires_in_days: int | None = None,
    customer_info: dict | None = None,
    delivery_data: Any = None,
) -> Order:
    if quantity < 1:
        raise InvalidFormat("quantity must be >= 1", field="quantity")

    days = expires_in_days if expires_in_days is not None else settings.ORDER_DEFAULT_EXPIRES_DAYS
    if not 1 <= days <= 365:
        raise InvalidFormat("expires_in_days must be between 1 and 365", field="expires_in_days")

    for attempt in range(1, MAX_MINT_ATTEMPTS + 1):
        try:
            product = await get_merchant_product(db, product_id, merchant_id)
            if not product.is_active:
                raise NotFound("Product not found or access denied")

            # informational only: stock is not decremented here
            if product.stock < quantity:
                raise InsufficientStock("Insufficient stock")

            order = Order(
                order_number=generate_order_number(),
                pickup_key=generate_pickup_key(),
                product_id=product.id,
                merchant_id=int(merchant_id),
                quantity=int(quantity),
                total_amount_cents=int(product.price_cents) * int(quantity),
                status=ORDER_PENDING,
                delivery_data=delivery_data if delivery_data is not None else product.delivery_data,
                customer_info=customer_info or None,
                expires_at=utcnow() + timedelta(days=days),
            )
            db.add(order)

            await db.commit()
            await db.refresh(order)

            logger.info("order %s issued for product %s", order.order_number, product.id)
            return order

        except IntegrityError:
            await db.rollback()
            logger.warning("order number / pickup key collision (attempt %s), retrying", attempt)

        except Exception:
            await db.rollback()
            raise

    raise Internal("Could not mint a unique pickup key")

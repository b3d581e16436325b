# autopickup/services/pickup_codes.py
from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from autopickup.core.errors import InvalidFormat, NotFound
from autopickup.core.timeutil import to_naive_utc, utcnow
from autopickup.models.pickup_code import CODE_ALPHABET, CODE_LENGTH, PickupCode

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("is_active", "usage_limit", "expires_at")


def generate_code() -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


def expiry_from_days(expires_in_days: int | None, now: datetime | None = None) -> datetime | None:
    if not expires_in_days or expires_in_days <= 0:
        return None
    return (now or utcnow()) + timedelta(days=int(expires_in_days))


async def create_code(
    db: AsyncSession,
    *,
    product_id: int,
    merchant_id: int,
    usage_limit: int | None = None,
    expires_in_days: int | None = None,
    expires_at: datetime | None = None,
) -> PickupCode:
    """
    Insert a new code with a freshly minted token and flush it.

    A token collision surfaces as IntegrityError from the flush; the caller
    owns the transaction and retries with a new token.
    """
    if usage_limit is not None and usage_limit < 1:
        raise InvalidFormat("usage_limit must be greater than 0", field="usage_limit")

    c = PickupCode(
        code=generate_code(),
        product_id=int(product_id),
        merchant_id=int(merchant_id),
        is_active=True,
        usage_limit=usage_limit,
        used_count=0,
        expires_at=to_naive_utc(expires_at) or expiry_from_days(expires_in_days),
        is_deleted=False,
    )
    db.add(c)
    await db.flush()
    return c


async def find_active_by_code(db: AsyncSession, code: str) -> PickupCode | None:
    res = await db.execute(
        select(PickupCode).where(
            PickupCode.code == code.upper(),
            PickupCode.is_active.is_(True),
            PickupCode.is_deleted.is_(False),
        )
    )
    return res.scalar_one_or_none()


async def increment_usage(db: AsyncSession, code_id: int) -> bool:
    """
    used_count += 1 only while under usage_limit, as one conditional UPDATE.

    Returns False when the quota was already spent (possibly by a concurrent
    winner). Does not commit.
    """
    res = await db.execute(
        update(PickupCode)
        .where(PickupCode.id == int(code_id))
        .where(PickupCode.is_deleted.is_(False))
        .where(
            or_(
                PickupCode.usage_limit.is_(None),
                PickupCode.used_count < PickupCode.usage_limit,
            )
        )
        .values(used_count=PickupCode.used_count + 1, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


async def count_live_codes(db: AsyncSession, product_id: int) -> int:
    res = await db.execute(
        select(func.count())
        .select_from(PickupCode)
        .where(PickupCode.product_id == int(product_id), PickupCode.is_deleted.is_(False))
    )
    return int(res.scalar_one())


async def list_codes(db: AsyncSession, *, product_id: int, merchant_id: int) -> list[PickupCode]:
    res = await db.execute(
        select(PickupCode)
        .where(
            PickupCode.product_id == int(product_id),
            PickupCode.merchant_id == int(merchant_id),
            PickupCode.is_deleted.is_(False),
        )
        .order_by(PickupCode.created_at.desc(), PickupCode.id.desc())
    )
    return list(res.scalars().all())


async def _get_owned_code(db: AsyncSession, code_id: int, merchant_id: int) -> PickupCode:
    res = await db.execute(
        select(PickupCode)
        .where(
            PickupCode.id == int(code_id),
            PickupCode.merchant_id == int(merchant_id),
            PickupCode.is_deleted.is_(False),
        )
        .with_for_update()
    )
    c = res.scalar_one_or_none()
    if c is None:
        raise NotFound("Pickup code not found or access denied")
    return c


async def update_code(
    db: AsyncSession,
    *,
    code_id: int,
    merchant_id: int,
    patch: dict[str, Any],
) -> PickupCode:
    """
    Apply an issuer edit. Keys absent from ``patch`` are left alone; an
    explicit None clears usage_limit / expires_at.
    """
    try:
        c = await _get_owned_code(db, code_id, merchant_id)

        for key, value in patch.items():
            if key not in UPDATABLE_FIELDS:
                continue
            if key == "is_active":
                if value is None:
                    raise InvalidFormat("is_active must be a boolean", field="is_active")
                c.is_active = bool(value)
            elif key == "usage_limit":
                if value is not None and int(value) < 1:
                    raise InvalidFormat("usage_limit must be greater than 0", field="usage_limit")
                if value is not None and int(value) < c.used_count:
                    raise InvalidFormat(
                        f"usage_limit cannot be below used_count ({c.used_count})",
                        field="usage_limit",
                    )
                c.usage_limit = int(value) if value is not None else None
            elif key == "expires_at":
                c.expires_at = to_naive_utc(value)

        await db.commit()
        await db.refresh(c)
        logger.info("pickup code %s updated by merchant %s: %s", c.id, merchant_id, sorted(patch))
        return c

    except IntegrityError as e:
        # quota check constraint: a redemption landed between our read and write
        await db.rollback()
        raise InvalidFormat("usage_limit cannot be below used_count", field="usage_limit") from e
    except Exception:
        await db.rollback()
        raise


async def soft_delete_code(db: AsyncSession, *, code_id: int, merchant_id: int) -> PickupCode:
    try:
        c = await _get_owned_code(db, code_id, merchant_id)
        c.is_deleted = True
        c.deleted_at = utcnow()

        await db.commit()
        await db.refresh(c)
        logger.info("pickup code %s soft-deleted by merchant %s", c.id, merchant_id)
        return c

    except Exception:
        await db.rollback()
        raise

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from autopickup.core.errors import DuplicateRedemption
from autopickup.models.pickup_code import PickupCode
from autopickup.models.pickup_record import RECORD_CONFIRMED, PickupRecord


async def has_redeemed(db: AsyncSession, code_id: int, user_id: int) -> bool:
    # advisory only; the unique constraint decides
    res = await db.execute(
        select(PickupRecord.id).where(
            PickupRecord.pickup_code_id == int(code_id),
            PickupRecord.user_id == int(user_id),
        )
    )
    return res.first() is not None


async def record_redemption(db: AsyncSession, *, code: PickupCode, user_id: int) -> PickupRecord:
    """
    Append a confirmed ledger row inside the caller's transaction.

    Raises DuplicateRedemption when (code, user) is already present. The
    session must then be rolled back by the caller.
    """
    entry = PickupRecord(
        pickup_code_id=code.id,
        user_id=int(user_id),
        product_id=code.product_id,
        merchant_id=code.merchant_id,
        status=RECORD_CONFIRMED,
    )
    db.add(entry)
    try:
        await db.flush()
    except IntegrityError as e:
        raise DuplicateRedemption("You have already used this pickup code") from e
    return entry


async def count_records_for_code(db: AsyncSession, code_id: int) -> int:
    res = await db.execute(
        select(func.count()).select_from(PickupRecord).where(PickupRecord.pickup_code_id == int(code_id))
    )
    return int(res.scalar_one())


async def list_user_records(
    db: AsyncSession,
    *,
    user_id: int,
    page: int = 1,
    limit: int = 10,
) -> dict:
    total_res = await db.execute(
        select(func.count()).select_from(PickupRecord).where(PickupRecord.user_id == int(user_id))
    )
    total = int(total_res.scalar_one())

    res = await db.execute(
        select(PickupRecord)
        .where(PickupRecord.user_id == int(user_id))
        .order_by(PickupRecord.created_at.desc(), PickupRecord.id.desc())
        .limit(int(limit))
        .offset((int(page) - 1) * int(limit))
    )
    records = list(res.scalars().all())

    pages = (total + limit - 1) // limit if limit else 0
    return {
        "records": records,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": pages,
            "has_next": page < pages,
            "has_prev": page > 1,
        },
    }

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select

from autopickup.core.errors import (
    AlreadyRedeemed,
    DuplicateRedemption,
    Expired,
    InvalidFormat,
    NotFound,
    PickupError,
    QuotaExhausted,
)
from autopickup.core.timeutil import utcnow
from autopickup.models.pickup_code import PickupCode
from autopickup.models.product import Product
from autopickup.services.issuance import TimeCodeSpec, UsageCodeSpec, issue_code
from autopickup.services.pickup_codes import update_code
from autopickup.services.pickup_records import (
    count_records_for_code,
    list_user_records,
    record_redemption,
)
from autopickup.services.redemption import (
    CodeRedemption,
    confirm_redemption,
    normalize_code,
    preview_redemption,
)


async def _issue(db, seed, spec=None) -> tuple[int, str]:
    c = await issue_code(
        db,
        product_id=seed.product_id,
        merchant_id=seed.merchant_id,
        spec=spec or UsageCodeSpec(),
    )
    return c.id, c.code


async def _used_count(db, code_id: int) -> int:
    res = await db.execute(select(PickupCode.used_count).where(PickupCode.id == code_id))
    return int(res.scalar_one())


async def _sales(db, product_id: int) -> int:
    res = await db.execute(select(Product.sales).where(Product.id == product_id))
    return int(res.scalar_one())


async def _confirm_in_own_session(session_factory, code: str, user_id: int):
    async with session_factory() as s:
        try:
            return await confirm_redemption(s, code, user_id)
        except PickupError as e:
            return e


def test_normalize_code() -> None:
    assert normalize_code("  abc123  ") == "ABC123"
    assert normalize_code("A" * 20) == "A" * 20

    for bad in (None, "", "   ", "ABC12", "A" * 21):
        with pytest.raises(InvalidFormat):
            normalize_code(bad)


async def test_preview_unknown_code(db, seed) -> None:
    with pytest.raises(NotFound):
        await preview_redemption(db, "NOSUCHCODE99")


async def test_preview_does_not_consume(db, seed) -> None:
    code_id, code = await _issue(db, seed, UsageCodeSpec(usage_limit=1))

    for _ in range(3):
        c = await preview_redemption(db, code.lower())
        assert c.id == code_id

    assert await _used_count(db, code_id) == 0
    assert await count_records_for_code(db, code_id) == 0


async def test_preview_disabled_code_reads_as_missing(db, seed) -> None:
    code_id, code = await _issue(db, seed)
    await update_code(db, code_id=code_id, merchant_id=seed.merchant_id, patch={"is_active": False})

    with pytest.raises(NotFound):
        await preview_redemption(db, code)


async def test_expired_code_is_rejected(db, seed) -> None:
    code_id, code = await _issue(db, seed, TimeCodeSpec(expires_in_days=1))
    await update_code(
        db,
        code_id=code_id,
        merchant_id=seed.merchant_id,
        patch={"expires_at": utcnow() - timedelta(minutes=1)},
    )

    with pytest.raises(Expired):
        await preview_redemption(db, code)
    with pytest.raises(Expired):
        await confirm_redemption(db, code, seed.customer_id)

    assert await _used_count(db, code_id) == 0


async def test_confirm_hands_out_delivery_data(db, seed) -> None:
    code_id, code = await _issue(db, seed, UsageCodeSpec(usage_limit=5))

    result = await confirm_redemption(db, f" {code.lower()} ", seed.customer_id)

    assert isinstance(result, CodeRedemption)
    assert result.delivery_data == seed.delivery_data
    assert result.pickup_code.used_count == 1
    assert result.product is not None and result.product.id == seed.product_id
    assert result.merchant is not None and result.merchant.id == seed.merchant_id

    assert await count_records_for_code(db, code_id) == 1
    assert await _sales(db, seed.product_id) == 1


async def test_same_redeemer_cannot_redeem_twice(db, seed) -> None:
    code_id, code = await _issue(db, seed)

    await confirm_redemption(db, code, seed.customer_id)
    with pytest.raises(AlreadyRedeemed):
        await confirm_redemption(db, code, seed.customer_id)

    assert await _used_count(db, code_id) == 1
    assert await count_records_for_code(db, code_id) == 1


async def test_exhausted_code_rejects_next_redeemer(db, seed, make_customers) -> None:
    first, second = await make_customers(2)
    code_id, code = await _issue(db, seed, UsageCodeSpec(usage_limit=1))

    await confirm_redemption(db, code, first)
    with pytest.raises(QuotaExhausted):
        await preview_redemption(db, code)
    with pytest.raises(QuotaExhausted):
        await confirm_redemption(db, code, second)

    assert await _used_count(db, code_id) == 1


async def test_ledger_unique_constraint_is_authoritative(db, seed) -> None:
    code_id, _ = await _issue(db, seed)
    code = await db.get(PickupCode, code_id)

    await record_redemption(db, code=code, user_id=seed.customer_id)
    await db.commit()

    with pytest.raises(DuplicateRedemption) as exc_info:
        await record_redemption(db, code=code, user_id=seed.customer_id)
    await db.rollback()

    assert isinstance(exc_info.value, AlreadyRedeemed)
    assert await count_records_for_code(db, code_id) == 1


async def test_concurrent_redeemers_share_a_limit_of_two(db, seed, session_factory, make_customers) -> None:
    users = await make_customers(3)
    code_id, code = await _issue(db, seed, UsageCodeSpec(usage_limit=2))

    results = await asyncio.gather(
        *(_confirm_in_own_session(session_factory, code, uid) for uid in users)
    )

    wins = [r for r in results if isinstance(r, CodeRedemption)]
    losses = [r for r in results if isinstance(r, PickupError)]
    assert len(wins) == 2
    assert len(losses) == 1
    assert isinstance(losses[0], QuotaExhausted)

    assert await _used_count(db, code_id) == 2
    assert await count_records_for_code(db, code_id) == 2


async def test_used_count_matches_ledger_under_contention(db, seed, session_factory, make_customers) -> None:
    users = await make_customers(8)
    code_id, code = await _issue(db, seed, UsageCodeSpec(usage_limit=3))

    results = await asyncio.gather(
        *(_confirm_in_own_session(session_factory, code, uid) for uid in users)
    )

    assert sum(isinstance(r, CodeRedemption) for r in results) == 3
    assert all(isinstance(r, (CodeRedemption, QuotaExhausted)) for r in results)
    assert await _used_count(db, code_id) == 3
    assert await count_records_for_code(db, code_id) == 3
    assert await _sales(db, seed.product_id) == 3


async def test_concurrent_double_submit_by_one_redeemer(db, seed, session_factory) -> None:
    code_id, code = await _issue(db, seed)

    results = await asyncio.gather(
        _confirm_in_own_session(session_factory, code, seed.customer_id),
        _confirm_in_own_session(session_factory, code, seed.customer_id),
    )

    assert sum(isinstance(r, CodeRedemption) for r in results) == 1
    assert sum(isinstance(r, AlreadyRedeemed) for r in results) == 1
    assert await _used_count(db, code_id) == 1
    assert await count_records_for_code(db, code_id) == 1


async def test_list_user_records_paginates(db, seed) -> None:
    codes = [await _issue(db, seed) for _ in range(3)]
    for _, code in codes:
        await confirm_redemption(db, code, seed.customer_id)

    page = await list_user_records(db, user_id=seed.customer_id, page=1, limit=2)

    assert len(page["records"]) == 2
    assert page["pagination"] == {
        "page": 1,
        "limit": 2,
        "total": 3,
        "pages": 2,
        "has_next": True,
        "has_prev": False,
    }
    assert page["records"][0].pickup_code.code in {code for _, code in codes}

# autopickup/routers/pickup_codes.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from autopickup.core.db import get_db
from autopickup.core.deps import require_merchant
from autopickup.models.user import User
from autopickup.schemas.common import Envelope
from autopickup.schemas.pickup_codes import (
    PickupCodeCreateIn,
    PickupCodeOut,
    PickupCodeUpdateIn,
    TimeCodeCreate,
)
from autopickup.services.issuance import TimeCodeSpec, UsageCodeSpec, get_merchant_product, issue_code
from autopickup.services.pickup_codes import list_codes, soft_delete_code, update_code

router = APIRouter(prefix="/api/pickup-codes", tags=["Merchant - Pickup codes"])


@router.get("/product/{product_id}", response_model=Envelope[list[PickupCodeOut]])
async def get_product_codes(
    product_id: int,
    db: AsyncSession = Depends(get_db),
    merchant: User = Depends(require_merchant),
):
    # 404 unless the product belongs to the caller
    await get_merchant_product(db, product_id, merchant.id)

    codes = await list_codes(db, product_id=product_id, merchant_id=merchant.id)
    return Envelope(data=[PickupCodeOut.from_code(c) for c in codes])


@router.post("/product/{product_id}", response_model=Envelope[PickupCodeOut], status_code=201)
async def create_product_code(
    product_id: int,
    body: PickupCodeCreateIn,
    db: AsyncSession = Depends(get_db),
    merchant: User = Depends(require_merchant),
):
    payload = body.root
    if isinstance(payload, TimeCodeCreate):
        spec = TimeCodeSpec(expires_at=payload.expires_at, expires_in_days=payload.expires_in_days)
    else:
        spec = UsageCodeSpec(usage_limit=payload.usage_limit)

    c = await issue_code(db, product_id=product_id, merchant_id=merchant.id, spec=spec)
    return Envelope(message="Pickup code created", data=PickupCodeOut.from_code(c))


@router.put("/{code_id}", response_model=Envelope[PickupCodeOut])
async def update_pickup_code(
    code_id: int,
    body: PickupCodeUpdateIn,
    db: AsyncSession = Depends(get_db),
    merchant: User = Depends(require_merchant),
):
    c = await update_code(
        db,
        code_id=code_id,
        merchant_id=merchant.id,
        patch=body.model_dump(exclude_unset=True),
    )
    return Envelope(message="Pickup code updated", data=PickupCodeOut.from_code(c))


@router.delete("/{code_id}", response_model=Envelope[PickupCodeOut])
async def delete_pickup_code(
    code_id: int,
    db: AsyncSession = Depends(get_db),
    merchant: User = Depends(require_merchant),
):
    c = await soft_delete_code(db, code_id=code_id, merchant_id=merchant.id)
    return Envelope(message="Pickup code deleted", data=PickupCodeOut.from_code(c))

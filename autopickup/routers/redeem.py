from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from autopickup.core.db import get_db
from autopickup.core.deps import enforce_code_rate_limit, get_current_user
from autopickup.models.user import User
from autopickup.schemas.catalog import MerchantBriefOut, ProductBriefOut
from autopickup.schemas.common import Envelope, Pagination
from autopickup.schemas.redemption import (
    CodeConfirmOut,
    CodePreviewOut,
    CodeSummaryOut,
    PickupRecordOut,
    PickupRecordPage,
    RedeemCodeIn,
)
from autopickup.services.pickup_records import list_user_records
from autopickup.services.redemption import confirm_redemption, preview_redemption

router = APIRouter(prefix="/api/redeem", tags=["Pickup code redemption"])


def _brief(schema, obj):
    return schema.model_validate(obj) if obj is not None else None


@router.post(
    "/verify",
    response_model=Envelope[CodePreviewOut],
    dependencies=[Depends(enforce_code_rate_limit)],
)
async def verify_code(
    body: RedeemCodeIn,
    db: AsyncSession = Depends(get_db),
):
    c = await preview_redemption(db, body.code)
    return Envelope(
        data=CodePreviewOut(
            pickup_code=CodeSummaryOut.model_validate(c),
            product=_brief(ProductBriefOut, c.product),
            merchant=_brief(MerchantBriefOut, c.merchant),
        )
    )


@router.post(
    "/confirm",
    response_model=Envelope[CodeConfirmOut],
    dependencies=[Depends(enforce_code_rate_limit)],
)
async def confirm_code(
    body: RedeemCodeIn,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    result = await confirm_redemption(db, body.code, current_user.id)
    return Envelope(
        message="Pickup confirmed",
        data=CodeConfirmOut(
            pickup_code=CodeSummaryOut.model_validate(result.pickup_code),
            product=_brief(ProductBriefOut, result.product),
            merchant=_brief(MerchantBriefOut, result.merchant),
            delivery_data=result.delivery_data,
            confirmed_at=result.confirmed_at,
        ),
    )


@router.get("/records", response_model=Envelope[PickupRecordPage])
async def my_records(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    result = await list_user_records(db, user_id=current_user.id, page=page, limit=limit)

    records = [
        PickupRecordOut(
            id=r.id,
            pickup_code_id=r.pickup_code_id,
            product_id=r.product_id,
            merchant_id=r.merchant_id,
            status=r.status,
            created_at=r.created_at,
            code=r.pickup_code.code if r.pickup_code is not None else None,
            product_name=r.product.name if r.product is not None else None,
        )
        for r in result["records"]
    ]
    return Envelope(
        data=PickupRecordPage(records=records, pagination=Pagination(**result["pagination"]))
    )

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from autopickup.schemas.catalog import MerchantBriefOut, ProductBriefOut
from autopickup.schemas.common import Pagination


class RedeemCodeIn(BaseModel):
    code: str = Field(min_length=1, max_length=64)


class CodeSummaryOut(BaseModel):
    id: int
    code: str
    usage_limit: Optional[int]
    used_count: int
    expires_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CodePreviewOut(BaseModel):
    pickup_code: CodeSummaryOut
    product: Optional[ProductBriefOut]
    merchant: Optional[MerchantBriefOut]


class CodeConfirmOut(BaseModel):
    pickup_code: CodeSummaryOut
    product: Optional[ProductBriefOut]
    merchant: Optional[MerchantBriefOut]
    delivery_data: Any = None
    confirmed_at: datetime


class PickupRecordOut(BaseModel):
    id: int
    pickup_code_id: int
    product_id: int
    merchant_id: int
    status: str
    created_at: datetime

    code: Optional[str] = None
    product_name: Optional[str] = None


class PickupRecordPage(BaseModel):
    records: List[PickupRecordOut]
    pagination: Pagination

# autopickup/schemas/pickup_codes.py
from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, RootModel, model_validator

from autopickup.core.timeutil import to_naive_utc, utcnow
from autopickup.models.pickup_code import PickupCode, is_available, is_expired


class UsageCodeCreate(BaseModel):
    type: Literal["usage"]
    # None = unlimited
    usage_limit: Optional[int] = Field(default=None, ge=1)


class TimeCodeCreate(BaseModel):
    type: Literal["time"]
    expires_at: Optional[datetime] = None
    expires_in_days: Optional[int] = Field(default=None, ge=1, le=3650)

    @model_validator(mode="after")
    def _one_expiry(self):
        if self.expires_at is None and self.expires_in_days is None:
            raise ValueError("expires_at or expires_in_days is required")
        if self.expires_at is not None and self.expires_in_days is not None:
            raise ValueError("give either expires_at or expires_in_days, not both")
        if self.expires_at is not None and to_naive_utc(self.expires_at) <= utcnow():
            raise ValueError("expires_at must be in the future")
        return self


class PickupCodeCreateIn(
    RootModel[Annotated[Union[UsageCodeCreate, TimeCodeCreate], Field(discriminator="type")]]
):
    pass


class PickupCodeUpdateIn(BaseModel):
    # fields left out are untouched; explicit null clears usage_limit / expires_at
    is_active: Optional[bool] = None
    usage_limit: Optional[int] = Field(default=None, ge=1)
    expires_at: Optional[datetime] = None


class PickupCodeOut(BaseModel):
    id: int
    code: str
    product_id: int
    merchant_id: int
    is_active: bool
    usage_limit: Optional[int]
    used_count: int
    expires_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    is_expired: bool
    is_available: bool

    @classmethod
    def from_code(cls, c: PickupCode, now: datetime | None = None) -> "PickupCodeOut":
        now = now or utcnow()
        return cls(
            id=c.id,
            code=c.code,
            product_id=c.product_id,
            merchant_id=c.merchant_id,
            is_active=c.is_active,
            usage_limit=c.usage_limit,
            used_count=c.used_count,
            expires_at=c.expires_at,
            created_at=c.created_at,
            updated_at=c.updated_at,
            is_expired=is_expired(c, now),
            is_available=is_available(c, now),
        )

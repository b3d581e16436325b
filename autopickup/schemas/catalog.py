from __future__ import annotations

from pydantic import BaseModel


class ProductBriefOut(BaseModel):
    id: int
    name: str
    description: str
    price_cents: int

    class Config:
        from_attributes = True


class MerchantBriefOut(BaseModel):
    id: int
    username: str

    class Config:
        from_attributes = True

# autopickup/models/pickup_code.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from autopickup.core.db import Base, BigIntPK
from autopickup.core.timeutil import utcnow

CODE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
CODE_LENGTH = 12
CODE_MIN_LENGTH = 6
CODE_MAX_LENGTH = 20


class PickupCode(Base):
    __tablename__ = "pickup_codes"
    __table_args__ = (
        CheckConstraint("used_count >= 0", name="pickup_codes_used_count_check"),
        CheckConstraint(
            "usage_limit IS NULL OR usage_limit >= 1",
            name="pickup_codes_usage_limit_check",
        ),
        CheckConstraint(
            "usage_limit IS NULL OR used_count <= usage_limit",
            name="pickup_codes_quota_check",
        ),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)

    code: Mapped[str] = mapped_column(String(CODE_MAX_LENGTH), nullable=False, unique=True)

    product_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("products.id"), nullable=False
    )
    merchant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False, index=True
    )

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # NULL = unlimited
    usage_limit: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    used_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # NULL = never expires
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now(), onupdate=func.now()
    )

    product = relationship("Product", lazy="selectin")
    merchant = relationship("User", lazy="selectin")


Index("ix_pickup_codes_product_live", PickupCode.product_id, PickupCode.is_deleted)
Index("ix_pickup_codes_expires_at", PickupCode.expires_at)


def is_expired(code: PickupCode, now: datetime | None = None) -> bool:
    if code.expires_at is None:
        return False
    return (now or utcnow()) > code.expires_at


def is_exhausted(code: PickupCode) -> bool:
    return code.usage_limit is not None and code.used_count >= code.usage_limit


def is_available(code: PickupCode, now: datetime | None = None) -> bool:
    return (
        bool(code.is_active)
        and not code.is_deleted
        and not is_expired(code, now)
        and not is_exhausted(code)
    )

# autopickup/models/pickup_record.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from autopickup.core.db import Base, BigIntPK

RECORD_PENDING = "pending"
RECORD_CONFIRMED = "confirmed"


class PickupRecord(Base):
    """Append-only ledger row: one redeemer consumed one pickup code."""

    __tablename__ = "pickup_records"
    __table_args__ = (
        # one redemption per redeemer per code
        UniqueConstraint("pickup_code_id", "user_id", name="uq_pickup_records_code_user"),
        CheckConstraint(
            "status IN ('pending','confirmed')",
            name="pickup_records_status_check",
        ),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)

    pickup_code_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("pickup_codes.id"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False)
    product_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("products.id"), nullable=False)
    merchant_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default=RECORD_PENDING)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )

    pickup_code = relationship("PickupCode", lazy="selectin")
    product = relationship("Product", lazy="selectin")


Index("ix_pickup_records_user_created", PickupRecord.user_id, PickupRecord.created_at.desc())
Index("ix_pickup_records_merchant", PickupRecord.merchant_id)

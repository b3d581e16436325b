from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from autopickup.core.db import Base, BigIntPK
from autopickup.core.timeutil import utcnow

ORDER_PENDING = "pending"
ORDER_DELIVERED = "delivered"
ORDER_CANCELLED = "cancelled"
# never stored: a pending order past expires_at reads as expired
ORDER_EXPIRED = "expired"

ORDER_STATUSES = (ORDER_PENDING, ORDER_DELIVERED, ORDER_EXPIRED, ORDER_CANCELLED)

PICKUP_KEY_MIN_LENGTH = 8


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending','delivered','cancelled')",
            name="orders_status_check",
        ),
        CheckConstraint("quantity >= 1", name="orders_quantity_check"),
        CheckConstraint("total_amount_cents >= 0", name="orders_total_check"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)

    order_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    pickup_key: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    product_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("products.id"), nullable=False
    )
    merchant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False
    )

    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    total_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default=ORDER_PENDING)

    delivery_data: Mapped[Optional[Any]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), nullable=True
    )
    # {"email": ..., "phone": ..., "note": ...}
    customer_info: Mapped[Optional[dict]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), nullable=True
    )

    picked_up_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now(), onupdate=func.now()
    )

    product = relationship("Product", lazy="selectin")


Index("ix_orders_merchant_created", Order.merchant_id, Order.created_at.desc())
Index("ix_orders_status", Order.status)


def effective_status(order: Order, now: datetime | None = None) -> str:
    if order.status == ORDER_PENDING and (now or utcnow()) >= order.expires_at:
        return ORDER_EXPIRED
    return order.status

# app/models/order_status_history.py
from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.models.enums import OrderStatus, enum_values

if TYPE_CHECKING:
    from app.models.order import Order


class OrderStatusHistory(Base):
    """
    订单状态流转（只增不改）
    - seq 每单严格递增，(order_id, seq) 唯一
    - 首条为 from=NULL → PENDING
    """

    __tablename__ = "order_status_history"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(
        sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    seq: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    from_status: Mapped[OrderStatus | None] = mapped_column(
        sa.Enum(OrderStatus, name="order_status", values_callable=enum_values), nullable=True
    )
    to_status: Mapped[OrderStatus] = mapped_column(
        sa.Enum(OrderStatus, name="order_status", values_callable=enum_values), nullable=False
    )
    actor: Mapped[str] = mapped_column(sa.String(96), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)

    order: Mapped["Order"] = relationship("Order", back_populates="status_history")

    __table_args__ = (
        sa.UniqueConstraint("order_id", "seq", name="uq_order_status_history_order_seq"),
    )

    def __repr__(self) -> str:
        return (
            f"<StatusChange order={self.order_id} #{self.seq} "
            f"{self.from_status}->{self.to_status} by={self.actor}>"
        )

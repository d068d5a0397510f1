# app/models/order.py
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, List

from sqlalchemy import Boolean, DateTime, Index, Integer, Numeric, String, Text
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.models.enums import Campus, OrderStatus, enum_values

if TYPE_CHECKING:
    from app.models.order_item import OrderItem
    from app.models.order_status_history import OrderStatusHistory


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Order(Base):
    """
    订单主档（聚合根）

    - items 创建后不可变；total_amount / delivery_fee 只在创建时计算一次
    - status 只能经状态机或 admin override 改写；状态历史只增不改
    - otp_code 创建时生成一次，永不重生成
    - refund_* / cancellation_reason 只在取消路径写入
    - funds_released_at 非空表示托管资金已释放（每单只释放一次）
    - version：乐观并发条件写（UPDATE ... WHERE version = :v）
    """

    __tablename__ = "orders"
    __table_args__ = (Index("ix_orders_buyer_created", "buyer_id", "created_at"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    buyer_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    status: Mapped[OrderStatus] = mapped_column(
        SAEnum(OrderStatus, name="order_status", values_callable=enum_values),
        nullable=False,
        index=True,
        default=OrderStatus.PENDING,
    )

    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    delivery_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    destination_campus: Mapped[Campus] = mapped_column(
        SAEnum(Campus, name="campus", values_callable=enum_values), nullable=False
    )
    buyer_locale: Mapped[str] = mapped_column(String(8), nullable=False, default="en")

    # OTP（6 位数字）
    otp_code: Mapped[str] = mapped_column(String(6), nullable=False)
    otp_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # 支付确认信号带来的网关流水号
    payment_reference: Mapped[str | None] = mapped_column(String(128), nullable=True)

    # 取消 / 退款
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    refund_initiated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    refund_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    refund_initiated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # 托管释放
    funds_released_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    items: Mapped[List["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.line_no",
        lazy="selectin",
    )
    status_history: Mapped[List["OrderStatusHistory"]] = relationship(
        "OrderStatusHistory",
        back_populates="order",
        cascade="all",
        order_by="OrderStatusHistory.seq",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def grand_total(self) -> Decimal:
        return Decimal(self.total_amount) + Decimal(self.delivery_fee)

    @property
    def shop_ids(self) -> list[int]:
        """订单涉及的店铺（按首次出现顺序去重）"""
        seen: list[int] = []
        for it in self.items:
            if it.shop_id not in seen:
                seen.append(it.shop_id)
        return seen

    def __repr__(self) -> str:
        return (
            f"<Order id={self.id} buyer={self.buyer_id!r} status={self.status} "
            f"otp_attempts={self.otp_attempts} v={self.version}>"
        )

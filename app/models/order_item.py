# app/models/order_item.py
from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, ForeignKey, Integer, Numeric, String, UniqueConstraint
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.models.enums import City, enum_values

if TYPE_CHECKING:
    from app.models.order import Order


class OrderItem(Base):
    """
    订单行（下单时的快照）：

    - product_name / price_at_purchase / shop_city 为冗余快照，后续商品改价不影响
    - line_no 从 1 开始，作为台账 ref_line
    """

    __tablename__ = "order_items"
    __table_args__ = (
        UniqueConstraint("order_id", "line_no", name="uq_order_items_order_line"),
        CheckConstraint("quantity > 0", name="ck_order_items_qty_positive"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)

    product_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    shop_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    price_at_purchase: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    shop_city: Mapped[City] = mapped_column(
        SAEnum(City, name="shop_city", values_callable=enum_values), nullable=False
    )

    order: Mapped["Order"] = relationship("Order", back_populates="items")

    @property
    def line_total(self) -> Decimal:
        return Decimal(self.price_at_purchase) * int(self.quantity)

    def __repr__(self) -> str:
        return (
            f"<OrderItem order={self.order_id} line={self.line_no} product={self.product_id} "
            f"shop={self.shop_id} qty={self.quantity} price={self.price_at_purchase}>"
        )

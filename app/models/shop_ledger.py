# app/models/shop_ledger.py
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.enums import LedgerEntryType, enum_values


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ShopLedgerEntry(Base):
    """
    店铺资金台账（只增不改）
    幂等唯一： (order_id, shop_id, ref_line, entry_type)
    - ref_line = 订单行 line_no，同一订单行只能入账一次
    - balance_after = balance_before + amount；且等于该店下一条的 balance_before
    """

    __tablename__ = "shop_ledger"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)

    shop_id: Mapped[int] = mapped_column(sa.ForeignKey("shops.id"), nullable=False, index=True)
    order_id: Mapped[int] = mapped_column(sa.ForeignKey("orders.id"), nullable=False, index=True)
    ref_line: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=1)

    entry_type: Mapped[LedgerEntryType] = mapped_column(
        sa.Enum(LedgerEntryType, name="ledger_entry_type", values_callable=enum_values),
        nullable=False,
        default=LedgerEntryType.CREDIT,
    )
    amount: Mapped[Decimal] = mapped_column(sa.Numeric(14, 2), nullable=False)
    balance_before: Mapped[Decimal] = mapped_column(sa.Numeric(14, 2), nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(sa.Numeric(14, 2), nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        sa.UniqueConstraint(
            "order_id",
            "shop_id",
            "ref_line",
            "entry_type",
            name="uq_shop_ledger_order_shop_line_type",
        ),
        sa.Index("ix_shop_ledger_shop_occurred", "shop_id", "occurred_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<ShopLedger {self.entry_type} shop={self.shop_id} order={self.order_id} "
            f"line={self.ref_line} amount={self.amount} "
            f"before={self.balance_before} after={self.balance_after}>"
        )

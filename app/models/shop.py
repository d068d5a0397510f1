# app/models/shop.py
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import DateTime, Integer, Numeric, String
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.enums import City, enum_values


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Shop(Base):
    """
    店铺（目录侧协作方的记录）

    - balance 只允许在追加 shop_ledger 的同一事务内变动
    - version 为乐观并发条件写计数
    """

    __tablename__ = "shops"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    city: Mapped[City] = mapped_column(
        SAEnum(City, name="shop_city", values_callable=enum_values), nullable=False
    )

    # 店主的通知语言（en / am / om）
    owner_locale: Mapped[str] = mapped_column(String(8), nullable=False, default="en")

    balance: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal("0"))

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Shop id={self.id} owner={self.owner_id!r} city={self.city} balance={self.balance}>"

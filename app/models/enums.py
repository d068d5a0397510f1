# app/models/enums.py
from __future__ import annotations

from enum import StrEnum


class OrderStatus(StrEnum):
    """
    订单托管生命周期：

    - PENDING       已下单，待支付
    - PAID_ESCROW   已支付，资金托管中
    - DISPATCHED    店铺已交给跑腿
    - ARRIVED       跑腿已到达收货校区
    - COMPLETED     OTP 校验通过，资金已释放给店铺（终态）
    - CANCELLED     已取消（终态）
    """

    PENDING = "PENDING"
    PAID_ESCROW = "PAID_ESCROW"
    DISPATCHED = "DISPATCHED"
    ARRIVED = "ARRIVED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})


class City(StrEnum):
    """店铺所在城市（发货起点）"""

    HARAR = "Harar"
    DIRE_DAWA = "Dire Dawa"


class Campus(StrEnum):
    """收货校区"""

    HARAMAYA_MAIN = "Haramaya_Main"
    HARAR_CAMPUS = "Harar_Campus"
    DDU = "DDU"


class ActorRole(StrEnum):
    BUYER = "BUYER"
    SHOP_OWNER = "SHOP_OWNER"
    RUNNER = "RUNNER"
    ADMIN = "ADMIN"
    # 支付确认信号（外部可信）
    SYSTEM = "SYSTEM"


class LedgerEntryType(StrEnum):
    CREDIT = "CREDIT"


class AdminAction(StrEnum):
    ORDER_STATUS_UPDATE = "ORDER_STATUS_UPDATE"
    ORDER_REFUND = "ORDER_REFUND"


def enum_values(enum_cls) -> list[str]:
    """SAEnum values_callable：落库存 value 而不是 member name。"""
    return [m.value for m in enum_cls]

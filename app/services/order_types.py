# app/services/order_types.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import StrEnum
from typing import Generic, List, Optional, TypeVar

from app.models.enums import ActorRole

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Actor:
    """已验证的调用方身份（认证在上游完成，这里当作不透明事实）。"""

    user_id: str
    role: ActorRole

    @property
    def label(self) -> str:
        """写入状态历史的 actor 字段"""
        if self.role == ActorRole.ADMIN:
            return f"admin:{self.user_id}"
        if self.role == ActorRole.SYSTEM:
            return f"system:{self.user_id}"
        return self.user_id


PAYMENT_SIGNAL = Actor(user_id="payment_webhook", role=ActorRole.SYSTEM)


class OrderEvent(StrEnum):
    ORDER_DISPATCHED = "ORDER_DISPATCHED"
    ORDER_ARRIVED = "ORDER_ARRIVED"
    ORDER_COMPLETED = "ORDER_COMPLETED"
    ORDER_CANCELLED = "ORDER_CANCELLED"
    PAYMENT_SUCCESS = "PAYMENT_SUCCESS"


@dataclass(frozen=True)
class Notice:
    """提交后才发送的通知（unit of work 内只收集，不发送）"""

    event: OrderEvent
    user_id: str
    order_id: int
    locale: str
    otp_code: Optional[str] = None
    reason: Optional[str] = None
    amount: Optional[Decimal] = None


@dataclass(frozen=True)
class RefundRequest:
    """提交后交给退款执行方的请求"""

    order_id: int
    amount: Decimal
    payment_reference: Optional[str]


@dataclass
class UnitOutcome(Generic[T]):
    """
    unit of work 的返回值：

    - value: 给调用方的结果（通常是 Order 快照）
    - notices / refunds: 提交成功后再执行的外部副作用
    - error: 已提交但对调用方仍为失败的结果（OTP 错误计数）
    """

    value: T
    notices: List[Notice] = field(default_factory=list)
    refunds: List[RefundRequest] = field(default_factory=list)
    error: Optional[str] = None
    error_context: dict = field(default_factory=dict)

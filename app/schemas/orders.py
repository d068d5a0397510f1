# app/schemas/orders.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.enums import Campus, City, OrderStatus


# -------------------------------
# 下单
# -------------------------------
class CartLineIn(BaseModel):
    product_id: int
    quantity: int = Field(gt=0)


class OrderCreateIn(BaseModel):
    # 空购物车交给服务层返回 EMPTY_CART，这里不做 min_length
    items: List[CartLineIn]
    destination_campus: Campus
    locale: Optional[str] = Field(default=None, max_length=8)  # en / am / om


# -------------------------------
# 状态推进 / OTP / 取消
# -------------------------------
class StatusUpdateIn(BaseModel):
    status: OrderStatus
    reason: Optional[str] = None  # 仅 CANCELLED 使用


class OtpIn(BaseModel):
    # 格式（6 位数字）由服务层判定，返回 INVALID_OTP_FORMAT
    code: str


class CancelIn(BaseModel):
    reason: Optional[str] = None


# -------------------------------
# 出参
# -------------------------------
class OrderItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    line_no: int
    product_id: int
    shop_id: int
    product_name: str
    quantity: int
    price_at_purchase: Decimal
    shop_city: City


class StatusChangeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    seq: int
    from_status: Optional[OrderStatus] = None
    to_status: OrderStatus
    actor: str
    occurred_at: datetime


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    buyer_id: str
    status: OrderStatus
    status_label: Optional[str] = None
    total_amount: Decimal
    delivery_fee: Decimal
    destination_campus: Campus
    buyer_locale: str

    # 只对买家本人 / 管理员返回（到货时出示给跑腿）
    otp_code: Optional[str] = None
    otp_attempts: int
    payment_reference: Optional[str] = None

    cancellation_reason: Optional[str] = None
    refund_initiated: bool
    refund_amount: Optional[Decimal] = None
    refund_initiated_at: Optional[datetime] = None
    funds_released_at: Optional[datetime] = None

    created_at: datetime
    updated_at: datetime

    items: List[OrderItemOut]
    status_history: List[StatusChangeOut]


class ShopOrderOut(BaseModel):
    """店铺视角：只含本店商品行"""

    id: int
    buyer_id: str
    status: OrderStatus
    destination_campus: Campus
    created_at: datetime
    items: List[OrderItemOut]


class ShopBalanceOut(BaseModel):
    shop_id: int
    name: str
    city: City
    owner_locale: str
    balance: Decimal


# -------------------------------
# 支付确认
# -------------------------------
class PaymentConfirmIn(BaseModel):
    order_id: int
    amount: Decimal
    reference: Optional[str] = Field(default=None, max_length=128)


class PaymentConfirmOut(BaseModel):
    order_id: int
    status: OrderStatus
    already_processed: bool


# -------------------------------
# 运费报价
# -------------------------------
class QuoteOut(BaseModel):
    city: City
    campus: Campus
    fee: Decimal
    eta: str
    category: str
    description: str

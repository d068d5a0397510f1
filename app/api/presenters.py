# app/api/presenters.py
"""ORM → 出参（按调用方决定可见字段）"""

from __future__ import annotations

from typing import Optional

from app.models.enums import ActorRole
from app.models.order import Order
from app.schemas.orders import OrderItemOut, OrderOut, ShopOrderOut
from app.services.order_service import ShopOrderView
from app.services.order_state_machine import status_description
from app.services.order_types import Actor


def order_out(order: Order, actor: Optional[Actor] = None) -> OrderOut:
    out = OrderOut.model_validate(order)
    out.status_label = status_description(order.status, order.buyer_locale)
    # OTP 只给买家本人（要出示给跑腿）和管理员看
    show_otp = actor is not None and (
        actor.role == ActorRole.ADMIN
        or (actor.role == ActorRole.BUYER and actor.user_id == order.buyer_id)
    )
    if not show_otp:
        out.otp_code = None
    return out


def shop_order_out(view: ShopOrderView) -> ShopOrderOut:
    o = view.order
    return ShopOrderOut(
        id=o.id,
        buyer_id=o.buyer_id,
        status=o.status,
        destination_campus=o.destination_campus,
        created_at=o.created_at,
        items=[OrderItemOut.model_validate(it) for it in view.items],
    )

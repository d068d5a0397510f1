# app/services/order_state_machine.py
"""
订单状态机（托管生命周期）

    PENDING ──(支付确认)──▶ PAID_ESCROW ──(店铺发货)──▶ DISPATCHED ──(跑腿到达)──▶ ARRIVED ──(OTP)──▶ COMPLETED
       │                        │
       └──(买家取消)──▶ CANCELLED ◀──(买家 / 管理员取消)

- 表里没有的边一律 INVALID_TRANSITION（包括原地不动的请求）
- 角色不允许走这条边 → UNAUTHORIZED_ACTION
- 角色对但不是“这张单的人” → UNAUTHORIZED
- ARRIVED → COMPLETED 只能经 OTP 校验，直接请求永远 UNAUTHORIZED_ACTION
- 管理员强制改状态不走这里（见 admin_override）
"""

from __future__ import annotations

from datetime import datetime
from typing import Collection, Dict, FrozenSet, Tuple

from app.models.enums import ActorRole, OrderStatus, TERMINAL_STATUSES
from app.models.order import Order
from app.models.order_status_history import OrderStatusHistory
from app.services.order_errors import (
    INVALID_TRANSITION,
    UNAUTHORIZED,
    UNAUTHORIZED_ACTION,
    OrderError,
)
from app.services.order_types import Actor, utcnow

S = OrderStatus
R = ActorRole

# (from, to) → 允许的角色；空集合表示只能由系统内部路径驱动（OTP）
ALLOWED_TRANSITIONS: Dict[Tuple[OrderStatus, OrderStatus], FrozenSet[ActorRole]] = {
    (S.PENDING, S.PAID_ESCROW): frozenset({R.SYSTEM}),
    (S.PENDING, S.CANCELLED): frozenset({R.BUYER}),
    (S.PAID_ESCROW, S.DISPATCHED): frozenset({R.SHOP_OWNER}),
    (S.PAID_ESCROW, S.CANCELLED): frozenset({R.BUYER, R.ADMIN}),
    (S.DISPATCHED, S.ARRIVED): frozenset({R.RUNNER}),
    (S.ARRIVED, S.COMPLETED): frozenset(),
}

CANCELLABLE_STATUSES = frozenset({S.PENDING, S.PAID_ESCROW})

# 已付款（资金进入托管）之后的状态
_FUNDED_STATUSES = frozenset({S.PAID_ESCROW, S.DISPATCHED, S.ARRIVED})

_STATUS_LABELS: Dict[OrderStatus, Dict[str, str]] = {
    S.PENDING: {
        "en": "Awaiting Payment",
        "am": "ክፍያ በመጠባበቅ ላይ",
        "om": "Kaffaltii eegaa jira",
    },
    S.PAID_ESCROW: {
        "en": "Payment Received",
        "am": "ክፍያ ተደርጓል",
        "om": "Kaffaltiin raawwatameera",
    },
    S.DISPATCHED: {
        "en": "Out for Delivery",
        "am": "በማድረስ ላይ",
        "om": "Geessisaaf kaafameera",
    },
    S.ARRIVED: {
        "en": "Arrived at Location",
        "am": "ቦታው ላይ ደርሷል",
        "om": "Bakka gaheera",
    },
    S.COMPLETED: {
        "en": "Completed",
        "am": "ተጠናቋል",
        "om": "Xumurameera",
    },
    S.CANCELLED: {
        "en": "Cancelled",
        "am": "ተሰርዟል",
        "om": "Haqameera",
    },
}


def is_valid_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return (OrderStatus(current), OrderStatus(target)) in ALLOWED_TRANSITIONS


def allowed_next_states(current: OrderStatus) -> list[OrderStatus]:
    cur = OrderStatus(current)
    return [to for (frm, to) in ALLOWED_TRANSITIONS if frm == cur]


def can_cancel(status: OrderStatus) -> bool:
    return OrderStatus(status) in CANCELLABLE_STATUSES


def requires_refund(status: OrderStatus) -> bool:
    """取消前的状态已收款（PAID_ESCROW 及之后、非终态）时需要退款。"""
    return OrderStatus(status) in _FUNDED_STATUSES


def is_terminal(status: OrderStatus) -> bool:
    return OrderStatus(status) in TERMINAL_STATUSES


def status_description(status: OrderStatus, locale: str = "en") -> str:
    labels = _STATUS_LABELS[OrderStatus(status)]
    return labels.get(locale) or labels["en"]


def authorize(
    order: Order,
    target: OrderStatus,
    actor: Actor,
    owned_shop_ids: Collection[int] = (),
) -> None:
    """
    判定 actor 能否把 order 推到 target；不通过直接抛 OrderError，不修改 order。

    owned_shop_ids：actor 作为店主拥有的店铺 id（只有 SHOP_OWNER 需要）。
    """
    current = OrderStatus(order.status)
    target = OrderStatus(target)
    ctx = {"order_id": order.id, "from": current.value, "to": target.value}

    roles = ALLOWED_TRANSITIONS.get((current, target))
    if roles is None:
        raise OrderError(
            INVALID_TRANSITION,
            f"cannot transition from {current.value} to {target.value}",
            context=ctx,
        )

    if actor.role not in roles:
        raise OrderError(
            UNAUTHORIZED_ACTION,
            f"role {actor.role.value} may not perform {current.value} -> {target.value}",
            context=ctx,
        )

    if actor.role == R.BUYER and actor.user_id != order.buyer_id:
        raise OrderError(UNAUTHORIZED, "not the buyer of this order", context=ctx)

    if actor.role == R.SHOP_OWNER and not (set(order.shop_ids) & set(owned_shop_ids)):
        raise OrderError(UNAUTHORIZED, "shop owner has no items in this order", context=ctx)


def append_status_change(
    order: Order,
    to_status: OrderStatus,
    actor_label: str,
    *,
    at: datetime | None = None,
) -> OrderStatusHistory:
    """
    写 status 并追加一条状态历史（只增不改）。
    from_status 取写入前的 status；新建订单第一条历史的 from 为 None。
    """
    prev = order.status if order.status_history else None
    entry = OrderStatusHistory(
        seq=len(order.status_history) + 1,
        from_status=prev,
        to_status=OrderStatus(to_status),
        actor=actor_label,
        occurred_at=at or utcnow(),
    )
    order.status = OrderStatus(to_status)
    order.status_history.append(entry)
    return entry

# app/services/cancellation.py
"""
取消 / 退款协调

三条入口，同一套落库动作（一个 unit 内完成）：

  cancel_order_unit           买家（PENDING / PAID_ESCROW）或管理员（PAID_ESCROW）
  cancel_via_transition_unit  update_status(CANCELLED)，完全按状态机表判定
  admin_refund_unit           管理员退款（PAID_ESCROW / DISPATCHED / ARRIVED），
                              不校验买家身份，写 ORDER_REFUND 审计

落库动作：
  - status → CANCELLED + 状态历史，记录 cancellation_reason
  - 每行商品库存 += quantity
  - 取消前已收款（PAID_ESCROW 及之后）：refund_initiated / refund_amount / refund_initiated_at
  - 已 refund_initiated 的订单再取消 / 再退款 → CANNOT_CANCEL

真正的网关退款与通知只作为 outcome 返回，提交后由服务层执行。
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.enums import ActorRole, AdminAction, OrderStatus
from app.models.order import Order
from app.services.audit_writer import AdminAuditWriter
from app.services.order_errors import (
    CANNOT_CANCEL,
    UNAUTHORIZED,
    UNAUTHORIZED_ACTION,
    OrderError,
)
from app.services.order_repository import (
    load_order_for_update,
    load_products_for_update,
    load_shops,
    owned_shop_ids,
)
from app.services.order_state_machine import append_status_change, authorize, requires_refund
from app.services.order_types import Actor, Notice, OrderEvent, RefundRequest, UnitOutcome, utcnow

log = logging.getLogger("campus.cancel")

S = OrderStatus

BUYER_CANCELLABLE = frozenset({S.PENDING, S.PAID_ESCROW})
ADMIN_CANCELLABLE = frozenset({S.PAID_ESCROW})
ADMIN_REFUNDABLE = frozenset({S.PAID_ESCROW, S.DISPATCHED, S.ARRIVED})


def _ensure_not_refunded(order: Order) -> None:
    if order.refund_initiated:
        raise OrderError(
            CANNOT_CANCEL,
            "refund already initiated",
            context={"order_id": order.id},
        )


def _reason_text(reason: Optional[str]) -> str:
    return (reason or "").strip() or "Cancelled by buyer"


def _ensure_status_in(order: Order, allowed: frozenset) -> None:
    if order.status not in allowed:
        raise OrderError(
            CANNOT_CANCEL,
            f"order cannot be cancelled in status {order.status.value}",
            context={"order_id": order.id, "status": order.status.value},
        )


async def _apply_cancellation(
    session: AsyncSession,
    order: Order,
    *,
    actor: Actor,
    reason: str,
) -> UnitOutcome[Order]:
    now = utcnow()
    prev = order.status

    append_status_change(order, S.CANCELLED, actor.label, at=now)
    order.cancellation_reason = reason

    refunds: List[RefundRequest] = []
    if requires_refund(prev):
        amount = Decimal(order.total_amount) + Decimal(order.delivery_fee)
        order.refund_initiated = True
        order.refund_amount = amount
        order.refund_initiated_at = now
        refunds.append(
            RefundRequest(
                order_id=order.id,
                amount=amount,
                payment_reference=order.payment_reference,
            )
        )

    # 版本条件写先落，再动库存
    await session.flush()

    products = await load_products_for_update(session, [it.product_id for it in order.items])
    for it in order.items:
        p = products.get(it.product_id)
        if p is None:
            log.warning(
                "order %s line %s: product %s gone, stock not restored",
                order.id,
                it.line_no,
                it.product_id,
            )
            continue
        p.stock = int(p.stock) + int(it.quantity)

    shops = await load_shops(session, order.shop_ids)
    notices = [
        Notice(
            event=OrderEvent.ORDER_CANCELLED,
            user_id=order.buyer_id,
            order_id=order.id,
            locale=order.buyer_locale,
            reason=reason,
        )
    ]
    for shop in shops.values():
        notices.append(
            Notice(
                event=OrderEvent.ORDER_CANCELLED,
                user_id=shop.owner_id,
                order_id=order.id,
                locale=shop.owner_locale or "en",
                reason=reason,
            )
        )

    log.info(
        "order %s cancelled by %s from %s (refund=%s)",
        order.id,
        actor.label,
        prev.value,
        order.refund_initiated,
    )
    return UnitOutcome(value=order, notices=notices, refunds=refunds)


async def cancel_order_unit(
    *,
    session: AsyncSession,
    order_id: int,
    actor: Actor,
    reason: Optional[str] = None,
) -> UnitOutcome[Order]:
    if actor.role not in (ActorRole.BUYER, ActorRole.ADMIN):
        raise OrderError(UNAUTHORIZED_ACTION, f"role {actor.role.value} may not cancel orders")

    order = await load_order_for_update(session, order_id)

    if actor.role == ActorRole.BUYER and actor.user_id != order.buyer_id:
        raise OrderError(UNAUTHORIZED, "not the buyer of this order", context={"order_id": order_id})

    _ensure_not_refunded(order)
    _ensure_status_in(order, BUYER_CANCELLABLE if actor.role == ActorRole.BUYER else ADMIN_CANCELLABLE)

    return await _apply_cancellation(session, order, actor=actor, reason=_reason_text(reason))


async def cancel_via_transition_unit(
    *,
    session: AsyncSession,
    order_id: int,
    actor: Actor,
    reason: Optional[str] = None,
) -> UnitOutcome[Order]:
    """
    update_status(CANCELLED) 入口：按状态机表判定。

    - 已发起退款 → CANNOT_CANCEL（先于表判定）
    - 表里没有的边 → INVALID_TRANSITION；角色不在表里 → UNAUTHORIZED_ACTION；
      不是这张单的买家 → UNAUTHORIZED
    """
    order = await load_order_for_update(session, order_id)
    _ensure_not_refunded(order)

    owned: List[int] = []
    if actor.role == ActorRole.SHOP_OWNER:
        owned = await owned_shop_ids(session, actor.user_id)
    authorize(order, S.CANCELLED, actor, owned)

    return await _apply_cancellation(session, order, actor=actor, reason=_reason_text(reason))


async def admin_refund_unit(
    *,
    session: AsyncSession,
    order_id: int,
    admin: Actor,
    reason: str,
    trace_id: Optional[str] = None,
) -> UnitOutcome[Order]:
    if admin.role != ActorRole.ADMIN:
        raise OrderError(UNAUTHORIZED_ACTION, "admin role required")

    order = await load_order_for_update(session, order_id)
    _ensure_not_refunded(order)
    _ensure_status_in(order, ADMIN_REFUNDABLE)

    old_status = order.status
    outcome = await _apply_cancellation(
        session, order, actor=admin, reason=f"Admin refund: {reason}"
    )
    AdminAuditWriter.write(
        session,
        admin_id=admin.user_id,
        action=AdminAction.ORDER_REFUND,
        target_id=order.id,
        old_status=old_status,
        new_status=S.CANCELLED,
        reason=reason,
        trace_id=trace_id,
        meta={"refund_amount": str(order.refund_amount)},
    )
    return outcome

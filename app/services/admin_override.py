# app/services/admin_override.py
"""
管理员强制改状态（运维兜底通道）

- 不走状态机表：任何状态都可以强制写入；
- 从非 COMPLETED 强制到 COMPLETED：调用与 OTP 路径同一个 release_funds，
  已释放过的订单不会重复入账；
- 每次调用都在同一个 unit 内写一条 ORDER_STATUS_UPDATE 审计（理由必填）。
"""

from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.enums import ActorRole, AdminAction, OrderStatus
from app.models.order import Order
from app.services.audit_writer import AdminAuditWriter
from app.services.escrow_ledger import release_funds
from app.services.order_errors import UNAUTHORIZED_ACTION, OrderError
from app.services.order_repository import load_order_for_update
from app.services.order_state_machine import append_status_change
from app.services.order_types import Actor, Notice, OrderEvent, UnitOutcome, utcnow

log = logging.getLogger("campus.admin")

_NOTIFY_ON = {
    OrderStatus.DISPATCHED: OrderEvent.ORDER_DISPATCHED,
    OrderStatus.ARRIVED: OrderEvent.ORDER_ARRIVED,
    OrderStatus.COMPLETED: OrderEvent.ORDER_COMPLETED,
    OrderStatus.CANCELLED: OrderEvent.ORDER_CANCELLED,
}


async def admin_update_status_unit(
    *,
    session: AsyncSession,
    order_id: int,
    admin: Actor,
    new_status: OrderStatus,
    reason: str,
    trace_id: Optional[str] = None,
) -> UnitOutcome[Order]:
    if admin.role != ActorRole.ADMIN:
        raise OrderError(UNAUTHORIZED_ACTION, "admin role required")

    order = await load_order_for_update(session, order_id)
    old_status = order.status
    target = OrderStatus(new_status)
    now = utcnow()

    append_status_change(order, target, admin.label, at=now)
    await session.flush()

    released = 0
    if target == OrderStatus.COMPLETED and old_status != OrderStatus.COMPLETED:
        entries = await release_funds(session, order, at=now)
        released = len(entries)

    AdminAuditWriter.write(
        session,
        admin_id=admin.user_id,
        action=AdminAction.ORDER_STATUS_UPDATE,
        target_id=order.id,
        old_status=old_status,
        new_status=target,
        reason=reason,
        trace_id=trace_id,
        meta={"ledger_entries": released},
    )

    log.warning(
        "admin override order=%s %s -> %s by %s",
        order_id,
        old_status.value,
        target.value,
        admin.label,
    )

    notices: List[Notice] = []
    event = _NOTIFY_ON.get(target)
    if event is not None and target != old_status:
        notices.append(
            Notice(
                event=event,
                user_id=order.buyer_id,
                order_id=order.id,
                locale=order.buyer_locale,
                otp_code=order.otp_code if target == OrderStatus.ARRIVED else None,
                reason=reason if target == OrderStatus.CANCELLED else None,
            )
        )
    return UnitOutcome(value=order, notices=notices)

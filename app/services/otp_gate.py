# app/services/otp_gate.py
"""
OTP 交付闸门：

- 每单一个 6 位数字码，下单时生成一次，永不重生成；
- 错一次 otp_attempts + 1 并提交（即使请求本身失败），满 3 次锁单；
- 锁单后即便输入正确也拒绝，只能由管理员处理；
- 校验通过：ARRIVED → COMPLETED + 状态历史 + 托管资金释放，同一个 unit 内完成。
"""

from __future__ import annotations

import hmac
import logging
import re
import secrets

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.enums import ActorRole, OrderStatus
from app.models.order import Order
from app.services.escrow_ledger import release_funds
from app.services.order_errors import (
    INVALID_OTP,
    INVALID_OTP_FORMAT,
    ORDER_LOCKED,
    ORDER_NOT_ARRIVED,
    UNAUTHORIZED_ACTION,
    OrderError,
)
from app.services.order_repository import load_order_for_update
from app.services.order_state_machine import append_status_change
from app.services.order_types import Actor, Notice, OrderEvent, UnitOutcome, utcnow

log = logging.getLogger("campus.otp")

OTP_PATTERN = re.compile(r"^\d{6}$", re.ASCII)
OTP_MIN = 100000
OTP_MAX = 999999

_OTP_ROLES = frozenset({ActorRole.RUNNER, ActorRole.ADMIN})


def generate_otp() -> str:
    """[100000, 999999] 之间的 6 位数字（CSPRNG）。"""
    return str(OTP_MIN + secrets.randbelow(OTP_MAX - OTP_MIN + 1))


def is_valid_otp_format(code: str | None) -> bool:
    return bool(code) and OTP_PATTERN.fullmatch(code) is not None


def check_request(code: str | None, actor: Actor) -> str:
    """unit 之外的前置校验：角色 + 格式。"""
    if actor.role not in _OTP_ROLES:
        raise OrderError(UNAUTHORIZED_ACTION, "only a runner or admin may submit the OTP")
    if not is_valid_otp_format(code):
        raise OrderError(INVALID_OTP_FORMAT, "OTP must be exactly 6 digits")
    return code  # type: ignore[return-value]


async def validate_otp_unit(
    *,
    session: AsyncSession,
    order_id: int,
    code: str,
    actor: Actor,
    max_attempts: int = 3,
) -> UnitOutcome[Order]:
    """
    OTP 校验 unit。

    错误码计数属于“已提交的失败”：返回 outcome.error，让计数随事务提交，
    由调用方在提交后抛错。
    """
    order = await load_order_for_update(session, order_id)

    if order.status != OrderStatus.ARRIVED:
        raise OrderError(
            ORDER_NOT_ARRIVED,
            f"order is {order.status.value}, not ARRIVED",
            context={"order_id": order_id},
        )

    if order.otp_attempts >= max_attempts:
        raise OrderError(
            ORDER_LOCKED,
            "too many failed OTP attempts",
            context={"order_id": order_id, "otp_attempts": order.otp_attempts},
        )

    if not hmac.compare_digest(order.otp_code.encode(), code.encode()):
        order.otp_attempts = order.otp_attempts + 1
        attempts = order.otp_attempts
        if attempts >= max_attempts:
            log.warning("order %s locked after %d failed OTP attempts", order_id, attempts)
            error = ORDER_LOCKED
        else:
            log.info("order %s OTP mismatch (%d/%d)", order_id, attempts, max_attempts)
            error = INVALID_OTP
        return UnitOutcome(
            value=order,
            error=error,
            error_context={
                "order_id": order_id,
                "otp_attempts": attempts,
                "remaining_attempts": max(0, max_attempts - attempts),
            },
        )

    now = utcnow()
    append_status_change(order, OrderStatus.COMPLETED, actor.label, at=now)
    # 先刷出订单的条件写：并发的重复完成在这里撞 version，而不是在记账之后
    await session.flush()
    await release_funds(session, order, at=now)

    log.info("order %s completed via OTP by %s", order_id, actor.label)
    return UnitOutcome(
        value=order,
        notices=[
            Notice(
                event=OrderEvent.ORDER_COMPLETED,
                user_id=order.buyer_id,
                order_id=order.id,
                locale=order.buyer_locale,
            )
        ],
    )

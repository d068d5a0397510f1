# app/api/deps.py
from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import get_settings
from app.db.session import get_session_maker
from app.models.enums import ActorRole
from app.ports import NotificationPort, RefundPort
from app.services.notifications import LoggingNotifier, LoggingRefundExecutor
from app.services.order_errors import UNAUTHORIZED, UNAUTHORIZED_ACTION, OrderError
from app.services.order_service import OrderService
from app.services.order_types import Actor

# 网关可以透传的角色；SYSTEM 只在支付确认内部使用
_HEADER_ROLES = {ActorRole.BUYER, ActorRole.SHOP_OWNER, ActorRole.RUNNER, ActorRole.ADMIN}


# ---------------------------
# 当前调用方（上游网关已完成认证）
# ---------------------------


async def get_actor(
    x_actor_id: Optional[str] = Header(default=None, alias="X-Actor-Id"),
    x_actor_role: Optional[str] = Header(default=None, alias="X-Actor-Role"),
) -> Actor:
    """
    从可信网关头读取身份：

    - 缺头 / 角色不认识 → 403 UNAUTHORIZED
    """
    user_id = (x_actor_id or "").strip()
    role_raw = (x_actor_role or "").strip().upper()
    if not user_id or not role_raw:
        raise OrderError(UNAUTHORIZED, "missing actor identity")
    try:
        role = ActorRole(role_raw)
    except ValueError:
        raise OrderError(UNAUTHORIZED, f"unknown actor role: {role_raw}")
    if role not in _HEADER_ROLES:
        raise OrderError(UNAUTHORIZED, f"role {role.value} not accepted from gateway")
    return Actor(user_id=user_id, role=role)


async def get_admin(actor: Actor = Depends(get_actor)) -> Actor:
    if actor.role != ActorRole.ADMIN:
        raise OrderError(UNAUTHORIZED_ACTION, "admin role required")
    return actor


async def get_shop_owner(actor: Actor = Depends(get_actor)) -> Actor:
    if actor.role != ActorRole.SHOP_OWNER:
        raise OrderError(UNAUTHORIZED_ACTION, "shop owner role required")
    return actor


# ---------------------------
# 提交后副作用（测试里可 override）
# ---------------------------


def get_notifier() -> NotificationPort:
    return LoggingNotifier()


def get_refund_port() -> RefundPort:
    return LoggingRefundExecutor()


async def get_order_service(
    session_maker: async_sessionmaker[AsyncSession] = Depends(get_session_maker),
    notifier: NotificationPort = Depends(get_notifier),
    refunds: RefundPort = Depends(get_refund_port),
) -> OrderService:
    """
    OrderService 只持有会话工厂，每个请求一个实例。
    """
    return OrderService(session_maker, notifier=notifier, refunds=refunds, settings=get_settings())


__all__ = (
    "get_actor",
    "get_admin",
    "get_shop_owner",
    "get_notifier",
    "get_refund_port",
    "get_order_service",
)

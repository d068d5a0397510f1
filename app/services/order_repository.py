# app/services/order_repository.py
"""
订单聚合的读写入口（只在 unit of work 的 session 内使用）

- *_for_update：SELECT ... FOR UPDATE（sqlite 上为 no-op，靠 version 条件写兜底）
- 查询结果都带 items / status_history（selectin）
"""

from __future__ import annotations

from typing import Iterable, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.enums import OrderStatus
from app.models.order import Order
from app.models.order_item import OrderItem
from app.models.product import Product
from app.models.shop import Shop
from app.services.order_errors import ORDER_NOT_FOUND, OrderError


async def load_order(session: AsyncSession, order_id: int) -> Order:
    order = await session.get(Order, order_id)
    if order is None:
        raise OrderError(ORDER_NOT_FOUND, f"order {order_id} not found", context={"order_id": order_id})
    return order


async def load_order_for_update(session: AsyncSession, order_id: int) -> Order:
    order = (
        await session.execute(select(Order).where(Order.id == order_id).with_for_update())
    ).scalar_one_or_none()
    if order is None:
        raise OrderError(ORDER_NOT_FOUND, f"order {order_id} not found", context={"order_id": order_id})
    return order


async def load_products_for_update(
    session: AsyncSession, product_ids: Iterable[int]
) -> dict[int, Product]:
    ids = sorted({int(x) for x in product_ids})
    if not ids:
        return {}
    rows = (
        await session.execute(
            select(Product).where(Product.id.in_(ids)).order_by(Product.id).with_for_update()
        )
    ).scalars()
    return {p.id: p for p in rows}


async def load_shops(
    session: AsyncSession, shop_ids: Iterable[int], *, for_update: bool = False
) -> dict[int, Shop]:
    ids = sorted({int(x) for x in shop_ids})
    if not ids:
        return {}
    stmt = select(Shop).where(Shop.id.in_(ids)).order_by(Shop.id)
    if for_update:
        stmt = stmt.with_for_update()
    rows = (await session.execute(stmt)).scalars()
    return {s.id: s for s in rows}


async def owned_shop_ids(session: AsyncSession, owner_id: str) -> List[int]:
    rows = await session.execute(select(Shop.id).where(Shop.owner_id == owner_id).order_by(Shop.id))
    return [int(r) for r in rows.scalars()]


async def list_owned_shops(session: AsyncSession, owner_id: str) -> List[Shop]:
    rows = await session.execute(select(Shop).where(Shop.owner_id == owner_id).order_by(Shop.id))
    return list(rows.scalars())


async def list_orders_for_buyer(
    session: AsyncSession, buyer_id: str, *, limit: int = 100
) -> List[Order]:
    stmt = (
        select(Order)
        .where(Order.buyer_id == buyer_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(limit)
    )
    return list((await session.execute(stmt)).scalars())


async def list_orders_for_shops(
    session: AsyncSession,
    shop_ids: Iterable[int],
    *,
    status: OrderStatus | None = None,
    limit: int = 100,
) -> List[Order]:
    ids = list({int(x) for x in shop_ids})
    if not ids:
        return []
    has_item = select(OrderItem.order_id).where(OrderItem.shop_id.in_(ids))
    stmt = select(Order).where(Order.id.in_(has_item))
    if status is not None:
        stmt = stmt.where(Order.status == status)
    stmt = stmt.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit)
    return list((await session.execute(stmt)).scalars())

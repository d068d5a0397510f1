# app/services/escrow_ledger.py
"""
托管资金释放与店铺台账

release_funds 必须在调用方的 unit of work 内执行，自己不开事务：
  - funds_released_at 已有值 → 直接返回（每单只释放一次）
  - 逐行：item_total = price_at_purchase × quantity
          balance_before = shop.balance（本 unit 快照）
          balance_after  = balance_before + item_total
          写回 shop.balance，追加一条 CREDIT 台账
  - 任一店铺不存在 → SHOP_NOT_FOUND，整个 unit 回滚（不存在“释放了一半”）

台账唯一键 (order_id, shop_id, ref_line, entry_type)，ref_line = 订单行号。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.enums import LedgerEntryType
from app.models.order import Order
from app.models.shop import Shop
from app.models.shop_ledger import ShopLedgerEntry
from app.services.order_errors import SHOP_NOT_FOUND, OrderError
from app.services.order_repository import load_shops
from app.services.order_types import utcnow

log = logging.getLogger("campus.escrow")


async def release_funds(
    session: AsyncSession,
    order: Order,
    *,
    at: Optional[datetime] = None,
) -> List[ShopLedgerEntry]:
    """把订单托管的商品款逐行记入各店铺余额；返回本次写入的台账（已释放则为空）。"""
    if order.funds_released_at is not None:
        log.info("order %s funds already released at %s", order.id, order.funds_released_at)
        return []

    occurred_at = at or utcnow()
    shops = await load_shops(session, order.shop_ids, for_update=True)

    missing = [sid for sid in order.shop_ids if sid not in shops]
    if missing:
        raise OrderError(
            SHOP_NOT_FOUND,
            f"shop {missing[0]} not found while releasing order {order.id}",
            context={"order_id": order.id, "shop_id": missing[0]},
        )

    entries: List[ShopLedgerEntry] = []
    for it in order.items:
        shop = shops[it.shop_id]
        item_total = Decimal(it.price_at_purchase) * int(it.quantity)
        before = Decimal(shop.balance or 0)
        after = before + item_total
        shop.balance = after
        entry = ShopLedgerEntry(
            shop_id=shop.id,
            order_id=order.id,
            ref_line=it.line_no,
            entry_type=LedgerEntryType.CREDIT,
            amount=item_total,
            balance_before=before,
            balance_after=after,
            occurred_at=occurred_at,
        )
        session.add(entry)
        entries.append(entry)

    order.funds_released_at = occurred_at
    await session.flush()

    log.info(
        "order %s released %s to %d shop(s) in %d entries",
        order.id,
        sum((e.amount for e in entries), Decimal("0")),
        len(shops),
        len(entries),
    )
    return entries


async def list_shop_ledger(
    session: AsyncSession,
    shop_id: int,
    *,
    order_id: Optional[int] = None,
    limit: int = 200,
) -> List[ShopLedgerEntry]:
    stmt = select(ShopLedgerEntry).where(ShopLedgerEntry.shop_id == shop_id)
    if order_id is not None:
        stmt = stmt.where(ShopLedgerEntry.order_id == order_id)
    stmt = stmt.order_by(ShopLedgerEntry.id.asc()).limit(limit)
    return list((await session.execute(stmt)).scalars())


async def list_recent_ledger(
    session: AsyncSession,
    shop_ids: Iterable[int],
    *,
    limit: int = 50,
) -> List[ShopLedgerEntry]:
    """店主视角：多个店铺的台账合并，最新在前。"""
    ids = list(shop_ids)
    if not ids:
        return []
    stmt = (
        select(ShopLedgerEntry)
        .where(ShopLedgerEntry.shop_id.in_(ids))
        .order_by(ShopLedgerEntry.occurred_at.desc(), ShopLedgerEntry.id.desc())
        .limit(limit)
    )
    return list((await session.execute(stmt)).scalars())


@dataclass
class LedgerCheck:
    shop_id: int
    balance: Decimal
    total_credits: Decimal
    entry_count: int
    issues: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.issues


async def check_shop_ledger(session: AsyncSession, shop_id: int) -> LedgerCheck:
    """
    店铺台账一致性：

    - 每条：balance_after == balance_before + amount
    - 相邻两条首尾相接：next.balance_before == prev.balance_after
    - 最后一条的 balance_after == 当前 shop.balance
    """
    shop = await session.get(Shop, shop_id)
    if shop is None:
        raise OrderError(SHOP_NOT_FOUND, f"shop {shop_id} not found", context={"shop_id": shop_id})

    rows = (
        await session.execute(
            select(ShopLedgerEntry)
            .where(ShopLedgerEntry.shop_id == shop_id)
            .order_by(ShopLedgerEntry.id.asc())
        )
    ).scalars()
    entries = list(rows)

    total = (
        await session.execute(
            select(func.coalesce(func.sum(ShopLedgerEntry.amount), 0)).where(
                ShopLedgerEntry.shop_id == shop_id
            )
        )
    ).scalar_one()

    report = LedgerCheck(
        shop_id=shop_id,
        balance=Decimal(shop.balance),
        total_credits=Decimal(total),
        entry_count=len(entries),
    )

    prev: Optional[ShopLedgerEntry] = None
    for e in entries:
        if Decimal(e.balance_before) + Decimal(e.amount) != Decimal(e.balance_after):
            report.issues.append(f"entry {e.id}: balance_after != balance_before + amount")
        if prev is not None and Decimal(e.balance_before) != Decimal(prev.balance_after):
            report.issues.append(f"entry {e.id}: not chained to entry {prev.id}")
        prev = e

    if prev is not None and Decimal(prev.balance_after) != report.balance:
        report.issues.append(
            f"last balance_after {prev.balance_after} != shop balance {report.balance}"
        )

    if report.issues:
        log.warning("shop %s ledger inconsistent: %s", shop_id, report.issues)
    return report

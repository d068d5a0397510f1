from __future__ import annotations

import importlib
import logging

from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.orm import DeclarativeBase, configure_mappers

log = logging.getLogger("campus.models")


class Base(DeclarativeBase):
    """全局唯一 ORM Base"""

    pass


# 建表顺序即依赖顺序：店铺 → 商品 → 订单 → 行 / 历史 → 台账 / 审计
MODEL_MODULES = (
    "app.models.shop",
    "app.models.product",
    "app.models.order",
    "app.models.order_item",
    "app.models.order_status_history",
    "app.models.shop_ledger",
    "app.models.admin_audit_log",
)

_initialized = False


def init_models(*, force: bool = False) -> None:
    """导入全部模型模块并固化 mapper（字符串关系目标在这里解析）。"""
    global _initialized
    if _initialized and not force:
        return
    for mod in MODEL_MODULES:
        importlib.import_module(mod)
    configure_mappers()
    _initialized = True
    log.debug("mappers configured for %d model modules", len(MODEL_MODULES))


async def create_schema(engine: AsyncEngine) -> None:
    """create_all（本地 sqlite / 测试用；已存在的表不动）"""
    init_models()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

# app/db/session.py
# 统一的异步引擎 / 会话工厂 + FastAPI 依赖（get_session_maker）
from __future__ import annotations

import logging
import re
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.core.config import get_settings

log = logging.getLogger("campus.db")


# ---- DSN 归一：PG 统一到 psycopg3，sqlite 统一到 aiosqlite ----
def normalize_async_dsn(url: str) -> str:
    url = (url or "").strip()
    # 有些环境会把值写成 '"postgresql+psycopg://..."'，这里统一剥掉两侧引号
    if (url.startswith('"') and url.endswith('"')) or (url.startswith("'") and url.endswith("'")):
        url = url[1:-1].strip()
    if not url:
        return "sqlite+aiosqlite:///./campus_escrow.db"
    # sqlite:/// → sqlite+aiosqlite:///
    if url.startswith("sqlite:///"):
        return "sqlite+aiosqlite://" + url[len("sqlite:///") - 1 :]
    # postgres/postgresql(+*) → postgresql+psycopg
    if url.startswith("postgresql+asyncpg://") or url.startswith("postgres+asyncpg://"):
        return re.sub(r"^postgres(?:ql)?\+asyncpg://", "postgresql+psycopg://", url)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def create_engine_for(url: str, *, echo: bool = False) -> AsyncEngine:
    dsn = normalize_async_dsn(url)
    kwargs: dict = {"echo": echo, "future": True}
    if dsn.startswith("postgresql"):
        kwargs["pool_pre_ping"] = True
    return create_async_engine(dsn, **kwargs)


def make_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False：提交后返回给调用方的 ORM 快照仍可读
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


_settings = get_settings()
ASYNC_URL = normalize_async_dsn(_settings.DATABASE_URL)

async_engine: AsyncEngine = create_engine_for(ASYNC_URL, echo=_settings.SQL_ECHO)
AsyncSessionLocal: async_sessionmaker[AsyncSession] = make_session_maker(async_engine)

log.info("[DB] Using DSN (async): %s", ASYNC_URL)


# ---- FastAPI 依赖 ----
def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """服务层按 unit of work 自行开会话，这里只交出工厂。"""
    return AsyncSessionLocal


# ---- 关闭引擎（测试/生命周期） ----
async def close_engines() -> None:
    await async_engine.dispose()

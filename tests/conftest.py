# tests/conftest.py
from __future__ import annotations

import os
from decimal import Decimal
from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# ============================================================
# ★ 在 import app.main 之前关掉启动建表（测试自己建）★
# ============================================================
os.environ.setdefault("AUTO_CREATE_SCHEMA", "0")

from app.api.deps import get_notifier, get_refund_port  # noqa: E402
from app.core.config import AppSettings  # noqa: E402
from app.db.base import create_schema, init_models  # noqa: E402
from app.db.session import get_session_maker  # noqa: E402
from app.main import app  # noqa: E402
from app.models import Product, Shop  # noqa: E402
from app.models.enums import City  # noqa: E402
from app.services.order_service import OrderService  # noqa: E402
from tests.helpers.orders import RecordingNotifier, RecordingRefunds  # noqa: E402

init_models()


# =========================================
# 每用例独立 sqlite 文件库（NullPool，避免跨 loop）
# =========================================
@pytest_asyncio.fixture(scope="function")
async def async_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'campus_test.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 15},
        future=True,
    )
    await create_schema(engine)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture(scope="function")
def async_session_maker(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def session(async_session_maker) -> AsyncGenerator[AsyncSession, None]:
    """
    标准 Session（自动 commit / rollback）
    """
    async with async_session_maker() as sess:
        try:
            yield sess
            if sess.in_transaction():
                await sess.commit()
        except Exception:
            if sess.in_transaction():
                await sess.rollback()
            raise


# =========================================
# 最小种子数据（每测试一次）
#   shop 1：Harar，店主 owner-harar
#   shop 2：Dire Dawa，店主 owner-dd
# =========================================
@pytest_asyncio.fixture(autouse=True, scope="function")
async def _db_seed(async_session_maker) -> None:
    async with async_session_maker() as sess:
        async with sess.begin():
            sess.add_all(
                [
                    Shop(id=1, owner_id="owner-harar", name="Harar Books", city=City.HARAR, owner_locale="en", balance=Decimal("0")),
                    Shop(id=2, owner_id="owner-dd", name="DD Electronics", city=City.DIRE_DAWA, owner_locale="om", balance=Decimal("0")),
                ]
            )
            await sess.flush()
            sess.add_all(
                [
                    Product(id=101, shop_id=1, name="Notebook", price=Decimal("50.00"), stock=10),
                    Product(id=102, shop_id=1, name="Pen", price=Decimal("10.00"), stock=100),
                    Product(id=201, shop_id=2, name="Headphones", price=Decimal("300.00"), stock=5),
                ]
            )


# =========================================
# 服务 / 提交后副作用记录器
# =========================================
@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def refunds() -> RecordingRefunds:
    return RecordingRefunds()


@pytest.fixture
def settings() -> AppSettings:
    return AppSettings(OTP_MAX_ATTEMPTS=3, UOW_MAX_ATTEMPTS=5, DEFAULT_LOCALE="en")


@pytest.fixture
def svc(async_session_maker, notifier, refunds, settings) -> OrderService:
    return OrderService(async_session_maker, notifier=notifier, refunds=refunds, settings=settings)


# =========================================
# FastAPI / httpx AsyncClient
# =========================================
@pytest_asyncio.fixture(scope="function")
async def client(async_session_maker, notifier, refunds) -> AsyncGenerator[httpx.AsyncClient, None]:
    app.dependency_overrides[get_session_maker] = lambda: async_session_maker
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_refund_port] = lambda: refunds
    transport = httpx.ASGITransport(app=app)
    try:
        async with httpx.AsyncClient(
            transport=transport,
            base_url="http://testserver",
            timeout=httpx.Timeout(10.0, connect=5.0, read=10.0, write=5.0, pool=5.0),
        ) as c:
            yield c
    finally:
        app.dependency_overrides.clear()

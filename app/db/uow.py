# app/db/uow.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

log = logging.getLogger("campus.uow")

T = TypeVar("T")

# 可重试的冲突：
# - StaleDataError：version 条件写命中 0 行（并发者已先提交）
# - OperationalError：锁超时 / 序列化失败 / sqlite database is locked
CONFLICT_ERRORS = (StaleDataError, OperationalError)


class UnitOfWorkExhausted(Exception):
    """冲突重试次数用尽。"""

    def __init__(self, name: str, attempts: int) -> None:
        super().__init__(f"unit of work '{name}' exhausted after {attempts} attempts")
        self.name = name
        self.attempts = attempts


@dataclass
class UnitOfWork:
    """
    原子事务边界（读 → 判定 → 写 一次提交）：

    - 每次尝试都新开 AsyncSession，fn 从干净快照重新执行；
    - fn 内不得发通知 / 调外部网关，只返回结果，副作用由调用方在提交后执行；
    - 业务异常（OrderError 等）直接透传并回滚，不重试；
    - 冲突异常重试至 max_attempts，用尽抛 UnitOfWorkExhausted。

    fn 签名约定：async def fn(*, session: AsyncSession, **kwargs) -> T
    """

    session_maker: async_sessionmaker[AsyncSession]
    max_attempts: int = 3
    # 冲突后退避（秒），第 n 次重试前 sleep backoff * n
    backoff: float = 0.02

    async def run(
        self,
        fn: Callable[..., Awaitable[T]],
        /,
        *,
        name: str | None = None,
        **kwargs: Any,
    ) -> T:
        label = name or getattr(fn, "__name__", "unit")
        last_exc: BaseException | None = None

        for attempt in range(1, self.max_attempts + 1):
            async with self.session_maker() as session:
                try:
                    async with session.begin():
                        result = await fn(session=session, **kwargs)
                    return result
                except CONFLICT_ERRORS as e:
                    last_exc = e
                    log.warning(
                        "uow %s conflict (attempt %d/%d): %s",
                        label,
                        attempt,
                        self.max_attempts,
                        e.__class__.__name__,
                    )
                    if attempt < self.max_attempts and self.backoff > 0:
                        await asyncio.sleep(self.backoff * attempt)

        raise UnitOfWorkExhausted(label, self.max_attempts) from last_exc

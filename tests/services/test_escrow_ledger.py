# tests/services/test_escrow_ledger.py
from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import delete
from sqlalchemy.orm.exc import StaleDataError

from app.models import Order, Shop
from app.models.enums import Campus, OrderStatus
from app.services.escrow_ledger import check_shop_ledger, list_shop_ledger, release_funds
from app.services.order_errors import ORDER_NOT_ARRIVED, SHOP_NOT_FOUND, OrderError
from tests.helpers.orders import RUNNER, drive_to, fetch, ledger_rows, place_order

MULTI = [
    {"product_id": 101, "quantity": 2},  # shop 1: 100
    {"product_id": 102, "quantity": 3},  # shop 1: 30
    {"product_id": 201, "quantity": 1},  # shop 2: 300
]


async def _arrived(svc, lines=None, campus=Campus.HARAMAYA_MAIN):
    return await drive_to(svc, await place_order(svc, lines or MULTI, campus=campus), OrderStatus.ARRIVED)


@pytest.mark.asyncio
async def test_release_credits_every_line(svc, async_session_maker):
    """每一行一条 CREDIT；同店多行按行顺序首尾相接"""
    order = await _arrived(svc)
    await svc.validate_otp(order.id, order.otp_code, RUNNER)

    assert (await fetch(async_session_maker, Shop, 1)).balance == Decimal("130")
    assert (await fetch(async_session_maker, Shop, 2)).balance == Decimal("300")

    rows = await ledger_rows(async_session_maker, order_id=order.id)
    assert [(r.shop_id, r.ref_line, r.amount, r.balance_before, r.balance_after) for r in rows] == [
        (1, 1, Decimal("100"), Decimal("0"), Decimal("100")),
        (1, 2, Decimal("30"), Decimal("100"), Decimal("130")),
        (2, 3, Decimal("300"), Decimal("0"), Decimal("300")),
    ]


@pytest.mark.asyncio
async def test_ledger_consistency_across_orders(svc, async_session_maker):
    """Σ CREDIT == balance − 初始余额；链条首尾相接"""
    for _ in range(3):
        order = await _arrived(svc, [{"product_id": 101, "quantity": 1}], campus=Campus.HARAR_CAMPUS)
        await svc.validate_otp(order.id, order.otp_code, RUNNER)

    async with async_session_maker() as s:
        report = await check_shop_ledger(s, 1)
        entries = await list_shop_ledger(s, 1)

    assert report.ok, report.issues
    assert report.entry_count == 3
    assert report.total_credits == report.balance - Decimal("0") == Decimal("150")
    for prev, nxt in zip(entries, entries[1:]):
        assert nxt.balance_before == prev.balance_after


@pytest.mark.asyncio
async def test_check_shop_ledger_reports_drift(svc, async_session_maker, session):
    order = await _arrived(svc, [{"product_id": 101, "quantity": 1}], campus=Campus.HARAR_CAMPUS)
    await svc.validate_otp(order.id, order.otp_code, RUNNER)

    # 绕过台账直接改余额
    shop = await session.get(Shop, 1)
    shop.balance = Decimal("999")
    await session.commit()

    async with async_session_maker() as s:
        report = await check_shop_ledger(s, 1)
    assert not report.ok
    assert any("shop balance" in msg for msg in report.issues)

    async with async_session_maker() as s:
        with pytest.raises(OrderError) as ei:
            await check_shop_ledger(s, 42)
    assert ei.value.code == SHOP_NOT_FOUND


@pytest.mark.asyncio
async def test_release_is_exactly_once_per_order(svc, async_session_maker):
    order = await _arrived(svc)
    await svc.validate_otp(order.id, order.otp_code, RUNNER)

    async with async_session_maker() as s:
        async with s.begin():
            loaded = await s.get(Order, order.id)
            assert await release_funds(s, loaded) == []

    assert len(await ledger_rows(async_session_maker, order_id=order.id)) == 3
    assert (await fetch(async_session_maker, Shop, 1)).balance == Decimal("130")


@pytest.mark.asyncio
async def test_concurrent_completion_credits_once(svc, async_session_maker):
    """
    同一订单两个并发的正确 OTP 提交：

    - 恰好一个成功
    - 每行恰好一条台账，余额只加一次
    """
    order = await _arrived(svc)

    results = await asyncio.gather(
        svc.validate_otp(order.id, order.otp_code, RUNNER),
        svc.validate_otp(order.id, order.otp_code, RUNNER),
        return_exceptions=True,
    )
    ok = [r for r in results if isinstance(r, Order)]
    failed = [r for r in results if isinstance(r, OrderError)]
    assert len(ok) == 1
    assert len(failed) == 1
    assert failed[0].code in (ORDER_NOT_ARRIVED, "INTERNAL_ERROR")

    assert len(await ledger_rows(async_session_maker, order_id=order.id)) == 3
    assert (await fetch(async_session_maker, Shop, 1)).balance == Decimal("130")
    assert (await fetch(async_session_maker, Shop, 2)).balance == Decimal("300")


@pytest.mark.asyncio
async def test_stale_writer_is_rejected_by_version_guard(svc, async_session_maker):
    """先读到旧快照的写者，在别人完成之后提交会撞上版本条件写"""
    order = await _arrived(svc)

    async with async_session_maker() as stale_session:
        stale = await stale_session.get(Order, order.id)
        assert stale.status == OrderStatus.ARRIVED

        await svc.validate_otp(order.id, order.otp_code, RUNNER)

        stale.status = OrderStatus.COMPLETED
        with pytest.raises(StaleDataError):
            await stale_session.flush()
        await stale_session.rollback()

    assert len(await ledger_rows(async_session_maker, order_id=order.id)) == 3


@pytest.mark.asyncio
async def test_missing_shop_aborts_whole_release(svc, async_session_maker, session):
    """任一店铺缺失：SHOP_NOT_FOUND，整单不释放、状态不变"""
    order = await _arrived(svc)
    await session.execute(delete(Shop).where(Shop.id == 2))
    await session.commit()

    with pytest.raises(OrderError) as ei:
        await svc.validate_otp(order.id, order.otp_code, RUNNER)
    assert ei.value.code == SHOP_NOT_FOUND

    stored = await fetch(async_session_maker, Order, order.id)
    assert stored.status == OrderStatus.ARRIVED
    assert stored.funds_released_at is None
    assert stored.otp_attempts == 0
    assert (await fetch(async_session_maker, Shop, 1)).balance == Decimal("0")
    assert await ledger_rows(async_session_maker) == []

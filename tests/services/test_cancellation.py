# tests/services/test_cancellation.py
from __future__ import annotations

from decimal import Decimal

import pytest

from app.models import Order, Product
from app.models.enums import AdminAction, Campus, OrderStatus
from app.services.order_errors import CANNOT_CANCEL, UNAUTHORIZED, UNAUTHORIZED_ACTION, OrderError
from app.services.order_service import OrderService
from app.services.order_types import OrderEvent
from tests.helpers.orders import (
    ADMIN,
    BUYER,
    OTHER_BUYER,
    RUNNER,
    FailingNotifier,
    drive_to,
    fetch,
    place_order,
    wrong_code,
)


class _FailingRefunds:
    async def refund(self, *, order_id, amount, payment_reference):
        raise RuntimeError("gateway timeout")


@pytest.mark.asyncio
async def test_buyer_cancels_paid_order(svc, refunds, notifier, async_session_maker):
    """
    买家取消已付款订单（1 行，数量 3）：

    - 库存 +3（回到下单前）
    - CANCELLED，refund_initiated，refund_amount = 商品 + 运费
    - 提交后才调用退款执行方，并通知买家与店主
    """
    order = await place_order(svc, [{"product_id": 101, "quantity": 3}])
    assert (await fetch(async_session_maker, Product, 101)).stock == 7
    await drive_to(svc, order, OrderStatus.PAID_ESCROW)

    cancelled = await svc.cancel_order(order.id, BUYER, reason="changed mind")
    assert cancelled.status == OrderStatus.CANCELLED
    assert cancelled.refund_initiated is True
    assert cancelled.refund_amount == Decimal("190")
    assert cancelled.refund_initiated_at is not None
    assert cancelled.cancellation_reason == "changed mind"

    assert (await fetch(async_session_maker, Product, 101)).stock == 10

    assert refunds.calls == [{"order_id": order.id, "amount": Decimal("190"), "payment_reference": "tx-1"}]
    cancelled_to = {n.user_id for n in notifier.sent if n.event == OrderEvent.ORDER_CANCELLED}
    assert cancelled_to == {BUYER.user_id, "owner-harar"}

    stored = await fetch(async_session_maker, Order, order.id)
    assert stored.status_history[-1].from_status == OrderStatus.PAID_ESCROW
    assert stored.status_history[-1].to_status == OrderStatus.CANCELLED


@pytest.mark.asyncio
async def test_cancel_pending_order_has_no_refund(svc, refunds, async_session_maker):
    order = await place_order(
        svc,
        [{"product_id": 102, "quantity": 4}, {"product_id": 201, "quantity": 2}],
        campus=Campus.DDU,
    )
    cancelled = await svc.cancel_order(order.id, BUYER)

    assert cancelled.status == OrderStatus.CANCELLED
    assert cancelled.refund_initiated is False
    assert cancelled.refund_amount is None
    assert refunds.calls == []
    assert (await fetch(async_session_maker, Product, 102)).stock == 100
    assert (await fetch(async_session_maker, Product, 201)).stock == 5


@pytest.mark.asyncio
async def test_update_status_cancelled_goes_through_coordinator(svc, async_session_maker):
    order = await place_order(svc, [{"product_id": 101, "quantity": 2}])
    cancelled = await svc.update_status(order.id, OrderStatus.CANCELLED, BUYER, reason="oops")
    assert cancelled.status == OrderStatus.CANCELLED
    assert cancelled.cancellation_reason == "oops"
    assert (await fetch(async_session_maker, Product, 101)).stock == 10


@pytest.mark.asyncio
async def test_cancel_rejections(svc, async_session_maker):
    order = await place_order(svc)

    with pytest.raises(OrderError) as ei:
        await svc.cancel_order(order.id, OTHER_BUYER)
    assert ei.value.code == UNAUTHORIZED

    with pytest.raises(OrderError) as ei:
        await svc.cancel_order(order.id, RUNNER)
    assert ei.value.code == UNAUTHORIZED_ACTION

    # 管理员只能取消已付款的单
    with pytest.raises(OrderError) as ei:
        await svc.cancel_order(order.id, ADMIN)
    assert ei.value.code == CANNOT_CANCEL

    await drive_to(svc, order, OrderStatus.DISPATCHED)
    with pytest.raises(OrderError) as ei:
        await svc.cancel_order(order.id, BUYER)
    assert ei.value.code == CANNOT_CANCEL

    stored = await fetch(async_session_maker, Order, order.id)
    assert stored.status == OrderStatus.DISPATCHED
    assert stored.refund_initiated is False
    assert (await fetch(async_session_maker, Product, 101)).stock == 8


@pytest.mark.asyncio
async def test_second_cancel_or_refund_fails_cleanly(svc, refunds, async_session_maker):
    order = await drive_to(svc, await place_order(svc), OrderStatus.PAID_ESCROW)
    await svc.cancel_order(order.id, ADMIN, reason="fraud check")

    with pytest.raises(OrderError) as ei:
        await svc.cancel_order(order.id, BUYER)
    assert ei.value.code == CANNOT_CANCEL
    assert ei.value.message == "refund already initiated"

    with pytest.raises(OrderError) as ei:
        await svc.admin_refund(order.id, ADMIN, reason="again")
    assert ei.value.code == CANNOT_CANCEL

    assert len(refunds.calls) == 1
    # 库存只回补一次
    assert (await fetch(async_session_maker, Product, 101)).stock == 10


@pytest.mark.asyncio
async def test_admin_refund_after_dispatch(svc, refunds, async_session_maker):
    order = await drive_to(svc, await place_order(svc), OrderStatus.ARRIVED)

    refunded = await svc.admin_refund(order.id, ADMIN, reason="damaged in transit")
    assert refunded.status == OrderStatus.CANCELLED
    assert refunded.cancellation_reason == "Admin refund: damaged in transit"
    assert refunded.refund_amount == Decimal("140")
    assert refunded.status_history[-1].actor == "admin:ops-1"
    assert refunds.calls[0]["amount"] == Decimal("140")

    logs = await svc.list_admin_audit_logs(action=AdminAction.ORDER_REFUND)
    assert len(logs) == 1
    assert (logs[0].admin_id, logs[0].old_status, logs[0].new_status) == ("ops-1", "ARRIVED", "CANCELLED")
    assert logs[0].reason == "damaged in transit"
    assert logs[0].target_id == str(order.id)


@pytest.mark.asyncio
async def test_admin_refund_rejections(svc):
    order = await place_order(svc)
    with pytest.raises(OrderError) as ei:
        await svc.admin_refund(order.id, ADMIN, reason="not paid yet")
    assert ei.value.code == CANNOT_CANCEL

    with pytest.raises(OrderError) as ei:
        await svc.admin_refund(order.id, BUYER, reason="me")
    assert ei.value.code == UNAUTHORIZED_ACTION

    assert await svc.list_admin_audit_logs() == []


@pytest.mark.asyncio
async def test_locked_order_can_be_refunded(svc, async_session_maker):
    """锁单后的出路之一：管理员退款"""
    order = await drive_to(svc, await place_order(svc), OrderStatus.ARRIVED)
    for _ in range(3):
        with pytest.raises(OrderError):
            await svc.validate_otp(order.id, wrong_code(order.otp_code), RUNNER)

    refunded = await svc.admin_refund(order.id, ADMIN, reason="buyer lost OTP")
    assert refunded.status == OrderStatus.CANCELLED
    assert refunded.otp_attempts == 3
    assert (await fetch(async_session_maker, Product, 101)).stock == 10


@pytest.mark.asyncio
async def test_post_commit_failures_do_not_roll_back(async_session_maker, settings):
    failing = OrderService(
        async_session_maker,
        notifier=FailingNotifier(),
        refunds=_FailingRefunds(),
        settings=settings,
    )
    order = await drive_to(failing, await place_order(failing), OrderStatus.PAID_ESCROW)

    cancelled = await failing.cancel_order(order.id, BUYER)
    assert cancelled.status == OrderStatus.CANCELLED

    stored = await fetch(async_session_maker, Order, order.id)
    assert stored.status == OrderStatus.CANCELLED
    assert stored.refund_initiated is True


@pytest.mark.asyncio
async def test_shop_owner_notices_use_owner_locale(svc, notifier):
    """店主通知用店铺登记的语言，不跟随买家（种子：Harar=en，Dire Dawa=om）"""
    order = await place_order(
        svc,
        [{"product_id": 101, "quantity": 1}, {"product_id": 201, "quantity": 1}],
        campus=Campus.DDU,
    )
    await svc.cancel_order(order.id, BUYER, reason="wrong size")

    locales = {n.user_id: n.locale for n in notifier.sent if n.event == OrderEvent.ORDER_CANCELLED}
    assert locales == {BUYER.user_id: order.buyer_locale, "owner-harar": "en", "owner-dd": "om"}

# tests/services/test_otp_gate.py
from __future__ import annotations

from decimal import Decimal

import pytest

from app.models import Order, Shop
from app.models.enums import OrderStatus
from app.services.order_errors import (
    INVALID_OTP,
    INVALID_OTP_FORMAT,
    ORDER_LOCKED,
    ORDER_NOT_ARRIVED,
    ORDER_NOT_FOUND,
    UNAUTHORIZED_ACTION,
    OrderError,
)
from app.services.order_types import OrderEvent
from tests.helpers.orders import BUYER, RUNNER, ADMIN, drive_to, fetch, ledger_rows, place_order, wrong_code


@pytest.mark.asyncio
async def test_three_wrong_codes_lock_the_order(svc, async_session_maker):
    """
    跑腿连续输错三次：

    - 前两次 INVALID_OTP，第三次直接 ORDER_LOCKED
    - otp_attempts = 3，状态仍为 ARRIVED，店铺余额不变
    - 之后再输正确码仍然 ORDER_LOCKED
    """
    order = await drive_to(svc, await place_order(svc), OrderStatus.ARRIVED)
    bad = wrong_code(order.otp_code)

    codes = []
    for _ in range(3):
        with pytest.raises(OrderError) as ei:
            await svc.validate_otp(order.id, bad, RUNNER)
        codes.append(ei.value.code)
    assert codes == [INVALID_OTP, INVALID_OTP, ORDER_LOCKED]

    stored = await fetch(async_session_maker, Order, order.id)
    assert stored.otp_attempts == 3
    assert stored.status == OrderStatus.ARRIVED
    assert stored.funds_released_at is None
    assert (await fetch(async_session_maker, Shop, 1)).balance == Decimal("0")

    with pytest.raises(OrderError) as ei:
        await svc.validate_otp(order.id, order.otp_code, RUNNER)
    assert ei.value.code == ORDER_LOCKED
    assert (await fetch(async_session_maker, Order, order.id)).otp_attempts == 3


@pytest.mark.asyncio
async def test_wrong_attempt_is_persisted_with_remaining_count(svc, async_session_maker):
    order = await drive_to(svc, await place_order(svc), OrderStatus.ARRIVED)

    with pytest.raises(OrderError) as ei:
        await svc.validate_otp(order.id, wrong_code(order.otp_code), RUNNER)
    assert ei.value.code == INVALID_OTP
    assert ei.value.context["otp_attempts"] == 1
    assert ei.value.context["remaining_attempts"] == 2
    assert (await fetch(async_session_maker, Order, order.id)).otp_attempts == 1


@pytest.mark.asyncio
async def test_correct_code_on_second_attempt_completes(svc, notifier, async_session_maker):
    order = await drive_to(svc, await place_order(svc), OrderStatus.ARRIVED)

    with pytest.raises(OrderError):
        await svc.validate_otp(order.id, wrong_code(order.otp_code), RUNNER)

    done = await svc.validate_otp(order.id, order.otp_code, RUNNER)
    assert done.status == OrderStatus.COMPLETED
    assert done.funds_released_at is not None
    assert done.status_history[-1].from_status == OrderStatus.ARRIVED
    assert done.status_history[-1].actor == RUNNER.user_id

    assert (await fetch(async_session_maker, Shop, 1)).balance == Decimal("100")
    rows = await ledger_rows(async_session_maker, order_id=order.id)
    assert [(r.shop_id, r.amount) for r in rows] == [(1, Decimal("100"))]

    completed = [n for n in notifier.sent if n.event == OrderEvent.ORDER_COMPLETED]
    assert [n.user_id for n in completed] == [BUYER.user_id]


@pytest.mark.asyncio
async def test_admin_may_submit_otp(svc):
    order = await drive_to(svc, await place_order(svc), OrderStatus.ARRIVED)
    done = await svc.validate_otp(order.id, order.otp_code, ADMIN)
    assert done.status == OrderStatus.COMPLETED
    assert done.status_history[-1].actor == "admin:ops-1"


@pytest.mark.asyncio
async def test_otp_before_arrival_is_rejected_without_counting(svc, async_session_maker):
    order = await drive_to(svc, await place_order(svc), OrderStatus.DISPATCHED)

    with pytest.raises(OrderError) as ei:
        await svc.validate_otp(order.id, order.otp_code, RUNNER)
    assert ei.value.code == ORDER_NOT_ARRIVED

    with pytest.raises(OrderError) as ei:
        await svc.validate_otp(order.id, wrong_code(order.otp_code), RUNNER)
    assert ei.value.code == ORDER_NOT_ARRIVED

    assert (await fetch(async_session_maker, Order, order.id)).otp_attempts == 0


@pytest.mark.asyncio
async def test_request_checks_run_before_the_unit(svc, async_session_maker):
    order = await drive_to(svc, await place_order(svc), OrderStatus.ARRIVED)

    with pytest.raises(OrderError) as ei:
        await svc.validate_otp(order.id, "12ab56", RUNNER)
    assert ei.value.code == INVALID_OTP_FORMAT

    with pytest.raises(OrderError) as ei:
        await svc.validate_otp(order.id, order.otp_code, BUYER)
    assert ei.value.code == UNAUTHORIZED_ACTION

    with pytest.raises(OrderError) as ei:
        await svc.validate_otp(777777, "123456", RUNNER)
    assert ei.value.code == ORDER_NOT_FOUND

    stored = await fetch(async_session_maker, Order, order.id)
    assert stored.otp_attempts == 0
    assert stored.status == OrderStatus.ARRIVED

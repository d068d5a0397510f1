# tests/services/test_admin_override.py
from __future__ import annotations

from decimal import Decimal

import pytest

from app.models import Order, Shop
from app.models.enums import AdminAction, Campus, OrderStatus
from app.services.order_errors import UNAUTHORIZED_ACTION, OrderError
from tests.helpers.orders import (
    ADMIN,
    RUNNER,
    HARAR_OWNER,
    drive_to,
    fetch,
    ledger_rows,
    place_order,
    wrong_code,
)

LINES = [{"product_id": 101, "quantity": 2}, {"product_id": 201, "quantity": 1}]


@pytest.mark.asyncio
async def test_force_complete_matches_otp_path(svc, async_session_maker):
    """
    管理员把 DISPATCHED 强制到 COMPLETED：

    - 店铺入账与 OTP 路径逐行一致
    - 审计记下管理员、前后状态、理由
    """
    via_otp = await drive_to(svc, await place_order(svc, LINES, campus=Campus.HARAMAYA_MAIN), OrderStatus.ARRIVED)
    await svc.validate_otp(via_otp.id, via_otp.otp_code, RUNNER)

    forced = await drive_to(svc, await place_order(svc, LINES, campus=Campus.HARAMAYA_MAIN), OrderStatus.DISPATCHED)
    done = await svc.admin_update_status(forced.id, ADMIN, OrderStatus.COMPLETED, reason="runner app down")

    assert done.status == OrderStatus.COMPLETED
    assert done.funds_released_at is not None
    assert done.status_history[-1].actor == "admin:ops-1"
    assert done.status_history[-1].from_status == OrderStatus.DISPATCHED

    otp_rows = await ledger_rows(async_session_maker, order_id=via_otp.id)
    forced_rows = await ledger_rows(async_session_maker, order_id=forced.id)
    assert [(r.shop_id, r.ref_line, r.amount) for r in forced_rows] == [
        (r.shop_id, r.ref_line, r.amount) for r in otp_rows
    ]
    assert (await fetch(async_session_maker, Shop, 1)).balance == Decimal("200")
    assert (await fetch(async_session_maker, Shop, 2)).balance == Decimal("600")

    logs = await svc.list_admin_audit_logs(target_id=str(forced.id))
    assert len(logs) == 1
    log = logs[0]
    assert log.action == AdminAction.ORDER_STATUS_UPDATE
    assert (log.admin_id, log.old_status, log.new_status, log.reason) == (
        "ops-1",
        "DISPATCHED",
        "COMPLETED",
        "runner app down",
    )
    assert log.meta["ledger_entries"] == 2


@pytest.mark.asyncio
async def test_force_complete_never_double_credits(svc, async_session_maker):
    order = await drive_to(svc, await place_order(svc), OrderStatus.ARRIVED)
    await svc.validate_otp(order.id, order.otp_code, RUNNER)

    # COMPLETED → COMPLETED：不触发释放
    await svc.admin_update_status(order.id, ADMIN, OrderStatus.COMPLETED, reason="re-sync")
    # 先拨回再强制完成：funds_released_at 已有值，仍不重复入账
    await svc.admin_update_status(order.id, ADMIN, OrderStatus.ARRIVED, reason="investigate")
    await svc.admin_update_status(order.id, ADMIN, OrderStatus.COMPLETED, reason="close")

    assert len(await ledger_rows(async_session_maker, order_id=order.id)) == 1
    assert (await fetch(async_session_maker, Shop, 1)).balance == Decimal("100")

    stored = await fetch(async_session_maker, Order, order.id)
    assert [h.to_status for h in stored.status_history][-3:] == [
        OrderStatus.COMPLETED,
        OrderStatus.ARRIVED,
        OrderStatus.COMPLETED,
    ]
    assert len(await svc.list_admin_audit_logs(admin_id="ops-1")) == 3


@pytest.mark.asyncio
async def test_override_unlocks_locked_order(svc, async_session_maker):
    order = await drive_to(svc, await place_order(svc), OrderStatus.ARRIVED)
    for _ in range(3):
        with pytest.raises(OrderError):
            await svc.validate_otp(order.id, wrong_code(order.otp_code), RUNNER)

    done = await svc.admin_update_status(order.id, ADMIN, OrderStatus.COMPLETED, reason="verified by phone")
    assert done.status == OrderStatus.COMPLETED
    assert done.otp_attempts == 3
    assert (await fetch(async_session_maker, Shop, 1)).balance == Decimal("100")


@pytest.mark.asyncio
async def test_override_can_move_anywhere(svc):
    order = await place_order(svc)
    moved = await svc.admin_update_status(order.id, ADMIN, OrderStatus.ARRIVED, reason="manual fix")
    assert moved.status == OrderStatus.ARRIVED
    assert moved.funds_released_at is None


@pytest.mark.asyncio
async def test_override_requires_admin(svc, async_session_maker):
    order = await place_order(svc)
    with pytest.raises(OrderError) as ei:
        await svc.admin_update_status(order.id, HARAR_OWNER, OrderStatus.COMPLETED, reason="pls")
    assert ei.value.code == UNAUTHORIZED_ACTION
    assert (await fetch(async_session_maker, Order, order.id)).status == OrderStatus.PENDING
    assert await svc.list_admin_audit_logs() == []

# app/services/order_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import AppSettings, get_settings
from app.db.uow import UnitOfWork, UnitOfWorkExhausted
from app.models.admin_audit_log import AdminAuditLog
from app.models.enums import ActorRole, AdminAction, Campus, OrderStatus
from app.models.order import Order
from app.models.order_item import OrderItem
from app.models.shop import Shop
from app.models.shop_ledger import ShopLedgerEntry
from app.ports import NotificationPort, RefundPort
from app.services import order_repository as repo
from app.services.admin_override import admin_update_status_unit
from app.services.audit_writer import list_admin_audit_logs
from app.services.cancellation import admin_refund_unit, cancel_order_unit, cancel_via_transition_unit
from app.services.escrow_ledger import LedgerCheck, check_shop_ledger, list_recent_ledger, list_shop_ledger
from app.services.notifications import LoggingNotifier, LoggingRefundExecutor
from app.services.order_errors import (
    EMPTY_CART,
    INSUFFICIENT_STOCK,
    INTERNAL_ERROR,
    INVALID_OTP,
    INVALID_QUANTITY,
    INVALID_TRANSITION,
    PAYMENT_AMOUNT_MISMATCH,
    PRODUCT_NOT_FOUND,
    SHOP_NOT_FOUND,
    UNAUTHORIZED,
    OrderError,
)
from app.services.order_state_machine import append_status_change, authorize
from app.services.order_types import (
    PAYMENT_SIGNAL,
    Actor,
    Notice,
    OrderEvent,
    UnitOutcome,
)
from app.services.otp_gate import check_request, generate_otp, validate_otp_unit
from app.services.pricing import calculate_order_delivery_fee

log = logging.getLogger("campus.orders")

_TWO = Decimal("0.01")
_PAYMENT_TOLERANCE = Decimal("0.01")

# 支付确认已处理过的状态（重复回调直接返回）
_PAID_OR_LATER = frozenset(
    {OrderStatus.PAID_ESCROW, OrderStatus.DISPATCHED, OrderStatus.ARRIVED, OrderStatus.COMPLETED}
)


# ================================ 结果类型 ================================


@dataclass
class PaymentResult:
    order: Order
    already_processed: bool = False


@dataclass
class ShopOrderView:
    """店铺视角的订单：只带本店的行。"""

    order: Order
    items: List[OrderItem]


@dataclass
class ShopLedgerReport:
    entries: List[ShopLedgerEntry]
    check: LedgerCheck


# ================================ 行规范化 ================================


def _merge_cart_lines(lines: Iterable[Mapping[str, Any]]) -> List[Tuple[int, int]]:
    """
    购物车行规范化：
      - 同一 product_id 合并数量（保持首次出现顺序）
      - quantity 必须为正整数
    """
    merged: Dict[int, int] = {}
    for line in lines:
        pid = int(line["product_id"])
        qty = int(line["quantity"])
        if qty <= 0:
            raise OrderError(
                INVALID_QUANTITY,
                f"quantity must be positive for product_id={pid}",
                context={"product_id": pid, "quantity": qty},
            )
        merged[pid] = merged.get(pid, 0) + qty
    return list(merged.items())


# ================================== 服务主体 ==================================


class OrderService:
    """
    订单服务 · 托管生命周期收口

    - 所有写操作都经 UnitOfWork：读快照 → 判定 → 一次提交，冲突自动重试；
    - unit 内不发通知、不调网关，只返回 UnitOutcome；
    - 提交成功后执行 outcome 里的通知 / 退款，失败只记录日志。
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        *,
        notifier: Optional[NotificationPort] = None,
        refunds: Optional[RefundPort] = None,
        settings: Optional[AppSettings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.session_maker = session_maker
        self.uow = UnitOfWork(session_maker, max_attempts=self.settings.UOW_MAX_ATTEMPTS)
        self.notifier: NotificationPort = notifier or LoggingNotifier()
        self.refunds: RefundPort = refunds or LoggingRefundExecutor()

    # ------------------------------------------------------------------
    # unit of work 执行 + 提交后副作用
    # ------------------------------------------------------------------
    async def _run(self, fn: Callable[..., Awaitable[Any]], name: str, **kwargs: Any) -> Any:
        try:
            return await self.uow.run(fn, name=name, **kwargs)
        except UnitOfWorkExhausted as e:
            log.error("%s", e)
            raise OrderError(
                INTERNAL_ERROR,
                "concurrent update conflict, please retry",
                context={"unit": e.name, "attempts": e.attempts},
            ) from e

    async def _after_commit(self, outcome: UnitOutcome[Any]) -> None:
        for notice in outcome.notices:
            try:
                await self.notifier.send(notice)
            except Exception:
                log.exception(
                    "notification failed: event=%s order=%s user=%s",
                    notice.event.value,
                    notice.order_id,
                    notice.user_id,
                )
        for req in outcome.refunds:
            try:
                await self.refunds.refund(
                    order_id=req.order_id,
                    amount=req.amount,
                    payment_reference=req.payment_reference,
                )
            except Exception:
                log.exception("refund execution failed: order=%s amount=%s", req.order_id, req.amount)

    # ------------------------------------------------------------------
    # 下单
    # ------------------------------------------------------------------
    async def create_order(
        self,
        *,
        buyer_id: str,
        items: List[Mapping[str, Any]],
        destination_campus: Campus | str,
        locale: Optional[str] = None,
    ) -> Order:
        if not items:
            raise OrderError(EMPTY_CART, "cart is empty")
        lines = _merge_cart_lines(items)
        campus = Campus(destination_campus)

        outcome: UnitOutcome[Order] = await self._run(
            self._create_order_unit,
            "create_order",
            buyer_id=buyer_id,
            lines=lines,
            campus=campus,
            locale=locale or self.settings.DEFAULT_LOCALE,
        )
        await self._after_commit(outcome)
        return outcome.value

    async def _create_order_unit(
        self,
        *,
        session: AsyncSession,
        buyer_id: str,
        lines: List[Tuple[int, int]],
        campus: Campus,
        locale: str,
    ) -> UnitOutcome[Order]:
        products = await repo.load_products_for_update(session, [pid for pid, _ in lines])

        # 先全部校验，再动库存
        for pid, qty in lines:
            p = products.get(pid)
            if p is None:
                raise OrderError(PRODUCT_NOT_FOUND, f"product {pid} not found", context={"product_id": pid})
            if int(p.stock) < qty:
                raise OrderError(
                    INSUFFICIENT_STOCK,
                    f"product {pid} has {p.stock} in stock, {qty} requested",
                    context={"product_id": pid, "available": int(p.stock), "requested": qty},
                )

        shops = await repo.load_shops(session, [products[pid].shop_id for pid, _ in lines])
        for pid, _ in lines:
            sid = products[pid].shop_id
            if sid not in shops:
                raise OrderError(SHOP_NOT_FOUND, f"shop {sid} not found", context={"shop_id": sid})

        order_items: List[OrderItem] = []
        total = Decimal("0")
        for line_no, (pid, qty) in enumerate(lines, start=1):
            p = products[pid]
            price = Decimal(p.price).quantize(_TWO, rounding=ROUND_HALF_UP)
            order_items.append(
                OrderItem(
                    line_no=line_no,
                    product_id=p.id,
                    shop_id=p.shop_id,
                    product_name=p.name,
                    quantity=qty,
                    price_at_purchase=price,
                    shop_city=shops[p.shop_id].city,
                )
            )
            total += price * qty

        fee = calculate_order_delivery_fee(order_items, campus)

        for pid, qty in lines:
            products[pid].stock = int(products[pid].stock) - qty

        order = Order(
            buyer_id=buyer_id,
            total_amount=total.quantize(_TWO, rounding=ROUND_HALF_UP),
            delivery_fee=fee.quantize(_TWO, rounding=ROUND_HALF_UP),
            destination_campus=campus,
            buyer_locale=locale,
            otp_code=generate_otp(),
            otp_attempts=0,
            refund_initiated=False,
        )
        order.items = order_items
        append_status_change(order, OrderStatus.PENDING, buyer_id)
        session.add(order)
        await session.flush()

        log.info(
            "order %s created buyer=%s lines=%d total=%s fee=%s campus=%s",
            order.id,
            buyer_id,
            len(order_items),
            order.total_amount,
            fee,
            campus.value,
        )
        return UnitOutcome(value=order)

    # ------------------------------------------------------------------
    # 读
    # ------------------------------------------------------------------
    async def get_order(self, order_id: int, actor: Actor) -> Order:
        async with self.session_maker() as session:
            order = await repo.load_order(session, order_id)
            if actor.role in (ActorRole.ADMIN, ActorRole.RUNNER):
                return order
            if actor.role == ActorRole.BUYER and actor.user_id == order.buyer_id:
                return order
            if actor.role == ActorRole.SHOP_OWNER:
                owned = await repo.owned_shop_ids(session, actor.user_id)
                if set(owned) & set(order.shop_ids):
                    return order
            raise OrderError(UNAUTHORIZED, "not allowed to view this order", context={"order_id": order_id})

    async def list_orders_for_buyer(self, buyer_id: str, *, limit: int = 100) -> List[Order]:
        async with self.session_maker() as session:
            return await repo.list_orders_for_buyer(session, buyer_id, limit=limit)

    async def list_orders_for_shop(
        self,
        owner_id: str,
        *,
        status: Optional[OrderStatus] = None,
        limit: int = 100,
    ) -> List[ShopOrderView]:
        async with self.session_maker() as session:
            owned = set(await repo.owned_shop_ids(session, owner_id))
            orders = await repo.list_orders_for_shops(session, owned, status=status, limit=limit)
        return [
            ShopOrderView(order=o, items=[it for it in o.items if it.shop_id in owned])
            for o in orders
        ]

    # ------------------------------------------------------------------
    # 状态推进（角色门控）
    # ------------------------------------------------------------------
    async def update_status(
        self,
        order_id: int,
        target: OrderStatus,
        actor: Actor,
        *,
        reason: Optional[str] = None,
    ) -> Order:
        target = OrderStatus(target)
        if target == OrderStatus.CANCELLED:
            # CANCELLED 同样按状态机表判定
            outcome: UnitOutcome[Order] = await self._run(
                cancel_via_transition_unit,
                "update_status",
                order_id=order_id,
                actor=actor,
                reason=reason,
            )
        else:
            outcome = await self._run(
                self._update_status_unit,
                "update_status",
                order_id=order_id,
                target=target,
                actor=actor,
            )
        await self._after_commit(outcome)
        return outcome.value

    async def _update_status_unit(
        self,
        *,
        session: AsyncSession,
        order_id: int,
        target: OrderStatus,
        actor: Actor,
    ) -> UnitOutcome[Order]:
        order = await repo.load_order_for_update(session, order_id)
        owned: List[int] = []
        if actor.role == ActorRole.SHOP_OWNER:
            owned = await repo.owned_shop_ids(session, actor.user_id)

        authorize(order, target, actor, owned)
        prev = order.status
        append_status_change(order, target, actor.label)
        await session.flush()

        log.info("order %s %s -> %s by %s", order_id, prev.value, target.value, actor.label)

        notices: List[Notice] = []
        if target == OrderStatus.DISPATCHED:
            notices.append(
                Notice(
                    event=OrderEvent.ORDER_DISPATCHED,
                    user_id=order.buyer_id,
                    order_id=order.id,
                    locale=order.buyer_locale,
                )
            )
        elif target == OrderStatus.ARRIVED:
            notices.append(
                Notice(
                    event=OrderEvent.ORDER_ARRIVED,
                    user_id=order.buyer_id,
                    order_id=order.id,
                    locale=order.buyer_locale,
                    otp_code=order.otp_code,
                )
            )
        return UnitOutcome(value=order, notices=notices)

    # ------------------------------------------------------------------
    # 支付确认（外部可信信号）
    # ------------------------------------------------------------------
    async def confirm_payment(
        self,
        order_id: int,
        *,
        amount: Decimal | str | float,
        reference: Optional[str] = None,
    ) -> PaymentResult:
        outcome: UnitOutcome[PaymentResult] = await self._run(
            self._confirm_payment_unit,
            "confirm_payment",
            order_id=order_id,
            amount=Decimal(str(amount)),
            reference=reference,
        )
        await self._after_commit(outcome)
        return outcome.value

    async def _confirm_payment_unit(
        self,
        *,
        session: AsyncSession,
        order_id: int,
        amount: Decimal,
        reference: Optional[str],
    ) -> UnitOutcome[PaymentResult]:
        order = await repo.load_order_for_update(session, order_id)

        if order.status == OrderStatus.CANCELLED:
            raise OrderError(
                INVALID_TRANSITION,
                "payment confirmed for a cancelled order",
                context={"order_id": order_id},
            )
        if order.status in _PAID_OR_LATER:
            log.info("payment for order %s already processed (%s)", order_id, order.status.value)
            return UnitOutcome(value=PaymentResult(order=order, already_processed=True))

        expected = order.grand_total
        if abs(amount - expected) > _PAYMENT_TOLERANCE:
            raise OrderError(
                PAYMENT_AMOUNT_MISMATCH,
                f"paid {amount}, expected {expected}",
                context={"order_id": order_id, "expected": str(expected), "received": str(amount)},
            )

        authorize(order, OrderStatus.PAID_ESCROW, PAYMENT_SIGNAL)
        append_status_change(order, OrderStatus.PAID_ESCROW, PAYMENT_SIGNAL.label)
        order.payment_reference = reference
        await session.flush()

        log.info("order %s paid %s ETB ref=%s", order_id, amount, reference)
        return UnitOutcome(
            value=PaymentResult(order=order),
            notices=[
                Notice(
                    event=OrderEvent.PAYMENT_SUCCESS,
                    user_id=order.buyer_id,
                    order_id=order.id,
                    locale=order.buyer_locale,
                    amount=amount,
                )
            ],
        )

    # ------------------------------------------------------------------
    # OTP 交付确认
    # ------------------------------------------------------------------
    async def validate_otp(self, order_id: int, code: str, actor: Actor) -> Order:
        code = check_request(code, actor)
        outcome: UnitOutcome[Order] = await self._run(
            validate_otp_unit,
            "validate_otp",
            order_id=order_id,
            code=code,
            actor=actor,
            max_attempts=self.settings.OTP_MAX_ATTEMPTS,
        )
        if outcome.error:
            # 错误计数已提交
            message = "incorrect OTP" if outcome.error == INVALID_OTP else "too many failed OTP attempts"
            raise OrderError(outcome.error, message, context=outcome.error_context)
        await self._after_commit(outcome)
        return outcome.value

    # ------------------------------------------------------------------
    # 取消 / 退款
    # ------------------------------------------------------------------
    async def cancel_order(self, order_id: int, actor: Actor, *, reason: Optional[str] = None) -> Order:
        outcome: UnitOutcome[Order] = await self._run(
            cancel_order_unit,
            "cancel_order",
            order_id=order_id,
            actor=actor,
            reason=reason,
        )
        await self._after_commit(outcome)
        return outcome.value

    async def admin_refund(
        self,
        order_id: int,
        admin: Actor,
        *,
        reason: str,
        trace_id: Optional[str] = None,
    ) -> Order:
        outcome: UnitOutcome[Order] = await self._run(
            admin_refund_unit,
            "admin_refund",
            order_id=order_id,
            admin=admin,
            reason=reason,
            trace_id=trace_id,
        )
        await self._after_commit(outcome)
        return outcome.value

    # ------------------------------------------------------------------
    # 管理员
    # ------------------------------------------------------------------
    async def admin_update_status(
        self,
        order_id: int,
        admin: Actor,
        new_status: OrderStatus,
        *,
        reason: str,
        trace_id: Optional[str] = None,
    ) -> Order:
        outcome: UnitOutcome[Order] = await self._run(
            admin_update_status_unit,
            "admin_update_status",
            order_id=order_id,
            admin=admin,
            new_status=OrderStatus(new_status),
            reason=reason,
            trace_id=trace_id,
        )
        await self._after_commit(outcome)
        return outcome.value

    async def list_admin_audit_logs(
        self,
        *,
        admin_id: Optional[str] = None,
        action: Optional[AdminAction] = None,
        target_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[AdminAuditLog]:
        async with self.session_maker() as session:
            return await list_admin_audit_logs(
                session, admin_id=admin_id, action=action, target_id=target_id, limit=limit
            )

    async def shop_ledger(self, shop_id: int, *, limit: int = 200) -> ShopLedgerReport:
        async with self.session_maker() as session:
            check = await check_shop_ledger(session, shop_id)
            entries = await list_shop_ledger(session, shop_id, limit=limit)
        return ShopLedgerReport(entries=entries, check=check)

    # ------------------------------------------------------------------
    # 店主视角：余额 / 台账
    # ------------------------------------------------------------------
    async def shop_balances(self, owner_id: str) -> List[Shop]:
        async with self.session_maker() as session:
            shops = await repo.list_owned_shops(session, owner_id)
        if not shops:
            raise OrderError(SHOP_NOT_FOUND, "no shop registered for this owner", context={"owner_id": owner_id})
        return shops

    async def owner_shop_ledger(
        self,
        owner_id: str,
        *,
        shop_id: Optional[int] = None,
        limit: int = 50,
    ) -> List[ShopLedgerEntry]:
        """
        店主查看自己店铺的台账（最新在前）：
          - 名下没有店铺 → SHOP_NOT_FOUND
          - shop_id 不属于该店主 → UNAUTHORIZED
          - 不指定 shop_id 时合并名下所有店铺
        """
        async with self.session_maker() as session:
            owned = await repo.owned_shop_ids(session, owner_id)
            if not owned:
                raise OrderError(
                    SHOP_NOT_FOUND, "no shop registered for this owner", context={"owner_id": owner_id}
                )
            if shop_id is not None:
                if shop_id not in owned:
                    raise OrderError(UNAUTHORIZED, "shop not owned by caller", context={"shop_id": shop_id})
                owned = [shop_id]
            return await list_recent_ledger(session, owned, limit=limit)

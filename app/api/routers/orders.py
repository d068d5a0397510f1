# app/api/routers/orders.py
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_actor, get_order_service, get_shop_owner
from app.api.presenters import order_out, shop_order_out
from app.models.enums import ActorRole, OrderStatus
from app.schemas.admin import LedgerEntryOut
from app.schemas.orders import (
    CancelIn,
    OrderCreateIn,
    OrderOut,
    OtpIn,
    ShopBalanceOut,
    ShopOrderOut,
    StatusUpdateIn,
)
from app.services.order_errors import UNAUTHORIZED_ACTION, OrderError
from app.services.order_service import OrderService
from app.services.order_types import Actor

router = APIRouter(prefix="/orders", tags=["orders"])
shop_router = APIRouter(prefix="/shop", tags=["shop-orders"])


@router.post("", status_code=201, response_model=OrderOut)
async def create_order(
    payload: OrderCreateIn,
    actor: Actor = Depends(get_actor),
    svc: OrderService = Depends(get_order_service),
):
    if actor.role != ActorRole.BUYER:
        raise OrderError(UNAUTHORIZED_ACTION, "only buyers may place orders")
    order = await svc.create_order(
        buyer_id=actor.user_id,
        items=[{"product_id": line.product_id, "quantity": line.quantity} for line in payload.items],
        destination_campus=payload.destination_campus,
        locale=payload.locale,
    )
    return order_out(order, actor)


@router.get("", response_model=List[OrderOut])
async def list_my_orders(
    limit: int = Query(100, ge=1, le=500),
    actor: Actor = Depends(get_actor),
    svc: OrderService = Depends(get_order_service),
):
    orders = await svc.list_orders_for_buyer(actor.user_id, limit=limit)
    return [order_out(o, actor) for o in orders]


@router.get("/{order_id}", response_model=OrderOut)
async def get_order(
    order_id: int,
    actor: Actor = Depends(get_actor),
    svc: OrderService = Depends(get_order_service),
):
    order = await svc.get_order(order_id, actor)
    return order_out(order, actor)


@router.patch("/{order_id}/status", response_model=OrderOut)
async def update_status(
    order_id: int,
    payload: StatusUpdateIn,
    actor: Actor = Depends(get_actor),
    svc: OrderService = Depends(get_order_service),
):
    order = await svc.update_status(order_id, payload.status, actor, reason=payload.reason)
    return order_out(order, actor)


@router.post("/{order_id}/otp", response_model=OrderOut)
async def submit_otp(
    order_id: int,
    payload: OtpIn,
    actor: Actor = Depends(get_actor),
    svc: OrderService = Depends(get_order_service),
):
    order = await svc.validate_otp(order_id, payload.code, actor)
    return order_out(order, actor)


@router.post("/{order_id}/cancel", response_model=OrderOut)
async def cancel_order(
    order_id: int,
    payload: Optional[CancelIn] = None,
    actor: Actor = Depends(get_actor),
    svc: OrderService = Depends(get_order_service),
):
    order = await svc.cancel_order(order_id, actor, reason=payload.reason if payload else None)
    return order_out(order, actor)


@shop_router.get("/orders", response_model=List[ShopOrderOut])
async def list_shop_orders(
    status: Optional[OrderStatus] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    actor: Actor = Depends(get_shop_owner),
    svc: OrderService = Depends(get_order_service),
):
    views = await svc.list_orders_for_shop(actor.user_id, status=status, limit=limit)
    return [shop_order_out(v) for v in views]


@shop_router.get("/balance", response_model=List[ShopBalanceOut])
async def shop_balance(
    actor: Actor = Depends(get_shop_owner),
    svc: OrderService = Depends(get_order_service),
):
    shops = await svc.shop_balances(actor.user_id)
    return [
        ShopBalanceOut(
            shop_id=s.id, name=s.name, city=s.city, owner_locale=s.owner_locale, balance=s.balance
        )
        for s in shops
    ]


@shop_router.get("/ledger", response_model=List[LedgerEntryOut])
async def shop_ledger(
    shop_id: Optional[int] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    actor: Actor = Depends(get_shop_owner),
    svc: OrderService = Depends(get_order_service),
):
    return await svc.owner_shop_ledger(actor.user_id, shop_id=shop_id, limit=limit)

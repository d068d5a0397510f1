# app/api/routers/admin_orders.py
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_admin, get_order_service
from app.api.presenters import order_out
from app.core.trace import current_trace_id
from app.models.enums import AdminAction
from app.schemas.admin import (
    AdminRefundIn,
    AdminStatusIn,
    AuditLogOut,
    LedgerCheckOut,
    LedgerEntryOut,
    ShopLedgerOut,
)
from app.schemas.orders import OrderOut
from app.services.order_service import OrderService
from app.services.order_types import Actor

router = APIRouter(prefix="/admin", tags=["admin"])


@router.patch("/orders/{order_id}/status", response_model=OrderOut)
async def admin_update_status(
    order_id: int,
    payload: AdminStatusIn,
    admin: Actor = Depends(get_admin),
    svc: OrderService = Depends(get_order_service),
):
    order = await svc.admin_update_status(
        order_id,
        admin,
        payload.status,
        reason=payload.reason,
        trace_id=current_trace_id(),
    )
    return order_out(order, admin)


@router.post("/orders/{order_id}/refund", response_model=OrderOut)
async def admin_refund(
    order_id: int,
    payload: AdminRefundIn,
    admin: Actor = Depends(get_admin),
    svc: OrderService = Depends(get_order_service),
):
    order = await svc.admin_refund(order_id, admin, reason=payload.reason, trace_id=current_trace_id())
    return order_out(order, admin)


@router.get("/audit-logs", response_model=List[AuditLogOut])
async def list_audit_logs(
    admin_id: Optional[str] = Query(None),
    action: Optional[AdminAction] = Query(None),
    target_id: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    _admin: Actor = Depends(get_admin),
    svc: OrderService = Depends(get_order_service),
):
    rows = await svc.list_admin_audit_logs(
        admin_id=admin_id, action=action, target_id=target_id, limit=limit
    )
    return [AuditLogOut.model_validate(r) for r in rows]


@router.get("/shops/{shop_id}/ledger", response_model=ShopLedgerOut)
async def shop_ledger(
    shop_id: int,
    limit: int = Query(200, ge=1, le=1000),
    _admin: Actor = Depends(get_admin),
    svc: OrderService = Depends(get_order_service),
):
    report = await svc.shop_ledger(shop_id, limit=limit)
    return ShopLedgerOut(
        check=LedgerCheckOut.model_validate(report.check),
        entries=[LedgerEntryOut.model_validate(e) for e in report.entries],
    )

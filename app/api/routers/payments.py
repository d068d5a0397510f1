# app/api/routers/payments.py
from __future__ import annotations

from fastapi import APIRouter, Depends

from app.api.deps import get_order_service
from app.schemas.orders import PaymentConfirmIn, PaymentConfirmOut
from app.services.order_service import OrderService

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/confirmations", response_model=PaymentConfirmOut)
async def confirm_payment(
    payload: PaymentConfirmIn,
    svc: OrderService = Depends(get_order_service),
):
    """
    支付网关回调（已在网关侧验签，这里视为可信信号）。
    重复回调返回 already_processed=true。
    """
    result = await svc.confirm_payment(
        payload.order_id,
        amount=payload.amount,
        reference=payload.reference,
    )
    return PaymentConfirmOut(
        order_id=result.order.id,
        status=result.order.status,
        already_processed=result.already_processed,
    )

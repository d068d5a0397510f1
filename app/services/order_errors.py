# app/services/order_errors.py
from __future__ import annotations

from typing import Any, Dict, Optional

# 规范错误码（机器可读，展示层自行本地化）
ORDER_NOT_FOUND = "ORDER_NOT_FOUND"
EMPTY_CART = "EMPTY_CART"
INVALID_QUANTITY = "INVALID_QUANTITY"
PRODUCT_NOT_FOUND = "PRODUCT_NOT_FOUND"
INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"
SHOP_NOT_FOUND = "SHOP_NOT_FOUND"
INVALID_TRANSITION = "INVALID_TRANSITION"
UNAUTHORIZED_ACTION = "UNAUTHORIZED_ACTION"
UNAUTHORIZED = "UNAUTHORIZED"
ORDER_NOT_ARRIVED = "ORDER_NOT_ARRIVED"
ORDER_LOCKED = "ORDER_LOCKED"
INVALID_OTP = "INVALID_OTP"
INVALID_OTP_FORMAT = "INVALID_OTP_FORMAT"
CANNOT_CANCEL = "CANNOT_CANCEL"
PAYMENT_AMOUNT_MISMATCH = "PAYMENT_AMOUNT_MISMATCH"
INTERNAL_ERROR = "INTERNAL_ERROR"

# 错误码 → HTTP 状态（API 层使用）
HTTP_STATUS_BY_CODE: Dict[str, int] = {
    ORDER_NOT_FOUND: 404,
    PRODUCT_NOT_FOUND: 404,
    SHOP_NOT_FOUND: 404,
    UNAUTHORIZED: 403,
    UNAUTHORIZED_ACTION: 403,
    INVALID_TRANSITION: 409,
    ORDER_NOT_ARRIVED: 409,
    ORDER_LOCKED: 409,
    CANNOT_CANCEL: 409,
    INSUFFICIENT_STOCK: 409,
    EMPTY_CART: 422,
    INVALID_QUANTITY: 422,
    INVALID_OTP: 422,
    INVALID_OTP_FORMAT: 422,
    PAYMENT_AMOUNT_MISMATCH: 422,
    INTERNAL_ERROR: 500,
}


class OrderError(Exception):
    """
    订单域业务错误：

    - code: 规范错误码（见上）
    - message: 给日志 / 运维看的简短说明
    - context: 可选定位信息（order_id / product_id / otp_attempts ...）

    在 unit of work 内抛出即整体回滚；OTP 错误是唯一的“部分成功”，
    由服务层在提交之后再抛。
    """

    def __init__(
        self,
        code: str,
        message: str | None = None,
        *,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message or code)
        self.code = code
        self.message = message or code
        self.context = dict(context or {})

    @property
    def http_status(self) -> int:
        return HTTP_STATUS_BY_CODE.get(self.code, 400)

    def __repr__(self) -> str:
        return f"OrderError({self.code!r}, {self.message!r})"

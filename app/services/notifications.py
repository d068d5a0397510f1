# app/services/notifications.py
"""
订单通知与退款执行（提交后副作用的默认实现）

- 模板按 locale（en / am / om）渲染，缺失语言回落 en；
- 默认实现只写日志：真实渠道（Telegram / 短信 / 支付网关退款）接在 ports 上；
- 任何失败都只记录，不影响已提交的订单状态。
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Dict, Optional, Tuple

from app.services.order_types import Notice, OrderEvent

log = logging.getLogger("campus.notify")

# event → locale → (title, message)
TEMPLATES: Dict[OrderEvent, Dict[str, Tuple[str, str]]] = {
    OrderEvent.ORDER_DISPATCHED: {
        "en": ("Order Dispatched", "Your order #{order_id} has been dispatched and is on its way!"),
        "am": ("ትዕዛዝ ተልኳል", "ትዕዛዝዎ #{order_id} ተልኳል እና በመንገድ ላይ ነው!"),
        "om": ("Ajajni Ergame", "Ajajni keessan #{order_id} ergamee karaa irra jira!"),
    },
    OrderEvent.ORDER_ARRIVED: {
        "en": (
            "Order Arrived",
            "Your order #{order_id} has arrived! Please inspect the product and provide the OTP: {otp}",
        ),
        "am": ("ትዕዛዝ ደርሷል", "ትዕዛዝዎ #{order_id} ደርሷል! እባክዎ ምርቱን ይመርምሩ እና OTP ያቅርቡ: {otp}"),
        "om": (
            "Ajajni Dhufe",
            "Ajajni keessan #{order_id} dhufee jira! Mee oomisha kana qoradhaa fi OTP kana kennaa: {otp}",
        ),
    },
    OrderEvent.ORDER_CANCELLED: {
        "en": ("Order Cancelled", "Order #{order_id} has been cancelled. {reason}"),
        "am": ("ትዕዛዝ ተሰርዟል", "ትዕዛዝ #{order_id} ተሰርዟል። {reason}"),
        "om": ("Ajajni Haqame", "Ajajni #{order_id} haqame. {reason}"),
    },
    OrderEvent.ORDER_COMPLETED: {
        "en": (
            "Order Completed",
            "Your order #{order_id} has been completed. Thank you for your purchase!",
        ),
        "am": ("ትዕዛዝ ተጠናቋል", "ትዕዛዝዎ #{order_id} ተጠናቋል። ስለገዙ እናመሰግናለን!"),
        "om": ("Ajajni Xumurameera", "Ajajni keessan #{order_id} xumurameera. Bituuf galatoomaa!"),
    },
    OrderEvent.PAYMENT_SUCCESS: {
        "en": ("Payment Successful", "Payment for order #{order_id} was successful. Amount: {amount} ETB"),
        "am": ("ክፍያ ተሳክቷል", "ለትዕዛዝ #{order_id} ክፍያ ተሳክቷል። መጠን: {amount} ብር"),
        "om": ("Kaffaltiin Milkaawe", "Kaffaltiin ajaja #{order_id} milkaawe. Hanga: {amount} ETB"),
    },
}


def render(notice: Notice) -> Tuple[str, str]:
    by_locale = TEMPLATES[notice.event]
    title, message = by_locale.get(notice.locale) or by_locale["en"]
    text = message.format(
        order_id=notice.order_id,
        otp=notice.otp_code or "",
        reason=notice.reason or "",
        amount=notice.amount if notice.amount is not None else "",
    )
    return title, text.strip()


class LoggingNotifier:
    """默认通知实现：渲染后写日志。"""

    async def send(self, notice: Notice) -> None:
        title, text = render(notice)
        log.info("notify user=%s event=%s [%s] %s", notice.user_id, notice.event.value, title, text)


class LoggingRefundExecutor:
    """默认退款执行：只记录；真实网关退款由支付侧接入。"""

    async def refund(
        self,
        *,
        order_id: int,
        amount: Decimal,
        payment_reference: Optional[str],
    ) -> None:
        log.info(
            "refund requested order=%s amount=%s ETB reference=%s",
            order_id,
            amount,
            payment_reference,
        )

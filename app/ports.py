# -*- coding: utf-8 -*-
from __future__ import annotations

from decimal import Decimal
from typing import Optional, Protocol

from app.services.order_types import Notice


class NotificationPort(Protocol):
    async def send(self, notice: Notice) -> None: ...


class RefundPort(Protocol):
    async def refund(
        self,
        *,
        order_id: int,
        amount: Decimal,
        payment_reference: Optional[str],
    ) -> None: ...

# app/schemas/admin.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.enums import AdminAction, LedgerEntryType, OrderStatus


class AdminStatusIn(BaseModel):
    status: OrderStatus
    reason: str = Field(min_length=1)  # 必填：审计里要有人写下的理由


class AdminRefundIn(BaseModel):
    reason: str = Field(min_length=1)


class AuditLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    admin_id: str
    action: AdminAction
    target_type: str
    target_id: str
    old_status: Optional[str] = None
    new_status: Optional[str] = None
    reason: str
    meta: Dict[str, Any]
    trace_id: Optional[str] = None
    created_at: datetime


class LedgerEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    shop_id: int
    order_id: int
    ref_line: int
    entry_type: LedgerEntryType
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    occurred_at: datetime


class LedgerCheckOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    shop_id: int
    balance: Decimal
    total_credits: Decimal
    entry_count: int
    ok: bool
    issues: List[str]


class ShopLedgerOut(BaseModel):
    check: LedgerCheckOut
    entries: List[LedgerEntryOut]

# app/services/audit_writer.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.admin_audit_log import AdminAuditLog
from app.models.enums import AdminAction, OrderStatus

logger = logging.getLogger("campus.audit")


class AdminAuditWriter:
    """
    管理员审计写入器：

    - 唯一职责：往 admin_audit_logs 表写一行。
    - 必须在管理员操作所在的 unit of work 内调用：操作回滚则审计一起回滚，
      操作提交则审计必然存在。
    - meta 至少包含 order_id；其余字段任意扩展（refund_amount / forced ...）
    """

    @staticmethod
    def write(
        session: AsyncSession,
        *,
        admin_id: str,
        action: AdminAction,
        target_id: Any,
        old_status: Optional[OrderStatus],
        new_status: Optional[OrderStatus],
        reason: str,
        trace_id: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> AdminAuditLog:
        payload: Dict[str, Any] = dict(meta or {})
        payload.setdefault("order_id", target_id)

        row = AdminAuditLog(
            admin_id=str(admin_id),
            action=AdminAction(action),
            target_type="ORDER",
            target_id=str(target_id),
            old_status=old_status.value if old_status is not None else None,
            new_status=new_status.value if new_status is not None else None,
            reason=reason,
            meta=payload,
            trace_id=trace_id,
        )
        session.add(row)
        logger.info(
            "admin %s %s order=%s %s->%s reason=%r",
            admin_id,
            action.value,
            target_id,
            row.old_status,
            row.new_status,
            reason,
        )
        return row


async def list_admin_audit_logs(
    session: AsyncSession,
    *,
    admin_id: Optional[str] = None,
    action: Optional[AdminAction] = None,
    target_id: Optional[str] = None,
    limit: int = 100,
) -> List[AdminAuditLog]:
    stmt = select(AdminAuditLog)
    if admin_id:
        stmt = stmt.where(AdminAuditLog.admin_id == admin_id)
    if action is not None:
        stmt = stmt.where(AdminAuditLog.action == action)
    if target_id:
        stmt = stmt.where(AdminAuditLog.target_id == str(target_id))
    stmt = stmt.order_by(AdminAuditLog.created_at.desc(), AdminAuditLog.id.desc()).limit(limit)
    return list((await session.execute(stmt)).scalars())

# app/models/admin_audit_log.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.enums import AdminAction, enum_values


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AdminAuditLog(Base):
    """管理员操作审计（只增不改）：谁、对哪张单、从什么状态到什么状态、为什么。"""

    __tablename__ = "admin_audit_logs"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)

    admin_id: Mapped[str] = mapped_column(sa.String(64), nullable=False, index=True)
    action: Mapped[AdminAction] = mapped_column(
        sa.Enum(AdminAction, name="admin_action", values_callable=enum_values), nullable=False
    )
    target_type: Mapped[str] = mapped_column(sa.String(32), nullable=False, default="ORDER")
    target_id: Mapped[str] = mapped_column(sa.String(64), nullable=False, index=True)

    old_status: Mapped[str | None] = mapped_column(sa.String(32), nullable=True)
    new_status: Mapped[str | None] = mapped_column(sa.String(32), nullable=True)
    reason: Mapped[str] = mapped_column(sa.Text, nullable=False, default="")

    meta: Mapped[Dict[str, Any]] = mapped_column(sa.JSON, nullable=False, default=dict)
    trace_id: Mapped[str | None] = mapped_column(sa.String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=_utcnow
    )

    def __repr__(self) -> str:
        return (
            f"<AdminAudit {self.action} admin={self.admin_id} target={self.target_id} "
            f"{self.old_status}->{self.new_status}>"
        )

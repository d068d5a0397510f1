# app/api/problem.py
"""
统一错误出参（Problem）：

  {
    "error_code": "INVALID_OTP",          # 规范错误码 / request_validation_error / http_error
    "message": "incorrect OTP",
    "http_status": 422,
    "context": {"order_id": 7, "otp_attempts": 1, "remaining_attempts": 2, "path": ..., "method": ...},
    "details": [{"type": "validation", "path": "items.0.quantity", "reason": "..."}],
    "trace_id": "..."
  }
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, TypedDict

from app.services.order_errors import OrderError

REQUEST_VALIDATION_ERROR = "request_validation_error"
HTTP_ERROR = "http_error"


class ProblemDetail(TypedDict, total=False):
    type: str  # validation|state
    path: str  # e.g. items.0.quantity
    reason: str


@dataclass(frozen=True)
class Problem:
    error_code: str
    message: str
    http_status: int
    context: Dict[str, Any] = field(default_factory=dict)
    details: List[ProblemDetail] = field(default_factory=list)
    trace_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "error_code": self.error_code,
            "message": self.message,
            "http_status": int(self.http_status),
            "context": dict(self.context),
        }
        if self.details:
            out["details"] = list(self.details)
        if self.trace_id:
            out["trace_id"] = self.trace_id
        return out


def problem_from_order_error(
    e: OrderError,
    *,
    request_ctx: Optional[Dict[str, Any]] = None,
    trace_id: Optional[str] = None,
) -> Problem:
    """OrderError → Problem：错误自带的 context 覆盖请求级 context"""
    ctx: Dict[str, Any] = dict(request_ctx or {})
    ctx.update(e.context or {})
    return Problem(
        error_code=e.code,
        message=e.message,
        http_status=e.http_status,
        context=ctx,
        trace_id=trace_id,
    )


def validation_details(errors: Iterable[Any]) -> List[ProblemDetail]:
    """pydantic / FastAPI 的 errors() → 行内定位列表（去掉 body 前缀）"""
    out: List[ProblemDetail] = []
    for e in errors:
        if not isinstance(e, dict):
            continue
        loc = ".".join(str(x) for x in (e.get("loc") or ()) if x != "body")
        out.append(
            {
                "type": "validation",
                "path": loc,
                "reason": str(e.get("msg") or e.get("type") or "invalid"),
            }
        )
    return out

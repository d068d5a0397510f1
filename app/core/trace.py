# app/core/trace.py
"""
请求级追踪上下文

- 每个 HTTP 请求绑定一个 trace_id；上游带了 X-Trace-Id 就沿用
- 日志（TraceIdFilter）、错误出参、管理员审计行都取同一个 trace_id
- 响应头回写 X-Trace-Id，客户端报障时带上即可对上日志
"""

from __future__ import annotations

from contextvars import ContextVar
from dataclasses import dataclass
from typing import Optional
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

TRACE_HEADER = "X-Trace-Id"
_MAX_TRACE_LEN = 64

_current: ContextVar[Optional["TraceContext"]] = ContextVar("campus_trace", default=None)


@dataclass(frozen=True)
class TraceContext:
    trace_id: str
    source: Optional[str] = None


def new_trace_id() -> str:
    return uuid4().hex


def current_trace() -> Optional[TraceContext]:
    return _current.get()


def current_trace_id() -> Optional[str]:
    ctx = _current.get()
    return ctx.trace_id if ctx is not None else None


class TraceMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        incoming = (request.headers.get(TRACE_HEADER) or "").strip()[:_MAX_TRACE_LEN]
        ctx = TraceContext(
            trace_id=incoming or new_trace_id(),
            source=f"http:{request.method} {request.url.path}",
        )
        token = _current.set(ctx)
        try:
            response = await call_next(request)
        finally:
            _current.reset(token)
        response.headers[TRACE_HEADER] = ctx.trace_id
        return response

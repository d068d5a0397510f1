from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.problem import (
    HTTP_ERROR,
    REQUEST_VALIDATION_ERROR,
    Problem,
    problem_from_order_error,
    validation_details,
)
from app.core.trace import current_trace_id, new_trace_id
from app.services.order_errors import INTERNAL_ERROR, OrderError

logger = logging.getLogger("campus.http")


def _req_ctx(req: Request) -> Dict[str, Any]:
    return {"path": req.url.path, "method": req.method}


def _respond(problem: Problem) -> JSONResponse:
    return JSONResponse(status_code=problem.http_status, content=problem.to_dict())


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(OrderError)
    async def _order_exc(req: Request, exc: OrderError):
        trace_id = current_trace_id() or new_trace_id()
        if exc.http_status >= 500:
            logger.error("%s %s -> %s: %s", req.method, req.url.path, exc.code, exc.message)
        else:
            logger.info("%s %s -> %s", req.method, req.url.path, exc.code)
        return _respond(problem_from_order_error(exc, request_ctx=_req_ctx(req), trace_id=trace_id))

    @app.exception_handler(RequestValidationError)
    async def _validation_exc(req: Request, exc: RequestValidationError):
        return _respond(
            Problem(
                error_code=REQUEST_VALIDATION_ERROR,
                message="请求参数不合法",
                http_status=422,
                context=_req_ctx(req),
                details=validation_details(exc.errors()),
                trace_id=current_trace_id() or new_trace_id(),
            )
        )

    @app.exception_handler(StarletteHTTPException)
    async def _http_exc(req: Request, exc: StarletteHTTPException):
        # 路由不存在 / 方法不允许等框架层错误
        msg = str(exc.detail) if exc.detail is not None else "请求被拒绝"
        return _respond(
            Problem(
                error_code=HTTP_ERROR,
                message=msg,
                http_status=int(exc.status_code),
                context=_req_ctx(req),
                details=[{"type": "state", "reason": msg}],
                trace_id=current_trace_id() or new_trace_id(),
            )
        )

    @app.exception_handler(Exception)
    async def _unhandled_exc(req: Request, exc: Exception):
        trace_id = current_trace_id() or new_trace_id()
        logger.exception("unhandled error [%s] %s %s", trace_id, req.method, req.url.path)
        return _respond(
            Problem(
                error_code=INTERNAL_ERROR,
                message="系统异常，请稍后重试",
                http_status=500,
                context=_req_ctx(req),
                trace_id=trace_id,
            )
        )

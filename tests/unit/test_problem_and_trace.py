# tests/unit/test_problem_and_trace.py
from __future__ import annotations

import logging

from app.api.problem import problem_from_order_error, validation_details
from app.core.logging import TraceIdFilter
from app.services.order_errors import INVALID_OTP, ORDER_LOCKED, OrderError


def test_problem_merges_request_and_error_context():
    err = OrderError(INVALID_OTP, "incorrect OTP", context={"order_id": 7, "otp_attempts": 1})
    body = problem_from_order_error(
        err,
        request_ctx={"path": "/orders/7/otp", "method": "POST", "order_id": "stale"},
        trace_id="t-1",
    ).to_dict()

    assert body["error_code"] == INVALID_OTP
    assert body["http_status"] == 422
    assert body["trace_id"] == "t-1"
    # 错误自带的 context 覆盖请求级
    assert body["context"] == {"path": "/orders/7/otp", "method": "POST", "order_id": 7, "otp_attempts": 1}
    assert "details" not in body


def test_problem_defaults_message_to_code():
    body = problem_from_order_error(OrderError(ORDER_LOCKED)).to_dict()
    assert body["message"] == ORDER_LOCKED
    assert body["http_status"] == 409
    assert body["context"] == {}
    assert "trace_id" not in body


def test_validation_details_strip_body_prefix():
    details = validation_details(
        [
            {"loc": ("body", "items", 0, "quantity"), "msg": "Input should be greater than 0"},
            {"loc": ("query", "city"), "type": "enum"},
            "not-a-dict",
        ]
    )
    assert details == [
        {"type": "validation", "path": "items.0.quantity", "reason": "Input should be greater than 0"},
        {"type": "validation", "path": "query.city", "reason": "enum"},
    ]


def test_trace_filter_outside_request():
    record = logging.LogRecord("campus.orders", logging.INFO, __file__, 1, "hello", None, None)
    assert TraceIdFilter().filter(record) is True
    assert record.trace_id == "-"

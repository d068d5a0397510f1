import logging
import sys

from app.core.trace import current_trace_id

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(trace_id)s] %(message)s"


class TraceIdFilter(logging.Filter):
    """给每条记录补上当前请求的 trace_id（请求外为 '-'）"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.trace_id = current_trace_id() or "-"
        return True


def setup_logging(level: str = "INFO", *, sql_echo: bool = False) -> None:
    """
    统一日志出口：
    - 根 logger 单一 stdout handler（重复调用不叠加）
    - campus.* 业务日志跟随 LOG_LEVEL
    - SQL 语句日志只在 SQL_ECHO 打开时输出
    """
    lvl = level.upper()
    root = logging.getLogger()
    root.setLevel(lvl)

    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(TraceIdFilter())
    root.addHandler(handler)

    logging.getLogger("campus").setLevel(lvl)
    logging.getLogger("uvicorn.access").setLevel(logging.INFO)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if sql_echo else logging.WARNING)

"""
Request-scoped debug log

Every payment API response carries the last log lines emitted while the
request was handled ("debug_logs"), for client-side troubleshooting. Lines
are kept in a bounded ring buffer bound to the current request context, so
concurrent requests never mix their lines.
"""

import contextvars
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Deque, Iterable, List, Optional

from config import Config

_request_log: contextvars.ContextVar[Optional[Deque[str]]] = contextvars.ContextVar(
    "payment_request_log", default=None
)

# Loggers whose records are mirrored into the request log
DEFAULT_CAPTURED_LOGGERS = ("services", "handlers", "utils", "caching")


def begin_request_log(capacity: Optional[int] = None) -> Deque[str]:
    """Start a fresh buffer for the current request context"""
    buffer: Deque[str] = deque(maxlen=capacity or Config.DEBUG_LOG_CAPACITY)
    _request_log.set(buffer)
    return buffer


def get_request_log() -> List[str]:
    buffer = _request_log.get()
    return list(buffer) if buffer is not None else []


class DebugLogBufferHandler(logging.Handler):
    """Formats records as "[ts][LEVEL][context]: message" into the request buffer"""

    def emit(self, record: logging.LogRecord) -> None:
        buffer = _request_log.get()
        if buffer is None:
            return
        try:
            timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()
            context = record.name.rsplit(".", 1)[-1]
            buffer.append(f"[{timestamp}][{record.levelname}][{context}]: {record.getMessage()}")
        except Exception:
            self.handleError(record)


_handler = DebugLogBufferHandler(level=logging.DEBUG)


def install_debug_log_handler(logger_names: Iterable[str] = DEFAULT_CAPTURED_LOGGERS) -> None:
    """Attach the buffer handler once to each captured logger"""
    for name in logger_names:
        target = logging.getLogger(name)
        if _handler not in target.handlers:
            target.addHandler(_handler)
        if target.level == logging.NOTSET or target.level > logging.INFO:
            target.setLevel(logging.INFO)

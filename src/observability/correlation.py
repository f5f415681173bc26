# src/observability/correlation.py
"""
Correlation IDs for task-scoped logging

While a task handler runs, the task id is bound to a context variable so
every log line emitted by the handler (or anything it calls) can be traced
back to the task:

    2026-01-01T00:00:00 [INFO] [corr-id:3f2a...] castquest.handlers: fetched 12 frames
"""

import uuid
import logging
import logging.config
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from src.config import Settings

# Context variable for correlation ID (safe across asyncio tasks)
correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="no-corr-id")


def get_correlation_id() -> str:
    """Get current correlation ID from context"""
    return correlation_id_var.get()


def generate_correlation_id() -> str:
    """Generate a new correlation ID"""
    return f"corr-{uuid.uuid4().hex[:12]}"


@contextmanager
def correlation_scope(correlation_id: Optional[str] = None) -> Iterator[str]:
    """Bind a correlation ID for the duration of the block"""
    corr_id = correlation_id or generate_correlation_id()
    token = correlation_id_var.set(corr_id)
    try:
        yield corr_id
    finally:
        correlation_id_var.reset(token)


class CorrelationIdFilter(logging.Filter):
    """Logging filter to inject correlation ID into log records"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id()
        return True


def configure_logging(settings: "Settings") -> None:
    """Apply the dictConfig produced by Settings.get_log_config()"""
    logging.config.dictConfig(settings.get_log_config())
    logging.getLogger("castquest").debug(
        f"Logging configured | level={settings.LOG_LEVEL} | file={settings.LOG_FILE or '-'}"
    )

"""
Logging Configuration with Correlation ID Support

Every log line carries the id of the request (or webhook event) that produced it,
so one inbound WhatsApp message can be traced through ingestion, the AI turn and
the real-time broadcast.
"""
import logging
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional, Union

# Works across awaits: each asyncio task gets its own copy of the context
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

LOG_FORMAT = "%(asctime)s | [%(correlation_id)s] | %(name)s | %(levelname)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Third-party loggers that are too chatty at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "google_genai")


def get_correlation_id() -> Optional[str]:
    """Get the current request's correlation ID."""
    return correlation_id_var.get()


def set_correlation_id(correlation_id: Optional[str] = None, prefix: str = "req") -> str:
    """
    Set the correlation ID for the current context.
    If not provided, generates `<prefix>-<8 hex chars>`.
    """
    if correlation_id is None:
        correlation_id = f"{prefix}-{uuid.uuid4().hex[:8]}"
    correlation_id_var.set(correlation_id)
    return correlation_id


@contextmanager
def correlation_scope(correlation_id: Optional[str] = None, prefix: str = "evt") -> Iterator[str]:
    """
    Temporarily bind a correlation ID, restoring the previous one on exit.

    Usage:
        with correlation_scope(prefix="wamid") as cid:
            await handle(message)
    """
    if correlation_id is None:
        correlation_id = f"{prefix}-{uuid.uuid4().hex[:8]}"
    token = correlation_id_var.set(correlation_id)
    try:
        yield correlation_id
    finally:
        correlation_id_var.reset(token)


class CorrelationIdFilter(logging.Filter):
    """Adds `correlation_id` to every record so the formatter can print it."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or "no-request"
        return True


def _resolve_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(level: Union[int, str] = logging.INFO) -> None:
    """
    Configure the root logger with correlation ID support.

    Installs a single stream handler, replaces any existing ones, routes the
    uvicorn loggers through it and turns down noisy client libraries.
    """
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    handler.addFilter(CorrelationIdFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(_resolve_level(level))

    for existing_handler in root_logger.handlers[:]:
        root_logger.removeHandler(existing_handler)
    root_logger.addHandler(handler)

    for logger_name in ["uvicorn", "uvicorn.access", "uvicorn.error"]:
        uvicorn_logger = logging.getLogger(logger_name)
        uvicorn_logger.handlers = [handler]
        uvicorn_logger.propagate = False

    for logger_name in QUIET_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

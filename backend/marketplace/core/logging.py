"""
Structured logging configuration with request and order correlation.

Log events are rendered by structlog (console output in development, JSON
elsewhere). Request, user and order identifiers are carried in context
variables so that a webhook delivery can be followed from ingress through the
gateway fetch to the order update.
"""

import logging
import sys
import time
from contextvars import ContextVar
from typing import Any, Optional
from uuid import uuid4

import structlog
from structlog.types import EventDict, Processor

from marketplace.core.config import get_settings

request_id_ctx: ContextVar[str] = ContextVar("request_id", default="")
user_id_ctx: ContextVar[Optional[str]] = ContextVar("user_id", default=None)
order_id_ctx: ContextVar[Optional[str]] = ContextVar("order_id", default=None)

SLOW_OPERATION_MS = 500


def add_correlation_ids(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """
    Copy request, user and order identifiers from context into the event.

    Values already present on the event take precedence.
    """
    for key, ctx in (
        ("request_id", request_id_ctx),
        ("user_id", user_id_ctx),
        ("order_id", order_id_ctx),
    ):
        value = ctx.get()
        if value and key not in event_dict:
            event_dict[key] = value
    return event_dict


def configure_logging() -> None:
    """
    Configure structlog and the standard library root logger.

    Uses a colored console renderer in development and JSON everywhere else.
    """
    settings = get_settings()

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_correlation_ids,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.is_development:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.plain_traceback,
            )
        )
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level),
    )

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("stripe").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger instance
    """
    return structlog.get_logger(name)


def set_request_id(request_id: Optional[str] = None) -> str:
    """
    Set request ID in context, generating one when absent.

    Returns:
        Request ID that was set
    """
    if not request_id:
        request_id = str(uuid4())
    request_id_ctx.set(request_id)
    return request_id


def get_request_id() -> str:
    """Get current request ID or an empty string."""
    return request_id_ctx.get()


def set_user_id(user_id: Optional[Any]) -> None:
    """Bind the authenticated user to the logging context."""
    user_id_ctx.set(str(user_id) if user_id is not None else None)


def set_order_id(order_id: Optional[Any]) -> None:
    """Bind the order being processed to the logging context."""
    order_id_ctx.set(str(order_id) if order_id is not None else None)


def clear_context() -> None:
    """
    Clear all correlation context variables.

    Called at the end of request processing so values do not leak between
    requests served by the same task.
    """
    request_id_ctx.set("")
    user_id_ctx.set(None)
    order_id_ctx.set(None)


class PerformanceLogger:
    """
    Context manager logging the duration of a block.

    Operations slower than SLOW_OPERATION_MS are logged as warnings.
    """

    def __init__(
        self,
        logger: structlog.stdlib.BoundLogger,
        operation: str,
        **context: Any,
    ):
        self.logger = logger
        self.operation = operation
        self.context = context
        self.start_time: Optional[float] = None

    def __enter__(self) -> "PerformanceLogger":
        self.start_time = time.perf_counter()
        self.logger.debug(
            "Operation started",
            operation=self.operation,
            **self.context,
        )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.start_time is None:
            return

        duration_ms = round((time.perf_counter() - self.start_time) * 1000, 2)

        if exc_type is not None:
            self.logger.error(
                "Operation failed",
                operation=self.operation,
                duration_ms=duration_ms,
                error_type=exc_type.__name__,
                **self.context,
            )
            return

        log_method = (
            self.logger.warning
            if duration_ms > SLOW_OPERATION_MS
            else self.logger.info
        )
        log_method(
            "Operation completed",
            operation=self.operation,
            duration_ms=duration_ms,
            **self.context,
        )


def log_performance(
    logger: structlog.stdlib.BoundLogger,
    operation: str,
    **context: Any,
) -> PerformanceLogger:
    """
    Create a performance logging context manager.

    Example:
        >>> with log_performance(logger, "gateway_fetch", payment_id="pi_1"):
        ...     payment = await gateway.fetch_payment("pi_1")
    """
    return PerformanceLogger(logger, operation, **context)

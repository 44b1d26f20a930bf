"""
Structured Logging with Structlog.

One configuration for the three processes that write order logs: the API,
the close-order worker and the operator scripts. Every line carries the
service, the component and, inside a traced operation, the trace and span ids.
"""

import logging
import sys
from typing import Any

import structlog
from opentelemetry import trace
from structlog.types import EventDict, Processor

from panel_orders.config import settings

# Libraries that log every statement or broker heartbeat at INFO
NOISY_LOGGERS = ("sqlalchemy.engine", "celery", "kombu", "amqp", "urllib3")

_component = "api"


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add service, version and component to all log entries."""
    event_dict["service"] = settings.service_name
    event_dict["version"] = settings.api_version
    event_dict["component"] = _component
    return event_dict


def add_trace_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Correlate the entry with the active span, if there is one."""
    span_context = trace.get_current_span().get_span_context()
    if span_context.is_valid:
        event_dict["trace_id"] = format(span_context.trace_id, "032x")
        event_dict["span_id"] = format(span_context.span_id, "016x")
    return event_dict


def _processors(debug: bool) -> list[Processor]:
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_app_context,
        add_trace_context,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.ExceptionRenderer() if debug else structlog.processors.format_exc_info,
    ]
    if settings.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    return processors


def setup_logging(component: str = "api") -> None:
    """
    Configure structured logging with structlog.

    Logs are formatted as JSON for machine parsing with the following structure:
    {
        "event": "purchase_order_created",
        "level": "info",
        "timestamp": "2026-01-08T12:00:00.123456Z",
        "logger": "panel_orders.services.orders",
        "service": "panel-orders-api",
        "version": "0.1.0",
        "component": "api",
        "request_id": "req-123",
        "user_id": 42,
        "order_no": "20260108120000123456482913",
        "trace_id": "4bf92f3577b34da6a3ce929d0e0e4736",
        ...additional context
    }

    Args:
        component: Which process is logging (api, worker, script)
    """
    global _component
    _component = component

    level = getattr(logging, settings.log_level.upper())
    debug = level == logging.DEBUG

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level, force=True)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level if debug else logging.WARNING)

    structlog.configure(
        processors=_processors(debug),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Usage:
        logger = get_logger(__name__)
        logger.info("order_close_processed", order_no=order_no, outcome="closed")
    """
    return structlog.get_logger(name)  # type: ignore[no-any-return]


class log_context:
    """
    Bind fields to every log entry written inside the block.

    Fields are unbound on exit even when the block raises, so a rejected order
    never leaks its user_id into the next request's logs.

    Usage:
        with log_context(user_id=42, order_type="purchase"):
            logger.info("order_rejected", error_kind="PlanOutOfStock")
    """

    def __init__(self, **fields: Any) -> None:
        self.fields = fields

    def __enter__(self) -> None:
        structlog.contextvars.bind_contextvars(**self.fields)

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        structlog.contextvars.unbind_contextvars(*self.fields)

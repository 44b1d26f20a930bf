"""
Observability module - Logging, Metrics, and Tracing.
"""

from panel_orders.observability.logging import get_logger, setup_logging
from panel_orders.observability.metrics import metrics
from panel_orders.observability.tracing import setup_tracing

__all__ = [
    "get_logger",
    "setup_logging",
    "metrics",
    "setup_tracing",
]

"""
Celery application for deferred order tasks.

Runs the close-order consumer and, through beat, the periodic sweep that
closes pending orders whose close task was lost.
"""

from typing import Any

from celery import Celery
from celery.signals import setup_logging as celery_setup_logging
from celery.signals import worker_process_init
from kombu import Queue

from panel_orders.config import settings
from panel_orders.observability.logging import setup_logging
from panel_orders.observability.tracing import instrument_celery, setup_tracing

celery_app = Celery(
    "panel_orders",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["panel_orders.worker.tasks"],
)

celery_app.conf.update(
    task_default_queue=settings.celery_queue,
    task_queues=(Queue(settings.celery_queue, routing_key=settings.celery_queue),),
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    result_expires=3600,  # 1 hour
    task_time_limit=120,
    task_soft_time_limit=90,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
)


@celery_setup_logging.connect
def configure_worker_logging(**kwargs: Any) -> None:
    """Use the structlog configuration instead of Celery's own handlers."""
    setup_logging(component="worker")


@worker_process_init.connect
def init_worker_tracing(**kwargs: Any) -> None:
    setup_tracing(component="worker")
    instrument_celery()


@celery_app.on_after_finalize.connect
def setup_periodic_tasks(sender: Celery, **kwargs: Any) -> None:
    """Schedule the stale order sweep unless it is disabled."""
    if settings.stale_order_sweep_seconds <= 0:
        return

    from panel_orders.worker.tasks import SWEEP_STALE_ORDERS_TASK, sweep_stale_orders_task

    sender.add_periodic_task(
        float(settings.stale_order_sweep_seconds),
        sweep_stale_orders_task.s(),
        name=SWEEP_STALE_ORDERS_TASK,
    )

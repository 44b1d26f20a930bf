"""
Worker tasks - the consumer side of the expiry scheduler.
"""

import asyncio
from collections import Counter
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from celery import Task
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from structlog import get_logger

from panel_orders.config import settings
from panel_orders.exceptions import DatabaseInsertError, DatabaseQueryError
from panel_orders.models.domain import CloseOrderPayload, CloseOutcome
from panel_orders.services.expiry import CLOSE_ORDER_TASK, close_order, close_stale_orders
from panel_orders.worker.celery_app import celery_app

logger = get_logger(__name__)

SWEEP_STALE_ORDERS_TASK = "sweep-stale-orders"
RETRY_DELAY_SECONDS = 60


@asynccontextmanager
async def _task_session() -> AsyncIterator[AsyncSession]:
    # Each task runs on its own event loop, so connections cannot be pooled across tasks
    engine = create_async_engine(settings.database_url, poolclass=NullPool)
    try:
        factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        async with factory() as session:
            yield session
    finally:
        await engine.dispose()


async def _close(order_no: str) -> CloseOutcome:
    async with _task_session() as session:
        return await close_order(session, order_no)


async def _sweep(window: timedelta, limit: int) -> list[CloseOutcome]:
    async with _task_session() as session:
        return await close_stale_orders(session, window=window, limit=limit)


@celery_app.task(
    name=CLOSE_ORDER_TASK,
    bind=True,
    max_retries=settings.close_order_max_retry,
    default_retry_delay=RETRY_DELAY_SECONDS,
)
def close_order_task(self: Task, payload: str, max_retry: int | None = None) -> str:
    """
    Close an unpaid order once its payment window has passed.

    max_retry is the budget the scheduler chose; without it the task default applies.
    """
    order_no = CloseOrderPayload.from_json(payload).order_no
    try:
        outcome = asyncio.run(_close(order_no))
    except (DatabaseQueryError, DatabaseInsertError) as exc:
        logger.warning(
            "close_order_retry",
            order_no=order_no,
            attempt=self.request.retries + 1,
            error=exc.message,
        )
        raise self.retry(exc=exc, max_retries=max_retry)
    return outcome.value


@celery_app.task(name=SWEEP_STALE_ORDERS_TASK)
def sweep_stale_orders_task() -> dict[str, int]:
    """Close pending orders older than the payment window. Returns counts per outcome."""
    outcomes = asyncio.run(
        _sweep(
            timedelta(minutes=settings.close_order_minutes),
            settings.stale_order_sweep_limit,
        )
    )
    counts = Counter(outcome.value for outcome in outcomes)
    logger.info("stale_order_sweep_completed", total=len(outcomes), **counts)
    return dict(counts)


class CeleryTaskQueue:
    """DeferredTaskQueue backed by the Celery broker."""

    def __init__(self, queue: str | None = None) -> None:
        self.queue = queue or settings.celery_queue

    async def enqueue(
        self,
        kind: str,
        payload: str,
        *,
        delay: timedelta,
        max_retry: int,
    ) -> str:
        # Publishing talks to the broker synchronously
        result = await asyncio.to_thread(
            celery_app.send_task,
            kind,
            args=[payload],
            kwargs={"max_retry": max_retry},
            countdown=delay.total_seconds(),
            queue=self.queue,
            retry=True,
        )
        return str(result.id)

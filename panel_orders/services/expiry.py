"""
Expiry Scheduler - automatic close of unpaid orders.

After an order commits, a "close-order" task is enqueued to fire once the
payment window has passed. The consumer cancels the order only while it is
still pending and reverses everything the fulfillment transaction took.
"""

from datetime import UTC, datetime, timedelta
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from panel_orders.db.session import with_transaction
from panel_orders.db.stores import CouponStore, GiftLedgerStore, OrderStore, PlanStore, UserStore
from panel_orders.models.api import OrderStatus, OrderType
from panel_orders.models.domain import CloseOrderPayload, CloseOutcome
from panel_orders.observability.metrics import metrics
from panel_orders.services.gift_ledger import record_refund

logger = get_logger(__name__)

CLOSE_ORDER_TASK = "close-order"


class DeferredTaskQueue(Protocol):
    """
    Protocol for the deferred task transport.

    Implementations hand a task to a worker queue to run after delay.
    """

    async def enqueue(
        self,
        kind: str,
        payload: str,
        *,
        delay: timedelta,
        max_retry: int,
    ) -> str:
        """
        Schedule a task.

        Args:
            kind: Task name
            payload: JSON payload
            delay: How long to wait before running it
            max_retry: Retries the consumer may make when the task fails

        Returns:
            Transport task id
        """
        ...


class ExpiryScheduler:
    """Enqueues the close-order task. Never fails the caller."""

    def __init__(self, queue: DeferredTaskQueue, *, delay_minutes: int, max_retry: int) -> None:
        self.queue = queue
        self.delay = timedelta(minutes=delay_minutes)
        self.max_retry = max_retry

    async def schedule_close(self, order_no: str) -> datetime | None:
        """
        Schedule the close of order_no.

        Returns:
            When the task is due, or None when enqueueing failed
        """
        due_at = datetime.now(UTC) + self.delay
        try:
            task_id = await self.queue.enqueue(
                CLOSE_ORDER_TASK,
                CloseOrderPayload(order_no).to_json(),
                delay=self.delay,
                max_retry=self.max_retry,
            )
        except Exception as e:
            # The order is already committed; without this task it never auto-cancels.
            logger.error(
                "close_order_enqueue_failed",
                order_no=order_no,
                error=str(e),
                error_type=type(e).__name__,
            )
            metrics.record_close_enqueue(False)
            return None

        metrics.record_close_enqueue(True)
        logger.info(
            "close_order_scheduled",
            order_no=order_no,
            task_id=task_id,
            due_at=due_at.isoformat(),
        )
        return due_at


async def close_order(session: AsyncSession, order_no: str) -> CloseOutcome:
    """
    Close an unpaid order. Safe to run more than once.

    A pending order is cancelled, its gift deduction credited back, one unit
    of finite inventory returned for purchases and its coupon slot released,
    all in one transaction. Paid and already cancelled orders are untouched.
    """
    orders = OrderStore(session)
    order = await orders.find_by_order_no(order_no)

    if order is None:
        outcome = CloseOutcome.NOT_FOUND
    elif order.status == OrderStatus.PAID:
        outcome = CloseOutcome.ALREADY_PAID
    elif order.status == OrderStatus.CANCELLED:
        outcome = CloseOutcome.ALREADY_CLOSED
    else:
        user_id = order.user_id
        gift_amount = order.gift_amount
        subscribe_id = order.subscribe_id
        coupon = order.coupon
        restore_stock = order.type == OrderType.PURCHASE and subscribe_id > 0

        async def _close(session: AsyncSession) -> bool:
            # Conditional on PENDING so a payment racing this close wins
            if not await orders.transition_status(
                order_no, OrderStatus.PENDING, OrderStatus.CANCELLED
            ):
                return False
            await record_refund(
                UserStore(session),
                GiftLedgerStore(session),
                user_id=user_id,
                order_no=order_no,
                amount=gift_amount,
                subscribe_id=subscribe_id,
            )
            if restore_stock:
                await PlanStore(session).restore_inventory(subscribe_id)
            if coupon:
                await CouponStore(session).release_use(coupon)
            return True

        closed = await with_transaction(session, _close, operation="close order")
        if closed:
            outcome = CloseOutcome.CLOSED
        else:
            await session.refresh(order)
            outcome = (
                CloseOutcome.ALREADY_PAID
                if order.status == OrderStatus.PAID
                else CloseOutcome.ALREADY_CLOSED
            )

    metrics.record_order_closed(outcome.value)
    logger.info("order_close_processed", order_no=order_no, outcome=outcome.value)
    return outcome


async def close_stale_orders(
    session: AsyncSession,
    *,
    window: timedelta,
    limit: int = 500,
) -> list[CloseOutcome]:
    """Close pending orders older than window whose close task never ran."""
    cutoff = datetime.now(UTC) - window
    order_nos = await OrderStore(session).find_stale_pending(cutoff, limit=limit)
    logger.info("stale_orders_found", count=len(order_nos), cutoff=cutoff.isoformat())
    return [await close_order(session, order_no) for order_no in order_nos]

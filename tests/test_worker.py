"""
Tests for the Celery side of close-order scheduling.

No broker is involved: publishing is patched and the task body runs locally.
"""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from celery.exceptions import Retry

from panel_orders.config import settings
from panel_orders.exceptions import DatabaseInsertError, DatabaseQueryError
from panel_orders.models.domain import CloseOrderPayload, CloseOutcome
from panel_orders.services.expiry import CLOSE_ORDER_TASK
from panel_orders.worker.celery_app import celery_app, setup_periodic_tasks
from panel_orders.worker.tasks import (
    SWEEP_STALE_ORDERS_TASK,
    CeleryTaskQueue,
    close_order_task,
    sweep_stale_orders_task,
)


class TestCeleryTaskQueue:
    """Tests for publishing close-order tasks."""

    async def test_enqueue_publishes_with_countdown(self):
        with patch.object(celery_app, "send_task", return_value=MagicMock(id="task-1")) as send:
            task_id = await CeleryTaskQueue(queue="orders-test").enqueue(
                CLOSE_ORDER_TASK,
                CloseOrderPayload("ORD-1").to_json(),
                delay=timedelta(minutes=15),
                max_retry=3,
            )

        assert task_id == "task-1"
        send.assert_called_once()
        args, kwargs = send.call_args
        assert args == (CLOSE_ORDER_TASK,)
        assert kwargs["args"] == ['{"orderNo": "ORD-1"}']
        assert kwargs["kwargs"] == {"max_retry": 3}
        assert kwargs["countdown"] == 900
        assert kwargs["queue"] == "orders-test"
        assert "retry_policy" not in kwargs

    async def test_broker_failure_propagates(self):
        with patch.object(celery_app, "send_task", side_effect=ConnectionError("down")):
            with pytest.raises(ConnectionError):
                await CeleryTaskQueue().enqueue(
                    CLOSE_ORDER_TASK, "{}", delay=timedelta(minutes=1), max_retry=1
                )


class TestCloseOrderTask:
    """Tests for the task consumer."""

    def test_registered_under_task_kind(self):
        assert close_order_task.name == CLOSE_ORDER_TASK
        assert CLOSE_ORDER_TASK in celery_app.tasks

    def test_closes_order(self):
        with patch(
            "panel_orders.worker.tasks._close",
            new=AsyncMock(return_value=CloseOutcome.CLOSED),
        ) as close:
            result = close_order_task(CloseOrderPayload("ORD-7").to_json())

        assert result == "closed"
        close.assert_awaited_once_with("ORD-7")

    def test_store_failure_retries(self):
        error = DatabaseQueryError("find order", "connection reset")
        with (
            patch("panel_orders.worker.tasks._close", new=AsyncMock(side_effect=error)),
            patch.object(close_order_task, "retry", side_effect=Retry("retrying")) as retry,
        ):
            with pytest.raises(Retry):
                close_order_task(CloseOrderPayload("ORD-7").to_json())

        retry.assert_called_once_with(exc=error, max_retries=None)

    def test_retry_budget_from_scheduler(self):
        error = DatabaseInsertError("close order", "deadlock")
        with (
            patch("panel_orders.worker.tasks._close", new=AsyncMock(side_effect=error)),
            patch.object(close_order_task, "retry", side_effect=Retry("retrying")) as retry,
        ):
            with pytest.raises(Retry):
                close_order_task(CloseOrderPayload("ORD-8").to_json(), max_retry=1)

        retry.assert_called_once_with(exc=error, max_retries=1)

    def test_malformed_payload(self):
        with pytest.raises(KeyError):
            close_order_task('{"order": "ORD-7"}')


class TestStaleOrderSweep:
    """Tests for the periodic sweep."""

    def test_counts_outcomes(self):
        outcomes = [CloseOutcome.CLOSED, CloseOutcome.ALREADY_PAID, CloseOutcome.CLOSED]
        with patch(
            "panel_orders.worker.tasks._sweep", new=AsyncMock(return_value=outcomes)
        ) as sweep:
            result = sweep_stale_orders_task()

        assert result == {"closed": 2, "already_paid": 1}
        sweep.assert_awaited_once_with(
            timedelta(minutes=settings.close_order_minutes), settings.stale_order_sweep_limit
        )

    def test_scheduled_on_beat(self):
        sender = MagicMock()
        setup_periodic_tasks(sender=sender)

        sender.add_periodic_task.assert_called_once()
        args, kwargs = sender.add_periodic_task.call_args
        assert args[0] == float(settings.stale_order_sweep_seconds)
        assert kwargs["name"] == SWEEP_STALE_ORDERS_TASK

    def test_disabled(self, monkeypatch):
        monkeypatch.setattr(settings, "stale_order_sweep_seconds", 0)
        sender = MagicMock()
        setup_periodic_tasks(sender=sender)
        sender.add_periodic_task.assert_not_called()

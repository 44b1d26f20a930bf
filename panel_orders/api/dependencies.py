"""
FastAPI Dependencies - caller identity and service wiring.

Authentication happens upstream: the gateway resolves the session and
forwards the user id in the X-User-ID header.
"""

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from panel_orders.config import settings
from panel_orders.db.session import get_db
from panel_orders.models.domain import AuthenticatedUser
from panel_orders.services.expiry import DeferredTaskQueue
from panel_orders.services.orders import OrderService
from panel_orders.worker.tasks import CeleryTaskQueue

logger = get_logger(__name__)

_task_queue: DeferredTaskQueue | None = None


def get_current_user(
    x_user_id: str | None = Header(None, description="Authenticated user id set by the gateway"),
) -> AuthenticatedUser | None:
    """
    Resolve the caller from the gateway header.

    Returns None when the header is missing or malformed; the order
    workflows reject a None user with InvalidAccess.
    """
    if not x_user_id:
        return None
    try:
        return AuthenticatedUser(user_id=int(x_user_id))
    except ValueError:
        logger.warning("invalid_user_header", x_user_id=x_user_id[:32])
        return None


def get_task_queue() -> DeferredTaskQueue:
    """Shared Celery-backed queue for close-order tasks."""
    global _task_queue
    if _task_queue is None:
        _task_queue = CeleryTaskQueue()
    return _task_queue


def get_order_service(
    db: AsyncSession = Depends(get_db),
    queue: DeferredTaskQueue = Depends(get_task_queue),
) -> OrderService:
    return OrderService(db, queue, settings)

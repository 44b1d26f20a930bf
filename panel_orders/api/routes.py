"""
API Routes - FastAPI endpoints for order creation.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, status
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from panel_orders.api.dependencies import get_current_user, get_order_service
from panel_orders.db.session import get_db
from panel_orders.models.api import (
    ErrorResponse,
    HealthResponse,
    PurchaseOrderRequest,
    PurchaseOrderResponse,
    RechargeOrderRequest,
    RechargeOrderResponse,
    RenewalOrderRequest,
    RenewalOrderResponse,
)
from panel_orders.models.domain import AuthenticatedUser
from panel_orders.services.orders import OrderService

logger = get_logger(__name__)

router = APIRouter()

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


@router.post(
    "/v1/orders/purchase",
    response_model=PurchaseOrderResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
async def create_purchase_order(
    request: PurchaseOrderRequest,
    user: AuthenticatedUser | None = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
) -> PurchaseOrderResponse:
    """
    Create a pending order for a new subscription.

    The gift balance is applied immediately and the order is closed
    automatically if it is still unpaid when the payment window ends.
    """
    return await service.purchase(user, request)


@router.post(
    "/v1/orders/renewal",
    response_model=RenewalOrderResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
async def create_renewal_order(
    request: RenewalOrderRequest,
    user: AuthenticatedUser | None = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
) -> RenewalOrderResponse:
    """Create a pending order extending an existing user subscription."""
    return await service.renewal(user, request)


@router.post(
    "/v1/orders/recharge",
    response_model=RechargeOrderResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
async def create_recharge_order(
    request: RechargeOrderRequest,
    user: AuthenticatedUser | None = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
) -> RechargeOrderResponse:
    return await service.recharge(user, request)


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_db)) -> HealthResponse:
    """Health check endpoint. Reports degraded when the database is unreachable."""
    try:
        await db.execute(text("SELECT 1"))
        db_status = "connected"
    except SQLAlchemyError as e:
        logger.error("health_check_database_failed", error=str(e))
        db_status = "disconnected"

    return HealthResponse(
        status="healthy" if db_status == "connected" else "degraded",
        database=db_status,
        timestamp=datetime.now(UTC).isoformat(),
    )

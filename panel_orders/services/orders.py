"""
Order Workflow - purchase, renewal and recharge orchestration.

Each workflow runs: eligibility -> pricing -> fulfillment transaction ->
close-order scheduling. Nothing is written before the fulfillment
transaction, and scheduling happens only after it committed.
"""

import secrets
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from panel_orders.config import Settings
from panel_orders.db.stores import (
    CouponStore,
    OrderStore,
    PaymentMethodStore,
    PlanStore,
    UserStore,
)
from panel_orders.exceptions import (
    InvalidAccessError,
    OrderError,
    UserSubscriptionNotFoundError,
)
from panel_orders.models.api import (
    OrderType,
    PurchaseOrderRequest,
    PurchaseOrderResponse,
    RechargeOrderRequest,
    RechargeOrderResponse,
    RenewalOrderRequest,
    RenewalOrderResponse,
)
from panel_orders.models.domain import AuthenticatedUser, OrderDraft
from panel_orders.observability.logging import log_context
from panel_orders.observability.metrics import metrics
from panel_orders.services.eligibility import EligibilityGuard
from panel_orders.services.expiry import DeferredTaskQueue, ExpiryScheduler
from panel_orders.services.fulfillment import OrderFulfillmentTransaction
from panel_orders.services.pricing import quote_order, quote_recharge

logger = get_logger(__name__)


def generate_order_no() -> str:
    """UTC timestamp to the microsecond plus six random digits."""
    stamp = datetime.now(UTC).strftime("%Y%m%d%H%M%S%f")
    return f"{stamp}{secrets.randbelow(10**6):06d}"


def _require_user(user: AuthenticatedUser | None) -> AuthenticatedUser:
    if user is None:
        raise InvalidAccessError()
    return user


class OrderService:
    """Service for creating orders. One instance per request session."""

    def __init__(self, session: AsyncSession, queue: DeferredTaskQueue, settings: Settings) -> None:
        self.session = session
        self.settings = settings
        self.plans = PlanStore(session)
        self.payments = PaymentMethodStore(session)
        self.users = UserStore(session)
        self.orders = OrderStore(session)
        self.guard = EligibilityGuard(self.users, CouponStore(session), self.orders, settings)
        self.fulfillment = OrderFulfillmentTransaction(session)
        self.scheduler = ExpiryScheduler(
            queue,
            delay_minutes=settings.close_order_minutes,
            max_retry=settings.close_order_max_retry,
        )

    async def purchase(
        self, user: AuthenticatedUser | None, request: PurchaseOrderRequest
    ) -> PurchaseOrderResponse:
        """
        Create a pending order for a new plan subscription.

        Raises:
            InvalidAccessError: No authenticated user
            InvalidParamsError: Quantity or amount out of bounds
            PlanNotFoundError, PlanNotSellableError, PlanOutOfStockError,
            PlanQuotaExceededError, UserAlreadySubscribedError: Plan refused
            CouponNotFoundError, CouponExhaustedError, CouponNotApplicableError,
            CouponUserLimitExceededError: Coupon refused
            PaymentMethodNotFoundError: Unknown or disabled payment method
            DatabaseQueryError / DatabaseInsertError: Store failure
        """
        with self._tracked(OrderType.PURCHASE):
            user = _require_user(user)
            with log_context(user_id=user.user_id, order_type="purchase"):
                quantity = self.guard.normalize_quantity(request.quantity)
                plan = await self.plans.find_by_id(request.subscribe_id)
                coupon = await self.guard.check_purchase(user.user_id, plan, request.coupon)
                payment = await self.payments.find_by_id(request.payment)
                gift_balance = await self.users.find_gift_balance(user.user_id)

                quote, gift = quote_order(
                    unit_price=plan.unit_price,
                    quantity=quantity,
                    tiers=plan.tiers,
                    coupon=coupon,
                    gift_balance=gift_balance,
                    payment=payment,
                    max_order_amount=self.settings.max_order_amount,
                )
                is_new = await self.orders.is_user_eligible_for_new_order(user.user_id)

                draft = OrderDraft(
                    order_no=generate_order_no(),
                    user_id=user.user_id,
                    order_type=OrderType.PURCHASE,
                    quantity=quantity,
                    quote=quote,
                    payment=payment,
                    is_new=is_new,
                    coupon=coupon.code if coupon else None,
                    subscribe_id=plan.plan_id,
                )
                await self.fulfillment.execute(
                    draft, consume_inventory=not plan.unlimited_inventory
                )
                self._record_created(draft)

                logger.info(
                    "purchase_order_created",
                    order_no=draft.order_no,
                    plan_id=plan.plan_id,
                    quantity=quantity,
                    price=quote.price,
                    discount=quote.discount,
                    coupon_discount=quote.coupon_discount,
                    gift_amount=gift.deducted,
                    fee_amount=quote.fee_amount,
                    amount=quote.amount,
                    is_new=is_new,
                )

        await self.scheduler.schedule_close(draft.order_no)
        return PurchaseOrderResponse(order_no=draft.order_no)

    async def renewal(
        self, user: AuthenticatedUser | None, request: RenewalOrderRequest
    ) -> RenewalOrderResponse:
        """
        Create a pending order extending one of the user's subscriptions.

        Expired subscriptions may be renewed. The subscription must belong to
        the caller. Inventory and quota are not checked.
        """
        with self._tracked(OrderType.RENEWAL):
            user = _require_user(user)
            with log_context(user_id=user.user_id, order_type="renewal"):
                quantity = self.guard.normalize_quantity(request.quantity)
                user_sub = await self.users.find_subscription(request.user_subscribe_id)
                if user_sub is None or user_sub.user_id != user.user_id:
                    raise UserSubscriptionNotFoundError(request.user_subscribe_id)

                plan = await self.plans.find_by_id(user_sub.subscribe_id)
                coupon = await self.guard.check_renewal(user.user_id, plan, request.coupon)
                payment = await self.payments.find_by_id(request.payment)
                gift_balance = await self.users.find_gift_balance(user.user_id)

                quote, gift = quote_order(
                    unit_price=plan.unit_price,
                    quantity=quantity,
                    tiers=plan.tiers,
                    coupon=coupon,
                    gift_balance=gift_balance,
                    payment=payment,
                    max_order_amount=self.settings.max_order_amount,
                )

                draft = OrderDraft(
                    order_no=generate_order_no(),
                    user_id=user.user_id,
                    order_type=OrderType.RENEWAL,
                    quantity=quantity,
                    quote=quote,
                    payment=payment,
                    is_new=False,
                    coupon=coupon.code if coupon else None,
                    subscribe_id=plan.plan_id,
                    subscribe_token=user_sub.token,
                    parent_id=user_sub.order_id,
                )
                await self.fulfillment.execute(draft)
                self._record_created(draft)

                logger.info(
                    "renewal_order_created",
                    order_no=draft.order_no,
                    user_subscribe_id=user_sub.user_subscribe_id,
                    subscription_status=user_sub.status.name.lower(),
                    plan_id=plan.plan_id,
                    quantity=quantity,
                    gift_amount=gift.deducted,
                    amount=quote.amount,
                )

        await self.scheduler.schedule_close(draft.order_no)
        return RenewalOrderResponse(order_no=draft.order_no)

    async def recharge(
        self, user: AuthenticatedUser | None, request: RechargeOrderRequest
    ) -> RechargeOrderResponse:
        """Create a pending order topping up the user's balance."""
        with self._tracked(OrderType.RECHARGE):
            user = _require_user(user)
            with log_context(user_id=user.user_id, order_type="recharge"):
                self.guard.check_recharge(request.amount)
                payment = await self.payments.find_by_id(request.payment)
                quote = quote_recharge(request.amount, payment, self.settings.max_order_amount)
                is_new = await self.orders.is_user_eligible_for_new_order(user.user_id)

                draft = OrderDraft(
                    order_no=generate_order_no(),
                    user_id=user.user_id,
                    order_type=OrderType.RECHARGE,
                    quantity=1,
                    quote=quote,
                    payment=payment,
                    is_new=is_new,
                )
                await self.fulfillment.execute(draft)
                self._record_created(draft)

                logger.info(
                    "recharge_order_created",
                    order_no=draft.order_no,
                    price=quote.price,
                    fee_amount=quote.fee_amount,
                    amount=quote.amount,
                    is_new=is_new,
                )

        await self.scheduler.schedule_close(draft.order_no)
        return RechargeOrderResponse(order_no=draft.order_no)

    def _record_created(self, draft: OrderDraft) -> None:
        metrics.record_order_created(draft.order_type.name.lower(), draft.quote.amount)

    def _tracked(self, order_type: OrderType) -> "_RejectionTracker":
        return _RejectionTracker(order_type)


class _RejectionTracker:
    """Logs and counts an OrderError leaving a workflow, then lets it propagate."""

    def __init__(self, order_type: OrderType) -> None:
        self.order_type = order_type.name.lower()

    def __enter__(self) -> None:
        return None

    def __exit__(self, exc_type: type, exc_val: BaseException, exc_tb: object) -> None:
        if isinstance(exc_val, OrderError):
            metrics.record_order_rejected(exc_val.kind.value, self.order_type)
            logger.info(
                "order_rejected",
                order_type=self.order_type,
                error_kind=exc_val.kind.value,
                reason=exc_val.message,
            )

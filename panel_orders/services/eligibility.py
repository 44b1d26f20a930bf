"""
Eligibility Guard - business rules an order must pass before it is priced.

Checks run in a fixed order and fail fast with a specific error kind. They are
read-then-act: the fulfillment transaction re-checks inventory, coupon usage
and gift balance with conditional updates.
"""

from structlog import get_logger

from panel_orders.config import Settings
from panel_orders.db.stores import CouponStore, OrderStore, UserStore
from panel_orders.exceptions import (
    CouponExhaustedError,
    CouponNotApplicableError,
    CouponNotFoundError,
    CouponUserLimitExceededError,
    InvalidParamsError,
    PlanNotSellableError,
    PlanOutOfStockError,
    PlanQuotaExceededError,
    UserAlreadySubscribedError,
)
from panel_orders.models.domain import CouponRule, PlanSnapshot

logger = get_logger(__name__)


def normalize_quantity(quantity: int, max_quantity: int) -> int:
    """Clamp quantity <= 0 to 1; reject anything above the hard cap."""
    if quantity <= 0:
        return 1
    if quantity > max_quantity:
        raise InvalidParamsError(f"quantity {quantity} exceeds maximum limit {max_quantity}")
    return quantity


def check_plan_sellable(plan: PlanSnapshot) -> None:
    if not plan.sell:
        raise PlanNotSellableError(plan.plan_id)


def check_plan_inventory(plan: PlanSnapshot) -> None:
    """Only an inventory of exactly 0 is sold out; -1 is unlimited."""
    if plan.inventory == 0:
        raise PlanOutOfStockError(plan.plan_id)


def check_coupon_rule(coupon: CouponRule, plan_id: int) -> None:
    """Global usage and plan allow-list."""
    if coupon.exhausted:
        raise CouponExhaustedError(coupon.code)
    if not coupon.applies_to(plan_id):
        raise CouponNotApplicableError(coupon.code, plan_id)


def check_recharge_amount(amount: int, max_recharge_amount: int) -> None:
    if amount <= 0:
        raise InvalidParamsError(f"recharge amount must be positive, got {amount}")
    if amount > max_recharge_amount:
        raise InvalidParamsError(
            f"recharge amount {amount} exceeds maximum limit {max_recharge_amount}"
        )


class EligibilityGuard:
    """
    Runs the per-kind validation subsets.

    Purchase runs every rule; renewal skips inventory, quota and
    single-subscription mode; recharge only bounds the amount.
    """

    def __init__(
        self,
        users: UserStore,
        coupons: CouponStore,
        orders: OrderStore,
        settings: Settings,
    ) -> None:
        self.users = users
        self.coupons = coupons
        self.orders = orders
        self.settings = settings

    def normalize_quantity(self, quantity: int) -> int:
        return normalize_quantity(quantity, self.settings.max_quantity)

    async def check_purchase(
        self,
        user_id: int,
        plan: PlanSnapshot,
        coupon_code: str | None,
    ) -> CouponRule | None:
        """
        Validate a new purchase of plan.

        Returns:
            The resolved coupon, or None when no code was given
        """
        check_plan_sellable(plan)
        check_plan_inventory(plan)
        await self.check_subscription_limits(user_id, plan)
        return await self.resolve_coupon(user_id, plan.plan_id, coupon_code)

    async def check_renewal(
        self,
        user_id: int,
        plan: PlanSnapshot,
        coupon_code: str | None,
    ) -> CouponRule | None:
        check_plan_sellable(plan)
        return await self.resolve_coupon(user_id, plan.plan_id, coupon_code)

    def check_recharge(self, amount: int) -> None:
        check_recharge_amount(amount, self.settings.max_recharge_amount)

    async def check_subscription_limits(self, user_id: int, plan: PlanSnapshot) -> None:
        """Per-plan quota, then platform-wide single-subscription mode."""
        if plan.quota <= 0 and not self.settings.single_subscription_mode:
            return

        live = await self.users.find_live_subscriptions(user_id)

        if plan.quota > 0:
            held = sum(1 for sub in live if sub.subscribe_id == plan.plan_id)
            if held >= plan.quota:
                logger.info(
                    "plan_quota_reached",
                    user_id=user_id,
                    plan_id=plan.plan_id,
                    quota=plan.quota,
                    held=held,
                )
                raise PlanQuotaExceededError(plan.plan_id, plan.quota)

        if self.settings.single_subscription_mode and live:
            raise UserAlreadySubscribedError(user_id)

    async def resolve_coupon(
        self,
        user_id: int,
        plan_id: int,
        coupon_code: str | None,
    ) -> CouponRule | None:
        """Look up a coupon and verify it may be redeemed by user on plan."""
        if not coupon_code:
            return None

        coupon = await self.coupons.find_by_code(coupon_code)
        if coupon is None:
            raise CouponNotFoundError(coupon_code)

        check_coupon_rule(coupon, plan_id)

        if coupon.user_limit > 0:
            used = await self.orders.count_coupon_uses(user_id, coupon.code)
            if used >= coupon.user_limit:
                raise CouponUserLimitExceededError(coupon.code, coupon.user_limit)

        return coupon

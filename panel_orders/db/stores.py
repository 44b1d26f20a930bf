"""
Stores - the collaborator interfaces the order flow reads and writes through.

Reads wrap store failures as DatabaseQueryError. Writes are meant to run
inside with_transaction, which rolls back and maps failures itself.
Conditional updates return False instead of raising when their guard fails,
so the caller can choose the business error.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from panel_orders.db.models import (
    Coupon,
    GiftLedgerEntry,
    Order,
    PaymentMethod,
    SubscriptionPlan,
    User,
    UserSubscription,
)
from panel_orders.exceptions import (
    DatabaseQueryError,
    InvalidAccessError,
    PaymentMethodNotFoundError,
    PlanNotFoundError,
)
from panel_orders.models.api import (
    CouponType,
    FeeMode,
    GiftLogType,
    OrderStatus,
    PaymentPlatform,
    SubscriptionStatus,
)
from panel_orders.models.domain import (
    CouponRule,
    OrderDraft,
    PaymentMethodData,
    PlanSnapshot,
    UserSubscriptionData,
)
from panel_orders.services.pricing import parse_discount_tiers

logger = get_logger(__name__)

LIVE_SUBSCRIPTION_STATUSES = (SubscriptionStatus.PENDING, SubscriptionStatus.ACTIVE)


@asynccontextmanager
async def _reading(operation: str) -> AsyncIterator[None]:
    """Surface store read failures as DatabaseQueryError."""
    try:
        yield
    except SQLAlchemyError as e:
        logger.error("store_query_failed", operation=operation, error=str(e))
        raise DatabaseQueryError(operation, str(e)) from e


def _parse_plan_ids(raw: str) -> frozenset[int]:
    ids = set()
    for part in (raw or "").split(","):
        part = part.strip()
        if part.isdigit():
            ids.add(int(part))
    return frozenset(ids)


class PlanStore:
    """Subscription plans."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def find_by_id(self, plan_id: int) -> PlanSnapshot:
        """Load a plan and parse its discount table once."""
        async with _reading("find subscribe plan"):
            plan = await self.session.get(SubscriptionPlan, plan_id, populate_existing=True)
        if plan is None:
            raise PlanNotFoundError(plan_id)
        return PlanSnapshot(
            plan_id=plan.id,
            name=plan.name,
            unit_price=plan.unit_price,
            tiers=parse_discount_tiers(plan.discount),
            inventory=plan.inventory,
            quota=plan.quota,
            sell=plan.sell,
        )

    async def decrement_inventory(self, plan_id: int) -> bool:
        """Take one unit of finite inventory. False when sold out."""
        stmt = (
            update(SubscriptionPlan)
            .where(SubscriptionPlan.id == plan_id, SubscriptionPlan.inventory > 0)
            .values(inventory=SubscriptionPlan.inventory - 1)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def restore_inventory(self, plan_id: int) -> bool:
        """Give back one unit of finite inventory. Unlimited plans are untouched."""
        stmt = (
            update(SubscriptionPlan)
            .where(SubscriptionPlan.id == plan_id, SubscriptionPlan.inventory >= 0)
            .values(inventory=SubscriptionPlan.inventory + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1


class PaymentMethodStore:
    """Payment methods and their fee rules."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def find_by_id(self, payment_id: int) -> PaymentMethodData:
        async with _reading("find payment method"):
            payment = await self.session.get(PaymentMethod, payment_id)
        if payment is None or not payment.enabled:
            raise PaymentMethodNotFoundError(payment_id)
        try:
            platform = PaymentPlatform(payment.platform)
        except ValueError:
            logger.warning(
                "payment_platform_unsupported", payment_id=payment_id, platform=payment.platform
            )
            raise PaymentMethodNotFoundError(payment_id) from None
        return PaymentMethodData(
            payment_id=payment.id,
            platform=platform,
            fee_mode=FeeMode(payment.fee_mode),
            fee_percent=payment.fee_percent,
            fee_amount=payment.fee_amount,
        )


class CouponStore:
    """Coupons. used_count is only mutated inside the fulfillment transaction."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def find_by_code(self, code: str) -> CouponRule | None:
        async with _reading("find coupon"):
            result = await self.session.execute(
                select(Coupon)
                .where(Coupon.code == code)
                .execution_options(populate_existing=True)
            )
            coupon = result.scalar_one_or_none()
        if coupon is None:
            return None
        return CouponRule(
            code=coupon.code,
            coupon_type=CouponType(coupon.type),
            discount=coupon.discount,
            max_discount=coupon.max_discount,
            count=coupon.count,
            used_count=coupon.used_count,
            user_limit=coupon.user_limit,
            plan_ids=_parse_plan_ids(coupon.subscribe),
        )

    async def claim_use(self, code: str) -> bool:
        """Count one redemption. False when the global limit is reached."""
        stmt = (
            update(Coupon)
            .where(
                Coupon.code == code,
                or_(Coupon.count == 0, Coupon.used_count < Coupon.count),
            )
            .values(used_count=Coupon.used_count + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def release_use(self, code: str) -> bool:
        stmt = (
            update(Coupon)
            .where(Coupon.code == code, Coupon.used_count > 0)
            .values(used_count=Coupon.used_count - 1)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1


class UserStore:
    """User gift balances and subscriptions."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def find_gift_balance(self, user_id: int) -> int:
        async with _reading("find user"):
            result = await self.session.execute(
                select(User.gift_amount).where(User.id == user_id)
            )
            balance = result.scalar_one_or_none()
        if balance is None:
            raise InvalidAccessError(f"user {user_id} not found")
        return balance

    async def debit_gift(self, user_id: int, amount: int) -> int | None:
        """
        Deduct amount from the gift balance if it still covers it.

        Returns the resulting balance, or None when the balance dropped below
        amount since it was read.
        """
        stmt = (
            update(User)
            .where(User.id == user_id, User.gift_amount >= amount)
            .values(gift_amount=User.gift_amount - amount)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            return None
        return await self._current_balance(user_id)

    async def credit_gift(self, user_id: int, amount: int) -> int:
        """Add amount back to the gift balance. Returns the resulting balance."""
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(gift_amount=User.gift_amount + amount)
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)
        return await self._current_balance(user_id)

    async def _current_balance(self, user_id: int) -> int:
        result = await self.session.execute(select(User.gift_amount).where(User.id == user_id))
        return result.scalar_one()

    async def find_live_subscriptions(self, user_id: int) -> list[UserSubscriptionData]:
        """Subscriptions that are pending or active."""
        async with _reading("find user subscription"):
            result = await self.session.execute(
                select(UserSubscription).where(
                    UserSubscription.user_id == user_id,
                    UserSubscription.status.in_([int(s) for s in LIVE_SUBSCRIPTION_STATUSES]),
                )
            )
            rows = result.scalars().all()
        return [self._to_domain(row) for row in rows]

    async def find_subscription(self, user_subscribe_id: int) -> UserSubscriptionData | None:
        async with _reading("find user subscription"):
            row = await self.session.get(UserSubscription, user_subscribe_id)
        return self._to_domain(row) if row is not None else None

    @staticmethod
    def _to_domain(row: UserSubscription) -> UserSubscriptionData:
        return UserSubscriptionData(
            user_subscribe_id=row.id,
            user_id=row.user_id,
            order_id=row.order_id,
            subscribe_id=row.subscribe_id,
            token=row.token,
            status=SubscriptionStatus(row.status),
            expire_time=row.expire_time,
        )


class OrderStore:
    """Orders. The order table is the source of truth for per-user coupon usage."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert(self, draft: OrderDraft) -> Order:
        quote = draft.quote
        order = Order(
            order_no=draft.order_no,
            user_id=draft.user_id,
            parent_id=draft.parent_id,
            type=int(draft.order_type),
            quantity=draft.quantity,
            price=quote.price,
            discount=quote.discount,
            coupon=draft.coupon,
            coupon_discount=quote.coupon_discount,
            gift_amount=quote.gift_amount,
            fee_amount=quote.fee_amount,
            amount=quote.amount,
            payment_id=draft.payment.payment_id,
            method=draft.payment.platform.value,
            status=int(OrderStatus.PENDING),
            is_new=draft.is_new,
            subscribe_id=draft.subscribe_id,
            subscribe_token=draft.subscribe_token,
        )
        self.session.add(order)
        await self.session.flush()
        return order

    async def count_coupon_uses(self, user_id: int, code: str) -> int:
        """How many orders this user has placed with the coupon."""
        async with _reading("count coupon usage"):
            result = await self.session.execute(
                select(func.count(Order.id)).where(Order.user_id == user_id, Order.coupon == code)
            )
            return result.scalar_one()

    async def is_user_eligible_for_new_order(self, user_id: int) -> bool:
        """A user is a new customer until one of their orders has been paid."""
        async with _reading("find user order"):
            result = await self.session.execute(
                select(func.count(Order.id)).where(
                    Order.user_id == user_id, Order.status == int(OrderStatus.PAID)
                )
            )
            return result.scalar_one() == 0

    async def find_by_order_no(self, order_no: str) -> Order | None:
        async with _reading("find order"):
            result = await self.session.execute(
                select(Order)
                .where(Order.order_no == order_no)
                .execution_options(populate_existing=True)
            )
            return result.scalar_one_or_none()

    async def transition_status(
        self, order_no: str, from_status: OrderStatus, to_status: OrderStatus
    ) -> bool:
        """Move an order between statuses only if it is still in from_status."""
        stmt = (
            update(Order)
            .where(Order.order_no == order_no, Order.status == int(from_status))
            .values(status=int(to_status))
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def find_stale_pending(self, created_before: datetime, limit: int = 500) -> list[str]:
        """Order numbers still pending payment that were created before the cutoff."""
        async with _reading("find stale orders"):
            result = await self.session.execute(
                select(Order.order_no)
                .where(
                    Order.status == int(OrderStatus.PENDING),
                    Order.created_at < created_before,
                )
                .order_by(Order.created_at)
                .limit(limit)
            )
            return list(result.scalars().all())


class GiftLedgerStore:
    """Append-only gift balance audit log."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def append(
        self,
        *,
        log_type: GiftLogType,
        user_id: int,
        order_no: str,
        amount: int,
        balance: int,
        remark: str,
        timestamp: int,
        subscribe_id: int = 0,
    ) -> GiftLedgerEntry:
        entry = GiftLedgerEntry(
            type=int(log_type),
            user_id=user_id,
            order_no=order_no,
            subscribe_id=subscribe_id,
            amount=amount,
            balance=balance,
            remark=remark,
            timestamp=timestamp,
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

"""
Tests for the order workflows against an in-memory database.

Covers the purchase, renewal and recharge flows end to end: eligibility,
pricing, the fulfillment transaction and close-order scheduling.
"""

import json
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import update

from panel_orders.db.models import Coupon, Order, SubscriptionPlan, User
from panel_orders.exceptions import (
    CouponUserLimitExceededError,
    InvalidAccessError,
    InvalidParamsError,
    PaymentMethodNotFoundError,
    PlanNotFoundError,
    PlanNotSellableError,
    PlanOutOfStockError,
    UserSubscriptionNotFoundError,
)
from panel_orders.models.api import (
    CouponType,
    FeeMode,
    GiftLogType,
    OrderStatus,
    OrderType,
    PurchaseOrderRequest,
    RechargeOrderRequest,
    RenewalOrderRequest,
    SubscriptionStatus,
)
from panel_orders.models.domain import AuthenticatedUser
from panel_orders.services.expiry import CLOSE_ORDER_TASK
from panel_orders.services.orders import OrderService, generate_order_no


@pytest.fixture
def service(session, task_queue, order_settings) -> OrderService:
    return OrderService(session, task_queue, order_settings)


async def mark_paid(session, order_no: str) -> None:
    await session.execute(
        update(Order).where(Order.order_no == order_no).values(status=int(OrderStatus.PAID))
    )
    await session.commit()


class TestGenerateOrderNo:
    """Tests for order number generation."""

    def test_format(self) -> None:
        order_no = generate_order_no()
        assert order_no.isdigit()
        assert len(order_no) == 26
        assert order_no.startswith(datetime.now(UTC).strftime("%Y"))

    def test_unique(self) -> None:
        assert len({generate_order_no() for _ in range(1000)}) == 1000


class TestPurchase:
    """Tests for new plan purchases."""

    async def test_plain_purchase(self, service, seed, task_queue) -> None:
        """unit 1000 x 3, no tier match, no coupon, no gift, 0% fee."""
        user = await seed.user()
        plan = await seed.plan(unit_price=1000, inventory=10)
        payment = await seed.payment(fee_mode=FeeMode.PERCENT, fee_percent=0.0)

        response = await service.purchase(
            AuthenticatedUser(user.id),
            PurchaseOrderRequest(subscribe_id=plan.id, quantity=3, payment=payment.id),
        )

        order = await seed.order(response.order_no)
        assert order.type == OrderType.PURCHASE
        assert order.status == OrderStatus.PENDING
        assert order.quantity == 3
        assert order.price == 3000
        assert order.discount == 0
        assert order.coupon is None
        assert order.coupon_discount == 0
        assert order.gift_amount == 0
        assert order.fee_amount == 0
        assert order.amount == 3000
        assert order.method == "epay"
        assert order.subscribe_id == plan.id
        assert order.is_new is True

        # Finite inventory drops by one per order, not per quantity
        assert (await seed.reload(SubscriptionPlan, plan.id)).inventory == 9
        assert await seed.ledger(response.order_no) == []
        assert len(task_queue.tasks) == 1

    async def test_gift_balance_covers_order(self, service, seed) -> None:
        """Gift balance 5000 pays a 3000 order in full; fee skipped."""
        user = await seed.user(gift_amount=5000)
        plan = await seed.plan(unit_price=1000)
        payment = await seed.payment(fee_mode=FeeMode.FIXED, fee_amount=100)

        response = await service.purchase(
            AuthenticatedUser(user.id),
            PurchaseOrderRequest(subscribe_id=plan.id, quantity=3, payment=payment.id),
        )

        order = await seed.order(response.order_no)
        assert order.gift_amount == 3000
        assert order.fee_amount == 0
        assert order.amount == 0

        assert (await seed.reload(User, user.id)).gift_amount == 2000
        [entry] = await seed.ledger(response.order_no)
        assert entry.type == GiftLogType.REDUCE
        assert entry.amount == 3000
        assert entry.balance == 2000
        assert entry.user_id == user.id

    async def test_tier_coupon_gift_and_fee(self, service, seed) -> None:
        user = await seed.user(gift_amount=400)
        plan = await seed.plan(
            unit_price=1000,
            discount='[{"quantity": 3, "discount": 95}, {"quantity": 6, "discount": 90}]',
        )
        await seed.coupon(code="TENOFF", coupon_type=CouponType.PERCENTAGE, discount=10)
        payment = await seed.payment(fee_mode=FeeMode.PERCENT, fee_percent=1.0)

        response = await service.purchase(
            AuthenticatedUser(user.id),
            PurchaseOrderRequest(
                subscribe_id=plan.id, quantity=6, coupon="TENOFF", payment=payment.id
            ),
        )

        order = await seed.order(response.order_no)
        assert (order.price, order.discount, order.coupon_discount) == (6000, 600, 540)
        assert (order.gift_amount, order.fee_amount, order.amount) == (400, 44, 4504)
        assert order.coupon == "TENOFF"

    async def test_malformed_tiers_charge_list_price(self, service, seed) -> None:
        user = await seed.user()
        plan = await seed.plan(unit_price=1000, discount="{broken")
        payment = await seed.payment()

        response = await service.purchase(
            AuthenticatedUser(user.id),
            PurchaseOrderRequest(subscribe_id=plan.id, quantity=6, payment=payment.id),
        )
        assert (await seed.order(response.order_no)).amount == 6000

    async def test_unlimited_inventory_not_decremented(self, service, seed) -> None:
        user = await seed.user()
        plan = await seed.plan(inventory=-1)
        payment = await seed.payment()

        await service.purchase(
            AuthenticatedUser(user.id),
            PurchaseOrderRequest(subscribe_id=plan.id, payment=payment.id),
        )
        assert (await seed.reload(SubscriptionPlan, plan.id)).inventory == -1

    async def test_sold_out_plan_rejected(self, service, seed) -> None:
        user = await seed.user()
        plan = await seed.plan(inventory=0)
        payment = await seed.payment()

        with pytest.raises(PlanOutOfStockError):
            await service.purchase(
                AuthenticatedUser(user.id),
                PurchaseOrderRequest(subscribe_id=plan.id, payment=payment.id),
            )
        assert await seed.order_count() == 0

    async def test_last_unit_sells_once(self, service, seed) -> None:
        user = await seed.user()
        plan = await seed.plan(inventory=1)
        payment = await seed.payment()
        request = PurchaseOrderRequest(subscribe_id=plan.id, payment=payment.id)

        await service.purchase(AuthenticatedUser(user.id), request)
        with pytest.raises(PlanOutOfStockError):
            await service.purchase(AuthenticatedUser(user.id), request)

        assert (await seed.reload(SubscriptionPlan, plan.id)).inventory == 0
        assert await seed.order_count() == 1

    @pytest.mark.parametrize("quantity", [0, -3])
    async def test_non_positive_quantity_becomes_one(self, service, seed, quantity) -> None:
        user = await seed.user()
        plan = await seed.plan(unit_price=1000)
        payment = await seed.payment()

        response = await service.purchase(
            AuthenticatedUser(user.id),
            PurchaseOrderRequest(subscribe_id=plan.id, quantity=quantity, payment=payment.id),
        )
        order = await seed.order(response.order_no)
        assert order.quantity == 1
        assert order.amount == 1000

    async def test_quantity_above_cap_rejected(self, service, seed) -> None:
        user = await seed.user()
        plan = await seed.plan()
        payment = await seed.payment()

        with pytest.raises(InvalidParamsError):
            await service.purchase(
                AuthenticatedUser(user.id),
                PurchaseOrderRequest(subscribe_id=plan.id, quantity=1001, payment=payment.id),
            )
        assert await seed.order_count() == 0

    async def test_amount_ceiling(self, service, seed) -> None:
        user = await seed.user()
        plan = await seed.plan(unit_price=2_147_483_647)
        payment = await seed.payment()

        with pytest.raises(InvalidParamsError):
            await service.purchase(
                AuthenticatedUser(user.id),
                PurchaseOrderRequest(subscribe_id=plan.id, quantity=2, payment=payment.id),
            )
        assert await seed.order_count() == 0

    async def test_coupon_user_limit(self, service, seed) -> None:
        """With user_limit 2 the third redemption is refused."""
        user = await seed.user()
        plan = await seed.plan()
        await seed.coupon(code="TWICE", user_limit=2)
        payment = await seed.payment()
        request = PurchaseOrderRequest(subscribe_id=plan.id, coupon="TWICE", payment=payment.id)

        await service.purchase(AuthenticatedUser(user.id), request)
        await service.purchase(AuthenticatedUser(user.id), request)
        with pytest.raises(CouponUserLimitExceededError):
            await service.purchase(AuthenticatedUser(user.id), request)

        assert await seed.order_count() == 2

    async def test_coupon_usage_counted(self, service, seed) -> None:
        user = await seed.user()
        plan = await seed.plan()
        coupon = await seed.coupon(code="ONCE", count=5, used_count=1)
        payment = await seed.payment()

        await service.purchase(
            AuthenticatedUser(user.id),
            PurchaseOrderRequest(subscribe_id=plan.id, coupon="ONCE", payment=payment.id),
        )
        assert (await seed.reload(Coupon, coupon.id)).used_count == 2

    async def test_is_new_false_after_paid_order(self, service, seed) -> None:
        user = await seed.user()
        plan = await seed.plan()
        payment = await seed.payment()
        request = PurchaseOrderRequest(subscribe_id=plan.id, payment=payment.id)

        first = await service.purchase(AuthenticatedUser(user.id), request)
        await mark_paid(seed.session, first.order_no)
        second = await service.purchase(AuthenticatedUser(user.id), request)

        assert (await seed.order(second.order_no)).is_new is False

    async def test_missing_user(self, service, seed) -> None:
        with pytest.raises(InvalidAccessError):
            await service.purchase(None, PurchaseOrderRequest(subscribe_id=1, payment=1))

    async def test_unknown_plan(self, service, seed) -> None:
        user = await seed.user()
        payment = await seed.payment()
        with pytest.raises(PlanNotFoundError):
            await service.purchase(
                AuthenticatedUser(user.id),
                PurchaseOrderRequest(subscribe_id=999, payment=payment.id),
            )

    async def test_disabled_payment_method(self, service, seed) -> None:
        user = await seed.user()
        plan = await seed.plan()
        payment = await seed.payment(enabled=False)
        with pytest.raises(PaymentMethodNotFoundError):
            await service.purchase(
                AuthenticatedUser(user.id),
                PurchaseOrderRequest(subscribe_id=plan.id, payment=payment.id),
            )


class TestCloseScheduling:
    """Tests for the close-order task scheduled after commit."""

    async def test_close_task_scheduled(self, service, seed, task_queue) -> None:
        user = await seed.user()
        plan = await seed.plan()
        payment = await seed.payment()

        before = datetime.now(UTC)
        response = await service.purchase(
            AuthenticatedUser(user.id),
            PurchaseOrderRequest(subscribe_id=plan.id, payment=payment.id),
        )

        [task] = task_queue.tasks
        assert task.kind == CLOSE_ORDER_TASK
        assert json.loads(task.payload) == {"orderNo": response.order_no}
        assert task.delay == timedelta(minutes=15)
        assert task.max_retry == 3
        assert task.enqueued_at + task.delay >= before + timedelta(minutes=15)

    async def test_enqueue_failure_does_not_fail_order(
        self, session, seed, failing_task_queue, order_settings
    ) -> None:
        service = OrderService(session, failing_task_queue, order_settings)
        user = await seed.user()
        plan = await seed.plan()
        payment = await seed.payment()

        response = await service.purchase(
            AuthenticatedUser(user.id),
            PurchaseOrderRequest(subscribe_id=plan.id, payment=payment.id),
        )

        assert (await seed.order(response.order_no)).status == OrderStatus.PENDING

    async def test_nothing_scheduled_for_rejected_order(self, service, seed, task_queue) -> None:
        user = await seed.user()
        plan = await seed.plan(sell=False)
        payment = await seed.payment()

        with pytest.raises(PlanNotSellableError):
            await service.purchase(
                AuthenticatedUser(user.id),
                PurchaseOrderRequest(subscribe_id=plan.id, payment=payment.id),
            )
        assert task_queue.tasks == []


class TestRenewal:
    """Tests for subscription renewals."""

    async def test_renewal_inherits_subscription(self, service, seed, task_queue) -> None:
        user = await seed.user(gift_amount=100)
        plan = await seed.plan(unit_price=1000, inventory=5, quota=1)
        sub = await seed.subscription(user.id, plan.id, token="tok-abc", order_id=41)
        payment = await seed.payment()

        response = await service.renewal(
            AuthenticatedUser(user.id),
            RenewalOrderRequest(user_subscribe_id=sub.id, quantity=2, payment=payment.id),
        )

        order = await seed.order(response.order_no)
        assert order.type == OrderType.RENEWAL
        assert order.subscribe_token == "tok-abc"
        assert order.parent_id == 41
        assert order.subscribe_id == plan.id
        assert order.is_new is False
        assert order.gift_amount == 100
        assert order.amount == 1900

        # Renewals never touch inventory and skip the quota check
        assert (await seed.reload(SubscriptionPlan, plan.id)).inventory == 5
        [entry] = await seed.ledger(response.order_no)
        assert entry.remark == "Renewal order deduction"
        assert len(task_queue.tasks) == 1

    async def test_expired_subscription_can_be_renewed(self, service, seed) -> None:
        user = await seed.user()
        plan = await seed.plan()
        sub = await seed.subscription(
            user.id,
            plan.id,
            status=SubscriptionStatus.EXPIRED,
            expire_time=datetime.now(UTC) - timedelta(days=3),
        )
        payment = await seed.payment()

        response = await service.renewal(
            AuthenticatedUser(user.id),
            RenewalOrderRequest(user_subscribe_id=sub.id, payment=payment.id),
        )
        assert (await seed.order(response.order_no)).type == OrderType.RENEWAL

    async def test_other_users_subscription(self, service, seed) -> None:
        owner = await seed.user()
        intruder = await seed.user()
        plan = await seed.plan()
        sub = await seed.subscription(owner.id, plan.id)
        payment = await seed.payment()

        with pytest.raises(UserSubscriptionNotFoundError):
            await service.renewal(
                AuthenticatedUser(intruder.id),
                RenewalOrderRequest(user_subscribe_id=sub.id, payment=payment.id),
            )

    async def test_unknown_subscription(self, service, seed) -> None:
        user = await seed.user()
        payment = await seed.payment()
        with pytest.raises(UserSubscriptionNotFoundError):
            await service.renewal(
                AuthenticatedUser(user.id),
                RenewalOrderRequest(user_subscribe_id=12345, payment=payment.id),
            )

    async def test_fee_ceiling_repeated(self, session, seed, task_queue, order_settings) -> None:
        service = OrderService(
            session, task_queue, order_settings.model_copy(update={"max_order_amount": 1000})
        )
        user = await seed.user()
        plan = await seed.plan(unit_price=1000)
        sub = await seed.subscription(user.id, plan.id)
        payment = await seed.payment(fee_mode=FeeMode.FIXED, fee_amount=1)

        with pytest.raises(InvalidParamsError):
            await service.renewal(
                AuthenticatedUser(user.id),
                RenewalOrderRequest(user_subscribe_id=sub.id, payment=payment.id),
            )
        assert await seed.order_count() == 0


class TestRecharge:
    """Tests for balance recharges."""

    async def test_recharge(self, service, seed, task_queue) -> None:
        user = await seed.user(gift_amount=5000)
        payment = await seed.payment(fee_mode=FeeMode.PERCENT, fee_percent=2.0)

        response = await service.recharge(
            AuthenticatedUser(user.id), RechargeOrderRequest(amount=10_000, payment=payment.id)
        )

        order = await seed.order(response.order_no)
        assert order.type == OrderType.RECHARGE
        assert order.price == 10_000
        assert order.fee_amount == 200
        assert order.amount == 10_200
        assert order.gift_amount == 0
        assert order.coupon is None
        assert order.is_new is True
        # Gift balance is never applied to recharges
        assert (await seed.reload(User, user.id)).gift_amount == 5000
        assert len(task_queue.tasks) == 1

    async def test_recharge_above_limit_rejected(self, service, seed, task_queue) -> None:
        user = await seed.user()
        payment = await seed.payment()

        with pytest.raises(InvalidParamsError):
            await service.recharge(
                AuthenticatedUser(user.id),
                RechargeOrderRequest(amount=2_100_000_000, payment=payment.id),
            )
        assert await seed.order_count() == 0
        assert task_queue.tasks == []

    async def test_recharge_non_positive_rejected(self, service, seed) -> None:
        user = await seed.user()
        payment = await seed.payment()
        with pytest.raises(InvalidParamsError):
            await service.recharge(
                AuthenticatedUser(user.id), RechargeOrderRequest(amount=0, payment=payment.id)
            )

    async def test_recharge_requires_user(self, service) -> None:
        with pytest.raises(InvalidAccessError):
            await service.recharge(None, RechargeOrderRequest(amount=100, payment=1))

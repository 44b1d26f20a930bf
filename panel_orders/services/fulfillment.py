"""
Order Fulfillment Transaction - the single write path for order creation.

Gift debit, ledger entry, inventory decrement, coupon usage and the order row
commit together or not at all. The contention points are re-checked with
conditional updates so a race lost since validation becomes a typed error
instead of a lost update.
"""

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from panel_orders.db.models import Order
from panel_orders.db.session import with_transaction
from panel_orders.db.stores import CouponStore, GiftLedgerStore, OrderStore, PlanStore, UserStore
from panel_orders.exceptions import CouponExhaustedError, PlanOutOfStockError
from panel_orders.models.domain import OrderDraft
from panel_orders.observability.tracing import trace_operation
from panel_orders.services.gift_ledger import record_deduction

logger = get_logger(__name__)


class OrderFulfillmentTransaction:
    """Persists an OrderDraft atomically."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.plans = PlanStore(session)
        self.coupons = CouponStore(session)
        self.users = UserStore(session)
        self.orders = OrderStore(session)
        self.ledger = GiftLedgerStore(session)

    async def execute(self, draft: OrderDraft, *, consume_inventory: bool = False) -> Order:
        """
        Write the order and every side effect it carries.

        Args:
            draft: Fully priced order
            consume_inventory: Take one unit of the plan's finite inventory

        Returns:
            The persisted order

        Raises:
            ConcurrencyError: Gift balance changed since it was read
            PlanOutOfStockError: Inventory ran out since it was read
            CouponExhaustedError: Coupon's global limit reached since it was read
            DatabaseInsertError: Store failure (everything rolled back)
        """
        order_type = draft.order_type.name.lower()

        async def _fulfill(session: AsyncSession) -> Order:
            await record_deduction(
                self.users,
                self.ledger,
                user_id=draft.user_id,
                order_no=draft.order_no,
                order_type=draft.order_type,
                deducted=draft.quote.gift_amount,
                subscribe_id=draft.subscribe_id,
            )

            if consume_inventory and not await self.plans.decrement_inventory(
                draft.subscribe_id
            ):
                raise PlanOutOfStockError(draft.subscribe_id)

            if draft.coupon and not await self.coupons.claim_use(draft.coupon):
                raise CouponExhaustedError(draft.coupon)

            return await self.orders.insert(draft)

        with trace_operation(
            "order_fulfillment",
            order_no=draft.order_no,
            order_type=order_type,
            user_id=draft.user_id,
            amount=draft.quote.amount,
        ):
            order = await with_transaction(
                self.session, _fulfill, operation=f"insert {order_type} order"
            )

        logger.info(
            "order_fulfilled",
            order_no=draft.order_no,
            order_type=order_type,
            user_id=draft.user_id,
            amount=draft.quote.amount,
            gift_amount=draft.quote.gift_amount,
            inventory_consumed=consume_inventory,
            coupon=draft.coupon,
        )
        return order

"""
Gift Balance Ledger - pre-emptive gift balance deduction and its reversal.

Every debit is recorded against an order number so the close consumer can
credit it back with a symmetric INCREASE entry.
"""

import time
from typing import TYPE_CHECKING

from structlog import get_logger

from panel_orders.exceptions import ConcurrencyError
from panel_orders.models.api import GiftLogType, OrderType
from panel_orders.models.domain import GiftDeduction

if TYPE_CHECKING:
    from panel_orders.db.models import GiftLedgerEntry
    from panel_orders.db.stores import GiftLedgerStore, UserStore

logger = get_logger(__name__)

DEDUCTION_REMARKS = {
    OrderType.PURCHASE: "Purchase order deduction",
    OrderType.RENEWAL: "Renewal order deduction",
}
REFUND_REMARK = "Order cancelled refund"


def now_ms() -> int:
    return int(time.time() * 1000)


def apply_gift_balance(balance: int, amount: int) -> GiftDeduction:
    """
    Apply at most the available balance against amount.

    Returns what was deducted, the amount still due, and the balance left.
    """
    balance = max(balance, 0)
    deducted = min(balance, max(amount, 0))
    return GiftDeduction(
        deducted=deducted,
        remaining=amount - deducted,
        balance_after=balance - deducted,
    )


async def record_deduction(
    users: "UserStore",
    ledger: "GiftLedgerStore",
    *,
    user_id: int,
    order_no: str,
    order_type: OrderType,
    deducted: int,
    subscribe_id: int = 0,
) -> "GiftLedgerEntry | None":
    """
    Debit the gift balance and append a REDUCE entry.

    Must run inside the fulfillment transaction. No entry is written when
    nothing was deducted.

    Raises:
        ConcurrencyError: The balance no longer covers the deduction
    """
    if deducted <= 0:
        return None

    balance = await users.debit_gift(user_id, deducted)
    if balance is None:
        logger.warning(
            "gift_balance_changed_concurrently",
            user_id=user_id,
            order_no=order_no,
            deducted=deducted,
        )
        raise ConcurrencyError("user gift balance")

    entry = await ledger.append(
        log_type=GiftLogType.REDUCE,
        user_id=user_id,
        order_no=order_no,
        subscribe_id=subscribe_id,
        amount=deducted,
        balance=balance,
        remark=DEDUCTION_REMARKS.get(order_type, "Order deduction"),
        timestamp=now_ms(),
    )
    logger.info(
        "gift_balance_deducted",
        user_id=user_id,
        order_no=order_no,
        amount=deducted,
        balance=balance,
    )
    return entry


async def record_refund(
    users: "UserStore",
    ledger: "GiftLedgerStore",
    *,
    user_id: int,
    order_no: str,
    amount: int,
    subscribe_id: int = 0,
) -> "GiftLedgerEntry | None":
    """Credit a cancelled order's deduction back and append the INCREASE entry."""
    if amount <= 0:
        return None

    balance = await users.credit_gift(user_id, amount)
    entry = await ledger.append(
        log_type=GiftLogType.INCREASE,
        user_id=user_id,
        order_no=order_no,
        subscribe_id=subscribe_id,
        amount=amount,
        balance=balance,
        remark=REFUND_REMARK,
        timestamp=now_ms(),
    )
    logger.info(
        "gift_balance_refunded",
        user_id=user_id,
        order_no=order_no,
        amount=amount,
        balance=balance,
    )
    return entry

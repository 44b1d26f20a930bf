"""
Pricing Engine - pure order price composition.

No I/O. All amounts are integer minor units; fractional results are floored.
"""

import json
from decimal import ROUND_FLOOR, Decimal

from structlog import get_logger

from panel_orders.exceptions import OrderAmountExceededError
from panel_orders.models.api import CouponType, FeeMode
from panel_orders.models.domain import (
    CouponRule,
    DiscountTier,
    GiftDeduction,
    PaymentMethodData,
    PriceQuote,
)
from panel_orders.services.gift_ledger import apply_gift_balance

logger = get_logger(__name__)


def _floor(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


def _reject_constant(name: str) -> float:
    raise ValueError(f"non-finite number {name} in discount table")


def parse_discount_tiers(raw: str | None) -> tuple[DiscountTier, ...]:
    """
    Parse a plan's JSON discount blob into a tier table sorted by quantity.

    Malformed or empty data yields an empty table (no discount).
    """
    if not raw or not raw.strip():
        return ()
    try:
        data = json.loads(raw, parse_constant=_reject_constant)
        if not isinstance(data, list):
            raise ValueError("discount table must be a list")
        tiers = [
            DiscountTier(quantity=int(item["quantity"]), discount=float(item["discount"]))
            for item in data
        ]
    except (ValueError, TypeError, KeyError, OverflowError) as e:
        logger.warning("discount_tiers_malformed", error=str(e), raw=raw[:200])
        return ()
    return tuple(sorted(tiers, key=lambda t: t.quantity))


def tiered_discount(tiers: tuple[DiscountTier, ...], quantity: int) -> float:
    """Multiplier of the tier with the greatest threshold <= quantity, else 1."""
    multiplier = 1.0
    best = 0
    for tier in tiers:
        if tier.quantity <= quantity and tier.quantity > best:
            best = tier.quantity
            multiplier = tier.multiplier
    return multiplier


def list_price(unit_price: int, quantity: int) -> int:
    return unit_price * quantity


def discounted_amount(price: int, multiplier: float) -> int:
    """floor(price * multiplier), computed in decimal to avoid float drift."""
    return _floor(Decimal(price) * Decimal(str(multiplier)))


def coupon_discount(amount: int, coupon: CouponRule) -> int:
    """
    Discount a coupon grants on amount.

    Percentage coupons floor amount * pct and respect max_discount when set;
    fixed coupons grant their value. Never exceeds amount.
    """
    if amount <= 0:
        return 0
    if coupon.coupon_type == CouponType.PERCENTAGE:
        value = amount * coupon.discount // 100
        if coupon.max_discount > 0:
            value = min(value, coupon.max_discount)
    else:
        value = coupon.discount
    return max(0, min(value, amount))


def payment_fee(amount: int, payment: PaymentMethodData) -> int:
    """Surcharge for paying amount with this method. Always >= 0."""
    if amount <= 0:
        return 0
    percent_fee = _floor(Decimal(amount) * Decimal(str(payment.fee_percent)) / 100)
    if payment.fee_mode == FeeMode.PERCENT:
        fee = percent_fee
    elif payment.fee_mode == FeeMode.FIXED:
        fee = payment.fee_amount
    elif payment.fee_mode == FeeMode.MIXED:
        fee = percent_fee + payment.fee_amount
    else:
        fee = 0
    return max(0, fee)


def check_ceiling(amount: int, limit: int, stage: str) -> int:
    """Reject a running amount above the order ceiling."""
    if amount > limit:
        raise OrderAmountExceededError(amount, limit, stage)
    return amount


def quote_order(
    *,
    unit_price: int,
    quantity: int,
    tiers: tuple[DiscountTier, ...],
    coupon: CouponRule | None,
    gift_balance: int,
    payment: PaymentMethodData,
    max_order_amount: int,
) -> tuple[PriceQuote, GiftDeduction]:
    """
    Compose the final price of a plan order.

    list price -> tier discount -> coupon -> gift balance -> payment fee.
    The running amount is checked against the ceiling after each step.
    """
    price = list_price(unit_price, quantity)
    amount = discounted_amount(price, tiered_discount(tiers, quantity))
    discount = price - amount
    check_ceiling(amount, max_order_amount, "after_discount")

    coupon_amount = coupon_discount(amount, coupon) if coupon is not None else 0
    amount -= coupon_amount
    check_ceiling(amount, max_order_amount, "after_coupon")

    gift = apply_gift_balance(gift_balance, amount)
    amount = check_ceiling(gift.remaining, max_order_amount, "after_gift")

    fee = payment_fee(amount, payment)
    amount += fee
    check_ceiling(amount, max_order_amount, "after_fee")

    quote = PriceQuote(
        price=price,
        discount=discount,
        coupon_discount=coupon_amount,
        gift_amount=gift.deducted,
        fee_amount=fee,
        amount=amount,
    )
    return quote, gift


def quote_recharge(amount: int, payment: PaymentMethodData, max_order_amount: int) -> PriceQuote:
    """Recharge: flat amount plus payment fee, no discounts."""
    fee = payment_fee(amount, payment)
    total = check_ceiling(amount + fee, max_order_amount, "after_fee")
    return PriceQuote(
        price=amount,
        discount=0,
        coupon_discount=0,
        gift_amount=0,
        fee_amount=fee,
        amount=total,
    )

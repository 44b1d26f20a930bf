"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from panel_orders.models.api import (
    CouponType,
    FeeMode,
    OrderType,
    PaymentPlatform,
    SubscriptionStatus,
)


@dataclass(frozen=True)
class AuthenticatedUser:
    """Caller identity resolved by the upstream gateway."""

    user_id: int

    def __post_init__(self) -> None:
        """Validate user id."""
        if self.user_id <= 0:
            raise ValueError(f"Invalid user_id: {self.user_id}")


@dataclass(frozen=True)
class DiscountTier:
    """One row of a plan's quantity discount table."""

    quantity: int
    discount: float  # percent of list price actually charged, in (0, 100]

    def __post_init__(self) -> None:
        """Validate tier bounds."""
        if self.quantity <= 0:
            raise ValueError(f"Tier quantity must be positive: {self.quantity}")
        if not 0 < self.discount <= 100:
            raise ValueError(f"Tier discount must be in (0, 100]: {self.discount}")

    @property
    def multiplier(self) -> float:
        return self.discount / 100


@dataclass(frozen=True)
class PlanSnapshot:
    """Subscription plan as seen by pricing and eligibility."""

    plan_id: int
    name: str
    unit_price: int
    tiers: tuple[DiscountTier, ...]
    inventory: int
    quota: int
    sell: bool

    @property
    def unlimited_inventory(self) -> bool:
        return self.inventory == -1


@dataclass(frozen=True)
class CouponRule:
    """Coupon redemption rule."""

    code: str
    coupon_type: CouponType
    discount: int
    max_discount: int
    count: int
    used_count: int
    user_limit: int
    plan_ids: frozenset[int] = field(default_factory=frozenset)

    @property
    def exhausted(self) -> bool:
        return self.count != 0 and self.used_count >= self.count

    def applies_to(self, plan_id: int) -> bool:
        """Empty allow-list means the coupon is universal."""
        return not self.plan_ids or plan_id in self.plan_ids


@dataclass(frozen=True)
class PaymentMethodData:
    """Payment method with its surcharge rule."""

    payment_id: int
    platform: PaymentPlatform
    fee_mode: FeeMode
    fee_percent: float
    fee_amount: int


@dataclass(frozen=True)
class UserSubscriptionData:
    """A user's existing subscription, resolved for renewal."""

    user_subscribe_id: int
    user_id: int
    order_id: int | None
    subscribe_id: int
    token: str
    status: SubscriptionStatus
    expire_time: datetime | None


@dataclass(frozen=True)
class GiftDeduction:
    """Result of applying gift balance against an amount due."""

    deducted: int
    remaining: int
    balance_after: int


@dataclass(frozen=True)
class PriceQuote:
    """Fully composed order price. Enforces the amount identity."""

    price: int
    discount: int
    coupon_discount: int
    gift_amount: int
    fee_amount: int
    amount: int

    def __post_init__(self) -> None:
        """Validate price composition."""
        expected = (
            self.price - self.discount - self.coupon_discount - self.gift_amount + self.fee_amount
        )
        if self.amount != expected:
            raise ValueError(f"Amount {self.amount} does not match composition {expected}")
        if self.amount < 0:
            raise ValueError(f"Amount cannot be negative: {self.amount}")
        for name in ("price", "discount", "coupon_discount", "gift_amount", "fee_amount"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative")


@dataclass(frozen=True)
class OrderDraft:
    """Order before persistence - immutable intent."""

    order_no: str
    user_id: int
    order_type: OrderType
    quantity: int
    quote: PriceQuote
    payment: PaymentMethodData
    is_new: bool
    coupon: str | None = None
    subscribe_id: int = 0
    subscribe_token: str | None = None
    parent_id: int | None = None


@dataclass(frozen=True)
class CloseOrderPayload:
    """Payload of the deferred close-order task."""

    order_no: str

    def __post_init__(self) -> None:
        """Validate payload."""
        if not self.order_no:
            raise ValueError("order_no cannot be empty")

    def to_json(self) -> str:
        return json.dumps({"orderNo": self.order_no})

    @classmethod
    def from_json(cls, raw: str | bytes) -> "CloseOrderPayload":
        data = json.loads(raw)
        return cls(order_no=str(data["orderNo"]))


class CloseOutcome(str, Enum):
    """What the close-order consumer did with an order."""

    CLOSED = "closed"
    ALREADY_CLOSED = "already_closed"
    ALREADY_PAID = "already_paid"
    NOT_FOUND = "not_found"

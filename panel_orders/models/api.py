"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
"""

from enum import Enum, IntEnum

from pydantic import BaseModel, Field, field_validator

from panel_orders.exceptions import ErrorKind


class OrderType(IntEnum):
    """Order operation kind."""

    PURCHASE = 1
    RENEWAL = 2
    RECHARGE = 4


class OrderStatus(IntEnum):
    """Order lifecycle status. PAID and CANCELLED are terminal."""

    PENDING = 1
    PAID = 2
    CANCELLED = 3


class CouponType(IntEnum):
    """Coupon discount rule."""

    PERCENTAGE = 1
    FIXED = 2


class FeeMode(IntEnum):
    """Payment-method surcharge rule."""

    NONE = 0
    PERCENT = 1
    FIXED = 2
    MIXED = 3


class GiftLogType(IntEnum):
    """Gift ledger entry direction."""

    INCREASE = 1
    REDUCE = 2


class SubscriptionStatus(IntEnum):
    """User subscription status."""

    PENDING = 0
    ACTIVE = 1
    FINISHED = 2
    EXPIRED = 3
    DEDUCTED = 4


class PaymentPlatform(str, Enum):
    """Payment platforms known to the order flow."""

    EPAY = "epay"
    ALIPAY_F2F = "alipay_f2f"
    STRIPE_ALIPAY = "stripe_alipay"
    STRIPE_WECHAT_PAY = "stripe_wechat_pay"
    BALANCE = "balance"


# ============================================================================
# Order Request Models
# ============================================================================


class PurchaseOrderRequest(BaseModel):
    """POST /v1/orders/purchase request body."""

    subscribe_id: int = Field(..., gt=0, description="Subscription plan ID")
    quantity: int = Field(1, description="Number of billing periods; <= 0 means 1")
    coupon: str | None = Field(None, max_length=255, description="Coupon code")
    payment: int = Field(..., gt=0, description="Payment method ID")

    @field_validator("coupon")
    @classmethod
    def normalize_coupon(cls, v: str | None) -> str | None:
        """Treat blank coupon codes as absent."""
        if v is None:
            return None
        v = v.strip()
        return v or None


class RenewalOrderRequest(BaseModel):
    """POST /v1/orders/renewal request body."""

    user_subscribe_id: int = Field(..., gt=0, description="User subscription to extend")
    quantity: int = Field(1, description="Number of billing periods; <= 0 means 1")
    coupon: str | None = Field(None, max_length=255, description="Coupon code")
    payment: int = Field(..., gt=0, description="Payment method ID")

    @field_validator("coupon")
    @classmethod
    def normalize_coupon(cls, v: str | None) -> str | None:
        """Treat blank coupon codes as absent."""
        if v is None:
            return None
        v = v.strip()
        return v or None


class RechargeOrderRequest(BaseModel):
    """POST /v1/orders/recharge request body."""

    amount: int = Field(..., description="Recharge amount in minor units")
    payment: int = Field(..., gt=0, description="Payment method ID")


# ============================================================================
# Order Response Models
# ============================================================================


class PurchaseOrderResponse(BaseModel):
    """POST /v1/orders/purchase response."""

    order_no: str


class RenewalOrderResponse(BaseModel):
    """POST /v1/orders/renewal response."""

    order_no: str


class RechargeOrderResponse(BaseModel):
    """POST /v1/orders/recharge response."""

    order_no: str


class ErrorResponse(BaseModel):
    """Error body returned for every OrderError."""

    code: ErrorKind
    message: str


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str
    database: str
    timestamp: str

"""
Exception Classes - Strongly typed exception hierarchy.

Every exception carries an ErrorKind so callers can branch on the business
reason without parsing messages.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Error kinds surfaced to API callers."""

    INVALID_ACCESS = "InvalidAccess"
    INVALID_PARAMS = "InvalidParams"
    DATABASE_QUERY_ERROR = "DatabaseQueryError"
    DATABASE_INSERT_ERROR = "DatabaseInsertError"
    PLAN_NOT_FOUND = "PlanNotFound"
    PLAN_NOT_SELLABLE = "PlanNotSellable"
    PLAN_OUT_OF_STOCK = "PlanOutOfStock"
    PLAN_QUOTA_EXCEEDED = "PlanQuotaExceeded"
    USER_ALREADY_SUBSCRIBED = "UserAlreadySubscribed"
    USER_SUBSCRIPTION_NOT_FOUND = "UserSubscriptionNotFound"
    PAYMENT_METHOD_NOT_FOUND = "PaymentMethodNotFound"
    COUPON_NOT_FOUND = "CouponNotFound"
    COUPON_EXHAUSTED = "CouponExhausted"
    COUPON_NOT_APPLICABLE = "CouponNotApplicable"
    COUPON_USER_LIMIT_EXCEEDED = "CouponUserLimitExceeded"
    CONCURRENT_MODIFICATION = "ConcurrentModification"


class OrderError(Exception):
    """Base exception for all order errors."""

    kind: ErrorKind = ErrorKind.INVALID_PARAMS
    status_code: int = 400

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidAccessError(OrderError):
    """Raised when no authenticated user is available."""

    kind = ErrorKind.INVALID_ACCESS
    status_code = 401

    def __init__(self, message: str = "Invalid Access") -> None:
        super().__init__(message)


class InvalidParamsError(OrderError):
    """Raised when quantity or amount is out of bounds."""

    kind = ErrorKind.INVALID_PARAMS
    status_code = 400


class OrderAmountExceededError(InvalidParamsError):
    """Raised when a running order amount passes the ceiling."""

    def __init__(self, amount: int, limit: int, stage: str) -> None:
        self.amount = amount
        self.limit = limit
        self.stage = stage
        super().__init__(f"order amount {amount} exceeds maximum limit {limit} ({stage})")


class DatabaseQueryError(OrderError):
    """Raised when a store read fails."""

    kind = ErrorKind.DATABASE_QUERY_ERROR
    status_code = 500

    def __init__(self, operation: str, detail: str) -> None:
        self.operation = operation
        self.detail = detail
        super().__init__(f"{operation} error: {detail}")


class DatabaseInsertError(OrderError):
    """Raised when the fulfillment transaction fails and is rolled back."""

    kind = ErrorKind.DATABASE_INSERT_ERROR
    status_code = 500

    def __init__(self, operation: str, detail: str) -> None:
        self.operation = operation
        self.detail = detail
        super().__init__(f"{operation} error: {detail}")


class PlanNotFoundError(OrderError):
    """Raised when the subscription plan doesn't exist."""

    kind = ErrorKind.PLAN_NOT_FOUND
    status_code = 404

    def __init__(self, plan_id: int) -> None:
        self.plan_id = plan_id
        super().__init__(f"subscribe plan {plan_id} not found")


class PlanNotSellableError(OrderError):
    """Raised when the plan is marked not-for-sale."""

    kind = ErrorKind.PLAN_NOT_SELLABLE

    def __init__(self, plan_id: int) -> None:
        self.plan_id = plan_id
        super().__init__(f"subscribe plan {plan_id} is not for sale")


class PlanOutOfStockError(OrderError):
    """Raised when the plan inventory is exhausted."""

    kind = ErrorKind.PLAN_OUT_OF_STOCK
    status_code = 409

    def __init__(self, plan_id: int) -> None:
        self.plan_id = plan_id
        super().__init__(f"subscribe plan {plan_id} out of stock")


class PlanQuotaExceededError(OrderError):
    """Raised when the user already holds the plan's per-user quota."""

    kind = ErrorKind.PLAN_QUOTA_EXCEEDED

    def __init__(self, plan_id: int, quota: int) -> None:
        self.plan_id = plan_id
        self.quota = quota
        super().__init__(f"quota limit {quota} reached for subscribe plan {plan_id}")


class UserAlreadySubscribedError(OrderError):
    """Raised in single-subscription mode when the user already holds a subscription."""

    kind = ErrorKind.USER_ALREADY_SUBSCRIBED
    status_code = 409

    def __init__(self, user_id: int) -> None:
        self.user_id = user_id
        super().__init__(f"user {user_id} already has a subscription")


class UserSubscriptionNotFoundError(OrderError):
    """Raised when a renewal targets a missing or foreign user subscription."""

    kind = ErrorKind.USER_SUBSCRIPTION_NOT_FOUND
    status_code = 404

    def __init__(self, user_subscribe_id: int) -> None:
        self.user_subscribe_id = user_subscribe_id
        super().__init__(f"user subscription {user_subscribe_id} not found")


class PaymentMethodNotFoundError(OrderError):
    """Raised when the payment method doesn't exist or is disabled."""

    kind = ErrorKind.PAYMENT_METHOD_NOT_FOUND
    status_code = 404

    def __init__(self, payment_id: int) -> None:
        self.payment_id = payment_id
        super().__init__(f"payment method {payment_id} not found")


class CouponNotFoundError(OrderError):
    """Raised when the coupon code doesn't exist."""

    kind = ErrorKind.COUPON_NOT_FOUND
    status_code = 404

    def __init__(self, code: str) -> None:
        self.code = code
        super().__init__(f"coupon {code} not found")


class CouponExhaustedError(OrderError):
    """Raised when the coupon has no remaining global uses."""

    kind = ErrorKind.COUPON_EXHAUSTED
    status_code = 409

    def __init__(self, code: str) -> None:
        self.code = code
        super().__init__(f"coupon {code} used up")


class CouponNotApplicableError(OrderError):
    """Raised when the coupon doesn't apply to the target plan."""

    kind = ErrorKind.COUPON_NOT_APPLICABLE

    def __init__(self, code: str, plan_id: int) -> None:
        self.code = code
        self.plan_id = plan_id
        super().__init__(f"coupon {code} does not apply to subscribe plan {plan_id}")


class CouponUserLimitExceededError(OrderError):
    """Raised when the user has redeemed the coupon the maximum number of times."""

    kind = ErrorKind.COUPON_USER_LIMIT_EXCEEDED

    def __init__(self, code: str, user_limit: int) -> None:
        self.code = code
        self.user_limit = user_limit
        super().__init__(f"coupon {code} limit of {user_limit} per user exceeded")


class ConcurrencyError(OrderError):
    """Raised when concurrent modification detected."""

    kind = ErrorKind.CONCURRENT_MODIFICATION
    status_code = 409

    def __init__(self, resource: str) -> None:
        self.resource = resource
        super().__init__(f"Concurrent modification detected for {resource}")

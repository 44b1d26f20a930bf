"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
"""

from datetime import UTC, datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    Index,
    Integer,
    SmallInteger,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from panel_orders.models.api import (
    CouponType,
    FeeMode,
    OrderStatus,
    SubscriptionStatus,
)

# BIGINT primary keys; SQLite only autoincrements INTEGER PRIMARY KEY
BigIntPK = BigInteger().with_variant(Integer, "sqlite")


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class User(Base):
    """
    ORM model for users table (partial view).

    Only the gift balance is owned by the order flow.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    gift_amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (CheckConstraint("gift_amount >= 0", name="ck_user_gift_non_negative"),)

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<User(id={self.id}, gift_amount={self.gift_amount})>"


class SubscriptionPlan(Base):
    """
    ORM model for subscription_plans table.

    inventory: -1 unlimited, 0 sold out, >0 remaining units.
    quota: per-user limit, 0 unlimited.
    """

    __tablename__ = "subscription_plans"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    unit_price: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    # JSON array of {"quantity": n, "discount": pct}
    discount: Mapped[str] = mapped_column(Text, nullable=False, default="")
    inventory: Mapped[int] = mapped_column(BigInteger, nullable=False, default=-1)
    quota: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    sell: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("unit_price >= 0", name="ck_plan_unit_price_non_negative"),
        CheckConstraint("inventory >= -1", name="ck_plan_inventory_valid"),
        CheckConstraint("quota >= 0", name="ck_plan_quota_non_negative"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<SubscriptionPlan(id={self.id}, unit_price={self.unit_price}, "
            f"inventory={self.inventory})>"
        )


class Coupon(Base):
    """
    ORM model for coupons table.

    count: total-use limit, 0 unlimited. user_limit: per-user limit, 0 unlimited.
    subscribe: comma-separated plan allow-list, empty means universal.
    """

    __tablename__ = "coupons"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    code: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    type: Mapped[int] = mapped_column(
        SmallInteger, nullable=False, default=int(CouponType.PERCENTAGE)
    )
    discount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    max_discount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    count: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    used_count: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    user_limit: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    subscribe: Mapped[str] = mapped_column(Text, nullable=False, default="")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("discount >= 0", name="ck_coupon_discount_non_negative"),
        CheckConstraint("used_count >= 0", name="ck_coupon_used_count_non_negative"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Coupon(code={self.code}, used={self.used_count}/{self.count})>"


class PaymentMethod(Base):
    """ORM model for payment_methods table."""

    __tablename__ = "payment_methods"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    platform: Mapped[str] = mapped_column(String(50), nullable=False)
    fee_mode: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=int(FeeMode.NONE))
    fee_percent: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    fee_amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("fee_percent >= 0", name="ck_payment_fee_percent_non_negative"),
        CheckConstraint("fee_amount >= 0", name="ck_payment_fee_amount_non_negative"),
    )


class UserSubscription(Base):
    """ORM model for user_subscriptions table."""

    __tablename__ = "user_subscriptions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    order_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    subscribe_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    token: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    status: Mapped[int] = mapped_column(
        SmallInteger, nullable=False, default=int(SubscriptionStatus.PENDING)
    )
    expire_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        Index("idx_user_subscriptions_user_plan", "user_id", "subscribe_id"),
    )


class Order(Base):
    """
    ORM model for orders table.

    amount = price - discount - coupon_discount - gift_amount + fee_amount
    """

    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    order_no: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    parent_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    type: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    quantity: Mapped[int] = mapped_column(BigInteger, nullable=False, default=1)

    # Pricing breakdown
    price: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    discount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    coupon: Mapped[str | None] = mapped_column(String(255), nullable=True)
    coupon_discount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    gift_amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    fee_amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # Payment
    payment_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    method: Mapped[str] = mapped_column(String(50), nullable=False)

    status: Mapped[int] = mapped_column(
        SmallInteger, nullable=False, default=int(OrderStatus.PENDING)
    )
    is_new: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    subscribe_id: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    subscribe_token: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_order_amount_non_negative"),
        CheckConstraint("gift_amount >= 0", name="ck_order_gift_non_negative"),
        CheckConstraint("fee_amount >= 0", name="ck_order_fee_non_negative"),
        Index("idx_orders_user_coupon", "user_id", "coupon"),
        Index("idx_orders_user_status", "user_id", "status"),
        Index("idx_orders_status_created_at", "status", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Order(order_no={self.order_no}, type={self.type}, amount={self.amount})>"


class GiftLedgerEntry(Base):
    """
    ORM model for gift_ledger table.

    Append-only audit of gift balance movements.
    """

    __tablename__ = "gift_ledger"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    type: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    order_no: Mapped[str] = mapped_column(String(64), nullable=False)
    subscribe_id: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    balance: Mapped[int] = mapped_column(BigInteger, nullable=False)
    remark: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_gift_ledger_amount_positive"),
        CheckConstraint("balance >= 0", name="ck_gift_ledger_balance_non_negative"),
        Index("idx_gift_ledger_order_no", "order_no"),
        Index("idx_gift_ledger_user_id", "user_id"),
    )

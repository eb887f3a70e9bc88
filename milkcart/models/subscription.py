"""Milk subscription plans, customer subscriptions and cancellation refunds."""
import uuid
from datetime import datetime, date
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import (
    String,
    Boolean,
    Date,
    ForeignKey,
    Integer,
    Numeric,
    Text,
    Index,
    UniqueConstraint,
    CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from milkcart.database import Base
from milkcart.db_types import UUIDType, JSONType, UTCDateTime
from milkcart.core.timeutils import utc_now
from milkcart.models.order import DeliveryShift, PaymentStatus

if TYPE_CHECKING:
    from milkcart.models.user import User


class MilkType(str, Enum):
    COW = "cow"
    BUFFALO = "buffalo"


class PlanVolume(str, Enum):
    ONE_LITRE = "1L"
    TWO_LITRES = "2L"
    THREE_LITRES = "3L"
    FIVE_LITRES = "5L"


PLAN_DURATIONS = (7, 15, 30, 60)


class SubscriptionStatus(str, Enum):
    """
    pending -> processing (payment reported) -> active (payment verified).
    completed, cancelled and expired are terminal.
    """
    PENDING = "pending"
    PROCESSING = "processing"
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLATION_REQUESTED = "cancellation_requested"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    EXPIRED = "expired"


class SubscriptionAction(str, Enum):
    """History entries written on every subscription change."""
    CREATED = "created"
    PAYMENT_REPORTED = "payment_reported"
    PAYMENT_VERIFIED = "payment_verified"
    PAYMENT_REJECTED = "payment_rejected"
    PAUSED = "paused"
    RESUMED = "resumed"
    DELIVERY_SKIPPED = "delivery_skipped"
    DELIVERY_COMPLETED = "delivery_completed"
    CANCELLATION_REQUESTED = "cancellation_requested"
    CANCELLATION_REJECTED = "cancellation_rejected"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    EXPIRED = "expired"


class RefundStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PROCESSED = "processed"
    COMPLETED = "completed"


class RefundMethod(str, Enum):
    UPI = "upi"
    BANK_TRANSFER = "bank_transfer"


# Event actors besides the admin kinds in ActorKind
CUSTOMER_ACTOR = "customer"
SYSTEM_ACTOR = "system"


class SubscriptionPlan(Base):
    """
    Catalogue plan: one milk type and daily volume for a fixed number of days.
    Only one plan may exist per (milk_type, volume, duration_days).
    """
    __tablename__ = "subscription_plans"
    __table_args__ = (
        UniqueConstraint("milk_type", "volume", "duration_days", name="uq_subscription_plan_variant"),
        CheckConstraint(
            "discount_percent >= 0 AND discount_percent <= 100",
            name="ck_subscription_plan_discount",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    milk_type: Mapped[str] = mapped_column(String(20), nullable=False, comment="cow, buffalo")
    volume: Mapped[str] = mapped_column(String(10), nullable=False, comment="1L, 2L, 3L, 5L")
    duration_days: Mapped[int] = mapped_column(Integer, nullable=False)

    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    daily_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    original_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    discount_percent: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    features: Mapped[List[str]] = mapped_column(JSONType, default=list, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    popularity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utc_now,
        onupdate=utc_now,
        nullable=False
    )

    @staticmethod
    def compute_daily_price(price: Decimal, duration_days: int) -> Decimal:
        return (Decimal(price) / duration_days).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

    @property
    def final_price(self) -> Decimal:
        """Price after the plan discount, rounded to whole rupees."""
        price = Decimal(self.price)
        if self.discount_percent:
            price = price * (100 - self.discount_percent) / 100
        return price.quantize(Decimal("1"), rounding=ROUND_HALF_UP)

    def __repr__(self) -> str:
        return f"<SubscriptionPlan(name='{self.name}', {self.milk_type} {self.volume} x {self.duration_days}d)>"


class UserSubscription(Base):
    """
    A customer's purchase of a plan: one delivery a day from ``start_date``
    to ``end_date`` inclusive.
    """
    __tablename__ = "user_subscriptions"
    __table_args__ = (
        Index("ix_user_subscription_user_created", "user_id", "created_at"),
        Index("ix_user_subscription_status_next", "status", "next_delivery_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    subscription_number: Mapped[str] = mapped_column(String(40), unique=True, nullable=False, index=True)

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False
    )
    plan_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("subscription_plans.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    status: Mapped[str] = mapped_column(
        String(30),
        default=SubscriptionStatus.PENDING.value,
        nullable=False,
        index=True
    )
    payment_status: Mapped[str] = mapped_column(
        String(20),
        default=PaymentStatus.PENDING.value,
        nullable=False,
        index=True
    )

    # Schedule
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    next_delivery_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    delivery_shift: Mapped[str] = mapped_column(
        String(20),
        default=DeliveryShift.MORNING.value,
        nullable=False
    )
    total_deliveries: Mapped[int] = mapped_column(Integer, nullable=False)
    completed_deliveries: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    skipped_deliveries: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Delivery address snapshot
    shipping_name: Mapped[str] = mapped_column(String(100), nullable=False)
    shipping_phone: Mapped[str] = mapped_column(String(20), nullable=False)
    shipping_street: Mapped[str] = mapped_column(String(255), nullable=False)
    shipping_city: Mapped[str] = mapped_column(String(100), nullable=False)
    shipping_state: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    shipping_pincode: Mapped[str] = mapped_column(String(10), nullable=False)
    delivery_instructions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Amount charged, after the plan discount
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    discount_percent: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    upi_transaction_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    payment_reported_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utc_now,
        onupdate=utc_now,
        nullable=False
    )

    user: Mapped["User"] = relationship("User", lazy="joined")
    plan: Mapped["SubscriptionPlan"] = relationship("SubscriptionPlan", lazy="joined")
    events: Mapped[List["SubscriptionEvent"]] = relationship(
        "SubscriptionEvent",
        back_populates="subscription",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="SubscriptionEvent.created_at",
    )

    @property
    def remaining_deliveries(self) -> int:
        return max(0, self.total_deliveries - self.completed_deliveries - self.skipped_deliveries)

    @property
    def progress_percentage(self) -> int:
        if not self.total_deliveries:
            return 0
        done = self.completed_deliveries + self.skipped_deliveries
        return round(done * 100 / self.total_deliveries)

    def __repr__(self) -> str:
        return f"<UserSubscription(number='{self.subscription_number}', status='{self.status}')>"


class SubscriptionEvent(Base):
    """Append-only history of a subscription."""
    __tablename__ = "subscription_events"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    user_subscription_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("user_subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    action: Mapped[str] = mapped_column(String(40), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    performed_by_kind: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="customer, system_admin, user, system"
    )
    performed_by_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now, nullable=False)

    subscription: Mapped["UserSubscription"] = relationship("UserSubscription", back_populates="events")


class RefundRequest(Base):
    """Pro-rated refund raised when a customer cancels a paid subscription."""
    __tablename__ = "refund_requests"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    user_subscription_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("user_subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    original_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    refund_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    days_used: Mapped[int] = mapped_column(Integer, nullable=False)
    days_remaining: Mapped[int] = mapped_column(Integer, nullable=False)
    cancellation_reason: Mapped[str] = mapped_column(Text, nullable=False)
    # Status to restore if the request is rejected
    previous_subscription_status: Mapped[str] = mapped_column(String(30), nullable=False)

    # Where the money goes
    refund_method: Mapped[str] = mapped_column(String(20), nullable=False)
    mobile_number: Mapped[str] = mapped_column(String(20), nullable=False)
    upi_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    account_holder_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    bank_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    account_number: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    ifsc_code: Mapped[Optional[str]] = mapped_column(String(11), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        default=RefundStatus.PENDING.value,
        nullable=False,
        index=True
    )
    admin_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    refund_transaction_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    refund_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    processed_by_kind: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    processed_by_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utc_now,
        onupdate=utc_now,
        nullable=False
    )

    subscription: Mapped["UserSubscription"] = relationship("UserSubscription", lazy="joined")
    user: Mapped["User"] = relationship("User", lazy="joined")

    @property
    def subscription_number(self) -> str:
        return self.subscription.subscription_number

    def __repr__(self) -> str:
        return f"<RefundRequest(amount={self.refund_amount}, status='{self.status}')>"

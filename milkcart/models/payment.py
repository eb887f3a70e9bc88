import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, ForeignKey, Numeric, Text, Table, Column
from sqlalchemy.orm import Mapped, mapped_column, relationship

from milkcart.database import Base
from milkcart.db_types import UUIDType, UTCDateTime
from milkcart.core.timeutils import utc_now
from milkcart.models.assignment import ActorKind

if TYPE_CHECKING:
    from milkcart.models.order import Order
    from milkcart.models.subscription import UserSubscription
    from milkcart.models.user import User


class PaymentSessionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class VerificationStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


payment_orders = Table(
    "payment_orders",
    Base.metadata,
    Column("payment_id", UUIDType, ForeignKey("payments.id", ondelete="CASCADE"), primary_key=True),
    Column("order_id", UUIDType, ForeignKey("orders.id", ondelete="CASCADE"), primary_key=True),
)


class Payment(Base):
    """
    UPI QR payment session covering one or more orders, or one subscription.

    pending -> completed (user reports UPI txn id) -> verified/rejected by admin.
    A pending session past ``expires_at`` is cancelled.
    """
    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    payment_id: Mapped[str] = mapped_column(String(40), unique=True, nullable=False, index=True)
    reference_number: Mapped[str] = mapped_column(String(40), unique=True, nullable=False)

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Set when the session pays for a subscription instead of orders
    user_subscription_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("user_subscriptions.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    method: Mapped[str] = mapped_column(String(20), default="upi", nullable=False)
    upi_url: Mapped[str] = mapped_column(Text, nullable=False)
    qr_code: Mapped[Optional[str]] = mapped_column(Text, nullable=True, comment="PNG data URL")

    payment_status: Mapped[str] = mapped_column(
        String(20),
        default=PaymentSessionStatus.PENDING.value,
        nullable=False,
        index=True
    )
    verification_status: Mapped[str] = mapped_column(
        String(20),
        default=VerificationStatus.PENDING.value,
        nullable=False,
        index=True
    )
    upi_transaction_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Verification
    verified_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    verified_by_kind: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    verified_by_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )
    verification_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utc_now,
        onupdate=utc_now,
        nullable=False
    )

    user: Mapped["User"] = relationship("User", foreign_keys=[user_id], lazy="joined")
    orders: Mapped[List["Order"]] = relationship(
        "Order",
        secondary=payment_orders,
        lazy="selectin",
    )
    user_subscription: Mapped[Optional["UserSubscription"]] = relationship("UserSubscription", lazy="joined")

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    @property
    def verified_by(self) -> Optional[dict]:
        if self.verified_by_kind is None:
            return None
        if self.verified_by_kind == ActorKind.SYSTEM_ADMIN.value:
            return {"kind": ActorKind.SYSTEM_ADMIN.value}
        return {"kind": ActorKind.USER.value, "user_id": self.verified_by_user_id}

    def __repr__(self) -> str:
        return f"<Payment(payment_id='{self.payment_id}', status='{self.payment_status}')>"

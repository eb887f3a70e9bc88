import uuid
from datetime import datetime, date
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, Date, ForeignKey, Integer, Text, Numeric, Index, event
from sqlalchemy.orm import Mapped, mapped_column, relationship

from milkcart.database import Base
from milkcart.db_types import UUIDType, UTCDateTime
from milkcart.core.timeutils import utc_now

if TYPE_CHECKING:
    from milkcart.models.user import User
    from milkcart.models.delivery_boy import DeliveryBoy


class OrderStatus(str, Enum):
    """Order lifecycle. delivered and cancelled are terminal."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    """Payment axis of an order, independent of the lifecycle status."""
    PENDING = "pending"
    PROCESSING = "processing"  # UPI reported, awaiting admin verification
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    COD = "cod"
    CARD = "card"
    UPI = "upi"
    WALLET = "wallet"


class DeliveryShift(str, Enum):
    MORNING = "morning"
    EVENING = "evening"


class OrderPriority(str, Enum):
    NORMAL = "normal"
    URGENT = "urgent"


class CancelledBy(str, Enum):
    USER = "user"
    ADMIN = "admin"


OPEN_ORDER_STATUSES = (OrderStatus.PENDING.value, OrderStatus.CONFIRMED.value)


class Order(Base):
    """
    Customer order for one delivery slot (date + shift).
    Line item prices are snapshots taken at checkout.
    """
    __tablename__ = "orders"
    __table_args__ = (
        Index('ix_order_status_created', 'status', 'created_at'),
        Index('ix_order_user_created', 'user_id', 'created_at'),
        Index('ix_order_delivery_boy_status', 'delivery_boy_id', 'status'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    order_number: Mapped[str] = mapped_column(
        String(30),
        unique=True,
        nullable=False,
        index=True
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False
    )

    # Status
    status: Mapped[str] = mapped_column(
        String(20),
        default=OrderStatus.PENDING.value,
        nullable=False,
        index=True,
        comment="pending, confirmed, delivered, cancelled"
    )
    payment_status: Mapped[str] = mapped_column(
        String(20),
        default=PaymentStatus.PENDING.value,
        nullable=False,
        index=True
    )
    payment_method: Mapped[str] = mapped_column(
        String(20),
        default=PaymentMethod.COD.value,
        nullable=False
    )
    priority: Mapped[str] = mapped_column(
        String(20),
        default=OrderPriority.NORMAL.value,
        nullable=False
    )

    # Amounts
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    shipping_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    tax: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    discount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)

    # Shipping address snapshot
    shipping_name: Mapped[str] = mapped_column(String(100), nullable=False)
    shipping_phone: Mapped[str] = mapped_column(String(20), nullable=False)
    shipping_street: Mapped[str] = mapped_column(String(255), nullable=False)
    shipping_city: Mapped[str] = mapped_column(String(100), nullable=False)
    shipping_state: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    shipping_pincode: Mapped[str] = mapped_column(String(10), nullable=False)

    # Delivery slot
    delivery_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    delivery_shift: Mapped[str] = mapped_column(String(20), nullable=False)

    # Dispatch
    delivery_boy_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("delivery_boys.id", ondelete="SET NULL"),
        nullable=True
    )
    assigned_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    sequence: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    delivery_latitude: Mapped[Optional[Decimal]] = mapped_column(Numeric(9, 6), nullable=True)
    delivery_longitude: Mapped[Optional[Decimal]] = mapped_column(Numeric(9, 6), nullable=True)

    # Notes
    customer_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    admin_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    delivery_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Cancellation
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancelled_by: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    # Timestamps
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utc_now,
        onupdate=utc_now,
        nullable=False
    )

    # Relationships
    user: Mapped["User"] = relationship("User", lazy="joined")
    delivery_boy: Mapped[Optional["DeliveryBoy"]] = relationship("DeliveryBoy", lazy="joined")
    items: Mapped[List["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderItem.created_at",
    )

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_ORDER_STATUSES

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def recalculate_totals(self) -> None:
        """total = subtotal + shipping + tax - discount."""
        self.total_amount = (
            Decimal(self.subtotal or 0)
            + Decimal(self.shipping_fee or 0)
            + Decimal(self.tax or 0)
            - Decimal(self.discount or 0)
        )

    def __repr__(self) -> str:
        return f"<Order(number='{self.order_number}', status='{self.status}')>"


@event.listens_for(Order, "before_insert")
@event.listens_for(Order, "before_update")
def _recalculate_order_total(mapper, connection, target: Order) -> None:
    target.recalculate_totals()


class OrderItem(Base):
    """Line item. Name, price and image are frozen at checkout."""
    __tablename__ = "order_items"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False
    )

    product_name: Mapped[str] = mapped_column(String(200), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    line_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now, nullable=False)

    order: Mapped["Order"] = relationship("Order", back_populates="items")

    def __repr__(self) -> str:
        return f"<OrderItem(product='{self.product_name}', qty={self.quantity})>"

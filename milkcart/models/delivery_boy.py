import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Boolean, Integer, Numeric, Text
from sqlalchemy.orm import Mapped, mapped_column

from milkcart.database import Base
from milkcart.db_types import UUIDType, UTCDateTime
from milkcart.core.timeutils import utc_now


class DeliveryBoyShift(str, Enum):
    MORNING = "morning"
    EVENING = "evening"
    BOTH = "both"


class DeliveryBoyStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SUSPENDED = "suspended"


class DeliveryBoy(Base):
    """
    Delivery person account.
    Registers as pending and can only log in once an admin approves it.
    """
    __tablename__ = "delivery_boys"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    phone: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)

    # Vehicle
    vehicle_type: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    vehicle_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    shift: Mapped[str] = mapped_column(
        String(20),
        default=DeliveryBoyShift.MORNING.value,
        nullable=False,
        comment="morning, evening or both"
    )
    status: Mapped[str] = mapped_column(
        String(20),
        default=DeliveryBoyStatus.PENDING.value,
        nullable=False,
        index=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Performance
    total_deliveries: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    rating: Mapped[Decimal] = mapped_column(Numeric(3, 2), default=Decimal("0"), nullable=False)

    # Login protection
    failed_login_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    locked_until: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    approved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utc_now,
        onupdate=utc_now,
        nullable=False
    )

    def is_locked(self, now: datetime) -> bool:
        return self.locked_until is not None and self.locked_until > now

    def can_login(self, now: datetime) -> bool:
        return (
            self.is_active
            and self.status == DeliveryBoyStatus.APPROVED.value
            and not self.is_locked(now)
        )

    @property
    def is_available(self) -> bool:
        """Approved and active, so orders may be routed to this person."""
        return self.is_active and self.status == DeliveryBoyStatus.APPROVED.value

    def works_shift(self, shift: str) -> bool:
        return self.shift == DeliveryBoyShift.BOTH.value or self.shift == shift

    def __repr__(self) -> str:
        return f"<DeliveryBoy(name='{self.name}', status='{self.status}')>"

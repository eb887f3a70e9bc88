import uuid
from dataclasses import dataclass
from datetime import datetime, date
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, Boolean, Date, ForeignKey, Integer, Text, Index, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from milkcart.database import Base
from milkcart.db_types import UUIDType, JSONType, UTCDateTime
from milkcart.core.timeutils import utc_now

if TYPE_CHECKING:
    from milkcart.models.user import User
    from milkcart.models.delivery_boy import DeliveryBoy


class AssignmentType(str, Enum):
    STANDARD = "standard"
    ENTIRE = "entire"          # full reassignment to another delivery person
    DATE_RANGE = "date_range"  # audit record for a one-off move of orders
    TRANSFER = "transfer"      # bulk transfer between delivery persons


class ActorKind(str, Enum):
    """Who performed an admin action: the env-configured admin or an admin user."""
    SYSTEM_ADMIN = "system_admin"
    USER = "user"


@dataclass(frozen=True)
class ActorRef:
    """Tagged reference to whoever performed an admin action."""
    kind: ActorKind
    user_id: Optional[uuid.UUID] = None

    @classmethod
    def system_admin(cls) -> "ActorRef":
        return cls(kind=ActorKind.SYSTEM_ADMIN)

    @classmethod
    def admin_user(cls, user_id: uuid.UUID) -> "ActorRef":
        return cls(kind=ActorKind.USER, user_id=user_id)

    @property
    def label(self) -> str:
        if self.kind == ActorKind.SYSTEM_ADMIN:
            return "system admin"
        return f"admin user {self.user_id}"


class UserDeliveryAssignment(Base):
    """
    Maps a customer to the delivery person who serves them.

    Rows are never deleted; reassignment deactivates the old row. A partial
    unique index keeps at most one active row per user.
    """
    __tablename__ = "user_delivery_assignments"
    __table_args__ = (
        Index(
            "uq_assignment_active_user",
            "user_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
        Index("ix_assignment_delivery_boy_active", "delivery_boy_id", "is_active"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    delivery_boy_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("delivery_boys.id", ondelete="CASCADE"),
        nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    shifts: Mapped[List[str]] = mapped_column(JSONType, default=list, nullable=False)
    areas: Mapped[List[str]] = mapped_column(JSONType, default=list, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    sequence: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    assignment_type: Mapped[str] = mapped_column(
        String(20),
        default=AssignmentType.STANDARD.value,
        nullable=False
    )
    date_from: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    date_to: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # Actor reference
    assigned_by_kind: Mapped[str] = mapped_column(
        String(20),
        default=ActorKind.SYSTEM_ADMIN.value,
        nullable=False
    )
    assigned_by_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )

    deactivated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now, nullable=False)

    user: Mapped["User"] = relationship("User", foreign_keys=[user_id], lazy="joined")
    delivery_boy: Mapped["DeliveryBoy"] = relationship("DeliveryBoy", lazy="joined")

    @property
    def assigned_by(self) -> ActorRef:
        if self.assigned_by_kind == ActorKind.USER.value and self.assigned_by_user_id:
            return ActorRef.admin_user(self.assigned_by_user_id)
        return ActorRef.system_admin()

    def __repr__(self) -> str:
        return f"<UserDeliveryAssignment(user={self.user_id}, delivery_boy={self.delivery_boy_id}, active={self.is_active})>"

"""
Delivery Assignment Manager.

Keeps the customer -> delivery person mapping and keeps open orders
(pending/confirmed) consistent with it. Assignment rows are never
deleted: every change deactivates the current row and, where the
mapping continues, inserts a new one. The database holds at most one
active row per user (partial unique index).
"""
from dataclasses import dataclass, field
from datetime import datetime, date
from typing import List, Optional, Tuple
import uuid
import logging

from sqlalchemy import select, update, func, or_, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from milkcart.core.exceptions import (
    BusinessRuleError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from milkcart.core.timeutils import utc_now, local_day_bounds
from milkcart.models.assignment import (
    UserDeliveryAssignment,
    AssignmentType,
    ActorRef,
    ActorKind,
)
from milkcart.models.delivery_boy import DeliveryBoy
from milkcart.models.order import Order, OPEN_ORDER_STATUSES
from milkcart.models.user import User, UserRole

logger = logging.getLogger(__name__)


DEFAULT_SHIFTS = ["morning", "evening"]


class ReassignmentMode:
    ENTIRE = "entire"
    DATE_RANGE = "date_range"

    @classmethod
    def all(cls) -> List[str]:
        return [cls.ENTIRE, cls.DATE_RANGE]


@dataclass
class UserOrderGroup:
    """One stop on a delivery route: a customer and their orders."""
    user: User
    assignment: Optional[UserDeliveryAssignment]
    orders: List[Order] = field(default_factory=list)


@dataclass
class AssignmentResult:
    assignment: UserDeliveryAssignment
    orders_updated: int


class AssignmentService:
    """Service for user to delivery person assignments."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== LOOKUPS ====================

    async def get_assignment_by_id(self, assignment_id: uuid.UUID) -> Optional[UserDeliveryAssignment]:
        stmt = (
            select(UserDeliveryAssignment)
            .where(UserDeliveryAssignment.id == assignment_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_active_assignment(self, user_id: uuid.UUID) -> Optional[UserDeliveryAssignment]:
        stmt = select(UserDeliveryAssignment).where(
            UserDeliveryAssignment.user_id == user_id,
            UserDeliveryAssignment.is_active == True,  # noqa: E712
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def _get_user(self, user_id: uuid.UUID) -> User:
        user = await self.db.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    async def _get_delivery_boy(self, delivery_boy_id: uuid.UUID, require_available: bool = True) -> DeliveryBoy:
        delivery_boy = await self.db.get(DeliveryBoy, delivery_boy_id)
        if not delivery_boy:
            raise NotFoundError("Delivery boy not found")
        if require_available and not delivery_boy.is_available:
            raise BusinessRuleError("Delivery boy is not active or not approved")
        return delivery_boy

    # ==================== ORDER PROPAGATION ====================

    async def propagate_assignment_to_order(self, order: Order, now: Optional[datetime] = None) -> bool:
        """
        Stamp the customer's delivery person on an unassigned open order.

        Shared by order placement and order confirmation. Returns True when
        the order was assigned.
        """
        if order.delivery_boy_id is not None or not order.is_open:
            return False

        assignment = await self.get_active_assignment(order.user_id)
        if assignment is None or not assignment.delivery_boy.is_available:
            return False

        if assignment.shifts and order.delivery_shift not in assignment.shifts:
            return False

        order.delivery_boy_id = assignment.delivery_boy_id
        order.assigned_at = now or utc_now()
        logger.info(
            f"Order {order.order_number} auto-assigned to delivery boy {assignment.delivery_boy_id}"
        )
        return True

    async def _move_open_orders(
        self,
        user_id: uuid.UUID,
        delivery_boy_id: Optional[uuid.UUID],
        *,
        only_unassigned: bool = False,
        only_from: Optional[uuid.UUID] = None,
        shifts: Optional[List[str]] = None,
        created_between: Optional[Tuple[datetime, datetime]] = None,
    ) -> int:
        """Point the user's open orders at ``delivery_boy_id`` (None to unassign)."""
        filters = [
            Order.user_id == user_id,
            Order.status.in_(OPEN_ORDER_STATUSES),
        ]
        if only_unassigned:
            filters.append(Order.delivery_boy_id.is_(None))
        if only_from is not None:
            filters.append(Order.delivery_boy_id == only_from)
        if shifts:
            filters.append(Order.delivery_shift.in_(shifts))
        if created_between is not None:
            start, end = created_between
            filters.append(Order.created_at >= start)
            filters.append(Order.created_at < end)

        stmt = (
            update(Order)
            .where(and_(*filters))
            .values(
                delivery_boy_id=delivery_boy_id,
                assigned_at=utc_now() if delivery_boy_id else None,
                sequence=None,
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount or 0

    # ==================== ASSIGN / REASSIGN / REMOVE ====================

    async def _deactivate(self, assignment: UserDeliveryAssignment) -> None:
        assignment.is_active = False
        assignment.deactivated_at = utc_now()
        # Flush before inserting a replacement so the unique active index holds
        await self.db.flush()

    def _new_assignment(
        self,
        user_id: uuid.UUID,
        delivery_boy_id: uuid.UUID,
        actor: ActorRef,
        *,
        assignment_type: AssignmentType = AssignmentType.STANDARD,
        shifts: Optional[List[str]] = None,
        areas: Optional[List[str]] = None,
        notes: Optional[str] = None,
        is_active: bool = True,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> UserDeliveryAssignment:
        assignment = UserDeliveryAssignment(
            user_id=user_id,
            delivery_boy_id=delivery_boy_id,
            is_active=is_active,
            shifts=list(shifts) if shifts else list(DEFAULT_SHIFTS),
            areas=list(areas or []),
            notes=notes,
            assignment_type=assignment_type.value,
            date_from=date_from,
            date_to=date_to,
            assigned_by_kind=actor.kind.value,
            assigned_by_user_id=actor.user_id if actor.kind == ActorKind.USER else None,
        )
        if not is_active:
            assignment.deactivated_at = utc_now()
        self.db.add(assignment)
        return assignment

    async def _flush_new_assignment(self) -> None:
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError("User already has an active delivery assignment")

    async def _commit_assignment(self) -> None:
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError("User already has an active delivery assignment")

    async def assign_user(
        self,
        user_id: uuid.UUID,
        delivery_boy_id: uuid.UUID,
        actor: ActorRef,
        shifts: Optional[List[str]] = None,
        areas: Optional[List[str]] = None,
        notes: Optional[str] = None,
    ) -> AssignmentResult:
        """
        Assign a customer to a delivery person.

        Any current assignment is deactivated first. Unassigned open orders
        of the customer are handed to the new delivery person immediately.
        """
        await self._get_user(user_id)
        await self._get_delivery_boy(delivery_boy_id)

        existing = await self.get_active_assignment(user_id)
        if existing is not None:
            await self._deactivate(existing)

        assignment = self._new_assignment(
            user_id, delivery_boy_id, actor, shifts=shifts, areas=areas, notes=notes or ""
        )
        await self._flush_new_assignment()

        orders_updated = await self._move_open_orders(
            user_id,
            delivery_boy_id,
            only_unassigned=True,
            shifts=assignment.shifts,
        )
        await self._commit_assignment()

        logger.info(
            f"User {user_id} assigned to delivery boy {delivery_boy_id} by {actor.label}; "
            f"{orders_updated} open orders assigned"
        )
        return AssignmentResult(await self.get_assignment_by_id(assignment.id), orders_updated)

    async def reassign_user(
        self,
        user_id: uuid.UUID,
        new_delivery_boy_id: uuid.UUID,
        actor: ActorRef,
        mode: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        notes: Optional[str] = None,
    ) -> AssignmentResult:
        """
        Move a customer to another delivery person.

        ``entire`` replaces the standing assignment and moves every open
        order. ``date_range`` leaves the standing assignment alone, moves
        only open orders created between the two local dates (inclusive)
        and records an inactive assignment row for the audit trail.
        """
        if mode not in ReassignmentMode.all():
            raise ValidationError("Reassignment type must be 'entire' or 'date_range'")

        if mode == ReassignmentMode.DATE_RANGE:
            if date_from is None or date_to is None:
                raise ValidationError("Start date and end date are required for date range reassignment")
            if date_from > date_to:
                raise ValidationError("Start date must not be after end date")

        await self._get_user(user_id)
        await self._get_delivery_boy(new_delivery_boy_id)

        existing = await self.get_active_assignment(user_id)
        if existing is None:
            raise NotFoundError("User has no active assignment to reassign")

        if mode == ReassignmentMode.ENTIRE:
            if existing.delivery_boy_id == new_delivery_boy_id:
                raise BusinessRuleError("User is already assigned to this delivery boy")

            previous_delivery_boy_id = existing.delivery_boy_id
            shifts, areas = existing.shifts, existing.areas
            await self._deactivate(existing)
            assignment = self._new_assignment(
                user_id,
                new_delivery_boy_id,
                actor,
                assignment_type=AssignmentType.ENTIRE,
                shifts=shifts,
                areas=areas,
                notes=notes or f"Reassigned from {previous_delivery_boy_id}",
            )
            await self._flush_new_assignment()
            orders_updated = await self._move_open_orders(user_id, new_delivery_boy_id)
        else:
            start, _ = local_day_bounds(date_from)
            _, end = local_day_bounds(date_to)
            assignment = self._new_assignment(
                user_id,
                new_delivery_boy_id,
                actor,
                assignment_type=AssignmentType.DATE_RANGE,
                shifts=existing.shifts,
                areas=existing.areas,
                notes=f"Temporary reassignment from {date_from} to {date_to}. {notes or ''}".strip(),
                is_active=False,
                date_from=date_from,
                date_to=date_to,
            )
            await self._flush_new_assignment()
            orders_updated = await self._move_open_orders(
                user_id, new_delivery_boy_id, created_between=(start, end)
            )

        await self._commit_assignment()
        logger.info(
            f"User {user_id} reassigned ({mode}) to delivery boy {new_delivery_boy_id} by {actor.label}; "
            f"{orders_updated} orders moved"
        )
        return AssignmentResult(await self.get_assignment_by_id(assignment.id), orders_updated)

    async def remove_assignment(self, assignment_id: uuid.UUID) -> int:
        """Deactivate an assignment and return the user's open orders to the unassigned pool."""
        assignment = await self.get_assignment_by_id(assignment_id)
        if not assignment:
            raise NotFoundError("Assignment not found")
        if not assignment.is_active:
            raise BusinessRuleError("Assignment is already inactive")

        await self._deactivate(assignment)
        orders_updated = await self._move_open_orders(
            assignment.user_id, None, only_from=assignment.delivery_boy_id
        )
        await self.db.commit()

        logger.info(f"Assignment {assignment_id} removed; {orders_updated} orders unassigned")
        return orders_updated

    async def bulk_transfer(
        self,
        from_delivery_boy_id: uuid.UUID,
        to_delivery_boy_id: uuid.UUID,
        actor: ActorRef,
        notes: Optional[str] = None,
    ) -> Tuple[int, int]:
        """
        Move every customer of one delivery person to another.

        Returns (users transferred, orders updated).
        """
        if from_delivery_boy_id == to_delivery_boy_id:
            raise ValidationError("Source and destination delivery boy must be different")

        await self._get_delivery_boy(from_delivery_boy_id, require_available=False)
        try:
            await self._get_delivery_boy(to_delivery_boy_id)
        except BusinessRuleError:
            raise BusinessRuleError("Destination delivery boy is not active or not approved")

        result = await self.db.execute(
            select(UserDeliveryAssignment).where(
                UserDeliveryAssignment.delivery_boy_id == from_delivery_boy_id,
                UserDeliveryAssignment.is_active == True,  # noqa: E712
            )
        )
        assignments = list(result.scalars().all())
        if not assignments:
            raise BusinessRuleError("No users assigned to the source delivery boy")

        orders_updated = 0
        for old in assignments:
            await self._deactivate(old)
            self._new_assignment(
                old.user_id,
                to_delivery_boy_id,
                actor,
                assignment_type=AssignmentType.TRANSFER,
                shifts=old.shifts,
                areas=old.areas,
                notes=notes or f"Bulk transferred from delivery boy {from_delivery_boy_id} to {to_delivery_boy_id}",
            )
            await self._flush_new_assignment()
            orders_updated += await self._move_open_orders(old.user_id, to_delivery_boy_id)

        await self._commit_assignment()
        logger.info(
            f"Transferred {len(assignments)} users and {orders_updated} orders "
            f"from delivery boy {from_delivery_boy_id} to {to_delivery_boy_id}"
        )
        return len(assignments), orders_updated

    # ==================== SEQUENCING ====================

    async def update_user_sequence(self, delivery_boy_id: uuid.UUID, assignment_ids: List[uuid.UUID]) -> int:
        """Route order of a delivery person's customers: position i gets sequence i + 1."""
        await self._get_delivery_boy(delivery_boy_id, require_available=False)
        updated = 0
        for position, assignment_id in enumerate(assignment_ids, start=1):
            result = await self.db.execute(
                update(UserDeliveryAssignment)
                .where(
                    UserDeliveryAssignment.id == assignment_id,
                    UserDeliveryAssignment.delivery_boy_id == delivery_boy_id,
                    UserDeliveryAssignment.is_active == True,  # noqa: E712
                )
                .values(sequence=position)
                .execution_options(synchronize_session=False)
            )
            updated += result.rowcount or 0
        await self.db.commit()
        return updated

    async def update_order_sequence(
        self,
        delivery_boy_id: uuid.UUID,
        order_ids: List[uuid.UUID],
        user_id: Optional[uuid.UUID] = None,
    ) -> int:
        """Order of deliveries inside each customer's group: position i gets sequence i + 1."""
        await self._get_delivery_boy(delivery_boy_id, require_available=False)
        filters = [Order.delivery_boy_id == delivery_boy_id]
        if user_id:
            filters.append(Order.user_id == user_id)

        updated = 0
        for position, order_id in enumerate(order_ids, start=1):
            result = await self.db.execute(
                update(Order)
                .where(Order.id == order_id, *filters)
                .values(sequence=position)
                .execution_options(synchronize_session=False)
            )
            updated += result.rowcount or 0
        await self.db.commit()
        return updated

    # ==================== READS ====================

    async def list_assignments(
        self,
        is_active: Optional[bool] = True,
        delivery_boy_id: Optional[uuid.UUID] = None,
        search: Optional[str] = None,
        page: int = 1,
        size: int = 20,
    ) -> Tuple[List[UserDeliveryAssignment], int]:
        filters = []
        if is_active is not None:
            filters.append(UserDeliveryAssignment.is_active == is_active)
        if delivery_boy_id:
            filters.append(UserDeliveryAssignment.delivery_boy_id == delivery_boy_id)
        if search:
            pattern = f"%{search.strip()}%"
            filters.append(
                or_(
                    UserDeliveryAssignment.user_id.in_(
                        select(User.id).where(or_(User.name.ilike(pattern), User.phone.ilike(pattern)))
                    ),
                    UserDeliveryAssignment.delivery_boy_id.in_(
                        select(DeliveryBoy.id).where(
                            or_(DeliveryBoy.name.ilike(pattern), DeliveryBoy.phone.ilike(pattern))
                        )
                    ),
                )
            )

        count_stmt = select(func.count(UserDeliveryAssignment.id))
        stmt = select(UserDeliveryAssignment)
        if filters:
            count_stmt = count_stmt.where(and_(*filters))
            stmt = stmt.where(and_(*filters))

        total = (await self.db.execute(count_stmt)).scalar() or 0
        stmt = (
            stmt.order_by(UserDeliveryAssignment.created_at.desc())
            .offset((page - 1) * size)
            .limit(size)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all()), total

    async def count_open_orders(self, user_ids: List[uuid.UUID]) -> dict:
        if not user_ids:
            return {}
        stmt = (
            select(Order.user_id, func.count(Order.id))
            .where(Order.user_id.in_(user_ids), Order.status.in_(OPEN_ORDER_STATUSES))
            .group_by(Order.user_id)
        )
        result = await self.db.execute(stmt)
        return {user_id: count for user_id, count in result.all()}

    async def get_user_assignment_history(self, user_id: uuid.UUID) -> List[UserDeliveryAssignment]:
        await self._get_user(user_id)
        stmt = (
            select(UserDeliveryAssignment)
            .where(UserDeliveryAssignment.user_id == user_id)
            .order_by(UserDeliveryAssignment.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_unassigned_users(
        self,
        search: Optional[str] = None,
        has_orders: bool = False,
        page: int = 1,
        size: int = 20,
    ) -> Tuple[List[User], int]:
        """Customers without an active assignment, optionally only those with open orders."""
        assigned = select(UserDeliveryAssignment.user_id).where(
            UserDeliveryAssignment.is_active == True  # noqa: E712
        )
        filters = [
            User.id.not_in(assigned),
            User.role == UserRole.USER.value,
        ]
        if search:
            pattern = f"%{search.strip()}%"
            filters.append(or_(User.name.ilike(pattern), User.phone.ilike(pattern), User.email.ilike(pattern)))
        if has_orders:
            filters.append(
                User.id.in_(select(Order.user_id).where(Order.status.in_(OPEN_ORDER_STATUSES)))
            )

        total = (await self.db.execute(select(func.count(User.id)).where(*filters))).scalar() or 0
        stmt = (
            select(User)
            .where(*filters)
            .order_by(User.created_at.desc())
            .offset((page - 1) * size)
            .limit(size)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all()), total

    async def get_delivery_boy_users(self, delivery_boy_id: uuid.UUID) -> List[UserDeliveryAssignment]:
        """Active assignments of a delivery person in route order."""
        await self._get_delivery_boy(delivery_boy_id, require_available=False)
        stmt = (
            select(UserDeliveryAssignment)
            .where(
                UserDeliveryAssignment.delivery_boy_id == delivery_boy_id,
                UserDeliveryAssignment.is_active == True,  # noqa: E712
            )
            .order_by(
                UserDeliveryAssignment.sequence.is_(None),
                UserDeliveryAssignment.sequence.asc(),
                UserDeliveryAssignment.created_at.asc(),
            )
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_delivery_boy_orders(self, delivery_boy_id: uuid.UUID) -> List[Order]:
        """Every order routed to a delivery person, in delivery sequence."""
        await self._get_delivery_boy(delivery_boy_id, require_available=False)
        stmt = (
            select(Order)
            .where(Order.delivery_boy_id == delivery_boy_id)
            .order_by(Order.sequence.is_(None), Order.sequence.asc(), Order.created_at.asc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_work_queue(
        self,
        delivery_boy_id: uuid.UUID,
        status: Optional[str] = None,
        delivery_date: Optional[date] = None,
    ) -> List[UserOrderGroup]:
        """
        A delivery person's orders grouped by customer.

        Groups follow the customer sequence (then assignment time); orders
        inside a group follow the order sequence (then creation time).
        Sequenced entries come before unsequenced ones. Orders routed to
        this person for customers assigned elsewhere are appended last.
        """
        assignments = await self.get_delivery_boy_users(delivery_boy_id)

        filters = [Order.delivery_boy_id == delivery_boy_id]
        if status and status != "all":
            filters.append(Order.status == status)
        else:
            filters.append(Order.status.in_(OPEN_ORDER_STATUSES))
        if delivery_date:
            filters.append(Order.delivery_date == delivery_date)

        stmt = (
            select(Order)
            .where(*filters)
            .order_by(Order.sequence.is_(None), Order.sequence.asc(), Order.created_at.asc())
        )
        orders = list((await self.db.execute(stmt)).scalars().all())

        by_user: dict = {}
        for order in orders:
            by_user.setdefault(order.user_id, []).append(order)

        groups: List[UserOrderGroup] = []
        for assignment in assignments:
            groups.append(
                UserOrderGroup(
                    user=assignment.user,
                    assignment=assignment,
                    orders=by_user.pop(assignment.user_id, []),
                )
            )

        # dict keeps first-seen order, i.e. earliest sequenced order first
        for user_orders in by_user.values():
            groups.append(UserOrderGroup(user=user_orders[0].user, assignment=None, orders=user_orders))

        return groups
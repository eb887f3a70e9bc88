"""
Milk subscriptions.

A customer buys a plan (milk type, daily volume, number of days) and pays
for it up front through a UPI payment session. Once the admin verifies the
payment the subscription is active and one delivery a day is due from the
start date. Customers can pause, resume, skip a day, or cancel; cancelling
raises a refund request for the unused days, which the admin approves,
processes and completes.

    pending ──► processing ──► active ◄──► paused
       ▲            │            │  │         │
       └────────────┘            │  └──► cancellation_requested ──► cancelled
                                 ▼
                       completed / expired
"""
from datetime import datetime, date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, NamedTuple, Optional, Tuple
import logging
import time
import uuid

from sqlalchemy import select, update, func, or_, and_
from sqlalchemy.ext.asyncio import AsyncSession

from milkcart.config import settings
from milkcart.core.exceptions import BusinessRuleError, ConflictError, NotFoundError, ValidationError
from milkcart.core.timeutils import local_today
from milkcart.models.assignment import ActorRef, ActorKind
from milkcart.models.order import DeliveryShift, PaymentStatus
from milkcart.models.subscription import (
    CUSTOMER_ACTOR,
    SYSTEM_ACTOR,
    MilkType,
    RefundRequest,
    RefundStatus,
    SubscriptionAction,
    SubscriptionEvent,
    SubscriptionPlan,
    SubscriptionStatus,
    UserSubscription,
)
from milkcart.models.user import User
from milkcart.schemas.subscription import (
    RefundStatusUpdate,
    SubscriptionCancelRequest,
    SubscriptionCreate,
    SubscriptionPlanCreate,
    SubscriptionPlanUpdate,
)
from milkcart.services import delivery_scheduling

logger = logging.getLogger(__name__)


# =============================================================================
# TRANSITION RULES
# =============================================================================

SUBSCRIPTION_TRANSITIONS: Dict[str, List[str]] = {
    SubscriptionStatus.PENDING.value: [
        SubscriptionStatus.PROCESSING.value,
    ],
    SubscriptionStatus.PROCESSING.value: [
        SubscriptionStatus.ACTIVE.value,
        SubscriptionStatus.PENDING.value,      # payment rejected
    ],
    SubscriptionStatus.ACTIVE.value: [
        SubscriptionStatus.PAUSED.value,
        SubscriptionStatus.CANCELLATION_REQUESTED.value,
        SubscriptionStatus.COMPLETED.value,
        SubscriptionStatus.EXPIRED.value,
    ],
    SubscriptionStatus.PAUSED.value: [
        SubscriptionStatus.ACTIVE.value,
        SubscriptionStatus.CANCELLATION_REQUESTED.value,
        SubscriptionStatus.EXPIRED.value,
    ],
    SubscriptionStatus.CANCELLATION_REQUESTED.value: [
        SubscriptionStatus.CANCELLED.value,
        SubscriptionStatus.ACTIVE.value,       # refund rejected
        SubscriptionStatus.PAUSED.value,       # refund rejected
    ],
    SubscriptionStatus.CANCELLED.value: [],    # Terminal
    SubscriptionStatus.COMPLETED.value: [],    # Terminal
    SubscriptionStatus.EXPIRED.value: [],      # Terminal
}

REFUND_TRANSITIONS: Dict[str, List[str]] = {
    RefundStatus.PENDING.value: [RefundStatus.APPROVED.value, RefundStatus.REJECTED.value],
    RefundStatus.APPROVED.value: [RefundStatus.PROCESSED.value],
    RefundStatus.PROCESSED.value: [RefundStatus.COMPLETED.value],
    RefundStatus.REJECTED.value: [],
    RefundStatus.COMPLETED.value: [],
}

CANCELLABLE_STATUSES = (SubscriptionStatus.ACTIVE.value, SubscriptionStatus.PAUSED.value)
REFUNDED_STATUSES = (RefundStatus.PROCESSED.value, RefundStatus.COMPLETED.value)


class RefundQuote(NamedTuple):
    days_used: int
    days_remaining: int
    refund_amount: Decimal


def generate_subscription_number() -> str:
    """SUB-<epoch millis>-<8 hex chars>"""
    return f"SUB-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8].upper()}"


def calculate_refund(amount: Decimal, start_date: date, total_days: int, today: date) -> RefundQuote:
    """
    Pro-rate ``amount`` over the subscription's days. Today counts as used
    once the subscription has started.
    """
    if today < start_date:
        days_used = 0
    else:
        days_used = min(total_days, (today - start_date).days + 1)
    days_remaining = total_days - days_used
    refund = (Decimal(amount) * days_remaining / total_days).quantize(
        Decimal("0.01"), rounding=ROUND_HALF_UP
    )
    return RefundQuote(days_used, days_remaining, refund)


def can_transition(current_status: str, new_status: str) -> bool:
    return new_status in SUBSCRIPTION_TRANSITIONS.get(current_status, [])


class SubscriptionService:
    """Plans, customer subscriptions, daily deliveries and cancellation refunds."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== PLANS ====================

    async def list_plans(
        self,
        include_inactive: bool = False,
        milk_type: Optional[str] = None,
    ) -> List[SubscriptionPlan]:
        stmt = select(SubscriptionPlan)
        if not include_inactive:
            stmt = stmt.where(SubscriptionPlan.is_active.is_(True))
        if milk_type:
            stmt = stmt.where(SubscriptionPlan.milk_type == milk_type)
        stmt = stmt.order_by(
            SubscriptionPlan.milk_type,
            SubscriptionPlan.volume,
            SubscriptionPlan.duration_days,
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_plan(self, plan_id: uuid.UUID) -> SubscriptionPlan:
        plan = await self.db.get(SubscriptionPlan, plan_id, populate_existing=True)
        if not plan:
            raise NotFoundError("Subscription plan not found")
        return plan

    async def _check_unique_variant(
        self,
        milk_type: str,
        volume: str,
        duration_days: int,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> None:
        stmt = select(SubscriptionPlan.id).where(
            SubscriptionPlan.milk_type == milk_type,
            SubscriptionPlan.volume == volume,
            SubscriptionPlan.duration_days == duration_days,
        )
        if exclude_id is not None:
            stmt = stmt.where(SubscriptionPlan.id != exclude_id)
        if (await self.db.execute(stmt)).first() is not None:
            raise ConflictError(
                f"A {milk_type} {volume} plan for {duration_days} days already exists"
            )

    async def create_plan(self, data: SubscriptionPlanCreate) -> SubscriptionPlan:
        await self._check_unique_variant(data.milk_type.value, data.volume.value, data.duration_days)

        plan = SubscriptionPlan(
            **data.model_dump(exclude={"milk_type", "volume"}),
            milk_type=data.milk_type.value,
            volume=data.volume.value,
            daily_price=SubscriptionPlan.compute_daily_price(data.price, data.duration_days),
        )
        self.db.add(plan)
        await self.db.commit()

        logger.info(f"Subscription plan created: {plan.name}")
        return await self.get_plan(plan.id)

    async def update_plan(self, plan_id: uuid.UUID, data: SubscriptionPlanUpdate) -> SubscriptionPlan:
        """Partial update. Price or duration changes recompute the daily price."""
        plan = await self.get_plan(plan_id)
        changes = data.model_dump(exclude_unset=True)
        for key in ("milk_type", "volume"):
            if changes.get(key) is not None:
                changes[key] = changes[key].value

        milk_type = changes.get("milk_type") or plan.milk_type
        volume = changes.get("volume") or plan.volume
        duration_days = changes.get("duration_days") or plan.duration_days
        if (milk_type, volume, duration_days) != (plan.milk_type, plan.volume, plan.duration_days):
            await self._check_unique_variant(milk_type, volume, duration_days, exclude_id=plan.id)

        for key, value in changes.items():
            if value is not None or key in ("description", "original_price"):
                setattr(plan, key, value)

        if "price" in changes or "duration_days" in changes:
            plan.daily_price = SubscriptionPlan.compute_daily_price(plan.price, plan.duration_days)

        await self.db.commit()
        return await self.get_plan(plan_id)

    async def delete_plan(self, plan_id: uuid.UUID) -> bool:
        """
        Remove a plan. A plan with running subscriptions is kept; one with only
        finished subscriptions is deactivated. Returns True if the row was deleted.
        """
        plan = await self.get_plan(plan_id)

        running = (await self.db.execute(
            select(func.count(UserSubscription.id)).where(
                UserSubscription.plan_id == plan_id,
                UserSubscription.status.in_(CANCELLABLE_STATUSES),
            )
        )).scalar() or 0
        if running:
            raise BusinessRuleError(
                f"Cannot delete plan with {running} active or paused subscriptions",
                details={"active_subscriptions": running},
            )

        used = (await self.db.execute(
            select(func.count(UserSubscription.id)).where(UserSubscription.plan_id == plan_id)
        )).scalar() or 0
        if used:
            plan.is_active = False
            await self.db.commit()
            logger.info(f"Subscription plan {plan.name} deactivated, {used} past subscriptions keep it")
            return False

        await self.db.delete(plan)
        await self.db.commit()
        logger.info(f"Subscription plan {plan.name} deleted")
        return True

    # ==================== QUERIES ====================

    async def get_subscription(self, subscription_id: uuid.UUID) -> UserSubscription:
        stmt = (
            select(UserSubscription)
            .where(UserSubscription.id == subscription_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        subscription = result.unique().scalar_one_or_none()
        if not subscription:
            raise NotFoundError("Subscription not found")
        return subscription

    async def get_user_subscription(self, user: User, subscription_id: uuid.UUID) -> UserSubscription:
        subscription = await self.get_subscription(subscription_id)
        if subscription.user_id != user.id:
            raise NotFoundError("Subscription not found")
        return subscription

    async def list_user_subscriptions(
        self,
        user: User,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 10,
    ) -> Tuple[List[UserSubscription], int]:
        filters = [UserSubscription.user_id == user.id]
        if status and status != "all":
            filters.append(UserSubscription.status == status)
        return await self._paginate(filters, skip, limit)

    async def list_subscriptions(
        self,
        status: Optional[str] = None,
        milk_type: Optional[str] = None,
        search: Optional[str] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[UserSubscription], int]:
        """Admin list. Search covers the subscription number and customer name, email or phone."""
        filters = []
        if status and status != "all":
            filters.append(UserSubscription.status == status)
        if milk_type:
            filters.append(
                UserSubscription.plan_id.in_(
                    select(SubscriptionPlan.id).where(SubscriptionPlan.milk_type == milk_type)
                )
            )
        if search:
            pattern = f"%{search.strip()}%"
            filters.append(
                or_(
                    UserSubscription.subscription_number.ilike(pattern),
                    UserSubscription.user_id.in_(
                        select(User.id).where(
                            or_(User.name.ilike(pattern), User.email.ilike(pattern), User.phone.ilike(pattern))
                        )
                    ),
                )
            )
        return await self._paginate(filters, skip, limit)

    async def _paginate(self, filters, skip: int, limit: int) -> Tuple[List[UserSubscription], int]:
        count_stmt = select(func.count(UserSubscription.id))
        stmt = select(UserSubscription)
        if filters:
            count_stmt = count_stmt.where(and_(*filters))
            stmt = stmt.where(and_(*filters))

        total = (await self.db.execute(count_stmt)).scalar() or 0
        stmt = stmt.order_by(UserSubscription.created_at.desc()).offset(skip).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.unique().scalars().all()), total

    async def get_deliveries_due(self, now: datetime) -> List[UserSubscription]:
        """Active subscriptions with a delivery scheduled for the current local day."""
        stmt = (
            select(UserSubscription)
            .where(
                UserSubscription.status == SubscriptionStatus.ACTIVE.value,
                UserSubscription.next_delivery_date == local_today(now),
            )
            .order_by(UserSubscription.delivery_shift.desc(), UserSubscription.shipping_pincode)
        )
        result = await self.db.execute(stmt)
        return list(result.unique().scalars().all())

    async def get_pending_approvals(self) -> List[UserSubscription]:
        """Subscriptions whose payment was reported and awaits admin verification."""
        stmt = (
            select(UserSubscription)
            .where(UserSubscription.status == SubscriptionStatus.PROCESSING.value)
            .order_by(UserSubscription.payment_reported_at)
        )
        result = await self.db.execute(stmt)
        return list(result.unique().scalars().all())

    # ==================== STATE CHANGES ====================

    def _log(
        self,
        subscription: UserSubscription,
        action: SubscriptionAction,
        performed_by: str,
        user_id: Optional[uuid.UUID] = None,
        reason: Optional[str] = None,
    ) -> None:
        subscription.events.append(
            SubscriptionEvent(
                action=action.value,
                reason=reason,
                performed_by_kind=performed_by,
                performed_by_user_id=user_id,
            )
        )

    def _log_admin(
        self,
        subscription: UserSubscription,
        action: SubscriptionAction,
        actor: ActorRef,
        reason: Optional[str] = None,
    ) -> None:
        user_id = actor.user_id if actor.kind == ActorKind.USER else None
        self._log(subscription, action, actor.kind.value, user_id, reason)

    async def _compare_and_set(
        self,
        subscription: UserSubscription,
        new_status: Optional[str] = None,
        **values,
    ) -> None:
        """
        Apply a change in one conditional UPDATE guarded on the status and
        delivery counters read earlier. Losing a race raises ConflictError.
        """
        expected = subscription.status
        if new_status is not None and new_status != expected:
            if not can_transition(expected, new_status):
                raise BusinessRuleError(
                    f"Cannot change subscription from '{expected}' to '{new_status}'"
                )
            values["status"] = new_status

        result = await self.db.execute(
            update(UserSubscription)
            .where(
                UserSubscription.id == subscription.id,
                UserSubscription.status == expected,
                UserSubscription.completed_deliveries == subscription.completed_deliveries,
                UserSubscription.skipped_deliveries == subscription.skipped_deliveries,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise ConflictError("Subscription was updated by another request, please reload and retry")

        for key, value in values.items():
            setattr(subscription, key, value)

    async def _consume_delivery(self, subscription: UserSubscription, counter: str) -> bool:
        """Count one delivery as done or skipped and move to the next day. True when none remain."""
        if subscription.remaining_deliveries <= 0:
            raise BusinessRuleError("No deliveries remaining on this subscription")

        values = {counter: getattr(subscription, counter) + 1}
        finished = subscription.remaining_deliveries == 1
        if finished:
            await self._compare_and_set(
                subscription,
                SubscriptionStatus.COMPLETED.value,
                next_delivery_date=None,
                **values,
            )
        else:
            next_date = subscription.next_delivery_date + timedelta(days=1)
            await self._compare_and_set(subscription, next_delivery_date=next_date, **values)
        return finished

    # ==================== CUSTOMER OPERATIONS ====================

    async def subscribe(self, user: User, data: SubscriptionCreate, now: datetime) -> UserSubscription:
        """Create a pending subscription; it activates once its payment is verified."""
        plan = await self.get_plan(data.plan_id)
        if not plan.is_active:
            raise BusinessRuleError("Subscription plan is not available")

        shift = data.delivery_shift
        if not delivery_scheduling.is_valid_shift(shift):
            raise ValidationError(delivery_scheduling.INVALID_SHIFT_REASON)
        if shift == DeliveryShift.EVENING.value and not delivery_scheduling.is_evening_enabled():
            raise BusinessRuleError(delivery_scheduling.EVENING_DISABLED_REASON)

        today = local_today(now)
        start_date = data.start_date or today + timedelta(days=1)
        if start_date <= today:
            raise ValidationError("Subscriptions can start from tomorrow at the earliest")
        latest = today + timedelta(days=settings.SUBSCRIPTION_START_WINDOW_DAYS)
        if start_date > latest:
            raise ValidationError(
                f"Start date must be within {settings.SUBSCRIPTION_START_WINDOW_DAYS} days"
            )

        address = data.shipping_address
        subscription = UserSubscription(
            subscription_number=generate_subscription_number(),
            user_id=user.id,
            plan_id=plan.id,
            status=SubscriptionStatus.PENDING.value,
            payment_status=PaymentStatus.PENDING.value,
            start_date=start_date,
            end_date=start_date + timedelta(days=plan.duration_days - 1),
            next_delivery_date=start_date,
            delivery_shift=shift,
            total_deliveries=plan.duration_days,
            completed_deliveries=0,
            skipped_deliveries=0,
            shipping_name=address.name,
            shipping_phone=address.phone,
            shipping_street=address.street,
            shipping_city=address.city,
            shipping_state=address.state,
            shipping_pincode=address.pincode,
            delivery_instructions=data.delivery_instructions,
            amount=plan.final_price,
            discount_percent=plan.discount_percent,
            events=[],
        )
        self._log(
            subscription,
            SubscriptionAction.CREATED,
            CUSTOMER_ACTOR,
            user.id,
            f"Subscribed to {plan.name}",
        )
        self.db.add(subscription)
        await self.db.commit()

        logger.info(
            f"Subscription {subscription.subscription_number} created by {user.email}: "
            f"{plan.name}, amount {subscription.amount}"
        )
        return await self.get_subscription(subscription.id)

    async def pause(
        self,
        user: User,
        subscription_id: uuid.UUID,
        reason: Optional[str],
        now: datetime,
    ) -> UserSubscription:
        subscription = await self.get_user_subscription(user, subscription_id)
        if subscription.status != SubscriptionStatus.ACTIVE.value:
            raise BusinessRuleError("Only active subscriptions can be paused")

        await self._compare_and_set(subscription, SubscriptionStatus.PAUSED.value)
        self._log(subscription, SubscriptionAction.PAUSED, CUSTOMER_ACTOR, user.id, reason or "Paused by customer")
        await self.db.commit()

        logger.info(f"Subscription {subscription.subscription_number} paused by {user.email}")
        return await self.get_subscription(subscription_id)

    async def resume(self, user: User, subscription_id: uuid.UUID, now: datetime) -> UserSubscription:
        """Paused days are not delivered; the next delivery is no earlier than tomorrow."""
        subscription = await self.get_user_subscription(user, subscription_id)
        if subscription.status != SubscriptionStatus.PAUSED.value:
            raise BusinessRuleError("Only paused subscriptions can be resumed")

        tomorrow = local_today(now) + timedelta(days=1)
        next_date = subscription.next_delivery_date
        if next_date is not None and next_date < tomorrow:
            next_date = tomorrow

        await self._compare_and_set(subscription, SubscriptionStatus.ACTIVE.value, next_delivery_date=next_date)
        self._log(subscription, SubscriptionAction.RESUMED, CUSTOMER_ACTOR, user.id, "Resumed by customer")
        await self.db.commit()

        logger.info(f"Subscription {subscription.subscription_number} resumed by {user.email}")
        return await self.get_subscription(subscription_id)

    async def skip_delivery(
        self,
        user: User,
        subscription_id: uuid.UUID,
        reason: Optional[str],
        now: datetime,
    ) -> UserSubscription:
        """
        Skip the next delivery. It still counts against the plan. Tomorrow's
        delivery follows the same evening cutoff as cancelling an order.
        """
        subscription = await self.get_user_subscription(user, subscription_id)
        if subscription.status != SubscriptionStatus.ACTIVE.value:
            raise BusinessRuleError("Only active subscriptions can skip deliveries")

        today = local_today(now)
        next_date = subscription.next_delivery_date
        if next_date is None or next_date <= today:
            raise BusinessRuleError("Today's delivery can no longer be skipped")
        if next_date == today + timedelta(days=1) and not delivery_scheduling.can_cancel_now(
            subscription.delivery_shift, now
        ):
            cutoff = delivery_scheduling.get_cancellation_cutoff_hour(subscription.delivery_shift)
            raise BusinessRuleError(f"Tomorrow's delivery cannot be skipped after {cutoff:02d}:00")

        skipped = next_date
        finished = await self._consume_delivery(subscription, "skipped_deliveries")
        self._log(
            subscription,
            SubscriptionAction.DELIVERY_SKIPPED,
            CUSTOMER_ACTOR,
            user.id,
            reason or f"Skipped delivery of {skipped.isoformat()}",
        )
        if finished:
            self._log(subscription, SubscriptionAction.COMPLETED, SYSTEM_ACTOR)
        await self.db.commit()

        logger.info(f"Subscription {subscription.subscription_number}: delivery of {skipped} skipped")
        return await self.get_subscription(subscription_id)

    async def cancel(
        self,
        user: User,
        subscription_id: uuid.UUID,
        data: SubscriptionCancelRequest,
        now: datetime,
    ) -> Tuple[UserSubscription, RefundRequest]:
        """
        Request cancellation. Deliveries stop at once and a refund request
        for the unused days waits for the admin.
        """
        subscription = await self.get_user_subscription(user, subscription_id)
        if subscription.status not in CANCELLABLE_STATUSES:
            raise BusinessRuleError("Only active or paused subscriptions can be cancelled")

        quote = calculate_refund(
            subscription.amount,
            subscription.start_date,
            subscription.total_deliveries,
            local_today(now),
        )
        previous_status = subscription.status

        await self._compare_and_set(subscription, SubscriptionStatus.CANCELLATION_REQUESTED.value)
        refund = RefundRequest(
            user_subscription_id=subscription.id,
            user_id=user.id,
            original_amount=subscription.amount,
            refund_amount=quote.refund_amount,
            days_used=quote.days_used,
            days_remaining=quote.days_remaining,
            cancellation_reason=data.reason,
            previous_subscription_status=previous_status,
            refund_method=data.refund_method.value,
            mobile_number=data.mobile_number,
            upi_id=data.upi_id,
            account_holder_name=data.account_holder_name,
            bank_name=data.bank_name,
            account_number=data.account_number,
            ifsc_code=data.ifsc_code,
            status=RefundStatus.PENDING.value,
        )
        self.db.add(refund)
        self._log(
            subscription,
            SubscriptionAction.CANCELLATION_REQUESTED,
            CUSTOMER_ACTOR,
            user.id,
            data.reason,
        )
        await self.db.commit()

        logger.info(
            f"Subscription {subscription.subscription_number} cancellation requested by {user.email}, "
            f"refund {quote.refund_amount} for {quote.days_remaining} days"
        )
        return await self.get_subscription(subscription_id), await self.get_refund(refund.id)

    # ==================== ADMIN OPERATIONS ====================

    async def complete_delivery(
        self,
        subscription_id: uuid.UUID,
        actor: ActorRef,
        now: datetime,
        notes: Optional[str] = None,
    ) -> UserSubscription:
        subscription = await self.get_subscription(subscription_id)
        if subscription.status != SubscriptionStatus.ACTIVE.value:
            raise BusinessRuleError("Only active subscriptions have deliveries to complete")
        if subscription.next_delivery_date is None or subscription.next_delivery_date > local_today(now):
            raise BusinessRuleError("No delivery is due on this subscription yet")

        delivered = subscription.next_delivery_date
        finished = await self._consume_delivery(subscription, "completed_deliveries")
        self._log_admin(
            subscription,
            SubscriptionAction.DELIVERY_COMPLETED,
            actor,
            notes or f"Delivered {delivered.isoformat()}",
        )
        if finished:
            self._log(subscription, SubscriptionAction.COMPLETED, SYSTEM_ACTOR)
        await self.db.commit()

        logger.info(
            f"Subscription {subscription.subscription_number}: delivery of {delivered} "
            f"completed by {actor.label}"
        )
        return await self.get_subscription(subscription_id)

    async def expire_finished(self, now: datetime) -> int:
        """Expire active or paused subscriptions whose end date has passed."""
        stmt = select(UserSubscription).where(
            UserSubscription.status.in_(CANCELLABLE_STATUSES),
            UserSubscription.end_date < local_today(now),
        )
        subscriptions = list((await self.db.execute(stmt)).unique().scalars().all())
        for subscription in subscriptions:
            await self._compare_and_set(
                subscription,
                SubscriptionStatus.EXPIRED.value,
                next_delivery_date=None,
            )
            self._log(subscription, SubscriptionAction.EXPIRED, SYSTEM_ACTOR)
        await self.db.commit()

        if subscriptions:
            logger.info(f"Expired {len(subscriptions)} subscriptions past their end date")
        return len(subscriptions)

    # ==================== PAYMENT HOOKS ====================
    # Called by PaymentService inside its own transaction; the caller commits.

    def ensure_awaiting_payment(self, subscription: UserSubscription) -> None:
        if subscription.status != SubscriptionStatus.PENDING.value or subscription.payment_status not in (
            PaymentStatus.PENDING.value,
            PaymentStatus.FAILED.value,
        ):
            raise BusinessRuleError("Subscription is not awaiting payment")

    async def record_payment_reported(
        self,
        subscription: UserSubscription,
        upi_transaction_id: str,
        now: datetime,
    ) -> None:
        await self._compare_and_set(
            subscription,
            SubscriptionStatus.PROCESSING.value,
            payment_status=PaymentStatus.PROCESSING.value,
            upi_transaction_id=upi_transaction_id,
            payment_reported_at=now,
        )
        self._log(
            subscription,
            SubscriptionAction.PAYMENT_REPORTED,
            CUSTOMER_ACTOR,
            subscription.user_id,
            f"UPI transaction {upi_transaction_id}",
        )

    async def record_payment_verified(self, subscription: UserSubscription, actor: ActorRef, now: datetime) -> None:
        await self._compare_and_set(
            subscription,
            SubscriptionStatus.ACTIVE.value,
            payment_status=PaymentStatus.PAID.value,
            paid_at=now,
        )
        self._log_admin(subscription, SubscriptionAction.PAYMENT_VERIFIED, actor)

    async def record_payment_rejected(
        self,
        subscription: UserSubscription,
        actor: ActorRef,
        notes: Optional[str] = None,
    ) -> None:
        await self._compare_and_set(
            subscription,
            SubscriptionStatus.PENDING.value,
            payment_status=PaymentStatus.PENDING.value,
        )
        self._log_admin(subscription, SubscriptionAction.PAYMENT_REJECTED, actor, notes)

    # ==================== REFUNDS ====================

    async def get_refund(self, refund_id: uuid.UUID) -> RefundRequest:
        stmt = (
            select(RefundRequest)
            .where(RefundRequest.id == refund_id)
            .execution_options(populate_existing=True)
        )
        refund = (await self.db.execute(stmt)).unique().scalar_one_or_none()
        if not refund:
            raise NotFoundError("Refund request not found")
        return refund

    async def list_refunds(
        self,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[RefundRequest], int]:
        filters = []
        if status and status != "all":
            filters.append(RefundRequest.status == status)

        count_stmt = select(func.count(RefundRequest.id))
        stmt = select(RefundRequest)
        if filters:
            count_stmt = count_stmt.where(*filters)
            stmt = stmt.where(*filters)

        total = (await self.db.execute(count_stmt)).scalar() or 0
        stmt = stmt.order_by(RefundRequest.created_at.desc()).offset(skip).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.unique().scalars().all()), total

    async def update_refund_status(
        self,
        refund_id: uuid.UUID,
        data: RefundStatusUpdate,
        actor: ActorRef,
        now: datetime,
    ) -> RefundRequest:
        """
        Move a refund through pending -> approved -> processed -> completed,
        or reject it. Approval cancels the subscription; rejection restores
        the status it had before the request.
        """
        refund = await self.get_refund(refund_id)
        old_status = refund.status
        new_status = data.status.value
        if new_status not in REFUND_TRANSITIONS.get(old_status, []):
            raise BusinessRuleError(f"Cannot change refund from '{old_status}' to '{new_status}'")

        result = await self.db.execute(
            update(RefundRequest)
            .where(RefundRequest.id == refund.id, RefundRequest.status == old_status)
            .values(status=new_status)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise ConflictError("Refund request was updated by another request, please reload and retry")
        refund.status = new_status

        subscription = await self.get_subscription(refund.user_subscription_id)
        if new_status == RefundStatus.APPROVED.value:
            await self._compare_and_set(
                subscription,
                SubscriptionStatus.CANCELLED.value,
                next_delivery_date=None,
            )
            self._log_admin(subscription, SubscriptionAction.CANCELLED, actor, data.admin_notes)
        elif new_status == RefundStatus.REJECTED.value:
            await self._compare_and_set(subscription, refund.previous_subscription_status)
            self._log_admin(
                subscription,
                SubscriptionAction.CANCELLATION_REJECTED,
                actor,
                data.admin_notes or "Refund request rejected by admin",
            )
        elif new_status == RefundStatus.PROCESSED.value:
            refund.processed_at = now
            refund.processed_by_kind = actor.kind.value
            refund.processed_by_user_id = actor.user_id if actor.kind == ActorKind.USER else None
        elif new_status == RefundStatus.COMPLETED.value:
            refund.refund_date = data.refund_date or local_today(now)
            await self._compare_and_set(subscription, payment_status=PaymentStatus.REFUNDED.value)

        if data.admin_notes is not None:
            refund.admin_notes = data.admin_notes
        if data.refund_transaction_id is not None:
            refund.refund_transaction_id = data.refund_transaction_id

        await self.db.commit()

        logger.info(
            f"Refund for {subscription.subscription_number}: {old_status} -> {new_status} by {actor.label}"
        )
        return await self.get_refund(refund_id)

    # ==================== ANALYTICS ====================

    async def get_analytics(self, now: datetime, days: int = 30) -> dict:
        """Subscriptions created in the last ``days`` days."""
        since = now - timedelta(days=days)
        created = UserSubscription.created_at >= since

        by_status = dict((await self.db.execute(
            select(UserSubscription.status, func.count(UserSubscription.id))
            .where(created)
            .group_by(UserSubscription.status)
        )).all())
        by_milk_type = dict((await self.db.execute(
            select(SubscriptionPlan.milk_type, func.count(UserSubscription.id))
            .join(SubscriptionPlan, SubscriptionPlan.id == UserSubscription.plan_id)
            .where(created)
            .group_by(SubscriptionPlan.milk_type)
        )).all())
        revenue = (await self.db.execute(
            select(func.coalesce(func.sum(UserSubscription.amount), 0)).where(
                created,
                UserSubscription.payment_status == PaymentStatus.PAID.value,
            )
        )).scalar()

        return {
            "period_days": days,
            "total_subscriptions": sum(by_status.values()),
            "active_subscriptions": by_status.get(SubscriptionStatus.ACTIVE.value, 0),
            "paused_subscriptions": by_status.get(SubscriptionStatus.PAUSED.value, 0),
            "completed_subscriptions": by_status.get(SubscriptionStatus.COMPLETED.value, 0),
            "cancelled_subscriptions": by_status.get(SubscriptionStatus.CANCELLED.value, 0),
            "total_revenue": Decimal(revenue or 0),
            "cow_milk_subscriptions": by_milk_type.get(MilkType.COW.value, 0),
            "buffalo_milk_subscriptions": by_milk_type.get(MilkType.BUFFALO.value, 0),
        }

    async def get_refund_analytics(self, now: datetime, days: int = 30) -> dict:
        since = now - timedelta(days=days)
        rows = (await self.db.execute(
            select(
                RefundRequest.status,
                func.count(RefundRequest.id),
                func.coalesce(func.sum(RefundRequest.refund_amount), 0),
            )
            .where(RefundRequest.created_at >= since)
            .group_by(RefundRequest.status)
        )).all()

        buckets = [
            {"status": status, "count": count, "total_amount": Decimal(amount)}
            for status, count, amount in rows
        ]
        refunded = [b for b in buckets if b["status"] in REFUNDED_STATUSES]
        refunded_count = sum(b["count"] for b in refunded)
        refunded_amount = sum((b["total_amount"] for b in refunded), Decimal("0"))
        average = (
            (refunded_amount / refunded_count).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
            if refunded_count else Decimal("0")
        )

        return {
            "period_days": days,
            "total_refunds": sum(b["count"] for b in buckets),
            "refunded_amount": refunded_amount,
            "average_refund": average,
            "by_status": sorted(buckets, key=lambda b: b["status"]),
        }

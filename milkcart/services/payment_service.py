"""
UPI QR payment sessions.

A session bundles a customer's unpaid confirmed/delivered orders, or one
pending subscription, behind one UPI deep link rendered as a QR code. The
customer pays from a UPI app and reports the transaction id; an admin then
verifies or rejects the payment, which cascades to every linked order's
payment status or to the subscription.
"""
from datetime import datetime, timedelta
from decimal import Decimal
from io import BytesIO
from typing import List, Optional, Tuple
from urllib.parse import quote
import base64
import logging
import random
import time
import uuid

import qrcode
from sqlalchemy import select, update, func, or_, and_
from sqlalchemy.ext.asyncio import AsyncSession

from milkcart.config import settings
from milkcart.core.exceptions import BusinessRuleError, NotFoundError, ValidationError, ConflictError
from milkcart.models.assignment import ActorRef, ActorKind
from milkcart.models.order import Order, OrderStatus, PaymentStatus
from milkcart.models.payment import Payment, PaymentSessionStatus, VerificationStatus, payment_orders
from milkcart.models.user import User
from milkcart.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)


PAYABLE_ORDER_STATUSES = (OrderStatus.CONFIRMED.value, OrderStatus.DELIVERED.value)
UNPAID_PAYMENT_STATUSES = (
    PaymentStatus.PENDING.value,
    PaymentStatus.FAILED.value,
    PaymentStatus.PROCESSING.value,
)


class VerificationAction:
    VERIFY = "verify"
    REJECT = "reject"


# ==================== IDENTIFIERS / UPI ====================

def generate_payment_id() -> str:
    """PAY-<epoch millis>-<4 random digits>"""
    return f"PAY-{int(time.time() * 1000)}-{random.randint(0, 9999):04d}"


def generate_reference_number() -> str:
    """REF<epoch millis><5 random digits>"""
    return f"REF{int(time.time() * 1000)}{random.randint(0, 99999):05d}"


def build_upi_url(amount: Decimal, reference: str, note: str = "") -> str:
    """UPI deep link paying the configured admin VPA."""
    return (
        f"upi://pay?pa={settings.ADMIN_UPI_ID}"
        f"&pn={quote(settings.ADMIN_UPI_NAME)}"
        f"&am={Decimal(amount):.2f}"
        f"&tr={reference}"
        f"&tn={quote(note)}"
        f"&cu=INR"
    )


def render_qr_code(data: str, size: Optional[int] = None) -> str:
    """Render ``data`` as a PNG QR code and return it as a data URL."""
    size = size or settings.QR_CODE_SIZE
    border = 2

    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=border,
    )
    qr.add_data(data)
    qr.make(fit=True)
    qr.box_size = max(1, size // (qr.modules_count + 2 * border))

    img = qr.make_image(fill_color="black", back_color="white")
    buffer = BytesIO()
    img.save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


class PaymentService:
    """Payment session lifecycle and the admin verification cascade."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.subscriptions = SubscriptionService(db)

    # ==================== QUERIES ====================

    async def get_payment(self, payment_id: str) -> Optional[Payment]:
        stmt = (
            select(Payment)
            .where(Payment.payment_id == payment_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_session(self, user: User, payment_id: str) -> Payment:
        payment = await self.get_payment(payment_id)
        if not payment or payment.user_id != user.id:
            raise NotFoundError("Payment not found")
        return payment

    async def list_unpaid_orders(self, user: User) -> List[Order]:
        """Confirmed or delivered orders of ``user`` still awaiting payment."""
        stmt = (
            select(Order)
            .where(
                Order.user_id == user.id,
                Order.status.in_(PAYABLE_ORDER_STATUSES),
                Order.payment_status.in_(UNPAID_PAYMENT_STATUSES),
            )
            .order_by(Order.confirmed_at.desc(), Order.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.unique().scalars().all())

    async def list_user_payments(
        self,
        user: User,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 10,
    ) -> Tuple[List[Payment], int]:
        filters = [Payment.user_id == user.id]
        if status and status != "all":
            filters.append(Payment.payment_status == status)

        total = (await self.db.execute(select(func.count(Payment.id)).where(*filters))).scalar() or 0
        stmt = (
            select(Payment)
            .where(*filters)
            .order_by(Payment.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all()), total

    async def list_payments(
        self,
        status: Optional[str] = None,
        verification_status: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        search: Optional[str] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[Payment], int]:
        """Admin payment list. Search covers ids, UPI txn id, customer name and order number."""
        filters = []
        if status and status != "all":
            filters.append(Payment.payment_status == status)
        if verification_status and verification_status != "all":
            filters.append(Payment.verification_status == verification_status)
        if date_from:
            filters.append(Payment.created_at >= date_from)
        if date_to:
            filters.append(Payment.created_at <= date_to)
        if search:
            pattern = f"%{search.strip()}%"
            filters.append(
                or_(
                    Payment.payment_id.ilike(pattern),
                    Payment.reference_number.ilike(pattern),
                    Payment.upi_transaction_id.ilike(pattern),
                    Payment.user_id.in_(select(User.id).where(User.name.ilike(pattern))),
                    Payment.id.in_(
                        select(payment_orders.c.payment_id)
                        .join(Order, Order.id == payment_orders.c.order_id)
                        .where(Order.order_number.ilike(pattern))
                    ),
                )
            )

        count_stmt = select(func.count(Payment.id))
        stmt = select(Payment)
        if filters:
            count_stmt = count_stmt.where(and_(*filters))
            stmt = stmt.where(and_(*filters))

        total = (await self.db.execute(count_stmt)).scalar() or 0
        stmt = stmt.order_by(Payment.created_at.desc()).offset(skip).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all()), total

    # ==================== SESSION LIFECYCLE ====================

    async def _orders_in_open_sessions(self, order_ids: List[uuid.UUID], now: datetime) -> List[str]:
        """Order numbers already covered by a live or awaiting-verification session."""
        stmt = (
            select(Order.order_number)
            .join(payment_orders, payment_orders.c.order_id == Order.id)
            .join(Payment, Payment.id == payment_orders.c.payment_id)
            .where(
                Order.id.in_(order_ids),
                or_(
                    and_(
                        Payment.payment_status == PaymentSessionStatus.PENDING.value,
                        Payment.expires_at > now,
                    ),
                    and_(
                        Payment.payment_status == PaymentSessionStatus.COMPLETED.value,
                        Payment.verification_status == VerificationStatus.PENDING.value,
                    ),
                ),
            )
        )
        result = await self.db.execute(stmt)
        return sorted(set(result.scalars().all()))

    async def create_session(self, user: User, order_ids: List[uuid.UUID], now: datetime) -> Payment:
        """Open a QR payment session for ``order_ids``, expiring after the configured timeout."""
        order_ids = list(dict.fromkeys(order_ids))
        if not order_ids:
            raise ValidationError("Order IDs are required and must be a non-empty list")

        result = await self.db.execute(
            select(Order).where(
                Order.id.in_(order_ids),
                Order.user_id == user.id,
                Order.status.in_(PAYABLE_ORDER_STATUSES),
                Order.payment_status.in_(UNPAID_PAYMENT_STATUSES),
            )
        )
        orders = list(result.unique().scalars().all())
        if len(orders) != len(order_ids):
            raise BusinessRuleError("Some orders are not found or not eligible for payment")

        busy = await self._orders_in_open_sessions(order_ids, now)
        if busy:
            raise ConflictError(
                f"Orders already have an open payment session: {', '.join(busy)}",
                details={"orders": busy},
            )

        total_amount = sum((order.total_amount for order in orders), Decimal("0"))
        if total_amount <= 0:
            raise BusinessRuleError("Invalid total amount")

        reference = generate_reference_number()
        upi_url = build_upi_url(total_amount, reference, f"Payment for {len(orders)} milk orders")

        payment = Payment(
            payment_id=generate_payment_id(),
            reference_number=reference,
            user_id=user.id,
            amount=total_amount,
            upi_url=upi_url,
            qr_code=render_qr_code(upi_url),
            payment_status=PaymentSessionStatus.PENDING.value,
            verification_status=VerificationStatus.PENDING.value,
            expires_at=now + timedelta(minutes=settings.PAYMENT_TIMEOUT_MINUTES),
            orders=orders,
        )
        self.db.add(payment)
        await self.db.commit()

        logger.info(
            f"Payment session {payment.payment_id} created for {user.email}: "
            f"{len(orders)} orders, amount {total_amount}"
        )
        return await self.get_payment(payment.payment_id)

    async def create_subscription_session(
        self,
        user: User,
        subscription_id: uuid.UUID,
        now: datetime,
    ) -> Payment:
        """Open a QR payment session for the full amount of a pending subscription."""
        subscription = await self.subscriptions.get_user_subscription(user, subscription_id)
        self.subscriptions.ensure_awaiting_payment(subscription)

        open_session = (await self.db.execute(
            select(Payment.payment_id).where(
                Payment.user_subscription_id == subscription.id,
                Payment.payment_status == PaymentSessionStatus.PENDING.value,
                Payment.expires_at > now,
            )
        )).scalar()
        if open_session:
            raise ConflictError(
                f"Subscription already has an open payment session: {open_session}",
                details={"payment_id": open_session},
            )

        reference = generate_reference_number()
        upi_url = build_upi_url(
            subscription.amount,
            reference,
            f"Subscription {subscription.subscription_number}",
        )
        payment = Payment(
            payment_id=generate_payment_id(),
            reference_number=reference,
            user_id=user.id,
            user_subscription_id=subscription.id,
            amount=subscription.amount,
            upi_url=upi_url,
            qr_code=render_qr_code(upi_url),
            payment_status=PaymentSessionStatus.PENDING.value,
            verification_status=VerificationStatus.PENDING.value,
            expires_at=now + timedelta(minutes=settings.PAYMENT_TIMEOUT_MINUTES),
            orders=[],
        )
        self.db.add(payment)
        await self.db.commit()

        logger.info(
            f"Payment session {payment.payment_id} created for subscription "
            f"{subscription.subscription_number}, amount {subscription.amount}"
        )
        return await self.get_payment(payment.payment_id)

    async def mark_completed(
        self,
        user: User,
        payment_id: str,
        upi_transaction_id: str,
        now: datetime,
    ) -> Payment:
        """
        Customer reports the UPI transaction id.

        An expired session is cancelled and the request rejected; the
        customer has to open a new session.
        """
        if not upi_transaction_id or not upi_transaction_id.strip():
            raise ValidationError("UPI transaction ID is required")

        payment = await self.get_session(user, payment_id)
        if payment.payment_status != PaymentSessionStatus.PENDING.value:
            raise BusinessRuleError("Payment session already processed")

        if payment.is_expired(now):
            payment.payment_status = PaymentSessionStatus.CANCELLED.value
            await self.db.commit()
            logger.warning(f"Payment session {payment_id} expired before completion")
            raise BusinessRuleError(
                "Payment session has expired. Please create a new payment session.",
                details={"expired": True},
            )

        payment.payment_status = PaymentSessionStatus.COMPLETED.value
        payment.verification_status = VerificationStatus.PENDING.value
        payment.upi_transaction_id = upi_transaction_id.strip()
        payment.completed_at = now

        await self._cascade_to_orders(payment, PaymentStatus.PROCESSING)
        if payment.user_subscription_id is not None:
            subscription = await self.subscriptions.get_subscription(payment.user_subscription_id)
            await self.subscriptions.record_payment_reported(subscription, payment.upi_transaction_id, now)
        await self.db.commit()

        logger.info(f"Payment {payment_id} reported completed, txn {payment.upi_transaction_id}")
        return await self.get_payment(payment_id)

    async def verify_payment(
        self,
        payment_id: str,
        action: str,
        actor: ActorRef,
        now: datetime,
        notes: Optional[str] = None,
    ) -> Payment:
        """Admin verification: verify marks orders paid, reject returns them to pending."""
        if action not in (VerificationAction.VERIFY, VerificationAction.REJECT):
            raise ValidationError('Invalid action. Use "verify" or "reject"')

        payment = await self.get_payment(payment_id)
        if not payment:
            raise NotFoundError("Payment not found")
        if (
            payment.payment_status != PaymentSessionStatus.COMPLETED.value
            or payment.verification_status != VerificationStatus.PENDING.value
        ):
            raise BusinessRuleError("Payment is not eligible for verification")

        subscription = None
        if payment.user_subscription_id is not None:
            subscription = await self.subscriptions.get_subscription(payment.user_subscription_id)

        payment.verified_at = now
        payment.verified_by_kind = actor.kind.value
        payment.verified_by_user_id = actor.user_id if actor.kind == ActorKind.USER else None

        if action == VerificationAction.VERIFY:
            payment.verification_status = VerificationStatus.VERIFIED.value
            payment.verification_notes = notes
            await self._cascade_to_orders(payment, PaymentStatus.PAID)
            if subscription is not None:
                await self.subscriptions.record_payment_verified(subscription, actor, now)
        else:
            payment.verification_status = VerificationStatus.REJECTED.value
            payment.verification_notes = notes or "Payment rejected by admin"
            await self._cascade_to_orders(payment, PaymentStatus.PENDING)
            if subscription is not None:
                await self.subscriptions.record_payment_rejected(subscription, actor, payment.verification_notes)

        await self.db.commit()

        logger.info(f"Payment {payment_id} {payment.verification_status} by {actor.label}")
        return await self.get_payment(payment_id)

    async def _cascade_to_orders(self, payment: Payment, payment_status: PaymentStatus) -> int:
        """
        Push ``payment_status`` to the session's orders.

        Money verified for an order cancelled while the session was open
        is owed back, so such orders become ``refunded`` instead of ``paid``.
        """
        order_ids = [order.id for order in payment.orders]
        if not order_ids:
            return 0

        if payment_status != PaymentStatus.PAID:
            result = await self.db.execute(
                update(Order)
                .where(Order.id.in_(order_ids))
                .values(payment_status=payment_status.value)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount or 0

        cancelled = [o.order_number for o in payment.orders if o.status == OrderStatus.CANCELLED.value]
        paid = await self.db.execute(
            update(Order)
            .where(Order.id.in_(order_ids), Order.status != OrderStatus.CANCELLED.value)
            .values(payment_status=PaymentStatus.PAID.value)
            .execution_options(synchronize_session=False)
        )
        refunded = await self.db.execute(
            update(Order)
            .where(Order.id.in_(order_ids), Order.status == OrderStatus.CANCELLED.value)
            .values(payment_status=PaymentStatus.REFUNDED.value)
            .execution_options(synchronize_session=False)
        )
        if cancelled:
            logger.warning(
                f"Payment {payment.payment_id} verified for cancelled orders "
                f"{', '.join(cancelled)}; marked refunded"
            )
        return (paid.rowcount or 0) + (refunded.rowcount or 0)

    async def expire_stale_sessions(self, now: datetime) -> int:
        """Cancel pending sessions past their expiry. Returns the number cancelled."""
        result = await self.db.execute(
            update(Payment)
            .where(
                Payment.payment_status == PaymentSessionStatus.PENDING.value,
                Payment.expires_at < now,
            )
            .values(payment_status=PaymentSessionStatus.CANCELLED.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        count = result.rowcount or 0
        if count:
            logger.info(f"Cancelled {count} expired payment sessions")
        return count

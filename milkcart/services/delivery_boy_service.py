from datetime import datetime, timedelta
from typing import List, Optional, Tuple
import uuid
import logging

from sqlalchemy import select, func, or_, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from milkcart.config import settings
from milkcart.core.exceptions import (
    AuthenticationError,
    BusinessRuleError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from milkcart.core.security import (
    PASSWORD_RULE_MESSAGE,
    TokenType,
    create_access_token,
    get_password_hash,
    is_strong_password,
    verify_password,
)
from milkcart.models.delivery_boy import DeliveryBoy, DeliveryBoyShift, DeliveryBoyStatus
from milkcart.schemas.delivery import DeliveryBoyRegister

logger = logging.getLogger(__name__)


STATUS_LOGIN_MESSAGES = {
    DeliveryBoyStatus.PENDING.value: "Your account is pending approval from admin.",
    DeliveryBoyStatus.REJECTED.value: "Your account has been rejected.",
    DeliveryBoyStatus.SUSPENDED.value: "Your account has been suspended.",
}


class DeliveryBoyService:
    """Delivery person accounts: self registration, login with lockout, admin review."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, delivery_boy_id: uuid.UUID) -> Optional[DeliveryBoy]:
        return await self.db.get(DeliveryBoy, delivery_boy_id)

    async def _get_or_404(self, delivery_boy_id: uuid.UUID) -> DeliveryBoy:
        delivery_boy = await self.get_by_id(delivery_boy_id)
        if not delivery_boy:
            raise NotFoundError("Delivery boy not found")
        return delivery_boy

    # ==================== SELF SERVICE ====================

    async def register(self, data: DeliveryBoyRegister) -> DeliveryBoy:
        """New accounts start pending and cannot log in until approved."""
        if not is_strong_password(data.password):
            raise ValidationError(PASSWORD_RULE_MESSAGE)

        email = data.email.lower()
        phone = data.phone.strip()
        existing = await self.db.execute(
            select(DeliveryBoy.id).where(or_(DeliveryBoy.email == email, DeliveryBoy.phone == phone))
        )
        if existing.first() is not None:
            raise ConflictError("Email or phone number is already registered")

        delivery_boy = DeliveryBoy(
            name=data.name.strip(),
            email=email,
            phone=phone,
            hashed_password=get_password_hash(data.password),
            vehicle_type=data.vehicle_type,
            vehicle_number=data.vehicle_number,
            shift=data.shift.value,
            status=DeliveryBoyStatus.PENDING.value,
        )
        self.db.add(delivery_boy)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError("Email or phone number is already registered")

        logger.info(f"Delivery boy registered: {email} ({delivery_boy.shift})")
        return delivery_boy

    async def login(self, identifier: str, password: str, now: datetime) -> Tuple[DeliveryBoy, str]:
        """
        Log in by email or phone.

        Each wrong password counts towards MAX_LOGIN_ATTEMPTS; reaching it
        locks the account for ACCOUNT_LOCK_MINUTES.
        """
        identifier = identifier.strip()
        if "@" in identifier:
            condition = DeliveryBoy.email == identifier.lower()
        else:
            condition = DeliveryBoy.phone == identifier
        result = await self.db.execute(select(DeliveryBoy).where(condition))
        delivery_boy = result.scalar_one_or_none()

        if delivery_boy is None:
            raise AuthenticationError("Invalid credentials")

        if delivery_boy.is_locked(now):
            raise PermissionDeniedError(
                "Account is temporarily locked due to too many failed attempts. Please try again later.",
                details={"locked_until": delivery_boy.locked_until.isoformat()},
            )

        if not delivery_boy.can_login(now):
            message = STATUS_LOGIN_MESSAGES.get(delivery_boy.status)
            if message is None:
                message = "Your account is deactivated." if not delivery_boy.is_active else "Account access denied."
            raise PermissionDeniedError(message)

        if not verify_password(password, delivery_boy.hashed_password):
            delivery_boy.failed_login_attempts += 1
            if delivery_boy.failed_login_attempts >= settings.MAX_LOGIN_ATTEMPTS:
                delivery_boy.locked_until = now + timedelta(minutes=settings.ACCOUNT_LOCK_MINUTES)
                delivery_boy.failed_login_attempts = 0
                logger.warning(f"Delivery boy {delivery_boy.email} locked until {delivery_boy.locked_until}")
            await self.db.commit()
            raise AuthenticationError("Invalid credentials")

        delivery_boy.failed_login_attempts = 0
        delivery_boy.locked_until = None
        delivery_boy.last_login_at = now
        await self.db.commit()

        token = create_access_token(subject=delivery_boy.id, token_type=TokenType.DELIVERY_BOY)
        logger.info(f"Delivery boy logged in: {delivery_boy.email}")
        return delivery_boy, token

    # ==================== ADMIN ====================

    async def list_delivery_boys(
        self,
        status: Optional[str] = None,
        shift: Optional[str] = None,
        search: Optional[str] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[DeliveryBoy], int]:
        filters = []
        if status and status != "all":
            filters.append(DeliveryBoy.status == status)
        if shift and shift != "all":
            filters.append(DeliveryBoy.shift == shift)
        if search:
            pattern = f"%{search.strip()}%"
            filters.append(
                or_(
                    DeliveryBoy.name.ilike(pattern),
                    DeliveryBoy.email.ilike(pattern),
                    DeliveryBoy.phone.ilike(pattern),
                )
            )

        count_stmt = select(func.count(DeliveryBoy.id))
        stmt = select(DeliveryBoy)
        if filters:
            count_stmt = count_stmt.where(and_(*filters))
            stmt = stmt.where(and_(*filters))

        total = (await self.db.execute(count_stmt)).scalar() or 0
        stmt = stmt.order_by(DeliveryBoy.created_at.desc()).offset(skip).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all()), total

    async def list_available(self, shift: Optional[str] = None) -> List[DeliveryBoy]:
        """Approved, active delivery persons; fewest deliveries first, then best rated."""
        filters = [
            DeliveryBoy.status == DeliveryBoyStatus.APPROVED.value,
            DeliveryBoy.is_active == True,  # noqa: E712
        ]
        if shift:
            filters.append(DeliveryBoy.shift.in_([shift, DeliveryBoyShift.BOTH.value]))

        stmt = (
            select(DeliveryBoy)
            .where(*filters)
            .order_by(DeliveryBoy.total_deliveries.asc(), DeliveryBoy.rating.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def approve(self, delivery_boy_id: uuid.UUID, now: datetime) -> DeliveryBoy:
        delivery_boy = await self._get_or_404(delivery_boy_id)
        if delivery_boy.status == DeliveryBoyStatus.APPROVED.value:
            raise BusinessRuleError("Delivery boy is already approved")

        delivery_boy.status = DeliveryBoyStatus.APPROVED.value
        delivery_boy.approved_at = now
        delivery_boy.rejection_reason = None
        await self.db.commit()

        logger.info(f"Delivery boy approved: {delivery_boy.email}")
        return delivery_boy

    async def reject(self, delivery_boy_id: uuid.UUID, reason: Optional[str] = None) -> DeliveryBoy:
        delivery_boy = await self._get_or_404(delivery_boy_id)
        if delivery_boy.status == DeliveryBoyStatus.REJECTED.value:
            raise BusinessRuleError("Delivery boy is already rejected")

        delivery_boy.status = DeliveryBoyStatus.REJECTED.value
        delivery_boy.rejection_reason = reason or "Rejected by admin"
        await self.db.commit()

        logger.info(f"Delivery boy rejected: {delivery_boy.email}")
        return delivery_boy

    async def suspend(self, delivery_boy_id: uuid.UUID, reason: Optional[str] = None) -> DeliveryBoy:
        delivery_boy = await self._get_or_404(delivery_boy_id)
        if delivery_boy.status != DeliveryBoyStatus.APPROVED.value:
            raise BusinessRuleError("Only approved delivery boys can be suspended")

        delivery_boy.status = DeliveryBoyStatus.SUSPENDED.value
        delivery_boy.rejection_reason = reason
        await self.db.commit()

        logger.info(f"Delivery boy suspended: {delivery_boy.email}")
        return delivery_boy

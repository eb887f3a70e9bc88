from datetime import datetime, timedelta
from typing import Optional, Tuple
import secrets
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from milkcart.config import settings
from milkcart.core.exceptions import (
    AuthenticationError,
    BusinessRuleError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from milkcart.core.security import (
    ADMIN_SUBJECT,
    PASSWORD_RULE_MESSAGE,
    TokenType,
    create_access_token,
    get_password_hash,
    is_strong_password,
    verify_password,
)
from milkcart.models.user import User, UserRole
from milkcart.schemas.auth import UserRegister

logger = logging.getLogger(__name__)


def generate_verification_code() -> str:
    """Six digit numeric code."""
    return f"{secrets.randbelow(1_000_000):06d}"


class AuthService:
    """Customer registration, email verification and login; env-backed admin login."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.email == email.lower()))
        return result.scalar_one_or_none()

    def _issue_code(self, user: User, now: datetime) -> str:
        code = generate_verification_code()
        user.email_verification_code = code
        user.email_verification_expires_at = now + timedelta(
            minutes=settings.EMAIL_VERIFICATION_CODE_EXPIRE_MINUTES
        )
        return code

    async def register(self, data: UserRegister, now: datetime) -> Tuple[User, str]:
        """
        Create an unverified customer account.

        Returns the user and the verification code to email.
        """
        if not is_strong_password(data.password):
            raise ValidationError(PASSWORD_RULE_MESSAGE)

        email = data.email.lower()
        if await self.get_user_by_email(email):
            raise ConflictError("Email already registered")

        user = User(
            name=data.name.strip(),
            email=email,
            phone=data.phone,
            hashed_password=get_password_hash(data.password),
            role=UserRole.USER.value,
            is_active=True,
            is_email_verified=False,
        )
        code = self._issue_code(user, now)
        self.db.add(user)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError("Email already registered")

        logger.info(f"User registered: {email}")
        return user, code

    async def verify_email(self, email: str, code: str, now: datetime) -> User:
        user = await self.get_user_by_email(email)
        if not user:
            raise NotFoundError("User not found")
        if user.is_email_verified:
            raise BusinessRuleError("Email is already verified")

        if (
            not user.email_verification_code
            or not user.email_verification_expires_at
            or now > user.email_verification_expires_at
        ):
            raise BusinessRuleError("Verification code has expired. Please request a new one.")
        if not secrets.compare_digest(user.email_verification_code, code):
            raise ValidationError("Invalid verification code")

        user.is_email_verified = True
        user.email_verification_code = None
        user.email_verification_expires_at = None
        await self.db.commit()

        logger.info(f"Email verified: {user.email}")
        return user

    async def resend_verification(self, email: str, now: datetime) -> Tuple[User, str]:
        user = await self.get_user_by_email(email)
        if not user:
            raise NotFoundError("User not found")
        if user.is_email_verified:
            raise BusinessRuleError("Email is already verified")

        code = self._issue_code(user, now)
        await self.db.commit()
        return user, code

    @staticmethod
    def issue_token(user: User) -> str:
        return create_access_token(
            subject=user.id,
            token_type=TokenType.USER,
            additional_claims={"email": user.email, "role": user.role},
        )

    async def login(self, email: str, password: str, now: datetime) -> Tuple[User, str]:
        """Password login for customers and admin users. Returns (user, access token)."""
        user = await self.get_user_by_email(email)
        if user is None or not verify_password(password, user.hashed_password):
            logger.warning(f"Failed login for {email}")
            raise AuthenticationError("Invalid email or password")

        if not user.is_active:
            raise AuthenticationError("Account is deactivated")
        if not user.is_email_verified:
            raise AuthenticationError(
                "Please verify your email before logging in",
                details={"requires_verification": True},
            )

        user.last_login_at = now
        await self.db.commit()

        return user, self.issue_token(user)


def authenticate_admin(email: str, password: str) -> str:
    """Check the environment admin credentials and issue an admin token."""
    if not settings.ADMIN_PASSWORD:
        raise AuthenticationError("Admin login is not configured")

    email_ok = secrets.compare_digest(email.lower().encode(), settings.ADMIN_EMAIL.lower().encode())
    password_ok = secrets.compare_digest(password.encode(), settings.ADMIN_PASSWORD.encode())
    if not (email_ok and password_ok):
        logger.warning(f"Failed admin login for {email}")
        raise AuthenticationError("Invalid admin credentials")

    logger.info("Admin logged in")
    return create_access_token(subject=ADMIN_SUBJECT, token_type=TokenType.ADMIN)

from datetime import datetime
from typing import Annotated, Optional
import uuid
import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from milkcart.database import get_db
from milkcart.core.security import ADMIN_SUBJECT, TokenType, decode_token, verify_access_token
from milkcart.core.timeutils import utc_now
from milkcart.models.assignment import ActorRef
from milkcart.models.delivery_boy import DeliveryBoy
from milkcart.models.user import User, UserRole


logger = logging.getLogger(__name__)

# HTTP Bearer security scheme; missing credentials are reported as 401 below
security = HTTPBearer(auto_error=False)

Credentials = Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)]
DB = Annotated[AsyncSession, Depends(get_db)]


def _credentials_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


def _subject_uuid(subject: Optional[str]) -> uuid.UUID:
    if subject is None:
        logger.warning("Token verification failed - invalid or expired token")
        raise _credentials_exception()
    try:
        return uuid.UUID(subject)
    except ValueError:
        logger.warning(f"Invalid subject in token: {subject}")
        raise _credentials_exception()


def get_now() -> datetime:
    """Current instant (aware UTC). Overridden in tests to pin the clock."""
    return utc_now()


Now = Annotated[datetime, Depends(get_now)]


async def get_current_user(credentials: Credentials, db: DB) -> User:
    """
    Dependency to get the current authenticated customer.
    Validates the JWT token and returns the user object.
    """
    if credentials is None:
        raise _credentials_exception()

    user_id = _subject_uuid(verify_access_token(credentials.credentials, TokenType.USER))
    user = await db.get(User, user_id)
    if user is None:
        raise _credentials_exception()

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated"
        )

    return user


async def get_current_admin(credentials: Credentials, db: DB) -> ActorRef:
    """
    Admin access: either the environment admin token or a user whose role is admin.

    Returns who is acting so services can record it.
    """
    if credentials is None:
        raise _credentials_exception()

    payload = decode_token(credentials.credentials)
    if payload is None:
        raise _credentials_exception()

    token_type = payload.get("type")
    if token_type == TokenType.ADMIN.value:
        if payload.get("sub") != ADMIN_SUBJECT:
            raise _credentials_exception()
        return ActorRef.system_admin()

    if token_type == TokenType.USER.value:
        user = await db.get(User, _subject_uuid(payload.get("sub")))
        if user is None:
            raise _credentials_exception()
        if user.is_active and user.role == UserRole.ADMIN.value:
            return ActorRef.admin_user(user.id)

    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Admin access required"
    )


async def get_current_delivery_boy(credentials: Credentials, db: DB) -> DeliveryBoy:
    if credentials is None:
        raise _credentials_exception()

    delivery_boy_id = _subject_uuid(
        verify_access_token(credentials.credentials, TokenType.DELIVERY_BOY)
    )
    delivery_boy = await db.get(DeliveryBoy, delivery_boy_id)
    if delivery_boy is None:
        raise _credentials_exception()

    if not delivery_boy.is_available:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Delivery account is not active or not approved"
        )

    return delivery_boy


# Type aliases for cleaner endpoint signatures
CurrentUser = Annotated[User, Depends(get_current_user)]
CurrentAdmin = Annotated[ActorRef, Depends(get_current_admin)]
CurrentDeliveryBoy = Annotated[DeliveryBoy, Depends(get_current_delivery_boy)]

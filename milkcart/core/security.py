from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Any
import re
import uuid

from jose import JWTError, jwt
from passlib.context import CryptContext

from milkcart.config import settings


pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS,
)

PASSWORD_PATTERN = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d).{8,}$")
PASSWORD_RULE_MESSAGE = (
    "Password must be at least 8 characters and contain an uppercase letter, "
    "a lowercase letter and a number"
)

ADMIN_SUBJECT = "admin"


class TokenType(str, Enum):
    """Discriminator carried in the ``type`` claim of every access token."""
    USER = "user"
    ADMIN = "admin"
    DELIVERY_BOY = "delivery_boy"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a plain password against a hashed password.

    Malformed hashes count as a mismatch.
    """
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        return False


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def is_strong_password(password: str) -> bool:
    return bool(PASSWORD_PATTERN.match(password))


def create_access_token(
    subject: str | uuid.UUID,
    token_type: TokenType = TokenType.USER,
    expires_delta: Optional[timedelta] = None,
    additional_claims: Optional[dict[str, Any]] = None
) -> str:
    """
    Create a JWT access token.

    Args:
        subject: The subject of the token (user id, delivery boy id or "admin")
        token_type: Which principal the subject refers to
        expires_delta: Optional custom expiration time
        additional_claims: Optional additional claims to include

    Returns:
        Encoded JWT token string
    """
    if expires_delta is None:
        minutes = {
            TokenType.USER: settings.ACCESS_TOKEN_EXPIRE_MINUTES,
            TokenType.ADMIN: settings.ADMIN_TOKEN_EXPIRE_MINUTES,
            TokenType.DELIVERY_BOY: settings.DELIVERY_BOY_TOKEN_EXPIRE_MINUTES,
        }[token_type]
        expires_delta = timedelta(minutes=minutes)

    issued_at = datetime.now(timezone.utc)
    to_encode = {
        "sub": str(subject),
        "exp": issued_at + expires_delta,
        "iat": issued_at,
        "jti": str(uuid.uuid4()),
        "type": token_type.value,
    }

    if additional_claims:
        to_encode.update(additional_claims)

    return jwt.encode(
        to_encode,
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM
    )


def decode_token(token: str) -> Optional[dict[str, Any]]:
    """
    Decode and validate a JWT token.

    Returns:
        Decoded token payload or None if invalid or expired
    """
    try:
        return jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM]
        )
    except JWTError:
        return None


def verify_access_token(token: str, token_type: TokenType) -> Optional[str]:
    """
    Verify an access token of the given type and return its subject.

    Returns:
        Subject string or None if invalid, expired or of another type
    """
    payload = decode_token(token)
    if payload is None:
        return None

    if payload.get("type") != token_type.value:
        return None

    return payload.get("sub")
